"""
Physics Models Applied to the Particle Ensemble

Every model offers the same two calls:

    update_internals()      once per evolve cycle, before any particle
    correct(particles, i)   mutate particle i in place

The variants are plain strategy objects registered per kind in
MODEL_TABLE and picked by name at configuration time.
"""

from ..errors import ConfigurationError
from .mixing import IEMMixingModel
from .omega import InterpolatedOmegaModel, JayeshPopeOmegaModel
from .position_correction import IntegratedPositionCorrection
from .reaction import FirstOrderReactionModel
from .velocity import SLMVelocityModel


class NullModel:
    """Model variant that leaves the particles unchanged."""

    def __init__(self, cloud):
        self.cloud = cloud

    def update_internals(self):
        pass

    def correct(self, particles, i):
        pass


MODEL_KINDS = ("velocity", "omega", "mixing", "reaction", "position_correction")

MODEL_TABLE = {
    "velocity": {
        "SLM": SLMVelocityModel,
        "none": NullModel,
    },
    "omega": {
        "interpolation": InterpolatedOmegaModel,
        "JayeshPope": JayeshPopeOmegaModel,
        "none": NullModel,
    },
    "mixing": {
        "IEM": IEMMixingModel,
        "none": NullModel,
    },
    "reaction": {
        "firstOrder": FirstOrderReactionModel,
        "none": NullModel,
    },
    "position_correction": {
        "integrated": IntegratedPositionCorrection,
        "none": NullModel,
    },
}


def select_model(kind, name, cloud, coefficients=None):
    """
    Instantiate model ``name`` of ``kind`` for ``cloud``.

    Raises:
        ConfigurationError: Unknown kind or name, or bad coefficients
    """
    if kind not in MODEL_TABLE:
        raise ConfigurationError(f"Unknown model kind '{kind}', valid: {MODEL_KINDS}")
    variants = MODEL_TABLE[kind]
    if name not in variants:
        raise ConfigurationError(
            f"Unknown {kind} model '{name}', valid: {sorted(variants)}"
        )
    coefficients = coefficients or {}
    if variants[name] is NullModel and coefficients:
        raise ConfigurationError(f"Model '{kind}: none' takes no coefficients")
    try:
        return variants[name](cloud, **coefficients)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid coefficients for {kind} model '{name}': {exc}") from exc


__all__ = [
    "MODEL_KINDS",
    "MODEL_TABLE",
    "NullModel",
    "select_model",
    "SLMVelocityModel",
    "InterpolatedOmegaModel",
    "JayeshPopeOmegaModel",
    "IEMMixingModel",
    "FirstOrderReactionModel",
    "IntegratedPositionCorrection",
]
