"""
Particle Cloud Configuration

Pydantic models describing the particle time step, the scalars carried by
the particles, the population-control band, the physics-model selection and
their coefficients. ``CloudConfig.from_dict`` builds the whole tree from a
plain mapping (e.g. parsed from JSON). Validation failures surface as
ConfigurationError.
"""

import math
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .constants import (
    DEFAULT_CLONE_AT,
    DEFAULT_ELIMINATE_AT,
    DEFAULT_MAX_COURANT,
    DEFAULT_MIN_ETA,
    DEFAULT_PARTICLES_PER_CELL,
)
from .errors import ConfigurationError


class ConfigSection(BaseModel):
    """Base of all configuration sections: unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid {type(self).__name__}: {exc}") from exc


class PopulationControlConfig(ConfigSection):
    """
    Target band for the number of particles per cell.

    Attributes:
        particles_per_cell: Target number of particles per cell
        clone_at: Cells with fewer than clone_at * target particles are cloned
        eliminate_at: Cells with more than eliminate_at * target particles
                      are thinned out
    """

    particles_per_cell: int = Field(DEFAULT_PARTICLES_PER_CELL, ge=1)
    clone_at: float = Field(DEFAULT_CLONE_AT, gt=0.0, le=1.0)
    eliminate_at: float = Field(DEFAULT_ELIMINATE_AT, ge=1.0)


class ModelSelection(ConfigSection):
    """Names of the physics-model variants applied every evolve cycle."""

    velocity: str = "SLM"
    omega: str = "interpolation"
    mixing: str = "IEM"
    reaction: str = "none"
    position_correction: str = "integrated"


class AxisymmetricConfig(ConfigSection):
    """Wedge geometry of an axi-symmetric case (angle in radians)."""

    axis: Tuple[float, float, float] = (1.0, 0.0, 0.0)
    centre_plane_normal: Tuple[float, float, float] = (0.0, 0.0, 1.0)
    opening_angle: float = Field(math.radians(5.0), gt=0.0, lt=math.pi)

    @field_validator("axis", "centre_plane_normal")
    @classmethod
    def _normalise(cls, value, info):
        vec = np.asarray(value, dtype=np.float64)
        norm = np.linalg.norm(vec)
        if norm == 0.0:
            raise ValueError(f"{info.field_name} must be a non-zero vector")
        return tuple(float(c) for c in vec / norm)


class CloudConfig(ConfigSection):
    """
    Complete configuration of a particle cloud.

    Attributes:
        delta_t: Global particle time step [s]
        scalar_names: Names of the composition scalars carried by particles
        mixed_scalars: Names of the scalars the mixing model acts on
                       (default: all)
        conserved_scalars: Names of the scalars whose content is tracked
                           for conservation (default: all)
        initial_scalars: Initial / inflow value per scalar name
        averaging_time: Time scale of the exponential moment filter [s];
                        0 disables time averaging
        population: Population-control band
        models: Physics-model selection
        coefficients: Keyword arguments per model kind, e.g.
                      {"velocity": {"C0": 2.1}}
        local_time_stepping: Scale particle track times by eta
        max_courant: Target particle Courant number for local time stepping
        min_eta: Lower bound of eta
        max_sub_step: Longest tracking sub-step [s] (None: unlimited)
        axisymmetric: Wedge settings, None for planar/3-D cases
        inlets: Per inlet patch name: {"U": [..], "k": .., "phi": {..}}
        max_shift: Largest geometric shift a live particle may carry [m]
        random_seed: Seed of the cloud's random number generator
    """

    delta_t: float = Field(..., gt=0.0)
    scalar_names: List[str] = Field(default_factory=list)
    mixed_scalars: Optional[List[str]] = None
    conserved_scalars: Optional[List[str]] = None
    initial_scalars: Dict[str, float] = Field(default_factory=dict)
    averaging_time: float = Field(0.0, ge=0.0)
    population: PopulationControlConfig = Field(default_factory=PopulationControlConfig)
    models: ModelSelection = Field(default_factory=ModelSelection)
    coefficients: Dict[str, dict] = Field(default_factory=dict)
    local_time_stepping: bool = False
    max_courant: float = Field(DEFAULT_MAX_COURANT, gt=0.0)
    min_eta: float = Field(DEFAULT_MIN_ETA, gt=0.0, le=1.0)
    max_sub_step: Optional[float] = Field(None, gt=0.0)
    axisymmetric: Optional[AxisymmetricConfig] = None
    inlets: Dict[str, dict] = Field(default_factory=dict)
    max_shift: float = Field(1.0e-8, ge=0.0)
    random_seed: Optional[int] = None

    @model_validator(mode="after")
    def _check_scalars(self) -> "CloudConfig":
        if len(set(self.scalar_names)) != len(self.scalar_names):
            raise ValueError(f"Duplicate scalar names in {self.scalar_names}")
        for name in self.initial_scalars:
            self._check_scalar(name)
        if self.mixed_scalars is None:
            self.mixed_scalars = list(self.scalar_names)
        if self.conserved_scalars is None:
            self.conserved_scalars = list(self.scalar_names)
        for name in list(self.mixed_scalars) + list(self.conserved_scalars):
            self._check_scalar(name)
        return self

    def _check_scalar(self, name):
        if name not in self.scalar_names:
            raise ValueError(f"Unknown scalar '{name}', known scalars: {self.scalar_names}")

    # ---------------------------------------------------------------- scalars

    @property
    def n_scalars(self) -> int:
        return len(self.scalar_names)

    def scalar_index(self, name: str) -> int:
        """Index of scalar ``name`` in the particle composition vector."""
        try:
            return self.scalar_names.index(name)
        except ValueError:
            raise ConfigurationError(
                f"Unknown scalar '{name}', known scalars: {self.scalar_names}"
            ) from None

    @property
    def mixed_indices(self) -> np.ndarray:
        return np.array([self.scalar_index(s) for s in self.mixed_scalars], dtype=np.int64)

    @property
    def conserved_indices(self) -> np.ndarray:
        return np.array(
            [self.scalar_index(s) for s in self.conserved_scalars], dtype=np.int64
        )

    def initial_phi(self, overrides: Optional[Dict[str, float]] = None) -> np.ndarray:
        """Composition vector from ``initial_scalars`` with optional overrides."""
        phi = np.zeros(self.n_scalars, dtype=np.float64)
        for name, value in self.initial_scalars.items():
            phi[self.scalar_index(name)] = value
        for name, value in (overrides or {}).items():
            phi[self.scalar_index(name)] = value
        return phi

    def model_coefficients(self, kind: str) -> dict:
        return dict(self.coefficients.get(kind, {}))

    # ---------------------------------------------------------------- parsing

    @classmethod
    def from_dict(cls, data: dict) -> "CloudConfig":
        """
        Build a configuration from a nested mapping.

        Nested sections ``population``, ``models`` and ``axisymmetric`` may
        be given as mappings. Unknown keys raise ConfigurationError.
        """
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid cloud configuration: {exc}") from exc
