"""
Particle Tracking

Trajectory integration through the tetrahedral decomposition and the
boundary handlers it dispatches to.
"""

from .tracker import TrackOutcome, move, reflection_tensor
from .boundaries import (
    InletHandler,
    OutletHandler,
    PeriodicHandler,
    ReflectiveHandler,
    make_boundary_handlers,
)

__all__ = [
    "TrackOutcome",
    "move",
    "reflection_tensor",
    "InletHandler",
    "OutletHandler",
    "PeriodicHandler",
    "ReflectiveHandler",
    "make_boundary_handlers",
]
