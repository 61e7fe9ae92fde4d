"""
Continuous Mean-Flow Fields

Cell-centred fields supplied by the finite-volume solver the particle
cloud is coupled to. The cloud borrows a FlowFields instance for its
whole lifetime and reads the current values at every evolve call; the
owner updates them in place between calls.
"""

import numpy as np

from .constants import SMALL
from .errors import ConfigurationError


class FlowFields:
    """
    Finite-volume mean fields per cell.

    Attributes:
        U: Mean velocity [n_cells, 3] [m/s]
        p: Mean (kinematic or physical) pressure [n_cells] [Pa]
        k: Turbulent kinetic energy [n_cells] [m^2/s^2]
        epsilon: Turbulent dissipation rate [n_cells] [m^2/s^3]
        rho: Mean density [n_cells] [kg/m^3]
    """

    _SHAPES = {"U": (3,), "p": (), "k": (), "epsilon": (), "rho": ()}

    def __init__(self, n_cells, U, p, k, epsilon, rho):
        self.n_cells = n_cells
        self.U = self._checked("U", U)
        self.p = self._checked("p", p)
        self.k = self._checked("k", k)
        self.epsilon = self._checked("epsilon", epsilon)
        self.rho = self._checked("rho", rho)
        if np.any(self.rho <= 0.0):
            raise ConfigurationError("Mean density must be positive in every cell")

    def _checked(self, name, values):
        shape = (self.n_cells,) + self._SHAPES[name]
        values = np.array(values, dtype=np.float64)
        if values.shape == self._SHAPES[name]:
            values = np.broadcast_to(values, shape).copy()
        if values.shape != shape:
            raise ConfigurationError(
                f"Field '{name}' has shape {values.shape}, expected {shape}"
            )
        return values

    def update(self, **values):
        """Replace one or more fields, e.g. ``fields.update(k=k_new)``."""
        for name, value in values.items():
            if name not in self._SHAPES:
                raise ConfigurationError(f"Unknown field '{name}'")
            setattr(self, name, self._checked(name, value))

    @property
    def omega(self):
        """Turbulent frequency epsilon / k [1/s]."""
        return self.epsilon / np.maximum(self.k, SMALL)

    @classmethod
    def uniform(cls, mesh, U=(0.0, 0.0, 0.0), p=0.0, k=1.0, epsilon=1.0, rho=1.0):
        """Spatially uniform fields on ``mesh``."""
        return cls(mesh.n_cells, U, p, k, epsilon, rho)

    def __repr__(self):
        return f"FlowFields(n_cells={self.n_cells})"
