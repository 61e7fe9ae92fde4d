"""
Cell Statistics of the Particle Ensemble

Per-cell raw moments of the live (non-ghost) particles, blended over time
with an exponential moving average:

    new = w * old + (1 - w) * current,   w = exist_wt in [0, 1]

Cells without live particles keep their previous moments. Mean fields
(density, velocity, Reynolds stresses, scalar means and variances) are
mass-weighted and derived from the moments on read.
"""

import numpy as np
from numba import njit

from .constants import SMALL, SYMM_PAIRS


@njit
def accumulate_moments(cell, m, rho, u, phi, active, ghost, n_particles, n_cells):
    """
    Raw moments of the active non-ghost particles per cell.

    Args:
        cell: Host cell per particle
        m: Masses [kg]
        rho: Density samples [kg/m^3]
        u: Velocities (n, 3) [m/s]
        phi: Compositions (n, n_scalars)
        active: Active flags
        ghost: Ghost levels
        n_particles: Number of particles
        n_cells: Number of mesh cells

    Returns:
        count, mass, volume, momentum, uu (symmetric, 6 components),
        phi_mom, phiphi_mom
    """
    n_scalars = phi.shape[1]
    count = np.zeros(n_cells, dtype=np.float64)
    mass = np.zeros(n_cells, dtype=np.float64)
    volume = np.zeros(n_cells, dtype=np.float64)
    momentum = np.zeros((n_cells, 3), dtype=np.float64)
    uu = np.zeros((n_cells, 6), dtype=np.float64)
    phi_mom = np.zeros((n_cells, n_scalars), dtype=np.float64)
    phiphi_mom = np.zeros((n_cells, n_scalars), dtype=np.float64)

    for i in range(n_particles):
        if not active[i] or ghost[i] > 0:
            continue
        c = cell[i]
        mi = m[i]
        count[c] += 1.0
        mass[c] += mi
        volume[c] += mi / rho[i]
        for d in range(3):
            momentum[c, d] += mi * u[i, d]
        uu[c, 0] += mi * u[i, 0] * u[i, 0]
        uu[c, 1] += mi * u[i, 0] * u[i, 1]
        uu[c, 2] += mi * u[i, 0] * u[i, 2]
        uu[c, 3] += mi * u[i, 1] * u[i, 1]
        uu[c, 4] += mi * u[i, 1] * u[i, 2]
        uu[c, 5] += mi * u[i, 2] * u[i, 2]
        for s in range(n_scalars):
            phi_mom[c, s] += mi * phi[i, s]
            phiphi_mom[c, s] += mi * phi[i, s] * phi[i, s]

    return count, mass, volume, momentum, uu, phi_mom, phiphi_mom


class CellMoments:
    """
    Time-blended moments per cell.

    Attributes:
        count: Live particles per cell from the latest update
        m_mom: Mass moment sum(m) [kg]
        v_mom: Volume moment sum(m / rho) [m^3]
        u_mom: Momentum moment sum(m u) [kg m/s]
        uu_mom: Second velocity moment sum(m u u), symmetric (n, 6)
        phi_mom: Scalar moments sum(m phi)
        phiphi_mom: Second scalar moments sum(m phi^2)
        m_inst, v_inst: Unblended mass and volume moments of the latest update
    """

    _BLENDED = ("m_mom", "v_mom", "u_mom", "uu_mom", "phi_mom", "phiphi_mom")

    def __init__(self, cell_volumes, n_scalars):
        self.cell_volumes = np.asarray(cell_volumes, dtype=np.float64)
        self.n_cells = len(self.cell_volumes)
        self.n_scalars = n_scalars

        self.count = np.zeros(self.n_cells, dtype=np.int64)
        self.m_mom = np.zeros(self.n_cells)
        self.v_mom = np.zeros(self.n_cells)
        self.u_mom = np.zeros((self.n_cells, 3))
        self.uu_mom = np.zeros((self.n_cells, 6))
        self.phi_mom = np.zeros((self.n_cells, n_scalars))
        self.phiphi_mom = np.zeros((self.n_cells, n_scalars))
        self.m_inst = np.zeros(self.n_cells)
        self.v_inst = np.zeros(self.n_cells)
        self.n_updates = 0

    def update(self, particles, exist_wt):
        """
        Recompute the moments from ``particles`` and blend with the old ones.

        Args:
            particles: ParticleArray
            exist_wt: Weight of the previous moments, in [0, 1]
        """
        if not 0.0 <= exist_wt <= 1.0:
            raise ValueError(f"exist_wt must lie in [0, 1], got {exist_wt}")

        n = particles.n_particles
        current = accumulate_moments(
            particles.cell[:n], particles.m[:n], particles.rho[:n],
            particles.u[:n], particles.phi[:n], particles.active[:n],
            particles.ghost[:n], n, self.n_cells,
        )
        count, mass, volume = current[:3]
        occupied = count > 0

        self.count = count.astype(np.int64)
        self.m_inst = mass
        self.v_inst = volume
        for name, cur in zip(self._BLENDED, current[1:]):
            old = getattr(self, name)
            old[occupied] = exist_wt * old[occupied] + (1.0 - exist_wt) * cur[occupied]
        self.n_updates += 1

    # ==================== DERIVED FIELDS ====================

    def _per_mass(self, moment):
        denom = np.where(self.m_mom > SMALL, self.m_mom, np.inf)
        if moment.ndim > 1:
            denom = denom[:, None]
        return moment / denom

    @property
    def rho(self):
        """Time-averaged particle density sum(m) / sum(m / rho)."""
        return self.m_mom / np.where(self.v_mom > 0.0, self.v_mom, np.inf)

    @property
    def rho_inst(self):
        return self.m_inst / np.where(self.v_inst > 0.0, self.v_inst, np.inf)

    @property
    def pnd(self):
        """Particle mass per cell volume [kg/m^3]."""
        return self.m_mom / self.cell_volumes

    @property
    def pnd_inst(self):
        return self.m_inst / self.cell_volumes

    @property
    def U(self):
        return self._per_mass(self.u_mom)

    @property
    def tau(self):
        """Reynolds stresses <u'u'> as symmetric components (n, 6)."""
        mean = self.U
        tau = self._per_mass(self.uu_mom)
        for c, (a, b) in enumerate(SYMM_PAIRS):
            tau[:, c] -= mean[:, a] * mean[:, b]
        return tau

    @property
    def k(self):
        tau = self.tau
        return 0.5 * (tau[:, 0] + tau[:, 3] + tau[:, 5])

    @property
    def phi(self):
        return self._per_mass(self.phi_mom)

    @property
    def phiphi(self):
        """Scalar variances <phi'^2> per cell."""
        mean = self.phi
        return self._per_mass(self.phiphi_mom) - mean * mean

    def empty_cells(self):
        return np.flatnonzero(self.count == 0)

    def __repr__(self):
        return (f"CellMoments(n_cells={self.n_cells}, n_scalars={self.n_scalars}, "
                f"updates={self.n_updates})")
