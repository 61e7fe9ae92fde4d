"""
Particle Data Structures for the Monte Carlo PDF Cloud

Uses Structure-of-Arrays (SoA) layout so the moment accumulation and
Courant-number kernels can run under Numba over plain arrays.
"""

import numpy as np


class ParticleArray:
    """
    Growable particle container in Structure-of-Arrays layout.

    Attributes:
        x: Position vectors [n_max, 3] [m]
        cell: Host cell index
        step_fraction: Fraction of the current step already tracked, [0, 1]
        m: Particle mass [kg] (> 0)
        phi: Scalar composition [n_max, n_scalars]
        u: Velocity sample UParticle [n_max, 3] [m/s]
        u_correction: Position-correction drift [n_max, 3] [m/s]
        u_tracking: Advection velocity u + u_correction [n_max, 3] [m/s]
        omega: Turbulent frequency [1/s] (>= 0)
        rho: Density sample [kg/m^3]
        eta: Local time-stepping weight in (0, 1]
        shift: Geometric shift of ghost particles [n_max, 3] [m]
        ghost: Ghost level (0 = real particle)
        co: Courant number for deltaT = 1
        n_steps: Tracking sub-steps in the current evolve call
        on_inlet: Freshly injected at an inlet boundary
        reflected_open: Reflected at an open (inlet) boundary
        orig_id: Stable particle id
        active: Active flag
        n_particles: Number of used slots (active or not)
    """

    _VECTOR_FIELDS = ("x", "u", "u_correction", "u_tracking", "shift")
    _SCALAR_FIELDS = ("cell", "step_fraction", "m", "omega", "rho", "eta", "ghost",
                      "co", "n_steps", "on_inlet", "reflected_open", "orig_id", "active")

    def __init__(self, max_particles: int, n_scalars: int = 0):
        """
        Initialize particle arrays.

        Args:
            max_particles: Initial capacity (grows on demand)
            n_scalars: Length of the composition vector
        """
        self.max_particles = max_particles
        self.n_scalars = n_scalars
        self.n_particles = 0
        self.n_created = 0  # Particles ever created (source of orig_id)

        self.x = np.zeros((max_particles, 3), dtype=np.float64)
        self.cell = np.full(max_particles, -1, dtype=np.int64)
        self.step_fraction = np.zeros(max_particles, dtype=np.float64)
        self.m = np.zeros(max_particles, dtype=np.float64)
        self.phi = np.zeros((max_particles, n_scalars), dtype=np.float64)
        self.u = np.zeros((max_particles, 3), dtype=np.float64)
        self.u_correction = np.zeros((max_particles, 3), dtype=np.float64)
        self.u_tracking = np.zeros((max_particles, 3), dtype=np.float64)
        self.omega = np.zeros(max_particles, dtype=np.float64)
        self.rho = np.zeros(max_particles, dtype=np.float64)
        self.eta = np.ones(max_particles, dtype=np.float64)
        self.shift = np.zeros((max_particles, 3), dtype=np.float64)
        self.ghost = np.zeros(max_particles, dtype=np.int32)
        self.co = np.zeros(max_particles, dtype=np.float64)
        self.n_steps = np.zeros(max_particles, dtype=np.int32)
        self.on_inlet = np.zeros(max_particles, dtype=np.bool_)
        self.reflected_open = np.zeros(max_particles, dtype=np.bool_)
        self.orig_id = np.full(max_particles, -1, dtype=np.int64)
        self.active = np.zeros(max_particles, dtype=np.bool_)

    def field_names(self):
        return self._VECTOR_FIELDS + self._SCALAR_FIELDS + ("phi",)

    def _grow(self, required):
        """Double the capacity until ``required`` slots fit."""
        new_max = max(2 * self.max_particles, required, 16)
        for name in self.field_names():
            old = getattr(self, name)
            new = np.zeros((new_max,) + old.shape[1:], dtype=old.dtype)
            new[:self.max_particles] = old
            setattr(self, name, new)
        self.cell[self.max_particles:] = -1
        self.eta[self.max_particles:] = 1.0
        self.orig_id[self.max_particles:] = -1
        self.max_particles = new_max

    def add_particles(self, x, cell, m, u, phi=None, shift=None, ghost=0):
        """
        Add particles to the array.

        UParticle is copied to u_tracking; u_correction, omega, step
        fraction and the flags start from zero, eta from one.

        Args:
            x: Positions, shape (n, 3) or (3,) [m]
            cell: Host cell(s)
            m: Mass(es) [kg]
            u: Velocities, shape (n, 3) or (3,) [m/s]
            phi: Compositions, shape (n, n_scalars) or (n_scalars,)
            shift: Geometric shift(s) [m]
            ghost: Ghost level(s)

        Returns:
            indices: Array indices of added particles
        """
        x = np.atleast_2d(np.asarray(x, dtype=np.float64))
        n_add = x.shape[0]
        if n_add == 0:
            return np.zeros(0, dtype=np.int64)

        m = np.broadcast_to(np.asarray(m, dtype=np.float64), (n_add,))
        if np.any(m <= 0.0):
            raise ValueError("Particle masses must be positive")

        if self.n_particles + n_add > self.max_particles:
            self._grow(self.n_particles + n_add)

        start_idx = self.n_particles
        end_idx = start_idx + n_add
        sl = slice(start_idx, end_idx)

        self.x[sl] = x
        self.cell[sl] = cell
        self.step_fraction[sl] = 0.0
        self.m[sl] = m
        if phi is None:
            self.phi[sl] = 0.0
        else:
            self.phi[sl] = phi
        self.u[sl] = u
        self.u_correction[sl] = 0.0
        self.u_tracking[sl] = self.u[sl]
        self.omega[sl] = 0.0
        self.rho[sl] = 0.0
        self.eta[sl] = 1.0
        self.shift[sl] = 0.0 if shift is None else shift
        self.ghost[sl] = ghost
        self.co[sl] = 0.0
        self.n_steps[sl] = 0
        self.on_inlet[sl] = False
        self.reflected_open[sl] = False
        self.orig_id[sl] = np.arange(self.n_created, self.n_created + n_add)
        self.active[sl] = True

        self.n_particles = end_idx
        self.n_created += n_add

        return np.arange(start_idx, end_idx)

    def clone(self, indices):
        """
        Append exact copies of ``indices`` with fresh ids.

        Returns:
            indices: Array indices of the copies
        """
        indices = np.asarray(indices, dtype=np.int64)
        n_add = len(indices)
        if self.n_particles + n_add > self.max_particles:
            self._grow(self.n_particles + n_add)
        sl = slice(self.n_particles, self.n_particles + n_add)
        for name in self.field_names():
            arr = getattr(self, name)
            arr[sl] = arr[indices]
        self.orig_id[sl] = np.arange(self.n_created, self.n_created + n_add)
        self.n_particles += n_add
        self.n_created += n_add
        return np.arange(sl.start, sl.stop)

    def deactivate(self, i):
        self.active[i] = False

    def remove_inactive(self):
        """
        Compact array by removing inactive particles.

        Indices of surviving particles change; ids (orig_id) do not.
        """
        if self.n_particles == 0:
            return

        active_mask = self.active[:self.n_particles].copy()
        n_active = int(np.sum(active_mask))

        if n_active == self.n_particles:
            return

        for name in self.field_names():
            arr = getattr(self, name)
            arr[:n_active] = arr[:self.n_particles][active_mask]
        self.active[n_active:self.n_particles] = False

        self.n_particles = n_active

    # ==================== SELECTIONS ====================

    def live_mask(self):
        """Active, non-ghost particles."""
        n = self.n_particles
        return self.active[:n] & (self.ghost[:n] == 0)

    def live_indices(self):
        return np.flatnonzero(self.live_mask())

    def ghost_indices(self):
        n = self.n_particles
        return np.flatnonzero(self.active[:n] & (self.ghost[:n] > 0))

    def count_live(self):
        return int(np.sum(self.live_mask()))

    # ==================== RECORDS ====================

    def extract(self, i):
        """Copy of particle ``i`` as a plain record (dict of values)."""
        record = {}
        for name in self.field_names():
            value = getattr(self, name)[i]
            record[name] = value.copy() if isinstance(value, np.ndarray) else value.item()
        return record

    def insert(self, record):
        """
        Append a particle record produced by ``extract``.

        The stable id of the record is kept.

        Returns:
            index: Array index of the inserted particle
        """
        if self.n_particles + 1 > self.max_particles:
            self._grow(self.n_particles + 1)
        i = self.n_particles
        for name in self.field_names():
            getattr(self, name)[i] = record[name]
        self.active[i] = True
        self.n_particles += 1
        return i

    # ==================== TRANSFORMS ====================

    def transform_properties(self, i, tensor):
        """
        Rotate/reflect the velocity vectors of particle ``i``.

        Only the velocity samples are transformed; position is left to
        the caller.
        """
        self.u[i] = tensor @ self.u[i]
        self.u_correction[i] = tensor @ self.u_correction[i]
        self.u_tracking[i] = tensor @ self.u_tracking[i]

    # ==================== TOTALS ====================

    def total_mass(self, mask=None):
        if mask is None:
            mask = self.live_mask()
        return float(np.sum(self.m[:self.n_particles][mask]))

    def momentum(self, mask=None):
        """
        Total momentum of the selected particles.

        Returns:
            p: Momentum vector [px, py, pz] in kg m/s
        """
        if mask is None:
            mask = self.live_mask()
        n = self.n_particles
        return np.sum(self.m[:n][mask, None] * self.u[:n][mask], axis=0)

    def scalar_content(self, mask=None):
        """Mass-weighted scalar totals, shape (n_scalars,)."""
        if mask is None:
            mask = self.live_mask()
        n = self.n_particles
        return np.sum(self.m[:n][mask, None] * self.phi[:n][mask], axis=0)

    # ==================== REPORTING ====================

    def info(self, i):
        """One-line description of particle ``i``."""
        return (f"Particle Id: {self.orig_id[i]}: X = {self.x[i]}, cell = {self.cell[i]}, "
                f"m = {self.m[i]:.6e}, Ucorrection = {self.u_correction[i]}, "
                f"Utracking = {self.u_tracking[i]}, U = {self.u[i]}, Phi = {self.phi[i]}, "
                f"ghost = {self.ghost[i]}, shift = {self.shift[i]}")

    def __repr__(self):
        """String representation."""
        active_count = np.sum(self.active[:self.n_particles])
        return (f"ParticleArray(n_particles={self.n_particles}, "
                f"active={active_count}, max={self.max_particles})")

    def __len__(self):
        """Return number of particles (including inactive)."""
        return self.n_particles

    def summary(self):
        """Print summary statistics."""
        live = self.live_mask()
        print(f"\nParticle Array Summary:")
        print(f"  Total particles:  {self.n_particles}")
        print(f"  Live particles:   {np.sum(live)}")
        print(f"  Ghost particles:  {len(self.ghost_indices())}")
        print(f"  Capacity:         {self.max_particles}")

        if np.any(live):
            p = self.momentum(live)
            print(f"\n  Total mass: {self.total_mass(live):.3e} kg")
            print(f"  Momentum: [{p[0]:.3e}, {p[1]:.3e}, {p[2]:.3e}] kg·m/s")
