"""
Monte Carlo PDF Particle Cloud

Owns the particle ensemble on one (sub-)domain and drives the evolve cycle:

    1. purge ghosts left from the previous cycle
    2. inlet ghost layer: seed ghosts upstream of the inlet faces, move
       them over the step and admit the ones that reach the domain
    3. Courant numbers and local time-stepping weights
    4. track every live particle; particles crossing a processor patch are
       exchanged through the transport and tracking resumes until no
       sub-domain has particles in flight
    5. purge ghosts, blend the cell moments
    6. population control
    7. physics models: update_internals() once, then correct() per particle
    8. diagnostics

The mesh, the finite-volume fields and the collaborators (transport,
elliptic solver) are injected; the cloud borrows them for its lifetime.
"""

import logging

import numpy as np

from .constants import INSIDE_TOLERANCE, SMALL
from .diagnostics import DiagnosticTracker, StepDiagnostics
from .errors import ConfigurationError, GeometryError, HandoffError, PopulationHealthError
from .field_solver import LaplacianSolver
from .interpolation import FieldInterpolator
from .mesh import courant_numbers
from .models import MODEL_KINDS, select_model
from .particles import ParticleArray
from .population import CellStatus, PopulationController
from .statistics import CellMoments
from .tetdecomp import TetDecomposition
from .tracking import TrackOutcome, make_boundary_handlers, move
from .transport import SerialTransport

logger = logging.getLogger(__name__)

_HANDOFF_KEYS = ("source_processor", "patch_face", "track_time")


class ParticleCloud:
    """
    Particle ensemble with its statistics and models.

    Args:
        mesh: PolyMesh
        fields: FlowFields (borrowed, updated by the owner between steps)
        config: CloudConfig
        transport: DomainTransport (default: SerialTransport)
        elliptic_solver: Object with solve(source, x0) and gradient(phi)
                         (default: LaplacianSolver on ``mesh``)
        rng: numpy Generator (default: seeded from config.random_seed)
        decomposition: Prebuilt TetDecomposition of ``mesh``

    Raises:
        ConfigurationError: Fields do not match the mesh
        GeometryError: The mesh has inverted tetrahedra
    """

    def __init__(self, mesh, fields, config, transport=None, elliptic_solver=None,
                 rng=None, decomposition=None):
        if fields.n_cells != mesh.n_cells:
            raise ConfigurationError(
                f"Fields have {fields.n_cells} cells, mesh has {mesh.n_cells}"
            )
        self.mesh = mesh
        self.fields = fields
        self.config = config
        self.decomposition = decomposition if decomposition is not None else TetDecomposition(mesh)
        self.interpolator = FieldInterpolator(mesh, self.decomposition)
        self.transport = transport if transport is not None else SerialTransport()
        self.elliptic_solver = (elliptic_solver if elliptic_solver is not None
                                else LaplacianSolver(mesh))
        self.rng = rng if rng is not None else np.random.default_rng(config.random_seed)

        capacity = 2 * config.population.particles_per_cell * mesh.n_cells
        self.particles = ParticleArray(max(capacity, 16), config.n_scalars)
        self.moments = CellMoments(mesh.cell_volumes, config.n_scalars)
        self.population = PopulationController(config.population, config.conserved_indices)
        self.boundary_handlers = make_boundary_handlers(self)
        self.models = {
            kind: select_model(kind, getattr(config.models, kind), self,
                               config.model_coefficients(kind))
            for kind in MODEL_KINDS
        }

        self.time = 0.0
        self.step = 0
        self.history = DiagnosticTracker()
        self.last_diagnostics = None

        # Bookkeeping, reset every step except the lost-mass fields
        self.mass_in = 0.0
        self.mass_out = 0.0
        self.n_lost = 0
        self.step_lost_mass = 0.0
        self.lost_mass = np.zeros(mesh.n_cells)
        self.lost_momentum = np.zeros(3)

        self._locations = {}
        self._resume_time = {}

        logger.info("Particle cloud on %r with %d scalars, models %s",
                    mesh, config.n_scalars, config.models)

    # ==================== PARTICLE GENERATION ====================

    def target_mass(self, cell):
        """Mass of a particle such that ``particles_per_cell`` fill ``cell``."""
        return (self.fields.rho[cell] * self.mesh.cell_volumes[cell]
                / self.config.population.particles_per_cell)

    def particle_gen_in_cell(self, cell, n, m, U, u_scales, phi=None, shift=None, ghost=0):
        """
        Create ``n`` particles uniformly distributed in ``cell``.

        Args:
            cell: Host cell
            n: Number of particles
            m: Mass per particle [kg]
            U: Mean velocity [m/s]
            u_scales: Standard deviation of the velocity, scalar or per axis [m/s]
            phi: Composition (default: config initial scalars)
            shift: Geometric shift [m]
            ghost: Ghost level

        Returns:
            indices: Indices of the new particles
        """
        if n <= 0:
            return np.zeros(0, dtype=np.int64)
        x = self.decomposition.random_points_in_cell(cell, n, self.rng)
        self.mesh.constrain_position(x)
        u = np.asarray(U, dtype=np.float64) + np.asarray(u_scales) * self.rng.standard_normal((n, 3))
        self.mesh.constrain_direction(u)
        if phi is None:
            phi = self.config.initial_phi()

        idx = self.particles.add_particles(x, cell, m, u, phi, shift=shift, ghost=ghost)
        self.particles.rho[idx] = self.fields.rho[cell]
        if ghost == 0:
            self.adjust_axisymmetric_mass(idx)
        self._update_courant(idx)
        return idx

    def initial_release(self):
        """
        Seed every cell with ``particles_per_cell`` particles.

        Velocities are Gaussian around the FV velocity with variance 2k/3 per
        axis, masses reproduce the FV density. The cell moments are computed
        from the new ensemble.

        Returns:
            n_created: Number of particles created
        """
        ppc = self.config.population.particles_per_cell
        n_before = self.particles.count_live()
        for cell in range(self.mesh.n_cells):
            sigma = np.sqrt(2.0 / 3.0 * max(self.fields.k[cell], 0.0))
            self.particle_gen_in_cell(cell, ppc, self.target_mass(cell),
                                      self.fields.U[cell], sigma)
        n_created = self.particles.count_live() - n_before
        self.update_cloud_pdf(0.0)
        logger.info("Initial release: %d particles in %d cells", n_created, self.mesh.n_cells)
        return n_created

    # ==================== AXISYMMETRIC ====================

    def _radius(self, x):
        axis = np.asarray(self.config.axisymmetric.axis)
        x = np.atleast_2d(x)
        return np.linalg.norm(x - np.outer(x @ axis, axis), axis=1)

    def mass_per_depth(self, i):
        """Particle mass per unit depth (per unit arc length in a wedge) [kg/m]."""
        m = self.particles.m[i]
        if self.config.axisymmetric is None:
            return m
        depth = self._radius(self.particles.x[i])[0] * self.config.axisymmetric.opening_angle
        return m / max(depth, SMALL)

    def adjust_axisymmetric_mass(self, indices):
        """Scale generated masses by r_particle / r_cell so a wedge cell fills uniformly."""
        if self.config.axisymmetric is None or len(indices) == 0:
            return
        p = self.particles
        r_particle = self._radius(p.x[indices])
        r_cell = self._radius(self.mesh.cell_centres[p.cell[indices]])
        p.m[indices] *= r_particle / np.maximum(r_cell, SMALL)

    # ==================== TIME STEPPING ====================

    def _update_courant(self, indices):
        p = self.particles
        co = courant_numbers(
            p.cell[indices], p.u_tracking[indices], p.active[indices], len(indices),
            self.mesh.cell_face_offsets, self.mesh.cell_face_list, self.mesh.courant_coeffs,
        )
        p.co[indices] = co

    def compute_courant_no(self):
        """Courant number (for a unit time step) of every particle."""
        n = self.particles.n_particles
        self._update_courant(np.arange(n))

    def update_local_time_steps(self):
        """Particle weights eta = clip(max_courant / (Co dt), min_eta, 1)."""
        p = self.particles
        n = p.n_particles
        if not self.config.local_time_stepping:
            p.eta[:n] = 1.0
            return
        co_dt = p.co[:n] * self.config.delta_t
        eta = np.ones(n)
        moving = co_dt > SMALL
        eta[moving] = self.config.max_courant / co_dt[moving]
        p.eta[:n] = np.clip(eta, self.config.min_eta, 1.0)

    def _exist_weight(self):
        if self.moments.n_updates == 0 or self.config.averaging_time <= 0.0:
            return 0.0
        return max(0.0, 1.0 - self.config.delta_t / self.config.averaging_time)

    # ==================== EVOLVE ====================

    def evolve(self):
        """
        Advance the ensemble by one global time step.

        Returns:
            residual: Largest relative change of the cell density

        Raises:
            SolverConvergenceError: Position-correction solve failed
            HandoffError: Invalid particle exchange
            PopulationControlError: Inconsistent population control
        """
        self.step += 1
        self.mass_in = 0.0
        self.mass_out = 0.0
        self.n_lost = 0
        self.step_lost_mass = 0.0
        mass_before = self.total_mass()
        p = self.particles

        self.purge_ghosts()
        inlet = self.boundary_handlers["inlet"]
        inlet.before_tracking(self.config.delta_t)
        inlet.track_ghosts(self.config.delta_t)
        self.compute_courant_no()
        self.update_local_time_steps()

        p.step_fraction[:p.n_particles] = 0.0
        p.n_steps[:p.n_particles] = 0
        p.reflected_open[:p.n_particles] = False
        self._track_all()
        n_reflected_open = int(np.sum(p.reflected_open[:p.n_particles] & p.live_mask()))
        self.purge_ghosts()

        rho_old = self.moments.rho.copy()
        self.update_cloud_pdf(self._exist_weight())
        report = self.particle_number_control()
        p.remove_inactive()

        self.apply_models()
        self.compute_courant_no()

        rho_new = self.moments.rho
        valid = rho_new > SMALL
        residual = (float(np.max(np.abs(rho_new[valid] - rho_old[valid]) / rho_new[valid]))
                    if np.any(valid) else 0.0)

        self.time += self.config.delta_t
        total_mass = self.total_mass()
        diag = StepDiagnostics(
            step=self.step,
            time=self.time,
            n_particles=p.count_live(),
            n_lost=self.n_lost,
            lost_mass=self.step_lost_mass,
            mass_in=self.mass_in,
            mass_out=self.mass_out,
            n_cloned=report.n_cloned,
            n_eliminated=report.n_eliminated,
            n_empty=report.count(CellStatus.EMPTY),
            n_too_few=report.count(CellStatus.TOOFEW),
            n_too_many=report.count(CellStatus.TOOMANY),
            n_reflected_open=n_reflected_open,
            total_mass=total_mass,
            mass_change=total_mass - mass_before,
            residual=residual,
        )
        self.history.record(diag)
        self.last_diagnostics = diag

        logger.info(
            "Step %d (t = %.4e s): %d particles, in %.3e kg, out %.3e kg, "
            "lost %d, cloned %d, eliminated %d, residual %.3e",
            self.step, self.time, diag.n_particles, self.mass_in, self.mass_out,
            self.n_lost, report.n_cloned, report.n_eliminated, residual,
        )
        return residual

    def _track_time(self, i):
        return self._resume_time.pop(i, self.particles.eta[i] * self.config.delta_t)

    def _track_all(self):
        """Tracking phase with exchange rounds until no particle is in flight."""
        p = self.particles
        outcome = TrackOutcome()
        pending = p.live_indices()
        self._resume_time = {}

        while True:
            outbound = {}
            for i in pending:
                if not p.active[i]:
                    continue
                track_time = self._track_time(i)
                move(self, i, track_time, outcome)
                if not outcome.keep_particle:
                    p.active[i] = False
                elif outcome.switch_processor:
                    patch = self.mesh.patches[outcome.patch]
                    record = p.extract(i)
                    record["source_processor"] = self.transport.rank
                    record["patch_face"] = outcome.face - patch.start
                    record["track_time"] = track_time
                    outbound.setdefault(patch.neighbour_processor, []).append(record)
                    p.active[i] = False

            inbound = self.transport.exchange(outbound)
            pending = self.receive_particles(inbound)
            if not self.transport.any_active(len(pending) > 0):
                break

    def receive_particles(self, records):
        """
        Insert particles handed over by neighbouring sub-domains.

        Each particle is placed in the cell behind the matching face of the
        processor patch towards its source and keeps its step fraction.

        Returns:
            indices: Indices of the inserted particles (to resume tracking)

        Raises:
            HandoffError: Malformed or out-of-range record
        """
        indices = []
        for record in records:
            required = _HANDOFF_KEYS + self.particles.field_names()
            missing = [key for key in required if key not in record]
            if missing:
                raise HandoffError(f"Particle record lacks {missing}")
            try:
                patch = self.mesh.processor_patch(record["source_processor"])
            except GeometryError as exc:
                raise HandoffError(str(exc)) from exc
            local = record["patch_face"]
            if not 0 <= local < patch.size:
                raise HandoffError(
                    f"Face {local} out of range for processor patch '{patch.name}' "
                    f"({patch.size} faces)"
                )
            if not np.all(np.isfinite(record["x"])) or not np.all(np.isfinite(record["u"])):
                raise HandoffError("Particle record with non-finite state")
            if not record["m"] > 0.0:
                raise HandoffError(f"Particle record with mass {record['m']}")
            if np.shape(record["phi"]) != (self.config.n_scalars,):
                raise HandoffError(
                    f"Particle record with {np.shape(record['phi'])} scalars, "
                    f"expected {self.config.n_scalars}"
                )

            i = self.particles.insert(record)
            self.particles.cell[i] = self.mesh.owner[patch.start + local]
            self._resume_time[i] = record["track_time"]
            indices.append(i)
        return np.array(indices, dtype=np.int64)

    def hit_patch(self, i, patch_id, face):
        """Dispatch particle ``i`` hitting boundary ``face`` to its patch handler."""
        patch = self.mesh.patches[patch_id]
        handler = self.boundary_handlers.get(patch.patch_type)
        if handler is None:
            raise GeometryError(f"No boundary handler for patch type '{patch.patch_type}'")
        return handler.hit(i, patch, face)

    def notify_lost_particle(self, i):
        """Book particle ``i`` as lost (dropped by the tracking step limit)."""
        p = self.particles
        m = p.m[i]
        self.lost_mass[p.cell[i]] += m
        self.lost_momentum += m * p.u[i]
        self.step_lost_mass += m
        self.n_lost += 1
        logger.warning("Lost particle after %d sub-steps: %s", p.n_steps[i], p.info(i))

    def purge_ghosts(self):
        p = self.particles
        p.active[p.ghost_indices()] = False
        p.remove_inactive()

    # ==================== STATISTICS AND MODELS ====================

    def update_cloud_pdf(self, exist_wt):
        """Blend the cell moments with weight ``exist_wt`` on the old values."""
        self.moments.update(self.particles, exist_wt)

    def particle_number_control(self):
        return self.population.control(self.particles, self.mesh.n_cells)

    def locate(self, i):
        """Containing tet and barycentric weights of particle ``i`` (cached per cycle)."""
        if i not in self._locations:
            p = self.particles
            self._locations[i] = self.decomposition.find_tet(p.cell[i], p.x[i])
        return self._locations[i]

    def apply_models(self):
        """Run every physics model over the live particles."""
        p = self.particles
        self._locations = {}
        models = [self.models[kind] for kind in MODEL_KINDS]
        for model in models:
            model.update_internals()
        for i in p.live_indices():
            for model in models:
                model.correct(p, i)
            p.u_tracking[i] = self.mesh.constrain_direction(p.u[i] + p.u_correction[i])
        self._locations = {}

    # ==================== HEALTH ====================

    def assert_population_health(self):
        """
        Check the invariants of the ensemble.

        Every active particle must be a real particle inside its host cell,
        with a valid cell index and a geometric shift below ``max_shift``.

        Raises:
            PopulationHealthError: First violated invariant
        """
        p = self.particles
        n = p.n_particles
        active = np.flatnonzero(p.active[:n])

        ghosts = active[p.ghost[active] > 0]
        if len(ghosts) > 0:
            raise PopulationHealthError(f"{len(ghosts)} ghost particles in the live set")

        bad_cell = active[(p.cell[active] < 0) | (p.cell[active] >= self.mesh.n_cells)]
        if len(bad_cell) > 0:
            raise PopulationHealthError(f"Particle outside the mesh: {p.info(bad_cell[0])}")

        shifts = np.linalg.norm(p.shift[active], axis=1)
        shifted = active[shifts > self.config.max_shift]
        if len(shifted) > 0:
            raise PopulationHealthError(f"Particle with excessive shift: {p.info(shifted[0])}")

        for i in active:
            if not self.decomposition.contains(p.cell[i], p.x[i], INSIDE_TOLERANCE):
                raise PopulationHealthError(f"Particle outside its cell: {p.info(i)}")
        return True

    # ==================== MEAN FIELDS ====================

    def total_mass(self):
        return self.particles.total_mass()

    @property
    def rho_pdf(self):
        return self.moments.rho

    @property
    def rho_pdf_inst(self):
        return self.moments.rho_inst

    @property
    def pnd_pdf(self):
        return self.moments.pnd

    @property
    def pnd_pdf_inst(self):
        return self.moments.pnd_inst

    @property
    def U_pdf(self):
        return self.moments.U

    @property
    def tau_pdf(self):
        return self.moments.tau

    @property
    def k_pdf(self):
        return self.moments.k

    @property
    def phi_pdf(self):
        return self.moments.phi

    @property
    def phiphi_pdf(self):
        return self.moments.phiphi

    # ==================== REPORTING ====================

    def info(self):
        p = self.particles
        return (f"ParticleCloud: step {self.step}, t = {self.time:.4e} s, "
                f"{p.count_live()} particles, mass {self.total_mass():.4e} kg, "
                f"lost mass {self.lost_mass.sum():.4e} kg")

    def __repr__(self):
        return (f"ParticleCloud(n_cells={self.mesh.n_cells}, "
                f"n_particles={self.particles.count_live()}, step={self.step})")

    def summary(self):
        """Print summary statistics."""
        print("\n" + "="*70)
        print("PARTICLE CLOUD SUMMARY")
        print("="*70)
        print(f"  {self.info()}")
        counts = np.bincount(self.particles.cell[self.particles.live_indices()],
                             minlength=self.mesh.n_cells)
        print(f"  Particles per cell: min {counts.min()}, mean {counts.mean():.1f}, "
              f"max {counts.max()}")
        print(f"  Lost momentum: {self.lost_momentum}")
        print("="*70 + "\n")
        self.history.summary()
