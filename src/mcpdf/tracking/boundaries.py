"""
Boundary Handlers per Patch Type

A handler is called by the tracker when a particle reaches a boundary face:

    handler.hit(i, patch, face) -> keep_particle

Handlers are plain objects collected in a table keyed by patch type
(``make_boundary_handlers``). The inlet handler additionally populates a
ghost layer in front of its faces before every tracking phase.
"""

import logging

import numpy as np

from ..constants import INSIDE_TOLERANCE, SMALL
from .tracker import reflection_tensor

logger = logging.getLogger(__name__)


class ReflectiveHandler:
    """Specular reflection (wall, symmetry, empty)."""

    def __init__(self, cloud):
        self.cloud = cloud

    def hit(self, i, patch, face):
        self.cloud.particles.transform_properties(
            i, reflection_tensor(self.cloud.mesh.face_normals[face])
        )
        return True


class OutletHandler:
    """Particles leave the domain; their mass is booked as outflow."""

    def __init__(self, cloud):
        self.cloud = cloud

    def hit(self, i, patch, face):
        self.cloud.mass_out += self.cloud.particles.m[i]
        return False


class PeriodicHandler:
    """Translate the particle to the matching face of the coupled patch."""

    def __init__(self, cloud):
        self.cloud = cloud

    def hit(self, i, patch, face):
        mesh = self.cloud.mesh
        partner = mesh.patch_by_name(patch.neighbour_patch)
        partner_face = partner.start + (face - patch.start)
        particles = self.cloud.particles
        particles.x[i] += patch.separation
        particles.cell[i] = mesh.owner[partner_face]
        return True


class InletHandler:
    """
    Inflow boundary with a ghost-particle layer.

    Before tracking, every inlet face seeds ghost particles uniformly in a
    layer of depth L = (max(U_n, 0) + 3 σ) dt upstream of the face,
    σ = sqrt(2k/3), at the inflow density. A ghost sits on the face with a
    shift s n (n the outward face normal) that places it s upstream.
    ``track_ghosts`` moves the layer over the step: ghosts reaching the face
    within dt enter as real particles flagged on_inlet (so they start
    tracking at a random step fraction), the others are purged after
    tracking. Particles reaching the inlet from inside are reflected.

    Inflow state per patch from ``config.inlets[patch.name]``:
        U: Mean velocity (default: owner cell FV velocity)
        k: Turbulent kinetic energy (default: owner cell FV value)
        phi: Scalar values by name (default: config.initial_scalars)
    """

    def __init__(self, cloud):
        self.cloud = cloud

    def hit(self, i, patch, face):
        particles = self.cloud.particles
        particles.transform_properties(
            i, reflection_tensor(self.cloud.mesh.face_normals[face])
        )
        particles.reflected_open[i] = True
        return True

    def inflow_state(self, patch, face):
        cloud = self.cloud
        settings = cloud.config.inlets.get(patch.name, {})
        cell = cloud.mesh.owner[face]
        U = np.asarray(settings.get("U", cloud.fields.U[cell]), dtype=np.float64)
        k = float(settings.get("k", cloud.fields.k[cell]))
        phi = cloud.config.initial_phi(settings.get("phi"))
        return U, k, phi

    def before_tracking(self, dt):
        """
        Seed the ghost layer of all inlet patches.

        Returns:
            n_ghosts: Number of ghost particles created
        """
        cloud = self.cloud
        mesh = cloud.mesh
        particles = cloud.particles
        rng = cloud.rng
        n_ghosts = 0

        for patch in mesh.patches:
            if patch.patch_type != "inlet":
                continue
            for face in patch.faces:
                cell = mesh.owner[face]
                normal = mesh.face_normals[face]
                U, k, phi = self.inflow_state(patch, face)
                sigma = np.sqrt(2.0 / 3.0 * max(k, 0.0))
                u_in = -U @ normal
                depth = (max(u_in, 0.0) + 3.0 * sigma) * dt
                if depth <= 0.0:
                    continue

                m = cloud.target_mass(cell)
                expected = cloud.fields.rho[cell] * mesh.face_area_mags[face] * depth / m
                n = int(expected) + int(rng.random() < expected - int(expected))
                if n == 0:
                    continue

                x = mesh.random_points_on_face(face, n, rng)
                mesh.constrain_position(x)
                s = depth * (1.0 - rng.random(n))
                u = U + sigma * rng.standard_normal((n, 3))
                mesh.constrain_direction(u)

                idx = particles.add_particles(x, cell, m, u, phi,
                                              shift=s[:, None] * normal, ghost=1)
                particles.rho[idx] = cloud.fields.rho[cell]
                n_ghosts += n

        return n_ghosts

    def track_ghosts(self, dt):
        """
        Move the ghost layer over one step and admit the ghosts that enter.

        A ghost at face point x with shift s n reaches the face after
        t = s / (-u.n). If t < dt it enters at x + s n + u t and becomes a
        real particle. Ghosts whose sideways drift would take them past the
        face of their cell enter at their seeding point.

        Returns:
            n_injected: Number of ghosts turned into real particles
        """
        cloud = self.cloud
        particles = cloud.particles
        ghosts = particles.ghost_indices()
        if len(ghosts) == 0:
            return 0

        shift = particles.shift[ghosts]
        depth = np.linalg.norm(shift, axis=1)
        normal = shift / np.maximum(depth, SMALL)[:, None]
        u_in = -np.einsum("ij,ij->i", particles.u[ghosts], normal)
        t_cross = np.full(len(ghosts), np.inf)
        inflow = u_in > 0.0
        t_cross[inflow] = depth[inflow] / u_in[inflow]

        crossing = t_cross < dt
        entering = ghosts[crossing]
        for i, t in zip(entering, t_cross[crossing]):
            entry = cloud.mesh.constrain_position(
                particles.x[i] + particles.shift[i] + t * particles.u[i]
            )
            if cloud.decomposition.contains(particles.cell[i], entry, INSIDE_TOLERANCE):
                particles.x[i] = entry

        particles.ghost[entering] = 0
        particles.shift[entering] = 0.0
        particles.on_inlet[entering] = True
        cloud.adjust_axisymmetric_mass(entering)
        cloud.mass_in += particles.m[entering].sum()

        if len(entering) > 0:
            logger.debug("Inlet injected %d of %d ghost particles", len(entering), len(ghosts))
        return len(entering)


_HANDLER_TYPES = {
    "wall": ReflectiveHandler,
    "symmetry": ReflectiveHandler,
    "empty": ReflectiveHandler,
    "inlet": InletHandler,
    "outlet": OutletHandler,
    "periodic": PeriodicHandler,
}


def make_boundary_handlers(cloud):
    """Handler per patch type, one instance per type and cloud."""
    return {patch_type: handler_cls(cloud) for patch_type, handler_cls in _HANDLER_TYPES.items()}
