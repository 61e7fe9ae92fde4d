"""
Integrated Position Correction

Particle methods drift away from the consistency condition that the
particle mass density equals the finite-volume density. Once per cycle a
correction potential is solved from

    ∇²p_c = -(pnd / <ρ> - 1) / Δt²

using the instantaneous particle mass density pnd. Its negative gradient,
integrated over the step, accumulates into the cell correction velocity

    U_c <- U_c - Δt ∇p_c

which is interpolated to every particle as Ucorrection. The tracker
advects particles with Utracking = UParticle + Ucorrection, so clusters
are pushed apart and voids refilled.

The integration assumes a particle keeps its history between cycles. A
particle reflected at a wall reverses its velocity but not the integrated
correction it sampled, so the scheme is only first-order accurate for
such particles. This is accepted; a consistent treatment would need the
correction history to be reflected as well.
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)


class IntegratedPositionCorrection:
    """
    Args:
        cloud: ParticleCloud (its elliptic_solver provides solve/gradient)
    """

    def __init__(self, cloud):
        self.cloud = cloud
        self.U_correction = np.zeros((cloud.mesh.n_cells, 3))
        self.p_correction = None

    def update_internals(self):
        cloud = self.cloud
        dt = cloud.config.delta_t
        solver = cloud.elliptic_solver

        density_ratio = cloud.moments.pnd_inst / cloud.fields.rho
        source = -(density_ratio - 1.0) / dt ** 2
        self.p_correction = solver.solve(source, x0=self.p_correction)

        self.U_correction -= dt * solver.gradient(self.p_correction)
        cloud.mesh.constrain_direction(self.U_correction)
        self.interpolant = cloud.interpolator.cell_point_face(self.U_correction)
        logger.debug(
            "Position correction: max |pnd/rho - 1| = %.3e",
            np.abs(density_ratio - 1.0).max(),
        )

    def correct(self, particles, i):
        value = self.interpolant.interpolate(particles.x[i], particles.cell[i],
                                             self.cloud.locate(i))
        particles.u_correction[i] = self.cloud.mesh.constrain_direction(value)
