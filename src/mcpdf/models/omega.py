"""
Turbulent Frequency Models

interpolation: ω* = ε/k of the finite-volume fields at the particle.

JayeshPope: stochastic model of Jayesh & Pope (Pope 2000, Sec. 12.5)

    dω* = -C3 (ω* - <ω>) <ω> dt - (Cω2 - Cω1) <ω> ω* dt
          + sqrt(2 C3 C4 <ω>² ω*) dW

with <ω> taken from the finite-volume fields; ω* is clipped at zero.
"""

import numpy as np

from ..constants import JP_C3, JP_C4, JP_C_OMEGA1, JP_C_OMEGA2, SMALL


class InterpolatedOmegaModel:
    """Particle frequency set to the interpolated mean ε/k."""

    def __init__(self, cloud):
        self.cloud = cloud

    def update_internals(self):
        self.omega = self.cloud.interpolator.cell_point_face(self.cloud.fields.omega)

    def correct(self, particles, i):
        value = self.omega.interpolate(particles.x[i], particles.cell[i], self.cloud.locate(i))
        particles.omega[i] = max(value, 0.0)


class JayeshPopeOmegaModel:
    """Stochastic turbulent frequency (Jayesh-Pope)."""

    def __init__(self, cloud, C3=JP_C3, C4=JP_C4, C_omega1=JP_C_OMEGA1,
                 C_omega2=JP_C_OMEGA2):
        self.cloud = cloud
        self.C3 = C3
        self.C4 = C4
        self.C_omega1 = C_omega1
        self.C_omega2 = C_omega2

    def update_internals(self):
        self.omega_mean = self.cloud.interpolator.cell_point_face(self.cloud.fields.omega)

    def correct(self, particles, i):
        cloud = self.cloud
        dt = particles.eta[i] * cloud.config.delta_t
        mean = max(self.omega_mean.interpolate(particles.x[i], particles.cell[i],
                                               cloud.locate(i)), SMALL)
        omega = particles.omega[i]
        if omega <= 0.0:
            # Fresh particle: start from the mean
            omega = mean

        d_omega = (-self.C3 * (omega - mean) * mean
                   - (self.C_omega2 - self.C_omega1) * mean * omega) * dt
        d_omega += (np.sqrt(2.0 * self.C3 * self.C4 * mean ** 2 * omega * dt)
                    * cloud.rng.standard_normal())
        particles.omega[i] = max(omega + d_omega, 0.0)
