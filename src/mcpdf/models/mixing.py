"""
IEM (Interaction by Exchange with the Mean) mixing model.

    φ* <- <φ> + (φ* - <φ>) exp(-Cφ/2 ω dt)

applied to the mixed scalars, with <φ> the cell mean of the particle
ensemble and ω the particle frequency (the mean ε/k while the particle
has none).
"""

import numpy as np

from ..constants import IEM_C_PHI


class IEMMixingModel:

    def __init__(self, cloud, C_phi=IEM_C_PHI):
        self.cloud = cloud
        self.C_phi = C_phi
        self.indices = cloud.config.mixed_indices

    def update_internals(self):
        self.phi_mean = self.cloud.moments.phi
        self.omega_fv = self.cloud.fields.omega

    def correct(self, particles, i):
        if len(self.indices) == 0:
            return
        cell = particles.cell[i]
        omega = particles.omega[i]
        if omega <= 0.0:
            omega = self.omega_fv[cell]
        dt = particles.eta[i] * self.cloud.config.delta_t
        decay = np.exp(-0.5 * self.C_phi * omega * dt)
        mean = self.phi_mean[cell, self.indices]
        particles.phi[i, self.indices] = mean + (particles.phi[i, self.indices] - mean) * decay
