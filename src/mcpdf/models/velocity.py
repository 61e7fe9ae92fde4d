"""
Simplified Langevin Model (SLM) for the particle velocity.

    dU* = -∇<p>/<ρ> dt + (U_fv - <U*>)/τ_U dt
          - (C1/2 + 3/4 C0) ω (U* - <U*>) dt + sqrt(C0 ε) dW

with ω = ε/k. The second term pulls the particle mean velocity toward the
finite-volume velocity, and after the SDE step the fluctuation is rescaled
toward the finite-volume TKE over the relaxation time τ_k:

    u' <- u' (k_fv / k_pdf)^(min(dt/τ_k, 1) / 2)

All fields are interpolated to the exact particle position.

Reference:
    Jenny et al. (2001), "A Hybrid Algorithm for the Joint PDF Equation of
    Turbulent Reactive Flows", JCP 166, 218-252.
"""

import numpy as np

from ..constants import SLM_C0, SLM_C1, SMALL


class SLMVelocityModel:
    """
    SLM velocity model.

    Args:
        cloud: ParticleCloud
        C0: Kolmogorov constant of the SLM
        C1: Dissipation switch (1: physical, 0: no dissipation; testing only)
        tau_U: Relaxation time of the mean velocity [s]
        tau_k: Relaxation time of the TKE [s]
    """

    def __init__(self, cloud, C0=SLM_C0, C1=SLM_C1, tau_U=None, tau_k=None):
        self.cloud = cloud
        self.C0 = C0
        self.C1 = C1
        default_tau = max(cloud.config.averaging_time, cloud.config.delta_t)
        self.tau_U = default_tau if tau_U is None else tau_U
        self.tau_k = default_tau if tau_k is None else tau_k

    def update_internals(self):
        cloud = self.cloud
        interp = cloud.interpolator
        fields = cloud.fields
        U_pdf = cloud.moments.U

        self.grad_p = interp.gradient(fields.p)
        self.k = interp.cell_point_face(fields.k)
        self.epsilon = interp.cell_point_face(fields.epsilon)
        self.rho = interp.cell_point_face(fields.rho)
        self.U_pdf = interp.cell_point_face(U_pdf)
        self.diff_U = interp.cell_point_face(fields.U - U_pdf)
        self.k_pdf = interp.cell_point_face(cloud.moments.k)

    def correct(self, particles, i):
        cloud = self.cloud
        x = particles.x[i]
        cell = particles.cell[i]
        loc = cloud.locate(i)
        dt = particles.eta[i] * cloud.config.delta_t

        grad_p = self.grad_p.interpolate(x, cell, loc)
        k = max(self.k.interpolate(x, cell, loc), SMALL)
        eps = max(self.epsilon.interpolate(x, cell, loc), 0.0)
        rho = self.rho.interpolate(x, cell, loc)
        U_pdf = self.U_pdf.interpolate(x, cell, loc)
        diff_U = self.diff_U.interpolate(x, cell, loc)

        u = particles.u[i]
        drift = (-grad_p / rho + diff_U / self.tau_U) * dt
        drift -= (0.5 * self.C1 + 0.75 * self.C0) * (eps / k) * (u - U_pdf) * dt
        diffusion = np.sqrt(self.C0 * eps * dt) * cloud.rng.standard_normal(3)
        u = u + drift + diffusion

        k_pdf = self.k_pdf.interpolate(x, cell, loc)
        if k_pdf > SMALL:
            exponent = 0.5 * min(dt / self.tau_k, 1.0)
            u = U_pdf + (u - U_pdf) * (k / k_pdf) ** exponent

        particles.u[i] = cloud.mesh.constrain_direction(u)
        particles.rho[i] = rho
