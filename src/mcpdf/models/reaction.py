"""
Single-step first-order reaction  R -> s P  with rate constant k:

    Y_R <- Y_R exp(-k dt),    Y_P += s (Y_R,old - Y_R,new)
"""

import numpy as np

from ..errors import ConfigurationError


class FirstOrderReactionModel:
    """
    Args:
        cloud: ParticleCloud
        reactant: Name of the consumed scalar
        product: Name of the produced scalar (None: no product tracked)
        rate: Rate constant [1/s]
        stoichiometry: Product mass per unit reactant mass
    """

    def __init__(self, cloud, reactant, rate, product=None, stoichiometry=1.0):
        if rate < 0.0:
            raise ConfigurationError(f"Reaction rate must be >= 0, got {rate}")
        self.cloud = cloud
        self.reactant = cloud.config.scalar_index(reactant)
        self.product = None if product is None else cloud.config.scalar_index(product)
        self.rate = rate
        self.stoichiometry = stoichiometry

    def update_internals(self):
        pass

    def correct(self, particles, i):
        dt = particles.eta[i] * self.cloud.config.delta_t
        old = particles.phi[i, self.reactant]
        new = old * np.exp(-self.rate * dt)
        particles.phi[i, self.reactant] = new
        if self.product is not None:
            particles.phi[i, self.product] += self.stoichiometry * (old - new)
