"""
Domain-Decomposition Transport

Particles that cross a processor patch are suspended by the tracker and
handed to a transport during the exchange phase of ``ParticleCloud.evolve``.
A transport moves plain particle records (dicts from
``ParticleArray.extract``) between sub-domains. ``exchange`` is a full
barrier: every sub-domain sends before any of them resumes tracking.

Each outbound record carries, besides the particle state:
    source_processor: Rank the particle leaves
    patch_face: Local index of the crossed face within its processor patch
    track_time: Time budget of the interrupted track [s]
"""

from .errors import HandoffError


class DomainTransport:
    """Interface of the particle exchange between sub-domains."""

    rank = 0

    def exchange(self, outbound):
        """
        Send and receive particle records.

        Args:
            outbound: Mapping neighbour rank -> list of records

        Returns:
            inbound: List of records delivered to this rank, in any order
        """
        raise NotImplementedError

    def any_active(self, local_active):
        """Whether any sub-domain still has particles in flight."""
        raise NotImplementedError


class SerialTransport(DomainTransport):
    """Single-domain transport: there is nobody to send particles to."""

    def exchange(self, outbound):
        n_out = sum(len(records) for records in outbound.values())
        if n_out > 0:
            raise HandoffError(
                f"{n_out} particles crossed a processor patch in a serial run "
                f"(ranks {sorted(outbound)})"
            )
        return []

    def any_active(self, local_active):
        return bool(local_active)
