"""
Particle Population Control

Keeps the number of live particles per cell inside the band

    clone_at * target <= count <= eliminate_at * target

Cells below the band have their heaviest particles split in two (halving
the mass, so cell mass, momentum and scalar content are unchanged). Cells
above it lose their lightest particles; the survivors are rescaled so that
the cell keeps its mass, and shifted so that it keeps its mean velocity and
mean conserved scalars. Empty cells are only reported: they are refilled by
advection or inlet injection during the next tracking phase.

The cell-to-particle index is built fresh for every control cycle.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum

import numpy as np

from .errors import PopulationControlError

logger = logging.getLogger(__name__)

# Relative tolerance of the mass-conservation checks
CONSERVATION_RTOL = 1.0e-12


class CellStatus(IntEnum):
    """Population status of a cell, derived each control cycle."""

    EMPTY = 0
    NORMAL = 1
    TOOFEW = 2
    TOOMANY = 3


def classify_cells(counts, target, clone_at, eliminate_at):
    """
    Population status per cell.

    Args:
        counts: Live particles per cell
        target: Target particles per cell
        clone_at: Lower band limit as a fraction of target
        eliminate_at: Upper band limit as a fraction of target

    Returns:
        status: CellStatus value per cell (int8 array)
    """
    counts = np.asarray(counts)
    status = np.full(len(counts), CellStatus.NORMAL, dtype=np.int8)
    status[counts < clone_at * target] = CellStatus.TOOFEW
    status[counts > eliminate_at * target] = CellStatus.TOOMANY
    status[counts == 0] = CellStatus.EMPTY
    return status


def build_cell_index(particles, n_cells):
    """
    Live particles grouped per cell, heaviest first.

    Returns:
        order: Particle indices sorted by (cell, descending mass)
        offsets: CSR offsets, particles of cell c are order[offsets[c]:offsets[c+1]]
    """
    live = particles.live_indices()
    cells = particles.cell[live]
    order = live[np.lexsort((-particles.m[live], cells))]
    counts = np.bincount(cells, minlength=n_cells)
    offsets = np.concatenate(([0], np.cumsum(counts)))
    return order, offsets


@dataclass
class PopulationReport:
    """Outcome of one population-control cycle."""

    status: np.ndarray
    n_cloned: int = 0
    n_eliminated: int = 0
    empty_cells: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))

    def count(self, status):
        return int(np.sum(self.status == status))


class PopulationController:
    """
    Clone/eliminate driver.

    Args:
        config: PopulationControlConfig
        conserved_indices: Scalars whose cell mean is preserved on elimination
    """

    def __init__(self, config, conserved_indices=()):
        self.config = config
        self.conserved_indices = np.asarray(conserved_indices, dtype=np.int64)

    @property
    def target(self):
        return self.config.particles_per_cell

    def control(self, particles, n_cells):
        """
        Run one control cycle over all cells.

        Eliminated particles are deactivated, not compacted; clones are
        appended to ``particles``.

        Returns:
            report: PopulationReport
        """
        order, offsets = build_cell_index(particles, n_cells)
        counts = np.diff(offsets)
        status = classify_cells(
            counts, self.target, self.config.clone_at, self.config.eliminate_at
        )
        report = PopulationReport(status=status)

        for c in np.flatnonzero(status == CellStatus.TOOFEW):
            report.n_cloned += self.clone_particles(particles, order[offsets[c]:offsets[c + 1]])
        for c in np.flatnonzero(status == CellStatus.TOOMANY):
            report.n_eliminated += self.eliminate_particles(
                particles, order[offsets[c]:offsets[c + 1]]
            )

        report.empty_cells = np.flatnonzero(status == CellStatus.EMPTY)
        if len(report.empty_cells) > 0:
            logger.warning("%d empty cells after tracking", len(report.empty_cells))
        logger.debug(
            "Population control: %d cloned, %d eliminated",
            report.n_cloned, report.n_eliminated,
        )
        return report

    def clone_particles(self, particles, members):
        """
        Split particles of one cell until it holds at least ``target``.

        Args:
            particles: ParticleArray
            members: Live particles of the cell, heaviest first

        Returns:
            n_cloned: Number of particles created
        """
        members = np.asarray(members, dtype=np.int64)
        if len(members) == 0:
            raise PopulationControlError("Cannot clone particles of an empty cell")

        mass_before = particles.m[members].sum()
        n_cloned = 0
        while len(members) < self.target:
            n_split = min(len(members), self.target - len(members))
            parents = members[np.argsort(-particles.m[members], kind="stable")[:n_split]]
            particles.m[parents] *= 0.5
            children = particles.clone(parents)
            members = np.concatenate((members, children))
            n_cloned += n_split

        mass_after = particles.m[members].sum()
        if abs(mass_after - mass_before) > CONSERVATION_RTOL * mass_before:
            raise PopulationControlError(
                f"Cloning changed the cell mass from {mass_before:.16e} to {mass_after:.16e}"
            )
        return n_cloned

    def eliminate_particles(self, particles, members):
        """
        Remove the lightest particles of one cell down to ``target``.

        The survivors' masses are multiplied by m_before / m_kept, and their
        velocity and conserved scalars are shifted by the difference between
        the old and the surviving cell means.

        Args:
            particles: ParticleArray
            members: Live particles of the cell, heaviest first

        Returns:
            n_eliminated: Number of particles removed
        """
        members = np.asarray(members, dtype=np.int64)
        n_remove = len(members) - self.target
        if n_remove <= 0 or n_remove >= len(members):
            raise PopulationControlError(
                f"Cannot eliminate {n_remove} of {len(members)} particles "
                f"with target {self.target}"
            )

        members = members[np.argsort(-particles.m[members], kind="stable")]
        keep, remove = members[:self.target], members[self.target:]

        m_all = particles.m[members]
        mass_before = m_all.sum()
        mass_kept = particles.m[keep].sum()
        if mass_kept <= 0.0:
            raise PopulationControlError("Surviving particles carry no mass")

        u_mean = (m_all[:, None] * particles.u[members]).sum(axis=0) / mass_before
        u_kept = (particles.m[keep, None] * particles.u[keep]).sum(axis=0) / mass_kept
        u_shift = u_mean - u_kept
        particles.u[keep] += u_shift
        particles.u_tracking[keep] += u_shift

        idx = self.conserved_indices
        if len(idx) > 0:
            phi_mean = (m_all[:, None] * particles.phi[members][:, idx]).sum(axis=0) / mass_before
            phi_kept = (particles.m[keep, None] * particles.phi[keep][:, idx]).sum(axis=0) / mass_kept
            particles.phi[np.ix_(keep, idx)] += phi_mean - phi_kept

        particles.m[keep] *= mass_before / mass_kept
        particles.active[remove] = False

        mass_after = particles.m[keep].sum()
        if abs(mass_after - mass_before) > 1.0e3 * CONSERVATION_RTOL * mass_before:
            raise PopulationControlError(
                f"Elimination changed the cell mass from {mass_before:.16e} "
                f"to {mass_after:.16e}"
            )
        return len(remove)
