"""
Particle Trajectory Tracker

Advances one particle along its tracking velocity for a fraction of the
time step, cell by cell:

    dt   = min(t_end, max_sub_step)
    end  = constrain(x + dt * Utracking)
    tf   = fraction of the segment x -> end inside the host cell
    x   += tf * (end - x);  t_end -= tf * dt
    step_fraction = 1 - t_end / track_time

When the segment leaves the cell through a face the particle moves to the
neighbour cell (internal face), is suspended for hand-off (processor
patch), is reflected in place (wedge patch) or is passed to the boundary
handler of the patch. A particle resting on a face it moves out through
leaves at tf = 0; such zero-length face hops change the host cell only
and are not counted in n_steps. More than MAX_TRACK_STEPS sub-steps and
face hops within one evolve call drop the particle as lost.
"""

import logging
from dataclasses import dataclass

import numpy as np

from ..constants import MAX_TRACK_STEPS, SMALL

logger = logging.getLogger(__name__)


@dataclass
class TrackOutcome:
    """
    Result of one ``move`` call.

    Attributes:
        keep_particle: False if the particle left the domain or was lost
        switch_processor: True if the particle is suspended at a processor patch
        face: Last boundary or internal face crossed (-1: none)
        patch: Patch of the last boundary face hit (-1: none)
    """

    keep_particle: bool = True
    switch_processor: bool = False
    face: int = -1
    patch: int = -1


def reflection_tensor(normal):
    """Householder reflection I - 2 n n about the plane with unit ``normal``."""
    return np.eye(3) - 2.0 * np.outer(normal, normal)


def move(cloud, i, track_time, outcome=None):
    """
    Track particle ``i`` of ``cloud`` for the rest of ``track_time``.

    Tracking starts at the particle's step fraction, so a particle resumed
    after a processor hand-off only covers its remaining time budget.

    Args:
        cloud: ParticleCloud (mesh, decomposition, particles, boundary hooks)
        i: Particle index
        track_time: Full time budget of the particle for this step [s]
        outcome: TrackOutcome to fill (a new one if None)

    Returns:
        outcome: TrackOutcome
    """
    if outcome is None:
        outcome = TrackOutcome()
    outcome.keep_particle = True
    outcome.switch_processor = False

    particles = cloud.particles
    mesh = cloud.mesh
    decomposition = cloud.decomposition
    max_sub_step = cloud.config.max_sub_step

    if particles.on_inlet[i]:
        particles.step_fraction[i] = cloud.rng.random()
        particles.on_inlet[i] = False

    if track_time <= 0.0:
        particles.step_fraction[i] = 1.0
        return outcome

    t_end = (1.0 - particles.step_fraction[i]) * track_time
    n_hops = 0

    while t_end > SMALL * track_time:
        if particles.n_steps[i] + n_hops >= MAX_TRACK_STEPS:
            cloud.notify_lost_particle(i)
            outcome.keep_particle = False
            break

        dt = t_end if max_sub_step is None else min(t_end, max_sub_step)
        start = particles.x[i].copy()
        end = mesh.constrain_position(start + dt * particles.u_tracking[i])

        tf, face = decomposition.track_to_face(particles.cell[i], start, end)
        if tf > 0.0:
            particles.n_steps[i] += 1
        else:
            n_hops += 1
        particles.x[i] = start + tf * (end - start)
        dt *= tf
        t_end -= dt
        particles.step_fraction[i] = 1.0 - t_end / track_time

        logger.debug("Particle %d: cell %d, tf = %.4f, face %d, t_end = %.3e",
                     particles.orig_id[i], particles.cell[i], tf, face, t_end)

        if face < 0:
            continue
        outcome.face = face

        if mesh.is_internal_face(face):
            particles.cell[i] = mesh.other_cell(face, particles.cell[i])
            continue

        patch_id = int(mesh.face_patch[face])
        outcome.patch = patch_id
        patch_type = mesh.patches[patch_id].patch_type

        if patch_type == "processor":
            outcome.switch_processor = True
            break
        if patch_type == "wedge":
            mesh.constrain_position(particles.x[i])
            particles.transform_properties(i, reflection_tensor(mesh.face_normals[face]))
            continue

        outcome.keep_particle = cloud.hit_patch(i, patch_id, face)
        if not outcome.keep_particle:
            break

    if outcome.keep_particle and not outcome.switch_processor:
        particles.step_fraction[i] = 1.0
    return outcome
