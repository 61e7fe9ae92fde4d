"""
Tests for the particle trajectory tracker.
"""

import numpy as np

from mcpdf.config import CloudConfig, ModelSelection
from mcpdf.fields import FlowFields
from mcpdf.mesh import box_mesh
from mcpdf.cloud import ParticleCloud
from mcpdf.tracking import TrackOutcome, move, reflection_tensor

NO_MODELS = ModelSelection(velocity="none", omega="none", mixing="none",
                           reaction="none", position_correction="none")


def make_cloud(mesh, delta_t=0.5, **kwargs):
    """Cloud without physics models, for pure tracking tests."""
    config = CloudConfig(delta_t=delta_t, models=NO_MODELS, random_seed=1, **kwargs)
    return ParticleCloud(mesh, FlowFields.uniform(mesh), config)


def add_particle(cloud, x, u, cell=0, m=1.0):
    return int(cloud.particles.add_particles(x, cell, m, u)[0])


class TestReflectionTensor:
    """Test Householder reflection."""

    def test_reflects_normal_component(self):
        T = reflection_tensor(np.array([0.0, 1.0, 0.0]))
        np.testing.assert_allclose(T @ [1.0, 2.0, 3.0], [1.0, -2.0, 3.0])

    def test_is_involution(self):
        n = np.array([1.0, 1.0, 0.0]) / np.sqrt(2.0)
        T = reflection_tensor(n)
        np.testing.assert_allclose(T @ T, np.eye(3), atol=1e-15)


class TestMove:
    """Test single-particle tracking in a unit cube."""

    def test_free_flight_to_face(self):
        """Particle coming to rest exactly on a face stays in the cell."""
        cloud = make_cloud(box_mesh())
        i = add_particle(cloud, [0.5, 0.5, 0.5], [1.0, 0.0, 0.0])

        outcome = move(cloud, i, 0.5)

        p = cloud.particles
        assert outcome.keep_particle
        assert outcome.face == -1
        np.testing.assert_allclose(p.x[i], [1.0, 0.5, 0.5])
        assert p.step_fraction[i] == 1.0
        assert p.n_steps[i] == 1
        assert p.cell[i] == 0

    def test_wall_reflection(self):
        """Particle bounces off the wall and travels back."""
        mesh = box_mesh()
        cloud = make_cloud(mesh)
        i = add_particle(cloud, [0.75, 0.5, 0.5], [1.0, 0.0, 0.0])

        outcome = move(cloud, i, 0.5)

        p = cloud.particles
        assert outcome.keep_particle
        assert outcome.patch == mesh.patch_id("xmax")
        np.testing.assert_allclose(p.x[i], [0.75, 0.5, 0.5], atol=1e-14)
        np.testing.assert_allclose(p.u[i], [-1.0, 0.0, 0.0])
        np.testing.assert_allclose(p.u_tracking[i], [-1.0, 0.0, 0.0])
        assert p.n_steps[i] == 2

    def test_crosses_internal_face(self):
        cloud = make_cloud(box_mesh(n_cells=(2, 1, 1), lengths=(2.0, 1.0, 1.0)))
        i = add_particle(cloud, [0.5, 0.3, 0.6], [1.0, 0.0, 0.0])

        move(cloud, i, 1.0)

        p = cloud.particles
        assert p.cell[i] == 1
        np.testing.assert_allclose(p.x[i], [1.5, 0.3, 0.6], atol=1e-14)

    def test_periodic_wrap(self):
        mesh = box_mesh(patch_types={"xmin": "periodic", "xmax": "periodic"})
        cloud = make_cloud(mesh)
        i = add_particle(cloud, [0.75, 0.5, 0.5], [1.0, 0.0, 0.0])

        outcome = move(cloud, i, 0.5)

        p = cloud.particles
        assert outcome.keep_particle
        assert p.cell[i] == 0
        np.testing.assert_allclose(p.x[i], [0.25, 0.5, 0.5], atol=1e-14)
        np.testing.assert_allclose(p.u[i], [1.0, 0.0, 0.0])

    def test_outlet_removes_particle(self):
        mesh = box_mesh(patch_types={"xmax": "outlet"})
        cloud = make_cloud(mesh)
        i = add_particle(cloud, [0.75, 0.5, 0.5], [1.0, 0.0, 0.0], m=2.5)

        outcome = move(cloud, i, 0.5)

        assert not outcome.keep_particle
        assert cloud.mass_out == 2.5

    def test_processor_patch_suspends(self):
        """Crossing a processor patch stops tracking at the crossing fraction."""
        mesh = box_mesh(patch_types={"xmax": "processor"}, processor_neighbours={"xmax": 1})
        cloud = make_cloud(mesh)
        i = add_particle(cloud, [0.5, 0.5, 0.5], [1.0, 0.0, 0.0])

        outcome = move(cloud, i, 1.0)

        p = cloud.particles
        assert outcome.keep_particle
        assert outcome.switch_processor
        assert mesh.patches[outcome.patch].name == "xmax"
        assert np.isclose(p.step_fraction[i], 0.5)
        np.testing.assert_allclose(p.x[i], [1.0, 0.5, 0.5])

    def test_resume_from_step_fraction(self):
        """Only the remaining time budget is tracked."""
        cloud = make_cloud(box_mesh())
        i = add_particle(cloud, [0.25, 0.5, 0.5], [1.0, 0.0, 0.0])
        cloud.particles.step_fraction[i] = 0.5

        move(cloud, i, 0.5)

        np.testing.assert_allclose(cloud.particles.x[i], [0.5, 0.5, 0.5])

    def test_zero_track_time(self):
        cloud = make_cloud(box_mesh())
        i = add_particle(cloud, [0.25, 0.5, 0.5], [1.0, 0.0, 0.0])

        move(cloud, i, 0.0)

        p = cloud.particles
        assert p.step_fraction[i] == 1.0
        np.testing.assert_allclose(p.x[i], [0.25, 0.5, 0.5])

    def test_sub_step_limit_loses_particle(self):
        """Too many sub-steps drop the particle and book its mass."""
        cloud = make_cloud(box_mesh(), max_sub_step=1.0e-4)
        i = add_particle(cloud, [0.5, 0.5, 0.5], [0.0, 0.0, 0.0], m=3.0)

        outcome = move(cloud, i, 0.5)

        assert not outcome.keep_particle
        assert cloud.n_lost == 1
        assert cloud.step_lost_mass == 3.0
        assert cloud.lost_mass[0] == 3.0

    def test_sub_steps_within_limit(self):
        cloud = make_cloud(box_mesh(), max_sub_step=0.1)
        i = add_particle(cloud, [0.2, 0.5, 0.5], [1.0, 0.0, 0.0])

        outcome = move(cloud, i, 0.5)

        p = cloud.particles
        assert outcome.keep_particle
        assert p.n_steps[i] == 5
        np.testing.assert_allclose(p.x[i], [0.7, 0.5, 0.5], atol=1e-12)

    def test_on_inlet_starts_at_random_fraction(self):
        cloud = make_cloud(box_mesh())
        i = add_particle(cloud, [0.1, 0.5, 0.5], [0.5, 0.0, 0.0])
        cloud.particles.on_inlet[i] = True

        move(cloud, i, 1.0)

        p = cloud.particles
        assert not p.on_inlet[i]
        assert p.step_fraction[i] == 1.0
        assert 0.1 <= p.x[i, 0] <= 0.6

    def test_constrained_direction(self):
        """Motion along an empty direction is removed."""
        mesh = box_mesh(patch_types={"zmin": "empty", "zmax": "empty"})
        cloud = make_cloud(mesh)
        i = add_particle(cloud, [0.5, 0.5, 0.5], [0.2, 0.0, 0.7])

        move(cloud, i, 1.0)

        np.testing.assert_allclose(cloud.particles.x[i], [0.7, 0.5, 0.5], atol=1e-14)

    def test_wedge_reflection(self):
        """Swirl motion reaches the wedge face and is reflected there."""
        mesh = box_mesh(patch_types={"zmin": "wedge", "zmax": "wedge"})
        cloud = make_cloud(mesh)
        i = add_particle(cloud, [0.5, 0.5, 0.5], [0.4, 0.0, 2.0])

        outcome = move(cloud, i, 0.4)

        p = cloud.particles
        assert outcome.keep_particle
        assert outcome.patch == mesh.patch_id("zmax")
        assert outcome.face == mesh.patch_by_name("zmax").start
        np.testing.assert_allclose(p.x[i], [0.66, 0.5, 0.7], atol=1e-12)
        np.testing.assert_allclose(p.u[i], [0.4, 0.0, -2.0])
        np.testing.assert_allclose(p.u_tracking[i], [0.4, 0.0, -2.0])
        assert p.n_steps[i] == 2

    def test_face_hop_is_not_a_sub_step(self):
        """A particle resting on an internal face hops cells without a sub-step."""
        mesh = box_mesh(n_cells=(2, 1, 1), lengths=(2.0, 1.0, 1.0))
        cloud = make_cloud(mesh)
        i = add_particle(cloud, [1.0, 0.3, 0.6], [1.0, 0.0, 0.0])

        outcome = move(cloud, i, 0.5)

        p = cloud.particles
        assert outcome.keep_particle
        assert mesh.is_internal_face(outcome.face)
        assert p.cell[i] == 1
        np.testing.assert_allclose(p.x[i], [1.5, 0.3, 0.6], atol=1e-14)
        assert p.step_fraction[i] == 1.0
        assert p.n_steps[i] == 1

    def test_outcome_reused(self):
        cloud = make_cloud(box_mesh())
        i = add_particle(cloud, [0.5, 0.5, 0.5], [0.1, 0.0, 0.0])
        outcome = TrackOutcome(keep_particle=False, switch_processor=True)

        result = move(cloud, i, 1.0, outcome)

        assert result is outcome
        assert outcome.keep_particle
        assert not outcome.switch_processor
