"""
Unit tests for particle data structures
"""

import pytest
import numpy as np

from mcpdf.particles import ParticleArray


class TestParticleArray:
    """Test ParticleArray class."""

    def test_initialization(self):
        """Test particle array initialization."""
        particles = ParticleArray(max_particles=1000, n_scalars=2)

        assert particles.max_particles == 1000
        assert particles.n_particles == 0
        assert particles.x.shape == (1000, 3)
        assert particles.u.shape == (1000, 3)
        assert particles.phi.shape == (1000, 2)
        assert np.all(particles.eta == 1.0)
        assert not np.any(particles.active)

    def test_add_particles_single(self):
        """Test adding a single particle."""
        particles = ParticleArray(100, n_scalars=1)

        indices = particles.add_particles(
            x=[0.1, 0.2, 0.3], cell=4, m=2.0, u=[1.0, 0.0, 0.0], phi=[0.7]
        )

        assert particles.n_particles == 1
        assert len(indices) == 1
        np.testing.assert_array_almost_equal(particles.x[0], [0.1, 0.2, 0.3])
        np.testing.assert_array_almost_equal(particles.u_tracking[0], [1.0, 0.0, 0.0])
        assert particles.cell[0] == 4
        assert particles.phi[0, 0] == 0.7
        assert particles.orig_id[0] == 0
        assert particles.active[0]

    def test_add_particles_multiple(self):
        """Test adding multiple particles."""
        particles = ParticleArray(100)
        rng = np.random.default_rng(0)
        x = rng.random((50, 3))
        u = rng.random((50, 3))

        indices = particles.add_particles(x, cell=0, m=0.5, u=u)

        assert particles.n_particles == 50
        np.testing.assert_array_equal(indices, np.arange(50))
        np.testing.assert_array_almost_equal(particles.x[:50], x)
        assert np.all(particles.m[:50] == 0.5)
        np.testing.assert_array_equal(particles.orig_id[:50], np.arange(50))

    def test_capacity_grows(self):
        """Adding beyond capacity grows the arrays."""
        particles = ParticleArray(10, n_scalars=1)
        particles.add_particles(np.zeros((5, 3)), 0, 1.0, np.zeros((5, 3)))
        particles.add_particles(np.ones((10, 3)), 1, 1.0, np.zeros((10, 3)))

        assert particles.n_particles == 15
        assert particles.max_particles >= 15
        assert particles.phi.shape[1] == 1
        np.testing.assert_array_equal(particles.cell[:15], [0] * 5 + [1] * 10)
        assert np.all(particles.eta[:particles.max_particles] == 1.0)

    def test_nonpositive_mass_rejected(self):
        particles = ParticleArray(10)
        with pytest.raises(ValueError, match="must be positive"):
            particles.add_particles([0, 0, 0], 0, 0.0, [0, 0, 0])

    def test_add_ghosts(self):
        particles = ParticleArray(10)
        particles.add_particles([0, 0, 0], 0, 1.0, [0, 0, 0])
        particles.add_particles([0, 0, 0], 0, 1.0, [0, 0, 0],
                                shift=[0.1, 0.0, 0.0], ghost=1)

        np.testing.assert_array_equal(particles.live_indices(), [0])
        np.testing.assert_array_equal(particles.ghost_indices(), [1])
        assert particles.count_live() == 1


class TestRemoval:
    """Test deactivation and compaction."""

    def test_remove_inactive(self):
        """Test compacting array by removing inactive particles."""
        particles = ParticleArray(100)
        x = np.arange(30, dtype=float).reshape(10, 3)
        particles.add_particles(x, 0, np.arange(1, 11, dtype=float), np.zeros((10, 3)))

        for i in (2, 5, 7):
            particles.deactivate(i)
        particles.remove_inactive()

        assert particles.n_particles == 7
        assert np.all(particles.active[:7])
        np.testing.assert_array_equal(particles.orig_id[:7], [0, 1, 3, 4, 6, 8, 9])
        np.testing.assert_array_equal(particles.m[:7], [1, 2, 4, 5, 7, 9, 10])

    def test_remove_inactive_keeps_compositions(self):
        """Fields after the active flag are compacted with the same mask."""
        particles = ParticleArray(8, n_scalars=1)
        particles.add_particles(np.zeros((4, 3)), [0, 1, 2, 3], 1.0,
                                np.arange(12, dtype=float).reshape(4, 3),
                                phi=[[0.1], [0.2], [0.3], [0.4]])
        particles.deactivate(1)

        particles.remove_inactive()

        assert particles.n_particles == 3
        assert not np.any(particles.active[3:])
        np.testing.assert_array_equal(particles.cell[:3], [0, 2, 3])
        np.testing.assert_allclose(particles.phi[:3, 0], [0.1, 0.3, 0.4])
        np.testing.assert_allclose(particles.u[:3, 0], [0.0, 6.0, 9.0])

    def test_remove_all_active_is_noop(self):
        particles = ParticleArray(10)
        particles.add_particles(np.zeros((3, 3)), 0, 1.0, np.zeros((3, 3)))
        particles.remove_inactive()
        assert particles.n_particles == 3


class TestCloneAndRecords:
    """Test cloning and record round trips used for processor handoff."""

    def test_clone_gets_new_ids(self):
        particles = ParticleArray(4, n_scalars=1)
        particles.add_particles([[0.1, 0.2, 0.3]], 2, 3.0, [[1.0, 2.0, 3.0]], phi=[[0.4]])

        copies = particles.clone([0, 0])

        np.testing.assert_array_equal(copies, [1, 2])
        np.testing.assert_array_equal(particles.orig_id[:3], [0, 1, 2])
        np.testing.assert_array_equal(particles.u[1], particles.u[0])
        assert particles.phi[2, 0] == 0.4
        assert particles.n_created == 3

    def test_extract_insert(self):
        """A record carries every field and keeps its id."""
        src = ParticleArray(4, n_scalars=2)
        src.add_particles(np.zeros((3, 3)), 0, 1.0, np.zeros((3, 3)))
        src.step_fraction[2] = 0.25
        src.phi[2] = [0.1, 0.9]
        record = src.extract(2)

        dst = ParticleArray(1, n_scalars=2)
        i = dst.insert(record)

        assert set(record) == set(src.field_names())
        assert dst.orig_id[i] == 2
        assert dst.step_fraction[i] == 0.25
        np.testing.assert_array_equal(dst.phi[i], [0.1, 0.9])

    def test_extract_is_a_copy(self):
        particles = ParticleArray(2)
        particles.add_particles([0, 0, 0], 0, 1.0, [1, 0, 0])
        record = particles.extract(0)
        record["u"][0] = 99.0
        assert particles.u[0, 0] == 1.0


class TestTransformsAndTotals:
    """Test velocity transforms and conserved totals."""

    def test_reflection(self):
        particles = ParticleArray(2)
        particles.add_particles([0, 0, 0], 0, 1.0, [1.0, 2.0, 0.0])
        particles.u_correction[0] = [0.5, 0.0, 0.0]
        T = np.diag([-1.0, 1.0, 1.0])

        particles.transform_properties(0, T)

        np.testing.assert_array_equal(particles.u[0], [-1.0, 2.0, 0.0])
        np.testing.assert_array_equal(particles.u_correction[0], [-0.5, 0.0, 0.0])
        np.testing.assert_array_equal(particles.u_tracking[0], [-1.0, 2.0, 0.0])

    def test_totals_exclude_ghosts(self):
        particles = ParticleArray(4, n_scalars=1)
        particles.add_particles([[0, 0, 0], [0, 0, 0]], 0, [1.0, 3.0],
                                [[1, 0, 0], [0, 1, 0]], phi=[[1.0], [0.5]])
        particles.add_particles([0, 0, 0], 0, 5.0, [1, 1, 1], phi=[2.0], ghost=1)

        assert particles.total_mass() == 4.0
        np.testing.assert_allclose(particles.momentum(), [1.0, 3.0, 0.0])
        np.testing.assert_allclose(particles.scalar_content(), [2.5])

    def test_repr_and_len(self):
        particles = ParticleArray(5)
        particles.add_particles(np.zeros((2, 3)), 0, 1.0, np.zeros((2, 3)))
        assert len(particles) == 2
        assert "active=2" in repr(particles)
        assert "Particle Id: 1" in particles.info(1)
