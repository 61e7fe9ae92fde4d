"""
Tests for the per-patch boundary handlers.
"""

import numpy as np

from mcpdf.config import CloudConfig, ModelSelection
from mcpdf.fields import FlowFields
from mcpdf.mesh import box_mesh
from mcpdf.cloud import ParticleCloud
from mcpdf.tracking import (
    InletHandler,
    OutletHandler,
    PeriodicHandler,
    ReflectiveHandler,
    make_boundary_handlers,
    move,
)

NO_MODELS = ModelSelection(velocity="none", omega="none", mixing="none",
                           reaction="none", position_correction="none")


def make_cloud(mesh, fields=None, delta_t=0.1, **kwargs):
    if fields is None:
        fields = FlowFields.uniform(mesh)
    config = CloudConfig(delta_t=delta_t, models=NO_MODELS, random_seed=5, **kwargs)
    return ParticleCloud(mesh, fields, config)


class TestHandlerTable:
    """Test handler dispatch per patch type."""

    def test_handler_types(self):
        cloud = make_cloud(box_mesh())
        handlers = make_boundary_handlers(cloud)

        assert isinstance(handlers["wall"], ReflectiveHandler)
        assert isinstance(handlers["symmetry"], ReflectiveHandler)
        assert isinstance(handlers["inlet"], InletHandler)
        assert isinstance(handlers["outlet"], OutletHandler)
        assert isinstance(handlers["periodic"], PeriodicHandler)
        assert "processor" not in handlers


class TestReflective:
    """Test specular reflection."""

    def test_symmetry_plane(self):
        mesh = box_mesh(patch_types={"ymax": "symmetry"})
        cloud = make_cloud(mesh)
        i = cloud.particles.add_particles([0.5, 0.5, 0.5], 0, 1.0, [0.3, 1.0, -0.2])[0]
        patch = mesh.patch_by_name("ymax")

        keep = cloud.hit_patch(i, mesh.patch_id("ymax"), patch.start)

        assert keep
        np.testing.assert_allclose(cloud.particles.u[i], [0.3, -1.0, -0.2])


class TestPeriodic:
    """Test periodic translation."""

    def test_translation_to_partner(self):
        mesh = box_mesh(n_cells=(3, 1, 1), lengths=(3.0, 1.0, 1.0),
                        patch_types={"xmin": "periodic", "xmax": "periodic"})
        cloud = make_cloud(mesh)
        i = cloud.particles.add_particles([3.0, 0.4, 0.6], 2, 1.0, [1.0, 0.0, 0.0])[0]
        patch = mesh.patch_by_name("xmax")

        keep = cloud.hit_patch(i, mesh.patch_id("xmax"), patch.start)

        assert keep
        assert cloud.particles.cell[i] == 0
        np.testing.assert_allclose(cloud.particles.x[i], [0.0, 0.4, 0.6])


class TestInlet:
    """Test the inlet ghost layer."""

    def test_deterministic_inflow(self):
        """Without fluctuations every ghost of the layer reaches the face."""
        mesh = box_mesh(patch_types={"xmin": "inlet", "xmax": "outlet"})
        fields = FlowFields.uniform(mesh, U=(1.0, 0.0, 0.0), k=0.0)
        cloud = make_cloud(mesh, fields)
        inlet = cloud.boundary_handlers["inlet"]

        n_ghosts = inlet.before_tracking(0.1)

        p = cloud.particles
        assert n_ghosts == 2
        assert p.count_live() == 0
        assert cloud.mass_in == 0.0

        n_injected = inlet.track_ghosts(0.1)

        assert n_injected == 2
        assert p.count_live() == 2
        assert len(p.ghost_indices()) == 0
        assert np.isclose(cloud.mass_in, 0.1)
        np.testing.assert_allclose(p.x[:2, 0], 0.0, atol=1e-14)
        np.testing.assert_allclose(p.shift[:2], 0.0)
        assert np.all(p.on_inlet[:2])
        np.testing.assert_allclose(p.m[:2], 0.05)

    def test_ghosts_decide_injection(self):
        """Only ghosts whose motion reaches the face within the step enter."""
        mesh = box_mesh(patch_types={"xmin": "inlet"})
        cloud = make_cloud(mesh)
        p = cloud.particles
        near = p.add_particles([0.0, 0.5, 0.5], 0, 1.0, [1.0, 2.0, 0.0],
                               shift=[-0.05, 0.0, 0.0], ghost=1)[0]
        far = p.add_particles([0.0, 0.5, 0.5], 0, 1.0, [1.0, 0.0, 0.0],
                              shift=[-0.2, 0.0, 0.0], ghost=1)[0]
        away = p.add_particles([0.0, 0.5, 0.5], 0, 1.0, [-1.0, 0.0, 0.0],
                               shift=[-0.01, 0.0, 0.0], ghost=1)[0]
        drifting = p.add_particles([0.0, 0.95, 0.5], 0, 2.0, [1.0, 2.0, 0.0],
                                   shift=[-0.05, 0.0, 0.0], ghost=1)[0]

        n_injected = cloud.boundary_handlers["inlet"].track_ghosts(0.1)

        assert n_injected == 2
        assert p.ghost[near] == 0 and p.ghost[drifting] == 0
        assert p.ghost[far] == 1 and p.ghost[away] == 1
        assert np.isclose(cloud.mass_in, 3.0)
        # Entry point follows the sideways drift through the layer
        np.testing.assert_allclose(p.x[near], [0.0, 0.6, 0.5], atol=1e-14)
        # Drift past the face keeps the seeding point
        np.testing.assert_allclose(p.x[drifting], [0.0, 0.95, 0.5])

    def test_turbulent_layer_has_ghosts(self):
        """Fluctuating inflow leaves ghosts that do not reach the face."""
        mesh = box_mesh(patch_types={"xmin": "inlet"})
        fields = FlowFields.uniform(mesh, U=(0.0, 0.0, 0.0), k=1.5)
        cloud = make_cloud(mesh, fields, delta_t=1.0)
        inlet = cloud.boundary_handlers["inlet"]

        n_ghosts = inlet.before_tracking(1.0)

        p = cloud.particles
        assert abs(n_ghosts - 60) <= 1
        # Layer depth 3 sigma dt = 3 m upstream of the face
        ghosts = p.ghost_indices()
        assert np.all(p.shift[ghosts, 0] < 0.0)
        assert np.all(p.shift[ghosts, 0] >= -3.0)
        np.testing.assert_allclose(p.shift[ghosts, 1:], 0.0)

        n_injected = inlet.track_ghosts(1.0)

        remaining = p.ghost_indices()
        real = p.live_indices()
        assert 0 < n_injected < n_ghosts
        assert len(real) == n_injected
        assert len(remaining) == n_ghosts - n_injected
        assert np.all(p.u[real, 0] > 0.0)
        np.testing.assert_allclose(p.x[real, 0], 0.0, atol=1e-12)
        # Ghosts left behind could not cover their depth within the step
        assert np.all(p.u[remaining, 0] * 1.0 <= -p.shift[remaining, 0])

    def test_no_inflow(self):
        """Outflow through an inlet without fluctuations seeds nothing."""
        mesh = box_mesh(patch_types={"xmin": "inlet"})
        fields = FlowFields.uniform(mesh, U=(-1.0, 0.0, 0.0), k=0.0)
        cloud = make_cloud(mesh, fields)

        assert cloud.boundary_handlers["inlet"].before_tracking(0.1) == 0
        assert cloud.particles.n_particles == 0

    def test_inflow_state_from_config(self):
        mesh = box_mesh(patch_types={"xmin": "inlet"})
        cloud = make_cloud(
            mesh,
            scalar_names=["z", "y"],
            initial_scalars={"y": 0.3},
            inlets={"xmin": {"U": [2.0, 0.0, 0.0], "k": 0.0, "phi": {"z": 1.0}}},
        )
        patch = mesh.patch_by_name("xmin")

        U, k, phi = cloud.boundary_handlers["inlet"].inflow_state(patch, patch.start)

        np.testing.assert_allclose(U, [2.0, 0.0, 0.0])
        assert k == 0.0
        np.testing.assert_allclose(phi, [1.0, 0.3])

    def test_inflow_state_defaults_to_cell(self):
        mesh = box_mesh(patch_types={"xmin": "inlet"})
        fields = FlowFields.uniform(mesh, U=(0.5, 0.1, 0.0), k=0.2)
        cloud = make_cloud(mesh, fields)
        patch = mesh.patch_by_name("xmin")

        U, k, phi = cloud.boundary_handlers["inlet"].inflow_state(patch, patch.start)

        np.testing.assert_allclose(U, [0.5, 0.1, 0.0])
        assert np.isclose(k, 0.2)
        assert phi.shape == (0,)

    def test_particle_reflected_at_inlet(self):
        mesh = box_mesh(patch_types={"xmin": "inlet"})
        cloud = make_cloud(mesh)
        i = cloud.particles.add_particles([0.25, 0.5, 0.5], 0, 1.0, [-1.0, 0.0, 0.0])[0]

        outcome = move(cloud, i, 0.5)

        p = cloud.particles
        assert outcome.keep_particle
        assert p.reflected_open[i]
        np.testing.assert_allclose(p.x[i], [0.25, 0.5, 0.5], atol=1e-14)
        np.testing.assert_allclose(p.u[i], [1.0, 0.0, 0.0])
