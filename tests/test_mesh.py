"""
Tests for the polyhedral mesh and the box mesh generator.
"""

import numpy as np
import pytest

from mcpdf.errors import GeometryError
from mcpdf.mesh import Patch, PolyMesh, box_mesh, courant_numbers


class TestBoxMesh:
    """Test hexahedral block generation."""

    def test_unit_cube(self):
        """Single cell: six boundary faces, unit volume, centred."""
        mesh = box_mesh()

        assert mesh.n_cells == 1
        assert mesh.n_faces == 6
        assert mesh.n_internal_faces == 0
        np.testing.assert_allclose(mesh.cell_volumes, [1.0])
        np.testing.assert_allclose(mesh.cell_centres[0], [0.5, 0.5, 0.5])

    def test_boundary_normals_point_outwards(self):
        """Boundary face normals point out of the domain."""
        mesh = box_mesh()
        expected = {
            "xmin": [-1, 0, 0], "xmax": [1, 0, 0],
            "ymin": [0, -1, 0], "ymax": [0, 1, 0],
            "zmin": [0, 0, -1], "zmax": [0, 0, 1],
        }
        for name, normal in expected.items():
            face = mesh.patch_by_name(name).start
            np.testing.assert_allclose(mesh.face_normals[face], normal, atol=1e-14)

    def test_internal_faces_point_to_neighbour(self):
        """Internal face normals point from owner to neighbour."""
        mesh = box_mesh(n_cells=(3, 2, 2))
        for f in range(mesh.n_internal_faces):
            d = mesh.cell_centres[mesh.neighbour[f]] - mesh.cell_centres[mesh.owner[f]]
            assert np.dot(d, mesh.face_normals[f]) > 0.0

    def test_face_counts_and_volume(self):
        """Face counts and total volume of a graded block."""
        mesh = box_mesh(n_cells=(3, 2, 1), lengths=(3.0, 1.0, 0.5))

        assert mesh.n_cells == 6
        assert mesh.n_internal_faces == 2 * 2 + 3 * 1
        assert np.isclose(mesh.cell_volumes.sum(), 1.5)
        np.testing.assert_allclose(mesh.cell_volumes, 0.25)

    def test_periodic_sides_coupled(self):
        """Opposite periodic sides carry opposite separations."""
        mesh = box_mesh(n_cells=(2, 1, 1), lengths=(2.0, 1.0, 1.0),
                        patch_types={"xmin": "periodic", "xmax": "periodic"})
        xmin = mesh.patch_by_name("xmin")
        xmax = mesh.patch_by_name("xmax")

        assert xmin.neighbour_patch == "xmax"
        np.testing.assert_allclose(xmin.separation, [2.0, 0.0, 0.0])
        np.testing.assert_allclose(xmax.separation, [-2.0, 0.0, 0.0])

    def test_unpaired_periodic_side(self):
        """A periodic side without a periodic partner is rejected."""
        with pytest.raises(GeometryError, match="needs periodic"):
            box_mesh(patch_types={"xmin": "periodic"})

    def test_processor_patch_lookup(self):
        """Processor patches are found by neighbour rank."""
        mesh = box_mesh(patch_types={"xmax": "processor"},
                        processor_neighbours={"xmax": 3})

        assert mesh.processor_patch(3).name == "xmax"
        with pytest.raises(GeometryError):
            mesh.processor_patch(1)


class TestPatches:
    """Test patch bookkeeping."""

    def test_unknown_patch_type(self):
        with pytest.raises(GeometryError, match="Unknown patch type"):
            Patch("inflow", "farfield", 0, 1)

    def test_patch_ranges_must_be_contiguous(self):
        """Patches must cover the boundary faces in order."""
        good = box_mesh()
        patches = [Patch(p.name, p.patch_type, p.start + 1, p.size) for p in good.patches]

        with pytest.raises(GeometryError, match="starts at face"):
            PolyMesh(good.points, good.faces, good.owner, good.neighbour, patches)

    def test_unknown_patch_name(self):
        mesh = box_mesh()
        with pytest.raises(GeometryError, match="No patch named"):
            mesh.patch_by_name("inlet")


class TestDimensionality:
    """Test solution-direction constraints."""

    def test_empty_patches_remove_direction(self):
        """Empty front/back patches make the case two-dimensional."""
        mesh = box_mesh(n_cells=(2, 2, 1),
                        patch_types={"zmin": "empty", "zmax": "empty"})

        np.testing.assert_array_equal(mesh.solution_directions, [True, True, False])
        assert mesh.n_geometric_dims == 2

    def test_constrain_position_and_direction(self):
        mesh = box_mesh(patch_types={"zmin": "empty", "zmax": "empty"})
        x = np.array([0.2, 0.3, 0.9])
        u = np.array([1.0, 2.0, 3.0])

        mesh.constrain_position(x)
        mesh.constrain_direction(u)

        np.testing.assert_allclose(x, [0.2, 0.3, 0.5])
        np.testing.assert_allclose(u, [1.0, 2.0, 0.0])

    def test_wedge_keeps_swirl_direction(self):
        """Wedge patches remove a geometric axis but keep the velocity component."""
        mesh = box_mesh(patch_types={"zmin": "wedge", "zmax": "wedge"})
        x = np.array([0.2, 0.3, 0.9])
        u = np.array([1.0, 2.0, 3.0])

        mesh.constrain_position(x)
        mesh.constrain_direction(u)

        assert mesh.n_geometric_dims == 2
        np.testing.assert_array_equal(mesh.solution_directions, [True, True, True])
        np.testing.assert_allclose(x, [0.2, 0.3, 0.9])
        np.testing.assert_allclose(u, [1.0, 2.0, 3.0])

    def test_full_3d(self):
        mesh = box_mesh()
        assert mesh.n_geometric_dims == 3


class TestCourantNumbers:
    """Test per-particle Courant numbers."""

    def test_unit_cube(self):
        """Co = |u| / (half cell width) through the boundary faces."""
        mesh = box_mesh()
        u = np.array([[1.0, 0.0, 0.0], [0.0, -3.0, 0.0]])
        co = courant_numbers(np.array([0, 0]), u, np.array([True, True]), 2,
                             mesh.cell_face_offsets, mesh.cell_face_list,
                             mesh.courant_coeffs)

        np.testing.assert_allclose(co, [2.0, 6.0])

    def test_inactive_particles_skipped(self):
        mesh = box_mesh()
        co = courant_numbers(np.array([0]), np.array([[5.0, 0.0, 0.0]]),
                             np.array([False]), 1, mesh.cell_face_offsets,
                             mesh.cell_face_list, mesh.courant_coeffs)
        assert co[0] == 0.0


class TestFaceSampling:
    """Test random points on faces."""

    def test_points_lie_on_face(self):
        mesh = box_mesh()
        rng = np.random.default_rng(7)
        face = mesh.patch_by_name("ymax").start

        pts = mesh.random_points_on_face(face, 200, rng)

        np.testing.assert_allclose(pts[:, 1], 1.0)
        assert np.all((pts[:, [0, 2]] >= 0.0) & (pts[:, [0, 2]] <= 1.0))
        # Uniform over the face
        assert abs(pts[:, 0].mean() - 0.5) < 0.1
