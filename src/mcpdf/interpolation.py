"""
Field Interpolation at Particle Positions

Cell-centred fields are reconstructed inside every tetrahedron of the
face-centred decomposition from four values:

    face centre  -> linear owner/neighbour interpolation
    point B, C   -> inverse-distance average of the point's cells
    cell centre  -> the cell value

and blended with the barycentric weights of the particle position
(cell-point-face interpolation). Gradients are constant per tetrahedron.
Fields may be scalar (n_cells,) or vector (n_cells, 3).
"""

import numpy as np
from scipy.sparse import coo_matrix

from .constants import SMALL


class FieldInterpolator:
    """
    Factory of position interpolants on a fixed mesh decomposition.

    The point and face weights are built once; ``cell_point_face`` and
    ``gradient`` wrap a cell field into an interpolant object.
    """

    def __init__(self, mesh, decomposition):
        self.mesh = mesh
        self.decomposition = decomposition
        self.point_weights = self._build_point_weights()
        self.owner_weights = self._build_face_weights()

    def _build_point_weights(self):
        rows, cols, vals = [], [], []
        for p, cells in enumerate(self.mesh.point_cells):
            if len(cells) == 0:
                continue
            dist = np.linalg.norm(self.mesh.cell_centres[cells] - self.mesh.points[p], axis=1)
            w = 1.0 / np.maximum(dist, SMALL)
            w /= w.sum()
            rows.extend([p] * len(cells))
            cols.extend(cells)
            vals.extend(w)
        return coo_matrix(
            (vals, (rows, cols)), shape=(self.mesh.n_points, self.mesh.n_cells)
        ).tocsr()

    def _build_face_weights(self):
        mesh = self.mesh
        weights = np.ones(mesh.n_faces)
        n_int = mesh.n_internal_faces
        d_own = np.linalg.norm(
            mesh.face_centres[:n_int] - mesh.cell_centres[mesh.owner[:n_int]], axis=1
        )
        d_nei = np.linalg.norm(
            mesh.face_centres[:n_int] - mesh.cell_centres[mesh.neighbour], axis=1
        )
        weights[:n_int] = d_nei / np.maximum(d_own + d_nei, SMALL)
        return weights

    # ==================== FIELD RECONSTRUCTION ====================

    def point_values(self, cell_values):
        return self.point_weights @ np.asarray(cell_values, dtype=np.float64)

    def face_values(self, cell_values):
        """Linear interpolation to internal faces, owner value on boundaries."""
        cell_values = np.asarray(cell_values, dtype=np.float64)
        mesh = self.mesh
        values = cell_values[mesh.owner].copy()
        n_int = mesh.n_internal_faces
        w = self.owner_weights[:n_int]
        if cell_values.ndim > 1:
            w = w[:, None]
        values[:n_int] = w * cell_values[mesh.owner[:n_int]] + (1.0 - w) * cell_values[mesh.neighbour]
        return values

    def cell_point_face(self, cell_values):
        """Interpolant of a cell field at arbitrary positions."""
        cell_values = np.asarray(cell_values, dtype=np.float64)
        return CellPointFaceField(
            self.decomposition,
            cell_values,
            self.point_values(cell_values),
            self.face_values(cell_values),
        )

    def gradient(self, cell_values):
        """Piecewise-constant gradient of a cell field on the tets."""
        return TetGradientField(self.decomposition, self.cell_point_face(cell_values))


class CellPointFaceField:
    """Cell field reconstructed from face, point and cell values."""

    def __init__(self, decomposition, cell_values, point_values, face_values):
        self.decomposition = decomposition
        self.cell_values = cell_values
        self.point_values = point_values
        self.face_values = face_values

    def vertex_values(self, tet):
        """Field values at the four vertices of ``tet``."""
        d = self.decomposition
        pt_b, pt_c = d.tet_points[tet]
        return np.array([
            self.face_values[d.tet_face[tet]],
            self.point_values[pt_b],
            self.point_values[pt_c],
            self.cell_values[d.tet_cell[tet]],
        ])

    def interpolate(self, x, cell, location=None):
        """
        Value at ``x`` inside ``cell``.

        Args:
            x: Position [m]
            cell: Host cell
            location: Optional (tet, weights) from TetDecomposition.find_tet
        """
        tet, weights = location if location is not None else self.decomposition.find_tet(cell, x)
        return np.tensordot(weights, self.vertex_values(tet), axes=1)


class TetGradientField:
    """
    Gradient of a cell-point-face field, constant inside each tet.

    For vertex values v0..v3 at X0..X3:
        grad = J^-T (v1 - v0, v2 - v0, v3 - v0),  J = [X1-X0, X2-X0, X3-X0]
    """

    def __init__(self, decomposition, field):
        self.decomposition = decomposition
        self.field = field

    def interpolate(self, x, cell, location=None):
        tet, _ = location if location is not None else self.decomposition.find_tet(cell, x)
        values = self.field.vertex_values(tet)
        return self.decomposition.inv_jacobian[tet].T @ (values[1:] - values[0])
