"""
Face-Centred Tetrahedral Cell Decomposition

Every cell is split into tetrahedra (face centre, two consecutive face
points, cell centre), one per face edge. The point pair is swapped for the
neighbour side of a face so that all tetrahedra share the same orientation
regardless of which cell owns the face. The decomposition serves two
queries:

- point location: which tetrahedron of a cell contains a point and with
  which barycentric weights (used by the field interpolators)
- ray tracking: how far a particle can travel along a segment before it
  leaves its cell through a face triangle, and which mesh face that is

An inverted or flat tetrahedron aborts the construction.
"""

import numpy as np
from numba import njit

from .constants import SMALL, TRACK_TOLERANCE
from .errors import GeometryError


class TetDecomposition:
    """
    Tetrahedral decomposition of a PolyMesh.

    Attributes:
        vertices: Tet vertices [n_tets, 4, 3] ordered (face centre, point B,
                  point C, cell centre)
        volumes: Signed tet volumes [n_tets] (all > 0)
        tet_cell: Owning cell per tet
        tet_face: Mesh face per tet
        tet_points: Mesh point indices (B, C) per tet [n_tets, 2]
        cell_tet_offsets: CSR offsets, tets of cell c are
                          cell_tet_offsets[c]:cell_tet_offsets[c+1]
        inv_jacobian: Inverse of [B-A, C-A, D-A] (columns) per tet
    """

    def __init__(self, mesh):
        self.mesh = mesh

        vertices, tet_cell, tet_face, tet_points = [], [], [], []
        offsets = [0]
        for c in range(mesh.n_cells):
            for f in mesh.cell_faces[c]:
                face = mesh.faces[f]
                n_pts = len(face)
                for j in range(n_pts):
                    pt_b = face[j]
                    pt_c = face[j - 1]
                    if mesh.owner[f] != c:
                        pt_b, pt_c = pt_c, pt_b
                    vertices.append((
                        mesh.face_centres[f],
                        mesh.points[pt_b],
                        mesh.points[pt_c],
                        mesh.cell_centres[c],
                    ))
                    tet_cell.append(c)
                    tet_face.append(f)
                    tet_points.append((pt_b, pt_c))
            offsets.append(len(tet_cell))

        self.vertices = np.array(vertices, dtype=np.float64).reshape(-1, 4, 3)
        self.tet_cell = np.array(tet_cell, dtype=np.int64)
        self.tet_face = np.array(tet_face, dtype=np.int64)
        self.tet_points = np.array(tet_points, dtype=np.int64).reshape(-1, 2)
        self.cell_tet_offsets = np.array(offsets, dtype=np.int64)
        self.n_tets = len(self.tet_cell)

        self.volumes = signed_volumes(self.vertices)
        self._check_orientation()

        jac = np.stack(
            (
                self.vertices[:, 1] - self.vertices[:, 0],
                self.vertices[:, 2] - self.vertices[:, 0],
                self.vertices[:, 3] - self.vertices[:, 0],
            ),
            axis=2,
        )
        self.inv_jacobian = np.linalg.inv(jac)

    def _check_orientation(self):
        scale = np.repeat(self.mesh.cell_volumes, np.diff(self.cell_tet_offsets))
        bad = np.flatnonzero(self.volumes <= SMALL * scale)
        if len(bad) > 0:
            t = bad[0]
            raise GeometryError(
                f"{len(bad)} inverted or degenerate tetrahedra; first: tet {t} "
                f"of cell {self.tet_cell[t]}, face {self.tet_face[t]}, "
                f"volume {self.volumes[t]:.3e}"
            )

    # ==================== QUERIES ====================

    def cell_tets(self, cell):
        return range(self.cell_tet_offsets[cell], self.cell_tet_offsets[cell + 1])

    def find_tet(self, cell, x):
        """
        Locate ``x`` within the tets of ``cell``.

        Returns:
            tet: Index of the containing tet (or the closest one when x lies
                 marginally outside the cell)
            weights: Barycentric weights (face centre, B, C, cell centre)
        """
        return _find_tet(
            self.inv_jacobian,
            self.vertices,
            self.cell_tet_offsets[cell],
            self.cell_tet_offsets[cell + 1],
            np.asarray(x, dtype=np.float64),
        )

    def barycentric(self, tet, x):
        """Barycentric weights of ``x`` with respect to ``tet``."""
        return _barycentric(self.inv_jacobian[tet], self.vertices[tet, 0],
                            np.asarray(x, dtype=np.float64))

    def contains(self, cell, x, tolerance):
        """Whether ``x`` lies inside ``cell`` up to a barycentric tolerance."""
        _, weights = self.find_tet(cell, x)
        return weights.min() >= -tolerance

    def track_to_face(self, cell, start, end):
        """
        Follow the segment start -> end inside ``cell``.

        Returns:
            fraction: Fraction of the segment inside the cell, in [0, 1];
                0 when start lies on the exit face
            face: Mesh face crossed at that fraction, -1 if end is reached
        """
        fraction, tet = _track_to_face(
            self.vertices,
            self.cell_tet_offsets[cell],
            self.cell_tet_offsets[cell + 1],
            np.asarray(start, dtype=np.float64),
            np.asarray(end, dtype=np.float64),
            TRACK_TOLERANCE,
        )
        if tet < 0:
            return 1.0, -1
        return fraction, int(self.tet_face[tet])

    def random_points_in_cell(self, cell, n, rng):
        """``n`` points uniformly distributed over the volume of ``cell``."""
        tets = np.arange(self.cell_tet_offsets[cell], self.cell_tet_offsets[cell + 1])
        vols = self.volumes[tets]
        chosen = tets[rng.choice(len(tets), size=n, p=vols / vols.sum())]
        weights = rng.dirichlet(np.ones(4), size=n)
        return np.einsum("ij,ijk->ik", weights, self.vertices[chosen])

    def __repr__(self):
        return f"TetDecomposition(n_tets={self.n_tets}, n_cells={self.mesh.n_cells})"


def signed_volumes(vertices):
    """
    Signed volumes of tetrahedra (A, B, C, D).

    V = ((B - A) x (C - A)) . (D - A) / 6
    """
    a = vertices[:, 0]
    return np.einsum(
        "ij,ij->i",
        np.cross(vertices[:, 1] - a, vertices[:, 2] - a),
        vertices[:, 3] - a,
    ) / 6.0


# ==================== NUMBA-COMPILED FUNCTIONS ====================

@njit
def _barycentric(inv_jac, origin, x):
    d0 = x[0] - origin[0]
    d1 = x[1] - origin[1]
    d2 = x[2] - origin[2]
    w = np.empty(4, dtype=np.float64)
    for r in range(3):
        w[r + 1] = inv_jac[r, 0] * d0 + inv_jac[r, 1] * d1 + inv_jac[r, 2] * d2
    w[0] = 1.0 - w[1] - w[2] - w[3]
    return w


@njit
def _find_tet(inv_jacobian, vertices, start, end, x):
    """Tet of a cell whose smallest barycentric weight for x is largest."""
    best_tet = start
    best_min = -np.inf
    best_w = np.zeros(4, dtype=np.float64)
    for t in range(start, end):
        w = _barycentric(inv_jacobian[t], vertices[t, 0], x)
        w_min = w.min()
        if w_min > best_min:
            best_min = w_min
            best_tet = t
            best_w = w
            if w_min >= 0.0:
                break
    return best_tet, best_w


@njit
def _track_to_face(vertices, start, end, x0, x1, tol):
    """
    First exit of the segment x0 -> x1 through a face triangle of a cell.

    Only triangles (face centre, B, C) crossed outwards count; a hit at the
    very end of the segment (t = 1) does not, so a particle may come to rest
    on a face. A particle resting on a face and moving out through it exits
    at t = 0: a zero-length hop that only changes the host cell. Round-off
    below t = 0 is clamped to that hop. Moller-Trumbore intersection with
    barycentric slack ``tol``.

    Returns:
        t_min: Segment fraction of the exit, in [0, 1)
        tet: Tet whose face triangle is crossed, -1 if none
    """
    d0 = x1[0] - x0[0]
    d1 = x1[1] - x0[1]
    d2 = x1[2] - x0[2]
    t_min = 1.0
    hit = -1
    for t in range(start, end):
        a = vertices[t, 0]
        b = vertices[t, 1]
        c = vertices[t, 2]
        e1x = b[0] - a[0]
        e1y = b[1] - a[1]
        e1z = b[2] - a[2]
        e2x = c[0] - a[0]
        e2y = c[1] - a[1]
        e2z = c[2] - a[2]

        # Outward normal of the face triangle: (C - A) x (B - A)
        nx = e2y * e1z - e2z * e1y
        ny = e2z * e1x - e2x * e1z
        nz = e2x * e1y - e2y * e1x
        if d0 * nx + d1 * ny + d2 * nz <= 0.0:
            continue

        px = d1 * e2z - d2 * e2y
        py = d2 * e2x - d0 * e2z
        pz = d0 * e2y - d1 * e2x
        det = e1x * px + e1y * py + e1z * pz
        if abs(det) < 1e-300:
            continue
        inv = 1.0 / det

        tx = x0[0] - a[0]
        ty = x0[1] - a[1]
        tz = x0[2] - a[2]
        u = (tx * px + ty * py + tz * pz) * inv
        if u < -tol or u > 1.0 + tol:
            continue

        qx = ty * e1z - tz * e1y
        qy = tz * e1x - tx * e1z
        qz = tx * e1y - ty * e1x
        v = (d0 * qx + d1 * qy + d2 * qz) * inv
        if v < -tol or u + v > 1.0 + tol:
            continue

        s = (e2x * qx + e2y * qy + e2z * qz) * inv
        if s < 0.0:
            # start on the face
            s = 0.0
        if s < t_min:
            t_min = s
            hit = t
    return t_min, hit
