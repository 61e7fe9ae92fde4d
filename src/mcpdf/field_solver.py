"""
Finite-Volume Poisson Solver on the Polyhedral Mesh

Solves ∇²φ = s for a cell-centred potential with the two-point flux
discretisation

    sum_f |S_f| / d_f (φ_N - φ_P) = s_P V_P

and computes Gauss gradients of the result. Boundary conditions per patch
type:
- outlet: fixed value φ = 0
- periodic: coupled to the cell behind the partner face
- everything else (wall, symmetry, inlet, empty, wedge, processor):
  zero gradient

Without any fixed-value face the potential is pinned in a reference cell.
The system matrix is symmetric positive definite and is solved with
conjugate gradients; failure to converge is an error, never a silent zero.
"""

import logging

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.linalg import cg

from .constants import DIRICHLET_PATCH_TYPES
from .errors import SolverConvergenceError

logger = logging.getLogger(__name__)


class LaplacianSolver:
    """
    Poisson solver bound to one mesh.

    Args:
        mesh: PolyMesh
        tolerance: Relative residual tolerance of the CG iteration
        max_iter: Iteration limit (None: scipy default)
        ref_cell: Cell pinned to ref_value when no fixed-value patch exists
        ref_value: Reference potential
    """

    def __init__(self, mesh, tolerance=1.0e-10, max_iter=None, ref_cell=0, ref_value=0.0):
        self.mesh = mesh
        self.tolerance = tolerance
        self.max_iter = max_iter
        self.ref_cell = ref_cell
        self.ref_value = ref_value

        self.face_coeffs = mesh.face_area_mags * mesh.delta_coeffs
        self.periodic_partner = self._periodic_partners()
        self.fixed_faces = np.concatenate(
            [p.faces for p in mesh.patches if p.patch_type in DIRICHLET_PATCH_TYPES]
            + [np.zeros(0, dtype=np.int64)]
        )
        self.needs_reference = len(self.fixed_faces) == 0
        self.matrix = self._assemble()

    def _periodic_partners(self):
        """Partner face per periodic boundary face (-1 elsewhere)."""
        partner = np.full(self.mesh.n_faces, -1, dtype=np.int64)
        for patch in self.mesh.patches:
            if patch.patch_type == "periodic":
                other = self.mesh.patch_by_name(patch.neighbour_patch)
                partner[patch.faces] = other.faces
        return partner

    def _assemble(self):
        mesh = self.mesh
        n_int = mesh.n_internal_faces
        rows, cols, vals = [], [], []

        own = mesh.owner[:n_int]
        nei = mesh.neighbour
        coef = self.face_coeffs[:n_int]
        rows.extend([own, nei, own, nei])
        cols.extend([own, nei, nei, own])
        vals.extend([coef, coef, -coef, -coef])

        coupled = np.flatnonzero(self.periodic_partner >= 0)
        if len(coupled) > 0:
            partner = self.periodic_partner[coupled]
            # Series resistance of the two half-distances
            coef = mesh.face_area_mags[coupled] / (
                1.0 / mesh.delta_coeffs[coupled] + 1.0 / mesh.delta_coeffs[partner]
            )
            rows.extend([mesh.owner[coupled], mesh.owner[coupled]])
            cols.extend([mesh.owner[coupled], mesh.owner[partner]])
            vals.extend([coef, -coef])

        if len(self.fixed_faces) > 0:
            cells = mesh.owner[self.fixed_faces]
            rows.append(cells)
            cols.append(cells)
            vals.append(self.face_coeffs[self.fixed_faces])

        matrix = coo_matrix(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
            shape=(mesh.n_cells, mesh.n_cells),
        ).tocsr()

        if self.needs_reference:
            diag = matrix[self.ref_cell, self.ref_cell]
            matrix = matrix.tolil()
            matrix[self.ref_cell, self.ref_cell] = 2.0 * diag if diag > 0.0 else 1.0
            matrix = matrix.tocsr()
        return matrix

    def solve(self, source, x0=None):
        """
        Solve ∇²φ = source.

        Args:
            source: Cell source term
            x0: Initial guess

        Returns:
            phi: Cell potential

        Raises:
            SolverConvergenceError: CG did not reach the tolerance
        """
        source = np.asarray(source, dtype=np.float64)
        rhs = -source * self.mesh.cell_volumes
        if self.needs_reference:
            rhs[self.ref_cell] += (self.matrix[self.ref_cell, self.ref_cell] / 2.0
                                   * self.ref_value)

        if not np.any(rhs):
            return np.full(self.mesh.n_cells, self.ref_value if self.needs_reference else 0.0)

        phi, info = cg(self.matrix, rhs, x0=x0, rtol=self.tolerance, maxiter=self.max_iter)
        if info != 0:
            residual = np.linalg.norm(self.matrix @ phi - rhs) / np.linalg.norm(rhs)
            raise SolverConvergenceError(
                f"Poisson solve did not converge (info={info}, "
                f"relative residual {residual:.3e})"
            )
        logger.debug("Poisson solve converged, max |phi| = %.3e", np.abs(phi).max())
        return phi

    def face_values(self, phi):
        """Face interpolates of ``phi`` consistent with the boundary conditions."""
        mesh = self.mesh
        n_int = mesh.n_internal_faces
        values = phi[mesh.owner].copy()

        d_own = 1.0 / mesh.delta_coeffs
        own = mesh.owner[:n_int]
        w = np.linalg.norm(mesh.face_centres[:n_int] - mesh.cell_centres[mesh.neighbour], axis=1)
        w /= w + np.linalg.norm(mesh.face_centres[:n_int] - mesh.cell_centres[own], axis=1)
        values[:n_int] = w * phi[own] + (1.0 - w) * phi[mesh.neighbour]

        coupled = np.flatnonzero(self.periodic_partner >= 0)
        if len(coupled) > 0:
            partner = self.periodic_partner[coupled]
            w = d_own[partner] / (d_own[coupled] + d_own[partner])
            values[coupled] = w * phi[mesh.owner[coupled]] + (1.0 - w) * phi[mesh.owner[partner]]

        values[self.fixed_faces] = 0.0
        return values

    def gradient(self, phi):
        """Gauss gradient (1/V) sum_f φ_f S_f per cell, shape (n_cells, 3)."""
        mesh = self.mesh
        flux = self.face_values(phi)[:, None] * mesh.face_areas
        grad = np.zeros((mesh.n_cells, 3))
        np.add.at(grad, mesh.owner, flux)
        np.add.at(grad, mesh.neighbour, -flux[:mesh.n_internal_faces])
        return grad / mesh.cell_volumes[:, None]

    def __repr__(self):
        return (f"LaplacianSolver(n_cells={self.mesh.n_cells}, "
                f"fixed_faces={len(self.fixed_faces)}, tolerance={self.tolerance})")
