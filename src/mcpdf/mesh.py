"""
Unstructured Polyhedral Mesh

Face-addressed mesh (points, faces, owner, neighbour, patches) with the
geometric primitives the particle tracker needs: face centres and area
vectors, cell centres and volumes, Courant coefficients and the
dimensionality constraint of planar and wedge cases.

Conventions:
- Internal faces come first; face normals point from owner to neighbour.
- Boundary faces are grouped per patch; normals point out of the domain.
"""

import numpy as np
from numba import njit

from .constants import (
    GEOMETRIC_CONSTRAINT_PATCH_TYPES,
    PATCH_TYPES,
    SMALL,
    SOLUTION_CONSTRAINT_PATCH_TYPES,
)
from .errors import GeometryError


class Patch:
    """
    Contiguous group of boundary faces sharing one boundary type.

    Attributes:
        name: Patch name
        patch_type: One of constants.PATCH_TYPES
        start: Index of the first face of the patch
        size: Number of faces
        neighbour_patch: Name of the coupled patch (periodic)
        separation: Translation from this patch to its coupled patch [m]
        neighbour_processor: Rank across a processor patch
    """

    def __init__(self, name, patch_type, start, size, neighbour_patch=None,
                 separation=None, neighbour_processor=None):
        if patch_type not in PATCH_TYPES:
            raise GeometryError(
                f"Unknown patch type '{patch_type}' for patch '{name}'"
            )
        self.name = name
        self.patch_type = patch_type
        self.start = int(start)
        self.size = int(size)
        self.neighbour_patch = neighbour_patch
        self.separation = (
            np.zeros(3) if separation is None
            else np.asarray(separation, dtype=np.float64)
        )
        self.neighbour_processor = neighbour_processor

    @property
    def faces(self):
        return np.arange(self.start, self.start + self.size)

    def __repr__(self):
        return (f"Patch(name={self.name!r}, type={self.patch_type!r}, "
                f"start={self.start}, size={self.size})")


class PolyMesh:
    """
    Polyhedral mesh with precomputed geometry.

    Attributes:
        points: Point coordinates [n_points, 3] [m]
        faces: List of point-index arrays, one per face
        owner: Owner cell per face [n_faces]
        neighbour: Neighbour cell per internal face [n_internal_faces]
        patches: Boundary patches
        face_centres, face_areas: Face centroids [m] and area vectors [m^2]
        cell_centres, cell_volumes: Cell centroids [m] and volumes [m^3]
        solution_directions: Boolean mask of the resolved velocity and
                             position axes (empty patches remove one)
        geometric_directions: Resolved geometric axes (empty and wedge
                              patches remove one)
    """

    def __init__(self, points, faces, owner, neighbour, patches,
                 solution_directions=None):
        self.points = np.asarray(points, dtype=np.float64)
        self.faces = [np.asarray(f, dtype=np.int64) for f in faces]
        self.owner = np.asarray(owner, dtype=np.int64)
        self.neighbour = np.asarray(neighbour, dtype=np.int64)
        self.patches = list(patches)

        self.n_points = len(self.points)
        self.n_faces = len(self.faces)
        self.n_internal_faces = len(self.neighbour)
        if len(self.owner) != self.n_faces:
            raise GeometryError(
                f"owner has {len(self.owner)} entries for {self.n_faces} faces"
            )
        self.n_cells = int(max(self.owner.max(initial=-1),
                               self.neighbour.max(initial=-1))) + 1

        self._check_patches()
        self._compute_face_geometry()
        self._compute_cell_addressing()
        self._compute_cell_geometry()
        self._compute_courant_coeffs()

        self.bounds_min = self.points.min(axis=0)
        self.bounds_max = self.points.max(axis=0)
        self.centre_plane = 0.5 * (self.bounds_min + self.bounds_max)

        if solution_directions is None:
            solution_directions = self._detect_directions(SOLUTION_CONSTRAINT_PATCH_TYPES)
        self.solution_directions = np.asarray(solution_directions, dtype=np.bool_)
        self.geometric_directions = (
            self._detect_directions(GEOMETRIC_CONSTRAINT_PATCH_TYPES) & self.solution_directions
        )

    # ==================== CONSTRUCTION ====================

    def _check_patches(self):
        self.face_patch = np.full(self.n_faces, -1, dtype=np.int64)
        expected = self.n_internal_faces
        for patch_id, patch in enumerate(self.patches):
            if patch.start != expected:
                raise GeometryError(
                    f"Patch '{patch.name}' starts at face {patch.start}, "
                    f"expected {expected}"
                )
            self.face_patch[patch.start:patch.start + patch.size] = patch_id
            expected += patch.size
        if expected != self.n_faces:
            raise GeometryError(
                f"Patches cover faces up to {expected}, mesh has {self.n_faces}"
            )
        self._patch_index = {p.name: i for i, p in enumerate(self.patches)}
        for patch in self.patches:
            if patch.patch_type == "periodic":
                partner = self.patch_by_name(patch.neighbour_patch)
                if partner.size != patch.size:
                    raise GeometryError(
                        f"Periodic patches '{patch.name}' and '{partner.name}' "
                        f"differ in size"
                    )

    def _compute_face_geometry(self):
        """Area-weighted centroids and area vectors of triangle fans."""
        self.face_centres = np.zeros((self.n_faces, 3))
        self.face_areas = np.zeros((self.n_faces, 3))

        for f, face in enumerate(self.faces):
            pts = self.points[face]
            estimate = pts.mean(axis=0)
            nxt = np.roll(pts, -1, axis=0)
            tri_areas = 0.5 * np.cross(nxt - pts, estimate - pts)
            tri_centres = (pts + nxt + estimate) / 3.0
            mags = np.linalg.norm(tri_areas, axis=1)
            area = tri_areas.sum(axis=0)
            if mags.sum() < SMALL:
                raise GeometryError(f"Face {f} has zero area")
            self.face_areas[f] = area
            self.face_centres[f] = (mags[:, None] * tri_centres).sum(axis=0) / mags.sum()

        self.face_area_mags = np.linalg.norm(self.face_areas, axis=1)
        self.face_normals = self.face_areas / self.face_area_mags[:, None]

    def _compute_cell_addressing(self):
        cell_faces = [[] for _ in range(self.n_cells)]
        for f, c in enumerate(self.owner):
            cell_faces[c].append(f)
        for f, c in enumerate(self.neighbour):
            cell_faces[c].append(f)
        self.cell_faces = [np.array(sorted(cf), dtype=np.int64) for cf in cell_faces]

        # CSR copy for numba kernels
        counts = np.array([len(cf) for cf in self.cell_faces], dtype=np.int64)
        self.cell_face_offsets = np.concatenate(([0], np.cumsum(counts)))
        self.cell_face_list = (
            np.concatenate(self.cell_faces) if self.n_cells > 0
            else np.zeros(0, dtype=np.int64)
        )

        point_cells = [set() for _ in range(self.n_points)]
        for c, cf in enumerate(self.cell_faces):
            for f in cf:
                for p in self.faces[f]:
                    point_cells[p].add(c)
        self.point_cells = [np.array(sorted(pc), dtype=np.int64) for pc in point_cells]

    def _compute_cell_geometry(self):
        """Cell centroids and volumes from face-based pyramids."""
        estimate = np.zeros((self.n_cells, 3))
        n_cell_faces = np.zeros(self.n_cells)
        np.add.at(estimate, self.owner, self.face_centres)
        np.add.at(n_cell_faces, self.owner, 1.0)
        internal = slice(0, self.n_internal_faces)
        np.add.at(estimate, self.neighbour, self.face_centres[internal])
        np.add.at(n_cell_faces, self.neighbour, 1.0)
        estimate /= n_cell_faces[:, None]

        # Owner side
        pyr_vol = np.einsum(
            "ij,ij->i", self.face_areas, self.face_centres - estimate[self.owner]
        ) / 3.0
        pyr_ctr = 0.75 * self.face_centres + 0.25 * estimate[self.owner]
        volumes = np.zeros(self.n_cells)
        centres = np.zeros((self.n_cells, 3))
        np.add.at(volumes, self.owner, pyr_vol)
        np.add.at(centres, self.owner, pyr_vol[:, None] * pyr_ctr)

        # Neighbour side
        nb_vol = np.einsum(
            "ij,ij->i",
            self.face_areas[internal],
            estimate[self.neighbour] - self.face_centres[internal],
        ) / 3.0
        nb_ctr = 0.75 * self.face_centres[internal] + 0.25 * estimate[self.neighbour]
        np.add.at(volumes, self.neighbour, nb_vol)
        np.add.at(centres, self.neighbour, nb_vol[:, None] * nb_ctr)

        bad = np.flatnonzero(volumes <= 0.0)
        if len(bad) > 0:
            raise GeometryError(
                f"{len(bad)} cells with non-positive volume, first: cell {bad[0]}"
            )
        self.cell_volumes = volumes
        self.cell_centres = centres / volumes[:, None]

    def _compute_courant_coeffs(self):
        """Unit face normals scaled by the inverse centre-to-centre distance."""
        delta = np.empty(self.n_faces)
        internal = slice(0, self.n_internal_faces)
        d_int = self.cell_centres[self.neighbour] - self.cell_centres[self.owner[internal]]
        delta[internal] = np.abs(np.einsum("ij,ij->i", d_int, self.face_normals[internal]))
        d_bnd = (self.face_centres[self.n_internal_faces:]
                 - self.cell_centres[self.owner[self.n_internal_faces:]])
        delta[self.n_internal_faces:] = np.abs(
            np.einsum("ij,ij->i", d_bnd, self.face_normals[self.n_internal_faces:])
        )
        self.delta_coeffs = 1.0 / np.maximum(delta, SMALL)
        self.courant_coeffs = self.face_normals * self.delta_coeffs[:, None]

    def _detect_directions(self, patch_types):
        """Axes not normal to any patch of ``patch_types``."""
        directions = np.ones(3, dtype=np.bool_)
        for patch in self.patches:
            if patch.patch_type in patch_types and patch.size > 0:
                normal = self.face_normals[patch.start]
                directions[int(np.argmax(np.abs(normal)))] = False
        return directions

    # ==================== QUERIES ====================

    @property
    def n_geometric_dims(self) -> int:
        return int(np.sum(self.geometric_directions))

    def is_internal_face(self, face) -> bool:
        return face < self.n_internal_faces

    def other_cell(self, face, cell) -> int:
        """Cell across internal ``face`` from ``cell``."""
        if self.owner[face] == cell:
            return int(self.neighbour[face])
        return int(self.owner[face])

    def patch_by_name(self, name) -> Patch:
        try:
            return self.patches[self._patch_index[name]]
        except KeyError:
            raise GeometryError(f"No patch named '{name}'") from None

    def patch_id(self, name) -> int:
        self.patch_by_name(name)
        return self._patch_index[name]

    def processor_patch(self, neighbour_processor) -> Patch:
        for patch in self.patches:
            if (patch.patch_type == "processor"
                    and patch.neighbour_processor == neighbour_processor):
                return patch
        raise GeometryError(f"No processor patch towards rank {neighbour_processor}")

    def constrain_direction(self, vector):
        """Zero the components of ``vector`` along unresolved axes (in place)."""
        vector[..., ~self.solution_directions] = 0.0
        return vector

    def constrain_position(self, position):
        """Project ``position`` onto the centre plane of unresolved axes (in place)."""
        mask = ~self.solution_directions
        position[..., mask] = self.centre_plane[mask]
        return position

    def random_points_on_face(self, face, n, rng):
        """Uniformly distributed points on the triangle fan of ``face``."""
        pts = self.points[self.faces[face]]
        nxt = np.roll(pts, -1, axis=0)
        centre = self.face_centres[face]
        tri_areas = 0.5 * np.linalg.norm(np.cross(nxt - pts, centre - pts), axis=1)
        tri = rng.choice(len(pts), size=n, p=tri_areas / tri_areas.sum())
        r1 = rng.random(n)
        r2 = rng.random(n)
        flip = r1 + r2 > 1.0
        r1[flip] = 1.0 - r1[flip]
        r2[flip] = 1.0 - r2[flip]
        a = pts[tri]
        return a + r1[:, None] * (nxt[tri] - a) + r2[:, None] * (centre - a)

    def __repr__(self):
        return (f"PolyMesh(n_cells={self.n_cells}, n_faces={self.n_faces}, "
                f"n_points={self.n_points}, patches={len(self.patches)})")


# ==================== NUMBA-COMPILED FUNCTIONS ====================

@njit
def courant_numbers(cell, u, active, n_particles, cell_face_offsets,
                    cell_face_list, courant_coeffs):
    """
    Particle Courant numbers for a unit time step.

    Co = max over the faces f of the host cell of |u . n_f / delta_f|

    Args:
        cell: Host cell per particle, shape (n_particles,)
        u: Tracking velocities, shape (n_particles, 3) [m/s]
        active: Active flags, shape (n_particles,)
        n_particles: Number of particles
        cell_face_offsets, cell_face_list: CSR cell-to-face addressing
        courant_coeffs: Face normals over distance, shape (n_faces, 3) [1/m]

    Returns:
        co: Courant number per particle for deltaT = 1
    """
    co = np.zeros(n_particles, dtype=np.float64)
    for i in range(n_particles):
        if not active[i]:
            continue
        c = cell[i]
        best = 0.0
        for j in range(cell_face_offsets[c], cell_face_offsets[c + 1]):
            f = cell_face_list[j]
            val = abs(u[i, 0] * courant_coeffs[f, 0]
                      + u[i, 1] * courant_coeffs[f, 1]
                      + u[i, 2] * courant_coeffs[f, 2])
            if val > best:
                best = val
        co[i] = best
    return co


# ==================== MESH GENERATION ====================

_BOX_SIDES = ("xmin", "xmax", "ymin", "ymax", "zmin", "zmax")


def box_mesh(n_cells=(1, 1, 1), lengths=(1.0, 1.0, 1.0), origin=(0.0, 0.0, 0.0),
             patch_types=None, processor_neighbours=None, solution_directions=None):
    """
    Hexahedral block mesh.

    Args:
        n_cells: Cells per direction (nx, ny, nz)
        lengths: Block edge lengths [m]
        origin: Lower corner [m]
        patch_types: Patch type per side name ("xmin" ... "zmax"),
                     default "wall". Opposite "periodic" sides are coupled.
        processor_neighbours: Neighbour rank per "processor" side
        solution_directions: Override of the resolved axes

    Returns:
        mesh: PolyMesh with one patch per side, named after the side
    """
    nx, ny, nz = (int(n) for n in n_cells)
    origin = np.asarray(origin, dtype=np.float64)
    types = {side: "wall" for side in _BOX_SIDES}
    types.update(patch_types or {})
    processor_neighbours = processor_neighbours or {}

    xs = origin[0] + np.linspace(0.0, lengths[0], nx + 1)
    ys = origin[1] + np.linspace(0.0, lengths[1], ny + 1)
    zs = origin[2] + np.linspace(0.0, lengths[2], nz + 1)
    zz, yy, xx = np.meshgrid(zs, ys, xs, indexing="ij")
    points = np.column_stack((xx.ravel(), yy.ravel(), zz.ravel()))

    def pid(i, j, k):
        return i + (nx + 1) * (j + (ny + 1) * k)

    def cid(i, j, k):
        return i + nx * (j + ny * k)

    def x_face(i, j, k):
        return [pid(i, j, k), pid(i, j + 1, k), pid(i, j + 1, k + 1), pid(i, j, k + 1)]

    def y_face(i, j, k):
        return [pid(i, j, k), pid(i, j, k + 1), pid(i + 1, j, k + 1), pid(i + 1, j, k)]

    def z_face(i, j, k):
        return [pid(i, j, k), pid(i + 1, j, k), pid(i + 1, j + 1, k), pid(i, j + 1, k)]

    faces, owner, neighbour = [], [], []
    for k in range(nz):
        for j in range(ny):
            for i in range(1, nx):
                faces.append(x_face(i, j, k))
                owner.append(cid(i - 1, j, k))
                neighbour.append(cid(i, j, k))
    for k in range(nz):
        for j in range(1, ny):
            for i in range(nx):
                faces.append(y_face(i, j, k))
                owner.append(cid(i, j - 1, k))
                neighbour.append(cid(i, j, k))
    for k in range(1, nz):
        for j in range(ny):
            for i in range(nx):
                faces.append(z_face(i, j, k))
                owner.append(cid(i, j, k - 1))
                neighbour.append(cid(i, j, k))

    side_faces = {
        "xmin": [(x_face(0, j, k)[::-1], cid(0, j, k))
                 for k in range(nz) for j in range(ny)],
        "xmax": [(x_face(nx, j, k), cid(nx - 1, j, k))
                 for k in range(nz) for j in range(ny)],
        "ymin": [(y_face(i, 0, k)[::-1], cid(i, 0, k))
                 for k in range(nz) for i in range(nx)],
        "ymax": [(y_face(i, ny, k), cid(i, ny - 1, k))
                 for k in range(nz) for i in range(nx)],
        "zmin": [(z_face(i, j, 0)[::-1], cid(i, j, 0))
                 for j in range(ny) for i in range(nx)],
        "zmax": [(z_face(i, j, nz), cid(i, j, nz - 1))
                 for j in range(ny) for i in range(nx)],
    }
    opposite = {"xmin": "xmax", "xmax": "xmin", "ymin": "ymax",
                "ymax": "ymin", "zmin": "zmax", "zmax": "zmin"}
    axis_of = {"x": 0, "y": 1, "z": 2}

    patches = []
    for side in _BOX_SIDES:
        start = len(faces)
        for face, cell in side_faces[side]:
            faces.append(face)
            owner.append(cell)
        kwargs = {}
        if types[side] == "periodic":
            partner = opposite[side]
            if types[partner] != "periodic":
                raise GeometryError(f"Periodic side '{side}' needs periodic '{partner}'")
            separation = np.zeros(3)
            axis = axis_of[side[0]]
            separation[axis] = lengths[axis] if side.endswith("min") else -lengths[axis]
            kwargs = {"neighbour_patch": partner, "separation": separation}
        elif types[side] == "processor":
            kwargs = {"neighbour_processor": processor_neighbours.get(side)}
        patches.append(Patch(side, types[side], start, len(side_faces[side]), **kwargs))

    return PolyMesh(points, faces, owner, neighbour, patches,
                    solution_directions=solution_directions)
