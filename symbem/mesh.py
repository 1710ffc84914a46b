# symbem/mesh.py
"""
Closed triangulated surfaces and their finite element bases.

Potentials live on vertices (P1 hat functions), normal currents on
triangles (P0 indicators). The sparse matrices built here move values
between the two.
"""
from functools import cached_property

import numpy as np
from scipy import sparse
from scipy.spatial import cKDTree

from .kernels import chunks, double_layer, triangle_frames


def _readonly(array, dtype=float):
    array = np.array(array, dtype=dtype)
    array.flags.writeable = False
    return array


class Mesh:
    """
    Oriented triangle mesh.

    Parameters
    ----------
    vertices : array-like, shape (n_vertices, 3)
        Vertex coordinates.
    triangles : array-like, shape (n_triangles, 3)
        Vertex indices, counter-clockwise seen from the side the normals
        point to.
    name : str
        Label used in log messages and geometry files.
    """

    def __init__(self, vertices, triangles, name=""):
        self.vertices = _readonly(vertices)
        self.triangles = _readonly(triangles, dtype=np.int64)
        self.name = name
        if self.vertices.ndim != 2 or self.vertices.shape[1] != 3:
            raise ValueError(f"Mesh {name!r}: vertices must have shape (n, 3), got {self.vertices.shape}")
        if self.triangles.ndim != 2 or self.triangles.shape[1] != 3:
            raise ValueError(f"Mesh {name!r}: triangles must have shape (m, 3), got {self.triangles.shape}")
        if self.triangles.size and (self.triangles.min() < 0
                                    or self.triangles.max() >= len(self.vertices)):
            raise ValueError(f"Mesh {name!r}: triangle indices out of range")

    def __repr__(self):
        return (f"<Mesh {self.name!r}: {self.n_vertices} vertices, "
                f"{self.n_triangles} triangles>")

    @property
    def n_vertices(self):
        return len(self.vertices)

    @property
    def n_triangles(self):
        return len(self.triangles)

    def flipped(self):
        """Same surface with the opposite orientation."""
        return Mesh(self.vertices, self.triangles[:, ::-1], name=self.name)

    # --- Per-triangle geometry ---

    @cached_property
    def triangle_vertices(self):
        """Corner coordinates, shape (n_triangles, 3, 3)."""
        return _readonly(self.vertices[self.triangles])

    @cached_property
    def _frames(self):
        return triangle_frames(self.triangle_vertices)

    @property
    def normals(self):
        return self._frames[0]

    @property
    def areas(self):
        return self._frames[1]

    @cached_property
    def centroids(self):
        return _readonly(self.triangle_vertices.mean(axis=1))

    @cached_property
    def gradients(self):
        """
        Surface gradients of the three hat functions of each triangle,
        shape (n_triangles, 3, 3): ``n x (y_{i+2} - y_{i+1}) / 2A``.
        """
        tri_rr = self.triangle_vertices
        opposite = np.roll(tri_rr, -2, axis=1) - np.roll(tri_rr, -1, axis=1)
        grad = np.cross(self.normals[:, None, :], opposite) / (2.0 * self.areas)[:, None, None]
        return _readonly(grad)

    @cached_property
    def curls(self):
        """Surface curls ``n x grad(phi_i)``, shape (n_triangles, 3, 3)."""
        return _readonly(np.cross(self.normals[:, None, :], self.gradients))

    # --- Basis matrices ---

    @cached_property
    def corner_matrix(self):
        """
        Sparse (3 * n_triangles, n_vertices) scatter from triangle corners to
        vertices: ``values.reshape(-1) @ corner_matrix`` sums the per-corner
        contributions of each vertex.
        """
        rows = np.arange(3 * self.n_triangles)
        data = np.ones(3 * self.n_triangles)
        return sparse.csr_matrix((data, (rows, self.triangles.ravel())),
                                 shape=(3 * self.n_triangles, self.n_vertices))

    def scatter(self, values):
        """
        Sum per-corner values onto vertices.

        Parameters
        ----------
        values : ndarray, shape (k, n_triangles, 3)

        Returns
        -------
        out : ndarray, shape (k, n_vertices)
        """
        flat = values.reshape(len(values), -1)
        return np.asarray((self.corner_matrix.T @ flat.T).T)

    @cached_property
    def curl_matrices(self):
        """
        Three sparse (n_vertices, n_triangles) matrices, one per Cartesian
        component of the hat function curls.
        """
        rows = self.triangles.ravel()
        cols = np.repeat(np.arange(self.n_triangles), 3)
        return [sparse.csr_matrix((self.curls[:, :, c].ravel(), (rows, cols)),
                                  shape=(self.n_vertices, self.n_triangles))
                for c in range(3)]

    @cached_property
    def mass_p1p0(self):
        """Sparse (n_vertices, n_triangles) Gram matrix ``<phi_a, 1_T> = A_T / 3``."""
        rows = self.triangles.ravel()
        cols = np.repeat(np.arange(self.n_triangles), 3)
        data = np.repeat(self.areas / 3.0, 3)
        return sparse.csr_matrix((data, (rows, cols)),
                                 shape=(self.n_vertices, self.n_triangles))

    @cached_property
    def stiffness(self):
        """Sparse P1 stiffness matrix ``int grad(phi_a) . grad(phi_b)``."""
        local = np.einsum('tij,tkj->tik', self.gradients, self.gradients) * self.areas[:, None, None]
        rows = np.repeat(self.triangles, 3, axis=1).ravel()
        cols = np.tile(self.triangles, (1, 3)).ravel()
        return sparse.csr_matrix((local.ravel(), (rows, cols)),
                                 shape=(self.n_vertices, self.n_vertices))

    # --- Topology checks ---

    def is_closed(self):
        """
        True when every edge is shared by exactly two triangles that run
        along it in opposite directions (closed and consistently oriented).
        """
        directed = np.concatenate([self.triangles[:, [0, 1]],
                                   self.triangles[:, [1, 2]],
                                   self.triangles[:, [2, 0]]])
        _, counts = np.unique(directed, axis=0, return_counts=True)
        if np.any(counts != 1):
            return False
        undirected = np.sort(directed, axis=1)
        _, counts = np.unique(undirected, axis=0, return_counts=True)
        return bool(np.all(counts == 2))

    def signed_volume(self):
        """Enclosed volume, positive when the normals point outward."""
        tri_rr = self.triangle_vertices
        return float(np.einsum('tj,tj->', tri_rr[:, 0], np.cross(tri_rr[:, 1], tri_rr[:, 2])) / 6.0)

    def solid_angle(self, points):
        """Total ``int (x - y) . n / |x - y|^3`` over the mesh for each point."""
        points = np.atleast_2d(np.asarray(points, float))
        out = np.empty(len(points))
        for start, stop in chunks(len(points), self.n_triangles):
            out[start:stop] = double_layer(points[start:stop], self.triangle_vertices).sum(axis=1)
        return out

    def contains(self, points):
        """
        Boolean mask of the points enclosed by the surface.

        Uses the winding number (total solid angle divided by 4 pi), which
        is +-1 inside and 0 outside whatever the orientation.
        """
        return np.abs(self.solid_angle(points)) > 2.0 * np.pi

    # --- Projection ---

    @cached_property
    def _vertex_tree(self):
        return cKDTree(self.vertices)

    @cached_property
    def _vertex_triangles(self):
        """Sparse (n_vertices, n_triangles) incidence."""
        rows = self.triangles.ravel()
        cols = np.repeat(np.arange(self.n_triangles), 3)
        return sparse.csr_matrix((np.ones(rows.size, dtype=bool), (rows, cols)),
                                 shape=(self.n_vertices, self.n_triangles))

    def project(self, points, k=8):
        """
        Closest point of the surface to each point.

        Parameters
        ----------
        points : array-like, shape (n, 3)
        k : int
            Number of nearest vertices whose triangles are searched.

        Returns
        -------
        triangles : ndarray of int, shape (n,)
            Index of the triangle holding the closest point.
        bary : ndarray, shape (n, 3)
            Barycentric coordinates of the closest point in that triangle.
        distances : ndarray, shape (n,)
        """
        points = np.atleast_2d(np.asarray(points, float))
        k = min(k, self.n_vertices)
        _, near = self._vertex_tree.query(points, k=k)
        near = np.asarray(near).reshape(len(points), k)
        incidence = self._vertex_triangles
        tri_out = np.empty(len(points), dtype=np.int64)
        bary_out = np.empty((len(points), 3))
        dist_out = np.empty(len(points))
        for i, point in enumerate(points):
            candidates = np.unique(incidence[near[i]].indices)
            closest, bary = _closest_on_triangles(point, self.triangle_vertices[candidates])
            dist = np.linalg.norm(closest - point, axis=1)
            best = int(np.argmin(dist))
            tri_out[i] = candidates[best]
            bary_out[i] = bary[best]
            dist_out[i] = dist[best]
        return tri_out, bary_out, dist_out


def merge_meshes(meshes, name=""):
    """
    Join meshes that share boundary vertices into one surface.

    Vertices with identical coordinates are merged, keeping the order of
    first appearance.

    Returns
    -------
    merged : Mesh
        The union, with the triangles of each mesh in turn.
    indices : list of ndarray of int
        For each mesh, the merged vertex of each of its vertices.
    """
    if len(meshes) == 1:
        return meshes[0], [np.arange(meshes[0].n_vertices)]
    points = np.concatenate([mesh.vertices for mesh in meshes])
    _, first, inverse = np.unique(points, axis=0, return_index=True, return_inverse=True)
    order = np.argsort(first)
    rank = np.empty_like(order)
    rank[order] = np.arange(order.size)
    merged_index = rank[inverse.reshape(-1)]
    bounds = np.cumsum([0] + [mesh.n_vertices for mesh in meshes])
    indices = [merged_index[start:stop] for start, stop in zip(bounds[:-1], bounds[1:])]
    triangles = np.concatenate([index[mesh.triangles] for mesh, index in zip(meshes, indices)])
    return Mesh(points[first[order]], triangles, name=name), indices


def _closest_on_triangles(point, tri_rr):
    """
    Closest point to ``point`` on each triangle, with its barycentric
    coordinates. Inside the triangle this is the plane projection,
    otherwise the closest point of the nearest edge.
    """
    a, b, c = tri_rr[:, 0], tri_rr[:, 1], tri_rr[:, 2]
    ab, ac, ap = b - a, c - a, point - a
    d00 = np.einsum('tj,tj->t', ab, ab)
    d01 = np.einsum('tj,tj->t', ab, ac)
    d11 = np.einsum('tj,tj->t', ac, ac)
    d20 = np.einsum('tj,tj->t', ap, ab)
    d21 = np.einsum('tj,tj->t', ap, ac)
    det = d00 * d11 - d01 * d01
    v = (d11 * d20 - d01 * d21) / det
    w = (d00 * d21 - d01 * d20) / det
    bary = np.column_stack([1.0 - v - w, v, w])
    best_bary = bary.copy()
    inside = np.all(bary >= 0.0, axis=1)
    closest = np.einsum('ti,tij->tj', bary, tri_rr)
    plane_dist = np.linalg.norm(closest - point, axis=1)
    best_dist = np.where(inside, plane_dist, np.inf)

    # Edge (i, j): point clamped on the segment
    for i, j in ((0, 1), (1, 2), (2, 0)):
        start, stop = tri_rr[:, i], tri_rr[:, j]
        seg = stop - start
        t = np.einsum('tj,tj->t', point - start, seg) / np.einsum('tj,tj->t', seg, seg)
        t = np.clip(t, 0.0, 1.0)
        on_edge = start + t[:, None] * seg
        dist = np.linalg.norm(on_edge - point, axis=1)
        better = dist < best_dist
        edge_bary = np.zeros((len(tri_rr), 3))
        edge_bary[:, i] = 1.0 - t
        edge_bary[:, j] = t
        best_bary[better] = edge_bary[better]
        best_dist = np.where(better, dist, best_dist)
    closest = np.einsum('ti,tij->tj', best_bary, tri_rr)
    return closest, best_bary
