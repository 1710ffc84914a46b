# symbem/geometry.py
"""
Head geometry: meshes, interfaces and conductivity domains.

Everything is stored in flat lists and referenced by integer handles:
an interface lists mesh handles, a domain lists half-spaces on interface
handles. From these, each mesh knows the domain on each of its sides,
which gives the sign and conductivity coefficients of the symmetric BEM
blocks and the layout of the unknown vector.
"""
import logging
from dataclasses import dataclass
from typing import NamedTuple

import numpy as np
from scipy.spatial import cKDTree

from .mesh import merge_meshes

logger = logging.getLogger(__name__)


class GeometryError(RuntimeError):
    """Raised for inconsistent or invalid head geometries."""


def _readonly_index(array):
    array = np.asarray(array, dtype=np.int64)
    array.flags.writeable = False
    return array


class HalfSpace(NamedTuple):
    interface: int
    inside: bool


@dataclass(frozen=True)
class Interface:
    """Closed surface made of one or more meshes (by handle)."""
    name: str
    meshes: tuple = ()

    def __post_init__(self):
        object.__setattr__(self, "meshes", tuple(self.meshes))


@dataclass(frozen=True)
class Domain:
    name: str
    conductivity: float
    halfspaces: tuple = ()

    def __post_init__(self):
        object.__setattr__(self, "halfspaces", tuple(HalfSpace(*hs) for hs in self.halfspaces))

    @property
    def is_conductive(self):
        return self.conductivity != 0.0


class Geometry:
    """
    Validated head model.

    Parameters
    ----------
    meshes : list of Mesh
        Mesh arena. Each mesh is oriented so that its normals point away
        from the inside of the interface it belongs to.
    interfaces : list of Interface
        Closed surfaces made of one or more meshes (by handle).
    domains : list of Domain
        Conductivity regions defined as intersections of half-spaces.
    old_ordering : bool
        Interleave the unknowns mesh by mesh (``V1, p1, V2, p2, ...``)
        instead of putting all potentials first (``V1, ..., Vn, p1, ...``).

    Notes
    -----
    Meshes of one interface may share boundary vertices (same
    coordinates); such a vertex carries a single potential unknown.
    A mesh separates exactly two domains. The orientation of mesh ``m``
    with respect to a domain is +1 when the domain is on the inside of the
    mesh (the normal points away from it) and -1 when it is outside.
    Meshes touching a domain of zero conductivity carry no current
    unknowns: the normal current vanishes there.
    """

    def __init__(self, meshes, interfaces, domains, old_ordering=False):
        self.meshes = list(meshes)
        self.interfaces = list(interfaces)
        self.domains = list(domains)
        self.old_ordering = old_ordering
        self._valid = None
        self._mesh_interface = self._link_meshes()
        self._mesh_domains = self._link_domains()
        self._merge_interfaces()
        self._layout()
        logger.debug("Geometry with %d meshes, %d interfaces, %d domains, %d unknowns",
                     len(self.meshes), len(self.interfaces), len(self.domains), self.size)

    def __repr__(self):
        return (f"<Geometry: {len(self.meshes)} meshes, {len(self.domains)} domains, "
                f"{self.size} unknowns>")

    # --- Construction ---

    @classmethod
    def from_files(cls, geom_file, cond_file, old_ordering=False):
        """Load a geometry from a ``.geom`` description and a ``.cond`` file."""
        from .io import read_geometry
        return read_geometry(geom_file, cond_file, old_ordering=old_ordering)

    def _link_meshes(self):
        owner = {}
        for i, interface in enumerate(self.interfaces):
            if not interface.meshes:
                raise GeometryError(f"Interface {interface.name!r} has no mesh")
            for m in interface.meshes:
                if not 0 <= m < len(self.meshes):
                    raise GeometryError(f"Interface {interface.name!r} references unknown mesh {m}")
                if m in owner:
                    raise GeometryError(f"Mesh {self.meshes[m].name!r} belongs to two interfaces")
                owner[m] = i
        unused = [self.meshes[m].name for m in range(len(self.meshes)) if m not in owner]
        if unused:
            raise GeometryError(f"Meshes not used by any interface: {unused}")
        return [owner[m] for m in range(len(self.meshes))]

    def _link_domains(self):
        inside = [[] for _ in self.interfaces]
        outside = [[] for _ in self.interfaces]
        for d, domain in enumerate(self.domains):
            for hs in domain.halfspaces:
                if not 0 <= hs.interface < len(self.interfaces):
                    raise GeometryError(f"Domain {domain.name!r} references unknown interface {hs.interface}")
                (inside if hs.inside else outside)[hs.interface].append(d)
        links = []
        for i, interface in enumerate(self.interfaces):
            if len(inside[i]) != 1 or len(outside[i]) != 1:
                raise GeometryError(
                    f"Interface {interface.name!r} must bound exactly one domain on each side "
                    f"(inside: {len(inside[i])}, outside: {len(outside[i])})")
            links.append((inside[i][0], outside[i][0]))
        return [links[self._mesh_interface[m]] for m in range(len(self.meshes))]

    def _merge_interfaces(self):
        self._surfaces = []
        self._local_vertices = [None] * len(self.meshes)
        for interface in self.interfaces:
            surface, indices = merge_meshes([self.meshes[m] for m in interface.meshes],
                                            name=interface.name)
            self._surfaces.append(surface)
            for m, index in zip(interface.meshes, indices):
                self._local_vertices[m] = index

    def _layout(self):
        self._vertex_slices = [None] * len(self.interfaces)
        self._triangle_slices = [None] * len(self.meshes)
        offset = 0

        def add_potentials(i):
            stop = offset + self._surfaces[i].n_vertices
            self._vertex_slices[i] = slice(offset, stop)
            return stop

        def add_currents(m):
            if not self.has_current(m):
                return offset
            stop = offset + self.meshes[m].n_triangles
            self._triangle_slices[m] = slice(offset, stop)
            return stop

        if self.old_ordering:
            for i, interface in enumerate(self.interfaces):
                offset = add_potentials(i)
                for m in interface.meshes:
                    offset = add_currents(m)
        else:
            for i in range(len(self.interfaces)):
                offset = add_potentials(i)
            for m in range(len(self.meshes)):
                offset = add_currents(m)
        self.size = offset
        self._vertex_indices = []
        for m in range(len(self.meshes)):
            start = self._vertex_slices[self._mesh_interface[m]].start
            self._vertex_indices.append(_readonly_index(start + self._local_vertices[m]))

    # --- Lookups ---

    def interface(self, name):
        """Handle of the interface called ``name``."""
        for i, interface in enumerate(self.interfaces):
            if interface.name == name:
                return i
        raise ValueError(f"Unknown interface {name!r}; known: {[i.name for i in self.interfaces]}")

    def domain(self, name):
        """Handle of the domain called ``name``."""
        for d, domain in enumerate(self.domains):
            if domain.name == name:
                return d
        raise ValueError(f"Unknown domain {name!r}; known: {[d.name for d in self.domains]}")

    def mesh_domains(self, m):
        """``(inside, outside)`` domain handles of mesh ``m``."""
        return self._mesh_domains[m]

    def mesh_interface(self, m):
        return self._mesh_interface[m]

    def orientation(self, m, d):
        """+1 if domain ``d`` is inside mesh ``m``, -1 if outside, 0 if not adjacent."""
        inside, outside = self._mesh_domains[m]
        if d == inside:
            return 1
        if d == outside:
            return -1
        return 0

    def domain_meshes(self, d):
        """List of ``(mesh, orientation)`` for the meshes bounding domain ``d``."""
        return [(m, self.orientation(m, d)) for m in range(len(self.meshes))
                if self.orientation(m, d)]

    def has_current(self, m):
        """True if both sides of mesh ``m`` conduct, so it carries current unknowns."""
        return all(self.domains[d].is_conductive for d in self._mesh_domains[m])

    def shared_domains(self, m, k):
        """Conductive domains adjacent to both meshes."""
        return [d for d in self._mesh_domains[m]
                if d in self._mesh_domains[k] and self.domains[d].is_conductive]

    def vertex_indices(self, m):
        """
        Position of the potential unknown of each vertex of mesh ``m``.

        Vertices shared with another mesh of the same interface map to the
        same position.
        """
        return self._vertex_indices[m]

    def interface_vertex_slice(self, i):
        """Positions of the potential unknowns of interface ``i``."""
        return self._vertex_slices[i]

    def triangle_slice(self, m):
        """Positions of the current unknowns of mesh ``m``, or None."""
        return self._triangle_slices[m]

    def interface_meshes(self, i):
        return list(self.interfaces[i].meshes)

    def interface_mesh(self, i):
        """
        Interface ``i`` as a single surface whose vertices are ordered like
        its potential unknowns.
        """
        return self._surfaces[i]

    def innermost_interface(self):
        """
        Handle of the interface bounding a domain that is only defined as
        the inside of that interface (the brain of a nested model).
        """
        for domain in self.domains:
            if len(domain.halfspaces) == 1 and domain.halfspaces[0].inside:
                return domain.halfspaces[0].interface
        raise GeometryError("No innermost interface: no domain is the inside of a single interface")

    def outermost_interface(self):
        """
        Handle of the interface bounding the unbounded domain (the scalp of
        a nested model, facing the air).
        """
        outer = [domain for domain in self.domains
                 if domain.halfspaces and not any(hs.inside for hs in domain.halfspaces)]
        if len(outer) != 1:
            raise GeometryError(f"Expected one unbounded domain, found {len(outer)}")
        interfaces = [hs.interface for hs in outer[0].halfspaces]
        if len(interfaces) != 1:
            raise GeometryError("The outermost domain must be bounded by a single interface")
        return interfaces[0]

    # --- Conductivity coefficients ---

    def _sum_over_shared(self, m, k, weight):
        total = 0.0
        for d in self.shared_domains(m, k):
            total += self.orientation(m, d) * self.orientation(k, d) * weight(self.domains[d].conductivity)
        return total

    def n_coefficient(self, m, k):
        """``sum s_m s_k sigma`` over shared conductive domains."""
        return self._sum_over_shared(m, k, lambda sigma: sigma)

    def s_coefficient(self, m, k):
        """``sum s_m s_k / sigma`` over shared conductive domains."""
        return self._sum_over_shared(m, k, lambda sigma: 1.0 / sigma)

    def d_coefficient(self, m, k):
        """``-sum s_m s_k`` over shared conductive domains."""
        return -self._sum_over_shared(m, k, lambda sigma: 1.0)

    def isolated_parts(self):
        """
        Groups of meshes whose potential is only defined up to a constant.

        A set of conductive domains connected through current-carrying
        meshes and surrounded by insulating domains has a constant null
        space. Each returned group lists the meshes at its insulating
        boundary.
        """
        parent = list(range(len(self.domains)))

        def find(d):
            while parent[d] != d:
                parent[d] = parent[parent[d]]
                d = parent[d]
            return d

        for m in range(len(self.meshes)):
            if self.has_current(m):
                a, b = self._mesh_domains[m]
                parent[find(a)] = find(b)

        unbounded = {find(d) for d, domain in enumerate(self.domains)
                     if domain.is_conductive and not any(hs.inside for hs in domain.halfspaces)}
        groups = {}
        for m in range(len(self.meshes)):
            if self.has_current(m):
                continue
            for d in self._mesh_domains[m]:
                if self.domains[d].is_conductive and find(d) not in unbounded:
                    groups.setdefault(find(d), []).append(m)
        return list(groups.values())

    # --- Point location ---

    def domain_of(self, points):
        """
        Domain handle of each point, -1 when no domain contains it.

        Parameters
        ----------
        points : array-like, shape (n, 3)

        Returns
        -------
        domains : ndarray of int, shape (n,)
        """
        points = np.atleast_2d(np.asarray(points, float))
        inside = np.array([surface.contains(points) for surface in self._surfaces], dtype=bool)
        inside = inside.reshape(len(self.interfaces), len(points))
        found = np.full(len(points), -1, dtype=np.int64)
        for d in reversed(range(len(self.domains))):
            mask = np.ones(len(points), dtype=bool)
            for hs in self.domains[d].halfspaces:
                mask &= inside[hs.interface] if hs.inside else ~inside[hs.interface]
            found[mask] = d
        return found

    # --- Validation ---

    @property
    def valid(self):
        """Result of the last ``self_check`` (None if never run)."""
        return self._valid

    def self_check(self):
        """
        Check that the interfaces are closed and outward oriented, and
        that no two meshes (nor a mesh with itself) intersect.

        Returns
        -------
        ok : bool
            The reasons of a failure are logged.
        """
        ok = True
        for interface, surface in zip(self.interfaces, self._surfaces):
            if not surface.is_closed():
                logger.error("Interface %r is not closed or not consistently oriented", interface.name)
                ok = False
            elif surface.signed_volume() <= 0.0:
                logger.error("Interface %r has inward pointing normals", interface.name)
                ok = False
        for m in range(len(self.meshes)):
            for k in range(m, len(self.meshes)):
                if meshes_intersect(self.meshes[m], self.meshes[k]):
                    if m == k:
                        logger.error("Mesh %r intersects itself", self.meshes[m].name)
                    else:
                        logger.error("Meshes %r and %r intersect",
                                     self.meshes[m].name, self.meshes[k].name)
                    ok = False
        self._valid = ok
        if ok:
            logger.info("Geometry self-check passed")
        return ok


def make_nested_geometry(meshes, conductivities, names=None, old_ordering=False):
    """
    Nested geometry from meshes ordered from the innermost outwards.

    Parameters
    ----------
    meshes : list of Mesh
        Closed, outward oriented, strictly nested surfaces.
    conductivities : list of float
        One conductivity per enclosed layer, innermost first. The region
        outside the last mesh is insulating (air).
    names : list of str or None
        Domain names, ``len(meshes) + 1`` including the outer domain.
    """
    if len(conductivities) != len(meshes):
        raise ValueError(f"Need one conductivity per mesh, got {len(conductivities)} for {len(meshes)}")
    if names is None:
        names = [f"Domain{i}" for i in range(len(meshes))] + ["Air"]
    interfaces = [Interface(mesh.name or f"Interface{i}", (i,)) for i, mesh in enumerate(meshes)]
    domains = []
    for i, sigma in enumerate(conductivities):
        halfspaces = [HalfSpace(i, True)]
        if i > 0:
            halfspaces.insert(0, HalfSpace(i - 1, False))
        domains.append(Domain(names[i], float(sigma), halfspaces))
    domains.append(Domain(names[-1], 0.0, [HalfSpace(len(meshes) - 1, False)]))
    return Geometry(meshes, interfaces, domains, old_ordering=old_ordering)


# -------------------------------
# Triangle intersection test
# -------------------------------

def _segments_hit_triangles(starts, stops, tri_rr, eps=1e-12):
    """Moller-Trumbore test of segments against triangles, pairwise."""
    direction = stops - starts
    e1 = tri_rr[:, 1] - tri_rr[:, 0]
    e2 = tri_rr[:, 2] - tri_rr[:, 0]
    pvec = np.cross(direction, e2)
    det = np.einsum('ij,ij->i', e1, pvec)
    ok = np.abs(det) > eps * np.linalg.norm(e1, axis=1) * np.linalg.norm(e2, axis=1) \
        * np.linalg.norm(direction, axis=1)
    det = np.where(ok, det, 1.0)
    tvec = starts - tri_rr[:, 0]
    u = np.einsum('ij,ij->i', tvec, pvec) / det
    qvec = np.cross(tvec, e1)
    v = np.einsum('ij,ij->i', direction, qvec) / det
    t = np.einsum('ij,ij->i', e2, qvec) / det
    return ok & (u >= 0) & (v >= 0) & (u + v <= 1) & (t >= 0) & (t <= 1)


def meshes_intersect(first, second):
    """
    True if a triangle of ``first`` crosses a triangle of ``second``.

    Candidate pairs come from a k-d tree on the centroids. Triangles
    sharing a vertex, within a mesh or across meshes glued along a common
    boundary, are not tested. Coplanar contacts are not reported.
    """
    same = first is second
    radius = max(_max_circumradius(first), _max_circumradius(second))
    tree_a = cKDTree(first.centroids)
    tree_b = tree_a if same else cKDTree(second.centroids)
    pairs = tree_a.sparse_distance_matrix(tree_b, 2.0 * radius, output_type='ndarray')
    ia = pairs['i'].astype(np.int64)
    ib = pairs['j'].astype(np.int64)
    if same:
        keep = ia < ib
        ia, ib = ia[keep], ib[keep]
    a_rr = first.triangle_vertices[ia]
    b_rr = second.triangle_vertices[ib]
    shared = (a_rr[:, :, None, :] == b_rr[:, None, :, :]).all(axis=-1).any(axis=(1, 2))
    a_rr, b_rr = a_rr[~shared], b_rr[~shared]
    if len(a_rr) == 0:
        return False
    for i, j in ((0, 1), (1, 2), (2, 0)):
        if np.any(_segments_hit_triangles(a_rr[:, i], a_rr[:, j], b_rr)):
            return True
        if np.any(_segments_hit_triangles(b_rr[:, i], b_rr[:, j], a_rr)):
            return True
    return False


def _max_circumradius(mesh):
    return float(np.linalg.norm(mesh.triangle_vertices - mesh.centroids[:, None, :], axis=-1).max())
