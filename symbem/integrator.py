# symbem/integrator.py
"""
Gauss quadrature on triangles, with optional adaptive refinement.

The rules are the symmetric Dunavant rules with 3, 6, 7 and 16 points
(orders 0 to 3, exact for polynomials of degree 2, 4, 5 and 8).
Barycentric points are stored with weights normalized to one, so that the
integral over a triangle is ``area * sum(w * f)``.
"""
from dataclasses import dataclass
from itertools import permutations

import numpy as np

# -------------------------------
# Quadrature defaults
# -------------------------------

GAUSS_ORDER = 3              # 16-point rule, degree 8
MAX_LEVELS = 10              # hard cap on adaptive subdivision depth
ADAPTIVE_TOLERANCE = 1e-4    # relative change between two refinement levels
NEAR_FIELD_RATIO = 3.0       # refine only within this many element sizes


def _orbit(point, weight):
    """All distinct permutations of one barycentric point, sharing a weight."""
    points = sorted(set(permutations(point)))
    return [(p, weight) for p in points]


def _rule(*orbits):
    pairs = [pair for orbit in orbits for pair in _orbit(*orbit)]
    bary = np.array([p for p, _ in pairs], dtype=float)
    weights = np.array([w for _, w in pairs], dtype=float)
    bary.flags.writeable = False
    weights.flags.writeable = False
    return bary, weights


_RULES = {
    0: _rule(
        ((2 / 3, 1 / 6, 1 / 6), 1 / 3),
    ),
    1: _rule(
        ((0.108103018168070, 0.445948490915965, 0.445948490915965), 0.223381589678011),
        ((0.816847572980459, 0.091576213509771, 0.091576213509771), 0.109951743655322),
    ),
    2: _rule(
        ((1 / 3, 1 / 3, 1 / 3), 0.225),
        ((0.059715871789770, 0.470142064105115, 0.470142064105115), 0.132394152788506),
        ((0.797426985353087, 0.101286507323456, 0.101286507323456), 0.125939180544827),
    ),
    3: _rule(
        ((1 / 3, 1 / 3, 1 / 3), 0.144315607677787),
        ((0.081414823414554, 0.459292588292723, 0.459292588292723), 0.095091634267285),
        ((0.658861384496480, 0.170569307751760, 0.170569307751760), 0.103217370534718),
        ((0.898905543365938, 0.050547228317031, 0.050547228317031), 0.032458497623198),
        ((0.008394777409958, 0.263112829634638, 0.728492392955404), 0.027230314174435),
    ),
}


def gauss_rule(order=GAUSS_ORDER):
    """
    Barycentric points and normalized weights of a triangle Gauss rule.

    Parameters
    ----------
    order : int
        Rule index, 0 to 3 (3, 6, 7 or 16 points).

    Returns
    -------
    bary : ndarray, shape (n_points, 3)
        Barycentric coordinates of the quadrature points.
    weights : ndarray, shape (n_points,)
        Weights summing to one.
    """
    if order not in _RULES:
        raise ValueError(f"Gauss order must be one of {sorted(_RULES)}, got {order!r}")
    return _RULES[order]


def triangle_areas(tri_rr):
    """Areas of triangles given as an array of shape (n, 3, 3)."""
    cross = np.cross(tri_rr[:, 1] - tri_rr[:, 0], tri_rr[:, 2] - tri_rr[:, 0])
    return 0.5 * np.linalg.norm(cross, axis=-1)


def split_triangle(triangle):
    """Split one triangle (3, 3) into its four midpoint children (4, 3, 3)."""
    a, b, c = triangle
    ab, bc, ca = (a + b) / 2.0, (b + c) / 2.0, (c + a) / 2.0
    return np.array([[a, ab, ca], [ab, b, bc], [ca, bc, c], [ab, bc, ca]])


def _converged(coarse, fine, tolerance):
    scale = np.linalg.norm(fine)
    return np.linalg.norm(fine - coarse) <= tolerance * scale or scale == 0.0


@dataclass(frozen=True)
class Integrator:
    """
    Quadrature configuration shared by every assembly routine.

    Parameters
    ----------
    order : int
        Gauss rule index (0..3). Default ``GAUSS_ORDER``.
    adaptive : bool
        Whether singular-ish integrands close to a triangle are refined.
    tolerance : float
        Relative change between two levels at which refinement stops.
    levels : int
        Maximum subdivision depth, at most ``MAX_LEVELS``.
    """
    order: int = GAUSS_ORDER
    adaptive: bool = True
    tolerance: float = ADAPTIVE_TOLERANCE
    levels: int = MAX_LEVELS

    def __post_init__(self):
        gauss_rule(self.order)
        if not 0 <= self.levels <= MAX_LEVELS:
            raise ValueError(f"levels must be in [0, {MAX_LEVELS}], got {self.levels!r}")
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance!r}")

    @property
    def bary(self):
        return gauss_rule(self.order)[0]

    @property
    def n_points(self):
        return len(gauss_rule(self.order)[1])

    def points(self, tri_rr):
        """Quadrature points of each triangle, shape (n_tri, n_points, 3)."""
        return np.einsum('gi,tij->tgj', self.bary, tri_rr)

    def weights(self, areas):
        """Quadrature weights scaled by the triangle areas, shape (n_tri, n_points)."""
        return np.asarray(areas)[:, None] * gauss_rule(self.order)[1][None, :]

    def integrate(self, func, tri_rr):
        """
        Plain Gauss quadrature of ``func`` over every triangle.

        Parameters
        ----------
        func : callable
            Maps points of shape (n, 3) to values of shape (n,) or (n, k).
        tri_rr : ndarray, shape (n_tri, 3, 3)
            Triangle corner coordinates.

        Returns
        -------
        values : ndarray, shape (n_tri,) or (n_tri, k)
        """
        tri_rr = np.asarray(tri_rr, float)
        pts = self.points(tri_rr)
        n_tri, n_g = pts.shape[:2]
        vals = np.asarray(func(pts.reshape(-1, 3)))
        vals = vals.reshape(n_tri, n_g, *vals.shape[1:])
        return np.einsum('tg,tg...->t...', self.weights(triangle_areas(tri_rr)), vals)

    def is_near(self, tri_rr, point):
        """
        Mask of the triangles close enough to ``point`` to need refinement.

        A triangle is near when the distance from its centroid to the point
        is below ``NEAR_FIELD_RATIO`` times its longest edge.
        """
        tri_rr = np.asarray(tri_rr, float)
        edges = tri_rr - np.roll(tri_rr, 1, axis=1)
        size = np.linalg.norm(edges, axis=-1).max(axis=1)
        dist = np.linalg.norm(tri_rr.mean(axis=1) - point, axis=1)
        return dist < NEAR_FIELD_RATIO * size

    def adaptive_integrate(self, func, triangle):
        """
        Integrate ``func`` over one triangle by recursive 1-to-4 subdivision.

        Each child is refined independently until its value changes by less
        than ``tolerance`` between two levels. When ``levels`` is reached the
        deepest approximation is returned as is.
        """
        triangle = np.asarray(triangle, float)
        coarse = self.integrate(func, triangle[None])[0]
        if self.levels == 0:
            return coarse
        return self._refine(func, triangle, coarse, 1)

    def _refine(self, func, triangle, coarse, level):
        children = split_triangle(triangle)
        parts = self.integrate(func, children)
        fine = parts.sum(axis=0)
        if level >= self.levels or _converged(coarse, fine, self.tolerance):
            return fine
        return sum(self._refine(func, child, part, level + 1)
                   for child, part in zip(children, parts))
