# symbem/kernels.py
"""
Closed-form potential kernels.

Triangle integrals are evaluated exactly for many target points at once:

* ``single_layer``   : int_T 1 / |x - y| dy
* ``double_layer``   : int_T (x - y) . n / |x - y|^3 dy  (signed solid angle)
* ``double_layer_p1``: same kernel weighted by the three P1 hat functions

None of them include the 1 / (4 pi) factor of the Green function; the
operator builders apply it. Point-source kernels (dipole potential, its
normal derivative and its magnetic field) are at the end of the module.
"""
import numpy as np

FOUR_PI = 4.0 * np.pi
MU0_OVER_4PI = 1e-7      # T.m/A

# Number of (point, triangle) pairs processed per vectorized chunk
PAIR_CHUNK = 100_000

_EPS = 1e-14


def chunks(n_rows, row_cost):
    """Yield ``(start, stop)`` bounds so that each chunk holds about ``PAIR_CHUNK`` pairs."""
    step = max(1, PAIR_CHUNK // max(1, row_cost))
    for start in range(0, n_rows, step):
        yield start, min(start + step, n_rows)


def triangle_frames(tri_rr):
    """
    Geometric frame of each triangle.

    Returns
    -------
    normals : ndarray, shape (m, 3)
    areas : ndarray, shape (m,)
    lengths : ndarray, shape (m, 3)
        Length of edge ``i`` going from corner ``i`` to corner ``i + 1``.
    tangents : ndarray, shape (m, 3, 3)
        Unit edge directions.
    outward : ndarray, shape (m, 3, 3)
        In-plane unit normals of the edges, pointing out of the triangle.
    """
    edges = np.roll(tri_rr, -1, axis=1) - tri_rr
    cross = np.cross(edges[:, 0], tri_rr[:, 2] - tri_rr[:, 0])
    area2 = np.linalg.norm(cross, axis=-1)
    normals = cross / area2[:, None]
    lengths = np.linalg.norm(edges, axis=-1)
    tangents = edges / lengths[..., None]
    outward = np.cross(tangents, normals[:, None, :])
    return normals, area2 / 2.0, lengths, tangents, outward


def _terms(points, tri_rr):
    """Shared quantities of the analytic integrals for (P, M) point/triangle pairs."""
    normals, areas, lengths, tangents, outward = triangle_frames(tri_rr)
    v = tri_rr[None, :, :, :] - points[:, None, None, :]          # y_i - x, (P, M, 3, 3)
    dist = np.linalg.norm(v, axis=-1)                              # (P, M, 3)
    v0, v1, v2 = v[:, :, 0], v[:, :, 1], v[:, :, 2]
    d0, d1, d2 = dist[..., 0], dist[..., 1], dist[..., 2]

    # Van Oosterom & Strackee, with the sign of int (x - y) . n / R^3
    triple = np.einsum('pmj,pmj->pm', v0, np.cross(v1, v2))
    denom = (d0 * d1 * d2
             + np.einsum('pmj,pmj->pm', v0, v1) * d2
             + np.einsum('pmj,pmj->pm', v0, v2) * d1
             + np.einsum('pmj,pmj->pm', v1, v2) * d0)
    omega = -2.0 * np.arctan2(triple, denom)

    # Edge line integrals int_e 1 / R
    dist_next = np.roll(dist, -1, axis=-1)
    s = dist + dist_next
    gamma = np.log((s + lengths[None]) / np.maximum(s - lengths[None], _EPS * lengths[None]))

    height = np.einsum('pmj,mj->pm', v0, normals)                  # (y - x) . n
    return v, omega, gamma, height, normals, areas, lengths, tangents, outward


def single_layer(points, tri_rr):
    """
    Exact ``int_T 1 / |x - y| dy`` for every point and triangle.

    Parameters
    ----------
    points : ndarray, shape (P, 3)
    tri_rr : ndarray, shape (M, 3, 3)

    Returns
    -------
    values : ndarray, shape (P, M)
    """
    v, omega, gamma, height, _, _, _, _, outward = _terms(points, tri_rr)
    # (y_i - x) . m_i is constant along edge i
    edge_heights = np.einsum('pmij,mij->pmi', v, outward)
    return (edge_heights * gamma).sum(axis=-1) + height * omega


def double_layer(points, tri_rr):
    """Exact ``int_T (x - y) . n / |x - y|^3 dy``, shape (P, M)."""
    points = np.asarray(points, float)
    tri_rr = np.asarray(tri_rr, float)
    v = tri_rr[None, :, :, :] - points[:, None, None, :]
    dist = np.linalg.norm(v, axis=-1)
    v0, v1, v2 = v[:, :, 0], v[:, :, 1], v[:, :, 2]
    d0, d1, d2 = dist[..., 0], dist[..., 1], dist[..., 2]
    triple = np.einsum('pmj,pmj->pm', v0, np.cross(v1, v2))
    denom = (d0 * d1 * d2
             + np.einsum('pmj,pmj->pm', v0, v1) * d2
             + np.einsum('pmj,pmj->pm', v0, v2) * d1
             + np.einsum('pmj,pmj->pm', v1, v2) * d0)
    return -2.0 * np.arctan2(triple, denom)


def double_layer_p1(points, tri_rr):
    """
    Exact ``int_T phi_i(y) (x - y) . n / |x - y|^3 dy`` for the three
    corner hat functions ``phi_i`` of every triangle.

    Returns
    -------
    values : ndarray, shape (P, M, 3)
        Summed over the last axis this gives ``double_layer``.
    """
    v, omega, gamma, height, normals, areas, lengths, tangents, _ = _terms(points, tri_rr)
    v_next = np.roll(v, -1, axis=2)
    v_prev = np.roll(v, -2, axis=2)
    # phi_i = n . ((y_{i+1} - y) x (y_{i+2} - y)) / 2A
    cross = np.einsum('pmij,mj->pmi', np.cross(v_next, v_prev), normals)
    # t_{i+1} . sum_e gamma_e t_e, with L_{i+1}
    tan_next = np.roll(tangents, -1, axis=1)
    len_next = np.roll(lengths, -1, axis=1)
    proj = np.einsum('mij,mej,pme->pmi', tan_next, tangents, gamma)
    values = cross * omega[..., None] - height[..., None] * len_next[None] * proj
    return values / (2.0 * areas)[None, :, None]


# -------------------------------
# Point dipole kernels
# -------------------------------

def dipole_potential(points, position, moment, sigma=1.0):
    """
    Infinite-medium potential ``q . (r - r0) / (4 pi sigma |r - r0|^3)``.

    Parameters
    ----------
    points : ndarray, shape (n, 3)
    position, moment : array-like, shape (3,)
    sigma : float
        Conductivity of the medium [S/m].

    Returns
    -------
    potential : ndarray, shape (n,)
    """
    diff = np.asarray(points, float) - np.asarray(position, float)
    norm = np.linalg.norm(diff, axis=-1)
    return (diff @ np.asarray(moment, float)) / (FOUR_PI * sigma * norm**3)


def dipole_flux(points, normals, position, moment):
    """Normal derivative of the unit-conductivity dipole potential, shape (n,)."""
    diff = np.asarray(points, float) - np.asarray(position, float)
    moment = np.asarray(moment, float)
    norm = np.linalg.norm(diff, axis=-1)
    qn = np.asarray(normals, float) @ moment
    qr = diff @ moment
    rn = (diff * normals).sum(axis=-1)
    return (qn / norm**3 - 3.0 * qr * rn / norm**5) / FOUR_PI


def dipole_magnetic_field(points, positions, moments):
    """
    Primary magnetic field ``mu0 / 4 pi q x (r - r0) / |r - r0|^3``.

    Parameters
    ----------
    points : ndarray, shape (n, 3)
    positions, moments : ndarray, shape (k, 3)

    Returns
    -------
    field : ndarray, shape (n, k, 3)
    """
    diff = np.asarray(points, float)[:, None, :] - np.asarray(positions, float)[None]
    norm = np.linalg.norm(diff, axis=-1)
    return MU0_OVER_4PI * np.cross(np.asarray(moments, float)[None], diff) / norm[..., None]**3
