# symbem/operators.py
"""
Galerkin blocks of the boundary integral operators between two meshes.

With ``G = 1 / (4 pi r)`` and the target mesh tested by P0 indicators
(or P1 hats), the source mesh expanded in P0 / P1:

* ``S``  (P0 x P0)  : int_T int_T' G
* ``D``  (P0 x P1)  : int_T int dn_y G phi_b
* ``N``  (P1 x P1)  : hypersingular operator, obtained from ``S`` through
  the surface curls of the hat functions,
  ``N_ab = -sum_{T, T'} (curl phi_a . curl phi_b) S_TT'``.

The inner integral is analytic, the outer one uses the Gauss rule of the
integrator. ``D`` skips the self term of a triangle (principal value).
"""
import numpy as np

from .kernels import FOUR_PI, chunks, double_layer_p1, single_layer


def operator_s(target, source, integrator):
    """
    Single layer block, shape (target.n_triangles, source.n_triangles).
    """
    pts = integrator.points(target.triangle_vertices)
    weights = integrator.weights(target.areas)
    n_t, n_g = weights.shape
    out = np.empty((n_t, source.n_triangles))
    for start, stop in chunks(n_t, n_g * source.n_triangles):
        vals = single_layer(pts[start:stop].reshape(-1, 3), source.triangle_vertices)
        vals = vals.reshape(stop - start, n_g, source.n_triangles)
        out[start:stop] = np.einsum('tg,tgs->ts', weights[start:stop], vals)
    return out / FOUR_PI


def operator_d(target, source, integrator, same=False):
    """
    Double layer block, shape (target.n_triangles, source.n_vertices).

    Parameters
    ----------
    same : bool
        Target and source are the same mesh; the contribution of each
        triangle to itself is dropped.
    """
    pts = integrator.points(target.triangle_vertices)
    weights = integrator.weights(target.areas)
    n_t, n_g = weights.shape
    out = np.empty((n_t, source.n_vertices))
    for start, stop in chunks(n_t, n_g * source.n_triangles):
        vals = double_layer_p1(pts[start:stop].reshape(-1, 3), source.triangle_vertices)
        vals = vals.reshape(stop - start, n_g, source.n_triangles, 3)
        local = np.einsum('tg,tgsi->tsi', weights[start:stop], vals)
        if same:
            rows = np.arange(stop - start)
            local[rows, rows + start] = 0.0
        out[start:stop] = source.scatter(local)
    return out / FOUR_PI


def operator_n(target, source, single):
    """
    Hypersingular block, shape (target.n_vertices, source.n_vertices).

    Parameters
    ----------
    single : ndarray, shape (target.n_triangles, source.n_triangles)
        The ``S`` block between the same two meshes.
    """
    out = np.zeros((target.n_vertices, source.n_vertices))
    for curl_t, curl_s in zip(target.curl_matrices, source.curl_matrices):
        out -= curl_t @ np.asarray(curl_s @ single.T).T
    return out