# symbem/headmat.py
"""
Symmetric BEM head matrix.

Unknowns are the potential ``V`` on the vertices of every interface and the
normal current ``p`` on the triangles of the meshes that separate two
conductive domains. For meshes ``m`` and ``k`` sharing domains ``Omega``
(with orientations ``s``) the blocks are::

    [V_m, V_k] :  sum s_m s_k sigma  * N_mk
    [V_m, p_k] : -sum s_m s_k        * D*_mk
    [p_m, V_k] : -sum s_m s_k        * D_mk
    [p_m, p_k] :  sum s_m s_k / sigma * S_mk

Potentials are indexed per interface, so blocks of meshes sharing
vertices add up on those rows. The lower triangle is finally replaced by
the transpose of the upper one, so the result is exactly symmetric.
"""
import logging

import numpy as np
from joblib import Parallel, delayed

from .geometry import GeometryError
from .integrator import Integrator
from .operators import operator_d, operator_n, operator_s

logger = logging.getLogger(__name__)


def _freeze(matrix):
    matrix.flags.writeable = False
    return matrix


def _triangle_indices(geometry, m):
    tri = geometry.triangle_slice(m)
    return None if tri is None else np.arange(tri.start, tri.stop)


def _pair_blocks(geometry, m, k, integrator):
    """
    Blocks ``(rows, cols, values, mirror)`` contributed by the mesh pair
    (m, k), m <= k. Mirrored blocks are also added transposed.
    """
    mesh_m, mesh_k = geometry.meshes[m], geometry.meshes[k]
    logger.debug("Assembling blocks %r / %r", mesh_m.name, mesh_k.name)
    single = operator_s(mesh_m, mesh_k, integrator)
    tri_m, tri_k = _triangle_indices(geometry, m), _triangle_indices(geometry, k)
    vert_m, vert_k = geometry.vertex_indices(m), geometry.vertex_indices(k)
    same = m == k

    blocks = [(vert_m, vert_k, geometry.n_coefficient(m, k) * operator_n(mesh_m, mesh_k, single),
               not same)]
    if tri_m is not None and tri_k is not None:
        blocks.append((tri_m, tri_k, geometry.s_coefficient(m, k) * single, not same))
    d_coef = geometry.d_coefficient(m, k)
    if tri_m is not None:
        blocks.append((tri_m, vert_k, d_coef * operator_d(mesh_m, mesh_k, integrator, same=same), True))
    if not same and tri_k is not None:
        blocks.append((tri_k, vert_m, d_coef * operator_d(mesh_k, mesh_m, integrator), True))
    return blocks


def assemble_blocks(geometry, integrator, pairs, size=None, n_jobs=1):
    """
    Assemble the symmetric blocks of the given mesh pairs.

    Blocks are summed in place (meshes of one interface share potential
    rows), then the upper triangle is mirrored.
    """
    size = geometry.size if size is None else size
    results = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(_pair_blocks)(geometry, m, k, integrator) for m, k in pairs)
    matrix = np.zeros((size, size))
    for blocks in results:
        for rows, cols, values, mirror in blocks:
            matrix[np.ix_(rows, cols)] += values
            if mirror:
                matrix[np.ix_(cols, rows)] += values.T
    return np.triu(matrix) + np.triu(matrix, 1).T


def coupled_pairs(geometry):
    """Mesh pairs (m <= k) that share at least one conductive domain."""
    n = len(geometry.meshes)
    return [(m, k) for m in range(n) for k in range(m, n) if geometry.shared_domains(m, k)]


def deflate(matrix, geometry):
    """
    Remove the constant null space of each insulated conductive part by
    adding a rank-one constant to the potential block of its boundary.
    """
    for group in geometry.isolated_parts():
        idx = np.unique(np.concatenate([geometry.vertex_indices(m) for m in group]))
        coef = np.abs(matrix[idx, idx]).mean() / idx.size
        matrix[np.ix_(idx, idx)] += coef
        logger.debug("Deflated %d potentials with coefficient %g", idx.size, coef)
    return matrix


def head_mat(geometry, integrator=None, n_jobs=1):
    """
    Symmetric BEM matrix of the head model.

    Parameters
    ----------
    geometry : Geometry
        Head model. If its self-check failed, nothing is assembled.
    integrator : Integrator or None
        Quadrature for the outer integrals (default ``Integrator()``).
    n_jobs : int
        Number of threads assembling mesh pairs in parallel.

    Returns
    -------
    matrix : ndarray, shape (geometry.size, geometry.size)
        Read-only, exactly symmetric.
    """
    if geometry.valid is False:
        raise GeometryError("HeadMat: the geometry failed its self-check")
    integrator = Integrator() if integrator is None else integrator
    pairs = coupled_pairs(geometry)
    logger.info("HeadMat: %d unknowns, %d mesh pairs, Gauss order %d",
                geometry.size, len(pairs), integrator.order)
    matrix = assemble_blocks(geometry, integrator, pairs, n_jobs=n_jobs)
    deflate(matrix, geometry)
    return _freeze(matrix)
