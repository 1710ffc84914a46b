# symbem/sources.py
"""
Right-hand sides of the head system for the supported sources.

For a source in domain ``Omega`` of conductivity ``sigma`` producing the
infinite-medium potential ``v`` (unit conductivity), every mesh ``m``
bounding ``Omega`` with orientation ``s`` receives::

    V rows :  s * <phi_a, dn v>
    p rows : -s / sigma * <1_T, v>
"""
import logging
from dataclasses import replace

import numpy as np

from .geometry import GeometryError
from .headmat import _freeze
from .integrator import Integrator
from .kernels import dipole_flux, dipole_potential
from .operators import operator_d, operator_n, operator_s

logger = logging.getLogger(__name__)


def check_dipoles(dipoles):
    """Return dipoles as an (n, 6) float array, or raise ``ValueError``."""
    dipoles = np.asarray(dipoles, float)
    if dipoles.ndim != 2 or dipoles.shape[1] != 6:
        raise ValueError("Dipoles File Format Error: dipoles must have 6 columns "
                         f"(position, moment), got shape {dipoles.shape}")
    return dipoles


def locate_dipoles(geometry, positions, domain_name=None):
    """
    Domain handle of each dipole.

    With ``domain_name``, all dipoles must lie in that domain. Dipoles in
    no domain or in an insulating one are rejected.
    """
    found = geometry.domain_of(positions)
    if domain_name is not None:
        wanted = geometry.domain(domain_name)
        outside = np.flatnonzero(found != wanted)
        if outside.size:
            raise ValueError(f"{outside.size} dipole(s) lie outside domain {domain_name!r} "
                             f"(rows {outside[:10].tolist()})")
    lost = np.flatnonzero(found < 0)
    if lost.size:
        raise ValueError(f"{lost.size} dipole(s) lie in no domain (rows {lost[:10].tolist()})")
    insulating = [i for i, d in enumerate(found) if not geometry.domains[d].is_conductive]
    if insulating:
        raise ValueError(f"{len(insulating)} dipole(s) lie in a non-conductive domain "
                         f"(rows {insulating[:10]})")
    return found


def _barycentric(points, triangle):
    """Barycentric coordinates of points lying in the plane of one triangle."""
    a, b, c = triangle
    mat = np.column_stack([b - a, c - a])
    uv = np.linalg.lstsq(mat, (points - a).T, rcond=None)[0].T
    return np.column_stack([1.0 - uv.sum(axis=1), uv])


def _dipole_on_mesh(mesh, position, moment, integrator):
    """
    ``<1_T, v>`` per triangle and ``<phi_i, dn v>`` per triangle corner for
    one dipole, refining the triangles close to it when adaptive.
    """
    tri_rr = mesh.triangle_vertices
    pts = integrator.points(tri_rr)
    weights = integrator.weights(mesh.areas)
    pot = dipole_potential(pts, position, moment)
    flux = dipole_flux(pts, mesh.normals[:, None, :], position, moment)
    p0 = (weights * pot).sum(axis=1)
    p1 = np.einsum('tg,gi->ti', weights * flux, integrator.bary)

    if integrator.adaptive:
        for t in np.flatnonzero(integrator.is_near(tri_rr, position)):
            triangle, normal = tri_rr[t], mesh.normals[t]

            def integrand(points):
                bary = _barycentric(points, triangle)
                f = dipole_flux(points, normal, position, moment)
                return np.column_stack([dipole_potential(points, position, moment),
                                        bary * f[:, None]])

            values = integrator.adaptive_integrate(integrand, triangle)
            p0[t], p1[t] = values[0], values[1:]
    return p0, p1


def dip_source_mat(geometry, dipoles, integrator=None, adaptive=True, domain_name=None):
    """
    Right-hand side for point dipoles.

    Parameters
    ----------
    geometry : Geometry
    dipoles : array-like, shape (n_dipoles, 6)
        Positions then moments.
    integrator : Integrator or None
    adaptive : bool
        Refine the integrals on triangles close to a dipole. When False,
        plain Gauss quadrature is used everywhere.
    domain_name : str or None
        Domain that must contain every dipole. When None the domain of
        each dipole is located.

    Returns
    -------
    rhs : ndarray, shape (geometry.size, n_dipoles)
    """
    dipoles = check_dipoles(dipoles)
    integrator = Integrator() if integrator is None else integrator
    integrator = replace(integrator, adaptive=integrator.adaptive and adaptive)
    domains = locate_dipoles(geometry, dipoles[:, :3], domain_name)
    logger.info("DipSourceMat: %d dipoles, %s integration", len(dipoles),
                "adaptive" if integrator.adaptive else "non-adaptive")

    rhs = np.zeros((geometry.size, len(dipoles)))
    for j, (dipole, d) in enumerate(zip(dipoles, domains)):
        sigma = geometry.domains[d].conductivity
        for m, s in geometry.domain_meshes(d):
            mesh = geometry.meshes[m]
            p0, p1 = _dipole_on_mesh(mesh, dipole[:3], dipole[3:], integrator)
            rhs[geometry.vertex_indices(m), j] += s * mesh.scatter(p1[None])[0]
            tri = geometry.triangle_slice(m)
            if tri is not None:
                rhs[tri, j] += -s / sigma * p0
    return _freeze(rhs)


def surf_source_mat(geometry, source_mesh, integrator=None):
    """
    Right-hand side for a normal dipole layer with P1 density on a closed
    source mesh lying inside one conductive domain.

    Returns
    -------
    rhs : ndarray, shape (geometry.size, source_mesh.n_vertices)
    """
    integrator = Integrator() if integrator is None else integrator
    domains = np.unique(geometry.domain_of(source_mesh.vertices))
    if domains.size != 1 or domains[0] < 0:
        raise GeometryError(f"Source mesh {source_mesh.name!r} must lie inside a single domain")
    d = int(domains[0])
    sigma = geometry.domains[d].conductivity
    if sigma == 0.0:
        raise GeometryError(f"Source mesh {source_mesh.name!r} lies in non-conductive "
                            f"domain {geometry.domains[d].name!r}")
    logger.info("SurfSourceMat: %d source vertices in domain %r",
                source_mesh.n_vertices, geometry.domains[d].name)

    rhs = np.zeros((geometry.size, source_mesh.n_vertices))
    for m, s in geometry.domain_meshes(d):
        mesh = geometry.meshes[m]
        single = operator_s(mesh, source_mesh, integrator)
        rhs[geometry.vertex_indices(m)] += s * operator_n(mesh, source_mesh, single)
        tri = geometry.triangle_slice(m)
        if tri is not None:
            rhs[tri] += -s / sigma * operator_d(mesh, source_mesh, integrator)
    return _freeze(rhs)


def eit_source_mat(geometry, sensors, integrator=None):
    """
    Right-hand side for currents injected through electrodes.

    Each electrode injects a unit current spread uniformly over its patch
    of triangles on an interface facing an insulating domain. The
    injected current density enters the system as a known normal current
    on that interface.

    Parameters
    ----------
    geometry : Geometry
    sensors : Sensors
        Electrodes built against ``geometry`` (they must have patches).
    integrator : Integrator or None

    Returns
    -------
    rhs : ndarray, shape (geometry.size, sensors.n_sensors)
    """
    if sensors.patches is None:
        raise ValueError("EITSourceMat needs sensors attached to the geometry (with patches)")
    integrator = Integrator() if integrator is None else integrator
    logger.info("EITSourceMat: %d electrodes", sensors.n_sensors)

    rhs = np.zeros((geometry.size, sensors.n_sensors))
    for k in sorted({mesh for mesh, _ in sensors.patches}):
        if geometry.has_current(k):
            raise GeometryError(f"EIT electrodes must lie on a mesh facing an insulating domain, "
                                f"not on {geometry.meshes[k].name!r}")
        mesh_k = geometry.meshes[k]
        density = np.zeros((mesh_k.n_triangles, sensors.n_sensors))
        for e, (mesh, triangles) in enumerate(sensors.patches):
            if mesh == k:
                density[triangles, e] = 1.0 / mesh_k.areas[triangles].sum()

        conductive = [d for d in geometry.mesh_domains(k) if geometry.domains[d].is_conductive]
        d = conductive[0]
        s_k = geometry.orientation(k, d)
        sigma = geometry.domains[d].conductivity
        for m, s_m in geometry.domain_meshes(d):
            mesh_m = geometry.meshes[m]
            block = s_m * s_k * operator_d(mesh_k, mesh_m, integrator, same=m == k).T
            if m == k:
                block = block - 0.5 * s_k * mesh_k.mass_p1p0.toarray()
            rhs[geometry.vertex_indices(m)] += block @ density
            tri = geometry.triangle_slice(m)
            if tri is not None:
                single = operator_s(mesh_m, mesh_k, integrator)
                rhs[tri] += -s_m * s_k / sigma * (single @ density)
    return _freeze(rhs)
