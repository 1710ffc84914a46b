# symbem/transfer.py
"""
Transfer operators from the head unknowns (or directly from the sources)
to measurements: electrode potentials, magnetic fields at MEG coils and
potentials at internal points.
"""
import logging
import warnings

import numpy as np

from .headmat import _freeze
from .integrator import Integrator
from .kernels import (FOUR_PI, MU0_OVER_4PI, chunks, dipole_magnetic_field,
                      dipole_potential, double_layer_p1, single_layer)
from .sources import check_dipoles, locate_dipoles

logger = logging.getLogger(__name__)


# -------------------------------
# Electrodes
# -------------------------------

def _interpolation(geometry, positions, interface):
    """
    Rows interpolating the potential at the projection of each position on
    the meshes of ``interface``.
    """
    meshes = geometry.interface_meshes(interface)
    projections = [geometry.meshes[m].project(positions) for m in meshes]
    closest = np.argmin(np.array([dist for _, _, dist in projections]), axis=0)
    matrix = np.zeros((len(positions), geometry.size))
    for i in range(len(positions)):
        j = closest[i]
        mesh = geometry.meshes[meshes[j]]
        tri, bary = projections[j][0][i], projections[j][1][i]
        cols = geometry.vertex_indices(meshes[j])[mesh.triangles[tri]]
        matrix[i, cols] = bary
    return matrix


def head2eeg_mat(geometry, sensors):
    """
    EEG electrode potentials from the head unknowns.

    Electrodes are projected on the outermost interface and the potential
    is interpolated linearly in the triangle of the projection.

    Returns
    -------
    matrix : ndarray, shape (sensors.n_sensors, geometry.size)
    """
    interface = geometry.outermost_interface()
    logger.info("Head2EEGMat: %d electrodes on interface %r",
                sensors.n_sensors, geometry.interfaces[interface].name)
    return _freeze(_interpolation(geometry, sensors.sensor_positions, interface))


def head2ecog_mat(geometry, sensors, interface_name=None):
    """
    ECoG electrode potentials from the head unknowns.

    Parameters
    ----------
    interface_name : str or None
        Interface the electrodes lie on. When omitted the innermost
        interface is used, which is only meaningful for nested geometries.
    """
    if interface_name is None:
        warnings.warn("No interface name given for the ECoG electrodes; using the innermost "
                      "interface. This is only correct for nested geometries.",
                      RuntimeWarning, stacklevel=2)
        interface = geometry.innermost_interface()
    else:
        interface = geometry.interface(interface_name)
    logger.info("Head2ECoGMat: %d electrodes on interface %r",
                sensors.n_sensors, geometry.interfaces[interface].name)
    return _freeze(_interpolation(geometry, sensors.sensor_positions, interface))


# -------------------------------
# MEG
# -------------------------------

def _require_orientations(sensors):
    if not sensors.has_orientations:
        raise ValueError("MEG sensors need orientations (6 or 7 column sensor file)")


def _p1_field(mesh, sensors, integrator):
    """
    ``int phi_a (n x (r - y)) . o / |r - y|^3`` for every integration point
    ``(r, o)`` and vertex ``a``, shape (n_points, n_vertices).
    """
    pts = integrator.points(mesh.triangle_vertices)                    # (m, g, 3)
    weights = integrator.weights(mesh.areas)
    out = np.empty((sensors.n_points, mesh.n_vertices))
    n_g = pts.shape[1]
    for start, stop in chunks(sensors.n_points, mesh.n_triangles * n_g):
        coils = sensors.positions[start:stop]
        ori = sensors.orientations[start:stop]
        diff = coils[:, None, None, :] - pts[None]                     # (c, m, g, 3)
        dist = np.linalg.norm(diff, axis=-1)
        # (n x d) . o = d . (o x n)
        on = np.cross(ori[:, None, :], mesh.normals[None])             # (c, m, 3)
        vals = np.einsum('cmgj,cmj->cmg', diff, on) / dist**3
        local = np.einsum('cmg,mg,gi->cmi', vals, weights, integrator.bary)
        out[start:stop] = mesh.scatter(local)
    return out


def head2meg_mat(geometry, sensors, integrator=None):
    """
    Magnetic field of the volume currents, from the head unknowns.

    Each mesh contributes ``-(mu0 / 4 pi) (sigma_in - sigma_out)
    int V n x (r - y) / |r - y|^3 . o``; current unknowns do not enter.

    Returns
    -------
    matrix : ndarray, shape (sensors.n_sensors, geometry.size)
    """
    _require_orientations(sensors)
    integrator = Integrator() if integrator is None else integrator
    logger.info("Head2MEGMat: %d sensors, %d integration points",
                sensors.n_sensors, sensors.n_points)
    per_point = np.zeros((sensors.n_points, geometry.size))
    for m, mesh in enumerate(geometry.meshes):
        inside, outside = geometry.mesh_domains(m)
        jump = geometry.domains[inside].conductivity - geometry.domains[outside].conductivity
        if jump == 0.0:
            continue
        per_point[:, geometry.vertex_indices(m)] += -MU0_OVER_4PI * jump * _p1_field(mesh, sensors, integrator)
    return _freeze(np.asarray(sensors.weighting @ per_point))


def surf_source2meg_mat(source_mesh, sensors, integrator=None):
    """
    Primary magnetic field of a normal dipole layer with P1 density.

    Returns
    -------
    matrix : ndarray, shape (sensors.n_sensors, source_mesh.n_vertices)
    """
    _require_orientations(sensors)
    integrator = Integrator() if integrator is None else integrator
    logger.info("SurfSource2MEGMat: %d sensors, %d source vertices",
                sensors.n_sensors, source_mesh.n_vertices)
    per_point = MU0_OVER_4PI * _p1_field(source_mesh, sensors, integrator)
    return _freeze(np.asarray(sensors.weighting @ per_point))


def dip_source2meg_mat(dipoles, sensors):
    """
    Primary magnetic field of point dipoles, ``mu0 / 4 pi q x (r - r0) / |r - r0|^3 . o``.

    Returns
    -------
    matrix : ndarray, shape (sensors.n_sensors, n_dipoles)
    """
    dipoles = check_dipoles(dipoles)
    _require_orientations(sensors)
    logger.info("DipSource2MEGMat: %d sensors, %d dipoles", sensors.n_sensors, len(dipoles))
    field = dipole_magnetic_field(sensors.positions, dipoles[:, :3], dipoles[:, 3:])
    per_point = np.einsum('pkj,pj->pk', field, sensors.orientations)
    return _freeze(np.asarray(sensors.weighting @ per_point))


# -------------------------------
# Internal potentials
# -------------------------------

def surf2vol_mat(geometry, points):
    """
    Potential at internal points from the head unknowns.

    For a point in domain ``Omega`` the representation formula reads
    ``V = sum_m s_m (S_m p_m / sigma - D_m V_m)`` over the meshes bounding
    ``Omega``. Points in insulating domains (or outside every domain) get
    zero rows. The potential of the sources themselves is not included.

    Returns
    -------
    matrix : ndarray, shape (n_points, geometry.size)
    """
    points = np.atleast_2d(np.asarray(points, float))
    domains = geometry.domain_of(points)
    matrix = np.zeros((len(points), geometry.size))
    ignored = 0
    for d in np.unique(domains):
        rows = np.flatnonzero(domains == d)
        if d < 0 or not geometry.domains[d].is_conductive:
            ignored += rows.size
            continue
        sigma = geometry.domains[d].conductivity
        for m, s in geometry.domain_meshes(d):
            mesh = geometry.meshes[m]
            vert = geometry.vertex_indices(m)
            tri = geometry.triangle_slice(m)
            for start, stop in chunks(rows.size, mesh.n_triangles):
                sub = rows[start:stop]
                dbl = mesh.scatter(double_layer_p1(points[sub], mesh.triangle_vertices))
                matrix[np.ix_(sub, vert)] += -s / FOUR_PI * dbl
                if tri is not None:
                    matrix[sub, tri] = s / (sigma * FOUR_PI) * single_layer(points[sub], mesh.triangle_vertices)
    if ignored:
        logger.warning("Surf2VolMat: %d point(s) outside any conductive domain get zero rows", ignored)
    logger.info("Surf2VolMat: %d points", len(points))
    return _freeze(matrix)


def dip_source2internal_pot_mat(geometry, dipoles, points, domain_name=None):
    """
    Infinite-medium dipole potential at internal points.

    ``V = q . (r - r0) / (4 pi sigma |r - r0|^3)`` when the point and the
    dipole lie in the same domain (of conductivity ``sigma``), zero
    otherwise. Added to the ``surf2vol_mat`` contribution this gives the
    full internal potential.

    Returns
    -------
    matrix : ndarray, shape (n_points, n_dipoles)
    """
    dipoles = check_dipoles(dipoles)
    points = np.atleast_2d(np.asarray(points, float))
    dipole_domains = locate_dipoles(geometry, dipoles[:, :3], domain_name)
    point_domains = geometry.domain_of(points)
    logger.info("DipSource2InternalPotMat: %d points, %d dipoles", len(points), len(dipoles))
    matrix = np.zeros((len(points), len(dipoles)))
    for j, (dipole, d) in enumerate(zip(dipoles, dipole_domains)):
        rows = point_domains == d
        sigma = geometry.domains[d].conductivity
        matrix[rows, j] = dipole_potential(points[rows], dipole[:3], dipole[3:], sigma)
    return _freeze(matrix)
