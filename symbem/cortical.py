# symbem/cortical.py
"""
Cortical mapping: from EEG electrode potentials back to the potential and
normal current on the cortex (the only surface bounding the source
domain).

The head system restricted to the rows of the source-free meshes reads
``A_rc x_c + A_rr x_r = 0``; with the electrode interpolation ``H2E`` the
forward transfer from cortical unknowns to electrodes is::

    P = -H2E_r A_rr^-1 A_rc

The cortex self blocks are never needed, hence never assembled. The
mapping inverts ``P`` with one of two regularizations, chosen up front:

* ``AlphaBeta(alpha, beta)``: ``(P'P + alpha I + beta H)^-1 P'``
* ``Gamma(gamma)``: ``W^-1 P' (P W^-1 P' + gamma I)^-1`` with ``W = I + H``

where ``H`` is the surface gradient norm of the cortical potential.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

import numpy as np
import scipy.linalg

from .geometry import GeometryError
from .headmat import _freeze, assemble_blocks, coupled_pairs, deflate
from .integrator import Integrator
from .io import load_matrix, save_matrix
from .transfer import head2eeg_mat

logger = logging.getLogger(__name__)

# Fraction of the squared largest singular value of P used by default
DEFAULT_RELATIVE_ALPHA = 1e-3


@dataclass(frozen=True)
class AlphaBeta:
    """Tikhonov weight ``alpha`` and gradient weight ``beta``; None means estimated."""
    alpha: Optional[float] = None
    beta: Optional[float] = None


@dataclass(frozen=True)
class Gamma:
    """Single weight of the sensor-space regularization."""
    gamma: float

    def __post_init__(self):
        if not self.gamma > 0:
            raise ValueError(f"gamma must be positive, got {self.gamma!r}")


def estimate_alpha_beta(transfer, gradient):
    """
    Default regularization weights from the spectral scales of the problem.

    ``alpha = 1e-3 * s_max(P)^2`` and ``beta = alpha / lambda_max(H)``, so
    that both terms weigh the same fraction of the data term.
    """
    s_max = scipy.linalg.norm(transfer, 2)
    h_max = float(np.linalg.eigvalsh(gradient)[-1]) if gradient.size else 0.0
    alpha = DEFAULT_RELATIVE_ALPHA * s_max**2
    beta = alpha / h_max if h_max > 0 else 0.0
    return alpha, beta


def cortical_unknowns(geometry, domain_name=None):
    """
    The cortex interface and its unknown positions.

    The cortex is the interface enclosing the source domain, which must be
    its only boundary.

    Parameters
    ----------
    domain_name : str or None
        Name of the source domain; default the inside of the innermost
        interface.

    Returns
    -------
    interface : int
        Handle of the cortex interface.
    cortical : ndarray of int
        Positions of the cortical potentials then currents.
    """
    if domain_name is None:
        inner = geometry.interface_meshes(geometry.innermost_interface())[0]
        domain = geometry.domains[geometry.mesh_domains(inner)[0]]
    else:
        domain = geometry.domains[geometry.domain(domain_name)]
    halfspaces = domain.halfspaces
    if len(halfspaces) != 1 or not halfspaces[0].inside:
        raise GeometryError(f"The source domain {domain.name!r} must be the inside of a single interface")
    interface = halfspaces[0].interface
    meshes = geometry.interface_meshes(interface)
    if any(geometry.triangle_slice(m) is None for m in meshes):
        raise GeometryError("The cortex must separate two conductive domains")
    index = np.arange(geometry.size)
    cortical = np.concatenate([index[geometry.interface_vertex_slice(interface)]]
                              + [index[geometry.triangle_slice(m)] for m in meshes])
    logger.debug("Cortex %r bounds source domain %r", geometry.interfaces[interface].name, domain.name)
    return interface, cortical


def cortical_transfer(geometry, sensors, integrator=None, domain_name=None, n_jobs=1):
    """
    Transfer ``P`` from the cortical unknowns to the EEG electrodes.

    Returns
    -------
    transfer : ndarray, shape (sensors.n_sensors, n_cortical_unknowns)
    """
    integrator = Integrator() if integrator is None else integrator
    c, cortical = cortical_unknowns(geometry, domain_name)
    rest = np.setdiff1d(np.arange(geometry.size), cortical)
    cortex = set(geometry.interface_meshes(c))
    pairs = [(m, k) for m, k in coupled_pairs(geometry) if not (m in cortex and k in cortex)]
    logger.info("CorticalMat: eliminating %d unknowns, keeping %d cortical ones",
                rest.size, cortical.size)
    matrix = assemble_blocks(geometry, integrator, pairs, n_jobs=n_jobs)
    deflate(matrix, geometry)
    a_rr = matrix[np.ix_(rest, rest)]
    a_rc = matrix[np.ix_(rest, cortical)]
    h2e = head2eeg_mat(geometry, sensors)[:, rest]
    return -h2e @ scipy.linalg.solve(a_rr, a_rc, assume_a='sym')


def gradient_norm(geometry, cortex):
    """``blockdiag(K, 0)``: P1 stiffness on the cortical potentials, nothing on currents."""
    mesh = geometry.interface_mesh(cortex)
    n = mesh.n_vertices + mesh.n_triangles
    out = np.zeros((n, n))
    out[:mesh.n_vertices, :mesh.n_vertices] = mesh.stiffness.toarray()
    return out


def _load_or_compute_transfer(geometry, sensors, integrator, filename, domain_name, n_jobs):
    if filename is not None and os.path.exists(filename):
        logger.info("Loading cortical transfer from %s", filename)
        return load_matrix(filename)
    transfer = cortical_transfer(geometry, sensors, integrator, domain_name=domain_name, n_jobs=n_jobs)
    if filename is not None:
        save_matrix(filename, transfer)
    return transfer


def cortical_mat(geometry, sensors, regularization=None, domain_name=None, integrator=None,
                 filename=None, estimator=estimate_alpha_beta, n_jobs=1):
    """
    Regularized mapping from electrode potentials to cortical unknowns.

    Parameters
    ----------
    geometry : Geometry
        Model whose source domain is bounded by the cortex alone.
    sensors : Sensors
        EEG electrodes.
    regularization : AlphaBeta or Gamma
        Default ``AlphaBeta()`` (both weights estimated).
    domain_name : str or None
        Source domain, enclosed by the cortex. Default the inside of the
        innermost interface.
    integrator : Integrator or None
    filename : str or None
        Cache of the transfer ``P``: loaded if the file exists, otherwise
        computed and saved there.
    estimator : callable
        ``estimator(P, H) -> (alpha, beta)`` filling the weights left to
        None in ``AlphaBeta``.
    n_jobs : int

    Returns
    -------
    matrix : ndarray, shape (n_cortical_unknowns, sensors.n_sensors)
        Rows are the cortical potentials then the cortical currents.
    """
    if geometry.valid is False:
        raise GeometryError("CorticalMat: the geometry failed its self-check")
    regularization = AlphaBeta() if regularization is None else regularization
    integrator = Integrator() if integrator is None else integrator
    cortex, cortical = cortical_unknowns(geometry, domain_name)
    transfer = _load_or_compute_transfer(geometry, sensors, integrator, filename, domain_name, n_jobs)
    if transfer.shape != (sensors.n_sensors, cortical.size):
        raise ValueError(f"Cortical transfer has shape {transfer.shape}, expected "
                         f"{(sensors.n_sensors, cortical.size)}")
    gradient = gradient_norm(geometry, cortex)

    if isinstance(regularization, AlphaBeta):
        alpha, beta = regularization.alpha, regularization.beta
        if alpha is None or beta is None:
            est_alpha, est_beta = estimator(transfer, gradient)
            alpha = est_alpha if alpha is None else alpha
            beta = est_beta if beta is None else beta
        logger.info("CorticalMat: alpha = %g, beta = %g", alpha, beta)
        system = transfer.T @ transfer + alpha * np.eye(cortical.size) + beta * gradient
        mapping = scipy.linalg.solve(system, transfer.T, assume_a='sym')
    elif isinstance(regularization, Gamma):
        logger.info("CorticalMat2: gamma = %g", regularization.gamma)
        weight = np.eye(cortical.size) + gradient
        wpt = scipy.linalg.solve(weight, transfer.T, assume_a='pos')
        sensor_system = transfer @ wpt + regularization.gamma * np.eye(sensors.n_sensors)
        mapping = scipy.linalg.solve(sensor_system, wpt.T, assume_a='sym').T
    else:
        raise TypeError(f"Unknown regularization {regularization!r}")
    return _freeze(np.ascontiguousarray(mapping))


def cortical_mat2(geometry, sensors, gamma, domain_name=None, integrator=None, filename=None, n_jobs=1):
    """Shortcut for ``cortical_mat`` with ``Gamma(gamma)`` regularization."""
    return cortical_mat(geometry, sensors, Gamma(gamma), domain_name=domain_name,
                        integrator=integrator, filename=filename, n_jobs=n_jobs)
