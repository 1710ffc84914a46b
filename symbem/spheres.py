# symbem/spheres.py
"""
Analytic potential of a dipole in concentric spheres.

Reference solution for validating the assembled operators: shells of
radii ``R_1 < ... < R_N`` with conductivities ``sigma_1 ... sigma_N``, an
insulating exterior, and a dipole in the innermost sphere.

In shell ``k`` the potential is expanded as::

    V = 1 / (4 pi) sum_n (A_k r^n + B_k r^(-n-1)) Y_n

with ``Y_n`` the angular part of the multipole expansion of the dipole,
``B_1 = 1 / sigma_1`` (the source term) and ``A``, ``B`` fixed by the
continuity of ``V`` and of ``sigma dV/dr`` at every radius, and
``dV/dr = 0`` on the outer sphere.
"""
import numpy as np

from .kernels import FOUR_PI, dipole_potential

N_TERMS = 100    # multipole degrees in the series


def shell_coefficients(n, radii, conductivities):
    """
    ``A_k`` and ``B_k`` of degree ``n`` for every shell.

    Radii must be scaled so that the outer one is 1. The continuity rows
    are multiplied by ``R^(n+1)`` and the flux rows by ``R^(n+2)`` so that
    only non-positive powers of the radii appear.

    Returns
    -------
    a, b : ndarray, shape (n_shells,)
    """
    n_shells = len(radii)
    sigma = np.asarray(conductivities, float)
    b1 = 1.0 / sigma[0]
    size = 2 * n_shells - 1

    def col_a(k):
        return 0 if k == 0 else 2 * k - 1

    def col_b(k):
        return 2 * k

    mat = np.zeros((size, size))
    rhs = np.zeros(size)
    row = 0
    for k in range(n_shells - 1):
        rp = radii[k] ** (2 * n + 1)
        # continuity of V
        mat[row, col_a(k)] += rp
        mat[row, col_a(k + 1)] -= rp
        mat[row, col_b(k + 1)] -= 1.0
        if k == 0:
            rhs[row] -= b1
        else:
            mat[row, col_b(k)] += 1.0
        # continuity of the normal current
        mat[row + 1, col_a(k)] += sigma[k] * n * rp
        mat[row + 1, col_a(k + 1)] -= sigma[k + 1] * n * rp
        mat[row + 1, col_b(k + 1)] += sigma[k + 1] * (n + 1)
        if k == 0:
            rhs[row + 1] += sigma[0] * (n + 1) * b1
        else:
            mat[row + 1, col_b(k)] -= sigma[k] * (n + 1)
        row += 2
    # insulated outer surface
    last = n_shells - 1
    mat[row, col_a(last)] = n * radii[last] ** (2 * n + 1)
    if last == 0:
        rhs[row] = (n + 1) * b1
    else:
        mat[row, col_b(last)] = -(n + 1)

    sol = np.linalg.solve(mat, rhs)
    a = np.array([sol[col_a(k)] for k in range(n_shells)])
    b = np.array([b1] + [sol[col_b(k)] for k in range(1, n_shells)])
    return a, b


def sphere_potential(points, position, moment, radii, conductivities, n_terms=N_TERMS):
    """
    Potential of a current dipole inside concentric spheres.

    Parameters
    ----------
    points : array-like, shape (n, 3)
        Evaluation points, inside the outer sphere.
    position, moment : array-like, shape (3,)
        Dipole position (inside the innermost sphere) and moment [A.m].
    radii : sequence of float
        Sphere radii, increasing [m].
    conductivities : sequence of float
        Conductivity of each shell, innermost first [S/m].
    n_terms : int
        Number of multipole degrees.

    Returns
    -------
    potential : ndarray, shape (n,)
    """
    radii = np.asarray(radii, float)
    sigma = np.asarray(conductivities, float)
    if radii.shape != sigma.shape or np.any(np.diff(radii) <= 0):
        raise ValueError("Need increasing radii and one conductivity per shell")
    scale = radii[-1]
    radii = radii / scale
    pts = np.atleast_2d(np.asarray(points, float)) / scale
    r0 = np.asarray(position, float) / scale
    q = np.asarray(moment, float)

    b = np.linalg.norm(r0)
    if b >= radii[0]:
        raise ValueError("The dipole must lie inside the innermost sphere")
    r = np.linalg.norm(pts, axis=1)
    if np.any(r > 1.0 + 1e-12):
        raise ValueError("Points must lie inside the outer sphere")
    region = np.minimum(np.searchsorted(radii, r), len(radii) - 1)
    inner = region == 0

    r_hat = pts / np.where(r > 0, r, 1.0)[:, None]
    r0_hat = r0 / b if b > 0 else np.array([0.0, 0.0, 1.0])
    c = r_hat @ r0_hat
    q_r0 = q @ r0_hat
    q_r = r_hat @ q
    r_outer = np.where(inner, 1.0, r)

    # Legendre P_n(c) and P_n'(c)
    p_prev, p_cur = np.ones_like(c), c
    dp_prev, dp_cur = np.zeros_like(c), np.ones_like(c)
    total = np.zeros(len(pts))
    for n in range(1, n_terms + 1):
        a, b_coef = shell_coefficients(n, radii, sigma)
        angular = b ** (n - 1) * (n * p_cur * q_r0 + dp_cur * (q_r - c * q_r0))
        radial = a[region] * r**n + np.where(inner, 0.0, b_coef[region] * r_outer ** (-n - 1))
        total += radial * angular
        p_prev, p_cur = p_cur, ((2 * n + 1) * c * p_cur - n * p_prev) / (n + 1)
        dp_prev, dp_cur = dp_cur, dp_prev + (2 * n + 1) * p_prev

    potential = total / FOUR_PI
    if np.any(inner):
        potential[inner] += dipole_potential(pts[inner], r0, q, sigma[0])
    return potential / scale**2
