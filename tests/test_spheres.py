"""Tests for the analytic concentric-sphere reference."""
import numpy as np
import pytest

from symbem.kernels import FOUR_PI
from symbem.spheres import shell_coefficients, sphere_potential

from conftest import icosphere


def test_centered_dipole_on_single_sphere():
    """On the surface of a homogeneous sphere V = 3 q.r / (4 pi sigma R^2)."""
    points = 2.0 * icosphere(1).vertices
    q = np.array([0.2, -0.5, 1.0])
    potential = sphere_potential(points, np.zeros(3), q, [2.0], [0.5])
    expected = 3.0 * (points / 2.0) @ q / (FOUR_PI * 0.5 * 4.0)
    np.testing.assert_allclose(potential, expected, rtol=1e-10)


def test_uniform_shells_match_single_sphere():
    points = 0.7 * icosphere(1).vertices
    args = ([0.1, 0.2, 0.25], [0.0, 1.0, 0.3])
    layered = sphere_potential(points, *args, [0.5, 0.8, 1.0], [0.4, 0.4, 0.4])
    single = sphere_potential(points, *args, [1.0], [0.4])
    np.testing.assert_allclose(layered, single, rtol=1e-8, atol=1e-10)


def test_continuity_across_shells():
    direction = np.array([0.6, 0.0, 0.8])
    radii, sigma = [0.6, 0.8, 1.0], [1.0, 0.0125, 1.0]
    for radius in radii[:2]:
        points = np.outer([radius * (1 - 1e-9), radius * (1 + 1e-9)], direction)
        inside, outside = sphere_potential(points, [0.0, 0.1, 0.2], [0.0, 1.0, 0.0], radii, sigma)
        np.testing.assert_allclose(inside, outside, rtol=1e-6)


def test_single_shell_coefficients():
    """One sphere: A = (n + 1) / (n sigma R^(2n+1)) with R = 1."""
    for n in (1, 2, 5):
        a, b = shell_coefficients(n, [1.0], [2.0])
        np.testing.assert_allclose(a, [(n + 1) / (n * 2.0)])
        np.testing.assert_allclose(b, [0.5])


@pytest.mark.parametrize("position, points", [
    ([0.0, 0.0, 0.7], [[0.0, 0.0, 0.9]]),
    ([0.0, 0.0, 0.1], [[0.0, 0.0, 1.1]]),
])
def test_invalid_positions(position, points):
    with pytest.raises(ValueError):
        sphere_potential(points, position, [0.0, 0.0, 1.0], [0.6, 1.0], [1.0, 0.2])


def test_invalid_shells():
    with pytest.raises(ValueError):
        sphere_potential([[0.0, 0.0, 0.5]], [0.0, 0.0, 0.1], [0.0, 0.0, 1.0], [1.0, 0.6], [1.0, 0.2])
