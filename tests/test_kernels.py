"""Tests for the closed-form triangle and dipole kernels."""
import numpy as np

from symbem.integrator import Integrator, split_triangle
from symbem.kernels import (FOUR_PI, double_layer, double_layer_p1, dipole_flux,
                            dipole_magnetic_field, dipole_potential, single_layer)

from conftest import icosphere

TRIANGLE = np.array([[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.2, 0.8, 0.1]]])


class TestTriangleIntegrals:
    """Analytic integrals against fine quadrature."""

    def setup_method(self):
        self.points = np.array([[0.3, 0.3, 1.5], [2.0, -1.0, 0.5], [-1.0, 0.4, -0.8]])
        self.fine = Integrator(order=3)

    def _quadrature(self, func):
        """Quadrature on four levels of uniform subdivision."""
        tri = TRIANGLE
        for _ in range(4):
            tri = np.concatenate([split_triangle(t) for t in tri])
        return self.fine.integrate(func, tri).sum(axis=0)

    def test_single_layer(self):
        for x in self.points:
            expected = self._quadrature(lambda y: 1.0 / np.linalg.norm(y - x, axis=1))
            np.testing.assert_allclose(single_layer(x[None], TRIANGLE)[0, 0], expected, rtol=1e-8)

    def test_double_layer(self):
        normal = np.cross(TRIANGLE[0, 1] - TRIANGLE[0, 0], TRIANGLE[0, 2] - TRIANGLE[0, 0])
        normal /= np.linalg.norm(normal)
        for x in self.points:
            expected = self._quadrature(
                lambda y: (x - y) @ normal / np.linalg.norm(x - y, axis=1)**3)
            np.testing.assert_allclose(double_layer(x[None], TRIANGLE)[0, 0], expected, rtol=1e-8)

    def test_double_layer_p1(self):
        """Each hat-weighted integral matches quadrature, and they sum to the P0 one."""
        a, b, c = TRIANGLE[0]
        normal = np.cross(b - a, c - a)
        area2 = np.linalg.norm(normal)
        normal /= area2

        def hats(y):
            return np.column_stack([
                np.cross(b - y, c - y) @ normal,
                np.cross(c - y, a - y) @ normal,
                np.cross(a - y, b - y) @ normal,
            ]) / area2

        for x in self.points:
            expected = self._quadrature(
                lambda y: hats(y) * ((x - y) @ normal / np.linalg.norm(x - y, axis=1)**3)[:, None])
            values = double_layer_p1(x[None], TRIANGLE)[0, 0]
            np.testing.assert_allclose(values, expected, rtol=1e-7, atol=1e-12)
            np.testing.assert_allclose(values.sum(), double_layer(x[None], TRIANGLE)[0, 0], rtol=1e-12)

    def test_solid_angle_of_closed_surface(self):
        """The total solid angle is -4 pi inside an outward mesh and 0 outside."""
        mesh = icosphere(1)
        inside = double_layer(np.array([[0.1, 0.2, -0.1]]), mesh.triangle_vertices).sum()
        outside = double_layer(np.array([[2.0, 0.0, 0.0]]), mesh.triangle_vertices).sum()
        np.testing.assert_allclose(inside, -FOUR_PI, rtol=1e-10)
        np.testing.assert_allclose(outside, 0.0, atol=1e-10)

    def test_far_field(self):
        """Far away the single layer behaves like area / distance."""
        x = np.array([[0.0, 0.0, 1e4]])
        area = 0.5 * np.linalg.norm(np.cross(TRIANGLE[0, 1] - TRIANGLE[0, 0], TRIANGLE[0, 2] - TRIANGLE[0, 0]))
        np.testing.assert_allclose(single_layer(x, TRIANGLE)[0, 0], area / 1e4, rtol=1e-3)


class TestDipoleKernels:
    """Closed forms of the point dipole."""

    def test_potential(self):
        points = np.array([[0.0, 0.0, 2.0], [1.0, 0.0, 1.0]])
        pot = dipole_potential(points, [0.0, 0.0, 1.0], [0.0, 0.0, 2.0], sigma=0.5)
        np.testing.assert_allclose(pot, [2.0 / (FOUR_PI * 0.5), 0.0], atol=1e-15)

    def test_flux_is_gradient(self):
        """The normal derivative matches finite differences of the potential."""
        pos, q = np.array([0.1, -0.2, 0.3]), np.array([0.5, 1.0, -0.7])
        x = np.array([[1.0, 0.5, -0.4]])
        n = np.array([0.0, 0.6, 0.8])
        h = 1e-6
        fd = (dipole_potential(x + h * n, pos, q) - dipole_potential(x - h * n, pos, q)) / (2 * h)
        np.testing.assert_allclose(dipole_flux(x, n, pos, q), fd, rtol=1e-6)

    def test_magnetic_field(self):
        field = dipole_magnetic_field(np.array([[1.0, 0.0, 0.0]]), np.zeros((1, 3)), np.array([[0.0, 0.0, 1.0]]))
        np.testing.assert_allclose(field[0, 0], [0.0, 1e-7, 0.0])
