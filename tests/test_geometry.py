"""Tests for geometry construction, lookups, coefficients and self-check."""
import logging
from dataclasses import FrozenInstanceError

import numpy as np
import pytest

from symbem import Domain, Geometry, GeometryError, HalfSpace, Interface, make_nested_geometry
from symbem.geometry import meshes_intersect
from symbem.io import read_geometry, write_mesh

from conftest import CONDUCTIVITIES, hemispheres, icosphere, write_model


class TestLayout:
    """Unknown layout of a two-sphere model."""

    def test_size(self, two_spheres):
        """Potentials on both meshes, currents only on the inner one."""
        assert two_spheres.size == 162 + 162 + 320
        assert two_spheres.has_current(0)
        assert not two_spheres.has_current(1)
        assert two_spheres.triangle_slice(1) is None

    def test_new_ordering(self, two_spheres):
        np.testing.assert_array_equal(two_spheres.vertex_indices(0), np.arange(162))
        np.testing.assert_array_equal(two_spheres.vertex_indices(1), 162 + np.arange(162))
        assert two_spheres.interface_vertex_slice(1) == slice(162, 324)
        assert two_spheres.triangle_slice(0) == slice(324, 644)

    def test_old_ordering(self):
        meshes = [icosphere(2, 0.6, name="Cortex"), icosphere(2, 1.0, name="Head")]
        geometry = make_nested_geometry(meshes, CONDUCTIVITIES, old_ordering=True)
        assert geometry.interface_vertex_slice(0) == slice(0, 162)
        assert geometry.triangle_slice(0) == slice(162, 482)
        np.testing.assert_array_equal(geometry.vertex_indices(1), 482 + np.arange(162))

    def test_frozen_description(self, two_spheres):
        interface = two_spheres.interfaces[0]
        assert interface.meshes == (0,)
        assert isinstance(two_spheres.domains[1].halfspaces, tuple)
        with pytest.raises(FrozenInstanceError):
            interface.meshes = (1,)
        with pytest.raises(FrozenInstanceError):
            two_spheres.domains[0].conductivity = 2.0


class TestSplitInterface:
    """A sphere made of two open hemisphere meshes glued along the equator."""

    @pytest.fixture(scope="class")
    def split(self):
        domains = [Domain("Brain", 1.0, [HalfSpace(0, True)]), Domain("Air", 0.0, [HalfSpace(0, False)])]
        return Geometry(hemispheres(icosphere(2)), [Interface("Head", [0, 1])], domains)

    def test_shared_vertices_are_merged(self, split):
        assert split.size == 162
        surface = split.interface_mesh(0)
        assert surface.n_vertices == 162
        assert surface.n_triangles == 320
        north, south = split.vertex_indices(0), split.vertex_indices(1)
        assert np.intersect1d(north, south).size > 0
        assert np.union1d(north, south).size == 162
        np.testing.assert_array_equal(surface.vertices[north], split.meshes[0].vertices)
        np.testing.assert_array_equal(surface.vertices[south], split.meshes[1].vertices)

    def test_self_check(self, split):
        assert split.self_check()

    def test_glued_meshes_do_not_intersect(self, split):
        assert not meshes_intersect(split.meshes[0], split.meshes[1])

    def test_domain_of(self, split):
        """Points near the seam see half of the sphere through each mesh."""
        points = [[0.0, 0.0, 0.5], [0.0, 0.0, -0.5], [0.5, 0.0, 0.0], [0.0, -0.9, 0.01], [1.5, 0.0, 0.0]]
        np.testing.assert_array_equal(split.domain_of(points), [0, 0, 0, 0, 1])

    def test_open_half_fails_self_check(self, caplog):
        north = hemispheres(icosphere(2))[0]
        geometry = make_nested_geometry([north], [1.0])
        with caplog.at_level(logging.ERROR, logger="symbem"):
            assert not geometry.self_check()
        assert "not closed" in caplog.text


class TestCoefficients:
    """Sign and conductivity coefficients of the blocks."""

    def test_orientations(self, two_spheres):
        brain, scalp, air = 0, 1, 2
        assert two_spheres.orientation(0, brain) == 1
        assert two_spheres.orientation(0, scalp) == -1
        assert two_spheres.orientation(1, scalp) == 1
        assert two_spheres.orientation(1, air) == -1
        assert two_spheres.orientation(0, air) == 0

    def test_self_coefficients(self, two_spheres):
        s1, s2 = CONDUCTIVITIES
        assert two_spheres.n_coefficient(0, 0) == pytest.approx(s1 + s2)
        assert two_spheres.s_coefficient(0, 0) == pytest.approx(1 / s1 + 1 / s2)
        assert two_spheres.d_coefficient(0, 0) == -2
        # the air does not contribute
        assert two_spheres.n_coefficient(1, 1) == pytest.approx(s2)
        assert two_spheres.d_coefficient(1, 1) == -1

    def test_cross_coefficients(self, two_spheres):
        s2 = CONDUCTIVITIES[1]
        assert two_spheres.n_coefficient(0, 1) == pytest.approx(-s2)
        assert two_spheres.s_coefficient(0, 1) == pytest.approx(-1 / s2)
        assert two_spheres.d_coefficient(0, 1) == 1

    def test_isolated_parts(self, two_spheres):
        """The whole head is insulated by the air: deflate the outer mesh."""
        assert two_spheres.isolated_parts() == [[1]]


class TestLookups:
    """Names, innermost/outermost interfaces and point location."""

    def test_names(self, two_spheres):
        assert two_spheres.interface("Head") == 1
        assert two_spheres.domain("Scalp") == 1
        with pytest.raises(ValueError):
            two_spheres.interface("Skull")
        with pytest.raises(ValueError):
            two_spheres.domain("Skull")

    def test_innermost_outermost(self, two_spheres):
        assert two_spheres.innermost_interface() == 0
        assert two_spheres.outermost_interface() == 1

    def test_domain_of(self, two_spheres):
        points = np.array([[0.0, 0.0, 0.1], [0.0, 0.8, 0.0], [1.5, 0.0, 0.0]])
        np.testing.assert_array_equal(two_spheres.domain_of(points), [0, 1, 2])


class TestValidation:
    """Structural errors and the self-check."""

    def test_interface_bounded_twice(self):
        mesh = icosphere(1)
        domains = [Domain("A", 1.0, [HalfSpace(0, True)]), Domain("B", 1.0, [HalfSpace(0, True)])]
        with pytest.raises(GeometryError):
            Geometry([mesh], [Interface("I", [0])], domains)

    def test_unused_mesh(self):
        meshes = [icosphere(1), icosphere(1, 2.0)]
        domains = [Domain("In", 1.0, [HalfSpace(0, True)]), Domain("Out", 0.0, [HalfSpace(0, False)])]
        with pytest.raises(GeometryError):
            Geometry(meshes, [Interface("I", [0])], domains)

    def test_self_check_passes(self, two_spheres):
        assert two_spheres.self_check()
        assert two_spheres.valid is True

    def test_intersecting_meshes(self, caplog):
        meshes = [icosphere(2, 0.6, center=(0.0, 0.0, 0.5)), icosphere(2, 1.0)]
        geometry = make_nested_geometry(meshes, CONDUCTIVITIES)
        with caplog.at_level(logging.ERROR, logger="symbem"):
            assert not geometry.self_check()
        assert geometry.valid is False
        assert "intersect" in caplog.text

    def test_inward_normals(self):
        geometry = make_nested_geometry([icosphere(1).flipped()], [1.0])
        assert not geometry.self_check()


class TestGeometryFiles:
    """Loading .geom/.cond descriptions."""

    @pytest.mark.parametrize("version", ["1.0", "1.1"])
    def test_read_geometry(self, tmp_path, version):
        geom, cond = write_model(tmp_path, version)
        geometry = read_geometry(geom, cond)
        assert geometry.size == 42 + 42 + 80
        brain = geometry.domain("Brain")
        assert geometry.domains[brain].conductivity == 1.0
        assert geometry.domain_of([[0.0, 0.0, 0.0]])[0] == brain
        assert geometry.self_check()

    def test_from_files(self, tmp_path):
        geom, cond = write_model(tmp_path, "1.1")
        assert Geometry.from_files(geom, cond, old_ordering=True).old_ordering

    def test_missing_conductivity(self, tmp_path):
        geom, cond = write_model(tmp_path, "1.1")
        cond.write_text("Brain 1.0\n")
        with pytest.raises(ValueError):
            read_geometry(geom, cond)

    def test_unknown_interface(self, tmp_path):
        geom, cond = write_model(tmp_path, "1.1")
        geom.write_text(geom.read_text().replace("Domain Air: Head", "Domain Air: Skull"))
        with pytest.raises(GeometryError):
            read_geometry(geom, cond)

    def test_flipped_mesh_reference(self, tmp_path):
        """A '-' in front of a mesh reverses its orientation."""
        geom, cond = write_model(tmp_path, "1.1")
        write_mesh(tmp_path / "inverted.tri", icosphere(1, 1.0).flipped())
        geom.write_text(geom.read_text().replace('Interface Head: "head.off"',
                                                 'Interface Head: -"inverted.tri"'))
        geometry = read_geometry(geom, cond)
        assert geometry.meshes[1].signed_volume() > 0

    def test_interface_of_two_meshes(self, tmp_path):
        geom, cond = write_model(tmp_path, "1.1")
        for half in hemispheres(icosphere(1, 0.6)):
            write_mesh(tmp_path / f"{half.name.lower()}.tri", half)
        geom.write_text(geom.read_text().replace('Interface Cortex: "cortex.tri"',
                                                 'Interface Cortex: "north.tri" "south.tri"'))
        geometry = read_geometry(geom, cond)
        assert geometry.interface_meshes(0) == [0, 1]
        assert geometry.size == 42 + 42 + 80
        assert geometry.self_check()
