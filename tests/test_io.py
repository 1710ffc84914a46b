"""Tests for the file readers and writers."""
import numpy as np
import pytest

from symbem.io import (load_matrix, read_cond, read_dipoles, read_geom, read_mesh, read_points,
                       read_sensors, save_matrix, write_mesh)

from conftest import icosphere, write_model


class TestMatrices:

    @pytest.mark.parametrize("suffix", [".txt", ".npy", ".mat"])
    def test_exact_round_trip(self, tmp_path, suffix):
        rng = np.random.default_rng(0)
        matrix = rng.standard_normal((7, 4)) * 10.0 ** rng.integers(-12, 12, size=(7, 4))
        fname = tmp_path / f"matrix{suffix}"
        save_matrix(fname, matrix)
        np.testing.assert_array_equal(load_matrix(fname), matrix)

    def test_missing_variable(self, tmp_path):
        import scipy.io
        scipy.io.savemat(tmp_path / "other.mat", {"other": np.eye(2)})
        with pytest.raises(ValueError):
            load_matrix(tmp_path / "other.mat")


class TestMeshes:

    @pytest.mark.parametrize("suffix", [".tri", ".off"])
    def test_round_trip(self, tmp_path, suffix):
        mesh = icosphere(1, 0.7)
        fname = tmp_path / f"sphere{suffix}"
        write_mesh(fname, mesh)
        loaded = read_mesh(fname)
        assert loaded.name == "sphere"
        np.testing.assert_array_equal(loaded.vertices, mesh.vertices)
        np.testing.assert_array_equal(loaded.triangles, mesh.triangles)

    def test_unknown_format(self, tmp_path):
        with pytest.raises(ValueError):
            write_mesh(tmp_path / "sphere.stl", icosphere(1))

    def test_bad_tri_header(self, tmp_path):
        fname = tmp_path / "bad.tri"
        fname.write_text("3\n0 0 0\n")
        with pytest.raises(ValueError):
            read_mesh(fname)


class TestModelFiles:

    def test_cond_comments(self, tmp_path):
        fname = tmp_path / "model.cond"
        fname.write_text("# Properties Description 1.0 (Conductivities)\nBrain 0.33  # grey\n\nAir 0\n")
        assert read_cond(fname) == {"Brain": 0.33, "Air": 0.0}

    def test_bad_cond_line(self, tmp_path):
        fname = tmp_path / "model.cond"
        fname.write_text("Brain 0.33 0.2\n")
        with pytest.raises(ValueError):
            read_cond(fname)

    def test_geom_11(self, tmp_path):
        geom, _ = write_model(tmp_path, "1.1")
        interfaces, domains = read_geom(geom)
        assert [name for name, _ in interfaces] == ["Cortex", "Head"]
        assert interfaces[0][1] == [(tmp_path / "cortex.tri", "Cortex", False)]
        assert domains[1] == ("Scalp", [("Cortex", False), ("Head", True)])

    def test_geom_10(self, tmp_path):
        geom, _ = write_model(tmp_path, "1.0")
        interfaces, domains = read_geom(geom)
        assert [name for name, _ in interfaces] == ["1", "2"]
        assert domains[1] == ("Brain", [("1", True)])

    def test_geom_version(self, tmp_path):
        fname = tmp_path / "model.geom"
        fname.write_text("# Domain Description 2.0\nInterfaces 1\n")
        with pytest.raises(ValueError):
            read_geom(fname)


class TestSourcesAndSensors:

    def test_dipoles(self, tmp_path):
        fname = tmp_path / "dipoles.txt"
        fname.write_text("0 0 0.3 0 0 1\n0.1 0 0 1 0 0\n")
        assert read_dipoles(fname).shape == (2, 6)
        fname.write_text("0 0 0.3 0 0\n")
        with pytest.raises(ValueError, match="Dipoles File Format Error"):
            read_dipoles(fname)

    def test_points(self, tmp_path):
        fname = tmp_path / "points.txt"
        fname.write_text("0 0 0.1\n")
        assert read_points(fname).shape == (1, 3)

    def test_positions(self, tmp_path):
        fname = tmp_path / "electrodes.txt"
        fname.write_text("0 0 1\n1 0 0\n0 1 0\n")
        sensors = read_sensors(fname)
        assert sensors.n_sensors == 3
        assert not sensors.has_orientations
        assert sensors.labels == ["0", "1", "2"]

    def test_labels_and_radii(self, tmp_path):
        fname = tmp_path / "electrodes.txt"
        fname.write_text("Fz 0 0 1 0.05\nCz 1 0 0 0.05\n")
        sensors = read_sensors(fname)
        assert sensors.labels == ["Fz", "Cz"]
        np.testing.assert_array_equal(sensors.radii, [0.05, 0.05])

    def test_gradiometer_file(self, tmp_path):
        fname = tmp_path / "squids.txt"
        fname.write_text("G1 0 0 1.2 0 0 1 1\nG1 0 0 1.25 0 0 1 -1\nM1 1.2 0 0 2 0 0 1\n")
        sensors = read_sensors(fname)
        assert sensors.n_sensors == 2
        assert sensors.n_points == 3
        np.testing.assert_array_equal(sensors.bins, [0, 0, 1])
        np.testing.assert_allclose(sensors.orientations[2], [1.0, 0.0, 0.0])
        dense = sensors.weighting.toarray()
        np.testing.assert_array_equal(dense, [[1.0, -1.0, 0.0], [0.0, 0.0, 1.0]])

    def test_bad_column_count(self, tmp_path):
        fname = tmp_path / "electrodes.txt"
        fname.write_text("0 0 1 0 0\n")
        with pytest.raises(ValueError, match="Sensors File Format Error"):
            read_sensors(fname)
