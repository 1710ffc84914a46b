# symbem/sensors.py
"""
EEG/ECoG electrodes, EIT patches and MEG coils.

A sensor is one or more integration points. Points sharing a label form a
single sensor (MEG gradiometers, coils integrated over their surface) and
are combined with their weights.
"""
import logging

import numpy as np
from scipy import sparse

logger = logging.getLogger(__name__)


class Sensors:
    """
    Sensor set.

    Parameters
    ----------
    positions : array-like, shape (n_points, 3)
        Integration point positions.
    orientations : array-like, shape (n_points, 3) or None
        Coil orientations (MEG), normalized on input.
    weights : array-like, shape (n_points,) or None
        Integration weights, default 1.
    labels : list of str or None
        Sensor label of each point. None gives one sensor per point.
    radii : array-like, shape (n_sensors,) or None
        Electrode radii, used to spread EIT currents over a patch.
    geometry : Geometry or None
        When given, each electrode is attached to the interface
        ``interface_name`` (default: outermost) and receives a patch.
    interface_name : str or None
    """

    def __init__(self, positions, orientations=None, weights=None, labels=None,
                 radii=None, geometry=None, interface_name=None):
        self.positions = np.atleast_2d(np.asarray(positions, float))
        n_points = len(self.positions)
        if self.positions.shape[1] != 3:
            raise ValueError(f"Sensor positions must have 3 columns, got {self.positions.shape[1]}")

        self.orientations = None
        if orientations is not None:
            orientations = np.atleast_2d(np.asarray(orientations, float))
            if orientations.shape != self.positions.shape:
                raise ValueError("Sensor orientations must match positions")
            norm = np.linalg.norm(orientations, axis=1, keepdims=True)
            if np.any(norm == 0):
                raise ValueError("Sensor orientations must be non-zero")
            self.orientations = orientations / norm

        self.weights = np.ones(n_points) if weights is None else np.asarray(weights, float)
        if self.weights.shape != (n_points,):
            raise ValueError("Need one weight per integration point")

        if labels is None:
            labels = [str(i) for i in range(n_points)]
        labels = [str(label) for label in labels]
        if len(labels) != n_points:
            raise ValueError("Need one label per integration point")
        self.labels = list(dict.fromkeys(labels))
        index = {label: i for i, label in enumerate(self.labels)}
        self.bins = np.array([index[label] for label in labels], dtype=np.int64)

        self.radii = None
        if radii is not None:
            self.radii = np.asarray(radii, float).reshape(-1)
            if len(self.radii) != self.n_sensors:
                raise ValueError("Need one radius per sensor")

        self.interface = None
        self.patches = None
        if geometry is not None:
            self._attach(geometry, interface_name)

    def __repr__(self):
        return f"<Sensors: {self.n_sensors} sensors, {self.n_points} integration points>"

    @property
    def n_sensors(self):
        return len(self.labels)

    @property
    def n_points(self):
        return len(self.positions)

    @property
    def has_orientations(self):
        return self.orientations is not None

    @property
    def sensor_positions(self):
        """One position per sensor (its first integration point)."""
        first = np.unique(self.bins, return_index=True)[1]
        return self.positions[first]

    @property
    def weighting(self):
        """Sparse (n_sensors, n_points) matrix summing the weighted points of each sensor."""
        return sparse.csr_matrix((self.weights, (self.bins, np.arange(self.n_points))),
                                 shape=(self.n_sensors, self.n_points))

    def _attach(self, geometry, interface_name):
        if interface_name is None:
            self.interface = geometry.outermost_interface()
        else:
            self.interface = geometry.interface(interface_name)
        meshes = geometry.interface_meshes(self.interface)
        positions = self.sensor_positions
        projections = [geometry.meshes[m].project(positions) for m in meshes]
        distances = np.array([dist for _, _, dist in projections])
        closest = np.argmin(distances, axis=0)

        self.patches = []
        for s in range(self.n_sensors):
            j = closest[s]
            mesh = geometry.meshes[meshes[j]]
            tri, bary = projections[j][0][s], projections[j][1][s]
            center = bary @ mesh.triangle_vertices[tri]
            radius = 0.0 if self.radii is None else self.radii[s]
            within = np.flatnonzero(np.linalg.norm(mesh.centroids - center, axis=1) <= radius)
            self.patches.append((meshes[j], np.union1d(within, [tri]).astype(np.int64)))

    def info(self):
        """Log a short description of the sensors."""
        logger.info("%d sensors, %d integration points%s%s", self.n_sensors, self.n_points,
                    ", oriented" if self.has_orientations else "",
                    ", with patches" if self.patches is not None else "")
        for label, position in zip(self.labels[:5], self.sensor_positions[:5]):
            logger.info("  %s: %s", label, np.array2string(position, precision=4))
