# symbem/io.py
"""
Readers and writers for geometry, conductivity, mesh, sensor, dipole and
matrix files.

Geometry descriptions (``.geom``) follow the "Domain Description" 1.0 and
1.1 layouts::

    # Domain Description 1.1
    Interfaces 2
    Interface Cortex: "cortex.tri"
    Interface Head: "head.tri"
    Domains 3
    Domain Brain: -Cortex
    Domain Scalp: Cortex -Head
    Domain Air: Head

Conductivity files (``.cond``) hold one ``Name value`` pair per line.
"""
import logging
import shlex
from pathlib import Path

import numpy as np
import scipy.io

from .geometry import Domain, Geometry, GeometryError, HalfSpace, Interface
from .mesh import Mesh
from .sensors import Sensors

logger = logging.getLogger(__name__)

MATRIX_KEY = "linop"   # variable name in .mat files


# -------------------------------
# Meshes
# -------------------------------

def read_mesh(fname, name=None):
    """
    Read a triangle mesh.

    Parameters
    ----------
    fname : str or Path
        ``.tri`` (OpenMEEG text), ``.off``, or any FreeSurfer surface
        (read with MNE).
    name : str or None
        Mesh name; defaults to the file stem.
    """
    fname = Path(fname)
    name = fname.stem if name is None else name
    suffix = fname.suffix.lower()
    if suffix == ".tri":
        vertices, triangles = _read_tri(fname)
    elif suffix == ".off":
        vertices, triangles = _read_off(fname)
    else:
        import mne
        vertices, triangles = mne.read_surface(str(fname))
    logger.debug("Read mesh %s: %d vertices, %d triangles", fname, len(vertices), len(triangles))
    return Mesh(vertices, triangles, name=name)


def _read_tri(fname):
    with open(fname, "r", encoding="utf-8") as f:
        lines = [line.split() for line in f if line.strip()]
    if not lines or lines[0][0] != "-":
        raise ValueError(f"{fname}: not a .tri mesh (missing '- N' header)")
    n_vertices = int(lines[0][1])
    vertices = np.array([row[:3] for row in lines[1:1 + n_vertices]], dtype=float)
    header = lines[1 + n_vertices]
    if header[0] != "-":
        raise ValueError(f"{fname}: missing triangle header after {n_vertices} vertices")
    n_triangles = int(header[1])
    triangles = np.array(lines[2 + n_vertices:2 + n_vertices + n_triangles], dtype=np.int64)
    if triangles.shape != (n_triangles, 3):
        raise ValueError(f"{fname}: expected {n_triangles} triangles with 3 indices")
    return vertices, triangles


def _read_off(fname):
    with open(fname, "r", encoding="utf-8") as f:
        lines = [line.split() for line in f if line.strip() and not line.startswith("#")]
    if lines[0][0] != "OFF":
        raise ValueError(f"{fname}: not an OFF file")
    n_vertices, n_faces = int(lines[1][0]), int(lines[1][1])
    vertices = np.array([row[:3] for row in lines[2:2 + n_vertices]], dtype=float)
    faces = [row for row in lines[2 + n_vertices:2 + n_vertices + n_faces]]
    if any(row[0] != "3" for row in faces):
        raise ValueError(f"{fname}: only triangular faces are supported")
    triangles = np.array([row[1:4] for row in faces], dtype=np.int64)
    return vertices, triangles


def write_mesh(fname, mesh):
    """Write ``mesh`` as ``.tri`` (with vertex normals) or ``.off``."""
    fname = Path(fname)
    suffix = fname.suffix.lower()
    if suffix == ".tri":
        normals = np.zeros_like(mesh.vertices)
        np.add.at(normals, mesh.triangles, (mesh.normals * mesh.areas[:, None])[:, None, :])
        normals /= np.linalg.norm(normals, axis=1, keepdims=True)
        with open(fname, "w", encoding="utf-8") as f:
            f.write(f"- {mesh.n_vertices}\n")
            np.savetxt(f, np.hstack([mesh.vertices, normals]), fmt="%.17g")
            f.write("- {0} {0} {0}\n".format(mesh.n_triangles))
            np.savetxt(f, mesh.triangles, fmt="%d")
    elif suffix == ".off":
        with open(fname, "w", encoding="utf-8") as f:
            f.write(f"OFF\n{mesh.n_vertices} {mesh.n_triangles} 0\n")
            np.savetxt(f, mesh.vertices, fmt="%.17g")
            np.savetxt(f, np.column_stack([np.full(mesh.n_triangles, 3), mesh.triangles]), fmt="%d")
    else:
        raise ValueError(f"Cannot write mesh format {suffix!r} (use .tri or .off)")


# -------------------------------
# Geometry and conductivities
# -------------------------------

def read_cond(fname):
    """Read a conductivity file into a ``{domain name: sigma}`` dict."""
    conductivities = {}
    with open(fname, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            line = line.split("#", 1)[0].strip()
            if not line:
                continue
            tokens = line.split()
            if len(tokens) != 2:
                raise ValueError(f"{fname}:{lineno}: expected 'Name value', got {line!r}")
            try:
                conductivities[tokens[0]] = float(tokens[1])
            except ValueError:
                raise ValueError(f"{fname}:{lineno}: invalid conductivity {tokens[1]!r}") from None
    return conductivities


def read_geom(fname):
    """
    Parse a ``.geom`` file.

    Returns
    -------
    interfaces : list of (name, [(mesh path, mesh name, flip), ...])
    domains : list of (name, [(interface name, inside), ...])
    """
    fname = Path(fname)
    with open(fname, "r", encoding="utf-8") as f:
        raw = f.read().splitlines()
    version = None
    lines = []
    for line in raw:
        stripped = line.strip()
        if stripped.startswith("#"):
            if "Domain Description" in stripped:
                version = stripped.split()[-1]
            continue
        if stripped:
            lines.append(shlex.split(stripped))
    if version not in ("1.0", "1.1"):
        raise ValueError(f"{fname}: unsupported or missing 'Domain Description' version ({version})")
    base = fname.parent
    if version == "1.0":
        return _read_geom_10(lines, base, fname)
    return _read_geom_11(lines, base, fname)


def _read_geom_10(lines, base, fname):
    it = iter(lines)
    header = next(it)
    if header[0] != "Interfaces":
        raise ValueError(f"{fname}: expected 'Interfaces N Mesh'")
    n = int(header[1])
    interfaces = []
    for i in range(n):
        path = base / next(it)[0]
        interfaces.append((str(i + 1), [(path, path.stem, False)]))
    header = next(it)
    if header[0] != "Domains":
        raise ValueError(f"{fname}: expected 'Domains N'")
    domains = []
    for _ in range(int(header[1])):
        tokens = next(it)
        if tokens[0] != "Domain":
            raise ValueError(f"{fname}: expected a 'Domain' line, got {tokens}")
        halfspaces = [(tok.lstrip("+-"), tok.startswith("-")) for tok in tokens[2:]]
        domains.append((tokens[1], halfspaces))
    return interfaces, domains


def _read_geom_11(lines, base, fname):
    named_meshes = {}
    interfaces = []
    domains = []
    for tokens in lines:
        keyword = tokens[0]
        if keyword in ("Meshes", "Interfaces", "Domains") and len(tokens) <= 3:
            continue
        if keyword not in ("Mesh", "Interface", "Domain"):
            raise ValueError(f"{fname}: unexpected line {' '.join(tokens)!r}")
        if len(tokens) < 2:
            raise ValueError(f"{fname}: incomplete {keyword} line")
        label, rest = tokens[1], tokens[2:]
        if label.endswith(":"):
            label = label[:-1]
        elif rest and rest[0] == ":":
            rest = rest[1:]
        if keyword == "Mesh":
            path = base / rest[0]
            named_meshes[label] = path
        elif keyword == "Interface":
            parts = []
            for tok in rest:
                flip = tok.startswith("-")
                ref = tok.lstrip("+-")
                if ref in named_meshes:
                    parts.append((named_meshes[ref], ref, flip))
                else:
                    path = base / ref
                    parts.append((path, label if len(rest) == 1 else path.stem, flip))
            interfaces.append((label, parts))
        else:
            halfspaces = [(tok.lstrip("+-"), tok.startswith("-")) for tok in rest]
            domains.append((label, halfspaces))
    return interfaces, domains


def read_geometry(geom_file, cond_file, old_ordering=False):
    """
    Build a :class:`Geometry` from a ``.geom`` and a ``.cond`` file.

    Domains absent from the conductivity file are an error, except a
    domain named ``Air`` which defaults to zero.
    """
    interface_specs, domain_specs = read_geom(geom_file)
    conductivities = read_cond(cond_file)

    meshes, interfaces = [], []
    for name, parts in interface_specs:
        handles = []
        for path, mesh_name, flip in parts:
            mesh = read_mesh(path, name=mesh_name)
            meshes.append(mesh.flipped() if flip else mesh)
            handles.append(len(meshes) - 1)
        interfaces.append(Interface(name, tuple(handles)))

    index = {interface.name: i for i, interface in enumerate(interfaces)}
    domains = []
    for name, halfspaces in domain_specs:
        if name in conductivities:
            sigma = conductivities[name]
        elif name.lower() == "air":
            sigma = 0.0
        else:
            raise ValueError(f"No conductivity given for domain {name!r} in {cond_file}")
        resolved = []
        for ref, inside in halfspaces:
            if ref not in index:
                raise GeometryError(f"Domain {name!r} references unknown interface {ref!r}")
            resolved.append(HalfSpace(index[ref], inside))
        domains.append(Domain(name, sigma, tuple(resolved)))

    geometry = Geometry(meshes, interfaces, domains, old_ordering=old_ordering)
    logger.info("Loaded geometry %s: %d meshes, %d domains, %d unknowns",
                geom_file, len(meshes), len(domains), geometry.size)
    return geometry


# -------------------------------
# Sources and sensors
# -------------------------------

def read_dipoles(fname):
    """Read an ``(n, 6)`` dipole array (position, moment) from a text file."""
    dipoles = np.loadtxt(fname, ndmin=2)
    if dipoles.shape[1] != 6:
        raise ValueError(f"Dipoles File Format Error: {fname} has {dipoles.shape[1]} columns, expected 6")
    return dipoles


def read_sensors(fname, geometry=None, interface_name=None):
    """
    Read a sensor file.

    Each line holds an optional label followed by 3 (position),
    4 (position, radius), 6 (position, orientation) or 7 (position,
    orientation, weight) numbers. Lines sharing a label are the
    integration points of one sensor.
    """
    table = np.loadtxt(fname, dtype=str, ndmin=2, comments="#")
    labels = None
    try:
        float(table[0, 0])
    except ValueError:
        labels = list(table[:, 0])
        table = table[:, 1:]
    values = table.astype(float)
    n_cols = values.shape[1]
    positions = values[:, :3]
    orientations = weights = radii = None
    if n_cols == 4:
        radii = values[:, 3]
    elif n_cols == 6:
        orientations = values[:, 3:6]
    elif n_cols == 7:
        orientations, weights = values[:, 3:6], values[:, 6]
    elif n_cols != 3:
        raise ValueError(f"Sensors File Format Error: {fname} has {n_cols} numeric columns "
                         "(expected 3, 4, 6 or 7)")
    if radii is not None and labels is not None and len(set(labels)) != len(labels):
        raise ValueError(f"{fname}: electrodes with a radius cannot share labels")
    return Sensors(positions, orientations=orientations, weights=weights, labels=labels,
                   radii=radii, geometry=geometry, interface_name=interface_name)


def read_points(fname):
    """Read an ``(n, 3)`` array of points."""
    points = np.loadtxt(fname, ndmin=2)
    if points.shape[1] != 3:
        raise ValueError(f"{fname}: expected 3 columns, got {points.shape[1]}")
    return points


# -------------------------------
# Matrices
# -------------------------------

def save_matrix(fname, matrix):
    """
    Save a matrix as text (``%.17g``, exact round trip), ``.npy`` or ``.mat``.
    """
    fname = Path(fname)
    matrix = np.asarray(matrix)
    suffix = fname.suffix.lower()
    if suffix == ".npy":
        np.save(fname, matrix)
    elif suffix == ".mat":
        scipy.io.savemat(fname, {MATRIX_KEY: matrix})
    else:
        np.savetxt(fname, np.atleast_2d(matrix), fmt="%.17g")
    logger.info("Saved %s matrix to %s", "x".join(map(str, matrix.shape)), fname)


def load_matrix(fname):
    """Load a matrix saved by :func:`save_matrix`."""
    fname = Path(fname)
    suffix = fname.suffix.lower()
    if suffix == ".npy":
        return np.load(fname)
    if suffix == ".mat":
        contents = scipy.io.loadmat(fname)
        if MATRIX_KEY not in contents:
            raise ValueError(f"{fname}: no {MATRIX_KEY!r} variable")
        return np.asarray(contents[MATRIX_KEY], float)
    return np.loadtxt(fname, ndmin=2)
