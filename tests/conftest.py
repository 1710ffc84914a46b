import numpy as np
import pytest

from symbem import Mesh, make_nested_geometry
from symbem.headmat import head_mat
from symbem.io import write_mesh

RADII = (0.6, 1.0)
CONDUCTIVITIES = (1.0, 0.2)


def icosphere(subdiv=2, radius=1.0, center=(0.0, 0.0, 0.0), name="sphere"):
    """Outward oriented icosahedron subdivided ``subdiv`` times and projected on a sphere."""
    t = (1.0 + np.sqrt(5.0)) / 2.0
    verts = np.array([
        [-1,  t,  0], [ 1,  t,  0], [-1, -t,  0], [ 1, -t,  0],
        [ 0, -1,  t], [ 0,  1,  t], [ 0, -1, -t], [ 0,  1, -t],
        [ t,  0, -1], [ t,  0,  1], [-t,  0, -1], [-t,  0,  1],
    ], dtype=float)
    verts /= np.linalg.norm(verts, axis=1)[:, None]

    faces = np.array([
        [0,11,5], [0,5,1], [0,1,7], [0,7,10], [0,10,11],
        [1,5,9], [5,11,4], [11,10,2], [10,7,6], [7,1,8],
        [3,9,4], [3,4,2], [3,2,6], [3,6,8], [3,8,9],
        [4,9,5], [2,4,11], [6,2,10], [8,6,7], [9,8,1],
    ], dtype=int)

    def midpoint(a, b, cache, verts_list):
        key = (a, b) if a < b else (b, a)
        j = cache.get(key)
        if j is not None:
            return j
        v = (verts[a] + verts[b]) / 2.0
        v /= np.linalg.norm(v)
        j = len(verts_list)
        verts_list.append(v)
        cache[key] = j
        return j

    for _ in range(subdiv):
        cache, verts_list, new_faces = {}, verts.tolist(), []
        for a, b, c in faces:
            ab = midpoint(a, b, cache, verts_list)
            bc = midpoint(b, c, cache, verts_list)
            ca = midpoint(c, a, cache, verts_list)
            new_faces += [[a, ab, ca], [b, bc, ab], [c, ca, bc], [ab, bc, ca]]
        faces = np.array(new_faces, dtype=int)
        verts = np.array(verts_list)
        verts /= np.linalg.norm(verts, axis=1)[:, None]

    return Mesh(radius * verts + np.asarray(center, float), faces, name=name)


def submesh(mesh, keep, name=""):
    """Triangles ``keep`` of ``mesh``, with their own compact vertex numbering."""
    triangles = mesh.triangles[keep]
    used, local = np.unique(triangles, return_inverse=True)
    return Mesh(mesh.vertices[used], local.reshape(triangles.shape), name=name)


def hemispheres(mesh):
    """Open north and south halves of a closed mesh, glued along the equator."""
    north = mesh.centroids[:, 2] >= 0
    return [submesh(mesh, north, "North"), submesh(mesh, ~north, "South")]


def rdm(estimate, reference):
    """Relative difference measure between two potential maps."""
    return np.linalg.norm(estimate / np.linalg.norm(estimate) - reference / np.linalg.norm(reference))


def mag(estimate, reference):
    return np.linalg.norm(estimate) / np.linalg.norm(reference)


@pytest.fixture(scope="session")
def one_sphere():
    return make_nested_geometry([icosphere(2, 1.0, name="Head")], [1.0], names=["Brain", "Air"])


@pytest.fixture(scope="session")
def two_spheres():
    meshes = [icosphere(2, RADII[0], name="Cortex"), icosphere(2, RADII[1], name="Head")]
    geometry = make_nested_geometry(meshes, CONDUCTIVITIES, names=["Brain", "Scalp", "Air"])
    assert geometry.self_check()
    return geometry


@pytest.fixture(scope="session")
def two_spheres_matrix(two_spheres):
    return head_mat(two_spheres)


@pytest.fixture(scope="session")
def one_sphere_matrix(one_sphere):
    return head_mat(one_sphere)


def write_model(directory, version="1.1", subdiv=1):
    """Two nested spheres as mesh, .geom and .cond files; returns the .geom and .cond paths."""
    write_mesh(directory / "cortex.tri", icosphere(subdiv, RADII[0]))
    write_mesh(directory / "head.off", icosphere(subdiv, RADII[1]))
    if version == "1.1":
        geom = (
            "# Domain Description 1.1\n"
            "Interfaces 2\n"
            "Interface Cortex: \"cortex.tri\"\n"
            "Interface Head: \"head.off\"\n"
            "Domains 3\n"
            "Domain Brain: -Cortex\n"
            "Domain Scalp: Cortex -Head\n"
            "Domain Air: Head\n"
        )
    else:
        geom = (
            "# Domain Description 1.0\n"
            "Interfaces 2 Mesh\n"
            "cortex.tri\n"
            "head.off\n"
            "Domains 3\n"
            "Domain Scalp 1 -2\n"
            "Domain Brain -1\n"
            "Domain Air 2\n"
        )
    (directory / "head.geom").write_text(geom)
    (directory / "head.cond").write_text(
        "# Properties Description 1.0 (Conductivities)\n\n"
        f"Air 0.0\nScalp {CONDUCTIVITIES[1]}\nBrain {CONDUCTIVITIES[0]}\n")
    return directory / "head.geom", directory / "head.cond"
