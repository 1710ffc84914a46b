"""
symbem: Symmetric Boundary Element Method operators for EEG/MEG/ECoG/EIT
========================================================================

Assembles the linear operators of the quasi-static forward problem over a
piecewise constant conductivity model bounded by closed triangle meshes.

Modules
-------
- geometry: meshes, interfaces, domains and the unknown layout
- integrator: triangle quadrature with adaptive refinement
- headmat: symmetric head matrix
- sources: surface, dipole and EIT right-hand sides
- transfer: EEG/ECoG/MEG and internal potential operators
- cortical: regularized cortical mapping
- io: geometry, mesh, sensor and matrix files
- spheres: analytic multi-shell reference
"""

__version__ = "0.1.0"

# --- Model ---
from .geometry import (
    Domain,
    Geometry,
    GeometryError,
    HalfSpace,
    Interface,
    make_nested_geometry,
)
from .integrator import Integrator
from .mesh import Mesh
from .sensors import Sensors

# --- Operators ---
from .headmat import head_mat
from .sources import dip_source_mat, eit_source_mat, surf_source_mat
from .transfer import (
    dip_source2internal_pot_mat,
    dip_source2meg_mat,
    head2ecog_mat,
    head2eeg_mat,
    head2meg_mat,
    surf2vol_mat,
    surf_source2meg_mat,
)
from .cortical import AlphaBeta, Gamma, cortical_mat, cortical_mat2

# --- Files ---
from .io import (
    load_matrix,
    read_dipoles,
    read_geometry,
    read_mesh,
    read_sensors,
    save_matrix,
    write_mesh,
)

__all__ = [
    # Model
    "Domain",
    "Geometry",
    "GeometryError",
    "HalfSpace",
    "Interface",
    "Integrator",
    "Mesh",
    "Sensors",
    "make_nested_geometry",
    # Operators
    "head_mat",
    "surf_source_mat",
    "dip_source_mat",
    "eit_source_mat",
    "head2eeg_mat",
    "head2ecog_mat",
    "head2meg_mat",
    "surf_source2meg_mat",
    "dip_source2meg_mat",
    "surf2vol_mat",
    "dip_source2internal_pot_mat",
    "AlphaBeta",
    "Gamma",
    "cortical_mat",
    "cortical_mat2",
    # Files
    "load_matrix",
    "read_dipoles",
    "read_geometry",
    "read_mesh",
    "read_sensors",
    "save_matrix",
    "write_mesh",
]
