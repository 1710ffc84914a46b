# symbem/cli.py
"""symbem-assemble: command line front end of the operator assembly."""
import argparse
import logging
import sys
import time

from . import __version__
from .cortical import AlphaBeta, Gamma, cortical_mat
from .geometry import Geometry, GeometryError
from .headmat import head_mat
from .integrator import GAUSS_ORDER, Integrator
from .io import read_dipoles, read_mesh, read_points, read_sensors, save_matrix
from .logging_config import setup_logging
from .sources import dip_source_mat, eit_source_mat, surf_source_mat
from .transfer import (dip_source2internal_pot_mat, dip_source2meg_mat, head2ecog_mat,
                       head2eeg_mat, head2meg_mat, surf2vol_mat, surf_source2meg_mat)

logger = logging.getLogger(__name__)

# name -> (aliases, positional arguments, help)
COMMANDS = {
    "HeadMat": (["HM", "hm"], ["geometry", "conductivity", "output"],
                "symmetric BEM head matrix"),
    "CorticalMat": (["CM", "cm"], ["geometry", "conductivity", "sensors", "domain", "output"],
                    "regularized mapping from electrodes to cortical unknowns"),
    "SurfSourceMat": (["SSM", "ssm"], ["geometry", "conductivity", "source_mesh", "output"],
                      "right-hand side of a surface dipole layer"),
    "DipSourceMat": (["DSM", "dsm"], ["geometry", "conductivity", "dipoles", "output"],
                     "right-hand side of point dipoles"),
    "DipSourceMatNoAdapt": (["DSMNA", "dsmna"], ["geometry", "conductivity", "dipoles", "output"],
                            "right-hand side of point dipoles, without adaptive integration"),
    "EITSourceMat": (["EITSM", "EITsm"], ["geometry", "conductivity", "sensors", "output"],
                     "right-hand side of injected currents"),
    "Head2EEGMat": (["H2EM", "h2em"], ["geometry", "conductivity", "sensors", "output"],
                    "EEG electrode interpolation"),
    "Head2ECoGMat": (["H2ECogM", "H2ECOGM", "h2ecogm"],
                     ["geometry", "conductivity", "sensors", "output"],
                     "ECoG electrode interpolation"),
    "Head2MEGMat": (["H2MM", "h2mm"], ["geometry", "conductivity", "sensors", "output"],
                    "magnetic field of the volume currents"),
    "SurfSource2MEGMat": (["SS2MM", "ss2mm"], ["source_mesh", "sensors", "output"],
                          "magnetic field of a surface dipole layer"),
    "DipSource2MEGMat": (["DS2MM", "ds2mm"], ["dipoles", "sensors", "output"],
                         "magnetic field of point dipoles"),
    "Head2InternalPotMat": (["H2IPM", "h2ipm"], ["geometry", "conductivity", "points", "output"],
                            "potential at internal points from the head unknowns"),
    "DipSource2InternalPotMat": (["DS2IPM", "ds2ipm"],
                                 ["geometry", "conductivity", "dipoles", "points", "output"],
                                 "infinite-medium dipole potential at internal points"),
}


def _build_parser():
    parser = argparse.ArgumentParser(
        prog="symbem-assemble",
        description="Assemble symmetric BEM operators for EEG, MEG, ECoG and EIT",
    )
    parser.add_argument("--version", action="version", version=f"symbem {__version__}")
    sub = parser.add_subparsers(dest="alias", required=True)

    for name, (aliases, positionals, help_text) in COMMANDS.items():
        cmd = sub.add_parser(name, aliases=aliases, help=help_text)
        cmd.set_defaults(command=name)
        for arg in positionals:
            cmd.add_argument(arg)
        cmd.add_argument("--gauss-order", type=int, default=GAUSS_ORDER, choices=range(4))
        cmd.add_argument("--log-level", default="INFO")
        cmd.add_argument("--log-file")
        if "geometry" in positionals:
            cmd.add_argument("--old-ordering", action="store_true",
                             help="interleave potentials and currents mesh by mesh")
        if name in ("HeadMat", "CorticalMat"):
            cmd.add_argument("--n-jobs", type=int, default=1)
        if name in ("DipSourceMat", "DipSourceMatNoAdapt", "DipSource2InternalPotMat"):
            cmd.add_argument("--domain", help="domain containing all the dipoles")
        if name in ("Head2ECoGMat", "EITSourceMat"):
            cmd.add_argument("--interface", help="interface holding the electrodes")
        if name == "CorticalMat":
            cmd.add_argument("--alpha", type=float)
            cmd.add_argument("--beta", type=float)
            cmd.add_argument("--gamma", type=float)
            cmd.add_argument("--filename", help="cache file of the cortical transfer matrix")
    return parser


def _normalize(argv):
    """Accept the single-dash spelling of the commands (``-HeadMat``, ``-hm``)."""
    argv = list(argv)
    if argv and argv[0].startswith("-") and not argv[0].startswith("--"):
        name = argv[0][1:]
        if any(name == cmd or name in aliases for cmd, (aliases, _, _) in COMMANDS.items()):
            argv[0] = name
    return argv


def _regularization(args):
    if args.gamma is not None:
        if args.alpha is not None or args.beta is not None:
            raise ValueError("CorticalMat takes either --alpha/--beta or --gamma, not both")
        return Gamma(args.gamma)
    return AlphaBeta(args.alpha, args.beta)


def _geometry(args, check=False):
    geometry = Geometry.from_files(args.geometry, args.conductivity, old_ordering=args.old_ordering)
    if check and not geometry.self_check():
        raise GeometryError("the geometry failed its self-check")
    return geometry


def _run(args):
    integrator = Integrator(order=args.gauss_order)
    name = args.command
    if name == "HeadMat":
        return head_mat(_geometry(args, check=True), integrator, n_jobs=args.n_jobs)
    if name == "CorticalMat":
        regularization = _regularization(args)
        geometry = _geometry(args, check=True)
        sensors = read_sensors(args.sensors)
        return cortical_mat(geometry, sensors, regularization, domain_name=args.domain,
                            integrator=integrator, filename=args.filename, n_jobs=args.n_jobs)
    if name == "SurfSourceMat":
        return surf_source_mat(_geometry(args), read_mesh(args.source_mesh), integrator)
    if name in ("DipSourceMat", "DipSourceMatNoAdapt"):
        return dip_source_mat(_geometry(args), read_dipoles(args.dipoles), integrator,
                              adaptive=name == "DipSourceMat", domain_name=args.domain)
    if name == "EITSourceMat":
        geometry = _geometry(args)
        sensors = read_sensors(args.sensors, geometry=geometry, interface_name=args.interface)
        return eit_source_mat(geometry, sensors, integrator)
    if name == "Head2EEGMat":
        return head2eeg_mat(_geometry(args), read_sensors(args.sensors))
    if name == "Head2ECoGMat":
        return head2ecog_mat(_geometry(args), read_sensors(args.sensors), args.interface)
    if name == "Head2MEGMat":
        return head2meg_mat(_geometry(args), read_sensors(args.sensors), integrator)
    if name == "SurfSource2MEGMat":
        return surf_source2meg_mat(read_mesh(args.source_mesh), read_sensors(args.sensors), integrator)
    if name == "DipSource2MEGMat":
        return dip_source2meg_mat(read_dipoles(args.dipoles), read_sensors(args.sensors))
    if name == "Head2InternalPotMat":
        return surf2vol_mat(_geometry(args), read_points(args.points))
    if name == "DipSource2InternalPotMat":
        return dip_source2internal_pot_mat(_geometry(args), read_dipoles(args.dipoles),
                                           read_points(args.points), domain_name=args.domain)
    raise ValueError(f"Unknown command {name!r}")


def main(argv=None):
    parser = _build_parser()
    args = parser.parse_args(_normalize(sys.argv[1:] if argv is None else argv))
    setup_logging(args.log_level, args.log_file)
    logger.info("%s %s", args.command, " ".join(sys.argv[1:] if argv is None else argv))

    start = time.perf_counter()
    try:
        matrix = _run(args)
    except (ValueError, OSError, RuntimeError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    save_matrix(args.output, matrix)
    logger.info("%s done in %.2f s", args.command, time.perf_counter() - start)
    return 0


if __name__ == "__main__":
    sys.exit(main())
