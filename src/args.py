"""Argument parsing functionality for nixpkgs-update."""

import argparse


def _add_common(parser):
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Diagnostic log output file",
                        action="store",
                        type=str)
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to configuration file (YAML)",
                        action="store",
                        type=str)
    parser.add_argument("--set",
                        dest="CONFIG_SET",
                        help="Set configuration override (KEY=VALUE format, can be used multiple times)",
                        action="append",
                        type=str,
                        default=[])


def _add_update_flags(parser):
    parser.add_argument("--pr",
                        dest="DO_PR",
                        help="Push the branch and open a pull request",
                        action="store_true")
    parser.add_argument("--cachix",
                        dest="CACHIX",
                        help="Push the build result to Cachix",
                        action="store_true")
    parser.add_argument("--outpaths",
                        dest="OUTPATHS",
                        help="Calculate outpaths to estimate the rebuild impact",
                        action="store_true")


def _add_repo(parser):
    parser.add_argument("-C", "--repo",
                        dest="REPO_DIR",
                        help="Path to the nixpkgs checkout (default: current directory)",
                        action="store",
                        type=str,
                        default=".")


def build_parser():
    """Build the top-level parser with one subcommand per mode."""
    parser = argparse.ArgumentParser(
        prog="nixpkgs-update",
        description="Automatically update packages in nixpkgs",
        add_help=True,
    )
    sub = parser.add_subparsers(dest="COMMAND", metavar="COMMAND")
    sub.required = True

    batch = sub.add_parser("update-batch",
                           help="Update every package listed in a file")
    batch.add_argument("UPDATE_LIST",
                       help="File with one '<pname> <old> <new> [<url>]' per line ('-' for stdin)")
    _add_update_flags(batch)
    _add_repo(batch)
    _add_common(batch)

    single = sub.add_parser("update",
                            help="Update a single package on the current checkout")
    single.add_argument("UPDATE_LINE",
                        help="'<pname> <old> <new> [<url>]'")
    _add_update_flags(single)
    _add_repo(single)
    _add_common(single)

    cve = sub.add_parser("cve-report",
                         help="Print the security report for every package listed in a file")
    cve.add_argument("UPDATE_LIST",
                     help="File with one '<pname> <old> <new> [<url>]' per line ('-' for stdin)")
    _add_common(cve)

    github = sub.add_parser("check-github",
                            help="List packages whose latest GitHub release differs from the proposal")
    github.add_argument("UPDATE_LIST",
                        help="File with one '<pname> <old> <new> [<url>]' per line ('-' for stdin)")
    _add_repo(github)
    _add_common(github)

    return parser


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    return build_parser().parse_args(argv)
