"""Parser for discover command."""

import argparse

from .common_arguments import add_common_arguments, add_config_arguments


def add_discover_subparser(subparsers: argparse._SubParsersAction) -> None:
    """Add discover subcommand parser.

    Args:
        subparsers: Subparsers object to add to
    """
    discover_parser = subparsers.add_parser(
        "discover",
        help="List ranked candidate packages for a capability",
        description="Query discovery sources and print ranked candidates without installing.",
    )
    discover_parser.add_argument("capability", help="Capability name")
    discover_parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Maximum number of candidates to show (default: 10)",
    )
    discover_parser.add_argument(
        "--json",
        action="store_true",
        help="Print candidates as JSON",
    )

    add_common_arguments(discover_parser)
    add_config_arguments(discover_parser, ["discovery"])
