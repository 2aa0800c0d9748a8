"""Parser for acquire command."""

import argparse

from varietymcp.core.types import Severity

from .common_arguments import add_common_arguments, add_config_arguments


def add_acquire_subparser(subparsers: argparse._SubParsersAction) -> None:
    """Add acquire subcommand parser.

    The acquire command injects a gap for one or more capabilities, runs
    the acquisition attempts to completion and reports the outcome.

    Args:
        subparsers: Subparsers object to add to
    """
    acquire_parser = subparsers.add_parser(
        "acquire",
        help="Acquire capabilities by installing and starting MCP servers",
        description=(
            "Discover, install, start and handshake with an MCP server for each "
            "capability, then optionally invoke it once. Started servers are "
            "stopped when the command exits."
        ),
    )
    acquire_parser.add_argument(
        "capabilities",
        nargs="+",
        help="Capability names (e.g. memory, filesystem, database)",
    )
    acquire_parser.add_argument(
        "--severity",
        choices=[s.value for s in Severity],
        default=Severity.NORMAL.value,
        help="Gap severity (default: normal)",
    )
    acquire_parser.add_argument(
        "--invoke",
        metavar="JSON",
        help="Invoke the acquired capability once with these JSON arguments "
        "(requires exactly one capability)",
    )
    acquire_parser.add_argument(
        "--invoke-timeout",
        type=float,
        default=60.0,
        help="Timeout in seconds for --invoke (default: 60)",
    )
    acquire_parser.add_argument(
        "--json",
        action="store_true",
        help="Print acquisition status as JSON",
    )

    add_common_arguments(acquire_parser)
    add_config_arguments(acquire_parser, ["acquisition", "discovery", "installer"])
