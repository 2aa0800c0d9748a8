"""Top-level argument parser for the varietymcp CLI."""

import argparse

from varietymcp.version import __version__

from .acquire_parser import add_acquire_subparser
from .discover_parser import add_discover_subparser


def create_main_parser() -> argparse.ArgumentParser:
    """Create the root parser."""
    parser = argparse.ArgumentParser(
        prog="varietymcp",
        description=(
            "Acquire missing capabilities by discovering, installing and "
            "running MCP server packages."
        ),
    )
    parser.add_argument(
        "--version", action="version", version=f"varietymcp {__version__}"
    )
    return parser


def setup_subparsers(parser: argparse.ArgumentParser) -> argparse._SubParsersAction:
    """Register every subcommand on the root parser."""
    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    add_acquire_subparser(subparsers)
    add_discover_subparser(subparsers)
    return subparsers
