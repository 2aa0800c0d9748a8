"""Argument parser utilities for varietymcp CLI commands."""

from .acquire_parser import add_acquire_subparser
from .discover_parser import add_discover_subparser
from .main_parser import create_main_parser, setup_subparsers

__all__ = [
    "add_acquire_subparser",
    "add_discover_subparser",
    "create_main_parser",
    "setup_subparsers",
]
