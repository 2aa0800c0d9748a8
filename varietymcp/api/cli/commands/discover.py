"""CLI command for inspecting discovery results.

Commands:
    varietymcp discover <capability> [--limit N] [--json]
"""

import sys
from argparse import Namespace

from loguru import logger

from varietymcp.api.cli.utils.rich_output import RichOutputFormatter
from varietymcp.core.config.config import load_config
from varietymcp.core.exceptions import UnsafeNameError
from varietymcp.core.logging_setup import configure_logging
from varietymcp.services.discovery_service import DiscoveryService


async def discover_command(args: Namespace, formatter: RichOutputFormatter) -> None:
    """Print ranked candidates for a capability.

    Args:
        args: Parsed command-line arguments
        formatter: Output formatter for displaying results
    """
    try:
        config = load_config(args=args)
        configure_logging(config.logging)

        service = DiscoveryService.from_config(config.discovery)
        formatter.verbose_info(f"Sources: {', '.join(service.source_names) or 'none'}")

        candidates = await service.discover(args.capability)
        shown = candidates[: max(args.limit, 0)]

        if getattr(args, "json", False):
            formatter.json_output([c.to_dict() for c in shown])
            return

        if not candidates:
            formatter.warning(f"No candidates found for '{args.capability}'")
            sys.exit(1)
        formatter.candidates_table(args.capability, shown)

    except UnsafeNameError as e:
        formatter.error(str(e))
        sys.exit(2)
    except Exception as e:
        formatter.error(f"Discovery failed: {e}")
        logger.exception("Full error details:")
        sys.exit(1)
