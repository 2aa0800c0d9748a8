"""CLI command for one-shot capability acquisition.

Runs the full acquisition pipeline in-process:
    discover -> install -> spawn -> handshake -> register [-> invoke]

Commands:
    varietymcp acquire <capability>... [--severity S] [--invoke JSON]
"""

import json
import sys
from argparse import Namespace
from typing import Any

from loguru import logger

from varietymcp.acquisition_factory import create_services
from varietymcp.api.cli.utils.rich_output import RichOutputFormatter
from varietymcp.core.config.config import load_config
from varietymcp.core.exceptions import VarietyMCPError
from varietymcp.core.logging_setup import configure_logging
from varietymcp.core.types import Severity
from varietymcp.mcp_client.exceptions import ProtocolError

# Extra wait beyond the attempt deadline before giving up on attempts
WAIT_MARGIN_SECONDS = 5.0


def _parse_invoke_arguments(raw: str | None) -> dict[str, Any] | None:
    """Parse --invoke JSON.

    Raises:
        ValueError: If the value is not a JSON object
    """
    if raw is None:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"--invoke is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError("--invoke must be a JSON object")
    return parsed


async def acquire_command(args: Namespace, formatter: RichOutputFormatter) -> None:
    """Acquire capabilities and report each attempt.

    Args:
        args: Parsed command-line arguments
        formatter: Output formatter for displaying results
    """
    try:
        invoke_arguments = _parse_invoke_arguments(getattr(args, "invoke", None))
    except ValueError as e:
        formatter.error(str(e))
        sys.exit(2)
    if invoke_arguments is not None and len(args.capabilities) != 1:
        formatter.error("--invoke requires exactly one capability")
        sys.exit(2)

    config = load_config(args=args)
    configure_logging(config.logging)
    services = create_services(config)
    monitor = services.monitor

    failed = False
    try:
        if not monitor.inject_gap(
            args.capabilities, Severity(args.severity), source="cli", force=True
        ):
            formatter.error("No valid capability names given")
            sys.exit(2)

        formatter.info(f"Acquiring: {', '.join(args.capabilities)}")
        await monitor.tick()
        finished = await monitor.wait_idle(
            timeout=config.acquisition.attempt_deadline_seconds + WAIT_MARGIN_SECONDS
        )
        if not finished:
            formatter.warning("Some attempts did not finish in time")

        statuses = []
        for raw in args.capabilities:
            status = monitor.get_acquisition_status(raw)
            if status is None:
                formatter.warning(f"No attempt recorded for '{raw}'")
                failed = True
                continue
            statuses.append(status)
            if not status["available"]:
                failed = True

        if getattr(args, "json", False):
            processes = [p.to_dict() for p in monitor.list_running_processes()]
            formatter.json_output({"attempts": statuses, "processes": processes})
        else:
            for status in statuses:
                formatter.attempt_summary(status)
                if status["available"]:
                    formatter.success(f"'{status['capability']}' is available")
                else:
                    formatter.error(f"'{status['capability']}' could not be acquired")

        if invoke_arguments is not None and not failed:
            capability = args.capabilities[0]
            formatter.info(f"Invoking '{capability}'...")
            result = await services.router.invoke(
                capability, invoke_arguments, timeout=args.invoke_timeout
            )
            formatter.json_output(result)

    except (VarietyMCPError, ProtocolError) as e:
        formatter.error(f"Acquisition failed: {e}")
        failed = True
    except KeyboardInterrupt:
        formatter.info("\nShutdown requested...")
        failed = True
    except Exception as e:
        formatter.error(f"Acquisition failed: {e}")
        logger.exception("Full error details:")
        failed = True
    finally:
        await services.shutdown()

    if failed:
        sys.exit(1)
