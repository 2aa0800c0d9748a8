"""Loguru sink setup driven by LoggingConfig.

stdout is reserved for command output, so console logs always go to stderr.
"""

from __future__ import annotations

import sys

from loguru import logger

from varietymcp.core.config.logging_config import LoggingConfig

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"


def configure_logging(config: LoggingConfig | None = None) -> list[int]:
    """Replace loguru's default handler with configured sinks.

    Args:
        config: Logging configuration (defaults when None)

    Returns:
        Handler ids that were added, so callers can remove them again
    """
    config = config or LoggingConfig()
    logger.remove()

    handler_ids = [
        logger.add(
            sys.stderr,
            level=config.console_level,
            format=CONSOLE_FORMAT,
            colorize=None,
        )
    ]

    if config.file.enabled:
        handler_ids.append(
            logger.add(
                config.file.path,
                level=config.file.level,
                format=config.file.format,
                rotation=config.file.rotation,
                retention=config.file.retention,
                enqueue=True,
            )
        )

    return handler_ids
