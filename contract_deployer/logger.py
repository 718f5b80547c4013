# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import os
import sys

from loguru import logger


def configure_logging(level: str = None, json_logs: bool = None):
    """Replace loguru's default sink with the service sinks."""
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
    if json_logs is None:
        json_logs = os.getenv("LOG_JSON", "false").lower() == "true"

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        serialize=json_logs,
        backtrace=False,
        diagnose=False,
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | {name}:{function}:{line} - <level>{message}</level>",
    )

    if os.getenv("DISCORD_CORE_LOG_WEBHOOK"):
        # Imported here, discord imports the logger from this module
        from contract_deployer.discord import discord_log_sink

        logger.add(discord_log_sink, level="ERROR")

    logger.debug(f"Logging configured at {level} (json={json_logs})")


__all__ = ["logger", "configure_logging"]
