# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Structured logging setup (structlog).

Call configure() once at process start; modules grab a bound logger with
get_logger(__name__) and log events as dotted names with key/value context.
"""

import logging
import os

import structlog


def configure(fmt: str | None = None, level: str | None = None) -> None:
    """Configure structlog processors.

    fmt: "console" (default) or "json". Falls back to TRIBUNAL_LOG_FORMAT.
    level: standard level name. Falls back to TRIBUNAL_LOG_LEVEL, then INFO.
    """
    fmt = fmt or os.environ.get("TRIBUNAL_LOG_FORMAT", "console")
    level_name = (level or os.environ.get("TRIBUNAL_LOG_LEVEL", "INFO")).upper()
    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str):
    return structlog.get_logger(name)
