"""Structured logging configuration: structlog over stdlib logging."""

from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path

import structlog

DEBUG_LOG_RELATIVE_PATH = Path(".vscode") / "corgea.extension.log"


def setup_logging(debug_log_file: Path | None = None, level: str | None = None) -> None:
    """Configure structlog and stdlib logging.

    Reads from environment variables:
        CORGEA_IDE_LOG_LEVEL   log level (default: WARNING)
        CORGEA_IDE_LOG_FORMAT  console | json (default: console)

    When *debug_log_file* is given (debug mode), every record at DEBUG and
    above is also appended to that file as JSON lines. *level* overrides
    ``CORGEA_IDE_LOG_LEVEL``.
    """
    log_level = (level or os.environ.get("CORGEA_IDE_LOG_LEVEL", "WARNING")).upper()
    log_format = os.environ.get("CORGEA_IDE_LOG_FORMAT", "console").lower()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers: dict[str, dict] = {
        "default": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": "structlog",
            "level": log_level,
        },
    }
    root_handlers = ["default"]
    root_level = log_level

    if debug_log_file is not None:
        debug_log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers["debug_file"] = {
            "class": "logging.FileHandler",
            "filename": str(debug_log_file),
            "encoding": "utf-8",
            "formatter": "json",
            "level": "DEBUG",
        }
        root_handlers.append("debug_file")
        root_level = "DEBUG"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structlog": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "foreign_pre_chain": shared_processors,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        renderer,
                    ],
                },
                "json": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "foreign_pre_chain": shared_processors,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        structlog.processors.JSONRenderer(),
                    ],
                },
            },
            "handlers": handlers,
            "root": {
                "handlers": root_handlers,
                "level": root_level,
            },
            "loggers": {
                "corgea_ide": {"level": root_level},
                "httpx": {"level": "WARNING"},
                "httpcore": {"level": "WARNING"},
                "asyncio": {"level": "WARNING"},
            },
        }
    )


def debug_log_path(workspace: Path) -> Path:
    """Location of the debug-mode transcript inside a workspace."""
    return workspace / DEBUG_LOG_RELATIVE_PATH
