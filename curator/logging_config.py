"""
Structured logging for the curator daemon and pipeline.

structlog wraps the stdlib ``logging`` module, so module-level
``logging.getLogger`` calls in the extraction tiers and structlog events from
the pipeline land in the same handlers.

Output goes to stderr as console text (or JSON with ``CC_LOG_FORMAT=json``).
A long-running daemon also appends JSON lines to ``<data_dir>/daemon.log``.

Usage:
    from curator.logging_config import setup_logging, session_context

    setup_logging(log_file=config.log_path)

    with session_context(session_id, project_root):
        logger.info("session_processed", stored=3)
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import structlog

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("anthropic", "httpx", "httpcore")


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _formatter(renderer: structlog.types.Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def setup_logging(
    level: str | None = None,
    json_output: bool | None = None,
    log_file: str | Path | None = None,
) -> None:
    """
    Configure structlog and the root stdlib logger.

    Args:
        level: Log level name; defaults to $CC_LOG_LEVEL or INFO
        json_output: JSON on stderr; defaults to $CC_LOG_FORMAT == "json"
        log_file: Optional file that receives JSON lines in addition to stderr
    """
    if level is None:
        level = os.environ.get("CC_LOG_LEVEL", "INFO")

    if json_output is None:
        json_output = os.environ.get("CC_LOG_FORMAT", "").lower() == "json"

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_renderer: structlog.types.Processor
    if json_output:
        console_renderer = structlog.processors.JSONRenderer()
    else:
        console_renderer = structlog.dev.ConsoleRenderer()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(console_renderer))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
        root.addHandler(file_handler)

    root.setLevel(numeric_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


@contextmanager
def session_context(session_id: str, project_root: str) -> Iterator[None]:
    """Tag every log event inside the block with the session being processed."""
    structlog.contextvars.bind_contextvars(session_id=session_id, project=project_root)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars("session_id", "project")


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


__all__ = ["QUIET_LOGGERS", "get_logger", "session_context", "setup_logging"]
