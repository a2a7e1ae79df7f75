"""Logging configuration for the n8n stack tooling (console + file)."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

LOG_FILE_NAME = "n8n-stack.log"


def setup_logging(
    log_dir: Path | str | None = None,
    log_level: str | None = None,
    max_file_size_mb: int = 10,
) -> None:
    """Setup logging: console always, plus a JSON log file when a directory is given.

    Args:
        log_dir: Directory for the log file (console-only when None)
        log_level: Log level (defaults to LOG_LEVEL env var or INFO)
        max_file_size_mb: Max file size before truncation (no backup files kept)
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")

    log_level_num = getattr(logging, log_level.upper(), logging.INFO)

    # Clear any existing handlers to prevent duplicates
    logging.getLogger().handlers.clear()

    # Console goes to stderr so command output (status tables, logs) stays clean on stdout
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level_num)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level_num)
    root_logger.addHandler(console_handler)

    file_handler = None
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=0,  # Don't keep old files, just truncate
            encoding="utf-8",
        )
        file_handler.setLevel(log_level_num)
        root_logger.addHandler(file_handler)

    from structlog.stdlib import BoundLogger, LoggerFactory, ProcessorFormatter

    renderer = (
        structlog.dev.ConsoleRenderer()
        if sys.stderr.isatty()
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=True,
    )
    console_handler.setFormatter(ProcessorFormatter(processor=renderer))
    if file_handler is not None:
        file_handler.setFormatter(ProcessorFormatter(processor=structlog.processors.JSONRenderer()))

    logger = structlog.get_logger("n8n_stack")
    logger.debug(
        "Logging system initialized",
        log_dir=str(log_dir) if log_dir is not None else None,
        log_level=log_level,
        max_file_size_mb=max_file_size_mb,
    )


def get_logger() -> Any:
    """Get the logger used by the command-line front end."""
    return structlog.get_logger("n8n_stack")
