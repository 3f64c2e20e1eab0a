"""Logging setup shared by the CLI and embedding applications."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from reelkeeper.config.models import LoggingSettings

_HANDLER_MARKER = "_reelkeeper_handler"


def configure_logging(
    settings: LoggingSettings,
    *,
    log_path: Path | None = None,
    console: Console | None = None,
    verbose: bool = False,
) -> logging.Logger:
    """Attach terminal and optional rotating file handlers to the package logger.

    Calling this more than once replaces the handlers installed previously, so
    commands can reconfigure logging without duplicating output.

    Args:
        settings: Logging section of the loaded configuration.
        log_path: Optional file receiving a rotating copy of the log.
        console: Rich console used for terminal output.
        verbose: Forces DEBUG level regardless of ``settings.level``.

    Returns:
        logging.Logger: The configured ``reelkeeper`` logger.
    """
    logger = logging.getLogger("reelkeeper")
    level = logging.DEBUG if verbose else logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        level = logging.WARNING
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()

    rich_handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
        show_time=False,
    )
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    setattr(rich_handler, _HANDLER_MARKER, True)
    logger.addHandler(rich_handler)

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max(1, settings.max_size_mb) * 1024 * 1024,
            backupCount=max(0, settings.backup_count),
            encoding="utf-8",
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        setattr(file_handler, _HANDLER_MARKER, True)
        logger.addHandler(file_handler)

    return logger


__all__ = ["configure_logging"]
