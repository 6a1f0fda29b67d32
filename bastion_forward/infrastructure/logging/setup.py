"""
Logging setup and configuration utilities.

Library modules log through the standard ``logging`` module and attach an
``event`` name plus context fields as record extras. This module configures
loguru sinks and routes standard library records into loguru, keeping the
extras as bound fields so the file sink can write them as JSON lines.
"""

import logging
import sys
from pathlib import Path

from loguru import logger as loguru_logger

from ..config.models import LoggingConfig

# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside the logging module so loguru reports it
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        context = {
            key: value for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
        }
        loguru_logger.bind(logger_name=record.name, **context).opt(
            depth=depth, exception=record.exc_info
        ).log(level, record.getMessage())


def setup_logging(config: LoggingConfig) -> None:
    """
    Setup logging with the given configuration.

    Args:
        config: Logging configuration
    """
    level = config.level.upper()

    loguru_logger.remove()

    if config.console_enabled:
        loguru_logger.add(
            sys.stderr,
            format=CONSOLE_FORMAT,
            level=level,
            colorize=True,
            backtrace=True,
            diagnose=level in ("TRACE", "DEBUG")
        )

    if config.file_enabled:
        log_dir = Path(config.log_directory)
        log_dir.mkdir(parents=True, exist_ok=True)

        loguru_logger.add(
            log_dir / "tunnel.log",
            level=level,
            rotation=config.max_file_size,
            retention=config.backup_count,
            compression="zip",
            serialize=True
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # asyncssh is chatty at INFO (one line per channel)
    asyncssh_level = logging.DEBUG if level in ("TRACE", "DEBUG") else logging.WARNING
    logging.getLogger("asyncssh").setLevel(asyncssh_level)
