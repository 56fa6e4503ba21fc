"""
Structured JSON logging for the reward escrow.

Every record is one JSON object carrying the service, environment, the
``event`` key modules pass through ``extra`` (``"escrow.vested"``,
``"persistence.saved"``, ...) and the source location. Console output goes
to stderr so that ``--json-output`` on stdout stays machine-readable.

Usage:
    from reward_escrow.core.logging_config import setup_logging

    setup_logging(log_file="logs/escrow.json", level="INFO")
    logging.getLogger(__name__).info("Vested", extra={"event": "escrow.vested"})
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from reward_escrow.core.exceptions import ConfigurationError

SERVICE_NAME = "reward-escrow"
ROOT_LOGGER = "reward_escrow"

LOG_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"
MAX_LOG_BYTES = 20 * 1024 * 1024
LOG_BACKUPS = 5


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps escrow context onto every record."""

    def __init__(
        self,
        fmt: str = LOG_FORMAT,
        environment: Optional[str] = None,
        service_name: str = SERVICE_NAME,
    ):
        super().__init__(fmt=fmt)
        self.environment = environment or "production"
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        # Record creation time, not formatting time
        log_record["timestamp"] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        log_record["level"] = record.levelname.lower()
        log_record["service"] = self.service_name
        log_record["environment"] = self.environment
        log_record.setdefault("event", "log")
        log_record["source"] = {
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ConfigurationError(f"Unknown log level: {level}")
    return resolved


def setup_logging(
    name: str = ROOT_LOGGER,
    log_file: Optional[str] = None,
    level: str = "INFO",
    environment: str = "production",
    enable_console: bool = True,
    enable_file: bool = True,
) -> logging.Logger:
    """
    Attach JSON handlers to the ``name`` logger, replacing any it had.

    Args:
        name: Logger to configure; module loggers below it inherit the handlers
        log_file: Rotating JSON log file, used when ``enable_file`` is set
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        environment: Environment tag written on every record
        enable_console: Log to stderr
        enable_file: Log to ``log_file``

    Raises:
        ConfigurationError: If ``level`` is not a logging level name
    """
    numeric_level = _resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = CustomJsonFormatter(environment=environment)

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if enable_file and log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=MAX_LOG_BYTES,
                backupCount=LOG_BACKUPS,
                encoding="utf-8",
            )
        except OSError as e:
            logger.warning(
                "Could not open log file %s: %s", log_file, e,
                extra={"event": "logging.file_unavailable"},
            )
        else:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger


def setup_logging_from_config(section: Any, name: str = ROOT_LOGGER) -> logging.Logger:
    """Configure logging from a ``ConfigManager`` logging section."""
    return setup_logging(
        name=name,
        log_file=section.log_file,
        level=section.level,
        environment=section.environment,
        enable_console=section.enable_console,
        enable_file=section.enable_file,
    )
