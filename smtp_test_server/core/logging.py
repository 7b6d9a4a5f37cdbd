"""
Logging Configuration

Console (and optionally file) logging for the SMTP test server, as JSON
or plain text. Session code logs through `SessionLogger`, which tags every
record with the peer address and, for protocol traces, the direction of
the traffic. With the JSON format these tags become separate fields.
"""

import logging
import sys
from typing import Optional

import structlog
from pythonjsonlogger import jsonlogger

from smtp_test_server.config import Settings, get_settings

JSON_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Loggers that flood the output at DEBUG
QUIET_LOGGERS = ("asyncio",)


def _formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return jsonlogger.JsonFormatter(
            JSON_FORMAT,
            rename_fields={"levelname": "level", "name": "logger"},
            timestamp=True,
        )
    return logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(settings: Settings = None):
    """
    Configure logging for the standalone server.

    Replaces the root handlers with a stdout handler and, when `LOG_FILE`
    is set, a file handler sharing the same formatter.
    """
    settings = settings or get_settings()
    log_level = getattr(logging, settings.LOG_LEVEL.upper())
    formatter = _formatter(settings.LOG_FORMAT)

    logging.root.setLevel(log_level)
    logging.root.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logging.root.addHandler(console_handler)

    if settings.LOG_FILE:
        try:
            file_handler = logging.FileHandler(settings.LOG_FILE)
        except OSError as e:
            logging.error(f"Failed to open log file {settings.LOG_FILE}: {e}")
        else:
            file_handler.setFormatter(formatter)
            logging.root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (usually __name__)
    """
    return logging.getLogger(name)


class SessionLogger:
    """
    Logger bound to one client connection.

    Adds `peer` to every record. `recv` and `send` log protocol traffic at
    DEBUG with a `direction` field.
    """

    def __init__(self, logger: logging.Logger, peer: Optional[str] = None):
        self.logger = logger
        self.peer = peer
        self.extra = {}

        if peer:
            self.extra["peer"] = peer

    def _log(self, level: int, msg: str, **kwargs):
        extra = {**self.extra, **kwargs.pop("extra", {})}
        self.logger.log(level, msg, extra=extra, **kwargs)

    def debug(self, msg: str, **kwargs):
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs):
        self._log(logging.INFO, msg, **kwargs)

    def error(self, msg: str, **kwargs):
        self._log(logging.ERROR, msg, **kwargs)

    def recv(self, data):
        """Trace data read from the client."""
        self.debug(f"recv {data!r}", extra={"direction": "recv"})

    def send(self, data: str):
        """Trace a reply written to the client."""
        self.debug(f"send {data!r}", extra={"direction": "send"})
