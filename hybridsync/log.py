"""Logging setup driven by the ``logging`` section of the configuration."""

import json
import logging
from datetime import datetime

from .config import LoggingConfig

LOG_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

# Record attributes attached by LoggingObserver through ``extra``
SYNC_FIELDS = ("queue", "key", "commit_type", "target", "state")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, including the sync context of the record.

    Besides timestamp, level, component and message, any of ``SYNC_FIELDS``
    present on the record is emitted, so a log pipeline can follow a single
    key or queue through push and pull.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        for name in SYNC_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(config: LoggingConfig | None = None, verbose: bool = False) -> None:
    """Configure the root logger.

    Args:
        config: Logging configuration. Defaults to info level text output.
        verbose: Force debug level regardless of the configured level.

    Raises:
        ValueError: If the configured level is not one of ``LOG_LEVELS``.
    """
    config = config or LoggingConfig()
    if verbose:
        level = logging.DEBUG
    elif config.level in LOG_LEVELS:
        level = LOG_LEVELS[config.level]
    else:
        raise ValueError(f"Unknown log level: {config.level!r}")

    handler = logging.StreamHandler()
    if config.json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler], force=True)
