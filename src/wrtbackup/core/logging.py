"""Logging setup for WrtConfigBackup.

Settings come from the ``logging`` section of ``config/local.yml`` (already
loaded by :func:`wrtbackup.core.storage.load_local_config`)::

    logging:
      directory: ~/.wrtbackup/logs
      filename: wrtbackup.log
      level: INFO

Records go to a log file and to stderr. Every record carries a ``device``
field, and ``password=``, ``token=`` and ``sysauth=`` values are masked
before they reach any handler.
"""

from __future__ import annotations

import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

LOGGER_NAME = "wrtbackup"
DEFAULT_DIRECTORY = Path("~/.wrtbackup/logs").expanduser()
FALLBACK_DIRECTORY = Path("./logs")
DEFAULT_FILENAME = "wrtbackup.log"
DEFAULT_LEVEL = logging.INFO
QUIET_LIBRARIES = ("paramiko", "urllib3")

LOG_FORMAT = "%(asctime)s | %(levelname)s | device=%(device)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(slots=True)
class LoggingConfig:
    """Resolved logging settings."""

    directory: Path = DEFAULT_DIRECTORY
    filename: str = DEFAULT_FILENAME
    level: int = DEFAULT_LEVEL

    @classmethod
    def from_local_config(cls, local_cfg: Mapping[str, Any] | None) -> "LoggingConfig":
        section = local_cfg.get("logging") if isinstance(local_cfg, Mapping) else None
        if not isinstance(section, Mapping):
            return cls()

        directory = section.get("directory")
        filename = section.get("filename")
        return cls(
            directory=Path(directory).expanduser() if directory else DEFAULT_DIRECTORY,
            filename=str(filename) if filename else DEFAULT_FILENAME,
            level=parse_level(section.get("level")),
        )


def parse_level(value: Any) -> int:
    """Accept ``"debug"``, ``"INFO"`` or a numeric level; anything else is INFO."""

    if isinstance(value, bool):
        return DEFAULT_LEVEL
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        level = logging.getLevelName(value.strip().upper())
        if isinstance(level, int):
            return level
    return DEFAULT_LEVEL


class DeviceContextFilter(logging.Filter):
    """Default the ``device`` field to ``-`` for records logged without one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "device", None):
            record.device = "-"
        return True


class SecretScrubberFilter(logging.Filter):
    SECRET_PATTERN = re.compile(r"\b(password|secret|token|sysauth)=([^\s;&]+)", re.IGNORECASE)

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True

        masked = self.SECRET_PATTERN.sub(r"\1=***", message)
        if masked != message:
            record.msg = masked
            record.args = ()
        return True


def _writable(directory: Path) -> bool:
    try:
        directory.mkdir(parents=True, exist_ok=True)
        probe = directory / ".write-test"
        probe.touch()
        probe.unlink()
    except OSError:
        return False
    return True


def setup_logging(
    local_cfg: Mapping[str, Any] | None = None, cli_level: int | None = None
) -> logging.Logger:
    """Install file and stderr handlers on the root logger.

    ``cli_level`` (from ``--debug``) wins over ``logging.level``. When the
    configured directory cannot be written, ``./logs`` is used instead and a
    warning is logged once the handlers are in place.
    """

    config = LoggingConfig.from_local_config(local_cfg)
    if cli_level is not None:
        config.level = cli_level

    log_directory = config.directory
    if not _writable(log_directory):
        log_directory = FALLBACK_DIRECTORY
        if not _writable(log_directory):
            raise OSError("Unable to create a writable logging directory.")

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = [
        logging.FileHandler(log_directory / config.filename, encoding="utf-8"),
        # stdout carries command output
        logging.StreamHandler(sys.stderr),
    ]

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(config.level)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(DeviceContextFilter())
        handler.addFilter(SecretScrubberFilter())
        root_logger.addHandler(handler)

    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(max(config.level, logging.WARNING))

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(config.level)

    if log_directory != config.directory:
        logger.warning(
            "Logging directory '%s' is not writable. Falling back to '%s'.",
            config.directory,
            log_directory,
        )
    logger.debug("Logging initialized at %s", log_directory / config.filename)
    return logger
