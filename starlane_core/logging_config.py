"""
Logging setup for applications using Starlane.

The library itself only creates named loggers (``starlane_network``,
``starlane_sequence``, ``starlane_broadcast``) and never configures
handlers.  Applications call :func:`setup_logging` once:

  - **human** – coloured, single-line, readable
  - **json**  – newline-delimited JSON for log aggregators

Usage:
    from starlane_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", log_file="starlane.log")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

LIBRARY_LOGGERS = ("starlane_network", "starlane_sequence", "starlane_broadcast")

# attributes every LogRecord has; anything else came in through ``extra=``
_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                log_obj[key] = value
        if record.exc_info and record.exc_info[1]:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


class _HumanFormatter(logging.Formatter):
    """Coloured, concise single-line format."""

    COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        colour, reset = (self.COLOURS.get(record.levelname, ""), self.RESET) if self.colour else ("", "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = (
            f"{colour}{ts} [{record.levelname:<7}]{reset} "
            f"{record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the root logger.

    Parameters
    ----------
    level : str
        One of DEBUG, INFO, WARNING, ERROR, CRITICAL.
    fmt : str
        ``"human"`` or ``"json"``.
    log_file : str, optional
        Also write to this file, always as JSON.
    """
    if fmt not in ("human", "json"):
        raise ValueError(f"unknown log format {fmt!r}; expected 'human' or 'json'")

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        console.setFormatter(_JSONFormatter())
    else:
        console.setFormatter(_HumanFormatter(colour=sys.stderr.isatty()))
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path))
        fh.setFormatter(_JSONFormatter())
        root.addHandler(fh)


def setup_logging_from_config(config: Any) -> None:
    """Apply the ``[logging]`` section of a ``StarlaneConfig``."""
    section = getattr(config, "logging", config)
    setup_logging(section.level, section.format, section.file)
