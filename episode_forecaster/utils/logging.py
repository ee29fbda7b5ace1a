"""
Logging setup for the Episode Forecaster.

``configure_logging(config)`` is called once, at CLI entry, before any
pipeline work.  Library modules only ever do
``logger = logging.getLogger(__name__)``.

With ``json_format = true`` under ``[logging]`` each record is written as one
JSON object per line::

    {"ts": "2026-10-16T09:30:00Z", "level": "WARNING",
     "logger": "episode_forecaster.synthesis.evaluator",
     "msg": "Feature 'MEAN(motions.amount)' failed; ...", "run_slug": "..."}

Fields passed through ``extra=`` (e.g. ``run_slug``) appear at the top level.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from episode_forecaster.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Attributes every LogRecord has; anything else came from ``extra=``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_NOISY_LOGGERS = ("pyarrow",)


class JsonLineFormatter(logging.Formatter):
    """Format each record as a single JSON line (``ts``, ``level``, ``logger``, ``msg``)."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                LOG_DATE_FORMAT
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        for key, val in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                payload[key] = val
        return json.dumps(payload, default=str)


def configure_logging(config: "LoggingConfig", debug: bool = False) -> None:
    """Configure the root logger from a ``LoggingConfig``.

    Installs a stdout handler, plus a file handler when ``config.log_file`` is
    non-empty (parent directories are created).  ``debug=True`` forces DEBUG
    level regardless of ``config.level``.
    """
    level = logging.DEBUG if debug else getattr(logging, config.level.upper(), logging.INFO)

    formatter: logging.Formatter = (
        JsonLineFormatter() if config.json_format
        else logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_path = _log_path(config.log_file)
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _log_path(log_file: str) -> Optional[Path]:
    return Path(log_file) if log_file else None
