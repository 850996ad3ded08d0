from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

"""Logging setup for the resolvelab CLI.

Brief:
  Engine modules log through module loggers only. init_logging() wires the
  root logger from the ``logging:`` config block: bracketed lowercase level
  tags, UTC timestamps, optional file and syslog sinks.
"""

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}

LOG_FORMAT = "%(asctime)s %(level_tag)s %(name)s: %(message)s"


def level_from_name(name: Optional[str], default: int = logging.INFO) -> int:
    """Brief: Map 'debug'/'info'/'warn'/'error'/'crit' to a logging level."""

    return _LEVELS.get(str(name or "").lower(), default)


def _tag(record: logging.LogRecord) -> str:
    return _TAGS.get(record.levelno, f"[lvl{record.levelno}]")


class SyslogFormatter(logging.Formatter):
    """Syslog lines: program name and level tag, no timestamp."""

    def format(self, record):
        record.level_tag = _tag(record)
        return f"resolvelab {record.level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """Bracketed lowercase level tags and UTC ISO-8601 timestamps."""

    def formatTime(self, record, datefmt=None):
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        return stamp.strftime("%Y-%m-%dT%H:%M:%SZ")

    def format(self, record):
        record.level_tag = _tag(record)
        return super().format(record)


def _file_handler(file_path: Any) -> Optional[logging.Handler]:
    if not isinstance(file_path, str) or not file_path.strip():
        return None
    path = os.path.abspath(os.path.expanduser(file_path.strip()))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return logging.FileHandler(path, mode="a", encoding="utf-8")


def _syslog_handler(syslog_cfg: Any) -> logging.Handler:
    """Brief: Build a SysLogHandler from ``True`` or {address, facility}.

    Notes:
      - A two-item list address (YAML has no tuples) means (host, port).
    """

    opts = syslog_cfg if isinstance(syslog_cfg, dict) else {}
    address = opts.get("address", "/dev/log")
    if isinstance(address, (list, tuple)):
        address = (str(address[0]), int(address[1]))
    facility = getattr(
        logging.handlers.SysLogHandler,
        f"LOG_{str(opts.get('facility', 'USER')).upper()}",
        logging.handlers.SysLogHandler.LOG_USER,
    )
    handler = logging.handlers.SysLogHandler(address=address, facility=facility)
    handler.setFormatter(SyslogFormatter())
    return handler


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """Brief: Configure the root logger from a ``logging:`` config block.

    Inputs:
      - cfg: Mapping with optional keys:
          - level: debug, info, warn, error, crit (default: info)
          - stderr: log to stderr (default: True)
          - file: path of a log file; parent directories are created
          - syslog: True, or {address: path | [host, port], facility: name}

    Outputs:
      - None. Existing root handlers are replaced, so repeated calls do not
        duplicate output. Python warnings are routed into logging.

    Example:
      >>> init_logging({"level": "debug", "stderr": True})
    """

    cfg = cfg or {}
    root = logging.getLogger()
    root.setLevel(level_from_name(cfg.get("level", "info")))
    for h in list(root.handlers):
        root.removeHandler(h)

    formatter = BracketLevelFormatter(fmt=LOG_FORMAT)
    handlers: List[logging.Handler] = []
    if cfg.get("stderr", True):
        handlers.append(logging.StreamHandler(sys.stderr))
    file_handler = _file_handler(cfg.get("file"))
    if file_handler is not None:
        handlers.append(file_handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    if cfg.get("syslog"):
        try:
            root.addHandler(_syslog_handler(cfg["syslog"]))
        except (OSError, ValueError) as e:  # pragma: no cover - environment specific
            root.warning("Failed to configure syslog: %s", e)

    logging.captureWarnings(True)
