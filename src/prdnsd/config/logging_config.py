from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

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


class SyslogFormatter(logging.Formatter):
    """Formatter for syslog output without timestamps (syslog adds its own)."""

    def __init__(self, tag: str = "prdnsd") -> None:
        super().__init__()
        self.tag = tag

    def format(self, record):
        level_tag = _TAGS.get(record.levelno, f"[lvl{record.levelno}]")
        return f"{self.tag}: {level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """Formatter that adds bracketed lowercase level tags and UTC timestamps."""

    def formatTime(self, record, datefmt=None):
        """Format the record's creation time as UTC ISO-8601 with Z suffix."""
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return ts.strftime("%Y-%m-%dT%H:%M:%SZ")

    def format(self, record):
        record.level_tag = _TAGS.get(record.levelno, f"[lvl{record.levelno}]")
        return super().format(record)


def resolve_level(cfg: Optional[Dict[str, Any]], silent: bool = False) -> int:
    """Brief: Compute the effective root log level.

    Inputs:
      - cfg: logging config mapping (may be None); reads cfg['level'].
      - silent: when True, routine info/debug output is suppressed.

    Outputs:
      - int: logging level constant; at least WARNING when silent is set.
    """
    level_str = str((cfg or {}).get("level", "info")).lower()
    level = _LEVELS.get(level_str, logging.INFO)
    if silent:
        level = max(level, logging.WARNING)
    return level


def init_logging(cfg: Optional[Dict[str, Any]], *, silent: bool = False) -> None:
    """
    Initialize logging configuration based on the provided config.

    Args:
        cfg: Logging configuration dictionary with optional keys:
            - level: debug, info, warn, error, crit (default: info)
            - stderr: boolean to log to stderr (default: True)
            - file: string path to log file (optional)
            - syslog: boolean or dict with 'address', 'facility' and 'tag'
        silent: raise the level to warning so per-query chatter is hidden.

    Example config:
        {
            "level": "info",
            "stderr": True,
            "file": "./prdnsd.log",
        }
    """
    cfg = cfg or {}

    fmt = "%(asctime)s %(level_tag)s %(name)s: %(message)s"
    formatter = BracketLevelFormatter(fmt=fmt)

    root = logging.getLogger()
    root.setLevel(resolve_level(cfg, silent=silent))

    # Remove existing handlers to avoid duplicates
    for h in list(root.handlers):
        root.removeHandler(h)

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            if isinstance(syslog_cfg, dict):
                address = syslog_cfg.get("address", "/dev/log")
                if isinstance(address, list):
                    address = tuple(address)
                facility = getattr(
                    logging.handlers.SysLogHandler,
                    f"LOG_{str(syslog_cfg.get('facility', 'USER')).upper()}",
                    logging.handlers.SysLogHandler.LOG_USER,
                )
                tag = str(syslog_cfg.get("tag", "prdnsd"))
            else:
                address = "/dev/log"
                facility = logging.handlers.SysLogHandler.LOG_USER
                tag = "prdnsd"

            syslog_handler = logging.handlers.SysLogHandler(
                address=address, facility=facility
            )
            syslog_handler.setFormatter(SyslogFormatter(tag=tag))
            root.addHandler(syslog_handler)
        except (OSError, ValueError) as e:  # pragma: no cover - environment-specific
            root.warning("Failed to configure syslog: %s", e)

    logging.captureWarnings(True)
