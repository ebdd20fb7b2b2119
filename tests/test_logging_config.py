"""
Brief: Tests for prdnsd.config.logging_config.init_logging and formatters.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import logging.handlers
from pathlib import Path

import pytest

from prdnsd.config.logging_config import (
    BracketLevelFormatter,
    SyslogFormatter,
    init_logging,
    resolve_level,
)


def test_init_logging_adds_stderr_handler():
    """
    Brief: init_logging configures root logger with a stderr handler by default.

    Inputs:
      - cfg: minimal dict with level

    Outputs:
      - None: Asserts StreamHandler present and level applied
    """
    init_logging({"level": "debug"})
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(type(h) is logging.StreamHandler for h in root.handlers)


def test_init_logging_without_stderr():
    init_logging({"stderr": False})
    assert logging.getLogger().handlers == []


def test_init_logging_file_handler_writes(tmp_path):
    """
    Brief: init_logging creates the file handler and writes formatted entries.

    Inputs:
      - cfg: file path below a missing directory

    Outputs:
      - None: Asserts file created and contains the bracketed tag
    """
    log_path = tmp_path / "logs" / "prdnsd.log"
    init_logging({"level": "info", "file": str(log_path), "stderr": False})
    logging.getLogger("prdnsd.handler").info("Query from %s", "192.0.2.1")
    for h in logging.getLogger().handlers:
        h.flush()
    content = Path(log_path).read_text()
    assert "[info] prdnsd.handler: Query from 192.0.2.1" in content


def test_silent_raises_level_to_warning(tmp_path):
    log_path = tmp_path / "silent.log"
    init_logging({"level": "debug", "file": str(log_path), "stderr": False}, silent=True)
    log = logging.getLogger("prdnsd.handler")
    log.info("routine")
    log.warning("problem")
    for h in logging.getLogger().handlers:
        h.flush()
    content = log_path.read_text()
    assert "routine" not in content
    assert "[warn] prdnsd.handler: problem" in content


@pytest.mark.parametrize(
    "cfg,silent,expected",
    [
        (None, False, logging.INFO),
        ({"level": "debug"}, False, logging.DEBUG),
        ({"level": "WARN"}, False, logging.WARNING),
        ({"level": "bogus"}, False, logging.INFO),
        ({"level": "debug"}, True, logging.WARNING),
        ({"level": "error"}, True, logging.ERROR),
    ],
)
def test_resolve_level(cfg, silent, expected):
    assert resolve_level(cfg, silent=silent) == expected


def test_init_logging_syslog(monkeypatch):
    """
    Brief: init_logging attaches a syslog handler when configured.

    Inputs:
      - syslog: True or dict

    Outputs:
      - None: Asserts the dummy handler receives address and a SyslogFormatter
    """
    created = {}

    class DummySysLogHandler(logging.Handler):
        LOG_USER = 8
        LOG_DAEMON = 24

        def __init__(self, address=None, facility=None):
            super().__init__()
            created["address"] = address
            created["facility"] = facility

        def setFormatter(self, fmt):
            created["formatter"] = fmt
            super().setFormatter(fmt)

        def emit(self, record):
            pass

    monkeypatch.setattr(logging.handlers, "SysLogHandler", DummySysLogHandler)

    init_logging({"syslog": True, "stderr": False})
    assert created["address"] == "/dev/log"
    assert created["facility"] == DummySysLogHandler.LOG_USER

    init_logging(
        {
            "stderr": False,
            "syslog": {"address": ["127.0.0.1", 514], "facility": "daemon", "tag": "dns"},
        }
    )
    assert created["address"] == ("127.0.0.1", 514)
    assert created["facility"] == DummySysLogHandler.LOG_DAEMON
    assert isinstance(created["formatter"], SyslogFormatter)
    assert created["formatter"].tag == "dns"


def test_bracket_formatter_uses_utc_timestamp():
    fmt = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(message)s")
    record = logging.LogRecord("x", logging.ERROR, __file__, 1, "boom", None, None)
    record.created = 0.0
    assert fmt.format(record) == "1970-01-01T00:00:00Z [error] boom"


def test_syslog_formatter_has_no_timestamp():
    record = logging.LogRecord(
        "prdnsd.cache", logging.WARNING, __file__, 1, "disk %s", ("full",), None
    )
    assert SyslogFormatter(tag="prdnsd").format(record) == (
        "prdnsd: [warn] prdnsd.cache: disk full"
    )
