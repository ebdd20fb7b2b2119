"""
Brief: Global pytest configuration: src/ on sys.path, a per-test 10s timeout
and a scriptable fake UDP upstream.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import os
import signal
import socket
import subprocess
import sys
import threading

import pytest

# Ensure 'src' is on sys.path so 'prdnsd' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from prdnsd.config.logging_config import BracketLevelFormatter, SyslogFormatter  # noqa: E402


def _alarm_handler(signum, frame):
    raise TimeoutError("Test exceeded 10 seconds")


if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield


class FakeUpstream:
    """
    Brief: UDP stub that answers every query with ``responder(data)``.

    Inputs:
      - responder: callable(bytes) -> bytes or None (None sends nothing)

    Outputs:
      - addr: (host, port) the stub listens on
      - queries: list of raw queries received
    """

    def __init__(self, responder):
        self.responder = responder
        self.queries = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.1)
        self.addr = self.sock.getsockname()
        self._stop = threading.Event()
        self.thread = threading.Thread(target=self._loop, daemon=True)
        self.thread.start()

    @property
    def spec(self) -> str:
        return f"udp://{self.addr[0]}:{self.addr[1]}"

    def _loop(self):
        while not self._stop.is_set():
            try:
                data, peer = self.sock.recvfrom(65535)
            except OSError:
                continue
            self.queries.append(data)
            reply = self.responder(data)
            if reply:
                self.sock.sendto(reply, peer)

    def close(self):
        self._stop.set()
        self.thread.join(1.0)
        self.sock.close()


@pytest.fixture
def fake_upstream():
    """
    Brief: Factory fixture creating FakeUpstream instances closed at teardown.

    Inputs:
      - None

    Outputs:
      - callable(responder) -> FakeUpstream
    """
    created = []

    def _make(responder):
        up = FakeUpstream(responder)
        created.append(up)
        return up

    yield _make
    for up in created:
        up.close()


@pytest.fixture
def closed_udp_port() -> int:
    """Return a localhost UDP port with nothing listening on it."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


@pytest.fixture(scope="session")
def selfsigned_cert(tmp_path_factory):
    """
    Brief: Generate a throwaway certificate for 'localhost' and 127.0.0.1.

    Inputs:
      - None

    Outputs:
      - (cert_file, key_file) paths; skips the test when openssl is missing
    """
    tmp = tmp_path_factory.mktemp("dotcert")
    cert_file = tmp / "cert.pem"
    key_file = tmp / "key.pem"
    try:
        subprocess.check_call(
            [
                "openssl",
                "req",
                "-x509",
                "-nodes",
                "-newkey",
                "rsa:2048",
                "-keyout",
                str(key_file),
                "-out",
                str(cert_file),
                "-subj",
                "/CN=localhost",
                "-addext",
                "subjectAltName=DNS:localhost,IP:127.0.0.1",
                "-days",
                "1",
            ],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except Exception:
        pytest.skip("openssl not available for generating self-signed cert")
    return str(cert_file), str(key_file)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """
    Brief: Undo init_logging() side effects on the root logger after each test.

    Inputs:
      - None

    Outputs:
      - None
    """
    root = logging.getLogger()
    level = root.level
    yield
    for h in list(root.handlers):
        if isinstance(h.formatter, (BracketLevelFormatter, SyslogFormatter)):
            root.removeHandler(h)
            h.close()
    root.setLevel(level)
