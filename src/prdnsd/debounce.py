from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class DebounceEntry:
    """Per-IP reply bookkeeping: when the last reply was allowed and how many remain."""

    last_time: float
    remaining: int


class DebounceGate:
    """Brief: Per-source-IP reply limiter for connectionless clients.

    Keeps one DebounceEntry per IP address; the source port is ignored.
    Inside a window, up to ``burst`` further replies are allowed after the
    first; each allowed reply restarts the window.

    Inputs (constructor):
      - window: window length in seconds; 0 disables limiting.
      - burst: replies allowed inside a window after the first one.
      - clock: monotonic time source (injectable for tests).
      - logger: optional logger; defaults to this module's logger.

    Example:
      >>> gate = DebounceGate(window=0.2, burst=2)
      >>> gate.allow("192.0.2.1")
      True
    """

    def __init__(
        self,
        window: float,
        burst: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.window = max(0.0, float(window))
        self.burst = max(0, int(burst))
        self._clock = clock
        self._log = logger or logging.getLogger(__name__)
        self._entries: Dict[str, DebounceEntry] = {}
        self._lock = threading.Lock()

    def allow(self, ip: str, now: Optional[float] = None) -> bool:
        """Brief: Record a reply attempt toward ``ip`` and decide whether to send it.

        Inputs:
          - ip: client IP address string.
          - now: optional timestamp from the gate's clock; read from it when None.

        Outputs:
          - bool: True when the reply may be sent.
        """
        if now is None:
            now = self._clock()

        with self._lock:
            entry = self._entries.get(ip)
            if entry is None or now >= entry.last_time + self.window:
                self._entries[ip] = DebounceEntry(last_time=now, remaining=self.burst)
                return True
            if entry.remaining <= 0:
                remaining = entry.remaining
                allowed = False
            else:
                entry.remaining -= 1
                entry.last_time = now
                remaining = entry.remaining
                allowed = True

        self._log.debug(
            "Debounce window (%.3fs) for %s not passed, remaining = %d / %d",
            self.window,
            ip,
            remaining,
            self.burst,
        )
        return allowed

    def entry(self, ip: str) -> Optional[DebounceEntry]:
        """Return a copy of the current entry for ``ip``, or None."""
        with self._lock:
            e = self._entries.get(ip)
            return DebounceEntry(e.last_time, e.remaining) if e else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
