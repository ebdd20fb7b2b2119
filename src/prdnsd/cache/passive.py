from __future__ import annotations

import ipaddress
import logging
import threading
from typing import Dict, Optional

from ..errors import PersistenceError
from .store import SQLitePTRStore


def reverse_name(address: str) -> str:
    """Brief: Canonical reverse-lookup name for an IPv4/IPv6 address.

    Inputs:
      - address: textual IP address.

    Outputs:
      - str: fully-qualified name under in-addr.arpa. or ip6.arpa.

    Raises:
      - ValueError when address is not an IP address.

    Example:
      >>> reverse_name("1.2.3.4")
      '4.3.2.1.in-addr.arpa.'
    """
    return ipaddress.ip_address(str(address).strip()).reverse_pointer + "."


class PassiveCache:
    """Brief: Thread-safe reverse name -> forward name map with optional store.

    The in-memory dict is authoritative for serving. Writes update memory
    under the lock, release it, then persist; a failed persist is logged and
    leaves memory as is, so memory and disk may briefly disagree.

    Inputs (constructor):
      - store: optional SQLitePTRStore used for persistence.
      - logger: optional logger; defaults to this module's logger.
    """

    def __init__(
        self,
        store: Optional[SQLitePTRStore] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self._log = logger or logging.getLogger(__name__)
        self._map: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self) -> int:
        """Brief: Read every persisted mapping into memory.

        Inputs:
          - None.

        Outputs:
          - int: number of mappings loaded. Raises PersistenceError when the
            store cannot be read.
        """
        if self.store is None:
            return 0
        loaded = dict(self.store.items())
        with self._lock:
            self._map.update(loaded)
        for key, value in loaded.items():
            self._log.debug("loaded %s = %s", key, value)
        return len(loaded)

    def get(self, name: str) -> Optional[str]:
        with self._lock:
            return self._map.get(name)

    def put(self, reverse: str, forward: str) -> None:
        """Brief: Record ``reverse -> forward`` in memory, then in the store.

        Inputs:
          - reverse: reverse-lookup name (e.g. '4.3.2.1.in-addr.arpa.').
          - forward: the forward query name that produced the address.

        Outputs:
          - None. Persistence failures are logged and not raised.
        """
        with self._lock:
            self._map[reverse] = forward

        if self.store is None:
            return
        try:
            self.store.set(reverse, forward)
        except PersistenceError as e:
            self._log.error("Cannot update database: %s", e)

    def __len__(self) -> int:
        with self._lock:
            return len(self._map)

    def close(self) -> None:
        if self.store is not None:
            self.store.close()
