from __future__ import annotations

import os
import sqlite3
import threading
from typing import Iterator, Tuple

from ..errors import PersistenceError


class SQLitePTRStore:
    """SQLite-backed durable store for passive reverse mappings.

    Brief:
      A small key/value store holding ``reverse name -> forward name`` pairs as
      opaque byte strings. It is opened by a single process for its whole
      lifetime; no concurrent external readers or writers are expected.

    Inputs (constructor):
      - db_path: Path to sqlite3 DB file. Use ':memory:' for in-memory.
      - table: Table name holding the pairs (default 'ptr_map').
      - journal_mode: SQLite journal mode string (default 'WAL'). Best-effort.
      - create_dir: When True, create parent directory for db_path if needed.

    Outputs:
      - SQLitePTRStore instance.

    Notes:
      - Writes are committed one at a time with synchronous=FULL so an
        acknowledged write survives a crash.
      - ``INSERT OR REPLACE`` keeps the last write for a key.
      - All DB operations are synchronized with a Lock.

    Example:
      >>> store = SQLitePTRStore(":memory:")
      >>> store.set("4.3.2.1.in-addr.arpa.", "host.example.com.")
      >>> dict(store.items())
      {'4.3.2.1.in-addr.arpa.': 'host.example.com.'}
    """

    def __init__(
        self,
        db_path: str,
        *,
        table: str = "ptr_map",
        journal_mode: str = "WAL",
        create_dir: bool = True,
    ) -> None:
        self.db_path = str(db_path)
        self.table = str(table or "ptr_map")
        self.journal_mode = str(journal_mode or "WAL")
        self.create_dir = bool(create_dir)
        self._lock = threading.Lock()
        try:
            self._conn = self._init_connection()
        except (OSError, sqlite3.Error) as e:
            raise PersistenceError(f"cannot open store {self.db_path!r}: {e}") from e

    def _init_connection(self) -> sqlite3.Connection:
        """Brief: Create sqlite connection and ensure the schema exists.

        Inputs:
          - None.

        Outputs:
          - sqlite3.Connection: Open connection with the table created.
        """
        db_path = self.db_path
        if db_path != ":memory:":
            db_path = os.path.abspath(os.path.expanduser(db_path))
            self.db_path = db_path

            if self.create_dir:
                dir_path = os.path.dirname(db_path)
                if dir_path:
                    os.makedirs(dir_path, exist_ok=True)

        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        try:
            conn.execute(f"PRAGMA journal_mode={self.journal_mode}")
            conn.execute("PRAGMA synchronous=FULL")
        except sqlite3.Error:
            # Best-effort: some environments restrict PRAGMAs.
            pass

        conn.execute(
            f"CREATE TABLE IF NOT EXISTS {self.table} ("
            "key BLOB PRIMARY KEY, "
            "value BLOB NOT NULL"
            ")"
        )
        conn.commit()
        return conn

    def set(self, key: str, value: str) -> None:
        """Brief: Persist one mapping, replacing any previous value.

        Inputs:
          - key: reverse-lookup name.
          - value: forward query name.

        Outputs:
          - None. Raises PersistenceError when the write fails.
        """
        try:
            with self._lock:
                self._conn.execute(
                    f"INSERT OR REPLACE INTO {self.table} (key, value) VALUES (?, ?)",
                    (key.encode("utf-8"), value.encode("utf-8")),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot store {key!r}: {e}") from e

    def items(self) -> Iterator[Tuple[str, str]]:
        """Brief: Yield every stored (key, value) pair.

        Inputs:
          - None.

        Outputs:
          - Iterator of (reverse name, forward name) string tuples.
        """
        try:
            with self._lock:
                rows = self._conn.execute(
                    f"SELECT key, value FROM {self.table}"
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot read store {self.db_path!r}: {e}") from e
        for key, value in rows:
            yield bytes(key).decode("utf-8", "replace"), bytes(value).decode(
                "utf-8", "replace"
            )

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.Error:  # pragma: no cover - already closed
                pass
