"""
Brief: Tests for prdnsd.cache (PassiveCache, SQLitePTRStore, reverse_name).

Inputs:
  - None

Outputs:
  - None
"""

import logging

import pytest

from prdnsd.cache import PassiveCache, SQLitePTRStore, reverse_name
from prdnsd.errors import PersistenceError


def test_reverse_name_ipv4_and_ipv6():
    assert reverse_name("1.2.3.4") == "4.3.2.1.in-addr.arpa."
    assert reverse_name("2001:db8::1") == (
        "1.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.8.b.d.0.1.0.0.2.ip6.arpa."
    )


def test_reverse_name_rejects_non_address():
    with pytest.raises(ValueError):
        reverse_name("not-an-ip")


def test_memory_only_put_get_last_write_wins():
    cache = PassiveCache()
    cache.put("4.3.2.1.in-addr.arpa.", "a.example.com.")
    cache.put("4.3.2.1.in-addr.arpa.", "b.example.com.")
    assert cache.get("4.3.2.1.in-addr.arpa.") == "b.example.com."
    assert cache.get("5.3.2.1.in-addr.arpa.") is None
    assert len(cache) == 1
    assert cache.load() == 0


def test_store_roundtrip_across_restart(tmp_path):
    db = tmp_path / "var" / "ptr.db"
    first = PassiveCache(SQLitePTRStore(str(db)))
    first.put("4.3.2.1.in-addr.arpa.", "host.example.com.")
    first.put("8.8.8.8.in-addr.arpa.", "old.example.")
    first.put("8.8.8.8.in-addr.arpa.", "dns.google.")
    first.close()

    second = PassiveCache(SQLitePTRStore(str(db)))
    assert second.load() == 2
    assert second.get("4.3.2.1.in-addr.arpa.") == "host.example.com."
    assert second.get("8.8.8.8.in-addr.arpa.") == "dns.google."
    second.close()


def test_store_values_are_opaque_bytes(tmp_path):
    store = SQLitePTRStore(str(tmp_path / "ptr.db"))
    store.set("4.3.2.1.in-addr.arpa.", "host.example.com.")
    row = store._conn.execute("SELECT key, value FROM ptr_map").fetchone()
    assert bytes(row[0]) == b"4.3.2.1.in-addr.arpa."
    assert bytes(row[1]) == b"host.example.com."
    store.close()


class _FailingStore:
    def set(self, key, value):
        raise PersistenceError("disk full")

    def items(self):
        return iter(())

    def close(self):
        pass


def test_persistence_failure_is_logged_and_memory_kept(caplog):
    caplog.set_level(logging.ERROR)
    cache = PassiveCache(_FailingStore())
    cache.put("4.3.2.1.in-addr.arpa.", "host.example.com.")
    assert cache.get("4.3.2.1.in-addr.arpa.") == "host.example.com."
    assert "Cannot update database" in caplog.text


def test_store_write_after_close_raises_persistence_error(tmp_path):
    store = SQLitePTRStore(str(tmp_path / "ptr.db"))
    store.close()
    with pytest.raises(PersistenceError):
        store.set("k", "v")


def test_store_open_failure_raises_persistence_error(tmp_path):
    # A directory cannot be opened as a database file
    with pytest.raises(PersistenceError):
        SQLitePTRStore(str(tmp_path), create_dir=False)
