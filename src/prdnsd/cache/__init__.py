"""Passive reverse-DNS cache and its durable sqlite3 store."""

from .passive import PassiveCache, reverse_name
from .store import SQLitePTRStore

__all__ = ["PassiveCache", "SQLitePTRStore", "reverse_name"]
