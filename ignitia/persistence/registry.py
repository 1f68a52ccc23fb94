"""
Backend selection by connection-string shape.

The registry is an explicit, ordered list of (name, predicate, factory)
entries built once at startup and passed to whoever opens backends.
"""
import logging
from typing import Callable, List, NamedTuple, Optional

from ignitia.persistence.base import Full
from ignitia.persistence.nats_kv import NATSModel, is_nats_url
from ignitia.persistence.sqlite import SQLiteModel, is_sqlite_path

logger = logging.getLogger(__name__)


class BackendEntry(NamedTuple):
    name: str
    matches: Callable[[str], bool]
    factory: Callable[[str], Full]


class BackendRegistry:
    def __init__(self, entries: Optional[List[BackendEntry]] = None):
        self.entries: List[BackendEntry] = list(entries or [])

    def register(self, name: str, matches: Callable[[str], bool], factory: Callable[[str], Full]) -> None:
        self.entries.append(BackendEntry(name, matches, factory))

    def names(self) -> List[str]:
        return [entry.name for entry in self.entries]

    def open(self, conn: str) -> Optional[Full]:
        """Return a backend for the first entry whose predicate matches conn, or None."""
        for entry in self.entries:
            if entry.matches(conn):
                logger.debug(f"Using {entry.name} backend for {conn!r}")
                return entry.factory(conn)

        logger.error(f"no handler found for {conn!r}: {self.names()}")
        return None


def default_registry() -> BackendRegistry:
    """SQLite for paths ending in .db, NATS key-value for nats:// URLs."""
    registry = BackendRegistry()
    registry.register("sqlite", is_sqlite_path, SQLiteModel)
    registry.register("nats", is_nats_url, NATSModel)
    return registry
