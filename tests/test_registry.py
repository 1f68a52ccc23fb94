# tests/test_registry.py

from ignitia.persistence.nats_kv import NATSModel
from ignitia.persistence.registry import BackendRegistry, default_registry
from ignitia.persistence.sqlite import SQLiteModel


def test_default_registry_order():
    assert default_registry().names() == ["sqlite", "nats"]


def test_sqlite_path_selects_sqlite(tmp_path):
    backend = default_registry().open(str(tmp_path / "progress.db"))
    assert isinstance(backend, SQLiteModel)
    assert backend.error() is None
    backend.close()


def test_nats_url_selects_nats():
    backend = default_registry().open("nats://localhost:4222")
    assert isinstance(backend, NATSModel)
    backend.close()


def test_unknown_connection_string(caplog):
    assert default_registry().open("postgres://db/progress") is None
    assert any("no handler found" in r.getMessage() for r in caplog.records)


def test_first_match_wins():
    opened = []
    registry = BackendRegistry()
    registry.register("first", lambda conn: conn.startswith("mem"), lambda conn: opened.append(("first", conn)))
    registry.register("second", lambda conn: True, lambda conn: opened.append(("second", conn)))

    registry.open("memory")
    registry.open("other")
    assert opened == [("first", "memory"), ("second", "other")]
