from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from calorie_tracker import app_context
from calorie_tracker.app.entitlements import (
    SHARED_MIRROR_KEY,
    EntitlementMirror,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    MirrorRecord,
    load_widget_entitlement,
)
from calorie_tracker.app.entitlements.repository import PostgresKeyValueStore


class FakeCursor:
    def __init__(self, connection: "FakeConnection") -> None:
        self._connection = connection
        self._result: Optional[Dict[str, Any]] = None
        self.closed = False

    def execute(self, sql: str, params: Any) -> None:
        statement = " ".join(sql.split())
        self._connection.statements.append((statement, params))
        rows = self._connection.rows
        if statement.startswith("SELECT"):
            namespace, key = params
            value = rows.get((namespace, key))
            self._result = {"value": value} if value is not None else None
        elif statement.startswith("INSERT"):
            rows[(params["namespace"], params["key"])] = params["value"].adapted
        elif statement.startswith("DELETE"):
            namespace, key = params
            rows.pop((namespace, key), None)

    def fetchone(self) -> Optional[Dict[str, Any]]:
        return self._result

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self) -> None:
        self.rows: Dict[Tuple[str, str], Any] = {}
        self.statements: List[Tuple[str, Any]] = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self, cursor_factory=None) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def stamp() -> datetime:
    return datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def test_json_file_store_round_trip(tmp_path) -> None:
    path = tmp_path / "prefs" / "preferences.json"
    store = JsonFileKeyValueStore(path)

    store.set("subscriptionStatus", {"is_entitled": True})
    store.set("free_analysis_count", 1)

    assert JsonFileKeyValueStore(path).get("subscriptionStatus") == {"is_entitled": True}
    assert json.loads(path.read_text())["free_analysis_count"] == 1
    store.remove("free_analysis_count")
    assert store.get("free_analysis_count") is None


def test_json_file_store_missing_file_reads_empty(tmp_path) -> None:
    store = JsonFileKeyValueStore(tmp_path / "absent.json")

    assert store.get("anything") is None


def test_json_file_store_rejects_non_object(tmp_path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("[1, 2, 3]")

    with pytest.raises(ValueError):
        JsonFileKeyValueStore(path).get("key")


def test_mirror_round_trip(stamp) -> None:
    mirror = EntitlementMirror(InMemoryKeyValueStore(), "subscriptionStatus")

    mirror.save(MirrorRecord(is_entitled=True, updated_at=stamp))

    record = mirror.load()
    assert record is not None
    assert record.is_entitled is True
    assert record.updated_at == stamp


def test_mirror_accepts_legacy_bare_flag() -> None:
    kv = InMemoryKeyValueStore()
    kv.set("subscriptionStatus", True)

    record = EntitlementMirror(kv, "subscriptionStatus").load()

    assert record is not None and record.is_entitled is True


def test_mirror_ignores_malformed_value() -> None:
    kv = InMemoryKeyValueStore()
    kv.set("subscriptionStatus", {"is_entitled": "maybe?"})

    assert EntitlementMirror(kv, "subscriptionStatus").load() is None


def test_widget_reads_shared_flag(tmp_path, stamp) -> None:
    shared = JsonFileKeyValueStore(tmp_path / "shared.json")
    assert load_widget_entitlement(shared) is False

    EntitlementMirror(shared, SHARED_MIRROR_KEY).save(MirrorRecord(is_entitled=True, updated_at=stamp))

    assert load_widget_entitlement(JsonFileKeyValueStore(tmp_path / "shared.json")) is True


def test_postgres_store_with_explicit_connection() -> None:
    conn = FakeConnection()
    store = PostgresKeyValueStore(namespace="widget", conn=conn)

    store.set(SHARED_MIRROR_KEY, {"is_entitled": True})

    assert store.get(SHARED_MIRROR_KEY) == {"is_entitled": True}
    assert conn.rows[("widget", SHARED_MIRROR_KEY)] == {"is_entitled": True}
    assert conn.commits == 0
    assert "ON CONFLICT (namespace, key) DO UPDATE" in conn.statements[0][0]

    store.remove(SHARED_MIRROR_KEY)
    assert store.get(SHARED_MIRROR_KEY) is None


def test_postgres_store_uses_application_connection() -> None:
    conn = FakeConnection()
    app_context.configure(get_conn=lambda: conn)
    try:
        store = PostgresKeyValueStore()
        store.set("widget.isSubscribed", {"is_entitled": False})
    finally:
        app_context.reset()

    assert conn.commits >= 1
    assert conn.closed is True


def test_postgres_store_requires_configured_context() -> None:
    app_context.reset()
    store = PostgresKeyValueStore()

    with pytest.raises(RuntimeError):
        store.get("widget.isSubscribed")
