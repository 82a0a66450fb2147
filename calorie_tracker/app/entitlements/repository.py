"""PostgreSQL-backed key-value store shared with out-of-process consumers."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterable, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from calorie_tracker.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "calorie_tracker":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


class PostgresKeyValueStore:
    """Stores JSON values in a ``shared_preferences`` table keyed by namespace and key."""

    def __init__(self, *, namespace: str = "shared", conn: Optional[PgConnection] = None) -> None:
        self._namespace = namespace
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def get(self, key: str) -> Optional[Any]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT value
                FROM shared_preferences
                WHERE namespace = %s AND key = %s
                LIMIT 1
                """,
                (self._namespace, key),
            )
            row = cursor.fetchone()
            if not row:
                return None
            return row["value"]

    def set(self, key: str, value: Any) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO shared_preferences (namespace, key, value)
                VALUES (%(namespace)s, %(key)s, %(value)s)
                ON CONFLICT (namespace, key) DO UPDATE SET
                    value = EXCLUDED.value,
                    updated_at = NOW()
                """,
                {
                    "namespace": self._namespace,
                    "key": key,
                    "value": psycopg2.extras.Json(value),
                },
            )

    def remove(self, key: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "DELETE FROM shared_preferences WHERE namespace = %s AND key = %s",
                (self._namespace, key),
            )


__all__ = ["PostgresKeyValueStore", "managed_connection"]
