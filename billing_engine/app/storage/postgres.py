"""PostgreSQL persistence for usage limits.

Usage counters are the one place where the engine requires storage-level
atomicity, so every counter mutation is a single conditional ``UPDATE``.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, Iterator, Optional, Sequence, Tuple

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..entitlements.models import GrantSource
from ..limits.models import CustomerLimit, LimitDefinition

_LIMIT_COLUMNS = (
    "customer_id, limit_key, max_value, current_value, source, source_id, reset_at, created_at, updated_at"
)


@contextmanager
def managed_connection(
    conn: Optional[PgConnection] = None,
    *,
    dsn: Optional[str] = None,
) -> Iterator[Tuple[PgConnection, bool]]:
    """Yield ``(connection, managed)``; managed connections are closed on exit."""

    if conn is not None:
        yield conn, False
        return

    if not dsn:
        raise ValueError("A connection or a DSN is required")
    connection = psycopg2.connect(dsn)
    try:
        yield connection, True
    finally:
        connection.close()


def _row_to_definition(row: dict) -> LimitDefinition:
    return LimitDefinition(
        key=row["key"],
        name=row["name"],
        description=row.get("description"),
        default_value=int(row["default_value"]),
    )


def _row_to_customer_limit(row: dict) -> CustomerLimit:
    return CustomerLimit(
        customer_id=row["customer_id"],
        limit_key=row["limit_key"],
        max_value=int(row["max_value"]),
        current_value=int(row["current_value"]),
        source=GrantSource(row["source"]),
        source_id=row.get("source_id"),
        reset_at=row.get("reset_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresLimitRepository:
    """Limit repository backed by ``billing_limits`` and ``billing_customer_limits``."""

    def __init__(self, *, conn: Optional[PgConnection] = None, dsn: Optional[str] = None) -> None:
        if conn is None and not dsn:
            raise ValueError("PostgresLimitRepository requires a connection or a DSN")
        self._conn = conn
        self._dsn = dsn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn, dsn=self._dsn) as (connection, managed):
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

    def save_definition(self, definition: LimitDefinition) -> LimitDefinition:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_limits (key, name, description, default_value)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (key) DO UPDATE SET
                    name = EXCLUDED.name,
                    description = EXCLUDED.description,
                    default_value = EXCLUDED.default_value,
                    updated_at = NOW()
                RETURNING key, name, description, default_value
                """,
                (definition.key, definition.name, definition.description, definition.default_value),
            )
            row = cursor.fetchone()
        return _row_to_definition(row)

    def get_definition(self, key: str) -> Optional[LimitDefinition]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT key, name, description, default_value FROM billing_limits WHERE key = %s",
                (key,),
            )
            row = cursor.fetchone()
        return _row_to_definition(row) if row else None

    def get(self, customer_id: str, key: str) -> Optional[CustomerLimit]:
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {_LIMIT_COLUMNS} FROM billing_customer_limits"
                " WHERE customer_id = %s AND limit_key = %s",
                (customer_id, key),
            )
            row = cursor.fetchone()
        return _row_to_customer_limit(row) if row else None

    def set(self, customer_limit: CustomerLimit) -> CustomerLimit:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                INSERT INTO billing_customer_limits (
                    customer_id, limit_key, max_value, current_value, source, source_id,
                    reset_at, created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (customer_id, limit_key) DO UPDATE SET
                    max_value = EXCLUDED.max_value,
                    source = EXCLUDED.source,
                    source_id = EXCLUDED.source_id,
                    reset_at = EXCLUDED.reset_at,
                    updated_at = EXCLUDED.updated_at
                RETURNING {_LIMIT_COLUMNS}
                """,
                (
                    customer_limit.customer_id,
                    customer_limit.limit_key,
                    customer_limit.max_value,
                    customer_limit.current_value,
                    customer_limit.source.value,
                    customer_limit.source_id,
                    customer_limit.reset_at,
                    customer_limit.created_at,
                    customer_limit.updated_at,
                ),
            )
            row = cursor.fetchone()
        return _row_to_customer_limit(row)

    def increment(self, customer_id: str, key: str, amount: int) -> Optional[CustomerLimit]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE billing_customer_limits
                SET current_value = current_value + %s, updated_at = NOW()
                WHERE customer_id = %s AND limit_key = %s
                RETURNING {_LIMIT_COLUMNS}
                """,
                (amount, customer_id, key),
            )
            row = cursor.fetchone()
        return _row_to_customer_limit(row) if row else None

    def increment_within_limit(self, customer_id: str, key: str, amount: int) -> Optional[CustomerLimit]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE billing_customer_limits
                SET current_value = current_value + %s, updated_at = NOW()
                WHERE customer_id = %s AND limit_key = %s
                  AND (max_value = -1 OR current_value + %s <= max_value)
                RETURNING {_LIMIT_COLUMNS}
                """,
                (amount, customer_id, key, amount),
            )
            row = cursor.fetchone()
        return _row_to_customer_limit(row) if row else None

    def decrement(self, customer_id: str, key: str, amount: int) -> Optional[CustomerLimit]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE billing_customer_limits
                SET current_value = GREATEST(0, current_value - %s), updated_at = NOW()
                WHERE customer_id = %s AND limit_key = %s
                RETURNING {_LIMIT_COLUMNS}
                """,
                (amount, customer_id, key),
            )
            row = cursor.fetchone()
        return _row_to_customer_limit(row) if row else None

    def reset_usage(self, customer_id: str, key: str, *, max_value: Optional[int] = None) -> Optional[CustomerLimit]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE billing_customer_limits
                SET current_value = 0, max_value = COALESCE(%s, max_value), updated_at = NOW()
                WHERE customer_id = %s AND limit_key = %s
                RETURNING {_LIMIT_COLUMNS}
                """,
                (max_value, customer_id, key),
            )
            row = cursor.fetchone()
        return _row_to_customer_limit(row) if row else None

    def list_for_customer(self, customer_id: str) -> Sequence[CustomerLimit]:
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {_LIMIT_COLUMNS} FROM billing_customer_limits"
                " WHERE customer_id = %s ORDER BY limit_key",
                (customer_id,),
            )
            rows = cursor.fetchall()
        return [_row_to_customer_limit(row) for row in rows]

    def list_by_source(self, source: GrantSource, source_id: Optional[str]) -> Sequence[CustomerLimit]:
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {_LIMIT_COLUMNS} FROM billing_customer_limits"
                " WHERE source = %s AND source_id IS NOT DISTINCT FROM %s"
                " ORDER BY customer_id, limit_key",
                (source.value, source_id),
            )
            rows = cursor.fetchall()
        return [_row_to_customer_limit(row) for row in rows]


__all__ = ["PostgresLimitRepository", "managed_connection"]
