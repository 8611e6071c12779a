"""Database helpers for the back office and its dashboards."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Iterable, Optional

from charterdesk.config import DB_PATH
from charterdesk.schema import ensure_schema, utc_now

DEFAULT_DB_PATH = DB_PATH

DEFAULT_PARAMETERS = (
    ("quote_valid_days", 7.0, "Days a sent quote stays valid"),
    ("default_commission_percent", 10.0, "Broker commission suggested on new options"),
    ("invoice_due_days", 7.0, "Days until an issued invoice is due"),
)


def get_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    """Return a SQLite connection using WAL mode with foreign keys enforced."""
    path = db_path or DEFAULT_DB_PATH
    conn = sqlite3.connect(path, detect_types=sqlite3.PARSE_DECLTYPES)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def connection_scope(db_path: Optional[str] = None, *, create: bool = True):
    """Context manager that yields a SQLite connection and closes it afterwards."""
    conn = get_connection(db_path)
    try:
        if create:
            ensure_schema(conn)
        yield conn
    finally:
        conn.close()


def get_parameter_value(
    conn: sqlite3.Connection,
    tenant_id: str,
    key: str,
    default: Optional[float] = None,
) -> Optional[float]:
    """Return the numeric value for *key* from the tenant's parameters."""
    row = conn.execute(
        "SELECT value_numeric FROM tenant_parameters WHERE tenant_id = ? AND key = ?",
        (tenant_id, key),
    ).fetchone()
    if row is None or row[0] is None:
        return default
    return row[0]


def set_parameter_value(
    conn: sqlite3.Connection,
    tenant_id: str,
    key: str,
    value: float,
    description: Optional[str] = None,
) -> None:
    """Insert or update a numeric tenant parameter."""
    conn.execute(
        """
        INSERT INTO tenant_parameters (tenant_id, key, value_numeric, description, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(tenant_id, key) DO UPDATE SET
            value_numeric = excluded.value_numeric,
            description = COALESCE(excluded.description, tenant_parameters.description),
            updated_at = excluded.updated_at
        """,
        (tenant_id, key, float(value), description, utc_now()),
    )
    conn.commit()


def list_parameters(conn: sqlite3.Connection, tenant_id: str) -> list[dict]:
    rows = conn.execute(
        """
        SELECT key, value_numeric, description, updated_at
        FROM tenant_parameters WHERE tenant_id = ? ORDER BY key
        """,
        (tenant_id,),
    ).fetchall()
    return [
        {"key": row[0], "value": row[1], "description": row[2], "updated_at": row[3]}
        for row in rows
    ]


def bootstrap_parameters(
    conn: sqlite3.Connection,
    tenant_id: str,
    defaults: Iterable[tuple[str, float, str]] = DEFAULT_PARAMETERS,
) -> None:
    """Ensure default parameter values exist for *tenant_id*."""
    for key, value, description in defaults:
        current = get_parameter_value(conn, tenant_id, key)
        if current is None:
            set_parameter_value(conn, tenant_id, key, value, description)
