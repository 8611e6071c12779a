"""Append-only audit trail."""
from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, List, Optional

from charterdesk.schema import fetch_dicts, utc_now


def record_audit(
    conn: sqlite3.Connection,
    tenant_id: str,
    action: str,
    *,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
    actor: Optional[str] = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """Insert an audit row. The caller owns the transaction."""
    conn.execute(
        """
        INSERT INTO audit_log
            (tenant_id, actor, action, target_type, target_id, details, ip, user_agent, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            tenant_id,
            actor,
            action,
            target_type,
            target_id,
            json.dumps(details or {}, default=str),
            ip,
            user_agent,
            utc_now(),
        ),
    )


def list_audit(
    conn: sqlite3.Connection,
    tenant_id: str,
    *,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM audit_log WHERE tenant_id = ?"
    params: List[Any] = [tenant_id]
    if target_type:
        sql += " AND target_type = ?"
        params.append(target_type)
    if target_id is not None:
        sql += " AND target_id = ?"
        params.append(target_id)
    sql += " ORDER BY id"
    rows = fetch_dicts(conn, sql, params)
    for row in rows:
        row["details"] = json.loads(row["details"] or "{}")
    return rows


__all__ = ["list_audit", "record_audit"]
