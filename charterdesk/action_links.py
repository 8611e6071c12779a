"""Single-purpose links sent to clients: quotes, invoices and itineraries.

Only the SHA-256 hash of a token is stored. A link is bound to the e-mail
address or phone number it was issued to and can be used ``max_uses`` times
before it is marked consumed.
"""
from __future__ import annotations

import base64
import hashlib
import json
import logging
import secrets
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from charterdesk import config
from charterdesk.audit import record_audit
from charterdesk.errors import ActionLinkError, RateLimitError, ValidationError
from charterdesk.repo import digits_only
from charterdesk.schema import ACTION_TYPES, fetch_dict

logger = logging.getLogger(__name__)

MIN_EXPIRY_MINUTES = 5
MAX_EXPIRY_MINUTES = 43200
MIN_USES = 1
MAX_USES = 100
MIN_TOKEN_LENGTH = 20
RATE_LIMIT_WINDOW_SECONDS = 60


def _now(now: Optional[datetime] = None) -> datetime:
    return now or datetime.now(timezone.utc)


def _parse(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    digest = hashlib.sha256(token.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def validate_token_entropy(token: Optional[str], min_length: int = MIN_TOKEN_LENGTH) -> bool:
    return bool(token) and len(token) >= min_length  # type: ignore[arg-type]


def link_url(token: str) -> str:
    """Client URL for *token*; the Streamlit entrypoint routes on ``?token=``."""
    return f"{config.APP_URL}/?" + urlencode({"token": token})


def create_action_link(
    conn: sqlite3.Connection,
    tenant_id: str,
    action_type: str,
    *,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    expires_in_minutes: int = 60,
    max_uses: int = 1,
    created_by: Optional[str] = None,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> Dict[str, Any]:
    """Issue a link and return its id, raw token, URL and expiry."""

    if action_type not in ACTION_TYPES:
        raise ValidationError(f"Unknown action type: {action_type}", error_code="LINK_ACTION_TYPE")
    email = (email or "").strip() or None
    phone = (phone or "").strip() or None
    if not email and not phone:
        raise ValidationError("An e-mail or phone is required for an action link.", error_code="LINK_RECIPIENT")
    if not MIN_EXPIRY_MINUTES <= int(expires_in_minutes) <= MAX_EXPIRY_MINUTES:
        raise ValidationError(
            f"Expiry must be between {MIN_EXPIRY_MINUTES} and {MAX_EXPIRY_MINUTES} minutes.",
            error_code="LINK_EXPIRY",
        )
    if not MIN_USES <= int(max_uses) <= MAX_USES:
        raise ValidationError(
            f"Max uses must be between {MIN_USES} and {MAX_USES}.", error_code="LINK_MAX_USES"
        )

    issued = _now(now)
    expires_at = issued + timedelta(minutes=int(expires_in_minutes))
    token = generate_token()
    cursor = conn.execute(
        """
        INSERT INTO action_links
            (tenant_id, created_by, email, phone, action_type, token_hash, metadata,
             expires_at, max_uses, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            tenant_id,
            created_by,
            email,
            phone,
            action_type,
            hash_token(token),
            json.dumps(metadata or {}, default=str),
            expires_at.isoformat(),
            int(max_uses),
            issued.isoformat(),
        ),
    )
    link_id = int(cursor.lastrowid)
    record_audit(
        conn,
        tenant_id,
        "action_link.created",
        target_type="action_link",
        target_id=link_id,
        details={"action_type": action_type, "expires_at": expires_at.isoformat()},
        actor=created_by,
    )
    if commit:
        conn.commit()
    logger.info("Issued %s action link %s for tenant %s", action_type, link_id, tenant_id)
    return {
        "id": link_id,
        "token": token,
        "link": link_url(token),
        "expires_at": expires_at.isoformat(),
        "action_type": action_type,
    }


def _load_link(conn: sqlite3.Connection, token: str) -> Dict[str, Any]:
    if not validate_token_entropy(token):
        raise ActionLinkError("Invalid token", error_code="LINK_TOKEN_INVALID")
    row = fetch_dict(conn, "SELECT * FROM action_links WHERE token_hash = ?", (hash_token(token),))
    if row is None:
        raise ActionLinkError("Link not found", error_code="LINK_NOT_FOUND")
    row["metadata"] = json.loads(row.get("metadata") or "{}")
    return row


def _check_usable(link: Dict[str, Any], now: datetime) -> None:
    if link["status"] != "active":
        raise ActionLinkError(
            f"Link is {link['status']}", error_code="LINK_INACTIVE", context={"status": link["status"]}
        )
    if _parse(link["expires_at"]) <= now:
        raise ActionLinkError("Link has expired", error_code="LINK_EXPIRED")
    if int(link["use_count"]) >= int(link["max_uses"]):
        raise ActionLinkError("Link has no uses left", error_code="LINK_EXHAUSTED")


def verify_action_link(
    conn: sqlite3.Connection, token: str, *, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Return the link row for *token* without consuming it."""

    link = _load_link(conn, token)
    _check_usable(link, _now(now))
    return link


def _purge_idempotency_keys(conn: sqlite3.Connection, now: datetime) -> None:
    conn.execute("DELETE FROM idempotency_keys WHERE expires_at <= ?", (now.isoformat(),))


def _check_rate_limit(conn: sqlite3.Connection, ip: str, now: datetime) -> None:
    bucket = f"consume:{ip}"
    row = fetch_dict(conn, "SELECT window_start, count FROM rate_limits WHERE bucket = ?", (bucket,))
    if row is None or (now - _parse(row["window_start"])).total_seconds() >= RATE_LIMIT_WINDOW_SECONDS:
        conn.execute(
            """
            INSERT INTO rate_limits (bucket, window_start, count) VALUES (?, ?, 1)
            ON CONFLICT(bucket) DO UPDATE SET window_start = excluded.window_start, count = 1
            """,
            (bucket, now.isoformat()),
        )
        return
    if int(row["count"]) >= config.LINK_RATE_LIMIT_PER_MINUTE:
        conn.commit()
        raise RateLimitError("Too many requests", error_code="RATE_LIMITED", context={"ip": ip})
    conn.execute("UPDATE rate_limits SET count = count + 1 WHERE bucket = ?", (bucket,))


def _identity_matches(link: Dict[str, Any], email: Optional[str], phone: Optional[str]) -> bool:
    if email and link.get("email") and email.strip().lower() == link["email"].strip().lower():
        return True
    phone_digits = digits_only(phone)
    if phone_digits and phone_digits == digits_only(link.get("phone")):
        return True
    return False


def consume_action_link(
    conn: sqlite3.Connection,
    token: str,
    *,
    idempotency_key: Optional[str],
    email: Optional[str] = None,
    phone: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
    ip: str = "unknown",
    user_agent: str = "unknown",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Use a link once on behalf of its recipient.

    A repeated *idempotency_key* within the TTL returns
    ``{"ok": True, "idempotent": True}`` without touching the link.
    """

    if not idempotency_key or not idempotency_key.strip():
        raise ValidationError("An idempotency key is required.", error_code="IDEMPOTENCY_KEY_REQUIRED")
    if not validate_token_entropy(token):
        raise ActionLinkError("Invalid token", error_code="LINK_TOKEN_INVALID")
    current = _now(now)

    _check_rate_limit(conn, ip, current)
    _purge_idempotency_keys(conn, current)
    if fetch_dict(conn, "SELECT key FROM idempotency_keys WHERE key = ?", (idempotency_key,)):
        conn.commit()
        return {"ok": True, "idempotent": True}

    try:
        link = _load_link(conn, token)
        _check_usable(link, current)
        if not _identity_matches(link, email, phone):
            raise ActionLinkError("Recipient does not match this link", error_code="LINK_IDENTITY_MISMATCH")
    except ActionLinkError:
        conn.commit()
        raise

    use_count = int(link["use_count"]) + 1
    consumed = use_count >= int(link["max_uses"])
    conn.execute(
        """
        UPDATE action_links
        SET use_count = ?, status = ?, consumed_at = COALESCE(?, consumed_at)
        WHERE id = ?
        """,
        (
            use_count,
            "consumed" if consumed else "active",
            current.isoformat() if consumed else None,
            link["id"],
        ),
    )
    conn.execute(
        "INSERT INTO idempotency_keys (key, expires_at) VALUES (?, ?)",
        (idempotency_key, (current + timedelta(seconds=config.IDEMPOTENCY_TTL_SECONDS)).isoformat()),
    )
    record_audit(
        conn,
        link["tenant_id"],
        "action_link.consumed",
        target_type="action_link",
        target_id=int(link["id"]),
        details={"action_type": link["action_type"], "use_count": use_count, "payload": payload or {}},
        actor=email or phone,
        ip=ip,
        user_agent=user_agent,
    )
    conn.commit()
    logger.info("Action link %s used (%s/%s)", link["id"], use_count, link["max_uses"])
    return {"ok": True, "consumed": consumed, "action_type": link["action_type"], "metadata": link["metadata"]}


def revoke_action_link(
    conn: sqlite3.Connection, tenant_id: str, link_id: int, *, actor: Optional[str] = None
) -> None:
    cursor = conn.execute(
        "UPDATE action_links SET status = 'revoked' WHERE id = ? AND tenant_id = ? AND status = 'active'",
        (link_id, tenant_id),
    )
    if cursor.rowcount == 0:
        raise ActionLinkError("No active link to revoke", error_code="LINK_NOT_FOUND", context={"id": link_id})
    record_audit(conn, tenant_id, "action_link.revoked", target_type="action_link", target_id=link_id, actor=actor)
    conn.commit()


__all__ = [
    "MAX_EXPIRY_MINUTES",
    "MAX_USES",
    "MIN_EXPIRY_MINUTES",
    "MIN_TOKEN_LENGTH",
    "consume_action_link",
    "create_action_link",
    "generate_token",
    "hash_token",
    "link_url",
    "revoke_action_link",
    "validate_token_entropy",
    "verify_action_link",
]
