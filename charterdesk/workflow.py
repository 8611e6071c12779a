"""Quote status transitions."""
from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from charterdesk.action_links import create_action_link
from charterdesk.audit import record_audit
from charterdesk.errors import NotFoundError, ValidationError, WorkflowError
from charterdesk.schema import ITINERARY_STATUSES, QUOTE_STATUSES, fetch_dict, utc_now

logger = logging.getLogger(__name__)

QUOTE_TRANSITIONS: Mapping[str, Sequence[str]] = {
    "draft": ("pending_response", "declined", "expired"),
    "pending_response": ("opened", "client_accepted", "declined", "expired"),
    "opened": ("client_accepted", "declined", "expired"),
    "client_accepted": ("availability_confirmed", "declined"),
    "availability_confirmed": ("pending_payment", "declined"),
    "pending_payment": ("payment_received", "declined"),
    "payment_received": ("itinerary_created",),
    "itinerary_created": (),
    "declined": (),
    "expired": (),
}

TERMINAL_STATUSES = frozenset(status for status, targets in QUOTE_TRANSITIONS.items() if not targets)
EDIT_LOCKED_STATUSES = frozenset({"pending_payment", "payment_received", "itinerary_created"})
AVAILABILITY_RESULTS = ("confirmed", "unavailable")

# Timestamp column stamped the first time a quote enters a status.
_STATUS_TIMESTAMPS = {
    "pending_response": "published_at",
    "client_accepted": "accepted_at",
}

QUOTE_LINK_EXPIRY_MINUTES = 7 * 24 * 60


def fetch_quote_row(conn: sqlite3.Connection, tenant_id: str, quote_id: int) -> Dict[str, Any]:
    row = fetch_dict(conn, "SELECT * FROM quotes WHERE id = ? AND tenant_id = ?", (quote_id, tenant_id))
    if row is None:
        raise NotFoundError(
            f"Quote {quote_id} not found", error_code="QUOTE_NOT_FOUND", context={"quote_id": quote_id}
        )
    return row


def can_transition(current: str, new_status: str) -> bool:
    return new_status in QUOTE_TRANSITIONS.get(current, ())


def is_editable(status: str) -> bool:
    return status not in EDIT_LOCKED_STATUSES


def ensure_editable(quote: Mapping[str, Any]) -> None:
    if not is_editable(quote["status"]):
        raise WorkflowError(
            f"Quote {quote['id']} can no longer be edited ({quote['status']})",
            error_code="QUOTE_LOCKED",
            context={"status": quote["status"]},
        )


def transition_quote(
    conn: sqlite3.Connection,
    tenant_id: str,
    quote_id: int,
    new_status: str,
    *,
    actor: Optional[str] = None,
    note: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
    commit: bool = True,
) -> Dict[str, Any]:
    """Move a quote to *new_status*, stamping timestamps and writing an audit row.

    ``extra`` holds additional quote columns written in the same statement.
    """

    if new_status not in QUOTE_STATUSES:
        raise ValidationError(f"Unknown quote status: {new_status}", error_code="QUOTE_STATUS")
    quote = fetch_quote_row(conn, tenant_id, quote_id)
    current = quote["status"]
    if not can_transition(current, new_status):
        raise WorkflowError(
            f"Cannot move quote {quote_id} from {current} to {new_status}",
            error_code="ILLEGAL_TRANSITION",
            context={"from": current, "to": new_status},
        )

    timestamp = utc_now()
    updates: Dict[str, Any] = {"status": new_status}
    stamp = _STATUS_TIMESTAMPS.get(new_status)
    if stamp and not quote.get(stamp):
        updates[stamp] = timestamp
    updates.update(extra or {})
    assignments = ", ".join(f"{column} = ?" for column in updates)
    conn.execute(
        f"UPDATE quotes SET {assignments}, updated_at = ? WHERE id = ? AND tenant_id = ?",
        (*updates.values(), timestamp, quote_id, tenant_id),
    )
    record_audit(
        conn,
        tenant_id,
        "quote.status_changed",
        target_type="quote",
        target_id=quote_id,
        details={"from": current, "to": new_status, "note": note},
        actor=actor,
    )
    if commit:
        conn.commit()
    logger.info("Quote %s: %s -> %s", quote_id, current, new_status)
    quote.update(updates)
    return quote


def send_quote(
    conn: sqlite3.Connection,
    tenant_id: str,
    quote_id: int,
    *,
    created_by: Optional[str] = None,
    expires_in_minutes: int = QUOTE_LINK_EXPIRY_MINUTES,
) -> Dict[str, Any]:
    """Publish a draft quote and issue the client's ``quote`` link."""

    quote = fetch_quote_row(conn, tenant_id, quote_id)
    if not quote.get("contact_email"):
        raise ValidationError(
            "Quote needs a contact e-mail before it can be sent.", error_code="QUOTE_NO_RECIPIENT"
        )
    if not can_transition(quote["status"], "pending_response"):
        raise WorkflowError(
            f"Only draft quotes can be sent (quote {quote_id} is {quote['status']})",
            error_code="ILLEGAL_TRANSITION",
        )
    link = create_action_link(
        conn,
        tenant_id,
        "quote",
        email=quote["contact_email"],
        metadata={"quote_id": quote_id},
        expires_in_minutes=expires_in_minutes,
        created_by=created_by,
        commit=False,
    )
    transition_quote(
        conn,
        tenant_id,
        quote_id,
        "pending_response",
        actor=created_by,
        extra={"public_link_id": link["id"]},
    )
    return link


def mark_opened(conn: sqlite3.Connection, tenant_id: str, quote_id: int) -> bool:
    """Record that the client opened a sent quote. Other statuses are left alone."""

    quote = fetch_quote_row(conn, tenant_id, quote_id)
    if quote["status"] != "pending_response":
        return False
    transition_quote(conn, tenant_id, quote_id, "opened", actor="client")
    return True


def accept_quote(
    conn: sqlite3.Connection,
    tenant_id: str,
    quote_id: int,
    option_id: int,
    *,
    actor: Optional[str] = None,
) -> Dict[str, Any]:
    fetch_quote_row(conn, tenant_id, quote_id)
    option = fetch_dict(
        conn, "SELECT id FROM quote_options WHERE id = ? AND quote_id = ?", (option_id, quote_id)
    )
    if option is None:
        raise ValidationError(
            f"Option {option_id} does not belong to quote {quote_id}",
            error_code="OPTION_MISMATCH",
            context={"option_id": option_id},
        )
    return transition_quote(
        conn,
        tenant_id,
        quote_id,
        "client_accepted",
        actor=actor,
        extra={"selected_option_id": option_id},
    )


def record_availability(
    conn: sqlite3.Connection,
    tenant_id: str,
    quote_id: int,
    status: str,
    *,
    resources_checked: Optional[Iterable[str]] = None,
    notes: Optional[str] = None,
    actor: Optional[str] = None,
) -> Dict[str, Any]:
    """Store an operator availability check.

    ``confirmed`` moves an accepted quote to ``availability_confirmed``;
    ``unavailable`` only records the result.
    """

    if status not in AVAILABILITY_RESULTS:
        raise ValidationError(f"Unknown availability result: {status}", error_code="AVAILABILITY_STATUS")
    quote = fetch_quote_row(conn, tenant_id, quote_id)
    details = {
        "availability_status": status,
        "availability_notes": (notes or "").strip() or None,
        "resources_checked": json.dumps(list(resources_checked or [])),
        "availability_checked_at": utc_now(),
    }
    if status == "confirmed":
        return transition_quote(
            conn, tenant_id, quote_id, "availability_confirmed", actor=actor, note=notes, extra=details
        )
    if quote["status"] not in ("client_accepted", "availability_confirmed"):
        raise WorkflowError(
            f"Availability can only be checked on accepted quotes (quote {quote_id} is {quote['status']})",
            error_code="ILLEGAL_TRANSITION",
        )
    assignments = ", ".join(f"{column} = ?" for column in details)
    conn.execute(
        f"UPDATE quotes SET {assignments}, updated_at = ? WHERE id = ? AND tenant_id = ?",
        (*details.values(), utc_now(), quote_id, tenant_id),
    )
    record_audit(
        conn, tenant_id, "quote.availability", target_type="quote", target_id=quote_id,
        details={"status": status}, actor=actor,
    )
    conn.commit()
    quote.update(details)
    return quote


def expire_stale_quotes(
    conn: sqlite3.Connection,
    tenant_id: str,
    now: Optional[Union[date, datetime]] = None,
) -> List[int]:
    """Expire sent quotes whose ``valid_until`` date has passed."""

    today = now or date.today()
    if isinstance(today, datetime):
        today = today.date()
    rows = conn.execute(
        """
        SELECT id FROM quotes
        WHERE tenant_id = ? AND status IN ('pending_response', 'opened')
          AND valid_until IS NOT NULL AND substr(valid_until, 1, 10) < ?
        """,
        (tenant_id, today.isoformat()),
    ).fetchall()
    expired = [int(row[0]) for row in rows]
    for quote_id in expired:
        transition_quote(conn, tenant_id, quote_id, "expired", actor="system", commit=False)
    conn.commit()
    if expired:
        logger.info("Expired %d stale quotes for tenant %s", len(expired), tenant_id)
    return expired


def validate_itinerary_status(status: str) -> str:
    if status not in ITINERARY_STATUSES:
        raise ValidationError(
            f"Unknown itinerary status: {status}",
            error_code="ITINERARY_STATUS",
            context={"allowed": list(ITINERARY_STATUSES)},
        )
    return status


__all__ = [
    "AVAILABILITY_RESULTS",
    "EDIT_LOCKED_STATUSES",
    "QUOTE_TRANSITIONS",
    "TERMINAL_STATUSES",
    "accept_quote",
    "can_transition",
    "ensure_editable",
    "expire_stale_quotes",
    "fetch_quote_row",
    "is_editable",
    "mark_opened",
    "record_availability",
    "send_quote",
    "transition_quote",
    "validate_itinerary_status",
]
