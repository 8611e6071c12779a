"""Itineraries built from paid quotes, with passengers, crew and client links."""
from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from charterdesk.action_links import MAX_EXPIRY_MINUTES, create_action_link, verify_action_link
from charterdesk.audit import record_audit
from charterdesk.errors import (
    ActionLinkError,
    NotFoundError,
    TenantAccessError,
    ValidationError,
    WorkflowError,
)
from charterdesk.invoicing import get_invoice_for_quote
from charterdesk.quote_service import get_quote
from charterdesk.schema import CREW_ROLES, fetch_dict, fetch_dicts, utc_now
from charterdesk.trip import departure_timestamp
from charterdesk.workflow import transition_quote, validate_itinerary_status

logger = logging.getLogger(__name__)

ITINERARY_FIELDS = ("title", "trip_summary", "status", "notes")
LEG_FIELDS = ("depart_at", "origin_fbo", "destination_fbo", "notes", "aircraft_label", "tail_number")


def create_itinerary_from_quote(
    conn: sqlite3.Connection, tenant_id: str, quote_id: int, *, actor: Optional[str] = None
) -> int:
    """Copy a paid quote's legs into a draft itinerary."""

    bundle = get_quote(conn, tenant_id, quote_id)
    quote = bundle.quote
    if quote["status"] != "payment_received":
        raise WorkflowError(
            f"Quote {quote_id} must be paid before an itinerary is created (status {quote['status']})",
            error_code="QUOTE_NOT_PAID",
        )
    invoice = get_invoice_for_quote(conn, tenant_id, quote_id)
    option = bundle.selected_option or {}
    label = option.get("aircraft_label") or (invoice or {}).get("aircraft_label") or option.get("label")
    tail = option.get("tail_number")
    timestamp = utc_now()

    with conn:
        cursor = conn.execute(
            """
            INSERT INTO itineraries
                (tenant_id, quote_id, invoice_id, contact_id, title, trip_summary, status,
                 created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, 'draft', ?, ?)
            """,
            (
                tenant_id,
                quote_id,
                invoice["id"] if invoice else None,
                quote.get("contact_id"),
                quote.get("title") or quote.get("trip_summary") or f"Quote {quote_id}",
                quote.get("trip_summary"),
                timestamp,
                timestamp,
            ),
        )
        itinerary_id = int(cursor.lastrowid)
        conn.executemany(
            """
            INSERT INTO itinerary_details
                (itinerary_id, seq, origin, origin_code, destination, destination_code, depart_at,
                 pax_count, distance_nm, origin_lat, origin_long, destination_lat, destination_long,
                 aircraft_label, tail_number, notes)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    itinerary_id,
                    leg.seq,
                    leg.origin,
                    leg.origin_code,
                    leg.destination,
                    leg.destination_code,
                    departure_timestamp(leg),
                    1 if leg.pax_count is None else leg.pax_count,
                    leg.distance_nm,
                    leg.origin_lat,
                    leg.origin_long,
                    leg.destination_lat,
                    leg.destination_long,
                    label,
                    tail,
                    leg.notes,
                )
                for leg in bundle.leg_inputs()
            ],
        )
        transition_quote(conn, tenant_id, quote_id, "itinerary_created", actor=actor, commit=False)
    logger.info("Created itinerary %s from quote %s", itinerary_id, quote_id)
    return itinerary_id


def _itinerary_row(conn: sqlite3.Connection, tenant_id: str, itinerary_id: int) -> Dict[str, Any]:
    row = fetch_dict(
        conn, "SELECT * FROM itineraries WHERE id = ? AND tenant_id = ?", (itinerary_id, tenant_id)
    )
    if row is None:
        raise NotFoundError(f"Itinerary {itinerary_id} not found", error_code="ITINERARY_NOT_FOUND")
    return row


def get_itinerary(conn: sqlite3.Connection, tenant_id: str, itinerary_id: int) -> Dict[str, Any]:
    itinerary = _itinerary_row(conn, tenant_id, itinerary_id)
    itinerary["details"] = fetch_dicts(
        conn, "SELECT * FROM itinerary_details WHERE itinerary_id = ? ORDER BY seq", (itinerary_id,)
    )
    itinerary["passengers"] = fetch_dicts(
        conn,
        """
        SELECT p.id, p.full_name, p.email, p.phone, p.nationality, p.dietary_restrictions
        FROM itinerary_passengers ip
        JOIN passengers p ON p.id = ip.passenger_id
        WHERE ip.itinerary_id = ? AND ip.tenant_id = ?
        ORDER BY p.full_name
        """,
        (itinerary_id, tenant_id),
    )
    itinerary["crew"] = fetch_dicts(
        conn,
        "SELECT id, name, role, email, phone, notes FROM itinerary_crew WHERE itinerary_id = ? ORDER BY id",
        (itinerary_id,),
    )
    itinerary["contact"] = (
        fetch_dict(
            conn,
            "SELECT id, full_name, company, email, phone FROM contacts WHERE id = ? AND tenant_id = ?",
            (itinerary["contact_id"], tenant_id),
        )
        if itinerary.get("contact_id")
        else None
    )
    itinerary["invoice"] = (
        fetch_dict(
            conn,
            "SELECT id, number, status, amount, currency, paid_at FROM invoices WHERE id = ?",
            (itinerary["invoice_id"],),
        )
        if itinerary.get("invoice_id")
        else None
    )
    return itinerary


def list_itineraries(
    conn: sqlite3.Connection,
    tenant_id: str,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> pd.DataFrame:
    sql = """
        SELECT i.id, i.title, i.trip_summary, i.status, i.published_at, i.quote_id,
               COALESCE(c.full_name, q.contact_name) AS contact_name,
               (SELECT MIN(depart_at) FROM itinerary_details d WHERE d.itinerary_id = i.id) AS first_departure
        FROM itineraries i
        LEFT JOIN contacts c ON c.id = i.contact_id
        LEFT JOIN quotes q ON q.id = i.quote_id
        WHERE i.tenant_id = ?
    """
    params: List[Any] = [tenant_id]
    if status:
        sql += " AND i.status = ?"
        params.append(validate_itinerary_status(status))
    if search and search.strip():
        like = f"%{search.strip().lower()}%"
        sql += (
            " AND (lower(COALESCE(i.title, '')) LIKE ? OR lower(COALESCE(i.trip_summary, '')) LIKE ?"
            " OR lower(COALESCE(c.full_name, q.contact_name, '')) LIKE ?)"
        )
        params.extend([like, like, like])
    sql += " ORDER BY first_departure IS NULL, first_departure, i.id"
    return pd.read_sql_query(sql, conn, params=params)


def update_itinerary(
    conn: sqlite3.Connection,
    tenant_id: str,
    itinerary_id: int,
    *,
    actor: Optional[str] = None,
    **fields: Any,
) -> Dict[str, Any]:
    """Update itinerary fields; confirming the trip requires a paid invoice."""

    itinerary = _itinerary_row(conn, tenant_id, itinerary_id)
    unknown = set(fields) - set(ITINERARY_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown itinerary fields: {', '.join(sorted(unknown))}")
    status = fields.get("status")
    if status is not None:
        validate_itinerary_status(status)
        if status == "trip_confirmed":
            invoice = (
                fetch_dict(conn, "SELECT status FROM invoices WHERE id = ?", (itinerary["invoice_id"],))
                if itinerary.get("invoice_id")
                else None
            )
            if invoice is None or invoice["status"] != "paid":
                raise WorkflowError(
                    "The trip cannot be confirmed until the invoice is paid",
                    error_code="INVOICE_NOT_PAID",
                )
    if fields:
        assignments = ", ".join(f"{name} = ?" for name in fields)
        conn.execute(
            f"UPDATE itineraries SET {assignments}, updated_at = ? WHERE id = ? AND tenant_id = ?",
            (*fields.values(), utc_now(), itinerary_id, tenant_id),
        )
        if status is not None and status != itinerary["status"]:
            record_audit(
                conn, tenant_id, "itinerary.status_changed", target_type="itinerary",
                target_id=itinerary_id, details={"from": itinerary["status"], "to": status}, actor=actor,
            )
        conn.commit()
    return get_itinerary(conn, tenant_id, itinerary_id)


def update_itinerary_leg(
    conn: sqlite3.Connection, tenant_id: str, itinerary_id: int, seq: int, **fields: Any
) -> None:
    _itinerary_row(conn, tenant_id, itinerary_id)
    unknown = set(fields) - set(LEG_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown itinerary leg fields: {', '.join(sorted(unknown))}")
    if not fields:
        return
    assignments = ", ".join(f"{name} = ?" for name in fields)
    cursor = conn.execute(
        f"UPDATE itinerary_details SET {assignments} WHERE itinerary_id = ? AND seq = ?",
        (*fields.values(), itinerary_id, seq),
    )
    if cursor.rowcount == 0:
        raise NotFoundError(f"Itinerary {itinerary_id} has no leg {seq}")
    conn.commit()


def set_itinerary_passengers(
    conn: sqlite3.Connection, tenant_id: str, itinerary_id: int, passenger_ids: Iterable[int]
) -> List[int]:
    """Replace the passenger manifest."""

    _itinerary_row(conn, tenant_id, itinerary_id)
    wanted = list(dict.fromkeys(int(pid) for pid in passenger_ids))
    if wanted:
        placeholders = ", ".join("?" for _ in wanted)
        found = {
            int(row[0])
            for row in conn.execute(
                f"SELECT id FROM passengers WHERE tenant_id = ? AND id IN ({placeholders})",
                (tenant_id, *wanted),
            )
        }
        missing = [pid for pid in wanted if pid not in found]
        if missing:
            raise ValidationError(
                f"Unknown passengers: {', '.join(str(pid) for pid in missing)}",
                error_code="PASSENGER_NOT_FOUND",
                context={"missing": missing},
            )
    with conn:
        conn.execute("DELETE FROM itinerary_passengers WHERE itinerary_id = ?", (itinerary_id,))
        conn.executemany(
            "INSERT INTO itinerary_passengers (itinerary_id, passenger_id, tenant_id) VALUES (?, ?, ?)",
            [(itinerary_id, pid, tenant_id) for pid in wanted],
        )
    return wanted


def set_itinerary_crew(
    conn: sqlite3.Connection,
    tenant_id: str,
    itinerary_id: int,
    crew: Sequence[Mapping[str, Any]],
) -> List[Dict[str, Any]]:
    """Replace the crew list. Every member needs a name and a known role."""

    _itinerary_row(conn, tenant_id, itinerary_id)
    invalid_roles = sorted({str(m.get("role")) for m in crew if m.get("role") not in CREW_ROLES})
    if invalid_roles:
        raise ValidationError(
            f"Invalid crew roles: {', '.join(invalid_roles)}. Allowed: {', '.join(CREW_ROLES)}",
            error_code="CREW_ROLE",
            context={"invalid_roles": invalid_roles},
        )
    rows = []
    for member in crew:
        name = str(member.get("name") or "").strip()
        if not name:
            raise ValidationError("Every crew member needs a name.", error_code="CREW_NAME")
        rows.append(
            (
                itinerary_id,
                tenant_id,
                name,
                member["role"],
                (member.get("email") or None),
                (member.get("phone") or None),
                (member.get("notes") or None),
            )
        )
    with conn:
        conn.execute("DELETE FROM itinerary_crew WHERE itinerary_id = ?", (itinerary_id,))
        conn.executemany(
            """
            INSERT INTO itinerary_crew (itinerary_id, tenant_id, name, role, email, phone, notes)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
    return get_itinerary(conn, tenant_id, itinerary_id)["crew"]


def itinerary_recipients(conn: sqlite3.Connection, itinerary: Dict[str, Any]) -> List[Dict[str, str]]:
    """Contact first, then passengers, de-duplicated by lower-cased e-mail."""

    candidates: List[Dict[str, str]] = []
    contact = itinerary.get("contact")
    if contact and contact.get("email"):
        candidates.append({"email": contact["email"], "name": contact.get("full_name") or ""})
    elif itinerary.get("quote_id"):
        quote = fetch_dict(
            conn, "SELECT contact_email, contact_name FROM quotes WHERE id = ?", (itinerary["quote_id"],)
        )
        if quote and quote.get("contact_email"):
            candidates.append({"email": quote["contact_email"], "name": quote.get("contact_name") or ""})
    for passenger in itinerary.get("passengers", []):
        if passenger.get("email"):
            candidates.append({"email": passenger["email"], "name": passenger["full_name"]})

    seen = set()
    recipients = []
    for candidate in candidates:
        key = candidate["email"].strip().lower()
        if key and key not in seen:
            seen.add(key)
            recipients.append({"email": candidate["email"].strip(), "name": candidate["name"]})
    return recipients


def publish_itinerary(
    conn: sqlite3.Connection,
    tenant_id: str,
    itinerary_id: int,
    *,
    created_by: Optional[str] = None,
    expires_in_minutes: int = MAX_EXPIRY_MINUTES,
) -> List[Dict[str, Any]]:
    """Issue one ``view_itinerary`` link per recipient and stamp ``published_at``."""

    owner = fetch_dict(conn, "SELECT tenant_id FROM itineraries WHERE id = ?", (itinerary_id,))
    if owner is None:
        raise NotFoundError(f"Itinerary {itinerary_id} not found", error_code="ITINERARY_NOT_FOUND")
    if owner["tenant_id"] != tenant_id:
        raise TenantAccessError(
            f"Itinerary {itinerary_id} belongs to another tenant", error_code="FORBIDDEN"
        )
    itinerary = get_itinerary(conn, tenant_id, itinerary_id)
    recipients = itinerary_recipients(conn, itinerary)
    if not recipients:
        raise ValidationError(
            "No recipients with an e-mail address for this itinerary", error_code="NO_RECIPIENTS"
        )

    results: List[Dict[str, Any]] = []
    with conn:
        for recipient in recipients:
            link = create_action_link(
                conn,
                tenant_id,
                "view_itinerary",
                email=recipient["email"],
                metadata={"itinerary_id": itinerary_id},
                expires_in_minutes=expires_in_minutes,
                created_by=created_by,
                commit=False,
            )
            results.append({"email": recipient["email"], "name": recipient["name"], "ok": True, **link})
        conn.execute(
            "UPDATE itineraries SET published_at = ?, updated_at = ? WHERE id = ?",
            (utc_now(), utc_now(), itinerary_id),
        )
        record_audit(
            conn, tenant_id, "itinerary.published", target_type="itinerary", target_id=itinerary_id,
            details={"recipients": [r["email"] for r in results]}, actor=created_by,
        )
    logger.info("Published itinerary %s to %d recipients", itinerary_id, len(results))
    return results


def public_itinerary_view(conn: sqlite3.Connection, token: str) -> Dict[str, Any]:
    link = verify_action_link(conn, token)
    if link["action_type"] != "view_itinerary" or "itinerary_id" not in link["metadata"]:
        raise ActionLinkError("Link does not point to an itinerary", error_code="LINK_WRONG_TYPE")
    tenant_id = link["tenant_id"]
    itinerary = get_itinerary(conn, tenant_id, int(link["metadata"]["itinerary_id"]))
    itinerary["tenant"] = fetch_dict(
        conn, "SELECT id, name, primary_color, logo_url FROM tenants WHERE id = ?", (tenant_id,)
    )
    return itinerary


__all__ = [
    "create_itinerary_from_quote",
    "get_itinerary",
    "itinerary_recipients",
    "list_itineraries",
    "public_itinerary_view",
    "publish_itinerary",
    "set_itinerary_crew",
    "set_itinerary_passengers",
    "update_itinerary",
    "update_itinerary_leg",
]
