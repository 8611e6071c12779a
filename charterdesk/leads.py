"""Inbound trip requests and their conversion into quotes."""
from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional, Sequence

from charterdesk.audit import record_audit
from charterdesk.errors import NotFoundError, ValidationError, WorkflowError
from charterdesk.quote_service import QuoteHeader, create_quote
from charterdesk.repo import ContactDetails, ensure_contact_record
from charterdesk.schema import fetch_dict, fetch_dicts, utc_now
from charterdesk.trip import LegInput, prepare_legs

logger = logging.getLogger(__name__)

_LEAD_LEG_COLUMNS = (
    "origin",
    "origin_code",
    "destination",
    "destination_code",
    "depart_dt",
    "depart_time",
    "pax_count",
    "notes",
)


def create_lead(
    conn: sqlite3.Connection,
    tenant_id: str,
    *,
    contact_name: Optional[str] = None,
    contact_email: Optional[str] = None,
    contact_phone: Optional[str] = None,
    contact_company: Optional[str] = None,
    legs: Sequence[LegInput] = (),
    notes: Optional[str] = None,
) -> int:
    details = ContactDetails(
        full_name=contact_name, email=contact_email, phone=contact_phone, company=contact_company
    )
    if not (details.full_name or details.email or details.phone):
        raise ValidationError("A lead needs a name, e-mail or phone.", error_code="LEAD_CONTACT")
    prepared = prepare_legs(legs)
    timestamp = utc_now()
    with conn:
        cursor = conn.execute(
            """
            INSERT INTO leads
                (tenant_id, contact_name, contact_email, contact_phone, contact_company,
                 status, notes, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, 'new', ?, ?, ?)
            """,
            (
                tenant_id,
                details.full_name,
                details.email,
                details.phone,
                details.company,
                (notes or "").strip() or None,
                timestamp,
                timestamp,
            ),
        )
        lead_id = int(cursor.lastrowid)
        conn.executemany(
            f"""
            INSERT INTO lead_details (lead_id, seq, {", ".join(_LEAD_LEG_COLUMNS)})
            VALUES (?, ?, {", ".join("?" for _ in _LEAD_LEG_COLUMNS)})
            """,
            [(lead_id, leg.seq, *(getattr(leg, name) for name in _LEAD_LEG_COLUMNS)) for leg in prepared],
        )
    logger.info("New lead %s for tenant %s (%d legs)", lead_id, tenant_id, len(prepared))
    return lead_id


def get_lead(conn: sqlite3.Connection, tenant_id: str, lead_id: int) -> Dict[str, Any]:
    lead = fetch_dict(conn, "SELECT * FROM leads WHERE id = ? AND tenant_id = ?", (lead_id, tenant_id))
    if lead is None:
        raise NotFoundError(f"Lead {lead_id} not found", error_code="LEAD_NOT_FOUND")
    lead["legs"] = fetch_dicts(
        conn, "SELECT * FROM lead_details WHERE lead_id = ? ORDER BY seq", (lead_id,)
    )
    return lead


def list_leads(
    conn: sqlite3.Connection,
    tenant_id: str,
    status: Optional[str] = None,
    *,
    include_archived: bool = False,
) -> List[Dict[str, Any]]:
    sql = """
        SELECT l.*, (SELECT COUNT(*) FROM lead_details d WHERE d.lead_id = l.id) AS leg_count,
               (SELECT MIN(depart_dt) FROM lead_details d WHERE d.lead_id = l.id) AS first_departure
        FROM leads l
        WHERE l.tenant_id = ? AND l.status != 'deleted'
    """
    params: List[Any] = [tenant_id]
    if status:
        sql += " AND l.status = ?"
        params.append(status)
    if not include_archived:
        sql += " AND l.is_archived = 0"
    sql += " ORDER BY l.created_at DESC, l.id DESC"
    return fetch_dicts(conn, sql, params)


def count_new_leads(conn: sqlite3.Connection, tenant_id: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM leads WHERE tenant_id = ? AND status = 'new' AND is_archived = 0",
        (tenant_id,),
    ).fetchone()
    return int(row[0])


def log_lead_engagement(conn: sqlite3.Connection, tenant_id: str, lead_id: int) -> Dict[str, Any]:
    """Record that a broker opened the lead; ``new`` leads become ``opened``."""

    lead = get_lead(conn, tenant_id, lead_id)
    timestamp = utc_now()
    conn.execute(
        """
        UPDATE leads
        SET engagement_count = engagement_count + 1,
            last_engaged_at = ?,
            status = CASE WHEN status = 'new' THEN 'opened' ELSE status END,
            updated_at = ?
        WHERE id = ?
        """,
        (timestamp, timestamp, lead_id),
    )
    conn.commit()
    lead.update(get_lead(conn, tenant_id, lead_id))
    return lead


def archive_lead(conn: sqlite3.Connection, tenant_id: str, lead_id: int, archived: bool = True) -> None:
    get_lead(conn, tenant_id, lead_id)
    conn.execute(
        "UPDATE leads SET is_archived = ?, updated_at = ? WHERE id = ?",
        (int(archived), utc_now(), lead_id),
    )
    conn.commit()


def convert_lead_to_quote(
    conn: sqlite3.Connection, tenant_id: str, lead_id: int, *, actor: Optional[str] = None
) -> int:
    """Create a draft quote from a lead and mark the lead converted."""

    lead = get_lead(conn, tenant_id, lead_id)
    if lead["status"] in ("converted", "deleted") or lead.get("quote_id"):
        raise WorkflowError(
            f"Lead {lead_id} has already been converted", error_code="LEAD_CONVERTED",
            context={"quote_id": lead.get("quote_id")},
        )
    details = ContactDetails(
        full_name=lead.get("contact_name"),
        email=lead.get("contact_email"),
        phone=lead.get("contact_phone"),
        company=lead.get("contact_company"),
    )
    legs = [LegInput(**{name: leg.get(name) for name in _LEAD_LEG_COLUMNS}) for leg in lead["legs"]]
    # Contact, quote and lead update share one transaction.
    with conn:
        contact_id, _ = ensure_contact_record(conn, tenant_id, details, lead.get("contact_id"))
        header = QuoteHeader(
            contact_id=contact_id,
            contact_name=details.full_name,
            contact_email=details.email,
            contact_phone=details.phone,
            contact_company=details.company,
            notes=lead.get("notes"),
            lead_id=lead_id,
        )
        quote_id = create_quote(conn, tenant_id, header, legs=legs, commit=False)
        conn.execute(
            """
            UPDATE leads SET status = 'converted', quote_id = ?, contact_id = COALESCE(contact_id, ?),
                updated_at = ?
            WHERE id = ?
            """,
            (quote_id, contact_id, utc_now(), lead_id),
        )
        record_audit(
            conn, tenant_id, "lead.converted", target_type="lead", target_id=lead_id,
            details={"quote_id": quote_id}, actor=actor,
        )
    logger.info("Lead %s converted to quote %s", lead_id, quote_id)
    return quote_id


def delete_lead(conn: sqlite3.Connection, tenant_id: str, lead_id: int) -> bool:
    """Delete a lead. Converted leads are only marked deleted; returns True on a hard delete."""

    lead = get_lead(conn, tenant_id, lead_id)
    with conn:
        if lead["status"] == "converted" or lead.get("quote_id"):
            conn.execute(
                "UPDATE leads SET status = 'deleted', updated_at = ? WHERE id = ?", (utc_now(), lead_id)
            )
            return False
        conn.execute("DELETE FROM lead_details WHERE lead_id = ?", (lead_id,))
        conn.execute("DELETE FROM leads WHERE id = ?", (lead_id,))
    return True


__all__ = [
    "archive_lead",
    "convert_lead_to_quote",
    "count_new_leads",
    "create_lead",
    "delete_lead",
    "get_lead",
    "list_leads",
    "log_lead_engagement",
]
