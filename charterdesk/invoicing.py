"""Invoice generation from accepted quotes."""
from __future__ import annotations

import json
import logging
import re
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from charterdesk import config
from charterdesk.action_links import create_action_link, verify_action_link
from charterdesk.airports import lookup_airport
from charterdesk.audit import record_audit
from charterdesk.errors import ActionLinkError, NotFoundError, ValidationError, WorkflowError
from charterdesk.pricing import SERVICE_TAX_RATE_PERCENT, compute_default_taxes, services_subtotal
from charterdesk.quote_service import QuoteBundle, get_quote
from charterdesk.schema import fetch_dict, fetch_dicts, utc_now
from charterdesk.trip import route_label
from charterdesk.workflow import transition_quote

logger = logging.getLogger(__name__)

INVOICE_LINK_EXPIRY_MINUTES = 14 * 24 * 60
# Quotes past these statuses have been paid and keep their invoice as issued.
PAID_QUOTE_STATUSES = frozenset({"payment_received", "itinerary_created"})
REGENERABLE_INVOICE_STATUSES = ("issued", "void")
_TRAILING_DIGITS = re.compile(r"(\d+)\s*$")


def format_invoice_number(sequence: int, prefix: Optional[str] = None) -> str:
    return f"{prefix if prefix is not None else config.INVOICE_PREFIX}{sequence:05d}"


def next_invoice_number(conn: sqlite3.Connection, tenant_id: str) -> str:
    """Increment the highest trailing digits among the tenant's invoice numbers."""

    rows = conn.execute("SELECT number FROM invoices WHERE tenant_id = ?", (tenant_id,)).fetchall()
    last = 0
    for (number,) in rows:
        match = _TRAILING_DIGITS.search(number or "")
        if match:
            last = max(last, int(match.group(1)))
    return format_invoice_number(last + 1)


def normalize_invoice_number(number: Optional[str]) -> Optional[str]:
    """Bring a legacy number onto the ``PREFIX00000`` format, or ``None`` if it has no digits."""

    if not number:
        return None
    if number.startswith(config.INVOICE_PREFIX):
        return number
    match = _TRAILING_DIGITS.search(number)
    if not match:
        return None
    return format_invoice_number(int(match.group(1)))


def default_taxes(conn: sqlite3.Connection, bundle: QuoteBundle) -> List[Dict[str, Any]]:
    """Standard US taxes for the quote's selected option, services and legs."""

    option = bundle.selected_option
    if option is None:
        return []
    airports = {}
    for leg in bundle.legs:
        for code in (leg["origin_code"], leg["destination_code"]):
            if code not in airports:
                airport = lookup_airport(conn, code)
                if airport is not None:
                    airports[code] = airport
    aircraft_subtotal = float(option["cost_operator"]) + float(option["price_commission"])
    return compute_default_taxes(aircraft_subtotal, bundle.services, bundle.legs, airports)


def _quote_is_paid(quote: Dict[str, Any]) -> bool:
    return quote["status"] in PAID_QUOTE_STATUSES or quote.get("payment_status") == "paid"


def can_regenerate_invoice(quote: Dict[str, Any], invoice: Optional[Dict[str, Any]] = None) -> bool:
    """Whether ``quote_to_invoice`` may (re)issue the invoice for *quote*."""

    if _quote_is_paid(quote):
        return False
    return invoice is None or invoice["status"] in REGENERABLE_INVOICE_STATUSES


def _aircraft_label(option: Dict[str, Any]) -> str:
    return option.get("label") or option.get("tail_number") or f"Aircraft {option.get('aircraft_id')}"


def quote_to_invoice(
    conn: sqlite3.Connection,
    tenant_id: str,
    quote_id: int,
    *,
    payment_url: Optional[str] = None,
    taxes: Optional[Sequence[Dict[str, Any]]] = None,
    due_in_days: Optional[int] = None,
    actor: Optional[str] = None,
) -> Dict[str, Any]:
    """Generate (or regenerate) the invoice for a quote's selected option.

    Regenerating replaces the previous invoice and its lines but keeps its
    number. Only an ``issued`` or ``void`` invoice of an unpaid quote can be
    regenerated. The quote moves to ``pending_payment`` when availability has
    been confirmed, and its payment status becomes ``unpaid``.
    """

    bundle = get_quote(conn, tenant_id, quote_id)
    quote = bundle.quote
    if quote["status"] in ("declined", "expired"):
        raise WorkflowError(
            f"Quote {quote_id} is {quote['status']} and cannot be invoiced", error_code="QUOTE_CLOSED"
        )
    option = bundle.selected_option
    if option is None:
        available = [opt["id"] for opt in bundle.options]
        raise ValidationError(
            f"Quote {quote_id} has no selected option (available options: "
            f"{', '.join(str(i) for i in available) or 'none'})",
            error_code="NO_SELECTED_OPTION",
            context={"available_option_ids": available},
        )
    if _quote_is_paid(quote):
        raise WorkflowError(
            f"Quote {quote_id} has been paid and its invoice cannot be regenerated",
            error_code="QUOTE_PAID",
            context={"status": quote["status"]},
        )

    aircraft_subtotal = float(option["cost_operator"]) + float(option["price_commission"])
    service_total = services_subtotal(bundle.services)
    subtotal = round(aircraft_subtotal + service_total, 2)
    tax_lines = [
        {"name": str(tax.get("name") or "Tax"), "amount": round(float(tax.get("amount") or 0), 2)}
        for tax in (taxes or ())
    ]
    tax_total = round(sum(tax["amount"] for tax in tax_lines), 2)
    total = round(subtotal + tax_total, 2)
    label = _aircraft_label(option)
    summary = route_label(bundle.leg_inputs())
    currency = quote.get("currency") or config.DEFAULT_CURRENCY

    breakdown = {
        "aircraft": {"label": label, "option_id": option["id"], "amount": aircraft_subtotal},
        "services": [
            {"name": s["name"], "qty": s["qty"], "unit_price": s["unit_price"], "taxable": s["taxable"]}
            for s in bundle.services
        ],
        "taxes": tax_lines,
        "total": total,
    }

    issued = datetime.now(timezone.utc)
    due_at = (issued + timedelta(days=due_in_days)).isoformat() if due_in_days else None

    with conn:
        existing = fetch_dict(
            conn,
            "SELECT id, number, status FROM invoices WHERE quote_id = ? AND tenant_id = ?",
            (quote_id, tenant_id),
        )
        number = None
        if existing is not None:
            if existing["status"] not in REGENERABLE_INVOICE_STATUSES:
                raise WorkflowError(
                    f"Invoice {existing['number']} is {existing['status']} and cannot be regenerated",
                    error_code="INVOICE_STATUS",
                    context={"status": existing["status"]},
                )
            number = normalize_invoice_number(existing["number"])
            conn.execute("DELETE FROM invoice_details WHERE invoice_id = ?", (existing["id"],))
            conn.execute("DELETE FROM invoices WHERE id = ?", (existing["id"],))
            logger.info("Regenerating invoice %s for quote %s", existing["number"], quote_id)
        number = number or next_invoice_number(conn, tenant_id)

        cursor = conn.execute(
            """
            INSERT INTO invoices
                (tenant_id, quote_id, selected_option_id, number, issued_at, due_at, currency,
                 subtotal, tax_total, amount, status, summary_itinerary, aircraft_label,
                 external_payment_url, breakdown_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'issued', ?, ?, ?, ?, ?, ?)
            """,
            (
                tenant_id,
                quote_id,
                option["id"],
                number,
                issued.isoformat(),
                due_at,
                currency,
                subtotal,
                tax_total,
                total,
                summary,
                label,
                payment_url,
                json.dumps(breakdown),
                issued.isoformat(),
                issued.isoformat(),
            ),
        )
        invoice_id = int(cursor.lastrowid)

        lines: List[tuple] = [
            (invoice_id, 1, label, summary, 1, aircraft_subtotal, aircraft_subtotal, "aircraft", 0, 0.0, 0.0)
        ]
        for service in bundle.services:
            amount = float(service["unit_price"]) * float(service["qty"])
            # Tax is charged on the separate tax lines, not per service.
            rate = SERVICE_TAX_RATE_PERCENT if service["taxable"] else 0.0
            lines.append(
                (
                    invoice_id,
                    len(lines) + 1,
                    service["name"],
                    service.get("description"),
                    service["qty"],
                    service["unit_price"],
                    amount,
                    "service",
                    int(bool(service["taxable"])),
                    rate,
                    0.0,
                )
            )
        for tax in tax_lines:
            if tax["amount"] <= 0:
                continue
            lines.append(
                (invoice_id, len(lines) + 1, tax["name"], None, 1, tax["amount"], tax["amount"], "tax", 0, 0.0, 0.0)
            )
        conn.executemany(
            """
            INSERT INTO invoice_details
                (invoice_id, seq, label, description, qty, unit_price, amount, type,
                 taxable, tax_rate, tax_amount)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            lines,
        )

        if quote["status"] == "availability_confirmed":
            transition_quote(conn, tenant_id, quote_id, "pending_payment", actor=actor, commit=False)
        conn.execute(
            "UPDATE quotes SET payment_status = 'unpaid', updated_at = ? WHERE id = ?",
            (utc_now(), quote_id),
        )
        record_audit(
            conn,
            tenant_id,
            "invoice.issued",
            target_type="invoice",
            target_id=invoice_id,
            details={"number": number, "amount": total, "quote_id": quote_id},
            actor=actor,
        )
    logger.info("Issued invoice %s (%s) for quote %s", number, total, quote_id)
    return get_invoice(conn, tenant_id, invoice_id)


def get_invoice(conn: sqlite3.Connection, tenant_id: str, invoice_id: int) -> Dict[str, Any]:
    invoice = fetch_dict(
        conn,
        """
        SELECT i.*, q.contact_name, q.contact_email, q.contact_phone, q.contact_company,
               q.title AS quote_title
        FROM invoices i
        JOIN quotes q ON q.id = i.quote_id
        WHERE i.id = ? AND i.tenant_id = ?
        """,
        (invoice_id, tenant_id),
    )
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found", error_code="INVOICE_NOT_FOUND")
    invoice["breakdown"] = json.loads(invoice.pop("breakdown_json") or "{}")
    invoice["lines"] = fetch_dicts(
        conn, "SELECT * FROM invoice_details WHERE invoice_id = ? ORDER BY seq", (invoice_id,)
    )
    return invoice


def get_invoice_for_quote(conn: sqlite3.Connection, tenant_id: str, quote_id: int) -> Optional[Dict[str, Any]]:
    row = fetch_dict(
        conn, "SELECT id FROM invoices WHERE quote_id = ? AND tenant_id = ?", (quote_id, tenant_id)
    )
    return get_invoice(conn, tenant_id, int(row["id"])) if row else None


def list_invoices(
    conn: sqlite3.Connection, tenant_id: str, status: Optional[str] = None
) -> pd.DataFrame:
    sql = """
        SELECT i.id, i.number, i.status, i.amount, i.currency, i.issued_at, i.paid_at,
               i.summary_itinerary, i.quote_id, q.contact_name
        FROM invoices i
        JOIN quotes q ON q.id = i.quote_id
        WHERE i.tenant_id = ?
    """
    params: List[Any] = [tenant_id]
    if status:
        sql += " AND i.status = ?"
        params.append(status)
    sql += " ORDER BY i.issued_at DESC, i.id DESC"
    return pd.read_sql_query(sql, conn, params=params)


def _require_status(invoice: Dict[str, Any], expected: str, action: str) -> None:
    if invoice["status"] != expected:
        raise WorkflowError(
            f"Invoice {invoice['number']} is {invoice['status']} and cannot be {action}",
            error_code="INVOICE_STATUS",
            context={"status": invoice["status"]},
        )


def mark_invoice_paid(
    conn: sqlite3.Connection,
    tenant_id: str,
    invoice_id: int,
    reference: Optional[str] = None,
    *,
    actor: Optional[str] = None,
) -> Dict[str, Any]:
    invoice = get_invoice(conn, tenant_id, invoice_id)
    _require_status(invoice, "issued", "marked paid")
    timestamp = utc_now()
    with conn:
        conn.execute(
            """
            UPDATE invoices SET status = 'paid', paid_at = ?, payment_reference = ?, updated_at = ?
            WHERE id = ?
            """,
            (timestamp, (reference or "").strip() or None, timestamp, invoice_id),
        )
        conn.execute(
            "UPDATE quotes SET payment_status = 'paid', updated_at = ? WHERE id = ?",
            (timestamp, invoice["quote_id"]),
        )
        quote_status = conn.execute(
            "SELECT status FROM quotes WHERE id = ?", (invoice["quote_id"],)
        ).fetchone()[0]
        if quote_status == "pending_payment":
            transition_quote(conn, tenant_id, invoice["quote_id"], "payment_received", actor=actor, commit=False)
        record_audit(
            conn, tenant_id, "invoice.paid", target_type="invoice", target_id=invoice_id,
            details={"reference": reference}, actor=actor,
        )
    logger.info("Invoice %s marked paid", invoice["number"])
    return get_invoice(conn, tenant_id, invoice_id)


def void_invoice(
    conn: sqlite3.Connection, tenant_id: str, invoice_id: int, *, actor: Optional[str] = None
) -> Dict[str, Any]:
    invoice = get_invoice(conn, tenant_id, invoice_id)
    _require_status(invoice, "issued", "voided")
    timestamp = utc_now()
    with conn:
        conn.execute(
            "UPDATE invoices SET status = 'void', updated_at = ? WHERE id = ?", (timestamp, invoice_id)
        )
        conn.execute(
            "UPDATE quotes SET payment_status = 'none', updated_at = ? WHERE id = ?",
            (timestamp, invoice["quote_id"]),
        )
        record_audit(conn, tenant_id, "invoice.void", target_type="invoice", target_id=invoice_id, actor=actor)
    return get_invoice(conn, tenant_id, invoice_id)


def resend_invoice(
    conn: sqlite3.Connection, tenant_id: str, invoice_id: int, *, created_by: Optional[str] = None
) -> Dict[str, Any]:
    """Issue an ``invoice`` link to the quote contact."""

    invoice = get_invoice(conn, tenant_id, invoice_id)
    if invoice["status"] == "void":
        raise WorkflowError(f"Invoice {invoice['number']} is void", error_code="INVOICE_STATUS")
    if not invoice.get("contact_email") and not invoice.get("contact_phone"):
        raise ValidationError("Quote contact has no e-mail or phone.", error_code="INVOICE_NO_RECIPIENT")
    return create_action_link(
        conn,
        tenant_id,
        "invoice",
        email=invoice.get("contact_email"),
        phone=invoice.get("contact_phone"),
        metadata={"invoice_id": invoice_id, "number": invoice["number"]},
        expires_in_minutes=INVOICE_LINK_EXPIRY_MINUTES,
        created_by=created_by,
    )


def public_invoice_view(conn: sqlite3.Connection, token: str) -> Dict[str, Any]:
    link = verify_action_link(conn, token)
    if link["action_type"] != "invoice" or "invoice_id" not in link["metadata"]:
        raise ActionLinkError("Link does not point to an invoice", error_code="LINK_WRONG_TYPE")
    return get_invoice(conn, link["tenant_id"], int(link["metadata"]["invoice_id"]))


__all__ = [
    "can_regenerate_invoice",
    "default_taxes",
    "format_invoice_number",
    "get_invoice",
    "get_invoice_for_quote",
    "list_invoices",
    "mark_invoice_paid",
    "next_invoice_number",
    "normalize_invoice_number",
    "public_invoice_view",
    "quote_to_invoice",
    "resend_invoice",
    "void_invoice",
]
