"""Quote building and persistence helpers for the CharterDesk back office."""
from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from charterdesk import config
from charterdesk.action_links import verify_action_link
from charterdesk.errors import ActionLinkError, NotFoundError, ValidationError
from charterdesk.fleet import aircraft_label, get_aircraft, get_item
from charterdesk.pricing import compute_option_pricing, fee_amounts, format_currency, services_subtotal
from charterdesk.repo import ContactDetails, ensure_contact_record
from charterdesk.schema import fetch_dict, fetch_dicts, utc_now
from charterdesk.trip import LegInput, prepare_legs, summarize_trip
from charterdesk.workflow import ensure_editable, fetch_quote_row, mark_opened

logger = logging.getLogger(__name__)

QuoteLeg = LegInput

LEG_COLUMNS = (
    "origin",
    "origin_code",
    "destination",
    "destination_code",
    "depart_dt",
    "depart_time",
    "pax_count",
    "origin_lat",
    "origin_long",
    "destination_lat",
    "destination_long",
    "distance_nm",
    "notes",
)


@dataclass
class QuoteHeader:
    contact_id: Optional[int] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_company: Optional[str] = None
    title: Optional[str] = None
    currency: Optional[str] = None
    valid_until: Optional[str] = None
    notes: Optional[str] = None
    lead_id: Optional[int] = None

    def contact_details(self) -> ContactDetails:
        return ContactDetails(
            full_name=self.contact_name,
            company=self.contact_company,
            email=self.contact_email,
            phone=self.contact_phone,
        )


@dataclass
class QuoteOptionInput:
    label: Optional[str] = None
    aircraft_id: Optional[int] = None
    aircraft_model_id: Optional[int] = None
    flight_hours: Optional[float] = None
    cost_operator: Optional[float] = None
    price_commission: Optional[float] = None
    fees: List[Dict[str, Any]] = field(default_factory=list)
    fees_enabled: bool = False
    notes: Optional[str] = None
    id: Optional[int] = None


@dataclass
class QuoteServiceInput:
    item_id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    qty: Optional[float] = None
    unit_price: Optional[float] = None
    unit_cost: Optional[float] = None
    taxable: Optional[bool] = None
    notes: Optional[str] = None
    id: Optional[int] = None


@dataclass
class QuoteBundle:
    quote: Dict[str, Any]
    legs: List[Dict[str, Any]] = field(default_factory=list)
    options: List[Dict[str, Any]] = field(default_factory=list)
    services: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def id(self) -> int:
        return int(self.quote["id"])

    @property
    def selected_option(self) -> Optional[Dict[str, Any]]:
        selected = self.quote.get("selected_option_id")
        return next((opt for opt in self.options if opt["id"] == selected), None)

    def leg_inputs(self) -> List[LegInput]:
        return [
            LegInput(id=leg["id"], seq=leg["seq"], **{name: leg.get(name) for name in LEG_COLUMNS})
            for leg in self.legs
        ]


def _number(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Expected a number, got {value!r}") from exc


# Header -------------------------------------------------------------------


def _apply_header(
    conn: sqlite3.Connection, tenant_id: str, quote: Dict[str, Any], header: QuoteHeader
) -> None:
    updates = {
        name: value
        for name, value in asdict(header).items()
        if value is not None and name not in ("contact_id", "lead_id")
    }
    for name, value in list(updates.items()):
        if isinstance(value, str):
            updates[name] = value.strip() or None
    if "currency" in updates and updates["currency"]:
        updates["currency"] = updates["currency"].upper()

    details = header.contact_details()
    if header.contact_id is not None or details.has_any_data():
        contact_id, _ = ensure_contact_record(conn, tenant_id, details, header.contact_id)
        if contact_id is not None:
            updates["contact_id"] = contact_id
    if header.lead_id is not None:
        updates["lead_id"] = header.lead_id
    if not updates:
        return
    assignments = ", ".join(f"{name} = ?" for name in updates)
    conn.execute(
        f"UPDATE quotes SET {assignments}, updated_at = ? WHERE id = ? AND tenant_id = ?",
        (*updates.values(), utc_now(), quote["id"], tenant_id),
    )


# Legs ---------------------------------------------------------------------


def _save_legs(
    conn: sqlite3.Connection, tenant_id: str, quote_id: int, legs: Sequence[LegInput]
) -> List[LegInput]:
    """Upsert legs on ``(quote_id, seq)`` and drop the ones no longer present."""

    prepared = prepare_legs(legs, conn=conn)
    timestamp = utc_now()
    columns = ", ".join(LEG_COLUMNS)
    placeholders = ", ".join("?" for _ in LEG_COLUMNS)
    assignments = ", ".join(f"{name} = excluded.{name}" for name in LEG_COLUMNS)
    kept_ids: List[int] = []
    for leg in prepared:
        conn.execute(
            f"""
            INSERT INTO quote_details (quote_id, seq, {columns}, created_at, updated_at)
            VALUES (?, ?, {placeholders}, ?, ?)
            ON CONFLICT(quote_id, seq) DO UPDATE SET {assignments}, updated_at = excluded.updated_at
            """,
            (quote_id, leg.seq, *(getattr(leg, name) for name in LEG_COLUMNS), timestamp, timestamp),
        )
        row = conn.execute(
            "SELECT id FROM quote_details WHERE quote_id = ? AND seq = ?", (quote_id, leg.seq)
        ).fetchone()
        leg.id = int(row[0])
        kept_ids.append(leg.id)

    placeholders_ids = ", ".join("?" for _ in kept_ids) or "NULL"
    conn.execute(
        f"DELETE FROM quote_details WHERE quote_id = ? AND id NOT IN ({placeholders_ids})",
        (quote_id, *kept_ids),
    )

    metrics = summarize_trip(prepared)
    conn.execute(
        """
        UPDATE quotes SET trip_summary = ?, trip_type = ?, leg_count = ?, total_pax = ?,
            earliest_departure = ?, latest_return = ?, total_distance_nm = ?, updated_at = ?
        WHERE id = ? AND tenant_id = ?
        """,
        (
            metrics.trip_summary,
            metrics.trip_type,
            metrics.leg_count,
            metrics.total_pax,
            metrics.earliest_departure,
            metrics.latest_return,
            metrics.total_distance_nm,
            timestamp,
            quote_id,
            tenant_id,
        ),
    )
    return prepared


# Options ------------------------------------------------------------------


def _save_options(
    conn: sqlite3.Connection, tenant_id: str, quote_id: int, options: Sequence[QuoteOptionInput]
) -> None:
    timestamp = utc_now()
    kept_ids: List[int] = []
    for index, option in enumerate(options, start=1):
        if option.aircraft_id is not None:
            get_aircraft(conn, tenant_id, option.aircraft_id)
        fees = fee_amounts(option.fees)
        values = {
            "label": (option.label or "").strip() or f"Option {index}",
            "aircraft_id": option.aircraft_id,
            "aircraft_model_id": option.aircraft_model_id,
            "flight_hours": _number(option.flight_hours),
            "cost_operator": _number(option.cost_operator),
            "price_commission": _number(option.price_commission),
            "fees": json.dumps(fees),
            "fees_enabled": int(bool(option.fees_enabled)),
            "notes": (option.notes or "").strip() or None,
        }
        pricing = compute_option_pricing({**values, "fees": fees})
        values["price_base"] = pricing["base"]
        values["price_total"] = pricing["total"]

        if option.id is not None:
            assignments = ", ".join(f"{name} = ?" for name in values)
            cursor = conn.execute(
                f"UPDATE quote_options SET {assignments}, updated_at = ? WHERE id = ? AND quote_id = ?",
                (*values.values(), timestamp, option.id, quote_id),
            )
            if cursor.rowcount:
                kept_ids.append(int(option.id))
                continue
        cursor = conn.execute(
            f"""
            INSERT INTO quote_options (quote_id, {", ".join(values)}, created_at, updated_at)
            VALUES (?, {", ".join("?" for _ in values)}, ?, ?)
            """,
            (quote_id, *values.values(), timestamp, timestamp),
        )
        kept_ids.append(int(cursor.lastrowid))

    placeholders = ", ".join("?" for _ in kept_ids) or "NULL"
    conn.execute(
        f"DELETE FROM quote_options WHERE quote_id = ? AND id NOT IN ({placeholders})",
        (quote_id, *kept_ids),
    )
    conn.execute(
        f"""
        UPDATE quotes SET selected_option_id = NULL
        WHERE id = ? AND selected_option_id IS NOT NULL AND selected_option_id NOT IN ({placeholders})
        """,
        (quote_id, *kept_ids),
    )


# Services -----------------------------------------------------------------


def _resolve_service(
    conn: sqlite3.Connection, tenant_id: str, service: QuoteServiceInput
) -> Dict[str, Any]:
    description = (service.description or "").strip() or None
    catalogue: Optional[Dict[str, Any]] = None
    if service.item_id is not None:
        catalogue = get_item(conn, tenant_id, service.item_id)
        name = catalogue["name"] if catalogue else "Unnamed item"
    else:
        name = (service.name or "").strip() or description or "Custom item"
    unit_price = service.unit_price
    if unit_price is None and catalogue is not None:
        unit_price = catalogue["default_unit_price"]
    taxable = service.taxable
    if taxable is None:
        taxable = bool(catalogue["taxable"]) if catalogue is not None else True
    return {
        "item_id": service.item_id if catalogue is not None else None,
        "name": name,
        "description": description or (catalogue["name"] if catalogue else None) or "Service item",
        "qty": _number(service.qty, 1.0),
        "unit_price": _number(unit_price),
        "unit_cost": None if service.unit_cost is None else _number(service.unit_cost),
        "taxable": int(bool(taxable)),
        "notes": (service.notes or "").strip() or None,
    }


def _save_services(
    conn: sqlite3.Connection, tenant_id: str, quote_id: int, services: Sequence[QuoteServiceInput]
) -> None:
    if not services:
        conn.execute("DELETE FROM quote_items WHERE quote_id = ?", (quote_id,))
        return
    timestamp = utc_now()
    kept_ids: List[int] = []
    for service in services:
        values = _resolve_service(conn, tenant_id, service)
        if service.id is not None:
            assignments = ", ".join(f"{name} = ?" for name in values)
            cursor = conn.execute(
                f"UPDATE quote_items SET {assignments}, updated_at = ? WHERE id = ? AND quote_id = ?",
                (*values.values(), timestamp, service.id, quote_id),
            )
            if cursor.rowcount:
                kept_ids.append(int(service.id))
                continue
        cursor = conn.execute(
            f"""
            INSERT INTO quote_items (quote_id, {", ".join(values)}, created_at, updated_at)
            VALUES (?, {", ".join("?" for _ in values)}, ?, ?)
            """,
            (quote_id, *values.values(), timestamp, timestamp),
        )
        kept_ids.append(int(cursor.lastrowid))
    placeholders = ", ".join("?" for _ in kept_ids)
    conn.execute(
        f"DELETE FROM quote_items WHERE quote_id = ? AND id NOT IN ({placeholders})",
        (quote_id, *kept_ids),
    )


def _insert_quote(
    conn: sqlite3.Connection,
    tenant_id: str,
    header: QuoteHeader,
    legs: Sequence[LegInput],
    options: Sequence[QuoteOptionInput],
    services: Sequence[QuoteServiceInput],
) -> int:
    timestamp = utc_now()
    cursor = conn.execute(
        """
        INSERT INTO quotes (tenant_id, currency, status, created_at, updated_at)
        VALUES (?, ?, 'draft', ?, ?)
        """,
        (tenant_id, (header.currency or config.DEFAULT_CURRENCY).upper(), timestamp, timestamp),
    )
    quote_id = int(cursor.lastrowid)
    quote = {"id": quote_id, "status": "draft"}
    _apply_header(conn, tenant_id, quote, header)
    _save_legs(conn, tenant_id, quote_id, legs)
    if options:
        _save_options(conn, tenant_id, quote_id, options)
    if services:
        _save_services(conn, tenant_id, quote_id, services)
    return quote_id


# Public API ---------------------------------------------------------------


def create_quote(
    conn: sqlite3.Connection,
    tenant_id: str,
    header: Optional[QuoteHeader] = None,
    legs: Sequence[LegInput] = (),
    options: Sequence[QuoteOptionInput] = (),
    services: Sequence[QuoteServiceInput] = (),
    *,
    commit: bool = True,
) -> int:
    """Create a draft quote with its legs, options and services.

    With ``commit=False`` the rows are written inside the caller's transaction.
    """

    header = header or QuoteHeader()
    if commit:
        with conn:
            quote_id = _insert_quote(conn, tenant_id, header, legs, options, services)
    else:
        quote_id = _insert_quote(conn, tenant_id, header, legs, options, services)
    logger.info("Created quote %s for tenant %s", quote_id, tenant_id)
    return quote_id


def save_quote(
    conn: sqlite3.Connection,
    tenant_id: str,
    quote_id: int,
    *,
    header: Optional[QuoteHeader] = None,
    legs: Optional[Sequence[LegInput]] = None,
    options: Optional[Sequence[QuoteOptionInput]] = None,
    services: Optional[Sequence[QuoteServiceInput]] = None,
) -> QuoteBundle:
    """Apply a partial update in one transaction.

    Sections passed as ``None`` are left untouched; an empty sequence clears
    that section.
    """

    quote = fetch_quote_row(conn, tenant_id, quote_id)
    ensure_editable(quote)
    with conn:
        if header is not None:
            _apply_header(conn, tenant_id, quote, header)
        if legs is not None:
            _save_legs(conn, tenant_id, quote_id, legs)
        if options is not None:
            _save_options(conn, tenant_id, quote_id, options)
        if services is not None:
            _save_services(conn, tenant_id, quote_id, services)
    return get_quote(conn, tenant_id, quote_id)


def get_quote(conn: sqlite3.Connection, tenant_id: str, quote_id: int) -> QuoteBundle:
    quote = fetch_quote_row(conn, tenant_id, quote_id)
    legs = fetch_dicts(conn, "SELECT * FROM quote_details WHERE quote_id = ? ORDER BY seq", (quote_id,))
    options = fetch_dicts(conn, "SELECT * FROM quote_options WHERE quote_id = ? ORDER BY id", (quote_id,))
    for option in options:
        option["fees"] = json.loads(option.get("fees") or "[]")
        option["fees_enabled"] = bool(option["fees_enabled"])
        if option.get("aircraft_id") is not None:
            aircraft = fetch_dict(
                conn,
                """
                SELECT a.tail_number, m.manufacturer, m.name AS model_name
                FROM aircraft a LEFT JOIN aircraft_models m ON m.id = a.model_id
                WHERE a.id = ?
                """,
                (option["aircraft_id"],),
            )
            option["aircraft_label"] = aircraft_label(aircraft)
            option["tail_number"] = aircraft["tail_number"] if aircraft else None
    services = fetch_dicts(conn, "SELECT * FROM quote_items WHERE quote_id = ? ORDER BY id", (quote_id,))
    for service in services:
        service["taxable"] = bool(service["taxable"])
    return QuoteBundle(quote=quote, legs=legs, options=options, services=services)


def list_quotes(
    conn: sqlite3.Connection,
    tenant_id: str,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> pd.DataFrame:
    sql = """
        SELECT id, status, payment_status, title, contact_name, contact_email,
               trip_summary, trip_type, leg_count, total_pax, earliest_departure,
               valid_until, currency, created_at, updated_at
        FROM quotes
        WHERE tenant_id = ?
    """
    params: List[Any] = [tenant_id]
    if status:
        sql += " AND status = ?"
        params.append(status)
    if search and search.strip():
        like = f"%{search.strip().lower()}%"
        sql += (
            " AND (lower(COALESCE(title, '')) LIKE ? OR lower(COALESCE(contact_name, '')) LIKE ?"
            " OR lower(COALESCE(trip_summary, '')) LIKE ?)"
        )
        params.extend([like, like, like])
    sql += " ORDER BY created_at DESC, id DESC"
    return pd.read_sql_query(sql, conn, params=params)


def select_option(conn: sqlite3.Connection, tenant_id: str, quote_id: int, option_id: int) -> None:
    quote = fetch_quote_row(conn, tenant_id, quote_id)
    ensure_editable(quote)
    option = fetch_dict(
        conn, "SELECT id FROM quote_options WHERE id = ? AND quote_id = ?", (option_id, quote_id)
    )
    if option is None:
        raise NotFoundError(
            f"Option {option_id} not found on quote {quote_id}", error_code="OPTION_NOT_FOUND"
        )
    conn.execute(
        "UPDATE quotes SET selected_option_id = ?, updated_at = ? WHERE id = ? AND tenant_id = ?",
        (option_id, utc_now(), quote_id, tenant_id),
    )
    conn.commit()


def build_summary(bundle: QuoteBundle) -> str:
    quote = bundle.quote
    currency = quote.get("currency") or config.DEFAULT_CURRENCY
    lines = [
        f"Quote #{quote['id']} ({quote['status']})",
        f"Client: {quote.get('contact_name') or quote.get('contact_email') or 'n/a'}",
        f"Trip: {quote.get('trip_summary') or 'no legs'} [{quote.get('trip_type') or 'n/a'}]",
        f"Passengers: {quote.get('total_pax') or 0}",
    ]
    if quote.get("total_distance_nm"):
        lines.append(f"Distance: {quote['total_distance_nm']:.0f} NM")
    lines.append("")
    lines.append("Legs:")
    if bundle.legs:
        for leg in bundle.legs:
            when = " ".join(part for part in (leg.get("depart_dt"), leg.get("depart_time")) if part)
            distance = f", {leg['distance_nm']:.0f} NM" if leg.get("distance_nm") is not None else ""
            lines.append(
                f"  {leg['seq']}. {leg['origin_code']} → {leg['destination_code']}"
                f" {when or 'TBD'} ({leg['pax_count']} pax{distance})"
            )
    else:
        lines.append("  none")
    lines.append("Options:")
    if bundle.options:
        selected = quote.get("selected_option_id")
        for option in bundle.options:
            marker = " *" if option["id"] == selected else ""
            lines.append(
                f"  - {option['label']}{marker}: {format_currency(option['price_total'], currency)}"
                f" ({option['flight_hours']:.1f} h)"
            )
    else:
        lines.append("  none")
    if bundle.services:
        lines.append("Services:")
        for service in bundle.services:
            lines.append(
                f"  - {service['name']} x{service['qty']:g}:"
                f" {format_currency(service['unit_price'] * service['qty'], currency)}"
            )
        lines.append(f"Services subtotal: {format_currency(services_subtotal(bundle.services), currency)}")
    if bundle.selected_option is not None:
        total = bundle.selected_option["price_total"] + services_subtotal(bundle.services)
        lines.append("")
        lines.append(f"Total (selected option + services): {format_currency(total, currency)}")
    return "\n".join(lines)


def public_quote_view(conn: sqlite3.Connection, token: str) -> Dict[str, Any]:
    """Resolve a client ``quote`` link and mark the quote as opened."""

    link = verify_action_link(conn, token)
    if link["action_type"] != "quote" or "quote_id" not in link["metadata"]:
        raise ActionLinkError("Link does not point to a quote", error_code="LINK_WRONG_TYPE")
    tenant_id = link["tenant_id"]
    quote_id = int(link["metadata"]["quote_id"])
    mark_opened(conn, tenant_id, quote_id)
    bundle = get_quote(conn, tenant_id, quote_id)
    tenant = fetch_dict(
        conn, "SELECT id, name, primary_color, logo_url FROM tenants WHERE id = ?", (tenant_id,)
    )
    return {"tenant": tenant, "quote": bundle.quote, "legs": bundle.legs, "options": bundle.options, "services": bundle.services}


__all__ = [
    "LEG_COLUMNS",
    "QuoteBundle",
    "QuoteHeader",
    "QuoteLeg",
    "QuoteOptionInput",
    "QuoteServiceInput",
    "build_summary",
    "create_quote",
    "format_currency",
    "get_quote",
    "list_quotes",
    "public_quote_view",
    "save_quote",
    "select_option",
]
