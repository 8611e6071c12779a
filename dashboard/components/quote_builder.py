"""Streamlit quote builder component."""

from __future__ import annotations

import math
import sqlite3
from typing import Any, List, Optional

import pandas as pd
import streamlit as st

from analytics.db import get_parameter_value
from charterdesk.errors import CharterDeskError
from charterdesk.fleet import aircraft_label, list_aircraft, list_items
from charterdesk.invoicing import can_regenerate_invoice, default_taxes, get_invoice_for_quote, quote_to_invoice
from charterdesk.pricing import format_currency
from charterdesk.quote_service import (
    QuoteBundle,
    QuoteHeader,
    QuoteLeg,
    QuoteOptionInput,
    QuoteServiceInput,
    build_summary,
    get_quote,
    save_quote,
)
from charterdesk.workflow import (
    accept_quote,
    is_editable,
    record_availability,
    send_quote,
    transition_quote,
)
from dashboard.components.maps import render_route_map
from dashboard.state import _rerun_app, flash

__all__ = [
    "LEG_EDITOR_COLUMNS",
    "OPTION_EDITOR_COLUMNS",
    "SERVICE_EDITOR_COLUMNS",
    "legs_from_frame",
    "options_from_frame",
    "render_quote_builder",
    "services_from_frame",
]

LEG_EDITOR_COLUMNS = ["origin_code", "destination_code", "depart_dt", "depart_time", "pax_count", "notes"]
OPTION_EDITOR_COLUMNS = [
    "id",
    "label",
    "aircraft_id",
    "flight_hours",
    "cost_operator",
    "price_commission",
    "fees_enabled",
    "notes",
]
SERVICE_EDITOR_COLUMNS = ["id", "item_id", "name", "description", "qty", "unit_price", "taxable"]


def _clean(value: Any) -> Any:
    """Map pandas missing markers to ``None`` and strip strings."""

    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, str):
        return value.strip() or None
    return value


def _optional_int(value: Any) -> Optional[int]:
    value = _clean(value)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def legs_from_frame(df: pd.DataFrame) -> List[QuoteLeg]:
    legs: List[QuoteLeg] = []
    for record in df.to_dict("records"):
        depart = _clean(record.get("depart_dt"))
        if depart is not None and not isinstance(depart, str):
            depart = pd.Timestamp(depart).date().isoformat()
        legs.append(
            QuoteLeg(
                origin_code=_clean(record.get("origin_code")),
                destination_code=_clean(record.get("destination_code")),
                depart_dt=depart,
                depart_time=_clean(record.get("depart_time")),
                pax_count=_optional_int(record.get("pax_count")),
                notes=_clean(record.get("notes")),
            )
        )
    return legs


def options_from_frame(df: pd.DataFrame, existing: Optional[List[dict]] = None) -> List[QuoteOptionInput]:
    """Editor rows as option inputs; fees of *existing* options carry over by id."""

    fees_by_id = {opt["id"]: opt.get("fees") or [] for opt in existing or []}
    options: List[QuoteOptionInput] = []
    for record in df.to_dict("records"):
        option_id = _optional_int(record.get("id"))
        options.append(
            QuoteOptionInput(
                id=option_id,
                label=_clean(record.get("label")),
                aircraft_id=_optional_int(record.get("aircraft_id")),
                flight_hours=_clean(record.get("flight_hours")),
                cost_operator=_clean(record.get("cost_operator")),
                price_commission=_clean(record.get("price_commission")),
                fees=list(fees_by_id.get(option_id, [])),
                fees_enabled=bool(_clean(record.get("fees_enabled")) or False),
                notes=_clean(record.get("notes")),
            )
        )
    return options


def services_from_frame(df: pd.DataFrame) -> List[QuoteServiceInput]:
    services: List[QuoteServiceInput] = []
    for record in df.to_dict("records"):
        taxable = _clean(record.get("taxable"))
        services.append(
            QuoteServiceInput(
                id=_optional_int(record.get("id")),
                item_id=_optional_int(record.get("item_id")),
                name=_clean(record.get("name")),
                description=_clean(record.get("description")),
                qty=_clean(record.get("qty")),
                unit_price=_clean(record.get("unit_price")),
                taxable=None if taxable is None else bool(taxable),
            )
        )
    return services


def _frame(records: List[dict], columns: List[str]) -> pd.DataFrame:
    df = pd.DataFrame(records)
    for column in columns:
        if column not in df.columns:
            df[column] = None
    return df[columns]


def _render_header(bundle: QuoteBundle, disabled: bool) -> Optional[QuoteHeader]:
    quote = bundle.quote
    with st.form(f"quote_header_{bundle.id}"):
        col1, col2 = st.columns(2)
        name = col1.text_input("Client name", value=quote.get("contact_name") or "", disabled=disabled)
        email = col2.text_input("Client e-mail", value=quote.get("contact_email") or "", disabled=disabled)
        phone = col1.text_input("Client phone", value=quote.get("contact_phone") or "", disabled=disabled)
        company = col2.text_input("Company", value=quote.get("contact_company") or "", disabled=disabled)
        title = col1.text_input("Title", value=quote.get("title") or "", disabled=disabled)
        valid_until = col2.text_input(
            "Valid until (YYYY-MM-DD)", value=quote.get("valid_until") or "", disabled=disabled
        )
        notes = st.text_area("Notes", value=quote.get("notes") or "", disabled=disabled)
        if st.form_submit_button("Save details", disabled=disabled):
            return QuoteHeader(
                contact_name=name,
                contact_email=email,
                contact_phone=phone,
                contact_company=company,
                title=title,
                valid_until=valid_until,
                notes=notes,
            )
    return None


def _render_actions(conn: sqlite3.Connection, tenant_id: str, bundle: QuoteBundle) -> None:
    quote = bundle.quote
    status = quote["status"]
    st.markdown(f"**Status:** `{status}` · payment `{quote['payment_status']}`")
    cols = st.columns(4)
    if status == "draft" and cols[0].button("Send to client", key=f"send_{bundle.id}"):
        link = send_quote(conn, tenant_id, bundle.id, created_by="back-office")
        flash(f"Quote sent. Client link: {link['link']}")
        _rerun_app()
    if status in ("pending_response", "opened") and bundle.options:
        labels = {opt["label"]: opt["id"] for opt in bundle.options}
        choice = cols[1].selectbox("Accepted option", list(labels), key=f"accept_choice_{bundle.id}")
        if cols[1].button("Record acceptance", key=f"accept_{bundle.id}"):
            accept_quote(conn, tenant_id, bundle.id, labels[choice], actor="back-office")
            _rerun_app()
    if status == "client_accepted":
        notes = cols[2].text_input("Availability notes", key=f"avail_notes_{bundle.id}")
        if cols[2].button("Aircraft & crew available", key=f"avail_ok_{bundle.id}"):
            record_availability(conn, tenant_id, bundle.id, "confirmed", notes=notes, actor="back-office")
            _rerun_app()
        if cols[2].button("Not available", key=f"avail_no_{bundle.id}"):
            record_availability(conn, tenant_id, bundle.id, "unavailable", notes=notes, actor="back-office")
            _rerun_app()
    existing = get_invoice_for_quote(conn, tenant_id, bundle.id) if bundle.selected_option else None
    if (
        status in ("availability_confirmed", "pending_payment")
        and bundle.selected_option
        and can_regenerate_invoice(quote, existing)
    ):
        apply_taxes = cols[3].checkbox("Apply US taxes", value=True, key=f"taxes_{bundle.id}")
        label = "Regenerate invoice" if existing else "Generate invoice"
        if cols[3].button(label, key=f"invoice_{bundle.id}"):
            due_days = get_parameter_value(conn, tenant_id, "invoice_due_days", 7.0)
            invoice = quote_to_invoice(
                conn,
                tenant_id,
                bundle.id,
                taxes=default_taxes(conn, bundle) if apply_taxes else None,
                due_in_days=int(due_days or 0) or None,
                actor="back-office",
            )
            flash(f"Invoice {invoice['number']} issued for {format_currency(invoice['amount'], invoice['currency'])}")
            _rerun_app()
    if status not in ("declined", "expired", "itinerary_created", "payment_received"):
        if st.button("Mark declined", key=f"decline_{bundle.id}"):
            transition_quote(conn, tenant_id, bundle.id, "declined", actor="back-office")
            _rerun_app()


def render_quote_builder(conn: sqlite3.Connection, tenant_id: str, quote_id: int) -> None:
    """Edit legs, options and services of one quote and drive its workflow."""

    try:
        bundle = get_quote(conn, tenant_id, quote_id)
    except CharterDeskError as exc:
        st.error(exc.message)
        return

    editable = is_editable(bundle.quote["status"])
    if not editable:
        st.info("This quote is locked for editing because payment is under way.")

    try:
        header = _render_header(bundle, disabled=not editable)
        if header is not None:
            save_quote(conn, tenant_id, quote_id, header=header)
            flash("Quote details saved.")
            _rerun_app()

        st.markdown("#### Legs")
        legs_df = st.data_editor(
            _frame(bundle.legs, LEG_EDITOR_COLUMNS),
            num_rows="dynamic",
            disabled=not editable,
            key=f"legs_editor_{quote_id}",
        )
        st.markdown("#### Aircraft options")
        aircraft = list_aircraft(conn, tenant_id)
        if aircraft:
            st.caption(", ".join(f"{a['id']}: {aircraft_label(a)}" for a in aircraft))
        options_df = st.data_editor(
            _frame(bundle.options, OPTION_EDITOR_COLUMNS),
            num_rows="dynamic",
            disabled=not editable,
            column_config={"id": st.column_config.NumberColumn("id", disabled=True)},
            key=f"options_editor_{quote_id}",
        )
        st.markdown("#### Services")
        catalogue = list_items(conn, tenant_id)
        if catalogue:
            st.caption(", ".join(f"{i['id']}: {i['name']} ({format_currency(i['default_unit_price'])})" for i in catalogue))
        services_df = st.data_editor(
            _frame(bundle.services, SERVICE_EDITOR_COLUMNS),
            num_rows="dynamic",
            disabled=not editable,
            column_config={"id": st.column_config.NumberColumn("id", disabled=True)},
            key=f"services_editor_{quote_id}",
        )
        if editable and st.button("Save legs, options and services", key=f"save_all_{quote_id}"):
            save_quote(
                conn,
                tenant_id,
                quote_id,
                legs=legs_from_frame(legs_df),
                options=options_from_frame(options_df, bundle.options),
                services=services_from_frame(services_df),
            )
            flash("Quote saved.")
            _rerun_app()

        _render_actions(conn, tenant_id, bundle)
    except CharterDeskError as exc:
        st.error(exc.message)

    render_route_map(bundle.legs, title="Route")
    with st.expander("Summary", expanded=False):
        st.text(build_summary(bundle))
