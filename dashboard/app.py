"""Back-office Streamlit views for CharterDesk."""
from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Any, Callable, Dict

import pandas as pd
import streamlit as st

from analytics.db import (
    bootstrap_parameters,
    connection_scope,
    list_parameters,
    set_parameter_value,
)
from analytics.metrics import dashboard_metrics, load_upcoming_routes, monthly_revenue
from charterdesk.errors import CharterDeskError
from charterdesk.fleet import (
    aircraft_label,
    create_aircraft,
    create_crew_member,
    create_item,
    list_aircraft,
    list_aircraft_models,
    list_crew,
    list_items,
)
from charterdesk.invoicing import list_invoices, mark_invoice_paid, resend_invoice, void_invoice
from charterdesk.itineraries import (
    create_itinerary_from_quote,
    get_itinerary,
    list_itineraries,
    publish_itinerary,
    set_itinerary_passengers,
    update_itinerary,
)
from charterdesk.leads import convert_lead_to_quote, create_lead, delete_lead, list_leads
from charterdesk.pricing import format_currency
from charterdesk.quote_service import QuoteHeader, create_quote, list_quotes
from charterdesk.repo import create_passenger, list_passengers
from charterdesk.schema import CREW_ROLES, ITINERARY_STATUSES, QUOTE_STATUSES, ensure_tenant
from charterdesk.trip import LegInput
from charterdesk.workflow import expire_stale_quotes
from dashboard.components.maps import render_route_map
from dashboard.components.quote_builder import render_quote_builder
from dashboard.components.summary import render_metrics, render_revenue
from dashboard.state import (
    _rerun_app,
    active_record_id,
    current_tenant,
    flash,
    pop_flash,
    set_active_record,
)

logger = logging.getLogger(__name__)

BACK_OFFICE_TABS = ("Dashboard", "Leads", "Quotes", "Invoices", "Itineraries", "Operations")

ACTOR = "back-office"


def _render_dashboard(conn: sqlite3.Connection, tenant_id: str) -> None:
    expired = expire_stale_quotes(conn, tenant_id)
    if expired:
        st.caption(f"{len(expired)} quote(s) passed their validity date and were expired.")
    render_metrics(dashboard_metrics(conn, tenant_id))
    year = st.number_input("Revenue year", min_value=2000, max_value=2100, value=date.today().year, step=1)
    render_revenue(monthly_revenue(conn, tenant_id, int(year)))
    routes = load_upcoming_routes(conn, tenant_id)
    render_route_map(routes.to_dict("records"), title="Upcoming departures")
    if not routes.empty:
        st.dataframe(routes[["quote_id", "seq", "origin_code", "destination_code", "depart_dt", "pax_count"]])


def _render_leads(conn: sqlite3.Connection, tenant_id: str) -> None:
    with st.expander("New lead", expanded=False):
        with st.form("new_lead"):
            col1, col2 = st.columns(2)
            name = col1.text_input("Name")
            email = col2.text_input("E-mail")
            phone = col1.text_input("Phone")
            company = col2.text_input("Company")
            origin = col1.text_input("From (airport code)")
            destination = col2.text_input("To (airport code)")
            depart = col1.date_input("Departure date", value=None)
            pax = col2.number_input("Passengers", min_value=1, value=1, step=1)
            notes = st.text_area("Notes")
            if st.form_submit_button("Create lead"):
                legs = []
                if origin.strip() and destination.strip():
                    legs.append(
                        LegInput(
                            origin_code=origin,
                            destination_code=destination,
                            depart_dt=depart.isoformat() if depart else None,
                            pax_count=int(pax),
                        )
                    )
                lead_id = create_lead(
                    conn,
                    tenant_id,
                    contact_name=name,
                    contact_email=email,
                    contact_phone=phone,
                    contact_company=company,
                    legs=legs,
                    notes=notes,
                )
                flash(f"Lead {lead_id} created.")
                _rerun_app()

    show_archived = st.checkbox("Show archived leads")
    leads = list_leads(conn, tenant_id, include_archived=show_archived)
    if not leads:
        st.info("No leads yet.")
        return
    st.dataframe(
        pd.DataFrame(leads)[
            ["id", "status", "contact_name", "contact_email", "leg_count", "first_departure", "created_at"]
        ]
    )
    lead_ids = [lead["id"] for lead in leads]
    lead_id = st.selectbox("Lead", lead_ids, key="lead_select")
    col1, col2 = st.columns(2)
    if col1.button("Convert to quote", key="lead_convert"):
        quote_id = convert_lead_to_quote(conn, tenant_id, int(lead_id), actor=ACTOR)
        set_active_record("quote", quote_id)
        flash(f"Lead {lead_id} converted to quote {quote_id}.")
        _rerun_app()
    if col2.button("Delete lead", key="lead_delete"):
        removed = delete_lead(conn, tenant_id, int(lead_id))
        flash(f"Lead {lead_id} {'deleted' if removed else 'hidden'}.")
        _rerun_app()


def _render_quotes(conn: sqlite3.Connection, tenant_id: str) -> None:
    col1, col2, col3 = st.columns([1, 2, 1])
    status = col1.selectbox("Status", ["", *QUOTE_STATUSES], key="quote_status_filter")
    search = col2.text_input("Search quotes", key="quote_search")
    if col3.button("New quote"):
        quote_id = create_quote(conn, tenant_id, QuoteHeader(title="New quote"))
        set_active_record("quote", quote_id)
        _rerun_app()
    quotes = list_quotes(conn, tenant_id, status=status or None, search=search)
    if quotes.empty:
        st.info("No quotes match.")
        return
    st.dataframe(quotes)
    ids = quotes["id"].astype(int).tolist()
    active = active_record_id("quote")
    index = ids.index(active) if active in ids else 0
    quote_id = st.selectbox("Open quote", ids, index=index, key="quote_select")
    if quote_id != active:
        set_active_record("quote", int(quote_id))
    render_quote_builder(conn, tenant_id, int(quote_id))


def _render_invoices(conn: sqlite3.Connection, tenant_id: str) -> None:
    invoices = list_invoices(conn, tenant_id)
    if invoices.empty:
        st.info("No invoices issued yet.")
        return
    display = invoices.copy()
    display["amount"] = [format_currency(a, c) for a, c in zip(display["amount"], display["currency"])]
    st.dataframe(display)
    invoice_id = st.selectbox("Invoice", invoices["id"].astype(int).tolist(), key="invoice_select")
    reference = st.text_input("Payment reference", key="invoice_reference")
    col1, col2, col3, col4 = st.columns(4)
    if col1.button("Mark paid", key="invoice_paid"):
        invoice = mark_invoice_paid(conn, tenant_id, int(invoice_id), reference or None, actor=ACTOR)
        flash(f"Invoice {invoice['number']} marked paid.")
        _rerun_app()
    if col2.button("Void", key="invoice_void"):
        invoice = void_invoice(conn, tenant_id, int(invoice_id), actor=ACTOR)
        flash(f"Invoice {invoice['number']} voided.", level="warning")
        _rerun_app()
    if col3.button("Send payment link", key="invoice_resend"):
        link = resend_invoice(conn, tenant_id, int(invoice_id), created_by=ACTOR)
        st.success(f"Payment link: {link['link']}")
    quote_id = int(invoices.loc[invoices["id"] == invoice_id, "quote_id"].iloc[0])
    if col4.button("Create itinerary", key="invoice_itinerary"):
        itinerary_id = create_itinerary_from_quote(conn, tenant_id, quote_id, actor=ACTOR)
        set_active_record("itinerary", itinerary_id)
        flash(f"Itinerary {itinerary_id} created.")
        _rerun_app()


def _render_itineraries(conn: sqlite3.Connection, tenant_id: str) -> None:
    itineraries = list_itineraries(conn, tenant_id)
    if itineraries.empty:
        st.info("Itineraries appear here once a paid quote is turned into a trip.")
        return
    st.dataframe(itineraries)
    ids = itineraries["id"].astype(int).tolist()
    active = active_record_id("itinerary")
    itinerary_id = st.selectbox(
        "Itinerary", ids, index=ids.index(active) if active in ids else 0, key="itinerary_select"
    )
    itinerary = get_itinerary(conn, tenant_id, int(itinerary_id))
    st.markdown(f"### {itinerary.get('title') or 'Itinerary'} · `{itinerary['status']}`")
    st.dataframe(pd.DataFrame(itinerary["details"]))

    status = st.selectbox(
        "Status",
        ITINERARY_STATUSES,
        index=list(ITINERARY_STATUSES).index(itinerary["status"]),
        key=f"itinerary_status_{itinerary_id}",
    )
    if status != itinerary["status"] and st.button("Update status", key="itinerary_status_save"):
        update_itinerary(conn, tenant_id, int(itinerary_id), status=status, actor=ACTOR)
        _rerun_app()

    passengers = list_passengers(conn, tenant_id)
    names: Dict[int, str] = {p["id"]: p["full_name"] for p in passengers}
    chosen = st.multiselect(
        "Passengers",
        list(names),
        default=[p["id"] for p in itinerary["passengers"]],
        format_func=lambda pid: names.get(pid, str(pid)),
        key=f"itinerary_pax_{itinerary_id}",
    )
    if st.button("Save manifest", key="itinerary_pax_save"):
        set_itinerary_passengers(conn, tenant_id, int(itinerary_id), chosen)
        flash("Passenger manifest saved.")
        _rerun_app()
    if st.button("Publish to client and passengers", key="itinerary_publish"):
        results = publish_itinerary(conn, tenant_id, int(itinerary_id), created_by=ACTOR)
        for result in results:
            st.write(f"{result['name'] or result['email']}: {result['link']}")
    render_route_map(itinerary["details"], title="Route")


def _render_operations(conn: sqlite3.Connection, tenant_id: str) -> None:
    fleet_tab, crew_tab, pax_tab, items_tab, params_tab = st.tabs(
        ["Fleet", "Crew", "Passengers", "Service items", "Parameters"]
    )
    with fleet_tab:
        aircraft = list_aircraft(conn, tenant_id, include_inactive=True)
        if aircraft:
            st.dataframe(pd.DataFrame([{**a, "label": aircraft_label(a)} for a in aircraft]))
        models = list_aircraft_models(conn, tenant_id)
        model_names = {m["id"]: f"{m['manufacturer']} {m['name']}" for m in models}
        with st.form("new_aircraft"):
            tail = st.text_input("Tail number")
            model_id = st.selectbox(
                "Model", [None, *model_names], format_func=lambda mid: model_names.get(mid, "(none)")
            )
            if st.form_submit_button("Add aircraft"):
                create_aircraft(conn, tenant_id, tail, model_id=model_id)
                _rerun_app()
    with crew_tab:
        crew = list_crew(conn, tenant_id)
        if crew:
            st.dataframe(pd.DataFrame(crew))
        with st.form("new_crew"):
            name = st.text_input("Name")
            role = st.selectbox("Role", CREW_ROLES)
            if st.form_submit_button("Add crew member"):
                create_crew_member(conn, tenant_id, name, role)
                _rerun_app()
    with pax_tab:
        search = st.text_input("Search passengers", key="pax_search")
        passengers = list_passengers(conn, tenant_id, search=search)
        if passengers:
            st.dataframe(pd.DataFrame(passengers))
        with st.form("new_passenger"):
            full_name = st.text_input("Full name")
            email = st.text_input("E-mail")
            if st.form_submit_button("Add passenger"):
                create_passenger(conn, tenant_id, full_name, email=email)
                _rerun_app()
    with items_tab:
        items = list_items(conn, tenant_id, active_only=False)
        if items:
            st.dataframe(pd.DataFrame(items))
        with st.form("new_item"):
            item_name = st.text_input("Name")
            price = st.number_input("Default unit price", min_value=0.0, value=0.0, step=50.0)
            taxable = st.checkbox("Taxable", value=True)
            if st.form_submit_button("Add item"):
                create_item(conn, tenant_id, item_name, default_unit_price=price, taxable=taxable)
                _rerun_app()
    with params_tab:
        parameters = list_parameters(conn, tenant_id)
        for parameter in parameters:
            value = st.number_input(
                parameter["key"],
                value=float(parameter["value"]),
                help=parameter.get("description"),
                key=f"param_{parameter['key']}",
            )
            if value != float(parameter["value"]):
                set_parameter_value(conn, tenant_id, parameter["key"], value)


_TAB_RENDERERS: Dict[str, Callable[[sqlite3.Connection, str], None]] = {
    "Dashboard": _render_dashboard,
    "Leads": _render_leads,
    "Quotes": _render_quotes,
    "Invoices": _render_invoices,
    "Itineraries": _render_itineraries,
    "Operations": _render_operations,
}


def render_back_office(conn: sqlite3.Connection, tenant_id: str) -> None:
    """Render every back-office tab for *tenant_id*."""

    message = pop_flash()
    if message is not None:
        level, text = message
        getattr(st, level, st.info)(text)

    tabs = st.tabs(list(BACK_OFFICE_TABS))
    for label, tab in zip(BACK_OFFICE_TABS, tabs):
        with tab:
            try:
                _TAB_RENDERERS[label](conn, tenant_id)
            except CharterDeskError as exc:
                logger.warning("%s tab failed: %s (%s)", label, exc.message, exc.error_code)
                st.error(exc.message)


def main(db_path: Any = None) -> None:
    """Configure the Streamlit page and render the back office."""

    st.set_page_config(page_title="CharterDesk", layout="wide")
    tenant_id = current_tenant()
    with connection_scope(db_path) as conn:
        ensure_tenant(conn, tenant_id)
        bootstrap_parameters(conn, tenant_id)
        with st.sidebar:
            st.header("CharterDesk")
            st.caption(f"Tenant: `{tenant_id}`")
        st.title("Charter back office")
        render_back_office(conn, tenant_id)


__all__ = ["BACK_OFFICE_TABS", "main", "render_back_office"]
