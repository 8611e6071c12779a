"""Client-facing pages reached through action links."""
from __future__ import annotations

import sqlite3
import uuid
from typing import Any, Dict

import pandas as pd
import streamlit as st

from charterdesk.action_links import consume_action_link, verify_action_link
from charterdesk.errors import CharterDeskError
from charterdesk.invoicing import public_invoice_view
from charterdesk.itineraries import public_itinerary_view
from charterdesk.pricing import format_currency
from charterdesk.quote_service import public_quote_view
from charterdesk.workflow import accept_quote
from dashboard.components.maps import render_route_map

__all__ = ["render_public_link"]

_IDEMPOTENCY_KEY = "charterdesk_idempotency_key"


def _branding(tenant: Dict[str, Any]) -> None:
    if tenant.get("logo_url"):
        st.image(tenant["logo_url"], width=160)
    st.markdown(
        f"<h2 style='color:{tenant.get('primary_color') or '#1f3a5f'}'>{tenant.get('name') or tenant['id']}</h2>",
        unsafe_allow_html=True,
    )


def _render_quote(conn: sqlite3.Connection, token: str) -> None:
    view = public_quote_view(conn, token)
    _branding(view["tenant"])
    quote = view["quote"]
    st.subheader(quote.get("title") or "Your charter quote")
    st.caption(quote.get("trip_summary") or "")
    st.dataframe(pd.DataFrame(view["legs"])[["seq", "origin_code", "destination_code", "depart_dt", "depart_time", "pax_count"]])
    render_route_map(view["legs"])
    for option in view["options"]:
        st.markdown(
            f"**{option['label']}** · {option.get('aircraft_label') or ''} · "
            f"{format_currency(option['price_total'], quote['currency'])}"
        )
    if quote["status"] not in ("pending_response", "opened") or not view["options"]:
        return
    labels = {opt["label"]: opt["id"] for opt in view["options"]}
    choice = st.radio("Choose an option", list(labels))
    email = st.text_input("Confirm your e-mail address")
    if st.button("Accept quote"):
        key = st.session_state.setdefault(_IDEMPOTENCY_KEY, uuid.uuid4().hex)
        result = consume_action_link(
            conn, token, idempotency_key=key, email=email, payload={"option_id": labels[choice]}
        )
        if not result.get("idempotent"):
            accept_quote(conn, quote["tenant_id"], quote["id"], labels[choice], actor="client")
        st.success("Thank you. Your broker will confirm aircraft availability shortly.")


def _render_invoice(conn: sqlite3.Connection, token: str) -> None:
    invoice = public_invoice_view(conn, token)
    st.subheader(f"Invoice {invoice['number']}")
    st.metric("Amount due", format_currency(invoice["amount"], invoice["currency"]))
    st.dataframe(pd.DataFrame(invoice["lines"])[["label", "qty", "unit_price", "amount"]])
    if invoice.get("external_payment_url") and invoice["status"] == "issued":
        st.link_button("Pay now", invoice["external_payment_url"])


def _render_itinerary(conn: sqlite3.Connection, token: str) -> None:
    itinerary = public_itinerary_view(conn, token)
    _branding(itinerary["tenant"])
    st.subheader(itinerary.get("title") or "Your itinerary")
    st.dataframe(
        pd.DataFrame(itinerary["details"])[
            ["seq", "origin_code", "destination_code", "depart_at", "aircraft_label", "tail_number"]
        ]
    )
    render_route_map(itinerary["details"], title="Route")


_RENDERERS = {
    "quote": _render_quote,
    "invoice": _render_invoice,
    "view_itinerary": _render_itinerary,
}


def render_public_link(conn: sqlite3.Connection, token: str) -> None:
    """Render the page behind an action link, or explain why it cannot be used."""

    try:
        link = verify_action_link(conn, token)
        renderer = _RENDERERS.get(link["action_type"])
        if renderer is None:
            st.info("This link has been recorded. You can close this page.")
            return
        renderer(conn, token)
    except CharterDeskError as exc:
        st.error(exc.message)
