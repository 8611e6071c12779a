"""Headline metrics, revenue reporting and route frames for the back office."""
from __future__ import annotations

import calendar
import sqlite3
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from charterdesk.config import UPCOMING_DEPARTURE_DAYS

AWAITING_RESPONSE_STATUSES = ("pending_response", "opened")
# Quotes the client has committed to, up to and including a built itinerary.
BOOKED_STATUSES = (
    "client_accepted",
    "availability_confirmed",
    "pending_payment",
    "payment_received",
    "itinerary_created",
)


@dataclass
class DashboardMetrics:
    awaiting_response: int
    unpaid: int
    upcoming_departures: int
    new_leads: int


def _placeholders(values: tuple) -> str:
    return ", ".join("?" for _ in values)


def _scalar(conn: sqlite3.Connection, sql: str, params: tuple) -> int:
    row = conn.execute(sql, params).fetchone()
    return int(row[0] or 0) if row else 0


def dashboard_metrics(
    conn: sqlite3.Connection,
    tenant_id: str,
    today: Optional[date] = None,
    days: int = UPCOMING_DEPARTURE_DAYS,
) -> DashboardMetrics:
    """Counts shown on the dashboard tiles."""

    today = today or date.today()
    window_end = today + timedelta(days=days)
    awaiting = _scalar(
        conn,
        f"SELECT COUNT(*) FROM quotes WHERE tenant_id = ? AND status IN ({_placeholders(AWAITING_RESPONSE_STATUSES)})",
        (tenant_id, *AWAITING_RESPONSE_STATUSES),
    )
    unpaid = _scalar(
        conn,
        "SELECT COUNT(*) FROM quotes WHERE tenant_id = ? AND payment_status = 'unpaid'",
        (tenant_id,),
    )
    upcoming = _scalar(
        conn,
        f"""
        SELECT COUNT(*)
        FROM quote_details d
        JOIN quotes q ON q.id = d.quote_id
        WHERE q.tenant_id = ? AND q.status IN ({_placeholders(BOOKED_STATUSES)})
          AND d.depart_dt IS NOT NULL
          AND substr(d.depart_dt, 1, 10) BETWEEN ? AND ?
        """,
        (tenant_id, *BOOKED_STATUSES, today.isoformat(), window_end.isoformat()),
    )
    new_leads = _scalar(
        conn,
        "SELECT COUNT(*) FROM leads WHERE tenant_id = ? AND status = 'new' AND is_archived = 0",
        (tenant_id,),
    )
    return DashboardMetrics(
        awaiting_response=awaiting,
        unpaid=unpaid,
        upcoming_departures=upcoming,
        new_leads=new_leads,
    )


def load_invoices_frame(conn: sqlite3.Connection, tenant_id: str) -> pd.DataFrame:
    df = pd.read_sql_query(
        """
        SELECT id, number, status, amount, subtotal, tax_total, currency,
               issued_at, paid_at, quote_id
        FROM invoices
        WHERE tenant_id = ?
        ORDER BY issued_at
        """,
        conn,
        params=(tenant_id,),
    )
    for column in ("issued_at", "paid_at"):
        df[column] = pd.to_datetime(df[column], errors="coerce", utc=True, format="ISO8601")
    return df


def monthly_revenue(conn: sqlite3.Connection, tenant_id: str, year: int) -> pd.DataFrame:
    """Paid invoice totals per calendar month of *year*, zero-filled to 12 rows."""

    invoices = load_invoices_frame(conn, tenant_id)
    months = pd.DataFrame({"month": range(1, 13)})
    months["month_label"] = [calendar.month_abbr[m] for m in months["month"]]
    if invoices.empty:
        months["revenue"] = 0.0
        return months

    paid = invoices.loc[invoices["status"] == "paid"].copy()
    paid["revenue_date"] = paid["paid_at"].fillna(paid["issued_at"])
    paid = paid.loc[paid["revenue_date"].dt.year == year]
    totals = paid.groupby(paid["revenue_date"].dt.month)["amount"].sum()
    months["revenue"] = months["month"].map(totals).fillna(0.0).astype(float)
    return months


def _empty_figure(title: str, x_title: str, y_title: str, message: str) -> go.Figure:
    fig = go.Figure()
    fig.update_layout(title=title, xaxis_title=x_title, yaxis_title=y_title)
    fig.add_annotation(
        text=message,
        xref="paper",
        yref="paper",
        x=0.5,
        y=0.5,
        showarrow=False,
        font=dict(color="#555", size=13),
    )
    return fig


def create_revenue_figure(df: pd.DataFrame, currency: str = "USD") -> go.Figure:
    title = "Paid revenue by month"
    if df.empty or "revenue" not in df.columns or not (df["revenue"] > 0).any():
        return _empty_figure(title, "Month", f"Revenue ({currency})", "No paid invoices yet.")
    fig = px.bar(
        df,
        x="month_label",
        y="revenue",
        labels={"month_label": "Month", "revenue": f"Revenue ({currency})"},
        title=title,
    )
    fig.update_layout(margin={"l": 0, "r": 0, "t": 40, "b": 0})
    return fig


def load_upcoming_routes(
    conn: sqlite3.Connection,
    tenant_id: str,
    days: int = UPCOMING_DEPARTURE_DAYS,
    today: Optional[date] = None,
) -> pd.DataFrame:
    """Booked legs departing within *days* that have coordinates at both ends."""

    today = today or date.today()
    window_end = today + timedelta(days=days)
    return pd.read_sql_query(
        f"""
        SELECT d.quote_id, d.seq, d.origin_code, d.destination_code, d.depart_dt, d.depart_time,
               d.pax_count, d.distance_nm, d.origin_lat, d.origin_long,
               d.destination_lat, d.destination_long, q.contact_name, q.status
        FROM quote_details d
        JOIN quotes q ON q.id = d.quote_id
        WHERE q.tenant_id = ? AND q.status IN ({_placeholders(BOOKED_STATUSES)})
          AND substr(d.depart_dt, 1, 10) BETWEEN ? AND ?
          AND d.origin_lat IS NOT NULL AND d.origin_long IS NOT NULL
          AND d.destination_lat IS NOT NULL AND d.destination_long IS NOT NULL
        ORDER BY d.depart_dt, d.depart_time, d.quote_id, d.seq
        """,
        conn,
        params=(tenant_id, *BOOKED_STATUSES, today.isoformat(), window_end.isoformat()),
    )


__all__ = [
    "AWAITING_RESPONSE_STATUSES",
    "BOOKED_STATUSES",
    "DashboardMetrics",
    "create_revenue_figure",
    "dashboard_metrics",
    "load_invoices_frame",
    "load_upcoming_routes",
    "monthly_revenue",
]
