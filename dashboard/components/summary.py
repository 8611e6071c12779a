"""Summary metric components for the back office."""
from __future__ import annotations

import pandas as pd
import streamlit as st

from analytics.metrics import DashboardMetrics, create_revenue_figure
from charterdesk.pricing import format_currency

__all__ = ["render_metrics", "render_revenue"]


def render_metrics(metrics: DashboardMetrics) -> None:
    """Render the headline tiles."""

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Awaiting response", metrics.awaiting_response)
    col2.metric("Unpaid", metrics.unpaid)
    col3.metric(
        "Departures (7 days)",
        metrics.upcoming_departures,
        help="Legs on accepted or booked quotes departing in the next week.",
    )
    col4.metric("New leads", metrics.new_leads)


def render_revenue(df: pd.DataFrame, currency: str = "USD") -> None:
    total = float(df["revenue"].sum()) if "revenue" in df.columns else 0.0
    st.metric("Paid revenue (year)", format_currency(total, currency))
    st.plotly_chart(create_revenue_figure(df, currency), use_container_width=True)
