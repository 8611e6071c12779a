"""Streamlit entrypoint for the CharterDesk back office and client links."""
from __future__ import annotations

import logging
from typing import List, Mapping, Optional

import streamlit as st

from analytics.db import connection_scope
from dashboard.app import main as render_back_office_page
from dashboard.components.public import render_public_link
from dashboard.state import _get_query_params

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def link_token(params: Mapping[str, List[str]]) -> Optional[str]:
    """First non-blank ``token`` query value, as produced by ``action_links.link_url``."""

    for value in params.get("token") or []:
        if value and value.strip():
            return value.strip()
    return None


def main() -> None:
    """Serve the client page when a link token is present, else the back office."""

    token = link_token(_get_query_params())
    if token:
        st.set_page_config(page_title="Your charter", layout="centered")
        with connection_scope() as conn:
            render_public_link(conn, token)
        return
    render_back_office_page()


if __name__ == "__main__":
    main()
