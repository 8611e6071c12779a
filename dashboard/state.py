"""State and session helpers for the Streamlit back office."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import streamlit as st

from charterdesk.config import DEFAULT_TENANT_ID

__all__ = [
    "_set_query_params",
    "_get_query_params",
    "_rerun_app",
    "active_record_id",
    "current_tenant",
    "flash",
    "pop_flash",
    "set_active_record",
]

_TENANT_KEY = "charterdesk_tenant_id"
_FLASH_KEY = "charterdesk_flash"


def _set_query_params(**params: str) -> None:
    """Replace the page's query parameters."""

    st.query_params.from_dict(params)


def _get_query_params() -> Dict[str, List[str]]:
    """Return query parameters as a dictionary of lists."""

    return {key: st.query_params.get_all(key) for key in st.query_params.keys()}


def _rerun_app() -> None:
    st.rerun()


def current_tenant() -> str:
    """Tenant from the ``tenant`` query parameter, the session, or the configured default."""

    values = _get_query_params().get("tenant") or []
    if values and values[0].strip():
        st.session_state[_TENANT_KEY] = values[0].strip()
    return st.session_state.setdefault(_TENANT_KEY, DEFAULT_TENANT_ID)


def active_record_id(kind: str) -> Optional[int]:
    """Return the record id selected for *kind* (``quote``, ``itinerary``...)."""

    value = st.session_state.get(f"active_{kind}_id")
    if value is None:
        values = _get_query_params().get(kind) or []
        value = values[0] if values else None
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def set_active_record(kind: str, record_id: Optional[int]) -> None:
    st.session_state[f"active_{kind}_id"] = record_id
    params = {"tenant": current_tenant()}
    if record_id is not None:
        params[kind] = str(record_id)
    _set_query_params(**params)


def flash(message: str, level: str = "success") -> None:
    """Queue a message to show after the next rerun."""
    st.session_state[_FLASH_KEY] = (level, message)


def pop_flash() -> Optional[Any]:
    return st.session_state.pop(_FLASH_KEY, None)
