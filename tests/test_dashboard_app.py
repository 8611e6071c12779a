"""Smoke tests for the Streamlit back office and its pure helpers."""
from __future__ import annotations

import importlib
import sys
from datetime import date
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from charterdesk import config
from charterdesk.action_links import generate_token, link_url
from dashboard.components.maps import airport_points, build_route_layers, legs_to_frame
from dashboard.components.quote_builder import (
    LEG_EDITOR_COLUMNS,
    legs_from_frame,
    options_from_frame,
    services_from_frame,
)

TEB_VNY = {
    "origin_code": "TEB",
    "destination_code": "VNY",
    "origin_lat": 40.8501,
    "origin_long": -74.0606,
    "destination_lat": 34.2098,
    "destination_long": -118.4898,
}


def test_dashboard_app_module_importable() -> None:
    module = importlib.import_module("dashboard.app")
    assert module.BACK_OFFICE_TABS == ("Dashboard", "Leads", "Quotes", "Invoices", "Itineraries", "Operations")
    assert callable(module.render_back_office)
    assert callable(module.main)


def test_streamlit_entrypoint_exposed() -> None:
    module = importlib.import_module("streamlit_app")
    assert callable(module.main)
    public = importlib.import_module("dashboard.components.public")
    assert callable(public.render_public_link)


def test_link_url_routes_to_client_page() -> None:
    module = importlib.import_module("streamlit_app")
    token = generate_token()
    assert link_url(token).startswith(config.APP_URL + "/?token=")
    url = urlsplit(link_url(token))
    assert module.link_token(parse_qs(url.query)) == token
    assert module.link_token({"token": ["  ", f" {token} "]}) == token
    assert module.link_token({}) is None


def test_legs_to_frame_builds_paths_and_tooltips() -> None:
    df = legs_to_frame([TEB_VNY, {"origin_code": "ZZZ", "destination_code": "TEB", "origin_lat": None}])
    assert len(df) == 1
    assert df.loc[0, "tooltip"] == "TEB → VNY"
    path = df.loc[0, "route_path"]
    assert path[0] == pytest.approx([-74.0606, 40.8501])
    assert path[-1] == pytest.approx([-118.4898, 34.2098])


def test_legs_to_frame_handles_missing_coordinates() -> None:
    assert legs_to_frame([]).empty
    assert legs_to_frame([{"origin_code": "TEB", "destination_code": "VNY"}]).empty
    assert build_route_layers(legs_to_frame([])) == []


def test_airport_points_and_layers() -> None:
    back = {**TEB_VNY, "origin_code": "VNY", "destination_code": "TEB",
            "origin_lat": 34.2098, "origin_long": -118.4898, "destination_lat": 40.8501, "destination_long": -74.0606}
    df = legs_to_frame([TEB_VNY, back])
    points = airport_points(df)
    assert points["code"].tolist() == ["TEB", "VNY"]

    layers = build_route_layers(df)
    assert [layer.type for layer in layers] == ["PathLayer", "ScatterplotLayer", "TextLayer"]


def test_editor_frames_to_inputs() -> None:
    legs = pd.DataFrame(
        [
            {"origin_code": " teb ", "destination_code": "VNY", "depart_dt": pd.Timestamp(date(2026, 11, 2)),
             "depart_time": "", "pax_count": 4.0, "notes": None},
            {"origin_code": "VNY", "destination_code": "TEB", "depart_dt": "2026-11-05",
             "depart_time": "10:00", "pax_count": np.nan, "notes": "Return"},
        ],
        columns=LEG_EDITOR_COLUMNS,
    )
    first, second = legs_from_frame(legs)
    assert first.origin_code == "teb"
    assert first.depart_dt == "2026-11-02"
    assert first.depart_time is None
    assert first.pax_count == 4
    assert second.pax_count is None
    assert second.notes == "Return"


def test_options_from_frame_keeps_existing_fees() -> None:
    df = pd.DataFrame(
        [
            {"id": 7.0, "label": "Heavy", "aircraft_id": np.nan, "flight_hours": 5.5,
             "cost_operator": 30000.0, "price_commission": np.nan, "fees_enabled": True, "notes": ""},
            {"id": np.nan, "label": "New", "aircraft_id": 3.0, "flight_hours": np.nan,
             "cost_operator": np.nan, "price_commission": np.nan, "fees_enabled": None, "notes": None},
        ]
    )
    heavy, new = options_from_frame(df, [{"id": 7, "fees": [{"name": "Handling", "amount": 400.0}]}])
    assert heavy.id == 7
    assert heavy.fees == [{"name": "Handling", "amount": 400.0}]
    assert heavy.fees_enabled is True
    assert heavy.price_commission is None
    assert heavy.notes is None
    assert new.id is None
    assert new.aircraft_id == 3
    assert new.fees == []
    assert new.fees_enabled is False


def test_services_from_frame() -> None:
    df = pd.DataFrame(
        [{"id": np.nan, "item_id": 2.0, "name": None, "description": "", "qty": 2.0, "unit_price": np.nan,
          "taxable": None}]
    )
    (service,) = services_from_frame(df)
    assert service.item_id == 2
    assert service.taxable is None
    assert service.unit_price is None
    assert service.qty == 2.0
