"""Route map components for the back office."""
from __future__ import annotations

from typing import List, Optional

import pandas as pd
import pydeck as pdk
import streamlit as st

from charterdesk.airports import great_circle_path

__all__ = [
    "airport_points",
    "build_route_layers",
    "legs_to_frame",
    "render_route_map",
]

_US_LAT_LON = (39.8283, -98.5795)
ROUTE_COLOUR = [214, 112, 48, 220]
POINT_COLOUR = [31, 58, 95, 220]
_COORD_COLUMNS = ("origin_lat", "origin_long", "destination_lat", "destination_long")


def legs_to_frame(legs: List[dict]) -> pd.DataFrame:
    """Return leg records with usable coordinates as a frame for the map layers."""

    df = pd.DataFrame(legs)
    if df.empty or not set(_COORD_COLUMNS).issubset(df.columns):
        return pd.DataFrame(columns=["origin_code", "destination_code", *_COORD_COLUMNS])
    df = df.copy()
    for column in _COORD_COLUMNS:
        df[column] = pd.to_numeric(df[column], errors="coerce")
    df = df.dropna(subset=list(_COORD_COLUMNS))
    if df.empty:
        return df
    df["route_path"] = [
        great_circle_path((o_lat, o_lon), (d_lat, d_lon))
        for o_lat, o_lon, d_lat, d_lon in zip(
            df["origin_lat"], df["origin_long"], df["destination_lat"], df["destination_long"]
        )
    ]
    df["tooltip"] = [
        f"{origin} → {destination}"
        for origin, destination in zip(df["origin_code"], df["destination_code"])
    ]
    return df


def airport_points(df: pd.DataFrame) -> pd.DataFrame:
    """Distinct airports touched by the legs in *df* as ``code``/``lat``/``lon`` rows."""

    if df.empty:
        return pd.DataFrame(columns=["code", "lat", "lon"])
    origins = df[["origin_code", "origin_lat", "origin_long"]].rename(
        columns={"origin_code": "code", "origin_lat": "lat", "origin_long": "lon"}
    )
    destinations = df[["destination_code", "destination_lat", "destination_long"]].rename(
        columns={"destination_code": "code", "destination_lat": "lat", "destination_long": "lon"}
    )
    points = pd.concat([origins, destinations], ignore_index=True)
    return points.drop_duplicates(subset=["code"]).reset_index(drop=True)


def _initial_view_state(df: pd.DataFrame) -> pdk.ViewState:
    if df.empty:
        return pdk.ViewState(latitude=_US_LAT_LON[0], longitude=_US_LAT_LON[1], zoom=3.0)
    lat = pd.to_numeric(df["lat"], errors="coerce").dropna()
    lon = pd.to_numeric(df["lon"], errors="coerce").dropna()
    if lat.empty or lon.empty:
        return pdk.ViewState(latitude=_US_LAT_LON[0], longitude=_US_LAT_LON[1], zoom=3.0)
    spread = max(float(lat.max() - lat.min()), float(lon.max() - lon.min()))
    zoom = 5.0 if spread < 5 else 3.5 if spread < 30 else 1.5
    return pdk.ViewState(latitude=float(lat.mean()), longitude=float(lon.mean()), zoom=zoom)


def build_route_layers(df: pd.DataFrame) -> List[pdk.Layer]:
    if df.empty:
        return []
    points = airport_points(df)
    return [
        pdk.Layer(
            "PathLayer",
            data=df,
            get_path="route_path",
            get_color=ROUTE_COLOUR,
            get_width=4,
            width_min_pixels=2,
            pickable=True,
            opacity=0.9,
        ),
        pdk.Layer(
            "ScatterplotLayer",
            data=points,
            get_position=["lon", "lat"],
            get_fill_color=POINT_COLOUR,
            get_radius=25000,
            radius_min_pixels=4,
            pickable=True,
        ),
        pdk.Layer(
            "TextLayer",
            data=points,
            get_position=["lon", "lat"],
            get_text="code",
            get_size=14,
            get_color=[20, 20, 20, 255],
            get_pixel_offset=[0, -16],
        ),
    ]


def render_route_map(legs: List[dict], *, title: Optional[str] = None) -> None:
    if title:
        st.markdown(f"### {title}")
    df = legs_to_frame(legs)
    if df.empty:
        st.info("Add legs with known airports to see the route map.")
        return
    st.pydeck_chart(
        pdk.Deck(
            layers=build_route_layers(df),
            initial_view_state=_initial_view_state(airport_points(df)),
            tooltip={"text": "{tooltip}"},
            map_style=None,
        )
    )
