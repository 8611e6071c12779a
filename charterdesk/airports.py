"""Airport lookup and great-circle helpers."""
from __future__ import annotations

import logging
import math
import re
import sqlite3
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from charterdesk.config import FALLBACK_CRUISE_KTS, TAXI_ALLOWANCE_HR
from charterdesk.schema import fetch_dict, fetch_dicts

logger = logging.getLogger(__name__)

EARTH_RADIUS_NM = 3440.065
EARTH_RADIUS_KM = 6371.0088

_AIRPORT_TYPE_RANK = {
    "large_airport": 0,
    "medium_airport": 1,
    "small_airport": 2,
}

_AIRPORT_COLUMNS = """
    code, name, municipality, country_code, iata_code, icao_code,
    airport_type, latitude, longitude
"""


@dataclass
class Airport:
    code: str
    name: str
    municipality: Optional[str] = None
    country_code: Optional[str] = None
    iata_code: Optional[str] = None
    icao_code: Optional[str] = None
    airport_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def label(self) -> str:
        if self.municipality and self.municipality not in self.name:
            return f"{self.code} · {self.name} ({self.municipality})"
        return f"{self.code} · {self.name}"


def _airport_from_row(row: dict) -> Airport:
    return Airport(
        code=row["code"],
        name=row["name"],
        municipality=row.get("municipality"),
        country_code=row.get("country_code"),
        iata_code=row.get("iata_code"),
        icao_code=row.get("icao_code"),
        airport_type=row.get("airport_type"),
        latitude=float(row["latitude"]) if row.get("latitude") is not None else None,
        longitude=float(row["longitude"]) if row.get("longitude") is not None else None,
    )


def normalize_code(code: Optional[str]) -> Optional[str]:
    """Return *code* stripped and upper-cased, or ``None`` when blank."""

    if code is None:
        return None
    cleaned = str(code).strip().upper()
    return cleaned or None


def _as_float(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _central_angle(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad, lon1_rad = math.radians(lat1), math.radians(lon1)
    lat2_rad, lon2_rad = math.radians(lat2), math.radians(lon2)
    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    return 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_nm(lat1: object, lon1: object, lat2: object, lon2: object) -> Optional[int]:
    """Great-circle distance in whole nautical miles.

    Returns ``None`` when any coordinate is missing or not numeric.
    """

    coords = [_as_float(value) for value in (lat1, lon1, lat2, lon2)]
    if any(value is None for value in coords):
        return None
    a_lat, a_lon, b_lat, b_lon = coords  # type: ignore[misc]
    return int(round(EARTH_RADIUS_NM * _central_angle(a_lat, a_lon, b_lat, b_lon)))


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return EARTH_RADIUS_KM * _central_angle(lat1, lon1, lat2, lon2)


def estimate_flight_hours(
    distance_nm: Optional[float], cruise_kts: Optional[float] = None
) -> float:
    """Block-time estimate for a leg: cruise time plus the taxi allowance."""

    if not distance_nm or distance_nm <= 0:
        return 0.0
    speed = cruise_kts if cruise_kts and cruise_kts > 0 else FALLBACK_CRUISE_KTS
    return round(distance_nm / speed + TAXI_ALLOWANCE_HR, 1)


def great_circle_path(
    origin: Tuple[float, float],
    destination: Tuple[float, float],
    steps: int = 32,
) -> List[List[float]]:
    """Return ``[lon, lat]`` points along the great circle between two ``(lat, lon)`` pairs."""

    lat1, lon1 = origin
    lat2, lon2 = destination
    steps = max(1, int(steps))
    delta = _central_angle(lat1, lon1, lat2, lon2)
    if delta == 0:
        return [[float(lon1), float(lat1)], [float(lon2), float(lat2)]]

    phi1, lambda1, phi2, lambda2 = np.radians([lat1, lon1, lat2, lon2])
    fraction = np.linspace(0.0, 1.0, steps + 1)
    a = np.sin((1 - fraction) * delta) / np.sin(delta)
    b = np.sin(fraction * delta) / np.sin(delta)
    x = a * np.cos(phi1) * np.cos(lambda1) + b * np.cos(phi2) * np.cos(lambda2)
    y = a * np.cos(phi1) * np.sin(lambda1) + b * np.cos(phi2) * np.sin(lambda2)
    z = a * np.sin(phi1) + b * np.sin(phi2)
    lat = np.degrees(np.arctan2(z, np.hypot(x, y)))
    lon = np.degrees(np.arctan2(y, x))
    return np.column_stack([lon, lat]).tolist()


def lookup_airport(conn: sqlite3.Connection, code: Optional[str]) -> Optional[Airport]:
    """Return the airport matching *code* by primary, IATA or ICAO code."""

    normalized = normalize_code(code)
    if not normalized:
        return None
    row = fetch_dict(
        conn,
        f"""
        SELECT {_AIRPORT_COLUMNS}
        FROM airports
        WHERE code = ? OR iata_code = ? OR icao_code = ?
        ORDER BY CASE WHEN code = ? THEN 0 ELSE 1 END
        LIMIT 1
        """,
        (normalized, normalized, normalized, normalized),
    )
    if row is None:
        return None
    return _airport_from_row(row)


def sanitize_query(query: str) -> str:
    lowered = (query or "").lower()
    return " ".join(re.sub(r"[^a-z0-9 ]+", " ", lowered).split())


def search_airports(
    conn: sqlite3.Connection, query: str, limit: int = 10
) -> List[Airport]:
    """Search airports by code, name or municipality.

    Exact code matches rank first, then code prefixes, then name matches;
    within each band larger airports come first.
    """

    cleaned = sanitize_query(query)
    if not cleaned:
        return []
    upper = cleaned.upper().replace(" ", "")
    like = f"%{cleaned}%"
    rows = fetch_dicts(
        conn,
        f"""
        SELECT {_AIRPORT_COLUMNS}
        FROM airports
        WHERE code LIKE ? OR iata_code LIKE ? OR icao_code LIKE ?
           OR lower(name) LIKE ? OR lower(COALESCE(municipality, '')) LIKE ?
        """,
        (f"{upper}%", f"{upper}%", f"{upper}%", like, like),
    )

    def rank(row: dict) -> Tuple[int, int, str]:
        codes = {row.get("code"), row.get("iata_code"), row.get("icao_code")}
        if upper in codes:
            band = 0
        elif any(code and code.startswith(upper) for code in codes):
            band = 1
        else:
            band = 2
        size = _AIRPORT_TYPE_RANK.get(row.get("airport_type") or "", 3)
        return band, size, row["code"]

    rows.sort(key=rank)
    return [_airport_from_row(row) for row in rows[: max(0, int(limit))]]


def is_international(
    origin: Optional[Airport], destination: Optional[Airport]
) -> bool:
    if origin is None or destination is None:
        return False
    if not origin.country_code or not destination.country_code:
        return False
    return origin.country_code.upper() != destination.country_code.upper()


def upsert_airports(conn: sqlite3.Connection, rows: Sequence[tuple]) -> int:
    """Insert or replace airport reference rows, returning the count written."""

    conn.executemany(
        """
        INSERT OR REPLACE INTO airports
            (code, name, municipality, country_code, iata_code, icao_code,
             airport_type, latitude, longitude)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        rows,
    )
    conn.commit()
    return len(rows)


__all__ = [
    "Airport",
    "EARTH_RADIUS_KM",
    "EARTH_RADIUS_NM",
    "estimate_flight_hours",
    "great_circle_path",
    "haversine_km",
    "haversine_nm",
    "is_international",
    "lookup_airport",
    "normalize_code",
    "sanitize_query",
    "search_airports",
    "upsert_airports",
]
