"""Leg normalisation and derived trip metrics."""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from charterdesk.airports import haversine_nm, lookup_airport, normalize_code

logger = logging.getLogger(__name__)

ROUTE_ARROW = " → "


@dataclass
class LegInput:
    origin_code: Optional[str]
    destination_code: Optional[str]
    origin: Optional[str] = None
    destination: Optional[str] = None
    depart_dt: Optional[str] = None
    depart_time: Optional[str] = None
    pax_count: Optional[int] = None
    origin_lat: Optional[float] = None
    origin_long: Optional[float] = None
    destination_lat: Optional[float] = None
    destination_long: Optional[float] = None
    notes: Optional[str] = None
    id: Optional[int] = None
    seq: Optional[int] = None
    distance_nm: Optional[float] = None


@dataclass
class TripMetrics:
    leg_count: int
    total_pax: int
    trip_summary: Optional[str]
    trip_type: str
    earliest_departure: Optional[str]
    latest_return: Optional[str]
    total_distance_nm: Optional[float]
    route_codes: List[str] = field(default_factory=list)


def to_datetime(depart_dt: Optional[str], depart_time: Optional[str] = None) -> Optional[datetime]:
    """Combine a ``YYYY-MM-DD`` date with an optional ``HH:MM`` time."""

    if not depart_dt:
        return None
    time_part = (depart_time or "").strip() or "00:00"
    candidate = f"{str(depart_dt).strip()[:10]}T{time_part[:5]}"
    try:
        return datetime.strptime(candidate, "%Y-%m-%dT%H:%M")
    except ValueError:
        return None


def departure_timestamp(leg: LegInput) -> Optional[str]:
    parsed = to_datetime(leg.depart_dt, leg.depart_time)
    return parsed.isoformat() if parsed else None


def _coalesce_pax(value: object) -> int:
    """Missing counts default to one passenger; an explicit zero is kept."""
    try:
        pax = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 1
    return max(pax, 0)


def prepare_legs(
    legs: Iterable[LegInput],
    *,
    conn: Optional[sqlite3.Connection] = None,
) -> List[LegInput]:
    """Drop incomplete legs, renumber the rest and fill derived fields.

    Missing coordinates are looked up in the airport table when *conn* is
    given. ``distance_nm`` is only set when all four coordinates are known.
    """

    prepared: List[LegInput] = []
    for leg in legs:
        origin_code = normalize_code(leg.origin_code)
        destination_code = normalize_code(leg.destination_code)
        if not origin_code or not destination_code:
            logger.warning("Ignoring leg without both airport codes: %r", leg)
            continue

        updated = replace(
            leg,
            origin_code=origin_code,
            destination_code=destination_code,
            pax_count=_coalesce_pax(leg.pax_count),
            seq=len(prepared) + 1,
        )

        if conn is not None:
            if updated.origin_lat is None or updated.origin_long is None or not updated.origin:
                airport = lookup_airport(conn, origin_code)
                if airport is not None:
                    if updated.origin_lat is None or updated.origin_long is None:
                        updated.origin_lat = airport.latitude
                        updated.origin_long = airport.longitude
                    updated.origin = updated.origin or airport.name
            if (
                updated.destination_lat is None
                or updated.destination_long is None
                or not updated.destination
            ):
                airport = lookup_airport(conn, destination_code)
                if airport is not None:
                    if updated.destination_lat is None or updated.destination_long is None:
                        updated.destination_lat = airport.latitude
                        updated.destination_long = airport.longitude
                    updated.destination = updated.destination or airport.name

        updated.distance_nm = haversine_nm(
            updated.origin_lat,
            updated.origin_long,
            updated.destination_lat,
            updated.destination_long,
        )
        if updated.distance_nm is None:
            logger.warning(
                "Missing coordinates for leg %s %s-%s", updated.seq, origin_code, destination_code
            )
        prepared.append(updated)
    return prepared


def classify_trip_type(legs: Sequence[LegInput]) -> str:
    if len(legs) == 1:
        return "one-way"
    if len(legs) == 2:
        first, second = legs
        if (
            first.origin_code == second.destination_code
            and first.destination_code == second.origin_code
        ):
            return "round-trip"
    return "multi-city"


def summarize_trip(legs: Sequence[LegInput]) -> TripMetrics:
    """Aggregate leg count, pax, route chain, type and departure window."""

    route_codes: List[str] = []
    for leg in legs:
        if leg.origin_code:
            route_codes.append(leg.origin_code)
        if leg.destination_code:
            route_codes.append(leg.destination_code)

    timestamps = [ts for ts in (to_datetime(l.depart_dt, l.depart_time) for l in legs) if ts]
    distances = [float(l.distance_nm) for l in legs if l.distance_nm is not None]

    return TripMetrics(
        leg_count=len(legs),
        total_pax=max([_coalesce_pax(l.pax_count) for l in legs] + [1]),
        trip_summary=ROUTE_ARROW.join(route_codes) if route_codes else None,
        trip_type=classify_trip_type(legs),
        earliest_departure=min(timestamps).isoformat() if timestamps else None,
        latest_return=max(timestamps).isoformat() if timestamps else None,
        total_distance_nm=sum(distances) if distances else None,
        route_codes=route_codes,
    )


def route_label(legs: Sequence[LegInput]) -> str:
    return " | ".join(
        f"{leg.origin_code}{ROUTE_ARROW}{leg.destination_code}" for leg in legs
    )


__all__ = [
    "LegInput",
    "ROUTE_ARROW",
    "TripMetrics",
    "classify_trip_type",
    "departure_timestamp",
    "prepare_legs",
    "route_label",
    "summarize_trip",
    "to_datetime",
]
