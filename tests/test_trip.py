import logging
import sqlite3
import sys
from datetime import datetime
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from charterdesk.schema import ensure_schema
from charterdesk.trip import (
    LegInput,
    classify_trip_type,
    departure_timestamp,
    prepare_legs,
    route_label,
    summarize_trip,
    to_datetime,
)


@pytest.fixture()
def conn():
    connection = sqlite3.connect(":memory:")
    ensure_schema(connection)
    yield connection
    connection.close()


def test_to_datetime_defaults_to_midnight() -> None:
    assert to_datetime("2026-11-02") == datetime(2026, 11, 2, 0, 0)
    assert to_datetime("2026-11-02", "14:35") == datetime(2026, 11, 2, 14, 35)
    assert to_datetime("2026-11-02", "14:35:59") == datetime(2026, 11, 2, 14, 35)
    assert to_datetime(None, "10:00") is None
    assert to_datetime("not a date") is None


def test_departure_timestamp_is_iso() -> None:
    leg = LegInput("TEB", "VNY", depart_dt="2026-11-02", depart_time="09:30")
    assert departure_timestamp(leg) == "2026-11-02T09:30:00"
    assert departure_timestamp(LegInput("TEB", "VNY")) is None


def test_prepare_legs_drops_incomplete_and_renumbers(conn, caplog) -> None:
    legs = [
        LegInput(" teb ", "vny", pax_count=0),
        LegInput("", "ASE"),
        LegInput("VNY", "TEB", pax_count=4),
    ]
    with caplog.at_level(logging.WARNING):
        prepared = prepare_legs(legs, conn=conn)

    assert [leg.seq for leg in prepared] == [1, 2]
    assert prepared[0].origin_code == "TEB"
    assert prepared[0].pax_count == 0
    assert prepared[1].pax_count == 4
    assert prepared[0].origin == "Teterboro"
    assert prepared[0].destination_lat == pytest.approx(34.2098)
    assert prepared[0].distance_nm == prepared[1].distance_nm
    assert 2000 < prepared[0].distance_nm < 2300
    assert "Ignoring leg" in caplog.text
    # Inputs are not mutated.
    assert legs[0].origin_code == " teb "


def test_prepare_legs_keeps_explicit_coordinates(conn) -> None:
    leg = LegInput("ZZZ1", "ZZZ2", origin_lat=10.0, origin_long=10.0, destination_lat=10.0, destination_long=11.0)
    prepared = prepare_legs([leg], conn=conn)
    assert prepared[0].distance_nm == 59


def test_prepare_legs_without_coordinates_has_no_distance() -> None:
    prepared = prepare_legs([LegInput("TEB", "VNY")])
    assert prepared[0].distance_nm is None


def test_classify_trip_type() -> None:
    one_way = [LegInput("TEB", "VNY")]
    round_trip = [LegInput("TEB", "VNY"), LegInput("VNY", "TEB")]
    multi = [LegInput("TEB", "VNY"), LegInput("VNY", "ASE")]
    assert classify_trip_type(one_way) == "one-way"
    assert classify_trip_type(round_trip) == "round-trip"
    assert classify_trip_type(multi) == "multi-city"
    assert classify_trip_type(multi + [LegInput("ASE", "TEB")]) == "multi-city"


def test_summarize_trip(conn) -> None:
    legs = prepare_legs(
        [
            LegInput("TEB", "VNY", depart_dt="2026-11-02", depart_time="09:00", pax_count=3),
            LegInput("VNY", "TEB", depart_dt="2026-11-05", pax_count=5),
        ],
        conn=conn,
    )
    metrics = summarize_trip(legs)
    assert metrics.leg_count == 2
    assert metrics.total_pax == 5
    assert metrics.trip_type == "round-trip"
    assert metrics.trip_summary == "TEB → VNY → VNY → TEB"
    assert metrics.earliest_departure == "2026-11-02T09:00:00"
    assert metrics.latest_return == "2026-11-05T00:00:00"
    assert metrics.total_distance_nm == pytest.approx(legs[0].distance_nm * 2)


def test_pax_counts_keep_zero_and_default_to_one() -> None:
    prepared = prepare_legs(
        [LegInput("TEB", "VNY", pax_count=0), LegInput("VNY", "TEB"), LegInput("TEB", "ASE", pax_count=-2)]
    )
    assert [leg.pax_count for leg in prepared] == [0, 1, 0]
    assert summarize_trip([LegInput("TEB", "VNY", pax_count=0)]).total_pax == 1


def test_summarize_trip_empty() -> None:
    metrics = summarize_trip([])
    assert metrics.leg_count == 0
    assert metrics.total_pax == 1
    assert metrics.trip_summary is None
    assert metrics.trip_type == "multi-city"
    assert metrics.total_distance_nm is None


def test_route_label() -> None:
    assert route_label([LegInput("TEB", "VNY"), LegInput("VNY", "ASE")]) == "TEB → VNY | VNY → ASE"
