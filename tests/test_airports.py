import sqlite3
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from airports_to_sqlite import airport_row, import_airports
from charterdesk.airports import (
    Airport,
    estimate_flight_hours,
    great_circle_path,
    haversine_km,
    haversine_nm,
    is_international,
    lookup_airport,
    normalize_code,
    sanitize_query,
    search_airports,
)
from charterdesk.schema import ensure_schema


@pytest.fixture()
def conn():
    connection = sqlite3.connect(":memory:")
    ensure_schema(connection)
    yield connection
    connection.close()


def test_haversine_nm_transatlantic() -> None:
    distance = haversine_nm(40.6413, -73.7781, 51.4700, -0.4543)
    assert isinstance(distance, int)
    assert 2950 <= distance <= 3050


def test_haversine_nm_missing_or_bad_coordinates() -> None:
    assert haversine_nm(None, -73.7, 51.4, -0.4) is None
    assert haversine_nm("abc", -73.7, 51.4, -0.4) is None
    assert haversine_nm(40.0, -73.0, 40.0, -73.0) == 0


def test_haversine_km_matches_nm_scale() -> None:
    km = haversine_km(40.6413, -73.7781, 51.4700, -0.4543)
    nm = haversine_nm(40.6413, -73.7781, 51.4700, -0.4543)
    assert km == pytest.approx(nm * 1.852, rel=0.01)


def test_estimate_flight_hours_adds_taxi_allowance() -> None:
    assert estimate_flight_hours(420, 420) == pytest.approx(1.3)
    assert estimate_flight_hours(0) == 0.0
    assert estimate_flight_hours(None) == 0.0
    # Non-positive speeds fall back to the configured cruise speed.
    assert estimate_flight_hours(840, 0) == pytest.approx(2.3)


def test_great_circle_path_endpoints() -> None:
    path = great_circle_path((40.6413, -73.7781), (51.4700, -0.4543), steps=8)
    assert len(path) == 9
    assert path[0] == pytest.approx([-73.7781, 40.6413], abs=1e-6)
    assert path[-1] == pytest.approx([-0.4543, 51.4700], abs=1e-6)
    # Great circles bow towards the pole relative to the straight chord.
    assert path[4][1] > (40.6413 + 51.4700) / 2


def test_great_circle_path_same_point() -> None:
    assert great_circle_path((10.0, 20.0), (10.0, 20.0)) == [[20.0, 10.0], [20.0, 10.0]]


def test_normalize_code_and_query() -> None:
    assert normalize_code("  kteb ") == "KTEB"
    assert normalize_code("   ") is None
    assert sanitize_query("  Los-Angeles!! ") == "los angeles"


def test_lookup_airport_by_icao_and_iata(conn) -> None:
    teterboro = lookup_airport(conn, "kteb")
    assert teterboro is not None
    assert teterboro.code == "TEB"
    assert teterboro.has_coordinates
    assert lookup_airport(conn, "LHR").country_code == "GB"
    assert lookup_airport(conn, "ZZZZ") is None
    assert lookup_airport(conn, "") is None


def test_search_airports_ranks_exact_then_size(conn) -> None:
    results = search_airports(conn, "teb")
    assert results[0].code == "TEB"

    la = [airport.code for airport in search_airports(conn, "los angeles")]
    assert la[:2] == ["LAX", "VNY"]
    assert search_airports(conn, "!!!") == []


def test_is_international_requires_known_countries() -> None:
    us = Airport(code="TEB", name="Teterboro", country_code="US")
    gb = Airport(code="LHR", name="Heathrow", country_code="GB")
    unknown = Airport(code="XXX", name="Unknown")
    assert is_international(us, gb)
    assert not is_international(us, us)
    assert not is_international(us, unknown)
    assert not is_international(None, gb)


def test_airport_label() -> None:
    assert Airport(code="VNY", name="Van Nuys", municipality="Los Angeles").label == "VNY · Van Nuys (Los Angeles)"
    assert Airport(code="TEB", name="Teterboro", municipality="Teterboro").label == "TEB · Teterboro"


def test_airport_row_skips_closed_and_heliports() -> None:
    base = {
        "ident": "KAPA",
        "type": "medium_airport",
        "name": "Centennial",
        "latitude_deg": "39.57",
        "longitude_deg": "-104.85",
        "iso_country": "US",
        "municipality": "Denver",
        "iata_code": "APA",
        "gps_code": "KAPA",
    }
    row = airport_row(base)
    assert row[0] == "KAPA"
    assert row[4] == "APA"
    assert row[7] == pytest.approx(39.57)
    assert airport_row({**base, "type": "closed"}) is None
    assert airport_row({**base, "type": "heliport"}) is None
    assert airport_row({**base, "name": ""}) is None


def test_import_airports_from_csv(tmp_path, conn) -> None:
    csv_path = tmp_path / "airports.csv"
    csv_path.write_text(
        "ident,type,name,latitude_deg,longitude_deg,iso_country,municipality,iata_code,gps_code\n"
        "KAPA,medium_airport,Centennial,39.57,-104.85,US,Denver,APA,KAPA\n"
        "X01,heliport,Roof Pad,39.0,-104.0,US,Denver,,\n"
        "X02,closed,Old Field,39.1,-104.1,US,Denver,,\n",
        encoding="utf-8",
    )
    assert import_airports(conn, str(csv_path)) == 1
    centennial = lookup_airport(conn, "APA")
    assert centennial is not None
    assert centennial.municipality == "Denver"
    assert lookup_airport(conn, "X01") is None
