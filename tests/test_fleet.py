import sqlite3
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from charterdesk.errors import NotFoundError, ValidationError
from charterdesk.fleet import (
    aircraft_label,
    create_aircraft,
    create_aircraft_model,
    create_crew_member,
    create_item,
    delete_aircraft,
    delete_crew_member,
    get_aircraft,
    get_item,
    list_aircraft,
    list_aircraft_models,
    list_crew,
    list_items,
    list_manufacturers,
    list_size_classes,
    normalize_tail_number,
    set_amenities,
    update_aircraft,
    update_aircraft_model,
    update_crew_member,
    update_item,
)
from charterdesk.schema import ensure_schema, ensure_tenant

TENANT = "acme"


@pytest.fixture()
def conn():
    connection = sqlite3.connect(":memory:")
    ensure_schema(connection)
    ensure_tenant(connection, TENANT)
    ensure_tenant(connection, "other")
    yield connection
    connection.close()


@pytest.fixture()
def g450(conn) -> int:
    return create_aircraft_model(
        conn, TENANT, "Gulfstream", "G450", size_class="Heavy", pax_capacity=14, cruise_speed_kts=476
    )


def test_models_lists_and_updates(conn, g450) -> None:
    create_aircraft_model(conn, TENANT, "Cessna", "Citation XLS", size_class="Midsize")
    assert list_manufacturers(conn, TENANT) == ["Cessna", "Gulfstream"]
    assert list_size_classes(conn, TENANT) == ["Heavy", "Midsize"]
    assert [m["name"] for m in list_aircraft_models(conn, TENANT, size_class="Heavy")] == ["G450"]
    assert update_aircraft_model(conn, TENANT, g450, range_nm=4350)["range_nm"] == 4350
    with pytest.raises(ValidationError):
        create_aircraft_model(conn, TENANT, "", "Nameless")


def test_normalize_tail_number() -> None:
    assert normalize_tail_number(" n 123 ab ") == "N123AB"
    with pytest.raises(ValidationError) as excinfo:
        normalize_tail_number("   ")
    assert excinfo.value.error_code == "TAIL_REQUIRED"


def test_create_aircraft_rejects_duplicate_tail(conn, g450) -> None:
    aircraft_id = create_aircraft(conn, TENANT, "n450gx", model_id=g450, amenities=["Wi-Fi", " Wi-Fi ", "Galley"])
    aircraft = get_aircraft(conn, TENANT, aircraft_id)
    assert aircraft["tail_number"] == "N450GX"
    assert aircraft["amenities"] == ["Wi-Fi", "Galley"]
    assert aircraft["model_name"] == "G450"
    assert aircraft_label(aircraft) == "N450GX · Gulfstream G450"

    with pytest.raises(ValidationError) as excinfo:
        create_aircraft(conn, TENANT, "N450 GX")
    assert excinfo.value.error_code == "TAIL_DUPLICATE"
    # Tail numbers are unique per tenant only.
    create_aircraft(conn, "other", "N450GX")


def test_update_aircraft_and_inactive_listing(conn, g450) -> None:
    first = create_aircraft(conn, TENANT, "N1AA", model_id=g450)
    second = create_aircraft(conn, TENANT, "N2BB")
    with pytest.raises(ValidationError):
        update_aircraft(conn, TENANT, second, tail_number="n1aa")
    with pytest.raises(ValidationError):
        update_aircraft(conn, TENANT, second, status="scrapped")

    update_aircraft(conn, TENANT, second, status="inactive")
    assert [a["tail_number"] for a in list_aircraft(conn, TENANT)] == ["N1AA"]
    assert len(list_aircraft(conn, TENANT, include_inactive=True)) == 2

    assert set_amenities(conn, TENANT, first, ["Lav", "", "Lav"]) == ["Lav"]
    delete_aircraft(conn, TENANT, first)
    with pytest.raises(NotFoundError):
        get_aircraft(conn, TENANT, first)


def test_aircraft_label_fallbacks() -> None:
    assert aircraft_label(None) is None
    assert aircraft_label({"tail_number": "N1"}) == "N1"
    assert aircraft_label({"manufacturer": "Embraer", "model_name": "Phenom 300"}) == "Embraer Phenom 300"


def test_crew_roles_are_validated(conn) -> None:
    with pytest.raises(ValidationError) as excinfo:
        create_crew_member(conn, TENANT, "Chuck Yeager", "Navigator")
    assert excinfo.value.error_code == "CREW_ROLE"

    pic = create_crew_member(conn, TENANT, "Chuck Yeager", "PIC")
    create_crew_member(conn, TENANT, "Bessie Coleman", "SIC")
    assert [c["full_name"] for c in list_crew(conn, TENANT, role="PIC")] == ["Chuck Yeager"]

    update_crew_member(conn, TENANT, pic, active=0)
    assert [c["full_name"] for c in list_crew(conn, TENANT)] == ["Bessie Coleman"]
    with pytest.raises(NotFoundError):
        update_crew_member(conn, "other", pic, notes="x")
    delete_crew_member(conn, TENANT, pic)
    with pytest.raises(NotFoundError):
        delete_crew_member(conn, TENANT, pic)


def test_service_items(conn) -> None:
    names = [item["name"] for item in list_items(conn, TENANT)]
    assert "Catering" in names and "De-icing" in names

    item_id = create_item(conn, TENANT, "Pet transport", default_unit_price=200.0, taxable=False)
    item = get_item(conn, TENANT, item_id)
    assert item["taxable"] == 0
    assert get_item(conn, "other", item_id) is None

    update_item(conn, TENANT, item_id, active=False)
    assert "Pet transport" not in [i["name"] for i in list_items(conn, TENANT)]
    assert "Pet transport" in [i["name"] for i in list_items(conn, TENANT, active_only=False)]
    with pytest.raises(ValidationError):
        create_item(conn, TENANT, "Refund", default_unit_price=-5)
    with pytest.raises(NotFoundError):
        update_item(conn, "other", item_id, name="x")
