import sqlite3
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from charterdesk.errors import NotFoundError, ValidationError
from charterdesk.repo import (
    ContactDetails,
    create_contact,
    create_passenger,
    delete_contact,
    digits_only,
    ensure_contact_record,
    find_contact_matches,
    get_contact,
    list_contacts,
    list_passengers,
    passenger_history,
    update_contact,
    update_passenger,
)
from charterdesk.schema import add_member, ensure_schema, ensure_tenant, list_members

TENANT = "acme"


@pytest.fixture()
def conn():
    connection = sqlite3.connect(":memory:")
    ensure_schema(connection)
    ensure_tenant(connection, TENANT, "Acme Jets")
    ensure_tenant(connection, "other")
    yield connection
    connection.close()


def test_ensure_schema_is_idempotent(conn) -> None:
    ensure_schema(conn)
    ensure_tenant(conn, TENANT)
    items = conn.execute("SELECT COUNT(*) FROM items WHERE tenant_id = ?", (TENANT,)).fetchone()[0]
    assert items == 5
    columns = {row[1] for row in conn.execute("PRAGMA table_info(quotes)")}
    assert {"total_distance_nm", "public_link_id"} <= columns


def test_members_are_upserted(conn) -> None:
    first = add_member(conn, TENANT, "u1", " Ops@Acme.com ", role="admin")
    second = add_member(conn, TENANT, "u1", "ops@acme.com", full_name="Ops", role="broker")
    assert first == second
    members = list_members(conn, TENANT)
    assert len(members) == 1
    assert members[0]["email"] == "ops@acme.com"
    assert members[0]["role"] == "broker"
    with pytest.raises(ValueError):
        add_member(conn, TENANT, "u2", "x@acme.com", role="pilot")


def test_contact_details_cleaning() -> None:
    details = ContactDetails(first_name=" Ada ", last_name="Lovelace ", phone=" +1 (212) 555-0101 ")
    assert details.full_name == "Ada Lovelace"
    assert details.normalized_phone == "12125550101"
    assert details.name_key == "ada lovelace"
    assert details.display_name() == "Ada Lovelace"
    assert ContactDetails(phone="555").has_any_data()
    assert not ContactDetails(phone="555").has_identity()
    assert digits_only("n/a") is None


def test_create_contact_requires_identity(conn) -> None:
    with pytest.raises(ValidationError) as excinfo:
        create_contact(conn, TENANT, ContactDetails(phone="555-0101"))
    assert excinfo.value.error_code == "CONTACT_IDENTITY"


def test_contact_crud_is_tenant_scoped(conn) -> None:
    contact_id = create_contact(conn, TENANT, ContactDetails(full_name="Grace Hopper", email="grace@navy.mil"))
    assert get_contact(conn, TENANT, contact_id)["email"] == "grace@navy.mil"
    with pytest.raises(NotFoundError):
        get_contact(conn, "other", contact_id)

    updated = update_contact(conn, TENANT, contact_id, company=" US Navy ")
    assert updated["company"] == "US Navy"
    assert updated["full_name"] == "Grace Hopper"
    with pytest.raises(ValidationError, match="Unknown contact fields"):
        update_contact(conn, TENANT, contact_id, shoe_size=9)

    assert [c["id"] for c in list_contacts(conn, TENANT, search="navy")] == [contact_id]
    assert list_contacts(conn, "other") == []

    delete_contact(conn, TENANT, contact_id)
    assert list_contacts(conn, TENANT) == []


def test_find_contact_matches_reports_reasons(conn) -> None:
    contact_id = create_contact(
        conn, TENANT, ContactDetails(full_name="Grace Hopper", email="Grace@Navy.mil", phone="212-555-0101")
    )
    matches = find_contact_matches(
        conn, TENANT, ContactDetails(full_name="grace  hopper", email="grace@navy.mil", phone="(212) 5550101")
    )
    assert len(matches) == 1
    assert matches[0].id == contact_id
    assert matches[0].reason == "matching name, matching email, matching phone"
    assert find_contact_matches(conn, TENANT, ContactDetails()) == []


def test_ensure_contact_record_reuses_email_match_and_fills_gaps(conn) -> None:
    contact_id = create_contact(conn, TENANT, ContactDetails(email="ceo@example.com", company="Example"))
    found_id, display = ensure_contact_record(
        conn, TENANT, ContactDetails(full_name="Jane Doe", email="CEO@example.com", phone="555")
    )
    assert found_id == contact_id
    assert display == "Example"
    row = get_contact(conn, TENANT, contact_id)
    assert row["full_name"] == "Jane Doe"
    assert row["phone"] == "555"
    assert row["company"] == "Example"


def test_ensure_contact_record_creates_or_skips(conn) -> None:
    new_id, display = ensure_contact_record(conn, TENANT, ContactDetails(full_name="New Client"))
    assert new_id is not None
    assert display == "New Client"

    assert ensure_contact_record(conn, TENANT, ContactDetails(phone="555")) == (None, "555")
    assert ensure_contact_record(conn, TENANT, None) == (None, None)


def test_passenger_crud(conn) -> None:
    with pytest.raises(ValidationError):
        create_passenger(conn, TENANT, "  ")
    with pytest.raises(ValidationError, match="Unknown passenger fields"):
        create_passenger(conn, TENANT, "Amelia Earhart", favourite_colour="blue")

    passenger_id = create_passenger(conn, TENANT, "Amelia Earhart", email="amelia@example.com", nationality="US")
    updated = update_passenger(conn, TENANT, passenger_id, dietary_restrictions="Vegetarian")
    assert updated["dietary_restrictions"] == "Vegetarian"
    assert updated["nationality"] == "US"
    with pytest.raises(ValidationError):
        update_passenger(conn, TENANT, passenger_id, full_name="")

    assert [p["full_name"] for p in list_passengers(conn, TENANT, search="amelia")] == ["Amelia Earhart"]
    assert list_passengers(conn, "other") == []
    assert passenger_history(conn, TENANT, passenger_id) == []
    with pytest.raises(NotFoundError):
        passenger_history(conn, "other", passenger_id)
