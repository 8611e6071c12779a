import json
import sqlite3
import sys
from datetime import date, datetime
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from charterdesk.audit import list_audit
from charterdesk.errors import NotFoundError, ValidationError, WorkflowError
from charterdesk.quote_service import QuoteHeader, QuoteLeg, QuoteOptionInput, create_quote, get_quote
from charterdesk.schema import QUOTE_STATUSES, ensure_schema, ensure_tenant
from charterdesk.workflow import (
    QUOTE_TRANSITIONS,
    TERMINAL_STATUSES,
    accept_quote,
    can_transition,
    expire_stale_quotes,
    fetch_quote_row,
    is_editable,
    mark_opened,
    record_availability,
    send_quote,
    transition_quote,
    validate_itinerary_status,
)

TENANT = "acme"


@pytest.fixture()
def conn():
    connection = sqlite3.connect(":memory:")
    ensure_schema(connection)
    ensure_tenant(connection, TENANT)
    yield connection
    connection.close()


def _quote(conn, email="client@example.com", valid_until=None) -> int:
    return create_quote(
        conn,
        TENANT,
        QuoteHeader(contact_name="Client", contact_email=email, valid_until=valid_until),
        [QuoteLeg("TEB", "VNY", depart_dt="2026-11-02")],
        [QuoteOptionInput(label="Light"), QuoteOptionInput(label="Heavy")],
    )


def _option_ids(conn, quote_id):
    return [option["id"] for option in get_quote(conn, TENANT, quote_id).options]


def test_transition_table_covers_every_status() -> None:
    assert set(QUOTE_TRANSITIONS) == set(QUOTE_STATUSES)
    for targets in QUOTE_TRANSITIONS.values():
        assert set(targets) <= set(QUOTE_STATUSES)
    assert TERMINAL_STATUSES == {"itinerary_created", "declined", "expired"}
    assert can_transition("draft", "pending_response")
    assert not can_transition("draft", "client_accepted")
    assert not can_transition("declined", "draft")
    assert is_editable("client_accepted")
    assert not is_editable("payment_received")


def test_transition_quote_rejects_illegal_moves(conn) -> None:
    quote_id = _quote(conn)
    with pytest.raises(WorkflowError) as excinfo:
        transition_quote(conn, TENANT, quote_id, "payment_received")
    assert excinfo.value.error_code == "ILLEGAL_TRANSITION"
    assert excinfo.value.context == {"from": "draft", "to": "payment_received"}
    with pytest.raises(ValidationError) as excinfo:
        transition_quote(conn, TENANT, quote_id, "teleported")
    assert excinfo.value.error_code == "QUOTE_STATUS"
    with pytest.raises(NotFoundError):
        fetch_quote_row(conn, "nobody", quote_id)


def test_transition_quote_writes_audit_row(conn) -> None:
    quote_id = _quote(conn)
    transition_quote(conn, TENANT, quote_id, "declined", actor="ops", note="Client went elsewhere")
    assert fetch_quote_row(conn, TENANT, quote_id)["status"] == "declined"
    entries = list_audit(conn, TENANT, target_type="quote", target_id=quote_id)
    assert entries[-1]["action"] == "quote.status_changed"
    assert entries[-1]["actor"] == "ops"
    assert entries[-1]["details"] == {"from": "draft", "to": "declined", "note": "Client went elsewhere"}


def test_send_quote_issues_link_and_publishes(conn) -> None:
    quote_id = _quote(conn)
    link = send_quote(conn, TENANT, quote_id, created_by="ops")
    quote = fetch_quote_row(conn, TENANT, quote_id)
    assert quote["status"] == "pending_response"
    assert quote["public_link_id"] == link["id"]
    assert quote["published_at"]
    stored = conn.execute("SELECT metadata, email FROM action_links WHERE id = ?", (link["id"],)).fetchone()
    assert json.loads(stored[0]) == {"quote_id": quote_id}
    assert stored[1] == "client@example.com"

    with pytest.raises(WorkflowError):
        send_quote(conn, TENANT, quote_id)


def test_send_quote_needs_recipient(conn) -> None:
    quote_id = _quote(conn, email=None)
    with pytest.raises(ValidationError) as excinfo:
        send_quote(conn, TENANT, quote_id)
    assert excinfo.value.error_code == "QUOTE_NO_RECIPIENT"
    assert conn.execute("SELECT COUNT(*) FROM action_links").fetchone()[0] == 0


def test_mark_opened_only_from_pending_response(conn) -> None:
    quote_id = _quote(conn)
    assert mark_opened(conn, TENANT, quote_id) is False
    send_quote(conn, TENANT, quote_id)
    assert mark_opened(conn, TENANT, quote_id) is True
    assert mark_opened(conn, TENANT, quote_id) is False
    assert fetch_quote_row(conn, TENANT, quote_id)["status"] == "opened"


def test_accept_quote_records_selected_option(conn) -> None:
    quote_id = _quote(conn)
    other_quote = _quote(conn)
    send_quote(conn, TENANT, quote_id)

    with pytest.raises(ValidationError) as excinfo:
        accept_quote(conn, TENANT, quote_id, _option_ids(conn, other_quote)[0])
    assert excinfo.value.error_code == "OPTION_MISMATCH"

    heavy = _option_ids(conn, quote_id)[1]
    accepted = accept_quote(conn, TENANT, quote_id, heavy, actor="client")
    assert accepted["status"] == "client_accepted"
    assert accepted["selected_option_id"] == heavy
    assert fetch_quote_row(conn, TENANT, quote_id)["accepted_at"]


def test_record_availability(conn) -> None:
    quote_id = _quote(conn)
    with pytest.raises(ValidationError):
        record_availability(conn, TENANT, quote_id, "maybe")
    with pytest.raises(WorkflowError):
        record_availability(conn, TENANT, quote_id, "unavailable")

    send_quote(conn, TENANT, quote_id)
    accept_quote(conn, TENANT, quote_id, _option_ids(conn, quote_id)[0])
    record_availability(conn, TENANT, quote_id, "unavailable", resources_checked=["N1AA"], notes=" AOG ")
    quote = fetch_quote_row(conn, TENANT, quote_id)
    assert quote["status"] == "client_accepted"
    assert quote["availability_status"] == "unavailable"
    assert quote["availability_notes"] == "AOG"
    assert json.loads(quote["resources_checked"]) == ["N1AA"]

    confirmed = record_availability(conn, TENANT, quote_id, "confirmed", resources_checked=["N2BB", "crew"])
    assert confirmed["status"] == "availability_confirmed"
    assert json.loads(fetch_quote_row(conn, TENANT, quote_id)["resources_checked"]) == ["N2BB", "crew"]


def test_expire_stale_quotes(conn) -> None:
    stale = _quote(conn, valid_until="2026-10-01")
    fresh = _quote(conn, valid_until="2026-12-01")
    draft = _quote(conn, valid_until="2026-10-01")
    for quote_id in (stale, fresh):
        send_quote(conn, TENANT, quote_id)

    assert expire_stale_quotes(conn, TENANT, now=datetime(2026, 10, 19, 8, 0)) == [stale]
    assert fetch_quote_row(conn, TENANT, stale)["status"] == "expired"
    assert fetch_quote_row(conn, TENANT, fresh)["status"] == "pending_response"
    assert fetch_quote_row(conn, TENANT, draft)["status"] == "draft"
    assert expire_stale_quotes(conn, TENANT, now=date(2026, 10, 19)) == []


def test_validate_itinerary_status() -> None:
    assert validate_itinerary_status("in_progress") == "in_progress"
    with pytest.raises(ValidationError) as excinfo:
        validate_itinerary_status("boarding")
    assert excinfo.value.error_code == "ITINERARY_STATUS"
