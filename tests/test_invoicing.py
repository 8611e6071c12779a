import sqlite3
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from charterdesk.errors import ActionLinkError, ValidationError, WorkflowError
from charterdesk.itineraries import create_itinerary_from_quote, get_itinerary, update_itinerary
from charterdesk.invoicing import (
    can_regenerate_invoice,
    default_taxes,
    format_invoice_number,
    get_invoice_for_quote,
    list_invoices,
    mark_invoice_paid,
    next_invoice_number,
    normalize_invoice_number,
    public_invoice_view,
    quote_to_invoice,
    resend_invoice,
    void_invoice,
)
from charterdesk.quote_service import (
    QuoteHeader,
    QuoteLeg,
    QuoteOptionInput,
    QuoteServiceInput,
    create_quote,
    get_quote,
    select_option,
)
from charterdesk.schema import ensure_schema, ensure_tenant
from charterdesk.workflow import accept_quote, fetch_quote_row, record_availability, send_quote, transition_quote

TENANT = "acme"


@pytest.fixture()
def conn():
    connection = sqlite3.connect(":memory:")
    ensure_schema(connection)
    ensure_tenant(connection, TENANT)
    yield connection
    connection.close()


def _confirmed_quote(conn) -> int:
    quote_id = create_quote(
        conn,
        TENANT,
        QuoteHeader(contact_name="Grace Hopper", contact_email="grace@navy.mil"),
        [QuoteLeg("TEB", "VNY", depart_dt="2026-11-02", pax_count=4)],
        [QuoteOptionInput(label="Heavy", cost_operator=36_000, price_commission=4_000)],
        [
            QuoteServiceInput(name="Catering", unit_price=350, taxable=True),
            QuoteServiceInput(name="Crew overnight", unit_price=600, taxable=False),
        ],
    )
    send_quote(conn, TENANT, quote_id)
    accept_quote(conn, TENANT, quote_id, get_quote(conn, TENANT, quote_id).options[0]["id"])
    record_availability(conn, TENANT, quote_id, "confirmed")
    return quote_id


def test_invoice_numbers() -> None:
    assert format_invoice_number(7) == "AIQ-00007"
    assert format_invoice_number(12, prefix="INV") == "INV00012"
    assert normalize_invoice_number("AIQ-00003") == "AIQ-00003"
    assert normalize_invoice_number("INV-42") == "AIQ-00042"
    assert normalize_invoice_number("draft") is None
    assert normalize_invoice_number(None) is None


def test_quote_to_invoice_builds_lines_and_moves_quote(conn) -> None:
    quote_id = _confirmed_quote(conn)
    taxes = default_taxes(conn, get_quote(conn, TENANT, quote_id))
    assert [tax["id"] for tax in taxes] == ["fet", "us_segment_fee"]

    invoice = quote_to_invoice(conn, TENANT, quote_id, taxes=taxes, payment_url="https://pay.example/x", due_in_days=7)
    tax_total = sum(round(tax["amount"], 2) for tax in taxes)
    assert invoice["number"] == "AIQ-00001"
    assert invoice["status"] == "issued"
    assert invoice["subtotal"] == pytest.approx(40_950)
    assert invoice["tax_total"] == pytest.approx(tax_total)
    assert invoice["amount"] == pytest.approx(40_950 + tax_total)
    assert invoice["summary_itinerary"] == "TEB → VNY"
    assert invoice["aircraft_label"] == "Heavy"
    assert invoice["external_payment_url"] == "https://pay.example/x"
    assert invoice["due_at"] > invoice["issued_at"]
    assert invoice["contact_email"] == "grace@navy.mil"
    assert invoice["breakdown"]["aircraft"]["amount"] == 40_000

    lines = invoice["lines"]
    assert [line["type"] for line in lines] == ["aircraft", "service", "service", "tax", "tax"]
    assert [line["seq"] for line in lines] == [1, 2, 3, 4, 5]
    assert (lines[1]["taxable"], lines[1]["tax_rate"]) == (1, 7.5)
    assert lines[2]["taxable"] == 0
    # Tax only comes from the tax lines.
    assert sum(line["tax_amount"] for line in lines) == 0.0
    assert sum(line["amount"] for line in lines if line["type"] == "tax") == pytest.approx(invoice["tax_total"])
    assert sum(line["amount"] for line in lines) == pytest.approx(invoice["amount"])

    quote = fetch_quote_row(conn, TENANT, quote_id)
    assert quote["status"] == "pending_payment"
    assert quote["payment_status"] == "unpaid"


def test_regenerating_keeps_the_number(conn) -> None:
    quote_id = _confirmed_quote(conn)
    first = quote_to_invoice(conn, TENANT, quote_id)
    second_quote = _confirmed_quote(conn)
    assert quote_to_invoice(conn, TENANT, second_quote)["number"] == "AIQ-00002"

    regenerated = quote_to_invoice(conn, TENANT, quote_id, taxes=[{"name": "Landing", "amount": 120}])
    assert regenerated["number"] == first["number"]
    assert regenerated["id"] != first["id"]
    assert regenerated["tax_total"] == 120
    assert get_invoice_for_quote(conn, TENANT, quote_id)["id"] == regenerated["id"]
    assert len(list_invoices(conn, TENANT)) == 2
    assert next_invoice_number(conn, TENANT) == "AIQ-00003"


def test_amounts_are_rounded_to_cents(conn) -> None:
    quote_id = create_quote(
        conn,
        TENANT,
        QuoteHeader(contact_email="grace@navy.mil"),
        [QuoteLeg("TEB", "VNY", depart_dt="2026-11-02")],
        [QuoteOptionInput(label="Light", cost_operator=10_000.005)],
        [QuoteServiceInput(name="Snacks", unit_price=0.1, qty=3)],
    )
    select_option(conn, TENANT, quote_id, get_quote(conn, TENANT, quote_id).options[0]["id"])
    invoice = quote_to_invoice(conn, TENANT, quote_id, taxes=[{"name": "A", "amount": 0.1}, {"name": "B", "amount": 0.2}])
    assert invoice["subtotal"] == round(invoice["subtotal"], 2)
    assert invoice["subtotal"] == pytest.approx(10_000.30, abs=0.011)
    assert invoice["tax_total"] == 0.3


def test_paid_invoice_cannot_be_regenerated(conn) -> None:
    quote_id = _confirmed_quote(conn)
    invoice = quote_to_invoice(conn, TENANT, quote_id)
    assert can_regenerate_invoice(fetch_quote_row(conn, TENANT, quote_id), invoice)
    mark_invoice_paid(conn, TENANT, invoice["id"])
    itinerary_id = create_itinerary_from_quote(conn, TENANT, quote_id)

    with pytest.raises(WorkflowError) as excinfo:
        quote_to_invoice(conn, TENANT, quote_id)
    assert excinfo.value.error_code == "QUOTE_PAID"
    assert excinfo.value.context == {"status": "itinerary_created"}

    kept = get_invoice_for_quote(conn, TENANT, quote_id)
    assert (kept["id"], kept["status"]) == (invoice["id"], "paid")
    quote = fetch_quote_row(conn, TENANT, quote_id)
    assert (quote["status"], quote["payment_status"]) == ("itinerary_created", "paid")
    assert not can_regenerate_invoice(quote, kept)
    assert get_itinerary(conn, TENANT, itinerary_id)["invoice_id"] == invoice["id"]
    assert update_itinerary(conn, TENANT, itinerary_id, status="trip_confirmed")["status"] == "trip_confirmed"


def test_void_invoice_can_be_regenerated(conn) -> None:
    quote_id = _confirmed_quote(conn)
    invoice = quote_to_invoice(conn, TENANT, quote_id)
    void_invoice(conn, TENANT, invoice["id"])
    reissued = quote_to_invoice(conn, TENANT, quote_id)
    assert (reissued["number"], reissued["status"]) == (invoice["number"], "issued")
    assert fetch_quote_row(conn, TENANT, quote_id)["payment_status"] == "unpaid"


def test_quote_to_invoice_requires_selected_option(conn) -> None:
    quote_id = create_quote(
        conn, TENANT, QuoteHeader(contact_email="a@b.c"), [QuoteLeg("TEB", "VNY")], [QuoteOptionInput(label="A")]
    )
    with pytest.raises(ValidationError) as excinfo:
        quote_to_invoice(conn, TENANT, quote_id)
    assert excinfo.value.error_code == "NO_SELECTED_OPTION"
    assert len(excinfo.value.context["available_option_ids"]) == 1
    assert default_taxes(conn, get_quote(conn, TENANT, quote_id)) == []

    transition_quote(conn, TENANT, quote_id, "declined")
    with pytest.raises(WorkflowError) as excinfo:
        quote_to_invoice(conn, TENANT, quote_id)
    assert excinfo.value.error_code == "QUOTE_CLOSED"


def test_mark_paid_moves_quote_to_payment_received(conn) -> None:
    quote_id = _confirmed_quote(conn)
    invoice = quote_to_invoice(conn, TENANT, quote_id)
    paid = mark_invoice_paid(conn, TENANT, invoice["id"], reference=" WIRE-123 ")
    assert paid["status"] == "paid"
    assert paid["payment_reference"] == "WIRE-123"
    assert paid["paid_at"]
    quote = fetch_quote_row(conn, TENANT, quote_id)
    assert quote["status"] == "payment_received"
    assert quote["payment_status"] == "paid"

    with pytest.raises(WorkflowError) as excinfo:
        mark_invoice_paid(conn, TENANT, invoice["id"])
    assert excinfo.value.error_code == "INVOICE_STATUS"
    with pytest.raises(WorkflowError):
        void_invoice(conn, TENANT, invoice["id"])
    assert list_invoices(conn, TENANT, status="paid")["id"].tolist() == [invoice["id"]]


def test_void_invoice(conn) -> None:
    quote_id = _confirmed_quote(conn)
    invoice = quote_to_invoice(conn, TENANT, quote_id)
    assert void_invoice(conn, TENANT, invoice["id"])["status"] == "void"
    assert fetch_quote_row(conn, TENANT, quote_id)["payment_status"] == "none"
    with pytest.raises(WorkflowError):
        resend_invoice(conn, TENANT, invoice["id"])


def test_invoice_link_and_public_view(conn) -> None:
    quote_id = _confirmed_quote(conn)
    invoice = quote_to_invoice(conn, TENANT, quote_id)
    link = resend_invoice(conn, TENANT, invoice["id"], created_by="ops")
    assert link["action_type"] == "invoice"

    view = public_invoice_view(conn, link["token"])
    assert view["number"] == invoice["number"]
    assert len(view["lines"]) == len(invoice["lines"])

    other = send_quote(conn, TENANT, create_quote(conn, TENANT, QuoteHeader(contact_email="x@y.z")))
    with pytest.raises(ActionLinkError) as excinfo:
        public_invoice_view(conn, other["token"])
    assert excinfo.value.error_code == "LINK_WRONG_TYPE"
