import sqlite3
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import charterdesk.config as config
from charterdesk.action_links import (
    consume_action_link,
    create_action_link,
    hash_token,
    link_url,
    revoke_action_link,
    validate_token_entropy,
    verify_action_link,
)
from charterdesk.audit import list_audit
from charterdesk.errors import ActionLinkError, RateLimitError, ValidationError
from charterdesk.schema import ensure_schema, ensure_tenant

TENANT = "acme"
NOW = datetime(2026, 11, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def conn():
    connection = sqlite3.connect(":memory:")
    ensure_schema(connection)
    ensure_tenant(connection, TENANT)
    yield connection
    connection.close()


def _link(conn, **kwargs):
    params = {"email": "client@example.com", "metadata": {"quote_id": 7}, "now": NOW}
    params.update(kwargs)
    return create_action_link(conn, TENANT, "quote", **params)


def test_token_helpers() -> None:
    assert hash_token("abc") == hash_token("abc")
    assert "=" not in hash_token("abc")
    assert len(hash_token("abc")) == 43
    assert not validate_token_entropy("short")
    assert not validate_token_entropy(None)
    assert validate_token_entropy("x" * 20)


def test_create_link_stores_only_hash(conn) -> None:
    link = _link(conn)
    assert link["link"] == link_url(link["token"])
    assert link["link"].startswith(config.APP_URL)
    assert link["expires_at"] == (NOW + timedelta(minutes=60)).isoformat()
    stored = conn.execute("SELECT token_hash FROM action_links WHERE id = ?", (link["id"],)).fetchone()[0]
    assert stored == hash_token(link["token"])
    assert stored != link["token"]
    assert [row["action"] for row in list_audit(conn, TENANT, target_type="action_link")] == ["action_link.created"]


@pytest.mark.parametrize(
    "kwargs, code",
    [
        ({"email": None, "phone": "  "}, "LINK_RECIPIENT"),
        ({"expires_in_minutes": 4}, "LINK_EXPIRY"),
        ({"expires_in_minutes": 43201}, "LINK_EXPIRY"),
        ({"max_uses": 0}, "LINK_MAX_USES"),
        ({"max_uses": 101}, "LINK_MAX_USES"),
    ],
)
def test_create_link_validation(conn, kwargs, code) -> None:
    with pytest.raises(ValidationError) as excinfo:
        _link(conn, **kwargs)
    assert excinfo.value.error_code == code


def test_create_link_rejects_unknown_action(conn) -> None:
    with pytest.raises(ValidationError) as excinfo:
        create_action_link(conn, TENANT, "wire_money", email="a@b.c")
    assert excinfo.value.error_code == "LINK_ACTION_TYPE"


def test_verify_link_states(conn) -> None:
    link = _link(conn)
    verified = verify_action_link(conn, link["token"], now=NOW)
    assert verified["metadata"] == {"quote_id": 7}
    assert verified["tenant_id"] == TENANT

    with pytest.raises(ActionLinkError) as excinfo:
        verify_action_link(conn, link["token"], now=NOW + timedelta(minutes=61))
    assert excinfo.value.error_code == "LINK_EXPIRED"
    with pytest.raises(ActionLinkError) as excinfo:
        verify_action_link(conn, "tooshort", now=NOW)
    assert excinfo.value.error_code == "LINK_TOKEN_INVALID"
    with pytest.raises(ActionLinkError) as excinfo:
        verify_action_link(conn, "x" * 43, now=NOW)
    assert excinfo.value.error_code == "LINK_NOT_FOUND"

    revoke_action_link(conn, TENANT, link["id"], actor="ops")
    with pytest.raises(ActionLinkError) as excinfo:
        verify_action_link(conn, link["token"], now=NOW)
    assert excinfo.value.error_code == "LINK_INACTIVE"
    with pytest.raises(ActionLinkError):
        revoke_action_link(conn, TENANT, link["id"])


def test_consume_requires_idempotency_key(conn) -> None:
    link = _link(conn)
    with pytest.raises(ValidationError) as excinfo:
        consume_action_link(conn, link["token"], idempotency_key=" ", email="client@example.com", now=NOW)
    assert excinfo.value.error_code == "IDEMPOTENCY_KEY_REQUIRED"


def test_consume_checks_identity(conn) -> None:
    link = _link(conn, phone="+1 (212) 555-0101")
    with pytest.raises(ActionLinkError) as excinfo:
        consume_action_link(conn, link["token"], idempotency_key="k1", email="someone@else.com", now=NOW)
    assert excinfo.value.error_code == "LINK_IDENTITY_MISMATCH"

    result = consume_action_link(conn, link["token"], idempotency_key="k2", phone="12125550101", now=NOW)
    assert result["ok"] and result["consumed"]


def test_consume_single_use_then_exhausted(conn) -> None:
    link = _link(conn)
    result = consume_action_link(
        conn, link["token"], idempotency_key="k1", email="Client@Example.com", payload={"option_id": 3}, now=NOW
    )
    assert result == {"ok": True, "consumed": True, "action_type": "quote", "metadata": {"quote_id": 7}}
    row = conn.execute("SELECT status, use_count, consumed_at FROM action_links WHERE id = ?", (link["id"],)).fetchone()
    assert row[0] == "consumed"
    assert row[1] == 1
    assert row[2] == NOW.isoformat()

    # Replaying the same key inside the TTL is a no-op.
    replay = consume_action_link(conn, link["token"], idempotency_key="k1", email="client@example.com", now=NOW)
    assert replay == {"ok": True, "idempotent": True}

    with pytest.raises(ActionLinkError) as excinfo:
        consume_action_link(conn, link["token"], idempotency_key="k2", email="client@example.com", now=NOW)
    assert excinfo.value.error_code == "LINK_INACTIVE"
    actions = [row["action"] for row in list_audit(conn, TENANT)]
    assert actions.count("action_link.consumed") == 1


def test_multi_use_link_and_key_expiry(conn) -> None:
    link = _link(conn, max_uses=2)
    first = consume_action_link(conn, link["token"], idempotency_key="k1", email="client@example.com", now=NOW)
    assert first["consumed"] is False
    # After the TTL the same key counts as a new request.
    later = NOW + timedelta(seconds=config.IDEMPOTENCY_TTL_SECONDS + 1)
    second = consume_action_link(conn, link["token"], idempotency_key="k1", email="client@example.com", now=later)
    assert second["consumed"] is True


def test_failed_consume_does_not_record_key(conn) -> None:
    link = _link(conn)
    with pytest.raises(ActionLinkError):
        consume_action_link(conn, link["token"], idempotency_key="k1", email="wrong@example.com", now=NOW)
    result = consume_action_link(conn, link["token"], idempotency_key="k1", email="client@example.com", now=NOW)
    assert result["consumed"] is True


def test_consume_rate_limited_per_ip(conn, monkeypatch) -> None:
    monkeypatch.setattr(config, "LINK_RATE_LIMIT_PER_MINUTE", 2)
    link = _link(conn, max_uses=5)
    for key in ("k1", "k2"):
        consume_action_link(conn, link["token"], idempotency_key=key, email="client@example.com", ip="1.2.3.4", now=NOW)
    with pytest.raises(RateLimitError):
        consume_action_link(conn, link["token"], idempotency_key="k3", email="client@example.com", ip="1.2.3.4", now=NOW)
    # Other sources and the next window are unaffected.
    consume_action_link(conn, link["token"], idempotency_key="k4", email="client@example.com", ip="5.6.7.8", now=NOW)
    consume_action_link(
        conn, link["token"], idempotency_key="k5", email="client@example.com", ip="1.2.3.4",
        now=NOW + timedelta(seconds=61),
    )
