"""Aircraft models, tails, crew roster and the service item catalogue."""
from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Dict, Iterable, List, Optional

from charterdesk.errors import NotFoundError, ValidationError
from charterdesk.schema import CREW_ROLES, fetch_dict, fetch_dicts, utc_now

logger = logging.getLogger(__name__)

MODEL_FIELDS = ("manufacturer", "name", "size_class", "pax_capacity", "range_nm", "cruise_speed_kts")
AIRCRAFT_FIELDS = (
    "model_id",
    "tail_number",
    "operator_name",
    "year_of_manufacture",
    "pax_capacity",
    "home_base",
    "status",
    "notes",
)
CREW_FIELDS = ("full_name", "role", "email", "phone", "notes", "active")
ITEM_FIELDS = ("name", "description", "default_unit_price", "taxable", "active")


def _strip(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip() or None
    return value


def _check_fields(fields: Dict[str, Any], allowed: Iterable[str], kind: str) -> Dict[str, Any]:
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValidationError(f"Unknown {kind} fields: {', '.join(sorted(unknown))}")
    return {name: _strip(value) for name, value in fields.items()}


def _update_row(
    conn: sqlite3.Connection, table: str, tenant_id: str, row_id: int, fields: Dict[str, Any]
) -> None:
    if not fields:
        return
    assignments = ", ".join(f"{name} = ?" for name in fields)
    conn.execute(
        f"UPDATE {table} SET {assignments}, updated_at = ? WHERE id = ? AND tenant_id = ?",
        (*fields.values(), utc_now(), row_id, tenant_id),
    )
    conn.commit()


# Aircraft models ----------------------------------------------------------


def create_aircraft_model(
    conn: sqlite3.Connection,
    tenant_id: str,
    manufacturer: str,
    name: str,
    *,
    size_class: Optional[str] = None,
    pax_capacity: Optional[int] = None,
    range_nm: Optional[float] = None,
    cruise_speed_kts: Optional[float] = None,
) -> int:
    manufacturer = (manufacturer or "").strip()
    name = (name or "").strip()
    if not manufacturer or not name:
        raise ValidationError("Aircraft model requires a manufacturer and a name.")
    timestamp = utc_now()
    cursor = conn.execute(
        """
        INSERT INTO aircraft_models
            (tenant_id, manufacturer, name, size_class, pax_capacity, range_nm,
             cruise_speed_kts, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            tenant_id,
            manufacturer,
            name,
            _strip(size_class),
            pax_capacity,
            range_nm,
            cruise_speed_kts,
            timestamp,
            timestamp,
        ),
    )
    conn.commit()
    return int(cursor.lastrowid)


def get_aircraft_model(conn: sqlite3.Connection, tenant_id: str, model_id: int) -> Dict[str, Any]:
    row = fetch_dict(
        conn,
        "SELECT * FROM aircraft_models WHERE id = ? AND tenant_id = ?",
        (model_id, tenant_id),
    )
    if row is None:
        raise NotFoundError(f"Aircraft model {model_id} not found")
    return row


def update_aircraft_model(
    conn: sqlite3.Connection, tenant_id: str, model_id: int, **fields: Any
) -> Dict[str, Any]:
    get_aircraft_model(conn, tenant_id, model_id)
    _update_row(conn, "aircraft_models", tenant_id, model_id, _check_fields(fields, MODEL_FIELDS, "model"))
    return get_aircraft_model(conn, tenant_id, model_id)


def list_aircraft_models(
    conn: sqlite3.Connection, tenant_id: str, size_class: Optional[str] = None
) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM aircraft_models WHERE tenant_id = ?"
    params: List[Any] = [tenant_id]
    if size_class:
        sql += " AND size_class = ?"
        params.append(size_class)
    sql += " ORDER BY manufacturer, name"
    return fetch_dicts(conn, sql, params)


def list_size_classes(conn: sqlite3.Connection, tenant_id: str) -> List[str]:
    rows = conn.execute(
        "SELECT DISTINCT size_class FROM aircraft_models WHERE tenant_id = ? AND size_class IS NOT NULL ORDER BY size_class",
        (tenant_id,),
    ).fetchall()
    return [row[0] for row in rows]


def list_manufacturers(conn: sqlite3.Connection, tenant_id: str) -> List[str]:
    rows = conn.execute(
        "SELECT DISTINCT manufacturer FROM aircraft_models WHERE tenant_id = ? ORDER BY manufacturer",
        (tenant_id,),
    ).fetchall()
    return [row[0] for row in rows]


# Aircraft tails -----------------------------------------------------------


def normalize_tail_number(tail_number: Optional[str]) -> str:
    cleaned = "".join((tail_number or "").split()).upper()
    if not cleaned:
        raise ValidationError("Aircraft requires a tail number.", error_code="TAIL_REQUIRED")
    return cleaned


def _decode_aircraft(row: Dict[str, Any]) -> Dict[str, Any]:
    try:
        row["amenities"] = json.loads(row.get("amenities") or "[]")
    except json.JSONDecodeError:
        logger.warning("Invalid amenities JSON on aircraft %s", row.get("id"))
        row["amenities"] = []
    return row


def _clean_amenities(amenities: Optional[Iterable[str]]) -> List[str]:
    seen: List[str] = []
    for amenity in amenities or ():
        cleaned = str(amenity).strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


def create_aircraft(
    conn: sqlite3.Connection,
    tenant_id: str,
    tail_number: str,
    *,
    model_id: Optional[int] = None,
    operator_name: Optional[str] = None,
    year_of_manufacture: Optional[int] = None,
    pax_capacity: Optional[int] = None,
    home_base: Optional[str] = None,
    amenities: Optional[Iterable[str]] = None,
    notes: Optional[str] = None,
) -> int:
    tail = normalize_tail_number(tail_number)
    if model_id is not None:
        get_aircraft_model(conn, tenant_id, model_id)
    existing = fetch_dict(
        conn,
        "SELECT id FROM aircraft WHERE tenant_id = ? AND tail_number = ?",
        (tenant_id, tail),
    )
    if existing:
        raise ValidationError(
            f"Tail number {tail} already exists", error_code="TAIL_DUPLICATE", context={"id": existing["id"]}
        )
    timestamp = utc_now()
    cursor = conn.execute(
        """
        INSERT INTO aircraft
            (tenant_id, model_id, tail_number, operator_name, year_of_manufacture,
             pax_capacity, home_base, amenities, notes, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            tenant_id,
            model_id,
            tail,
            _strip(operator_name),
            year_of_manufacture,
            pax_capacity,
            _strip(home_base),
            json.dumps(_clean_amenities(amenities)),
            _strip(notes),
            timestamp,
            timestamp,
        ),
    )
    conn.commit()
    return int(cursor.lastrowid)


def get_aircraft(conn: sqlite3.Connection, tenant_id: str, aircraft_id: int) -> Dict[str, Any]:
    row = fetch_dict(
        conn,
        """
        SELECT a.*, m.manufacturer, m.name AS model_name, m.size_class, m.cruise_speed_kts
        FROM aircraft a
        LEFT JOIN aircraft_models m ON m.id = a.model_id
        WHERE a.id = ? AND a.tenant_id = ?
        """,
        (aircraft_id, tenant_id),
    )
    if row is None:
        raise NotFoundError(f"Aircraft {aircraft_id} not found", context={"aircraft_id": aircraft_id})
    return _decode_aircraft(row)


def update_aircraft(
    conn: sqlite3.Connection, tenant_id: str, aircraft_id: int, **fields: Any
) -> Dict[str, Any]:
    get_aircraft(conn, tenant_id, aircraft_id)
    cleaned = _check_fields(fields, AIRCRAFT_FIELDS, "aircraft")
    if "tail_number" in cleaned:
        cleaned["tail_number"] = normalize_tail_number(cleaned["tail_number"])
        clash = fetch_dict(
            conn,
            "SELECT id FROM aircraft WHERE tenant_id = ? AND tail_number = ? AND id != ?",
            (tenant_id, cleaned["tail_number"], aircraft_id),
        )
        if clash:
            raise ValidationError(
                f"Tail number {cleaned['tail_number']} already exists", error_code="TAIL_DUPLICATE"
            )
    if cleaned.get("status") not in (None, "active", "inactive"):
        raise ValidationError(f"Unknown aircraft status: {cleaned['status']}")
    _update_row(conn, "aircraft", tenant_id, aircraft_id, cleaned)
    return get_aircraft(conn, tenant_id, aircraft_id)


def set_amenities(
    conn: sqlite3.Connection, tenant_id: str, aircraft_id: int, amenities: Iterable[str]
) -> List[str]:
    get_aircraft(conn, tenant_id, aircraft_id)
    cleaned = _clean_amenities(amenities)
    _update_row(conn, "aircraft", tenant_id, aircraft_id, {"amenities": json.dumps(cleaned)})
    return cleaned


def list_aircraft(
    conn: sqlite3.Connection, tenant_id: str, *, include_inactive: bool = False
) -> List[Dict[str, Any]]:
    sql = """
        SELECT a.*, m.manufacturer, m.name AS model_name, m.size_class, m.cruise_speed_kts
        FROM aircraft a
        LEFT JOIN aircraft_models m ON m.id = a.model_id
        WHERE a.tenant_id = ?
    """
    if not include_inactive:
        sql += " AND a.status = 'active'"
    sql += " ORDER BY a.tail_number"
    return [_decode_aircraft(row) for row in fetch_dicts(conn, sql, (tenant_id,))]


def delete_aircraft(conn: sqlite3.Connection, tenant_id: str, aircraft_id: int) -> None:
    get_aircraft(conn, tenant_id, aircraft_id)
    conn.execute("DELETE FROM aircraft WHERE id = ? AND tenant_id = ?", (aircraft_id, tenant_id))
    conn.commit()


def aircraft_label(aircraft: Optional[Dict[str, Any]]) -> Optional[str]:
    if not aircraft:
        return None
    model = " ".join(
        part for part in (aircraft.get("manufacturer"), aircraft.get("model_name")) if part
    )
    tail = aircraft.get("tail_number")
    if tail and model:
        return f"{tail} · {model}"
    return tail or model or None


# Crew ---------------------------------------------------------------------


def _check_role(role: Optional[str]) -> str:
    if role not in CREW_ROLES:
        raise ValidationError(
            f"Invalid crew role: {role}. Expected one of {', '.join(CREW_ROLES)}",
            error_code="CREW_ROLE",
        )
    return role


def create_crew_member(
    conn: sqlite3.Connection,
    tenant_id: str,
    full_name: str,
    role: str,
    *,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    notes: Optional[str] = None,
) -> int:
    name = (full_name or "").strip()
    if not name:
        raise ValidationError("Crew member requires a name.")
    timestamp = utc_now()
    cursor = conn.execute(
        """
        INSERT INTO crew (tenant_id, full_name, role, email, phone, notes, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (tenant_id, name, _check_role(role), _strip(email), _strip(phone), _strip(notes), timestamp, timestamp),
    )
    conn.commit()
    return int(cursor.lastrowid)


def update_crew_member(
    conn: sqlite3.Connection, tenant_id: str, crew_id: int, **fields: Any
) -> Dict[str, Any]:
    cleaned = _check_fields(fields, CREW_FIELDS, "crew")
    if "role" in cleaned:
        _check_role(cleaned["role"])
    if fetch_dict(conn, "SELECT id FROM crew WHERE id = ? AND tenant_id = ?", (crew_id, tenant_id)) is None:
        raise NotFoundError(f"Crew member {crew_id} not found")
    _update_row(conn, "crew", tenant_id, crew_id, cleaned)
    return fetch_dict(conn, "SELECT * FROM crew WHERE id = ?", (crew_id,))  # type: ignore[return-value]


def list_crew(
    conn: sqlite3.Connection, tenant_id: str, role: Optional[str] = None, *, active_only: bool = True
) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM crew WHERE tenant_id = ?"
    params: List[Any] = [tenant_id]
    if role:
        sql += " AND role = ?"
        params.append(_check_role(role))
    if active_only:
        sql += " AND active = 1"
    sql += " ORDER BY full_name"
    return fetch_dicts(conn, sql, params)


def delete_crew_member(conn: sqlite3.Connection, tenant_id: str, crew_id: int) -> None:
    cursor = conn.execute("DELETE FROM crew WHERE id = ? AND tenant_id = ?", (crew_id, tenant_id))
    if cursor.rowcount == 0:
        raise NotFoundError(f"Crew member {crew_id} not found")
    conn.commit()


# Service items ------------------------------------------------------------


def create_item(
    conn: sqlite3.Connection,
    tenant_id: str,
    name: str,
    *,
    description: Optional[str] = None,
    default_unit_price: float = 0.0,
    taxable: bool = True,
) -> int:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Service item requires a name.")
    if default_unit_price < 0:
        raise ValidationError("Service item price cannot be negative.")
    timestamp = utc_now()
    cursor = conn.execute(
        """
        INSERT INTO items (tenant_id, name, description, default_unit_price, taxable, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (tenant_id, cleaned, _strip(description), float(default_unit_price), int(bool(taxable)), timestamp, timestamp),
    )
    conn.commit()
    return int(cursor.lastrowid)


def get_item(conn: sqlite3.Connection, tenant_id: str, item_id: int) -> Optional[Dict[str, Any]]:
    return fetch_dict(conn, "SELECT * FROM items WHERE id = ? AND tenant_id = ?", (item_id, tenant_id))


def update_item(conn: sqlite3.Connection, tenant_id: str, item_id: int, **fields: Any) -> Dict[str, Any]:
    if get_item(conn, tenant_id, item_id) is None:
        raise NotFoundError(f"Service item {item_id} not found")
    cleaned = _check_fields(fields, ITEM_FIELDS, "item")
    for flag in ("taxable", "active"):
        if flag in cleaned:
            cleaned[flag] = int(bool(cleaned[flag]))
    _update_row(conn, "items", tenant_id, item_id, cleaned)
    return get_item(conn, tenant_id, item_id)  # type: ignore[return-value]


def list_items(conn: sqlite3.Connection, tenant_id: str, *, active_only: bool = True) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM items WHERE tenant_id = ?"
    if active_only:
        sql += " AND active = 1"
    sql += " ORDER BY name"
    return fetch_dicts(conn, sql, (tenant_id,))


__all__ = [
    "aircraft_label",
    "create_aircraft",
    "create_aircraft_model",
    "create_crew_member",
    "create_item",
    "delete_aircraft",
    "delete_crew_member",
    "get_aircraft",
    "get_aircraft_model",
    "get_item",
    "list_aircraft",
    "list_aircraft_models",
    "list_crew",
    "list_items",
    "list_manufacturers",
    "list_size_classes",
    "normalize_tail_number",
    "set_amenities",
    "update_aircraft",
    "update_aircraft_model",
    "update_crew_member",
    "update_item",
]
