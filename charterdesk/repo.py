"""Contact and passenger persistence helpers."""
from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from charterdesk.errors import NotFoundError, ValidationError
from charterdesk.schema import fetch_dict, fetch_dicts, utc_now

logger = logging.getLogger(__name__)

CONTACT_FIELD_NAMES = (
    "full_name",
    "first_name",
    "last_name",
    "company",
    "email",
    "phone",
    "notes",
)

PASSENGER_FIELD_NAMES = (
    "contact_id",
    "full_name",
    "email",
    "phone",
    "date_of_birth",
    "nationality",
    "passport_number",
    "passport_expiry",
    "dietary_restrictions",
    "notes",
)

_CONTACT_COLUMNS = "id, " + ", ".join(CONTACT_FIELD_NAMES) + ", created_at, updated_at"
_PASSENGER_COLUMNS = "id, " + ", ".join(PASSENGER_FIELD_NAMES) + ", created_at, updated_at"


def digits_only(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    digits = re.sub(r"\D+", "", value)
    return digits or None


@dataclass
class ContactDetails:
    full_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        for field_name in CONTACT_FIELD_NAMES:
            value = getattr(self, field_name)
            if isinstance(value, str):
                cleaned = value.strip()
                setattr(self, field_name, cleaned or None)
        if not self.full_name and (self.first_name or self.last_name):
            self.full_name = " ".join(p for p in (self.first_name, self.last_name) if p)

    def has_any_data(self) -> bool:
        return any(getattr(self, field_name) for field_name in CONTACT_FIELD_NAMES)

    def has_identity(self) -> bool:
        return bool(self.full_name or self.company or self.email)

    def display_name(self) -> Optional[str]:
        if self.full_name:
            return self.full_name
        if self.company:
            return self.company
        return self.email or self.phone

    @property
    def normalized_phone(self) -> Optional[str]:
        return digits_only(self.phone)

    @property
    def name_key(self) -> Optional[str]:
        if self.full_name:
            return " ".join(self.full_name.lower().split())
        return None

    @property
    def email_key(self) -> Optional[str]:
        return self.email.lower() if self.email else None


@dataclass
class ContactMatch:
    id: int
    display_name: str
    reason: str


def _details_from_row(row: Dict[str, Any]) -> ContactDetails:
    return ContactDetails(**{name: row.get(name) for name in CONTACT_FIELD_NAMES})


def create_contact(
    conn: sqlite3.Connection, tenant_id: str, details: ContactDetails, *, commit: bool = True
) -> int:
    if not details.has_identity():
        raise ValidationError(
            "Contact requires a full name, company or email to be saved.",
            error_code="CONTACT_IDENTITY",
        )
    timestamp = utc_now()
    cursor = conn.execute(
        f"""
        INSERT INTO contacts (tenant_id, {", ".join(CONTACT_FIELD_NAMES)}, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (tenant_id, *(getattr(details, name) for name in CONTACT_FIELD_NAMES), timestamp, timestamp),
    )
    if commit:
        conn.commit()
    return int(cursor.lastrowid)


def get_contact(conn: sqlite3.Connection, tenant_id: str, contact_id: int) -> Dict[str, Any]:
    row = fetch_dict(
        conn,
        f"SELECT {_CONTACT_COLUMNS} FROM contacts WHERE id = ? AND tenant_id = ?",
        (contact_id, tenant_id),
    )
    if row is None:
        raise NotFoundError(f"Contact {contact_id} not found", context={"contact_id": contact_id})
    return row


def update_contact(
    conn: sqlite3.Connection, tenant_id: str, contact_id: int, **fields: Any
) -> Dict[str, Any]:
    """Update only the provided contact fields and return the stored row."""

    get_contact(conn, tenant_id, contact_id)
    unknown = set(fields) - set(CONTACT_FIELD_NAMES)
    if unknown:
        raise ValidationError(f"Unknown contact fields: {', '.join(sorted(unknown))}")
    cleaned = ContactDetails(**fields)
    updates = {name: getattr(cleaned, name) for name in fields}
    if updates:
        assignments = ", ".join(f"{name} = ?" for name in updates)
        conn.execute(
            f"UPDATE contacts SET {assignments}, updated_at = ? WHERE id = ? AND tenant_id = ?",
            (*updates.values(), utc_now(), contact_id, tenant_id),
        )
        conn.commit()
    return get_contact(conn, tenant_id, contact_id)


def list_contacts(
    conn: sqlite3.Connection, tenant_id: str, search: Optional[str] = None
) -> List[Dict[str, Any]]:
    sql = f"SELECT {_CONTACT_COLUMNS} FROM contacts WHERE tenant_id = ?"
    params: List[Any] = [tenant_id]
    if search and search.strip():
        like = f"%{search.strip().lower()}%"
        sql += (
            " AND (lower(COALESCE(full_name, '')) LIKE ? OR lower(COALESCE(company, '')) LIKE ?"
            " OR lower(COALESCE(email, '')) LIKE ? OR COALESCE(phone, '') LIKE ?)"
        )
        params.extend([like, like, like, like])
    sql += " ORDER BY lower(COALESCE(full_name, company, email, ''))"
    return fetch_dicts(conn, sql, params)


def delete_contact(conn: sqlite3.Connection, tenant_id: str, contact_id: int) -> None:
    get_contact(conn, tenant_id, contact_id)
    conn.execute("DELETE FROM contacts WHERE id = ? AND tenant_id = ?", (contact_id, tenant_id))
    conn.commit()


def find_contact_matches(
    conn: sqlite3.Connection, tenant_id: str, details: ContactDetails
) -> List[ContactMatch]:
    """Return existing contacts sharing a name, e-mail or phone with *details*."""

    name_key = details.name_key
    email_key = details.email_key
    phone_key = details.normalized_phone
    if not any((name_key, email_key, phone_key)):
        return []

    matches: List[ContactMatch] = []
    for row in fetch_dicts(
        conn, f"SELECT {_CONTACT_COLUMNS} FROM contacts WHERE tenant_id = ?", (tenant_id,)
    ):
        row_details = _details_from_row(row)
        reasons: List[str] = []
        if name_key and row_details.name_key == name_key:
            reasons.append("matching name")
        if email_key and row_details.email_key == email_key:
            reasons.append("matching email")
        if phone_key and row_details.normalized_phone == phone_key:
            reasons.append("matching phone")
        if reasons:
            display = row_details.display_name() or f"Contact #{row['id']}"
            matches.append(ContactMatch(id=int(row["id"]), display_name=display, reason=", ".join(reasons)))
    return matches


def ensure_contact_record(
    conn: sqlite3.Connection,
    tenant_id: str,
    details: Optional[ContactDetails],
    contact_id: Optional[int] = None,
) -> Tuple[Optional[int], Optional[str]]:
    """Link to *contact_id* or an e-mail match, creating a contact when needed.

    Missing fields on an existing contact are filled in. Does not commit.
    """

    timestamp = utc_now()
    if contact_id is None and details is not None and details.email_key:
        existing = fetch_dict(
            conn,
            "SELECT id FROM contacts WHERE tenant_id = ? AND lower(email) = ? ORDER BY id LIMIT 1",
            (tenant_id, details.email_key),
        )
        if existing:
            contact_id = int(existing["id"])

    if contact_id is not None:
        row = fetch_dict(
            conn,
            f"SELECT {_CONTACT_COLUMNS} FROM contacts WHERE id = ? AND tenant_id = ?",
            (contact_id, tenant_id),
        )
        if row is not None:
            if details is not None and details.has_any_data():
                updates = [
                    (name, getattr(details, name))
                    for name in CONTACT_FIELD_NAMES
                    if getattr(details, name)
                ]
                if updates:
                    assignments = ", ".join(f"{name} = COALESCE({name}, ?)" for name, _ in updates)
                    conn.execute(
                        f"UPDATE contacts SET {assignments}, updated_at = ? WHERE id = ?",
                        (*(value for _, value in updates), timestamp, contact_id),
                    )
            return contact_id, _details_from_row(row).display_name()
        logger.warning("Contact %s not found for tenant %s", contact_id, tenant_id)

    if details is None or not details.has_any_data():
        return None, None
    if not details.has_identity():
        return None, details.display_name()
    new_id = create_contact(conn, tenant_id, details, commit=False)
    return new_id, details.display_name()


# Passengers ---------------------------------------------------------------


def _clean_passenger_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - set(PASSENGER_FIELD_NAMES)
    if unknown:
        raise ValidationError(f"Unknown passenger fields: {', '.join(sorted(unknown))}")
    cleaned: Dict[str, Any] = {}
    for name, value in fields.items():
        if isinstance(value, str):
            value = value.strip() or None
        cleaned[name] = value
    return cleaned


def create_passenger(
    conn: sqlite3.Connection, tenant_id: str, full_name: str, **fields: Any
) -> int:
    cleaned = _clean_passenger_fields({"full_name": full_name, **fields})
    if not cleaned.get("full_name"):
        raise ValidationError("Passenger requires a full name.", error_code="PASSENGER_NAME")
    if cleaned.get("contact_id") is not None:
        get_contact(conn, tenant_id, int(cleaned["contact_id"]))
    timestamp = utc_now()
    columns = list(cleaned)
    cursor = conn.execute(
        f"""
        INSERT INTO passengers (tenant_id, {", ".join(columns)}, created_at, updated_at)
        VALUES (?, {", ".join("?" for _ in columns)}, ?, ?)
        """,
        (tenant_id, *cleaned.values(), timestamp, timestamp),
    )
    conn.commit()
    return int(cursor.lastrowid)


def get_passenger(conn: sqlite3.Connection, tenant_id: str, passenger_id: int) -> Dict[str, Any]:
    row = fetch_dict(
        conn,
        f"SELECT {_PASSENGER_COLUMNS} FROM passengers WHERE id = ? AND tenant_id = ?",
        (passenger_id, tenant_id),
    )
    if row is None:
        raise NotFoundError(
            f"Passenger {passenger_id} not found", context={"passenger_id": passenger_id}
        )
    return row


def update_passenger(
    conn: sqlite3.Connection, tenant_id: str, passenger_id: int, **fields: Any
) -> Dict[str, Any]:
    get_passenger(conn, tenant_id, passenger_id)
    cleaned = _clean_passenger_fields(fields)
    if "full_name" in cleaned and not cleaned["full_name"]:
        raise ValidationError("Passenger requires a full name.", error_code="PASSENGER_NAME")
    if cleaned:
        assignments = ", ".join(f"{name} = ?" for name in cleaned)
        conn.execute(
            f"UPDATE passengers SET {assignments}, updated_at = ? WHERE id = ? AND tenant_id = ?",
            (*cleaned.values(), utc_now(), passenger_id, tenant_id),
        )
        conn.commit()
    return get_passenger(conn, tenant_id, passenger_id)


def list_passengers(
    conn: sqlite3.Connection, tenant_id: str, search: Optional[str] = None
) -> List[Dict[str, Any]]:
    sql = f"SELECT {_PASSENGER_COLUMNS} FROM passengers WHERE tenant_id = ?"
    params: List[Any] = [tenant_id]
    if search and search.strip():
        like = f"%{search.strip().lower()}%"
        sql += " AND (lower(full_name) LIKE ? OR lower(COALESCE(email, '')) LIKE ?)"
        params.extend([like, like])
    sql += " ORDER BY lower(full_name)"
    return fetch_dicts(conn, sql, params)


def delete_passenger(conn: sqlite3.Connection, tenant_id: str, passenger_id: int) -> None:
    get_passenger(conn, tenant_id, passenger_id)
    conn.execute(
        "DELETE FROM passengers WHERE id = ? AND tenant_id = ?", (passenger_id, tenant_id)
    )
    conn.commit()


def passenger_history(
    conn: sqlite3.Connection, tenant_id: str, passenger_id: int
) -> List[Dict[str, Any]]:
    """Itinerary legs the passenger is assigned to, newest departure first."""

    get_passenger(conn, tenant_id, passenger_id)
    return fetch_dicts(
        conn,
        """
        SELECT i.id AS itinerary_id, i.title, i.status, d.seq,
               d.origin_code, d.destination_code, d.depart_at
        FROM itinerary_passengers ip
        JOIN itineraries i ON i.id = ip.itinerary_id
        JOIN itinerary_details d ON d.itinerary_id = i.id
        WHERE ip.passenger_id = ? AND ip.tenant_id = ? AND i.tenant_id = ?
        ORDER BY COALESCE(d.depart_at, '') DESC, d.seq DESC
        """,
        (passenger_id, tenant_id, tenant_id),
    )


__all__ = [
    "CONTACT_FIELD_NAMES",
    "ContactDetails",
    "ContactMatch",
    "PASSENGER_FIELD_NAMES",
    "create_contact",
    "create_passenger",
    "delete_contact",
    "delete_passenger",
    "digits_only",
    "ensure_contact_record",
    "find_contact_matches",
    "get_contact",
    "get_passenger",
    "list_contacts",
    "list_passengers",
    "passenger_history",
    "update_contact",
    "update_passenger",
]
