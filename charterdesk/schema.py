"""Database schema helpers for the CharterDesk back office."""
from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

AIRPORTS: Sequence[tuple] = (
    # code, name, municipality, country, iata, icao, type, lat, lon
    ("FXE", "Fort Lauderdale Executive", "Fort Lauderdale", "US", "FXE", "KFXE", "medium_airport", 26.1973, -80.1707),
    ("TEB", "Teterboro", "Teterboro", "US", "TEB", "KTEB", "medium_airport", 40.8501, -74.0606),
    ("MIA", "Miami International", "Miami", "US", "MIA", "KMIA", "large_airport", 25.7617, -80.1918),
    ("ASE", "Aspen/Pitkin County", "Aspen", "US", "ASE", "KASE", "medium_airport", 39.2232, -106.8687),
    ("VNY", "Van Nuys", "Los Angeles", "US", "VNY", "KVNY", "medium_airport", 34.2098, -118.4898),
    ("LAX", "Los Angeles International", "Los Angeles", "US", "LAX", "KLAX", "large_airport", 33.9425, -118.4081),
    ("JFK", "John F. Kennedy International", "New York", "US", "JFK", "KJFK", "large_airport", 40.6413, -73.7781),
    ("DFW", "Dallas/Fort Worth International", "Dallas", "US", "DFW", "KDFW", "large_airport", 32.8998, -97.0403),
    ("BOS", "Boston Logan International", "Boston", "US", "BOS", "KBOS", "large_airport", 42.3656, -71.0096),
    ("SFO", "San Francisco International", "San Francisco", "US", "SFO", "KSFO", "large_airport", 37.6213, -122.379),
    ("DCA", "Ronald Reagan Washington National", "Washington", "US", "DCA", "KDCA", "large_airport", 38.8512, -77.0402),
    ("ORD", "Chicago O'Hare International", "Chicago", "US", "ORD", "KORD", "large_airport", 41.9742, -87.9073),
    ("SEA", "Seattle-Tacoma International", "Seattle", "US", "SEA", "KSEA", "large_airport", 47.4502, -122.3088),
    ("PHX", "Phoenix Sky Harbor International", "Phoenix", "US", "PHX", "KPHX", "large_airport", 33.4373, -112.0078),
    ("LHR", "London Heathrow", "London", "GB", "LHR", "EGLL", "large_airport", 51.4700, -0.4543),
    ("LBG", "Paris Le Bourget", "Paris", "FR", "LBG", "LFPB", "medium_airport", 48.9694, 2.4414),
    ("NCE", "Nice Cote d'Azur", "Nice", "FR", "NCE", "LFMN", "large_airport", 43.6584, 7.2159),
    ("YYZ", "Toronto Pearson International", "Toronto", "CA", "YYZ", "CYYZ", "large_airport", 43.6777, -79.6248),
    ("MEX", "Mexico City International", "Mexico City", "MX", "MEX", "MMMX", "large_airport", 19.4361, -99.0719),
)

DEFAULT_ITEMS: Sequence[tuple] = (
    # name, description, default unit price, taxable
    ("Catering", "Standard catering package per leg", 350.0, 1),
    ("Ground transportation", "Car service to and from the FBO", 250.0, 1),
    ("Crew overnight", "Hotel and per diem for crew overnights", 600.0, 0),
    ("De-icing", "De-icing fluid and service", 1500.0, 1),
    ("International handling", "Customs, permits and overflight handling", 900.0, 0),
)

QUOTE_STATUSES: Sequence[str] = (
    "draft",
    "pending_response",
    "opened",
    "client_accepted",
    "availability_confirmed",
    "pending_payment",
    "payment_received",
    "itinerary_created",
    "declined",
    "expired",
)

ITINERARY_STATUSES: Sequence[str] = (
    "draft",
    "trip_confirmed",
    "in_progress",
    "completed",
    "cancelled",
)

LEAD_STATUSES: Sequence[str] = ("new", "opened", "converted", "deleted")
INVOICE_STATUSES: Sequence[str] = ("issued", "paid", "void")
CREW_ROLES: Sequence[str] = ("PIC", "SIC", "Cabin Attendance")
MEMBER_ROLES: Sequence[str] = ("owner", "admin", "broker", "viewer")
ACTION_TYPES: Sequence[str] = ("quote", "invoice", "view_itinerary", "other")


def _check_list(values: Sequence[str]) -> str:
    return ", ".join(f"'{value}'" for value in values)


SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS tenants (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  primary_color TEXT NOT NULL DEFAULT '#1f3a5f',
  logo_url TEXT,
  currency TEXT NOT NULL DEFAULT 'USD',
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS members (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  user_id TEXT NOT NULL,
  email TEXT NOT NULL,
  full_name TEXT,
  role TEXT NOT NULL DEFAULT 'broker' CHECK(role IN ({_check_list(MEMBER_ROLES)})),
  active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
  created_at TEXT NOT NULL,
  UNIQUE(tenant_id, user_id)
);

CREATE TABLE IF NOT EXISTS tenant_parameters (
  tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  key TEXT NOT NULL,
  value_numeric REAL,
  value_text TEXT,
  description TEXT,
  updated_at TEXT NOT NULL,
  PRIMARY KEY(tenant_id, key)
);

CREATE TABLE IF NOT EXISTS airports (
  code TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  municipality TEXT,
  country_code TEXT,
  iata_code TEXT,
  icao_code TEXT,
  airport_type TEXT,
  latitude REAL,
  longitude REAL
);

CREATE TABLE IF NOT EXISTS contacts (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  full_name TEXT,
  first_name TEXT,
  last_name TEXT,
  company TEXT,
  email TEXT,
  phone TEXT,
  notes TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS passengers (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  contact_id INTEGER REFERENCES contacts(id) ON DELETE SET NULL,
  full_name TEXT NOT NULL,
  email TEXT,
  phone TEXT,
  date_of_birth TEXT,
  nationality TEXT,
  passport_number TEXT,
  passport_expiry TEXT,
  dietary_restrictions TEXT,
  notes TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS aircraft_models (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  manufacturer TEXT NOT NULL,
  name TEXT NOT NULL,
  size_class TEXT,
  pax_capacity INTEGER,
  range_nm REAL,
  cruise_speed_kts REAL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE(tenant_id, manufacturer, name)
);

CREATE TABLE IF NOT EXISTS aircraft (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  model_id INTEGER REFERENCES aircraft_models(id) ON DELETE SET NULL,
  tail_number TEXT NOT NULL,
  operator_name TEXT,
  year_of_manufacture INTEGER,
  pax_capacity INTEGER,
  home_base TEXT,
  amenities TEXT NOT NULL DEFAULT '[]',
  status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'inactive')),
  notes TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE(tenant_id, tail_number)
);

CREATE TABLE IF NOT EXISTS crew (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  full_name TEXT NOT NULL,
  role TEXT NOT NULL CHECK(role IN ({_check_list(CREW_ROLES)})),
  email TEXT,
  phone TEXT,
  notes TEXT,
  active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS items (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  name TEXT NOT NULL,
  description TEXT,
  default_unit_price REAL NOT NULL DEFAULT 0 CHECK(default_unit_price >= 0),
  taxable INTEGER NOT NULL DEFAULT 1 CHECK(taxable IN (0,1)),
  active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE(tenant_id, name)
);

CREATE TABLE IF NOT EXISTS leads (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  contact_id INTEGER REFERENCES contacts(id) ON DELETE SET NULL,
  contact_name TEXT,
  contact_email TEXT,
  contact_phone TEXT,
  contact_company TEXT,
  status TEXT NOT NULL DEFAULT 'new' CHECK(status IN ({_check_list(LEAD_STATUSES)})),
  is_archived INTEGER NOT NULL DEFAULT 0 CHECK(is_archived IN (0,1)),
  engagement_count INTEGER NOT NULL DEFAULT 0,
  last_engaged_at TEXT,
  quote_id INTEGER,
  notes TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS lead_details (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  lead_id INTEGER NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
  seq INTEGER NOT NULL,
  origin TEXT,
  origin_code TEXT NOT NULL,
  destination TEXT,
  destination_code TEXT NOT NULL,
  depart_dt TEXT,
  depart_time TEXT,
  pax_count INTEGER NOT NULL DEFAULT 1,
  notes TEXT,
  UNIQUE(lead_id, seq)
);

CREATE TABLE IF NOT EXISTS quotes (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  lead_id INTEGER REFERENCES leads(id) ON DELETE SET NULL,
  contact_id INTEGER REFERENCES contacts(id) ON DELETE SET NULL,
  contact_name TEXT,
  contact_email TEXT,
  contact_phone TEXT,
  contact_company TEXT,
  title TEXT,
  status TEXT NOT NULL DEFAULT 'draft' CHECK(status IN ({_check_list(QUOTE_STATUSES)})),
  payment_status TEXT NOT NULL DEFAULT 'none' CHECK(payment_status IN ('none', 'unpaid', 'paid')),
  currency TEXT NOT NULL DEFAULT 'USD',
  valid_until TEXT,
  notes TEXT,
  selected_option_id INTEGER,
  trip_summary TEXT,
  trip_type TEXT,
  leg_count INTEGER NOT NULL DEFAULT 0,
  total_pax INTEGER NOT NULL DEFAULT 0,
  earliest_departure TEXT,
  latest_return TEXT,
  total_distance_nm REAL,
  availability_status TEXT,
  availability_notes TEXT,
  resources_checked TEXT,
  availability_checked_at TEXT,
  published_at TEXT,
  accepted_at TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quote_details (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  quote_id INTEGER NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
  seq INTEGER NOT NULL,
  origin TEXT,
  origin_code TEXT NOT NULL,
  destination TEXT,
  destination_code TEXT NOT NULL,
  depart_dt TEXT,
  depart_time TEXT,
  pax_count INTEGER NOT NULL DEFAULT 1,
  origin_lat REAL,
  origin_long REAL,
  destination_lat REAL,
  destination_long REAL,
  distance_nm REAL,
  notes TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE(quote_id, seq)
);

CREATE TABLE IF NOT EXISTS quote_options (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  quote_id INTEGER NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
  label TEXT NOT NULL,
  aircraft_id INTEGER REFERENCES aircraft(id) ON DELETE SET NULL,
  aircraft_model_id INTEGER REFERENCES aircraft_models(id) ON DELETE SET NULL,
  flight_hours REAL NOT NULL DEFAULT 0,
  cost_operator REAL NOT NULL DEFAULT 0,
  price_commission REAL NOT NULL DEFAULT 0,
  price_base REAL NOT NULL DEFAULT 0,
  price_total REAL NOT NULL DEFAULT 0,
  fees TEXT NOT NULL DEFAULT '[]',
  fees_enabled INTEGER NOT NULL DEFAULT 0 CHECK(fees_enabled IN (0,1)),
  notes TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quote_items (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  quote_id INTEGER NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
  item_id INTEGER REFERENCES items(id) ON DELETE SET NULL,
  name TEXT NOT NULL,
  description TEXT,
  qty REAL NOT NULL DEFAULT 1,
  unit_price REAL NOT NULL DEFAULT 0,
  unit_cost REAL,
  taxable INTEGER NOT NULL DEFAULT 1 CHECK(taxable IN (0,1)),
  notes TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS invoices (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  quote_id INTEGER NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
  selected_option_id INTEGER,
  number TEXT NOT NULL,
  issued_at TEXT NOT NULL,
  due_at TEXT,
  currency TEXT NOT NULL DEFAULT 'USD',
  subtotal REAL NOT NULL,
  tax_total REAL NOT NULL,
  amount REAL NOT NULL,
  status TEXT NOT NULL DEFAULT 'issued' CHECK(status IN ({_check_list(INVOICE_STATUSES)})),
  summary_itinerary TEXT,
  aircraft_label TEXT,
  external_payment_url TEXT,
  breakdown_json TEXT NOT NULL,
  payment_reference TEXT,
  paid_at TEXT,
  notes TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE(tenant_id, number),
  UNIQUE(quote_id)
);

CREATE TABLE IF NOT EXISTS invoice_details (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  invoice_id INTEGER NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
  seq INTEGER NOT NULL,
  label TEXT NOT NULL,
  description TEXT,
  qty REAL NOT NULL DEFAULT 1,
  unit_price REAL NOT NULL,
  amount REAL NOT NULL,
  type TEXT NOT NULL CHECK(type IN ('aircraft', 'service', 'tax')),
  taxable INTEGER NOT NULL DEFAULT 0 CHECK(taxable IN (0,1)),
  tax_rate REAL NOT NULL DEFAULT 0,
  tax_amount REAL NOT NULL DEFAULT 0,
  UNIQUE(invoice_id, seq)
);

CREATE TABLE IF NOT EXISTS itineraries (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  quote_id INTEGER REFERENCES quotes(id) ON DELETE SET NULL,
  invoice_id INTEGER REFERENCES invoices(id) ON DELETE SET NULL,
  contact_id INTEGER REFERENCES contacts(id) ON DELETE SET NULL,
  title TEXT,
  trip_summary TEXT,
  status TEXT NOT NULL DEFAULT 'draft' CHECK(status IN ({_check_list(ITINERARY_STATUSES)})),
  notes TEXT,
  published_at TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS itinerary_details (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  itinerary_id INTEGER NOT NULL REFERENCES itineraries(id) ON DELETE CASCADE,
  seq INTEGER NOT NULL,
  origin TEXT,
  origin_code TEXT NOT NULL,
  destination TEXT,
  destination_code TEXT NOT NULL,
  depart_at TEXT,
  pax_count INTEGER NOT NULL DEFAULT 1,
  distance_nm REAL,
  origin_lat REAL,
  origin_long REAL,
  destination_lat REAL,
  destination_long REAL,
  aircraft_label TEXT,
  tail_number TEXT,
  origin_fbo TEXT,
  destination_fbo TEXT,
  notes TEXT,
  UNIQUE(itinerary_id, seq)
);

CREATE TABLE IF NOT EXISTS itinerary_passengers (
  itinerary_id INTEGER NOT NULL REFERENCES itineraries(id) ON DELETE CASCADE,
  passenger_id INTEGER NOT NULL REFERENCES passengers(id) ON DELETE CASCADE,
  tenant_id TEXT NOT NULL,
  PRIMARY KEY(itinerary_id, passenger_id)
);

CREATE TABLE IF NOT EXISTS itinerary_crew (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  itinerary_id INTEGER NOT NULL REFERENCES itineraries(id) ON DELETE CASCADE,
  tenant_id TEXT NOT NULL,
  name TEXT NOT NULL,
  role TEXT NOT NULL CHECK(role IN ({_check_list(CREW_ROLES)})),
  email TEXT,
  phone TEXT,
  notes TEXT
);

CREATE TABLE IF NOT EXISTS action_links (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  created_by TEXT,
  email TEXT,
  phone TEXT,
  action_type TEXT NOT NULL CHECK(action_type IN ({_check_list(ACTION_TYPES)})),
  token_hash TEXT NOT NULL UNIQUE,
  metadata TEXT NOT NULL DEFAULT '{{}}',
  status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'consumed', 'revoked')),
  expires_at TEXT NOT NULL,
  max_uses INTEGER NOT NULL DEFAULT 1 CHECK(max_uses >= 1),
  use_count INTEGER NOT NULL DEFAULT 0 CHECK(use_count >= 0),
  consumed_at TEXT,
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tenant_id TEXT NOT NULL,
  actor TEXT,
  action TEXT NOT NULL,
  target_type TEXT,
  target_id INTEGER,
  details TEXT NOT NULL DEFAULT '{{}}',
  ip TEXT,
  user_agent TEXT,
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS idempotency_keys (
  key TEXT PRIMARY KEY,
  expires_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS rate_limits (
  bucket TEXT PRIMARY KEY,
  window_start TEXT NOT NULL,
  count INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_quotes_tenant_status ON quotes(tenant_id, status);
CREATE INDEX IF NOT EXISTS idx_quote_details_depart ON quote_details(depart_dt);
CREATE INDEX IF NOT EXISTS idx_invoices_tenant_status ON invoices(tenant_id, status);
CREATE INDEX IF NOT EXISTS idx_itineraries_tenant ON itineraries(tenant_id, status);
CREATE INDEX IF NOT EXISTS idx_leads_tenant_status ON leads(tenant_id, status);
CREATE INDEX IF NOT EXISTS idx_audit_tenant ON audit_log(tenant_id, created_at);
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def fetch_dicts(
    conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()
) -> List[Dict[str, Any]]:
    """Run *sql* and return rows as dictionaries keyed by column name."""
    cursor = conn.execute(sql, tuple(params))
    columns = [col[0] for col in cursor.description or ()]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def fetch_dict(
    conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()
) -> Optional[Dict[str, Any]]:
    rows = fetch_dicts(conn, sql, params)
    return rows[0] if rows else None


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    try:
        rows = conn.execute(f"PRAGMA table_info({table})")
    except sqlite3.OperationalError:
        return False
    return any(row[1] == column for row in rows)


def _ensure_column(
    conn: sqlite3.Connection,
    table: str,
    column: str,
    definition: str,
) -> None:
    if _column_exists(conn, table, column):
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


def _seed_airports(conn: sqlite3.Connection) -> None:
    conn.executemany(
        """
        INSERT OR IGNORE INTO airports
            (code, name, municipality, country_code, iata_code, icao_code,
             airport_type, latitude, longitude)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        AIRPORTS,
    )


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Create the back-office tables in *conn* and seed reference airports."""

    conn.execute("PRAGMA foreign_keys = ON")
    conn.executescript(SCHEMA_SQL)
    # Columns added after the first release.
    _ensure_column(conn, "quotes", "total_distance_nm", "REAL")
    _ensure_column(conn, "invoices", "payment_reference", "TEXT")
    _ensure_column(conn, "quotes", "public_link_id", "INTEGER")
    _seed_airports(conn)
    conn.commit()


def ensure_tenant(
    conn: sqlite3.Connection,
    tenant_id: str,
    name: Optional[str] = None,
    *,
    currency: str = "USD",
    primary_color: str = "#1f3a5f",
    logo_url: Optional[str] = None,
) -> None:
    """Insert *tenant_id* if missing and seed its default service catalogue."""

    timestamp = utc_now()
    conn.execute(
        """
        INSERT OR IGNORE INTO tenants (id, name, primary_color, logo_url, currency, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (tenant_id, name or tenant_id, primary_color, logo_url, currency, timestamp),
    )
    conn.executemany(
        """
        INSERT OR IGNORE INTO items
            (tenant_id, name, description, default_unit_price, taxable, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (tenant_id, name_, description, price, taxable, timestamp, timestamp)
            for name_, description, price, taxable in DEFAULT_ITEMS
        ],
    )
    conn.commit()


def add_member(
    conn: sqlite3.Connection,
    tenant_id: str,
    user_id: str,
    email: str,
    *,
    full_name: Optional[str] = None,
    role: str = "broker",
) -> int:
    if role not in MEMBER_ROLES:
        raise ValueError(f"Unknown member role: {role}")
    cursor = conn.execute(
        """
        INSERT INTO members (tenant_id, user_id, email, full_name, role, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(tenant_id, user_id) DO UPDATE SET
            email = excluded.email,
            full_name = COALESCE(excluded.full_name, members.full_name),
            role = excluded.role
        """,
        (tenant_id, user_id, email.strip().lower(), full_name, role, utc_now()),
    )
    conn.commit()
    row = conn.execute(
        "SELECT id FROM members WHERE tenant_id = ? AND user_id = ?",
        (tenant_id, user_id),
    ).fetchone()
    return int(row[0]) if row else int(cursor.lastrowid)


def list_members(conn: sqlite3.Connection, tenant_id: str) -> List[Dict[str, Any]]:
    return fetch_dicts(
        conn,
        """
        SELECT id, user_id, email, full_name, role, active
        FROM members
        WHERE tenant_id = ?
        ORDER BY created_at
        """,
        (tenant_id,),
    )


__all__ = [
    "ACTION_TYPES",
    "AIRPORTS",
    "CREW_ROLES",
    "DEFAULT_ITEMS",
    "INVOICE_STATUSES",
    "ITINERARY_STATUSES",
    "LEAD_STATUSES",
    "MEMBER_ROLES",
    "QUOTE_STATUSES",
    "SCHEMA_SQL",
    "add_member",
    "ensure_schema",
    "ensure_tenant",
    "fetch_dict",
    "fetch_dicts",
    "list_members",
    "utc_now",
]
