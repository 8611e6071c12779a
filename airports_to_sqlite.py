#!/usr/bin/env python3
"""Load an OurAirports ``airports.csv`` export into the CharterDesk database."""
from __future__ import annotations

import argparse
import csv
import logging
import sys
from typing import Iterable, Iterator, List, Mapping, Optional, Sequence

from analytics.db import connection_scope
from charterdesk import config
from charterdesk.airports import normalize_code, upsert_airports

logger = logging.getLogger("airports_to_sqlite")

SKIPPED_TYPES = frozenset({"closed", "heliport"})
BATCH_SIZE = 1000


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _coordinate(value: Optional[str]) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else None
    except ValueError:
        return None


def airport_row(record: Mapping[str, str]) -> Optional[tuple]:
    """Map one CSV record to an ``airports`` row, or ``None`` when it is skipped."""

    airport_type = (record.get("type") or "").strip()
    if airport_type in SKIPPED_TYPES:
        return None
    code = normalize_code(record.get("ident"))
    name = _blank_to_none(record.get("name"))
    if not code or not name:
        return None
    return (
        code,
        name,
        _blank_to_none(record.get("municipality")),
        _blank_to_none(record.get("iso_country")),
        normalize_code(record.get("iata_code")),
        normalize_code(record.get("gps_code")),
        airport_type or None,
        _coordinate(record.get("latitude_deg")),
        _coordinate(record.get("longitude_deg")),
    )


def iter_airport_rows(records: Iterable[Mapping[str, str]]) -> Iterator[tuple]:
    for record in records:
        row = airport_row(record)
        if row is not None:
            yield row


def import_airports(conn, csv_path: str) -> int:
    total = 0
    batch: List[tuple] = []
    with open(csv_path, newline="", encoding="utf-8") as f:
        for row in iter_airport_rows(csv.DictReader(f)):
            batch.append(row)
            if len(batch) >= BATCH_SIZE:
                total += upsert_airports(conn, batch)
                batch = []
    if batch:
        total += upsert_airports(conn, batch)
    logger.info("Imported %d airports from %s", total, csv_path)
    return total


def cli(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("csv", help="Path to airports.csv")
    parser.add_argument("--db", default=config.DB_PATH)
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])
    with connection_scope(args.db) as conn:
        count = import_airports(conn, args.csv)
    print(f"Loaded {count} airports into {args.db}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(cli())
