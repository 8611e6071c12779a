#!/usr/bin/env python3
"""Quick quote entry CLI for CharterDesk.

Builds a draft charter quote from ``--leg`` arguments, optionally prices one
aircraft option, persists it to SQLite and prints a copy-paste summary.
"""
from __future__ import annotations

import argparse
import logging
import re
import sqlite3
import sys
from datetime import date, timedelta
from typing import Optional, Sequence

from analytics.db import bootstrap_parameters, get_connection, get_parameter_value
from charterdesk import config
from charterdesk.airports import estimate_flight_hours
from charterdesk.errors import CharterDeskError
from charterdesk.quote_service import (
    QuoteHeader,
    QuoteLeg,
    QuoteOptionInput,
    build_summary,
    create_quote,
    get_quote,
)
from charterdesk.schema import ensure_schema, ensure_tenant
from charterdesk.trip import prepare_legs

logger = logging.getLogger("quick_quote")

# HH:MM (or HHMM) optionally followed by :PAX
_TIME_PAX_RE = re.compile(r"^(\d{1,2}):?(\d{2})(?::(\d+))?$")


def parse_leg(value: str) -> QuoteLeg:
    """Parse ``ORIG:DEST:DATE[:TIME[:PAX]]`` into a leg."""

    parts = value.split(":", 3)
    if len(parts) < 3 or not parts[0].strip() or not parts[1].strip():
        raise argparse.ArgumentTypeError(
            f"Leg must look like ORIG:DEST:YYYY-MM-DD[:HH:MM[:PAX]], got {value!r}"
        )
    origin, destination, depart_dt = (part.strip() for part in parts[:3])
    try:
        date.fromisoformat(depart_dt)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid departure date: {depart_dt}") from None
    depart_time: Optional[str] = None
    pax: Optional[int] = None
    if len(parts) == 4 and parts[3]:
        match = _TIME_PAX_RE.match(parts[3].strip())
        if match is None:
            raise argparse.ArgumentTypeError(f"Invalid time/pax suffix: {parts[3]}")
        hours, minutes, pax_text = match.groups()
        if int(hours) > 23 or int(minutes) > 59:
            raise argparse.ArgumentTypeError(f"Invalid departure time: {hours}:{minutes}")
        depart_time = f"{int(hours):02d}:{minutes}"
        pax = int(pax_text) if pax_text else None
    return QuoteLeg(
        origin_code=origin,
        destination_code=destination,
        depart_dt=depart_dt,
        depart_time=depart_time,
        pax_count=pax,
    )


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Quick charter quote entry")
    parser.add_argument(
        "--leg",
        action="append",
        type=parse_leg,
        dest="legs",
        required=True,
        help="ORIG:DEST:YYYY-MM-DD[:HH:MM[:PAX]], repeat for multi-leg trips",
    )
    parser.add_argument("--operator-cost", type=float, dest="operator_cost")
    parser.add_argument("--commission", type=float)
    parser.add_argument("--hours", type=float, help="Flight hours (estimated from distance if omitted)")
    parser.add_argument("--option-label", dest="option_label")
    parser.add_argument("--fees", action="store_true", help="Enable option fees")
    parser.add_argument("--name", dest="contact_name")
    parser.add_argument("--email", dest="contact_email")
    parser.add_argument("--phone", dest="contact_phone")
    parser.add_argument("--company", dest="contact_company")
    parser.add_argument("--title")
    parser.add_argument("--db", default=config.DB_PATH)
    parser.add_argument("--tenant", default=config.DEFAULT_TENANT_ID)
    parser.add_argument(
        "--no-save", action="store_true", help="Do not persist quote to the database"
    )
    return parser.parse_args(argv)


def build_option(args: argparse.Namespace, conn: sqlite3.Connection) -> Optional[QuoteOptionInput]:
    if args.operator_cost is None and args.commission is None:
        return None
    hours = args.hours
    if hours is None:
        prepared = prepare_legs(args.legs, conn=conn)
        hours = round(sum(estimate_flight_hours(leg.distance_nm) for leg in prepared), 1)
    return QuoteOptionInput(
        label=args.option_label,
        flight_hours=hours,
        cost_operator=args.operator_cost,
        price_commission=args.commission,
        fees_enabled=args.fees,
    )


def _scratch_copy(conn: sqlite3.Connection) -> sqlite3.Connection:
    scratch = sqlite3.connect(":memory:")
    conn.backup(scratch)
    scratch.execute("PRAGMA foreign_keys = ON;")
    return scratch


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    args = parse_args(argv if argv is not None else sys.argv[1:])
    conn = get_connection(args.db)
    ensure_schema(conn)
    ensure_tenant(conn, args.tenant)
    bootstrap_parameters(conn, args.tenant)

    work = _scratch_copy(conn) if args.no_save else conn
    try:
        valid_days = get_parameter_value(work, args.tenant, "quote_valid_days", 7.0) or 7.0
        header = QuoteHeader(
            contact_name=args.contact_name,
            contact_email=args.contact_email,
            contact_phone=args.contact_phone,
            contact_company=args.contact_company,
            title=args.title,
            valid_until=(date.today() + timedelta(days=int(valid_days))).isoformat(),
        )
        option = build_option(args, work)
        quote_id = create_quote(work, args.tenant, header, legs=args.legs, options=[option] if option else [])
        bundle = get_quote(work, args.tenant, quote_id)
    except CharterDeskError as exc:
        logger.error("%s (%s)", exc.message, exc.error_code)
        return 1
    finally:
        if work is not conn:
            work.close()
        conn.close()

    print("\n--- Quote Summary ---")
    print(build_summary(bundle))
    if not args.no_save:
        print(f"\nSaved quote #{quote_id} to {args.db}.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
