"""
Reservation dashboard entry point.

Usage:
    Offline demo:  python main.py console [--scenario stale-read]
    List remote:   python main.py list [--status Confirmed] [--search amina]
                                       [--date 10/05/2024] [--oldest]

``list`` reads BACKEND_URL / BACKEND_API_KEY from the environment and a
staff access token from RESERVATIONS_ACCESS_TOKEN.
"""

import argparse
import asyncio
import logging
import os
import sys

from reservation_sync.config import settings

logger = logging.getLogger(__name__)


async def _list_remote(args: argparse.Namespace) -> int:
    from reservation_sync.backend.base import AuthenticationError, BackendError
    from reservation_sync.backend.rest import RestBackend
    from reservation_sync.schemas.reservation_schema import Reservation, ReservationDataError
    from reservation_sync.session import SessionContext
    from reservation_sync.sync.views import SortOrder, ViewQuery, calculate_stats, derive_view

    session = SessionContext()
    token = os.getenv("RESERVATIONS_ACCESS_TOKEN", "")
    if not token:
        print("RESERVATIONS_ACCESS_TOKEN is not set", file=sys.stderr)
        return 2
    session.begin(token)

    try:
        async with RestBackend(session) as backend:
            rows = await backend.fetch_all()
    except AuthenticationError as exc:
        print(f"Not authorized: {exc}", file=sys.stderr)
        return 3
    except BackendError as exc:
        print(f"Failed to load reservations: {exc}", file=sys.stderr)
        return 1

    records = []
    for row in rows:
        try:
            records.append(Reservation.from_wire(row))
        except ReservationDataError as exc:
            logger.warning("Skipping invalid reservation row: %s", exc)

    query = ViewQuery(
        search_query=args.search,
        status_filter=args.status,
        date_filter=args.date,
        sort_order=SortOrder.OLDEST if args.oldest else SortOrder.NEWEST,
    )
    for r in derive_view(records, query):
        print(f"{r.id:>8}  {r.date}  {r.time_slot:<12} {r.status.value:<15} {r.name} ({r.phone})")
    print(calculate_stats(records).model_dump())
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=settings.app_name)
    sub = parser.add_subparsers(dest="command", required=True)

    console = sub.add_parser("console", help="Run the offline demo")
    console.add_argument("--scenario", default="basic")

    listing = sub.add_parser("list", help="Print reservations from the hosted backend")
    listing.add_argument(
        "--status", default="All",
        choices=["All", "Pending", "Confirmed", "Canceled", "Not Responding"],
    )
    listing.add_argument("--search", default="")
    listing.add_argument("--date", default=None, help="DD/MM/YYYY")
    listing.add_argument("--oldest", action="store_true", help="Sort oldest appointment first")
    return parser


if __name__ == "__main__":
    args = _build_parser().parse_args()
    if args.command == "console":
        from console_demo import ConsoleSession

        asyncio.run(ConsoleSession().run(args.scenario))
    else:
        sys.exit(asyncio.run(_list_remote(args)))
