"""
Offline console demo: runs the dashboard sync loop without any network.

Uses the real store, change feed listener, status mutator, and filter
view on top of the in-memory backend and feed. No API keys, no hosted
database. Designed for live demo walkthroughs.

Usage:
    python console_demo.py
    python console_demo.py --scenario stale-read
    python console_demo.py --scenario reconnect
"""

import argparse
import asyncio
from datetime import timedelta

from reservation_sync.backend.memory import InMemoryBackend, InMemoryChangeFeed
from reservation_sync.config import SyncConfig, settings
from reservation_sync.dashboard import Dashboard
from reservation_sync.intake import submit_reservation
from reservation_sync.notifications.notices import Notice, NoticeBoard, NoticeLevel
from reservation_sync.notifications.telegram import TelegramNotifier
from reservation_sync.schemas.feed_schema import ChannelStatus
from reservation_sync.schemas.reservation_schema import NewReservation, ReservationStatus
from reservation_sync.session import SessionContext
from reservation_sync.sync.views import ALL_STATUSES

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

NOTICE_COLORS = {
    NoticeLevel.SUCCESS: GREEN,
    NoticeLevel.INFO: BLUE,
    NoticeLevel.WARNING: YELLOW,
    NoticeLevel.ERROR: RED,
}

SEED_ROWS = [
    {"id": "1", "name": "Amina Idrissi", "phone": "0612345678", "date": "10/05/2024",
     "time_slot": "8h00-11h00", "status": "Pending"},
    {"id": "2", "name": "Youssef Alaoui", "phone": "0698765432", "date": "09/05/2024",
     "time_slot": "11h00-14h00", "status": "Confirmed"},
    {"id": "3", "name": "Salma Berrada", "phone": "0522334455", "date": "13/05/2024",
     "time_slot": "14h00-16h00", "status": "Not Responding"},
]

# Short timings so the demo does not sit idle
DEMO_TIMINGS = SyncConfig(
    ack_timeout_sec=2.0,
    reconnect_delay_sec=0.5,
    max_write_attempts=3,
    retry_backoff_sec=0.2,
    verify_delay_sec=0.3,
    verify_after_write=True,
)


class ConsoleSession:
    """Drives a Dashboard against the in-memory backend and prints what happens."""

    def __init__(self) -> None:
        self.feed = InMemoryChangeFeed()
        self.backend = InMemoryBackend(self.feed)
        for row in SEED_ROWS:
            self.backend.seed(row)
        self.session = SessionContext(ttl=timedelta(hours=1))
        self.session.begin("demo-token", is_admin=True)
        self.notices = NoticeBoard()
        self.notices.subscribe(self.show_notice)
        self.dashboard = Dashboard(
            self.backend, self.feed, self.session, self.notices, sync_config=DEMO_TIMINGS
        )

    def show_notice(self, notice: Notice) -> None:
        color = NOTICE_COLORS[notice.level]
        suffix = f" {DIM}({notice.description}){RESET}" if notice.description else ""
        print(f"{color}{BOLD}[{notice.level.value}]{RESET} {color}{notice.title}{RESET}{suffix}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def print_table(self) -> None:
        rows = self.dashboard.visible
        q = self.dashboard.query
        status = q.status_filter.value if isinstance(q.status_filter, ReservationStatus) else q.status_filter
        print(f"{BOLD}  Reservations (status={status}, sort={q.sort_order.value}, "
              f"live={self.dashboard.connection_state.value}){RESET}")
        for r in rows:
            print(f"    {r.id:>8}  {r.date}  {r.time_slot:<12} {r.status.value:<15} {r.name} ({r.phone})")
        if not rows:
            print(f"    {DIM}(no reservations match){RESET}")
        print(f"{DIM}    {self.dashboard.stats.model_dump()}{RESET}")

    async def scenario_basic(self) -> None:
        self.system_log("Customer submits the booking form")
        form = NewReservation(name="Karim Tazi", phone="06 11 22 33 44",
                              date="15/05/2024", time_slot="11h00-14h00", language="fr")
        result = await submit_reservation(
            self.backend, form, TelegramNotifier(), self.notices, self.session
        )
        if result.notification is not None:
            await result.notification
        self.print_table()

        self.system_log("Staff confirms reservation 1 (verification read enabled)")
        await self.dashboard.update_status("1", ReservationStatus.CONFIRMED)
        self.dashboard.set_status_filter(ReservationStatus.CONFIRMED)
        self.print_table()
        self.dashboard.set_status_filter(ALL_STATUSES)

    async def scenario_stale_read(self) -> None:
        self.system_log("Replica lags: verification read will return the old value once")
        self.backend.stale_reads = 1
        outcome = await self.dashboard.update_status("3", ReservationStatus.CANCELED)
        self.system_log(f"Outcome: {outcome.value}; writes to 3: {self.backend.write_count('3')}")
        self.system_log("Writes are rejected twice, then accepted")
        self.backend.fail_writes = 2
        outcome = await self.dashboard.update_status("2", ReservationStatus.NOT_RESPONDING)
        self.system_log(f"Outcome: {outcome.value}; writes to 2: {self.backend.write_count('2')}")
        self.print_table()

    async def scenario_reconnect(self) -> None:
        self.system_log("Realtime channel reports CHANNEL_ERROR")
        self.feed.emit_status(ChannelStatus.CHANNEL_ERROR)
        self.system_log(f"State: {self.dashboard.connection_state.value}")
        await asyncio.sleep(DEMO_TIMINGS.reconnect_delay_sec + 0.2)
        self.system_log(f"State after reconnect: {self.dashboard.connection_state.value}")
        self.system_log(f"Trace: {' -> '.join(self.dashboard.listener.get_state_trace())}")
        self.system_log("Row deleted by another system")
        await self.backend.delete("2")
        self.print_table()

    SCENARIOS = {
        "basic": ("scenario_basic",),
        "stale-read": ("scenario_basic", "scenario_stale_read"),
        "reconnect": ("scenario_basic", "scenario_reconnect"),
    }

    async def run(self, scenario: str = "basic") -> None:
        steps = self.SCENARIOS.get(scenario)
        if steps is None:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return

        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  RESERVATION DASHBOARD - Scenario: {scenario}{RESET}")
        print(f"{BOLD}  App: {settings.app_name}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")
        print()

        await self.dashboard.mount()
        self.print_table()
        try:
            for step in steps:
                print()
                await getattr(self, step)()
        finally:
            await self.dashboard.unmount()

        print(f"\n{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  Scenario '{scenario}' complete.{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline reservation dashboard demo")
    parser.add_argument(
        "--scenario", choices=sorted(ConsoleSession.SCENARIOS), default="basic",
        help="Pre-scripted scenario to play",
    )
    args = parser.parse_args()
    asyncio.run(ConsoleSession().run(args.scenario))


if __name__ == "__main__":
    main()
