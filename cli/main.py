#!/usr/bin/env python3
"""
Time Blocker CLI - schedule a day from the terminal.

Commands:
  init                          Create app directories and the database
  preview  -u USER -d DATE IDS  Show the proposed schedule
  confirm  -u USER -d DATE IDS  Commit the schedule
  blocks   -u USER -d DATE      List a day's blocks
  sync                          Retry calendar sync of pending/failed blocks
"""

import argparse
import json
import sys
from datetime import date

from timeblocker import config, paths
from timeblocker.observability import bind, configure_logging
from timeblocker.state_store import get_store
from timeblocker.time_truth.calendar_sync import CalendarSync
from timeblocker.time_truth.models import ScheduleResult, TimeBlock
from timeblocker.time_truth.options import ScheduleValidationError
from timeblocker.time_truth.scheduler import Scheduler


def print_header(text: str):
    """Print a section header."""
    print(f"\n{'═' * 50}")
    print(f"  {text}")
    print(f"{'═' * 50}")


def print_table(headers: list, rows: list, widths: list = None):
    """Print a simple table."""
    if not widths:
        widths = [max(len(str(row[i])) for row in [headers] + rows) for i in range(len(headers))]

    header_str = " │ ".join(str(h).ljust(w) for h, w in zip(headers, widths))
    print(header_str)
    print("─" * len(header_str))

    for row in rows:
        print(" │ ".join(str(c)[:w].ljust(w) for c, w in zip(row, widths)))


BLOCK_HEADERS = ["ID", "Time", "Min", "Type", "Title", "Status"]
BLOCK_WIDTHS = [5, 11, 4, 6, 35, 9]


def block_rows(blocks: list[TimeBlock]) -> list[list]:
    return [
        [
            b.id if b.id is not None else "-",
            f"{b.start_time:%H:%M}-{b.end_time:%H:%M}",
            b.duration,
            b.block_type,
            b.title[:35],
            b.status,
        ]
        for b in blocks
    ]


def print_result(result: ScheduleResult, title: str):
    print_header(f"{title}: {result.date.isoformat()}")

    if result.scheduled_blocks:
        print_table(
            BLOCK_HEADERS, block_rows(result.scheduled_blocks), BLOCK_WIDTHS
        )
    else:
        print("No blocks placed.")

    if result.unscheduled_activities:
        print("\nUNSCHEDULED")
        for item in result.unscheduled_activities:
            print(f"  #{item.activity.id} {item.activity.title[:40]}: {item.reason}")

    if result.conflicts:
        print("\nCONFLICTS")
        for line in result.conflicts:
            print(f"  {line}")

    if result.suggestions:
        print("\nSUGGESTIONS")
        for line in result.suggestions:
            print(f"  {line}")


def parse_options(args) -> dict:
    options = {}
    if args.start or args.end:
        hours = {"start": args.start, "end": args.end}
        options["working_hours"] = {k: v for k, v in hours.items() if v}
    if args.break_duration is not None:
        options["break_duration"] = args.break_duration
    if args.min_block is not None:
        options["minimum_block_size"] = args.min_block
    if args.max_tasks is not None:
        options["max_tasks_per_day"] = args.max_tasks
    if args.no_focus:
        options["focus_time_preferred"] = False
    return options


# ==== Commands ====


def cmd_init(args) -> int:
    """Create directories and converge the schema."""
    for directory in (paths.data_dir(), paths.log_dir(), paths.config_dir()):
        directory.mkdir(parents=True, exist_ok=True)

    store = get_store()
    info = store.describe()

    print_header("TIME BLOCKER INIT")
    print(f"  Home:     {paths.app_home()}")
    print(f"  Database: {info['db_path']}")
    print(f"  Schema:   v{info['user_version']}")
    print_table(["Table", "Rows"], [[t, n] for t, n in info["tables"].items()])
    return 0


def cmd_preview(args) -> int:
    result = Scheduler(get_store()).preview(args.user, args.ids, args.date, parse_options(args))
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print_result(result, "PREVIEW")
    return 0


def cmd_confirm(args) -> int:
    scheduler = Scheduler(get_store(), auto_sync=not args.no_sync)
    result = scheduler.confirm(args.user, args.ids, args.date, parse_options(args))
    if not args.no_sync and result.sync_job_id:
        # The CLI process exits after this command, so wait for the sync job
        scheduler.calendar_sync.jobs.wait(result.sync_job_id)
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print_result(result, "CONFIRMED")
    return 0


def cmd_blocks(args) -> int:
    blocks = Scheduler(get_store(), auto_sync=False).day_blocks(args.user, args.date)
    if args.json:
        print(json.dumps([b.to_dict() for b in blocks], indent=2))
        return 0

    print_header(f"BLOCKS: {args.date}")
    if not blocks:
        print("No blocks.")
        return 0
    print_table(BLOCK_HEADERS, block_rows(blocks), BLOCK_WIDTHS)
    return 0


def cmd_sync(args) -> int:
    """Retry calendar sync for blocks left pending or failed."""
    sync = CalendarSync(get_store())
    block_ids = sync.get_unsynced()
    if not block_ids:
        print("Nothing to sync.")
        return 0

    report = sync.sync_blocks(block_ids)
    print_header("CALENDAR SYNC")
    print_table(
        ["Block", "Status", "Event", "Error"],
        [
            [o.block_id, o.status, o.external_event_id or "-", (o.error or "")[:40]]
            for o in report.outcomes
        ],
    )
    return 1 if report.failed else 0


# ==== Parser ====


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="timeblocker", description="Time blocking scheduler")
    parser.add_argument("--log-level", default=config.LOG_LEVEL)
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("init", help="Create directories and database").set_defaults(func=cmd_init)

    def day_args(p):
        p.add_argument("-u", "--user", type=int, required=True, help="User id")
        p.add_argument(
            "-d", "--date", type=date.fromisoformat, default=date.today(), help="YYYY-MM-DD"
        )
        p.add_argument("--json", action="store_true", help="Print JSON")

    for name, func, help_text in (
        ("preview", cmd_preview, "Show the proposed schedule"),
        ("confirm", cmd_confirm, "Commit the schedule"),
    ):
        p = sub.add_parser(name, help=help_text)
        day_args(p)
        p.add_argument("ids", type=int, nargs="+", help="Activity ids")
        p.add_argument("--start", help="Working hours start HH:MM")
        p.add_argument("--end", help="Working hours end HH:MM")
        p.add_argument("--break", dest="break_duration", type=int, help="Break minutes")
        p.add_argument("--min-block", type=int, help="Minimum block minutes")
        p.add_argument("--max-tasks", type=int, help="Max task blocks per day")
        p.add_argument("--no-focus", action="store_true", help="Plain first fit")
        if name == "confirm":
            p.add_argument("--no-sync", action="store_true", help="Skip calendar sync")
        p.set_defaults(func=func)

    p = sub.add_parser("blocks", help="List a day's blocks")
    day_args(p)
    p.set_defaults(func=cmd_blocks)

    sub.add_parser("sync", help="Retry pending/failed calendar sync").set_defaults(func=cmd_sync)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, json_format=False)

    try:
        with bind(user_id=getattr(args, "user", None)):
            return args.func(args)
    except ScheduleValidationError as e:
        print(f"Invalid {e.field}: {e.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
