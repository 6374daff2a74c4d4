"""Command line access to today's log for a local operator.

Usage:
    train-log show
    train-log log T101 4073+4081 --sources "Platform 2" --index 0
    train-log remove T101 4073+4081
    train-log search-service 101
    train-log search-unit 4073

Changes made here are applied directly, as a trusted user, and are not
posted to any channel.
"""

import argparse
import asyncio
import sys
from zoneinfo import ZoneInfo

from train_log.config import configure_logging, get_settings
from train_log.display.surface import StaticRoleChecker
from train_log.exceptions import TrainLogError
from train_log.normalization import normalize_service_id, strip_markup
from train_log.storage import LogStore, create_session_factory
from train_log.transactions import entry_to_string, format_full_log, sorted_allocations
from train_log.types import AddTransaction, AllocationDetails, RemoveTransaction, Submission, User
from train_log.workflow import SubmissionWorkflow

OPERATOR = User(id="cli", name="operator", display_name="Local operator")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="train-log", description="Inspect and edit today's train allocation log"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("show", help="Print the whole log")

    log = commands.add_parser("log", help="Log a unit set as running a TRN")
    log.add_argument("trn", help="Service identifier, e.g. T101 or 101")
    log.add_argument("units", help="Unit set, e.g. 4073+4081")
    log.add_argument("--sources", default=OPERATOR.display_name, help="Who reported it")
    log.add_argument("--notes", help="Free-text notes")
    log.add_argument("--index", type=int, help="Position among unit sets on this TRN")
    log.add_argument("--withdrawn", action="store_true", help="Mark the unit set withdrawn")

    remove = commands.add_parser("remove", help="Remove an entry")
    remove.add_argument("trn")
    remove.add_argument("units")

    search_service = commands.add_parser("search-service", help="List entries for a TRN")
    search_service.add_argument("trn")

    search_unit = commands.add_parser("search-unit", help="Find entries whose units match")
    search_unit.add_argument("query")

    return parser


async def run(args: argparse.Namespace) -> str:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone) if settings.timezone else None
    store = LogStore(
        create_session_factory(settings.database_url),
        new_day_hour=settings.new_day_hour,
        tz=tz,
    )
    await store.load_current_period()
    log = store.snapshot()

    if args.command == "show":
        return strip_markup(format_full_log(log)) or "Nothing has been logged today."

    if args.command == "search-service":
        trn = normalize_service_id(args.trn)
        allocations = log.get(trn)
        if not allocations:
            return f'No entries found for "{trn}" in today\'s log.'
        return "\n".join(
            entry_to_string(trn, units, details) for units, details in sorted_allocations(allocations)
        )

    if args.command == "search-unit":
        needle = args.query.lower()
        lines = [
            entry_to_string(trn, units, details)
            for trn, allocations in sorted(log.items())
            for units, details in sorted_allocations(allocations)
            if needle in units.lower()
        ]
        return "\n".join(lines) or f'No entries found matching "{args.query}".'

    workflow = SubmissionWorkflow(store, StaticRoleChecker())
    trn = normalize_service_id(args.trn)
    if args.command == "log":
        transaction = AddTransaction(
            trn,
            args.units,
            AllocationDetails(
                sources=args.sources,
                notes=args.notes,
                index=args.index,
                withdrawn=args.withdrawn,
            ),
        )
    else:
        transaction = RemoveTransaction(trn, args.units)
    result = await workflow.submit(Submission(user=OPERATOR, transactions=[transaction]))
    return strip_markup(result.content)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    try:
        output = asyncio.run(run(args))
    except TrainLogError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
