"""CLI entry point for the Special Dates application."""

import argparse
import asyncio
import calendar
import sys
from pathlib import Path

from .auth.msal_auth import M365AuthProvider
from .auth.token_cache import TokenCacheManager
from .config import ImportConfig, config
from .core.categories import CATEGORY_METADATA
from .core.event_store import EventStore
from .core.views import ViewAggregator
from .models.occurrence import OccurrenceView
from .models.special_date import Category
from .providers.m365_provider import M365CalendarProvider
from .storage.json_file import JsonFilePersistence
from .sync.reconciler import CalendarSyncReconciler
from .sync.strategies import build_strategy
from .utils.date_utils import local_today
from .utils.exceptions import SpecialDatesError, ValidationError
from .utils.logging import setup_logging


def _parse_original_date(value: str) -> dict:
    """Parse MM-DD or YYYY-MM-DD into OriginalDate fields."""
    parts = value.split("-")
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        numbers = []
    if len(numbers) == 2:
        return {"month": numbers[0], "day": numbers[1]}
    if len(numbers) == 3:
        return {"year": numbers[0], "month": numbers[1], "day": numbers[2]}
    raise ValidationError(f"Invalid date '{value}'. Use MM-DD or YYYY-MM-DD (e.g., 09-18)")


def _format_view(view: OccurrenceView) -> str:
    if view.days_until == 0:
        when = "today"
    elif view.days_until == 1:
        when = "tomorrow"
    else:
        when = f"in {view.days_until} days"
    line = f"  {view.icon or CATEGORY_METADATA[view.category].emoji} {view.subject_name} - {view.next_occurrence_date} ({when})"
    if view.attained_age is not None:
        line += f", turns {view.attained_age}"
    return line


def _build_reconciler(store: EventStore, cache_manager: TokenCacheManager, args) -> CalendarSyncReconciler:
    m365_auth = M365AuthProvider(config.m365, cache_manager)
    provider = M365CalendarProvider(m365_auth, primary_email=config.m365.primary_email)
    import_config = ImportConfig(config.import_config_file)
    lookback = args.lookback if args.lookback is not None else config.sync_lookback_days
    lookahead = args.lookahead if args.lookahead is not None else config.sync_lookahead_days
    return CalendarSyncReconciler(
        store,
        provider,
        m365_auth,
        strategy=build_strategy(import_config),
        tz_name=config.timezone,
        lookback_days=lookback,
        lookahead_days=lookahead,
        fetch_timeout=config.sync_fetch_timeout,
    )


async def _run_sync(reconciler: CalendarSyncReconciler, owner_id: str):
    await reconciler.request_access(owner_id)
    return await reconciler.sync(owner_id)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Special Dates - Track birthdays, anniversaries and other yearly occasions"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument(
        "--data-file",
        type=Path,
        default=None,
        help="JSON data file (overrides DATA_FILE)",
    )
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("today", help="Show today's occasions")

    upcoming = commands.add_parser("upcoming", help="Show upcoming occasions")
    upcoming.add_argument(
        "--days",
        type=int,
        default=None,
        help="Days to look ahead (overrides UPCOMING_DAYS)",
    )

    month = commands.add_parser("month", help="Show a month calendar")
    month.add_argument("year", type=int)
    month.add_argument("month", type=int)

    year = commands.add_parser("year", help="Show which months have occasions")
    year.add_argument("year", type=int)

    search = commands.add_parser("search", help="Search occasions by name")
    search.add_argument("query")

    add = commands.add_parser("add", help="Add an occasion")
    add.add_argument("--name", default="", help="Person or couple name")
    add.add_argument(
        "--category",
        choices=[c.value for c in Category],
        default=Category.BIRTHDAY.value,
    )
    add.add_argument("--label", default=None, help="Label for custom occasions")
    add.add_argument("--date", required=True, help="MM-DD or YYYY-MM-DD")
    add.add_argument("--icon", default=None, help="Emoji shown instead of the category icon")
    add.add_argument("--notes", default=None)

    delete = commands.add_parser("delete", help="Delete an occasion")
    delete.add_argument("id")

    sync = commands.add_parser("sync", help="Import occasions from Microsoft 365")
    sync.add_argument(
        "--lookback",
        type=int,
        default=None,
        help="Days to look back (overrides config)",
    )
    sync.add_argument(
        "--lookahead",
        type=int,
        default=None,
        help="Days to look ahead (overrides config)",
    )

    status = commands.add_parser("status", help="Show calendar import status")
    status.add_argument(
        "--reset",
        action="store_true",
        help="Clear an in-progress flag left by an interrupted sync",
    )
    commands.add_parser("clear-cache", help="Clear authentication token cache")
    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Setup logging
    log_level = "DEBUG" if args.verbose else config.log_level
    logger = setup_logging(level=log_level, log_file=config.log_file)

    if not args.command:
        parser.print_help()
        return 0

    try:
        cache_manager = TokenCacheManager(
            cache_location=Path(config.token_cache_path),
            encrypted=config.token_cache_encrypted,
        )

        # Handle clear cache
        if args.command == "clear-cache":
            cache_manager.clear_cache()
            return 0

        store = EventStore(JsonFilePersistence(args.data_file or config.data_file))
        views = ViewAggregator(store)
        owner_id = config.owner_id
        today = local_today(config.timezone)

        if args.command == "today":
            summary = views.today(owner_id, today)
            print(f"\nToday ({today}): {summary.total} occasion(s)")
            for category, count in summary.counts_by_category.items():
                print(f"  {CATEGORY_METADATA[category].title}: {count}")
            for view in summary.occasions:
                print(_format_view(view))
            return 0

        if args.command == "upcoming":
            days = args.days if args.days is not None else config.upcoming_days
            upcoming = views.upcoming(owner_id, today, days)
            print(f"\nNext {days} day(s): {len(upcoming)} occasion(s)")
            for view in upcoming:
                print(_format_view(view))
            return 0

        if args.command == "month":
            cells = views.month_grid(owner_id, args.year, args.month)
            print(f"\n{calendar.month_name[args.month]} {args.year}")
            print(" ".join(f"{calendar.day_abbr[i][:2]} " for i in range(7)).rstrip())
            for week_start in range(0, len(cells), 7):
                row = []
                for cell in cells[week_start:week_start + 7]:
                    if cell.day is None:
                        row.append("   ")
                    else:
                        # Days with occasions are starred
                        row.append(f"{cell.day.day:2d}{'*' if cell.has_events else ' '}")
                print(" ".join(row).rstrip())
            for cell in cells:
                for record in cell.records:
                    print(f"  {cell.day}: {CATEGORY_METADATA[record.category].emoji} {record.display_name}")
            return 0

        if args.command == "year":
            overview = views.year_overview(owner_id, args.year)
            print(f"\n{args.year}")
            for month_number, has_events in overview.items():
                marker = "●" if has_events else "○"
                print(f"  {marker} {calendar.month_name[month_number]}")
            return 0

        if args.command == "search":
            results = views.search(owner_id, args.query)
            print(f"\nFound {len(results)} occasion(s):")
            for record in results:
                label = record.custom_label or CATEGORY_METADATA[record.category].default_label
                print(f"  - {record.display_name} ({record.original_date}) {label} [ID: {record.id}]")
            return 0

        if args.command == "add":
            record_id = store.create(
                {
                    "owner_id": owner_id,
                    "subject_name": args.name,
                    "category": args.category,
                    "custom_label": args.label,
                    "original_date": _parse_original_date(args.date),
                    "icon": args.icon,
                    "notes": args.notes,
                }
            )
            print(f"Added {record_id}")
            return 0

        if args.command == "delete":
            store.soft_delete(args.id)
            print(f"Deleted {args.id}")
            return 0

        if args.command == "sync":
            reconciler = _build_reconciler(store, cache_manager, args)
            status = asyncio.run(_run_sync(reconciler, owner_id))
            report = reconciler.last_report(owner_id)

            print("\nSync Results:")
            if report is not None:
                print(f"  Events read: {report.fetched}")
                print(f"  Occasions created: {report.created}")
                print(f"  Occasions updated: {report.updated}")
                print(f"  Events skipped: {report.skipped}")
            if status.last_error:
                print(f"\nErrors: {status.last_error}")
                return 1
            return 0

        if args.command == "status":
            if args.reset:
                store.clear_sync_flag(owner_id)
            status = store.get_sync_status(owner_id)
            if status is None:
                print("Calendar import has never run")
                return 0
            print(f"\nCalendar import ({'enabled' if status.enabled else 'disabled'})")
            print(f"  Last sync: {status.last_sync_at or 'never'}")
            print(f"  Occasions synced: {status.total_synced}")
            if status.in_progress:
                print("  A sync is in progress")
            if status.last_error:
                print(f"  Last error: {status.last_error}")
            return 0

        parser.print_help()
        return 0

    except SpecialDatesError as e:
        logger.error(f"Special dates error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
