"""Shared fixtures for the special dates tests."""

from datetime import date, datetime

import pytest
import pytz

from special_dates.core.event_store import EventStore
from special_dates.core.views import ViewAggregator
from special_dates.models.candidate import CandidateEvent
from special_dates.models.special_date import Category, OriginalDate, SpecialDate
from special_dates.models.sync_status import PermissionStatus
from special_dates.providers.static import StaticCalendarProvider, StaticPermissionProvider
from special_dates.storage.memory import InMemoryPersistence
from special_dates.sync.reconciler import CalendarSyncReconciler

OWNER = "owner-1"
FIXED_NOW = datetime(2025, 9, 17, 12, 0, tzinfo=pytz.utc)


def make_record(
    name="Ada",
    month=9,
    day=18,
    year=None,
    category=Category.BIRTHDAY,
    record_id="rec-1",
    **extra,
) -> SpecialDate:
    """Build a stored record without going through the store."""
    return SpecialDate(
        id=record_id,
        owner_id=extra.pop("owner_id", OWNER),
        subject_name=name,
        category=category,
        original_date=OriginalDate(month=month, day=day, year=year),
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
        **extra,
    )


def make_candidate(external_id="ev-1", title="Ada's Birthday", start=date(1990, 9, 18), **extra):
    return CandidateEvent(external_id=external_id, title=title, start_date=start, **extra)


@pytest.fixture
def persistence():
    return InMemoryPersistence()


@pytest.fixture
def store(persistence):
    return EventStore(persistence, clock=lambda: FIXED_NOW)


@pytest.fixture
def views(store):
    return ViewAggregator(store)


@pytest.fixture
def add(store):
    """Create a manual record and return its id."""

    def _add(name="Ada", month=9, day=18, year=None, category=Category.BIRTHDAY, **extra):
        return store.create(
            {
                "owner_id": extra.pop("owner_id", OWNER),
                "subject_name": name,
                "category": category,
                "original_date": {"month": month, "day": day, "year": year},
                **extra,
            }
        )

    return _add


@pytest.fixture
def permissions():
    return StaticPermissionProvider(status=PermissionStatus.NOT_DETERMINED, grant=True)


@pytest.fixture
def provider():
    return StaticCalendarProvider(
        [
            make_candidate("ev-1", "Ada's Birthday", date(2025, 9, 18)),
            make_candidate("ev-2", "Birthday: Grace", date(2025, 12, 9)),
            make_candidate("ev-3", "Alan Birthday", date(2025, 6, 23)),
        ]
    )


@pytest.fixture
def reconciler(store, provider, permissions):
    return CalendarSyncReconciler(
        store,
        provider,
        permissions,
        clock=lambda: FIXED_NOW,
        fetch_timeout=5.0,
    )
