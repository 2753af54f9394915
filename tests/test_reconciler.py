"""Tests for calendar import reconciliation."""

import asyncio
from datetime import date, datetime

import pytest
import pytz

from conftest import FIXED_NOW, OWNER, make_candidate
from special_dates.core.event_store import EventStore
from special_dates.models.sync_status import PermissionStatus, SyncState
from special_dates.providers.static import StaticCalendarProvider, StaticPermissionProvider
from special_dates.storage.memory import InMemoryPersistence
from special_dates.sync.reconciler import CalendarSyncReconciler
from special_dates.sync.strategies import AllOccasionsStrategy, BirthdayOnlyStrategy
from special_dates.utils.exceptions import (
    StorageError,
    SyncAccessError,
    SyncProviderError,
    SyncStateError,
)


def _reconciler(store, provider, permissions=None, **kwargs):
    permissions = permissions or StaticPermissionProvider(PermissionStatus.AUTHORIZED)
    kwargs.setdefault("clock", lambda: FIXED_NOW)
    return CalendarSyncReconciler(store, provider, permissions, **kwargs)


@pytest.mark.asyncio
async def test_request_access_grants(reconciler, permissions):
    state = await reconciler.request_access(OWNER)
    assert state == SyncState.AUTHORIZED
    assert reconciler.state(OWNER) == SyncState.AUTHORIZED
    assert permissions.request_count == 1


@pytest.mark.asyncio
async def test_request_access_denied_is_final(store, provider):
    permissions = StaticPermissionProvider(grant=False)
    reconciler = _reconciler(store, provider, permissions)

    assert await reconciler.request_access(OWNER) == SyncState.DENIED
    with pytest.raises(SyncAccessError):
        await reconciler.request_access(OWNER)
    assert permissions.request_count == 1

    with pytest.raises(SyncAccessError):
        await reconciler.sync(OWNER)
    assert provider.fetch_count == 0


@pytest.mark.asyncio
async def test_denied_recovers_after_permission_change(store, provider):
    permissions = StaticPermissionProvider(grant=False)
    reconciler = _reconciler(store, provider, permissions)
    await reconciler.request_access(OWNER)

    permissions.status = PermissionStatus.AUTHORIZED
    assert await reconciler.request_access(OWNER) == SyncState.AUTHORIZED


@pytest.mark.asyncio
async def test_restricted_permission(store, provider):
    permissions = StaticPermissionProvider(PermissionStatus.RESTRICTED)
    reconciler = _reconciler(store, provider, permissions)

    assert await reconciler.request_access(OWNER) == SyncState.RESTRICTED
    assert permissions.request_count == 0
    with pytest.raises(SyncAccessError):
        await reconciler.sync(OWNER)


@pytest.mark.asyncio
async def test_sync_requires_access(reconciler, provider):
    with pytest.raises(SyncAccessError):
        await reconciler.sync(OWNER)
    assert provider.fetch_count == 0


@pytest.mark.asyncio
async def test_sync_twice_is_idempotent(reconciler, store):
    await reconciler.request_access(OWNER)

    first = await reconciler.sync(OWNER)
    ids = sorted(r.id for r in store.list(OWNER))
    second = await reconciler.sync(OWNER)

    assert len(store.list(OWNER)) == 3
    assert sorted(r.id for r in store.list(OWNER)) == ids
    assert first.total_synced == 3
    assert second.total_synced == 3
    assert second.last_sync_at == FIXED_NOW
    assert second.last_error is None
    assert not second.in_progress
    assert reconciler.state(OWNER) == SyncState.IDLE
    assert reconciler.last_report(OWNER).updated == 3


@pytest.mark.asyncio
async def test_sync_maps_candidates(reconciler, store):
    await reconciler.request_access(OWNER)
    await reconciler.sync(OWNER)

    names = sorted(r.subject_name for r in store.list(OWNER))
    assert names == ["Ada", "Alan", "Grace"]
    ada = store.find_by_external_id(OWNER, "ev-1")
    assert (ada.original_date.month, ada.original_date.day) == (9, 18)
    assert ada.original_date.year is None


@pytest.mark.asyncio
async def test_sync_skips_non_birthdays(store, permissions):
    provider = StaticCalendarProvider(
        [
            make_candidate("ev-1", "Ada's Birthday"),
            make_candidate("ev-2", "Dentist"),
        ]
    )
    reconciler = _reconciler(store, provider, permissions)
    await reconciler.request_access(OWNER)
    status = await reconciler.sync(OWNER)

    assert status.total_synced == 1
    assert reconciler.last_report(OWNER).skipped == 1


@pytest.mark.asyncio
async def test_all_occasions_strategy(store, permissions):
    provider = StaticCalendarProvider(
        [
            make_candidate("ev-1", "Wedding anniversary"),
            make_candidate("ev-2", "Dentist"),
        ]
    )
    reconciler = _reconciler(store, provider, permissions, strategy=AllOccasionsStrategy())
    await reconciler.request_access(OWNER)
    await reconciler.sync(OWNER)

    anniversary = store.find_by_external_id(OWNER, "ev-1")
    dentist = store.find_by_external_id(OWNER, "ev-2")
    assert anniversary.category.value == "anniversary"
    assert dentist.category.value == "custom"
    assert dentist.custom_label == "Dentist"


@pytest.mark.asyncio
async def test_duplicate_candidates_in_one_batch(store, permissions):
    provider = StaticCalendarProvider(
        [
            make_candidate("series-1", "Ada's Birthday", date(2025, 9, 18)),
            make_candidate("series-1", "Ada's Birthday", date(2026, 9, 18)),
        ]
    )
    reconciler = _reconciler(store, provider, permissions)
    await reconciler.request_access(OWNER)
    status = await reconciler.sync(OWNER)

    assert len(store.list(OWNER)) == 1
    assert status.total_synced == 1
    assert reconciler.last_report(OWNER).duplicates == 1


@pytest.mark.asyncio
async def test_update_in_place_keeps_id_and_local_year(store, permissions):
    provider = StaticCalendarProvider([make_candidate("ev-1", "Ada's Birthday", date(2025, 9, 18))])
    reconciler = _reconciler(store, provider, permissions)
    await reconciler.request_access(OWNER)
    await reconciler.sync(OWNER)

    record = store.find_by_external_id(OWNER, "ev-1")
    store.update(record.id, {"original_date": {"month": 9, "day": 18, "year": 1815}, "icon": "🎩"})

    provider.events = [make_candidate("ev-1", "Ada Lovelace's Birthday", date(2025, 9, 19))]
    await reconciler.sync(OWNER)

    updated = store.find_by_external_id(OWNER, "ev-1")
    assert updated.id == record.id
    assert updated.subject_name == "Ada Lovelace"
    assert (updated.original_date.month, updated.original_date.day) == (9, 19)
    assert updated.original_date.year == 1815
    assert updated.icon == "🎩"


@pytest.mark.asyncio
async def test_vanished_records_are_left_alone(reconciler, store, provider):
    await reconciler.request_access(OWNER)
    await reconciler.sync(OWNER)

    provider.events = provider.events[:1]
    status = await reconciler.sync(OWNER)

    assert len(store.list(OWNER)) == 3
    assert status.total_synced == 1


@pytest.mark.asyncio
async def test_manual_records_untouched(reconciler, store, add):
    manual_id = add(name="Ada", month=9, day=18)
    await reconciler.request_access(OWNER)
    await reconciler.sync(OWNER)

    assert store.get(manual_id).subject_name == "Ada"
    assert len(store.list(OWNER)) == 4


@pytest.mark.asyncio
async def test_partial_failure(store, permissions):
    provider = StaticCalendarProvider(
        [
            make_candidate("ev-1", "Ada's Birthday"),
            # An all-day birthday with no usable title
            make_candidate("ev-2", "   ", is_birthday_hint=True),
        ]
    )
    reconciler = _reconciler(store, provider, permissions)
    await reconciler.request_access(OWNER)
    status = await reconciler.sync(OWNER)

    assert status.total_synced == 1
    assert status.last_sync_at == FIXED_NOW
    assert "1 of 2" in status.last_error
    assert "ev-2" in reconciler.last_report(OWNER).failures
    assert not status.in_progress


@pytest.mark.asyncio
async def test_provider_failure_keeps_previous_figures(reconciler, store, provider):
    await reconciler.request_access(OWNER)
    await reconciler.sync(OWNER)

    provider.error = RuntimeError("boom")
    status = await reconciler.sync(OWNER)

    assert "boom" in status.last_error
    assert status.total_synced == 3
    assert status.last_sync_at == FIXED_NOW
    assert not status.in_progress
    assert reconciler.state(OWNER) == SyncState.IDLE
    assert len(store.list(OWNER)) == 3


@pytest.mark.asyncio
async def test_first_sync_failure(store, permissions):
    provider = StaticCalendarProvider(error=SyncProviderError("calendar offline"))
    reconciler = _reconciler(store, provider, permissions)
    await reconciler.request_access(OWNER)
    status = await reconciler.sync(OWNER)

    assert status.last_error == "calendar offline"
    assert status.last_sync_at is None
    assert status.total_synced == 0
    assert reconciler.last_report(OWNER).failed


@pytest.mark.asyncio
async def test_fetch_timeout(store, permissions):
    provider = StaticCalendarProvider([make_candidate()], delay=1.0)
    reconciler = _reconciler(store, provider, permissions, fetch_timeout=0.05)
    await reconciler.request_access(OWNER)
    status = await reconciler.sync(OWNER)

    assert "timed out" in status.last_error
    assert not status.in_progress
    assert store.list(OWNER) == []
    assert reconciler.state(OWNER) == SyncState.IDLE


@pytest.mark.asyncio
async def test_sync_while_in_progress_writes_nothing(store, persistence, permissions):
    provider = StaticCalendarProvider([make_candidate()], delay=0.2)
    reconciler = _reconciler(store, provider, permissions)
    await reconciler.request_access(OWNER)

    running = asyncio.create_task(reconciler.sync(OWNER))
    await provider.started.wait()

    writes = persistence.write_count
    status = await reconciler.sync(OWNER)
    assert status.in_progress
    assert persistence.write_count == writes
    assert provider.fetch_count == 1

    final = await running
    assert final.total_synced == 1
    assert not final.in_progress


@pytest.mark.asyncio
async def test_stored_in_progress_flag_coalesces(store, persistence, permissions, provider):
    reconciler = _reconciler(store, provider, permissions)
    await reconciler.request_access(OWNER)
    store.begin_sync(OWNER)

    writes = persistence.write_count
    status = await reconciler.sync(OWNER)

    assert status.in_progress
    assert persistence.write_count == writes
    assert provider.fetch_count == 0


@pytest.mark.asyncio
async def test_cancellation_resets_in_progress(store, permissions):
    provider = StaticCalendarProvider([make_candidate()], delay=5.0)
    reconciler = _reconciler(store, provider, permissions)
    await reconciler.request_access(OWNER)

    task = asyncio.create_task(reconciler.sync(OWNER))
    await provider.started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    status = store.get_sync_status(OWNER)
    assert not status.in_progress
    assert status.last_error
    assert store.list(OWNER) == []
    assert reconciler.state(OWNER) == SyncState.IDLE


@pytest.mark.asyncio
async def test_revoked_permission_stops_sync(reconciler, permissions, provider):
    await reconciler.request_access(OWNER)
    permissions.status = PermissionStatus.DENIED

    with pytest.raises(SyncAccessError):
        await reconciler.sync(OWNER)
    assert provider.fetch_count == 0

    # The grant is forgotten even after the permission comes back
    permissions.status = PermissionStatus.AUTHORIZED
    with pytest.raises(SyncAccessError):
        await reconciler.sync(OWNER)


@pytest.mark.asyncio
async def test_access_error_during_fetch(store, permissions):
    provider = StaticCalendarProvider(error=SyncAccessError("token revoked"))
    reconciler = _reconciler(store, provider, permissions)
    await reconciler.request_access(OWNER)

    status = await reconciler.sync(OWNER)
    assert "token revoked" in status.last_error
    with pytest.raises(SyncAccessError):
        await reconciler.sync(OWNER)


@pytest.mark.asyncio
async def test_disable_requires_new_grant(reconciler, store):
    await reconciler.request_access(OWNER)
    await reconciler.sync(OWNER)

    reconciler.disable(OWNER)
    assert store.get_sync_status(OWNER).enabled is False
    with pytest.raises(SyncAccessError):
        await reconciler.sync(OWNER)

    await reconciler.request_access(OWNER)
    assert store.get_sync_status(OWNER).enabled is True


@pytest.mark.asyncio
async def test_request_access_during_sync_rejected(store, permissions):
    provider = StaticCalendarProvider([make_candidate()], delay=0.2)
    reconciler = _reconciler(store, provider, permissions)
    await reconciler.request_access(OWNER)

    running = asyncio.create_task(reconciler.sync(OWNER))
    await provider.started.wait()
    with pytest.raises(SyncStateError):
        await reconciler.request_access(OWNER)
    with pytest.raises(SyncStateError):
        reconciler.disable(OWNER)
    await running


@pytest.mark.asyncio
async def test_timed_event_placed_in_configured_timezone(store, permissions):
    # 23:30 UTC on Sep 17 is already Sep 18 in Istanbul
    start = datetime(2025, 9, 17, 23, 30, tzinfo=pytz.utc)
    provider = StaticCalendarProvider(
        [make_candidate("ev-1", "Ada's Birthday", start, is_all_day=False)]
    )
    reconciler = _reconciler(store, provider, permissions, tz_name="Europe/Istanbul")
    await reconciler.request_access(OWNER)
    await reconciler.sync(OWNER)

    record = store.find_by_external_id(OWNER, "ev-1")
    assert (record.original_date.month, record.original_date.day) == (9, 18)


class FlakyStatusPersistence(InMemoryPersistence):
    """Fails the next ``failures`` saves that close a pass (in_progress=False)."""

    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    def save_sync_status(self, status):
        if not status.in_progress and self.failures:
            self.failures -= 1
            raise StorageError("disk full")
        super().save_sync_status(status)


class BrokenStrategy(BirthdayOnlyStrategy):
    def classify(self, candidate):
        raise RuntimeError("classifier bug")


@pytest.mark.asyncio
async def test_failed_status_save_does_not_block_later_syncs(provider):
    persistence = FlakyStatusPersistence(failures=1)
    store = EventStore(persistence, clock=lambda: FIXED_NOW)
    reconciler = _reconciler(store, provider)
    await reconciler.request_access(OWNER)

    with pytest.raises(StorageError):
        await reconciler.sync(OWNER)

    assert reconciler.state(OWNER) == SyncState.IDLE
    assert not store.get_sync_status(OWNER).in_progress
    assert reconciler.last_report(OWNER).failed

    status = await reconciler.sync(OWNER)
    assert provider.fetch_count == 2
    assert status.total_synced == 3
    assert not status.in_progress


@pytest.mark.asyncio
async def test_stuck_flag_can_be_reset(provider):
    # Both the normal close and the cleanup fail to save
    persistence = FlakyStatusPersistence(failures=2)
    store = EventStore(persistence, clock=lambda: FIXED_NOW)
    reconciler = _reconciler(store, provider)
    await reconciler.request_access(OWNER)

    with pytest.raises(StorageError):
        await reconciler.sync(OWNER)
    assert reconciler.state(OWNER) == SyncState.IDLE
    assert store.get_sync_status(OWNER).in_progress

    # Coalesced against the leftover flag
    await reconciler.sync(OWNER)
    assert provider.fetch_count == 1

    assert not reconciler.reset_sync_flag(OWNER).in_progress
    status = await reconciler.sync(OWNER)
    assert provider.fetch_count == 2
    assert status.total_synced == 3


@pytest.mark.asyncio
async def test_unexpected_merge_error_closes_the_pass(store, provider):
    reconciler = _reconciler(store, provider, strategy=BrokenStrategy())
    await reconciler.request_access(OWNER)

    with pytest.raises(RuntimeError):
        await reconciler.sync(OWNER)

    status = store.get_sync_status(OWNER)
    assert not status.in_progress
    assert "classifier bug" in status.last_error
    assert reconciler.state(OWNER) == SyncState.IDLE

    # Access and disable work again
    assert await reconciler.request_access(OWNER) == SyncState.AUTHORIZED
    reconciler.disable(OWNER)


@pytest.mark.asyncio
async def test_reset_sync_flag_refused_during_pass(store, permissions):
    provider = StaticCalendarProvider([make_candidate()], delay=0.2)
    reconciler = _reconciler(store, provider, permissions)
    await reconciler.request_access(OWNER)

    running = asyncio.create_task(reconciler.sync(OWNER))
    await provider.started.wait()
    with pytest.raises(SyncStateError):
        reconciler.reset_sync_flag(OWNER)
    await running
