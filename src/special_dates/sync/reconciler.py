"""Calendar import reconciliation and per-owner sync state machine."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ..core.event_store import EventStore
from ..models.candidate import CandidateEvent, DateRange
from ..models.sync_status import PermissionStatus, SyncState, SyncStatus
from ..providers.base import CalendarProvider, PermissionProvider
from ..utils.date_utils import get_sync_window, utc_now
from ..utils.exceptions import (
    PartialSyncError,
    SpecialDatesError,
    SyncAccessError,
    SyncProviderError,
    SyncStateError,
)
from .strategies import BirthdayOnlyStrategy, ImportStrategy, candidate_to_draft

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[SyncState, frozenset] = {
    SyncState.IDLE: frozenset({SyncState.REQUESTING, SyncState.SYNCING}),
    SyncState.REQUESTING: frozenset(
        {SyncState.AUTHORIZED, SyncState.DENIED, SyncState.RESTRICTED, SyncState.IDLE}
    ),
    SyncState.AUTHORIZED: frozenset({SyncState.SYNCING, SyncState.IDLE}),
    SyncState.DENIED: frozenset({SyncState.REQUESTING, SyncState.IDLE}),
    SyncState.RESTRICTED: frozenset({SyncState.REQUESTING, SyncState.IDLE}),
    SyncState.SYNCING: frozenset({SyncState.COMPLETED, SyncState.FAILED}),
    SyncState.COMPLETED: frozenset({SyncState.IDLE}),
    SyncState.FAILED: frozenset({SyncState.IDLE}),
}

_PERMISSION_STATES = {
    PermissionStatus.AUTHORIZED: SyncState.AUTHORIZED,
    PermissionStatus.DENIED: SyncState.DENIED,
    PermissionStatus.RESTRICTED: SyncState.RESTRICTED,
}


@dataclass
class SyncReport:
    """Result of one reconciliation pass."""

    owner_id: str
    started_at: datetime
    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    duplicates: int = 0
    failures: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def merged(self) -> int:
        return self.created + self.updated

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def partial_error(self) -> Optional[PartialSyncError]:
        if not self.failures:
            return None
        return PartialSyncError(self.failures, total=self.merged + len(self.failures))


class CalendarSyncReconciler:
    """
    Imports occasions from an external calendar into the event store.

    A pass fetches everything first and only then merges, holding the owner's
    write lock for the merge alone. Records that vanish upstream are left as
    they are.
    """

    def __init__(
        self,
        store: EventStore,
        provider: CalendarProvider,
        permissions: PermissionProvider,
        strategy: Optional[ImportStrategy] = None,
        tz_name: str = "UTC",
        lookback_days: int = 365,
        lookahead_days: int = 365,
        fetch_timeout: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the reconciler.

        Args:
            store: Canonical event store
            provider: External calendar to import from
            permissions: Permission subsystem guarding the provider
            strategy: Import strategy (defaults to BirthdayOnlyStrategy)
            tz_name: Timezone that places timed events on a calendar day
            lookback_days: Fetch window before today
            lookahead_days: Fetch window after today
            fetch_timeout: Seconds before a fetch counts as failed
            clock: Source of the current UTC time
        """
        self.store = store
        self.provider = provider
        self.permissions = permissions
        self.strategy = strategy or BirthdayOnlyStrategy()
        self.tz_name = tz_name
        self.lookback_days = lookback_days
        self.lookahead_days = lookahead_days
        self.fetch_timeout = fetch_timeout
        self.clock = clock
        self._states: dict[str, SyncState] = {}
        self._authorized: set[str] = set()
        self._reports: dict[str, SyncReport] = {}

    def state(self, owner_id: str) -> SyncState:
        return self._states.get(owner_id, SyncState.IDLE)

    def last_report(self, owner_id: str) -> Optional[SyncReport]:
        """Report of the owner's most recent finished pass."""
        return self._reports.get(owner_id)

    def _transition(self, owner_id: str, new_state: SyncState) -> None:
        current = self.state(owner_id)
        if new_state not in ALLOWED_TRANSITIONS[current]:
            raise SyncStateError(f"Illegal sync transition {current.value} -> {new_state.value}")
        logger.debug(f"Sync state for {owner_id}: {current.value} -> {new_state.value}")
        self._states[owner_id] = new_state

    def _grant(self, owner_id: str) -> None:
        self._transition(owner_id, SyncState.AUTHORIZED)
        self._authorized.add(owner_id)
        status = self.store.get_sync_status(owner_id)
        if status is not None and not status.enabled:
            self.store.save_sync_status(status.model_copy(update={"enabled": True}))

    def _forget(self, owner_id: str) -> None:
        self._authorized.discard(owner_id)
        if self.state(owner_id) == SyncState.AUTHORIZED:
            self._transition(owner_id, SyncState.IDLE)

    async def request_access(self, owner_id: str) -> SyncState:
        """
        Ask for calendar access.

        Returns:
            The resulting state: authorized, denied or restricted

        Raises:
            SyncAccessError: If access was refused earlier and the permission
                has not been changed since
            SyncStateError: If a sync is running
        """
        current = self.state(owner_id)
        if current == SyncState.AUTHORIZED:
            return current
        if current == SyncState.SYNCING:
            raise SyncStateError("Cannot request access while a sync is running")

        if current in (SyncState.DENIED, SyncState.RESTRICTED):
            # Refusals are final until the user changes the permission out of band
            if self.permissions.get_permission_status() != PermissionStatus.AUTHORIZED:
                raise SyncAccessError(
                    f"Calendar access {current.value}; change it in the calendar settings first"
                )
            self._transition(owner_id, SyncState.REQUESTING)
            self._grant(owner_id)
            return self.state(owner_id)

        self._transition(owner_id, SyncState.REQUESTING)
        permission = self.permissions.get_permission_status()
        try:
            if permission == PermissionStatus.NOT_DETERMINED:
                granted = await self.permissions.request_access()
                outcome = SyncState.AUTHORIZED if granted else SyncState.DENIED
            else:
                outcome = _PERMISSION_STATES[permission]
        except SyncAccessError as e:
            logger.warning(f"Calendar access restricted for {owner_id}: {e}")
            outcome = SyncState.RESTRICTED
        except BaseException:
            self._transition(owner_id, SyncState.IDLE)
            raise

        if outcome == SyncState.AUTHORIZED:
            self._grant(owner_id)
            logger.info(f"✅ Calendar access granted for {owner_id}")
        else:
            self._transition(owner_id, outcome)
            logger.warning(f"❌ Calendar access {outcome.value} for {owner_id}")
        return outcome

    def _check_can_sync(self, owner_id: str) -> None:
        current = self.state(owner_id)
        prior_grant = owner_id in self._authorized
        if not (
            current == SyncState.AUTHORIZED
            or (current == SyncState.IDLE and prior_grant)
        ):
            raise SyncAccessError(
                f"Calendar access not granted for {owner_id} (state: {current.value})"
            )
        if self.permissions.get_permission_status() != PermissionStatus.AUTHORIZED:
            self._forget(owner_id)
            raise SyncAccessError(f"Calendar access was revoked for {owner_id}")

    def _fetch_window(self) -> DateRange:
        start, end = get_sync_window(self.lookback_days, self.lookahead_days)
        return DateRange(start=start, end=end)

    async def sync(self, owner_id: str) -> SyncStatus:
        """
        Run one import pass.

        A call made while a pass is in progress returns the current status
        and writes nothing.

        Returns:
            The owner's sync status after the pass

        Raises:
            SyncAccessError: If calendar access has not been granted
            StorageError: If the status cannot be saved; the pass is still
                closed and the in_progress flag cleared where possible
        """
        if self.state(owner_id) == SyncState.SYNCING:
            logger.info(f"Sync already running for {owner_id}, not starting another")
            return self.store.get_sync_status(owner_id)

        self._check_can_sync(owner_id)

        status, started = self.store.begin_sync(owner_id)
        if not started:
            logger.info(f"Sync already in progress for {owner_id}, not starting another")
            return status

        self._transition(owner_id, SyncState.SYNCING)
        report = SyncReport(owner_id=owner_id, started_at=self.clock())
        try:
            return await self._run_pass(owner_id, report)
        except BaseException as e:
            # _finish did not get to the end; never leave the owner stuck in a pass
            if self.state(owner_id) == SyncState.SYNCING:
                self._abort(owner_id, report, e)
            raise

    async def _run_pass(self, owner_id: str, report: SyncReport) -> SyncStatus:
        date_range = self._fetch_window()
        logger.info(f"Starting sync from {date_range.start.date()} to {date_range.end.date()}")

        try:
            candidates = await asyncio.wait_for(
                self.provider.fetch_events(date_range), timeout=self.fetch_timeout
            )
        except asyncio.CancelledError:
            self._finish(owner_id, report, "Sync cancelled before merge")
            raise
        except asyncio.TimeoutError:
            error = SyncProviderError(
                f"Calendar provider timed out after {self.fetch_timeout:g}s"
            )
            return self._finish(owner_id, report, str(error))
        except SyncAccessError as e:
            self._authorized.discard(owner_id)
            return self._finish(owner_id, report, f"Calendar access error: {e}")
        except SyncProviderError as e:
            return self._finish(owner_id, report, str(e))
        except Exception as e:
            logger.exception(f"Unexpected provider failure for {owner_id}")
            return self._finish(owner_id, report, str(SyncProviderError(f"Fetch failed: {e}")))

        report.fetched = len(candidates)
        logger.info(f"Fetched {report.fetched} candidate event(s)")

        # No awaits past this point: the merge cannot be cancelled halfway
        with self.store.write_lock(owner_id):
            self._merge(owner_id, candidates, report)

        return self._finish(owner_id, report, None)

    def _merge(self, owner_id: str, candidates: list[CandidateEvent], report: SyncReport) -> None:
        seen: set[str] = set()
        for candidate in candidates:
            category = self.strategy.classify(candidate)
            if category is None:
                report.skipped += 1
                continue
            if candidate.external_id in seen:
                report.duplicates += 1
                continue
            seen.add(candidate.external_id)

            try:
                draft = candidate_to_draft(candidate, owner_id, category, self.tz_name)
                existing = self.store.find_by_external_id(owner_id, candidate.external_id)
                if existing is not None:
                    self.store.update(existing.id, self.strategy.resolve_conflict(existing, draft))
                    report.updated += 1
                else:
                    self.store.create(draft)
                    report.created += 1
            except SpecialDatesError as e:
                logger.warning(f"Failed to import '{candidate.title}' ({candidate.external_id}): {e}")
                report.failures[candidate.external_id] = str(e)

    def _finish(self, owner_id: str, report: SyncReport, error: Optional[str]) -> SyncStatus:
        report.error = error
        status = self.store.get_sync_status(owner_id) or SyncStatus(owner_id=owner_id)

        if report.failed:
            # Keep the figures of the last successful pass
            updated = status.model_copy(update={"last_error": error, "in_progress": False})
        else:
            partial = report.partial_error
            updated = status.model_copy(
                update={
                    "last_sync_at": self.clock(),
                    "total_synced": report.merged,
                    "last_error": partial.summary() if partial else None,
                    "in_progress": False,
                }
            )
        self.store.save_sync_status(updated)
        self._reports[owner_id] = report

        if report.failed:
            self._transition(owner_id, SyncState.FAILED)
            logger.error(f"❌ Sync failed for {owner_id}: {error}")
        else:
            self._transition(owner_id, SyncState.COMPLETED)
            logger.info(
                f"Sync complete: {report.created} created, "
                f"{report.updated} updated, "
                f"{report.skipped} skipped, "
                f"{len(report.failures)} errors"
            )
        self._transition(owner_id, SyncState.IDLE)
        return updated

    def _abort(self, owner_id: str, report: SyncReport, error: BaseException) -> None:
        """Best-effort cleanup after a pass died outside the normal failure paths."""
        report.error = report.error or f"Sync aborted: {error}"
        self._reports[owner_id] = report
        logger.error(f"❌ Sync aborted for {owner_id}: {error}")
        try:
            status = self.store.get_sync_status(owner_id)
            if status is not None and status.in_progress:
                self.store.save_sync_status(
                    status.model_copy(update={"in_progress": False, "last_error": report.error})
                )
        except SpecialDatesError as e:
            # The caller still gets the original error; reset_sync_flag() recovers
            logger.error(f"Could not clear in-progress flag for {owner_id}: {e}")
        self._transition(owner_id, SyncState.FAILED)
        self._transition(owner_id, SyncState.IDLE)

    def reset_sync_flag(self, owner_id: str) -> Optional[SyncStatus]:
        """
        Clear an in_progress flag left behind by a pass that never finished,
        for example one whose process was killed.

        Raises:
            SyncStateError: If this reconciler is running a pass for the owner
        """
        if self.state(owner_id) == SyncState.SYNCING:
            raise SyncStateError("Cannot reset the sync flag while a sync is running")
        return self.store.clear_sync_flag(owner_id)

    def disable(self, owner_id: str) -> None:
        """
        Turn the integration off for an owner.

        A new request_access is needed before the next sync.

        Raises:
            SyncStateError: If a sync is running
        """
        if self.state(owner_id) == SyncState.SYNCING:
            raise SyncStateError("Cannot disable while a sync is running")
        self._authorized.discard(owner_id)
        if self.state(owner_id) != SyncState.IDLE:
            self._transition(owner_id, SyncState.IDLE)
        status = self.store.get_sync_status(owner_id)
        if status is not None and status.enabled:
            self.store.save_sync_status(status.model_copy(update={"enabled": False}))
        logger.info(f"Calendar import disabled for {owner_id}")
