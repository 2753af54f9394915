"""Microsoft 365 calendar provider using the Graph API."""

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Optional, Union

import requests

from ..auth.msal_auth import M365AuthProvider
from ..models.candidate import CandidateEvent, DateRange
from ..utils.date_utils import ensure_utc
from ..utils.exceptions import (
    AuthenticationError,
    ConfigurationError,
    SyncAccessError,
    SyncProviderError,
)
from .base import CalendarProvider

logger = logging.getLogger(__name__)

GRAPH_BASE = "https://graph.microsoft.com/v1.0"
EVENT_FIELDS = "id,subject,start,isAllDay,categories,bodyPreview,seriesMasterId,type"
PAGE_SIZE = 500


class M365CalendarProvider(CalendarProvider):
    """Fetch candidate occasions from every Microsoft 365 calendar."""

    def __init__(
        self,
        auth_provider: M365AuthProvider,
        primary_email: Optional[str] = None,
        request_timeout: float = 20.0,
    ):
        """
        Args:
            auth_provider: Microsoft 365 authentication provider
            primary_email: Mailbox to read; required for app-only auth
            request_timeout: Per-request HTTP timeout in seconds
        """
        self.auth_provider = auth_provider
        self.primary_email = primary_email
        self.request_timeout = request_timeout

        if auth_provider.use_client_credentials and not primary_email:
            raise ConfigurationError(
                "primary_email is required when using client credentials flow (client_secret configured)"
            )

    @property
    def _user_path(self) -> str:
        if self.auth_provider.use_client_credentials:
            return f"users/{self.primary_email}"
        return "me"

    def _headers(self) -> dict[str, str]:
        try:
            token = self.auth_provider.get_access_token()
        except AuthenticationError as e:
            raise SyncAccessError(str(e)) from e
        return {
            "Authorization": f"Bearer {token}",
            # Report all times in UTC
            "Prefer": 'outlook.timezone="UTC"',
        }

    def _get_pages(self, url: str, params: Optional[dict[str, Any]]) -> list[dict]:
        items: list[dict] = []
        while url:
            try:
                resp = requests.get(
                    url, headers=self._headers(), params=params, timeout=self.request_timeout
                )
            except requests.RequestException as e:
                raise SyncProviderError(f"Graph request failed: {e}") from e

            if resp.status_code in (401, 403):
                raise SyncAccessError(f"Graph refused calendar access ({resp.status_code})")
            try:
                resp.raise_for_status()
            except requests.HTTPError as e:
                raise SyncProviderError(f"Graph request failed: {e}") from e

            data = resp.json()
            items.extend(data.get("value", []))
            url = data.get("@odata.nextLink")
            params = None  # nextLink includes params
        return items

    def _list_calendars(self) -> list[dict]:
        return self._get_pages(
            f"{GRAPH_BASE}/{self._user_path}/calendars", {"$select": "id,name"}
        )

    def _fetch_blocking(self, date_range: DateRange) -> list[CandidateEvent]:
        params = {
            "startDateTime": ensure_utc(date_range.start).strftime("%Y-%m-%dT%H:%M:%S"),
            "endDateTime": ensure_utc(date_range.end).strftime("%Y-%m-%dT%H:%M:%S"),
            "$select": EVENT_FIELDS,
            "$top": PAGE_SIZE,
        }

        candidates: list[CandidateEvent] = []
        for calendar in self._list_calendars():
            url = f"{GRAPH_BASE}/{self._user_path}/calendars/{calendar['id']}/calendarView"
            events = self._get_pages(url, dict(params))
            label = calendar.get("name", "")
            for event in events:
                candidate = self._transform_event(event, label)
                if candidate is not None:
                    candidates.append(candidate)
            logger.info(f"Read {len(events)} event(s) from calendar '{label}'")

        return candidates

    async def fetch_events(self, date_range: DateRange) -> list[CandidateEvent]:
        """Fetch events from all calendars in a worker thread."""
        return await asyncio.to_thread(self._fetch_blocking, date_range)

    @staticmethod
    def _parse_start(start: dict, is_all_day: bool) -> Union[date, datetime]:
        raw = start.get("dateTime") or start.get("date_time")
        # Graph sends seven fractional digits, which fromisoformat rejects
        parsed = datetime.fromisoformat(raw[:19])
        if is_all_day:
            return parsed.date()
        return ensure_utc(parsed)

    def _transform_event(self, event: dict, calendar_label: str) -> Optional[CandidateEvent]:
        """Transform a Graph event; None when it cannot be read."""
        try:
            event_id = event["id"]
            is_all_day = bool(event.get("isAllDay", False))
            start = self._parse_start(event["start"], is_all_day)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping unreadable Graph event {event.get('id')}: {e}")
            return None

        categories = [c.lower() for c in event.get("categories") or []]
        return CandidateEvent(
            # Occurrences of one recurring event share their series master
            external_id=event.get("seriesMasterId") or event_id,
            title=event.get("subject") or "",
            start_date=start,
            is_all_day=is_all_day,
            calendar_label=calendar_label,
            is_birthday_hint=True if "birthday" in categories else None,
            notes=event.get("bodyPreview") or None,
        )
