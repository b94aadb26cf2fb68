"""
JSON calendar provider.

Read-only access to a calendar exported as a JSON array of event entries
(the shape produced by a Power Automate "get events" flow). The file is read
from the local filesystem or downloaded from OneDrive through Microsoft
Graph, then cached per account.

Provider config keys:
    source: "local" (default) or "onedrive"
    filePath / FilePath: Local file path (source=local)
    oneDrivePath / OneDrivePath: Path under the OneDrive root (source=onedrive)
    authAccountId / AuthAccountId: Account whose credential reads OneDrive;
        defaults to this account
    cacheTtlMinutes / CacheTtlMinutes: Cache TTL, default 15
"""

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, time, timedelta
from pathlib import Path
from typing import Any

import httpx
from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel

from calmesh.accounts.models import Account
from calmesh.errors import (
    AuthenticationRequiredError,
    FeedFetchError,
    ProviderConfigurationError,
)
from calmesh.integrations.auth import ONEDRIVE_SCOPES, TokenProvider
from calmesh.integrations.base import ReadOnlyProvider
from calmesh.integrations.feeds.cache import Clock, FeedCache, utcnow
from calmesh.integrations.feeds.meetings import find_meeting_url, meeting_provider_for
from calmesh.integrations.types import (
    CalendarEvent,
    CalendarInfo,
    EventAttendee,
    ProviderKind,
    ensure_utc,
)

logger = logging.getLogger(__name__)

CALENDAR_ID = "json-calendar"
DEFAULT_CACHE_TTL_MINUTES = 15
DEFAULT_WINDOW = timedelta(days=7)
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

AccountLookup = Callable[[str], Account | None]

_SHOW_AS = {
    "free": "free",
    "tentative": "tentative",
    "busy": "busy",
    "oof": "outOfOffice",
    "outofoffice": "outOfOffice",
    "workingelsewhere": "workingElsewhere",
}

_RESPONSE = {
    "accepted": "accepted",
    "organizer": "accepted",
    "tentativelyaccepted": "tentative",
    "tentative": "tentative",
    "declined": "declined",
}


def _split_attendees(value: str | None) -> list[str]:
    if not value:
        return []
    return [a.strip() for a in value.replace(",", ";").split(";") if a.strip()]


def _parse_timestamp(*candidates: str | None) -> datetime | None:
    """Parse the first parseable candidate. Naive values are taken as UTC."""
    for value in candidates:
        if not value:
            continue
        try:
            parsed = date_parser.parse(value)
        except (ValueError, OverflowError):
            continue
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    return None


class JsonCalendarEntry(BaseModel):
    """One exported event. Keys are matched case-insensitively."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str | None = None
    subject: str | None = None
    start: str | None = None
    end: str | None = None
    start_with_time_zone: str | None = None
    end_with_time_zone: str | None = None
    body: str | None = None
    is_html: bool | None = None
    location: str | None = None
    organizer: str | None = None
    required_attendees: str | None = None
    optional_attendees: str | None = None
    resource_attendees: str | None = None
    show_as: str | None = None
    sensitivity: str | None = None
    importance: str | None = None
    response_type: str | None = None
    categories: list[str] | None = None
    created_date_time: str | None = None
    last_modified_date_time: str | None = None
    web_link: str | None = None
    recurrence: str | None = None
    is_all_day: bool | None = None

    @model_validator(mode="before")
    @classmethod
    def _match_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        aliases = {
            (f.alias or name).lower(): f.alias or name for name, f in cls.model_fields.items()
        }
        return {aliases.get(str(k).lower(), k): v for k, v in data.items()}

    @field_validator("categories", mode="before")
    @classmethod
    def _split_categories(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _split_attendees(value)
        return value

    @property
    def start_at(self) -> datetime | None:
        return _parse_timestamp(self.start_with_time_zone, self.start)

    @property
    def end_at(self) -> datetime | None:
        return _parse_timestamp(self.end_with_time_zone, self.end)

    def stable_id(self) -> str:
        """The entry id, or a deterministic id derived from subject and start."""
        if self.id:
            return self.id
        seed = f"{self.subject or ''}|{self.start_with_time_zone or self.start or ''}"
        return str(uuid.uuid5(uuid.NAMESPACE_URL, seed))


_ENTRIES = TypeAdapter(list[JsonCalendarEntry])


def parse_entries(content: str | bytes, source: str) -> list[JsonCalendarEntry]:
    """Parse an exported JSON array.

    Raises:
        FeedFetchError: If the content is not a JSON array of objects.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise FeedFetchError(f"Invalid JSON in calendar file {source}: {e}") from e
    if not isinstance(data, list):
        raise FeedFetchError(
            f"JSON calendar file {source} must contain a JSON array of events"
        )
    return _ENTRIES.validate_python(data)


class JsonCalendarProvider(ReadOnlyProvider):
    """
    Read-only provider over an exported JSON calendar file.

    OneDrive sources need a TokenProvider; ``account_lookup`` (usually
    ``registry.get_by_id``) validates ``authAccountId`` references.

    Example:
        >>> provider = JsonCalendarProvider(tokens, account_lookup=registry.get_by_id)
        >>> events = await provider.list_events(account)
    """

    kind = ProviderKind.JSON_CALENDAR
    display_name = "JSON calendar"

    def __init__(
        self,
        token_provider: TokenProvider | None = None,
        *,
        account_lookup: AccountLookup | None = None,
        cache_ttl_minutes: int = DEFAULT_CACHE_TTL_MINUTES,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        graph_base_url: str = GRAPH_BASE_URL,
        clock: Clock | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._account_lookup = account_lookup
        self._clock = clock or utcnow
        self.cache: FeedCache[list[JsonCalendarEntry]] = FeedCache(
            "JSON calendar", cache_ttl_minutes, clock=self._clock
        )
        self._timeout = timeout
        self._transport = transport
        self._graph_base_url = graph_base_url
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _loader(self, account: Account) -> Callable[[], Awaitable[list[JsonCalendarEntry]]]:
        """Validate the account's source config and return its fetch function."""
        source = (account.config_value("source", "Source") or "local").lower()

        if source == "local":
            file_path = account.config_value("filePath", "FilePath")
            if not file_path:
                raise ProviderConfigurationError(
                    f"Account '{account.id}' is missing 'filePath' in providerConfig"
                )
            return lambda: self._load_local(account, Path(file_path).expanduser())

        if source == "onedrive":
            drive_path = account.config_value("oneDrivePath", "OneDrivePath")
            if not drive_path:
                raise ProviderConfigurationError(
                    f"Account '{account.id}' is missing 'oneDrivePath' in providerConfig"
                )
            if self._token_provider is None:
                raise ProviderConfigurationError(
                    f"Account '{account.id}' reads OneDrive but no token provider is configured"
                )
            auth_account_id = account.config_value("authAccountId", "AuthAccountId") or account.id
            if (
                auth_account_id.casefold() != account.id.casefold()
                and self._account_lookup is not None
                and self._account_lookup(auth_account_id) is None
            ):
                raise ProviderConfigurationError(
                    f"Account '{account.id}' references auth account '{auth_account_id}' "
                    "which was not found. Check the 'authAccountId' in providerConfig."
                )
            token_provider = self._token_provider
            return lambda: self._load_onedrive(
                account, drive_path, auth_account_id, token_provider
            )

        raise ProviderConfigurationError(
            f"Unknown JSON calendar source '{source}' for account '{account.id}'. "
            "Expected 'local' or 'onedrive'."
        )

    async def _load_local(self, account: Account, path: Path) -> list[JsonCalendarEntry]:
        if not path.exists():
            raise FeedFetchError(
                f"JSON calendar file not found at '{path}' for account '{account.id}'. "
                "If using cloud sync, ensure the file has synced."
            )
        content = await asyncio.to_thread(path.read_text, encoding="utf-8-sig")
        entries = parse_entries(content, str(path))
        logger.info(
            f"Loaded {len(entries)} JSON calendar entries for {account.id}",
            extra={"account_id": account.id, "source": "local"},
        )
        return entries

    async def _load_onedrive(
        self,
        account: Account,
        drive_path: str,
        auth_account_id: str,
        token_provider: TokenProvider,
    ) -> list[JsonCalendarEntry]:
        token = await token_provider.get_token(auth_account_id, ONEDRIVE_SCOPES)
        if not token:
            raise AuthenticationRequiredError(
                auth_account_id,
                f"Failed to get OneDrive access token for account '{account.id}'. "
                f"Re-authenticate '{auth_account_id}' with the Files.Read scope.",
            )

        if not drive_path.startswith("/"):
            drive_path = f"/{drive_path}"
        url = f"{self._graph_base_url}/me/drive/root:{drive_path}:/content"
        response = await self._http().get(
            url, headers={"Authorization": f"Bearer {token}"}, follow_redirects=True
        )
        if response.status_code == 401:
            raise AuthenticationRequiredError(
                auth_account_id,
                f"OneDrive rejected the token for '{auth_account_id}'. "
                "The access token may lack 'Files.Read' permission.",
            )
        if response.status_code == 404:
            raise FeedFetchError(
                f"OneDrive file '{drive_path}' not found for account '{account.id}'. "
                "Check that the oneDrivePath is correct."
            )
        if response.status_code >= 400:
            raise FeedFetchError(
                f"Failed to fetch OneDrive file '{drive_path}' for account '{account.id}': "
                f"HTTP {response.status_code} {response.text}"
            )

        entries = parse_entries(response.content, drive_path)
        logger.info(
            f"Loaded {len(entries)} JSON calendar entries for {account.id} from OneDrive",
            extra={"account_id": account.id, "source": "onedrive"},
        )
        return entries

    async def _entries(self, account: Account) -> list[JsonCalendarEntry]:
        lookup = await self.cache.get(account, self._loader(account))
        return lookup.payload

    async def list_calendars(self, account: Account) -> list[CalendarInfo]:
        return [
            CalendarInfo(
                id=CALENDAR_ID,
                account_id=account.id,
                name=account.display_name,
                can_edit=False,
                is_default=True,
            )
        ]

    async def list_events(
        self,
        account: Account,
        *,
        calendar_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        count: int = 50,
    ) -> list[CalendarEvent]:
        entries = await self._entries(account)
        today = datetime.combine(self._clock().date(), time.min, tzinfo=UTC)
        window_start = ensure_utc(start) or today
        window_end = ensure_utc(end) or window_start + DEFAULT_WINDOW

        events = []
        for entry in entries:
            entry_start, entry_end = entry.start_at, entry.end_at
            if entry_start is None or entry_end is None:
                continue
            if entry_start < window_end and entry_end > window_start:
                events.append(self._to_event(entry, account.id, entry_start, entry_end))

        events.sort(key=lambda e: e.start)
        return events[:count]

    async def get_event(
        self, account: Account, event_id: str, *, calendar_id: str | None = None
    ) -> CalendarEvent | None:
        for entry in await self._entries(account):
            if entry.stable_id() != event_id:
                continue
            entry_start, entry_end = entry.start_at, entry.end_at
            if entry_start is None or entry_end is None:
                return None
            return self._to_event(entry, account.id, entry_start, entry_end)
        return None

    @staticmethod
    def _to_event(
        entry: JsonCalendarEntry, account_id: str, start: datetime, end: datetime
    ) -> CalendarEvent:
        required = _split_attendees(entry.required_attendees)
        optional = _split_attendees(entry.optional_attendees)
        resources = _split_attendees(entry.resource_attendees)
        attendee_details = (
            [EventAttendee(email=a, type="required") for a in required]
            + [EventAttendee(email=a, type="optional") for a in optional]
            + [EventAttendee(email=a, type="resource") for a in resources]
        )

        meeting_url = None
        meeting_provider = None
        if entry.web_link and meeting_provider_for(entry.web_link):
            meeting_url, meeting_provider = entry.web_link, meeting_provider_for(entry.web_link)
        else:
            found = find_meeting_url(entry.body)
            if found:
                meeting_url, meeting_provider = found

        sensitivity = (entry.sensitivity or "").lower()
        importance = (entry.importance or "").lower()

        return CalendarEvent(
            id=entry.stable_id(),
            account_id=account_id,
            calendar_id=CALENDAR_ID,
            subject=entry.subject or "",
            start=start,
            end=end,
            location=entry.location or "",
            body=entry.body or "",
            body_format="html" if entry.is_html else "text",
            organizer=entry.organizer or "",
            attendees=required + optional + resources,
            attendee_details=attendee_details,
            is_all_day=bool(entry.is_all_day),
            response_status=_RESPONSE.get((entry.response_type or "").lower(), "notResponded"),
            show_as=_SHOW_AS.get((entry.show_as or "").lower(), "busy"),
            sensitivity=(
                sensitivity if sensitivity in ("private", "personal", "confidential") else "normal"
            ),
            importance=importance if importance in ("high", "low") else "normal",
            is_online_meeting=meeting_url is not None,
            online_meeting_url=meeting_url,
            online_meeting_provider=meeting_provider,
            is_recurring=bool(entry.recurrence),
            recurrence_pattern=entry.recurrence or None,
            categories=list(entry.categories or []),
            created_at=_parse_timestamp(entry.created_date_time),
            last_modified_at=_parse_timestamp(entry.last_modified_date_time),
        )
