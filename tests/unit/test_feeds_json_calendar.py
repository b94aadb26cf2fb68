"""
Unit tests for JsonCalendarProvider - local files and OneDrive downloads.
"""

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest

from calmesh.accounts.models import Account
from calmesh.errors import (
    AuthenticationRequiredError,
    FeedFetchError,
    ProviderConfigurationError,
)
from calmesh.integrations.auth import StaticTokenProvider
from calmesh.integrations.base import ResultStatus
from calmesh.integrations.feeds.json_calendar import (
    CALENDAR_ID,
    JsonCalendarEntry,
    JsonCalendarProvider,
    parse_entries,
)

MONDAY = datetime(2025, 3, 3, tzinfo=UTC)
WEEK = (MONDAY, MONDAY + timedelta(days=7))

ENTRIES = [
    {
        "Id": "evt-1",
        "Subject": "Planning",
        "StartWithTimeZone": "2025-03-03T10:00:00+01:00",
        "EndWithTimeZone": "2025-03-03T11:00:00+01:00",
        "RequiredAttendees": "ada@acme.com;bob@acme.com",
        "OptionalAttendees": "carol@acme.com",
        "ShowAs": "oof",
        "ResponseType": "tentativelyAccepted",
        "Sensitivity": "Private",
        "Importance": "High",
        "IsHtml": True,
        "Body": "<p>Join https://meet.google.com/abc-defg-hij</p>",
    },
    {
        "subject": "Lunch",
        "start": "2025-03-04T12:00:00",
        "end": "2025-03-04T13:00:00",
        "categories": "Personal, Food",
    },
    {"subject": "Next month", "start": "2025-04-01T09:00:00Z", "end": "2025-04-01T10:00:00Z"},
    {"subject": "No times"},
]


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(MONDAY + timedelta(hours=8))


@pytest.fixture
def calendar_file(tmp_path: Path) -> Path:
    path = tmp_path / "calendar.json"
    # Exports written by some tools carry a UTF-8 BOM
    path.write_text(json.dumps(ENTRIES), encoding="utf-8-sig")
    return path


@pytest.fixture
def local_account(calendar_file: Path) -> Account:
    return Account(
        id="exported",
        displayName="Exported",
        provider="json",
        providerConfig={"source": "local", "FilePath": str(calendar_file)},
    )


# ---------------------------------------------------------------------------
# Entry parsing
# ---------------------------------------------------------------------------


class TestEntries:
    def test_case_insensitive_keys(self):
        entry = JsonCalendarEntry.model_validate({"SUBJECT": "x", "startwithtimezone": "2025"})
        assert entry.subject == "x"
        assert entry.start_with_time_zone == "2025"

    def test_naive_timestamp_is_utc(self):
        entry = JsonCalendarEntry.model_validate({"start": "2025-03-04T12:00:00"})
        assert entry.start_at == datetime(2025, 3, 4, 12, tzinfo=UTC)

    def test_zoned_timestamp_preferred(self):
        entry = JsonCalendarEntry.model_validate(
            {"start": "garbage", "startWithTimeZone": "2025-03-03T10:00:00+01:00"}
        )
        assert entry.start_at == datetime(2025, 3, 3, 9, tzinfo=UTC)

    def test_stable_id_without_id(self):
        a = JsonCalendarEntry.model_validate({"subject": "Lunch", "start": "2025-03-04"})
        b = JsonCalendarEntry.model_validate({"subject": "Lunch", "start": "2025-03-04"})
        assert a.stable_id() == b.stable_id()

    def test_not_an_array(self):
        with pytest.raises(FeedFetchError, match="JSON array"):
            parse_entries('{"subject": "x"}', "cal.json")

    def test_invalid_json(self):
        with pytest.raises(FeedFetchError, match="Invalid JSON"):
            parse_entries("[{", "cal.json")


# ---------------------------------------------------------------------------
# Local source
# ---------------------------------------------------------------------------


class TestLocalSource:
    @pytest.mark.asyncio
    async def test_list_events_in_window(self, local_account, clock):
        provider = JsonCalendarProvider(clock=clock)

        events = await provider.list_events(local_account, start=WEEK[0], end=WEEK[1])

        assert [e.subject for e in events] == ["Planning", "Lunch"]
        planning, lunch = events
        assert planning.id == "evt-1"
        assert planning.calendar_id == CALENDAR_ID
        assert planning.start == datetime(2025, 3, 3, 9, tzinfo=UTC)
        assert planning.attendees == ["ada@acme.com", "bob@acme.com", "carol@acme.com"]
        assert planning.attendee_details[2].type == "optional"
        assert planning.show_as == "outOfOffice"
        assert planning.response_status == "tentative"
        assert planning.sensitivity == "private"
        assert planning.importance == "high"
        assert planning.body_format == "html"
        assert planning.online_meeting_provider == "googleMeet"
        assert lunch.categories == ["Personal", "Food"]

    @pytest.mark.asyncio
    async def test_default_window(self, local_account, clock):
        provider = JsonCalendarProvider(clock=clock)
        events = await provider.list_events(local_account)
        assert "Next month" not in [e.subject for e in events]

    @pytest.mark.asyncio
    async def test_naive_window_is_utc(self, local_account, clock):
        provider = JsonCalendarProvider(clock=clock)

        events = await provider.list_events(
            local_account, start=datetime(2025, 3, 4), end=datetime(2025, 3, 5)
        )

        assert [e.subject for e in events] == ["Lunch"]

    @pytest.mark.asyncio
    async def test_get_event(self, local_account, clock):
        provider = JsonCalendarProvider(clock=clock)
        events = await provider.list_events(local_account, start=WEEK[0], end=WEEK[1])

        lunch = await provider.get_event(local_account, events[1].id)

        assert lunch.subject == "Lunch"
        assert await provider.get_event(local_account, "missing") is None

    @pytest.mark.asyncio
    async def test_cached_until_ttl(self, local_account, calendar_file, clock):
        provider = JsonCalendarProvider(clock=clock)
        await provider.list_events(local_account, start=WEEK[0], end=WEEK[1])

        calendar_file.write_text("[]", encoding="utf-8")
        clock.now += timedelta(minutes=14)
        assert len(await provider.list_events(local_account, start=WEEK[0], end=WEEK[1])) == 2

        clock.now += timedelta(minutes=2)
        assert await provider.list_events(local_account, start=WEEK[0], end=WEEK[1]) == []

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path, clock):
        account = Account(
            id="x", provider="json", providerConfig={"filePath": str(tmp_path / "nope.json")}
        )
        with pytest.raises(FeedFetchError, match="not found"):
            await JsonCalendarProvider(clock=clock).list_events(account)

    @pytest.mark.asyncio
    async def test_missing_file_path(self):
        account = Account(id="x", provider="json")
        with pytest.raises(ProviderConfigurationError, match="filePath"):
            await JsonCalendarProvider().list_events(account)

    @pytest.mark.asyncio
    async def test_unknown_source(self):
        account = Account(id="x", provider="json", providerConfig={"source": "s3"})
        with pytest.raises(ProviderConfigurationError, match="'s3'"):
            await JsonCalendarProvider().list_events(account)

    @pytest.mark.asyncio
    async def test_writes_unsupported(self, local_account):
        result = await JsonCalendarProvider().delete_event(local_account, "evt-1")
        assert result.status == ResultStatus.UNSUPPORTED


# ---------------------------------------------------------------------------
# OneDrive source
# ---------------------------------------------------------------------------


class DriveServer:
    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, text="error")
        return httpx.Response(200, content=json.dumps(ENTRIES).encode())


def _onedrive_account(**config: str) -> Account:
    return Account(
        id="shared",
        provider="json",
        providerConfig={"source": "OneDrive", "oneDrivePath": "Exports/calendar.json", **config},
    )


class TestOneDriveSource:
    @pytest.mark.asyncio
    async def test_download_with_auth_account(self, clock):
        server = DriveServer()
        tokens = StaticTokenProvider({"work": "tok-work"})
        provider = JsonCalendarProvider(
            tokens,
            account_lookup=lambda account_id: Account(id=account_id, provider="m365"),
            transport=httpx.MockTransport(server),
            clock=clock,
        )

        events = await provider.list_events(
            _onedrive_account(authAccountId="work"), start=WEEK[0], end=WEEK[1]
        )

        assert len(events) == 2
        request = server.requests[0]
        assert request.url.path == "/v1.0/me/drive/root:/Exports/calendar.json:/content"
        assert request.headers["Authorization"] == "Bearer tok-work"

    @pytest.mark.asyncio
    async def test_unknown_auth_account(self, clock):
        provider = JsonCalendarProvider(
            StaticTokenProvider(), account_lookup=lambda account_id: None, clock=clock
        )
        with pytest.raises(ProviderConfigurationError, match="'ghost'"):
            await provider.list_events(_onedrive_account(authAccountId="ghost"))

    @pytest.mark.asyncio
    async def test_no_token(self, clock):
        server = DriveServer()
        provider = JsonCalendarProvider(
            StaticTokenProvider(), transport=httpx.MockTransport(server), clock=clock
        )
        with pytest.raises(AuthenticationRequiredError):
            await provider.list_events(_onedrive_account())
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_rejected_token(self, clock):
        provider = JsonCalendarProvider(
            StaticTokenProvider({"shared": "tok"}),
            transport=httpx.MockTransport(DriveServer(401)),
            clock=clock,
        )
        with pytest.raises(AuthenticationRequiredError, match="Files.Read"):
            await provider.list_events(_onedrive_account())

    @pytest.mark.asyncio
    async def test_missing_drive_file(self, clock):
        provider = JsonCalendarProvider(
            StaticTokenProvider({"shared": "tok"}),
            transport=httpx.MockTransport(DriveServer(404)),
            clock=clock,
        )
        with pytest.raises(FeedFetchError, match="not found"):
            await provider.list_events(_onedrive_account())

    @pytest.mark.asyncio
    async def test_requires_token_provider(self):
        with pytest.raises(ProviderConfigurationError, match="token provider"):
            await JsonCalendarProvider().list_events(_onedrive_account())
