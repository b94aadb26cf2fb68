"""
Unit tests for IcsFeedProvider.

Feeds are served by httpx.MockTransport and expiry is driven by a fake
clock; no network access.
"""

from datetime import UTC, datetime, timedelta

import httpx
import pytest

from calmesh.accounts.models import Account
from calmesh.errors import FeedFetchError, ProviderConfigurationError
from calmesh.integrations.base import ResultStatus
from calmesh.integrations.feeds.ics import CALENDAR_ID, IcsFeedProvider
from calmesh.integrations.types import EventResponse

FEED_URL = "https://calendar.example.com/feed.ics"

SAMPLE_ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//calmesh tests//EN
BEGIN:VEVENT
UID:standup
DTSTART:20250303T090000Z
DTEND:20250303T093000Z
RRULE:FREQ=DAILY;COUNT=5
EXDATE:20250305T090000Z
SUMMARY:Standup
END:VEVENT
BEGIN:VEVENT
UID:standup
RECURRENCE-ID:20250304T090000Z
DTSTART:20250304T100000Z
DTEND:20250304T103000Z
SUMMARY:Standup (moved)
END:VEVENT
BEGIN:VEVENT
UID:review
DTSTART:20250303T140000Z
DTEND:20250303T150000Z
SUMMARY:Design review
LOCATION:Room 4
DESCRIPTION:Join at https://teams.microsoft.com/l/meetup-join/abc123 please
ORGANIZER;CN=Ada:mailto:ada@acme.com
ATTENDEE;CN=Bob;PARTSTAT=ACCEPTED;ROLE=OPT-PARTICIPANT:mailto:bob@acme.com
TRANSP:TRANSPARENT
CLASS:PRIVATE
PRIORITY:1
END:VEVENT
BEGIN:VEVENT
UID:offsite
DTSTART;VALUE=DATE:20250306
DTEND;VALUE=DATE:20250307
SUMMARY:Offsite
X-MICROSOFT-SKYPETEAMSMEETINGURL:https://teams.microsoft.com/l/meetup-join/offsite
END:VEVENT
BEGIN:VFREEBUSY
FREEBUSY;FBTYPE=BUSY-TENTATIVE:20250303T120000Z/20250303T130000Z
END:VFREEBUSY
END:VCALENDAR
"""

MONDAY = datetime(2025, 3, 3, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FeedServer:
    """Counts requests and serves a configurable body / status."""

    def __init__(self, body: str = SAMPLE_ICS, status: int = 200) -> None:
        self.body = body
        self.status = status
        self.requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        return httpx.Response(self.status, text=self.body)


@pytest.fixture
def server() -> FeedServer:
    return FeedServer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(MONDAY + timedelta(hours=8))


@pytest.fixture
def provider(server, clock) -> IcsFeedProvider:
    return IcsFeedProvider(transport=httpx.MockTransport(server), clock=clock)


@pytest.fixture
def account() -> Account:
    return Account(
        id="team",
        displayName="Team calendar",
        provider="ics",
        providerConfig={"IcsUrl": FEED_URL},
    )


# ---------------------------------------------------------------------------
# list_events
# ---------------------------------------------------------------------------


class TestListEvents:
    @pytest.mark.asyncio
    async def test_expands_recurrence_and_freebusy(self, provider, account):
        events = await provider.list_events(
            account, start=MONDAY, end=MONDAY + timedelta(days=7)
        )

        assert [(e.subject, e.start) for e in events] == [
            ("Standup", datetime(2025, 3, 3, 9, tzinfo=UTC)),
            ("Tentative", datetime(2025, 3, 3, 12, tzinfo=UTC)),
            ("Design review", datetime(2025, 3, 3, 14, tzinfo=UTC)),
            ("Standup (moved)", datetime(2025, 3, 4, 10, tzinfo=UTC)),
            ("Offsite", datetime(2025, 3, 6, tzinfo=UTC)),
            ("Standup", datetime(2025, 3, 6, 9, tzinfo=UTC)),
            ("Standup", datetime(2025, 3, 7, 9, tzinfo=UTC)),
        ]

    @pytest.mark.asyncio
    async def test_default_window_starts_today(self, provider, account, clock):
        clock.now = datetime(2025, 3, 6, 15, tzinfo=UTC)

        events = await provider.list_events(account)

        assert [e.subject for e in events] == ["Offsite", "Standup", "Standup"]

    @pytest.mark.asyncio
    async def test_naive_window_is_utc(self, provider, account):
        events = await provider.list_events(
            account, start=datetime(2025, 3, 4), end=datetime(2025, 3, 5)
        )

        assert [e.subject for e in events] == ["Standup (moved)"]

    @pytest.mark.asyncio
    async def test_count_truncates_after_sort(self, provider, account):
        events = await provider.list_events(
            account, start=MONDAY, end=MONDAY + timedelta(days=7), count=2
        )
        assert [e.subject for e in events] == ["Standup", "Tentative"]

    @pytest.mark.asyncio
    async def test_maps_event_fields(self, provider, account):
        events = await provider.list_events(
            account, start=MONDAY + timedelta(hours=13), end=MONDAY + timedelta(hours=16)
        )
        review = events[0]

        assert review.calendar_id == CALENDAR_ID
        assert review.account_id == "team"
        assert review.location == "Room 4"
        assert review.organizer == "ada@acme.com"
        assert review.organizer_name == "Ada"
        assert review.attendees == ["bob@acme.com"]
        assert review.attendee_details[0].response_status == "accepted"
        assert review.attendee_details[0].type == "optional"
        assert review.show_as == "free"
        assert review.sensitivity == "private"
        assert review.importance == "high"
        assert review.is_online_meeting
        assert review.online_meeting_url == "https://teams.microsoft.com/l/meetup-join/abc123"
        assert review.online_meeting_provider == "teamsForBusiness"

    @pytest.mark.asyncio
    async def test_all_day_and_teams_property(self, provider, account):
        events = await provider.list_events(
            account, start=datetime(2025, 3, 6, tzinfo=UTC), end=datetime(2025, 3, 6, 1, tzinfo=UTC)
        )
        offsite = events[0]

        assert offsite.is_all_day
        assert offsite.end == datetime(2025, 3, 7, tzinfo=UTC)
        assert offsite.online_meeting_url.endswith("/offsite")

    @pytest.mark.asyncio
    async def test_recurring_flag(self, provider, account):
        events = await provider.list_events(
            account, start=MONDAY, end=MONDAY + timedelta(hours=10)
        )
        standup = events[0]
        assert standup.is_recurring
        assert standup.recurrence_pattern.startswith("FREQ=DAILY")


# ---------------------------------------------------------------------------
# Caching and failures
# ---------------------------------------------------------------------------


class TestFetching:
    @pytest.mark.asyncio
    async def test_cached_within_ttl(self, provider, account, server, clock):
        await provider.list_events(account)
        clock.now += timedelta(minutes=4)
        await provider.list_events(account)
        assert server.requests == 1

    @pytest.mark.asyncio
    async def test_stale_served_when_refresh_fails(self, provider, account, server, clock):
        first = await provider.list_events(account, start=MONDAY, end=MONDAY + timedelta(days=7))
        server.status = 503
        clock.now += timedelta(minutes=10)

        again = await provider.list_events(account, start=MONDAY, end=MONDAY + timedelta(days=7))

        assert server.requests == 2
        assert [e.id for e in again] == [e.id for e in first]

    @pytest.mark.asyncio
    async def test_first_fetch_failure(self, provider, account, server):
        server.status = 500
        with pytest.raises(FeedFetchError):
            await provider.list_events(account)

    @pytest.mark.asyncio
    async def test_missing_url(self, provider, server):
        account = Account(id="bare", provider="ics")
        with pytest.raises(ProviderConfigurationError, match="icsUrl"):
            await provider.list_events(account)
        assert server.requests == 0


# ---------------------------------------------------------------------------
# Other reads and read-only behaviour
# ---------------------------------------------------------------------------


class TestReadOnly:
    @pytest.mark.asyncio
    async def test_list_calendars(self, provider, account):
        calendars = await provider.list_calendars(account)
        assert calendars[0].id == CALENDAR_ID
        assert calendars[0].name == "Team calendar"
        assert not calendars[0].can_edit

    @pytest.mark.asyncio
    async def test_get_event_by_uid(self, provider, account):
        event = await provider.get_event(account, "review")
        assert event.subject == "Design review"
        assert await provider.get_event(account, "nope") is None

    @pytest.mark.asyncio
    async def test_mutations_unsupported(self, provider, account, server):
        results = [
            await provider.create_event(account, "x", MONDAY, MONDAY + timedelta(hours=1)),
            await provider.update_event(account, "review", subject="y"),
            await provider.delete_event(account, "review"),
            await provider.respond_to_event(account, "review", EventResponse.ACCEPTED),
            await provider.send_message(account, ["a@b.com"], "s", "b"),
        ]
        assert all(r.status == ResultStatus.UNSUPPORTED for r in results)
        assert all(r.account_id == "team" for r in results)
        assert "read-only" in results[0].error
        assert server.requests == 0

    @pytest.mark.asyncio
    async def test_messages_and_contacts_empty(self, provider, account):
        assert await provider.list_messages(account) == []
        assert await provider.search_contacts(account, "ada") == []
        assert await provider.get_message(account, "m1") is None

    @pytest.mark.asyncio
    async def test_aclose(self, provider, account):
        await provider.list_events(account)
        await provider.aclose()
        assert provider._client is None
