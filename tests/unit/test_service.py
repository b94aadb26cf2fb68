"""
Unit tests for CalendarMeshService - the operations facade.

Backends are SimulatedProvider instances; no network access.
"""

from datetime import UTC, datetime, time, timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from calmesh.accounts.models import Account
from calmesh.accounts.registry import AccountRegistry
from calmesh.errors import (
    AccountNotFoundError,
    AuthenticationRequiredError,
    BatchValidationError,
    ErrorKind,
    NoAccountAvailableError,
    TargetNotFoundError,
    ValidationFailure,
)
from calmesh.integrations.base import ResultStatus
from calmesh.integrations.resolver import ProviderResolver
from calmesh.integrations.types import ContactFields, ProviderKind, UnsubscribeInfo
from calmesh.integrations.unsubscribe import UnsubscribeExecutor
from calmesh.orchestration.service import CalendarMeshService, strip_cdata
from calmesh.settings import CalmeshSettings
from tests.simulation import SimulatedProvider
from tests.simulation.providers import BASE_TIME


@pytest.fixture
def m365() -> SimulatedProvider:
    return SimulatedProvider(ProviderKind.MICROSOFT_365)


@pytest.fixture
def google() -> SimulatedProvider:
    return SimulatedProvider(ProviderKind.GOOGLE)


@pytest.fixture
def ics() -> SimulatedProvider:
    return SimulatedProvider(ProviderKind.ICS)


@pytest.fixture
def registry() -> AccountRegistry:
    return AccountRegistry.from_accounts(
        [
            Account(id="work", provider="m365", domains=["acme.com"]),
            Account(id="personal", provider="gmail", domains=["gmail.com"]),
            Account(id="holidays", provider="ics"),
        ]
    )


@pytest.fixture
def service(registry, m365, google, ics) -> CalendarMeshService:
    resolver = ProviderResolver(
        {ProviderKind.MICROSOFT_365: m365, ProviderKind.GOOGLE: google, ProviderKind.ICS: ics}
    )
    settings = CalmeshSettings(_env_file=None, batch_max_size=3, batch_max_concurrency=2)
    return CalendarMeshService(registry, resolver, settings=settings)


# ---------------------------------------------------------------------------
# CDATA
# ---------------------------------------------------------------------------


class TestStripCdata:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("<![CDATA[<p>Hi</p>]]>", "<p>Hi</p>"),
            ("  <![cdata[multi\nline]]>  ", "multi\nline"),
            ("<p>plain</p>", "<p>plain</p>"),
            ("<![CDATA[unterminated", "<![CDATA[unterminated"),
            ("", ""),
        ],
    )
    def test_strip(self, raw, expected):
        assert strip_cdata(raw) == expected


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:
    def test_list_accounts(self, service):
        assert [a.id for a in service.list_accounts()] == ["work", "personal", "holidays"]

    @pytest.mark.asyncio
    async def test_get_emails_merges_newest_first(self, service, m365, google):
        m365.add_message("work", subject="older", minutes=1)
        google.add_message("personal", subject="newer", minutes=5)

        result = await service.get_emails()

        assert [m.subject for m in result.items] == ["newer", "older"]

    @pytest.mark.asyncio
    async def test_one_expired_account_does_not_hide_others(self, service, m365, google):
        google.add_message("personal", subject="visible")
        m365.fail_account("work", AuthenticationRequiredError("work"))

        result = await service.get_emails()

        assert [m.subject for m in result.items] == ["visible"]
        assert result.warnings[0].account_id == "work"
        assert result.warnings[0].kind == ErrorKind.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_calendar_events_sorted_by_start(self, service, m365, ics):
        ics.add_event("holidays", subject="late", hours=5)
        m365.add_event("work", subject="early", hours=1)

        result = await service.get_calendar_events(
            start=BASE_TIME, end=BASE_TIME + timedelta(days=1)
        )

        assert [e.subject for e in result.items] == ["early", "late"]

    @pytest.mark.asyncio
    async def test_calendar_events_rejects_inverted_window(self, service):
        with pytest.raises(ValidationFailure):
            await service.get_calendar_events(start=BASE_TIME, end=BASE_TIME)

    @pytest.mark.asyncio
    async def test_calendar_events_accept_naive_bounds(self, service, m365, ics):
        m365.add_event("work", subject="standup", hours=1)
        ics.add_event("holidays", subject="holiday", hours=30)

        result = await service.get_calendar_events(
            start=datetime(2025, 3, 3), end=datetime(2025, 3, 4)
        )

        assert [e.subject for e in result.items] == ["standup"]
        assert result.complete

    @pytest.mark.asyncio
    async def test_calendar_events_default_window(self, service, m365):
        m365.list_events = AsyncMock(return_value=[])

        await service.get_calendar_events("work")

        kwargs = m365.list_events.await_args.kwargs
        today = datetime.combine(datetime.now(UTC).date(), time.min, UTC)
        assert kwargs["start"] == today
        assert kwargs["end"] == today + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_calendar_events_open_end_spans_a_week(self, service, m365):
        m365.list_events = AsyncMock(return_value=[])

        await service.get_calendar_events("work", start=BASE_TIME)

        assert m365.list_events.await_args.kwargs["end"] == BASE_TIME + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_search_emails_naive_bounds_become_utc(self, service, google):
        google.search_messages = AsyncMock(return_value=[])

        await service.search_emails("report", "personal", since=datetime(2025, 3, 1))

        kwargs = google.search_messages.await_args.kwargs
        assert kwargs["since"] == datetime(2025, 3, 1, tzinfo=UTC)
        assert kwargs["until"] is None

    @pytest.mark.asyncio
    async def test_search_contacts_sorted_by_name(self, service, m365, google):
        m365.add_contact("work", "Zed Ada", "zed@acme.com")
        google.add_contact("personal", "ada lovelace", "ada@gmail.com")

        result = await service.search_contacts("ada")

        assert [c.display_name for c in result.items] == ["ada lovelace", "Zed Ada"]

    @pytest.mark.asyncio
    async def test_search_contacts_requires_query(self, service):
        with pytest.raises(ValidationFailure):
            await service.search_contacts("  ")

    @pytest.mark.asyncio
    async def test_details_unknown_account(self, service):
        with pytest.raises(AccountNotFoundError):
            await service.get_email_details("ghost", "m1")

    @pytest.mark.asyncio
    async def test_get_event_details(self, service, m365):
        event = m365.add_event("work", id="e1", subject="Standup")
        assert await service.get_event_details("work", "e1") == event


# ---------------------------------------------------------------------------
# Single-target writes
# ---------------------------------------------------------------------------


class TestSendEmail:
    @pytest.mark.asyncio
    async def test_routes_by_recipient_domain(self, service, google):
        result = await service.send_email("friend@gmail.com", "Hi", "<![CDATA[<b>Hello</b>]]>")

        assert result.success
        assert result.account_id == "personal"
        assert google.sent[0]["body"] == "<b>Hello</b>"

    @pytest.mark.asyncio
    async def test_routes_on_first_recipient(self, service, m365):
        result = await service.send_email(
            "boss@acme.com; friend@gmail.com", "Report", "body", cc=["cc@acme.com"]
        )

        assert result.account_id == "work"
        assert m365.sent[0]["to"] == ["boss@acme.com", "friend@gmail.com"]
        assert m365.sent[0]["cc"] == ["cc@acme.com"]

    @pytest.mark.asyncio
    async def test_unmatched_domain_uses_first_account(self, service):
        result = await service.send_email(["x@elsewhere.org"], "Hi", "body")
        assert result.account_id == "work"

    @pytest.mark.asyncio
    async def test_explicit_account(self, service, google):
        result = await service.send_email("boss@acme.com", "Hi", "body", account_id="personal")
        assert result.account_id == "personal"
        assert len(google.sent) == 1

    @pytest.mark.asyncio
    async def test_requires_recipient(self, service):
        with pytest.raises(ValidationFailure):
            await service.send_email([], "Hi", "body")

    @pytest.mark.asyncio
    async def test_no_accounts(self, m365):
        empty = CalendarMeshService(
            AccountRegistry(),
            ProviderResolver({ProviderKind.MICROSOFT_365: m365}),
            settings=CalmeshSettings(_env_file=None),
        )
        with pytest.raises(NoAccountAvailableError):
            await empty.send_email("a@b.com", "Hi", "body")


class TestWrites:
    @pytest.mark.asyncio
    async def test_move_requires_folder(self, service):
        with pytest.raises(ValidationFailure):
            await service.move_email("work", "m1", " ")

    @pytest.mark.asyncio
    async def test_write_failure_is_result(self, service, m365):
        m365.fail_account("work", AuthenticationRequiredError("work"))

        result = await service.delete_email("work", "m1")

        assert result.status == ResultStatus.ERROR
        assert result.error_kind == ErrorKind.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_create_event_routes_by_attendee(self, service):
        result = await service.create_event(
            "Lunch",
            BASE_TIME,
            BASE_TIME + timedelta(hours=1),
            attendees="pal@gmail.com, boss@acme.com",
        )
        assert result.account_id == "personal"

    @pytest.mark.asyncio
    async def test_create_event_rejects_inverted_times(self, service, m365):
        with pytest.raises(ValidationFailure):
            await service.create_event("Bad", BASE_TIME, BASE_TIME - timedelta(minutes=1))
        assert m365.calls == []

    @pytest.mark.asyncio
    async def test_respond_parses_spelling(self, service, m365):
        result = await service.respond_to_event("work", "e1", "tentativelyAccepted")
        assert result.data["response"] == "tentative"

    @pytest.mark.asyncio
    async def test_respond_invalid(self, service, m365):
        with pytest.raises(ValidationFailure, match="Invalid response type"):
            await service.respond_to_event("work", "e1", "maybe")
        assert m365.calls == []

    @pytest.mark.asyncio
    async def test_create_contact_routes_by_email(self, service):
        fields = ContactFields(display_name="Ada", email_addresses=["ada@acme.com"])
        result = await service.create_contact(fields)
        assert result.account_id == "work"

    @pytest.mark.asyncio
    async def test_read_only_account_write(self, service, ics):
        result = await service.delete_event("holidays", "e1")
        assert result.account_id == "holidays"


# ---------------------------------------------------------------------------
# Bulk writes
# ---------------------------------------------------------------------------


class TestBulk:
    @pytest.mark.asyncio
    async def test_bulk_mark_read(self, service, m365, google):
        result = await service.bulk_mark_emails_read(
            '[{"accountId": "work", "emailId": "1"}, {"accountId": "personal", "emailId": "2"}]'
        )
        assert result.succeeded == 2
        assert ("mark_message_read", "work") in m365.calls
        assert ("mark_message_read", "personal") in google.calls

    @pytest.mark.asyncio
    async def test_bulk_limit_from_settings(self, service, m365):
        items = [{"accountId": "work", "emailId": str(i)} for i in range(4)]
        with pytest.raises(BatchValidationError):
            await service.bulk_delete_emails(items)
        assert m365.calls == []

    @pytest.mark.asyncio
    async def test_bulk_move_requires_folder(self, service):
        with pytest.raises(ValidationFailure):
            await service.bulk_move_emails([{"accountId": "work", "emailId": "1"}], "")

    @pytest.mark.asyncio
    async def test_aclose(self, service, m365, google, ics):
        await service.aclose()
        assert m365.closed and google.closed and ics.closed


# ---------------------------------------------------------------------------
# Unsubscribe
# ---------------------------------------------------------------------------

ONE_CLICK = UnsubscribeInfo(
    https_url="https://lists.example.com/u/42",
    mailto_url="mailto:leave@lists.example.com",
    supports_one_click=True,
    list_unsubscribe="<https://lists.example.com/u/42>, <mailto:leave@lists.example.com>",
    list_unsubscribe_post="List-Unsubscribe=One-Click",
)


class TestUnsubscribe:
    @pytest.mark.asyncio
    async def test_info(self, service, google):
        google.add_message("personal", id="m1", unsubscribe=ONE_CLICK)

        info = await service.get_unsubscribe_info("personal", "m1")

        assert info.supports_one_click
        assert info.recommended_method == "one-click"

    @pytest.mark.asyncio
    async def test_info_missing_email(self, service):
        with pytest.raises(TargetNotFoundError):
            await service.get_unsubscribe_info("personal", "nope")

    @pytest.mark.asyncio
    async def test_no_headers(self, service, google):
        google.add_message("personal", id="m1")

        result = await service.unsubscribe_from_email("personal", "m1")

        assert not result.success
        assert result.message == "This email does not contain List-Unsubscribe headers"

    @pytest.mark.asyncio
    async def test_auto_uses_one_click(self, registry, m365, google, ics):
        posted: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            posted.append(request)
            return httpx.Response(200)

        resolver = ProviderResolver(
            {ProviderKind.MICROSOFT_365: m365, ProviderKind.GOOGLE: google, ProviderKind.ICS: ics}
        )
        service = CalendarMeshService(
            registry,
            resolver,
            settings=CalmeshSettings(_env_file=None),
            unsubscriber=UnsubscribeExecutor(transport=httpx.MockTransport(handler)),
        )
        google.add_message("personal", id="m1", unsubscribe=ONE_CLICK)

        result = await service.unsubscribe_from_email("personal", "m1")
        await service.aclose()

        assert result.success
        assert result.method == "one-click"
        assert str(posted[0].url) == "https://lists.example.com/u/42"
        assert google.sent == []

    @pytest.mark.asyncio
    async def test_auto_https_returns_link(self, service, google):
        info = UnsubscribeInfo(
            https_url="https://news.example.com/optout",
            list_unsubscribe="<https://news.example.com/optout>",
        )
        google.add_message("personal", id="m1", unsubscribe=info)

        result = await service.unsubscribe_from_email("personal", "m1")

        assert result.success
        assert result.method == "https"
        assert result.message == "Open this URL to unsubscribe: https://news.example.com/optout"

    @pytest.mark.asyncio
    async def test_auto_mailto_sends_from_same_account(self, service, google):
        info = UnsubscribeInfo(
            mailto_url="mailto:optout@news.example.com?subject=remove%20me",
            list_unsubscribe="<mailto:optout@news.example.com?subject=remove%20me>",
        )
        google.add_message("personal", id="m1", unsubscribe=info)

        result = await service.unsubscribe_from_email("personal", "m1")

        assert result.success
        assert result.message == "Sent unsubscribe email to optout@news.example.com"
        sent = google.sent[0]
        assert sent["to"] == ["optout@news.example.com"]
        assert sent["subject"] == "remove me"
        assert sent["body"] == "Unsubscribe"
        assert sent["body_format"] == "text"

    @pytest.mark.asyncio
    async def test_explicit_mailto_without_address(self, service, google):
        info = UnsubscribeInfo(
            https_url="https://news.example.com/optout",
            list_unsubscribe="<https://news.example.com/optout>",
        )
        google.add_message("personal", id="m1", unsubscribe=info)

        result = await service.unsubscribe_from_email("personal", "m1", method="mailto")

        assert not result.success
        assert google.sent == []

    @pytest.mark.asyncio
    async def test_unknown_method(self, service, google):
        with pytest.raises(ValidationFailure, match="Unknown method 'email'"):
            await service.unsubscribe_from_email("personal", "m1", method="email")
        assert google.calls == []


# ---------------------------------------------------------------------------
# Contextual summary
# ---------------------------------------------------------------------------


class TestContextualSummary:
    @pytest.mark.asyncio
    async def test_clusters_and_mismatches(self, service, m365, google, ics):
        m365.add_message("work", subject="Invoice 1042 attached", from_addr="ar@vendor.com")
        m365.add_message("work", subject="Sprint status", from_addr="pm@acme.com", is_read=True)
        google.add_message(
            "personal", subject="Quarterly numbers", from_addr="cfo@acme.com", minutes=3
        )

        summary = await service.get_contextual_email_summary()

        assert summary.total_emails == 3
        assert summary.accounts_searched == 3
        topics = {c.topic: c.email_count for c in summary.clusters}
        assert topics == {"Financial": 1, "Project Updates": 1, "Other/General": 1}
        (mismatch,) = summary.mismatches
        assert mismatch.received_on_account == "personal"
        assert mismatch.expected_account == "work"
        assert mismatch.confidence == 0.8
        assert [p.account_id for p in summary.personas] == ["work", "personal"]
        assert ("list_messages", "holidays") in ics.calls

    @pytest.mark.asyncio
    async def test_topics_search_every_account(self, service, m365, google):
        m365.fail_account("work", AuthenticationRequiredError("work"))

        summary = await service.get_contextual_email_summary("invoice, budget")

        assert summary.search_keywords == ["invoice", "budget"]
        assert ("search_messages", "personal") in google.calls
        assert [w.account_id for w in summary.warnings] == ["work"]
