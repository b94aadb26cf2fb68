"""
calmesh.orchestration.service - Operations facade

CalendarMeshService is the single entry point a tool host (MCP server, CLI,
agent runtime) calls. It wires the account registry, provider resolver and
the three executors together:

- reads without an account id fan out to every enabled account
- writes without an account id are routed by SmartRouter
- bulk writes go through BatchExecutor

Reads return FanoutResult (multi-account) or a domain object; writes return
a ProviderResult tagged with the account that served them. Pre-dispatch
failures (unknown account, nothing to route to, invalid input) raise.
"""

import logging
import re
from collections.abc import Sequence
from datetime import UTC, datetime, time, timedelta

from calmesh.accounts.models import Account
from calmesh.accounts.registry import AccountRegistry
from calmesh.errors import TargetNotFoundError, ValidationFailure
from calmesh.integrations.base import ProviderResult
from calmesh.integrations.resolver import ProviderResolver
from calmesh.integrations.types import (
    CalendarEvent,
    CalendarInfo,
    Contact,
    ContactFields,
    EmailMessage,
    EventResponse,
    UnsubscribeInfo,
    ensure_utc,
)
from calmesh.integrations.unsubscribe import (
    UnsubscribeExecutor,
    UnsubscribeResult,
    parse_mailto_url,
)
from calmesh.orchestration.batch import BatchExecutor, BatchInput, BatchResult
from calmesh.orchestration.fanout import FanoutExecutor, FanoutResult
from calmesh.orchestration.routing import SmartRouter
from calmesh.orchestration.summary import (
    ContextualEmailSummary,
    build_contextual_summary,
    parse_topics,
)
from calmesh.settings import CalmeshSettings, get_settings

logger = logging.getLogger(__name__)

_CDATA_RE = re.compile(r"^<!\[CDATA\[(.*)\]\]>$", re.DOTALL | re.IGNORECASE)

DEFAULT_EVENT_WINDOW = timedelta(days=7)
UNSUBSCRIBE_METHODS = ("auto", "one-click", "https", "mailto")


def strip_cdata(content: str) -> str:
    """Remove a ``<![CDATA[...]]>`` wrapper around the whole content, if present."""
    if not content:
        return content
    match = _CDATA_RE.match(content.strip())
    return match.group(1) if match else content


def _as_list(value: str | Sequence[str] | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.replace(";", ",").split(",") if v.strip()]
    return [v for v in value if v]


class CalendarMeshService:
    """
    Uniform email / calendar / contact operations across every account.

    Example:
        >>> service = CalendarMeshService(registry, ProviderResolver.default(tokens))
        >>> result = await service.get_calendar_events(start=monday, end=friday)
        >>> for warning in result.warnings:
        ...     print(warning.account_id, warning.error)
    """

    def __init__(
        self,
        registry: AccountRegistry,
        resolver: ProviderResolver,
        *,
        settings: CalmeshSettings | None = None,
        unsubscriber: UnsubscribeExecutor | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.registry = registry
        self.resolver = resolver
        self.fanout = FanoutExecutor(registry, resolver)
        self.router = SmartRouter(registry)
        self.batch = BatchExecutor(
            registry,
            resolver,
            max_batch_size=settings.batch_max_size,
            max_concurrency=settings.batch_max_concurrency,
        )
        self.unsubscriber = unsubscriber or UnsubscribeExecutor(
            timeout=settings.http_timeout_seconds
        )

    async def aclose(self) -> None:
        self.registry.close()
        await self.resolver.aclose()
        await self.unsubscriber.aclose()

    def _target(self, account_id: str) -> Account:
        return self.registry.require(account_id)

    @staticmethod
    def _tag(result: ProviderResult, account: Account) -> ProviderResult:
        if result.account_id is None:
            result.account_id = account.id
        return result

    # -- Accounts --------------------------------------------------------------

    def list_accounts(self) -> list[Account]:
        return self.registry.get_all()

    # -- Email -----------------------------------------------------------------

    async def get_emails(
        self, account_id: str | None = None, *, count: int = 20, unread_only: bool = False
    ) -> FanoutResult[EmailMessage]:
        """Recent emails per account, merged newest first."""
        logger.info(
            f"Getting emails: account_id={account_id}, count={count}, unread_only={unread_only}"
        )
        return await self.fanout.run(
            account_id,
            lambda provider, account: provider.list_messages(
                account, count=count, unread_only=unread_only
            ),
            sort_key=lambda m: m.received_at,
            reverse=True,
            operation_name="get_emails",
        )

    async def search_emails(
        self,
        query: str,
        account_id: str | None = None,
        *,
        count: int = 20,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> FanoutResult[EmailMessage]:
        since, until = ensure_utc(since), ensure_utc(until)
        return await self.fanout.run(
            account_id,
            lambda provider, account: provider.search_messages(
                account, query, count=count, since=since, until=until
            ),
            sort_key=lambda m: m.received_at,
            reverse=True,
            operation_name="search_emails",
        )

    async def get_email_details(self, account_id: str, email_id: str) -> EmailMessage | None:
        account = self._target(account_id)
        return await self.resolver.resolve_account(account).get_message(account, email_id)

    async def send_email(
        self,
        to: str | Sequence[str],
        subject: str,
        body: str,
        *,
        account_id: str | None = None,
        body_format: str = "html",
        cc: str | Sequence[str] | None = None,
    ) -> ProviderResult:
        """
        Send an email, routing by the first recipient's domain when
        *account_id* is omitted.

        Raises:
            ValidationFailure: If there are no recipients.
            AccountNotFoundError: If *account_id* is unknown.
            NoAccountAvailableError: If routing finds no account.
        """
        recipients = _as_list(to)
        if not recipients:
            raise ValidationFailure("At least one recipient is required")
        body = strip_cdata(body)

        account = self.router.resolve(account_id, recipients[0])
        logger.info(
            f"Sending email: to={recipients}, subject={subject}, account_id={account.id}",
            extra={"account_id": account.id},
        )
        provider = self.resolver.resolve_account(account)
        result = await provider.send_message(
            account, recipients, subject, body, body_format=body_format, cc=_as_list(cc) or None
        )
        return self._tag(result, account)

    async def delete_email(self, account_id: str, email_id: str) -> ProviderResult:
        account = self._target(account_id)
        result = await self.resolver.resolve_account(account).delete_message(account, email_id)
        return self._tag(result, account)

    async def mark_email_read(
        self, account_id: str, email_id: str, is_read: bool = True
    ) -> ProviderResult:
        account = self._target(account_id)
        provider = self.resolver.resolve_account(account)
        return self._tag(await provider.mark_message_read(account, email_id, is_read), account)

    async def move_email(
        self, account_id: str, email_id: str, destination_folder: str
    ) -> ProviderResult:
        if not destination_folder or not destination_folder.strip():
            raise ValidationFailure("destination_folder is required")
        account = self._target(account_id)
        provider = self.resolver.resolve_account(account)
        return self._tag(
            await provider.move_message(account, email_id, destination_folder.strip()), account
        )

    # -- Unsubscribe -----------------------------------------------------------

    async def get_unsubscribe_info(self, account_id: str, email_id: str) -> UnsubscribeInfo | None:
        """
        Unsubscribe options for one email, or None when it has no
        List-Unsubscribe header.

        Raises:
            AccountNotFoundError: If *account_id* is unknown.
            TargetNotFoundError: If the email does not exist.
        """
        email = await self._require_email(account_id, email_id)
        return email.unsubscribe

    async def unsubscribe_from_email(
        self, account_id: str, email_id: str, method: str = "auto"
    ) -> UnsubscribeResult:
        """
        Unsubscribe using *method*: "auto", "one-click", "https" or "mailto".

        "auto" prefers one-click, then hands back the https URL for the user
        to open, then sends the mailto request from the same account.
        Failures of the unsubscribe itself are reported in the result.

        Raises:
            ValidationFailure: If *method* is not recognised.
            AccountNotFoundError: If *account_id* is unknown.
            TargetNotFoundError: If the email does not exist.
        """
        method = (method or "auto").strip().lower()
        if method not in UNSUBSCRIBE_METHODS:
            raise ValidationFailure(
                f"Unknown method '{method}'. Use 'auto', 'one-click', 'https', or 'mailto'."
            )
        email = await self._require_email(account_id, email_id)
        info = email.unsubscribe
        if info is None:
            return UnsubscribeResult(
                success=False,
                method=method,
                message="This email does not contain List-Unsubscribe headers",
            )
        logger.info(
            f"Unsubscribing: account_id={account_id}, email_id={email_id}, method={method}",
            extra={"account_id": account_id},
        )

        if method == "one-click" or (method == "auto" and info.supports_one_click):
            return await self.unsubscriber.execute_one_click(info)
        if method == "https" or (method == "auto" and info.https_url):
            if not info.https_url:
                return UnsubscribeResult(
                    success=False, method="https", message="Email has no HTTPS unsubscribe URL"
                )
            return UnsubscribeResult(
                success=True,
                method="https",
                message=f"Open this URL to unsubscribe: {info.https_url}",
            )
        if info.mailto_url:
            return await self._unsubscribe_by_mail(account_id, info.mailto_url)
        return UnsubscribeResult(
            success=False,
            method=method,
            message=(
                "Email has no mailto unsubscribe address"
                if method == "mailto"
                else "No unsubscribe method available"
            ),
        )

    async def _require_email(self, account_id: str, email_id: str) -> EmailMessage:
        email = await self.get_email_details(account_id, email_id)
        if email is None:
            raise TargetNotFoundError(f"Email '{email_id}' not found in account '{account_id}'")
        return email

    async def _unsubscribe_by_mail(self, account_id: str, mailto_url: str) -> UnsubscribeResult:
        target = parse_mailto_url(mailto_url)
        if target is None:
            return UnsubscribeResult(
                success=False, method="mailto", message=f"Invalid mailto URL: {mailto_url}"
            )
        result = await self.send_email(
            target.to, target.subject, target.body, account_id=account_id, body_format="text"
        )
        if result.success:
            return UnsubscribeResult(
                success=True, method="mailto", message=f"Sent unsubscribe email to {target.to}"
            )
        return UnsubscribeResult(
            success=False,
            method="mailto",
            message="Failed to send unsubscribe email",
            error_details=result.error,
        )

    # -- Digest ----------------------------------------------------------------

    async def get_contextual_email_summary(
        self,
        topics: str | Sequence[str] | None = None,
        *,
        count_per_account: int = 50,
        unread_only: bool = False,
        include_body_preview: bool = False,
        max_samples_per_cluster: int = 5,
    ) -> ContextualEmailSummary:
        """
        Topic-clustered digest of recent mail across every enabled account.

        With *topics* each account is searched for "kw1 OR kw2 ..."; without,
        its inbox is listed. Accounts that fail are reported as warnings.
        """
        keywords = parse_topics(topics)
        logger.info(
            f"Getting contextual email summary: topics={keywords}, "
            f"count_per_account={count_per_account}, unread_only={unread_only}"
        )
        if keywords:
            query = " OR ".join(keywords)
            fetched = await self.search_emails(query, count=count_per_account)
        else:
            fetched = await self.get_emails(count=count_per_account, unread_only=unread_only)

        summary = build_contextual_summary(
            fetched.items,
            self.registry.get_enabled(),
            keywords,
            include_body_preview=include_body_preview,
            max_samples=max_samples_per_cluster,
        )
        summary.warnings = fetched.warnings
        logger.info(
            f"Built contextual summary: {summary.total_emails} emails, "
            f"{len(summary.clusters)} clusters, {len(summary.mismatches)} mismatches"
        )
        return summary

    # -- Bulk email ------------------------------------------------------------

    async def bulk_delete_emails(self, items: BatchInput) -> BatchResult:
        return await self.batch.run(
            items,
            lambda provider, account, item_id: provider.delete_message(account, item_id),
            operation_name="bulk_delete_emails",
        )

    async def bulk_mark_emails_read(self, items: BatchInput, is_read: bool = True) -> BatchResult:
        return await self.batch.run(
            items,
            lambda provider, account, item_id: provider.mark_message_read(
                account, item_id, is_read
            ),
            operation_name="bulk_mark_emails_read",
        )

    async def bulk_move_emails(self, items: BatchInput, destination_folder: str) -> BatchResult:
        if not destination_folder or not destination_folder.strip():
            raise ValidationFailure("destination_folder is required")
        folder = destination_folder.strip()
        return await self.batch.run(
            items,
            lambda provider, account, item_id: provider.move_message(account, item_id, folder),
            operation_name="bulk_move_emails",
        )

    # -- Calendar --------------------------------------------------------------

    async def list_calendars(self, account_id: str | None = None) -> FanoutResult[CalendarInfo]:
        return await self.fanout.run(
            account_id,
            lambda provider, account: provider.list_calendars(account),
            operation_name="list_calendars",
        )

    async def get_calendar_events(
        self,
        account_id: str | None = None,
        *,
        calendar_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        count: int = 50,
    ) -> FanoutResult[CalendarEvent]:
        """
        Events from every targeted account, merged in start order.

        Naive bounds are taken as UTC. A missing *start* defaults to today
        (UTC midnight) and a missing *end* to seven days after *start*, so
        every backend answers for the same window.
        """
        start = ensure_utc(start) or datetime.combine(datetime.now(UTC).date(), time.min, UTC)
        end = ensure_utc(end) or start + DEFAULT_EVENT_WINDOW
        if end <= start:
            raise ValidationFailure("end must be after start")
        logger.info(f"Getting calendar events: account_id={account_id}, start={start}, end={end}")
        return await self.fanout.run(
            account_id,
            lambda provider, account: provider.list_events(
                account, calendar_id=calendar_id, start=start, end=end, count=count
            ),
            sort_key=lambda e: e.start,
            operation_name="get_calendar_events",
        )

    async def get_event_details(
        self, account_id: str, event_id: str, *, calendar_id: str | None = None
    ) -> CalendarEvent | None:
        account = self._target(account_id)
        provider = self.resolver.resolve_account(account)
        return await provider.get_event(account, event_id, calendar_id=calendar_id)

    async def create_event(
        self,
        subject: str,
        start: datetime,
        end: datetime,
        *,
        account_id: str | None = None,
        calendar_id: str | None = None,
        location: str | None = None,
        attendees: str | Sequence[str] | None = None,
        body: str | None = None,
        time_zone: str | None = None,
    ) -> ProviderResult:
        """Create an event, routing by the first attendee's domain when *account_id* is omitted."""
        if end <= start:
            raise ValidationFailure("end must be after start")
        attendee_list = _as_list(attendees)

        account = self.router.resolve(account_id, attendee_list[0] if attendee_list else None)
        provider = self.resolver.resolve_account(account)
        result = await provider.create_event(
            account,
            subject,
            start,
            end,
            calendar_id=calendar_id,
            location=location,
            attendees=attendee_list or None,
            body=strip_cdata(body) if body else body,
            time_zone=time_zone,
        )
        return self._tag(result, account)

    async def update_event(
        self,
        account_id: str,
        event_id: str,
        *,
        calendar_id: str | None = None,
        subject: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        location: str | None = None,
        attendees: str | Sequence[str] | None = None,
    ) -> ProviderResult:
        if start is not None and end is not None and end <= start:
            raise ValidationFailure("end must be after start")
        account = self._target(account_id)
        provider = self.resolver.resolve_account(account)
        result = await provider.update_event(
            account,
            event_id,
            calendar_id=calendar_id,
            subject=subject,
            start=start,
            end=end,
            location=location,
            attendees=_as_list(attendees) if attendees is not None else None,
        )
        return self._tag(result, account)

    async def delete_event(
        self, account_id: str, event_id: str, *, calendar_id: str | None = None
    ) -> ProviderResult:
        account = self._target(account_id)
        provider = self.resolver.resolve_account(account)
        return self._tag(
            await provider.delete_event(account, event_id, calendar_id=calendar_id), account
        )

    async def respond_to_event(
        self,
        account_id: str,
        event_id: str,
        response: str | EventResponse,
        *,
        calendar_id: str | None = None,
        comment: str | None = None,
    ) -> ProviderResult:
        """
        Accept, tentatively accept or decline an invitation.

        Raises:
            ValidationFailure: If *response* is not a recognised value.
        """
        if not isinstance(response, EventResponse):
            try:
                response = EventResponse.parse(response)
            except ValueError as e:
                raise ValidationFailure(str(e)) from e
        account = self._target(account_id)
        provider = self.resolver.resolve_account(account)
        result = await provider.respond_to_event(
            account, event_id, response, calendar_id=calendar_id, comment=comment
        )
        return self._tag(result, account)

    # -- Contacts --------------------------------------------------------------

    async def get_contacts(
        self, account_id: str | None = None, *, count: int = 50
    ) -> FanoutResult[Contact]:
        return await self.fanout.run(
            account_id,
            lambda provider, account: provider.list_contacts(account, count=count),
            sort_key=lambda c: c.display_name.casefold(),
            operation_name="get_contacts",
        )

    async def search_contacts(
        self, query: str, account_id: str | None = None, *, count: int = 50
    ) -> FanoutResult[Contact]:
        if not query or not query.strip():
            raise ValidationFailure("query is required")
        return await self.fanout.run(
            account_id,
            lambda provider, account: provider.search_contacts(account, query.strip(), count=count),
            sort_key=lambda c: c.display_name.casefold(),
            operation_name="search_contacts",
        )

    async def get_contact_details(self, account_id: str, contact_id: str) -> Contact | None:
        account = self._target(account_id)
        return await self.resolver.resolve_account(account).get_contact(account, contact_id)

    async def create_contact(
        self, fields: ContactFields, *, account_id: str | None = None
    ) -> ProviderResult:
        """Create a contact, routing by its first email address when *account_id* is omitted."""
        first_email = fields.email_addresses[0] if fields.email_addresses else None
        account = self.router.resolve(account_id, first_email)
        provider = self.resolver.resolve_account(account)
        return self._tag(await provider.create_contact(account, fields), account)

    async def update_contact(
        self,
        account_id: str,
        contact_id: str,
        fields: ContactFields,
        *,
        etag: str | None = None,
    ) -> ProviderResult:
        account = self._target(account_id)
        provider = self.resolver.resolve_account(account)
        return self._tag(
            await provider.update_contact(account, contact_id, fields, etag=etag), account
        )

    async def delete_contact(self, account_id: str, contact_id: str) -> ProviderResult:
        account = self._target(account_id)
        provider = self.resolver.resolve_account(account)
        return self._tag(await provider.delete_contact(account, contact_id), account)
