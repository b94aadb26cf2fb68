"""
Microsoft Graph provider.

Serves both Microsoft 365 work/school accounts and personal Outlook.com
accounts; the two differ only in how their credential is obtained, which is
the TokenProvider's concern.

Reference:
- https://learn.microsoft.com/en-us/graph/api/resources/mail-api-overview
- https://learn.microsoft.com/en-us/graph/api/resources/calendar
- https://learn.microsoft.com/en-us/graph/api/resources/contact
"""

import logging
import re
from collections.abc import Sequence
from datetime import UTC, datetime, time, timedelta
from typing import Any

import httpx

from calmesh.accounts.models import Account
from calmesh.errors import (
    AuthenticationRequiredError,
    RemoteOperationError,
    TargetNotFoundError,
    ValidationFailure,
)
from calmesh.integrations.auth import MICROSOFT_SCOPES, TokenProvider
from calmesh.integrations.base import HostedProvider, ProviderResult
from calmesh.integrations.types import (
    CalendarEvent,
    CalendarInfo,
    Contact,
    ContactAddress,
    ContactEmail,
    ContactFields,
    ContactPhone,
    EmailMessage,
    EventAttendee,
    EventResponse,
    ProviderKind,
    UnsubscribeInfo,
    ensure_utc,
)
from calmesh.integrations.unsubscribe import parse_unsubscribe_headers

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
DEFAULT_EVENT_WINDOW = timedelta(days=7)

_MESSAGE_SELECT = (
    "id,subject,from,toRecipients,ccRecipients,receivedDateTime,isRead,hasAttachments,bodyPreview"
)

_MESSAGE_DETAIL_SELECT = f"{_MESSAGE_SELECT},body,internetMessageHeaders"

_FRACTION_RE = re.compile(r"\.\d+")

_RESPONSE_ACTIONS = {
    EventResponse.ACCEPTED: "accept",
    EventResponse.TENTATIVE: "tentativelyAccept",
    EventResponse.DECLINED: "decline",
}

_RESPONSE_STATUS = {
    "accepted": "accepted",
    "organizer": "accepted",
    "tentativelyaccepted": "tentative",
    "declined": "declined",
    "none": "notResponded",
    "notresponded": "notResponded",
}


def _parse_graph_datetime(value: dict[str, Any] | str | None) -> datetime | None:
    """Parse a Graph dateTimeTimeZone object or an ISO timestamp string.

    Graph returns event times in UTC unless a Prefer header asks otherwise,
    with up to seven fractional digits that fromisoformat rejects.
    """
    if not value:
        return None
    raw = value.get("dateTime") if isinstance(value, dict) else value
    if not raw:
        return None
    raw = _FRACTION_RE.sub(lambda m: m.group(0)[:7], raw.replace("Z", "+00:00"))
    parsed = datetime.fromisoformat(raw)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _graph_time(value: datetime, time_zone: str | None = None) -> dict[str, str]:
    if time_zone:
        return {"dateTime": value.replace(tzinfo=None).isoformat(), "timeZone": time_zone}
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return {"dateTime": value.replace(tzinfo=None).isoformat(), "timeZone": "UTC"}


def _recipients(addresses: Sequence[str]) -> list[dict[str, Any]]:
    return [{"emailAddress": {"address": a}} for a in addresses]


def _addresses(recipients: list[dict[str, Any]] | None) -> list[str]:
    found = ((r.get("emailAddress") or {}).get("address") for r in recipients or [])
    return [address for address in found if address]


def _unsubscribe_from_headers(headers: list[dict[str, Any]] | None) -> UnsubscribeInfo | None:
    if not headers:
        return None
    values = {h.get("name", "").lower(): h.get("value", "") for h in headers}
    return parse_unsubscribe_headers(
        values.get("list-unsubscribe"), values.get("list-unsubscribe-post")
    )


class MicrosoftGraphProvider(HostedProvider):
    """
    Microsoft Graph mail / calendar / contacts provider.

    One instance serves every account of its kind. The HTTP client is
    created on first use and shared across accounts; tokens are per request.

    Example:
        >>> provider = MicrosoftGraphProvider(token_provider)
        >>> events = await provider.list_events(account, start=start, end=end)
    """

    scopes = MICROSOFT_SCOPES
    TIMEOUT = 30.0

    def __init__(
        self,
        token_provider: TokenProvider,
        kind: ProviderKind = ProviderKind.MICROSOFT_365,
        *,
        base_url: str = GRAPH_BASE_URL,
        timeout: float = TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if kind not in (ProviderKind.MICROSOFT_365, ProviderKind.OUTLOOK_COM):
            raise ValueError(f"MicrosoftGraphProvider cannot serve provider kind '{kind}'")
        super().__init__(token_provider)
        self.kind = kind
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        account: Account,
        method: str,
        path: str,
        *,
        token: str | None = None,
        what: str = "request",
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Issue a Graph request and return the decoded JSON body ({} for 204)."""
        token = token or await self._require_token(account)
        request_headers = {"Authorization": f"Bearer {token}"}
        if headers:
            request_headers.update(headers)

        try:
            response = await self._http().request(
                method, path, params=params, json=json, headers=request_headers
            )
        except httpx.HTTPError as e:
            raise RemoteOperationError(f"Microsoft Graph {what} failed: {e}") from e

        if response.status_code == 404:
            raise TargetNotFoundError(f"{what} not found")
        if response.status_code in (401, 403):
            raise AuthenticationRequiredError(
                account.id, f"Microsoft Graph rejected credential for '{account.id}'"
            )
        if response.status_code >= 400:
            logger.error(
                f"Microsoft Graph {what} failed: {response.status_code} {response.text}",
                extra={"account_id": account.id, "status_code": response.status_code},
            )
            raise RemoteOperationError(
                f"Microsoft Graph {what} failed with status {response.status_code}",
                status_code=response.status_code,
                detail=response.text,
            )

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def _get_or_none(
        self, account: Account, path: str, what: str, **kwargs: Any
    ) -> dict[str, Any] | None:
        try:
            return await self._request(account, "GET", path, what=what, **kwargs)
        except TargetNotFoundError:
            return None

    # -- Messages --------------------------------------------------------------

    async def list_messages(
        self, account: Account, *, count: int = 20, unread_only: bool = False
    ) -> list[EmailMessage]:
        params: dict[str, Any] = {
            "$top": count,
            "$orderby": "receivedDateTime desc",
            "$select": _MESSAGE_SELECT,
        }
        if unread_only:
            params["$filter"] = "isRead eq false"
        data = await self._request(
            account, "GET", "/me/mailFolders/inbox/messages", what="messages", params=params
        )
        emails = [self._to_email(m, account.id) for m in data.get("value", [])]
        logger.info(
            f"Retrieved {len(emails)} emails from {self.kind} account {account.id}",
            extra={"account_id": account.id, "count": len(emails)},
        )
        return emails

    async def search_messages(
        self,
        account: Account,
        query: str,
        *,
        count: int = 20,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[EmailMessage]:
        params: dict[str, Any] = {"$top": count, "$select": _MESSAGE_SELECT}
        if query:
            params["$search"] = f'"{query}"'
        # $search cannot be combined with $filter; date bounds are applied locally.
        data = await self._request(
            account, "GET", "/me/messages", what="message search", params=params
        )
        emails = [self._to_email(m, account.id) for m in data.get("value", [])]
        since, until = ensure_utc(since), ensure_utc(until)
        if since:
            emails = [e for e in emails if e.received_at >= since]
        if until:
            emails = [e for e in emails if e.received_at < until]
        return emails

    async def get_message(self, account: Account, message_id: str) -> EmailMessage | None:
        data = await self._get_or_none(
            account,
            f"/me/messages/{message_id}",
            f"message {message_id}",
            params={"$select": _MESSAGE_DETAIL_SELECT},
        )
        return self._to_email(data, account.id, include_body=True) if data else None

    @staticmethod
    def _to_email(msg: dict[str, Any], account_id: str, include_body: bool = False) -> EmailMessage:
        sender = msg.get("from", {}).get("emailAddress", {})
        body = msg.get("bodyPreview", "")
        body_format = "text"
        if include_body and msg.get("body"):
            body = msg["body"].get("content", "")
            body_format = "html" if msg["body"].get("contentType", "").lower() == "html" else "text"

        return EmailMessage(
            id=msg.get("id", ""),
            account_id=account_id,
            subject=msg.get("subject") or "",
            from_addr=sender.get("address", ""),
            from_name=sender.get("name", ""),
            to_addrs=_addresses(msg.get("toRecipients")),
            cc_addrs=_addresses(msg.get("ccRecipients")),
            body=body,
            body_format=body_format,
            received_at=_parse_graph_datetime(msg.get("receivedDateTime"))
            or datetime.min.replace(tzinfo=UTC),
            is_read=bool(msg.get("isRead", False)),
            has_attachments=bool(msg.get("hasAttachments", False)),
            unsubscribe=_unsubscribe_from_headers(msg.get("internetMessageHeaders")),
        )

    async def send_message(
        self,
        account: Account,
        to: Sequence[str],
        subject: str,
        body: str,
        *,
        body_format: str = "html",
        cc: Sequence[str] | None = None,
    ) -> ProviderResult:
        payload: dict[str, Any] = {
            "message": {
                "subject": subject,
                "body": {
                    "contentType": "HTML" if body_format.lower() == "html" else "Text",
                    "content": body,
                },
                "toRecipients": _recipients(to),
            },
            "saveToSentItems": True,
        }
        if cc:
            payload["message"]["ccRecipients"] = _recipients(cc)

        async def _send(token: str) -> dict[str, Any]:
            await self._request(
                account, "POST", "/me/sendMail", token=token, what="send mail", json=payload
            )
            # sendMail returns 202 with no body, so there is no message id
            return {"message_id": ""}

        return await self._mutate(account, "send_message", _send)

    async def delete_message(self, account: Account, message_id: str) -> ProviderResult:
        async def _delete(token: str) -> None:
            await self._request(
                account,
                "DELETE",
                f"/me/messages/{message_id}",
                token=token,
                what=f"message {message_id}",
            )

        return await self._mutate(account, "delete_message", _delete)

    async def mark_message_read(
        self, account: Account, message_id: str, is_read: bool = True
    ) -> ProviderResult:
        async def _patch(token: str) -> None:
            await self._request(
                account,
                "PATCH",
                f"/me/messages/{message_id}",
                token=token,
                what=f"message {message_id}",
                json={"isRead": is_read},
            )

        return await self._mutate(account, "mark_message_read", _patch)

    async def move_message(
        self, account: Account, message_id: str, destination_folder: str
    ) -> ProviderResult:
        async def _move(token: str) -> dict[str, Any]:
            # Well-known names (inbox, archive, deleteditems, junkemail, ...)
            # are accepted directly as destinationId
            moved = await self._request(
                account,
                "POST",
                f"/me/messages/{message_id}/move",
                token=token,
                what=f"message {message_id}",
                json={"destinationId": destination_folder},
            )
            return {"message_id": moved.get("id", message_id), "destination": destination_folder}

        return await self._mutate(account, "move_message", _move)

    # -- Calendar --------------------------------------------------------------

    async def list_calendars(self, account: Account) -> list[CalendarInfo]:
        data = await self._request(account, "GET", "/me/calendars", what="calendars")
        return [
            CalendarInfo(
                id=cal.get("id", ""),
                account_id=account.id,
                name=cal.get("name", ""),
                owner=cal.get("owner", {}).get("address", ""),
                can_edit=bool(cal.get("canEdit", False)),
                is_default=bool(cal.get("isDefaultCalendar", False)),
                color=cal.get("hexColor") or cal.get("color"),
            )
            for cal in data.get("value", [])
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
        target = calendar_id or "primary"
        # calendarView expands recurring series and requires both bounds
        today = datetime.combine(datetime.now(UTC).date(), time.min, tzinfo=UTC)
        window_start = ensure_utc(start) or today
        window_end = ensure_utc(end) or window_start + DEFAULT_EVENT_WINDOW
        params: dict[str, Any] = {
            "$top": count,
            "$orderby": "start/dateTime",
            "startDateTime": _graph_time(window_start)["dateTime"] + "Z",
            "endDateTime": _graph_time(window_end)["dateTime"] + "Z",
        }
        path = "/me/calendarView" if target == "primary" else f"/me/calendars/{target}/calendarView"

        data = await self._request(account, "GET", path, what="events", params=params)
        events = [self._to_event(e, account.id, target) for e in data.get("value", [])]
        logger.info(
            f"Retrieved {len(events)} events from {self.kind} account {account.id}",
            extra={"account_id": account.id, "count": len(events)},
        )
        return events

    async def get_event(
        self, account: Account, event_id: str, *, calendar_id: str | None = None
    ) -> CalendarEvent | None:
        data = await self._get_or_none(account, f"/me/events/{event_id}", f"event {event_id}")
        return self._to_event(data, account.id, calendar_id or "primary") if data else None

    @staticmethod
    def _to_event(item: dict[str, Any], account_id: str, calendar_id: str) -> CalendarEvent:
        start = _parse_graph_datetime(item.get("start")) or datetime.min.replace(tzinfo=UTC)
        end = _parse_graph_datetime(item.get("end")) or start
        organizer = item.get("organizer", {}).get("emailAddress", {})
        organizer_addr = organizer.get("address", "")

        attendee_details = []
        for att in item.get("attendees", []):
            address = att.get("emailAddress", {})
            status = _RESPONSE_STATUS.get(
                att.get("status", {}).get("response", "none").lower(), "notResponded"
            )
            attendee_details.append(
                EventAttendee(
                    email=address.get("address", ""),
                    name=address.get("name", ""),
                    response_status=status,
                    type=att.get("type", "required").lower(),
                    is_organizer=bool(organizer_addr)
                    and address.get("address", "").lower() == organizer_addr.lower(),
                )
            )

        meeting = item.get("onlineMeeting") or {}
        meeting_url = meeting.get("joinUrl") or item.get("onlineMeetingUrl")
        body = item.get("body", {})
        recurrence = item.get("recurrence")
        pattern = None
        if recurrence:
            rp = recurrence.get("pattern", {})
            pattern = f"{rp.get('type', '')} every {rp.get('interval', 1)}"

        return CalendarEvent(
            id=item.get("id", ""),
            account_id=account_id,
            calendar_id=calendar_id,
            subject=item.get("subject") or "",
            start=start,
            end=end,
            location=item.get("location", {}).get("displayName", ""),
            body=body.get("content", "") or item.get("bodyPreview", ""),
            body_format="html" if body.get("contentType", "").lower() == "html" else "text",
            organizer=organizer_addr,
            organizer_name=organizer.get("name", ""),
            attendees=[a.email for a in attendee_details if a.email],
            attendee_details=attendee_details,
            is_all_day=bool(item.get("isAllDay", False)),
            response_status=_RESPONSE_STATUS.get(
                item.get("responseStatus", {}).get("response", "none").lower(), "notResponded"
            ),
            show_as=item.get("showAs", "busy"),
            sensitivity=item.get("sensitivity", "normal"),
            importance=item.get("importance", "normal"),
            is_cancelled=bool(item.get("isCancelled", False)),
            is_online_meeting=bool(item.get("isOnlineMeeting", False)) or bool(meeting_url),
            online_meeting_url=meeting_url,
            online_meeting_provider=item.get("onlineMeetingProvider") if meeting_url else None,
            is_recurring=bool(recurrence) or item.get("type") in ("occurrence", "exception"),
            recurrence_pattern=pattern,
            categories=list(item.get("categories", [])),
            created_at=_parse_graph_datetime(item.get("createdDateTime")),
            last_modified_at=_parse_graph_datetime(item.get("lastModifiedDateTime")),
        )

    async def create_event(
        self,
        account: Account,
        subject: str,
        start: datetime,
        end: datetime,
        *,
        calendar_id: str | None = None,
        location: str | None = None,
        attendees: Sequence[str] | None = None,
        body: str | None = None,
        time_zone: str | None = None,
    ) -> ProviderResult:
        payload: dict[str, Any] = {
            "subject": subject,
            "start": _graph_time(start, time_zone),
            "end": _graph_time(end, time_zone),
        }
        if location:
            payload["location"] = {"displayName": location}
        if body:
            payload["body"] = {"contentType": "HTML", "content": body}
        if attendees:
            payload["attendees"] = [
                {"emailAddress": {"address": a}, "type": "required"} for a in attendees
            ]
        path = (
            "/me/events"
            if not calendar_id or calendar_id == "primary"
            else f"/me/calendars/{calendar_id}/events"
        )

        async def _create(token: str) -> dict[str, Any]:
            created = await self._request(
                account, "POST", path, token=token, what="create event", json=payload
            )
            return {"event_id": created.get("id", "")}

        return await self._mutate(account, "create_event", _create)

    async def update_event(
        self,
        account: Account,
        event_id: str,
        *,
        calendar_id: str | None = None,
        subject: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        location: str | None = None,
        attendees: Sequence[str] | None = None,
    ) -> ProviderResult:
        payload: dict[str, Any] = {}
        if subject is not None:
            payload["subject"] = subject
        if start is not None:
            payload["start"] = _graph_time(start)
        if end is not None:
            payload["end"] = _graph_time(end)
        if location is not None:
            payload["location"] = {"displayName": location}
        if attendees is not None:
            payload["attendees"] = [
                {"emailAddress": {"address": a}, "type": "required"} for a in attendees
            ]

        async def _patch(token: str) -> None:
            await self._request(
                account,
                "PATCH",
                f"/me/events/{event_id}",
                token=token,
                what=f"event {event_id}",
                json=payload,
            )

        return await self._mutate(account, "update_event", _patch)

    async def delete_event(
        self, account: Account, event_id: str, *, calendar_id: str | None = None
    ) -> ProviderResult:
        async def _delete(token: str) -> None:
            await self._request(
                account, "DELETE", f"/me/events/{event_id}", token=token, what=f"event {event_id}"
            )

        return await self._mutate(account, "delete_event", _delete)

    async def respond_to_event(
        self,
        account: Account,
        event_id: str,
        response: EventResponse,
        *,
        calendar_id: str | None = None,
        comment: str | None = None,
    ) -> ProviderResult:
        action = _RESPONSE_ACTIONS[response]
        payload: dict[str, Any] = {"sendResponse": True}
        if comment:
            payload["comment"] = comment

        async def _respond(token: str) -> dict[str, Any]:
            await self._request(
                account,
                "POST",
                f"/me/events/{event_id}/{action}",
                token=token,
                what=f"event {event_id}",
                json=payload,
            )
            return {"response": response.value}

        return await self._mutate(account, "respond_to_event", _respond)

    # -- Contacts --------------------------------------------------------------

    async def list_contacts(self, account: Account, *, count: int = 50) -> list[Contact]:
        data = await self._request(
            account,
            "GET",
            "/me/contacts",
            what="contacts",
            params={"$top": count, "$orderby": "displayName"},
        )
        return [self._to_contact(c, account.id) for c in data.get("value", [])]

    async def search_contacts(
        self, account: Account, query: str, *, count: int = 50
    ) -> list[Contact]:
        escaped = query.replace("'", "''")
        data = await self._request(
            account,
            "GET",
            "/me/contacts",
            what="contact search",
            params={
                "$top": count,
                "$filter": (
                    f"startswith(displayName,'{escaped}') or startswith(givenName,'{escaped}') "
                    f"or startswith(surname,'{escaped}') "
                    f"or emailAddresses/any(a:startswith(a/address,'{escaped}'))"
                ),
            },
        )
        return [self._to_contact(c, account.id) for c in data.get("value", [])]

    async def get_contact(self, account: Account, contact_id: str) -> Contact | None:
        data = await self._get_or_none(
            account, f"/me/contacts/{contact_id}", f"contact {contact_id}"
        )
        return self._to_contact(data, account.id) if data else None

    @staticmethod
    def _to_contact(item: dict[str, Any], account_id: str) -> Contact:
        phones = [ContactPhone(number=p, label="home") for p in item.get("homePhones", []) if p]
        phones += [
            ContactPhone(number=p, label="work") for p in item.get("businessPhones", []) if p
        ]
        if item.get("mobilePhone"):
            phones.append(ContactPhone(number=item["mobilePhone"], label="mobile"))

        addresses = []
        for label, key in (
            ("home", "homeAddress"),
            ("work", "businessAddress"),
            ("other", "otherAddress"),
        ):
            addr = item.get(key) or {}
            if any(addr.values()):
                addresses.append(
                    ContactAddress(
                        street=addr.get("street", ""),
                        city=addr.get("city", ""),
                        state=addr.get("state", ""),
                        postal_code=addr.get("postalCode", ""),
                        country=addr.get("countryOrRegion", ""),
                        label=label,
                    )
                )

        return Contact(
            id=item.get("id", ""),
            account_id=account_id,
            display_name=item.get("displayName") or "",
            given_name=item.get("givenName") or "",
            surname=item.get("surname") or "",
            email_addresses=[
                ContactEmail(address=e["address"], label="other")
                for e in item.get("emailAddresses", [])
                if e.get("address")
            ],
            phone_numbers=phones,
            job_title=item.get("jobTitle") or "",
            company_name=item.get("companyName") or "",
            department=item.get("department") or "",
            addresses=addresses,
            birthday=_parse_graph_datetime(item.get("birthday")),
            notes=item.get("personalNotes") or "",
            groups=list(item.get("categories", [])),
            created_at=_parse_graph_datetime(item.get("createdDateTime")),
            last_modified_at=_parse_graph_datetime(item.get("lastModifiedDateTime")),
        )

    @staticmethod
    def _contact_payload(fields: ContactFields) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if fields.display_name is not None:
            payload["displayName"] = fields.display_name
        if fields.given_name is not None:
            payload["givenName"] = fields.given_name
        if fields.surname is not None:
            payload["surname"] = fields.surname
        if fields.email_addresses is not None:
            payload["emailAddresses"] = [{"address": e, "name": e} for e in fields.email_addresses]
        if fields.phone_numbers is not None:
            payload["businessPhones"] = list(fields.phone_numbers)
        if fields.job_title is not None:
            payload["jobTitle"] = fields.job_title
        if fields.company_name is not None:
            payload["companyName"] = fields.company_name
        if fields.notes is not None:
            payload["personalNotes"] = fields.notes
        return payload

    async def create_contact(self, account: Account, fields: ContactFields) -> ProviderResult:
        payload = self._contact_payload(fields)

        async def _create(token: str) -> dict[str, Any]:
            created = await self._request(
                account, "POST", "/me/contacts", token=token, what="create contact", json=payload
            )
            return {"contact_id": created.get("id", "")}

        return await self._mutate(account, "create_contact", _create)

    async def update_contact(
        self,
        account: Account,
        contact_id: str,
        fields: ContactFields,
        *,
        etag: str | None = None,
    ) -> ProviderResult:
        payload = self._contact_payload(fields)

        async def _patch(token: str) -> dict[str, Any]:
            if not payload:
                raise ValidationFailure("No contact fields to update")
            await self._request(
                account,
                "PATCH",
                f"/me/contacts/{contact_id}",
                token=token,
                what=f"contact {contact_id}",
                json=payload,
                headers={"If-Match": etag} if etag else None,
            )
            return {"contact_id": contact_id}

        return await self._mutate(account, "update_contact", _patch)

    async def delete_contact(self, account: Account, contact_id: str) -> ProviderResult:
        async def _delete(token: str) -> None:
            await self._request(
                account,
                "DELETE",
                f"/me/contacts/{contact_id}",
                token=token,
                what=f"contact {contact_id}",
            )

        return await self._mutate(account, "delete_contact", _delete)
