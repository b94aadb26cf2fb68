"""
Google provider.

Implements CapabilityProvider over Gmail v1, Calendar v3 and People v1
using google-api-python-client. The client library is synchronous, so every
``.execute()`` runs in a worker thread under a timeout.
"""

import asyncio
import base64
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, date, datetime, time
from email.mime.text import MIMEText
from email.utils import getaddresses, parseaddr, parsedate_to_datetime
from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calmesh.accounts.models import Account
from calmesh.errors import (
    AuthenticationRequiredError,
    RemoteOperationError,
    TargetNotFoundError,
    ValidationFailure,
)
from calmesh.integrations.auth import GOOGLE_SCOPES, TokenProvider
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
)
from calmesh.integrations.unsubscribe import parse_unsubscribe_headers

logger = logging.getLogger(__name__)

# asyncio.wait_for cancels the coroutine on timeout; the underlying thread
# may still complete, but the caller is unblocked.
_API_TIMEOUT_SECONDS = 30

_PERSON_FIELDS = (
    "names,emailAddresses,phoneNumbers,organizations,addresses,birthdays,"
    "biographies,memberships,metadata"
)

# Folder names callers use -> Gmail system labels
_SYSTEM_LABELS = {
    "inbox": "INBOX",
    "trash": "TRASH",
    "deleteditems": "TRASH",
    "spam": "SPAM",
    "junk": "SPAM",
    "junkemail": "SPAM",
    "sent": "SENT",
    "sentitems": "SENT",
    "drafts": "DRAFT",
    "starred": "STARRED",
    "important": "IMPORTANT",
}

_RESPONSE_STATUS = {
    "accepted": "accepted",
    "tentative": "tentative",
    "declined": "declined",
    "needsAction": "notResponded",
}


def _pad_base64url(data: str) -> str:
    """Add padding to a base64url string; Gmail returns it unpadded."""
    return data + "=" * (-len(data) % 4)


def _decode_part(data: str) -> str:
    return base64.urlsafe_b64decode(_pad_base64url(data)).decode("utf-8", errors="replace")


def _parse_google_time(value: dict[str, Any] | None) -> tuple[datetime | None, bool]:
    """Parse a Calendar API start/end object. Returns (datetime, is_all_day)."""
    if not value:
        return None, False
    if value.get("dateTime"):
        parsed = datetime.fromisoformat(value["dateTime"])
        return (parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)), False
    if value.get("date"):
        day = date.fromisoformat(value["date"])
        return datetime.combine(day, time.min, tzinfo=UTC), True
    return None, False


def _parse_rfc3339(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _format_google_time(value: datetime, time_zone: str | None = None) -> dict[str, str]:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    body = {"dateTime": value.isoformat()}
    if time_zone:
        body["timeZone"] = time_zone
    return body


def _map_http_error(e: HttpError, what: str, account: Account) -> Exception:
    status = getattr(e.resp, "status", None)
    detail = e.content.decode("utf-8", errors="replace") if isinstance(e.content, bytes) else None
    if status == 404:
        return TargetNotFoundError(f"{what} not found")
    if status == 401:
        return AuthenticationRequiredError(
            account.id, f"Google rejected credential for '{account.id}'"
        )
    return RemoteOperationError(
        f"Google API error during {what}: {e}",
        status_code=int(status) if status else None,
        detail=detail,
    )


class GoogleProvider(HostedProvider):
    """
    Gmail / Google Calendar / Google Contacts provider.

    Example:
        >>> provider = GoogleProvider(token_provider)
        >>> messages = await provider.list_messages(account, unread_only=True)
    """

    kind = ProviderKind.GOOGLE
    scopes = GOOGLE_SCOPES

    def __init__(
        self,
        token_provider: TokenProvider,
        api_timeout_seconds: float = _API_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(token_provider)
        self._api_timeout = api_timeout_seconds

    async def _run_in_thread(self, func: Callable[[], Any]) -> Any:
        """Run *func* in a thread with a timeout guard."""
        return await asyncio.wait_for(asyncio.to_thread(func), timeout=self._api_timeout)

    async def _service(
        self, account: Account, api: str, version: str, token: str | None = None
    ) -> Any:
        token = token or await self._require_token(account)
        creds = Credentials(token=token)

        def _build() -> Any:
            return build(api, version, credentials=creds, cache_discovery=False)

        return await self._run_in_thread(_build)

    async def _execute(self, request: Any, what: str, account: Account) -> Any:
        """Execute a prepared API request, mapping HttpError to calmesh errors."""
        try:
            return await self._run_in_thread(request.execute)
        except HttpError as e:
            raise _map_http_error(e, what, account) from e

    # -- Messages --------------------------------------------------------------

    async def _fetch_messages(
        self, account: Account, q: str | None, count: int, label_ids: list[str] | None
    ) -> list[EmailMessage]:
        service = await self._service(account, "gmail", "v1")
        kwargs: dict[str, Any] = {"userId": "me", "maxResults": count}
        if q:
            kwargs["q"] = q
        if label_ids:
            kwargs["labelIds"] = label_ids

        result = await self._execute(
            service.users().messages().list(**kwargs), "list messages", account
        )
        messages = result.get("messages", [])

        emails: list[EmailMessage] = []
        for msg_info in messages:
            msg = await self._execute(
                service.users().messages().get(userId="me", id=msg_info["id"], format="full"),
                f"message {msg_info['id']}",
                account,
            )
            emails.append(self._to_email(msg, account.id, include_body=False))

        logger.info(
            f"Retrieved {len(emails)} emails from Google account {account.id}",
            extra={"account_id": account.id, "count": len(emails)},
        )
        return emails

    async def list_messages(
        self, account: Account, *, count: int = 20, unread_only: bool = False
    ) -> list[EmailMessage]:
        return await self._fetch_messages(
            account, "is:unread" if unread_only else None, count, ["INBOX"]
        )

    async def search_messages(
        self,
        account: Account,
        query: str,
        *,
        count: int = 20,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[EmailMessage]:
        parts = [query] if query else []
        if since:
            parts.append(f"after:{since:%Y/%m/%d}")
        if until:
            parts.append(f"before:{until:%Y/%m/%d}")
        return await self._fetch_messages(account, " ".join(parts) or None, count, None)

    async def get_message(self, account: Account, message_id: str) -> EmailMessage | None:
        service = await self._service(account, "gmail", "v1")
        try:
            msg = await self._execute(
                service.users().messages().get(userId="me", id=message_id, format="full"),
                f"message {message_id}",
                account,
            )
        except TargetNotFoundError:
            return None
        return self._to_email(msg, account.id, include_body=True)

    @staticmethod
    def _to_email(msg: dict[str, Any], account_id: str, include_body: bool) -> EmailMessage:
        payload = msg.get("payload", {})
        headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}

        body = ""
        body_format = "text"
        if include_body:
            html_body = None
            if "parts" in payload:
                for part in payload["parts"]:
                    data = part.get("body", {}).get("data", "")
                    if not data:
                        continue
                    if part.get("mimeType") == "text/plain":
                        body = _decode_part(data)
                    elif part.get("mimeType") == "text/html":
                        html_body = _decode_part(data)
            elif payload.get("body", {}).get("data"):
                body = _decode_part(payload["body"]["data"])
                if "html" in payload.get("mimeType", ""):
                    body_format = "html"
            if html_body is not None:
                body, body_format = html_body, "html"
        else:
            body = msg.get("snippet", "")

        internal_date = msg.get("internalDate")
        if internal_date:
            received = datetime.fromtimestamp(int(internal_date) / 1000, tz=UTC)
        elif headers.get("date"):
            received = parsedate_to_datetime(headers["date"])
        else:
            received = datetime.min.replace(tzinfo=UTC)

        from_name, from_addr = parseaddr(headers.get("from", ""))
        labels = msg.get("labelIds", [])

        return EmailMessage(
            id=msg.get("id", ""),
            account_id=account_id,
            subject=headers.get("subject", ""),
            from_addr=from_addr,
            from_name=from_name,
            to_addrs=[a for _, a in getaddresses([headers.get("to", "")]) if a],
            cc_addrs=[a for _, a in getaddresses([headers.get("cc", "")]) if a],
            body=body,
            body_format=body_format,
            received_at=received,
            is_read="UNREAD" not in labels,
            has_attachments=any(p.get("filename") for p in payload.get("parts", [])),
            unsubscribe=parse_unsubscribe_headers(
                headers.get("list-unsubscribe"), headers.get("list-unsubscribe-post")
            ),
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
        async def _send(token: str) -> dict[str, Any]:
            message = MIMEText(body, "html" if body_format.lower() == "html" else "plain", "utf-8")
            message["To"] = ", ".join(to)
            message["Subject"] = subject
            sender = account.config_value("emailAddress", "EmailAddress")
            if sender:
                message["From"] = sender
            if cc:
                message["Cc"] = ", ".join(cc)
            raw = base64.urlsafe_b64encode(message.as_bytes()).decode("utf-8")

            service = await self._service(account, "gmail", "v1", token)
            result = await self._execute(
                service.users().messages().send(userId="me", body={"raw": raw}),
                "send message",
                account,
            )
            return {"message_id": result.get("id", "")}

        return await self._mutate(account, "send_message", _send)

    async def delete_message(self, account: Account, message_id: str) -> ProviderResult:
        async def _trash(token: str) -> None:
            service = await self._service(account, "gmail", "v1", token)
            await self._execute(
                service.users().messages().trash(userId="me", id=message_id),
                f"message {message_id}",
                account,
            )

        return await self._mutate(account, "delete_message", _trash)

    async def mark_message_read(
        self, account: Account, message_id: str, is_read: bool = True
    ) -> ProviderResult:
        body = {"removeLabelIds": ["UNREAD"]} if is_read else {"addLabelIds": ["UNREAD"]}

        async def _modify(token: str) -> None:
            service = await self._service(account, "gmail", "v1", token)
            await self._execute(
                service.users().messages().modify(userId="me", id=message_id, body=body),
                f"message {message_id}",
                account,
            )

        return await self._mutate(account, "mark_message_read", _modify)

    async def move_message(
        self, account: Account, message_id: str, destination_folder: str
    ) -> ProviderResult:
        async def _move(token: str) -> dict[str, Any]:
            service = await self._service(account, "gmail", "v1", token)
            folder = destination_folder.strip()
            key = folder.lower().replace(" ", "")

            if key == "archive":
                body: dict[str, Any] = {"removeLabelIds": ["INBOX"]}
            else:
                label_id = _SYSTEM_LABELS.get(key) or await self._find_label(
                    service, folder, account
                )
                body = {"addLabelIds": [label_id]}
                if label_id != "INBOX":
                    body["removeLabelIds"] = ["INBOX"]

            await self._execute(
                service.users().messages().modify(userId="me", id=message_id, body=body),
                f"message {message_id}",
                account,
            )
            return {"destination": folder}

        return await self._mutate(account, "move_message", _move)

    async def _find_label(self, service: Any, name: str, account: Account) -> str:
        result = await self._execute(service.users().labels().list(userId="me"), "labels", account)
        for label in result.get("labels", []):
            if label.get("name", "").lower() == name.lower() or label.get("id") == name:
                return label["id"]
        raise TargetNotFoundError(f"Label '{name}' not found")

    # -- Calendar --------------------------------------------------------------

    async def list_calendars(self, account: Account) -> list[CalendarInfo]:
        service = await self._service(account, "calendar", "v3")
        result = await self._execute(service.calendarList().list(), "calendar list", account)
        return [
            CalendarInfo(
                id=cal["id"],
                account_id=account.id,
                name=cal.get("summary", ""),
                owner=cal["id"],
                can_edit=cal.get("accessRole") in ("owner", "writer"),
                is_default=bool(cal.get("primary", False)),
                color=cal.get("backgroundColor"),
            )
            for cal in result.get("items", [])
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
        service = await self._service(account, "calendar", "v3")
        target = calendar_id or "primary"
        kwargs: dict[str, Any] = {
            "calendarId": target,
            "maxResults": count,
            "singleEvents": True,
            "orderBy": "startTime",
        }
        if start:
            kwargs["timeMin"] = _format_google_time(start)["dateTime"]
        if end:
            kwargs["timeMax"] = _format_google_time(end)["dateTime"]

        result = await self._execute(service.events().list(**kwargs), "events", account)
        events = [
            e
            for e in (self._to_event(item, account.id, target) for item in result.get("items", []))
            if e is not None
        ]
        logger.info(
            f"Retrieved {len(events)} events from Google account {account.id}",
            extra={"account_id": account.id, "count": len(events)},
        )
        return events

    async def get_event(
        self, account: Account, event_id: str, *, calendar_id: str | None = None
    ) -> CalendarEvent | None:
        service = await self._service(account, "calendar", "v3")
        target = calendar_id or "primary"
        try:
            item = await self._execute(
                service.events().get(calendarId=target, eventId=event_id),
                f"event {event_id}",
                account,
            )
        except TargetNotFoundError:
            return None
        return self._to_event(item, account.id, target)

    @staticmethod
    def _to_event(item: dict[str, Any], account_id: str, calendar_id: str) -> CalendarEvent | None:
        start, is_all_day = _parse_google_time(item.get("start"))
        end, _ = _parse_google_time(item.get("end"))
        if start is None:
            return None

        organizer = item.get("organizer", {})
        attendee_details = []
        my_status = "notResponded"
        for att in item.get("attendees", []):
            status = _RESPONSE_STATUS.get(att.get("responseStatus", ""), "notResponded")
            if att.get("self"):
                my_status = status
            if att.get("resource"):
                att_type = "resource"
            elif att.get("optional"):
                att_type = "optional"
            else:
                att_type = "required"
            attendee_details.append(
                EventAttendee(
                    email=att.get("email", ""),
                    name=att.get("displayName", ""),
                    response_status=status,
                    type=att_type,
                    is_organizer=bool(att.get("organizer", False)),
                )
            )

        meeting_url = item.get("hangoutLink")
        for entry in item.get("conferenceData", {}).get("entryPoints", []):
            if not meeting_url and entry.get("entryPointType") == "video":
                meeting_url = entry.get("uri")

        visibility = item.get("visibility", "default")
        return CalendarEvent(
            id=item.get("id", ""),
            account_id=account_id,
            calendar_id=calendar_id,
            subject=item.get("summary", ""),
            start=start,
            end=end or start,
            location=item.get("location", ""),
            body=item.get("description", ""),
            body_format="html" if "<" in item.get("description", "") else "text",
            organizer=organizer.get("email", ""),
            organizer_name=organizer.get("displayName", ""),
            attendees=[a.email for a in attendee_details if a.email],
            attendee_details=attendee_details,
            is_all_day=is_all_day,
            response_status="accepted" if organizer.get("self") else my_status,
            show_as="free" if item.get("transparency") == "transparent" else "busy",
            sensitivity=visibility if visibility in ("private", "confidential") else "normal",
            is_cancelled=item.get("status") == "cancelled",
            is_online_meeting=meeting_url is not None,
            online_meeting_url=meeting_url,
            online_meeting_provider="googleMeet" if meeting_url else None,
            is_recurring=bool(item.get("recurringEventId") or item.get("recurrence")),
            recurrence_pattern="; ".join(item.get("recurrence", [])) or None,
            created_at=_parse_rfc3339(item.get("created")),
            last_modified_at=_parse_rfc3339(item.get("updated")),
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
        event_body: dict[str, Any] = {
            "summary": subject,
            "start": _format_google_time(start, time_zone),
            "end": _format_google_time(end, time_zone),
        }
        if location:
            event_body["location"] = location
        if body:
            event_body["description"] = body
        if attendees:
            event_body["attendees"] = [{"email": a} for a in attendees]

        async def _insert(token: str) -> dict[str, Any]:
            service = await self._service(account, "calendar", "v3", token)
            created = await self._execute(
                service.events().insert(
                    calendarId=calendar_id or "primary",
                    body=event_body,
                    sendUpdates="all" if attendees else "none",
                ),
                "create event",
                account,
            )
            return {"event_id": created.get("id", "")}

        return await self._mutate(account, "create_event", _insert)

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
        patch_body: dict[str, Any] = {}
        if subject is not None:
            patch_body["summary"] = subject
        if start is not None:
            patch_body["start"] = _format_google_time(start)
        if end is not None:
            patch_body["end"] = _format_google_time(end)
        if location is not None:
            patch_body["location"] = location
        if attendees is not None:
            patch_body["attendees"] = [{"email": a} for a in attendees]

        async def _patch(token: str) -> None:
            service = await self._service(account, "calendar", "v3", token)
            await self._execute(
                service.events().patch(
                    calendarId=calendar_id or "primary", eventId=event_id, body=patch_body
                ),
                f"event {event_id}",
                account,
            )

        return await self._mutate(account, "update_event", _patch)

    async def delete_event(
        self, account: Account, event_id: str, *, calendar_id: str | None = None
    ) -> ProviderResult:
        async def _delete(token: str) -> None:
            service = await self._service(account, "calendar", "v3", token)
            await self._execute(
                service.events().delete(calendarId=calendar_id or "primary", eventId=event_id),
                f"event {event_id}",
                account,
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
        target = calendar_id or "primary"

        async def _respond(token: str) -> dict[str, Any]:
            service = await self._service(account, "calendar", "v3", token)
            event = await self._execute(
                service.events().get(calendarId=target, eventId=event_id),
                f"event {event_id}",
                account,
            )
            me = next((a for a in event.get("attendees", []) if a.get("self")), None)
            if me is None:
                raise ValidationFailure("You are not an attendee of this event")

            me["responseStatus"] = response.value
            if comment:
                # Calendar API has no response comment field
                me["comment"] = comment

            await self._execute(
                service.events().update(
                    calendarId=target, eventId=event_id, body=event, sendUpdates="all"
                ),
                f"event {event_id}",
                account,
            )
            return {"response": response.value}

        return await self._mutate(account, "respond_to_event", _respond)

    # -- Contacts --------------------------------------------------------------

    async def list_contacts(self, account: Account, *, count: int = 50) -> list[Contact]:
        service = await self._service(account, "people", "v1")
        result = await self._execute(
            service.people()
            .connections()
            .list(resourceName="people/me", pageSize=count, personFields=_PERSON_FIELDS),
            "contacts",
            account,
        )
        return [self._to_contact(p, account.id) for p in result.get("connections", [])]

    async def search_contacts(
        self, account: Account, query: str, *, count: int = 50
    ) -> list[Contact]:
        service = await self._service(account, "people", "v1")
        result = await self._execute(
            service.people().searchContacts(
                query=query, pageSize=min(count, 30), readMask=_PERSON_FIELDS
            ),
            "contact search",
            account,
        )
        return [
            self._to_contact(r["person"], account.id)
            for r in result.get("results", [])
            if "person" in r
        ]

    async def get_contact(self, account: Account, contact_id: str) -> Contact | None:
        service = await self._service(account, "people", "v1")
        try:
            person = await self._execute(
                service.people().get(resourceName=contact_id, personFields=_PERSON_FIELDS),
                f"contact {contact_id}",
                account,
            )
        except TargetNotFoundError:
            return None
        return self._to_contact(person, account.id)

    @staticmethod
    def _to_contact(person: dict[str, Any], account_id: str) -> Contact:
        name = (person.get("names") or [{}])[0]
        org = (person.get("organizations") or [{}])[0]
        birthday = None
        bday = (person.get("birthdays") or [{}])[0].get("date")
        if bday and bday.get("month") and bday.get("day"):
            birthday = datetime(bday.get("year") or 1, bday["month"], bday["day"], tzinfo=UTC)

        sources = person.get("metadata", {}).get("sources", [])
        updated = _parse_rfc3339(sources[0].get("updateTime")) if sources else None

        return Contact(
            id=person.get("resourceName", ""),
            account_id=account_id,
            display_name=name.get("displayName", ""),
            given_name=name.get("givenName", ""),
            surname=name.get("familyName", ""),
            email_addresses=[
                ContactEmail(address=e["value"], label=e.get("type", "other"))
                for e in person.get("emailAddresses", [])
                if e.get("value")
            ],
            phone_numbers=[
                ContactPhone(number=p["value"], label=p.get("type", "other"))
                for p in person.get("phoneNumbers", [])
                if p.get("value")
            ],
            job_title=org.get("title", ""),
            company_name=org.get("name", ""),
            department=org.get("department", ""),
            addresses=[
                ContactAddress(
                    street=a.get("streetAddress", ""),
                    city=a.get("city", ""),
                    state=a.get("region", ""),
                    postal_code=a.get("postalCode", ""),
                    country=a.get("country", ""),
                    label=a.get("type", "other"),
                )
                for a in person.get("addresses", [])
            ],
            birthday=birthday,
            notes=(person.get("biographies") or [{}])[0].get("value", ""),
            groups=[
                m["contactGroupMembership"].get("contactGroupResourceName", "")
                for m in person.get("memberships", [])
                if "contactGroupMembership" in m
            ],
            etag=person.get("etag"),
            last_modified_at=updated,
        )

    @staticmethod
    def _person_body(fields: ContactFields) -> tuple[dict[str, Any], list[str]]:
        """Build a People API person body and the list of fields it sets."""
        body: dict[str, Any] = {}
        updated: list[str] = []
        if any(v is not None for v in (fields.display_name, fields.given_name, fields.surname)):
            name: dict[str, str] = {}
            if fields.given_name is not None:
                name["givenName"] = fields.given_name
            if fields.surname is not None:
                name["familyName"] = fields.surname
            if fields.display_name is not None and not name:
                name["unstructuredName"] = fields.display_name
            body["names"] = [name]
            updated.append("names")
        if fields.email_addresses is not None:
            body["emailAddresses"] = [{"value": e} for e in fields.email_addresses]
            updated.append("emailAddresses")
        if fields.phone_numbers is not None:
            body["phoneNumbers"] = [{"value": p} for p in fields.phone_numbers]
            updated.append("phoneNumbers")
        if fields.job_title is not None or fields.company_name is not None:
            org: dict[str, str] = {}
            if fields.job_title is not None:
                org["title"] = fields.job_title
            if fields.company_name is not None:
                org["name"] = fields.company_name
            body["organizations"] = [org]
            updated.append("organizations")
        if fields.notes is not None:
            body["biographies"] = [{"value": fields.notes, "contentType": "TEXT_PLAIN"}]
            updated.append("biographies")
        return body, updated

    async def create_contact(self, account: Account, fields: ContactFields) -> ProviderResult:
        body, _ = self._person_body(fields)

        async def _create(token: str) -> dict[str, Any]:
            service = await self._service(account, "people", "v1", token)
            created = await self._execute(
                service.people().createContact(body=body), "create contact", account
            )
            return {"contact_id": created.get("resourceName", "")}

        return await self._mutate(account, "create_contact", _create)

    async def update_contact(
        self,
        account: Account,
        contact_id: str,
        fields: ContactFields,
        *,
        etag: str | None = None,
    ) -> ProviderResult:
        body, updated = self._person_body(fields)

        async def _update(token: str) -> dict[str, Any]:
            if not updated:
                raise ValidationFailure("No contact fields to update")
            service = await self._service(account, "people", "v1", token)
            current_etag = etag
            if current_etag is None:
                person = await self._execute(
                    service.people().get(resourceName=contact_id, personFields="metadata"),
                    f"contact {contact_id}",
                    account,
                )
                current_etag = person.get("etag")
            body["etag"] = current_etag
            await self._execute(
                service.people().updateContact(
                    resourceName=contact_id,
                    updatePersonFields=",".join(updated),
                    body=body,
                ),
                f"contact {contact_id}",
                account,
            )
            return {"contact_id": contact_id}

        return await self._mutate(account, "update_contact", _update)

    async def delete_contact(self, account: Account, contact_id: str) -> ProviderResult:
        async def _delete(token: str) -> None:
            service = await self._service(account, "people", "v1", token)
            await self._execute(
                service.people().deleteContact(resourceName=contact_id),
                f"contact {contact_id}",
                account,
            )

        return await self._mutate(account, "delete_contact", _delete)
