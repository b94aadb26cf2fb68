"""
Shared data model returned by every Capability Provider.

Providers map backend-native objects (Gmail messages, Graph events, ICS
components, ...) into these types so that fan-out results from different
backends can be merged and sorted together.
"""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to a naive datetime; convert an aware one to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ProviderKind(StrEnum):
    """The closed set of backend implementations."""

    MICROSOFT_365 = "microsoft365"  # M365 work/school accounts
    GOOGLE = "google"  # Gmail / Google Workspace
    OUTLOOK_COM = "outlook_com"  # Personal Microsoft accounts
    ICS = "ics"  # Read-only ICS feed
    JSON_CALENDAR = "json_calendar"  # Read-only exported JSON file


class EventResponse(StrEnum):
    """Attendee responses accepted by respond_to_event."""

    ACCEPTED = "accepted"
    TENTATIVE = "tentative"
    DECLINED = "declined"

    @classmethod
    def parse(cls, value: str) -> "EventResponse":
        """Parse user-facing spellings ("accept", "tentativelyAccepted", ...).

        Raises:
            ValueError: If *value* is not a recognised response.
        """
        normalized = value.strip().lower()
        if normalized in ("accept", "accepted"):
            return cls.ACCEPTED
        if normalized in ("tentative", "tentativelyaccepted", "tentativelyaccept"):
            return cls.TENTATIVE
        if normalized in ("decline", "declined"):
            return cls.DECLINED
        raise ValueError(
            f"Invalid response type: {value}. Valid values are: accept, tentative, decline"
        )


class UnsubscribeInfo(BaseModel):
    """Unsubscribe options advertised by List-Unsubscribe (RFC 2369 / RFC 8058)."""

    https_url: str | None = None
    mailto_url: str | None = None
    supports_one_click: bool = False
    list_unsubscribe: str = ""
    list_unsubscribe_post: str | None = None

    @property
    def recommended_method(self) -> str | None:
        if self.supports_one_click:
            return "one-click"
        if self.https_url:
            return "https"
        if self.mailto_url:
            return "mailto"
        return None


class EmailMessage(BaseModel):
    """Email message summary or detail."""

    id: str
    account_id: str
    subject: str = ""
    from_addr: str = ""
    from_name: str = ""
    to_addrs: list[str] = []
    cc_addrs: list[str] = []
    body: str = ""  # Snippet in listings, full body in details
    body_format: str = "text"  # "text" or "html"
    received_at: datetime = Field(default_factory=lambda: datetime.min.replace(tzinfo=UTC))
    is_read: bool = False
    has_attachments: bool = False
    unsubscribe: UnsubscribeInfo | None = None  # From List-Unsubscribe, when present


class CalendarInfo(BaseModel):
    """A calendar within an account."""

    id: str
    account_id: str
    name: str = ""
    owner: str = ""
    can_edit: bool = False
    is_default: bool = False
    color: str | None = None


class EventAttendee(BaseModel):
    """Attendee with response status."""

    email: str
    name: str = ""
    response_status: str = "notResponded"  # accepted, tentative, declined, notResponded
    type: str = "required"  # required, optional, resource
    is_organizer: bool = False


class CalendarEvent(BaseModel):
    """Calendar event, normalized across providers."""

    id: str
    account_id: str
    calendar_id: str
    subject: str = ""
    start: datetime
    end: datetime
    location: str = ""
    body: str = ""
    body_format: str = "text"
    organizer: str = ""
    organizer_name: str = ""
    attendees: list[str] = []
    attendee_details: list[EventAttendee] = []
    is_all_day: bool = False
    response_status: str = "notResponded"
    show_as: str = "busy"  # free, tentative, busy, outOfOffice, workingElsewhere
    sensitivity: str = "normal"  # normal, private, personal, confidential
    importance: str = "normal"  # low, normal, high
    is_cancelled: bool = False
    is_online_meeting: bool = False
    online_meeting_url: str | None = None
    online_meeting_provider: str | None = None
    is_recurring: bool = False
    recurrence_pattern: str | None = None
    categories: list[str] = []
    created_at: datetime | None = None
    last_modified_at: datetime | None = None


class ContactEmail(BaseModel):
    address: str
    label: str = "other"  # home, work, other


class ContactPhone(BaseModel):
    number: str
    label: str = "other"  # mobile, home, work, other


class ContactAddress(BaseModel):
    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""
    label: str = "other"


class Contact(BaseModel):
    """Address-book contact."""

    id: str
    account_id: str
    display_name: str = ""
    given_name: str = ""
    surname: str = ""
    email_addresses: list[ContactEmail] = []
    phone_numbers: list[ContactPhone] = []
    job_title: str = ""
    company_name: str = ""
    department: str = ""
    addresses: list[ContactAddress] = []
    birthday: datetime | None = None
    notes: str = ""
    groups: list[str] = []
    etag: str | None = None  # Google People API concurrency tag
    created_at: datetime | None = None
    last_modified_at: datetime | None = None


class ContactFields(BaseModel):
    """Fields accepted by create_contact / update_contact.

    On update, a field left as None is not changed.
    """

    display_name: str | None = None
    given_name: str | None = None
    surname: str | None = None
    email_addresses: list[str] | None = None
    phone_numbers: list[str] | None = None
    job_title: str | None = None
    company_name: str | None = None
    notes: str | None = None
