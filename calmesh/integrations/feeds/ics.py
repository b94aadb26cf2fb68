"""
ICS feed provider.

Read-only calendar access to a published iCalendar URL (Outlook "publish
calendar", Google secret address, ...). The feed is fetched with httpx,
parsed with icalendar and cached per account. Recurring events are expanded
within the requested window with dateutil's rrule engine.

Provider config keys:
    icsUrl / IcsUrl: Feed URL (required)
    cacheTtlMinutes / CacheTtlMinutes: Cache TTL, default 5
"""

import logging
from collections.abc import Iterator
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Any

import httpx
from dateutil.rrule import rruleset, rrulestr
from icalendar import Calendar, vPeriod

from calmesh.accounts.models import Account
from calmesh.errors import ProviderConfigurationError
from calmesh.integrations.base import ReadOnlyProvider
from calmesh.integrations.feeds.cache import Clock, FeedCache, utcnow
from calmesh.integrations.feeds.meetings import (
    TEAMS_MEETING_PROPERTY,
    find_meeting_url,
)
from calmesh.integrations.types import (
    CalendarEvent,
    CalendarInfo,
    EventAttendee,
    ProviderKind,
    ensure_utc,
)

logger = logging.getLogger(__name__)

CALENDAR_ID = "ics-feed"
DEFAULT_CACHE_TTL_MINUTES = 5
DEFAULT_WINDOW = timedelta(days=7)

_PARTSTAT = {
    "ACCEPTED": "accepted",
    "TENTATIVE": "tentative",
    "DECLINED": "declined",
    "NEEDS-ACTION": "notResponded",
}

_ROLE = {
    "REQ-PARTICIPANT": "required",
    "OPT-PARTICIPANT": "optional",
    "NON-PARTICIPANT": "resource",
}

_CLASS = {"PRIVATE": "private", "CONFIDENTIAL": "confidential"}

# FBTYPE -> (subject, show_as)
_FREEBUSY = {
    "FREE": ("Free", "free"),
    "BUSY-TENTATIVE": ("Tentative", "tentative"),
    "BUSY-UNAVAILABLE": ("Unavailable", "busy"),
}


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _as_utc(value: date | datetime) -> tuple[datetime, bool]:
    """Normalize an iCalendar date/datetime to an aware UTC datetime.

    Returns (datetime, is_all_day). Floating times are treated as UTC.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC), False
        return value.astimezone(UTC), False
    return datetime.combine(value, time.min, tzinfo=UTC), True


def _to_local(value: date | datetime, tz: tzinfo) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value
        return value.astimezone(tz).replace(tzinfo=None)
    return datetime.combine(value, time.min)


def _date_values(prop: Any) -> Iterator[date | datetime]:
    """Dates listed in RDATE/EXDATE properties (periods are skipped)."""
    for value in _as_list(prop):
        for item in getattr(value, "dts", []):
            if isinstance(item.dt, date):
                yield item.dt


def _text(component: Any, name: str) -> str:
    value = component.get(name)
    return str(value) if value is not None else ""


def _address(value: Any) -> str:
    address = str(value)
    if address.lower().startswith("mailto:"):
        return address[7:]
    return address


def _optional_utc(component: Any, name: str) -> datetime | None:
    prop = component.get(name)
    if prop is None:
        return None
    return _as_utc(prop.dt)[0]


def _importance(priority: Any) -> str:
    try:
        value = int(priority)
    except (TypeError, ValueError):
        return "normal"
    if 1 <= value <= 4:
        return "high"
    if 6 <= value <= 9:
        return "low"
    return "normal"


def _bounds(component: Any) -> tuple[datetime, datetime, bool]:
    """Start, end and all-day flag of a VEVENT's own (first) instance."""
    start, is_all_day = _as_utc(component["DTSTART"].dt)
    if component.get("DTEND") is not None:
        end = _as_utc(component["DTEND"].dt)[0]
    elif component.get("DURATION") is not None:
        end = start + component["DURATION"].dt
    elif is_all_day:
        end = start + timedelta(days=1)
    else:
        end = start
    return start, end, is_all_day


def _is_recurring(component: Any) -> bool:
    return component.get("RRULE") is not None or component.get("RDATE") is not None


def _occurrence_starts(
    component: Any, window_start: datetime, window_end: datetime, length: timedelta
) -> list[datetime]:
    """UTC start times of a recurring VEVENT that overlap the window.

    Rules are expanded in the event's own timezone as wall-clock time so
    that occurrences keep their local time across DST changes.
    """
    dtstart = component["DTSTART"].dt
    tz: tzinfo = UTC
    if isinstance(dtstart, datetime) and dtstart.tzinfo is not None:
        tz = dtstart.tzinfo
    local_start = _to_local(dtstart, tz)

    rules = rruleset()
    for rule in _as_list(component.get("RRULE")):
        rules.rrule(rrulestr(rule.to_ical().decode(), dtstart=local_start, ignoretz=True))
    for value in _date_values(component.get("RDATE")):
        rules.rdate(_to_local(value, tz))
    for value in _date_values(component.get("EXDATE")):
        rules.exdate(_to_local(value, tz))

    lo = (window_start - length).astimezone(tz).replace(tzinfo=None)
    hi = window_end.astimezone(tz).replace(tzinfo=None)
    starts = []
    for occurrence in rules.between(lo, hi, inc=True):
        occ_start = occurrence.replace(tzinfo=tz).astimezone(UTC)
        if occ_start < window_end and occ_start + length > window_start:
            starts.append(occ_start)
    return starts


class IcsFeedProvider(ReadOnlyProvider):
    """
    Read-only provider over an ICS feed URL.

    Example:
        >>> provider = IcsFeedProvider()
        >>> events = await provider.list_events(account, start=monday, end=friday)
    """

    kind = ProviderKind.ICS
    display_name = "ICS"

    def __init__(
        self,
        *,
        cache_ttl_minutes: int = DEFAULT_CACHE_TTL_MINUTES,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._clock = clock or utcnow
        self.cache: FeedCache[Calendar] = FeedCache("ICS", cache_ttl_minutes, clock=self._clock)
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport, follow_redirects=True
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _fetch(self, url: str) -> Calendar:
        response = await self._http().get(url)
        response.raise_for_status()
        calendar = Calendar.from_ical(response.text)
        logger.debug(f"Parsed ICS feed from {url} ({len(calendar.walk('VEVENT'))} events)")
        return calendar

    async def _calendar(self, account: Account) -> Calendar:
        url = account.config_value("icsUrl", "IcsUrl")
        if not url:
            raise ProviderConfigurationError(
                f"Account '{account.id}' is missing icsUrl in providerConfig"
            )
        lookup = await self.cache.get(account, lambda: self._fetch(url))
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
        calendar = await self._calendar(account)
        today = datetime.combine(self._clock().date(), time.min, tzinfo=UTC)
        window_start = ensure_utc(start) or today
        window_end = ensure_utc(end) or window_start + DEFAULT_WINDOW

        vevents = calendar.walk("VEVENT")
        # Instances moved or edited individually replace the generated occurrence
        overridden = {
            (str(c.get("UID")), _as_utc(c["RECURRENCE-ID"].dt)[0])
            for c in vevents
            if c.get("RECURRENCE-ID") is not None
        }

        events: list[CalendarEvent] = []
        for component in vevents:
            if component.get("DTSTART") is None:
                continue
            first_start, first_end, is_all_day = _bounds(component)

            if _is_recurring(component) and component.get("RECURRENCE-ID") is None:
                uid = str(component.get("UID"))
                length = first_end - first_start
                for occ_start in _occurrence_starts(component, window_start, window_end, length):
                    if (uid, occ_start) in overridden:
                        continue
                    events.append(
                        self._to_event(
                            component, account.id, occ_start, occ_start + length, is_all_day
                        )
                    )
            elif first_start < window_end and first_end > window_start:
                events.append(
                    self._to_event(component, account.id, first_start, first_end, is_all_day)
                )

        for component in calendar.walk("VFREEBUSY"):
            events.extend(self._freebusy_events(component, account.id, window_start, window_end))

        events.sort(key=lambda e: e.start)
        logger.info(
            f"Retrieved {min(len(events), count)} events from ICS account {account.id}",
            extra={"account_id": account.id, "count": len(events)},
        )
        return events[:count]

    async def get_event(
        self, account: Account, event_id: str, *, calendar_id: str | None = None
    ) -> CalendarEvent | None:
        calendar = await self._calendar(account)
        for component in calendar.walk("VEVENT"):
            if str(component.get("UID", "")) == event_id and component.get("DTSTART") is not None:
                start, end, is_all_day = _bounds(component)
                return self._to_event(component, account.id, start, end, is_all_day)
        return None

    @staticmethod
    def _to_event(
        component: Any, account_id: str, start: datetime, end: datetime, is_all_day: bool
    ) -> CalendarEvent:
        description = _text(component, "DESCRIPTION")

        meeting_url = None
        meeting_provider = None
        teams_url = _text(component, TEAMS_MEETING_PROPERTY).strip()
        if teams_url:
            meeting_url, meeting_provider = teams_url, "teamsForBusiness"
        else:
            found = find_meeting_url(description)
            if found:
                meeting_url, meeting_provider = found

        attendee_details = []
        for attendee in _as_list(component.get("ATTENDEE")):
            email = _address(attendee)
            if not email:
                continue
            params = getattr(attendee, "params", {})
            attendee_details.append(
                EventAttendee(
                    email=email,
                    name=str(params.get("CN", "")),
                    response_status=_PARTSTAT.get(
                        str(params.get("PARTSTAT", "")).upper(), "notResponded"
                    ),
                    type=_ROLE.get(str(params.get("ROLE", "")).upper(), "required"),
                )
            )

        organizer = component.get("ORGANIZER")
        categories: list[str] = []
        for value in _as_list(component.get("CATEGORIES")):
            categories.extend(str(c) for c in getattr(value, "cats", [value]))

        rules = _as_list(component.get("RRULE"))
        sensitivity = _text(component, "CLASS").upper()

        return CalendarEvent(
            id=_text(component, "UID"),
            account_id=account_id,
            calendar_id=CALENDAR_ID,
            subject=_text(component, "SUMMARY"),
            start=start,
            end=end,
            location=_text(component, "LOCATION"),
            body=description,
            body_format="text",
            organizer=_address(organizer) if organizer is not None else "",
            organizer_name=str(getattr(organizer, "params", {}).get("CN", "")),
            attendees=[a.email for a in attendee_details],
            attendee_details=attendee_details,
            is_all_day=is_all_day,
            show_as="free" if _text(component, "TRANSP").upper() == "TRANSPARENT" else "busy",
            sensitivity=_CLASS.get(sensitivity, "normal"),
            importance=_importance(component.get("PRIORITY")),
            is_cancelled=_text(component, "STATUS").upper() == "CANCELLED",
            is_online_meeting=meeting_url is not None,
            online_meeting_url=meeting_url,
            online_meeting_provider=meeting_provider,
            is_recurring=_is_recurring(component) or component.get("RECURRENCE-ID") is not None,
            recurrence_pattern=rules[0].to_ical().decode() if rules else None,
            categories=categories,
            created_at=_optional_utc(component, "CREATED"),
            last_modified_at=_optional_utc(component, "LAST-MODIFIED"),
        )

    @staticmethod
    def _freebusy_events(
        component: Any, account_id: str, window_start: datetime, window_end: datetime
    ) -> list[CalendarEvent]:
        events = []
        for value in _as_list(component.get("FREEBUSY")):
            fbtype = str(getattr(value, "params", {}).get("FBTYPE", "BUSY")).upper()
            subject, show_as = _FREEBUSY.get(fbtype, ("Busy", "busy"))
            for piece in value.to_ical().decode().split(","):
                period_start, end_or_duration = vPeriod.from_ical(piece)
                fb_start = _as_utc(period_start)[0]
                if isinstance(end_or_duration, timedelta):
                    fb_end = fb_start + end_or_duration
                elif end_or_duration is not None:
                    fb_end = _as_utc(end_or_duration)[0]
                else:
                    fb_end = fb_start + timedelta(minutes=30)

                if fb_start < window_end and fb_end > window_start:
                    events.append(
                        CalendarEvent(
                            id=f"freebusy-{fb_start:%Y%m%d%H%M%S}",
                            account_id=account_id,
                            calendar_id=CALENDAR_ID,
                            subject=subject,
                            start=fb_start,
                            end=fb_end,
                            show_as=show_as,
                        )
                    )
        return events
