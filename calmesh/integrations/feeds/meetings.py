"""Online-meeting link detection for feed events."""

import re

TEAMS_MEETING_PROPERTY = "X-MICROSOFT-SKYPETEAMSMEETINGURL"

MEETING_URL_PATTERN = re.compile(
    r"https?://(?:teams\.microsoft\.com/l/meetup-join|meet\.google\.com|zoom\.us/j|[\w.]+\.zoom\.us/j)"
    r"/[^\s<>\"]+",
    re.IGNORECASE,
)


def meeting_provider_for(url: str) -> str | None:
    lowered = url.lower()
    if "teams.microsoft.com" in lowered:
        return "teamsForBusiness"
    if "meet.google.com" in lowered:
        return "googleMeet"
    if "zoom.us" in lowered:
        return "zoom"
    return None


def find_meeting_url(text: str | None) -> tuple[str, str | None] | None:
    """Return (url, provider) for the first meeting link in *text*, if any."""
    if not text:
        return None
    match = MEETING_URL_PATTERN.search(text)
    if match is None:
        return None
    return match.group(0), meeting_provider_for(match.group(0))
