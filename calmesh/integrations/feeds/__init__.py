"""
Read-only feed providers and their shared TTL cache.
"""

from calmesh.integrations.feeds.cache import FeedCache
from calmesh.integrations.feeds.ics import IcsFeedProvider
from calmesh.integrations.feeds.json_calendar import JsonCalendarProvider

__all__ = ["FeedCache", "IcsFeedProvider", "JsonCalendarProvider"]
