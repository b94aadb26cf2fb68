"""
Provider resolution: account type tag -> Capability Provider.

Configuration files spell provider types loosely ("M365", "Gmail",
"hotmail", ...). The synonym table maps every accepted spelling onto the
closed ProviderKind enum; anything else is a configuration error naming the
offending tag.
"""

import logging
from collections.abc import Mapping

from calmesh.accounts.models import Account
from calmesh.errors import ProviderConfigurationError
from calmesh.integrations.auth import TokenProvider
from calmesh.integrations.base import CapabilityProvider
from calmesh.integrations.feeds.ics import IcsFeedProvider
from calmesh.integrations.feeds.json_calendar import AccountLookup, JsonCalendarProvider
from calmesh.integrations.google import GoogleProvider
from calmesh.integrations.microsoft import MicrosoftGraphProvider
from calmesh.integrations.types import ProviderKind
from calmesh.settings import CalmeshSettings, get_settings

logger = logging.getLogger(__name__)

PROVIDER_SYNONYMS: dict[str, ProviderKind] = {
    "microsoft365": ProviderKind.MICROSOFT_365,
    "m365": ProviderKind.MICROSOFT_365,
    "google": ProviderKind.GOOGLE,
    "gmail": ProviderKind.GOOGLE,
    "google workspace": ProviderKind.GOOGLE,
    "outlook.com": ProviderKind.OUTLOOK_COM,
    "outlook": ProviderKind.OUTLOOK_COM,
    "hotmail": ProviderKind.OUTLOOK_COM,
    "ics": ProviderKind.ICS,
    "icalendar": ProviderKind.ICS,
    "json": ProviderKind.JSON_CALENDAR,
    "json-calendar": ProviderKind.JSON_CALENDAR,
}


def normalize_provider(tag: str) -> ProviderKind:
    """
    Map a configured provider tag onto a ProviderKind.

    Raises:
        ProviderConfigurationError: If *tag* is not a recognised spelling.
    """
    kind = PROVIDER_SYNONYMS.get(tag.strip().lower())
    if kind is None:
        raise ProviderConfigurationError(f"Unknown provider type: '{tag}'")
    return kind


class ProviderResolver:
    """
    Hands out the provider instance serving each ProviderKind.

    Example:
        >>> resolver = ProviderResolver.default(tokens, account_lookup=registry.get_by_id)
        >>> provider = resolver.resolve("Gmail")
        >>> provider.kind
        <ProviderKind.GOOGLE: 'google'>
    """

    def __init__(self, providers: Mapping[ProviderKind, CapabilityProvider]) -> None:
        self._providers = dict(providers)

    @classmethod
    def default(
        cls,
        token_provider: TokenProvider,
        *,
        account_lookup: AccountLookup | None = None,
        settings: CalmeshSettings | None = None,
    ) -> "ProviderResolver":
        """Build one provider per kind, configured from settings."""
        settings = settings or get_settings()
        return cls(
            {
                ProviderKind.MICROSOFT_365: MicrosoftGraphProvider(
                    token_provider,
                    ProviderKind.MICROSOFT_365,
                    timeout=settings.http_timeout_seconds,
                ),
                ProviderKind.OUTLOOK_COM: MicrosoftGraphProvider(
                    token_provider,
                    ProviderKind.OUTLOOK_COM,
                    timeout=settings.http_timeout_seconds,
                ),
                ProviderKind.GOOGLE: GoogleProvider(
                    token_provider,
                    api_timeout_seconds=settings.google_api_timeout_seconds,
                ),
                ProviderKind.ICS: IcsFeedProvider(
                    cache_ttl_minutes=settings.ics_cache_ttl_minutes,
                    timeout=settings.http_timeout_seconds,
                ),
                ProviderKind.JSON_CALENDAR: JsonCalendarProvider(
                    token_provider,
                    account_lookup=account_lookup,
                    cache_ttl_minutes=settings.json_cache_ttl_minutes,
                    timeout=settings.http_timeout_seconds,
                ),
            }
        )

    def resolve(self, tag: str | ProviderKind) -> CapabilityProvider:
        """
        Return the provider for a type tag.

        Raises:
            ProviderConfigurationError: If the tag is unknown or no provider
                is registered for its kind.
        """
        kind = tag if isinstance(tag, ProviderKind) else normalize_provider(tag)
        provider = self._providers.get(kind)
        if provider is None:
            raise ProviderConfigurationError(f"No provider registered for type '{kind}'")
        return provider

    def resolve_account(self, account: Account) -> CapabilityProvider:
        return self.resolve(account.provider)

    async def aclose(self) -> None:
        """Close every provider, logging rather than raising individual failures."""
        for kind, provider in self._providers.items():
            try:
                await provider.aclose()
            except Exception as e:
                logger.warning(f"Failed to close {kind} provider: {e}", extra={"provider": kind})
