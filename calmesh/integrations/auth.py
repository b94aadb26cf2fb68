"""
Credential contract consumed by the hosted providers.

OAuth flows and token storage live outside this package. Providers only
ask a TokenProvider for a bearer token for (account id, scopes) before each
remote call and treat ``None`` as "not authenticated".
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

GOOGLE_SCOPES: tuple[str, ...] = (
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.compose",
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/contacts",
)

MICROSOFT_SCOPES: tuple[str, ...] = (
    "Mail.Read",
    "Mail.Send",
    "Mail.ReadWrite",
    "Calendars.ReadWrite",
    "Contacts.ReadWrite",
)

ONEDRIVE_SCOPES: tuple[str, ...] = ("Files.Read",)


@runtime_checkable
class TokenProvider(Protocol):
    """Returns a valid bearer token, or None if the account is not authenticated."""

    async def get_token(self, account_id: str, scopes: Sequence[str]) -> str | None: ...


class StaticTokenProvider:
    """
    TokenProvider backed by a fixed account id -> token mapping.

    Scopes are not checked. Intended for embedding with an externally
    refreshed token cache, and for tests.

    Example:
        >>> tokens = StaticTokenProvider({"work": "ya29.token"})
        >>> await tokens.get_token("WORK", GOOGLE_SCOPES)
        'ya29.token'
    """

    def __init__(self, tokens: Mapping[str, str] | None = None) -> None:
        self._tokens = {k.casefold(): v for k, v in (tokens or {}).items()}

    def set_token(self, account_id: str, token: str | None) -> None:
        """Store or (with None) remove the token for *account_id*."""
        if token is None:
            self._tokens.pop(account_id.casefold(), None)
        else:
            self._tokens[account_id.casefold()] = token

    async def get_token(self, account_id: str, scopes: Sequence[str]) -> str | None:
        token = self._tokens.get(account_id.casefold())
        if token is None:
            logger.debug(f"No token available for account {account_id}")
        return token
