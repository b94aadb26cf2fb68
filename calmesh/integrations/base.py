"""
Capability Provider contract.

Every backend implements the same message / calendar / contact surface.
Reads return shared data-model types and raise categorized exceptions on
failure. Mutations return a ProviderResult variant instead of raising, so
that "not possible on this backend" (UNSUPPORTED) is an ordinary, expected
outcome distinct from both success and error.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from calmesh.accounts.models import Account
from calmesh.errors import (
    AuthenticationRequiredError,
    CalmeshError,
    ErrorKind,
    NoAccountAvailableError,
    ProviderConfigurationError,
    RemoteOperationError,
    TargetNotFoundError,
    UnsupportedOperationError,
    ValidationFailure,
    error_kind_of,
)
from calmesh.integrations.auth import TokenProvider
from calmesh.integrations.types import (
    CalendarEvent,
    CalendarInfo,
    Contact,
    ContactFields,
    EmailMessage,
    EventResponse,
    ProviderKind,
)

logger = logging.getLogger(__name__)


class ResultStatus(StrEnum):
    OK = "ok"
    UNSUPPORTED = "unsupported"
    ERROR = "error"


_EXCEPTIONS_BY_KIND: dict[ErrorKind, type[CalmeshError]] = {
    ErrorKind.NOT_FOUND: TargetNotFoundError,
    ErrorKind.UNSUPPORTED: UnsupportedOperationError,
    ErrorKind.VALIDATION: ValidationFailure,
    ErrorKind.CONFIGURATION: ProviderConfigurationError,
    ErrorKind.NO_ACCOUNT: NoAccountAvailableError,
}


@dataclass
class ProviderResult:
    """Outcome of a mutating provider operation.

    Uses a plain dataclass rather than Pydantic: results are internal return
    values, converted by the caller before they cross any API boundary.

    Attributes:
        status: OK, UNSUPPORTED or ERROR
        data: Operation output on success (e.g. ``{"message_id": ...}``)
        error: Human-readable error message when not OK
        error_kind: Category of the failure when not OK
        account_id: Account the operation ran against, when known
    """

    status: ResultStatus
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_kind: ErrorKind | None = None
    account_id: str | None = None

    @property
    def success(self) -> bool:
        return self.status == ResultStatus.OK

    @classmethod
    def ok(cls, **data: Any) -> "ProviderResult":
        return cls(status=ResultStatus.OK, data=data)

    @classmethod
    def unsupported(cls, message: str) -> "ProviderResult":
        return cls(
            status=ResultStatus.UNSUPPORTED,
            error=message,
            error_kind=ErrorKind.UNSUPPORTED,
        )

    @classmethod
    def failure(cls, error: str, kind: ErrorKind = ErrorKind.REMOTE_FAILURE) -> "ProviderResult":
        return cls(status=ResultStatus.ERROR, error=error, error_kind=kind)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ProviderResult":
        kind = error_kind_of(exc)
        if kind == ErrorKind.UNSUPPORTED:
            return cls.unsupported(str(exc))
        return cls.failure(str(exc) or exc.__class__.__name__, kind)

    def raise_for_status(self) -> "ProviderResult":
        """Raise the exception matching this result's category if it is not OK."""
        if self.success:
            return self
        message = self.error or "Operation failed"
        kind = self.error_kind or ErrorKind.REMOTE_FAILURE
        if kind == ErrorKind.UNAUTHENTICATED:
            raise AuthenticationRequiredError(self.account_id or "", message)
        exc_type = _EXCEPTIONS_BY_KIND.get(kind)
        if exc_type is not None:
            raise exc_type(message)
        raise RemoteOperationError(message)


class CapabilityProvider(ABC):
    """Uniform operation surface over one backend kind.

    A single provider instance serves every account of its kind; the
    account is passed to each call and its ``provider_config`` bag is
    interpreted only here.
    """

    kind: ProviderKind
    read_only: bool = False

    # -- Messages --------------------------------------------------------------

    @abstractmethod
    async def list_messages(
        self, account: Account, *, count: int = 20, unread_only: bool = False
    ) -> list[EmailMessage]:
        """Recent inbox messages, newest first."""

    @abstractmethod
    async def search_messages(
        self,
        account: Account,
        query: str,
        *,
        count: int = 20,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[EmailMessage]:
        """Messages matching a backend-native search query."""

    @abstractmethod
    async def get_message(self, account: Account, message_id: str) -> EmailMessage | None:
        """Full message including body, or None if not found."""

    @abstractmethod
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
        """Send a new message. Data: ``message_id``."""

    @abstractmethod
    async def delete_message(self, account: Account, message_id: str) -> ProviderResult: ...

    @abstractmethod
    async def mark_message_read(
        self, account: Account, message_id: str, is_read: bool = True
    ) -> ProviderResult: ...

    @abstractmethod
    async def move_message(
        self, account: Account, message_id: str, destination_folder: str
    ) -> ProviderResult: ...

    # -- Calendar --------------------------------------------------------------

    @abstractmethod
    async def list_calendars(self, account: Account) -> list[CalendarInfo]: ...

    @abstractmethod
    async def list_events(
        self,
        account: Account,
        *,
        calendar_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        count: int = 50,
    ) -> list[CalendarEvent]:
        """Events overlapping [start, end), ordered by start time."""

    @abstractmethod
    async def get_event(
        self, account: Account, event_id: str, *, calendar_id: str | None = None
    ) -> CalendarEvent | None: ...

    @abstractmethod
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
        """Create an event. Data: ``event_id``."""

    @abstractmethod
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
    ) -> ProviderResult: ...

    @abstractmethod
    async def delete_event(
        self, account: Account, event_id: str, *, calendar_id: str | None = None
    ) -> ProviderResult: ...

    @abstractmethod
    async def respond_to_event(
        self,
        account: Account,
        event_id: str,
        response: EventResponse,
        *,
        calendar_id: str | None = None,
        comment: str | None = None,
    ) -> ProviderResult: ...

    # -- Contacts --------------------------------------------------------------

    @abstractmethod
    async def list_contacts(self, account: Account, *, count: int = 50) -> list[Contact]: ...

    @abstractmethod
    async def search_contacts(
        self, account: Account, query: str, *, count: int = 50
    ) -> list[Contact]: ...

    @abstractmethod
    async def get_contact(self, account: Account, contact_id: str) -> Contact | None: ...

    @abstractmethod
    async def create_contact(self, account: Account, fields: ContactFields) -> ProviderResult:
        """Create a contact. Data: ``contact_id``."""

    @abstractmethod
    async def update_contact(
        self,
        account: Account,
        contact_id: str,
        fields: ContactFields,
        *,
        etag: str | None = None,
    ) -> ProviderResult: ...

    @abstractmethod
    async def delete_contact(self, account: Account, contact_id: str) -> ProviderResult: ...

    async def aclose(self) -> None:
        """Release provider resources. Default is no-op."""


class HostedProvider(CapabilityProvider):
    """Base for read-write OAuth-hosted backends.

    Resolves a credential through the TokenProvider before every remote
    call. Reads raise AuthenticationRequiredError when no credential is
    available; mutations return an UNAUTHENTICATED ProviderResult.
    """

    scopes: Sequence[str] = ()

    def __init__(self, token_provider: TokenProvider) -> None:
        self._token_provider = token_provider

    async def _require_token(self, account: Account) -> str:
        token = await self._token_provider.get_token(account.id, self.scopes)
        if not token:
            logger.warning(
                f"No cached token available for account {account.id}",
                extra={"account_id": account.id, "provider": self.kind},
            )
            raise AuthenticationRequiredError(account.id)
        return token

    async def _mutate(
        self,
        account: Account,
        operation: str,
        func: Callable[[str], Awaitable[dict[str, Any] | None]],
    ) -> ProviderResult:
        """Run a mutation with a fresh credential, capturing failures as a result."""
        try:
            token = await self._require_token(account)
            data = await func(token)
        except Exception as e:
            logger.error(
                f"{operation} failed for account {account.id}: {e}",
                exc_info=not isinstance(e, CalmeshError),
                extra={"account_id": account.id, "provider": self.kind, "operation": operation},
            )
            result = ProviderResult.from_exception(e)
            result.account_id = account.id
            return result

        logger.info(
            f"{operation} succeeded for account {account.id}",
            extra={"account_id": account.id, "provider": self.kind, "operation": operation},
        )
        result = ProviderResult.ok(**(data or {}))
        result.account_id = account.id
        return result


class ReadOnlyProvider(CapabilityProvider):
    """Base for feed-backed backends.

    Every mutation returns an UNSUPPORTED result, never a silent no-op.
    Message and contact reads return empty results since a calendar feed
    carries neither.
    """

    read_only = True
    display_name: str = "Feed"

    def _unsupported(self, account: Account, what: str) -> ProviderResult:
        result = ProviderResult.unsupported(
            f"{self.display_name} provider is read-only: {what} is not supported"
        )
        result.account_id = account.id
        return result

    async def list_messages(
        self, account: Account, *, count: int = 20, unread_only: bool = False
    ) -> list[EmailMessage]:
        return []

    async def search_messages(
        self,
        account: Account,
        query: str,
        *,
        count: int = 20,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[EmailMessage]:
        return []

    async def get_message(self, account: Account, message_id: str) -> EmailMessage | None:
        return None

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
        return self._unsupported(account, "sending email")

    async def delete_message(self, account: Account, message_id: str) -> ProviderResult:
        return self._unsupported(account, "deleting email")

    async def mark_message_read(
        self, account: Account, message_id: str, is_read: bool = True
    ) -> ProviderResult:
        return self._unsupported(account, "marking email as read")

    async def move_message(
        self, account: Account, message_id: str, destination_folder: str
    ) -> ProviderResult:
        return self._unsupported(account, "moving email")

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
        return self._unsupported(account, "creating events")

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
        return self._unsupported(account, "updating events")

    async def delete_event(
        self, account: Account, event_id: str, *, calendar_id: str | None = None
    ) -> ProviderResult:
        return self._unsupported(account, "deleting events")

    async def respond_to_event(
        self,
        account: Account,
        event_id: str,
        response: EventResponse,
        *,
        calendar_id: str | None = None,
        comment: str | None = None,
    ) -> ProviderResult:
        return self._unsupported(account, "responding to events")

    async def list_contacts(self, account: Account, *, count: int = 50) -> list[Contact]:
        return []

    async def search_contacts(
        self, account: Account, query: str, *, count: int = 50
    ) -> list[Contact]:
        return []

    async def get_contact(self, account: Account, contact_id: str) -> Contact | None:
        return None

    async def create_contact(self, account: Account, fields: ContactFields) -> ProviderResult:
        return self._unsupported(account, "creating contacts")

    async def update_contact(
        self,
        account: Account,
        contact_id: str,
        fields: ContactFields,
        *,
        etag: str | None = None,
    ) -> ProviderResult:
        return self._unsupported(account, "updating contacts")

    async def delete_contact(self, account: Account, contact_id: str) -> ProviderResult:
        return self._unsupported(account, "deleting contacts")
