"""
calmesh.errors - Error taxonomy

Every failure the orchestration layer reports falls into one ErrorKind.
Exceptions carry their kind so that fan-out warnings, batch ledgers and
single-target write results can all be categorized the same way.

Example:
    >>> from calmesh.errors import AuthenticationRequiredError
    >>>
    >>> try:
    ...     await provider.list_messages(account)
    ... except AuthenticationRequiredError as e:
    ...     logger.warning(f"Re-authenticate {e.account_id}")
"""

from enum import StrEnum


class ErrorKind(StrEnum):
    """Categories of failure surfaced to callers."""

    NOT_FOUND = "not_found"  # Account or target id absent
    UNAUTHENTICATED = "unauthenticated"  # Re-authenticate, don't retry
    UNSUPPORTED = "unsupported"  # Write on a read-only backend
    TRANSIENT_FETCH = "transient_fetch"  # Feed/file fetch failed
    REMOTE_FAILURE = "remote_failure"  # Any other backend API failure
    VALIDATION = "validation"  # Rejected before any I/O
    CONFIGURATION = "configuration"  # Bad account/provider configuration
    NO_ACCOUNT = "no_account"  # Nothing to route to


class CalmeshError(Exception):
    """Base exception for all calmesh errors."""

    kind: ErrorKind = ErrorKind.REMOTE_FAILURE


class AccountNotFoundError(CalmeshError):
    """Raised when an account id is not in the current snapshot."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"Account '{account_id}' not found")


class TargetNotFoundError(CalmeshError):
    """Raised when a message, event or contact id does not exist."""

    kind = ErrorKind.NOT_FOUND


class AuthenticationRequiredError(CalmeshError):
    """
    Raised when no valid credential exists for an account.

    Distinct from a generic failure: the remedy is re-authentication,
    not a retry.
    """

    kind = ErrorKind.UNAUTHENTICATED

    def __init__(self, account_id: str, message: str | None = None) -> None:
        self.account_id = account_id
        super().__init__(
            message or f"Authentication required for account '{account_id}'"
        )


class UnsupportedOperationError(CalmeshError):
    """Raised when a write is attempted on a read-only backend."""

    kind = ErrorKind.UNSUPPORTED


class FeedFetchError(CalmeshError):
    """Raised when a feed or file fetch fails and no cached copy exists."""

    kind = ErrorKind.TRANSIENT_FETCH


class RemoteOperationError(CalmeshError):
    """
    Raised when a backend API call fails.

    Attributes:
        status_code: HTTP status reported by the backend, if any
        detail: Raw backend error detail, if any
    """

    kind = ErrorKind.REMOTE_FAILURE

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class ValidationFailure(CalmeshError, ValueError):
    """Raised when caller input is malformed (e.g. an invalid enum value)."""

    kind = ErrorKind.VALIDATION


class BatchValidationError(ValidationFailure):
    """Raised when batch input is empty, oversized or malformed."""


class ProviderConfigurationError(CalmeshError, ValueError):
    """Raised when an account's provider tag or provider config is invalid."""

    kind = ErrorKind.CONFIGURATION


class NoAccountAvailableError(CalmeshError):
    """Raised when no account exists to serve a request."""

    kind = ErrorKind.NO_ACCOUNT


def error_kind_of(exc: BaseException) -> ErrorKind:
    """Return the ErrorKind for any exception (REMOTE_FAILURE if uncategorized)."""
    if isinstance(exc, CalmeshError):
        return exc.kind
    return ErrorKind.REMOTE_FAILURE


__all__ = [
    "AccountNotFoundError",
    "AuthenticationRequiredError",
    "BatchValidationError",
    "CalmeshError",
    "ErrorKind",
    "FeedFetchError",
    "NoAccountAvailableError",
    "ProviderConfigurationError",
    "RemoteOperationError",
    "TargetNotFoundError",
    "UnsupportedOperationError",
    "ValidationFailure",
    "error_kind_of",
]
