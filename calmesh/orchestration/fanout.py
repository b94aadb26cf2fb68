"""
calmesh.orchestration.fanout - Multi-account read fan-out

Runs one read operation against every targeted account concurrently and
merges the results. A failing account (expired token, unreachable feed,
misconfigured provider) becomes an AccountWarning; it never hides the
other accounts' data.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from calmesh.accounts.models import Account
from calmesh.accounts.registry import AccountRegistry
from calmesh.errors import CalmeshError, ErrorKind, NoAccountAvailableError, error_kind_of
from calmesh.integrations.base import CapabilityProvider
from calmesh.integrations.resolver import ProviderResolver

logger = logging.getLogger(__name__)

T = TypeVar("T")

ReadOperation = Callable[[CapabilityProvider, Account], Awaitable[Sequence[T]]]


@dataclass(frozen=True)
class AccountWarning:
    """A per-account failure recorded during fan-out."""

    account_id: str
    error: str
    kind: ErrorKind = ErrorKind.REMOTE_FAILURE


@dataclass
class FanoutResult(Generic[T]):
    """Merged items from every account that answered, plus per-account warnings.

    Attributes:
        items: Successful results, concatenated then ordered
        warnings: One entry per account whose operation raised
        accounts_queried: Ids of every account the operation was dispatched to
    """

    items: list[T] = field(default_factory=list)
    warnings: list[AccountWarning] = field(default_factory=list)
    accounts_queried: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.warnings


class FanoutExecutor:
    """
    Concurrent, failure-isolated reads across accounts.

    Concurrency is unbounded: account counts are small and operator
    controlled. Cancelling ``run`` cancels every in-flight account task.

    Example:
        >>> result = await fanout.run(
        ...     None,
        ...     lambda provider, account: provider.list_messages(account, count=20),
        ...     sort_key=lambda m: m.received_at,
        ...     reverse=True,
        ... )
        >>> len(result.items), result.warnings
    """

    def __init__(self, registry: AccountRegistry, resolver: ProviderResolver) -> None:
        self._registry = registry
        self._resolver = resolver

    def targets(self, account_id: str | None) -> list[Account]:
        """
        Accounts an operation will be dispatched to.

        An explicit id selects that account (even if disabled); None selects
        every enabled account. Disabled accounts are skipped here even though
        ``list_accounts`` still reports them.

        Raises:
            AccountNotFoundError: If *account_id* is not registered.
            NoAccountAvailableError: If no enabled accounts exist.
        """
        if account_id:
            return [self._registry.require(account_id)]
        accounts = self._registry.get_enabled()
        if not accounts:
            raise NoAccountAvailableError("No accounts found")
        return accounts

    async def _run_one(
        self, account: Account, operation: ReadOperation[T], operation_name: str
    ) -> tuple[Sequence[T], AccountWarning | None]:
        try:
            provider = self._resolver.resolve_account(account)
            return await operation(provider, account), None
        except Exception as e:
            logger.error(
                f"Error during {operation_name} for account {account.id}: {e}",
                exc_info=not isinstance(e, CalmeshError),
                extra={"account_id": account.id, "operation": operation_name},
            )
            return [], AccountWarning(
                account_id=account.id,
                error=str(e) or e.__class__.__name__,
                kind=error_kind_of(e),
            )

    async def run(
        self,
        account_id: str | None,
        operation: ReadOperation[T],
        *,
        sort_key: Callable[[T], Any] | None = None,
        reverse: bool = False,
        limit: int | None = None,
        operation_name: str = "read",
    ) -> FanoutResult[T]:
        """
        Dispatch *operation* to every target account and merge the results.

        Pre-dispatch failures (unknown account, no accounts) raise; anything
        raised by an individual account is recorded as a warning.
        """
        accounts = self.targets(account_id)

        outcomes = await asyncio.gather(
            *(self._run_one(account, operation, operation_name) for account in accounts)
        )

        result: FanoutResult[T] = FanoutResult(accounts_queried=[a.id for a in accounts])
        for items, warning in outcomes:
            result.items.extend(items)
            if warning is not None:
                result.warnings.append(warning)

        if sort_key is not None:
            result.items.sort(key=sort_key, reverse=reverse)
        if limit is not None:
            result.items = result.items[:limit]

        logger.info(
            f"{operation_name}: {len(result.items)} items from {len(accounts)} accounts "
            f"({len(result.warnings)} warnings)",
            extra={
                "operation": operation_name,
                "account_count": len(accounts),
                "item_count": len(result.items),
                "warning_count": len(result.warnings),
            },
        )
        return result
