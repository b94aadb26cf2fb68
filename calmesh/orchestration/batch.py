"""
calmesh.orchestration.batch - Bounded-concurrency batch writes

Executes one mutation per (account id, item id) pair. Input is validated in
full before any I/O; each item's outcome is recorded independently so the
caller knows exactly which items completed.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from calmesh.accounts.models import Account
from calmesh.accounts.registry import AccountRegistry
from calmesh.errors import (
    BatchValidationError,
    CalmeshError,
    ErrorKind,
    error_kind_of,
)
from calmesh.integrations.base import CapabilityProvider, ProviderResult
from calmesh.integrations.resolver import ProviderResolver

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 50
DEFAULT_MAX_CONCURRENCY = 10

ItemOperation = Callable[[CapabilityProvider, Account, str], Awaitable[ProviderResult]]


class BatchItem(BaseModel):
    """One (account, item) pair. Accepts ``accountId``/``itemId`` or ``emailId`` keys."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, str_strip_whitespace=True)

    account_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("accountId", "account_id"),
        serialization_alias="accountId",
    )
    item_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("itemId", "emailId", "item_id", "id"),
        serialization_alias="itemId",
    )


class BatchItemResult(BaseModel):
    item_id: str
    account_id: str
    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None


class BatchResult(BaseModel):
    """Per-item ledger in input order plus summary counts."""

    total_requested: int
    succeeded: int
    failed: int
    results: list[BatchItemResult]


BatchInput = str | Sequence[BatchItem | Mapping[str, Any]]


class BatchExecutor:
    """
    Runs a mutation over many items with a fixed concurrency bound.

    The bound is independent of batch size, so a large batch never opens
    more than ``max_concurrency`` simultaneous backend calls.

    Example:
        >>> result = await batch.run(
        ...     '[{"accountId": "work", "emailId": "m1"}]',
        ...     lambda provider, account, item_id: provider.delete_message(account, item_id),
        ...     operation_name="bulk_delete_emails",
        ... )
        >>> result.succeeded
        1
    """

    def __init__(
        self,
        registry: AccountRegistry,
        resolver: ProviderResolver,
        *,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        if max_batch_size < 1 or max_concurrency < 1:
            raise ValueError("max_batch_size and max_concurrency must be positive")
        self._registry = registry
        self._resolver = resolver
        self.max_batch_size = max_batch_size
        self.max_concurrency = max_concurrency

    def parse_items(self, items: BatchInput) -> list[BatchItem]:
        """
        Validate raw batch input.

        Raises:
            BatchValidationError: If the input is malformed, empty, larger
                than ``max_batch_size``, or an item lacks an account or item id.
        """
        if isinstance(items, str):
            try:
                items = json.loads(items)
            except json.JSONDecodeError as e:
                raise BatchValidationError(f"Invalid items JSON format: {e}") from e
            if not isinstance(items, list):
                raise BatchValidationError("items must be a JSON array")

        if not items:
            raise BatchValidationError("items array must not be empty")
        if len(items) > self.max_batch_size:
            raise BatchValidationError(
                f"Batch size {len(items)} exceeds maximum of {self.max_batch_size}"
            )

        parsed: list[BatchItem] = []
        for index, item in enumerate(items):
            if isinstance(item, BatchItem):
                parsed.append(item)
                continue
            try:
                parsed.append(BatchItem.model_validate(item))
            except ValidationError as e:
                raise BatchValidationError(
                    f"Item {index}: each item must have 'accountId' and 'itemId' fields "
                    f"({e.error_count()} validation errors)"
                ) from e
        return parsed

    def _resolve_accounts(
        self, items: list[BatchItem]
    ) -> dict[str, tuple[Account, CapabilityProvider] | Exception]:
        """Resolve each distinct account id exactly once."""
        resolved: dict[str, tuple[Account, CapabilityProvider] | Exception] = {}
        for item in items:
            key = item.account_id.casefold()
            if key in resolved:
                continue
            try:
                account = self._registry.require(item.account_id)
                resolved[key] = (account, self._resolver.resolve_account(account))
            except CalmeshError as e:
                resolved[key] = e
        return resolved

    async def run(
        self,
        items: BatchInput,
        operation: ItemOperation,
        *,
        operation_name: str = "batch",
    ) -> BatchResult:
        """Validate *items*, then apply *operation* to each under the concurrency bound."""
        parsed = self.parse_items(items)
        resolved = self._resolve_accounts(parsed)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _run_item(item: BatchItem) -> BatchItemResult:
            target = resolved[item.account_id.casefold()]
            if isinstance(target, Exception):
                return BatchItemResult(
                    item_id=item.item_id,
                    account_id=item.account_id,
                    success=False,
                    error=str(target),
                    error_kind=error_kind_of(target),
                )
            account, provider = target
            async with semaphore:
                try:
                    outcome = await operation(provider, account, item.item_id)
                except Exception as e:
                    logger.error(
                        f"{operation_name} failed for item {item.item_id} "
                        f"on account {account.id}: {e}",
                        exc_info=not isinstance(e, CalmeshError),
                        extra={"account_id": account.id, "operation": operation_name},
                    )
                    return BatchItemResult(
                        item_id=item.item_id,
                        account_id=item.account_id,
                        success=False,
                        error=str(e) or e.__class__.__name__,
                        error_kind=error_kind_of(e),
                    )
            return BatchItemResult(
                item_id=item.item_id,
                account_id=item.account_id,
                success=outcome.success,
                error=None if outcome.success else outcome.error,
                error_kind=None if outcome.success else outcome.error_kind,
            )

        results = await asyncio.gather(*(_run_item(item) for item in parsed))

        succeeded = sum(1 for r in results if r.success)
        failed = len(results) - succeeded
        logger.info(
            f"{operation_name} complete: {succeeded} succeeded, "
            f"{failed} failed out of {len(results)}",
            extra={"operation": operation_name, "succeeded": succeeded, "failed": failed},
        )
        return BatchResult(
            total_requested=len(results),
            succeeded=succeeded,
            failed=failed,
            results=list(results),
        )
