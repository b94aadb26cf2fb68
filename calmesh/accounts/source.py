"""
calmesh.accounts.source - Configuration sources

A ConfigurationSource supplies the current account list and notifies
subscribers whenever that list changes. The registry only reads from it;
writing configuration back is handled elsewhere.

Usage:
    >>> source = JsonFileConfigurationSource("accounts.json")
    >>> registry = AccountRegistry(source)
    >>> watcher = asyncio.create_task(source.watch(interval=2.0))
"""

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from calmesh.accounts.models import Account
from calmesh.errors import ProviderConfigurationError

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[list[Account]], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class ConfigurationSource(Protocol):
    """Supplies accounts and a change-notification stream."""

    def load(self) -> list[Account]:
        """Return the current account list."""
        ...

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        """Register *callback* for change notifications; returns an unsubscribe handle."""
        ...


class _SubscriberMixin:
    """Shared subscriber bookkeeping for the concrete sources."""

    def __init__(self) -> None:
        self._subscribers: list[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _notify(self, accounts: list[Account]) -> None:
        for callback in list(self._subscribers):
            try:
                callback(list(accounts))
            except Exception:
                logger.error("Configuration change subscriber failed", exc_info=True)


class InMemoryConfigurationSource(_SubscriberMixin):
    """
    Configuration source backed by a Python list.

    Useful when another component owns account management and pushes
    updates via publish().
    """

    def __init__(self, accounts: Iterable[Account] = ()) -> None:
        super().__init__()
        self._accounts = list(accounts)

    def load(self) -> list[Account]:
        return list(self._accounts)

    def publish(self, accounts: Iterable[Account]) -> None:
        """Replace the account list and notify subscribers."""
        self._accounts = list(accounts)
        self._notify(self._accounts)


def _camel_key(key: str) -> str:
    """Convert PascalCase config keys ("DisplayName") to camelCase ("displayName")."""
    return key[:1].lower() + key[1:] if key else key


def parse_accounts(data: Any) -> list[Account]:
    """
    Parse the accounts section of a configuration document.

    Accepts a bare list, ``{"accounts": [...]}`` or ``{"Accounts": [...]}``.
    Keys may be camelCase or PascalCase.

    Raises:
        ProviderConfigurationError: If the document or an account is malformed.
    """
    if isinstance(data, dict):
        data = data.get("accounts", data.get("Accounts", []))
    if not isinstance(data, list):
        raise ProviderConfigurationError("Accounts configuration must be a list")

    accounts: list[Account] = []
    for index, raw in enumerate(data):
        if not isinstance(raw, dict):
            raise ProviderConfigurationError(f"Account entry {index} must be an object")
        normalized = {_camel_key(k): v for k, v in raw.items()}
        try:
            accounts.append(Account.model_validate(normalized))
        except ValidationError as e:
            raise ProviderConfigurationError(f"Invalid account entry {index}: {e}") from e
    return accounts


class JsonFileConfigurationSource(_SubscriberMixin):
    """
    Configuration source that reads accounts from a JSON file.

    reload() re-reads the file and notifies subscribers; watch() polls the
    file's modification time and reloads on change. A file that fails to
    parse during reload is logged and ignored so the last good account list
    stays published.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._accounts: list[Account] = []
        self._mtime: float | None = None
        self._accounts = self._read()

    def _read(self) -> list[Account]:
        if not self.path.exists():
            logger.warning(
                f"Account configuration file {self.path} does not exist",
                extra={"path": str(self.path)},
            )
            self._mtime = None
            return []

        self._mtime = self.path.stat().st_mtime
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except json.JSONDecodeError as e:
            raise ProviderConfigurationError(f"Invalid JSON in {self.path}: {e}") from e
        return parse_accounts(data)

    def load(self) -> list[Account]:
        return list(self._accounts)

    def reload(self) -> bool:
        """
        Re-read the file and notify subscribers.

        Returns:
            True if the new configuration was published, False if it was rejected.
        """
        try:
            accounts = self._read()
        except ProviderConfigurationError:
            logger.error(
                f"Rejected invalid account configuration from {self.path}",
                exc_info=True,
                extra={"path": str(self.path)},
            )
            return False

        self._accounts = accounts
        logger.info(
            f"Reloaded {len(accounts)} account(s) from {self.path}",
            extra={"path": str(self.path), "account_count": len(accounts)},
        )
        self._notify(accounts)
        return True

    def _changed(self) -> bool:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return self._mtime is not None
        return mtime != self._mtime

    async def watch(self, interval: float = 2.0) -> None:
        """Poll the file every *interval* seconds and reload on change. Runs until cancelled."""
        while True:
            await asyncio.sleep(interval)
            if await asyncio.to_thread(self._changed):
                logger.info("Configuration change detected, reloading accounts...")
                await asyncio.to_thread(self.reload)
