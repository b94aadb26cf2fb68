"""
calmesh.accounts.registry - Account Registry

Holds the current account set as an immutable AccountSnapshot and swaps it
whenever the configuration source reports a change.
"""

import logging

from calmesh.accounts.models import EMPTY_SNAPSHOT, Account, AccountSnapshot
from calmesh.accounts.source import ConfigurationSource
from calmesh.errors import AccountNotFoundError

logger = logging.getLogger(__name__)


class AccountRegistry:
    """
    In-process registry of configured accounts.

    The published snapshot is replaced by a single reference assignment and
    never mutated, so readers need no lock: each lookup reads ``self._snapshot``
    once and works against that complete view.

    Usage:
        >>> registry = AccountRegistry(source)
        >>> registry.get_by_id("work")
        Account(id='work', ...)
        >>> [a.id for a in registry.get_by_domain("acme.com")]
        ['work']
        >>> registry.close()
    """

    def __init__(self, source: ConfigurationSource | None = None) -> None:
        self._snapshot: AccountSnapshot = EMPTY_SNAPSHOT
        self._unsubscribe = None

        if source is not None:
            self._publish(source.load())
            self._unsubscribe = source.subscribe(self._on_change)

    @classmethod
    def from_accounts(cls, accounts: list[Account]) -> "AccountRegistry":
        """Build a registry from a fixed account list (no change stream)."""
        registry = cls()
        registry._publish(accounts)
        return registry

    def _on_change(self, accounts: list[Account]) -> None:
        logger.info("Configuration change detected, reloading accounts...")
        self._publish(accounts)

    def _publish(self, accounts: list[Account]) -> None:
        """Build a complete snapshot, then swap it in."""
        snapshot = AccountSnapshot(accounts)

        if not snapshot:
            logger.warning("No accounts found in configuration")
        else:
            for account in snapshot.values():
                logger.info(
                    f"Account: {account.id} | {account.display_name} | "
                    f"Provider: {account.provider} | "
                    f"Domains: {', '.join(account.domains) or '(none)'} | "
                    f"Status: {'enabled' if account.enabled else 'disabled'} | "
                    f"Priority: {account.priority}",
                    extra={"account_id": account.id, "provider": account.provider},
                )
            logger.info(
                f"Account registry initialized: {snapshot.enabled_count} enabled, "
                f"{len(snapshot) - snapshot.enabled_count} disabled",
                extra={
                    "enabled_count": snapshot.enabled_count,
                    "disabled_count": len(snapshot) - snapshot.enabled_count,
                },
            )

        self._snapshot = snapshot

    @property
    def snapshot(self) -> AccountSnapshot:
        """The currently published snapshot."""
        return self._snapshot

    def get_all(self) -> list[Account]:
        return self._snapshot.accounts()

    def get_by_id(self, account_id: str) -> Account | None:
        """Return the account with *account_id* (case-insensitive), or None."""
        return self._snapshot.get(account_id)

    def require(self, account_id: str) -> Account:
        """Return the account with *account_id* or raise AccountNotFoundError."""
        account = self._snapshot.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def get_enabled(self) -> list[Account]:
        return [a for a in self._snapshot.values() if a.enabled]

    def get_by_provider(self, provider: str) -> list[Account]:
        """Return accounts whose provider tag equals *provider* (case-insensitive)."""
        wanted = provider.casefold()
        return [a for a in self._snapshot.values() if a.provider.casefold() == wanted]

    def get_by_domain(self, domain: str) -> list[Account]:
        """Return accounts whose domain list contains *domain* (case-insensitive)."""
        return [a for a in self._snapshot.values() if a.matches_domain(domain)]

    def close(self) -> None:
        """Stop listening for configuration changes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __repr__(self) -> str:
        return f"AccountRegistry({self._snapshot!r})"
