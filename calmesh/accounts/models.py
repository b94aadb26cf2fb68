"""
calmesh.accounts.models - Account and AccountSnapshot

Accounts are immutable records supplied by an external configuration
collaborator. A snapshot is a point-in-time, case-insensitive view of all
registered accounts; it is built once and never modified afterwards.
"""

import logging
from collections.abc import Iterable, Iterator, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class Account(BaseModel):
    """A single configured calendar/email account.

    Field aliases follow the camelCase keys used in configuration files,
    so ``Account.model_validate({"displayName": ...})`` works directly.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    display_name: str = Field(default="", alias="displayName")
    provider: str = Field(min_length=1)
    domains: tuple[str, ...] = ()
    enabled: bool = True
    priority: int = 0
    provider_config: dict[str, str] = Field(default_factory=dict, alias="providerConfig")

    @field_validator("domains", mode="before")
    @classmethod
    def _normalize_domains(cls, value: Iterable[str] | None) -> tuple[str, ...]:
        if value is None:
            return ()
        return tuple(d.strip() for d in value if d and d.strip())

    @field_validator("provider_config", mode="before")
    @classmethod
    def _stringify_config(cls, value: Mapping[str, object] | None) -> dict[str, str]:
        # Config files sometimes carry numbers (e.g. cacheTtlMinutes: 10)
        if value is None:
            return {}
        return {str(k): str(v) for k, v in value.items() if v is not None}

    def matches_domain(self, domain: str) -> bool:
        """Return True if *domain* is one of this account's routing domains."""
        wanted = domain.strip().casefold()
        return any(d.casefold() == wanted for d in self.domains)

    def config_value(self, *keys: str) -> str | None:
        """Return the first present value among *keys* in the provider config."""
        for key in keys:
            value = self.provider_config.get(key)
            if value is not None and value != "":
                return value
        return None


class AccountSnapshot(Mapping[str, Account]):
    """
    Immutable, case-insensitive id -> Account mapping.

    Iteration order is configuration order. If the same id appears more than
    once the later record wins but keeps the position of the first, and a
    warning is logged.

    Example:
        >>> snapshot = AccountSnapshot([Account(id="Work", provider="m365")])
        >>> snapshot["work"].id
        'Work'
    """

    __slots__ = ("_accounts",)

    def __init__(self, accounts: Iterable[Account] = ()) -> None:
        built: dict[str, Account] = {}
        for account in accounts:
            key = account.id.casefold()
            if key in built:
                logger.warning(
                    f"Duplicate account id '{account.id}' in configuration, later entry wins",
                    extra={"account_id": account.id},
                )
            built[key] = account
        self._accounts = built

    def __getitem__(self, account_id: str) -> Account:
        return self._accounts[account_id.casefold()]

    def __contains__(self, account_id: object) -> bool:
        return isinstance(account_id, str) and account_id.casefold() in self._accounts

    def __iter__(self) -> Iterator[str]:
        return (account.id for account in self._accounts.values())

    def __len__(self) -> int:
        return len(self._accounts)

    def get(self, account_id: str, default: Account | None = None) -> Account | None:  # type: ignore[override]
        return self._accounts.get(account_id.casefold(), default)

    def accounts(self) -> list[Account]:
        """Return all accounts in configuration order."""
        return list(self._accounts.values())

    @property
    def enabled_count(self) -> int:
        return sum(1 for a in self._accounts.values() if a.enabled)

    def __repr__(self) -> str:
        return f"AccountSnapshot(accounts={len(self)}, enabled={self.enabled_count})"


EMPTY_SNAPSHOT = AccountSnapshot()
