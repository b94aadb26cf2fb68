"""
calmesh.orchestration.routing - Default-account selection for writes

When a write omits its account id, the account is chosen from the domain of
the operation's natural target address (recipient, first attendee, contact
email).
"""

import logging

from calmesh.accounts.models import Account
from calmesh.accounts.registry import AccountRegistry
from calmesh.errors import NoAccountAvailableError

logger = logging.getLogger(__name__)


def extract_domain(address: str | None) -> str | None:
    """Return the lower-cased text after the last '@', or None."""
    if not address or "@" not in address:
        return None
    domain = address.rsplit("@", 1)[1].strip().strip(">").lower()
    return domain or None


class SmartRouter:
    """
    Picks the sending account for writes that don't name one.

    Several accounts matching the same domain resolve to the first in
    registry order; priority is not consulted.
    """

    def __init__(self, registry: AccountRegistry) -> None:
        self._registry = registry

    def route(self, target_address: str | None) -> Account:
        """
        Choose an account for *target_address*.

        Raises:
            NoAccountAvailableError: If no enabled account exists.
        """
        domain = extract_domain(target_address)
        if domain:
            matches = [a for a in self._registry.get_by_domain(domain) if a.enabled]
            if matches:
                account = matches[0]
                logger.info(
                    f"Smart routing selected account {account.id} based on domain {domain}",
                    extra={"account_id": account.id, "domain": domain, "matches": len(matches)},
                )
                return account

        enabled = self._registry.get_enabled()
        if not enabled:
            raise NoAccountAvailableError("No accounts configured")
        account = enabled[0]
        logger.info(
            f"No domain match for {domain or '(no domain)'}, using first account {account.id}",
            extra={"account_id": account.id, "domain": domain},
        )
        return account

    def resolve(self, account_id: str | None, target_address: str | None) -> Account:
        """
        Honour an explicit *account_id*, otherwise route by *target_address*.

        Raises:
            AccountNotFoundError: If *account_id* is given but not registered.
            NoAccountAvailableError: If routing finds no enabled account.
        """
        if account_id:
            return self._registry.require(account_id)
        return self.route(target_address)
