"""
Unit tests for SmartRouter - domain-based account selection.
"""

import pytest

from calmesh.accounts.models import Account
from calmesh.accounts.registry import AccountRegistry
from calmesh.errors import AccountNotFoundError, NoAccountAvailableError
from calmesh.orchestration.routing import SmartRouter, extract_domain


class TestExtractDomain:
    @pytest.mark.parametrize(
        ("address", "domain"),
        [
            ("bob@Acme.com", "acme.com"),
            ("Bob <bob@acme.com>", "acme.com"),
            ("weird@name@corp.io", "corp.io"),
            ("no-at-sign", None),
            ("trailing@", None),
            (None, None),
            ("", None),
        ],
    )
    def test_extract(self, address, domain):
        assert extract_domain(address) == domain


@pytest.fixture
def router() -> SmartRouter:
    return SmartRouter(
        AccountRegistry.from_accounts(
            [
                Account(id="old-work", provider="m365", domains=["acme.com"], enabled=False),
                Account(id="personal", provider="google", domains=["gmail.com"]),
                Account(id="work", provider="m365", domains=["acme.com"]),
                Account(id="work2", provider="m365", domains=["ACME.com"], priority=10),
            ]
        )
    )


class TestRoute:
    def test_domain_match(self, router):
        assert router.route("ceo@acme.com").id == "work"

    def test_first_match_ignores_priority(self, router):
        assert router.route("x@acme.com").id == "work"

    def test_case_insensitive(self, router):
        assert router.route("friend@GMAIL.COM").id == "personal"

    def test_no_match_uses_first_enabled(self, router):
        assert router.route("someone@elsewhere.org").id == "personal"

    def test_no_address(self, router):
        assert router.route(None).id == "personal"

    def test_empty_registry(self):
        with pytest.raises(NoAccountAvailableError):
            SmartRouter(AccountRegistry()).route("a@b.com")

    def test_only_disabled_accounts(self):
        registry = AccountRegistry.from_accounts(
            [Account(id="x", provider="google", enabled=False)]
        )
        with pytest.raises(NoAccountAvailableError):
            SmartRouter(registry).route("a@b.com")


class TestResolve:
    def test_explicit_account_wins(self, router):
        assert router.resolve("work2", "friend@gmail.com").id == "work2"

    def test_explicit_unknown(self, router):
        with pytest.raises(AccountNotFoundError):
            router.resolve("nope", "friend@gmail.com")

    def test_routes_without_account(self, router):
        assert router.resolve(None, "friend@gmail.com").id == "personal"
