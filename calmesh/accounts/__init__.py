"""
Account configuration: immutable Account records, snapshots, the registry
that publishes them, and the sources that feed it.
"""

from calmesh.accounts.models import Account, AccountSnapshot
from calmesh.accounts.registry import AccountRegistry
from calmesh.accounts.source import (
    ConfigurationSource,
    InMemoryConfigurationSource,
    JsonFileConfigurationSource,
    parse_accounts,
)

__all__ = [
    "Account",
    "AccountRegistry",
    "AccountSnapshot",
    "ConfigurationSource",
    "InMemoryConfigurationSource",
    "JsonFileConfigurationSource",
    "parse_accounts",
]
