"""
Capability Providers

Backend adapters behind one operation surface. Hosted providers (Google,
Microsoft Graph) are read-write; feed providers (ICS, JSON calendar) are
read-only and report mutations as UNSUPPORTED.
"""

from calmesh.integrations.auth import StaticTokenProvider, TokenProvider
from calmesh.integrations.base import (
    CapabilityProvider,
    HostedProvider,
    ProviderResult,
    ReadOnlyProvider,
    ResultStatus,
)
from calmesh.integrations.resolver import ProviderResolver, normalize_provider
from calmesh.integrations.types import ProviderKind
from calmesh.integrations.unsubscribe import UnsubscribeExecutor, UnsubscribeResult

__all__ = [
    "CapabilityProvider",
    "HostedProvider",
    "ProviderKind",
    "ProviderResolver",
    "ProviderResult",
    "ReadOnlyProvider",
    "ResultStatus",
    "StaticTokenProvider",
    "TokenProvider",
    "UnsubscribeExecutor",
    "UnsubscribeResult",
    "normalize_provider",
]
