"""
In-memory provider simulation for orchestration tests.

Components:
- providers.py: SimulatedProvider, a CapabilityProvider whose data lives in
  plain dicts, with per-account failure injection and call recording

Usage:
    from tests.simulation import SimulatedProvider

    provider = SimulatedProvider(ProviderKind.GOOGLE)
    provider.add_message("personal", subject="Hello")
    provider.fail_account("work", AuthenticationRequiredError("work"))
    resolver = ProviderResolver({ProviderKind.GOOGLE: provider})
"""

from tests.simulation.providers import SimulatedProvider

__all__ = ["SimulatedProvider"]
