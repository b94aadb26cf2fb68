"""
calmesh - Unified email, calendar and contacts across many accounts

One operation surface over Microsoft 365, Outlook.com, Google Workspace,
read-only ICS feeds and exported JSON calendars. Reads fan out to every
enabled account and merge; writes are routed to a single account.

Example:
    >>> from calmesh.accounts import AccountRegistry, JsonFileConfigurationSource
    >>> from calmesh.integrations import ProviderResolver, StaticTokenProvider
    >>> from calmesh.orchestration import CalendarMeshService
    >>> registry = AccountRegistry(JsonFileConfigurationSource("accounts.json"))
    >>> resolver = ProviderResolver.default(StaticTokenProvider({"work": token}))
    >>> service = CalendarMeshService(registry, resolver)
    >>> result = await service.get_calendar_events()

Architecture:
    - accounts: Account model, snapshots, registry, configuration sources
    - integrations: provider contract, Google / Graph / feed providers
    - orchestration: fan-out reads, smart routing, batch writes, facade
"""

__version__ = "0.1.0"
