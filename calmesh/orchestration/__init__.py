"""
Multi-account orchestration: fan-out reads, smart routing, batch writes
and the CalendarMeshService facade that combines them.
"""

from calmesh.orchestration.batch import BatchExecutor, BatchItem, BatchItemResult, BatchResult
from calmesh.orchestration.fanout import AccountWarning, FanoutExecutor, FanoutResult
from calmesh.orchestration.routing import SmartRouter, extract_domain
from calmesh.orchestration.service import CalendarMeshService
from calmesh.orchestration.summary import ContextualEmailSummary

__all__ = [
    "AccountWarning",
    "BatchExecutor",
    "BatchItem",
    "BatchItemResult",
    "BatchResult",
    "CalendarMeshService",
    "ContextualEmailSummary",
    "FanoutExecutor",
    "FanoutResult",
    "SmartRouter",
    "extract_domain",
]
