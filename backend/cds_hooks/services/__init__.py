"""
CDS services: catalog, request building, execution, orchestration and feedback
"""
from cds_hooks.services.feedback_reporter import FeedbackReporter
from cds_hooks.services.hook_executor import HookExecutor
from cds_hooks.services.hook_manager import CDSHookManager, LaneState
from cds_hooks.services.service_catalog import ServiceCatalog

__all__ = [
    "CDSHookManager",
    "FeedbackReporter",
    "HookExecutor",
    "LaneState",
    "ServiceCatalog",
]
