"""
CDS Hooks error taxonomy

None of these errors is fatal to the host application: each one is raised
inside a component, logged with its context and absorbed at that
component's boundary.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Where in the CDS flow a failure happened"""
    DISCOVERY = "discovery"  # Listing services failed
    EXECUTION = "execution"  # One service's hook call failed
    FEEDBACK = "feedback"  # Telemetry post failed
    TIMEOUT = "timeout"  # A service did not answer in time


class CDSHooksError(Exception):
    """Base error carrying the context needed to diagnose a CDS failure"""

    category: ErrorCategory = ErrorCategory.EXECUTION

    def __init__(
        self,
        message: str,
        service_id: Optional[str] = None,
        hook_type: Optional[str] = None,
        status: Optional[int] = None,
        details: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.service_id = service_id
        self.hook_type = hook_type
        self.status = status
        self.details = details

    @classmethod
    def from_error(
        cls,
        error: Exception,
        service_id: Optional[str] = None,
        hook_type: Optional[str] = None,
    ) -> "CDSHooksError":
        """Wrap a lower-level error, keeping its HTTP status when there was one"""
        return cls(
            str(error) or type(error).__name__,
            service_id=service_id,
            hook_type=hook_type,
            status=getattr(error, "status", None),
            details=getattr(error, "details", None),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a dict suitable for log extras"""
        return {
            "error": self.message,
            "error_type": type(self).__name__,
            "category": self.category.value,
            "service_id": self.service_id,
            "hook_type": self.hook_type,
            "status": self.status,
        }


class CDSHooksClientError(CDSHooksError):
    """Transport, HTTP status or response parsing failure"""


class DiscoveryFailure(CDSHooksError):
    """Listing services failed; callers fall back to the stale or empty catalog"""
    category = ErrorCategory.DISCOVERY


class ExecutionFailure(CDSHooksError):
    """A single service's hook call failed; that service contributes no cards"""
    category = ErrorCategory.EXECUTION


class ExecutionTimeout(ExecutionFailure):
    category = ErrorCategory.TIMEOUT


class FeedbackFailure(CDSHooksError):
    """Feedback telemetry could not be delivered"""
    category = ErrorCategory.FEEDBACK
