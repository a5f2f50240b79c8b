"""
Error Handling Module

Provides the exception hierarchy for the cluster post-processing core:
- Configuration errors (fatal, raised before any clustering runs)
- Invariant violations (internal bugs in group formation)
- Algorithm output errors
- Candidate search cancellation and timeout

No retry helpers live here: every stage is pure and deterministic, so a
failed call is reported to the caller as-is.
"""

import time
from typing import Any, Optional


# =============================================================================
# Custom Exception Hierarchy
# =============================================================================


class ClusterPostProcessError(Exception):
    """Base exception for all cluster post-processing errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.timestamp = time.time()

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }


# Configuration Errors
class ConfigurationError(ClusterPostProcessError):
    """Invalid or inconsistent clustering configuration."""
    pass


class AlgorithmNotFoundError(ConfigurationError):
    """No clustering algorithm registered under the requested name."""
    pass


# Internal Errors
class InvariantViolation(ClusterPostProcessError):
    """An internal invariant was broken. Indicates a bug, never user error."""
    pass


# Clustering Errors
class ClusteringFailedError(ClusterPostProcessError):
    """Clustering algorithm returned output that is not a valid clustering."""
    pass


# Search Lifecycle Errors
class SearchCancelledError(ClusterPostProcessError):
    """Candidate K search was cancelled through its cancellation hook."""
    pass


class SearchTimeoutError(ClusterPostProcessError):
    """Candidate K search exceeded its time budget."""
    pass
