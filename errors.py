"""
Exception hierarchy for the scheduling core.
Only three kinds ever propagate out of a scheduling call; unmatched articles
are reported as data on the schedule instead.
"""

from typing import Any, Iterable, Optional


class SchedulingError(Exception):
    """Base class for every fatal scheduling failure."""

    def __init__(
        self,
        message: str,
        error_code: str = "ERR_UNKNOWN",
        details: Optional[Any] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class InputValidationError(SchedulingError):
    """Malformed WBS / article / price data. Raised before scheduling starts."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message, error_code="ERR_INPUT_001", details=details)


class ConfigurationError(SchedulingError):
    """Out-of-range option values. Raised before scheduling starts."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message, error_code="ERR_CONFIG_001", details=details)


class CycleDetectedError(SchedulingError):
    """A predecessor cycle; no partial schedule is returned."""

    def __init__(self, uids: Iterable[int], message: Optional[str] = None):
        self.uids = sorted(uids)
        text = message or f"Cycle detected in task dependencies: {self.uids}"
        super().__init__(text, error_code="ERR_CYCLE_001", details={"uids": self.uids})
