"""Error taxonomy for the audit pipeline.

None of these errors is fatal to the process. ``ValidationError`` and
``ExportBlocked`` are reported to the user as a single line; the others are
recovered where they occur and only show up in the activity log.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DashboardError(Exception):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "type": type(self).__name__, "details": self.details}


class ValidationError(DashboardError):
    """An audit trigger was rejected before computing."""

    MESSAGES = {
        "no_dataset": "Dataset not loaded",
        "missing_x": "Select Coordinate Mapping (X)",
        "missing_y": "Select Target Metric (Y)",
        "empty_working_set": "Working row set is empty",
    }

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(self.MESSAGES.get(reason, reason), details)
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["reason"] = self.reason
        return out


class DecodeError(DashboardError):
    pass


class DependencyMissing(DashboardError):
    pass


class ComputationFailure(DashboardError):
    pass


class PersistenceFailure(DashboardError):
    pass


class ExportBlocked(DashboardError):
    def __init__(self, missing: list):
        super().__init__("Export blocked, incomplete", {"missing": list(missing)})
        self.missing = list(missing)
