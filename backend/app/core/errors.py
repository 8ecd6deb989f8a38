"""
Error taxonomy for the consistency engine.

Every error carries a stable ``code``, the HTTP ``status_code`` the API layer
should answer with, whether a caller may retry, and structured ``details``
for remediation.
"""

from __future__ import annotations

from typing import Any


class SyncEngineError(Exception):
    """Base class for all engine errors."""

    code = "SYNC_ENGINE_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        details = dict(self.details)
        if self.retryable:
            details["retryable"] = True
        return {
            "code": self.code,
            "message": self.message,
            "details": details,
        }


class ValidationError(SyncEngineError):
    """Bad payload. Raised before any store is touched."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, field: str | None = None, errors: list[dict[str, Any]] | None = None):
        details: dict[str, Any] = {}
        if field:
            details["field"] = field
        if errors:
            details["errors"] = errors
        super().__init__(message, details)
        self.field = field


class NotFoundError(SyncEngineError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            {"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ArchiveViolation(SyncEngineError):
    """Write attempted under an archived project."""

    code = "ARCHIVE_VIOLATION"
    status_code = 403

    def __init__(self, project_id: str, project_name: str | None, *, action: str = "unarchive_required"):
        if action == "contact_owner":
            message = "This project is archived and no longer accepting opinions."
        else:
            message = "Cannot modify archived project. Please unarchive to make changes."
        super().__init__(
            message,
            {"project_id": project_id, "project_name": project_name, "action": action},
        )
        self.project_id = project_id
        self.project_name = project_name
        self.action = action


class ConflictError(SyncEngineError):
    """Version stamp mismatch or an operation id that is still in flight."""

    code = "CONFLICT"
    status_code = 409

    def __init__(self, message: str, **details: Any):
        super().__init__(message, details)


class QuotaExceeded(SyncEngineError):
    code = "QUOTA_EXCEEDED"
    status_code = 429

    def __init__(self, message: str, *, limit_kind: str, **details: Any):
        payload = {"limit_kind": limit_kind, "action": "upgrade_plan"}
        payload.update(details)
        super().__init__(message, payload)
        self.limit_kind = limit_kind


class PrimaryStoreError(SyncEngineError):
    """The authoritative store failed; nothing was committed by this step."""

    code = "PRIMARY_STORE_ERROR"
    status_code = 500


class ReplicaStoreError(SyncEngineError):
    """Raised by replica adapters. Converted to ReplicaSyncFailed by the coordinator."""

    code = "REPLICA_STORE_ERROR"
    status_code = 500


class ReplicaSyncFailed(SyncEngineError):
    """Replica write failed and the primary change was compensated."""

    code = "REPLICA_SYNC_FAILED"
    status_code = 500
    retryable = True


class CompensationFailed(SyncEngineError):
    """The stores are now inconsistent and need manual reconciliation."""

    code = "COMPENSATION_FAILED"
    status_code = 500


class ClassifierError(SyncEngineError):
    """Internal to topic protection; resolved by the fail-open/fail-closed policy."""

    code = "CLASSIFIER_ERROR"
    status_code = 500


class AnalysisFailed(SyncEngineError):
    """The analysis engine failed or timed out. Nothing was recorded as usage."""

    code = "ANALYSIS_FAILED"
    status_code = 502
    retryable = True
