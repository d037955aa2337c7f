"""Exception hierarchy shared by the reconciliation pipeline."""
from __future__ import annotations

from typing import List, Optional


class ReconcilerError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(ReconcilerError, RuntimeError):
    """Raised when configuration files are missing or malformed."""


class SchemaError(ReconcilerError, ValueError):
    """Raised when a spreadsheet's columns do not match the required template."""

    def __init__(self, message: str, analysis: Optional[object] = None) -> None:
        super().__init__(message)
        self.analysis = analysis


class EmptySheetError(SchemaError):
    """Raised when the uploaded sheet has no data rows."""


class UnsupportedFileTypeError(SchemaError):
    """Raised when an unsupported file format is passed to the loader."""


class RowValidationError(ReconcilerError):
    """Per-row validation failure.

    Row errors are collected on the parsed contact rather than raised; this
    type exists so callers that want exceptions (e.g. a strict import) can
    wrap the collected messages.
    """

    def __init__(self, row_number: int, errors: List[str]) -> None:
        super().__init__(f"Row {row_number}: {'; '.join(errors)}")
        self.row_number = row_number
        self.errors = list(errors)


class SubmissionReplayError(ReconcilerError):
    """Raised when an agent resubmits the same file inside the replay window."""

    def __init__(self, agent_id: str, file_name: str, previous_upload_id: Optional[str] = None) -> None:
        super().__init__(
            f"'{file_name}' was already submitted by agent {agent_id} moments ago"
            + (f" (upload {previous_upload_id})" if previous_upload_id else "")
        )
        self.agent_id = agent_id
        self.file_name = file_name
        self.previous_upload_id = previous_upload_id


class PersistenceError(ReconcilerError):
    """Raised when a write that the pipeline cannot continue without fails."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage


class ProtectionViolation(ReconcilerError):
    """Raised when a deletion would remove called or commented call-list entries."""

    def __init__(self, upload_ids: List[str], protected_count: int, safe_count: int) -> None:
        super().__init__(
            f"Refusing to delete {len(upload_ids)} upload(s): {protected_count} protected "
            f"call-list entries ({safe_count} safe to delete). Pass force=True to delete the safe ones."
        )
        self.upload_ids = list(upload_ids)
        self.protected_count = protected_count
        self.safe_count = safe_count


__all__ = [
    "ConfigurationError",
    "EmptySheetError",
    "PersistenceError",
    "ProtectionViolation",
    "ReconcilerError",
    "RowValidationError",
    "SchemaError",
    "SubmissionReplayError",
    "UnsupportedFileTypeError",
]
