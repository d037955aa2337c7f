"""Top-level package for the call-sheet reconciliation pipeline."""

from . import models  # noqa: F401
from .config import PipelineConfig, load_pipeline_config
from .errors import (
    ConfigurationError,
    PersistenceError,
    ProtectionViolation,
    ReconcilerError,
    SchemaError,
    SubmissionReplayError,
)
from .guard import DeletionReport, ProtectedRecordGuard
from .models import ParsedContact, SheetData, UploadValidationResult
from .orchestrator import UploadOrchestrator, UploadOutcome
from .phone import normalize_phone
from .resolver import DuplicateResolver
from .schema import analyze_columns
from .validation import RowValidator, validate_upload

__all__ = [
    "ConfigurationError",
    "DeletionReport",
    "DuplicateResolver",
    "ParsedContact",
    "PersistenceError",
    "PipelineConfig",
    "ProtectedRecordGuard",
    "ProtectionViolation",
    "ReconcilerError",
    "RowValidator",
    "SchemaError",
    "SheetData",
    "SubmissionReplayError",
    "UploadOrchestrator",
    "UploadOutcome",
    "UploadValidationResult",
    "analyze_columns",
    "load_pipeline_config",
    "normalize_phone",
    "validate_upload",
    "ingestion",
    "orchestrator",
    "stores",
]
