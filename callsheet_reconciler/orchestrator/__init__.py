"""Stage-by-stage commit of validated call sheets."""

from .service import (
    CallListResult,
    IncompleteUpload,
    OutcomeStatus,
    PipelineContext,
    RecoveryResult,
    SkippedContact,
    Stage,
    StageEvent,
    UploadOrchestrator,
    UploadOutcome,
)

__all__ = [
    "CallListResult",
    "IncompleteUpload",
    "OutcomeStatus",
    "PipelineContext",
    "RecoveryResult",
    "SkippedContact",
    "Stage",
    "StageEvent",
    "UploadOrchestrator",
    "UploadOutcome",
]
