"""Collaborator interfaces and their in-memory implementations."""

from .base import (
    AgentDirectory,
    AuditSink,
    CallListStore,
    ContactStore,
    DncRegistry,
    RejectionStore,
    StoreUnavailable,
    UniqueViolation,
    UploadStore,
)
from .memory import (
    MemoryAgentDirectory,
    MemoryAuditSink,
    MemoryCallListStore,
    MemoryContactStore,
    MemoryDncRegistry,
    MemoryRejectionStore,
    MemoryUploadStore,
)

__all__ = [
    "AgentDirectory",
    "AuditSink",
    "CallListStore",
    "ContactStore",
    "DncRegistry",
    "MemoryAgentDirectory",
    "MemoryAuditSink",
    "MemoryCallListStore",
    "MemoryContactStore",
    "MemoryDncRegistry",
    "MemoryRejectionStore",
    "MemoryUploadStore",
    "RejectionStore",
    "StoreUnavailable",
    "UniqueViolation",
    "UploadStore",
]
