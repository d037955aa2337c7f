"""Interfaces of the external collaborators the pipeline talks to."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from ..models import CallListEntry, MasterContact, RejectionRecord, UploadRecord
from ..phone import mask_phone


class StoreUnavailable(RuntimeError):
    """Raised when a collaborator cannot serve a request (network, permissions)."""


class UniqueViolation(RuntimeError):
    """Raised when an insert hits a uniqueness constraint.

    For contacts ``key`` is the canonical phone number.
    """

    def __init__(self, key: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Record {mask_phone(key)} already exists")
        self.key = key


class ContactStore(Protocol):
    """Shared master-contact table, keyed by canonical phone."""

    async def find_by_phones(self, phones: Sequence[str]) -> List[MasterContact]:  # pragma: no cover - protocol
        """Privileged batch lookup across every agent's contacts."""

    async def find_by_phone(self, phone: str) -> Optional[MasterContact]:  # pragma: no cover - protocol
        """Unprivileged point lookup."""

    async def insert(self, contact: MasterContact) -> MasterContact:  # pragma: no cover - protocol
        """Insert and return the stored contact; raise :class:`UniqueViolation` on conflict."""

    async def get(self, contact_id: str) -> Optional[MasterContact]:  # pragma: no cover - protocol
        ...

    async def update(self, contact_id: str, **changes: Any) -> MasterContact:  # pragma: no cover - protocol
        ...

    async def find_first_uploaded(
        self, agent_id: str, on: date
    ) -> List[MasterContact]:  # pragma: no cover - protocol
        """Contacts first uploaded by ``agent_id`` on the given day."""


class DncRegistry(Protocol):
    async def phones(self) -> Iterable[str]:  # pragma: no cover - protocol
        ...


class AgentDirectory(Protocol):
    async def agent_name(self, agent_id: str) -> Optional[str]:  # pragma: no cover - protocol
        ...


class UploadStore(Protocol):
    async def create(self, record: UploadRecord) -> UploadRecord:  # pragma: no cover - protocol
        ...

    async def update(self, upload_id: str, **changes: Any) -> UploadRecord:  # pragma: no cover - protocol
        ...

    async def get(self, upload_id: str) -> Optional[UploadRecord]:  # pragma: no cover - protocol
        ...

    async def find_recent(
        self, agent_id: str, file_name: str, since: datetime
    ) -> List[UploadRecord]:  # pragma: no cover - protocol
        ...

    async def list_approved(self, list_date: date) -> List[UploadRecord]:  # pragma: no cover - protocol
        ...

    async def delete(self, upload_id: str) -> None:  # pragma: no cover - protocol
        ...


class CallListStore(Protocol):
    async def entries_for(self, agent_id: str, list_date: date) -> List[CallListEntry]:  # pragma: no cover - protocol
        ...

    async def entries_for_upload(self, upload_id: str) -> List[CallListEntry]:  # pragma: no cover - protocol
        ...

    async def insert_many(self, entries: Sequence[CallListEntry]) -> List[CallListEntry]:  # pragma: no cover - protocol
        ...

    async def delete_ids(self, entry_ids: Sequence[str]) -> int:  # pragma: no cover - protocol
        ...

    async def delete_by_upload(self, upload_id: str) -> int:  # pragma: no cover - protocol
        ...


class RejectionStore(Protocol):
    async def insert_many(self, records: Sequence[RejectionRecord]) -> List[RejectionRecord]:  # pragma: no cover - protocol
        ...

    async def list_for_upload(self, upload_id: str) -> List[RejectionRecord]:  # pragma: no cover - protocol
        ...

    async def delete_by_upload(self, upload_id: str) -> int:  # pragma: no cover - protocol
        ...


class AuditSink(Protocol):
    async def append(
        self, upload_id: Optional[str], stage: str, message: str, metadata: Dict[str, Any]
    ) -> None:  # pragma: no cover - protocol
        ...


__all__ = [
    "AgentDirectory",
    "AuditSink",
    "CallListStore",
    "ContactStore",
    "DncRegistry",
    "RejectionStore",
    "StoreUnavailable",
    "UniqueViolation",
    "UploadStore",
]
