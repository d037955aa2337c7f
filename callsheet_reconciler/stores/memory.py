"""In-memory collaborator implementations used by the CLI and the test-suite."""
from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from ..models import CallListEntry, CallStatus, MasterContact, RejectionRecord, UploadRecord, UploadStatus
from ..phone import mask_phone, normalize_phone
from .base import StoreUnavailable, UniqueViolation

ContactLike = Union[MasterContact, Mapping[str, Any]]


def _new_id() -> str:
    return str(uuid.uuid4())


def _as_contact(value: ContactLike) -> MasterContact:
    if isinstance(value, MasterContact):
        return value
    data = dict(value)
    data["phone"] = normalize_phone(data.get("phone", ""))
    return MasterContact(**data)


class MemoryContactStore:
    """Master-contact table with a unique phone index.

    ``batch_lookup_available`` / ``point_lookup_available`` and
    ``failing_phones`` simulate permission errors and outages.
    """

    def __init__(
        self,
        contacts: Optional[Iterable[ContactLike]] = None,
        *,
        batch_lookup_available: bool = True,
        point_lookup_available: bool = True,
        failing_phones: Optional[Iterable[str]] = None,
    ) -> None:
        self._by_id: Dict[str, MasterContact] = {}
        self._by_phone: Dict[str, str] = {}
        self.batch_lookup_available = batch_lookup_available
        self.point_lookup_available = point_lookup_available
        self.failing_phones: Set[str] = set(failing_phones or ())
        self.batch_calls = 0
        self.point_calls = 0
        for contact in contacts or ():
            self._store(_as_contact(contact))

    def _store(self, contact: MasterContact) -> MasterContact:
        if contact.phone in self._by_phone:
            raise UniqueViolation(contact.phone)
        stored = replace(contact, id=contact.id or _new_id())
        self._by_id[stored.id] = stored
        self._by_phone[stored.phone] = stored.id
        return stored

    @property
    def contacts(self) -> List[MasterContact]:
        return list(self._by_id.values())

    async def find_by_phones(self, phones: Sequence[str]) -> List[MasterContact]:
        self.batch_calls += 1
        if not self.batch_lookup_available:
            raise StoreUnavailable("Batch phone lookup is not permitted for this session")
        return [self._by_id[self._by_phone[phone]] for phone in dict.fromkeys(phones) if phone in self._by_phone]

    async def find_by_phone(self, phone: str) -> Optional[MasterContact]:
        self.point_calls += 1
        if not self.point_lookup_available:
            raise StoreUnavailable("Point phone lookup is unavailable")
        contact_id = self._by_phone.get(phone)
        return self._by_id[contact_id] if contact_id else None

    async def insert(self, contact: MasterContact) -> MasterContact:
        if contact.phone in self.failing_phones:
            raise StoreUnavailable(f"Insert rejected for contact {mask_phone(contact.phone)}")
        return self._store(contact)

    async def get(self, contact_id: str) -> Optional[MasterContact]:
        return self._by_id.get(contact_id)

    async def update(self, contact_id: str, **changes: Any) -> MasterContact:
        current = self._by_id.get(contact_id)
        if current is None:
            raise KeyError(contact_id)
        if "phone" in changes and changes["phone"] != current.phone:
            if changes["phone"] in self._by_phone:
                raise UniqueViolation(changes["phone"])
            del self._by_phone[current.phone]
            self._by_phone[changes["phone"]] = contact_id
        updated = replace(current, **changes)
        self._by_id[contact_id] = updated
        return updated

    async def find_first_uploaded(self, agent_id: str, on: date) -> List[MasterContact]:
        return [
            contact
            for contact in self._by_id.values()
            if contact.first_uploaded_by == agent_id and contact.created_at and contact.created_at.date() == on
        ]


class MemoryDncRegistry:
    """Do-not-call list held in memory, optionally loaded from a one-number-per-line file."""

    def __init__(self, phones: Optional[Iterable[str]] = None, *, path: Optional[str] = None, available: bool = True) -> None:
        numbers = list(phones or ())
        if path:
            text = Path(path).read_text(encoding="utf-8")
            numbers.extend(line.strip() for line in text.splitlines() if line.strip())
        self._phones = numbers
        self.available = available

    async def phones(self) -> List[str]:
        if not self.available:
            raise StoreUnavailable("Do-not-call registry is unavailable")
        return list(self._phones)


class MemoryAgentDirectory:
    def __init__(self, agents: Optional[Mapping[str, str]] = None) -> None:
        self._agents = dict(agents or {})

    async def agent_name(self, agent_id: str) -> Optional[str]:
        return self._agents.get(agent_id)


class MemoryUploadStore:
    def __init__(self, uploads: Optional[Iterable[UploadRecord]] = None, *, fail_create: bool = False) -> None:
        self._uploads: Dict[str, UploadRecord] = {}
        self.fail_create = fail_create
        for upload in uploads or ():
            stored = replace(upload, id=upload.id or _new_id())
            self._uploads[stored.id] = stored

    @property
    def uploads(self) -> List[UploadRecord]:
        return list(self._uploads.values())

    async def create(self, record: UploadRecord) -> UploadRecord:
        if self.fail_create:
            raise StoreUnavailable("Upload table rejected the insert")
        stored = replace(record, id=record.id or _new_id())
        self._uploads[stored.id] = stored
        return stored

    async def update(self, upload_id: str, **changes: Any) -> UploadRecord:
        current = self._uploads.get(upload_id)
        if current is None:
            raise KeyError(upload_id)
        updated = replace(current, **changes)
        self._uploads[upload_id] = updated
        return updated

    async def get(self, upload_id: str) -> Optional[UploadRecord]:
        return self._uploads.get(upload_id)

    async def find_recent(self, agent_id: str, file_name: str, since: datetime) -> List[UploadRecord]:
        return [
            upload
            for upload in self._uploads.values()
            if upload.agent_id == agent_id
            and upload.file_name == file_name
            and upload.uploaded_at is not None
            and upload.uploaded_at >= since
        ]

    async def list_approved(self, list_date: date) -> List[UploadRecord]:
        uploads = [
            upload
            for upload in self._uploads.values()
            if upload.status is UploadStatus.APPROVED and upload.list_date == list_date
        ]
        return sorted(uploads, key=lambda upload: upload.uploaded_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)

    async def delete(self, upload_id: str) -> None:
        self._uploads.pop(upload_id, None)


class MemoryCallListStore:
    """Per-agent daily call lists with a unique (agent, contact, date) index.

    ``failing_batches`` holds 1-based batch numbers whose insert raises.
    """

    def __init__(self, entries: Optional[Iterable[CallListEntry]] = None, *, failing_batches: Optional[Iterable[int]] = None) -> None:
        self._entries: Dict[str, CallListEntry] = {}
        self.failing_batches: Set[int] = set(failing_batches or ())
        self.insert_calls = 0
        for entry in entries or ():
            self._add(entry)

    def _key(self, entry: CallListEntry) -> Tuple[str, str, date]:
        return (entry.agent_id, entry.contact_id, entry.list_date)

    def _add(self, entry: CallListEntry) -> CallListEntry:
        key = self._key(entry)
        if any(self._key(existing) == key for existing in self._entries.values()):
            raise UniqueViolation(entry.contact_id, f"Contact {entry.contact_id} is already on the {entry.list_date} list")
        stored = replace(entry, id=entry.id or _new_id())
        self._entries[stored.id] = stored
        return stored

    @property
    def entries(self) -> List[CallListEntry]:
        return list(self._entries.values())

    async def entries_for(self, agent_id: str, list_date: date) -> List[CallListEntry]:
        entries = [e for e in self._entries.values() if e.agent_id == agent_id and e.list_date == list_date]
        return sorted(entries, key=lambda entry: entry.call_order)

    async def entries_for_upload(self, upload_id: str) -> List[CallListEntry]:
        return [entry for entry in self._entries.values() if entry.upload_id == upload_id]

    async def insert_many(self, entries: Sequence[CallListEntry]) -> List[CallListEntry]:
        self.insert_calls += 1
        if self.insert_calls in self.failing_batches:
            raise StoreUnavailable(f"Call-list batch {self.insert_calls} failed")
        keys = [self._key(entry) for entry in entries]
        existing = {self._key(entry) for entry in self._entries.values()}
        if len(set(keys)) != len(keys) or existing.intersection(keys):
            raise UniqueViolation("call-list", "Batch contains call-list entries that already exist")
        return [self._add(entry) for entry in entries]

    async def delete_ids(self, entry_ids: Sequence[str]) -> int:
        removed = 0
        for entry_id in entry_ids:
            if self._entries.pop(entry_id, None) is not None:
                removed += 1
        return removed

    async def delete_by_upload(self, upload_id: str) -> int:
        ids = [entry.id for entry in self._entries.values() if entry.upload_id == upload_id]
        return await self.delete_ids(ids)

    def mark(self, entry_id: str, status: CallStatus) -> CallListEntry:
        """Simulate the call-handling workflow moving an entry forward."""

        entry = self._entries[entry_id]
        entry.transition(status)
        return entry


class MemoryRejectionStore:
    def __init__(self, *, available: bool = True) -> None:
        self._records: Dict[str, RejectionRecord] = {}
        self.available = available

    @property
    def records(self) -> List[RejectionRecord]:
        return list(self._records.values())

    async def insert_many(self, records: Sequence[RejectionRecord]) -> List[RejectionRecord]:
        if not self.available:
            raise StoreUnavailable("Rejection table is unavailable")
        stored = [replace(record, id=record.id or _new_id()) for record in records]
        for record in stored:
            self._records[record.id] = record
        return stored

    async def list_for_upload(self, upload_id: str) -> List[RejectionRecord]:
        return sorted(
            (record for record in self._records.values() if record.upload_id == upload_id),
            key=lambda record: record.row_number,
        )

    async def delete_by_upload(self, upload_id: str) -> int:
        ids = [record_id for record_id, record in self._records.items() if record.upload_id == upload_id]
        for record_id in ids:
            del self._records[record_id]
        return len(ids)


class MemoryAuditSink:
    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    async def append(self, upload_id: Optional[str], stage: str, message: str, metadata: Dict[str, Any]) -> None:
        self.events.append({"upload_id": upload_id, "stage": stage, "message": message, "metadata": dict(metadata)})

    def for_upload(self, upload_id: Optional[str]) -> List[Dict[str, Any]]:
        return [event for event in self.events if event["upload_id"] == upload_id]


__all__ = [
    "MemoryAgentDirectory",
    "MemoryAuditSink",
    "MemoryCallListStore",
    "MemoryContactStore",
    "MemoryDncRegistry",
    "MemoryRejectionStore",
    "MemoryUploadStore",
]
