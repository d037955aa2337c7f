"""Structured per-upload processing log.

Entries are mirrored to :mod:`logging` as they are recorded and kept in
memory until :meth:`UploadAuditLog.flush` appends them to the audit sink,
which happens once the upload id is known (or the pipeline failed first).
"""
from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .models import AuditEntry
from .phone import mask_phone
from .stores.base import AuditSink

LOGGER = logging.getLogger(__name__)

MAX_ENTRIES = 1000
_TRIM_TO = 500

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(slots=True)
class AuditSummary:
    session_id: str
    upload_id: Optional[str]
    total_entries: int
    errors: int
    warnings: int
    inserted: int
    existing: int
    skipped: int
    failed: int


class UploadAuditLog:
    def __init__(
        self,
        sink: Optional[AuditSink],
        *,
        agent_id: str,
        file_name: str,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._sink = sink
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.session_id = f"upload_{uuid.uuid4().hex[:12]}"
        self.agent_id = agent_id
        self.file_name = file_name
        self.upload_id: Optional[str] = None
        self.entries: List[AuditEntry] = []
        self._flushed = 0

    def bind_upload(self, upload_id: str) -> None:
        self.upload_id = upload_id
        self.info("upload_record", f"Upload record created with ID: {upload_id}", upload_id=upload_id)

    def log(self, level: str, stage: str, message: str, **metadata: Any) -> None:
        LOGGER.log(_LEVELS.get(level, logging.INFO), "[%s] %s %s", stage, message, metadata or "")
        if len(self.entries) >= MAX_ENTRIES:
            dropped = len(self.entries) - _TRIM_TO
            self.entries = self.entries[-_TRIM_TO:]
            self._flushed = max(0, self._flushed - dropped)
        self.entries.append(AuditEntry(self._clock(), level, stage, message, dict(metadata)))

    def debug(self, stage: str, message: str, **metadata: Any) -> None:
        self.log("debug", stage, message, **metadata)

    def info(self, stage: str, message: str, **metadata: Any) -> None:
        self.log("info", stage, message, **metadata)

    def warn(self, stage: str, message: str, **metadata: Any) -> None:
        self.log("warn", stage, message, **metadata)

    def error(self, stage: str, message: str, **metadata: Any) -> None:
        self.log("error", stage, message, **metadata)

    def contact_processed(
        self,
        index: int,
        total: int,
        phone: str,
        result: str,
        *,
        row_number: Optional[int] = None,
        contact_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Record one contact outcome: ``inserted``, ``existing``, ``skipped`` or ``error``."""

        level = "error" if result == "error" else "warn" if result == "skipped" else "debug"
        metadata: Dict[str, Any] = {"index": index, "total": total, "phone": mask_phone(phone), "result": result}
        if row_number is not None:
            metadata["row_number"] = row_number
        if contact_id:
            metadata["contact_id"] = contact_id
        if error:
            metadata["error"] = error
        suffix = f" - {error}" if error else ""
        self.log(level, "contact_processing", f"Contact {index + 1}/{total}: {result}{suffix}", **metadata)

    def summary(self) -> AuditSummary:
        levels = Counter(entry.level for entry in self.entries)
        results = Counter(
            entry.metadata.get("result") for entry in self.entries if entry.stage == "contact_processing"
        )
        return AuditSummary(
            session_id=self.session_id,
            upload_id=self.upload_id,
            total_entries=len(self.entries),
            errors=levels["error"],
            warnings=levels["warn"],
            inserted=results["inserted"],
            existing=results["existing"],
            skipped=results["skipped"],
            failed=results["error"],
        )

    def issues(self) -> List[AuditEntry]:
        return [entry for entry in self.entries if entry.level in {"warn", "error"}]

    async def flush(self) -> int:
        """Append entries not yet written to the sink. Sink failures are logged, never raised."""

        if self._sink is None:
            return 0
        pending = self.entries[self._flushed :]
        written = 0
        for entry in pending:
            metadata = dict(entry.metadata, level=entry.level, session_id=self.session_id, timestamp=entry.timestamp.isoformat())
            try:
                await self._sink.append(self.upload_id, entry.stage, entry.message, metadata)
            except Exception:
                LOGGER.exception("Failed to persist audit entries for session %s", self.session_id)
                break
            written += 1
        self._flushed += written
        return written


__all__ = ["AuditSummary", "MAX_ENTRIES", "UploadAuditLog"]
