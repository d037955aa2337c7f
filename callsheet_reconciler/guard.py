"""Deletion guard for call-list entries that already carry call history."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from .errors import ProtectionViolation
from .models import CallListEntry
from .stores.base import CallListStore, RejectionStore, UploadStore

LOGGER = logging.getLogger(__name__)


@dataclass
class ProtectionReport:
    """Call-list entries of a set of uploads, split by whether they may be removed."""

    protected: Dict[str, List[CallListEntry]] = field(default_factory=dict)
    safe: Dict[str, List[CallListEntry]] = field(default_factory=dict)

    @property
    def protected_count(self) -> int:
        return sum(len(entries) for entries in self.protected.values())

    @property
    def safe_count(self) -> int:
        return sum(len(entries) for entries in self.safe.values())

    @property
    def has_protected(self) -> bool:
        return self.protected_count > 0


@dataclass
class DeletionReport:
    deleted_uploads: List[str] = field(default_factory=list)
    kept_uploads: List[str] = field(default_factory=list)
    deleted_entries: int = 0
    preserved_entries: int = 0
    deleted_rejections: int = 0


class ProtectedRecordGuard:
    """Refuses deletions that would erase called or commented call-list entries.

    Protection is decided for the whole set of uploads before anything is
    removed, so a refused request leaves every store untouched.
    """

    def __init__(self, call_list: CallListStore, rejections: RejectionStore, uploads: UploadStore) -> None:
        self._call_list = call_list
        self._rejections = rejections
        self._uploads = uploads

    async def classify(self, upload_ids: Sequence[str]) -> ProtectionReport:
        report = ProtectionReport()
        for upload_id in dict.fromkeys(upload_ids):
            entries = await self._call_list.entries_for_upload(upload_id)
            report.protected[upload_id] = [entry for entry in entries if entry.is_protected]
            report.safe[upload_id] = [entry for entry in entries if not entry.is_protected]
        return report

    async def delete_uploads(self, upload_ids: Sequence[str], *, force: bool = False) -> DeletionReport:
        """Delete uploads with their rejections and unprotected call-list entries.

        Without ``force`` any protected entry in the set raises
        :class:`ProtectionViolation` and nothing is deleted. With ``force`` the
        protected entries survive along with the upload records that own them.
        """

        upload_ids = list(dict.fromkeys(upload_ids))
        classification = await self.classify(upload_ids)
        if classification.has_protected and not force:
            LOGGER.warning(
                "Refused deletion of %s upload(s): %s protected entries",
                len(upload_ids),
                classification.protected_count,
            )
            raise ProtectionViolation(upload_ids, classification.protected_count, classification.safe_count)

        report = DeletionReport()
        for upload_id in upload_ids:
            protected = classification.protected[upload_id]
            report.deleted_rejections += await self._rejections.delete_by_upload(upload_id)
            if protected:
                safe_ids = [entry.id for entry in classification.safe[upload_id]]
                report.deleted_entries += await self._call_list.delete_ids(safe_ids) if safe_ids else 0
                report.preserved_entries += len(protected)
                report.kept_uploads.append(upload_id)
                LOGGER.info("Kept upload %s: %s entries have call history", upload_id, len(protected))
                continue
            report.deleted_entries += await self._call_list.delete_by_upload(upload_id)
            await self._uploads.delete(upload_id)
            report.deleted_uploads.append(upload_id)

        LOGGER.info(
            "Deleted %s upload(s), %s call-list entries, %s rejection(s)",
            len(report.deleted_uploads),
            report.deleted_entries,
            report.deleted_rejections,
        )
        return report


__all__ = ["DeletionReport", "ProtectedRecordGuard", "ProtectionReport"]
