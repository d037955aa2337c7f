"""Upload orchestrator that commits a validated call sheet stage by stage."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Union

from ..audit import UploadAuditLog
from ..config import PipelineConfig
from ..errors import PersistenceError, ReconcilerError, SchemaError, SubmissionReplayError
from ..models import (
    CallListEntry,
    MasterContact,
    ParsedContact,
    RejectionRecord,
    SheetData,
    UploadRecord,
    UploadStatus,
    UploadValidationResult,
)
from ..resolver import DuplicateResolver
from ..stores.base import (
    AgentDirectory,
    AuditSink,
    CallListStore,
    ContactStore,
    DncRegistry,
    RejectionStore,
    UniqueViolation,
    UploadStore,
)
from ..validation import validate_upload

LOGGER = logging.getLogger(__name__)


class Stage(str, Enum):
    PREPARING = "preparing"
    CHECKING_DUPLICATE_SUBMISSION = "checking_duplicate_submission"
    PERSISTING_UPLOAD_RECORD = "persisting_upload_record"
    PROCESSING_CONTACTS = "processing_contacts"
    CREATING_CALL_LIST = "creating_call_list"
    RECORDING_REJECTIONS = "recording_rejections"
    COMPLETE = "complete"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    DEGRADED = "degraded"


class CallListResult(str, Enum):
    CREATED = "created"
    ALREADY_LISTED = "already_listed"
    NO_CONTACTS = "no_contacts"


@dataclass(slots=True)
class StageEvent:
    stage: Stage
    percentage: int
    message: str
    processed: int = 0
    total: int = 0
    elapsed_seconds: float = 0.0

    @property
    def eta_seconds(self) -> Optional[float]:
        """Naive remaining-time estimate from the processed/total ratio."""

        if self.processed <= 0 or self.total <= 0 or self.elapsed_seconds <= 0:
            return None
        rate = self.processed / self.elapsed_seconds
        return max(0.0, (self.total - self.processed) / rate)


StageListener = Callable[[StageEvent], None]


@dataclass(slots=True)
class SkippedContact:
    row_number: int
    phone: str
    reason: str


@dataclass
class PipelineContext:
    """Mutable state of one submission, threaded through every stage function."""

    agent_id: str
    file_name: str
    file_size: int
    validation: UploadValidationResult
    config: PipelineConfig
    list_date: date
    submitted_at: datetime
    audit: UploadAuditLog
    started: float = field(default_factory=time.monotonic)
    percentage: int = 0
    upload: Optional[UploadRecord] = None
    new_ids: List[str] = field(default_factory=list)
    existing_ids: List[str] = field(default_factory=list)
    skipped: List[SkippedContact] = field(default_factory=list)
    inserted_entries: List[CallListEntry] = field(default_factory=list)
    already_listed: int = 0
    failed_entries: int = 0
    call_list_result: CallListResult = CallListResult.NO_CONTACTS
    rejections_recorded: int = 0
    failures: List[str] = field(default_factory=list)
    events: List[StageEvent] = field(default_factory=list)

    @property
    def contact_ids(self) -> List[str]:
        return list(dict.fromkeys(self.new_ids + self.existing_ids))


@dataclass
class UploadOutcome:
    status: OutcomeStatus
    upload: UploadRecord
    new_contacts: int
    existing_contacts: int
    skipped: List[SkippedContact]
    call_list_result: CallListResult
    call_list_inserted: int
    already_listed: int
    rejections_recorded: int
    duplicate_owners: Dict[int, str]
    failures: List[str]
    events: List[StageEvent]

    @property
    def unresolved_contacts(self) -> int:
        return len(self.skipped)

    @property
    def needs_follow_up(self) -> bool:
        return self.status is OutcomeStatus.DEGRADED


@dataclass(slots=True)
class RecoveryResult:
    upload_id: str
    created: int
    total_contacts: int
    already_listed: int


@dataclass(slots=True)
class IncompleteUpload:
    upload: UploadRecord
    actual_entries: int


class UploadOrchestrator:
    """Drives the multi-step commit of a validated upload.

    The pipeline is additive and best-effort: only a failed replay check or
    upload-record insert aborts it; later failures are logged, counted and
    reported as a degraded outcome without rolling anything back.
    """

    def __init__(
        self,
        contacts: ContactStore,
        dnc: DncRegistry,
        uploads: UploadStore,
        call_list: CallListStore,
        rejections: RejectionStore,
        audit: Optional[AuditSink] = None,
        *,
        agents: Optional[AgentDirectory] = None,
        resolver: Optional[DuplicateResolver] = None,
        config: Optional[PipelineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self._contacts = contacts
        self._uploads = uploads
        self._call_list = call_list
        self._rejections = rejections
        self._audit_sink = audit
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._resolver = resolver or DuplicateResolver(contacts, dnc, agents=agents)
        self._listeners: List[StageListener] = []

    @property
    def resolver(self) -> DuplicateResolver:
        return self._resolver

    def subscribe(self, listener: StageListener) -> Callable[[], None]:
        """Register a stage-event consumer; returns a callable that unsubscribes it."""

        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    async def validate(
        self,
        sheet: SheetData,
        *,
        template_version: Optional[str] = None,
        config: Optional[PipelineConfig] = None,
    ) -> UploadValidationResult:
        config = config or self.config
        template = config.template(template_version)
        return await validate_upload(sheet, self._resolver, template=template, config=config)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------
    async def submit(
        self,
        agent_id: str,
        source: Union[str, SheetData],
        validation: UploadValidationResult,
        *,
        file_size: int = 0,
        config: Optional[PipelineConfig] = None,
        list_date: Optional[date] = None,
    ) -> UploadOutcome:
        """Commit ``validation`` for ``agent_id``.

        ``source`` is the loaded sheet or just its file name; the name is what
        the replay check keys on.

        Raises :class:`SchemaError`, :class:`SubmissionReplayError` or
        :class:`PersistenceError` when the pipeline cannot start; every other
        failure is reported on the returned outcome.
        """

        if isinstance(source, SheetData):
            file_name, file_size = source.file_name, source.file_size or file_size
        else:
            file_name = source
        now = self._clock()
        ctx = PipelineContext(
            agent_id=agent_id,
            file_name=file_name,
            file_size=file_size,
            validation=validation,
            config=config or self.config,
            list_date=list_date or now.date(),
            submitted_at=now,
            audit=UploadAuditLog(self._audit_sink, agent_id=agent_id, file_name=file_name, clock=self._clock),
        )
        ctx.audit.info("session_start", f"Upload session started for file: {file_name}", agent_id=agent_id)

        try:
            self._prepare(ctx)
            await self._check_duplicate_submission(ctx)
            await self._persist_upload_record(ctx)
            await self._process_contacts(ctx)
            await self._create_call_list(ctx)
            await self._record_rejections(ctx)
            await self._complete(ctx)
        except Exception as exc:
            ctx.audit.error(Stage.FAILED.value, str(exc), error_type=type(exc).__name__)
            self._emit(ctx, Stage.FAILED, ctx.percentage, str(exc))
            raise
        finally:
            summary = ctx.audit.summary()
            ctx.audit.info("session_end", "Upload session ended", errors=summary.errors, warnings=summary.warnings)
            await ctx.audit.flush()

        return self._outcome(ctx)

    def _prepare(self, ctx: PipelineContext) -> None:
        self._emit(ctx, Stage.PREPARING, 0, f"Preparing {ctx.file_name}")
        if not ctx.validation.schema_ok:
            raise SchemaError("Column layout does not match the required template", ctx.validation.column_analysis)
        ctx.config.template(ctx.validation.template_version)

    async def _check_duplicate_submission(self, ctx: PipelineContext) -> None:
        self._emit(ctx, Stage.CHECKING_DUPLICATE_SUBMISSION, 5, "Checking for repeated submission")
        window = ctx.config.replay_window_seconds
        if window <= 0:
            return
        since = ctx.submitted_at - timedelta(seconds=window)
        try:
            recent = await self._uploads.find_recent(ctx.agent_id, ctx.file_name, since)
        except Exception as exc:
            raise PersistenceError(Stage.CHECKING_DUPLICATE_SUBMISSION.value, str(exc)) from exc
        if recent:
            ctx.audit.warn("replay", "Same file submitted inside the replay window", previous_upload_id=recent[0].id)
            raise SubmissionReplayError(ctx.agent_id, ctx.file_name, recent[0].id)

    async def _persist_upload_record(self, ctx: PipelineContext) -> None:
        self._emit(ctx, Stage.PERSISTING_UPLOAD_RECORD, 10, "Creating upload record")
        validation = ctx.validation
        record = UploadRecord(
            agent_id=ctx.agent_id,
            file_name=ctx.file_name,
            file_size=ctx.file_size,
            template_version=validation.template_version,
            total_entries=validation.total_entries,
            valid_entries=validation.valid_entries,
            invalid_entries=validation.invalid_entries,
            duplicate_entries=validation.duplicate_entries,
            approved_count=validation.valid_entries,
            status=UploadStatus.APPROVED,
            list_date=ctx.list_date,
            uploaded_at=ctx.submitted_at,
            approved_at=ctx.submitted_at,
        )
        try:
            ctx.upload = await self._uploads.create(record)
        except Exception as exc:
            raise PersistenceError(Stage.PERSISTING_UPLOAD_RECORD.value, str(exc)) from exc
        ctx.audit.bind_upload(ctx.upload.id)

    async def _process_contacts(self, ctx: PipelineContext) -> None:
        rows = ctx.validation.committable
        total = len(rows)
        self._emit(ctx, Stage.PROCESSING_CONTACTS, 15, f"Processing {total} contact(s)", 0, total)

        for index, row in enumerate(rows):
            await self._process_contact(ctx, row, index, total)
            self._emit(
                ctx,
                Stage.PROCESSING_CONTACTS,
                15 + round(55 * (index + 1) / total),
                f"Processed {index + 1}/{total} contacts",
                index + 1,
                total,
            )

        if ctx.skipped:
            LOGGER.warning("%s contact(s) of %s could not be committed", len(ctx.skipped), ctx.file_name)

    async def _process_contact(self, ctx: PipelineContext, row: ParsedContact, index: int, total: int) -> None:
        if row.existing_contact_id:
            ctx.existing_ids.append(row.existing_contact_id)
            ctx.audit.contact_processed(index, total, row.phone, "existing", row_number=row.row_number, contact_id=row.existing_contact_id)
            return

        contact = MasterContact(
            phone=row.phone,
            company=row.company,
            contact_person=row.contact_person or row.company,
            trade_license=row.trade_license or "PENDING",
            city=row.city,
            industry=row.industry,
            area=row.area,
            address=row.address,
            first_uploaded_by=ctx.agent_id,
            current_owner_agent_id=ctx.agent_id,
            created_at=ctx.submitted_at,
        )
        try:
            stored = await self._contacts.insert(contact)
        except UniqueViolation:
            located = await self._resolver.locate(row.phone)
            if located.contact is not None:
                ctx.existing_ids.append(located.contact.contact_id)
                ctx.audit.contact_processed(index, total, row.phone, "existing", row_number=row.row_number, contact_id=located.contact.contact_id)
                return
            reason = "; ".join(f"{failure.strategy}: {failure.error}" for failure in located.failures) or "existing contact not found"
            self._skip(ctx, row, index, total, f"Duplicate could not be resolved ({reason})")
            return
        except Exception as exc:
            self._skip(ctx, row, index, total, str(exc), result="error")
            return

        ctx.new_ids.append(stored.id)
        ctx.audit.contact_processed(index, total, row.phone, "inserted", row_number=row.row_number, contact_id=stored.id)

    def _skip(self, ctx: PipelineContext, row: ParsedContact, index: int, total: int, reason: str, *, result: str = "skipped") -> None:
        ctx.skipped.append(SkippedContact(row.row_number, row.phone, reason))
        ctx.audit.contact_processed(index, total, row.phone, result, row_number=row.row_number, error=reason)

    async def _create_call_list(self, ctx: PipelineContext) -> None:
        contact_ids = ctx.contact_ids
        self._emit(ctx, Stage.CREATING_CALL_LIST, 75, f"Adding {len(contact_ids)} contact(s) to the call list", 0, len(contact_ids))
        if not contact_ids:
            ctx.call_list_result = CallListResult.NO_CONTACTS
            ctx.audit.warn(Stage.CREATING_CALL_LIST.value, "No contacts available for the call list")
            return

        try:
            current = await self._call_list.entries_for(ctx.agent_id, ctx.list_date)
        except Exception as exc:
            LOGGER.exception("Could not read the %s call list of agent %s", ctx.list_date, ctx.agent_id)
            ctx.failures.append(f"call list unavailable: {exc}")
            ctx.audit.error(Stage.CREATING_CALL_LIST.value, "Could not read the current call list", error=str(exc))
            return

        created, listed, failed = await self._append_to_call_list(
            ctx.agent_id, ctx.list_date, ctx.upload.id, contact_ids, current, ctx.config.batch_size, ctx=ctx
        )
        ctx.inserted_entries.extend(created)
        ctx.already_listed = listed
        ctx.failed_entries = failed
        if failed:
            ctx.failures.append(f"{failed} call-list entries failed to insert")
        ctx.call_list_result = CallListResult.CREATED if len(contact_ids) > listed else CallListResult.ALREADY_LISTED

    async def _append_to_call_list(
        self,
        agent_id: str,
        list_date: date,
        upload_id: str,
        contact_ids: Sequence[str],
        current: Sequence[CallListEntry],
        batch_size: int,
        *,
        ctx: Optional[PipelineContext] = None,
    ):
        """Insert entries for contacts not yet listed, continuing the order index.

        Returns ``(created entries, already listed count, failed count)``.
        """

        listed = {entry.contact_id for entry in current}
        missing = [contact_id for contact_id in contact_ids if contact_id not in listed]
        already = len(contact_ids) - len(missing)
        start = max((entry.call_order for entry in current), default=0) + 1
        entries = [
            CallListEntry(
                agent_id=agent_id,
                contact_id=contact_id,
                list_date=list_date,
                call_order=start + offset,
                upload_id=upload_id,
            )
            for offset, contact_id in enumerate(missing)
        ]

        created: List[CallListEntry] = []
        failed = 0
        for begin in range(0, len(entries), batch_size):
            batch = entries[begin : begin + batch_size]
            try:
                created.extend(await self._call_list.insert_many(batch))
            except Exception as exc:
                failed += len(batch)
                LOGGER.error("Call-list batch starting at order %s failed: %s", batch[0].call_order, exc)
                if ctx is not None:
                    ctx.audit.error(Stage.CREATING_CALL_LIST.value, "Call-list batch failed", first_order=batch[0].call_order, size=len(batch), error=str(exc))
            if ctx is not None:
                done = min(begin + batch_size, len(entries))
                self._emit(ctx, Stage.CREATING_CALL_LIST, 75 + round(20 * done / len(entries)), f"Inserted {done}/{len(entries)} call-list entries", done, len(entries))
        return created, already, failed

    async def _record_rejections(self, ctx: PipelineContext) -> None:
        self._emit(ctx, Stage.RECORDING_REJECTIONS, 96, "Recording rejected rows")
        records = [
            RejectionRecord(
                upload_id=ctx.upload.id,
                row_number=row.row_number,
                reason="; ".join(row.errors),
                company=row.company or None,
                phone=row.phone or None,
            )
            for row in ctx.validation.rejected
        ]
        records.extend(
            RejectionRecord(upload_id=ctx.upload.id, row_number=skipped.row_number, reason=f"Not committed: {skipped.reason}", phone=skipped.phone)
            for skipped in ctx.skipped
        )
        if not records:
            return
        try:
            stored = await self._rejections.insert_many(records)
        except Exception as exc:
            LOGGER.exception("Failed to record %s rejection(s) for upload %s", len(records), ctx.upload.id)
            ctx.failures.append(f"rejections not recorded: {exc}")
            ctx.audit.error(Stage.RECORDING_REJECTIONS.value, "Rejection records were not saved", count=len(records), error=str(exc))
            return
        ctx.rejections_recorded = len(stored)

    async def _complete(self, ctx: PipelineContext) -> None:
        approved = len(ctx.inserted_entries)
        try:
            ctx.upload = await self._uploads.update(ctx.upload.id, approved_count=approved)
        except Exception as exc:
            LOGGER.exception("Could not correct approved_count of upload %s", ctx.upload.id)
            ctx.failures.append(f"approved count not updated: {exc}")
        ctx.audit.info(
            Stage.COMPLETE.value,
            "Upload committed",
            new=len(ctx.new_ids),
            existing=len(ctx.existing_ids),
            skipped=len(ctx.skipped),
            call_list_inserted=approved,
            already_listed=ctx.already_listed,
        )
        self._emit(ctx, Stage.COMPLETE, 100, f"{approved} contact(s) added to the call list")

    def _outcome(self, ctx: PipelineContext) -> UploadOutcome:
        degraded = bool(ctx.skipped or ctx.failures)
        if ctx.validation.committable and ctx.call_list_result is CallListResult.NO_CONTACTS:
            degraded = True
        return UploadOutcome(
            status=OutcomeStatus.DEGRADED if degraded else OutcomeStatus.SUCCESS,
            upload=ctx.upload,
            new_contacts=len(ctx.new_ids),
            existing_contacts=len(ctx.existing_ids),
            skipped=list(ctx.skipped),
            call_list_result=ctx.call_list_result,
            call_list_inserted=len(ctx.inserted_entries),
            already_listed=ctx.already_listed,
            rejections_recorded=ctx.rejections_recorded,
            duplicate_owners=ctx.validation.duplicate_owners(),
            failures=list(ctx.failures),
            events=list(ctx.events),
        )

    def _emit(
        self,
        ctx: PipelineContext,
        stage: Stage,
        percentage: int,
        message: str,
        processed: int = 0,
        total: int = 0,
    ) -> None:
        ctx.percentage = max(ctx.percentage, min(100, percentage))
        event = StageEvent(
            stage=stage,
            percentage=ctx.percentage,
            message=message,
            processed=processed,
            total=total,
            elapsed_seconds=time.monotonic() - ctx.started,
        )
        ctx.events.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOGGER.exception("Stage listener %r failed", listener)

    # ------------------------------------------------------------------
    # Follow-up operations
    # ------------------------------------------------------------------
    async def recover_call_list(self, upload_id: str, *, config: Optional[PipelineConfig] = None) -> RecoveryResult:
        """Re-create missing call-list entries of an upload.

        Contacts first uploaded by the agent on the day the upload was
        submitted are re-derived from the contact store and appended to the
        upload's list date; contacts already on that list are left untouched,
        so the operation can be repeated safely.
        """

        config = config or self.config
        upload = await self._uploads.get(upload_id)
        if upload is None:
            raise PersistenceError("recovery", f"Upload {upload_id} not found")
        submitted_on = (upload.uploaded_at or self._clock()).date()
        list_date = upload.list_date or submitted_on

        contacts = await self._contacts.find_first_uploaded(upload.agent_id, submitted_on)
        if not contacts:
            raise ReconcilerError(
                f"No contacts found for upload {upload_id}. The agent may need to re-upload the file."
            )

        current = await self._call_list.entries_for(upload.agent_id, list_date)
        contact_ids = [contact.id for contact in contacts]
        created, already, failed = await self._append_to_call_list(
            upload.agent_id, list_date, upload_id, contact_ids, current, config.batch_size
        )
        if failed:
            raise PersistenceError("recovery", f"{failed} call-list entries could not be inserted")

        await self._uploads.update(upload_id, approved_count=len(created) + already)
        LOGGER.info("Recovered %s call-list entries for upload %s (%s already listed)", len(created), upload_id, already)
        return RecoveryResult(upload_id=upload_id, created=len(created), total_contacts=len(contacts), already_listed=already)

    async def find_incomplete_uploads(self, list_date: Optional[date] = None) -> List[IncompleteUpload]:
        """Approved uploads whose call-list rows fall short of half their approved count."""

        list_date = list_date or self._clock().date()
        incomplete: List[IncompleteUpload] = []
        for upload in await self._uploads.list_approved(list_date):
            if upload.approved_count <= 0:
                continue
            try:
                entries = await self._call_list.entries_for_upload(upload.id)
            except Exception:
                LOGGER.exception("Could not count call-list entries of upload %s", upload.id)
                continue
            if not entries or len(entries) < upload.approved_count * 0.5:
                incomplete.append(IncompleteUpload(upload=upload, actual_entries=len(entries)))
        return incomplete

    async def rejection_details(self, upload_id: str) -> List[RejectionRecord]:
        records = await self._rejections.list_for_upload(upload_id)
        return sorted(records, key=lambda record: record.row_number)


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
