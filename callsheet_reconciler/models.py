"""Data models shared by the validator, the orchestrator and the stores."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


# --- Spreadsheet input ---

@dataclass(slots=True)
class RawRow:
    """Positional cell values for one data row."""

    row_number: int
    cells: List[str] = field(default_factory=list)

    def cell(self, index: int) -> str:
        if 0 <= index < len(self.cells):
            return self.cells[index]
        return ""


@dataclass(slots=True)
class SheetData:
    """First sheet of an uploaded workbook."""

    headers: List[str]
    rows: List[RawRow] = field(default_factory=list)
    file_name: str = ""
    file_size: int = 0


# --- Row validation ---

class IssueCode(str, Enum):
    REQUIRED = "required"
    INVALID_PHONE = "invalid_phone"
    DUPLICATE_IN_FILE = "duplicate_in_file"
    ALREADY_EXISTS = "already_exists"
    UNRESOLVED_DUPLICATE = "unresolved_duplicate"
    DO_NOT_CALL = "do_not_call"


DUPLICATE_CODES = frozenset(
    {IssueCode.DUPLICATE_IN_FILE, IssueCode.ALREADY_EXISTS, IssueCode.UNRESOLVED_DUPLICATE}
)


@dataclass(slots=True)
class RowIssue:
    code: IssueCode
    message: str


@dataclass
class ParsedContact:
    """Normalized spreadsheet row together with its validation issues."""

    row_number: int
    company: str = ""
    contact_person: str = ""
    phone: str = ""
    raw_phone: str = ""
    trade_license: str = ""
    city: str = ""
    industry: str = ""
    area: str = ""
    address: str = ""
    issues: List[RowIssue] = field(default_factory=list)
    existing_contact_id: Optional[str] = None
    owner_agent_id: Optional[str] = None
    owner_name: Optional[str] = None

    @property
    def errors(self) -> List[str]:
        return [issue.message for issue in self.issues]

    @property
    def is_valid(self) -> bool:
        return not self.issues

    @property
    def is_duplicate(self) -> bool:
        """True when the row has issues and every one of them is duplicate-type."""

        return bool(self.issues) and all(issue.code in DUPLICATE_CODES for issue in self.issues)

    @property
    def is_invalid(self) -> bool:
        return bool(self.issues) and not self.is_duplicate

    @property
    def is_committable(self) -> bool:
        """Valid rows and rows whose only problem is an existing store contact.

        A contact that already exists elsewhere is still eligible for the
        submitting agent's call list.
        """

        if self.is_valid:
            return True
        return all(issue.code is IssueCode.ALREADY_EXISTS for issue in self.issues)

    @property
    def on_dnc(self) -> bool:
        return any(issue.code is IssueCode.DO_NOT_CALL for issue in self.issues)

    def has_issue(self, code: IssueCode) -> bool:
        return any(issue.code is code for issue in self.issues)


# --- Column analysis ---

class ColumnFix(str, Enum):
    RENAME = "rename"
    REORDER = "reorder"
    MISSING = "missing"


@dataclass(slots=True)
class ColumnMismatch:
    position: int
    expected: str
    found: str
    suggested_fix: ColumnFix
    matched_at: Optional[int] = None


@dataclass
class ColumnAnalysis:
    template_version: str
    detected_columns: List[str] = field(default_factory=list)
    mismatches: List[ColumnMismatch] = field(default_factory=list)
    suggested_order: List[str] = field(default_factory=list)
    is_valid: bool = False
    can_auto_fix: bool = False


@dataclass
class UploadValidationResult:
    template_version: str
    total_entries: int = 0
    valid_entries: int = 0
    invalid_entries: int = 0
    duplicate_entries: int = 0
    contacts: List[ParsedContact] = field(default_factory=list)
    column_analysis: Optional[ColumnAnalysis] = None

    def recount(self) -> None:
        """Recompute the bucket counts from the parsed contacts."""

        self.total_entries = len(self.contacts)
        self.valid_entries = sum(1 for contact in self.contacts if contact.is_valid)
        self.duplicate_entries = sum(1 for contact in self.contacts if contact.is_duplicate)
        self.invalid_entries = self.total_entries - self.valid_entries - self.duplicate_entries

    def contact_at(self, row_number: int) -> Optional[ParsedContact]:
        for contact in self.contacts:
            if contact.row_number == row_number:
                return contact
        return None

    @property
    def schema_ok(self) -> bool:
        return self.column_analysis is None or self.column_analysis.is_valid

    @property
    def committable(self) -> List[ParsedContact]:
        return [contact for contact in self.contacts if contact.is_committable]

    @property
    def rejected(self) -> List[ParsedContact]:
        return [contact for contact in self.contacts if not contact.is_committable]

    def duplicate_owners(self) -> Dict[int, str]:
        """Map row number -> owner name for rows that already exist in the store."""

        return {
            contact.row_number: contact.owner_name or contact.owner_agent_id or "unknown"
            for contact in self.contacts
            if contact.has_issue(IssueCode.ALREADY_EXISTS)
        }


# --- Persisted records ---

class UploadStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUPPLEMENTED = "supplemented"


class CallStatus(str, Enum):
    PENDING = "pending"
    CALLED = "called"
    SKIPPED = "skipped"


@dataclass
class UploadRecord:
    agent_id: str
    file_name: str
    file_size: int = 0
    template_version: str = ""
    total_entries: int = 0
    valid_entries: int = 0
    invalid_entries: int = 0
    duplicate_entries: int = 0
    approved_count: int = 0
    status: UploadStatus = UploadStatus.PENDING
    list_date: Optional[date] = None
    uploaded_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    id: Optional[str] = None


@dataclass
class MasterContact:
    phone: str
    company: str = ""
    contact_person: str = ""
    trade_license: str = ""
    city: str = ""
    industry: str = ""
    area: str = ""
    address: str = ""
    first_uploaded_by: Optional[str] = None
    current_owner_agent_id: Optional[str] = None
    created_at: Optional[datetime] = None
    status: str = "new"
    id: Optional[str] = None


class InvalidTransition(ValueError):
    """Raised when a call-list entry is moved out of a terminal status."""


@dataclass
class CallListEntry:
    agent_id: str
    contact_id: str
    list_date: date
    call_order: int
    upload_id: Optional[str] = None
    status: CallStatus = CallStatus.PENDING
    has_feedback: bool = False
    id: Optional[str] = None

    def transition(self, status: CallStatus) -> None:
        """Move a pending entry to ``called`` or ``skipped``."""

        status = CallStatus(status)
        if self.status is not CallStatus.PENDING or status is CallStatus.PENDING:
            raise InvalidTransition(f"Cannot move call-list entry from {self.status.value} to {status.value}")
        self.status = status

    @property
    def is_protected(self) -> bool:
        return self.status is CallStatus.CALLED or self.has_feedback


@dataclass
class RejectionRecord:
    upload_id: str
    row_number: int
    reason: str
    company: Optional[str] = None
    phone: Optional[str] = None
    id: Optional[str] = None


@dataclass
class AuditEntry:
    timestamp: datetime
    level: str
    stage: str
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)


__all__ = [
    "AuditEntry",
    "CallListEntry",
    "CallStatus",
    "ColumnAnalysis",
    "ColumnFix",
    "ColumnMismatch",
    "DUPLICATE_CODES",
    "InvalidTransition",
    "IssueCode",
    "MasterContact",
    "ParsedContact",
    "RawRow",
    "RejectionRecord",
    "RowIssue",
    "SheetData",
    "UploadRecord",
    "UploadStatus",
    "UploadValidationResult",
]
