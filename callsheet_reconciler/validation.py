"""Per-row validation and duplicate / do-not-call classification."""
from __future__ import annotations

import logging
import string
from typing import List, Optional, Set

from .config import PipelineConfig
from .errors import EmptySheetError
from .models import IssueCode, ParsedContact, RowIssue, SheetData, UploadValidationResult
from .phone import deep_clean_phone, is_valid_phone, normalize_phone
from .resolver import DuplicateResolver, PhoneSnapshot
from .schema import analyze_columns
from .templates import TemplateDescriptor

LOGGER = logging.getLogger(__name__)

DUPLICATE_IN_FILE = "Duplicate in this file"
ALREADY_EXISTS = "Already exists in database"
UNRESOLVED_DUPLICATE = "Could not verify whether this number already exists"
INVALID_PHONE = "Invalid phone number format"
DO_NOT_CALL = "Number is on Do Not Call list"

_TEXT_TARGETS = ("company", "contact_person", "trade_license", "city", "industry", "area", "address")
_NAME_TARGETS = ("company", "contact_person", "city", "area")


class RowValidator:
    """Turns raw rows into :class:`ParsedContact` objects for one template."""

    def __init__(self, template: TemplateDescriptor, config: Optional[PipelineConfig] = None) -> None:
        self.template = template
        self.config = config or PipelineConfig(template_version=template.version)

    # ------------------------------------------------------------------
    # Phones
    # ------------------------------------------------------------------
    def canonical_phone(self, raw: str) -> str:
        return normalize_phone(
            raw,
            country_code=self.config.country_code,
            mobile_prefixes=self.config.mobile_prefixes,
        )

    def candidate_phones(self, sheet: SheetData) -> List[str]:
        """Canonical phones worth looking up in the shared store."""

        index = self.template.position_of("phone")
        phones = []
        for row in sheet.rows:
            raw = row.cell(index).strip()
            if raw and is_valid_phone(raw):
                phones.append(self.canonical_phone(raw))
        return list(dict.fromkeys(phones))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate(self, sheet: SheetData, snapshot: PhoneSnapshot) -> UploadValidationResult:
        seen: Set[str] = set()
        contacts: List[ParsedContact] = []
        for data_index, row in enumerate(sheet.rows):
            contact = self._extract(row.cells, row_number=data_index + 2)
            self._check(contact, snapshot, seen)
            if contact.phone:
                seen.add(contact.phone)
            contacts.append(contact)

        result = UploadValidationResult(template_version=self.template.version, contacts=contacts)
        result.recount()
        LOGGER.info(
            "Validated %s rows: %s valid, %s invalid, %s duplicate",
            result.total_entries,
            result.valid_entries,
            result.invalid_entries,
            result.duplicate_entries,
        )
        return result

    def update_contact(
        self,
        result: UploadValidationResult,
        row_number: int,
        field_name: str,
        value: str,
        snapshot: PhoneSnapshot,
    ) -> ParsedContact:
        """Edit one field of one row and revalidate only that row."""

        contact = result.contact_at(row_number)
        if contact is None:
            raise KeyError(f"No parsed row {row_number}")
        if field_name == "phone":
            contact.raw_phone = str(value or "").strip()
        elif field_name in _TEXT_TARGETS:
            setattr(contact, field_name, str(value or "").strip())
        else:
            raise ValueError(f"Unknown contact field '{field_name}'")

        self._check(contact, snapshot, self._phones_claimed(result, row_number))
        result.recount()
        return contact

    def delete_contact(self, result: UploadValidationResult, row_number: int) -> bool:
        """Drop a row that is not valid. Valid or unknown rows are left alone."""

        contact = result.contact_at(row_number)
        if contact is None or contact.is_valid:
            return False
        result.contacts.remove(contact)
        result.recount()
        return True

    def auto_fix_contacts(self, result: UploadValidationResult, snapshot: PhoneSnapshot) -> int:
        """Best-effort cleanup of every row that is not valid.

        Returns how many rows became valid. Duplicate and do-not-call issues
        that cleanup cannot change are recomputed and therefore preserved.
        """

        fixed = 0
        for contact in result.contacts:
            if contact.is_valid:
                continue
            for target in _TEXT_TARGETS:
                value = " ".join(str(getattr(contact, target) or "").split())
                if target in _NAME_TARGETS and value.islower():
                    value = string.capwords(value)
                setattr(contact, target, value)
            if contact.raw_phone and not is_valid_phone(contact.raw_phone):
                contact.raw_phone = deep_clean_phone(contact.raw_phone)

            self._check(contact, snapshot, self._phones_claimed(result, contact.row_number))
            if contact.is_valid:
                fixed += 1

        result.recount()
        if fixed:
            LOGGER.info("Auto-fix made %s row(s) valid", fixed)
        return fixed

    # ------------------------------------------------------------------
    def _extract(self, cells: List[str], *, row_number: int) -> ParsedContact:
        contact = ParsedContact(row_number=row_number)
        for index, template_field in enumerate(self.template.fields):
            value = str(cells[index] if index < len(cells) else "").strip()
            if template_field.target == "phone":
                contact.raw_phone = value
            else:
                setattr(contact, template_field.target, value)
        return contact

    def _check(self, contact: ParsedContact, snapshot: PhoneSnapshot, seen: Set[str]) -> None:
        """Recompute every issue of ``contact`` from its current field values."""

        issues: List[RowIssue] = []
        contact.existing_contact_id = None
        contact.owner_agent_id = None
        contact.owner_name = None

        for template_field in self.template.fields:
            value = contact.raw_phone if template_field.target == "phone" else getattr(contact, template_field.target)
            if not value:
                issues.append(RowIssue(IssueCode.REQUIRED, f"{template_field.display_name} is required"))

        raw_phone = contact.raw_phone
        if raw_phone and not is_valid_phone(raw_phone):
            issues.append(RowIssue(IssueCode.INVALID_PHONE, INVALID_PHONE))

        phone = self.canonical_phone(raw_phone) if raw_phone else ""
        contact.phone = phone or raw_phone

        if phone:
            if phone in seen:
                issues.append(RowIssue(IssueCode.DUPLICATE_IN_FILE, DUPLICATE_IN_FILE))
            elif phone in snapshot.existing:
                existing = snapshot.existing[phone]
                contact.existing_contact_id = existing.contact_id
                contact.owner_agent_id = existing.owner_agent_id
                contact.owner_name = existing.owner_name
                owner = existing.owner_name or existing.owner_agent_id
                message = f"{ALREADY_EXISTS} (owned by {owner})" if owner else ALREADY_EXISTS
                issues.append(RowIssue(IssueCode.ALREADY_EXISTS, message))
            elif phone in snapshot.unresolved:
                issues.append(RowIssue(IssueCode.UNRESOLVED_DUPLICATE, UNRESOLVED_DUPLICATE))

            if phone in snapshot.dnc:
                issues.append(RowIssue(IssueCode.DO_NOT_CALL, DO_NOT_CALL))

        contact.issues = issues

    def _phones_claimed(self, result: UploadValidationResult, row_number: int) -> Set[str]:
        """Phones held by other rows: every earlier row plus later rows that are not in-file duplicates."""

        return {
            contact.phone
            for contact in result.contacts
            if contact.phone
            and contact.row_number != row_number
            and (contact.row_number < row_number or not contact.has_issue(IssueCode.DUPLICATE_IN_FILE))
        }


async def validate_upload(
    sheet: SheetData,
    resolver: DuplicateResolver,
    *,
    template: Optional[TemplateDescriptor] = None,
    config: Optional[PipelineConfig] = None,
) -> UploadValidationResult:
    """Analyze columns, look phones up in one batch and validate every row.

    A layout that does not match the template yields a result with no parsed
    contacts and the column analysis attached.
    """

    config = config or PipelineConfig()
    template = template or config.template()

    if not sheet.rows:
        raise EmptySheetError("The file appears to be empty")

    analysis = analyze_columns(sheet.headers, template, max_edit_distance=config.max_edit_distance)
    if len(sheet.headers) < template.width:
        return UploadValidationResult(template_version=template.version, column_analysis=analysis)
    if not analysis.is_valid:
        total = len(sheet.rows)
        return UploadValidationResult(
            template_version=template.version,
            total_entries=total,
            invalid_entries=total,
            column_analysis=analysis,
        )

    validator = RowValidator(template, config)
    snapshot = await resolver.snapshot(validator.candidate_phones(sheet), canonicalize=validator.canonical_phone)
    result = validator.validate(sheet, snapshot)
    result.column_analysis = analysis
    return result



__all__ = [
    "ALREADY_EXISTS",
    "DO_NOT_CALL",
    "DUPLICATE_IN_FILE",
    "INVALID_PHONE",
    "RowValidator",
    "UNRESOLVED_DUPLICATE",
    "validate_upload",
]
