"""Column layout analysis against a required template."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from rapidfuzz.distance import Levenshtein

from .errors import SchemaError
from .models import ColumnAnalysis, ColumnFix, ColumnMismatch, RawRow, SheetData
from .templates import TemplateDescriptor, TemplateField, normalize_column_name

LOGGER = logging.getLogger(__name__)

MISSING_LABEL = "(missing)"
# Shorter first tokens ("a", "tl") occur inside almost every field name.
_MIN_HEAD_LENGTH = 3


def analyze_columns(
    headers: Sequence[str],
    template: TemplateDescriptor,
    *,
    max_edit_distance: int = 3,
) -> ColumnAnalysis:
    """Compare ``headers`` position by position with ``template``.

    Every template field is checked at its expected position. A field found
    elsewhere in the header is a ``reorder``; a header close to the expected
    name is a ``rename``; anything else is ``missing``.
    """

    original = [str(header or "").strip() for header in headers]
    normalized = [normalize_column_name(header) for header in original]

    mismatches: List[ColumnMismatch] = []
    suggested_order: List[str] = []

    for index, template_field in enumerate(template.fields):
        actual = normalized[index] if index < len(normalized) else ""
        actual_display = original[index] if index < len(original) and original[index] else MISSING_LABEL

        if template_field.matches(actual):
            suggested_order.append(original[index])
            continue

        found_at = _find_field(normalized, template_field)
        if found_at is not None:
            mismatches.append(
                ColumnMismatch(
                    position=index + 1,
                    expected=template_field.display_name,
                    found=actual_display,
                    suggested_fix=ColumnFix.REORDER,
                    matched_at=found_at + 1,
                )
            )
            suggested_order.append(original[found_at])
            continue

        fix = ColumnFix.RENAME if _looks_similar(actual, template_field, max_edit_distance) else ColumnFix.MISSING
        mismatches.append(
            ColumnMismatch(
                position=index + 1,
                expected=template_field.display_name,
                found=actual_display,
                suggested_fix=fix,
            )
        )
        suggested_order.append(template_field.display_name)

    all_present = all(_find_field(normalized, template_field) is not None for template_field in template.fields)
    analysis = ColumnAnalysis(
        template_version=template.version,
        detected_columns=original[: template.width],
        mismatches=mismatches,
        suggested_order=suggested_order,
        is_valid=not mismatches,
        can_auto_fix=all_present and all(m.suggested_fix is ColumnFix.REORDER for m in mismatches),
    )

    if len(original) < template.width:
        # Too few physical columns: nothing can be parsed or reordered.
        analysis.mismatches = [
            ColumnMismatch(
                position=index + 1,
                expected=template_field.display_name,
                found=original[index] if index < len(original) and original[index] else MISSING_LABEL,
                suggested_fix=ColumnFix.MISSING,
            )
            for index, template_field in enumerate(template.fields)
        ]
        analysis.is_valid = False
        analysis.can_auto_fix = False

    if not analysis.is_valid:
        LOGGER.info(
            "Column layout does not match template %s: %s mismatch(es), auto-fixable=%s",
            template.version,
            len(analysis.mismatches),
            analysis.can_auto_fix,
        )
    return analysis


def apply_suggested_order(sheet: SheetData, analysis: ColumnAnalysis) -> SheetData:
    """Return a copy of ``sheet`` with its columns moved into template order.

    Only reorder-only analyses can be applied; columns beyond the template
    keep their relative order after the required ones.
    """

    if analysis.is_valid:
        return sheet
    if not analysis.can_auto_fix:
        raise SchemaError("Column layout cannot be fixed by reordering", analysis)

    headers = [str(header or "").strip() for header in sheet.headers]
    permutation: List[int] = []
    for position, name in enumerate(analysis.suggested_order):
        index = _index_of(headers, name, exclude=permutation)
        if index is None:
            raise SchemaError(f"Column '{name}' disappeared from the sheet", analysis)
        permutation.append(index)
    permutation.extend(index for index in range(len(headers)) if index not in permutation)

    return SheetData(
        headers=[sheet.headers[index] for index in permutation],
        rows=[RawRow(row.row_number, [row.cell(index) for index in permutation]) for row in sheet.rows],
        file_name=sheet.file_name,
        file_size=sheet.file_size,
    )


def _find_field(normalized: Sequence[str], template_field: TemplateField) -> Optional[int]:
    for index, name in enumerate(normalized):
        if template_field.matches(name):
            return index
    return None


def _index_of(headers: Sequence[str], name: str, *, exclude: Sequence[int]) -> Optional[int]:
    for index, header in enumerate(headers):
        if index not in exclude and header == name:
            return index
    return None


def _looks_similar(actual: str, template_field: TemplateField, max_edit_distance: int) -> bool:
    if not actual:
        return False
    actual_head = _significant_head(actual)
    for candidate in template_field.accepted_names:
        candidate_head = _significant_head(candidate)
        if (candidate_head and candidate_head in actual) or (actual_head and actual_head in candidate):
            return True
        if Levenshtein.distance(actual, candidate, score_cutoff=max_edit_distance) <= max_edit_distance:
            return True
    return False


def _significant_head(name: str) -> str:
    head = name.split("_")[0]
    return head if len(head) >= _MIN_HEAD_LENGTH else ""


__all__ = ["MISSING_LABEL", "analyze_columns", "apply_suggested_order"]
