"""Export utilities for validation reports, rejections and call lists."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, MutableMapping, Optional, Sequence, Union

import pandas as pd

from ..models import CallListEntry, ParsedContact, RejectionRecord, UploadValidationResult

PathLike = Union[str, Path]

_REPORT_COLUMNS = [
    "row_number",
    "status",
    "company",
    "contact_person",
    "phone",
    "trade_license",
    "city",
    "industry",
    "area",
    "address",
    "errors",
    "owner",
]


def export_validation_report(
    result: UploadValidationResult,
    path: PathLike,
    *,
    only_rejected: bool = False,
    sheet_name: str = "Validation",
    exporter_kwargs: Optional[MutableMapping[str, object]] = None,
) -> Path:
    """Write one row per parsed contact to a CSV or Excel file."""

    dataframe = validation_to_dataframe(result, only_rejected=only_rejected)
    output_path = Path(path)
    _write_dataframe(dataframe, output_path, sheet_name=sheet_name, exporter_kwargs=exporter_kwargs)
    return output_path


def validation_to_dataframe(result: UploadValidationResult, *, only_rejected: bool = False) -> pd.DataFrame:
    contacts = result.rejected if only_rejected else result.contacts
    return pd.DataFrame([_contact_to_row(contact) for contact in contacts], columns=_REPORT_COLUMNS)


def export_rejections(
    records: Sequence[RejectionRecord],
    path: PathLike,
    *,
    sheet_name: str = "Rejections",
    exporter_kwargs: Optional[MutableMapping[str, object]] = None,
) -> Path:
    output_path = Path(path)
    _write_dataframe(rejections_to_dataframe(records), output_path, sheet_name=sheet_name, exporter_kwargs=exporter_kwargs)
    return output_path


def rejections_to_dataframe(records: Sequence[RejectionRecord]) -> pd.DataFrame:
    rows = [
        {
            "row_number": record.row_number,
            "company": record.company or "",
            "phone": record.phone or "",
            "reason": record.reason,
        }
        for record in sorted(records, key=lambda record: record.row_number)
    ]
    return pd.DataFrame(rows, columns=["row_number", "company", "phone", "reason"])


def export_call_list(
    entries: Sequence[CallListEntry],
    path: PathLike,
    *,
    sheet_name: str = "Call list",
    exporter_kwargs: Optional[MutableMapping[str, object]] = None,
) -> Path:
    output_path = Path(path)
    _write_dataframe(call_list_to_dataframe(entries), output_path, sheet_name=sheet_name, exporter_kwargs=exporter_kwargs)
    return output_path


def call_list_to_dataframe(entries: Sequence[CallListEntry]) -> pd.DataFrame:
    rows = [
        {
            "call_order": entry.call_order,
            "agent_id": entry.agent_id,
            "contact_id": entry.contact_id,
            "list_date": entry.list_date.isoformat(),
            "status": entry.status.value,
            "upload_id": entry.upload_id or "",
        }
        for entry in sorted(entries, key=lambda entry: entry.call_order)
    ]
    return pd.DataFrame(rows, columns=["call_order", "agent_id", "contact_id", "list_date", "status", "upload_id"])


def _contact_to_row(contact: ParsedContact) -> MutableMapping[str, object]:
    if contact.is_valid:
        status = "valid"
    elif contact.is_duplicate:
        status = "duplicate"
    else:
        status = "invalid"
    return {
        "row_number": contact.row_number,
        "status": status,
        "company": contact.company,
        "contact_person": contact.contact_person,
        "phone": contact.phone,
        "trade_license": contact.trade_license,
        "city": contact.city,
        "industry": contact.industry,
        "area": contact.area,
        "address": contact.address,
        "errors": _join_list(contact.errors),
        "owner": contact.owner_name or contact.owner_agent_id or "",
    }


def _join_list(values: Iterable[Optional[str]]) -> str:
    cleaned: List[str] = []
    for value in values:
        text = str(value or "").strip()
        if text:
            cleaned.append(text)
    return "; ".join(cleaned)


def _write_dataframe(
    dataframe: pd.DataFrame,
    path: Path,
    *,
    sheet_name: str,
    exporter_kwargs: Optional[MutableMapping[str, object]],
) -> None:
    exporter_kwargs = dict(exporter_kwargs or {})
    suffix = path.suffix.lower()
    path.parent.mkdir(parents=True, exist_ok=True)

    if suffix in {".csv", ".tsv"}:
        if suffix == ".tsv":
            exporter_kwargs.setdefault("sep", "\t")
        dataframe.to_csv(path, index=False, **exporter_kwargs)
        return

    if suffix in {".xlsx", ".xlsm"}:
        engine = exporter_kwargs.pop("engine", None) or "openpyxl"
        dataframe.to_excel(path, index=False, sheet_name=sheet_name, engine=engine, **exporter_kwargs)
        return

    raise ValueError(f"Unsupported export file extension: {suffix}")


__all__ = [
    "call_list_to_dataframe",
    "export_call_list",
    "export_rejections",
    "export_validation_report",
    "rejections_to_dataframe",
    "validation_to_dataframe",
]
