"""Utilities for loading call sheets from spreadsheets."""
from __future__ import annotations

import io
from pathlib import Path
from typing import Any, List, MutableMapping, Optional, Union

import pandas as pd

from ..errors import UnsupportedFileTypeError
from ..models import RawRow, SheetData

PathLike = Union[str, Path]

_CSV_SUFFIXES = {".csv", ".tsv"}
_EXCEL_SUFFIXES = {".xls", ".xlsx", ".xlsm"}


def read_sheet(
    path: PathLike,
    *,
    sheet_name: Union[str, int] = 0,
    loader_kwargs: Optional[MutableMapping[str, Any]] = None,
) -> SheetData:
    """Load the first worksheet (or ``sheet_name``) of a CSV/XLSX file.

    Every cell is read as text; blank cells become ``""`` and rows with no
    content at all are dropped. Headers pandas invents for unnamed columns
    are reported as empty strings.
    """

    path_obj = Path(path)
    dataframe = _read_dataframe(path_obj, path_obj.suffix, sheet_name=sheet_name, loader_kwargs=loader_kwargs)
    return _to_sheet(dataframe, file_name=path_obj.name, file_size=path_obj.stat().st_size)


def read_sheet_bytes(
    data: bytes,
    file_name: str,
    *,
    sheet_name: Union[str, int] = 0,
    loader_kwargs: Optional[MutableMapping[str, Any]] = None,
) -> SheetData:
    """Load an uploaded file held in memory; the format comes from ``file_name``."""

    dataframe = _read_dataframe(io.BytesIO(data), Path(file_name).suffix, sheet_name=sheet_name, loader_kwargs=loader_kwargs)
    return _to_sheet(dataframe, file_name=file_name, file_size=len(data))


def _read_dataframe(
    source: Any,
    suffix: str,
    *,
    sheet_name: Union[str, int] = 0,
    loader_kwargs: Optional[MutableMapping[str, Any]] = None,
) -> pd.DataFrame:
    loader_kwargs = dict(loader_kwargs or {})
    loader_kwargs.setdefault("dtype", str)
    loader_kwargs.setdefault("keep_default_na", False)
    suffix = suffix.lower()

    if suffix in _CSV_SUFFIXES:
        if suffix == ".tsv":
            loader_kwargs.setdefault("sep", "\t")
        return pd.read_csv(source, **loader_kwargs)

    if suffix in _EXCEL_SUFFIXES:
        engine = loader_kwargs.pop("engine", None) or "openpyxl"
        return pd.read_excel(source, sheet_name=sheet_name, engine=engine, **loader_kwargs)

    raise UnsupportedFileTypeError(f"Unsupported file extension: {suffix or '(none)'}")


def _to_sheet(dataframe: pd.DataFrame, *, file_name: str, file_size: int) -> SheetData:
    headers = [_clean_header(column) for column in dataframe.columns]
    rows: List[RawRow] = []
    for values in dataframe.itertuples(index=False, name=None):
        cells = [_clean_cell(value) for value in values]
        if not any(cell.strip() for cell in cells):
            continue
        rows.append(RawRow(row_number=len(rows) + 2, cells=cells))
    return SheetData(headers=headers, rows=rows, file_name=file_name, file_size=file_size)


def _clean_header(column: Any) -> str:
    text = str(column).strip()
    return "" if text.startswith("Unnamed:") else text


def _clean_cell(value: Any) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value)


__all__ = ["UnsupportedFileTypeError", "read_sheet", "read_sheet_bytes"]
