"""Reading uploaded call sheets and writing validation reports."""

from .exporters import (
    call_list_to_dataframe,
    export_call_list,
    export_rejections,
    export_validation_report,
    rejections_to_dataframe,
    validation_to_dataframe,
)
from .loaders import read_sheet, read_sheet_bytes

__all__ = [
    "call_list_to_dataframe",
    "export_call_list",
    "export_rejections",
    "export_validation_report",
    "read_sheet",
    "read_sheet_bytes",
    "rejections_to_dataframe",
    "validation_to_dataframe",
]
