"""Workbook host contract and the openpyxl-backed implementation."""

from sheettree.host.base import (
    SheetAdded,
    SheetDeleted,
    SheetInfo,
    SheetRenamed,
    SheetVisibility,
    WorkbookService,
)
from sheettree.host.xlsx import XlsxWorkbook, validate_sheet_name

__all__ = [
    "SheetAdded",
    "SheetDeleted",
    "SheetInfo",
    "SheetRenamed",
    "SheetVisibility",
    "WorkbookService",
    "XlsxWorkbook",
    "validate_sheet_name",
]
