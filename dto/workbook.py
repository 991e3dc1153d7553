"""
Normalized in-memory workbook model.

    WorkbookData
      ├─ named_ranges: List[NamedRange]
      └─ sheets: List[SheetData]
           ├─ data: 2D list of cell values (row-major, 0-based)
           ├─ formulas: {"E2": "=C2*D2"}
           ├─ merges / col_widths / row_heights
           └─ validations: List[DataValidationRule]

Formula cells keep their last computed value in ``data`` and the formula
text in ``formulas``; the formula map is authoritative on export.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class DataValidationRule(BaseModel):
    ranges: List[str]  # e.g. ["B2:B100", "D5"]
    type: Optional[str] = None  # list, whole, decimal, date, custom, ...
    operator: Optional[str] = None
    formula1: Optional[str] = None
    formula2: Optional[str] = None
    choices: Optional[List[str]] = None  # inline list items for dropdowns
    allow_blank: bool = True
    show_dropdown: bool = False  # openpyxl semantics: True hides the arrow
    error_title: Optional[str] = None
    error: Optional[str] = None
    prompt_title: Optional[str] = None
    prompt: Optional[str] = None


class NamedRange(BaseModel):
    name: str
    ref: str  # e.g. "Sheet1!$A$1:$A$10"
    local_sheet: Optional[str] = None  # set for sheet-scoped names


class SheetData(BaseModel):
    name: str
    data: List[List[Any]] = []
    formulas: Dict[str, str] = {}
    merges: List[str] = []
    col_widths: List[Optional[float]] = []  # Excel character units
    row_heights: List[Optional[float]] = []  # points
    validations: List[DataValidationRule] = []


class WorkbookData(BaseModel):
    file_name: str = "workbook.xlsx"
    sheets: List[SheetData] = []
    named_ranges: List[NamedRange] = []
    active_sheet: int = 0
