"""
Workbook exporter — turns ``WorkbookData`` back into .xlsx bytes.

Two strategies:

  * ``build_workbook``  – a fresh workbook written from the normalized data
                          (values, formulas, sizing, merges, validations,
                          named ranges).  Styles are not carried.
  * ``patch_workbook``  – loads the original upload and writes only what
                          changed, so styles, charts, comments and anything
                          else the normalized model does not describe
                          survive untouched.

``export_workbook`` prefers patching and falls back to a fresh build.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import openpyxl
from openpyxl import Workbook
from openpyxl.cell.cell import MergedCell
from openpyxl.utils import get_column_letter
from openpyxl.workbook.defined_name import DefinedName
from openpyxl.worksheet.datavalidation import DataValidation
from openpyxl.worksheet.dimensions import ColumnDimension
from openpyxl.worksheet.worksheet import Worksheet

from dto.workbook import DataValidationRule, NamedRange, SheetData, WorkbookData
from errors import WorkbookParseError
from parser import formula_text, read_col_widths, read_named_ranges, read_validations
from utils.references import parse_cell

logger = logging.getLogger(__name__)


def edited_file_name(name: Optional[str]) -> str:
    """'budget.xlsx' -> 'budget_edited.xlsx'."""
    stem = Path(name or "workbook").stem or "workbook"
    return f"{stem}_edited.xlsx"


# -------------------------------------------------------------------
# Shared helpers
# -------------------------------------------------------------------


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _cell_value(value: Any) -> Any:
    """Values openpyxl cannot store (lists, dicts, ...) are written as text."""
    if isinstance(value, (list, tuple, dict, set)):
        return str(value)
    return value


def _desired_cells(sheet: SheetData) -> Dict[Tuple[int, int], Any]:
    """1-based (row, col) -> content to write; tracked formulas win over values."""
    cells: Dict[Tuple[int, int], Any] = {}
    for r, row in enumerate(sheet.data):
        for c, value in enumerate(row):
            if not _is_blank(value):
                cells[(r + 1, c + 1)] = _cell_value(value)
    for key, formula in sheet.formulas.items():
        row, col = parse_cell(key)
        cells[(row + 1, col + 1)] = formula
    return cells


def _to_data_validation(rule: DataValidationRule) -> DataValidation:
    formula1 = rule.formula1
    if formula1 is None and rule.choices:
        formula1 = '"' + ",".join(rule.choices) + '"'
    dv = DataValidation(
        type=rule.type,
        operator=rule.operator,
        formula1=formula1,
        formula2=rule.formula2,
        allow_blank=rule.allow_blank,
        showDropDown=rule.show_dropdown,
        showErrorMessage=True,
        showInputMessage=bool(rule.prompt),
        errorTitle=rule.error_title,
        error=rule.error,
        promptTitle=rule.prompt_title,
        prompt=rule.prompt,
    )
    dv.sqref = " ".join(rule.ranges)
    return dv


def _write_named_range(wb: Workbook, named: NamedRange) -> None:
    dn = DefinedName(name=named.name, attr_text=named.ref)
    if named.local_sheet and named.local_sheet in wb.sheetnames:
        wb[named.local_sheet].defined_names.add(dn)
    else:
        wb.defined_names.add(dn)


def _save(wb: Workbook) -> bytes:
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


# -------------------------------------------------------------------
# Fresh build
# -------------------------------------------------------------------


def _fill_sheet(ws: Worksheet, sheet: SheetData) -> None:
    for (row, col), value in _desired_cells(sheet).items():
        ws.cell(row=row, column=col, value=value)

    for i, width in enumerate(sheet.col_widths):
        if width is not None:
            ws.column_dimensions[get_column_letter(i + 1)].width = width
    for i, height in enumerate(sheet.row_heights):
        if height is not None:
            ws.row_dimensions[i + 1].height = height

    for ref in sheet.merges:
        ws.merge_cells(ref)
    for rule in sheet.validations:
        ws.add_data_validation(_to_data_validation(rule))


def build_workbook(workbook: WorkbookData) -> bytes:
    """Write a brand-new .xlsx from the normalized model."""
    wb = Workbook()
    wb.remove(wb.active)
    for sheet in workbook.sheets:
        _fill_sheet(wb.create_sheet(title=sheet.name), sheet)
    if not wb.worksheets:
        wb.create_sheet(title="Sheet1")

    for named in workbook.named_ranges:
        _write_named_range(wb, named)

    if 0 <= workbook.active_sheet < len(wb.worksheets):
        wb.active = workbook.active_sheet
    logger.info("  [Export] Built fresh workbook with %d sheet(s)", len(wb.worksheets))
    return _save(wb)


# -------------------------------------------------------------------
# Patch original bytes
# -------------------------------------------------------------------


def _current_content(value: Any) -> Any:
    formula = formula_text(value)
    return formula if formula is not None else value


def _patch_cells(ws: Worksheet, sheet: SheetData) -> int:
    desired = _desired_cells(sheet)
    written = 0

    existing = {
        (cell.row, cell.column): cell
        for row in ws.iter_rows()
        for cell in row
        if cell.value is not None and not isinstance(cell, MergedCell)
    }
    for key, cell in existing.items():
        if key not in desired:
            cell.value = None
            written += 1

    for (row, col), value in desired.items():
        cell = existing.get((row, col))
        if cell is not None and _current_content(cell.value) == value:
            continue
        target = ws.cell(row=row, column=col)
        if isinstance(target, MergedCell):
            continue
        target.value = value
        written += 1
    return written


def _patch_merges(ws: Worksheet, sheet: SheetData) -> None:
    current = {str(mr.coord) for mr in ws.merged_cells.ranges}
    target = set(sheet.merges)
    for ref in current - target:
        ws.unmerge_cells(ref)
    for ref in sorted(target - current):
        ws.merge_cells(ref)


def _patch_validations(ws: Worksheet, sheet: SheetData) -> None:
    current = [rule.model_dump() for rule in read_validations(ws)]
    if current == [rule.model_dump() for rule in sheet.validations]:
        return
    ws.data_validations.dataValidation = []
    for rule in sheet.validations:
        ws.add_data_validation(_to_data_validation(rule))


def _split_column_dimensions(ws: Worksheet) -> None:
    """Give every column in a grouped ``<col min max>`` entry its own dimension."""
    for dim in list(ws.column_dimensions.values()):
        if not dim.min or not dim.max or dim.max <= dim.min:
            continue
        for col in range(dim.min + 1, dim.max + 1):
            ws.column_dimensions[get_column_letter(col)] = ColumnDimension(
                ws,
                index=get_column_letter(col),
                width=dim.width,
                hidden=dim.hidden,
                outlineLevel=dim.outlineLevel,
                collapsed=dim.collapsed,
            )
        dim.max = dim.min


def _patch_sizes(ws: Worksheet, sheet: SheetData) -> None:
    count = max(len(sheet.col_widths), ws.max_column or 0)
    current = read_col_widths(ws, count)
    target = list(sheet.col_widths)
    while target and target[-1] is None:
        target.pop()
    if current != target:
        _split_column_dimensions(ws)
        for i in range(max(len(current), len(target))):
            width = target[i] if i < len(target) else None
            letter = get_column_letter(i + 1)
            if width is not None:
                ws.column_dimensions[letter].width = width
            elif letter in ws.column_dimensions:
                del ws.column_dimensions[letter]

    rows = max(len(sheet.row_heights), max(ws.row_dimensions.keys(), default=0))
    for i in range(rows):
        height = sheet.row_heights[i] if i < len(sheet.row_heights) else None
        current_height = ws.row_dimensions[i + 1].height if (i + 1) in ws.row_dimensions else None
        if current_height != height:
            ws.row_dimensions[i + 1].height = height


def _patch_named_ranges(wb: Workbook, named_ranges: List[NamedRange]) -> None:
    current = {(n.name, n.local_sheet): n.ref for n in read_named_ranges(wb)}
    target = {(n.name, n.local_sheet): n for n in named_ranges}

    for name, local_sheet in current:
        if (name, local_sheet) in target:
            continue
        scope = wb[local_sheet].defined_names if local_sheet else wb.defined_names
        del scope[name]

    for key, named in target.items():
        if current.get(key) == named.ref:
            continue
        scope = (
            wb[named.local_sheet].defined_names
            if named.local_sheet and named.local_sheet in wb.sheetnames
            else wb.defined_names
        )
        if named.name in scope:
            del scope[named.name]
        _write_named_range(wb, named)


def patch_workbook(original: bytes, workbook: WorkbookData) -> bytes:
    """
    Apply the normalized model onto the original file bytes.

    Only cells whose content differs are written, so untouched cells keep
    their styles exactly.  Merges, validations, sizes and named ranges are
    rewritten only when they differ from what the file already has.
    Sheets that the original does not have are appended.
    """
    keep_vba = workbook.file_name.lower().endswith(".xlsm")
    try:
        wb = openpyxl.load_workbook(io.BytesIO(original), keep_vba=keep_vba, keep_links=True)
    except Exception as exc:
        raise WorkbookParseError(f"Could not reopen original workbook: {exc}") from exc

    for sheet in workbook.sheets:
        if sheet.name in wb.sheetnames and isinstance(wb[sheet.name], Worksheet):
            ws = wb[sheet.name]
            _patch_merges(ws, sheet)
            written = _patch_cells(ws, sheet)
            _patch_validations(ws, sheet)
            _patch_sizes(ws, sheet)
            logger.info("  [Export] Patched '%s': %d cell(s) written", sheet.name, written)
        else:
            _fill_sheet(wb.create_sheet(title=sheet.name), sheet)
            logger.info("  [Export] Appended new sheet '%s'", sheet.name)

    _patch_named_ranges(wb, workbook.named_ranges)
    return _save(wb)


def export_workbook(
    workbook: WorkbookData,
    original: Optional[bytes] = None,
    fresh: bool = False,
) -> bytes:
    """Patch *original* when available (and not *fresh*), otherwise build anew."""
    if original and not fresh:
        try:
            return patch_workbook(original, workbook)
        except Exception:
            logger.warning(
                "  [Export] Patching the original file failed, building a fresh workbook",
                exc_info=True,
            )
    return build_workbook(workbook)
