"""
Row/column surgery on a normalized ``SheetData``.

Inserting or deleting rows and columns has to keep every representation
of the sheet aligned: the value grid, the formula map (keys *and* the
references inside each formula), merges, data-validation targets and
row/column sizing.  Formulas on other sheets that point at the edited
sheet, and workbook named ranges, are rewritten too when a workbook is
given.

All indices taken by the public functions are 0-based.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from dto.workbook import SheetData, WorkbookData
from utils.references import (
    coord,
    parse_cell,
    shift_formula,
    shift_index,
    shift_range_ref,
)

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Grid sizing
# ------------------------------------------------------------------

def grid_width(sheet: SheetData) -> int:
    return max((len(row) for row in sheet.data), default=0)


def ensure_size(sheet: SheetData, rows: int, cols: int) -> None:
    """Grow the grid (never shrink it) and square up ragged rows."""
    width = max(cols, grid_width(sheet))
    for row in sheet.data:
        if len(row) < width:
            row.extend([None] * (width - len(row)))
    while len(sheet.data) < rows:
        sheet.data.append([None] * width)


def write_cell(sheet: SheetData, row: int, col: int, value: Any) -> None:
    """Write a plain value, dropping any formula tracked for the cell."""
    ensure_size(sheet, row + 1, col + 1)
    sheet.data[row][col] = value
    sheet.formulas.pop(coord(row, col), None)


def write_formula(sheet: SheetData, row: int, col: int, formula: str) -> None:
    """Track *formula* for the cell; the grid holds the text until evaluated."""
    ensure_size(sheet, row + 1, col + 1)
    sheet.data[row][col] = formula
    sheet.formulas[coord(row, col)] = formula


# ------------------------------------------------------------------
# Structural edits
# ------------------------------------------------------------------

def insert_rows(
    sheet: SheetData, at: int, count: int = 1, workbook: Optional[WorkbookData] = None
) -> None:
    """Insert *count* blank rows so the first one ends up at index *at*."""
    ensure_size(sheet, at, 0)
    width = grid_width(sheet)
    sheet.data[at:at] = [[None] * width for _ in range(count)]
    _shift_layout(sheet, "row", at + 1, count, workbook)


def delete_rows(
    sheet: SheetData, at: int, count: int = 1, workbook: Optional[WorkbookData] = None
) -> None:
    del sheet.data[at:at + count]
    _shift_layout(sheet, "row", at + 1, -count, workbook)


def insert_cols(
    sheet: SheetData, at: int, count: int = 1, workbook: Optional[WorkbookData] = None
) -> None:
    """Insert *count* blank columns so the first one ends up at index *at*."""
    ensure_size(sheet, 0, at)
    for row in sheet.data:
        row[at:at] = [None] * count
    _shift_layout(sheet, "col", at + 1, count, workbook)


def delete_cols(
    sheet: SheetData, at: int, count: int = 1, workbook: Optional[WorkbookData] = None
) -> None:
    for row in sheet.data:
        del row[at:at + count]
    _shift_layout(sheet, "col", at + 1, -count, workbook)


# ------------------------------------------------------------------
# Layout bookkeeping
# ------------------------------------------------------------------

def _shift_sizes(sizes: List[Optional[float]], at: int, delta: int) -> None:
    """*at* is 0-based here; sizes past the list end are implicit ``None``."""
    if at >= len(sizes):
        return
    if delta > 0:
        sizes[at:at] = [None] * delta
    else:
        del sizes[at:at - delta]


def _shift_formula_map(sheet: SheetData, axis: str, at: int, delta: int) -> None:
    shifted = {}
    for key, formula in sheet.formulas.items():
        row, col = parse_cell(key)
        index = row + 1 if axis == "row" else col + 1
        new_index = shift_index(index, at, delta)
        if new_index is None:
            continue
        if axis == "row":
            row = new_index - 1
        else:
            col = new_index - 1
        new_formula = shift_formula(formula, axis, at, delta, sheet.name)
        new_key = coord(row, col)
        shifted[new_key] = new_formula
        # The grid may hold the formula text inline at its (moved) cell.
        if row < len(sheet.data) and col < len(sheet.data[row]):
            if sheet.data[row][col] == formula:
                sheet.data[row][col] = new_formula
    sheet.formulas = shifted


def _shift_layout(
    sheet: SheetData,
    axis: str,
    at: int,
    delta: int,
    workbook: Optional[WorkbookData],
) -> None:
    _shift_formula_map(sheet, axis, at, delta)

    sheet.merges = [
        m for m in (shift_range_ref(ref, axis, at, delta) for ref in sheet.merges) if m
    ]

    kept = []
    for rule in sheet.validations:
        rule.ranges = [
            r for r in (shift_range_ref(ref, axis, at, delta) for ref in rule.ranges) if r
        ]
        if rule.ranges:
            kept.append(rule)
    sheet.validations = kept

    _shift_sizes(sheet.row_heights if axis == "row" else sheet.col_widths, at - 1, delta)

    if workbook is not None:
        _shift_external_references(sheet.name, axis, at, delta, workbook)


def _shift_external_references(
    sheet_name: str, axis: str, at: int, delta: int, workbook: WorkbookData
) -> None:
    """Rewrite other sheets' formulas and named ranges that target *sheet_name*."""
    for other in workbook.sheets:
        if other.name == sheet_name:
            continue
        for key, formula in list(other.formulas.items()):
            new_formula = shift_formula(
                formula, axis, at, delta, sheet_name, own_sheet=False
            )
            if new_formula == formula:
                continue
            other.formulas[key] = new_formula
            row, col = parse_cell(key)
            if row < len(other.data) and col < len(other.data[row]):
                if other.data[row][col] == formula:
                    other.data[row][col] = new_formula
            logger.debug("  [Structure] Rewrote %s!%s -> %s", other.name, key, new_formula)

    for named in workbook.named_ranges:
        new_ref = shift_formula(
            f"={named.ref}", axis, at, delta, sheet_name, own_sheet=False
        )[1:]
        if new_ref != named.ref:
            logger.debug("  [Structure] Named range %s -> %s", named.name, new_ref)
            named.ref = new_ref
