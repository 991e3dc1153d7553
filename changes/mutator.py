"""
SheetMutator — applies structured changes to one normalized sheet.

Used directly for sheets that are not open in the grid, and by
``SheetGrid`` for the active sheet, so both paths share one set of
semantics.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

from changes import structure
from dto.changes import (
    ApplyFormulaToRangeChange,
    ApplyReport,
    Change,
    DeleteColumnChange,
    DeleteRowChange,
    InsertColumnChange,
    InsertRowChange,
    SetCellValueChange,
    SetFormulaChange,
    SkippedChange,
)
from dto.workbook import SheetData, WorkbookData
from utils.references import (
    coerce_cell_value,
    column_to_index,
    coord,
    ensure_formula,
    parse_cell,
    parse_range,
    translate_formula,
)

logger = logging.getLogger(__name__)


class SheetMutator:
    """
    Applies ``Change`` objects to a ``SheetData`` in place.

    Usage::

        mutator = SheetMutator(sheet, workbook)
        report = mutator.apply_all(enumerate(changes))
    """

    def __init__(self, sheet: SheetData, workbook: Optional[WorkbookData] = None):
        self._sheet = sheet
        self._workbook = workbook

    def apply_all(self, changes: Iterable[Tuple[int, Change]]) -> ApplyReport:
        """Apply changes in order, skipping (and reporting) the ones that fail."""
        report = ApplyReport()
        for index, change in changes:
            try:
                self.apply(change)
                report.applied += 1
            except ValueError as exc:
                logger.warning(
                    "  [Mutator] Skipping %s on '%s': %s",
                    change.type,
                    self._sheet.name,
                    exc,
                )
                report.skipped.append(
                    SkippedChange(index=index, change_type=change.type, reason=str(exc))
                )
        return report

    def apply(self, change: Change) -> None:
        if isinstance(change, SetCellValueChange):
            self.set_cell_value(change.cell, change.value)
        elif isinstance(change, SetFormulaChange):
            self.set_formula(change.cell, change.formula)
        elif isinstance(change, InsertColumnChange):
            self.insert_column(change.after_column, change.header)
        elif isinstance(change, InsertRowChange):
            self.insert_row(change.after_row)
        elif isinstance(change, ApplyFormulaToRangeChange):
            self.apply_formula_to_range(change.range, change.formula)
        elif isinstance(change, DeleteColumnChange):
            self.delete_column(change.column)
        elif isinstance(change, DeleteRowChange):
            self.delete_row(change.row)
        else:
            raise ValueError(f"Unsupported change type: {type(change).__name__}")

    # ------------------------------------------------------------------
    # Cell writes
    # ------------------------------------------------------------------

    def set_cell_value(self, cell: str, value) -> None:
        row, col = parse_cell(cell)
        if isinstance(value, str) and value.startswith("=") and len(value) > 1:
            structure.write_formula(self._sheet, row, col, value)
            return
        structure.write_cell(self._sheet, row, col, coerce_cell_value(value))

    def set_formula(self, cell: str, formula: str) -> None:
        if not formula or not formula.strip().lstrip("="):
            raise ValueError(f"Empty formula for {cell}")
        row, col = parse_cell(cell)
        structure.write_formula(self._sheet, row, col, ensure_formula(formula))

    def apply_formula_to_range(self, cell_range: str, formula: str) -> List[str]:
        """
        Fill *formula* over the range, Excel fill-style: the top-left cell
        gets it verbatim and every other cell a copy whose relative
        references moved by the cell's offset.
        """
        if not formula or not formula.strip().lstrip("="):
            raise ValueError(f"Empty formula for {cell_range}")
        (r1, c1), (r2, c2) = parse_range(cell_range)
        formula = ensure_formula(formula)
        origin = coord(r1, c1)
        written = []
        for r in range(r1, r2 + 1):
            for c in range(c1, c2 + 1):
                target = coord(r, c)
                text = formula if target == origin else translate_formula(formula, origin, target)
                structure.write_formula(self._sheet, r, c, text)
                written.append(target)
        return written

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def insert_row(self, after_row: int) -> None:
        """New blank row directly below 1-indexed *after_row* (0 = top)."""
        if after_row < 0:
            raise ValueError(f"Invalid row number: {after_row}")
        structure.insert_rows(self._sheet, after_row, 1, self._workbook)

    def insert_column(self, after_column: str, header: Optional[str] = None) -> None:
        at = column_to_index(after_column) + 1
        structure.insert_cols(self._sheet, at, 1, self._workbook)
        if header:
            structure.write_cell(self._sheet, 0, at, header)

    def delete_row(self, row: int) -> None:
        if row < 1:
            raise ValueError(f"Invalid row number: {row}")
        structure.delete_rows(self._sheet, row - 1, 1, self._workbook)

    def delete_column(self, column: str) -> None:
        structure.delete_cols(self._sheet, column_to_index(column), 1, self._workbook)
