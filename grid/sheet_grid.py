"""
SheetGrid — the live, editable grid for the active sheet.

The grid keeps raw cell contents (formula cells hold their ``=`` text) and
the tracked formula map in lock-step, and evaluates formulas on read
through ``FormulaEngine``.  Other sheets of the workbook are visible to
formulas via cross-sheet references.

Usage::

    grid = SheetGrid(workbook.sheets[0], workbook)
    grid.set_data_at_cell(0, 4, "=C1*D1")
    grid.get_cell_value("E1")
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from changes import structure
from changes.mutator import SheetMutator
from dto.changes import ApplyReport, Change
from dto.workbook import SheetData, WorkbookData
from errors import InvalidReferenceError
from grid.engine import CircularReferenceError, FormulaEngine, UnresolvedReferenceError
from utils.references import coord, parse_cell, parse_range

logger = logging.getLogger(__name__)

ALTER_ACTIONS = (
    "insert_row_above",
    "insert_row_below",
    "insert_col_start",
    "insert_col_end",
    "remove_row",
    "remove_col",
)


def _is_formula(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("=") and len(value) > 1


class _Evaluation:
    """One read pass: memoises results and detects reference cycles."""

    def __init__(self, grid: "SheetGrid"):
        self._grid = grid
        self._memo: Dict[Tuple[str, int, int], Any] = {}
        self._in_progress: set = set()

    def sheet_for(self, name: Optional[str]) -> Optional[SheetData]:
        own = self._grid._sheet
        if name is None or name.lower() == own.name.lower():
            return own
        workbook = self._grid._workbook
        if workbook is None:
            return None
        for sheet in workbook.sheets:
            if sheet.name.lower() == name.lower():
                return sheet
        return None

    def value(self, sheet: SheetData, row: int, col: int) -> Any:
        formula = sheet.formulas.get(coord(row, col))
        if formula is None:
            if row < len(sheet.data) and col < len(sheet.data[row]):
                return sheet.data[row][col]
            return None

        key = (sheet.name.lower(), row, col)
        if key in self._memo:
            return self._memo[key]
        if key in self._in_progress:
            raise CircularReferenceError(f"{sheet.name}!{coord(row, col)}")
        self._in_progress.add(key)
        try:
            result = self._grid._engine.evaluate(formula, _Resolver(self, sheet))
        finally:
            self._in_progress.discard(key)
        self._memo[key] = result
        return result


class _Resolver:
    """``CellResolver`` for formulas that live on *sheet*."""

    def __init__(self, evaluation: _Evaluation, sheet: SheetData):
        self._evaluation = evaluation
        self._sheet = sheet

    def _target(self, name: Optional[str]) -> SheetData:
        target = self._sheet if name is None else self._evaluation.sheet_for(name)
        if target is None:
            raise UnresolvedReferenceError(name)
        return target

    def cell_value(self, sheet: Optional[str], row: int, col: int) -> Any:
        return self._evaluation.value(self._target(sheet), row, col)

    def dimensions(self, sheet: Optional[str]) -> Tuple[int, int]:
        target = self._target(sheet)
        return len(target.data), structure.grid_width(target)

    def named_range(self, name: str) -> Optional[str]:
        workbook = self._evaluation._grid._workbook
        if workbook is None:
            return None
        fallback = None
        for named in workbook.named_ranges:
            if named.name.lower() != name.lower():
                continue
            if named.local_sheet is None:
                fallback = named.ref
            elif named.local_sheet.lower() == self._sheet.name.lower():
                return named.ref
        return fallback


class SheetGrid:
    """Editable grid for one sheet with live formula evaluation."""

    def __init__(
        self,
        sheet: SheetData,
        workbook: Optional[WorkbookData] = None,
        engine: Optional[FormulaEngine] = None,
    ):
        self._sheet = sheet.model_copy(deep=True)
        self._workbook = workbook
        self._engine = engine or FormulaEngine()

        # Raw contents: formula cells hold their text.
        tracked: Dict[str, str] = {}
        for key, formula in self._sheet.formulas.items():
            row, col = parse_cell(key)
            structure.ensure_size(self._sheet, row + 1, col + 1)
            self._sheet.data[row][col] = formula
            tracked[coord(row, col)] = formula
        self._sheet.formulas = tracked
        structure.ensure_size(self._sheet, len(self._sheet.data), structure.grid_width(self._sheet))

    @property
    def name(self) -> str:
        return self._sheet.name

    @property
    def sheet(self) -> SheetData:
        """The live sheet behind the grid (formula cells hold their text)."""
        return self._sheet

    def count_rows(self) -> int:
        return len(self._sheet.data)

    def count_cols(self) -> int:
        return structure.grid_width(self._sheet)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_data(self) -> List[List[Any]]:
        """Every cell's current value, formulas evaluated."""
        evaluation = _Evaluation(self)
        return [
            [self._read(evaluation, r, c) for c in range(len(row))]
            for r, row in enumerate(self._sheet.data)
        ]

    def get_source_data(self) -> List[List[Any]]:
        """Raw contents as typed: formula cells give their ``=`` text."""
        return [list(row) for row in self._sheet.data]

    def get_formulas(self) -> Dict[str, str]:
        return dict(self._sheet.formulas)

    def get_cell_value(self, cell: str) -> Any:
        try:
            row, col = parse_cell(cell)
        except InvalidReferenceError:
            return None
        return self._read(_Evaluation(self), row, col)

    def get_cell_range(self, cell_range: str) -> List[List[Any]]:
        try:
            (r1, c1), (r2, c2) = parse_range(cell_range)
        except InvalidReferenceError:
            return []
        evaluation = _Evaluation(self)
        return [
            [self._read(evaluation, r, c) for c in range(c1, c2 + 1)]
            for r in range(r1, r2 + 1)
        ]

    def _read(self, evaluation: _Evaluation, row: int, col: int) -> Any:
        try:
            return evaluation.value(self._sheet, row, col)
        except CircularReferenceError:
            return "#CYCLE!"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_data_at_cell(self, row: int, col: int, value: Any, source: str = "edit") -> None:
        """
        Write one cell.  A string starting with ``=`` becomes a tracked
        formula; anything else clears the formula the cell may have had.
        """
        if row < 0 or col < 0:
            raise InvalidReferenceError(f"Cell index out of range: ({row}, {col})")
        if _is_formula(value):
            structure.write_formula(self._sheet, row, col, value)
        else:
            structure.write_cell(self._sheet, row, col, value)
        logger.debug("  [Grid] %s %s <- %r", source, coord(row, col), value)

    def alter(self, action: str, index: int, amount: int = 1) -> None:
        """Structural edit at 0-based *index*, in the grid widget's vocabulary."""
        if index < 0 or amount < 1:
            raise ValueError(f"Invalid alter arguments: index={index}, amount={amount}")
        if action == "insert_row_above":
            structure.insert_rows(self._sheet, index, amount, self._workbook)
        elif action == "insert_row_below":
            structure.insert_rows(self._sheet, index + 1, amount, self._workbook)
        elif action == "insert_col_start":
            structure.insert_cols(self._sheet, index, amount, self._workbook)
        elif action == "insert_col_end":
            structure.insert_cols(self._sheet, index + 1, amount, self._workbook)
        elif action == "remove_row":
            structure.delete_rows(self._sheet, index, amount, self._workbook)
        elif action == "remove_col":
            structure.delete_cols(self._sheet, index, amount, self._workbook)
        else:
            raise ValueError(f"Unknown alter action: {action!r}")

    def apply_changes(
        self,
        changes: List[Change],
        indexes: Optional[Iterable[int]] = None,
    ) -> ApplyReport:
        """Apply structured changes in order; *indexes* label them in the report."""
        numbered = zip(indexes if indexes is not None else range(len(changes)), changes)
        report = SheetMutator(self._sheet, self._workbook).apply_all(numbered)
        logger.info(
            "  [Grid] Applied %d change(s) to '%s' (%d skipped)",
            report.applied,
            self._sheet.name,
            len(report.skipped),
        )
        return report

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def to_sheet_data(self) -> SheetData:
        """Normalized snapshot: evaluated values, formulas and layout."""
        snapshot = self._sheet.model_copy(deep=True)
        snapshot.data = self.get_data()
        return snapshot
