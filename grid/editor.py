"""
WorkbookEditor — one open workbook: the normalized data, the original
upload bytes and a live grid for the active sheet.

Usage::

    editor = WorkbookEditor(parse_workbook(raw, "book.xlsx"), original=raw)
    editor.edit_cell("B2", 42)
    editor.apply_changes(changes)
    data = editor.export()
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional, Sequence

from changes.applicator import apply_changes
from dto.changes import ApplyReport, Change
from dto.workbook import WorkbookData
from export.exporter import edited_file_name, export_workbook
from grid.engine import FormulaEngine
from grid.sheet_grid import SheetGrid
from utils.references import parse_cell

logger = logging.getLogger(__name__)


class WorkbookEditor:
    def __init__(
        self,
        workbook: WorkbookData,
        original: Optional[bytes] = None,
        engine: Optional[FormulaEngine] = None,
    ):
        if not workbook.sheets:
            raise ValueError("Workbook has no sheets")
        self.workbook = workbook
        self.original = original
        # Held by callers that share the editor across threads (the API).
        self.lock = threading.Lock()
        self._engine = engine or FormulaEngine()
        index = workbook.active_sheet if 0 <= workbook.active_sheet < len(workbook.sheets) else 0
        self.workbook.active_sheet = index
        self.grid = SheetGrid(workbook.sheets[index], workbook, self._engine)

    @property
    def active_sheet(self) -> int:
        return self.workbook.active_sheet

    @property
    def file_name(self) -> str:
        return self.workbook.file_name

    @property
    def export_file_name(self) -> str:
        return edited_file_name(self.workbook.file_name)

    def _flush(self) -> None:
        """Write the grid's state back into the workbook."""
        self.workbook.sheets[self.active_sheet] = self.grid.to_sheet_data()

    def activate_sheet(self, index: int) -> None:
        if not 0 <= index < len(self.workbook.sheets):
            raise ValueError(f"Sheet index out of range: {index}")
        if index == self.active_sheet:
            return
        self._flush()
        self.workbook.active_sheet = index
        self.grid = SheetGrid(self.workbook.sheets[index], self.workbook, self._engine)
        logger.info("  [Editor] Active sheet -> '%s'", self.grid.name)

    def edit_cell(self, cell: str, value: Any) -> Any:
        """A user edit on the active sheet; returns the cell's new value."""
        row, col = parse_cell(cell)
        self.grid.set_data_at_cell(row, col, value, source="edit")
        return self.grid.get_cell_value(cell)

    def apply_changes(self, changes: Sequence[Change]) -> ApplyReport:
        report = apply_changes(self.workbook, changes, self.active_sheet, self.grid)
        self._flush()
        return report

    def snapshot(self) -> WorkbookData:
        """The workbook as it stands, active sheet values evaluated."""
        self._flush()
        return self.workbook.model_copy(deep=True)

    def export(self, fresh: bool = False) -> bytes:
        return export_workbook(self.snapshot(), self.original, fresh=fresh)
