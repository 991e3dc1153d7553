"""
Change applicator — routes a list of structured changes to the right sheet.

Changes aimed at the active sheet go through its live ``SheetGrid`` (when
one is open) so the grid's formula bookkeeping stays authoritative; changes
for any other sheet are applied straight to the normalized ``SheetData``
and that sheet's cached values are recomputed afterwards.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

from changes.mutator import SheetMutator
from dto.changes import ApplyReport, Change, SkippedChange
from dto.workbook import SheetData, WorkbookData

if TYPE_CHECKING:
    from grid.sheet_grid import SheetGrid

logger = logging.getLogger(__name__)


def find_sheet(workbook: WorkbookData, name: Optional[str]) -> Optional[int]:
    """Index of the sheet called *name* (exact match first, then case-insensitive)."""
    if name is None:
        return None
    for i, sheet in enumerate(workbook.sheets):
        if sheet.name == name:
            return i
    for i, sheet in enumerate(workbook.sheets):
        if sheet.name.lower() == name.lower():
            return i
    return None


def _group_by_sheet(
    workbook: WorkbookData, changes: Sequence[Change], active_sheet: int
) -> Tuple[Dict[int, List[Tuple[int, Change]]], List[SkippedChange]]:
    groups: Dict[int, List[Tuple[int, Change]]] = {}
    skipped: List[SkippedChange] = []
    for index, change in enumerate(changes):
        if change.sheet is None:
            target = active_sheet
        else:
            target = find_sheet(workbook, change.sheet)
        if target is None or not 0 <= target < len(workbook.sheets):
            logger.warning("  [Applicator] Unknown sheet %r for %s", change.sheet, change.type)
            skipped.append(
                SkippedChange(
                    index=index,
                    change_type=change.type,
                    reason=f"Unknown sheet: {change.sheet}",
                )
            )
            continue
        groups.setdefault(target, []).append((index, change))
    return groups, skipped


def _refresh_values(sheet: SheetData, workbook: WorkbookData) -> None:
    """Recompute cached formula results of a sheet that has no live grid."""
    from grid.sheet_grid import SheetGrid

    sheet.data = SheetGrid(sheet, workbook).get_data()


def apply_changes(
    workbook: WorkbookData,
    changes: Sequence[Change],
    active_sheet: Optional[int] = None,
    grid: Optional["SheetGrid"] = None,
) -> ApplyReport:
    """
    Apply *changes* in order and return what was applied and skipped.

    Changes without a ``sheet`` go to *active_sheet* (the workbook's own
    ``active_sheet`` when not given).  When *grid* is the live grid of the
    active sheet, that sheet's changes are applied through it and the
    workbook copy of the sheet is left for the caller to flush.
    """
    if active_sheet is None:
        active_sheet = workbook.active_sheet

    groups, skipped = _group_by_sheet(workbook, changes, active_sheet)
    report = ApplyReport(skipped=skipped)

    # Edits on other sheets must see (and rewrite) the grid's live copy of
    # the active sheet, not the stale one in the workbook.
    view = workbook
    if grid is not None and 0 <= active_sheet < len(workbook.sheets):
        sheets = list(workbook.sheets)
        sheets[active_sheet] = grid.sheet
        view = workbook.model_copy(update={"sheets": sheets})

    for sheet_index, numbered in groups.items():
        sheet = view.sheets[sheet_index]
        if grid is not None and sheet_index == active_sheet:
            indexes = [i for i, _ in numbered]
            report.merge(grid.apply_changes([c for _, c in numbered], indexes))
            continue
        sheet_report = SheetMutator(sheet, view).apply_all(numbered)
        _refresh_values(sheet, view)
        logger.info(
            "  [Applicator] Applied %d change(s) to '%s' (%d skipped)",
            sheet_report.applied,
            sheet.name,
            len(sheet_report.skipped),
        )
        report.merge(sheet_report)

    report.skipped.sort(key=lambda s: s.index)
    return report
