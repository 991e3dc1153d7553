"""
Tools the assistant can call, and their execution against a working copy
of the workbook.

Read tools answer from the working copy (formulas evaluated).  Write tools
produce a structured ``Change`` for the client and apply that change to
the working copy too, so a later read in the same request sees it.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from changes.applicator import apply_changes, find_sheet
from dto.changes import Change, parse_changes
from dto.workbook import SheetData, WorkbookData
from errors import InvalidReferenceError
from grid.sheet_grid import SheetGrid
from utils.references import coord, parse_range

logger = logging.getLogger(__name__)

_MAX_INFO_HEADERS = 20

_SHEET_PROP = {"type": "string", "description": "The sheet name"}

TOOLS: List[Dict[str, Any]] = [
    {
        "name": "get_sheet_info",
        "description": (
            "Get information about all available sheets in the workbook, including their "
            "names, dimensions, and a preview of the header row. Call this first to "
            "understand the spreadsheet structure."
        ),
        "input_schema": {"type": "object", "properties": {}, "required": []},
    },
    {
        "name": "get_cell_range",
        "description": (
            "Read values from a range of cells. Use Excel-style notation like 'A1:D10'. "
            "Returns the values as a 2D array plus any formulas inside the range."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "sheet": {"type": "string", "description": "The sheet name to read from"},
                "range": {
                    "type": "string",
                    "description": "The cell range in Excel notation (e.g., 'A1:D10')",
                },
            },
            "required": ["sheet", "range"],
        },
    },
    {
        "name": "set_cell_value",
        "description": "Set a single cell's value. For formulas, use set_formula instead.",
        "input_schema": {
            "type": "object",
            "properties": {
                "sheet": _SHEET_PROP,
                "cell": {"type": "string", "description": "The cell reference (e.g., 'A1')"},
                "value": {"type": "string", "description": "The value to set"},
            },
            "required": ["sheet", "cell", "value"],
        },
    },
    {
        "name": "set_formula",
        "description": (
            "Set a formula in a cell. The formula should start with '=' and use Excel "
            "formula syntax."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "sheet": _SHEET_PROP,
                "cell": {"type": "string", "description": "The cell reference (e.g., 'E2')"},
                "formula": {
                    "type": "string",
                    "description": "The formula starting with '=' (e.g., '=A2*B2', '=SUM(A1:A10)')",
                },
            },
            "required": ["sheet", "cell", "formula"],
        },
    },
    {
        "name": "insert_column",
        "description": (
            "Insert a new column after a specified column. Optionally set a header value."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "sheet": _SHEET_PROP,
                "after_column": {
                    "type": "string",
                    "description": "The column letter after which to insert",
                },
                "header": {
                    "type": "string",
                    "description": "Optional header text for the new column",
                },
            },
            "required": ["sheet", "after_column"],
        },
    },
    {
        "name": "insert_row",
        "description": "Insert a new row after a specified row number.",
        "input_schema": {
            "type": "object",
            "properties": {
                "sheet": _SHEET_PROP,
                "after_row": {
                    "type": "integer",
                    "description": "The row number after which to insert (1-indexed, 0 for the top)",
                },
            },
            "required": ["sheet", "after_row"],
        },
    },
    {
        "name": "apply_formula_to_range",
        "description": (
            "Apply a formula pattern to a range of cells. The formula will be automatically "
            "adjusted for each row."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "sheet": _SHEET_PROP,
                "range": {
                    "type": "string",
                    "description": "The target range (e.g., 'E2:E100')",
                },
                "formula": {
                    "type": "string",
                    "description": "The formula pattern for the first cell",
                },
            },
            "required": ["sheet", "range", "formula"],
        },
    },
    {
        "name": "delete_column",
        "description": "Delete a column from the sheet.",
        "input_schema": {
            "type": "object",
            "properties": {
                "sheet": _SHEET_PROP,
                "column": {"type": "string", "description": "The column letter to delete"},
            },
            "required": ["sheet", "column"],
        },
    },
    {
        "name": "delete_row",
        "description": "Delete a row from the sheet.",
        "input_schema": {
            "type": "object",
            "properties": {
                "sheet": _SHEET_PROP,
                "row": {"type": "integer", "description": "The row number to delete (1-indexed)"},
            },
            "required": ["sheet", "row"],
        },
    },
]

WRITE_TOOLS = frozenset(
    {
        "set_cell_value",
        "set_formula",
        "insert_column",
        "insert_row",
        "apply_formula_to_range",
        "delete_column",
        "delete_row",
    }
)


class ToolOutcome(BaseModel):
    output: Any = None
    change: Optional[Change] = None


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    return value


def _used_size(sheet: SheetData) -> tuple:
    """(rows, cols) up to the last non-empty cell."""
    rows = cols = 0
    for r, row in enumerate(sheet.data):
        for c, value in enumerate(row):
            if value is not None and value != "":
                rows = max(rows, r + 1)
                cols = max(cols, c + 1)
    return rows, cols


def _active_index(workbook: WorkbookData) -> int:
    if 0 <= workbook.active_sheet < len(workbook.sheets):
        return workbook.active_sheet
    return 0


# -------------------------------------------------------------------
# Read tools
# -------------------------------------------------------------------


def get_sheet_info(workbook: WorkbookData) -> Dict[str, Any]:
    active = _active_index(workbook)
    sheets = []
    for i, sheet in enumerate(workbook.sheets):
        rows, cols = _used_size(sheet)
        header = sheet.data[0][:_MAX_INFO_HEADERS] if sheet.data else []
        sheets.append(
            {
                "name": sheet.name,
                "is_active": i == active,
                "rows": rows,
                "columns": cols,
                "headers": ["" if v is None else _jsonable(v) for v in header],
            }
        )
    return {"sheets": sheets}


def get_cell_range(workbook: WorkbookData, sheet_name: Optional[str], cell_range: str) -> Dict[str, Any]:
    if not workbook.sheets:
        return {"error": "Workbook has no sheets"}
    index = find_sheet(workbook, sheet_name)
    if index is None:
        index = _active_index(workbook)
    sheet = workbook.sheets[index]

    try:
        (r1, c1), (r2, c2) = parse_range(cell_range or "")
    except InvalidReferenceError:
        return {"error": "Invalid range format"}

    r2 = min(r2, len(sheet.data) - 1)
    data: List[List[Any]] = []
    formulas: Dict[str, str] = {}
    if r2 >= r1:
        grid = SheetGrid(sheet, workbook)
        values = grid.get_cell_range(f"{coord(r1, c1)}:{coord(r2, c2)}")
        data = [["" if v is None else _jsonable(v) for v in row] for row in values]
        tracked = grid.get_formulas()
        for r in range(r1, r2 + 1):
            for c in range(c1, c2 + 1):
                if coord(r, c) in tracked:
                    formulas[coord(r, c)] = tracked[coord(r, c)]

    result: Dict[str, Any] = {"sheet": sheet.name, "range": cell_range, "data": data}
    if formulas:
        result["formulas"] = formulas
    return result


# -------------------------------------------------------------------
# Write tools
# -------------------------------------------------------------------


def _success_message(change: Change) -> str:
    if change.type == "set_cell_value":
        return f'Set {change.cell} to "{change.value}"'
    if change.type == "set_formula":
        return f"Set formula in {change.cell}: {change.formula}"
    if change.type == "insert_column":
        return f"Inserted column after {change.after_column}"
    if change.type == "insert_row":
        return f"Inserted row after {change.after_row}"
    if change.type == "apply_formula_to_range":
        return f"Applied formula to {change.range}"
    if change.type == "delete_column":
        return f"Deleted column {change.column}"
    return f"Deleted row {change.row}"


def _write(name: str, tool_input: Dict[str, Any], workbook: WorkbookData) -> ToolOutcome:
    try:
        change = parse_changes([{**tool_input, "type": name}])[0]
    except ValidationError as exc:
        errors = "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors())
        return ToolOutcome(output={"error": f"Invalid input for {name}: {errors}"})

    report = apply_changes(workbook, [change], _active_index(workbook))
    if report.skipped:
        return ToolOutcome(output={"error": report.skipped[0].reason})
    return ToolOutcome(output={"success": True, "message": _success_message(change)}, change=change)


def execute_tool(name: str, tool_input: Optional[Dict[str, Any]], workbook: WorkbookData) -> ToolOutcome:
    """Run one tool call against *workbook* (mutated in place by write tools)."""
    tool_input = tool_input or {}
    logger.info("  [Tools] %s %s", name, tool_input)
    if name == "get_sheet_info":
        return ToolOutcome(output=get_sheet_info(workbook))
    if name == "get_cell_range":
        return ToolOutcome(
            output=get_cell_range(workbook, tool_input.get("sheet"), tool_input.get("range", ""))
        )
    if name in WRITE_TOOLS:
        return _write(name, tool_input, workbook)
    return ToolOutcome(output={"error": f"Unknown tool: {name}"})
