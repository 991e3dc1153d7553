"""
System prompt for the spreadsheet-editing assistant.

The prompt carries a compact outline of the workbook (sheet names, grid
size and the first few header cells) so the model can pick sheets and
columns before it calls any tool.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from dto.workbook import WorkbookData

_MAX_HEADERS = 10


def _sheet_outline(workbook: Optional[WorkbookData]) -> List[Dict[str, Any]]:
    if workbook is None:
        return []
    outline = []
    for sheet in workbook.sheets:
        header = sheet.data[0] if sheet.data else []
        outline.append(
            {
                "name": sheet.name,
                "rows": len(sheet.data),
                "cols": len(header),
                "headers": header[:_MAX_HEADERS],
            }
        )
    return outline


def get_assistant_system_prompt(workbook: Optional[WorkbookData]) -> str:
    context = json.dumps(_sheet_outline(workbook), indent=2, default=str)
    return f"""You are an Excel expert assistant helping users edit their spreadsheets. You have access to tools that let you read and modify the spreadsheet.

IMPORTANT RULES:
1. Always call get_sheet_info first if you haven't already, to understand the spreadsheet structure.
2. Use get_cell_range to read data before making changes.
3. When creating formulas, use standard Excel formula syntax (e.g., =SUM, =VLOOKUP, =IF).
4. For formulas that should be applied to multiple rows, use apply_formula_to_range with the formula for the first cell; it is adjusted for every other cell.
5. Be precise with cell references and sheet names. Rows are numbered from 1.
6. Explain what you're doing as you make changes.

Current spreadsheet context:
{context}"""
