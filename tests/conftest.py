"""
Shared fixtures: small workbooks built in memory with openpyxl, and a
scripted ``AIService`` so assistant tests never touch the network.
"""

import io
from typing import Any, Dict, List, Optional

import openpyxl
import pytest
from openpyxl.styles import Font
from openpyxl.workbook.defined_name import DefinedName
from openpyxl.worksheet.datavalidation import DataValidation

from ai.service import AIService
from dto.chat import AssistantTurn, ToolCall, TranscriptEntry
from dto.workbook import SheetData
from parser import parse_workbook

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def build_sales_workbook() -> bytes:
    """
    Sales:   Product | Qty | Price | Total (=B*C)        F1:G1 merged "Notes"
             Apple   |  3  |  2.5  | =B2*C2              E2:E10 Yes/No dropdown
             Banana  | 10  |  0.5  | =B3*C3
             Cherry  |  4  |  5    | =B4*C4
    Summary: Total   | =SUM(Sales!D2:D4)
    """
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Sales"
    ws.append(["Product", "Qty", "Price", "Total"])
    ws.append(["Apple", 3, 2.5, "=B2*C2"])
    ws.append(["Banana", 10, 0.5, "=B3*C3"])
    ws.append(["Cherry", 4, 5, "=B4*C4"])
    ws["A1"].font = Font(bold=True)
    ws["F1"] = "Notes"
    ws.merge_cells("F1:G1")
    ws.column_dimensions["B"].width = 15
    ws.row_dimensions[1].height = 20

    dv = DataValidation(type="list", formula1='"Yes,No"', allow_blank=True)
    dv.add("E2:E10")
    ws.add_data_validation(dv)

    summary = wb.create_sheet("Summary")
    summary["A1"] = "Total"
    summary["B1"] = "=SUM(Sales!D2:D4)"

    wb.defined_names.add(DefinedName("Prices", attr_text="Sales!$C$2:$C$4"))

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def make_sheet(rows: List[List[Any]], formulas: Optional[Dict[str, str]] = None, name: str = "Sheet1") -> SheetData:
    return SheetData(name=name, data=[list(r) for r in rows], formulas=dict(formulas or {}))


class ScriptedService(AIService):
    """Returns pre-baked turns in order and records every transcript it saw."""

    def __init__(self, turns: List[AssistantTurn]):
        self._turns = list(turns)
        self.calls: List[List[TranscriptEntry]] = []
        self.systems: List[str] = []

    def run_tool_turn(self, system, transcript, tools):
        self.systems.append(system)
        self.calls.append([entry.model_copy(deep=True) for entry in transcript])
        if len(self._turns) > 1:
            return self._turns.pop(0)
        return self._turns[0]


def tool_turn(*calls: ToolCall, text: str = "") -> AssistantTurn:
    return AssistantTurn(text=text, tool_calls=list(calls), stop_reason="tool_use")


def text_turn(text: str) -> AssistantTurn:
    return AssistantTurn(text=text, stop_reason="end_turn")


@pytest.fixture
def sales_xlsx() -> bytes:
    return build_sales_workbook()


@pytest.fixture
def workbook(sales_xlsx):
    return parse_workbook(sales_xlsx, file_name="sales.xlsx")
