import datetime

import pytest

from assistant.bridge import DEFAULT_REPLY, AssistantBridge
from assistant.tools import TOOLS, WRITE_TOOLS, execute_tool, get_cell_range, get_sheet_info
from dto.changes import SetCellValueChange, SetFormulaChange
from dto.chat import ChatRequest, HistoryMessage, ToolCall
from errors import ProviderNotConfiguredError

from conftest import ScriptedService, make_sheet, text_turn, tool_turn


class TestToolDefinitions:
    def test_every_write_tool_is_declared(self):
        names = {tool["name"] for tool in TOOLS}
        assert WRITE_TOOLS < names
        assert names - WRITE_TOOLS == {"get_sheet_info", "get_cell_range"}

    def test_write_tools_require_a_sheet(self):
        for tool in TOOLS:
            if tool["name"] in WRITE_TOOLS:
                assert "sheet" in tool["input_schema"]["required"]


class TestReadTools:
    def test_sheet_info(self, workbook):
        info = get_sheet_info(workbook)
        sales, summary = info["sheets"]
        assert sales["name"] == "Sales"
        assert sales["is_active"] is True
        assert summary["is_active"] is False
        assert (sales["rows"], sales["columns"]) == (4, 6)
        assert sales["headers"][:6] == ["Product", "Qty", "Price", "Total", "", "Notes"]
        assert len(sales["headers"]) == 20

    def test_cell_range_evaluates_formulas(self, workbook):
        result = get_cell_range(workbook, "Sales", "C2:D4")
        assert result["data"] == [[2.5, 7.5], [0.5, 5], [5, 20]]
        assert result["formulas"] == {"D2": "=B2*C2", "D3": "=B3*C3", "D4": "=B4*C4"}

    def test_cell_range_blank_cells_and_no_formulas(self, workbook):
        result = get_cell_range(workbook, "Summary", "A1:C1")
        assert result["data"] == [["Total", 32.5, ""]]
        assert result["formulas"] == {"B1": "=SUM(Sales!D2:D4)"}
        assert "formulas" not in get_cell_range(workbook, "Sales", "A1:A2")

    def test_cell_range_unknown_sheet_uses_active(self, workbook):
        assert get_cell_range(workbook, "Nope", "A1")["sheet"] == "Sales"

    def test_cell_range_is_clipped_to_the_sheet(self):
        from dto.workbook import WorkbookData

        workbook = WorkbookData(sheets=[make_sheet([["a"], ["b"]])])
        assert get_cell_range(workbook, "Sheet1", "A1:A50")["data"] == [["a"], ["b"]]
        assert get_cell_range(workbook, "Sheet1", "A5:A9")["data"] == []

    def test_invalid_range(self, workbook):
        assert get_cell_range(workbook, "Sales", "nonsense") == {"error": "Invalid range format"}

    def test_dates_are_serialised(self):
        from dto.workbook import WorkbookData

        workbook = WorkbookData(sheets=[make_sheet([[datetime.date(2024, 5, 1)]])])
        assert get_cell_range(workbook, "Sheet1", "A1")["data"] == [["2024-05-01"]]


class TestWriteTools:
    def test_write_returns_change_and_updates_working_copy(self, workbook):
        outcome = execute_tool(
            "set_formula", {"sheet": "Sales", "cell": "E2", "formula": "=D2*2"}, workbook
        )
        assert outcome.output == {"success": True, "message": "Set formula in E2: =D2*2"}
        assert outcome.change == SetFormulaChange(sheet="Sales", cell="E2", formula="=D2*2")
        read = execute_tool("get_cell_range", {"sheet": "Sales", "range": "E2"}, workbook)
        assert read.output["data"] == [[15]]

    def test_set_cell_value_message(self, workbook):
        outcome = execute_tool("set_cell_value", {"sheet": "Sales", "cell": "B2", "value": "12"}, workbook)
        assert outcome.output["message"] == 'Set B2 to "12"'
        assert isinstance(outcome.change, SetCellValueChange)
        assert workbook.sheets[0].data[1][1] == 12

    def test_invalid_input(self, workbook):
        outcome = execute_tool("delete_row", {"sheet": "Sales", "row": 0}, workbook)
        assert outcome.change is None
        assert outcome.output["error"].startswith("Invalid input for delete_row")

    def test_unknown_sheet(self, workbook):
        outcome = execute_tool("delete_column", {"sheet": "Nope", "column": "A"}, workbook)
        assert outcome.change is None
        assert outcome.output == {"error": "Unknown sheet: Nope"}

    def test_bad_cell_reference(self, workbook):
        outcome = execute_tool("set_cell_value", {"sheet": "Sales", "cell": "??", "value": 1}, workbook)
        assert outcome.change is None
        assert "error" in outcome.output

    def test_unknown_tool(self, workbook):
        assert execute_tool("format_disk", {}, workbook).output == {"error": "Unknown tool: format_disk"}


class TestBridge:
    def test_text_only_reply(self, workbook):
        service = ScriptedService([text_turn("Hello!")])
        history = [HistoryMessage(role="user", content="hi"), HistoryMessage(role="assistant", content="hey")]
        response = AssistantBridge(service).chat(
            ChatRequest(message="What is this?", spreadsheet_data=workbook, conversation_history=history)
        )
        assert response.message == "Hello!"
        assert response.changes == []
        assert [m.content for m in response.conversation_history] == ["hi", "hey", "What is this?", "Hello!"]
        assert [e.role for e in service.calls[0]] == ["user", "assistant", "user"]
        assert '"Sales"' in service.systems[0]

    def test_tool_loop_collects_changes(self, workbook):
        service = ScriptedService(
            [
                tool_turn(
                    ToolCall(id="t1", name="get_sheet_info"),
                    ToolCall(id="t2", name="set_formula", input={"sheet": "Sales", "cell": "E2", "formula": "=D2*2"}),
                    text="Looking",
                ),
                tool_turn(ToolCall(id="t3", name="get_cell_range", input={"sheet": "Sales", "range": "E2"})),
                text_turn("Added a doubled total in E2."),
            ]
        )
        response = AssistantBridge(service).chat(
            ChatRequest(message="Double the first total", spreadsheet_data=workbook)
        )
        assert response.message == "Added a doubled total in E2."
        assert response.changes == [SetFormulaChange(sheet="Sales", cell="E2", formula="=D2*2")]
        assert [r.tool for r in response.tool_calls] == ["get_sheet_info", "set_formula", "get_cell_range"]
        assert response.tool_calls[2].result["data"] == [[15]]

        second = service.calls[1]
        assert [e.role for e in second] == ["user", "assistant", "tool"]
        assert second[1].text == "Looking"
        assert [r.tool_call_id for r in second[2].tool_results] == ["t1", "t2"]
        # The caller's workbook is never modified.
        assert "E2" not in workbook.sheets[0].formulas

    def test_empty_final_text_gets_default_reply(self, workbook):
        service = ScriptedService([tool_turn(ToolCall(id="t1", name="get_sheet_info")), text_turn("")])
        response = AssistantBridge(service).chat(ChatRequest(message="Look", spreadsheet_data=workbook))
        assert response.message == DEFAULT_REPLY

    def test_round_limit(self, workbook):
        service = ScriptedService([tool_turn(ToolCall(id="t", name="get_sheet_info"), text="again")])
        response = AssistantBridge(service, max_rounds=2).chat(
            ChatRequest(message="Loop", spreadsheet_data=workbook)
        )
        assert len(service.calls) == 3
        assert len(response.tool_calls) == 2
        assert response.message == "again"

    def test_without_workbook(self):
        service = ScriptedService([tool_turn(ToolCall(id="t", name="get_cell_range", input={"range": "A1"})), text_turn("ok")])
        response = AssistantBridge(service).chat(ChatRequest(message="hi"))
        assert response.tool_calls[0].result == {"error": "Workbook has no sheets"}

    def test_missing_api_key(self, monkeypatch, workbook):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setattr("config.AI_ASSISTANT_PROVIDER", "claude")
        with pytest.raises(ProviderNotConfiguredError):
            AssistantBridge().chat(ChatRequest(message="hi", spreadsheet_data=workbook))
