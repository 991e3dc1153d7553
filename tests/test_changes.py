import pytest

from changes import structure
from changes.applicator import apply_changes, find_sheet
from changes.mutator import SheetMutator
from dto.changes import (
    DeleteColumnChange,
    DeleteRowChange,
    InsertColumnChange,
    InsertRowChange,
    SetCellValueChange,
    SetFormulaChange,
    parse_changes,
)
from dto.workbook import DataValidationRule, NamedRange, WorkbookData
from grid.sheet_grid import SheetGrid

from conftest import make_sheet


@pytest.fixture
def sheet():
    return make_sheet(
        [
            ["Name", "Qty", "Price"],
            ["A", 1, 10],
            ["B", 2, 20],
        ]
    )


class TestParseChanges:
    def test_discriminates_on_type(self):
        changes = parse_changes(
            [
                {"type": "set_cell_value", "cell": "A1", "value": "x"},
                {"type": "delete_row", "sheet": "S", "row": 3},
            ]
        )
        assert isinstance(changes[0], SetCellValueChange)
        assert isinstance(changes[1], DeleteRowChange)
        assert changes[1].sheet == "S"

    def test_rejects_bad_rows(self):
        with pytest.raises(ValueError):
            parse_changes([{"type": "delete_row", "row": 0}])
        with pytest.raises(ValueError):
            parse_changes([{"type": "insert_row", "after_row": -1}])


class TestCellWrites:
    def test_set_value_coerces_and_grows(self, sheet):
        SheetMutator(sheet).set_cell_value("E5", "42")
        assert sheet.data[4][4] == 42
        assert len(sheet.data) == 5
        assert all(len(row) == 5 for row in sheet.data)

    def test_set_value_with_formula_text(self, sheet):
        SheetMutator(sheet).set_cell_value("D2", "=B2*C2")
        assert sheet.formulas["D2"] == "=B2*C2"

    def test_set_value_clears_formula(self, sheet):
        sheet.formulas["D2"] = "=B2*C2"
        SheetMutator(sheet).set_cell_value("D2", "n/a")
        assert "D2" not in sheet.formulas
        assert sheet.data[1][3] == "n/a"

    def test_set_formula_adds_equals(self, sheet):
        SheetMutator(sheet).set_formula("B4", "SUM(B2:B3)")
        assert sheet.formulas["B4"] == "=SUM(B2:B3)"

    def test_empty_formula_rejected(self, sheet):
        with pytest.raises(ValueError):
            SheetMutator(sheet).set_formula("B4", "=")

    def test_apply_formula_to_range(self, sheet):
        written = SheetMutator(sheet).apply_formula_to_range("D2:D3", "=B2*C2")
        assert written == ["D2", "D3"]
        assert sheet.formulas == {"D2": "=B2*C2", "D3": "=B3*C3"}

    def test_apply_formula_keeps_absolute_refs(self, sheet):
        SheetMutator(sheet).apply_formula_to_range("D2:D3", "=C2*$B$1")
        assert sheet.formulas["D3"] == "=C3*$B$1"

    def test_apply_formula_over_columns(self, sheet):
        SheetMutator(sheet).apply_formula_to_range("D2:E2", "=B2+1")
        assert sheet.formulas == {"D2": "=B2+1", "E2": "=C2+1"}


class TestStructure:
    def test_insert_row_at_top(self, sheet):
        sheet.formulas["D3"] = "=B3*C3"
        SheetMutator(sheet).insert_row(0)
        assert sheet.data[0] == [None, None, None]
        assert sheet.data[1][0] == "Name"
        assert sheet.formulas == {"D4": "=B4*C4"}

    def test_insert_row_after(self, sheet):
        SheetMutator(sheet).insert_row(1)
        assert sheet.data[0][0] == "Name"
        assert sheet.data[1] == [None, None, None]
        assert sheet.data[2][0] == "A"

    def test_insert_row_past_the_end_grows(self, sheet):
        SheetMutator(sheet).insert_row(10)
        assert len(sheet.data) == 11

    def test_insert_column_with_header(self, sheet):
        SheetMutator(sheet).insert_column("A", header="Code")
        assert sheet.data[0] == ["Name", "Code", "Qty", "Price"]
        assert sheet.data[1] == ["A", None, 1, 10]

    def test_insert_column_header_is_not_coerced(self, sheet):
        SheetMutator(sheet).insert_column("C", header="2024")
        assert sheet.data[0][3] == "2024"

    def test_delete_row(self, sheet):
        SheetMutator(sheet).delete_row(2)
        assert [row[0] for row in sheet.data] == ["Name", "B"]

    def test_delete_row_zero_rejected(self, sheet):
        with pytest.raises(ValueError):
            SheetMutator(sheet).delete_row(0)

    def test_delete_column(self, sheet):
        sheet.formulas["D2"] = "=B2*C2"
        SheetMutator(sheet).delete_column("B")
        assert sheet.data[0] == ["Name", "Price"]
        assert sheet.formulas == {"C2": "=#REF!*B2"}

    def test_layout_follows_column_insert(self, sheet):
        sheet.merges = ["B1:C1"]
        sheet.validations = [DataValidationRule(ranges=["B2:B5"], type="list", choices=["x"])]
        sheet.col_widths = [10.0, 20.0, 30.0]
        SheetMutator(sheet).insert_column("A")
        assert sheet.merges == ["C1:D1"]
        assert sheet.validations[0].ranges == ["C2:C5"]
        assert sheet.col_widths == [10.0, None, 20.0, 30.0]

    def test_layout_follows_row_delete(self, sheet):
        sheet.merges = ["A2:C2", "A3:B3"]
        sheet.validations = [DataValidationRule(ranges=["A2:A2"], type="list")]
        sheet.row_heights = [15.0, 30.0, 45.0]
        SheetMutator(sheet).delete_row(2)
        assert sheet.merges == ["A2:B2"]
        assert sheet.validations == []
        assert sheet.row_heights == [15.0, 45.0]

    def test_other_sheets_and_names_follow(self, sheet):
        other = make_sheet([[None]], formulas={"A1": "=Sheet1!C3+A2"}, name="Other")
        workbook = WorkbookData(
            sheets=[sheet, other],
            named_ranges=[NamedRange(name="Qty", ref="Sheet1!$B$2:$B$3")],
        )
        structure.insert_rows(sheet, 0, 1, workbook)
        assert other.formulas["A1"] == "=Sheet1!C4+A2"
        assert workbook.named_ranges[0].ref == "Sheet1!$B$3:$B$4"

    def test_apply_all_reports_skips(self, sheet):
        report = SheetMutator(sheet).apply_all(
            enumerate([SetCellValueChange(cell="bogus", value=1), DeleteColumnChange(column="A")])
        )
        assert report.applied == 1
        assert report.skipped[0].index == 0
        assert report.skipped[0].change_type == "set_cell_value"


class TestApplicator:
    def test_find_sheet(self, workbook):
        assert find_sheet(workbook, "Summary") == 1
        assert find_sheet(workbook, "sales") == 0
        assert find_sheet(workbook, "nope") is None

    def test_inactive_sheet_is_edited_directly(self, workbook):
        report = apply_changes(
            workbook, [SetFormulaChange(sheet="Summary", cell="B2", formula="=Sales!B2*2")]
        )
        assert report.applied == 1
        summary = workbook.sheets[1]
        assert summary.formulas["B2"] == "=Sales!B2*2"
        assert summary.data[1][1] == 6

    def test_unknown_sheet_is_skipped(self, workbook):
        report = apply_changes(
            workbook,
            [
                SetCellValueChange(sheet="Ghost", cell="A1", value=1),
                SetCellValueChange(cell="A2", value="Pear"),
            ],
        )
        assert report.applied == 1
        assert report.skipped[0].index == 0
        assert "Unknown sheet" in report.skipped[0].reason
        assert workbook.sheets[0].data[1][0] == "Pear"

    def test_active_sheet_goes_through_the_grid(self, workbook):
        grid = SheetGrid(workbook.sheets[0], workbook)
        report = apply_changes(workbook, [InsertColumnChange(after_column="A", header="Code")], 0, grid)
        assert report.applied == 1
        assert grid.get_cell_value("B1") == "Code"
        # The workbook copy is only updated when the editor flushes the grid.
        assert workbook.sheets[0].data[0][1] == "Qty"
        assert workbook.sheets[1].formulas["B1"] == "=SUM(Sales!E2:E4)"

    def test_edits_on_other_sheets_rewrite_the_live_grid(self, workbook):
        grid = SheetGrid(workbook.sheets[0], workbook)
        grid.set_data_at_cell(5, 0, "=Summary!A1")
        apply_changes(
            workbook, [InsertRowChange(sheet="Summary", after_row=0)], active_sheet=0, grid=grid
        )
        assert grid.get_formulas()["A6"] == "=Summary!A2"
        assert grid.get_cell_value("A6") == "Total"
