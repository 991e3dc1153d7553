import io

import openpyxl
import pytest

import config
from dto.workbook import NamedRange
from errors import UnsupportedFileError, WorkbookParseError
from parser import parse_workbook, validate_upload


class TestValidateUpload:
    def test_accepts_xlsx(self):
        validate_upload("book.xlsx", 1024)
        validate_upload("BOOK.XLSM", 1024)

    def test_rejects_legacy_xls(self):
        with pytest.raises(UnsupportedFileError, match=".xls"):
            validate_upload("book.xls", 1024)

    def test_rejects_other_types(self):
        with pytest.raises(UnsupportedFileError):
            validate_upload("book.csv", 1024)

    def test_rejects_empty_and_oversized(self):
        with pytest.raises(UnsupportedFileError):
            validate_upload("book.xlsx", 0)
        with pytest.raises(UnsupportedFileError):
            validate_upload("book.xlsx", config.MAX_UPLOAD_BYTES + 1)


class TestParseWorkbook:
    def test_sheets_and_padding(self, workbook):
        assert workbook.file_name == "sales.xlsx"
        assert [s.name for s in workbook.sheets] == ["Sales", "Summary"]
        sales = workbook.sheets[0]
        assert len(sales.data) >= config.MIN_GRID_ROWS
        assert all(len(row) >= config.MIN_GRID_COLS for row in sales.data)

    def test_values_and_formulas(self, workbook):
        sales = workbook.sheets[0]
        assert sales.data[0][:4] == ["Product", "Qty", "Price", "Total"]
        assert sales.data[1][:3] == ["Apple", 3, 2.5]
        assert sales.data[10][0] is None
        assert sales.formulas["D2"] == "=B2*C2"
        assert workbook.sheets[1].formulas == {"B1": "=SUM(Sales!D2:D4)"}

    def test_formula_cells_without_cache_are_empty(self, workbook):
        # openpyxl never computes formulas, so the file has no cached results.
        assert workbook.sheets[0].data[1][3] is None

    def test_layout(self, workbook):
        sales = workbook.sheets[0]
        assert sales.merges == ["F1:G1"]
        assert sales.col_widths[0] is None
        assert sales.col_widths[1] == 15
        assert sales.row_heights[0] == 20

    def test_validations(self, workbook):
        (rule,) = workbook.sheets[0].validations
        assert rule.type == "list"
        assert rule.ranges == ["E2:E10"]
        assert rule.choices == ["Yes", "No"]

    def test_named_ranges(self, workbook):
        assert NamedRange(name="Prices", ref="Sales!$C$2:$C$4") in workbook.named_ranges

    def test_sheet_filter(self, sales_xlsx):
        result = parse_workbook(sales_xlsx, sheet_name_filter="Summary")
        assert [s.name for s in result.sheets] == ["Summary"]

    def test_unknown_sheet_filter(self, sales_xlsx):
        with pytest.raises(ValueError):
            parse_workbook(sales_xlsx, sheet_name_filter="Nope")

    def test_corrupt_bytes(self):
        with pytest.raises(WorkbookParseError):
            parse_workbook(b"definitely not a zip file", file_name="broken.xlsx")

    def test_text_starting_with_equals_is_not_a_formula(self):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws["A1"] = "=abc"
        ws["A1"].data_type = "s"
        ws["B1"] = "=LEN(A1)"
        buffer = io.BytesIO()
        wb.save(buffer)

        sheet = parse_workbook(buffer.getvalue(), file_name="text.xlsx").sheets[0]
        assert sheet.data[0][0] == "=abc"
        assert sheet.formulas == {"B1": "=LEN(A1)"}
