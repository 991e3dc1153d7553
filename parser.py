"""
Workbook parser — converts an uploaded .xlsx into ``WorkbookData``.

Usage:
    python parser.py <excel_file> [--output <output.json>] [--sheet <sheet_name>]

Loads the workbook twice with openpyxl: once to read formulas, merges,
validations and sizing, and once with ``data_only=True`` to read Excel's
cached formula results.  Writes the normalized model as JSON.
"""

from __future__ import annotations

import argparse
import io
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import openpyxl
from openpyxl import Workbook
from openpyxl.utils import column_index_from_string, get_column_letter
from openpyxl.worksheet.formula import ArrayFormula
from openpyxl.worksheet.worksheet import Worksheet

import config
from dto.workbook import DataValidationRule, NamedRange, SheetData, WorkbookData
from errors import UnsupportedFileError, WorkbookParseError

logger = logging.getLogger(__name__)

Source = Union[bytes, str, os.PathLike]


# -------------------------------------------------------------------
# Upload checks
# -------------------------------------------------------------------


def validate_upload(file_name: str, size: int) -> None:
    """Reject uploads we cannot parse before touching their bytes."""
    suffix = Path(file_name or "").suffix.lower()
    if suffix == ".xls":
        raise UnsupportedFileError(
            "Legacy .xls files are not supported; save the file as .xlsx"
        )
    if suffix not in config.SUPPORTED_EXTENSIONS:
        raise UnsupportedFileError(
            f"Please upload a valid Excel file ({', '.join(config.SUPPORTED_EXTENSIONS)})"
        )
    if size <= 0:
        raise UnsupportedFileError("The uploaded file is empty")
    if size > config.MAX_UPLOAD_BYTES:
        raise UnsupportedFileError(
            f"The uploaded file is larger than {config.MAX_UPLOAD_BYTES} bytes"
        )


# -------------------------------------------------------------------
# Per-sheet readers
# -------------------------------------------------------------------


def formula_text(value: Any) -> Optional[str]:
    if isinstance(value, ArrayFormula):
        text = getattr(value, "text", None) or ""
        return text if text.startswith("=") else f"={text}"
    if isinstance(value, str) and value.startswith("=") and len(value) > 1:
        return value
    return None


def _read_cells(
    ws: Worksheet, ws_values: Optional[Worksheet]
) -> Tuple[List[List[Any]], Dict[str, str]]:
    """Read the used range into a padded 2D grid plus a formula map."""
    max_row = max(ws.max_row or 1, config.MIN_GRID_ROWS)
    max_col = max(ws.max_column or 1, config.MIN_GRID_COLS)

    data: List[List[Any]] = [[None] * max_col for _ in range(max_row)]
    formulas: Dict[str, str] = {}

    for row in ws.iter_rows():
        for cell in row:
            # MergedCell placeholders have no value of their own.
            if cell.value is None:
                continue
            r, c = cell.row - 1, cell.column - 1
            # Text cells may start with "=" too; only real formulas are tracked.
            formula = formula_text(cell.value) if cell.data_type == "f" else None
            if formula is None:
                data[r][c] = cell.value
                continue
            ref = f"{get_column_letter(cell.column)}{cell.row}"
            formulas[ref] = formula
            if ws_values is not None:
                data[r][c] = ws_values.cell(row=cell.row, column=cell.column).value
    return data, formulas


def read_col_widths(ws: Worksheet, count: int) -> List[Optional[float]]:
    widths: List[Optional[float]] = [None] * count
    for key, dim in ws.column_dimensions.items():
        if not dim.width:
            continue
        min_col = dim.min or column_index_from_string(key)
        max_col = dim.max or min_col
        for col in range(min_col, max_col + 1):
            if col > len(widths):
                widths.extend([None] * (col - len(widths)))
            widths[col - 1] = dim.width
    return _trim_trailing_none(widths)


def _read_row_heights(ws: Worksheet) -> List[Optional[float]]:
    heights: List[Optional[float]] = []
    for idx, dim in ws.row_dimensions.items():
        if dim.height is None:
            continue
        if idx > len(heights):
            heights.extend([None] * (idx - len(heights)))
        heights[idx - 1] = dim.height
    return heights


def _trim_trailing_none(values: List[Optional[float]]) -> List[Optional[float]]:
    while values and values[-1] is None:
        values.pop()
    return values


def _inline_choices(formula1: Optional[str]) -> Optional[List[str]]:
    """'"Yes,No,Maybe"' -> ['Yes', 'No', 'Maybe']; ranges give None."""
    if not formula1 or not (formula1.startswith('"') and formula1.endswith('"')):
        return None
    raw = formula1.strip('"')
    return [v.strip() for v in raw.split(",") if v.strip()]


def read_validations(ws: Worksheet) -> List[DataValidationRule]:
    rules: List[DataValidationRule] = []
    for dv in ws.data_validations.dataValidation:
        ranges = [str(r.coord) for r in dv.sqref.ranges]
        if not ranges:
            continue
        rules.append(
            DataValidationRule(
                ranges=ranges,
                type=dv.type,
                operator=dv.operator,
                formula1=dv.formula1,
                formula2=dv.formula2,
                choices=_inline_choices(dv.formula1) if dv.type == "list" else None,
                allow_blank=bool(dv.allow_blank),
                show_dropdown=bool(dv.showDropDown),
                error_title=dv.errorTitle,
                error=dv.error,
                prompt_title=dv.promptTitle,
                prompt=dv.prompt,
            )
        )
    return rules


def read_named_ranges(wb: Workbook) -> List[NamedRange]:
    names: List[NamedRange] = []
    for name, dn in wb.defined_names.items():
        if dn.attr_text:
            names.append(NamedRange(name=name, ref=dn.attr_text))
    for ws in wb.worksheets:
        for name, dn in ws.defined_names.items():
            if name.startswith("_xlnm."):
                # Print areas and titles are worksheet properties, not names.
                continue
            if dn.attr_text:
                names.append(NamedRange(name=name, ref=dn.attr_text, local_sheet=ws.title))
    return names


def read_sheet(ws: Worksheet, ws_values: Optional[Worksheet] = None) -> SheetData:
    """Normalise one openpyxl worksheet."""
    data, formulas = _read_cells(ws, ws_values)
    return SheetData(
        name=ws.title,
        data=data,
        formulas=formulas,
        merges=[str(mr.coord) for mr in ws.merged_cells.ranges],
        col_widths=read_col_widths(ws, len(data[0]) if data else 0),
        row_heights=_read_row_heights(ws),
        validations=read_validations(ws),
    )


# -------------------------------------------------------------------
# Main entry
# -------------------------------------------------------------------


def _open(source: Source, data_only: bool) -> Workbook:
    handle = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
    return openpyxl.load_workbook(
        handle,
        data_only=data_only,
        read_only=False,
        keep_links=True,
        rich_text=False,
    )


def parse_workbook(
    source: Source,
    file_name: Optional[str] = None,
    sheet_name_filter: Optional[str] = None,
) -> WorkbookData:
    """
    Parse an Excel workbook (raw bytes or a path) into ``WorkbookData``.

    If *sheet_name_filter* is provided, only that worksheet is kept.
    """
    if file_name is None:
        file_name = (
            "workbook.xlsx"
            if isinstance(source, (bytes, bytearray))
            else Path(source).name
        )
    logger.info("Loading workbook: %s", file_name)

    try:
        workbook = _open(source, data_only=False)
    except Exception as exc:
        raise WorkbookParseError(f"Could not read '{file_name}': {exc}") from exc

    if sheet_name_filter and sheet_name_filter not in workbook.sheetnames:
        logger.error(
            "Worksheet '%s' not found. Available sheets: %s",
            sheet_name_filter,
            workbook.sheetnames,
        )
        raise ValueError(f"Worksheet '{sheet_name_filter}' not found in workbook")

    # Cached formula results; a workbook never opened in Excel has none.
    values_wb: Optional[Workbook]
    try:
        values_wb = _open(source, data_only=True)
    except Exception:
        logger.warning(
            "Failed to load cached formula values (data_only workbook)",
            exc_info=True,
        )
        values_wb = None

    sheet_names = [sheet_name_filter] if sheet_name_filter else workbook.sheetnames
    sheets: List[SheetData] = []
    for sheet_name in sheet_names:
        ws = workbook[sheet_name]
        if not isinstance(ws, Worksheet):
            logger.info("Skipping non-grid sheet: %s", sheet_name)
            continue
        ws_values = values_wb[sheet_name] if values_wb is not None else None
        sheet = read_sheet(ws, ws_values)
        logger.info(
            "  -> %s: %d formula(s), %d merge(s), %d validation(s)",
            sheet_name,
            len(sheet.formulas),
            len(sheet.merges),
            len(sheet.validations),
        )
        sheets.append(sheet)

    named_ranges = read_named_ranges(workbook)
    workbook.close()
    if values_wb is not None:
        values_wb.close()

    if not sheets:
        raise WorkbookParseError(f"'{file_name}' contains no worksheets")

    return WorkbookData(
        file_name=file_name,
        sheets=sheets,
        named_ranges=named_ranges,
    )


# -------------------------------------------------------------------
# CLI
# -------------------------------------------------------------------


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )
    parser = argparse.ArgumentParser(
        description="Parse an Excel workbook into normalized JSON.",
    )
    parser.add_argument(
        "excel_file",
        help="Path to the .xlsx file to parse",
    )
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Output JSON file path (default: <input_name>_workbook.json)",
    )
    parser.add_argument(
        "-s",
        "--sheet",
        default=None,
        help="Name of a single worksheet to keep (default: all sheets)",
    )
    args = parser.parse_args()

    excel_path = args.excel_file
    if not os.path.isfile(excel_path):
        logger.error("File not found: %s", excel_path)
        sys.exit(1)

    output_path = args.output or f"{Path(excel_path).stem}_workbook.json"

    try:
        validate_upload(excel_path, os.path.getsize(excel_path))
        result = parse_workbook(excel_path, sheet_name_filter=args.sheet)
    except ValueError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    with open(output_path, "w", encoding="utf-8") as f:
        f.write(result.model_dump_json(indent=2))

    logger.info("Output written to %s", output_path)


if __name__ == "__main__":
    main()
