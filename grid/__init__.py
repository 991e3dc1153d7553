"""
Live editing of the active sheet.

  1. FormulaEngine    — evaluates one formula through the ``formulas`` library
  2. SheetGrid        — raw contents + tracked formulas, evaluated on read
  3. WorkbookEditor   — the open workbook: sheets, original bytes, active grid
"""
