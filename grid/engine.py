"""
Formula evaluation for the live grid, backed by the ``formulas`` library.

The engine only evaluates one formula at a time.  Everything a formula
refers to (cells, ranges, other sheets, defined names) is fetched through a
``CellResolver`` supplied by the caller, so the engine never owns sheet
state.  Compiled formulas are cached by their text.
"""

from __future__ import annotations

import datetime
import logging
import re
from functools import lru_cache
from typing import Any, List, Optional, Protocol, Tuple

import formulas
import numpy as np
import schedula
from formulas.tokens.operand import XlError
from openpyxl.utils import column_index_from_string
from openpyxl.utils.datetime import to_excel

logger = logging.getLogger(__name__)

ERROR_CODES = frozenset(
    {
        "#NULL!",
        "#DIV/0!",
        "#VALUE!",
        "#REF!",
        "#NAME?",
        "#NUM!",
        "#N/A",
        "#CYCLE!",
        "#ERROR!",
    }
)

_SHEET_REF_RE = re.compile(r"^(?:(?P<sheet>'(?:[^']|'')+'|[^!']+)!)?(?P<ref>[^!]+)$")
_CELL_PART_RE = re.compile(r"^\$?([A-Z]{1,3})?\$?(\d+)?$", re.IGNORECASE)


class CellResolver(Protocol):
    """What the engine needs to know about the workbook around a formula."""

    def cell_value(self, sheet: Optional[str], row: int, col: int) -> Any:
        ...

    def dimensions(self, sheet: Optional[str]) -> Tuple[int, int]:
        ...

    def named_range(self, name: str) -> Optional[str]:
        ...


class CircularReferenceError(Exception):
    pass


class UnresolvedReferenceError(Exception):
    pass


@lru_cache(maxsize=4096)
def _compile(formula: str):
    return formulas.Parser().ast(formula)[1].compile()


def is_error_value(value: Any) -> bool:
    return isinstance(value, str) and value in ERROR_CODES


def _input_value(value: Any) -> Any:
    if value is None or value == "":
        # The library's blank marker: ISBLANK is true, arithmetic reads 0.
        return schedula.EMPTY
    if is_error_value(value):
        return XlError(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        # Date functions work on Excel serial numbers.
        return to_excel(value)
    return value


def _to_python(value: Any) -> Any:
    """Unwrap numpy scalars / arrays and error tokens into plain values."""
    if isinstance(value, np.ndarray):
        if value.size == 0:
            return None
        value = value.flat[0]
    if isinstance(value, XlError):
        return str(value)
    if value is schedula.EMPTY:
        # "=A1" on a blank cell shows 0.
        return 0
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e15:
        return int(value)
    return value


def _split_sheet(key: str) -> Tuple[Optional[str], str]:
    m = _SHEET_REF_RE.match(key)
    if not m:
        return None, key
    sheet = m.group("sheet")
    if sheet and sheet.startswith("'"):
        sheet = sheet[1:-1].replace("''", "'")
    return sheet, m.group("ref")


def _parse_area(ref: str, rows: int, cols: int) -> Optional[Tuple[int, int, int, int]]:
    """'A1:B3' / 'A:A' / '2:4' / 'C7' -> 0-based (r1, c1, r2, c2)."""
    pieces = ref.split(":")
    if len(pieces) > 2:
        return None
    corners: List[Tuple[Optional[int], Optional[int]]] = []
    for piece in pieces:
        m = _CELL_PART_RE.match(piece)
        if not m or (m.group(1) is None and m.group(2) is None):
            return None
        col = column_index_from_string(m.group(1).upper()) - 1 if m.group(1) else None
        row = int(m.group(2)) - 1 if m.group(2) else None
        corners.append((row, col))
    if len(corners) == 1:
        row, col = corners[0]
        if row is None or col is None:
            return None
        return row, col, row, col
    (ra, ca), (rb, cb) = corners
    r1 = 0 if ra is None else ra
    r2 = rows - 1 if rb is None else rb
    c1 = 0 if ca is None else ca
    c2 = cols - 1 if cb is None else cb
    return min(r1, r2), min(c1, c2), max(r1, r2), max(c1, c2)


class FormulaEngine:
    """
    Evaluates formula strings such as ``"=SUM(A1:A3)*Sheet2!B1"``.

    Usage::

        engine = FormulaEngine()
        value = engine.evaluate("=A1+1", resolver)
    """

    def inputs(self, formula: str) -> List[str]:
        """The references a formula reads, as the ``formulas`` library names them."""
        return list(_compile(formula).inputs)

    def evaluate(self, formula: str, resolver: CellResolver) -> Any:
        try:
            func = _compile(formula)
        except Exception as exc:
            logger.debug("  [Engine] Cannot parse %s: %s", formula, exc)
            return "#NAME?"

        try:
            args = [self._resolve_input(key, resolver) for key in func.inputs]
        except CircularReferenceError:
            return "#CYCLE!"
        except UnresolvedReferenceError:
            return "#REF!"

        try:
            return _to_python(func(*args))
        except Exception as exc:
            logger.debug("  [Engine] Evaluation failed for %s: %s", formula, exc)
            return "#VALUE!"

    # ------------------------------------------------------------------
    # Input resolution
    # ------------------------------------------------------------------

    def _resolve_input(self, key: str, resolver: CellResolver, depth: int = 0) -> Any:
        sheet, ref = _split_sheet(key)
        rows, cols = resolver.dimensions(sheet)
        area = _parse_area(ref, rows, cols)
        if area is None:
            target = resolver.named_range(ref) if sheet is None else None
            if target is None or depth > 0:
                raise UnresolvedReferenceError(key)
            return self._resolve_input(target.replace("$", ""), resolver, depth + 1)

        r1, c1, r2, c2 = area
        if (r1, c1) == (r2, c2):
            return _input_value(resolver.cell_value(sheet, r1, c1))
        values = [
            [_input_value(resolver.cell_value(sheet, r, c)) for c in range(c1, c2 + 1)]
            for r in range(r1, r2 + 1)
        ]
        return np.array(values, dtype=object)
