"""
A1-style reference helpers shared by the grid, the change applicator and
the exporter.

Row/column indices returned here are 0-based unless a docstring says
otherwise.  Formula rewriting goes through openpyxl's formula tokenizer so
function names, string literals and other sheets' references are never
touched by accident.
"""

from __future__ import annotations

import re
from typing import Any, Optional, Tuple

from openpyxl.formula.tokenizer import Token, Tokenizer
from openpyxl.formula.translate import Translator, TranslatorError
from openpyxl.utils import column_index_from_string, get_column_letter

from errors import InvalidReferenceError

_CELL_RE = re.compile(r"^\$?([A-Za-z]{1,3})\$?([1-9]\d*)$")
_COLUMN_RE = re.compile(r"^\$?([A-Za-z]{1,3})$")
_ENDPOINT_RE = re.compile(r"^(\$?)([A-Za-z]{1,3})?(\$?)(\d+)?$")
_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_LEADING_ZERO_RE = re.compile(r"^[+-]?0\d")

REF_ERROR = "#REF!"


# ------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------

def column_to_index(column: str) -> int:
    """'A' -> 0, 'AB' -> 27."""
    m = _COLUMN_RE.match(column.strip()) if column else None
    if not m:
        raise InvalidReferenceError(f"Invalid column reference: {column!r}")
    try:
        return column_index_from_string(m.group(1).upper()) - 1
    except ValueError as exc:
        raise InvalidReferenceError(str(exc)) from None


def index_to_column(index: int) -> str:
    """0 -> 'A', 27 -> 'AB'."""
    return get_column_letter(index + 1)


def coord(row: int, col: int) -> str:
    """Return an A1-style coordinate from 0-based row/col indices."""
    return f"{index_to_column(col)}{row + 1}"


def parse_cell(ref: str) -> Tuple[int, int]:
    """Parse 'B3' (or '$B$3') into ``(row=2, col=1)``."""
    m = _CELL_RE.match(ref.strip()) if ref else None
    if not m:
        raise InvalidReferenceError(f"Invalid cell reference: {ref!r}")
    return int(m.group(2)) - 1, column_to_index(m.group(1))


def parse_range(ref: str) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """
    Parse 'A1:D10' into ``((0, 0), (9, 3))``.

    A single cell is accepted as a one-cell range and reversed corners are
    normalised, so the first pair is always the top-left corner.
    """
    if not ref or not ref.strip():
        raise InvalidReferenceError("Empty range reference")
    parts = ref.strip().split(":")
    if len(parts) > 2:
        raise InvalidReferenceError(f"Invalid range reference: {ref!r}")
    r1, c1 = parse_cell(parts[0])
    r2, c2 = parse_cell(parts[-1])
    return (min(r1, r2), min(c1, c2)), (max(r1, r2), max(c1, c2))


def normalise_cell(ref: str) -> str:
    """Canonical upper-case, ``$``-free form of a cell reference."""
    row, col = parse_cell(ref)
    return coord(row, col)


def coerce_cell_value(value: Any) -> Any:
    """
    Turn numeric strings into numbers; everything else passes through.

    The assistant's tool schema sends every value as a string, so "42"
    must land in the sheet as a number for formulas to see it.
    """
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not _NUMBER_RE.match(text):
        return value
    # Codes such as ZIPs and IDs keep their leading zeros.
    if _LEADING_ZERO_RE.match(text):
        return value
    if "." in text or "e" in text.lower():
        return float(text)
    return int(text)


# ------------------------------------------------------------------
# Formula rewriting
# ------------------------------------------------------------------

def ensure_formula(formula: str) -> str:
    formula = (formula or "").strip()
    return formula if formula.startswith("=") else f"={formula}"


def translate_formula(formula: str, origin: str, target: str) -> str:
    """
    Copy *formula* from cell *origin* to cell *target* the way Excel's
    fill-down does: relative references move, ``$``-anchored ones stay.
    """
    try:
        return str(Translator(formula, origin=origin).translate_formula(target))
    except TranslatorError as exc:
        raise InvalidReferenceError(f"Cannot copy {formula} to {target}: {exc}") from None


def _unquote_sheet(sheet_part: str) -> str:
    if sheet_part.startswith("'") and sheet_part.endswith("'"):
        return sheet_part[1:-1].replace("''", "'")
    return sheet_part


def shift_index(index: int, at: int, delta: int) -> Optional[int]:
    """Shift a single 1-based index; ``None`` means it was deleted."""
    if delta > 0:
        return index + delta if index >= at else index
    removed = -delta
    if index < at:
        return index
    if index < at + removed:
        return None
    return index - removed


def _shift_span(start: int, end: int, at: int, delta: int) -> Optional[Tuple[int, int]]:
    """Shift a 1-based inclusive span; ``None`` when it is fully deleted."""
    if delta > 0:
        return (
            start + delta if start >= at else start,
            end + delta if end >= at else end,
        )
    removed = -delta
    last_deleted = at + removed - 1
    if start < at:
        new_start = start
    elif start <= last_deleted:
        new_start = at
    else:
        new_start = start - removed
    if end < at:
        new_end = end
    elif end <= last_deleted:
        new_end = at - 1
    else:
        new_end = end - removed
    if new_start > new_end:
        return None
    return new_start, new_end


def _split_endpoint(text: str):
    m = _ENDPOINT_RE.match(text)
    if not m or (m.group(2) is None and m.group(4) is None):
        return None
    try:
        col = column_index_from_string(m.group(2).upper()) if m.group(2) else None
    except ValueError:
        return None
    row = int(m.group(4)) if m.group(4) else None
    return m.group(1), col, m.group(3), row


def _endpoints_consistent(endpoints) -> bool:
    if len(endpoints) == 1:
        _, col, _, row = endpoints[0]
        return col is not None and row is not None
    shapes = {(e[1] is not None, e[3] is not None) for e in endpoints}
    return len(shapes) == 1


def _render_endpoint(col_abs: str, col: Optional[int], row_abs: str, row: Optional[int]) -> str:
    out = ""
    if col is not None:
        out += f"{col_abs}{get_column_letter(col)}"
    if row is not None:
        out += f"{row_abs}{row}"
    return out


def _shift_operand(
    operand: str,
    axis: str,
    at: int,
    delta: int,
    sheet_name: Optional[str],
    own_sheet: bool = True,
) -> str:
    sheet_prefix = ""
    ref = operand
    if "!" not in operand and not own_sheet:
        return operand
    if "!" in operand:
        sheet_part, ref = operand.rsplit("!", 1)
        if sheet_name is None or _unquote_sheet(sheet_part).lower() != sheet_name.lower():
            return operand
        sheet_prefix = sheet_part + "!"

    pieces = ref.split(":")
    if len(pieces) > 2:
        return operand
    endpoints = [_split_endpoint(p) for p in pieces]
    if any(e is None for e in endpoints) or not _endpoints_consistent(endpoints):
        # Named range, structured reference or something else we leave alone.
        return operand

    pick = 3 if axis == "row" else 1
    values = [e[pick] for e in endpoints]
    if any(v is None for v in values):
        # Whole-column ref on a row edit (or vice versa) is unaffected.
        return operand

    if len(endpoints) == 1:
        shifted = shift_index(values[0], at, delta)
        if shifted is None:
            return REF_ERROR
        new_values = [shifted]
    else:
        lo, hi = sorted(values)
        span = _shift_span(lo, hi, at, delta)
        if span is None:
            return REF_ERROR
        new_values = list(span) if values[0] <= values[1] else [span[1], span[0]]

    rendered = []
    for endpoint, value in zip(endpoints, new_values):
        col_abs, col, row_abs, row = endpoint
        if axis == "row":
            row = value
        else:
            col = value
        rendered.append(_render_endpoint(col_abs, col, row_abs, row))
    return sheet_prefix + ":".join(rendered)


def shift_formula(
    formula: str,
    axis: str,
    at: int,
    delta: int,
    sheet_name: Optional[str] = None,
    own_sheet: bool = True,
) -> str:
    """
    Rewrite the references in *formula* after rows/columns were inserted
    or deleted on *sheet_name*.

    *axis* is ``"row"`` or ``"col"``; *at* is the 1-based index of the first
    inserted/deleted row or column; *delta* is the number inserted
    (positive) or deleted (negative).  References into a deleted area
    become ``#REF!``; ranges that straddle it shrink.  References qualified
    with another sheet's name are left untouched.  Pass
    ``own_sheet=False`` for formulas living on a different sheet: only
    references qualified with *sheet_name* move then.
    """
    if not isinstance(formula, str) or not formula.startswith("=") or delta == 0:
        return formula
    try:
        tokens = Tokenizer(formula).items
    except Exception:
        return formula

    changed = False
    parts = []
    for token in tokens:
        value = token.value
        if token.type == Token.OPERAND and token.subtype == Token.RANGE:
            new_value = _shift_operand(value, axis, at, delta, sheet_name, own_sheet)
            if new_value != value:
                changed = True
                value = new_value
        parts.append(value)
    if not changed:
        return formula
    return "=" + "".join(parts)


def shift_range_ref(ref: str, axis: str, at: int, delta: int) -> Optional[str]:
    """
    Shift a plain range such as a merge or validation target ('A1:C3').
    Returns ``None`` when the range is deleted entirely.
    """
    shifted = _shift_operand(ref, axis, at, delta, None)
    return None if shifted == REF_ERROR else shifted
