"""
Structured edit operations issued by the assistant (or by API clients)
and the report produced when applying them.

Every change may name a ``sheet``; ``None`` means the active sheet.
Row numbers are 1-indexed, as the user sees them.
"""

from __future__ import annotations

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class SetCellValueChange(BaseModel):
    type: Literal["set_cell_value"] = "set_cell_value"
    sheet: Optional[str] = None
    cell: str
    value: Any = None


class SetFormulaChange(BaseModel):
    type: Literal["set_formula"] = "set_formula"
    sheet: Optional[str] = None
    cell: str
    formula: str


class InsertColumnChange(BaseModel):
    type: Literal["insert_column"] = "insert_column"
    sheet: Optional[str] = None
    after_column: str
    header: Optional[str] = None


class InsertRowChange(BaseModel):
    type: Literal["insert_row"] = "insert_row"
    sheet: Optional[str] = None
    after_row: int = Field(ge=0)


class ApplyFormulaToRangeChange(BaseModel):
    type: Literal["apply_formula_to_range"] = "apply_formula_to_range"
    sheet: Optional[str] = None
    range: str
    formula: str


class DeleteColumnChange(BaseModel):
    type: Literal["delete_column"] = "delete_column"
    sheet: Optional[str] = None
    column: str


class DeleteRowChange(BaseModel):
    type: Literal["delete_row"] = "delete_row"
    sheet: Optional[str] = None
    row: int = Field(ge=1)


Change = Annotated[
    Union[
        SetCellValueChange,
        SetFormulaChange,
        InsertColumnChange,
        InsertRowChange,
        ApplyFormulaToRangeChange,
        DeleteColumnChange,
        DeleteRowChange,
    ],
    Field(discriminator="type"),
]

change_list_adapter: TypeAdapter[List[Change]] = TypeAdapter(List[Change])


def parse_changes(raw: Any) -> List[Change]:
    """Validate a JSON-decoded list of change dicts."""
    return change_list_adapter.validate_python(raw)


class SkippedChange(BaseModel):
    index: int
    change_type: str
    reason: str


class ApplyReport(BaseModel):
    applied: int = 0
    skipped: List[SkippedChange] = []

    def merge(self, other: "ApplyReport") -> None:
        self.applied += other.applied
        self.skipped.extend(other.skipped)
