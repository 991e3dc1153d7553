"""
Request / response schemas for the HTTP API.

The chat models (``ChatRequest`` / ``ChatResponse``) live in ``dto.chat``
because the bridge uses them directly; the models here only wrap the
session-oriented endpoints.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field

from dto.changes import ApplyReport, Change
from dto.chat import ChatResponse, HistoryMessage
from dto.workbook import WorkbookData


# -------------------------------------------------------------------
# Request models
# -------------------------------------------------------------------

class ActiveSheetRequest(BaseModel):
    """PUT /api/workbooks/{id}/active-sheet body."""
    index: int = Field(..., ge=0, description="0-based index of the sheet to show")


class CellEditRequest(BaseModel):
    """POST /api/workbooks/{id}/cells body."""
    cell: str = Field(..., min_length=2, description="A1-style cell reference")
    value: Any = Field(None, description="New content; strings starting with '=' are formulas")


class ChangesRequest(BaseModel):
    """POST /api/workbooks/{id}/changes body."""
    changes: List[Change]


class SessionChatRequest(BaseModel):
    """POST /api/workbooks/{id}/chat body; the workbook comes from the session."""
    message: str = Field(..., min_length=1)
    conversation_history: List[HistoryMessage] = []


# -------------------------------------------------------------------
# Response models
# -------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str
    timestamp: str


class WorkbookSessionResponse(BaseModel):
    session_id: str
    workbook: WorkbookData


class CellEditResponse(BaseModel):
    cell: str
    value: Any = None
    formula: Optional[str] = None


class ChangesResponse(BaseModel):
    report: ApplyReport
    workbook: WorkbookData


class SessionChatResponse(ChatResponse):
    report: ApplyReport
    workbook: WorkbookData
