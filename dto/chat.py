"""
DTOs for the assistant conversation.

The transcript types (``ToolCall``, ``ToolResult``, ``AssistantTurn``,
``TranscriptEntry``) are provider-neutral; each ``AIService`` converts them
to its own wire format.  ``ChatRequest`` / ``ChatResponse`` are what the
HTTP layer exchanges with the client.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from dto.changes import Change
from dto.workbook import WorkbookData


class ToolCall(BaseModel):
    id: str
    name: str
    input: Dict[str, Any] = {}


class ToolResult(BaseModel):
    tool_call_id: str
    name: str
    output: Any = None


class AssistantTurn(BaseModel):
    text: str = ""
    tool_calls: List[ToolCall] = []
    stop_reason: Optional[str] = None


class TranscriptEntry(BaseModel):
    role: Literal["user", "assistant", "tool"]
    text: str = ""
    tool_calls: List[ToolCall] = []
    tool_results: List[ToolResult] = []


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ToolCallRecord(BaseModel):
    tool: str
    input: Dict[str, Any] = {}
    result: Any = None


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    spreadsheet_data: Optional[WorkbookData] = None
    conversation_history: List[HistoryMessage] = []


class ChatResponse(BaseModel):
    message: str
    tool_calls: List[ToolCallRecord] = []
    changes: List[Change] = []
    conversation_history: List[HistoryMessage] = []
