"""
AssistantBridge — runs one chat request through the LLM tool-calling loop.

    user message + workbook snapshot
        → system prompt with workbook outline
        → model turn ─┬─ tool calls → execute against a working copy → results → model turn ...
                      └─ text only  → done

The returned ``ChatResponse`` lists every tool call with its result and
the ordered changes the client should apply to its own copy.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import config
from ai.factory import get_assistant_service
from ai.service import AIService
from assistant.tools import TOOLS, execute_tool
from dto.changes import Change
from dto.chat import (
    ChatRequest,
    ChatResponse,
    HistoryMessage,
    ToolCallRecord,
    ToolResult,
    TranscriptEntry,
)
from dto.workbook import WorkbookData
from prompts.assistant import get_assistant_system_prompt

logger = logging.getLogger(__name__)

DEFAULT_REPLY = "Done!"


class AssistantBridge:
    """
    Usage::

        bridge = AssistantBridge()
        response = bridge.chat(ChatRequest(message="Add a Total column", spreadsheet_data=wb))
    """

    def __init__(self, service: Optional[AIService] = None, max_rounds: Optional[int] = None):
        self._service = service
        self._max_rounds = max_rounds if max_rounds is not None else config.ASSISTANT_MAX_TOOL_ROUNDS

    @property
    def service(self) -> AIService:
        if self._service is None:
            self._service = get_assistant_service()
        return self._service

    def chat(self, request: ChatRequest) -> ChatResponse:
        service = self.service
        working = (
            request.spreadsheet_data.model_copy(deep=True)
            if request.spreadsheet_data is not None
            else WorkbookData()
        )
        system = get_assistant_system_prompt(request.spreadsheet_data)

        transcript: List[TranscriptEntry] = [
            TranscriptEntry(role=m.role, text=m.content) for m in request.conversation_history
        ]
        transcript.append(TranscriptEntry(role="user", text=request.message))

        records: List[ToolCallRecord] = []
        changes: List[Change] = []

        turn = service.run_tool_turn(system, transcript, TOOLS)
        rounds = 0
        while turn.tool_calls:
            if rounds >= self._max_rounds:
                logger.warning(
                    "  [Bridge] Stopping after %d tool round(s); %d call(s) left unanswered",
                    rounds,
                    len(turn.tool_calls),
                )
                break
            rounds += 1
            transcript.append(
                TranscriptEntry(role="assistant", text=turn.text, tool_calls=turn.tool_calls)
            )

            results: List[ToolResult] = []
            for call in turn.tool_calls:
                outcome = execute_tool(call.name, call.input, working)
                records.append(ToolCallRecord(tool=call.name, input=call.input, result=outcome.output))
                if outcome.change is not None:
                    changes.append(outcome.change)
                results.append(
                    ToolResult(tool_call_id=call.id, name=call.name, output=outcome.output)
                )
            transcript.append(TranscriptEntry(role="tool", tool_results=results))

            turn = service.run_tool_turn(system, transcript, TOOLS)

        message = turn.text or DEFAULT_REPLY
        logger.info(
            "  [Bridge] %d tool call(s) over %d round(s), %d change(s)",
            len(records),
            rounds,
            len(changes),
        )
        return ChatResponse(
            message=message,
            tool_calls=records,
            changes=changes,
            conversation_history=[
                *request.conversation_history,
                HistoryMessage(role="user", content=request.message),
                HistoryMessage(role="assistant", content=message),
            ],
        )
