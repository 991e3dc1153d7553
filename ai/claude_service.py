"""
AIService implementation backed by the Anthropic Claude API.

Tool calls come back as ``tool_use`` content blocks; their results are sent
back as ``tool_result`` blocks inside a user message.

Reads ANTHROPIC_API_KEY from the environment.
Default model: claude-sonnet-4-20250514 (override with ASSISTANT_MODEL).

Retries transient errors (rate-limit, overloaded, connection, timeout)
with exponential backoff via tenacity.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from anthropic import (
    Anthropic,
    APIConnectionError,
    APITimeoutError,
    RateLimitError,
    InternalServerError,
)
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

import config
from ai.service import AIService
from dto.chat import AssistantTurn, ToolCall, TranscriptEntry

logger = logging.getLogger(__name__)

_DEFAULT_MODEL = "claude-sonnet-4-20250514"

# Retry configuration
_MAX_RETRIES = 4
_MIN_WAIT_SECONDS = 2
_MAX_WAIT_SECONDS = 60

# Transient exception types that should trigger a retry.
_RETRYABLE_EXCEPTIONS = (
    APIConnectionError,
    APITimeoutError,
    RateLimitError,
    InternalServerError,
)

_retry_decorator = retry(
    retry=retry_if_exception_type(_RETRYABLE_EXCEPTIONS),
    stop=stop_after_attempt(_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=_MIN_WAIT_SECONDS, max=_MAX_WAIT_SECONDS),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def _to_messages(transcript: List[TranscriptEntry]) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    for entry in transcript:
        if entry.role == "tool":
            messages.append(
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": result.tool_call_id,
                            "content": json.dumps(result.output, default=str),
                        }
                        for result in entry.tool_results
                    ],
                }
            )
        elif entry.role == "assistant" and entry.tool_calls:
            blocks: List[Dict[str, Any]] = []
            if entry.text:
                blocks.append({"type": "text", "text": entry.text})
            for call in entry.tool_calls:
                blocks.append(
                    {"type": "tool_use", "id": call.id, "name": call.name, "input": call.input}
                )
            messages.append({"role": "assistant", "content": blocks})
        elif entry.text:
            # The API rejects empty text turns.
            messages.append({"role": entry.role, "content": entry.text})
    return messages


class ClaudeService(AIService):
    """AIService backed by the Anthropic Claude API."""

    def __init__(self, model: Optional[str] = None, max_tokens: Optional[int] = None):
        self._model = model or config.ASSISTANT_MODEL or _DEFAULT_MODEL
        self._max_tokens = max_tokens or config.ASSISTANT_MAX_TOKENS
        self._client = Anthropic()  # reads ANTHROPIC_API_KEY from env

    @_retry_decorator
    def run_tool_turn(
        self,
        system: str,
        transcript: List[TranscriptEntry],
        tools: List[Dict[str, Any]],
    ) -> AssistantTurn:
        message = self._client.messages.create(
            model=self._model,
            max_tokens=self._max_tokens,
            system=system,
            tools=tools,
            messages=_to_messages(transcript),
        )

        texts: List[str] = []
        calls: List[ToolCall] = []
        for block in message.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                calls.append(ToolCall(id=block.id, name=block.name, input=dict(block.input or {})))

        logger.debug(
            "  [Claude] stop_reason=%s, %d tool call(s)", message.stop_reason, len(calls)
        )
        return AssistantTurn(
            text="\n".join(t for t in texts if t),
            tool_calls=calls,
            stop_reason=message.stop_reason,
        )
