import json
import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI, APIConnectionError, APITimeoutError, RateLimitError, InternalServerError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

import config
from ai.response_parser import parse_llm_json
from ai.service import AIService
from dto.chat import AssistantTurn, ToolCall, TranscriptEntry

logger = logging.getLogger(__name__)

_DEFAULT_MODEL = "gpt-5.2"

_MAX_RETRIES = 4
_MIN_WAIT_SECONDS = 2
_MAX_WAIT_SECONDS = 60

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


def _to_functions(tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool.get("description", ""),
                "parameters": tool["input_schema"],
            },
        }
        for tool in tools
    ]


def _to_messages(system: str, transcript: List[TranscriptEntry]) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]
    for entry in transcript:
        if entry.role == "tool":
            # One message per result, keyed by the call id.
            for result in entry.tool_results:
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": result.tool_call_id,
                        "content": json.dumps(result.output, default=str),
                    }
                )
        elif entry.role == "assistant" and entry.tool_calls:
            messages.append(
                {
                    "role": "assistant",
                    "content": entry.text or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": json.dumps(call.input)},
                        }
                        for call in entry.tool_calls
                    ],
                }
            )
        else:
            messages.append({"role": entry.role, "content": entry.text})
    return messages


def _parse_arguments(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    parsed = parse_llm_json(raw)
    if not isinstance(parsed, dict):
        logger.warning("  [OpenAI] Tool arguments are not a JSON object: %s", raw[:200])
        return {}
    return parsed


class OpenAIService(AIService):
    """AIService backed by the OpenAI chat completions API (function tools)."""

    def __init__(self, model: Optional[str] = None, max_tokens: Optional[int] = None):
        self._model = model or config.ASSISTANT_MODEL or _DEFAULT_MODEL
        self._max_tokens = max_tokens or config.ASSISTANT_MAX_TOKENS
        self._client = OpenAI()  # reads OPENAI_API_KEY from env

    @_retry_decorator
    def run_tool_turn(
        self,
        system: str,
        transcript: List[TranscriptEntry],
        tools: List[Dict[str, Any]],
    ) -> AssistantTurn:
        response = self._client.chat.completions.create(
            model=self._model,
            max_completion_tokens=self._max_tokens,
            messages=_to_messages(system, transcript),
            tools=_to_functions(tools),
        )
        choice = response.choices[0]
        calls = [
            ToolCall(
                id=call.id,
                name=call.function.name,
                input=_parse_arguments(call.function.arguments),
            )
            for call in (choice.message.tool_calls or [])
        ]
        return AssistantTurn(
            text=choice.message.content or "",
            tool_calls=calls,
            stop_reason=choice.finish_reason,
        )
