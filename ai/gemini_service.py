import logging
from typing import Any, Dict, List, Optional

from google import genai
from google.genai import types

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

_DEFAULT_MODEL = "gemini-2.5-flash"

_MAX_RETRIES = 4
_MIN_WAIT_SECONDS = 2
_MAX_WAIT_SECONDS = 60

_RETRYABLE_EXCEPTIONS = (ConnectionError,)

_retry_decorator = retry(
    retry=retry_if_exception_type(_RETRYABLE_EXCEPTIONS),
    stop=stop_after_attempt(_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=_MIN_WAIT_SECONDS, max=_MAX_WAIT_SECONDS),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def _to_contents(transcript: List[TranscriptEntry]) -> List[types.Content]:
    contents: List[types.Content] = []
    for entry in transcript:
        if entry.role == "tool":
            parts = [
                types.Part.from_function_response(
                    name=result.name, response={"result": result.output}
                )
                for result in entry.tool_results
            ]
            contents.append(types.Content(role="user", parts=parts))
        elif entry.role == "assistant":
            parts = [types.Part.from_text(text=entry.text)] if entry.text else []
            parts.extend(
                types.Part.from_function_call(name=call.name, args=call.input)
                for call in entry.tool_calls
            )
            if parts:
                contents.append(types.Content(role="model", parts=parts))
        elif entry.text:
            contents.append(types.Content(role="user", parts=[types.Part.from_text(text=entry.text)]))
    return contents


class GeminiService(AIService):
    """AIService backed by the Google Gemini API."""

    def __init__(self, model: Optional[str] = None, max_tokens: Optional[int] = None):
        self._model = model or config.ASSISTANT_MODEL or _DEFAULT_MODEL
        self._max_tokens = max_tokens or config.ASSISTANT_MAX_TOKENS
        self._client = genai.Client()  # reads GEMINI_API_KEY / GOOGLE_API_KEY from env

    @_retry_decorator
    def run_tool_turn(
        self,
        system: str,
        transcript: List[TranscriptEntry],
        tools: List[Dict[str, Any]],
    ) -> AssistantTurn:
        declarations = [
            types.FunctionDeclaration(
                name=tool["name"],
                description=tool.get("description", ""),
                parameters_json_schema=tool["input_schema"],
            )
            for tool in tools
        ]
        response = self._client.models.generate_content(
            model=self._model,
            contents=_to_contents(transcript),
            config=types.GenerateContentConfig(
                system_instruction=system,
                max_output_tokens=self._max_tokens,
                tools=[types.Tool(function_declarations=declarations)],
                # The bridge executes tools itself.
                automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
            ),
        )

        texts: List[str] = []
        calls: List[ToolCall] = []
        candidate = response.candidates[0] if response.candidates else None
        parts = candidate.content.parts if candidate and candidate.content else None
        for i, part in enumerate(parts or []):
            if part.function_call is not None:
                calls.append(
                    ToolCall(
                        id=part.function_call.id or f"call_{i}",
                        name=part.function_call.name,
                        input=dict(part.function_call.args or {}),
                    )
                )
            elif part.text:
                texts.append(part.text)

        finish = candidate.finish_reason if candidate else None
        return AssistantTurn(
            text="".join(texts),
            tool_calls=calls,
            stop_reason="tool_use" if calls else (str(finish) if finish else None),
        )
