from abc import ABC, abstractmethod
from typing import Any, Dict, List

from dto.chat import AssistantTurn, TranscriptEntry


class AIService(ABC):
    """
    Base class for the LLM providers the assistant can talk to.

    Subclasses implement ``run_tool_turn``: one request/response exchange
    in a tool-calling conversation.  The transcript and the returned turn
    use the provider-neutral DTOs from ``dto.chat``; converting them to and
    from the provider's wire format is the subclass's job.

    Tools are given as ``{"name", "description", "input_schema"}`` dicts,
    where ``input_schema`` is a JSON schema object.
    """

    @abstractmethod
    def run_tool_turn(
        self,
        system: str,
        transcript: List[TranscriptEntry],
        tools: List[Dict[str, Any]],
    ) -> AssistantTurn:
        """Send the conversation so far and return the model's next turn."""
        ...
