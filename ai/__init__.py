from ai.service import AIService
from ai.factory import check_provider_configured, get_assistant_service
from ai.response_parser import parse_llm_json

__all__ = [
    "AIService",
    "check_provider_configured",
    "get_assistant_service",
    "parse_llm_json",
]
