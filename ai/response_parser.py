"""
Utilities for reading structured data out of LLM output, such as
function-call arguments that arrive as JSON text.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


def parse_llm_json(raw: str) -> Optional[Union[Dict[str, Any], List[Any]]]:
    """
    Parse a JSON object or array from a (possibly messy) LLM response.

    Well-formed JSON is returned as-is.  Otherwise handles:
      - Markdown code fences (```json ... ```)
      - Leading/trailing prose around the JSON payload

    Returns the parsed Python dict/list, or ``None`` if no valid JSON was
    found.
    """
    cleaned = raw.strip()
    cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned)
    cleaned = re.sub(r"\s*```$", "", cleaned)
    cleaned = cleaned.strip()

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, (dict, list)):
        return parsed

    # Whichever bracket opens first is the outermost payload.
    obj_start, arr_start = cleaned.find("{"), cleaned.find("[")
    if obj_start != -1 and (arr_start == -1 or obj_start < arr_start):
        candidates = [("{", "}"), ("[", "]")]
    else:
        candidates = [("[", "]"), ("{", "}")]

    for open_char, close_char in candidates:
        json_str = _extract_json_substring(cleaned, open_char, close_char)
        if json_str is None:
            continue
        try:
            return json.loads(json_str)
        except json.JSONDecodeError as exc:
            logger.warning("Failed to parse LLM JSON: %s: %s", exc, json_str[:200])
            return None

    logger.warning(
        "LLM response did not contain a JSON object or array: %s",
        raw[:200],
    )
    return None


def _extract_json_substring(
    text: str, open_char: str, close_char: str
) -> Optional[str]:
    """Find the outermost ``open_char … close_char`` substring."""
    start = text.find(open_char)
    end = text.rfind(close_char)
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]
