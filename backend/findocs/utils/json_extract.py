import json
from typing import Any, Dict, Optional

from findocs.core.errors import StructuredOutputError


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Best-effort parse of the JSON object embedded in model output.

    Everything from the first ``{`` to the last ``}`` is treated as the payload.
    Returns ``None`` when there is no such span, it is not valid JSON, or it
    does not decode to an object. Callers fall back to using the raw text.
    """
    try:
        return require_json_object(text)
    except StructuredOutputError:
        return None


def require_json_object(text: Optional[str]) -> Dict[str, Any]:
    if not text:
        raise StructuredOutputError("empty response")
    first_brace = text.find("{")
    last_brace = text.rfind("}")
    if first_brace == -1 or last_brace < first_brace:
        raise StructuredOutputError("no JSON object in response")
    try:
        parsed = json.loads(text[first_brace:last_brace + 1])
    except json.JSONDecodeError as e:
        raise StructuredOutputError(f"malformed JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise StructuredOutputError("JSON payload is not an object")
    return parsed
