"""Turn raw LLM text into a validated ``LLMDecision``.

The model is asked for bare JSON but sometimes wraps it in Markdown fences or
adds a sentence around it. The parser strips fences, takes the outermost
``{...}`` span and validates it against the decision contract. Anything that
does not fit is reported as one error type; nothing is repaired.
"""

from __future__ import annotations

import json
import logging
import re

from pydantic import ValidationError

from .errors import InvalidLLMResponseError
from .models import LLMDecision

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\n?", flags=re.IGNORECASE)


def strip_code_fences(raw: str) -> str:
    return _FENCE_PATTERN.sub("", raw).strip()


def extract_json_body(text: str) -> str:
    """Return the span from the first ``{`` to the last ``}``."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise InvalidLLMResponseError(
            "Invalid JSON response from Gemini: no JSON object found"
        )
    return text[start : end + 1]


def parse_llm_response(raw: str) -> LLMDecision:
    try:
        body = extract_json_body(strip_code_fences(raw))
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError as exc:
            raise InvalidLLMResponseError(f"Invalid JSON response from Gemini: {exc}") from exc
        if not isinstance(parsed, dict):
            raise InvalidLLMResponseError(
                "Invalid JSON response from Gemini: top-level value is not an object"
            )
        try:
            return LLMDecision.model_validate(parsed)
        except ValidationError as exc:
            reasons = "; ".join(_format_error(item) for item in exc.errors())
            raise InvalidLLMResponseError(
                f"Invalid JSON response from Gemini: {reasons}"
            ) from exc
    except InvalidLLMResponseError as exc:
        logger.warning("parser event=invalid_response reason=%s raw=%r", exc, raw[:500])
        raise


def _format_error(item: dict) -> str:
    location = ".".join(str(part) for part in item.get("loc", ()))
    message = item.get("msg", "invalid value")
    return f"{location}: {message}" if location else message
