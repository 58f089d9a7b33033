# tasks/ai_engine/parsing.py
"""
Structured-output parsing for model responses.

Models are asked for JSON but sometimes wrap it in prose or markdown fences.
``parse_model_json`` isolates the first balanced ``{...}`` (or ``[...]``)
block that decodes as JSON, validates it against a DRF serializer schema and
returns the validated data. Every failure raises ``ModelResponseError`` so
each call site can apply its own fallback.
"""

import json
import logging
from typing import Any, Iterator, Optional, Type

from rest_framework import serializers

from .exceptions import ModelResponseError

logger = logging.getLogger(__name__)

_CLOSING = {"{": "}", "[": "]"}


def _balanced_blocks(text: str, opening: str) -> Iterator[str]:
    """Yield every balanced block starting with ``opening``; braces inside strings are ignored."""
    closing = _CLOSING[opening]
    length = len(text)
    for start in range(length):
        if text[start] != opening:
            continue
        depth = 0
        in_string = False
        escaped = False
        for end in range(start, length):
            char = text[end]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == opening:
                depth += 1
            elif char == closing:
                depth -= 1
                if depth == 0:
                    yield text[start : end + 1]
                    break
        # unmatched, try the next start


def extract_json_text(content: Optional[str], opening: str = "{") -> Optional[str]:
    """Return the first balanced block that decodes as JSON, or None."""
    if not content:
        return None
    for block in _balanced_blocks(content.strip(), opening):
        try:
            json.loads(block)
        except json.JSONDecodeError:
            continue
        return block
    return None


def parse_model_json(
    content: Optional[str],
    schema: Type[serializers.Serializer],
    many: bool = False,
) -> Any:
    """
    Extract, decode and validate a model response.

    Args:
        content: Raw model text.
        schema: Serializer class describing one object.
        many: Expect a JSON array of such objects instead of a single object.

    Raises:
        ModelResponseError: Nothing usable could be extracted.
    """
    text = extract_json_text(content, "[" if many else "{")
    if text is None:
        raise ModelResponseError("No JSON found in model response")

    payload = json.loads(text)

    serializer = schema(data=payload, many=many)
    if not serializer.is_valid():
        logger.debug(f"Model payload rejected by {schema.__name__}: {serializer.errors}")
        raise ModelResponseError(f"Model response does not match {schema.__name__}: {serializer.errors}")

    return serializer.validated_data
