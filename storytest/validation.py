"""
Response cleaning and JSON parsing for LLM output.

Handles common LLM output issues: markdown wrapping, chatty prefixes, invalid JSON.
Stages decide what a parse failure means; this module only reports it.
"""

from __future__ import annotations
import json
import re
import logging
from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .exceptions import ResponseParseError

logger = logging.getLogger(__name__)

T = TypeVar('T', bound=BaseModel)

_FENCED_BLOCK = re.compile(r'```[a-zA-Z]*[ \t]*\n(.*?)\n?```', re.DOTALL)
_FENCE_OPEN = re.compile(r'^```[a-zA-Z]*[ \t]*\n?')


def strip_code_fences(response: str) -> str:
    """
    Extract source from markdown code fences (```typescript, ```ts, ```json, ```).

    Prose around a fenced block is dropped. An unclosed opening fence is removed.
    """
    match = _FENCED_BLOCK.search(response)
    if match:
        return match.group(1).strip()
    return _FENCE_OPEN.sub('', response.strip()).strip()


def clean_response(response: str) -> str:
    """Clean common LLM formatting issues around a JSON payload."""
    # Remove markdown code blocks
    response = re.sub(r'```json\s*\n?', '', response)
    response = re.sub(r'```\s*\n?', '', response)

    # Remove common prefixes/suffixes
    response = re.sub(r'^(Here\'s the.*?:|JSON:|Response:)\s*', '', response.strip(), flags=re.IGNORECASE)
    response = re.sub(r'\s*(That\'s the response|Hope this helps).*$', '', response, flags=re.IGNORECASE)

    return response.strip()


def parse_json_payload(response: str) -> Any:
    """
    Parse a JSON value out of an LLM response.

    Args:
        response: Raw LLM response

    Returns:
        The decoded JSON value (object, array, ...)

    Raises:
        ResponseParseError: If no JSON value can be decoded
    """
    cleaned = clean_response(response)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.debug(f"JSON parse error: {e}")
        logger.debug(f"Attempted to parse: {cleaned[:200]}...")

    # Repair: pull the outermost array or object out of surrounding prose
    match = re.search(r'\[.*\]|\{.*\}', cleaned, re.DOTALL)
    if match:
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            pass

    raise ResponseParseError(f"Response is not valid JSON: {cleaned[:200]}", raw_response=response)


def parse_model(response: str, model_class: Type[T]) -> T:
    """
    Parse an LLM response into a Pydantic model.

    Raises:
        ResponseParseError: If the payload is not JSON or does not validate
    """
    data = parse_json_payload(response)
    try:
        return model_class.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Pydantic validation failed: {e}")
        raise ResponseParseError(
            f"Response does not match {model_class.__name__}: {e.error_count()} error(s)",
            raw_response=response,
        ) from e
