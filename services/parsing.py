"""
Normalisation of content-service output.

Even when a JSON schema is requested the text that comes back is free-form:
it may be wrapped in a markdown fence, be prefixed with prose, or be cut off.
Every parse site goes through here and treats those cases as expected.
"""

import json
import re
from typing import Any

from catalog.errors import ParseError

_FENCE = re.compile(r"^\s*```[\w-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """
    Remove a surrounding ``` / ```json fence if present.

    >>> strip_code_fences('```json\\n[1, 2]\\n```')
    '[1, 2]'
    """
    text = text.strip()
    match = _FENCE.match(text)
    if match:
        return match.group(1).strip()
    return text


def parse_json(text: str | None) -> Any:
    """Parse a (possibly fenced) JSON document; ParseError on anything else."""
    if text is None or not text.strip():
        raise ParseError("Empty response from content service.")
    body = strip_code_fences(text)
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Response is not valid JSON: {exc.msg}") from exc


def parse_array(text: str | None, key: str | None = None) -> list[Any]:
    """
    Parse a JSON array.

    Structured-output transports only accept an object at the root, so an
    object holding exactly the array under `key` is unwrapped.
    """
    data = parse_json(text)
    if isinstance(data, dict) and key is not None and isinstance(data.get(key), list):
        data = data[key]
    if not isinstance(data, list):
        raise ParseError(f"Expected a JSON array, got {type(data).__name__}.")
    return data


def parse_object(text: str | None) -> dict[str, Any]:
    data = parse_json(text)
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}.")
    return data
