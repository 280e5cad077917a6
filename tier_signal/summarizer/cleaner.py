"""
TIER SIGNAL — Lenient JSON Parsing
Model output is often almost-JSON. Trailing commas before a closing bracket
are the common failure, so they are stripped before a second attempt.
"""
import json
import re
from typing import Any

_TRAILING_COMMA = re.compile(r",(\s*[\]}])")
_CODE_FENCE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$")


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", text)


def parse_lenient_json(text: str) -> Any:
    """
    Parse `text` as JSON, retrying once with trailing commas removed.
    Raises ValueError carrying both parse errors when the cleaned text still fails.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError as original:
        cleaned = remove_trailing_commas(_CODE_FENCE.sub("", text))
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ValueError(
                f"failed to parse cleaned JSON: {e}; original error: {original}"
            ) from e
