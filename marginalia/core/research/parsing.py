"""
Helpers for pulling JSON out of free-form model replies.
"""

import json
from typing import Optional

_decoder = json.JSONDecoder()


def extract_json_object(text: Optional[str]) -> dict:
    """
    Return the first well-formed JSON object embedded in ``text``.

    Models often wrap their answer in prose or a fenced code block; every
    ``{`` is tried as a starting point until one decodes to an object.

    Raises:
        ValueError: if no JSON object can be decoded.
    """
    text = text or ""
    start = text.find("{")
    while start != -1:
        try:
            value, _end = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    raise ValueError("LLM output missing JSON")
