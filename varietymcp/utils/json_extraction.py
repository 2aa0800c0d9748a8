"""Helpers for pulling JSON out of free-form LLM output."""

import re

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json_from_response(content: str) -> str:
    """Return the JSON text embedded in an LLM response.

    Handles markdown code fences and leading/trailing prose. Falls back to the
    stripped content when nothing better is found, so json.loads reports the
    actual parse error.
    """
    text = content.strip()

    fence = _FENCE_PATTERN.search(text)
    if fence:
        text = fence.group(1).strip()

    if text.startswith(("{", "[")):
        return text

    start_candidates = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not start_candidates:
        return text
    start = min(start_candidates)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        return text
    return text[start : end + 1]
