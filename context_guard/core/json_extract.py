"""Extract structured judgments from free-form model output.

Models acting as classifiers are asked for a JSON object but routinely wrap
it in prose, markdown fences or ``<think>`` blocks. ``extract_json_object``
finds the first balanced ``{...}`` block and decodes it; ``decode_or_default``
turns that into a total function that never raises.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Callable, TypeVar

from ..types import ParseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)


def _strip_wrappers(text: str) -> str:
    text = text.strip()

    # Strip markdown fences
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)

    # Strip thinking tags (reasoning models wrap output in <think>...</think>)
    if "<think>" in text:
        text = _THINK_RE.sub("", text).strip()

    return text


def find_balanced_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring, honoring JSON strings."""
    start = text.find("{")
    while start >= 0:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this brace; try the next opening brace
        start = text.find("{", start + 1)
    return None


def extract_json_object(text: str | None) -> dict:
    """Decode the first JSON object in *text*. Raises ParseError."""
    if not text or not text.strip():
        raise ParseError("empty model output")

    cleaned = _strip_wrappers(text)
    block = find_balanced_object(cleaned)
    if block is None:
        raise ParseError("no JSON object found in model output")

    try:
        data = json.loads(block)
    except json.JSONDecodeError as e:
        raise ParseError(f"malformed JSON object: {e}") from e

    if not isinstance(data, dict):
        raise ParseError("decoded JSON is not an object")
    return data


def decode_or_default(
    text: str | None,
    build: Callable[[dict], T],
    default: Callable[[], T],
    label: str = "judgment",
) -> T:
    """Decode *text* with *build*, or return ``default()`` on any parse problem."""
    try:
        data = extract_json_object(text)
        return build(data)
    except (ParseError, TypeError, ValueError) as e:
        logger.warning("Could not parse %s output, using neutral default: %s", label, e)
        return default()


def coerce_bool(value, default: bool = False) -> bool:
    """Models write booleans as true/"true"/"yes"/1; normalize them."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "y", "1"):
            return True
        if lowered in ("false", "no", "n", "0", ""):
            return False
    return default


def coerce_score(value, default: int) -> int:
    """Clamp a 0..100 score. Non-numeric values read as *default*."""
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        match = re.search(r"-?\d+(?:\.\d+)?", value)
        if not match:
            return default
        value = match.group(0)
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(0, min(100, score))


def coerce_str_list(value) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value if v is not None and str(v).strip()]
    if isinstance(value, str) and value.strip():
        return [value]
    return []
