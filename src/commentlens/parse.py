"""Recover structured analysis data from raw, possibly malformed model output.

Generative models occasionally wrap JSON in Markdown fences, leave trailing
commas, or stop mid-array when they hit a token limit. Each repair below is a
pure ``str -> dict`` attempt that raises ``ValueError`` on failure; they run
in order and the first success wins.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from commentlens.errors import MalformedOutput
from commentlens.models import ModelOutput

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```json\n?|\n?```")
_TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")

_CLOSERS = {"{": "}", "[": "]"}


def strip_fences(raw: str) -> str:
    """Remove Markdown code-fence markers and surrounding whitespace."""
    return _FENCE_RE.sub("", raw).strip()


def _loads_object(text: str) -> dict[str, Any]:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def _strict(text: str) -> dict[str, Any]:
    return _loads_object(text)


def _without_trailing_commas(text: str) -> dict[str, Any]:
    return _loads_object(_TRAILING_COMMA_RE.sub(r"\1", text))


def _close_open_brackets(prefix: str) -> str:
    """Append the closers for every bracket still open at the end of *prefix*.

    Brackets inside string literals are ignored. Raises ``ValueError`` if the
    prefix ends inside a string or has a mismatched closer.
    """
    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in prefix:
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
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "}]":
            if not stack or stack.pop() != ch:
                raise ValueError("mismatched closing bracket")
    if in_string:
        raise ValueError("prefix ends inside a string literal")
    return prefix + "".join(reversed(stack))


def _truncated_at_last_brace(text: str) -> dict[str, Any]:
    last_close = text.rfind("}")
    if last_close <= 0:
        raise ValueError("no closing brace to truncate at")
    return _loads_object(_close_open_brackets(text[: last_close + 1]))


# Order matters: cheapest and least invasive repair first.
_ATTEMPTS: list[tuple[str, Callable[[str], dict[str, Any]]]] = [
    ("strict", _strict),
    ("trailing-comma", _without_trailing_commas),
    ("truncated", _truncated_at_last_brace),
]


def recover_json(raw: str) -> dict[str, Any]:
    """Return the first JSON object any repair layer can decode from *raw*."""
    text = strip_fences(raw)
    for name, attempt in _ATTEMPTS:
        try:
            data = attempt(text)
        except ValueError as exc:
            logger.debug("JSON layer '%s' failed: %s", name, exc)
            continue
        if name != "strict":
            logger.warning("Model output recovered via '%s' repair", name)
        return data
    raise MalformedOutput(
        f"Failed to parse AI response as JSON (starts with {text[:50]!r})"
    )


def parse_model_output(raw: str) -> ModelOutput:
    """Parse raw generation-service text into a :class:`ModelOutput`."""
    data = recover_json(raw)
    try:
        return ModelOutput.model_validate(data)
    except ValidationError as exc:
        raise MalformedOutput(f"AI response has an unexpected shape: {exc}") from exc
