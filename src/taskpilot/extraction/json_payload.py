"""JSON object recovery from free-form model output.

Parsing never raises: it reports a ``ParseOutcome`` so callers can tell a
clean extraction from a repaired one or a fallback to defaults.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?)\s*```", re.DOTALL | re.IGNORECASE)
_BARE_PROPERTY = re.compile(r"([{,]\s*)([A-Za-z_$][A-Za-z0-9_$]*)(\s*:)")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_CLOSERS = {"{": "}", "[": "]"}


class ParseOutcome(str, Enum):
    """How the model output became parameters."""

    CLEAN = "clean"
    REPAIRED = "repaired"
    DEFAULTED = "defaulted"


@dataclass(frozen=True, slots=True)
class ParseResult:
    outcome: ParseOutcome
    payload: dict[str, Any] | None = None
    error: str | None = None


def parse_model_output(text: str) -> ParseResult:
    """Parse the first JSON object in ``text``, with one deterministic repair pass."""

    candidate = extract_json_candidate(text)
    if candidate is None:
        return ParseResult(outcome=ParseOutcome.DEFAULTED, error="no JSON object in response")

    payload, error = _load_object(candidate)
    if payload is not None:
        return ParseResult(outcome=ParseOutcome.CLEAN, payload=payload)

    repaired_payload, repair_error = _load_object(repair_json(candidate))
    if repaired_payload is not None:
        return ParseResult(outcome=ParseOutcome.REPAIRED, payload=repaired_payload)
    return ParseResult(
        outcome=ParseOutcome.DEFAULTED,
        error=f"{error}; after repair: {repair_error}",
    )


def extract_json_candidate(text: str) -> str | None:
    """First ``{...}`` span, preferring a fenced block; may be unbalanced at the tail."""

    stripped = (text or "").strip()
    if not stripped:
        return None
    fenced = _FENCED_JSON.search(stripped)
    source = fenced.group(1) if fenced is not None else stripped

    start = source.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(source)):
        char = source[index]
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
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return source[start : index + 1]
    return source[start:]


def repair_json(raw: str) -> str:
    """Swap single quotes for double, quote bare names, close brackets, drop trailing commas."""

    segments = _split_strings(_normalize_single_quotes(raw))
    rebuilt = "".join(
        text if is_string else _BARE_PROPERTY.sub(r'\1"\2"\3', text) for is_string, text in segments
    )
    rebuilt = _close_unbalanced(rebuilt)
    segments = _split_strings(rebuilt)
    return "".join(
        text if is_string else _TRAILING_COMMA.sub(r"\1", text) for is_string, text in segments
    )


def _normalize_single_quotes(raw: str) -> str:
    """Rewrite ``'...'`` literals outside double-quoted strings as JSON strings."""

    out: list[str] = []
    for is_string, text in _split_strings(raw):
        if is_string:
            out.append(text)
            continue
        index = 0
        while index < len(text):
            char = text[index]
            if char != "'":
                out.append(char)
                index += 1
                continue
            body: list[str] = []
            index += 1
            while index < len(text) and text[index] != "'":
                if text[index] == "\\" and index + 1 < len(text):
                    escaped = text[index + 1]
                    body.append(escaped if escaped == "'" else text[index : index + 2])
                    index += 2
                    continue
                body.append(text[index])
                index += 1
            index += 1
            out.append('"' + "".join(body) + '"')
    return "".join(out)


def _load_object(raw: str) -> tuple[dict[str, Any] | None, str | None]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as error:
        return None, str(error)
    if not isinstance(parsed, dict):
        return None, f"expected a JSON object, got {type(parsed).__name__}"
    return parsed, None


def _split_strings(text: str) -> list[tuple[bool, str]]:
    """Split into (is_string_literal, text) segments; an open string runs to the end."""

    segments: list[tuple[bool, str]] = []
    buffer: list[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            buffer.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                segments.append((True, "".join(buffer)))
                buffer = []
                in_string = False
            continue
        if char == '"':
            if buffer:
                segments.append((False, "".join(buffer)))
            buffer = [char]
            in_string = True
            continue
        buffer.append(char)
    if buffer:
        segments.append((in_string, "".join(buffer)))
    return segments


def _close_unbalanced(text: str) -> str:
    stack: list[str] = []
    segments = _split_strings(text)
    for is_string, segment in segments:
        if is_string:
            continue
        for char in segment:
            if char in _CLOSERS:
                stack.append(char)
            elif char in "}]" and stack and _CLOSERS[stack[-1]] == char:
                stack.pop()

    closed = text
    if segments and segments[-1][0] and not _is_closed_string(segments[-1][1]):
        closed += '"'
    return closed + "".join(_CLOSERS[opener] for opener in reversed(stack))


def _is_closed_string(segment: str) -> bool:
    if len(segment) < 2 or not segment.endswith('"'):
        return False
    backslashes = len(segment[:-1]) - len(segment[:-1].rstrip("\\"))
    return backslashes % 2 == 0
