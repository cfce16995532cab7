"""Prompt-injection neutralisation and log-preview redaction."""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Protocol

_MAX_PREVIEW_CHARS = 300
_CONTEXT_MAX_CHARS = {"task_description": 5_000, "general": 1_000}
_REMOVED_MARKER = "[REMOVED]"

_Replacement = str | Callable[[re.Match[str]], str]

_INJECTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?i)ignore\s+(?:previous|all|above|prior)\s+instructions?"),
    re.compile(r"(?i)disregard\s+(?:previous|all|above)\s+(?:instructions?|rules?)"),
    re.compile(r"(?i)\bsystem\s*:\s*"),
    re.compile(r"(?i)\bassistant\s*:\s*"),
    re.compile(r"(?i)\[/?INST\]"),
    re.compile(r"<\|im_(?:start|end)\|>"),
    re.compile(r"(?i)```\s*system"),
    re.compile(r"(?i)(?:new|updated)\s+instructions?:"),
)
_CODE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"os\.environ"),
    re.compile(r"__import__\s*\("),
    re.compile(r"\beval\s*\("),
    re.compile(r"\bexec\s*\("),
    re.compile(r"\bsubprocess\b"),
    re.compile(r"process\.env"),
    re.compile(r"child_process"),
)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

_PREVIEW_REPLACEMENTS: tuple[tuple[re.Pattern[str], _Replacement], ...] = (
    (
        re.compile(r"(?i)\b(bearer)\s+[a-z0-9._\-]{8,}\b"),
        r"\1 [redacted-token]",
    ),
    (
        re.compile(r"(?i)\b(sk-[a-z0-9\-]{8,})\b"),
        "[redacted-token]",
    ),
    (
        re.compile(
            r"(?i)\b(taskpilot|openai|anthropic|gemini|hf|huggingface)[a-z0-9_]*_?(api_)?(key|token)\b"
            r"\s*[:=]\s*['\"]?[^'\" \n\r\t]+['\"]?",
        ),
        "[redacted-secret]",
    ),
    (
        re.compile(r"(?i)([?&](?:token|key|signature|auth)=[^&\s]+)"),
        lambda match: match.group(1).split("=")[0] + "=[redacted]",
    ),
    (
        re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
        "[redacted-email]",
    ),
)


class Sanitizer(Protocol):
    """Collaborator neutralising prompt-injection payloads."""

    def sanitize(self, text: str, context: str) -> str:
        """Return text safe to embed into a model prompt."""
        raise NotImplementedError


class PromptSanitizer:
    """Default sanitizer: strips injection markers, fences code, clamps size.

    Idempotent: sanitizing an already sanitized text returns it unchanged.
    """

    def __init__(
        self,
        *,
        task_description_max_chars: int = _CONTEXT_MAX_CHARS["task_description"],
    ) -> None:
        self._max_chars = {**_CONTEXT_MAX_CHARS, "task_description": task_description_max_chars}

    def sanitize(self, text: str, context: str = "general") -> str:
        if not text:
            return ""

        sanitized = text
        for pattern in _INJECTION_PATTERNS:
            sanitized = pattern.sub(_REMOVED_MARKER, sanitized)
        for pattern in _CODE_PATTERNS:
            sanitized = pattern.sub(_fence_code, sanitized)

        max_chars = self._max_chars.get(context, self._max_chars["general"])
        sanitized = sanitized[:max_chars]
        return _CONTROL_CHARS.sub("", sanitized)


def _fence_code(match: re.Match[str]) -> str:
    start = match.start()
    if match.string[max(0, start - 7) : start] == "[CODE: ":
        return match.group(0)
    return f"[CODE: {match.group(0)}]"


def sanitize_preview(text: str, *, max_chars: int = _MAX_PREVIEW_CHARS) -> str:
    """Redact obvious secrets/PII and clamp payload size for log lines."""

    compact = text.strip()
    if not compact:
        return ""

    redacted = compact
    for pattern, replacement in _PREVIEW_REPLACEMENTS:
        redacted = pattern.sub(replacement, redacted)

    if len(redacted) <= max_chars:
        return redacted
    return redacted[:max_chars]
