"""Local PII detection and masking with typed, per-call numbered placeholders.

Nothing in this module performs network I/O. The only text that may leave the
process afterwards is ``TokenizedText.tokenized_text``; the ``pii_map`` values
stay with the caller and must never be logged.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class PiiType(str, Enum):
    """Kinds of PII recognised by the local detectors."""

    EMAIL = "email"
    PHONE = "phone"
    NAME = "name"
    ADDRESS = "address"


@dataclass(frozen=True, slots=True)
class PiiEntry:
    """Original value hidden behind one placeholder."""

    type: PiiType
    original_value: str


PiiMap = dict[str, PiiEntry]


@dataclass(frozen=True, slots=True)
class TokenCounter:
    """Placeholder counter threaded through detectors for a single call."""

    value: int = 0

    def next(self) -> tuple[int, TokenCounter]:
        return self.value, TokenCounter(self.value + 1)


@dataclass(slots=True)
class TokenizedText:
    """Result of masking PII in one piece of text."""

    tokenized_text: str
    pii_map: PiiMap = field(default_factory=dict)

    @property
    def has_pii(self) -> bool:
        return bool(self.pii_map)

    def pii_types(self) -> list[str]:
        """PII kinds found, safe to log."""

        return [entry.type.value for entry in self.pii_map.values()]


_EMAIL = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_PHONE = re.compile(
    r"(?<![\w\[])"
    r"(?:\+?1[-.\s]?)?"
    r"(?:\(\d{3}\)|\d{3})[-.\s]?"
    r"\d{3}[-.\s]?\d{4}"
    r"(?:\s*(?:ext\.?|x|extension)\s*\d{1,6})?"
    r"\b",
    re.IGNORECASE,
)
_NAME_CONTEXT = re.compile(
    r"(?i:\b(?:client\s+name|customer\s+name|contact\s+name|name|contact|person|client))"
    r"[\s:]+"
    r"([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)+)",
)
_ADDRESS = re.compile(
    r"\b\d+\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\s+"
    r"(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive|Dr|Court|Ct|Way)\b\.?",
)


def tokenize(text: str) -> TokenizedText:
    """Replace detected PII with ``[TYPE_n]`` placeholders.

    Detectors run in a fixed order (email, phone, name, address). Each one
    scans the output of the previous, so a span masked once is never matched
    again.
    """

    pii_map: PiiMap = {}
    counter = TokenCounter()
    tokenized = text or ""

    tokenized, counter = _mask_pattern(
        tokenized, _EMAIL, PiiType.EMAIL, pii_map, counter, group=0
    )
    tokenized, counter = _mask_pattern(
        tokenized, _PHONE, PiiType.PHONE, pii_map, counter, group=0
    )
    tokenized, counter = _mask_pattern(
        tokenized, _NAME_CONTEXT, PiiType.NAME, pii_map, counter, group=1
    )
    tokenized, counter = _mask_pattern(
        tokenized, _ADDRESS, PiiType.ADDRESS, pii_map, counter, group=0
    )

    if pii_map:
        logger.info(
            "PII tokenized locally: count=%d types=%s",
            len(pii_map),
            ",".join(sorted({entry.type.value for entry in pii_map.values()})),
        )
    return TokenizedText(tokenized_text=tokenized, pii_map=pii_map)


def _mask_pattern(  # noqa: PLR0913
    text: str,
    pattern: re.Pattern[str],
    pii_type: PiiType,
    pii_map: PiiMap,
    counter: TokenCounter,
    *,
    group: int,
) -> tuple[str, TokenCounter]:
    parts: list[str] = []
    cursor = 0
    for match in pattern.finditer(text):
        start, end = match.span(group)
        if start < cursor:
            continue
        index, counter = counter.next()
        token = f"[{pii_type.name}_{index}]"
        pii_map[token] = PiiEntry(type=pii_type, original_value=match.group(group))
        parts.append(text[cursor:start])
        parts.append(token)
        cursor = end
    if not parts:
        return text, counter
    parts.append(text[cursor:])
    return "".join(parts), counter
