"""Local PII masking and prompt sanitisation."""

from taskpilot.privacy.restorer import RestoreDepthError, restore
from taskpilot.privacy.sanitization import PromptSanitizer, Sanitizer, sanitize_preview
from taskpilot.privacy.tokenizer import (
    PiiEntry,
    PiiMap,
    PiiType,
    TokenCounter,
    TokenizedText,
    tokenize,
)

__all__ = [
    "PiiEntry",
    "PiiMap",
    "PiiType",
    "PromptSanitizer",
    "RestoreDepthError",
    "Sanitizer",
    "TokenCounter",
    "TokenizedText",
    "restore",
    "sanitize_preview",
    "tokenize",
]
