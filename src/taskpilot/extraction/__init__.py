"""PII-safe parameter extraction through an external language model."""

from taskpilot.extraction.extractor import ExtractionResult, ParameterExtractor
from taskpilot.extraction.json_payload import ParseOutcome
from taskpilot.extraction.llm import (
    CliCompletionClient,
    CompletionClient,
    CompletionError,
    HttpCompletionClient,
)

__all__ = [
    "CliCompletionClient",
    "CompletionClient",
    "CompletionError",
    "ExtractionResult",
    "HttpCompletionClient",
    "ParameterExtractor",
    "ParseOutcome",
]
