"""PII-safe structured parameter extraction.

Three stages: mask PII locally, ask the language model about the masked and
sanitised text only, then rehydrate the placeholders in whatever came back.
Extraction failure is never fatal; the caller always gets parameters with a
usable ``dateRange``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, cast

from taskpilot.config import ExtractionSettings
from taskpilot.extraction.aliases import normalize_parameter_names
from taskpilot.extraction.json_payload import ParseOutcome, ParseResult, parse_model_output
from taskpilot.extraction.llm import CompletionClient, CompletionError
from taskpilot.extraction.prompts import build_generic_prompt, build_schema_prompt
from taskpilot.privacy.restorer import RestoreDepthError, restore
from taskpilot.privacy.sanitization import PromptSanitizer, Sanitizer
from taskpilot.privacy.tokenizer import tokenize
from taskpilot.templates.models import ParameterSchema

logger = logging.getLogger(__name__)

SANITIZE_CONTEXT = "task_description"
_DISCARDED_FIELDS = frozenset({"detected"})


@dataclass(slots=True)
class ExtractionResult:
    """Extracted parameters plus how the model output was obtained."""

    parameters: dict[str, Any]
    outcome: ParseOutcome
    pii_detected: bool = False
    pii_types: list[str] = field(default_factory=list)


def default_date_range(*, today: date, days: int) -> dict[str, str]:
    """Window of ``days`` days ending ``today`` as ISO dates."""

    return {
        "start": (today - timedelta(days=days)).isoformat(),
        "end": today.isoformat(),
    }


class ParameterExtractor:
    """Turn a free-form description into template parameters."""

    def __init__(
        self,
        *,
        client: CompletionClient,
        sanitizer: Sanitizer | None = None,
        settings: ExtractionSettings | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.client = client
        self.settings = settings or ExtractionSettings()
        self.sanitizer = sanitizer or PromptSanitizer(
            task_description_max_chars=self.settings.max_description_chars,
        )
        self._today = today

    def extract(
        self,
        description: str,
        base_parameters: dict[str, Any] | None = None,
        template_schema: ParameterSchema | None = None,
    ) -> ExtractionResult:
        base = dict(base_parameters or {})
        today = self._today()

        tokenized = tokenize(description)
        sanitized = self.sanitizer.sanitize(tokenized.tokenized_text, SANITIZE_CONTEXT)
        if sanitized != tokenized.tokenized_text:
            logger.warning(
                "Prompt injection markers neutralised in task description (%d -> %d chars)",
                len(tokenized.tokenized_text),
                len(sanitized),
            )

        if template_schema is not None and template_schema.properties:
            logger.info(
                "Using template schema to guide extraction: %s",
                ",".join(template_schema.properties),
            )
            prompt = build_schema_prompt(text=sanitized, schema=template_schema, today=today)
        else:
            logger.info("No template schema provided, using generic extraction")
            prompt = build_generic_prompt(text=sanitized, today=today)

        parsed = self._complete_and_parse(prompt)
        if parsed.outcome == ParseOutcome.DEFAULTED or parsed.payload is None:
            logger.warning("Parameter extraction fell back to defaults: %s", parsed.error)
            return self._defaulted(base, today=today, pii_types=tokenized.pii_types())

        cleaned = {
            key: value
            for key, value in parsed.payload.items()
            if key not in _DISCARDED_FIELDS and value is not None
        }
        try:
            restored = restore(
                cleaned,
                tokenized.pii_map,
                max_depth=self.settings.restore_max_depth,
            )
        except RestoreDepthError as error:
            logger.warning("Extracted payload rejected: %s", error)
            return self._defaulted(base, today=today, pii_types=tokenized.pii_types())

        parameters = normalize_parameter_names(
            {**base, **cast("dict[str, Any]", restored)},
            template_schema,
        )
        if not parameters.get("dateRange"):
            parameters["dateRange"] = default_date_range(
                today=today,
                days=self.settings.default_date_range_days,
            )

        logger.info(
            "Parameters extracted (%s): keys=%s pii_tokens=%d",
            parsed.outcome.value,
            ",".join(sorted(parameters)),
            len(tokenized.pii_map),
        )
        return ExtractionResult(
            parameters=parameters,
            outcome=parsed.outcome,
            pii_detected=tokenized.has_pii,
            pii_types=tokenized.pii_types(),
        )

    def _complete_and_parse(self, prompt: str) -> ParseResult:
        try:
            response = self.client.complete(
                prompt,
                temperature=self.settings.temperature,
                max_output_tokens=self.settings.max_output_tokens,
            )
        except CompletionError as error:
            return ParseResult(
                outcome=ParseOutcome.DEFAULTED,
                error=f"completion failed (transient={error.transient}): {error}",
            )
        return parse_model_output(response)

    def _defaulted(
        self,
        base: dict[str, Any],
        *,
        today: date,
        pii_types: list[str],
    ) -> ExtractionResult:
        parameters = dict(base)
        if not parameters.get("dateRange"):
            parameters["dateRange"] = default_date_range(
                today=today,
                days=self.settings.default_date_range_days,
            )
        return ExtractionResult(
            parameters=parameters,
            outcome=ParseOutcome.DEFAULTED,
            pii_detected=bool(pii_types),
            pii_types=pii_types,
        )
