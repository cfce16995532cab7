"""Keyword/regex trigger matching used when semantic search is unavailable."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from taskpilot.templates.models import TaskTemplate

logger = logging.getLogger(__name__)

_DIRECT_ASK_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^generate.*report", re.IGNORECASE),
    re.compile(r"^create.*report", re.IGNORECASE),
    re.compile(r"^show.*me.*report", re.IGNORECASE),
    re.compile(r"^run.*report", re.IGNORECASE),
    re.compile(r"^make.*report", re.IGNORECASE),
)


@dataclass(frozen=True, slots=True)
class TriggerScore:
    template: TaskTemplate
    score: float
    patterns_matched: int
    keywords_matched: int


def score_template(template: TaskTemplate, message: str) -> TriggerScore:
    """Relevance of ``template`` to ``message`` in ``[0, 1]``.

    Patterns give 0.6 for the first hit plus 0.1 per extra hit (max 0.8),
    keywords give at least 0.15 once any keyword hits (max 0.25), and a
    direct "generate/run ... report" ask adds 0.1.
    """

    triggers = template.triggers
    if not triggers.patterns and not triggers.keywords:
        return TriggerScore(template=template, score=0.0, patterns_matched=0, keywords_matched=0)

    score = 0.0
    patterns_matched = 0
    for raw_pattern in triggers.patterns:
        try:
            pattern = re.compile(raw_pattern, re.IGNORECASE)
        except re.error:
            logger.warning(
                "Invalid trigger pattern in template %s: %r",
                template.template_id,
                raw_pattern,
            )
            continue
        if pattern.search(message):
            patterns_matched += 1
    if patterns_matched:
        score += min(0.6 + (patterns_matched - 1) * 0.1, 0.8)

    keywords_matched = 0
    if triggers.keywords:
        words = message.lower().split()
        for keyword in triggers.keywords:
            lowered = keyword.lower()
            if any(lowered in word or word in lowered for word in words):
                keywords_matched += 1
        if keywords_matched:
            ratio = keywords_matched / len(triggers.keywords)
            score += max(0.15, ratio * 0.25)

    stripped = message.strip()
    if any(pattern.search(stripped) for pattern in _DIRECT_ASK_PATTERNS):
        score += 0.1

    return TriggerScore(
        template=template,
        score=min(score, 1.0),
        patterns_matched=patterns_matched,
        keywords_matched=keywords_matched,
    )


def find_template_by_triggers(
    templates: list[TaskTemplate],
    message: str,
    *,
    min_score: float = 0.3,
) -> TaskTemplate | None:
    """Best-scoring enabled template above ``min_score``; ties break on template id."""

    scored = [score_template(template, message) for template in templates if template.enabled]
    if not scored:
        return None
    scored.sort(key=lambda item: (-item.score, item.template.template_id))
    logger.info(
        "Trigger fallback scores: %s",
        ", ".join(f"{item.template.template_id}={item.score:.2f}" for item in scored[:3]),
    )
    best = scored[0]
    if best.score > min_score:
        return best.template
    return None
