"""Find, validate and gate a reusable template for a free-form request."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass

from taskpilot.config import ResolverSettings
from taskpilot.privacy.sanitization import sanitize_preview
from taskpilot.templates.embedder import Embedder, EmbedMode
from taskpilot.templates.entity_scope import (
    classify_request_scope,
    is_scope_mismatch,
    template_entity_requirement,
)
from taskpilot.templates.models import (
    EntityScope,
    MatchMethod,
    Neighbor,
    ResolvedTemplate,
    SimilarityResult,
    UserIntent,
    VectorField,
)
from taskpilot.templates.repository import COSINE, TemplateStore
from taskpilot.templates.triggers import find_template_by_triggers

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Candidate:
    neighbor: Neighbor
    method: MatchMethod


class TemplateResolver:
    """Two-phase vector retrieval (name, then full text) with rejection gates.

    Returns ``None`` whenever a new template should be generated instead of
    reusing one: explicit create intent, no candidates, weak similarity,
    corrupted similarity data, or a single-entity template matched to an
    aggregate request.
    """

    def __init__(
        self,
        *,
        store: TemplateStore,
        embedder: Embedder,
        settings: ResolverSettings | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.settings = settings or ResolverSettings()

    def resolve(
        self,
        description: str,
        user_intent: UserIntent,
        entity_scope: EntityScope = EntityScope.AUTO,
    ) -> ResolvedTemplate | None:
        if user_intent == UserIntent.CREATE_NEW_TASK:
            logger.info("CREATE_NEW_TASK intent, skipping template matching")
            return None

        if not self.settings.semantic_enabled:
            logger.info("Semantic template matching disabled, using trigger matching")
            return self._resolve_by_triggers(description)

        try:
            candidate = self._semantic_candidate(description)
        except Exception:  # noqa: BLE001
            logger.exception("Template vector search failed, falling back to triggers")
            return self._resolve_by_triggers(description)
        if candidate is None:
            return None
        return self._gate(candidate, description=description, entity_scope=entity_scope)

    def _semantic_candidate(self, description: str) -> _Candidate | None:
        started = time.monotonic()
        query_vector = self.embedder.embed([description], EmbedMode.QUERY)[0]
        k = self.settings.top_k

        name_hits = self.store.nearest_neighbors(VectorField.NAME_EMBEDDING, query_vector, k, COSINE)
        full_hits = self.store.nearest_neighbors(VectorField.EMBEDDING, query_vector, k, COSINE)
        logger.debug(
            "Vector search for %r: name_hits=%d full_hits=%d in %.0fms",
            sanitize_preview(description, max_chars=100),
            len(name_hits),
            len(full_hits),
            (time.monotonic() - started) * 1000,
        )

        if not name_hits and not full_hits:
            logger.warning("No templates found via vector search")
            return None

        best_name = name_hits[0] if name_hits else None
        name_score = _similarity(best_name.distance) if best_name is not None else None

        if (
            best_name is not None
            and name_score is not None
            and name_score > self.settings.name_priority_threshold
        ):
            logger.info(
                "Using name embedding match %s (score=%.3f)",
                best_name.template_id,
                name_score,
            )
            return _Candidate(neighbor=best_name, method=MatchMethod.NAME_EMBEDDING)
        if full_hits:
            logger.info(
                "Using full embedding match %s (name_score=%s)",
                full_hits[0].template_id,
                f"{name_score:.3f}" if name_score is not None else "n/a",
            )
            return _Candidate(neighbor=full_hits[0], method=MatchMethod.FULL_EMBEDDING)
        return _Candidate(neighbor=name_hits[0], method=MatchMethod.NAME_EMBEDDING)

    def _gate(
        self,
        candidate: _Candidate,
        *,
        description: str,
        entity_scope: EntityScope,
    ) -> ResolvedTemplate | None:
        neighbor = candidate.neighbor
        similarity = _similarity(neighbor.distance)
        if similarity is None:
            logger.error(
                "Vector search returned no usable distance for template %s (%s); rejecting match",
                neighbor.template_id,
                candidate.method.value,
            )
            return None

        if similarity < self.settings.similarity_threshold:
            logger.info(
                "Best template %s below similarity threshold (%.3f < %.2f), will create new template",
                neighbor.template_id,
                similarity,
                self.settings.similarity_threshold,
            )
            return None

        template = self.store.get_template(neighbor.template_id)
        if template is None or not template.enabled:
            logger.warning("Matched template %s is missing or disabled", neighbor.template_id)
            return None

        requirement = template_entity_requirement(template)
        scope = classify_request_scope(description, entity_scope)
        if is_scope_mismatch(requirement, scope):
            logger.info(
                "Template %s requires an entity id but request is aggregate; rejecting "
                "(similarity=%.3f, schema_based=%s)",
                template.template_id,
                similarity,
                requirement.from_schema,
            )
            return None

        logger.info(
            "Matched template %s (%s) via %s, similarity=%.3f",
            template.template_id,
            template.name,
            candidate.method.value,
            similarity,
        )
        return ResolvedTemplate(
            template=template,
            similarity=SimilarityResult(
                template_id=template.template_id,
                similarity_score=similarity,
                match_method=candidate.method,
            ),
        )

    def _resolve_by_triggers(self, description: str) -> ResolvedTemplate | None:
        template = find_template_by_triggers(
            self.store.list_templates(enabled_only=True),
            description,
            min_score=self.settings.keyword_min_score,
        )
        if template is None:
            return None
        logger.info("Matched template %s via trigger fallback", template.template_id)
        return ResolvedTemplate(
            template=template,
            similarity=SimilarityResult(
                template_id=template.template_id,
                similarity_score=None,
                match_method=MatchMethod.KEYWORD_FALLBACK,
            ),
        )


def _similarity(distance: float | None) -> float | None:
    if distance is None or not isinstance(distance, int | float) or math.isnan(distance):
        return None
    return max(0.0, min(1.0, 1.0 - distance))
