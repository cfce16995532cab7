"""Cardinality checks between a request and a template's entity requirements."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from taskpilot.templates.models import ENTITY_ID_FIELDS, EntityScope, TaskTemplate

logger = logging.getLogger(__name__)

_ENTITY_NOUNS = r"(?:customer|contact|company|invoice|client|deal|lead)"
_SINGLE_ENTITY_NOUNS = r"(?:customer|contact|company|deal|lead)"

_AGGREGATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"\b(?:all|every|each)\s+(?:\w+\s+){{0,5}}{_ENTITY_NOUNS}", re.IGNORECASE),
    re.compile(r"\b(?:customers|contacts|companies|invoices|clients|deals|leads)\b", re.IGNORECASE),
    re.compile(r"\b(?:aggregate|total|summary)\b|\blist\s+of\b", re.IGNORECASE),
)
_SPECIFIC_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"\b{_SINGLE_ENTITY_NOUNS}\s*(?:id\s*)?#?\d+", re.IGNORECASE),
    re.compile(rf"\b(?:specific|this)\s+{_SINGLE_ENTITY_NOUNS}\b", re.IGNORECASE),
)
_SINGLE_ENTITY_NAME = re.compile(
    r"single\s+customer|specific\s+customer|one\s+customer|\(single",
    re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class RequestScope:
    """How the request reads: over a collection, about one record, or both."""

    is_aggregate: bool
    is_specific_entity: bool


@dataclass(frozen=True, slots=True)
class EntityRequirement:
    """Whether a template needs one entity id, and how confidently we know it."""

    requires_entity_id: bool
    from_schema: bool


def classify_request_scope(description: str, entity_scope: EntityScope) -> RequestScope:
    """Read request cardinality; a declared scope overrides the text heuristics."""

    if entity_scope == EntityScope.AGGREGATE:
        return RequestScope(is_aggregate=True, is_specific_entity=False)
    if entity_scope == EntityScope.SPECIFIC_ENTITY:
        return RequestScope(is_aggregate=False, is_specific_entity=True)
    return RequestScope(
        is_aggregate=any(pattern.search(description) for pattern in _AGGREGATE_PATTERNS),
        is_specific_entity=any(pattern.search(description) for pattern in _SPECIFIC_PATTERNS),
    )


def template_entity_requirement(template: TaskTemplate) -> EntityRequirement:
    schema = template.parameter_schema
    if schema is not None and schema.required is not None:
        requires = any(field in ENTITY_ID_FIELDS for field in schema.required)
        return EntityRequirement(
            requires_entity_id=requires,
            from_schema=True,
        )
    return _requirement_from_name(template)


def _requirement_from_name(template: TaskTemplate) -> EntityRequirement:
    """Degraded check for templates whose schema is missing or corrupted."""

    requires = bool(_SINGLE_ENTITY_NAME.search(template.name or ""))
    logger.warning(
        "Template %s has no usable parameter schema; name-based entity detection says "
        "requires_entity_id=%s (low confidence)",
        template.template_id,
        requires,
    )
    return EntityRequirement(requires_entity_id=requires, from_schema=False)


def is_scope_mismatch(requirement: EntityRequirement, scope: RequestScope) -> bool:
    """A single-entity template asked to serve an aggregate request."""

    return requirement.requires_entity_id and scope.is_aggregate and not scope.is_specific_entity
