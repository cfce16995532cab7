"""Domain models for task templates and template resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

Vector = list[float]

ENTITY_ID_FIELDS: tuple[str, ...] = ("customerId", "contactId", "companyId", "dealId", "leadId")


class UserIntent(str, Enum):
    """Caller-declared intent for a create-task request."""

    CREATE_NEW_TASK = "CREATE_NEW_TASK"
    REUSE_EXISTING_TEMPLATE = "REUSE_EXISTING_TEMPLATE"


class EntityScope(str, Enum):
    """Whether a request targets one record or a collection."""

    AGGREGATE = "AGGREGATE"
    SPECIFIC_ENTITY = "SPECIFIC_ENTITY"
    AUTO = "AUTO"


class MatchMethod(str, Enum):
    """How a template was matched to a request."""

    NAME_EMBEDDING = "name_embedding"
    FULL_EMBEDDING = "full_embedding"
    KEYWORD_FALLBACK = "keyword_fallback"


class VectorField(str, Enum):
    """Template vectors available for nearest-neighbour search."""

    NAME_EMBEDDING = "name_embedding"
    EMBEDDING = "embedding"


@dataclass(slots=True)
class ParameterSchema:
    """JSON-Schema-like description of template parameters."""

    properties: dict[str, dict[str, Any]] = field(default_factory=dict)
    required: list[str] | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> ParameterSchema | None:
        if not isinstance(payload, dict):
            return None
        properties = payload.get("properties")
        required = payload.get("required")
        return cls(
            properties=dict(properties) if isinstance(properties, dict) else {},
            required=[str(item) for item in required] if isinstance(required, list) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"properties": self.properties}
        if self.required is not None:
            payload["required"] = list(self.required)
        return payload

    def is_required(self, name: str) -> bool:
        return name in (self.required or [])


@dataclass(slots=True)
class TemplateDefinition:
    """Executable part of a template, as far as this core needs it."""

    parameter_schema: ParameterSchema | None = None


@dataclass(slots=True)
class TemplateTriggers:
    """Keyword and regex triggers used when vector search is unavailable."""

    keywords: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TaskTemplate:
    """Reusable task definition, read-only to resolution and extraction."""

    template_id: str
    name: str
    description: str = ""
    definition: TemplateDefinition = field(default_factory=TemplateDefinition)
    triggers: TemplateTriggers = field(default_factory=TemplateTriggers)
    embedding: Vector | None = None
    name_embedding: Vector | None = None
    enabled: bool = True
    repair_attempts: int = 0
    testing: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def parameter_schema(self) -> ParameterSchema | None:
        return self.definition.parameter_schema


@dataclass(slots=True)
class TaskRequest:
    """Per-call create-task request."""

    description: str
    user_intent: UserIntent = UserIntent.REUSE_EXISTING_TEMPLATE
    entity_scope: EntityScope = EntityScope.AUTO
    explicit_parameters: dict[str, Any] | None = None
    template_id: str | None = None


@dataclass(frozen=True, slots=True)
class Neighbor:
    """One nearest-neighbour hit; ``distance`` is ``None`` when vector data is unusable."""

    template_id: str
    distance: float | None


@dataclass(frozen=True, slots=True)
class SimilarityResult:
    """Selected match between a request and a template."""

    template_id: str
    similarity_score: float | None
    match_method: MatchMethod


@dataclass(slots=True)
class ResolvedTemplate:
    """Template accepted by the resolver together with how it matched."""

    template: TaskTemplate
    similarity: SimilarityResult
