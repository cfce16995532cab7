"""Task template catalogue, vector retrieval and resolution gates."""

from taskpilot.templates.models import (
    EntityScope,
    MatchMethod,
    ParameterSchema,
    ResolvedTemplate,
    SimilarityResult,
    TaskRequest,
    TaskTemplate,
    TemplateDefinition,
    TemplateTriggers,
    UserIntent,
)
from taskpilot.templates.repository import TemplateNotFoundError, TemplateRepository, TemplateStore
from taskpilot.templates.resolver import TemplateResolver

__all__ = [
    "EntityScope",
    "MatchMethod",
    "ParameterSchema",
    "ResolvedTemplate",
    "SimilarityResult",
    "TaskRequest",
    "TaskTemplate",
    "TemplateDefinition",
    "TemplateNotFoundError",
    "TemplateRepository",
    "TemplateResolver",
    "TemplateStore",
    "TemplateTriggers",
    "UserIntent",
]
