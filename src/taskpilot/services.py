"""Use-case services: the create-task decision flow and component wiring."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from taskpilot.config import Settings
from taskpilot.extraction.extractor import ExtractionResult, ParameterExtractor
from taskpilot.extraction.json_payload import ParseOutcome
from taskpilot.extraction.llm import CliCompletionClient, CompletionClient, HttpCompletionClient
from taskpilot.templates.embedder import Embedder, build_embedder
from taskpilot.templates.entity_scope import template_entity_requirement
from taskpilot.templates.models import (
    ENTITY_ID_FIELDS,
    SimilarityResult,
    TaskRequest,
    TaskTemplate,
    UserIntent,
)
from taskpilot.templates.repository import TemplateStore
from taskpilot.templates.resolver import TemplateResolver

logger = logging.getLogger(__name__)


class PlanAction(str, Enum):
    """What the caller should do next."""

    EXECUTE_TEMPLATE = "execute_template"
    GENERATE_TEMPLATE = "generate_template"


@dataclass(slots=True)
class TaskPlan:
    """Outcome of planning one create-task request."""

    action: PlanAction
    parameters: dict[str, Any]
    outcome: ParseOutcome
    template: TaskTemplate | None = None
    similarity: SimilarityResult | None = None
    notes: list[str] = field(default_factory=list)


class TaskPlanningService:
    """Resolve a reusable template, then extract parameters for it."""

    def __init__(
        self,
        *,
        store: TemplateStore,
        resolver: TemplateResolver,
        extractor: ParameterExtractor,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.extractor = extractor

    def plan(self, request: TaskRequest) -> TaskPlan:
        base = dict(request.explicit_parameters or {})

        if request.template_id and request.user_intent != UserIntent.CREATE_NEW_TASK:
            template = self.store.get_template(request.template_id)
            if template is not None:
                extraction = self.extractor.extract(
                    request.description,
                    base,
                    template.parameter_schema,
                )
                return TaskPlan(
                    action=PlanAction.EXECUTE_TEMPLATE,
                    parameters=extraction.parameters,
                    outcome=extraction.outcome,
                    template=template,
                    notes=["explicit template id"],
                )
            logger.warning(
                "Template %s not found, falling back to resolution",
                request.template_id,
            )

        resolved = self.resolver.resolve(
            request.description,
            request.user_intent,
            request.entity_scope,
        )
        if resolved is None:
            return self._generate(request, base, note="no reusable template")

        template = resolved.template
        extraction = self.extractor.extract(request.description, base, template.parameter_schema)
        if _missing_required_entity(template, extraction):
            logger.info(
                "Template %s requires an entity id but none was extracted; generating instead",
                template.template_id,
            )
            return TaskPlan(
                action=PlanAction.GENERATE_TEMPLATE,
                parameters=extraction.parameters,
                outcome=extraction.outcome,
                similarity=resolved.similarity,
                notes=[f"template {template.template_id} rejected: entity id missing"],
            )
        return TaskPlan(
            action=PlanAction.EXECUTE_TEMPLATE,
            parameters=extraction.parameters,
            outcome=extraction.outcome,
            template=template,
            similarity=resolved.similarity,
        )

    def _generate(self, request: TaskRequest, base: dict[str, Any], *, note: str) -> TaskPlan:
        extraction = self.extractor.extract(request.description, base, None)
        return TaskPlan(
            action=PlanAction.GENERATE_TEMPLATE,
            parameters=extraction.parameters,
            outcome=extraction.outcome,
            notes=[note],
        )


def _missing_required_entity(template: TaskTemplate, extraction: ExtractionResult) -> bool:
    requirement = template_entity_requirement(template)
    if not requirement.requires_entity_id or not requirement.from_schema:
        return False
    return not any(extraction.parameters.get(name) for name in ENTITY_ID_FIELDS)


def build_completion_client(settings: Settings) -> CompletionClient:
    """HTTP client when a base URL is configured, else the CLI command template."""

    if settings.llm.base_url:
        return HttpCompletionClient(
            base_url=settings.llm.base_url,
            model=settings.llm.model,
            api_key=settings.llm.api_key,
            timeout_seconds=settings.llm.timeout_seconds,
        )
    if settings.llm.command_template:
        return CliCompletionClient(
            command_template=settings.llm.command_template,
            model=settings.llm.model,
            timeout_seconds=settings.llm.timeout_seconds,
        )
    raise ValueError(
        "No language model configured. "
        "Set TASKPILOT_LLM_BASE_URL or TASKPILOT_LLM_COMMAND_TEMPLATE.",
    )


def build_embedder_from_settings(settings: Settings) -> Embedder:
    return build_embedder(
        settings.embedding.model_name,
        allow_fallback=settings.embedding.allow_model_fallback,
    )
