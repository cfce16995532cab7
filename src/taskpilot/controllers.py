"""Controllers for taskpilot CLI commands."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from taskpilot.config import Settings
from taskpilot.extraction.extractor import ParameterExtractor
from taskpilot.privacy.sanitization import sanitize_preview
from taskpilot.privacy.tokenizer import tokenize
from taskpilot.repair.eligibility import ErrorInfo, should_repair
from taskpilot.repair.gate import AutoRepairGate
from taskpilot.services import (
    TaskPlan,
    TaskPlanningService,
    build_completion_client,
    build_embedder_from_settings,
)
from taskpilot.templates.embedder import EmbedMode
from taskpilot.templates.models import (
    EntityScope,
    ParameterSchema,
    TaskRequest,
    TaskTemplate,
    TemplateDefinition,
    TemplateTriggers,
    UserIntent,
)
from taskpilot.templates.repository import TemplateRepository
from taskpilot.templates.resolver import TemplateResolver

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TemplateAddCommand:
    """CLI input for registering a template."""

    db_path: Path | None
    template_id: str
    name: str
    description: str
    schema_json: str | None
    keywords: tuple[str, ...]
    patterns: tuple[str, ...]


@dataclass(slots=True)
class TemplateListCommand:
    """CLI input for template listing."""

    db_path: Path | None
    include_disabled: bool


@dataclass(slots=True)
class TemplateToggleCommand:
    """CLI input for enabling or disabling a template."""

    db_path: Path | None
    template_id: str
    enabled: bool


@dataclass(slots=True)
class ResolveCommand:
    """CLI input for template resolution."""

    db_path: Path | None
    description: str
    create_new: bool
    entity_scope: str


@dataclass(slots=True)
class ExtractCommand:
    """CLI input for standalone parameter extraction."""

    db_path: Path | None
    description: str
    template_id: str | None


@dataclass(slots=True)
class PlanCommand:
    """CLI input for the full create-task decision."""

    db_path: Path | None
    description: str
    create_new: bool
    entity_scope: str
    template_id: str | None
    parameters_json: str | None


@dataclass(slots=True)
class RepairCheckCommand:
    """CLI input for auto-repair eligibility."""

    db_path: Path | None
    template_id: str
    task_id: str
    error_name: str | None
    error_message: str | None
    stack_file: Path | None
    reserve: bool


class TaskCliController:
    """Coordinates template, extraction and repair CLI operations."""

    def add_template(self, command: TemplateAddCommand) -> list[str]:
        settings = _settings(command.db_path)
        schema = ParameterSchema.from_dict(_load_json_object(command.schema_json, "--schema"))
        embedder = build_embedder_from_settings(settings)
        name_vector, full_vector = embedder.embed(
            [command.name, f"{command.name}\n{command.description}".strip()],
            EmbedMode.DOCUMENT,
        )
        template = TaskTemplate(
            template_id=command.template_id,
            name=command.name,
            description=command.description,
            definition=TemplateDefinition(parameter_schema=schema),
            triggers=TemplateTriggers(
                keywords=list(command.keywords),
                patterns=list(command.patterns),
            ),
            embedding=full_vector,
            name_embedding=name_vector,
        )
        with _repository(settings) as repository:
            stored = repository.add_template(template)
        return [
            f"Template stored: template_id={stored.template_id} name={stored.name} "
            f"dimensions={len(full_vector)}",
        ]

    def list_templates(self, command: TemplateListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            templates = repository.list_templates(enabled_only=not command.include_disabled)

        lines = [f"Templates: {len(templates)}"]
        for template in templates:
            schema = template.parameter_schema
            required = ",".join(schema.required or []) if schema is not None else ""
            lines.append(
                f"  {template.template_id} name={template.name} "
                f"enabled={template.enabled} repair_attempts={template.repair_attempts} "
                f"required={required or '-'}",
            )
        return lines

    def toggle_template(self, command: TemplateToggleCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            repository.set_enabled(command.template_id, enabled=command.enabled)
        state = "enabled" if command.enabled else "disabled"
        return [f"Template {state}: {command.template_id}"]

    def resolve(self, command: ResolveCommand) -> list[str]:
        settings = _settings(command.db_path)
        embedder = build_embedder_from_settings(settings)
        with _repository(settings) as repository:
            resolver = TemplateResolver(
                store=repository,
                embedder=embedder,
                settings=settings.resolver,
            )
            resolved = resolver.resolve(
                command.description,
                _intent(create_new=command.create_new),
                EntityScope(command.entity_scope.strip().upper()),
            )

        if resolved is None:
            return ["No reusable template matched."]
        score = resolved.similarity.similarity_score
        return [
            f"Template: {resolved.template.template_id} name={resolved.template.name}",
            f"Match: method={resolved.similarity.match_method.value} "
            f"similarity={'-' if score is None else f'{score:.3f}'}",
        ]

    def extract(self, command: ExtractCommand) -> list[str]:
        settings = _settings(command.db_path)
        schema = None
        if command.template_id:
            with _repository(settings) as repository:
                template = repository.get_template(command.template_id)
            if template is None:
                return [f"Template not found: {command.template_id}"]
            schema = template.parameter_schema

        extractor = ParameterExtractor(
            client=build_completion_client(settings),
            settings=settings.extraction,
        )
        result = extractor.extract(command.description, None, schema)
        return [
            f"Outcome: {result.outcome.value}",
            f"PII types: {','.join(result.pii_types) or '-'}",
            f"Parameters: {json.dumps(result.parameters, ensure_ascii=False, sort_keys=True)}",
        ]

    def plan(self, command: PlanCommand) -> list[str]:
        settings = _settings(command.db_path)
        embedder = build_embedder_from_settings(settings)
        client = build_completion_client(settings)
        with _repository(settings) as repository:
            service = TaskPlanningService(
                store=repository,
                resolver=TemplateResolver(
                    store=repository,
                    embedder=embedder,
                    settings=settings.resolver,
                ),
                extractor=ParameterExtractor(client=client, settings=settings.extraction),
            )
            plan = service.plan(
                TaskRequest(
                    description=command.description,
                    user_intent=_intent(create_new=command.create_new),
                    entity_scope=EntityScope(command.entity_scope.strip().upper()),
                    explicit_parameters=_load_json_object(command.parameters_json, "--params"),
                    template_id=command.template_id,
                ),
            )
        return _render_plan(plan)

    def tokenize(self, text: str) -> list[str]:
        tokenized = tokenize(text)
        return [
            f"Tokenized: {tokenized.tokenized_text}",
            f"PII tokens: {len(tokenized.pii_map)} types={','.join(tokenized.pii_types()) or '-'}",
        ]

    def repair_check(self, command: RepairCheckCommand) -> list[str]:
        settings = _settings(command.db_path)
        stack = (
            command.stack_file.read_text("utf-8") if command.stack_file is not None else None
        )
        error = ErrorInfo(name=command.error_name, message=command.error_message, stack=stack)
        logger.info(
            "Repair check for template %s: %s",
            command.template_id,
            sanitize_preview(f"{error.name or '-'}: {error.message or '-'}"),
        )
        with _repository(settings) as repository:
            if command.reserve:
                gate = AutoRepairGate(store=repository, settings=settings.repair)
                decision = gate.evaluate(
                    error,
                    template_id=command.template_id,
                    task_id=command.task_id,
                )
            else:
                template = repository.get_template(command.template_id)
                if template is None:
                    return [f"Template not found: {command.template_id}"]
                decision = should_repair(
                    error,
                    template,
                    max_repair_attempts=settings.repair.max_repair_attempts,
                )

        return [
            f"Should repair: {decision.should_repair}",
            f"Rule: {decision.matched_rule}",
            f"Reason: {decision.reason}",
        ]


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _intent(*, create_new: bool) -> UserIntent:
    return UserIntent.CREATE_NEW_TASK if create_new else UserIntent.REUSE_EXISTING_TEMPLATE


def _load_json_object(raw: str | None, option: str) -> dict[str, Any] | None:
    if raw is None or not raw.strip():
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValueError(f"{option} must be valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise ValueError(f"{option} must be a JSON object.")
    return payload


def _render_plan(plan: TaskPlan) -> list[str]:
    lines = [f"Action: {plan.action.value}"]
    if plan.template is not None:
        lines.append(f"Template: {plan.template.template_id} name={plan.template.name}")
    if plan.similarity is not None:
        score = plan.similarity.similarity_score
        lines.append(
            f"Match: method={plan.similarity.match_method.value} "
            f"similarity={'-' if score is None else f'{score:.3f}'}",
        )
    lines.append(f"Outcome: {plan.outcome.value}")
    lines.append(
        f"Parameters: {json.dumps(plan.parameters, ensure_ascii=False, sort_keys=True)}",
    )
    lines.extend(f"Note: {note}" for note in plan.notes)
    return lines


@contextmanager
def _repository(settings: Settings) -> Iterator[TemplateRepository]:
    repository = TemplateRepository(db_path=settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
