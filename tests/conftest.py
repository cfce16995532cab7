"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

import pytest

from taskpilot.extraction.llm import CompletionError
from taskpilot.templates.embedder import EmbedMode
from taskpilot.templates.models import (
    Neighbor,
    ParameterSchema,
    TaskTemplate,
    TemplateDefinition,
    TemplateTriggers,
    Vector,
    VectorField,
)
from taskpilot.templates.repository import TemplateRepository

FIXED_TODAY = date(2025, 6, 30)


@dataclass
class FakeEmbedder:
    """Returns one constant vector; nearest neighbours come from the fake store."""

    vector: Vector = field(default_factory=lambda: [1.0, 0.0, 0.0])
    calls: list[tuple[list[str], EmbedMode]] = field(default_factory=list)

    def embed(self, texts: list[str], mode: EmbedMode) -> list[Vector]:
        self.calls.append((list(texts), mode))
        return [list(self.vector) for _ in texts]


@dataclass
class FakeTemplateStore:
    """In-memory store with scripted nearest-neighbour answers."""

    templates: dict[str, TaskTemplate] = field(default_factory=dict)
    name_hits: list[Neighbor] = field(default_factory=list)
    full_hits: list[Neighbor] = field(default_factory=list)
    search_error: Exception | None = None
    searches: list[tuple[VectorField, int]] = field(default_factory=list)

    def add(self, template: TaskTemplate) -> TaskTemplate:
        self.templates[template.template_id] = template
        return template

    def get_template(self, template_id: str) -> TaskTemplate | None:
        return self.templates.get(template_id)

    def list_templates(self, *, enabled_only: bool = True) -> list[TaskTemplate]:
        return [
            template
            for _, template in sorted(self.templates.items())
            if template.enabled or not enabled_only
        ]

    def nearest_neighbors(
        self,
        vector_field: VectorField,
        query_vector: Vector,  # noqa: ARG002
        k: int,
        distance_measure: str = "COSINE",  # noqa: ARG002
    ) -> list[Neighbor]:
        self.searches.append((vector_field, k))
        if self.search_error is not None:
            raise self.search_error
        hits = self.name_hits if vector_field == VectorField.NAME_EMBEDDING else self.full_hits
        return hits[:k]


@dataclass
class FakeCompletionClient:
    """Scripted completion client recording every prompt it receives."""

    responses: list[str | Exception] = field(default_factory=list)
    prompts: list[str] = field(default_factory=list)

    def complete(self, prompt: str, *, temperature: float, max_output_tokens: int) -> str:  # noqa: ARG002
        self.prompts.append(prompt)
        if not self.responses:
            raise CompletionError("no scripted response", transient=False)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_template(  # noqa: PLR0913
    template_id: str,
    name: str,
    *,
    description: str = "",
    properties: dict[str, dict] | None = None,
    required: list[str] | None = None,
    keywords: list[str] | None = None,
    patterns: list[str] | None = None,
    enabled: bool = True,
    repair_attempts: int = 0,
    embedding: Vector | None = None,
    name_embedding: Vector | None = None,
) -> TaskTemplate:
    schema = (
        ParameterSchema(properties=properties or {}, required=required)
        if properties is not None or required is not None
        else None
    )
    return TaskTemplate(
        template_id=template_id,
        name=name,
        description=description,
        definition=TemplateDefinition(parameter_schema=schema),
        triggers=TemplateTriggers(keywords=keywords or [], patterns=patterns or []),
        embedding=embedding,
        name_embedding=name_embedding,
        enabled=enabled,
        repair_attempts=repair_attempts,
    )


@pytest.fixture()
def fake_store() -> FakeTemplateStore:
    return FakeTemplateStore()


@pytest.fixture()
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def today() -> Callable[[], date]:
    return lambda: FIXED_TODAY


@pytest.fixture()
def repository(tmp_path: Path):
    repo = TemplateRepository(db_path=tmp_path / "taskpilot.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture(autouse=True)
def _clean_taskpilot_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer TASKPILOT_* settings out of tests."""

    for key in list(os.environ):
        if key.startswith("TASKPILOT_"):
            monkeypatch.delenv(key, raising=False)
