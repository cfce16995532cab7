"""Template store backed by SQLModel + SQLite."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from sqlalchemy import update as sa_update
from sqlmodel import Session, SQLModel, col, select

from taskpilot.storage.common import build_sqlite_engine, utc_now
from taskpilot.storage.sqlmodel_models import TaskTemplateRow
from taskpilot.templates.embedder import cosine_distance
from taskpilot.templates.models import (
    Neighbor,
    ParameterSchema,
    TaskTemplate,
    TemplateDefinition,
    TemplateTriggers,
    Vector,
    VectorField,
)

logger = logging.getLogger(__name__)

COSINE = "COSINE"


class TemplateNotFoundError(LookupError):
    """Requested template id does not exist."""


class TemplateStore(Protocol):
    """Read access to templates plus vector search, as needed by resolution."""

    def get_template(self, template_id: str) -> TaskTemplate | None:
        """Return one template or ``None``."""
        raise NotImplementedError

    def list_templates(self, *, enabled_only: bool = True) -> list[TaskTemplate]:
        """Return templates ordered by id."""
        raise NotImplementedError

    def nearest_neighbors(
        self,
        vector_field: VectorField,
        query_vector: Vector,
        k: int,
        distance_measure: str = COSINE,
    ) -> list[Neighbor]:
        """Top-k enabled templates closest to ``query_vector``."""
        raise NotImplementedError


class TemplateRepository:
    """Template persistence facade.

    Vector search is a brute-force cosine scan over enabled templates, which
    is adequate for template catalogues of a few thousand entries.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        SQLModel.metadata.create_all(self.engine, tables=[TaskTemplateRow.__table__])  # type: ignore[attr-defined]

    def add_template(self, template: TaskTemplate) -> TaskTemplate:
        """Insert or replace a template by id."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.get(TaskTemplateRow, template.template_id)
            if row is None:
                row = TaskTemplateRow(
                    template_id=template.template_id,
                    name=template.name,
                    created_at=template.created_at or now,
                    updated_at=now,
                )
            schema = template.definition.parameter_schema
            row.name = template.name
            row.description = template.description
            row.parameter_schema = schema.to_dict() if schema is not None else None
            row.trigger_keywords = list(template.triggers.keywords)
            row.trigger_patterns = list(template.triggers.patterns)
            row.embedding = list(template.embedding) if template.embedding is not None else None
            row.name_embedding = (
                list(template.name_embedding) if template.name_embedding is not None else None
            )
            row.embedding_dimensions = len(template.embedding) if template.embedding else None
            row.enabled = template.enabled
            row.repair_attempts = template.repair_attempts
            row.testing = template.testing
            row.updated_at = now
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_template(row)

    def get_template(self, template_id: str) -> TaskTemplate | None:
        with Session(self.engine) as session:
            row = session.get(TaskTemplateRow, template_id)
            return _to_template(row) if row is not None else None

    def list_templates(self, *, enabled_only: bool = True) -> list[TaskTemplate]:
        with Session(self.engine) as session:
            statement = select(TaskTemplateRow)
            if enabled_only:
                statement = statement.where(col(TaskTemplateRow.enabled).is_(True))
            rows = session.exec(statement.order_by(col(TaskTemplateRow.template_id))).all()
            return [_to_template(row) for row in rows]

    def set_enabled(self, template_id: str, *, enabled: bool) -> None:
        with Session(self.engine) as session:
            result = session.exec(  # type: ignore[call-overload]
                sa_update(TaskTemplateRow)
                .where(col(TaskTemplateRow.template_id) == template_id)
                .values(enabled=enabled, updated_at=utc_now()),
            )
            if result.rowcount != 1:
                session.rollback()
                raise TemplateNotFoundError(f"Unknown template_id: {template_id}")
            session.commit()

    def nearest_neighbors(
        self,
        vector_field: VectorField,
        query_vector: Vector,
        k: int,
        distance_measure: str = COSINE,
    ) -> list[Neighbor]:
        if distance_measure != COSINE:
            raise ValueError(f"Unsupported distance measure: {distance_measure!r}")
        column = (
            TaskTemplateRow.name_embedding
            if vector_field == VectorField.NAME_EMBEDDING
            else TaskTemplateRow.embedding
        )
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskTemplateRow.template_id, column).where(
                    col(TaskTemplateRow.enabled).is_(True),
                ),
            ).all()

        neighbors: list[Neighbor] = []
        for template_id, stored in rows:
            if stored is None:
                continue
            distance = _safe_distance(query_vector, stored)
            if distance is None:
                logger.warning(
                    "Template %s has unusable %s vector data",
                    template_id,
                    vector_field.value,
                )
            neighbors.append(Neighbor(template_id=template_id, distance=distance))

        neighbors.sort(
            key=lambda item: (
                item.distance is None,
                item.distance if item.distance is not None else 0.0,
                item.template_id,
            ),
        )
        return neighbors[:k]

    def reserve_repair_attempt(self, template_id: str, *, max_attempts: int) -> int | None:
        """Atomically take one repair attempt from the template budget.

        Returns the new attempt count, or ``None`` when the budget is already
        spent (or the template does not exist).
        """

        with Session(self.engine) as session:
            result = session.exec(  # type: ignore[call-overload]
                sa_update(TaskTemplateRow)
                .where(
                    col(TaskTemplateRow.template_id) == template_id,
                    col(TaskTemplateRow.repair_attempts) < max_attempts,
                )
                .values(
                    repair_attempts=col(TaskTemplateRow.repair_attempts) + 1,
                    updated_at=utc_now(),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            attempts = session.exec(
                select(TaskTemplateRow.repair_attempts).where(
                    TaskTemplateRow.template_id == template_id,
                ),
            ).one()
            session.commit()
            return attempts


def _safe_distance(query_vector: Vector, stored: object) -> float | None:
    if not isinstance(stored, list) or not all(
        isinstance(value, int | float) and not isinstance(value, bool) for value in stored
    ):
        return None
    return cosine_distance(query_vector, stored)


def _to_template(row: TaskTemplateRow) -> TaskTemplate:
    return TaskTemplate(
        template_id=row.template_id,
        name=row.name,
        description=row.description,
        definition=TemplateDefinition(
            parameter_schema=ParameterSchema.from_dict(row.parameter_schema),
        ),
        triggers=TemplateTriggers(
            keywords=list(row.trigger_keywords or []),
            patterns=list(row.trigger_patterns or []),
        ),
        embedding=row.embedding,
        name_embedding=row.name_embedding,
        enabled=row.enabled,
        repair_attempts=row.repair_attempts,
        testing=row.testing,
        created_at=_to_utc_aware_datetime(row.created_at),
        updated_at=_to_utc_aware_datetime(row.updated_at),
    )


def _to_utc_aware_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
