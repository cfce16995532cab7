"""SQLModel ORM tables for template storage."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime, Text
from sqlmodel import Field, SQLModel


class TaskTemplateRow(SQLModel, table=True):
    __tablename__ = "task_templates"  # type: ignore[bad-override]

    template_id: str = Field(primary_key=True)
    name: str = Field(index=True)
    description: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    parameter_schema: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    trigger_keywords: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    trigger_patterns: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    embedding: list[float] | None = Field(default=None, sa_column=Column(JSON))
    name_embedding: list[float] | None = Field(default=None, sa_column=Column(JSON))
    embedding_dimensions: int | None = None
    enabled: bool = Field(default=True, index=True)
    repair_attempts: int = 0
    testing: bool = False
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
