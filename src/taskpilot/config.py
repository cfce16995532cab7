"""Runtime configuration for template resolution, extraction and repair gating."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


@dataclass(slots=True)
class ResolverSettings:
    """Template similarity search settings."""

    similarity_threshold: float = 0.70
    name_priority_threshold: float = 0.85
    top_k: int = 5
    semantic_enabled: bool = True
    keyword_min_score: float = 0.3


@dataclass(slots=True)
class EmbeddingSettings:
    """Embedding backend settings."""

    model_name: str = "intfloat/multilingual-e5-small"
    allow_model_fallback: bool = False


@dataclass(slots=True)
class ExtractionSettings:
    """Parameter extraction settings."""

    temperature: float = 0.1
    max_output_tokens: int = 4_096
    default_date_range_days: int = 90
    restore_max_depth: int = 32
    max_description_chars: int = 5_000


@dataclass(slots=True)
class LlmSettings:
    """Language-model completion client settings."""

    base_url: str = ""
    api_key: str = ""
    model: str = "gpt-4o-mini"
    command_template: str = ""
    timeout_seconds: float = 60.0


@dataclass(slots=True)
class RepairSettings:
    """Auto-repair budget settings."""

    max_repair_attempts: int = 50
    max_repairs_per_task: int = 3
    max_tokens_per_template: int = 1_000_000
    cooldown_seconds: int = 360


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".taskpilot.db")
    resolver: ResolverSettings = field(default_factory=ResolverSettings)
    embedding: EmbeddingSettings = field(default_factory=EmbeddingSettings)
    extraction: ExtractionSettings = field(default_factory=ExtractionSettings)
    llm: LlmSettings = field(default_factory=LlmSettings)
    repair: RepairSettings = field(default_factory=RepairSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("TASKPILOT_DB_PATH", ".taskpilot.db")),
            resolver=ResolverSettings(
                similarity_threshold=float(
                    os.getenv("TASKPILOT_SIMILARITY_THRESHOLD", "0.70"),
                ),
                name_priority_threshold=float(
                    os.getenv("TASKPILOT_NAME_PRIORITY_THRESHOLD", "0.85"),
                ),
                top_k=int(os.getenv("TASKPILOT_TOP_K", "5")),
                semantic_enabled=_env_bool("TASKPILOT_SEMANTIC_TEMPLATES", default=True),
                keyword_min_score=float(os.getenv("TASKPILOT_KEYWORD_MIN_SCORE", "0.3")),
            ),
            embedding=EmbeddingSettings(
                model_name=os.getenv(
                    "TASKPILOT_EMBEDDING_MODEL_NAME",
                    "intfloat/multilingual-e5-small",
                ),
                allow_model_fallback=_env_bool(
                    "TASKPILOT_EMBEDDING_ALLOW_MODEL_FALLBACK",
                    default=False,
                ),
            ),
            extraction=ExtractionSettings(
                temperature=float(os.getenv("TASKPILOT_EXTRACTION_TEMPERATURE", "0.1")),
                max_output_tokens=int(
                    os.getenv("TASKPILOT_EXTRACTION_MAX_OUTPUT_TOKENS", "4096"),
                ),
                default_date_range_days=int(
                    os.getenv("TASKPILOT_DEFAULT_DATE_RANGE_DAYS", "90"),
                ),
                restore_max_depth=int(os.getenv("TASKPILOT_RESTORE_MAX_DEPTH", "32")),
                max_description_chars=int(
                    os.getenv("TASKPILOT_MAX_DESCRIPTION_CHARS", "5000"),
                ),
            ),
            llm=LlmSettings(
                base_url=os.getenv("TASKPILOT_LLM_BASE_URL", "").strip(),
                api_key=os.getenv("TASKPILOT_LLM_API_KEY", ""),
                model=os.getenv("TASKPILOT_LLM_MODEL", "gpt-4o-mini"),
                command_template=os.getenv("TASKPILOT_LLM_COMMAND_TEMPLATE", "").strip(),
                timeout_seconds=float(os.getenv("TASKPILOT_LLM_TIMEOUT_SECONDS", "60")),
            ),
            repair=RepairSettings(
                max_repair_attempts=int(os.getenv("TASKPILOT_MAX_REPAIR_ATTEMPTS", "50")),
                max_repairs_per_task=int(os.getenv("TASKPILOT_MAX_REPAIRS_PER_TASK", "3")),
                max_tokens_per_template=int(
                    os.getenv("TASKPILOT_MAX_REPAIR_TOKENS_PER_TEMPLATE", "1000000"),
                ),
                cooldown_seconds=int(os.getenv("TASKPILOT_REPAIR_COOLDOWN_SECONDS", "360")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if thresholds or budgets are out of range."""

        for name, value in (
            ("TASKPILOT_SIMILARITY_THRESHOLD", self.resolver.similarity_threshold),
            ("TASKPILOT_NAME_PRIORITY_THRESHOLD", self.resolver.name_priority_threshold),
            ("TASKPILOT_KEYWORD_MIN_SCORE", self.resolver.keyword_min_score),
        ):
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value!r}.")
        if self.resolver.top_k <= 0:
            raise ValueError("TASKPILOT_TOP_K must be a positive integer.")
        if self.extraction.default_date_range_days <= 0:
            raise ValueError("TASKPILOT_DEFAULT_DATE_RANGE_DAYS must be > 0.")
        if self.extraction.restore_max_depth <= 0:
            raise ValueError("TASKPILOT_RESTORE_MAX_DEPTH must be > 0.")
        if self.extraction.max_output_tokens <= 0:
            raise ValueError("TASKPILOT_EXTRACTION_MAX_OUTPUT_TOKENS must be > 0.")
        if self.repair.max_repair_attempts <= 0:
            raise ValueError("TASKPILOT_MAX_REPAIR_ATTEMPTS must be > 0.")
        if self.repair.cooldown_seconds < 0:
            raise ValueError("TASKPILOT_REPAIR_COOLDOWN_SECONDS must be >= 0.")
        if self.llm.base_url:
            _validate_base_url(self.llm.base_url)


def _validate_base_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid TASKPILOT_LLM_BASE_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
