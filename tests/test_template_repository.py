from __future__ import annotations

import math
from datetime import UTC

import allure
import pytest
from conftest import make_template

from taskpilot.templates import embedder as embedder_module
from taskpilot.templates.embedder import (
    EmbedMode,
    HashingEmbedder,
    build_embedder,
    cosine_distance,
)
from taskpilot.templates.models import Neighbor, VectorField
from taskpilot.templates.repository import TemplateNotFoundError

pytestmark = [
    allure.epic("Template Catalogue"),
    allure.feature("Storage and Vector Search"),
]


def test_add_and_get_round_trips_schema_and_triggers(repository) -> None:
    stored = repository.add_template(
        make_template(
            "customer-report",
            "Customer report",
            description="Revenue report for one customer",
            properties={"customerId": {"type": "string"}},
            required=["customerId"],
            keywords=["customer", "report"],
            patterns=[r"report\s+for\s+customer"],
            embedding=[0.0, 1.0, 0.0],
            name_embedding=[1.0, 0.0, 0.0],
        ),
    )

    loaded = repository.get_template("customer-report")

    assert loaded == stored
    assert loaded.parameter_schema.required == ["customerId"]
    assert loaded.parameter_schema.properties == {"customerId": {"type": "string"}}
    assert loaded.triggers.keywords == ["customer", "report"]
    assert loaded.created_at is not None
    assert loaded.created_at.tzinfo == UTC
    assert repository.get_template("missing") is None


def test_add_replaces_existing_template(repository) -> None:
    repository.add_template(make_template("tpl", "Old name"))
    repository.add_template(make_template("tpl", "New name"))

    templates = repository.list_templates()
    assert [template.name for template in templates] == ["New name"]


def test_disabled_templates_are_hidden_from_listing_and_search(repository) -> None:
    repository.add_template(make_template("a", "Alpha", name_embedding=[1.0, 0.0]))
    repository.add_template(make_template("b", "Beta", name_embedding=[1.0, 0.0]))

    repository.set_enabled("b", enabled=False)

    assert [item.template_id for item in repository.list_templates()] == ["a"]
    assert [item.template_id for item in repository.list_templates(enabled_only=False)] == [
        "a",
        "b",
    ]
    hits = repository.nearest_neighbors(VectorField.NAME_EMBEDDING, [1.0, 0.0], 5)
    assert [hit.template_id for hit in hits] == ["a"]


def test_set_enabled_rejects_unknown_template(repository) -> None:
    with pytest.raises(TemplateNotFoundError):
        repository.set_enabled("missing", enabled=False)


def test_nearest_neighbors_orders_by_distance_then_id(repository) -> None:
    repository.add_template(make_template("far", "Far", embedding=[0.0, 1.0]))
    repository.add_template(make_template("near-b", "Near B", embedding=[1.0, 0.0]))
    repository.add_template(make_template("near-a", "Near A", embedding=[2.0, 0.0]))
    repository.add_template(make_template("no-vector", "No vector"))

    hits = repository.nearest_neighbors(VectorField.EMBEDDING, [1.0, 0.0], 5)

    assert [hit.template_id for hit in hits] == ["near-a", "near-b", "far"]
    assert hits[0].distance == pytest.approx(0.0)
    assert hits[2].distance == pytest.approx(1.0)
    assert len(repository.nearest_neighbors(VectorField.EMBEDDING, [1.0, 0.0], 1)) == 1


def test_corrupted_vectors_yield_no_distance_and_sort_last(repository) -> None:
    repository.add_template(make_template("short", "Short", embedding=[1.0, 0.0]))
    repository.add_template(make_template("text", "Text", embedding=["a", "b", "c"]))  # type: ignore[list-item]
    repository.add_template(make_template("good", "Good", embedding=[1.0, 0.0, 0.0]))

    hits = repository.nearest_neighbors(VectorField.EMBEDDING, [1.0, 0.0, 0.0], 5)

    assert hits == [
        Neighbor(template_id="good", distance=pytest.approx(0.0)),
        Neighbor(template_id="short", distance=None),
        Neighbor(template_id="text", distance=None),
    ]


def test_unsupported_distance_measure_is_rejected(repository) -> None:
    with pytest.raises(ValueError, match="Unsupported distance measure"):
        repository.nearest_neighbors(VectorField.EMBEDDING, [1.0], 5, distance_measure="L2")


def test_cosine_distance_edge_cases() -> None:
    assert cosine_distance([1.0, 0.0], [1.0, 0.0]) == pytest.approx(0.0)
    assert cosine_distance([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(2.0)
    assert cosine_distance([], []) is None
    assert cosine_distance([1.0], [1.0, 0.0]) is None
    assert cosine_distance([0.0, 0.0], [1.0, 0.0]) is None
    assert cosine_distance([math.nan, 1.0], [1.0, 0.0]) is None


def test_hashing_embedder_is_deterministic_and_normalised() -> None:
    embedder = HashingEmbedder(model_name="hashing", dimensions=64)

    first, second = embedder.embed(["Customer revenue report", "Customer revenue report"])
    (query,) = embedder.embed(["Customer revenue report"], EmbedMode.QUERY)

    assert first == second == query
    assert len(first) == 64
    assert math.sqrt(sum(value * value for value in first)) == pytest.approx(1.0, rel=1e-5)
    assert embedder.embed([""]) == [[0.0] * 64]


def test_build_embedder_uses_hashing_for_non_e5_models() -> None:
    assert isinstance(build_embedder("hashing-test"), HashingEmbedder)


def test_build_embedder_fallback_is_explicit(monkeypatch: pytest.MonkeyPatch) -> None:
    def _unavailable(model_name: str) -> None:
        raise ImportError(f"sentence-transformers missing for {model_name}")

    monkeypatch.setattr(embedder_module, "SentenceTransformerEmbedder", _unavailable)

    with pytest.raises(RuntimeError, match="TASKPILOT_EMBEDDING_ALLOW_MODEL_FALLBACK"):
        build_embedder("intfloat/multilingual-e5-small")

    fallback = build_embedder("intfloat/multilingual-e5-small", allow_fallback=True)
    assert isinstance(fallback, HashingEmbedder)
