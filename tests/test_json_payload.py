from __future__ import annotations

from datetime import date

import allure

from taskpilot.extraction.json_payload import (
    ParseOutcome,
    extract_json_candidate,
    parse_model_output,
    repair_json,
)
from taskpilot.extraction.prompts import build_generic_prompt, build_schema_prompt
from taskpilot.templates.models import ParameterSchema

pytestmark = [
    allure.epic("Parameter Extraction"),
    allure.feature("Model Output Parsing and Prompts"),
]


def test_clean_json_is_parsed_as_is() -> None:
    result = parse_model_output('{"customerId": "158", "limit": 5}')

    assert result.outcome == ParseOutcome.CLEAN
    assert result.payload == {"customerId": "158", "limit": 5}
    assert result.error is None


def test_fenced_block_is_preferred_over_surrounding_prose() -> None:
    text = 'Sure, here you go {not json}\n```json\n{"customerId": "158"}\n```\nAnything else?'

    result = parse_model_output(text)

    assert result.outcome == ParseOutcome.CLEAN
    assert result.payload == {"customerId": "158"}


def test_balanced_scan_ignores_braces_inside_strings() -> None:
    text = 'Result: {"query": "a } b {", "nested": {"ids": [1, 2]}} trailing words'

    assert extract_json_candidate(text) == '{"query": "a } b {", "nested": {"ids": [1, 2]}}'
    assert parse_model_output(text).payload == {"query": "a } b {", "nested": {"ids": [1, 2]}}


def test_bare_keys_and_trailing_commas_are_repaired() -> None:
    result = parse_model_output('{customerId: "158", dateRange: {"start": "2025-01-01",},}')

    assert result.outcome == ParseOutcome.REPAIRED
    assert result.payload == {"customerId": "158", "dateRange": {"start": "2025-01-01"}}


def test_truncated_output_is_closed() -> None:
    result = parse_model_output('{"customerId": "158", "tags": ["vip", "emea')

    assert result.outcome == ParseOutcome.REPAIRED
    assert result.payload == {"customerId": "158", "tags": ["vip", "emea"]}


def test_python_style_single_quotes_are_repaired() -> None:
    result = parse_model_output("{'customerId': '158', 'tags': ['vip', 'emea']}")

    assert result.outcome == ParseOutcome.REPAIRED
    assert result.payload == {"customerId": "158", "tags": ["vip", "emea"]}


def test_single_quote_repair_keeps_apostrophes_in_double_quoted_text() -> None:
    result = parse_model_output("{'note': \"it's late\", 'owner': 'O\\'Brien'}")

    assert result.outcome == ParseOutcome.REPAIRED
    assert result.payload == {"note": "it's late", "owner": "O'Brien"}


def test_repair_leaves_string_contents_alone() -> None:
    assert repair_json('{note: "key: value, other: x",}') == '{"note": "key: value, other: x"}'


def test_unusable_output_is_reported_as_defaulted() -> None:
    no_json = parse_model_output("I cannot help with that.")
    array = parse_model_output("[1, 2, 3]")
    broken = parse_model_output('{"a": 1 "b": 2}')
    empty = parse_model_output("")

    assert no_json.outcome == ParseOutcome.DEFAULTED
    assert no_json.payload is None
    assert array.outcome == ParseOutcome.DEFAULTED
    assert broken.outcome == ParseOutcome.DEFAULTED
    assert "after repair" in (broken.error or "")
    assert empty.outcome == ParseOutcome.DEFAULTED


def test_schema_prompt_lists_exact_names_and_wraps_input() -> None:
    schema = ParameterSchema(
        properties={
            "customerId": {"type": "string", "description": "CRM customer id"},
            "messageIds": {"type": "array", "items": {"type": "string"}},
        },
        required=["customerId"],
    )

    prompt = build_schema_prompt(text="report for [EMAIL_0]", schema=schema, today=date(2025, 6, 30))

    assert '"customerId" (REQUIRED): string - CRM customer id' in prompt
    assert '"messageIds": array of strings' in prompt
    assert "<user_input>\nreport for [EMAIL_0]\n</user_input>" in prompt
    assert "Current Date: 2025-06-30" in prompt
    assert "Preserve these tokens exactly as-is." in prompt


def test_generic_prompt_asks_for_entity_ids_and_date_range() -> None:
    prompt = build_generic_prompt(text="customer 158 last quarter", today=date(2025, 6, 30))

    assert '"customerId"' in prompt
    assert '"dateRange": {"start": "YYYY-MM-DD", "end": "YYYY-MM-DD"}' in prompt
    assert "<user_input>\ncustomer 158 last quarter\n</user_input>" in prompt
