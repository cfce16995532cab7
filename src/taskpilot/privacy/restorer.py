"""Rehydrate PII placeholders inside extracted structures."""

from __future__ import annotations

from collections.abc import Mapping

from taskpilot.privacy.tokenizer import PiiMap

DEFAULT_MAX_DEPTH = 32


class RestoreDepthError(ValueError):
    """Extracted payload nests deeper than the restore guard allows."""


def restore(data: object, pii_map: PiiMap, *, max_depth: int = DEFAULT_MAX_DEPTH) -> object:
    """Substitute every placeholder in ``pii_map`` back to its original value.

    Mappings are restored value by value (keys are left alone), lists and
    tuples element by element, strings by plain substitution. Any other
    scalar is returned unchanged.
    """

    if not pii_map:
        return data
    return _restore(data, pii_map, depth=0, max_depth=max_depth)


def restore_text(text: str, pii_map: PiiMap) -> str:
    restored = text
    for token, entry in pii_map.items():
        if token in restored:
            restored = restored.replace(token, entry.original_value)
    return restored


def _restore(data: object, pii_map: PiiMap, *, depth: int, max_depth: int) -> object:
    if isinstance(data, str):
        return restore_text(data, pii_map)
    if isinstance(data, Mapping | list | tuple) and depth >= max_depth:
        raise RestoreDepthError(f"Extracted payload exceeds max nesting depth {max_depth}.")
    if isinstance(data, Mapping):
        return {
            key: _restore(value, pii_map, depth=depth + 1, max_depth=max_depth)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_restore(item, pii_map, depth=depth + 1, max_depth=max_depth) for item in data]
    if isinstance(data, tuple):
        return tuple(
            _restore(item, pii_map, depth=depth + 1, max_depth=max_depth) for item in data
        )
    return data
