"""Normalized values returned by per-batch structured extraction.

A completion response may hand back a string, a list, a number or a nested
object for any field. ``normalize_value`` folds all of those into one of two
shapes at parse time, so downstream code only ever sees ``Scalar`` or
``ListValue``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, NamedTuple, Union


@dataclass(slots=True, frozen=True)
class Scalar:
    value: str

    def items(self) -> tuple[str, ...]:
        return (self.value,)


@dataclass(slots=True, frozen=True)
class ListValue:
    values: tuple[str, ...]

    def items(self) -> tuple[str, ...]:
        return self.values


ExtractedValue = Union[Scalar, ListValue]


class ExtractionKey(NamedTuple):
    interview_id: str
    field: str


MergedExtraction = dict[ExtractionKey, list[ExtractedValue]]


def _to_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw.strip()
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, (int, float)):
        return str(raw)
    if isinstance(raw, (dict, list)):
        return json.dumps(raw, ensure_ascii=False)
    return str(raw).strip()


def normalize_value(raw: Any) -> ExtractedValue | None:
    """Return the tagged form of ``raw``, or None when it carries no text."""
    if raw is None:
        return None
    if isinstance(raw, (list, tuple)):
        items = tuple(text for text in (_to_text(item) for item in raw if item is not None) if text)
        if not items:
            return None
        return ListValue(items)
    text = _to_text(raw)
    if not text:
        return None
    return Scalar(text)


def flatten(values: list[ExtractedValue]) -> list[str]:
    out: list[str] = []
    for value in values:
        out.extend(value.items())
    return out
