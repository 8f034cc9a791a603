"""Two-stage visibility filtering.

Stage 1 drops records whose category is hidden in the layer legend.
Stage 2 applies the global rule list (AND across non-highlight rules).
Both stages are pure: they return new Layer instances and never touch the
underlying records.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import replace
from typing import Any, Iterable, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field

from geoexcel.layers.layer import RESERVED_KEYS, Layer, Record, Shape, VisibleRecord
from geoexcel.layers.styling import category_of, is_empty, stringify

Operator = Literal["contains", "equals", "in", "gt", "lt"]


class FilterStyle(BaseModel):
    """Highlight styling carried by a rule."""
    enabled: bool = False
    color: str = "#ef4444"
    shape: Shape = Shape.STAR


class FilterRule(BaseModel):
    """A field predicate applied across all layers.

    When ``style.enabled`` is set the rule only highlights, never excludes.
    ``operator`` is a plain string so rules from older sessions with an
    unrecognized operator still load (and pass everything).
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    field: str
    operator: str = "contains"
    value: Union[str, int, float] = ""
    style: Optional[FilterStyle] = None

    @property
    def is_highlight(self) -> bool:
        return bool(self.style and self.style.enabled)


def quick_filter_rule(field: str, value: Any) -> FilterRule:
    """Single equals rule used by "focus on this value" actions.

    ``value`` is a table cell, so numbers are accepted as-is and a blank
    cell becomes "".
    """
    value = "" if is_empty(value) else value
    return FilterRule(id=str(int(time.time() * 1000)), field=field, operator="equals", value=value)


# ---------------------------------------------------------------------------
# Stage 1: legend visibility
# ---------------------------------------------------------------------------

def legend_filter(layer: Layer) -> tuple[Record, ...]:
    if not layer.hidden_categories:
        return layer.records
    hidden = layer.hidden_categories
    return tuple(
        r for r in layer.records
        if category_of(r, layer.color_by_field) not in hidden
    )


# ---------------------------------------------------------------------------
# Stage 2: rule predicates
# ---------------------------------------------------------------------------

def rule_matches(record: Record, rule: FilterRule) -> bool:
    """Evaluate one rule as an inclusion predicate.

    A missing field fails; an unrecognized operator passes.
    """
    if rule.is_highlight:
        return True
    raw = record.get(rule.field)
    if is_empty(raw) and raw != "":
        return False

    value = stringify(raw).lower()
    needle = stringify(rule.value).lower()
    op = rule.operator

    if op == "contains":
        return needle in value
    if op == "equals":
        return value == needle
    if op == "in":
        return value in [token.strip() for token in needle.split(",")]
    if op in ("gt", "lt"):
        left = _as_number(raw)
        right = _as_number(rule.value)
        if left is None or right is None:
            return True
        return left > right if op == "gt" else left < right
    return True


def passes_rules(record: Record, rules: Sequence[FilterRule]) -> bool:
    return all(rule_matches(record, rule) for rule in rules)


def filter_layer(layer: Layer, rules: Sequence[FilterRule] = ()) -> Layer:
    """Layer copy holding only the records visible after both stages."""
    records = legend_filter(layer)
    active = [r for r in rules if not r.is_highlight]
    if active:
        records = tuple(r for r in records if passes_rules(r, active))
    if records is layer.records:
        return layer
    return replace(layer, records=records)


def filter_layers(layers: Iterable[Layer], rules: Sequence[FilterRule] = ()) -> list[Layer]:
    return [filter_layer(layer, rules) for layer in layers]


def all_visible(filtered_layers: Iterable[Layer]) -> list[VisibleRecord]:
    """Union of the visible layers' filtered records, tagged by layer id."""
    return [
        VisibleRecord(layer.layer_id, record)
        for layer in filtered_layers
        if layer.visible
        for record in layer.records
    ]


# ---------------------------------------------------------------------------
# Filter panel helpers
# ---------------------------------------------------------------------------

def available_fields(records: Sequence[Record]) -> list[str]:
    """Filterable fields, taken from the first record like the table header."""
    if not records:
        return []
    return [k for k in records[0].keys() if k not in RESERVED_KEYS]


def unique_values(records: Iterable[Record], field: str, limit: int = 100) -> list[str]:
    """Sorted distinct non-empty values of ``field``, truncated to ``limit``."""
    values = {
        stringify(r.get(field)) for r in records if not is_empty(r.get(field))
    }
    return sorted(values)[:limit]


def _as_number(value) -> Optional[float]:
    if isinstance(value, bool) or is_empty(value):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
