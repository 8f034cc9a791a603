"""Category styling — color/shape assignment for the values of a field.

Category identity is the normalized string form of a field value, shared
with the legend filter so toggling an entry and generating the map agree.
"""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Any, Iterable, Literal, Mapping, NamedTuple, Sequence

from geoexcel.config import settings
from geoexcel.layers.layer import Layer, Record, Shape

# Fixed ordered palette; assignment is by first-seen index modulo length.
CATEGORY_COLORS: tuple[str, ...] = (
    "#ef4444",  # red
    "#3b82f6",  # blue
    "#10b981",  # emerald
    "#f59e0b",  # amber
    "#8b5cf6",  # violet
    "#ec4899",  # pink
    "#06b6d4",  # cyan
    "#f97316",  # orange
    "#6366f1",  # indigo
    "#84cc16",  # lime
    "#14b8a6",  # teal
    "#d946ef",  # fuchsia
)

StyleKind = Literal["color", "shape"]


class ResolvedStyle(NamedTuple):
    color: str
    shape: Shape


class LegendEntry(NamedTuple):
    category: str
    color: str
    count: int
    hidden: bool


def is_empty(value: Any) -> bool:
    """None, empty string and NaN all count as "no value"."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, float):
        return math.isnan(value)
    return False


def stringify(value: Any) -> str:
    """String form used for comparisons. Integral floats drop the ``.0``."""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def normalize_category(value: Any) -> str:
    if is_empty(value):
        return settings.unspecified_label
    return stringify(value)


def category_of(record: Record, field: str) -> str:
    return normalize_category(record.get(field) if field else None)


def generate_color_map(records: Iterable[Record], field: str) -> dict[str, str]:
    """Assign palette colors to the distinct categories of ``field``.

    Categories are taken in first-seen order so the result is reproducible
    for the same records and field.
    """
    color_map: dict[str, str] = {}
    for record in records:
        category = category_of(record, field)
        if category not in color_map:
            color_map[category] = CATEGORY_COLORS[len(color_map) % len(CATEGORY_COLORS)]
    return color_map


def extend_color_map(
    color_map: Mapping[str, str], records: Iterable[Record], field: str
) -> Mapping[str, str]:
    """Add palette colors for categories of ``field`` missing from ``color_map``.

    Existing entries (including user overrides) are kept; new categories
    continue the palette from the next index in first-seen order. Returns
    ``color_map`` itself when nothing is missing.
    """
    extended: dict[str, str] | None = None
    for record in records:
        category = category_of(record, field)
        current = color_map if extended is None else extended
        if category in current:
            continue
        if extended is None:
            extended = dict(color_map)
        extended[category] = CATEGORY_COLORS[len(extended) % len(CATEGORY_COLORS)]
    return color_map if extended is None else extended


def with_style_override(
    layer: Layer, category: str, kind: StyleKind, value: str
) -> Layer:
    """Replace one entry of the layer's color or shape map."""
    if kind == "color":
        return replace(layer, color_map={**layer.color_map, category: value})
    if kind == "shape":
        return replace(layer, shape_map={**layer.shape_map, category: Shape(value)})
    raise ValueError(f"Unknown style kind: {kind}")


def highlight_matches(record: Record, rule) -> bool:
    """True if an enabled highlight rule applies to ``record``.

    Only ``contains`` and ``equals`` highlight; a rule with an empty value
    highlights nothing.
    """
    if rule.style is None or not rule.style.enabled:
        return False
    needle = stringify(rule.value).lower()
    if not needle:
        return False
    raw = record.get(rule.field)
    value = "" if is_empty(raw) else stringify(raw).lower()
    if rule.operator == "contains":
        return needle in value
    if rule.operator == "equals":
        return value == needle
    return False


def resolve_style(record: Record, layer: Layer, rules: Sequence = ()) -> ResolvedStyle:
    """Marker color/shape for a record.

    Precedence: custom color tag, then the first matching highlight rule,
    then the layer's category maps, then the layer defaults.
    """
    shape = layer.shape_map.get(category_of(record, layer.shape_by_field), layer.default_shape)
    if record.custom_color:
        return ResolvedStyle(record.custom_color, Shape(shape))

    for rule in rules:
        if highlight_matches(record, rule):
            return ResolvedStyle(rule.style.color, Shape(rule.style.shape))

    color = layer.color_map.get(category_of(record, layer.color_by_field), layer.default_color)
    return ResolvedStyle(color, Shape(shape))


def legend_entries(layer: Layer) -> list[LegendEntry]:
    """Legend rows in color-map order, with record counts per category."""
    counts: dict[str, int] = {}
    for record in layer.records:
        category = category_of(record, layer.color_by_field)
        counts[category] = counts.get(category, 0) + 1
    return [
        LegendEntry(category, color, counts.get(category, 0), category in layer.hidden_categories)
        for category, color in layer.color_map.items()
    ]
