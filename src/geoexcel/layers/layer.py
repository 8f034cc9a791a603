"""Record and Layer dataclasses for the point layer system.

Both are frozen: every edit produces a new instance so readers holding an
older snapshot never observe a half-applied update.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Union

from geoexcel.config import settings

FieldValue = Union[str, int, float, None]

# Keys that live on Record attributes rather than in ``properties``.
ID_KEY = "id"
LAT_KEY = "lat"
LNG_KEY = "lng"
CUSTOM_COLOR_KEY = "_customColor"
RESERVED_KEYS = frozenset({ID_KEY, LAT_KEY, LNG_KEY, CUSTOM_COLOR_KEY})


class Shape(str, Enum):
    """Marker shapes available to layer styling."""
    CIRCLE = "circle"
    SQUARE = "square"
    TRIANGLE = "triangle"
    STAR = "star"
    HEXAGON = "hexagon"
    DIAMOND = "diamond"


def new_record_id(prefix: str = "row") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def new_layer_id() -> str:
    return f"layer-{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class Record:
    """A single geolocated row.

    Attributes:
        record_id: Session-unique identifier, immutable once assigned.
        lat: Latitude in degrees.
        lng: Longitude in degrees.
        properties: Attribute columns (field name -> value). An absent key
            and an empty string are distinct here so export round-trips
            keep them apart; filtering treats both as empty.
        custom_color: Manual color tag that overrides category styling.
    """

    record_id: str
    lat: float
    lng: float
    properties: Mapping[str, FieldValue] = field(default_factory=dict)
    custom_color: Optional[str] = None

    @property
    def is_mappable(self) -> bool:
        try:
            return math.isfinite(self.lat) and math.isfinite(self.lng)
        except TypeError:
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """Field lookup that treats id/lat/lng/_customColor like columns."""
        if key == ID_KEY:
            return self.record_id
        if key == LAT_KEY:
            return self.lat
        if key == LNG_KEY:
            return self.lng
        if key == CUSTOM_COLOR_KEY:
            return self.custom_color if self.custom_color is not None else default
        return self.properties.get(key, default)

    def keys(self) -> list[str]:
        return list(self.properties.keys())

    def merged(self, updates: Mapping[str, Any]) -> Record:
        """Return a copy with ``updates`` shallow-merged in.

        ``id`` is immutable and silently ignored.
        """
        props = dict(self.properties)
        lat, lng, color = self.lat, self.lng, self.custom_color
        for key, value in updates.items():
            if key == ID_KEY:
                continue
            if key == LAT_KEY:
                lat = _to_float(value, lat)
            elif key == LNG_KEY:
                lng = _to_float(value, lng)
            elif key == CUSTOM_COLOR_KEY:
                color = value or None
            else:
                props[key] = value
        return Record(self.record_id, lat, lng, props, color)

    def with_id(self, record_id: str) -> Record:
        return replace(self, record_id=record_id)

    def to_row(self) -> dict[str, Any]:
        """Flat export row; the internal id is omitted."""
        row: dict[str, Any] = dict(self.properties)
        row[LAT_KEY] = self.lat
        row[LNG_KEY] = self.lng
        if self.custom_color:
            row[CUSTOM_COLOR_KEY] = self.custom_color
        return row


@dataclass(frozen=True)
class Layer:
    """A named, styled collection of records from one import or search.

    Attributes:
        layer_id: Unique identifier, immutable.
        name: Display name (also the export sheet name).
        file_name: Source file name, empty for search layers.
        records: Records in display order.
        visible: Whole-layer inclusion toggle.
        is_places_layer: True for layers created from a place search.
        color_by_field: Field whose category values pick colors.
        shape_by_field: Field whose category values pick shapes.
        label_by_field: Field rendered as a text label ("" = none).
        point_size: Marker size in pixels.
        color_map: Category value -> color; regenerated on regroup.
        shape_map: Sparse category value -> shape overrides.
        hidden_categories: Category values suppressed by the legend.
        default_color: Fallback color.
        default_shape: Fallback shape.
        created_at: ISO8601 creation timestamp.
    """

    layer_id: str
    name: str
    records: tuple[Record, ...] = ()
    file_name: str = ""
    visible: bool = True
    is_places_layer: bool = False
    color_by_field: str = ""
    shape_by_field: str = ""
    label_by_field: str = ""
    point_size: int = settings.default_point_size
    color_map: Mapping[str, str] = field(default_factory=dict)
    shape_map: Mapping[str, Shape] = field(default_factory=dict)
    hidden_categories: frozenset[str] = frozenset()
    default_color: str = settings.default_color
    default_shape: Shape = Shape(settings.default_shape)
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def record_ids(self) -> set[str]:
        return {r.record_id for r in self.records}

    def find(self, record_id: str) -> Optional[Record]:
        for record in self.records:
            if record.record_id == record_id:
                return record
        return None

    def field_names(self) -> list[str]:
        """Ordered union of property keys across all records."""
        seen: dict[str, None] = {}
        for record in self.records:
            for key in record.properties:
                seen.setdefault(key, None)
        return list(seen)


@dataclass(frozen=True)
class VisibleRecord:
    """A record tagged with the id of the layer that owns it."""

    layer_id: str
    record: Record

    @property
    def record_id(self) -> str:
        return self.record.record_id


def _to_float(value: Any, fallback: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return fallback
