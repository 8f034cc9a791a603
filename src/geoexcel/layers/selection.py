"""Spatial selection — polygon/circle hit-testing and selection view state.

Hit-testing runs over the *filtered* layers (what is currently drawn), so a
shape never selects a record the user cannot see.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Literal, Optional, Sequence, Union

from loguru import logger

from geoexcel.geo import (
    BoundingBox,
    GeoPoint,
    bounding_box,
    distance_meters,
    distances_meters,
    is_inside_polygon,
)
from geoexcel.layers.layer import Layer, VisibleRecord

SelectionMode = Literal["none", "polygon", "circle", "search_area"]


@dataclass(frozen=True)
class PolygonShape:
    vertices: tuple[GeoPoint, ...]


@dataclass(frozen=True)
class CircleShape:
    center: GeoPoint
    radius_m: float


SelectionShape = Union[PolygonShape, CircleShape]


def _mappable(layers: Iterable[Layer]) -> list[VisibleRecord]:
    return [
        VisibleRecord(layer.layer_id, record)
        for layer in layers
        if layer.visible
        for record in layer.records
        if record.is_mappable
    ]


def select_in_polygon(
    layers: Iterable[Layer], vertices: Sequence[GeoPoint]
) -> list[VisibleRecord]:
    """Records of visible layers lying inside the polygon."""
    if len(vertices) < 3:
        return []
    return [
        vr for vr in _mappable(layers)
        if is_inside_polygon(GeoPoint(lat=vr.record.lat, lng=vr.record.lng), vertices)
    ]


def select_in_circle(
    layers: Iterable[Layer], center: GeoPoint, radius_m: float
) -> list[VisibleRecord]:
    """Records of visible layers within ``radius_m`` of ``center`` (inclusive).

    A vectorised pass narrows the candidates; the boundary is then decided
    with ``distance_meters`` so a record exactly on the circle (e.g. the
    second click of a drawn circle) is always included.
    """
    candidates = _mappable(layers)
    if not candidates:
        return []
    distances = distances_meters([(vr.record.lat, vr.record.lng) for vr in candidates], center)
    slack = max(radius_m, 1.0) * 1e-9
    return [
        vr for vr, d in zip(candidates, distances)
        if d <= radius_m + slack
        and distance_meters(GeoPoint(lat=vr.record.lat, lng=vr.record.lng), center) <= radius_m
    ]


@dataclass(frozen=True)
class SelectionState:
    """Immutable selection view state.

    Multi-select and single click-select are mutually exclusive. The
    multi-select is held as (layer_id, record_id) pairs and resolved
    against the current visible records on read, so it never keeps a
    record alive after its layer is gone.

    Attributes:
        mode: Drawing mode awaiting input.
        selected_keys: Multi-selected (layer_id, record_id) pairs.
        selected_record: Single click-selected (layer_id, record_id).
        shape: The shape that produced the current multi-select.
        circle_center: First click of a circle being drawn.
        search_bounds: Area chosen for a place search.
    """

    mode: SelectionMode = "none"
    selected_keys: tuple[tuple[str, str], ...] = ()
    selected_record: Optional[tuple[str, str]] = None
    shape: Optional[SelectionShape] = None
    circle_center: Optional[GeoPoint] = None
    search_bounds: Optional[BoundingBox] = None

    @property
    def has_selection(self) -> bool:
        return bool(self.selected_keys)

    @property
    def selected_ids(self) -> frozenset[str]:
        return frozenset(record_id for _, record_id in self.selected_keys)

    def start(self, mode: SelectionMode) -> SelectionState:
        """Arm a drawing mode. Search-area mode hides the prior shape."""
        if mode == "search_area":
            return replace(self, mode=mode, shape=None, circle_center=None)
        return replace(self, mode=mode, circle_center=None)

    def complete_polygon(
        self, layers: Iterable[Layer], vertices: Sequence[GeoPoint]
    ) -> SelectionState:
        """Finish a polygon: select records, or define the search area."""
        vertices = tuple(vertices)
        if len(vertices) < 3:
            logger.debug(f"Polygon with {len(vertices)} vertices discarded")
            return replace(self, mode="none")
        if self.mode == "search_area":
            bounds = bounding_box(vertices)
            logger.info(f"Search area set: {bounds.viewbox()}")
            return replace(self, mode="none", search_bounds=bounds)
        hits = select_in_polygon(layers, vertices)
        return self._with_selection(hits, PolygonShape(vertices))

    def circle_click(self, layers: Iterable[Layer], point: GeoPoint) -> SelectionState:
        """First click fixes the center; second click fixes the radius."""
        if self.circle_center is None:
            return replace(self, mode="circle", circle_center=point)
        radius = distance_meters(self.circle_center, point)
        return self.complete_circle(layers, self.circle_center, radius)

    def complete_circle(
        self, layers: Iterable[Layer], center: GeoPoint, radius_m: float
    ) -> SelectionState:
        hits = select_in_circle(layers, center, radius_m)
        return self._with_selection(hits, CircleShape(center, radius_m))

    def select_record(self, layer_id: str, record_id: str) -> SelectionState:
        """Click-select one record; drops any multi-select."""
        return replace(
            self, selected_record=(layer_id, record_id), selected_keys=(), shape=None
        )

    def deselect_record(self) -> SelectionState:
        return replace(self, selected_record=None)

    def clear(self) -> SelectionState:
        return replace(self, mode="none", selected_keys=(), shape=None, circle_center=None)

    def clear_search_bounds(self) -> SelectionState:
        return replace(self, search_bounds=None)

    def table_records(self, visible: Sequence[VisibleRecord]) -> list[VisibleRecord]:
        """Rows for the table: the multi-select if active, else everything."""
        if not self.selected_keys:
            return list(visible)
        keys = set(self.selected_keys)
        return [vr for vr in visible if (vr.layer_id, vr.record_id) in keys]

    def _with_selection(
        self, hits: Sequence[VisibleRecord], shape: SelectionShape
    ) -> SelectionState:
        logger.debug(f"Spatial selection matched {len(hits)} records")
        return replace(
            self,
            mode="none",
            selected_keys=tuple((vr.layer_id, vr.record_id) for vr in hits),
            selected_record=None,
            shape=shape,
            circle_center=None,
        )
