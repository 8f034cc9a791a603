"""LayerManager — authoritative registry of point layers.

Owns the ordered layer list and every mutation to it: layer lifecycle,
style configuration, legend toggles, and record edits (single, bulk,
schema-wide, enrichment merges).

Every mutation builds a new tuple of layers and swaps it in under a lock,
then notifies subscribers with the new snapshot. Readers therefore see
either the old or the new collection, never a half-applied edit.
"""

from __future__ import annotations

import os
import threading
from dataclasses import replace
from typing import Any, Callable, Iterable, Mapping, Optional

from loguru import logger

from geoexcel.config import settings
from geoexcel.layers.layer import (
    ID_KEY,
    LAT_KEY,
    LNG_KEY,
    Layer,
    Record,
    Shape,
    new_layer_id,
    new_record_id,
)
from geoexcel.layers.styling import (
    StyleKind,
    extend_color_map,
    generate_color_map,
    with_style_override,
)

Listener = Callable[[tuple[Layer, ...]], None]

# Config fields that update_config() accepts.
_CONFIG_FIELDS = frozenset({
    "name",
    "visible",
    "color_by_field",
    "shape_by_field",
    "label_by_field",
    "point_size",
    "color_map",
    "shape_map",
    "default_color",
    "default_shape",
})

# Header names (lower-cased) treated as coordinates when picking a grouping field.
COORDINATE_KEYS = frozenset({
    "lat", "latitude", "y", "خط العرض", "خط_العرض",
    "lng", "long", "lon", "longitude", "x", "خط الطول", "خط_الطول",
})

PLACES_GROUP_FIELD = "type"


def default_group_field(records: Iterable[Record]) -> str:
    """First attribute column that is not an id/coordinate/date-like field.

    Falls back to the first column, or "" when records carry no attributes.
    """
    first = next(iter(records), None)
    if first is None:
        return ""
    keys = first.keys()
    for key in keys:
        lowered = key.lower()
        if lowered == ID_KEY or lowered in COORDINATE_KEYS or "date" in lowered:
            continue
        return key
    return keys[0] if keys else ""


class LayerManager:
    """Registry of active point layers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._layers: tuple[Layer, ...] = ()
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Snapshots and observers
    # ------------------------------------------------------------------

    @property
    def layers(self) -> tuple[Layer, ...]:
        """Current immutable snapshot of all layers, in display order."""
        return self._layers

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback invoked with every new snapshot.

        Returns:
            A function that removes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners.remove(listener)
                except ValueError:
                    pass

        return unsubscribe

    def _commit(self, transform: Callable[[tuple[Layer, ...]], tuple[Layer, ...]]) -> tuple[Layer, ...]:
        with self._lock:
            new_layers = transform(self._layers)
            if new_layers is self._layers:
                return new_layers
            self._layers = new_layers
            listeners = list(self._listeners)
        for listener in listeners:
            listener(new_layers)
        return new_layers

    def _update_layer(self, layer_id: str, fn: Callable[[Layer], Layer]) -> Layer:
        """Replace one layer with ``fn(layer)``.

        Raises:
            KeyError: If the layer_id is not found.
        """
        result: list[Layer] = []

        def transform(layers: tuple[Layer, ...]) -> tuple[Layer, ...]:
            for idx, layer in enumerate(layers):
                if layer.layer_id == layer_id:
                    updated = fn(layer)
                    result.append(updated)
                    return layers[:idx] + (updated,) + layers[idx + 1:]
            raise KeyError(f"Layer not found: {layer_id}")

        self._commit(transform)
        return result[0]

    # ------------------------------------------------------------------
    # Layer lifecycle
    # ------------------------------------------------------------------

    def add_layer(
        self,
        records: Iterable[Record],
        source_name: str,
        *,
        group_field: Optional[str] = None,
        is_places_layer: bool = False,
    ) -> Layer:
        """Create a layer from imported records and append it.

        Args:
            records: Records in import order.
            source_name: File name (extension stripped for the display name)
                or search label.
            group_field: Field to color/shape by; chosen automatically when
                omitted.
            is_places_layer: Marks layers created from a place search.

        Returns:
            The new Layer.
        """
        records = list(records)
        field = default_group_field(records) if group_field is None else group_field
        holder: list[Layer] = []

        def transform(layers: tuple[Layer, ...]) -> tuple[Layer, ...]:
            taken = {rid for layer in layers for rid in layer.record_ids()}
            unique = tuple(_claim_ids(records, taken))
            layer = Layer(
                layer_id=new_layer_id(),
                name=os.path.splitext(source_name)[0] if not is_places_layer else source_name,
                file_name="" if is_places_layer else source_name,
                records=unique,
                is_places_layer=is_places_layer,
                color_by_field=field,
                shape_by_field=field,
                color_map=generate_color_map(unique, field),
            )
            holder.append(layer)
            return layers + (layer,)

        self._commit(transform)
        layer = holder[0]
        logger.info(
            f"Layer added: {layer.layer_id} '{layer.name}' "
            f"({len(layer.records)} records, grouped by '{field}')"
        )
        return layer

    def add_places_layer(self, records: Iterable[Record], name: str) -> Layer:
        """Create a layer from place-search results, grouped by place type."""
        return self.add_layer(
            records, name, group_field=PLACES_GROUP_FIELD, is_places_layer=True
        )

    def import_file(self, path: str) -> Layer:
        """Parse a spreadsheet file into a new layer."""
        from geoexcel.layers.parsers.spreadsheet import parse_spreadsheet

        records = parse_spreadsheet(path)
        return self.add_layer(records, os.path.basename(path))

    def remove_layer(self, layer_id: str) -> bool:
        """Remove a layer.

        Returns:
            True if the layer was removed, False if it didn't exist.
        """
        removed: list[bool] = []

        def transform(layers: tuple[Layer, ...]) -> tuple[Layer, ...]:
            kept = tuple(l for l in layers if l.layer_id != layer_id)
            if len(kept) == len(layers):
                return layers
            removed.append(True)
            return kept

        self._commit(transform)
        if removed:
            logger.info(f"Layer removed: {layer_id}")
        return bool(removed)

    def get_layer(self, layer_id: str) -> Optional[Layer]:
        for layer in self._layers:
            if layer.layer_id == layer_id:
                return layer
        return None

    def list_layers(self) -> list[Layer]:
        return list(self._layers)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_visibility(self, layer_id: str, visible: bool) -> None:
        """Set the visibility of a layer.

        Raises:
            KeyError: If the layer_id is not found.
        """
        self._update_layer(layer_id, lambda l: l if l.visible == visible else replace(l, visible=visible))

    def toggle_visibility(self, layer_id: str) -> bool:
        """Flip visibility; returns the new value."""
        return self._update_layer(layer_id, lambda l: replace(l, visible=not l.visible)).visible

    def update_config(self, layer_id: str, updates: Mapping[str, Any]) -> Layer:
        """Merge a partial configuration update into a layer.

        Changing ``color_by_field`` regenerates the color map and clears
        hidden categories, since old category values mean nothing under the
        new grouping.

        Raises:
            KeyError: If the layer_id is not found.
            ValueError: If ``updates`` names a field that is not configuration.
        """
        unknown = set(updates) - _CONFIG_FIELDS
        if unknown:
            raise ValueError(f"Not a layer config field: {', '.join(sorted(unknown))}")

        def apply(layer: Layer) -> Layer:
            changes = dict(updates)
            if "default_shape" in changes:
                changes["default_shape"] = Shape(changes["default_shape"])
            if "shape_map" in changes:
                changes["shape_map"] = {k: Shape(v) for k, v in changes["shape_map"].items()}
            regroup = (
                "color_by_field" in changes
                and changes["color_by_field"] != layer.color_by_field
            )
            if regroup:
                changes["color_map"] = generate_color_map(layer.records, changes["color_by_field"])
                changes["hidden_categories"] = frozenset()
            return replace(layer, **changes)

        layer = self._update_layer(layer_id, apply)
        logger.debug(f"Layer {layer_id} config updated: {sorted(updates)}")
        return layer

    def update_style(self, layer_id: str, category: str, kind: StyleKind, value: str) -> Layer:
        """Override the color or shape of a single category value.

        Raises:
            KeyError: If the layer_id is not found.
        """
        return self._update_layer(layer_id, lambda l: with_style_override(l, category, kind, value))

    def toggle_category(self, layer_id: str, category: str) -> bool:
        """Hide or show one legend category; returns True if now hidden.

        Raises:
            KeyError: If the layer_id is not found.
        """
        def apply(layer: Layer) -> Layer:
            hidden = layer.hidden_categories
            hidden = hidden - {category} if category in hidden else hidden | {category}
            return replace(layer, hidden_categories=hidden)

        return category in self._update_layer(layer_id, apply).hidden_categories

    # ------------------------------------------------------------------
    # Record edits
    # ------------------------------------------------------------------

    def update_record(self, record_id: str, updates: Mapping[str, Any]) -> bool:
        """Shallow-merge ``updates`` into one record.

        Only the first layer holding the id is touched.

        Returns:
            True if a record was updated.
        """
        found: list[bool] = []

        def transform(layers: tuple[Layer, ...]) -> tuple[Layer, ...]:
            for idx, layer in enumerate(layers):
                for pos, record in enumerate(layer.records):
                    if record.record_id == record_id:
                        found.append(True)
                        records = layer.records[:pos] + (record.merged(updates),) + layer.records[pos + 1:]
                        updated = _ensure_color_map(replace(layer, records=records))
                        return layers[:idx] + (updated,) + layers[idx + 1:]
            return layers

        self._commit(transform)
        return bool(found)

    def bulk_update(self, target_ids: Iterable[str], updates: Mapping[str, Any]) -> int:
        """Apply the same merge to every record whose id is in ``target_ids``.

        Returns:
            Number of records updated (0 for an empty target set).
        """
        targets = frozenset(target_ids)
        if not targets or not updates:
            return 0
        count = [0]

        def transform(layers: tuple[Layer, ...]) -> tuple[Layer, ...]:
            out = []
            for layer in layers:
                if not any(r.record_id in targets for r in layer.records):
                    out.append(layer)
                    continue
                records = []
                for record in layer.records:
                    if record.record_id in targets:
                        record = record.merged(updates)
                        count[0] += 1
                    records.append(record)
                out.append(_ensure_color_map(replace(layer, records=tuple(records))))
            return tuple(out) if count[0] else layers

        self._commit(transform)
        logger.info(f"Bulk update of {sorted(updates)} applied to {count[0]} records")
        return count[0]

    def add_column(self, name: str) -> bool:
        """Set field ``name`` to "" on every record of every layer.

        Returns:
            False if the name is blank or reserved (id/lat/lng).
        """
        name = name.strip()
        if not name or name in (ID_KEY, LAT_KEY, LNG_KEY):
            return False

        def transform(layers: tuple[Layer, ...]) -> tuple[Layer, ...]:
            return tuple(
                _ensure_color_map(
                    replace(layer, records=tuple(r.merged({name: ""}) for r in layer.records))
                )
                for layer in layers
            )

        self._commit(transform)
        logger.info(f"Column added: '{name}'")
        return True

    def add_row(self) -> Optional[Record]:
        """Insert a blank record at the head of the target layer.

        The target is the first visible layer, or the first layer when none
        is visible. Coordinates default to the first record of the first
        layer. Returns None when there are no layers.
        """
        holder: list[Record] = []

        def transform(layers: tuple[Layer, ...]) -> tuple[Layer, ...]:
            if not layers:
                return layers
            target = next((l for l in layers if l.visible), layers[0])
            anchor = layers[0].records[0] if layers[0].records else None
            lat = anchor.lat if anchor else settings.default_center_lat
            lng = anchor.lng if anchor else settings.default_center_lng
            row = Record(
                record_id=new_record_id("new"),
                lat=lat,
                lng=lng,
                properties={key: "" for key in target.field_names()},
            )
            holder.append(row)
            updated = _ensure_color_map(replace(target, records=(row,) + target.records))
            return tuple(updated if l is target else l for l in layers)

        self._commit(transform)
        return holder[0] if holder else None

    def apply_field_values(self, layer_id: str, updates: Mapping[str, Mapping[str, Any]]) -> int:
        """Merge per-record updates (record_id -> fields) into one layer.

        Used by enrichment to publish incremental progress. A missing layer
        is a no-op.

        Returns:
            Number of records updated.
        """
        if not updates:
            return 0
        count = [0]

        def transform(layers: tuple[Layer, ...]) -> tuple[Layer, ...]:
            for idx, layer in enumerate(layers):
                if layer.layer_id != layer_id:
                    continue
                records = []
                for record in layer.records:
                    if record.record_id in updates:
                        record = record.merged(updates[record.record_id])
                        count[0] += 1
                    records.append(record)
                updated = _ensure_color_map(replace(layer, records=tuple(records)))
                return layers[:idx] + (updated,) + layers[idx + 1:]
            return layers

        self._commit(transform)
        return count[0]


def _claim_ids(records: Iterable[Record], taken: set[str]) -> Iterable[Record]:
    """Yield records with ids that are unique against ``taken``."""
    for record in records:
        if not record.record_id or record.record_id in taken:
            record = record.with_id(new_record_id())
        taken.add(record.record_id)
        yield record




def _ensure_color_map(layer: Layer) -> Layer:
    """Give every category of the grouping field a color after a record edit."""
    color_map = extend_color_map(layer.color_map, layer.records, layer.color_by_field)
    if color_map is layer.color_map:
        return layer
    return replace(layer, color_map=color_map)
