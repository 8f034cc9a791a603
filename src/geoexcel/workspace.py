"""Workspace — top-level view state tying layers, rules and selection together.

The layer list (owned by LayerManager), the filter rules and the selection
are three independently owned pieces of state. Rules and selection refer to
records by id only. ``view()`` derives an immutable WorkspaceView from the
current snapshots and caches it until one of them changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

from loguru import logger

from geoexcel.geo import BoundingBox, GeoPoint
from geoexcel.layers.enrichment import Enricher, EnrichmentResult, ProgressCallback
from geoexcel.layers.exporters.spreadsheet import default_export_name, export_layers
from geoexcel.layers.filters import (
    FilterRule,
    all_visible,
    filter_layers,
    quick_filter_rule,
)
from geoexcel.layers.layer import Layer, Record, VisibleRecord
from geoexcel.layers.manager import LayerManager
from geoexcel.layers.selection import SelectionMode, SelectionState


@dataclass(frozen=True)
class WorkspaceView:
    """Derived, read-only view of one (layers, rules, selection) snapshot.

    Attributes:
        layers: Filtered layers (legend + rules applied), all of them,
            including hidden ones, in display order.
        visible: Records of visible layers after filtering, tagged by layer.
        table: Rows shown in the attribute table and targeted by bulk edits.
        selection: The selection state this view was derived with.
    """

    layers: tuple[Layer, ...]
    visible: tuple[VisibleRecord, ...]
    table: tuple[VisibleRecord, ...]
    selection: SelectionState

    def layer(self, layer_id: str) -> Optional[Layer]:
        return next((l for l in self.layers if l.layer_id == layer_id), None)


class Workspace:
    """Application view state over a LayerManager."""

    def __init__(
        self,
        manager: Optional[LayerManager] = None,
        enricher: Optional[Enricher] = None,
        place_search=None,
    ) -> None:
        self.manager = manager or LayerManager()
        self._enricher = enricher
        self._place_search = place_search
        self._rules: tuple[FilterRule, ...] = ()
        self._selection = SelectionState()
        self._cache_key: tuple = ()
        self._cache: Optional[WorkspaceView] = None

    # ------------------------------------------------------------------
    # Derived view
    # ------------------------------------------------------------------

    @property
    def rules(self) -> tuple[FilterRule, ...]:
        return self._rules

    @property
    def selection(self) -> SelectionState:
        return self._selection

    def view(self) -> WorkspaceView:
        layers = self.manager.layers
        key = (layers, self._rules, self._selection)
        if self._cache is not None and all(a is b for a, b in zip(key, self._cache_key)):
            return self._cache
        filtered = tuple(filter_layers(layers, self._rules))
        visible = tuple(all_visible(filtered))
        table = tuple(self._selection.table_records(visible))
        self._cache = WorkspaceView(filtered, visible, table, self._selection)
        self._cache_key = key
        return self._cache

    # ------------------------------------------------------------------
    # Filter rules
    # ------------------------------------------------------------------

    def set_rules(self, rules: Iterable[FilterRule]) -> None:
        self._rules = tuple(rules)

    def add_rule(self, rule: FilterRule) -> None:
        self._rules = self._rules + (rule,)

    def update_rule(self, rule_id: str, updates: Mapping[str, Any]) -> bool:
        for idx, rule in enumerate(self._rules):
            if rule.id == rule_id:
                merged = FilterRule.model_validate({**rule.model_dump(), **updates})
                self._rules = self._rules[:idx] + (merged,) + self._rules[idx + 1:]
                return True
        return False

    def remove_rule(self, rule_id: str) -> bool:
        kept = tuple(r for r in self._rules if r.id != rule_id)
        removed = len(kept) != len(self._rules)
        self._rules = kept
        return removed

    def quick_filter(self, field: str, value: Any) -> FilterRule:
        """Replace all rules with a single ``field equals value`` rule."""
        rule = quick_filter_rule(field, value)
        self._rules = (rule,)
        return rule

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def start_selection(self, mode: SelectionMode) -> None:
        self._selection = self._selection.start(mode)

    def complete_polygon(self, vertices: Sequence[GeoPoint]) -> SelectionState:
        self._selection = self._selection.complete_polygon(self.view().layers, vertices)
        return self._selection

    def circle_click(self, point: GeoPoint) -> SelectionState:
        self._selection = self._selection.circle_click(self.view().layers, point)
        return self._selection

    def complete_circle(self, center: GeoPoint, radius_m: float) -> SelectionState:
        self._selection = self._selection.complete_circle(self.view().layers, center, radius_m)
        return self._selection

    def select_record(self, layer_id: str, record_id: str) -> None:
        self._selection = self._selection.select_record(layer_id, record_id)

    def clear_selection(self) -> None:
        self._selection = self._selection.clear()

    @property
    def search_bounds(self) -> Optional[BoundingBox]:
        return self._selection.search_bounds

    # ------------------------------------------------------------------
    # Edits routed through the view
    # ------------------------------------------------------------------

    def bulk_update(self, updates: Mapping[str, Any]) -> int:
        """Apply ``updates`` to exactly the rows currently in the table."""
        target_ids = [vr.record_id for vr in self.view().table]
        return self.manager.bulk_update(target_ids, updates)

    async def enrich_layer(
        self, layer_id: str, on_progress: Optional[ProgressCallback] = None
    ) -> Optional[EnrichmentResult]:
        """Enrich a layer, scoped to the multi-select when one is active."""
        if self._enricher is None:
            self._enricher = Enricher(self.manager)
        scope = self._selection.selected_ids if self._selection.has_selection else None
        return await self._enricher.enrich_layer(layer_id, scope, on_progress)

    async def search_places(self, activity: str, area_name: str = "") -> Optional[Layer]:
        """Run a place search and add the results as a new layer.

        Uses the drawn search area when one is set. Returns None when the
        search yields nothing.
        """
        if self._place_search is None:
            from geoexcel.services.geocoding import PlaceSearch
            self._place_search = PlaceSearch()
        bounds = self._selection.search_bounds
        results: list[Record] = await self._place_search.search(activity, area_name, bounds)
        if not results:
            logger.info(f"No places found for '{activity}'")
            return None
        name = f"{activity} - {area_name}" if area_name else activity
        layer = self.manager.add_places_layer(results, name)
        self._selection = self._selection.clear_search_bounds()
        return layer

    def export(self, path: Optional[str] = None) -> dict[str, int]:
        """Write the filtered view (what is shown) to an .xlsx workbook."""
        return export_layers(self.view().layers, path or default_export_name())
