"""Tests for Workspace — derived views, selection-scoped edits, search and export."""

import asyncio

import pandas as pd
import pytest

from geoexcel import Workspace
from geoexcel.geo import GeoPoint
from geoexcel.layers import FilterRule, LayerManager, Record
from geoexcel.layers.enrichment import Enricher


def P(lat, lng):
    return GeoPoint(lat=lat, lng=lng)


# Records on a diagonal; the polygon below encloses c0..c2.
SMALL_BOX = [P(29.995, 30.995), P(30.025, 30.995), P(30.025, 31.025), P(29.995, 31.025)]


class FakeGeocoder:
    def __init__(self):
        self.calls = []

    async def lookup(self, lat, lng):
        self.calls.append((lat, lng))
        return "Maadi"


class FakePlaceSearch:
    def __init__(self, results):
        self.results = results
        self.calls = []

    async def search(self, activity, area_name="", bounds=None):
        self.calls.append((activity, area_name, bounds))
        return list(self.results)


async def _no_sleep(_delay):
    await asyncio.sleep(0)


@pytest.fixture
def workspace():
    ws = Workspace()
    ws.manager.add_layer([
        Record(f"c{i}", 30.0 + i / 100, 31.0 + i / 100,
               {"city": "Cairo" if i % 2 == 0 else "Giza", "status": "open"})
        for i in range(10)
    ], "customers.xlsx", group_field="city")
    return ws


@pytest.mark.unit
class TestView:
    def test_cached_until_state_changes(self, workspace):
        """view() is reused until the rules change."""
        first = workspace.view()
        assert workspace.view() is first
        workspace.add_rule(FilterRule(field="city", operator="equals", value="Cairo"))
        second = workspace.view()
        assert second is not first
        assert len(second.visible) == 5

    def test_layer_edit_invalidates(self, workspace):
        """A record edit produces a fresh view."""
        first = workspace.view()
        workspace.manager.update_record("c0", {"status": "closed"})
        assert workspace.view() is not first
        assert workspace.view().layers[0].find("c0").get("status") == "closed"

    def test_legend_toggle_is_reversible(self, workspace):
        """Hiding then showing a category restores all records."""
        layer_id = workspace.manager.layers[0].layer_id
        workspace.manager.toggle_category(layer_id, "Giza")
        assert {vr.record.get("city") for vr in workspace.view().visible} == {"Cairo"}
        workspace.manager.toggle_category(layer_id, "Giza")
        assert len(workspace.view().visible) == 10

    def test_hidden_layer_not_visible(self, workspace):
        """A hidden layer keeps its place but contributes no records."""
        workspace.manager.set_visibility(workspace.manager.layers[0].layer_id, False)
        view = workspace.view()
        assert view.visible == ()
        assert len(view.layers) == 1

    def test_view_layer_lookup(self, workspace):
        """WorkspaceView.layer finds by id or returns None."""
        layer_id = workspace.manager.layers[0].layer_id
        assert workspace.view().layer(layer_id).layer_id == layer_id
        assert workspace.view().layer("nope") is None


@pytest.mark.unit
class TestRules:
    def test_quick_filter_replaces_rules(self, workspace):
        """Quick filter replaces every existing rule."""
        workspace.add_rule(FilterRule(field="status", operator="equals", value="open"))
        rule = workspace.quick_filter("city", "Giza")
        assert workspace.rules == (rule,)
        assert len(workspace.view().visible) == 5

    def test_update_and_remove_rule(self, workspace):
        """Rules can be edited in place and removed by id."""
        rule = FilterRule(field="city", operator="equals", value="Cairo")
        workspace.add_rule(rule)
        assert workspace.update_rule(rule.id, {"value": "Giza"}) is True
        assert workspace.rules[0].value == "Giza"
        assert workspace.rules[0].id == rule.id
        assert workspace.update_rule("missing", {"value": "x"}) is False
        assert workspace.remove_rule(rule.id) is True
        assert workspace.rules == ()
        assert workspace.remove_rule(rule.id) is False


@pytest.mark.unit
class TestSelectionEdits:
    def test_bulk_update_scoped_to_selection(self, workspace):
        """Bulk edit touches only the polygon-selected rows."""
        state = workspace.complete_polygon(SMALL_BOX)
        assert state.selected_ids == {"c0", "c1", "c2"}
        assert len(workspace.view().table) == 3

        assert workspace.bulk_update({"status": "visited"}) == 3
        statuses = {r.record_id: r.get("status") for r in workspace.manager.layers[0].records}
        assert [k for k, v in statuses.items() if v == "visited"] == ["c0", "c1", "c2"]
        assert list(statuses.values()).count("open") == 7

    def test_bulk_update_without_selection_hits_table(self, workspace):
        """Without a selection bulk edit targets the filtered table."""
        workspace.quick_filter("city", "Cairo")
        assert workspace.bulk_update({"_customColor": "#00ff00"}) == 5

    def test_selection_ignores_filtered_records(self, workspace):
        """Drawn shapes never select filtered-out records."""
        workspace.quick_filter("city", "Giza")
        state = workspace.complete_polygon(SMALL_BOX)
        assert state.selected_ids == {"c1"}

    def test_circle_selection(self, workspace):
        """Two clicks select records within the circle."""
        workspace.start_selection("circle")
        workspace.circle_click(P(30.0, 31.0))
        state = workspace.circle_click(P(30.011, 31.011))
        assert state.selected_ids == {"c0", "c1"}

    def test_click_select_and_clear(self, workspace):
        """Click-select drops the multi-select; clear empties it."""
        layer_id = workspace.manager.layers[0].layer_id
        workspace.complete_polygon(SMALL_BOX)
        workspace.select_record(layer_id, "c5")
        assert workspace.selection.selected_record == (layer_id, "c5")
        assert len(workspace.view().table) == 10
        workspace.complete_circle(P(30.0, 31.0), 10.0)
        workspace.clear_selection()
        assert not workspace.selection.has_selection


@pytest.mark.unit
class TestEnrichAndSearch:
    @pytest.mark.anyio
    async def test_enrich_scoped_to_selection(self, workspace):
        """Enrichment only fills the selected records."""
        geocoder = FakeGeocoder()
        workspace = Workspace(
            workspace.manager,
            enricher=Enricher(workspace.manager, geocoder, field="area", sleep=_no_sleep),
        )
        workspace.complete_polygon(SMALL_BOX)
        layer_id = workspace.manager.layers[0].layer_id
        result = await workspace.enrich_layer(layer_id)
        assert result.processed == 3
        areas = [r.get("area") for r in workspace.manager.layers[0].records]
        assert areas[:3] == ["Maadi"] * 3
        assert areas[3:] == [None] * 7

    @pytest.mark.anyio
    async def test_search_places_in_drawn_area(self):
        """Place search uses the drawn bounds and adds a places layer."""
        places = [
            Record("p1", 30.01, 31.01, {"name": "A", "type": "cafe"}),
            Record("p2", 30.02, 31.02, {"name": "B", "type": "restaurant"}),
        ]
        search = FakePlaceSearch(places)
        workspace = Workspace(LayerManager(), place_search=search)
        workspace.start_selection("search_area")
        workspace.complete_polygon([P(30.0, 31.0), P(30.1, 31.0), P(30.1, 31.1)])
        bounds = workspace.search_bounds
        assert bounds is not None

        layer = await workspace.search_places("cafe", "Maadi")
        assert search.calls == [("cafe", "Maadi", bounds)]
        assert layer.name == "cafe - Maadi"
        assert layer.is_places_layer
        assert layer.color_by_field == "type"
        assert workspace.search_bounds is None

    @pytest.mark.anyio
    async def test_search_places_nothing_found(self):
        """An empty search adds no layer."""
        workspace = Workspace(LayerManager(), place_search=FakePlaceSearch([]))
        assert await workspace.search_places("igloo", "Cairo") is None
        assert workspace.manager.layers == ()


@pytest.mark.unit
class TestExport:
    def test_export_reflects_filters(self, workspace, tmp_path):
        """Export writes only the records that pass the rules."""
        path = tmp_path / "export.xlsx"
        workspace.quick_filter("city", "Cairo")
        counts = workspace.export(str(path))
        assert counts == {"customers": 5}
        frame = pd.read_excel(path, sheet_name="customers")
        assert set(frame["city"]) == {"Cairo"}
        assert "id" not in frame.columns

    def test_export_default_name(self, workspace, tmp_path, monkeypatch):
        """Without a path the dated default name is used."""
        monkeypatch.chdir(tmp_path)
        counts = workspace.export()
        assert counts == {"customers": 10}
        assert len(list(tmp_path.glob("GeoExcel_Export_*.xlsx"))) == 1
