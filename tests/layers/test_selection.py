"""Tests for spatial selection — polygon/circle hit-testing and selection state."""

import math

import pytest

from geoexcel.geo import GeoPoint, distance_meters
from geoexcel.layers import Layer, Record, VisibleRecord
from geoexcel.layers.selection import (
    CircleShape,
    PolygonShape,
    SelectionState,
    select_in_circle,
    select_in_polygon,
)


def P(lat, lng):
    return GeoPoint(lat=lat, lng=lng)


SQUARE = [P(0, 0), P(10, 0), P(10, 10), P(0, 10)]


@pytest.fixture
def layers():
    a = Layer("a", "A", (
        Record("a1", 5.0, 5.0, {"n": "inside"}),
        Record("a2", 15.0, 15.0, {"n": "outside"}),
        Record("a3", math.nan, 5.0, {"n": "unmappable"}),
    ))
    b = Layer("b", "B", (
        Record("b1", 2.0, 8.0),
        Record("b2", -1.0, 5.0),
    ))
    hidden = Layer("h", "Hidden", (Record("h1", 5.0, 5.0),), visible=False)
    return [a, b, hidden]


def _keys(hits):
    return [(vr.layer_id, vr.record_id) for vr in hits]


@pytest.mark.unit
class TestSelectInPolygon:
    def test_hits_across_visible_layers(self, layers):
        """Polygon hits span all visible layers."""
        assert _keys(select_in_polygon(layers, SQUARE)) == [("a", "a1"), ("b", "b1")]

    def test_degenerate_polygon_selects_nothing(self, layers):
        """Two vertices select nothing."""
        assert select_in_polygon(layers, SQUARE[:2]) == []


@pytest.mark.unit
class TestSelectInCircle:
    def test_radius_inclusive(self, layers):
        """A record exactly on the circle is selected."""
        center = P(5.0, 5.0)
        radius = distance_meters(center, P(2.0, 8.0))
        hits = select_in_circle(layers, center, radius)
        assert ("a", "a1") in _keys(hits)
        assert ("b", "b1") in _keys(hits)
        assert ("h", "h1") not in _keys(hits)

    def test_small_radius(self, layers):
        """A tiny radius selects only the center record."""
        assert _keys(select_in_circle(layers, P(5.0, 5.0), 1.0)) == [("a", "a1")]

    def test_no_layers(self):
        """No layers gives no hits."""
        assert select_in_circle([], P(0, 0), 1000.0) == []


@pytest.mark.unit
class TestSelectionState:
    """Exclusive multi-select, click-select and search-area drawing."""

    def test_polygon_replaces_previous_selection(self, layers):
        """A new shape replaces the previous selection."""
        state = SelectionState().complete_circle(layers, P(-1.0, 5.0), 10.0)
        assert state.selected_ids == {"b2"}
        state = state.start("polygon").complete_polygon(layers, SQUARE)
        assert state.selected_ids == {"a1", "b1"}
        assert isinstance(state.shape, PolygonShape)
        assert state.mode == "none"

    def test_circle_by_two_clicks(self, layers):
        """First click sets the center, second the radius."""
        state = SelectionState().start("circle")
        state = state.circle_click(layers, P(5.0, 5.0))
        assert state.circle_center == P(5.0, 5.0)
        assert not state.has_selection
        state = state.circle_click(layers, P(5.0, 5.001))
        assert state.selected_ids == {"a1"}
        assert isinstance(state.shape, CircleShape)
        assert state.shape.radius_m == pytest.approx(distance_meters(P(5.0, 5.0), P(5.0, 5.001)))
        assert state.circle_center is None

    def test_clear(self, layers):
        """clear() drops the selection and shape."""
        state = SelectionState().complete_polygon(layers, SQUARE).clear()
        assert not state.has_selection
        assert state.shape is None

    def test_click_select_clears_multi_select(self, layers):
        """Click-select replaces the multi-select."""
        state = SelectionState().complete_polygon(layers, SQUARE).select_record("b", "b2")
        assert state.selected_record == ("b", "b2")
        assert not state.has_selection

    def test_multi_select_clears_click_select(self, layers):
        """A multi-select replaces the click-select."""
        state = SelectionState().select_record("b", "b2").complete_polygon(layers, SQUARE)
        assert state.selected_record is None
        assert state.has_selection

    def test_search_area_yields_bounds_not_selection(self, layers):
        """Search-area polygons set bounds and keep the selection."""
        state = SelectionState().complete_polygon(layers, SQUARE[:3] + [P(-1, 12)])
        state = state.start("search_area")
        before = state.selected_keys
        state = state.complete_polygon(layers, [P(30.0, 31.0), P(30.2, 31.4), P(29.9, 31.2)])
        assert state.search_bounds.min_lat == 29.9
        assert state.search_bounds.max_lng == 31.4
        assert state.selected_keys == before
        assert state.mode == "none"
        assert state.clear_search_bounds().search_bounds is None

    def test_short_polygon_cancels(self, layers):
        """A short polygon cancels drawing."""
        state = SelectionState().start("polygon").complete_polygon(layers, SQUARE[:2])
        assert state.mode == "none"
        assert not state.has_selection

    def test_table_records(self, layers):
        """The table shows the selection, or everything."""
        visible = [VisibleRecord(l.layer_id, r) for l in layers if l.visible for r in l.records]
        state = SelectionState()
        assert state.table_records(visible) == visible
        state = state.complete_polygon(layers, SQUARE)
        assert _keys(state.table_records(visible)) == [("a", "a1"), ("b", "b1")]

    def test_table_drops_records_that_vanished(self, layers):
        """Selected records no longer visible drop out."""
        state = SelectionState().complete_polygon(layers, SQUARE)
        visible = [VisibleRecord("b", layers[1].records[0])]
        assert _keys(state.table_records(visible)) == [("b", "b1")]
