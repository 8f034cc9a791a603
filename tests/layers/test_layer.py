"""Tests for Record and Layer dataclasses."""

import math
from dataclasses import FrozenInstanceError

import pytest

from geoexcel.layers import Layer, Record, Shape


@pytest.mark.unit
class TestRecord:
    """Record field access and copy-on-write merges."""

    def test_get_resolves_reserved_keys(self):
        """get() resolves id, lat, lng and _customColor."""
        r = Record("r1", 30.0, 31.0, {"city": "Cairo"}, custom_color="#000000")
        assert r.get("id") == "r1"
        assert r.get("lat") == 30.0
        assert r.get("lng") == 31.0
        assert r.get("_customColor") == "#000000"
        assert r.get("city") == "Cairo"
        assert r.get("missing") is None

    def test_mappable(self):
        """Only finite coordinates are mappable."""
        assert Record("a", 30.0, 31.0).is_mappable is True
        assert Record("b", math.nan, 31.0).is_mappable is False
        assert Record("c", 30.0, math.inf).is_mappable is False

    def test_merged_returns_new_record(self):
        """merged() leaves the original record intact."""
        r = Record("r1", 30.0, 31.0, {"city": "Cairo", "status": "active"})
        updated = r.merged({"status": "closed", "owner": "Sara"})
        assert updated is not r
        assert r.properties == {"city": "Cairo", "status": "active"}
        assert updated.properties == {"city": "Cairo", "status": "closed", "owner": "Sara"}

    def test_merged_ignores_id_and_routes_coordinates(self):
        """id is immutable; lat/lng update the coordinates."""
        r = Record("r1", 30.0, 31.0)
        updated = r.merged({"id": "hijack", "lat": "29.5", "lng": 30.5, "_customColor": "#ff0000"})
        assert updated.record_id == "r1"
        assert updated.lat == 29.5
        assert updated.lng == 30.5
        assert updated.custom_color == "#ff0000"
        assert "lat" not in updated.properties

    def test_merged_bad_coordinate_keeps_old(self):
        """A non-numeric coordinate keeps the old value."""
        r = Record("r1", 30.0, 31.0)
        assert r.merged({"lat": "north"}).lat == 30.0

    def test_to_row_omits_id(self):
        """Export rows have no id column."""
        r = Record("r1", 30.0, 31.0, {"name": "A", "note": ""})
        row = r.to_row()
        assert "id" not in row
        assert row == {"name": "A", "note": "", "lat": 30.0, "lng": 31.0}

    def test_to_row_keeps_custom_color(self):
        """A color tag is exported."""
        r = Record("r1", 30.0, 31.0, {}, custom_color="#123456")
        assert r.to_row()["_customColor"] == "#123456"

    def test_frozen(self):
        """Records cannot be mutated in place."""
        r = Record("r1", 30.0, 31.0)
        with pytest.raises(FrozenInstanceError):
            r.lat = 1.0


@pytest.mark.unit
class TestLayer:
    """Layer defaults and helpers."""

    def test_defaults(self):
        """A new layer gets the configured style defaults."""
        layer = Layer(layer_id="l1", name="Customers")
        assert layer.visible is True
        assert layer.records == ()
        assert layer.hidden_categories == frozenset()
        assert layer.default_shape == Shape.CIRCLE
        assert layer.default_color == "#3b82f6"
        assert layer.point_size == 12
        assert layer.created_at

    def test_find_and_ids(self):
        """find() and record_ids() look up by id."""
        a = Record("a", 1.0, 1.0)
        b = Record("b", 2.0, 2.0)
        layer = Layer(layer_id="l1", name="L", records=(a, b))
        assert layer.find("b") is b
        assert layer.find("zzz") is None
        assert layer.record_ids() == {"a", "b"}

    def test_field_names_union_in_order(self):
        """field_names() is the ordered union of keys."""
        layer = Layer(layer_id="l1", name="L", records=(
            Record("a", 1.0, 1.0, {"name": "x", "city": "y"}),
            Record("b", 2.0, 2.0, {"city": "z", "phone": "1"}),
        ))
        assert layer.field_names() == ["name", "city", "phone"]
