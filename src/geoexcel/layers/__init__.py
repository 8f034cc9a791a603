"""Point layer system — records, styling, filtering, selection, edits.

Spreadsheet import/export goes through pandas (openpyxl engine).
"""

from geoexcel.layers.filters import FilterRule, FilterStyle
from geoexcel.layers.layer import Layer, Record, Shape, VisibleRecord
from geoexcel.layers.manager import LayerManager

__all__ = [
    "FilterRule",
    "FilterStyle",
    "Layer",
    "LayerManager",
    "Record",
    "Shape",
    "VisibleRecord",
]
