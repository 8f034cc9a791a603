"""Parse spreadsheet rows with latitude/longitude columns into Records.

Reads .xlsx/.xls (first sheet) and .csv through pandas. Latitude and
longitude headers are matched case-insensitively against English and
Arabic aliases; the matched columns become ``Record.lat``/``Record.lng``
and every other column becomes a property. Rows without usable
coordinates are dropped.
"""

from __future__ import annotations

import math
import os
from typing import Any, Optional

import pandas as pd
from loguru import logger

from geoexcel.layers.layer import Record, new_record_id

LAT_KEYS = ("lat", "latitude", "خط العرض", "y", "خط_العرض")
LNG_KEYS = ("lng", "long", "longitude", "خط الطول", "x", "خط_الطول")


def find_column(columns, aliases) -> Optional[str]:
    """First column whose lower-cased, stripped header is an alias."""
    for column in columns:
        if str(column).strip().lower() in aliases:
            return column
    return None


def parse_spreadsheet(path: str) -> list[Record]:
    """Read a spreadsheet file into Records.

    Args:
        path: .xlsx, .xls or .csv file.

    Returns:
        Records for every row with resolvable coordinates.
    """
    ext = os.path.splitext(path)[1].lower()
    if ext == ".csv":
        frame = pd.read_csv(path)
    else:
        frame = pd.read_excel(path, sheet_name=0)
    return parse_frame(frame)


def parse_frame(frame: pd.DataFrame) -> list[Record]:
    """Convert a DataFrame into Records.

    Returns an empty list when no lat/lng columns can be found.
    """
    lat_col = find_column(frame.columns, LAT_KEYS)
    lng_col = find_column(frame.columns, LNG_KEYS)
    if lat_col is None or lng_col is None:
        logger.warning(f"No latitude/longitude columns in {list(frame.columns)}")
        return []

    records: list[Record] = []
    dropped = 0
    for row in frame.to_dict(orient="records"):
        lat = _coordinate(row.get(lat_col))
        lng = _coordinate(row.get(lng_col))
        # Zero is how blank coordinate cells arrive from most exports.
        if lat is None or lng is None or lat == 0 or lng == 0:
            dropped += 1
            continue

        properties: dict[str, Any] = {}
        for key, value in row.items():
            if key in (lat_col, lng_col):
                continue
            cell = _cell(value)
            if cell is not None:
                properties[str(key)] = cell

        records.append(Record(new_record_id(), lat, lng, properties))

    if dropped:
        logger.info(f"Dropped {dropped} rows without usable coordinates")
    return records


def _coordinate(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _cell(value: Any) -> Any:
    """Plain Python value for a cell; blank cells become None."""
    if value is None or pd.isna(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    if hasattr(value, "item"):
        # numpy scalar
        return value.item()
    return value
