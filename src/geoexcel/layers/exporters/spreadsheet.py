"""Export layers to an Excel workbook, one sheet per layer.

Callers pass the *filtered* layers so the workbook holds what is currently
shown. The internal record id is never written.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable

import pandas as pd
from loguru import logger

from geoexcel.layers.layer import Layer

MAX_SHEET_NAME = 31  # Excel limit
_INVALID_SHEET_CHARS = str.maketrans({c: "_" for c in "[]:*?/\\"})


def default_export_name(today: date | None = None) -> str:
    today = today or date.today()
    return f"GeoExcel_Export_{today.isoformat()}.xlsx"


def sheet_name_for(name: str, taken: set[str]) -> str:
    """Excel-safe, unique sheet name (max 31 characters)."""
    base = (name.translate(_INVALID_SHEET_CHARS).strip() or "Layer")[:MAX_SHEET_NAME]
    candidate = base
    n = 2
    while candidate.lower() in taken:
        suffix = f" ({n})"
        candidate = base[: MAX_SHEET_NAME - len(suffix)] + suffix
        n += 1
    taken.add(candidate.lower())
    return candidate


def layer_to_frame(layer: Layer) -> pd.DataFrame:
    """One row per record; columns in first-seen order across records."""
    return pd.DataFrame([record.to_row() for record in layer.records])


def layers_to_frames(layers: Iterable[Layer]) -> dict[str, pd.DataFrame]:
    """Sheet name -> DataFrame for every layer, in layer order."""
    taken: set[str] = set()
    return {sheet_name_for(layer.name, taken): layer_to_frame(layer) for layer in layers}


def export_layers(layers: Iterable[Layer], path: str) -> dict[str, int]:
    """Write layers to ``path`` as an .xlsx workbook.

    Returns:
        Sheet name -> number of rows written.
    """
    frames = layers_to_frames(layers)
    if not frames:
        frames = {"Layer": pd.DataFrame()}
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for sheet, frame in frames.items():
            frame.to_excel(writer, sheet_name=sheet, index=False)
    counts = {sheet: len(frame) for sheet, frame in frames.items()}
    logger.info(f"Exported {sum(counts.values())} rows in {len(counts)} sheets to {path}")
    return counts
