"""Layer enrichment — fill a missing field from each record's coordinates.

One enrichment runs at a time per application:

    IDLE -> RUNNING(layer_id) -> IDLE

Starting while RUNNING (for any layer) is a silent no-op. Records are
looked up strictly one after another with a fixed delay in between, and
results are merged into the layer every few records so observers see
progress. Removing the layer, or calling cancel(), stops the run before
the next lookup.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Collection, Optional, Protocol

from loguru import logger

from geoexcel.config import settings
from geoexcel.layers.layer import Layer, Record
from geoexcel.layers.manager import LayerManager
from geoexcel.layers.styling import is_empty

ProgressCallback = Callable[[int, int], None]


class Geocoder(Protocol):
    async def lookup(self, lat: float, lng: float) -> str: ...


class EnrichmentState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass(frozen=True)
class EnrichmentResult:
    """Outcome of one run.

    Attributes:
        layer_id: Layer that was enriched.
        processed: Records looked up and written.
        eligible: Records that qualified before the cap was applied.
        cancelled: True if the run stopped early.
    """

    layer_id: str
    processed: int
    eligible: int
    cancelled: bool = False


def eligible_records(
    layer: Layer, field: str, selection_ids: Optional[Collection[str]] = None
) -> list[Record]:
    """Records with coordinates that lack ``field``, in layer order.

    When ``selection_ids`` is given only those records qualify.
    """
    return [
        r for r in layer.records
        if r.is_mappable
        and is_empty(r.get(field))
        and (selection_ids is None or r.record_id in selection_ids)
    ]


class Enricher:
    """Single-flight enrichment runner bound to one LayerManager."""

    def __init__(
        self,
        manager: LayerManager,
        geocoder: Optional[Geocoder] = None,
        *,
        field: str = settings.enrichment_field,
        cap: int = settings.enrichment_cap,
        delay: float = settings.enrichment_delay,
        batch_size: int = settings.enrichment_batch_size,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if geocoder is None:
            from geoexcel.services.geocoding import ReverseGeocoder
            geocoder = ReverseGeocoder()
        self.manager = manager
        self.geocoder = geocoder
        self.field = field
        self.cap = cap
        self.delay = delay
        self.batch_size = max(1, batch_size)
        self._sleep = sleep
        self._lock = threading.Lock()
        self._running: Optional[str] = None
        self._cancelled = False

    @property
    def state(self) -> EnrichmentState:
        return EnrichmentState.RUNNING if self._running else EnrichmentState.IDLE

    @property
    def running_layer_id(self) -> Optional[str]:
        return self._running

    def cancel(self) -> None:
        """Stop the current run before its next lookup."""
        if self._running:
            self._cancelled = True

    def _try_start(self, layer_id: str) -> bool:
        with self._lock:
            if self._running is not None:
                return False
            self._running = layer_id
            self._cancelled = False
            return True

    def _finish(self) -> None:
        with self._lock:
            self._running = None
            self._cancelled = False

    def _should_stop(self, layer_id: str) -> bool:
        return self._cancelled or self.manager.get_layer(layer_id) is None

    async def enrich_layer(
        self,
        layer_id: str,
        selection_ids: Optional[Collection[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Optional[EnrichmentResult]:
        """Look up ``field`` for records of a layer that lack it.

        Args:
            layer_id: Layer to enrich.
            selection_ids: Restrict to these record ids (the active
                multi-select); None means the whole layer.
            on_progress: Called with (processed, total) after each merge.

        Returns:
            The run result, or None if another run is in progress or the
            layer does not exist.
        """
        layer = self.manager.get_layer(layer_id)
        if layer is None:
            return None
        if not self._try_start(layer_id):
            logger.debug(f"Enrichment already running for {self._running}; ignoring {layer_id}")
            return None

        try:
            candidates = eligible_records(layer, self.field, selection_ids)
            targets = candidates[: self.cap]
            logger.info(
                f"Enrichment started: {layer_id} '{self.field}' "
                f"({len(targets)} of {len(candidates)} eligible records)"
            )
            processed, cancelled = await self._run(layer_id, targets, on_progress)
        finally:
            self._finish()

        logger.info(
            f"Enrichment {'cancelled' if cancelled else 'finished'}: "
            f"{layer_id} ({processed}/{len(targets)} records)"
        )
        return EnrichmentResult(layer_id, processed, len(candidates), cancelled)

    async def _run(
        self,
        layer_id: str,
        targets: list[Record],
        on_progress: Optional[ProgressCallback],
    ) -> tuple[int, bool]:
        total = len(targets)
        pending: dict[str, dict[str, str]] = {}
        processed = 0

        def flush() -> None:
            if pending:
                self.manager.apply_field_values(layer_id, dict(pending))
                pending.clear()
            if on_progress is not None:
                on_progress(processed, total)

        for k, record in enumerate(targets):
            if self._should_stop(layer_id):
                flush()
                return processed, True
            label = await self.geocoder.lookup(record.lat, record.lng)
            if self._should_stop(layer_id):
                flush()
                return processed, True

            pending[record.record_id] = {self.field: label}
            processed += 1
            if k % self.batch_size == 0 or k == total - 1:
                flush()
            if k < total - 1:
                await self._sleep(self.delay)

        return processed, False
