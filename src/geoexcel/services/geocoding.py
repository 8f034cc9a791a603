"""Nominatim (OpenStreetMap) lookups — reverse geocoding and place search.

Both lookups degrade instead of raising: reverse geocoding returns a
sentinel label and place search returns an empty list, so a single bad
response never aborts the caller's loop. Nominatim requires a User-Agent
header and allows 1 request/second.
"""

from __future__ import annotations

from typing import Optional

import httpx
from loguru import logger

from geoexcel.config import settings
from geoexcel.geo import BoundingBox, GeoPoint, distance_meters
from geoexcel.layers.layer import Record, new_record_id

# Address components tried in order for a locality label.
_LOCALITY_KEYS = ("suburb", "neighbourhood", "city_district", "city", "town")


class ReverseGeocoder:
    """Coordinates -> locality name, with a spatial result cache.

    A cached label is reused for any point within ``cache_radius_m`` of a
    previously resolved point.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        cache_radius_m: float = settings.geocode_cache_radius_m,
    ) -> None:
        self._client = client
        self.cache_radius_m = cache_radius_m
        self._cache: list[tuple[GeoPoint, str]] = []
        self.requests_made = 0

    def cached(self, point: GeoPoint) -> Optional[str]:
        for anchor, label in self._cache:
            if distance_meters(anchor, point) <= self.cache_radius_m:
                return label
        return None

    async def lookup(self, lat: float, lng: float) -> str:
        """Locality name for a point, or the unknown/error sentinel."""
        point = GeoPoint(lat=lat, lng=lng)
        hit = self.cached(point)
        if hit is not None:
            return hit

        try:
            data = await self._fetch(lat, lng)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Reverse geocode failed for {lat:.5f},{lng:.5f}: {e}")
            return settings.error_label

        address = data.get("address") if isinstance(data, dict) else None
        address = address if isinstance(address, dict) else {}
        label = next(
            (address[k] for k in _LOCALITY_KEYS if address.get(k)),
            settings.unknown_label,
        )
        self._cache.append((point, label))
        logger.debug(f"Reverse geocode {lat:.5f},{lng:.5f} -> {label}")
        return label

    async def _fetch(self, lat: float, lng: float):
        params = {
            "format": "json",
            "lat": lat,
            "lon": lng,
            "zoom": 14,
            "addressdetails": 1,
        }
        self.requests_made += 1
        return await _get_json(self._client, settings.nominatim_reverse_url, params)


class PlaceSearch:
    """Activity keyword + area name or bounding box -> candidate Records."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        limit: int = settings.search_limit,
    ) -> None:
        self._client = client
        self.limit = limit

    async def search(
        self,
        activity: str,
        area_name: str = "",
        bounds: Optional[BoundingBox] = None,
    ) -> list[Record]:
        """Search for places. Returns [] on any failure.

        With ``bounds`` the query is restricted to the box; otherwise the
        area name is appended to the keyword ("<activity> in <area>").
        """
        activity = activity.strip()
        if not activity:
            return []

        params: dict = {
            "format": "json",
            "addressdetails": 1,
            "limit": self.limit,
        }
        if bounds is not None:
            params["q"] = activity
            params["viewbox"] = bounds.viewbox()
            params["bounded"] = 1
        else:
            params["q"] = f"{activity} in {area_name}" if area_name else activity

        try:
            results = await self._fetch(params)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Place search failed for '{params['q']}': {e}")
            return []
        if not isinstance(results, list):
            return []

        records: list[Record] = []
        for item in results[: self.limit]:
            try:
                lat = float(item["lat"])
                lng = float(item["lon"])
            except (KeyError, TypeError, ValueError):
                continue
            records.append(Record(
                record_id=new_record_id("place"),
                lat=lat,
                lng=lng,
                properties={
                    "name": item.get("name") or activity,
                    "type": item.get("type") or "",
                    "area": area_name or "selected area",
                    "address": item.get("display_name") or "",
                },
            ))
        logger.info(f"Place search '{params['q']}' returned {len(records)} results")
        return records

    async def _fetch(self, params: dict):
        return await _get_json(self._client, settings.nominatim_search_url, params)


async def _get_json(client: Optional[httpx.AsyncClient], url: str, params: dict):
    """GET ``url`` and decode JSON, using ``client`` or a short-lived one."""
    if client is None:
        async with httpx.AsyncClient() as own:
            return await _get_json(own, url, params)
    resp = await client.get(
        url,
        params=params,
        headers={"User-Agent": settings.user_agent},
        timeout=settings.request_timeout,
    )
    resp.raise_for_status()
    return resp.json()
