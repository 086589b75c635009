"""
Tourkit — Address Resolver
============================

What:  Turns free-text stop addresses into coordinates using a Nominatim-
       style search endpoint.
Why:   The planner does better with coordinates, but the public geocoder
       allows roughly one request per second and fails on odd addresses.
How:   Strictly sequential lookups with a fixed pause between requests. A
       lookup that errors, returns nothing, or answers non-2xx is logged
       and skipped; the batch always completes.

Output contract:
    resolve() returns only the stops that were found, in input order. A stop
    missing from the output is not an error; callers keep using its raw
    address text.
"""

import asyncio
import logging
import re
import uuid
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

import httpx

from tourkit.config import GeocoderConfig
from tourkit.schemas.routing import Coordinate, ResolvedStop, Stop
from tourkit.services.http_client import build_async_client

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]

_WHITESPACE = re.compile(r"\s+")
_COMMA = re.compile(r"\s*,\s*")


def normalize_query(address: Optional[str]) -> str:
    """Collapse whitespace and normalise comma spacing: 'a ,b' → 'a, b'."""
    if not isinstance(address, str):
        return ""
    collapsed = _WHITESPACE.sub(" ", address)
    return _COMMA.sub(", ", collapsed).strip()


def attach_coordinates(stops: Iterable[Stop], resolved: Iterable[ResolvedStop]) -> List[Stop]:
    """Return copies of `stops` with coordinates filled in where resolved."""
    by_id: Dict[str, Coordinate] = {r.id: r.coordinate for r in resolved}
    return [
        stop.model_copy(update={"coordinate": by_id[stop.id]}) if stop.id in by_id else stop
        for stop in stops
    ]


class AddressResolver:
    """
    Rate-limited geocoder client.

    The inter-request delay is a throttle for the provider's usage policy,
    not a lock: two resolvers in different processes do not coordinate.
    """

    def __init__(
        self,
        config: Optional[GeocoderConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.config = config or GeocoderConfig()
        self._owns_client = client is None
        self._client = client or build_async_client(
            timeout_seconds=self.config.timeout_seconds,
            headers={
                # Public Nominatim rejects vague user agents
                "User-Agent": self.config.user_agent,
                "Accept": "application/json",
            },
        )
        self._sleep = sleep

    async def resolve(self, stops: Iterable[Stop]) -> List[ResolvedStop]:
        """Geocode each stop in order; skip the ones that fail."""
        stops = list(stops)
        batch_id = uuid.uuid4().hex[:8]
        results: List[ResolvedStop] = []
        requests_made = 0

        for position, stop in enumerate(stops, start=1):
            query = normalize_query(stop.raw_address)
            if not query:
                logger.warning("[%s] Skipping stop %s with empty address", batch_id, stop.id)
                continue

            if requests_made > 0:
                await self._sleep(self.config.request_delay_ms / 1000)
            requests_made += 1

            logger.info(
                "[%s] Geocoding [%d/%d] id=%s q=%r",
                batch_id,
                position,
                len(stops),
                stop.id,
                query,
            )
            coordinate = await self._lookup(batch_id, stop.id, query)
            if coordinate is not None:
                results.append(ResolvedStop(id=stop.id, coordinate=coordinate))

        logger.info("[%s] Geocode completed: %d/%d resolved", batch_id, len(results), len(stops))
        return results

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _lookup(self, batch_id: str, stop_id: str, query: str) -> Optional[Coordinate]:
        params = {"format": "json", "q": query, "limit": "1"}
        if self.config.country_codes:
            params["countrycodes"] = self.config.country_codes

        try:
            response = await self._client.get(self.config.search_url, params=params)
        except httpx.HTTPError as e:
            logger.error("[%s] Geocoder request failed for id=%s: %s", batch_id, stop_id, e)
            return None

        if not response.is_success:
            logger.error(
                "[%s] Geocoder error for id=%s status=%d body=%s",
                batch_id,
                stop_id,
                response.status_code,
                response.text[:300],
            )
            return None

        try:
            data = response.json()
        except ValueError:
            logger.error(
                "[%s] Unparsable geocoder body for id=%s: %s",
                batch_id,
                stop_id,
                response.text[:300],
            )
            return None

        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            logger.warning("[%s] No geocode result for id=%s q=%r", batch_id, stop_id, query)
            return None

        first = data[0]
        try:
            return Coordinate(lat=float(first["lat"]), lng=float(first["lon"]))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("[%s] Bad coordinates for id=%s: %s", batch_id, stop_id, e)
            return None
