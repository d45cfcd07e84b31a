"""Google Places client for address autocomplete and place lookup.

Every failure (missing key, transport error, non-OK status) degrades to an
empty result so address entry keeps working without suggestions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from app.core.config import get_settings
from app.schemas.service import Coordinate

logger = logging.getLogger(__name__)

PLACES_BASE_URL = "https://maps.googleapis.com/maps/api/place"


@dataclass(frozen=True)
class PlaceSuggestion:
    place_id: str
    description: str
    main_text: Optional[str] = None
    secondary_text: Optional[str] = None


@dataclass(frozen=True)
class PlaceDetails:
    place_id: str
    formatted_address: str
    coordinate: Coordinate


class PlacesClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self._api_key = settings.google_places_api_key if api_key is None else api_key
        self._timeout = timeout_seconds or settings.places_timeout_seconds
        self._transport = transport

    async def _get(self, path: str, params: dict[str, Any]) -> Optional[dict[str, Any]]:
        if not self._api_key:
            logger.warning("Places lookup skipped: GOOGLE_PLACES_API_KEY is not set")
            return None
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(f"{PLACES_BASE_URL}/{path}", params={**params, "key": self._api_key})
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Places %s request failed: %s", path, exc)
            return None

        status = data.get("status")
        if status != "OK":
            # ZERO_RESULTS is a normal empty answer, anything else is worth a log line.
            if status != "ZERO_RESULTS":
                logger.warning("Places %s returned status=%s: %s", path, status, data.get("error_message"))
            return None
        return data

    async def autocomplete(self, query: str, *, session_token: Optional[str] = None) -> list[PlaceSuggestion]:
        query = (query or "").strip()
        if not query:
            return []
        params: dict[str, Any] = {"input": query, "components": "country:us"}
        if session_token:
            params["sessiontoken"] = session_token

        data = await self._get("autocomplete/json", params)
        if data is None:
            return []
        suggestions = []
        for prediction in data.get("predictions") or []:
            formatting = prediction.get("structured_formatting") or {}
            suggestions.append(
                PlaceSuggestion(
                    place_id=prediction.get("place_id", ""),
                    description=prediction.get("description", ""),
                    main_text=formatting.get("main_text"),
                    secondary_text=formatting.get("secondary_text"),
                )
            )
        return suggestions

    async def details(self, place_id: str, *, session_token: Optional[str] = None) -> Optional[PlaceDetails]:
        if not place_id:
            return None
        params: dict[str, Any] = {"place_id": place_id, "fields": "formatted_address,geometry/location"}
        if session_token:
            params["sessiontoken"] = session_token

        data = await self._get("details/json", params)
        if data is None:
            return None
        result = data.get("result") or {}
        location = (result.get("geometry") or {}).get("location") or {}
        try:
            coordinate = Coordinate(latitude=location["lat"], longitude=location["lng"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Places details for %s had no usable location", place_id)
            return None
        return PlaceDetails(
            place_id=place_id,
            formatted_address=result.get("formatted_address", ""),
            coordinate=coordinate,
        )


def get_places_client() -> PlacesClient:
    return PlacesClient()
