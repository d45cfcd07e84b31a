"""Address autocomplete and service-area checks."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.core.auth import CurrentUser, get_current_user
from app.schemas.places import PlaceSuggestionOut, ServiceAreaCheckIn, ServiceAreaCheckOut
from app.services.geofence import OUT_OF_AREA_MESSAGE, OUT_OF_AREA_TITLE, contains_street_number, find_service_zone
from app.services.places import PlacesClient, get_places_client

logger = logging.getLogger(__name__)

router = APIRouter()

ADDRESS_NOT_FOUND_TITLE = "Address not found"
ADDRESS_NOT_FOUND_MESSAGE = "We couldn't look up that address. Please pick another suggestion."


@router.get("/places/autocomplete", response_model=list[PlaceSuggestionOut])
async def autocomplete(
    q: str = Query("", max_length=200),
    session_token: Optional[str] = Query(None, max_length=128),
    _: CurrentUser = Depends(get_current_user),
    places: PlacesClient = Depends(get_places_client),
):
    suggestions = await places.autocomplete(q, session_token=session_token)
    return [PlaceSuggestionOut(**vars(s)) for s in suggestions]


@router.post("/service-area/check", response_model=ServiceAreaCheckOut)
async def check_service_area(
    payload: ServiceAreaCheckIn,
    _: CurrentUser = Depends(get_current_user),
    places: PlacesClient = Depends(get_places_client),
):
    coordinate = payload.coordinate
    formatted_address = None
    if coordinate is None:
        details = await places.details(payload.place_id.strip(), session_token=payload.session_token)
        if details is None:
            return ServiceAreaCheckOut(
                within_service_area=False,
                title=ADDRESS_NOT_FOUND_TITLE,
                message=ADDRESS_NOT_FOUND_MESSAGE,
            )
        coordinate = details.coordinate
        formatted_address = details.formatted_address

    zone = find_service_zone(coordinate)
    out = ServiceAreaCheckOut(
        within_service_area=zone is not None,
        zone=zone,
        formatted_address=formatted_address,
        coordinate=coordinate,
        has_street_number=contains_street_number(formatted_address) if formatted_address else None,
    )
    if zone is None:
        out.title = OUT_OF_AREA_TITLE
        out.message = OUT_OF_AREA_MESSAGE
    return out
