from typing import Optional

from pydantic import BaseModel, model_validator

from app.schemas.service import Coordinate


class PlaceSuggestionOut(BaseModel):
    place_id: str
    description: str
    main_text: Optional[str] = None
    secondary_text: Optional[str] = None


class ServiceAreaCheckIn(BaseModel):
    coordinate: Optional[Coordinate] = None
    place_id: Optional[str] = None
    session_token: Optional[str] = None

    @model_validator(mode="after")
    def _needs_coordinate_or_place(self):
        if self.coordinate is None and not (self.place_id or "").strip():
            raise ValueError("Provide a coordinate or a place_id")
        return self


class ServiceAreaCheckOut(BaseModel):
    within_service_area: bool
    zone: Optional[str] = None
    formatted_address: Optional[str] = None
    coordinate: Optional[Coordinate] = None
    has_street_number: Optional[bool] = None
    title: Optional[str] = None
    message: Optional[str] = None
