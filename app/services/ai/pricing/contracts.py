"""Request/response models for the cleaning price estimate."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from app.schemas.service import Coordinate

EstimateStatus = Literal["ok", "needs_clarification", "safety_concern", "unavailable"]

UNAVAILABLE_MESSAGE = "Unable to estimate price right now."
DISABLED_MESSAGE = "Price estimate unavailable."
SAFETY_NOTE = "This request may not be suitable for our platform."


class EstimateLocation(BaseModel):
    description: str = Field(min_length=1, max_length=500)
    coordinate: Coordinate


class PriceEstimateRequest(BaseModel):
    description: str = Field(min_length=1, max_length=4000)
    start: Optional[EstimateLocation] = None
    end: Optional[EstimateLocation] = None
    # Honoured only when ENABLE_AI_OVERRIDES is on.
    provider: Optional[str] = None
    model: Optional[str] = None


class PriceEstimate(BaseModel):
    status: EstimateStatus
    price: Optional[int] = None
    list_price: Optional[float] = None
    discount_pct: Optional[int] = None
    message: Optional[str] = None
    clarification_prompt: Optional[str] = None
    safety_message: Optional[str] = None
    has_property_size: bool = False
    has_cleaning_type: bool = False
    provider: Optional[str] = None
    model: Optional[str] = None
