from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field


class ServiceStatus(str, Enum):
    FINDING_PROS = "finding_pros"
    SELECT_SERVICE_PROVIDER = "select_service_provider"
    CONFIRMED = "confirmed"
    HELPR_OTW = "helpr_otw"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, raw: Union[str, "ServiceStatus", None]) -> "ServiceStatus":
        """Case-insensitive lookup; raises ``ValueError`` for unknown values."""
        if isinstance(raw, cls):
            return raw
        return cls(str(raw or "").strip().lower())

    @classmethod
    def coerce(cls, raw: Union[str, "ServiceStatus", None]) -> Optional["ServiceStatus"]:
        try:
            return cls.parse(raw)
        except ValueError:
            return None

    @property
    def is_open(self) -> bool:
        return _IS_OPEN[self]

    @property
    def requires_provider(self) -> bool:
        return _REQUIRES_PROVIDER[self]

    @property
    def next_for_provider(self) -> Optional["ServiceStatus"]:
        return _NEXT_FOR_PROVIDER[self]

    def badge_label(self, fill_request_count: int = 0) -> str:
        # Bids can land before the status flip is observed, so open jobs key off the count.
        if self.is_open and fill_request_count > 0:
            return "Select a Pro"
        return _BADGE_LABELS[self]

    @property
    def provider_action_label(self) -> Optional[str]:
        return _PROVIDER_ACTION_LABELS[self]


_IS_OPEN = {
    ServiceStatus.FINDING_PROS: True,
    ServiceStatus.SELECT_SERVICE_PROVIDER: True,
    ServiceStatus.CONFIRMED: False,
    ServiceStatus.HELPR_OTW: False,
    ServiceStatus.IN_PROGRESS: False,
    ServiceStatus.COMPLETED: False,
}

_REQUIRES_PROVIDER = {status: not is_open for status, is_open in _IS_OPEN.items()}

_NEXT_FOR_PROVIDER = {
    ServiceStatus.FINDING_PROS: None,
    ServiceStatus.SELECT_SERVICE_PROVIDER: None,
    ServiceStatus.CONFIRMED: ServiceStatus.HELPR_OTW,
    ServiceStatus.HELPR_OTW: ServiceStatus.IN_PROGRESS,
    ServiceStatus.IN_PROGRESS: ServiceStatus.COMPLETED,
    ServiceStatus.COMPLETED: None,
}

_BADGE_LABELS = {
    ServiceStatus.FINDING_PROS: "Finding Pros",
    ServiceStatus.SELECT_SERVICE_PROVIDER: "Finding Pros",
    ServiceStatus.CONFIRMED: "Job Confirmed",
    ServiceStatus.HELPR_OTW: "On the Way",
    ServiceStatus.IN_PROGRESS: "In Progress",
    ServiceStatus.COMPLETED: "Completed",
}

_PROVIDER_ACTION_LABELS = {
    ServiceStatus.FINDING_PROS: None,
    ServiceStatus.SELECT_SERVICE_PROVIDER: None,
    ServiceStatus.CONFIRMED: "I'm on the way",
    ServiceStatus.HELPR_OTW: "Start Service",
    ServiceStatus.IN_PROGRESS: "Complete Service",
    ServiceStatus.COMPLETED: "Service Completed",
}

# Edges the workflow itself writes. Observers tolerate anything.
ALLOWED_TRANSITIONS = {
    ServiceStatus.FINDING_PROS: {ServiceStatus.SELECT_SERVICE_PROVIDER, ServiceStatus.CONFIRMED},
    ServiceStatus.SELECT_SERVICE_PROVIDER: {ServiceStatus.CONFIRMED, ServiceStatus.FINDING_PROS},
    ServiceStatus.CONFIRMED: {ServiceStatus.HELPR_OTW, ServiceStatus.COMPLETED, ServiceStatus.FINDING_PROS},
    ServiceStatus.HELPR_OTW: {ServiceStatus.IN_PROGRESS},
    ServiceStatus.IN_PROGRESS: {ServiceStatus.COMPLETED},
    ServiceStatus.COMPLETED: set(),
}

OPEN_STATUSES = tuple(status for status in ServiceStatus if status.is_open)


def assignment_is_consistent(status: Union[str, ServiceStatus, None], service_provider_id: Optional[str]) -> bool:
    """A provider is assigned exactly when the status is past the bidding stage."""
    parsed = ServiceStatus.coerce(status)
    if parsed is None:
        return False
    return parsed.requires_provider == bool(service_provider_id)


class SchedulingType(str, Enum):
    ASAP = "asap"
    SCHEDULED = "scheduled"


class AutofillType(str, Enum):
    AUTOFILL = "AutoFill"
    CUSTOM = "Custom"

    @classmethod
    def is_autofill(cls, raw: Optional[str]) -> bool:
        return str(raw or "").strip().lower() == cls.AUTOFILL.value.lower()


class Coordinate(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class ServiceAnswers(BaseModel):
    cleaning_type: Optional[Literal["basic", "deep"]] = None
    property_size: Optional[str] = None
    supplies_needed: Optional[str] = None
    special_requests: Optional[str] = None


class ServiceCreate(BaseModel):
    service_id: Optional[str] = Field(default=None, max_length=64)
    service_type: str = Field(default="cleaning", min_length=1, max_length=64)
    description: str = ""
    location: str = ""
    start_location: Optional[str] = None
    end_location: Optional[str] = None
    coordinate: Optional[Coordinate] = None
    price: Optional[float] = Field(default=None, ge=0)
    payment_method_type: Literal["Personal", "Business"] = "Personal"
    autofill_type: AutofillType = AutofillType.AUTOFILL
    scheduling_type: Optional[SchedulingType] = None
    scheduled_date_time: Optional[datetime] = None
    answers: Optional[ServiceAnswers] = None


class ServiceUpdate(BaseModel):
    location: Optional[str] = None
    coordinate: Optional[Coordinate] = None
    price: Optional[float] = Field(default=None, ge=0)
    payment_method_type: Optional[Literal["Personal", "Business"]] = None
    autofill_type: Optional[AutofillType] = None
    description: Optional[str] = None


class ScheduleRequest(BaseModel):
    scheduling_type: SchedulingType
    scheduled_date_time: Optional[datetime] = None


class ServiceOut(BaseModel):
    service_id: str
    customer_id: str
    service_type: str
    status: str
    status_label: str
    scheduling_type: Optional[str] = None
    scheduled_date_time: Optional[datetime] = None
    date_of_creation: Optional[datetime] = None
    location: Optional[str] = None
    start_location: Optional[str] = None
    end_location: Optional[str] = None
    price: Optional[float] = None
    payment_method_type: Optional[str] = None
    autofill_type: Optional[str] = None
    service_provider_id: Optional[str] = None
    description: Optional[str] = None
    fill_request_count: int = 0


class BidCreate(BaseModel):
    # Clients send the amount as typed ("$40", "35.5") or as a number.
    bid: Union[float, str]
    proposed_date_time: Optional[datetime] = None


class BidOut(BaseModel):
    service_id: str
    service_provider_id: str
    bid: float
    proposed_date_time: Optional[datetime] = None
    provider_name: Optional[str] = None
    profile_picture_url: Optional[str] = None
    rating: Optional[float] = None
    jobs_completed: Optional[int] = None


class BidOutcomeOut(BaseModel):
    outcome: Literal["submitted", "claimed", "filled_by_other"]
    message: str
    bid: Optional[BidOut] = None
    service: ServiceOut


class OpenServiceOut(ServiceOut):
    my_bid: Optional[BidOut] = None
    next_action_label: Optional[str] = None


class ConfirmRequest(BaseModel):
    service_provider_id: str = Field(min_length=1)
    bid: Optional[float] = Field(default=None, gt=0)


class RatingRequest(BaseModel):
    rating: int
    comment: Optional[str] = Field(default=None, max_length=1000)


class RatingOut(BaseModel):
    service_id: str
    rating: Optional[int] = None
    comment: Optional[str] = None


class ProviderProfileIn(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class ProviderProfileOut(BaseModel):
    service_provider_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    jobs_completed: int = 0
    created: bool = False


class StatusNoticeOut(BaseModel):
    kind: Literal["select_pro", "service_completed"]
    service_id: str
    title: str
    message: str


class StatusFeedOut(BaseModel):
    sequence: int
    services: List[ServiceOut]
    notices: List[StatusNoticeOut]
    poll_interval_seconds: float
