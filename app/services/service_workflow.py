"""Job and bid workflow: creation, bidding, AutoFill claims and confirmation.

Every public operation commits its own unit of work. Status moves go through
``transition_service.apply_transition`` so the row only changes when it is
still in the state the caller observed.
"""

import logging
import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Union

from fastapi import HTTPException
from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.service import Customer, CustomerRating, Service, ServiceFillRequest, ServiceProvider
from app.schemas.service import (
    OPEN_STATUSES,
    AutofillType,
    BidOut,
    Coordinate,
    ScheduleRequest,
    SchedulingType,
    ServiceAnswers,
    ServiceCreate,
    ServiceOut,
    ServiceStatus,
    ServiceUpdate,
    assignment_is_consistent,
)
from app.services.geofence import OUT_OF_AREA_MESSAGE, contains_street_number, is_within_service_area
from app.services.transition_service import apply_transition, create_audit_log
from app.utils.alerting import alert_tracker

logger = logging.getLogger(__name__)

STORE_ERROR_MESSAGE = "We couldn't save your changes. Please try again."

MISSING_DESCRIPTION_MESSAGE = "Please describe what you need help with before scheduling your service."
MISSING_LOCATION_MESSAGE = "Please choose a service location."
MISSING_PRICE_MESSAGE = "Request a quick price estimate before scheduling your service."
MISSING_STREET_NUMBER_MESSAGE = "Update your location to include the street number before scheduling."
MISSING_SCHEDULE_MESSAGE = "Choose a date and time for your scheduled service."
INVALID_BID_MESSAGE = "Enter a valid dollar amount."
MISSING_ARRIVAL_MESSAGE = "Choose when you can arrive for this ASAP job."
JOB_NOT_OPEN_MESSAGE = "This job is no longer accepting requests."
JOB_FILLED_MESSAGE = "This job was already filled by someone else."

OUTCOME_SUBMITTED = "submitted"
OUTCOME_CLAIMED = "claimed"
OUTCOME_FILLED_BY_OTHER = "filled_by_other"

_OUTCOME_MESSAGES = {
    OUTCOME_SUBMITTED: "Your request was sent to the customer.",
    OUTCOME_CLAIMED: "You got the job!",
    OUTCOME_FILLED_BY_OTHER: JOB_FILLED_MESSAGE,
}

_CLEANING_TYPE_LABELS = {
    "basic": "Basic cleaning",
    "deep": "Deep cleaning",
}

# Once the provider is on the way the customer can no longer withdraw the job.
_CUSTOMER_CANCELLABLE = {
    ServiceStatus.FINDING_PROS,
    ServiceStatus.SELECT_SERVICE_PROVIDER,
    ServiceStatus.CONFIRMED,
}


@dataclass
class BidOutcome:
    outcome: str
    service: Service
    bid: Optional[BidOut] = None

    @property
    def message(self) -> str:
        return _OUTCOME_MESSAGES[self.outcome]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def unit_of_work(db: Session, failure_message: str = STORE_ERROR_MESSAGE):
    """Commit on success; store errors become a 503, anything else rolls back and propagates."""
    try:
        yield
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Store error: %s", failure_message)
        raise HTTPException(503, failure_message) from exc
    except Exception:
        db.rollback()
        raise


def sanitize_currency_value(raw: Union[str, float, int, Decimal, None]) -> Optional[Decimal]:
    """Normalise a typed amount ("$40", "35.5", 12) to two decimals; None when nothing numeric is left."""
    if raw is None:
        return None
    text = str(raw)
    cleaned = re.sub(r"[^0-9.]", "", text)
    if "." in cleaned:
        whole, _, fraction = cleaned.partition(".")
        cleaned = f"{whole}.{fraction.replace('.', '')}"
    if cleaned in {"", "."}:
        return None
    try:
        return Decimal(cleaned).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


def _sanitize_phone(phone: Optional[str]) -> Optional[str]:
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    return digits or None


def compose_description(description: str, answers: Optional[ServiceAnswers]) -> str:
    segments = [description.strip()]
    if answers is not None:
        if answers.cleaning_type:
            segments.append(f"Type: {_CLEANING_TYPE_LABELS[answers.cleaning_type]}")
        if answers.property_size:
            segments.append(f"Property size: {answers.property_size.strip()}")
        if answers.supplies_needed:
            segments.append(f"Supplies to bring: {answers.supplies_needed.strip()}")
        if answers.special_requests:
            segments.append(f"Special requests: {answers.special_requests.strip()}")
    return ". ".join(segment.rstrip(". ") for segment in segments if segment.strip(". "))


def get_service_or_404(db: Session, service_id: str) -> Service:
    service = db.get(Service, service_id)
    if service is None:
        raise HTTPException(404, "Service not found")
    return service


def get_owned_service(db: Session, service_id: str, customer_id: Optional[str]) -> Service:
    """Load a job for its customer. ``customer_id=None`` skips the ownership check (admin)."""
    service = get_service_or_404(db, service_id)
    if customer_id is not None and service.customer_id != customer_id:
        raise HTTPException(403, "This job belongs to another customer.")
    return service


def _status_of(service: Service) -> ServiceStatus:
    status = ServiceStatus.coerce(service.status)
    if status is None:
        raise HTTPException(409, f"Unknown job status: {service.status}")
    return status


def _require_open(service: Service) -> ServiceStatus:
    status = _status_of(service)
    if not status.is_open or service.service_provider_id:
        raise HTTPException(409, JOB_NOT_OPEN_MESSAGE)
    return status


def _validate_location(location: Optional[str], coordinate: Optional[Coordinate]) -> None:
    if not (location or "").strip():
        raise HTTPException(400, MISSING_LOCATION_MESSAGE)
    if not is_within_service_area(coordinate):
        raise HTTPException(400, OUT_OF_AREA_MESSAGE)


def _provider_name(provider: Optional[ServiceProvider]) -> Optional[str]:
    if provider is None:
        return None
    name = " ".join(part for part in (provider.first_name, provider.last_name) if part)
    return name or None


def _bid_out(bid: ServiceFillRequest, provider: Optional[ServiceProvider]) -> BidOut:
    return BidOut(
        service_id=bid.service_id,
        service_provider_id=bid.service_provider_id,
        bid=float(bid.bid),
        proposed_date_time=bid.proposed_date_time,
        provider_name=_provider_name(provider),
        profile_picture_url=provider.profile_picture_url if provider else None,
        rating=float(provider.rating) if provider is not None and provider.rating is not None else None,
        jobs_completed=provider.jobs_completed if provider else None,
    )


def serialize_service(service: Service, fill_request_count: int = 0) -> ServiceOut:
    status = ServiceStatus.coerce(service.status)
    return ServiceOut(
        service_id=service.service_id,
        customer_id=service.customer_id,
        service_type=service.service_type,
        status=status.value if status else str(service.status),
        status_label=status.badge_label(fill_request_count) if status else str(service.status),
        scheduling_type=service.scheduling_type,
        scheduled_date_time=service.scheduled_date_time,
        date_of_creation=service.date_of_creation,
        location=service.location,
        start_location=service.start_location,
        end_location=service.end_location,
        price=float(service.price) if service.price is not None else None,
        payment_method_type=service.payment_method_type,
        autofill_type=service.autofill_type,
        service_provider_id=service.service_provider_id,
        description=service.description,
        fill_request_count=fill_request_count,
    )


def fill_request_count(db: Session, service_id: str) -> int:
    return db.execute(
        select(func.count(ServiceFillRequest.id)).where(ServiceFillRequest.service_id == service_id)
    ).scalar_one()


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


def ensure_customer_profile(
    db: Session,
    customer_id: str,
    *,
    email: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
) -> tuple[Customer, bool]:
    customer = db.get(Customer, customer_id)
    if customer is not None:
        return customer, False
    customer = Customer(
        customer_id=customer_id,
        email=email,
        first_name=first_name,
        last_name=last_name,
        phone=_sanitize_phone(phone),
    )
    db.add(customer)
    db.flush()
    return customer, True


def ensure_provider_profile(
    db: Session,
    provider_id: str,
    *,
    email: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
) -> tuple[ServiceProvider, bool]:
    """Insert the provider row keyed by the auth user id if it is missing."""
    provider = db.get(ServiceProvider, provider_id)
    if provider is not None:
        return provider, False
    provider = ServiceProvider(
        service_provider_id=provider_id,
        email=email,
        first_name=first_name,
        last_name=last_name,
        phone=_sanitize_phone(phone),
        jobs_completed=0,
    )
    db.add(provider)
    db.flush()
    logger.info("Created provider profile for %s", provider_id)
    return provider, True


# ---------------------------------------------------------------------------
# Customer side
# ---------------------------------------------------------------------------


def create_service(db: Session, customer_id: str, payload: ServiceCreate, **profile: Any) -> Service:
    if not payload.description.strip():
        raise HTTPException(400, MISSING_DESCRIPTION_MESSAGE)
    _validate_location(payload.location, payload.coordinate)
    if payload.price is None:
        raise HTTPException(400, MISSING_PRICE_MESSAGE)
    if not contains_street_number(payload.location):
        raise HTTPException(400, MISSING_STREET_NUMBER_MESSAGE)

    scheduled_at = payload.scheduled_date_time
    if payload.scheduling_type == SchedulingType.ASAP:
        scheduled_at = _now_utc()
    elif payload.scheduling_type == SchedulingType.SCHEDULED and scheduled_at is None:
        raise HTTPException(400, MISSING_SCHEDULE_MESSAGE)

    with unit_of_work(db, "We couldn't create your job. Please try again."):
        if payload.service_id:
            existing = db.get(Service, payload.service_id)
            if existing is not None:
                # Double-submitted create from the same client.
                if existing.customer_id == customer_id:
                    return existing
                raise HTTPException(409, "Service id already in use.")

        ensure_customer_profile(db, customer_id, **profile)
        service = Service(
            service_id=payload.service_id or str(uuid.uuid4()),
            customer_id=customer_id,
            service_type=payload.service_type,
            status=ServiceStatus.FINDING_PROS.value,
            scheduling_type=payload.scheduling_type.value if payload.scheduling_type else None,
            scheduled_date_time=scheduled_at,
            location=payload.location.strip(),
            start_location=payload.start_location,
            end_location=payload.end_location,
            price=sanitize_currency_value(payload.price),
            payment_method_type=payload.payment_method_type,
            autofill_type=payload.autofill_type.value,
            service_provider_id=None,
            description=compose_description(payload.description, payload.answers),
        )
        db.add(service)
        db.flush()
        create_audit_log(
            db,
            entity_type="service",
            entity_id=service.service_id,
            action="SERVICE_CREATED",
            old_value=None,
            new_value={
                "status": service.status,
                "autofill_type": service.autofill_type,
                "location": service.location,
            },
            actor_type="CUSTOMER",
            actor_id=customer_id,
        )
    logger.info("Service %s created by customer %s", service.service_id, customer_id)
    return service


def edit_service(db: Session, service_id: str, customer_id: Optional[str], changes: ServiceUpdate) -> Service:
    service = get_owned_service(db, service_id, customer_id)
    _require_open(service)

    fields = changes.model_dump(exclude_unset=True)
    if "location" in fields or "coordinate" in fields:
        location = fields.get("location", service.location)
        _validate_location(location, changes.coordinate)
        if not contains_street_number(location):
            raise HTTPException(400, MISSING_STREET_NUMBER_MESSAGE)
    if "description" in fields and not (changes.description or "").strip():
        raise HTTPException(400, MISSING_DESCRIPTION_MESSAGE)
    price = sanitize_currency_value(changes.price)
    if "price" in fields and price is None:
        raise HTTPException(400, MISSING_PRICE_MESSAGE)

    with unit_of_work(db):
        old = {key: getattr(service, key) for key in fields if key != "coordinate"}
        if changes.location is not None:
            service.location = changes.location.strip()
        if "price" in fields:
            service.price = price
        if changes.payment_method_type is not None:
            service.payment_method_type = changes.payment_method_type
        if changes.autofill_type is not None:
            service.autofill_type = changes.autofill_type.value
        if changes.description is not None:
            service.description = changes.description.strip()
        create_audit_log(
            db,
            entity_type="service",
            entity_id=service.service_id,
            action="SERVICE_UPDATED",
            old_value={key: str(value) if value is not None else None for key, value in old.items()},
            new_value=changes.model_dump(mode="json", exclude_unset=True, exclude={"coordinate"}),
            actor_type="CUSTOMER",
            actor_id=customer_id,
        )
    return service


def schedule_service(db: Session, service_id: str, customer_id: Optional[str], request: ScheduleRequest) -> Service:
    service = get_owned_service(db, service_id, customer_id)
    _require_open(service)

    if request.scheduling_type == SchedulingType.ASAP:
        scheduled_at = _now_utc()
    elif request.scheduled_date_time is None:
        raise HTTPException(400, MISSING_SCHEDULE_MESSAGE)
    else:
        scheduled_at = request.scheduled_date_time

    with unit_of_work(db):
        service.scheduling_type = request.scheduling_type.value
        service.scheduled_date_time = scheduled_at
    return service


def cancel_service(db: Session, service_id: str, customer_id: Optional[str]) -> None:
    service = get_owned_service(db, service_id, customer_id)
    status = _status_of(service)
    if status not in _CUSTOMER_CANCELLABLE:
        raise HTTPException(409, "This job has already started and can no longer be cancelled.")

    with unit_of_work(db, "We couldn't cancel your job. Please try again."):
        db.execute(delete(ServiceFillRequest).where(ServiceFillRequest.service_id == service_id))
        create_audit_log(
            db,
            entity_type="service",
            entity_id=service_id,
            action="SERVICE_CANCELLED",
            old_value={"status": status.value, "service_provider_id": service.service_provider_id},
            new_value=None,
            actor_type="CUSTOMER",
            actor_id=customer_id,
        )
        db.delete(service)


def list_bids(db: Session, service_id: str) -> list[BidOut]:
    rows = db.execute(
        select(ServiceFillRequest, ServiceProvider)
        .outerjoin(
            ServiceProvider,
            ServiceProvider.service_provider_id == ServiceFillRequest.service_provider_id,
        )
        .where(ServiceFillRequest.service_id == service_id)
        .order_by(ServiceFillRequest.bid.asc(), ServiceFillRequest.created_at.asc())
    ).all()
    return [_bid_out(bid, provider) for bid, provider in rows]


def list_customer_services(db: Session, customer_id: str) -> list[tuple[Service, int]]:
    counts = (
        select(ServiceFillRequest.service_id, func.count(ServiceFillRequest.id).label("fill_requests"))
        .group_by(ServiceFillRequest.service_id)
        .subquery()
    )
    rows = db.execute(
        select(Service, func.coalesce(counts.c.fill_requests, 0))
        .outerjoin(counts, counts.c.service_id == Service.service_id)
        .where(Service.customer_id == customer_id)
        .order_by(Service.date_of_creation.desc())
    ).all()
    return [(service, int(count)) for service, count in rows]


def confirm_provider(
    db: Session,
    service_id: str,
    provider_id: str,
    accepted_bid: Union[str, float, Decimal, None] = None,
    *,
    customer_id: Optional[str] = None,
) -> Service:
    """Assign *provider_id* at its bid price and clear the bid ledger.

    Repeating the call for the provider already assigned is a no-op. The bid
    purge runs after the assignment commits and never undoes it.
    """
    service = get_owned_service(db, service_id, customer_id)
    status = _status_of(service)
    if status.requires_provider:
        if service.service_provider_id == provider_id:
            return service
        raise HTTPException(409, "This job has already been filled.")

    bid = db.execute(
        select(ServiceFillRequest).where(
            ServiceFillRequest.service_id == service_id,
            ServiceFillRequest.service_provider_id == provider_id,
        )
    ).scalars().first()
    if bid is None:
        raise HTTPException(404, "Bid not found")
    if accepted_bid is not None and sanitize_currency_value(accepted_bid) != bid.bid:
        raise HTTPException(409, "This bid has changed. Refresh and try again.")

    values: dict[str, Any] = {"service_provider_id": provider_id, "price": bid.bid}
    if bid.proposed_date_time is not None:
        values["scheduled_date_time"] = bid.proposed_date_time

    with unit_of_work(db, "We couldn't confirm this provider. Please try again."):
        moved = apply_transition(
            db,
            service=service,
            new_status=ServiceStatus.CONFIRMED,
            expected=OPEN_STATUSES,
            values=values,
            require_unassigned=True,
            actor_type="CUSTOMER",
            actor_id=customer_id,
            action="PROVIDER_CONFIRMED",
        )
        if not moved:
            raise HTTPException(409, "This job has already been filled.")

    _purge_bids(db, service_id)
    logger.info("Service %s confirmed with provider %s", service_id, provider_id)
    return service


def _purge_bids(db: Session, service_id: str) -> None:
    try:
        db.execute(delete(ServiceFillRequest).where(ServiceFillRequest.service_id == service_id))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Bid purge failed for confirmed service %s", service_id)
        alert_tracker.record("BID_PURGE_FAILED", {"service_id": service_id})


# ---------------------------------------------------------------------------
# Provider side
# ---------------------------------------------------------------------------


def submit_bid(
    db: Session,
    service_id: str,
    provider_id: str,
    amount: Union[str, float, Decimal, None],
    proposed_date_time: Optional[datetime] = None,
    **profile: Any,
) -> BidOutcome:
    service = get_service_or_404(db, service_id)
    status = _require_open(service)

    bid_amount = sanitize_currency_value(amount)
    if bid_amount is None or bid_amount <= 0:
        raise HTTPException(400, INVALID_BID_MESSAGE)
    if (service.scheduling_type or "").lower() == SchedulingType.ASAP.value and proposed_date_time is None:
        raise HTTPException(400, MISSING_ARRIVAL_MESSAGE)

    autofill = AutofillType.is_autofill(service.autofill_type)

    with unit_of_work(db, "We couldn't send your request. Please try again."):
        provider, _ = ensure_provider_profile(db, provider_id, **profile)
        # One active bid per (job, provider): replace rather than stack.
        db.execute(
            delete(ServiceFillRequest).where(
                ServiceFillRequest.service_id == service_id,
                ServiceFillRequest.service_provider_id == provider_id,
            )
        )
        bid = ServiceFillRequest(
            service_id=service_id,
            service_provider_id=provider_id,
            bid=bid_amount,
            proposed_date_time=proposed_date_time,
        )
        db.add(bid)
        db.flush()
        bid_view = _bid_out(bid, provider)

        if not autofill:
            create_audit_log(
                db,
                entity_type="service",
                entity_id=service_id,
                action="BID_SUBMITTED",
                old_value=None,
                new_value={"bid": str(bid_amount), "service_provider_id": provider_id},
                actor_type="PROVIDER",
                actor_id=provider_id,
            )
            if status == ServiceStatus.FINDING_PROS:
                # Lands in the same commit as the bid; a concurrent first bid makes this a no-op.
                apply_transition(
                    db,
                    service=service,
                    new_status=ServiceStatus.SELECT_SERVICE_PROVIDER,
                    expected=(ServiceStatus.FINDING_PROS,),
                    actor_type="PROVIDER",
                    actor_id=provider_id,
                )
            return BidOutcome(OUTCOME_SUBMITTED, service, bid_view)

        values: dict[str, Any] = {"service_provider_id": provider_id, "price": bid_amount}
        if proposed_date_time is not None:
            values["scheduled_date_time"] = proposed_date_time
        claimed = apply_transition(
            db,
            service=service,
            new_status=ServiceStatus.CONFIRMED,
            expected=OPEN_STATUSES,
            values=values,
            require_unassigned=True,
            actor_type="PROVIDER",
            actor_id=provider_id,
            action="AUTOFILL_CLAIMED",
        )
        if not claimed:
            db.delete(bid)
            create_audit_log(
                db,
                entity_type="service",
                entity_id=service_id,
                action="AUTOFILL_LOST",
                old_value=None,
                new_value={"bid": str(bid_amount)},
                actor_type="PROVIDER",
                actor_id=provider_id,
                metadata={"service_id": service_id},
            )

    if not claimed:
        logger.info("AutoFill claim on %s lost by provider %s", service_id, provider_id)
        return BidOutcome(OUTCOME_FILLED_BY_OTHER, service)

    _purge_bids(db, service_id)
    logger.info("AutoFill claim on %s won by provider %s", service_id, provider_id)
    return BidOutcome(OUTCOME_CLAIMED, service, bid_view)


def cancel_bid(db: Session, service_id: str, provider_id: str) -> bool:
    """Withdraw the provider's bid. Returns whether a bid was removed."""
    service = get_service_or_404(db, service_id)
    settings = get_settings()

    with unit_of_work(db):
        result = db.execute(
            delete(ServiceFillRequest).where(
                ServiceFillRequest.service_id == service_id,
                ServiceFillRequest.service_provider_id == provider_id,
            )
        )
        removed = result.rowcount > 0
        if not removed:
            return False

        create_audit_log(
            db,
            entity_type="service",
            entity_id=service_id,
            action="BID_CANCELLED",
            old_value={"service_provider_id": provider_id},
            new_value=None,
            actor_type="PROVIDER",
            actor_id=provider_id,
        )
        if (
            settings.revert_status_when_last_bid_cancelled
            and ServiceStatus.coerce(service.status) == ServiceStatus.SELECT_SERVICE_PROVIDER
            and fill_request_count(db, service_id) == 0
        ):
            apply_transition(
                db,
                service=service,
                new_status=ServiceStatus.FINDING_PROS,
                expected=(ServiceStatus.SELECT_SERVICE_PROVIDER,),
                require_unassigned=True,
                actor_type="PROVIDER",
                actor_id=provider_id,
            )
    return True


def _require_assigned(service: Service, provider_id: str) -> ServiceStatus:
    if service.service_provider_id != provider_id:
        raise HTTPException(403, "Only the assigned provider can update this job.")
    return _status_of(service)


def cancel_confirmed_job(db: Session, service_id: str, provider_id: str) -> Service:
    """Assigned provider backs out of a confirmed job; it returns to the open pool."""
    service = get_service_or_404(db, service_id)
    status = _require_assigned(service, provider_id)
    if status != ServiceStatus.CONFIRMED:
        raise HTTPException(409, "This job can no longer be cancelled.")

    with unit_of_work(db, "We couldn't cancel this job. Please try again."):
        db.execute(
            delete(ServiceFillRequest).where(
                ServiceFillRequest.service_id == service_id,
                ServiceFillRequest.service_provider_id == provider_id,
            )
        )
        moved = apply_transition(
            db,
            service=service,
            new_status=ServiceStatus.FINDING_PROS,
            expected=(ServiceStatus.CONFIRMED,),
            values={"service_provider_id": None},
            assigned_to=provider_id,
            actor_type="PROVIDER",
            actor_id=provider_id,
            action="ASSIGNMENT_CANCELLED",
        )
        if not moved:
            raise HTTPException(409, "This job can no longer be cancelled.")
    return service


def advance_status(db: Session, service_id: str, provider_id: str) -> Service:
    service = get_service_or_404(db, service_id)
    current = _require_assigned(service, provider_id)
    target = current.next_for_provider
    if target is None:
        raise HTTPException(409, f"Nothing to advance from {current.value}")

    with unit_of_work(db):
        moved = apply_transition(
            db,
            service=service,
            new_status=target,
            expected=(current,),
            assigned_to=provider_id,
            actor_type="PROVIDER",
            actor_id=provider_id,
        )
        if not moved:
            raise HTTPException(409, "This job changed. Refresh and try again.")
        if target == ServiceStatus.COMPLETED:
            db.execute(
                update(ServiceProvider)
                .where(ServiceProvider.service_provider_id == provider_id)
                .values(jobs_completed=ServiceProvider.jobs_completed + 1)
            )
    return service


def rate_customer(
    db: Session,
    service_id: str,
    provider_id: str,
    rating: int,
    comment: Optional[str] = None,
) -> CustomerRating:
    service = get_service_or_404(db, service_id)
    status = _require_assigned(service, provider_id)
    if status != ServiceStatus.COMPLETED:
        raise HTTPException(409, "Customers can be rated once the job is completed.")

    stars = max(1, min(5, int(rating)))
    with unit_of_work(db):
        row = db.execute(select(CustomerRating).where(CustomerRating.service_id == service_id)).scalars().first()
        if row is None:
            row = CustomerRating(
                service_id=service_id,
                customer_id=service.customer_id,
                service_provider_id=provider_id,
            )
            db.add(row)
        row.rating = stars
        row.comment = (comment or "").strip() or None
    return row


def list_open_services_for_provider(
    db: Session, provider_id: str
) -> list[tuple[Service, Optional[BidOut], int]]:
    """Open jobs plus the caller's own active assignments, oldest first."""
    assigned_statuses = [
        status.value for status in ServiceStatus if status.requires_provider and status != ServiceStatus.COMPLETED
    ]
    services = (
        db.execute(
            select(Service)
            .where(
                or_(
                    func.lower(Service.status).in_([status.value for status in OPEN_STATUSES]),
                    and_(
                        func.lower(Service.status).in_(assigned_statuses),
                        Service.service_provider_id == provider_id,
                    ),
                )
            )
            .order_by(Service.date_of_creation.asc())
        )
        .scalars()
        .all()
    )
    if not services:
        return []

    service_ids = [service.service_id for service in services]
    provider = db.get(ServiceProvider, provider_id)
    my_bids = {
        bid.service_id: _bid_out(bid, provider)
        for bid in db.execute(
            select(ServiceFillRequest).where(
                ServiceFillRequest.service_provider_id == provider_id,
                ServiceFillRequest.service_id.in_(service_ids),
            )
        ).scalars()
    }
    counts = dict(
        db.execute(
            select(ServiceFillRequest.service_id, func.count(ServiceFillRequest.id))
            .where(ServiceFillRequest.service_id.in_(service_ids))
            .group_by(ServiceFillRequest.service_id)
        ).all()
    )
    return [(service, my_bids.get(service.service_id), int(counts.get(service.service_id, 0))) for service in services]


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


def _stale_bid_filter():
    # Bids outlive their job only when the post-confirmation purge failed.
    closed = [status.value for status in ServiceStatus if not status.is_open]
    return ServiceFillRequest.service_id.in_(
        select(Service.service_id).where(func.lower(Service.status).in_(closed))
    )


def count_stale_bids(db: Session) -> int:
    return db.execute(select(func.count(ServiceFillRequest.id)).where(_stale_bid_filter())).scalar_one()


def purge_stale_bids(db: Session) -> int:
    with unit_of_work(db):
        result = db.execute(
            delete(ServiceFillRequest).where(_stale_bid_filter()).execution_options(synchronize_session=False)
        )
    removed = result.rowcount or 0
    if removed:
        logger.info("Purged %s stale bid(s) from closed jobs", removed)
    return removed


def find_inconsistent_assignments(db: Session) -> list[Service]:
    """Jobs whose provider assignment disagrees with their status."""
    services = db.execute(select(Service)).scalars()
    return [s for s in services if not assignment_is_consistent(s.status, s.service_provider_id)]
