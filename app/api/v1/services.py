"""Job and bid endpoints for the customer and provider apps."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from app.core.auth import CurrentUser, require_roles
from app.core.dependencies import get_db
from app.schemas.service import (
    BidCreate,
    BidOut,
    BidOutcomeOut,
    ConfirmRequest,
    OpenServiceOut,
    ProviderProfileIn,
    ProviderProfileOut,
    RatingOut,
    RatingRequest,
    ScheduleRequest,
    ServiceCreate,
    ServiceOut,
    ServiceStatus,
    ServiceUpdate,
)
from app.services import service_workflow as workflow

logger = logging.getLogger(__name__)

router = APIRouter()

customer_or_admin = require_roles("CUSTOMER", "ADMIN")
provider_only = require_roles("PROVIDER")


def _customer_scope(user: CurrentUser) -> Optional[str]:
    # Admins act on any job; customers only on their own.
    return None if user.role == "ADMIN" else user.id


def _profile(user: CurrentUser) -> dict:
    return {
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
    }


def _open_service_out(service, my_bid: Optional[BidOut], count: int) -> OpenServiceOut:
    base = workflow.serialize_service(service, count)
    status = ServiceStatus.coerce(service.status)
    return OpenServiceOut(
        **base.model_dump(),
        my_bid=my_bid,
        next_action_label=status.provider_action_label if status else None,
    )


# ---------------------------------------------------------------------------
# Customer
# ---------------------------------------------------------------------------


@router.post("/services", response_model=ServiceOut, status_code=201)
def create_service(
    payload: ServiceCreate,
    current_user: CurrentUser = Depends(require_roles("CUSTOMER")),
    db: Session = Depends(get_db),
):
    service = workflow.create_service(db, current_user.id, payload, **_profile(current_user))
    return workflow.serialize_service(service, workflow.fill_request_count(db, service.service_id))


@router.get("/services", response_model=list[ServiceOut])
def list_my_services(
    current_user: CurrentUser = Depends(require_roles("CUSTOMER")),
    db: Session = Depends(get_db),
):
    return [
        workflow.serialize_service(service, count)
        for service, count in workflow.list_customer_services(db, current_user.id)
    ]


@router.patch("/services/{service_id}", response_model=ServiceOut)
def edit_service(
    service_id: str,
    payload: ServiceUpdate,
    current_user: CurrentUser = Depends(customer_or_admin),
    db: Session = Depends(get_db),
):
    service = workflow.edit_service(db, service_id, _customer_scope(current_user), payload)
    return workflow.serialize_service(service, workflow.fill_request_count(db, service_id))


@router.post("/services/{service_id}/schedule", response_model=ServiceOut)
def schedule_service(
    service_id: str,
    payload: ScheduleRequest,
    current_user: CurrentUser = Depends(customer_or_admin),
    db: Session = Depends(get_db),
):
    service = workflow.schedule_service(db, service_id, _customer_scope(current_user), payload)
    return workflow.serialize_service(service, workflow.fill_request_count(db, service_id))


@router.delete("/services/{service_id}", status_code=204)
def cancel_service(
    service_id: str,
    current_user: CurrentUser = Depends(customer_or_admin),
    db: Session = Depends(get_db),
):
    workflow.cancel_service(db, service_id, _customer_scope(current_user))
    return Response(status_code=204)


@router.get("/services/{service_id}/bids", response_model=list[BidOut])
def list_bids(
    service_id: str,
    current_user: CurrentUser = Depends(customer_or_admin),
    db: Session = Depends(get_db),
):
    workflow.get_owned_service(db, service_id, _customer_scope(current_user))
    return workflow.list_bids(db, service_id)


@router.post("/services/{service_id}/confirm", response_model=ServiceOut)
def confirm_provider(
    service_id: str,
    payload: ConfirmRequest,
    current_user: CurrentUser = Depends(customer_or_admin),
    db: Session = Depends(get_db),
):
    service = workflow.confirm_provider(
        db,
        service_id,
        payload.service_provider_id,
        payload.bid,
        customer_id=_customer_scope(current_user),
    )
    return workflow.serialize_service(service, workflow.fill_request_count(db, service_id))


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


@router.get("/services/open", response_model=list[OpenServiceOut])
def list_open_services(
    current_user: CurrentUser = Depends(provider_only),
    db: Session = Depends(get_db),
):
    return [
        _open_service_out(service, my_bid, count)
        for service, my_bid, count in workflow.list_open_services_for_provider(db, current_user.id)
    ]


@router.post("/services/{service_id}/bids", response_model=BidOutcomeOut)
def submit_bid(
    service_id: str,
    payload: BidCreate,
    current_user: CurrentUser = Depends(provider_only),
    db: Session = Depends(get_db),
):
    result = workflow.submit_bid(
        db,
        service_id,
        current_user.id,
        payload.bid,
        payload.proposed_date_time,
        **_profile(current_user),
    )
    return BidOutcomeOut(
        outcome=result.outcome,
        message=result.message,
        bid=result.bid,
        service=workflow.serialize_service(result.service, workflow.fill_request_count(db, service_id)),
    )


@router.delete("/services/{service_id}/bids")
def cancel_bid(
    service_id: str,
    current_user: CurrentUser = Depends(provider_only),
    db: Session = Depends(get_db),
):
    return {"removed": workflow.cancel_bid(db, service_id, current_user.id)}


@router.post("/services/{service_id}/cancel-assignment", response_model=ServiceOut)
def cancel_assignment(
    service_id: str,
    current_user: CurrentUser = Depends(provider_only),
    db: Session = Depends(get_db),
):
    service = workflow.cancel_confirmed_job(db, service_id, current_user.id)
    return workflow.serialize_service(service, workflow.fill_request_count(db, service_id))


@router.post("/services/{service_id}/advance", response_model=OpenServiceOut)
def advance_status(
    service_id: str,
    current_user: CurrentUser = Depends(provider_only),
    db: Session = Depends(get_db),
):
    service = workflow.advance_status(db, service_id, current_user.id)
    return _open_service_out(service, None, 0)


@router.post("/services/{service_id}/rating", response_model=RatingOut)
def rate_customer(
    service_id: str,
    payload: RatingRequest,
    current_user: CurrentUser = Depends(provider_only),
    db: Session = Depends(get_db),
):
    row = workflow.rate_customer(db, service_id, current_user.id, payload.rating, payload.comment)
    return RatingOut(service_id=row.service_id, rating=row.rating, comment=row.comment)


@router.post("/providers/me/profile", response_model=ProviderProfileOut)
def ensure_provider_profile(
    payload: ProviderProfileIn,
    current_user: CurrentUser = Depends(provider_only),
    db: Session = Depends(get_db),
):
    profile = {**_profile(current_user), **payload.model_dump(exclude_none=True)}
    with workflow.unit_of_work(db):
        provider, created = workflow.ensure_provider_profile(db, current_user.id, **profile)
    return ProviderProfileOut(
        service_provider_id=provider.service_provider_id,
        first_name=provider.first_name,
        last_name=provider.last_name,
        email=provider.email,
        phone=provider.phone,
        jobs_completed=provider.jobs_completed or 0,
        created=created,
    )
