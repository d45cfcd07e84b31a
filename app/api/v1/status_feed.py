"""Polling feed: the actor's jobs plus one-shot notices for this session."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.auth import CurrentUser, get_current_user, require_roles
from app.core.config import get_settings
from app.core.dependencies import get_db
from app.schemas.service import ServiceOut, StatusFeedOut, StatusNoticeOut
from app.services import service_workflow as workflow
from app.services.status_watch import StatusSessionRegistry, StatusSnapshot

logger = logging.getLogger(__name__)

router = APIRouter()


def get_status_sessions(request: Request) -> StatusSessionRegistry:
    return request.app.state.status_sessions


def _rows_for(db: Session, user: CurrentUser) -> list[tuple[ServiceOut, int]]:
    if user.role == "PROVIDER":
        rows = workflow.list_open_services_for_provider(db, user.id)
        return [(workflow.serialize_service(service, count), count) for service, _, count in rows]
    return [
        (workflow.serialize_service(service, count), count)
        for service, count in workflow.list_customer_services(db, user.id)
    ]


@router.get("/status-feed", response_model=StatusFeedOut)
def status_feed(
    current_user: CurrentUser = Depends(require_roles("CUSTOMER", "PROVIDER")),
    db: Session = Depends(get_db),
    sessions: StatusSessionRegistry = Depends(get_status_sessions),
):
    # Providers see other customers' jobs; the select prompt is not theirs.
    watcher = sessions.watcher_for(current_user.id, notify_select_pro=current_user.role == "CUSTOMER")
    sequence = watcher.next_sequence()
    rows = _rows_for(db, current_user)
    notices = watcher.observe(
        [StatusSnapshot(out.service_id, out.status, count) for out, count in rows],
        sequence,
    )
    return StatusFeedOut(
        sequence=sequence,
        services=[out for out, _ in rows],
        notices=[
            StatusNoticeOut(kind=n.kind, service_id=n.service_id, title=n.title, message=n.message)
            for n in notices or []
        ],
        poll_interval_seconds=get_settings().status_poll_interval_seconds,
    )


@router.post("/session/sign-out")
def sign_out(
    current_user: CurrentUser = Depends(get_current_user),
    sessions: StatusSessionRegistry = Depends(get_status_sessions),
):
    return {"reset": sessions.sign_out(current_user.id)}
