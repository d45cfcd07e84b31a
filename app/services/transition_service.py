import logging
from collections.abc import Iterable
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.service import AuditLog, Service
from app.schemas.service import ALLOWED_TRANSITIONS, ServiceStatus
from app.utils.alerting import alert_tracker

logger = logging.getLogger(__name__)

PII_REDACTION_FALLBACK_FIELDS = {
    "phone",
    "email",
    "first_name",
    "last_name",
    "location",
}


def _redact_pii(value: Any, redact_keys: set[str]) -> Any:
    if value is None:
        return None
    if isinstance(value, dict):
        redacted = {}
        for key, item in value.items():
            if isinstance(key, str) and key.lower() in redact_keys:
                redacted[key] = "[REDACTED]"
            else:
                redacted[key] = _redact_pii(item, redact_keys)
        return redacted
    if isinstance(value, list):
        return [_redact_pii(item, redact_keys) for item in value]
    return value


def create_audit_log(
    db: Session,
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    old_value: Optional[dict[str, Any]],
    new_value: Optional[dict[str, Any]],
    actor_type: str,
    actor_id: Optional[str],
    metadata: Optional[dict[str, Any]] = None,
) -> None:
    settings = get_settings()
    if settings.pii_redaction_enabled:
        configured = {item.lower() for item in settings.pii_redaction_fields}
        redact_keys = configured or set(PII_REDACTION_FALLBACK_FIELDS)
        old_value = _redact_pii(old_value, redact_keys)
        new_value = _redact_pii(new_value, redact_keys)
        if metadata is not None:
            metadata = _redact_pii(metadata, redact_keys)

    db.add(
        AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            old_value=old_value,
            new_value=new_value,
            actor_type=actor_type,
            actor_id=actor_id,
            audit_meta=metadata,
        )
    )
    try:
        alert_tracker.record(action, metadata)
    except Exception:
        logger.exception("Alert tracker failed for action=%s", action)


def compare_and_set_status(
    db: Session,
    *,
    service_id: str,
    expected: Iterable[ServiceStatus],
    new_status: ServiceStatus,
    values: Optional[dict[str, Any]] = None,
    require_unassigned: bool = False,
    assigned_to: Optional[str] = None,
) -> bool:
    """Move a service row in one conditional UPDATE.

    The row only changes when its current (case-folded) status is in
    *expected* and the assignment guard holds. Returns True when this call
    changed the row; False means another writer got there first.
    """
    stmt = update(Service).where(
        Service.service_id == service_id,
        func.lower(Service.status).in_([status.value for status in expected]),
    )
    if require_unassigned:
        stmt = stmt.where(Service.service_provider_id.is_(None))
    if assigned_to is not None:
        stmt = stmt.where(Service.service_provider_id == assigned_to)

    result = db.execute(
        stmt.values(status=new_status.value, **(values or {})).execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def apply_transition(
    db: Session,
    *,
    service: Service,
    new_status: ServiceStatus,
    actor_type: str,
    actor_id: Optional[str],
    expected: Optional[Iterable[ServiceStatus]] = None,
    values: Optional[dict[str, Any]] = None,
    require_unassigned: bool = False,
    assigned_to: Optional[str] = None,
    action: str = "STATUS_CHANGE",
    metadata: Optional[dict[str, Any]] = None,
) -> bool:
    service_id = service.service_id
    current = ServiceStatus.parse(service.status)
    expected = tuple(expected) if expected is not None else (current,)

    for status in expected:
        if new_status not in ALLOWED_TRANSITIONS[status]:
            raise HTTPException(409, f"Transition not allowed: {status.value} -> {new_status.value}")

    moved = compare_and_set_status(
        db,
        service_id=service_id,
        expected=expected,
        new_status=new_status,
        values=values,
        require_unassigned=require_unassigned,
        assigned_to=assigned_to,
    )
    # The UPDATE bypassed the identity map; reload on next access.
    db.expire(service)
    if not moved:
        return False

    create_audit_log(
        db,
        entity_type="service",
        entity_id=service_id,
        action=action,
        old_value={"status": current.value},
        new_value={"status": new_status.value, **_jsonable(values)},
        actor_type=actor_type,
        actor_id=actor_id,
        metadata=metadata,
    )
    return True


def _jsonable(values: Optional[dict[str, Any]]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in (values or {}).items():
        if value is None or isinstance(value, (str, int, float, bool)):
            out[key] = value
        else:
            out[key] = str(value)
    return out
