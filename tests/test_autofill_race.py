"""Two providers tapping "fill" on the same AutoFill job.

Both sessions load the open job before either writes, so the loser acts on a
stale view. The conditional status update must still let exactly one claim
through.
"""

from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from app.core.dependencies import build_engine
from app.models.service import AuditLog, Base, Service, ServiceFillRequest
from app.schemas.service import ServiceCreate
from app.services.service_workflow import (
    OUTCOME_CLAIMED,
    OUTCOME_FILLED_BY_OTHER,
    create_service,
    submit_bid,
)
from app.utils.alerting import alert_tracker
from tests.conftest import CUSTOMER_ID, PROVIDER_A, PROVIDER_B, service_payload


def _file_sessions(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)
    return engine, sessionmaker(bind=engine, autoflush=False)


def test_exactly_one_autofill_claim_wins(tmp_path):
    engine, Session = _file_sessions(tmp_path)
    try:
        with Session() as setup:
            service_id = create_service(
                setup, CUSTOMER_ID, ServiceCreate(**service_payload(autofill_type="AutoFill"))
            ).service_id

        first_session, second_session = Session(), Session()
        try:
            assert first_session.get(Service, service_id).status == "finding_pros"
            assert second_session.get(Service, service_id).status == "finding_pros"

            first = submit_bid(first_session, service_id, PROVIDER_A, "40")
            second = submit_bid(second_session, service_id, PROVIDER_B, "38")
        finally:
            first_session.close()
            second_session.close()

        assert first.outcome == OUTCOME_CLAIMED
        assert second.outcome == OUTCOME_FILLED_BY_OTHER
        assert second.message == "This job was already filled by someone else."
        assert second.bid is None

        with Session() as check:
            stored = check.get(Service, service_id)
            assert stored.status == "confirmed"
            assert stored.service_provider_id == PROVIDER_A
            assert stored.price == Decimal("40.00")
            bids = check.execute(
                select(func.count(ServiceFillRequest.id)).where(ServiceFillRequest.service_id == service_id)
            ).scalar_one()
            assert bids == 0
            actions = check.execute(
                select(AuditLog.action, AuditLog.actor_id).where(AuditLog.entity_id == service_id)
            ).all()
            assert ("AUTOFILL_CLAIMED", PROVIDER_A) in actions
            assert ("AUTOFILL_LOST", PROVIDER_B) in actions
            assert ("AUTOFILL_CLAIMED", PROVIDER_B) not in actions

        assert alert_tracker.count("AUTOFILL_LOST") == 1
    finally:
        engine.dispose()


def test_bid_after_claim_commits_is_turned_away(tmp_path):
    engine, Session = _file_sessions(tmp_path)
    try:
        with Session() as setup:
            service_id = create_service(
                setup, CUSTOMER_ID, ServiceCreate(**service_payload(autofill_type="AutoFill"))
            ).service_id

        with Session() as winner:
            assert submit_bid(winner, service_id, PROVIDER_A, "40").outcome == OUTCOME_CLAIMED

        with Session() as late:
            with pytest.raises(HTTPException) as exc:
                submit_bid(late, service_id, PROVIDER_B, "39")
            assert exc.value.status_code == 409
            assert late.get(Service, service_id).service_provider_id == PROVIDER_A
    finally:
        engine.dispose()
