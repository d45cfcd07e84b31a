import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.auth import CurrentUser, require_roles
from app.core.dependencies import get_db
from app.services.ai.pricing.contracts import PriceEstimate, PriceEstimateRequest
from app.services.ai.pricing.service import estimate_price
from app.services.service_workflow import unit_of_work

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/pricing/estimate", response_model=PriceEstimate)
async def estimate(
    payload: PriceEstimateRequest,
    current_user: CurrentUser = Depends(require_roles("CUSTOMER", "ADMIN")),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        return await estimate_price(payload, db=db, actor_id=current_user.id)
