"""Cleaning price estimate: one LLM completion plus local post-processing.

The model is asked for a JSON object with ``price``, ``needs_clarification``
and ``safety_concern``. A safety flag wins over a clarification request; only
then is the price read, discounted and rounded to whole dollars. Any failure
degrades to ``status="unavailable"``; nothing is retried.
"""

from __future__ import annotations

import json
import logging
import math
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.services.ai.common import router as ai_router
from app.services.ai.common.audit import log_ai_run

from .contracts import (
    DISABLED_MESSAGE,
    SAFETY_NOTE,
    UNAVAILABLE_MESSAGE,
    EstimateLocation,
    PriceEstimate,
    PriceEstimateRequest,
)

logger = logging.getLogger(__name__)

PRICING_SYSTEM_PROMPT = (
    "You are a pricing assistant for cleaning services. Respond with a JSON object containing: "
    "price (number), needs_clarification (boolean), clarification_prompt (string, only if "
    "needs_clarification is true), safety_concern (boolean), safety_message (string, only if "
    "safety_concern is true). Analyze the task description and determine if critical details are "
    "missing: 1) degree of cleaning needed (light/medium/deep), 2) which rooms or entire home, "
    "3) property size. If any are unclear, set needs_clarification to true and provide a friendly "
    "clarification_prompt asking for the missing details. If the request involves hazardous "
    "materials, biohazards, or dangerous conditions, set safety_concern to true with an appropriate "
    "safety_message. For complete descriptions, provide price in USD (20-250 range). IMPORTANT: "
    "Scale prices significantly based on property size - Studio: $20-40 (basic) / $40-80 (deep), "
    "1-bed: $30-50 (basic) / $60-100 (deep), 2-bed: $45-70 (basic) / $90-130 (deep), "
    "3-bed: $60-90 (basic) / $120-170 (deep), 4+ bed or house: $80-130 (basic) / $150-250 (deep). "
    "Always increase price proportionally with more bedrooms. Provide competitive, budget-friendly "
    "estimates."
)

# ---------------------------------------------------------------------------
# Local pre-checks on the description
# ---------------------------------------------------------------------------

_SQFT_RE = re.compile(r"\b\d+\s*(sq\s*ft|square\s*feet|sqft|sf)\b", re.IGNORECASE)
_ROOM_COUNT_RE = re.compile(r"\b\d+[\s-]*(bedroom|bed|br|bathroom|bath|ba|room)\b", re.IGNORECASE)
_SPELLED_ROOM_COUNT_RE = re.compile(
    r"\b(one|two|three|four|five|six|seven|eight|nine|ten|single|double|triple)\s*(?:-|\s)?\s*"
    r"(bedroom|bed|br|room|apt|apartment)s?\b",
    re.IGNORECASE,
)
_PROPERTY_KIND_RE = re.compile(r"\b(studio|apartment|condo|house|office|townhouse|loft)\b", re.IGNORECASE)
_SIZE_WORD_RE = re.compile(
    r"\b(small|medium|large|tiny|huge|spacious|compact)\s*(apartment|house|office|space|property|home|room)\b",
    re.IGNORECASE,
)
_CLEANING_TYPE_RE = re.compile(r"\b((deep|basic|standard)\s*clean(ing|ed)?)\b", re.IGNORECASE)


def describes_property_size(text: str) -> bool:
    has_room_count = bool(_ROOM_COUNT_RE.search(text))
    if _SQFT_RE.search(text) or has_room_count or _SPELLED_ROOM_COUNT_RE.search(text):
        return True
    return bool(_PROPERTY_KIND_RE.search(text)) and bool(_SIZE_WORD_RE.search(text))


def describes_cleaning_type(text: str) -> bool:
    return bool(_CLEANING_TYPE_RE.search(text))


# ---------------------------------------------------------------------------
# Prompt and response shaping
# ---------------------------------------------------------------------------


def _location_line(location: EstimateLocation | None) -> str:
    if location is None:
        return "not provided"
    coordinate = location.coordinate
    return f"{location.description} (lat {coordinate.latitude:.4f}, lng {coordinate.longitude:.4f})"


def build_user_prompt(request: PriceEstimateRequest) -> str:
    return "\n".join(
        [
            f"Task description: {request.description.strip()}",
            f"Start location: {_location_line(request.start)}",
            f"End location: {_location_line(request.end)}",
        ]
    )


def _extract_json(raw: str) -> dict[str, Any] | None:
    """Tolerant JSON extraction: handles fences, trailing text."""
    s = (raw or "").strip()
    if s.startswith("```"):
        s = s.split("\n", 1)[-1] if "\n" in s else s[3:]
        if s.endswith("```"):
            s = s[:-3]
        s = s.strip()
    start = s.find("{")
    end = s.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        parsed = json.loads(s[start : end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _finite_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def apply_discount(list_price: float, discount_pct: int) -> int:
    """Discount, round half-up to whole dollars, never below zero."""
    factor = Decimal(100 - discount_pct) / Decimal(100)
    discounted = (Decimal(str(list_price)) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(0, int(discounted))


def interpret_completion(raw_text: str, *, discount_pct: int) -> PriceEstimate:
    parsed = _extract_json(raw_text)
    if parsed is None:
        logger.warning("Price estimate: completion was not a JSON object")
        return PriceEstimate(status="unavailable", message=UNAVAILABLE_MESSAGE)

    safety_message = str(parsed.get("safety_message") or "").strip()
    if parsed.get("safety_concern") is True and safety_message:
        return PriceEstimate(status="safety_concern", safety_message=safety_message, message=SAFETY_NOTE)

    clarification = str(parsed.get("clarification_prompt") or "").strip()
    if parsed.get("needs_clarification") is True and clarification:
        return PriceEstimate(status="needs_clarification", clarification_prompt=clarification, message=clarification)

    list_price = _finite_number(parsed.get("price"))
    if list_price is None:
        logger.warning("Price estimate: missing or non-numeric price %r", parsed.get("price"))
        return PriceEstimate(status="unavailable", message=UNAVAILABLE_MESSAGE)

    return PriceEstimate(
        status="ok",
        price=apply_discount(list_price, discount_pct),
        list_price=list_price,
        discount_pct=discount_pct,
    )


async def estimate_price(
    request: PriceEstimateRequest,
    *,
    db: Session | None = None,
    actor_id: str | None = None,
) -> PriceEstimate:
    settings = get_settings()
    checks = {
        "has_property_size": describes_property_size(request.description),
        "has_cleaning_type": describes_cleaning_type(request.description),
    }
    if not settings.enable_ai_pricing:
        return PriceEstimate(status="unavailable", message=DISABLED_MESSAGE, **checks)

    config = ai_router.resolve("pricing", override_provider=request.provider, override_model=request.model)
    prompt_text = build_user_prompt(request)
    try:
        provider_result = await config.provider.generate(
            prompt_text,
            system_prompt=PRICING_SYSTEM_PROMPT,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
            json_mode=True,
        )
    except Exception:
        logger.warning("Price estimate: provider %s failed", config.provider.name, exc_info=True)
        return PriceEstimate(status="unavailable", message=UNAVAILABLE_MESSAGE, **checks)

    estimate = interpret_completion(provider_result.raw_text, discount_pct=settings.pricing_discount_pct)
    estimate = estimate.model_copy(
        update={**checks, "provider": provider_result.provider, "model": provider_result.model}
    )

    if db is not None and estimate.status != "unavailable":
        log_ai_run(
            db,
            scope="pricing",
            provider_result=provider_result,
            prompt_text=prompt_text,
            parsed_output=estimate.model_dump(exclude={"message"}),
            actor_id=actor_id,
        )
    return estimate
