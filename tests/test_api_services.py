"""HTTP-level flows through the FastAPI app with in-process clients."""

import pytest

from app.core.config import get_settings
from app.schemas.service import Coordinate
from app.services.geofence import OUT_OF_AREA_MESSAGE, OUT_OF_AREA_TITLE
from app.services.places import PlaceDetails, PlaceSuggestion, get_places_client
from app.services.service_workflow import JOB_NOT_OPEN_MESSAGE, MISSING_DESCRIPTION_MESSAGE
from tests.conftest import CUSTOMER_ID, MANHATTAN, OTHER_CUSTOMER_ID, PROVIDER_A, PROVIDER_B, service_payload

API = "/api/v1"


async def _create(client, **overrides) -> str:
    resp = await client.post(f"{API}/services", json=service_payload(**overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()["service_id"]


# ── full flows ───────────────────────────────────────────────────────


async def test_select_a_pro_flow(client_for):
    customer = client_for("CUSTOMER", CUSTOMER_ID, first_name="Casey")
    pro_a = client_for("PROVIDER", PROVIDER_A, first_name="Ana")
    pro_b = client_for("PROVIDER", PROVIDER_B, first_name="Ben")

    resp = await customer.post(f"{API}/services", json=service_payload())
    assert resp.status_code == 201
    created = resp.json()
    service_id = created["service_id"]
    assert created["status"] == "finding_pros"
    assert created["status_label"] == "Finding Pros"

    baseline = (await customer.get(f"{API}/status-feed")).json()
    assert baseline["notices"] == []
    assert [s["service_id"] for s in baseline["services"]] == [service_id]

    open_jobs = (await pro_a.get(f"{API}/services/open")).json()
    assert [job["service_id"] for job in open_jobs] == [service_id]
    assert open_jobs[0]["my_bid"] is None

    bid_a = await pro_a.post(f"{API}/services/{service_id}/bids", json={"bid": "$40"})
    assert bid_a.status_code == 200
    assert bid_a.json()["outcome"] == "submitted"
    assert bid_a.json()["message"] == "Your request was sent to the customer."
    await pro_b.post(f"{API}/services/{service_id}/bids", json={"bid": 35})

    feed = (await customer.get(f"{API}/status-feed")).json()
    assert [n["kind"] for n in feed["notices"]] == ["select_pro"]
    assert feed["notices"][0]["title"] == "Select a Pro"
    assert feed["services"][0]["status_label"] == "Select a Pro"
    assert (await customer.get(f"{API}/status-feed")).json()["notices"] == []

    bids = (await customer.get(f"{API}/services/{service_id}/bids")).json()
    assert [(b["bid"], b["provider_name"]) for b in bids] == [(35.0, "Ben"), (40.0, "Ana")]

    confirm = await customer.post(
        f"{API}/services/{service_id}/confirm",
        json={"service_provider_id": PROVIDER_B, "bid": 35},
    )
    assert confirm.status_code == 200
    body = confirm.json()
    assert body["status"] == "confirmed"
    assert body["status_label"] == "Job Confirmed"
    assert body["price"] == 35.0
    assert body["service_provider_id"] == PROVIDER_B
    assert body["fill_request_count"] == 0

    labels = []
    for expected in ("helpr_otw", "in_progress", "completed"):
        step = await pro_b.post(f"{API}/services/{service_id}/advance")
        assert step.status_code == 200
        assert step.json()["status"] == expected
        labels.append(step.json()["next_action_label"])
    assert labels == ["Start Service", "Complete Service", "Service Completed"]

    feed = (await customer.get(f"{API}/status-feed")).json()
    assert [n["kind"] for n in feed["notices"]] == ["service_completed"]
    assert (await customer.get(f"{API}/status-feed")).json()["notices"] == []

    rating = await pro_b.post(f"{API}/services/{service_id}/rating", json={"rating": 7, "comment": "Lovely"})
    assert rating.status_code == 200
    assert rating.json() == {"service_id": service_id, "rating": 5, "comment": "Lovely"}


async def test_autofill_first_bid_takes_the_job(client_for):
    customer = client_for("CUSTOMER", CUSTOMER_ID)
    pro_a = client_for("PROVIDER", PROVIDER_A)
    pro_b = client_for("PROVIDER", PROVIDER_B)
    service_id = await _create(customer, autofill_type="AutoFill")

    won = await pro_a.post(f"{API}/services/{service_id}/bids", json={"bid": "42"})
    assert won.status_code == 200
    assert won.json()["outcome"] == "claimed"
    assert won.json()["message"] == "You got the job!"
    assert won.json()["service"]["status"] == "confirmed"

    late = await pro_b.post(f"{API}/services/{service_id}/bids", json={"bid": "41"})
    assert late.status_code == 409
    assert late.json()["detail"] == JOB_NOT_OPEN_MESSAGE

    open_for_a = (await pro_a.get(f"{API}/services/open")).json()
    assert [(job["service_id"], job["next_action_label"]) for job in open_for_a] == [(service_id, "I'm on the way")]
    assert (await pro_b.get(f"{API}/services/open")).json() == []


async def test_provider_cancels_assignment_and_bid(client_for):
    customer = client_for("CUSTOMER", CUSTOMER_ID)
    pro_a = client_for("PROVIDER", PROVIDER_A)
    service_id = await _create(customer)

    await pro_a.post(f"{API}/services/{service_id}/bids", json={"bid": "40"})
    removed = await pro_a.delete(f"{API}/services/{service_id}/bids")
    assert removed.json() == {"removed": True}
    assert (await pro_a.delete(f"{API}/services/{service_id}/bids")).json() == {"removed": False}

    await pro_a.post(f"{API}/services/{service_id}/bids", json={"bid": "45"})
    await customer.post(f"{API}/services/{service_id}/confirm", json={"service_provider_id": PROVIDER_A})
    reopened = await pro_a.post(f"{API}/services/{service_id}/cancel-assignment")
    assert reopened.status_code == 200
    assert reopened.json()["status"] == "finding_pros"
    assert reopened.json()["service_provider_id"] is None


async def test_customer_edits_schedules_and_cancels(client_for):
    customer = client_for("CUSTOMER", CUSTOMER_ID)
    service_id = await _create(customer)

    edited = await customer.patch(f"{API}/services/{service_id}", json={"price": 95, "autofill_type": "AutoFill"})
    assert edited.status_code == 200
    assert edited.json()["price"] == 95.0
    assert edited.json()["autofill_type"] == "AutoFill"

    scheduled = await customer.post(
        f"{API}/services/{service_id}/schedule",
        json={"scheduling_type": "scheduled", "scheduled_date_time": "2026-11-02T09:30:00"},
    )
    assert scheduled.status_code == 200
    assert scheduled.json()["scheduling_type"] == "scheduled"

    listed = (await customer.get(f"{API}/services")).json()
    assert [s["service_id"] for s in listed] == [service_id]

    assert (await customer.delete(f"{API}/services/{service_id}")).status_code == 204
    assert (await customer.get(f"{API}/services")).json() == []


async def test_admin_acts_on_any_job(client_for):
    customer = client_for("CUSTOMER", CUSTOMER_ID)
    other = client_for("CUSTOMER", OTHER_CUSTOMER_ID)
    admin = client_for("ADMIN", "admin-1")
    service_id = await _create(customer)

    assert (await other.get(f"{API}/services/{service_id}/bids")).status_code == 403
    assert (await admin.get(f"{API}/services/{service_id}/bids")).status_code == 200
    assert (await admin.patch(f"{API}/services/{service_id}", json={"price": 70})).json()["price"] == 70.0


# ── validation and access ────────────────────────────────────────────


async def test_create_validation_messages(client_for):
    customer = client_for("CUSTOMER", CUSTOMER_ID)

    resp = await customer.post(f"{API}/services", json=service_payload(description=""))
    assert resp.status_code == 400
    assert resp.json()["detail"] == MISSING_DESCRIPTION_MESSAGE

    resp = await customer.post(
        f"{API}/services",
        json=service_payload(coordinate={"latitude": 38.9072, "longitude": -77.0369}),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == OUT_OF_AREA_MESSAGE

    resp = await customer.post(f"{API}/services", json=service_payload(price=-5))
    assert resp.status_code == 422


async def test_role_guards(client_for):
    customer = client_for("CUSTOMER", CUSTOMER_ID)
    provider = client_for("PROVIDER", PROVIDER_A)

    assert (await provider.post(f"{API}/services", json=service_payload())).status_code == 403
    assert (await customer.get(f"{API}/services/open")).status_code == 403
    assert (await customer.post(f"{API}/services/x/bids", json={"bid": 10})).status_code == 403
    assert (await provider.post(f"{API}/pricing/estimate", json={"description": "clean"})).status_code == 403

    anonymous = await customer.get(f"{API}/services", headers={"X-Test-Sub": ""})
    assert anonymous.status_code == 401


async def test_invalid_bid_and_missing_job(client_for):
    customer = client_for("CUSTOMER", CUSTOMER_ID)
    provider = client_for("PROVIDER", PROVIDER_A)
    service_id = await _create(customer)

    resp = await provider.post(f"{API}/services/{service_id}/bids", json={"bid": "free"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Enter a valid dollar amount."
    assert (await provider.post(f"{API}/services/missing/bids", json={"bid": 10})).status_code == 404


async def test_provider_profile_endpoint(client_for):
    provider = client_for("PROVIDER", PROVIDER_A, first_name="Ana")

    first = await provider.post(f"{API}/providers/me/profile", json={"phone": "212-555-0100"})
    assert first.status_code == 200
    assert first.json()["created"] is True
    assert first.json()["first_name"] == "Ana"
    assert first.json()["phone"] == "2125550100"

    again = await provider.post(f"{API}/providers/me/profile", json={})
    assert again.json()["created"] is False
    assert again.json()["jobs_completed"] == 0


# ── status feed sessions ─────────────────────────────────────────────


async def test_sign_out_resets_session_notices(client_for):
    customer = client_for("CUSTOMER", CUSTOMER_ID)
    provider = client_for("PROVIDER", PROVIDER_A)
    service_id = await _create(customer)

    await customer.get(f"{API}/status-feed")
    await provider.post(f"{API}/services/{service_id}/bids", json={"bid": "40"})
    assert len((await customer.get(f"{API}/status-feed")).json()["notices"]) == 1

    assert (await customer.post(f"{API}/session/sign-out")).json() == {"reset": True}
    assert (await customer.post(f"{API}/session/sign-out")).json() == {"reset": False}

    # A fresh session starts from the current state, so no edge is seen.
    feed = (await customer.get(f"{API}/status-feed")).json()
    assert feed["notices"] == []
    assert feed["sequence"] == 1


async def test_provider_feed_lists_open_jobs(client_for):
    customer = client_for("CUSTOMER", CUSTOMER_ID)
    provider = client_for("PROVIDER", PROVIDER_A)
    service_id = await _create(customer)

    feed = (await provider.get(f"{API}/status-feed")).json()
    assert [s["service_id"] for s in feed["services"]] == [service_id]
    assert feed["notices"] == []


async def test_provider_feed_has_no_select_prompt_after_another_bid(client_for):
    customer = client_for("CUSTOMER", CUSTOMER_ID)
    pro_a = client_for("PROVIDER", PROVIDER_A)
    pro_b = client_for("PROVIDER", PROVIDER_B)
    service_id = await _create(customer)

    await customer.get(f"{API}/status-feed")
    await pro_b.get(f"{API}/status-feed")
    await pro_a.post(f"{API}/services/{service_id}/bids", json={"bid": "40"})

    feed = (await pro_b.get(f"{API}/status-feed")).json()
    assert [s["status"] for s in feed["services"]] == ["select_service_provider"]
    assert feed["notices"] == []
    assert [n["kind"] for n in (await customer.get(f"{API}/status-feed")).json()["notices"]] == ["select_pro"]


async def test_feed_reports_configured_poll_interval(client_for, monkeypatch):
    customer = client_for("CUSTOMER", CUSTOMER_ID)
    assert (await customer.get(f"{API}/status-feed")).json()["poll_interval_seconds"] == 5.0

    monkeypatch.setenv("STATUS_POLL_INTERVAL_SECONDS", "12")
    get_settings.cache_clear()
    assert (await customer.get(f"{API}/status-feed")).json()["poll_interval_seconds"] == 12.0


# ── places and pricing ───────────────────────────────────────────────


class _FakePlaces:
    def __init__(self, details=None, suggestions=()):
        self._details = details
        self._suggestions = list(suggestions)
        self.calls = []

    async def details(self, place_id, *, session_token=None):
        self.calls.append(("details", place_id, session_token))
        return self._details

    async def autocomplete(self, query, *, session_token=None):
        self.calls.append(("autocomplete", query, session_token))
        return self._suggestions


@pytest.fixture
def fake_places():
    from app.main import app

    def _install(fake):
        app.dependency_overrides[get_places_client] = lambda: fake
        return fake

    yield _install
    app.dependency_overrides.pop(get_places_client, None)


async def test_service_area_check_by_coordinate(client_for, fake_places):
    fake_places(_FakePlaces())
    customer = client_for("CUSTOMER", CUSTOMER_ID)

    inside = (await customer.post(f"{API}/service-area/check", json={"coordinate": MANHATTAN})).json()
    assert inside["within_service_area"] is True
    assert inside["zone"] == "Manhattan"
    assert inside["title"] is None

    outside = (
        await customer.post(
            f"{API}/service-area/check",
            json={"coordinate": {"latitude": 39.9526, "longitude": -75.1652}},
        )
    ).json()
    assert outside["within_service_area"] is False
    assert outside["title"] == OUT_OF_AREA_TITLE
    assert outside["message"] == OUT_OF_AREA_MESSAGE


async def test_service_area_check_by_place(client_for, fake_places):
    fake = fake_places(
        _FakePlaces(
            details=PlaceDetails(
                place_id="pid-1",
                formatted_address="350 5th Ave, New York, NY 10118, USA",
                coordinate=Coordinate(**MANHATTAN),
            )
        )
    )
    customer = client_for("CUSTOMER", CUSTOMER_ID)

    resp = await customer.post(f"{API}/service-area/check", json={"place_id": "pid-1", "session_token": "tok"})
    body = resp.json()
    assert body["within_service_area"] is True
    assert body["has_street_number"] is True
    assert body["formatted_address"] == "350 5th Ave, New York, NY 10118, USA"
    assert fake.calls == [("details", "pid-1", "tok")]

    assert (await customer.post(f"{API}/service-area/check", json={})).status_code == 422


async def test_service_area_check_unknown_place(client_for, fake_places):
    fake_places(_FakePlaces(details=None))
    customer = client_for("CUSTOMER", CUSTOMER_ID)

    body = (await customer.post(f"{API}/service-area/check", json={"place_id": "gone"})).json()
    assert body["within_service_area"] is False
    assert body["title"] == "Address not found"


async def test_autocomplete_endpoint(client_for, fake_places):
    fake_places(_FakePlaces(suggestions=[PlaceSuggestion("pid-1", "350 5th Ave, New York, NY, USA", "350 5th Ave")]))
    customer = client_for("CUSTOMER", CUSTOMER_ID)

    resp = await customer.get(f"{API}/places/autocomplete", params={"q": "350 5th", "session_token": "tok"})
    assert resp.status_code == 200
    assert resp.json() == [
        {
            "place_id": "pid-1",
            "description": "350 5th Ave, New York, NY, USA",
            "main_text": "350 5th Ave",
            "secondary_text": None,
        }
    ]


async def test_pricing_estimate_endpoint(client_for, monkeypatch):
    monkeypatch.setenv("AI_PRICING_PROVIDER", "mock")
    monkeypatch.setenv("ENABLE_AI_PRICING", "true")
    get_settings.cache_clear()
    customer = client_for("CUSTOMER", CUSTOMER_ID)

    resp = await customer.post(
        f"{API}/pricing/estimate",
        json={"description": "Basic cleaning for a studio apartment", "start": None, "end": None},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["price"] == 51
    assert body["has_cleaning_type"] is True
    assert body["has_property_size"] is False

    assert (await customer.post(f"{API}/pricing/estimate", json={"description": ""})).status_code == 422


# ── cross-cutting middleware ─────────────────────────────────────────


async def test_health_and_security_headers(client_for):
    client = client_for("CUSTOMER", CUSTOMER_ID)
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"


async def test_rate_limit_blocks_after_limit(client_for, monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_API_ENABLED", "true")
    monkeypatch.setenv("RATE_LIMIT_API_PER_MIN", "2")
    get_settings.cache_clear()
    customer = client_for("CUSTOMER", CUSTOMER_ID)

    assert (await customer.get(f"{API}/services")).status_code == 200
    assert (await customer.get(f"{API}/services")).status_code == 200
    blocked = await customer.get(f"{API}/services")
    assert blocked.status_code == 429
    assert blocked.json() == {"detail": "Too Many Requests"}
    assert (await customer.get("/health")).status_code == 200
