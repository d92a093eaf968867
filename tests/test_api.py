import random

import pytest

from app.api.match import get_matching_service
from app.main import app
from app.models.lead import PRIVATE_LEAD_FIELDS
from app.services.geocoding_service import GeocodingService
from app.services.matching_service import MatchingService
from app.services.purchase_service import UNAVAILABLE_MESSAGE

from conftest import auth_headers, make_project, make_scan

AUSTIN = {"street": "500 Congress Ave", "city": "Austin", "state": "TX", "zip": "78701"}


@pytest.fixture
def seeded_matching(client, session_factory):
    def override():
        db = session_factory()
        try:
            yield MatchingService(db, geocoder=GeocodingService(rng=random.Random(3)))
        finally:
            db.close()

    app.dependency_overrides[get_matching_service] = override
    yield
    app.dependency_overrides.pop(get_matching_service, None)


# ---------------------------------------------------------
# ERROR SHAPES
# ---------------------------------------------------------
def test_health(client) -> None:
    assert client.get("/").json() == {"status": "running"}


def test_unauthenticated_create_is_401(client) -> None:
    response = client.post("/api/leads", json={"title": "Ramp", "location": "Austin, TX"})

    assert response.status_code == 401
    assert response.json()["errorCode"] == "UNAUTHORIZED"


def test_bad_token_is_401(client) -> None:
    response = client.get("/api/me/leads", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_malformed_body_is_validation_failed(client, homeowner) -> None:
    response = client.post("/api/match", json={"projectId": 1}, headers=auth_headers(homeowner))

    assert response.status_code == 400
    body = response.json()
    assert body["errorCode"] == "VALIDATION_FAILED"
    assert "address" in body["message"]


def test_missing_title_is_validation_failed(client, homeowner) -> None:
    response = client.post("/api/leads", json={"location": "Austin, TX"}, headers=auth_headers(homeowner))

    assert response.status_code == 400
    assert response.json() == {"errorCode": "VALIDATION_FAILED", "message": "Title and location are required"}


def test_lock_without_idempotency_key(client, homeowner, contractor) -> None:
    lead = client.post(
        "/api/leads", json={"title": "Ramp", "location": "Austin, TX"}, headers=auth_headers(homeowner)
    ).json()

    response = client.post(f"/api/leads/{lead['id']}/lock", headers=auth_headers(contractor))

    assert response.status_code == 400
    assert response.json()["errorCode"] == "MISSING_IDEMPOTENCY_KEY"


def test_cookie_token_is_accepted(client, homeowner) -> None:
    token = auth_headers(homeowner)["Authorization"].replace("Bearer ", "")
    client.cookies.set("access_token", token)
    try:
        assert client.get("/api/me/leads").status_code == 200
    finally:
        client.cookies.clear()


# ---------------------------------------------------------
# FULL MARKETPLACE FLOW
# ---------------------------------------------------------
def test_marketplace_flow(client, db, seeded_matching, homeowner, contractor, other_contractor) -> None:
    owner, xavier, yolanda = auth_headers(homeowner), auth_headers(contractor), auth_headers(other_contractor)
    project = make_project(db, homeowner, recommendations=[
        {"recommendation": "Install grab bars in the bathroom", "priority": "High"},
    ])

    # 1. Matching
    matched = client.post(
        "/api/match", json={"projectId": project.id, "address": AUSTIN, "urgency": "high"}, headers=owner
    )
    assert matched.status_code == 200
    assert matched.json()["matchCount"] == 1

    # 2. Lead listing, dedup and public feed
    payload = {"title": "Bathroom safety upgrade", "location": "Austin, TX", "projectId": project.id, "price": 80}
    created = client.post("/api/leads", json=payload, headers=owner)
    assert created.status_code == 201
    lead_id = created.json()["id"]
    assert created.json()["homeowner_id"] == homeowner.id

    duplicate = client.post("/api/leads", json=payload, headers=owner)
    assert duplicate.status_code == 409
    assert duplicate.json()["errorCode"] == "DUPLICATE_LEAD"

    feed = client.get("/api/leads").json()
    assert [lead["id"] for lead in feed] == [lead_id]
    assert not set(PRIVATE_LEAD_FIELDS) & set(feed[0])

    # 3. Views are counted after the response
    assert client.post(f"/api/leads/{lead_id}/view", headers=xavier).json()["success"] is True
    assert client.get(f"/api/leads/{lead_id}/view").json()["view_count"] == 1

    # 4. Lock and purchase
    locked = client.post(f"/api/leads/{lead_id}/lock", headers={**xavier, "Idempotency-Key": "k-1"})
    assert locked.status_code == 200
    assert locked.json()["clientSecret"].startswith("mock_secret_")

    blocked = client.post(f"/api/leads/{lead_id}/lock", headers={**yolanda, "Idempotency-Key": "k-2"})
    assert blocked.status_code == 409
    assert blocked.json()["errorCode"] == "LEAD_LOCKED"

    bought = client.post(f"/api/leads/{lead_id}/purchase", headers=xavier)
    assert bought.status_code == 200
    assert bought.json()["status"] == "PURCHASED"

    too_late = client.post(f"/api/leads/{lead_id}/lock-and-purchase", headers={**yolanda, "Idempotency-Key": "k-3"})
    assert too_late.status_code == 409
    assert too_late.json()["success"] is False
    assert too_late.json()["error"] == UNAVAILABLE_MESSAGE

    assert client.get("/api/leads").json() == []
    assert [lead["id"] for lead in client.get("/api/me/leads", headers=xavier).json()] == [lead_id]

    matches = client.get(f"/api/match?projectId={project.id}", headers=owner).json()["matches"]
    assert len(matches) == 1
    assert matches[0]["status"] == "lead_purchased"
    assert matches[0]["profiles"]["full_name"] == "Xavier"
    match_id = matches[0]["id"]

    # 5. Proposal
    draft = client.get(f"/api/proposals/draft?matchId={match_id}", headers=xavier).json()
    assert draft["line_items"][0]["price"] == 150

    sent = client.post(
        "/api/proposals",
        json={
            "matchId": match_id,
            "lineItems": [{"description": "Walk-in shower conversion", "price": 2800, "quantity": 1}],
            "estimatedDuration": "3 weeks",
        },
        headers=xavier,
    )
    assert sent.status_code == 201
    proposal = sent.json()
    assert proposal["total_amount_cents"] == 280000
    assert proposal["status"] == "sent"

    read = client.get(f"/api/proposals/{proposal['id']}", headers=owner).json()
    assert read["status"] == "viewed"

    forbidden = client.get(f"/api/proposals/{proposal['id']}", headers=yolanda)
    assert forbidden.status_code == 403

    accepted = client.post(f"/api/proposals/{proposal['id']}/respond", json={"accept": True}, headers=owner)
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "accepted"

    # 6. Work starts and completes
    mine = client.get("/api/me/leads", headers=owner).json()
    assert mine[0]["status"] == "IN_PROGRESS"

    done = client.post(
        f"/api/leads/{lead_id}/status",
        json={"fromStatus": "IN_PROGRESS", "toStatus": "COMPLETED", "currentStage": "Done"},
        headers=xavier,
    )
    assert done.status_code == 200
    assert done.json()["status"] == "COMPLETED"
    assert done.json()["progress"] == 100

    stale = client.post(
        f"/api/leads/{lead_id}/status",
        json={"fromStatus": "IN_PROGRESS", "toStatus": "COMPLETED"},
        headers=xavier,
    )
    assert stale.status_code == 409
    assert stale.json()["errorCode"] == "LEAD_STATUS_CONFLICT"


def test_lock_and_release_hide_homeowner_details(client, db, homeowner, contractor) -> None:
    scan = make_scan(db, homeowner)
    lead = client.post(
        "/api/leads",
        json={"title": "Stair lift", "location": "Denver, CO", "scanId": scan.id},
        headers=auth_headers(homeowner),
    ).json()

    locked = client.post(f"/api/leads/{lead['id']}/lock", headers={**auth_headers(contractor), "Idempotency-Key": "k-1"})
    assert locked.status_code == 200
    assert locked.json()["lead"]["status"] == "LOCKED"
    assert not set(PRIVATE_LEAD_FIELDS) & set(locked.json()["lead"])

    released = client.delete(f"/api/leads/{lead['id']}/lock", headers=auth_headers(contractor))
    assert released.status_code == 200
    assert released.json()["status"] == "AVAILABLE"
    assert not set(PRIVATE_LEAD_FIELDS) & set(released.json())
