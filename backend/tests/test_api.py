"""HTTP surface: routing, caller identity headers and error mapping."""

import pytest
import pytest_asyncio

from tests.factories import case_row, email_row, seed

CLIENT = "ion@client.ro"
HEADERS = {"X-User-Id": "user-1", "X-Firm-Id": "firm-1"}
OTHER_FIRM = {"X-User-Id": "user-9", "X-Firm-Id": "firm-9"}


@pytest_asyncio.fixture
async def seeded(session_factory):
    await seed(
        session_factory,
        case_row("case-a", actor_emails=(CLIENT,), reference_numbers=["1234/3/2024"], keywords=["chirie"]),
        case_row("case-b", keywords=["divort"]),
        case_row("case-x", client_id="client-9", firm_id="firm-9"),
        email_row("e1", subject="Dosar 1234/3/2024 chirie", sender=CLIENT),
        email_row("e2", subject="divort", sender="x@unknown.ro"),
        email_row("e3", subject="Salut", sender="y@unknown.ro"),
    )
    return session_factory


async def _queue_ids(client):
    response = await client.get("/api/review/queue", headers=HEADERS)
    return [item["id"] for item in response.json()["items"]]


@pytest.mark.asyncio
async def test_root_and_health(client):
    assert (await client.get("/")).json()["status"] == "running"
    assert (await client.get("/health")).json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_caller_headers_are_required(client):
    response = await client.get("/api/review/count")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_classify_then_review_flow(seeded, client):
    response = await client.post(
        "/api/classify/clients/client-1", json={"email_ids": ["e1", "e2", "e3"]}, headers=HEADERS
    )
    assert response.status_code == 200
    assert response.json() == {"processed": 3, "auto_assigned": 1, "queued": 2, "failed": 0}

    count = await client.get("/api/review/count", headers=HEADERS)
    assert count.json() == {"count": 2}

    queue = await client.get("/api/review/queue", headers=HEADERS)
    body = queue.json()
    assert body["total"] == 2
    assert not body["has_more"]
    assert {item["email"]["id"] for item in body["items"]} == {"e2", "e3"}

    filtered = await client.get("/api/review/queue", params={"reason": "UnknownContact"}, headers=HEADERS)
    assert [item["email_id"] for item in filtered.json()["items"]] == ["e3"]

    pending_id = next(item["id"] for item in body["items"] if item["email_id"] == "e2")
    assigned = await client.post(
        f"/api/review/{pending_id}/assign", json={"case_id": "case-b"}, headers=HEADERS
    )
    assert assigned.status_code == 200
    assert assigned.json()["to_case_id"] == "case-b"
    assert assigned.json()["match_type"] == "Manual"

    again = await client.post(f"/api/review/{pending_id}/assign", json={"case_id": "case-b"}, headers=HEADERS)
    assert again.status_code == 409

    history = await client.get("/api/review/emails/e2/history", headers=HEADERS)
    assert [entry["action"] for entry in history.json()] == ["Assigned"]


@pytest.mark.asyncio
async def test_error_mapping(seeded, client):
    await client.post("/api/classify/clients/client-1", json={"email_ids": ["e3"]}, headers=HEADERS)
    (pending_id,) = await _queue_ids(client)

    missing = await client.post("/api/review/missing/assign", json={"case_id": "case-a"}, headers=HEADERS)
    assert missing.status_code == 404

    foreign = await client.post(f"/api/review/{pending_id}/dismiss", headers=OTHER_FIRM)
    assert foreign.status_code == 403

    wrong_case = await client.post(f"/api/review/{pending_id}/assign", json={"case_id": "case-x"}, headers=HEADERS)
    assert wrong_case.status_code == 403


@pytest.mark.asyncio
async def test_bulk_assign_and_dismiss(seeded, client):
    await client.post("/api/classify/clients/client-1", json={"email_ids": ["e2", "e3"]}, headers=HEADERS)
    ids = await _queue_ids(client)

    bulk = await client.post(
        "/api/review/bulk-assign",
        json={"pending_ids": ids[:1] + ["bogus"], "case_id": "case-a"},
        headers=HEADERS,
    )
    assert bulk.json() == {"assigned_count": 1, "errors": ["bogus: Pending classification bogus not found"]}

    dismissed = await client.post(f"/api/review/{ids[1]}/dismiss", json={"reason": "Newsletter"}, headers=HEADERS)
    assert dismissed.json()["action"] == "Unassigned"
    assert dismissed.json()["correction_reason"] == "Newsletter"

    stats = await client.get("/api/review/stats", params={"period": "DAY"}, headers=HEADERS)
    assert stats.json()["manually_reviewed"] == 1
    assert stats.json()["pending_review"] == 0

    bad_period = await client.get("/api/review/stats", params={"period": "YEAR"}, headers=HEADERS)
    assert bad_period.status_code == 422


@pytest.mark.asyncio
async def test_preview(seeded, client):
    response = await client.post(
        "/api/classify/preview", json={"case_id": "case-a", "addresses": [CLIENT]}, headers=HEADERS
    )
    assert response.status_code == 200
    body = response.json()
    assert body["total_emails"] == 1
    assert body["classifications"][0]["suggested_case_id"] == "case-a"
    assert body["classifications"][0]["match_type"] == "REFERENCE"
    assert [s["case_id"] for s in body["by_case"]] == ["case-a", "case-b"]

    forbidden = await client.post(
        "/api/classify/preview", json={"case_id": "case-x", "addresses": [CLIENT]}, headers=HEADERS
    )
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_move_and_ignore_imported_emails(seeded, client):
    await client.post("/api/classify/clients/client-1", json={"email_ids": ["e1", "e3"]}, headers=HEADERS)

    moved = await client.post(
        "/api/review/emails/e1/move", json={"case_id": "case-b", "reason": "Wrong case"}, headers=HEADERS
    )
    assert moved.status_code == 200
    assert moved.json()["action"] == "Moved"
    assert (moved.json()["from_case_id"], moved.json()["to_case_id"]) == ("case-a", "case-b")

    stats = await client.get("/api/review/stats", params={"period": "DAY"}, headers=HEADERS)
    assert stats.json()["moved_after_import"] == 1
    assert stats.json()["ai_accuracy"] == 0.0

    ignored = await client.post("/api/review/emails/e3/ignore", headers=HEADERS)
    assert ignored.json()["action"] == "Ignored"
    assert (await client.get("/api/review/count", headers=HEADERS)).json() == {"count": 0}

    foreign = await client.post("/api/review/emails/e1/move", json={"case_id": "case-x"}, headers=HEADERS)
    assert foreign.status_code == 403
    missing = await client.post("/api/review/emails/nope/ignore", json={"reason": "x"}, headers=HEADERS)
    assert missing.status_code == 404
