import pytest_asyncio

from app.main import app
from app.core.config import settings
from app.core.payment_gateway import get_payment_gateway

REVIEW_TEXT = "Excellent work, delivered exactly what we asked for."


@pytest_asyncio.fixture
async def parties(make_user, headers_for):
    client = await make_user("client", "Clara Client")
    expert_a = await make_user("expert", "Anna Expert")
    expert_b = await make_user("expert", "Ben Expert")
    return {
        "client": (client, headers_for(client)),
        "a": (expert_a, headers_for(expert_a)),
        "b": (expert_b, headers_for(expert_b)),
    }


async def create_open_posting(api, headers, **overrides):
    body = {
        "title": "Brand identity refresh",
        "description": "New logo, colors and typography",
        "budgetType": "range",
        "budgetMin": 200000,
        "budgetMax": 400000,
        "currency": "CHF",
        "status": "open",
    }
    body.update(overrides)
    res = await api.post("/postings", json=body, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["data"]


async def submit_proposal(api, posting_id, headers, price):
    res = await api.post(
        f"/postings/{posting_id}/proposals",
        json={"coverLetter": "I can do this.", "proposedPrice": price, "currency": "chf"},
        headers=headers,
    )
    assert res.status_code == 201, res.text
    return res.json()["data"]


async def notify_payment(api, session_id, status="succeeded", secret=None):
    return await api.post(
        "/payments/webhook",
        json={"sessionId": session_id, "status": status},
        headers={"X-Webhook-Secret": secret or settings.PAYMENT_WEBHOOK_SECRET},
    )


async def test_posting_to_review_scenario(api, parties):
    expert_a, a_headers = parties["a"]
    expert_b, b_headers = parties["b"]
    _, client_headers = parties["client"]

    posting = await create_open_posting(api, client_headers)
    assert posting["status"] == "open"
    assert posting["currency"] == "chf"

    proposal_a = await submit_proposal(api, posting["postingId"], a_headers, 300000)
    proposal_b = await submit_proposal(api, posting["postingId"], b_headers, 250000)

    # 發案方接受 A
    res = await api.post(f"/postings/proposals/{proposal_a['proposalId']}/accept", headers=client_headers)
    assert res.status_code == 201, res.text
    engagement = res.json()["data"]
    assert engagement["status"] == "accepted"
    assert engagement["price"] == 300000
    assert engagement["currency"] == "chf"
    assert engagement["revisionsAllowed"] == 2
    engagement_id = engagement["engagementId"]

    res = await api.get(f"/postings/{posting['postingId']}/proposals", headers=client_headers)
    listed = {p["proposalId"]: p for p in res.json()["data"]}
    assert listed[proposal_a["proposalId"]]["status"] == "accepted"
    assert listed[proposal_b["proposalId"]]["status"] == "rejected"
    assert listed[proposal_b["proposalId"]]["expert"]["fullName"] == "Ben Expert"

    res = await api.get(f"/postings/{posting['postingId']}")
    assert res.json()["data"]["status"] == "assigned"
    assert res.json()["data"]["assignedExpertId"] == expert_a.user_id

    # 付款
    res = await api.post("/payments/checkout", json={"engagementId": engagement_id}, headers=client_headers)
    assert res.status_code == 201, res.text
    session_id = res.json()["data"]["sessionId"]

    res = await notify_payment(api, session_id)
    assert res.status_code == 200, res.text
    assert res.json()["data"]["status"] == "paid"

    # 工作、交付、修改、驗收
    steps = [
        ("start", a_headers, None, "in_progress"),
        ("deliver", a_headers, {"message": "done"}, "delivered"),
        ("request-revision", client_headers, {"reason": "fix X"}, "revision"),
        ("deliver", a_headers, {"message": "fixed"}, "delivered"),
        ("complete", client_headers, None, "completed"),
    ]
    for action, headers, body, expected in steps:
        res = await api.post(f"/engagements/{engagement_id}/{action}", json=body, headers=headers)
        assert res.status_code == 200, (action, res.text)
        assert res.json()["data"]["status"] == expected

    final = res.json()["data"]
    assert final["revisionsUsed"] == 1
    assert final["completedAt"] is not None

    res = await api.get(f"/postings/{posting['postingId']}")
    assert res.json()["data"]["status"] == "completed"

    # 評價只能送一次
    review_body = {"engagementId": engagement_id, "rating": 5, "content": REVIEW_TEXT}
    res = await api.post("/reviews", json=review_body, headers=client_headers)
    assert res.status_code == 201, res.text
    assert res.json()["data"]["summary"]["totalReviews"] == 1

    res = await api.post("/reviews", json=review_body, headers=client_headers)
    assert res.status_code == 409
    assert res.json() == {
        "success": False,
        "error": "DuplicateReviewError",
        "message": res.json()["message"],
        "data": None,
    }

    res = await api.get(f"/reviews/summary/{expert_a.user_id}")
    summary = res.json()["data"]
    assert summary["averageRating"] == 5.0
    assert summary["distribution"]["5"] == 1

    res = await api.get(f"/engagements/{engagement_id}/activities", headers=client_headers)
    assert len(res.json()["data"]) == 7


async def test_second_accept_conflicts(api, parties):
    _, client_headers = parties["client"]
    posting = await create_open_posting(api, client_headers)
    proposal_a = await submit_proposal(api, posting["postingId"], parties["a"][1], 300000)
    proposal_b = await submit_proposal(api, posting["postingId"], parties["b"][1], 250000)

    res = await api.post(f"/postings/proposals/{proposal_a['proposalId']}/accept", headers=client_headers)
    assert res.status_code == 201

    res = await api.post(
        f"/postings/{posting['postingId']}/proposals/{proposal_b['proposalId']}/accept", headers=client_headers
    )
    assert res.status_code == 409
    assert res.json()["error"] == "AlreadyAssignedError"


async def test_error_envelopes(api, parties):
    _, client_headers = parties["client"]
    _, expert_headers = parties["a"]

    res = await api.post(
        "/postings",
        json={"title": "x", "description": "y", "budgetType": "fixed", "budgetMin": 1000},
        headers=expert_headers,
    )
    assert res.status_code == 403
    assert res.json()["error"] == "NotEligibleError"
    assert res.json()["success"] is False

    res = await api.post("/postings", json={"title": "missing fields"}, headers=client_headers)
    assert res.status_code == 422
    assert res.json()["error"] == "ValidationError"

    res = await api.get("/postings/does-not-exist")
    assert res.status_code == 404
    assert res.json()["error"] == "NotFoundError"

    res = await api.get("/engagements/my")
    assert res.status_code == 401


async def test_patch_rejects_null_for_required_fields(api, parties):
    _, client_headers = parties["client"]
    posting = await create_open_posting(api, client_headers)
    url = f"/postings/{posting['postingId']}"

    for field in ("title", "description", "budgetType", "currency", "isUrgent"):
        res = await api.patch(url, json={field: None}, headers=client_headers)
        assert res.status_code == 422, field
        assert res.json()["error"] == "ValidationError"

    # 省略欄位則維持原值
    res = await api.patch(url, json={"requirements": None, "isUrgent": True}, headers=client_headers)
    assert res.status_code == 200, res.text
    assert res.json()["data"]["title"] == "Brand identity refresh"
    assert res.json()["data"]["isUrgent"] is True


async def test_collection_routes_answer_without_trailing_slash(api, parties):
    expert, _ = parties["a"]
    _, client_headers = parties["client"]

    res = await api.post(
        "/bookings",
        json={"expertId": expert.user_id, "title": "Tax review", "message": "Please review our filings.",
              "proposedBudget": 50000, "currency": "chf"},
        headers=client_headers,
    )
    assert res.status_code == 201, res.text

    res = await api.get("/postings")
    assert res.status_code == 200


async def test_posting_list_is_paginated(api, parties):
    _, client_headers = parties["client"]
    for i in range(3):
        await create_open_posting(api, client_headers, title=f"Posting {i}")

    res = await api.get("/postings", params={"page": 2, "perPage": 2})
    body = res.json()
    assert len(body["data"]) == 1
    assert body["meta"] == {
        "currentPage": 2,
        "perPage": 2,
        "totalItems": 3,
        "totalPages": 2,
        "hasNext": False,
        "hasPrev": True,
    }


async def test_webhook_requires_secret(api, parties):
    _, client_headers = parties["client"]
    posting = await create_open_posting(api, client_headers)
    proposal = await submit_proposal(api, posting["postingId"], parties["a"][1], 300000)
    res = await api.post(f"/postings/proposals/{proposal['proposalId']}/accept", headers=client_headers)
    engagement_id = res.json()["data"]["engagementId"]
    res = await api.post("/payments/checkout", json={"engagementId": engagement_id}, headers=client_headers)
    session_id = res.json()["data"]["sessionId"]

    res = await notify_payment(api, session_id, secret="wrong-secret")
    assert res.status_code == 401
    assert res.json()["success"] is False
    assert res.json()["error"] == "UnauthorizedError"
    assert res.json()["data"] is None

    res = await api.get(f"/engagements/{engagement_id}", headers=client_headers)
    assert res.json()["data"]["status"] == "accepted"

    # 重送的成功通知不會出錯，也不會重複轉移
    assert (await notify_payment(api, session_id)).json()["data"]["status"] == "paid"
    assert (await notify_payment(api, session_id)).json()["data"]["status"] == "paid"


async def test_failed_checkout_returns_payment_failed(api, parties, failing_gateway):
    _, client_headers = parties["client"]
    posting = await create_open_posting(api, client_headers)
    proposal = await submit_proposal(api, posting["postingId"], parties["a"][1], 300000)
    res = await api.post(f"/postings/proposals/{proposal['proposalId']}/accept", headers=client_headers)
    engagement_id = res.json()["data"]["engagementId"]

    app.dependency_overrides[get_payment_gateway] = lambda: failing_gateway
    res = await api.post("/payments/checkout", json={"engagementId": engagement_id}, headers=client_headers)
    assert res.status_code == 402
    assert res.json()["error"] == "PaymentFailedError"

    res = await api.get(f"/engagements/{engagement_id}", headers=client_headers)
    assert res.json()["data"]["status"] == "cancelled"
    assert res.json()["data"]["cancellationReason"] == "payment_failed"
