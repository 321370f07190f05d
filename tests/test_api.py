"""HTTP-level tests: authentication, registration, admin guard and the full job flow."""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.models.job import Job
from servicehub.models.user import UserType
from tests.conftest import (
    auth_headers,
    drain_tasks,
    make_category,
    make_matched_job,
    make_service_chat,
    make_user,
    make_user_data,
)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_missing_auth_header(client: AsyncClient) -> None:
    resp = await client.get("/users/me")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Missing authentication headers"


@pytest.mark.asyncio
async def test_wrong_auth_scheme(client: AsyncClient) -> None:
    resp = await client.get("/users/me", headers={"Authorization": "Basic dXNlcjpwYXNz"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid authorization scheme"


@pytest.mark.asyncio
async def test_unknown_token(client: AsyncClient) -> None:
    resp = await client.get("/users/me", headers={"Authorization": "Bearer not-a-session"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid or expired session"


@pytest.mark.asyncio
async def test_admin_routes_require_admin(client: AsyncClient, db_session: AsyncSession) -> None:
    customer = await make_user(db_session)
    resp = await client.post(
        "/admin/categories", json={"name": "Roofing"}, headers=await auth_headers(db_session, customer)
    )
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Admin access required"


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_register_customer_is_approved(client: AsyncClient) -> None:
    resp = await client.post("/users", json=make_user_data("customer"))
    assert resp.status_code == 201
    body = resp.json()
    assert body["user"]["user_type"] == "customer"
    assert body["user"]["approval_status"] == "approved"
    assert body["access_token"]

    me = await client.get("/users/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["user_id"] == body["user"]["user_id"]


@pytest.mark.asyncio
async def test_register_worker_is_pending(client: AsyncClient) -> None:
    resp = await client.post("/users", json=make_user_data("worker"))
    assert resp.status_code == 201
    assert resp.json()["user"]["approval_status"] == "pending"


@pytest.mark.asyncio
async def test_register_duplicate_phone(client: AsyncClient) -> None:
    data = make_user_data(phone="+15550001111")
    assert (await client.post("/users", json=data)).status_code == 201

    resp = await client.post("/users", json={**data, "name": "Someone Else"})
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Phone number already registered"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"phone": "not-a-phone", "name": "X", "user_type": "customer"},
        {"phone": "+15550002222", "name": "", "user_type": "customer"},
        {"phone": "+15550003333", "name": "X", "user_type": "admin"},
    ],
)
async def test_register_rejects_bad_payload(client: AsyncClient, payload: dict) -> None:
    resp = await client.post("/users", json=payload)
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Chats and messages
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_open_service_chat_is_idempotent(client: AsyncClient, db_session: AsyncSession) -> None:
    category = await make_category(db_session)
    customer = await make_user(db_session)
    headers = await auth_headers(db_session, customer)

    first = await client.post("/chats/service", json={"category_id": str(category.category_id)}, headers=headers)
    second = await client.post("/chats/service", json={"category_id": str(category.category_id)}, headers=headers)

    assert first.status_code == 200
    assert first.json()["chat_id"] == second.json()["chat_id"]
    assert first.json()["kind"] == "service"

    messages = await client.get(f"/chats/{first.json()['chat_id']}/messages", headers=headers)
    assert sorted(m["metadata"]["messageKey"] for m in messages.json()) == ["voice_instruction", "welcome"]


@pytest.mark.asyncio
async def test_post_message_and_receipts(client: AsyncClient, db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    customer_headers = await auth_headers(db_session, m.customer)
    worker_headers = await auth_headers(db_session, m.worker)

    resp = await client.post(
        f"/chats/{m.service_chat.chat_id}/messages",
        json={"bubble_type": "text", "content": "Is Tuesday ok?"},
        headers=customer_headers,
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["message"]["status"] == "sent"
    assert len(body["mirrored_message_ids"]) == 1
    copy_id = body["mirrored_message_ids"][0]

    delivered = await client.post("/messages/delivered", json={"message_ids": [copy_id]}, headers=worker_headers)
    assert delivered.json() == {"updated": 1}
    read = await client.post("/messages/read", json={"message_ids": [copy_id]}, headers=worker_headers)
    assert read.json() == {"updated": 1}
    # The sender cannot mark their own message
    own = await client.post(
        "/messages/read", json={"message_ids": [body["message"]["message_id"]]}, headers=customer_headers
    )
    assert own.json() == {"updated": 0}


@pytest.mark.asyncio
async def test_system_bubbles_cannot_be_posted(client: AsyncClient, db_session: AsyncSession) -> None:
    category = await make_category(db_session)
    customer = await make_user(db_session)
    chat = await make_service_chat(db_session, customer, category)

    resp = await client.post(
        f"/chats/{chat.chat_id}/messages",
        json={"bubble_type": "bid", "content": "free money"},
        headers=await auth_headers(db_session, customer),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_user_metadata_is_validated(client: AsyncClient, db_session: AsyncSession) -> None:
    category = await make_category(db_session)
    customer = await make_user(db_session)
    chat = await make_service_chat(db_session, customer, category)

    resp = await client.post(
        f"/chats/{chat.chat_id}/messages",
        json={"bubble_type": "voice", "content": "https://cdn.example.com/v.m4a",
              "metadata": {"isSystemGenerated": True}},
        headers=await auth_headers(db_session, customer),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_other_users_chat_is_hidden(client: AsyncClient, db_session: AsyncSession) -> None:
    category = await make_category(db_session)
    owner = await make_user(db_session)
    chat = await make_service_chat(db_session, owner, category)
    stranger = await make_user(db_session, name="Stranger")

    resp = await client.get(f"/chats/{chat.chat_id}", headers=await auth_headers(db_session, stranger))
    assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_pricing_check_endpoint(client: AsyncClient, db_session: AsyncSession) -> None:
    admin = await make_user(db_session, is_admin=True)
    headers = await auth_headers(db_session, admin)
    top = (await client.post("/admin/categories", json={"name": "Electrical"}, headers=headers)).json()
    sub = (await client.post(
        "/admin/categories", json={"name": "Sockets", "parent_id": top["category_id"]}, headers=headers
    )).json()
    pricing = await client.put(
        f"/admin/categories/{sub['category_id']}/pricing",
        json={"baseline_price": "100.00", "min_percentage": 75},
        headers=headers,
    )
    assert pricing.status_code == 200

    low = await client.get(f"/categories/{sub['category_id']}/pricing/check", params={"amount": "74.99"})
    assert low.json()["is_valid"] is False
    assert low.json()["message"] == "Bid must be at least 75 (75% of baseline 100)"
    ok = await client.get(f"/categories/{sub['category_id']}/pricing/check", params={"amount": "75"})
    assert ok.json()["is_valid"] is True

    listed = await client.get(f"/categories/{top['category_id']}/subcategories")
    assert [c["name"] for c in listed.json()] == ["Sockets"]


@pytest.mark.asyncio
async def test_unknown_category_is_404(client: AsyncClient) -> None:
    resp = await client.get(f"/categories/{uuid.uuid4()}/pricing/check", params={"amount": "10"})
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_full_job_flow_over_http(client: AsyncClient, db_session: AsyncSession) -> None:
    admin_headers = await auth_headers(db_session, await make_user(db_session, is_admin=True))

    top = (await client.post("/admin/categories", json={"name": "Plumbing"}, headers=admin_headers)).json()
    sub = (await client.post(
        "/admin/categories", json={"name": "Leaks", "parent_id": top["category_id"]}, headers=admin_headers
    )).json()

    customer = (await client.post("/users", json=make_user_data("customer"))).json()
    worker = (await client.post("/users", json=make_user_data("worker"))).json()
    customer_headers = {"Authorization": f"Bearer {customer['access_token']}"}
    worker_headers = {"Authorization": f"Bearer {worker['access_token']}"}
    worker_id = worker["user"]["user_id"]

    # Vet the worker
    approval = await client.put(
        f"/admin/workers/{worker_id}/approval", json={"approval_status": "approved"}, headers=admin_headers
    )
    assert approval.json()["approval_status"] == "approved"
    credit = await client.post(f"/admin/workers/{worker_id}/balance", json={"amount": "25.00"}, headers=admin_headers)
    assert credit.json()["balance"] == "25.00"
    for category_id in (top["category_id"], sub["category_id"]):
        skill = await client.post(
            f"/admin/workers/{worker_id}/skills", json={"category_id": category_id}, headers=admin_headers
        )
        assert skill.status_code == 201

    # Customer describes the job in the service chat
    chat = (await client.post(
        "/chats/service", json={"category_id": top["category_id"]}, headers=customer_headers
    )).json()
    for bubble in (
        {"bubble_type": "voice", "content": "https://cdn.example.com/v/1.m4a", "metadata": {"duration": 9}},
        {"bubble_type": "date", "content": "2026-11-03"},
    ):
        sent = await client.post(f"/chats/{chat['chat_id']}/messages", json=bubble, headers=customer_headers)
        assert sent.status_code == 201

    created = await client.post(
        "/jobs",
        json={"chat_id": chat["chat_id"], "location_lat": 52.1, "location_lng": 5.1, "price_floor": "40.00"},
        headers=customer_headers,
    )
    assert created.status_code == 201
    job_id = created.json()["job_id"]
    assert created.json()["status"] == "posted"
    assert created.json()["voice_duration"] == 9

    # Categorization: the only eligible worker forms a group of one
    await drain_tasks(db_session)
    queue = await client.get("/workers/me/categorization-jobs", headers=worker_headers)
    assert [j["job_id"] for j in queue.json()] == [job_id]
    vote = await client.post(
        f"/jobs/{job_id}/categorizations", json={"subcategory_id": sub["category_id"]}, headers=worker_headers
    )
    assert vote.status_code == 201
    assert vote.json()["result"] == "majority"
    assert vote.json()["bidders_notified"] == 1

    # Bid and accept
    bid = await client.post(f"/jobs/{job_id}/bids", json={"amount": "60.00"}, headers=worker_headers)
    assert bid.status_code == 201
    assert bid.json()["total_amount"] == "66.00"
    listing = await client.get(f"/jobs/{job_id}/bids", headers=customer_headers)
    assert [b["bid_id"] for b in listing.json()] == [bid.json()["bid_id"]]
    accepted = await client.post(f"/bids/{bid.json()['bid_id']}/accept", headers=customer_headers)
    assert accepted.status_code == 200
    conversation_id = accepted.json()["conversation_chat_id"]

    # Start code
    await drain_tasks(db_session)
    job = await db_session.get(Job, uuid.UUID(job_id))
    await db_session.refresh(job)
    started = await client.post(
        f"/jobs/{job_id}/onboarding-code/validate", json={"code": job.onboarding_code}, headers=worker_headers
    )
    assert started.json()["transition_scheduled"] == "in_progress"
    await drain_tasks(db_session)
    assert (await client.get(f"/jobs/{job_id}", headers=customer_headers)).json()["status"] == "in_progress"

    # Completion
    done = await client.post(
        f"/chats/{conversation_id}/messages", json={"bubble_type": "text", "content": "*1#"}, headers=worker_headers
    )
    assert done.status_code == 201
    assert done.json()["completion_flow_started"] is True
    assert done.json()["message"] is None
    await db_session.refresh(job)
    completed = await client.post(
        f"/jobs/{job_id}/completion-code/validate", json={"code": job.completion_code}, headers=worker_headers
    )
    assert completed.json()["transition_scheduled"] == "completed"
    await drain_tasks(db_session)
    final = (await client.get(f"/jobs/{job_id}", headers=worker_headers)).json()
    assert final["status"] == "completed"

    # Ratings
    rating = await client.post(
        f"/jobs/{job_id}/ratings", json={"rating": 5, "review_text": "Spotless"}, headers=customer_headers
    )
    assert rating.status_code == 201
    summary = await client.get(f"/users/{worker_id}/ratings", headers=customer_headers)
    assert summary.json()["average_rating"] == "5.0"
    assert summary.json()["rating_count"] == 1


@pytest.mark.asyncio
async def test_customer_cannot_bid_over_http(client: AsyncClient, db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    other_customer = await make_user(db_session, UserType.CUSTOMER, name="Other")

    resp = await client.post(
        f"/jobs/{m.job.job_id}/bids", json={"amount": "50"}, headers=await auth_headers(db_session, other_customer)
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_cancel_over_http(client: AsyncClient, db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)

    resp = await client.post(
        f"/jobs/{m.job.job_id}/cancel",
        json={"reason": "Fixed it myself", "clear_chat": False},
        headers=await auth_headers(db_session, m.customer),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["cancelled_at_phase"] == "matched"

    again = await client.post(
        f"/jobs/{m.job.job_id}/cancel", json={}, headers=await auth_headers(db_session, m.customer)
    )
    assert again.status_code == 409
