import pytest
from fastapi.testclient import TestClient

from conftest import make_user

from campus_escrow.core.security import create_access_token
from campus_escrow.db.session import get_store
from campus_escrow.main import create_app


@pytest.fixture
def api(store):
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    return TestClient(app)


def auth(user, **extra):
    token = create_access_token(user.id, {"role": user.role})
    return {"Authorization": f"Bearer {token}", **extra}


def _contracted_project(api, client_user, student, *, price=500):
    pr = api.post(
        "/api/v1/projects",
        headers=auth(client_user),
        json={
            "title": "Club website",
            "milestones": [{"title": "Design", "percentage": 40}, {"title": "Build", "percentage": "60"}],
        },
    )
    assert pr.status_code == 201
    pid = pr.json()["projectId"]
    assert pr.json()["status"] == "draft"

    assert api.post(f"/api/v1/projects/{pid}/publish", headers=auth(client_user)).json()["status"] == "open"

    bid = api.post(
        f"/api/v1/projects/{pid}/bids",
        headers=auth(student),
        json={"price": price, "etaDays": 10, "pitch": "Two years of web work"},
    )
    assert bid.status_code == 201

    accepted = api.post(f"/api/v1/bids/{bid.json()['bidId']}/accept", headers=auth(client_user))
    assert accepted.status_code == 200
    return pid, accepted.json()


def test_full_contract_flow(api, store, client_user, student, student2):
    pid, accepted = _contracted_project(api, client_user, student)
    assert accepted["contract"]["totalAmount"] == 500
    assert [m["share"] for m in accepted["milestones"]] == [200, 300]
    assert accepted["rejectedBidIds"] == []
    first = accepted["milestones"][0]["milestoneId"]

    dep = api.post(
        f"/api/v1/projects/{pid}/escrow/deposit",
        headers=auth(client_user, **{"Idempotency-Key": "dep-1"}),
        json={"amount": 500},
    )
    assert dep.status_code == 200
    assert dep.json()["escrowBalance"] == 500
    again = api.post(
        f"/api/v1/projects/{pid}/escrow/deposit",
        headers=auth(client_user, **{"Idempotency-Key": "dep-1"}),
        json={"amount": 500},
    )
    assert again.json()["replayed"] is True
    assert again.json()["transactionId"] == dep.json()["transactionId"]
    assert api.get(f"/api/v1/projects/{pid}/escrow", headers=auth(client_user)).json()["escrowBalance"] == 500

    assert api.post(f"/api/v1/milestones/{first}/start", headers=auth(student)).json()["status"] == "in_progress"
    submitted = api.post(
        f"/api/v1/milestones/{first}/submit",
        headers=auth(student),
        json={"artifacts": [{"url": "https://example.test/mockups"}], "note": "first pass"},
    )
    assert submitted.json()["status"] == "submitted"

    approved = api.post(f"/api/v1/projects/{pid}/escrow/milestones/{first}/approve", headers=auth(client_user))
    assert approved.json()["status"] == "approved"
    released = api.post(f"/api/v1/projects/{pid}/escrow/milestones/{first}/release", headers=auth(client_user))
    assert released.status_code == 200
    assert released.json()["releaseAmount"] == 200
    assert released.json()["contractStatusAfter"] == "active"

    wallet = api.get("/api/v1/wallet", headers=auth(student)).json()
    assert wallet["balance"] == 200

    txns = api.get(f"/api/v1/projects/{pid}/transactions", headers=auth(client_user))
    assert sorted(t["type"] for t in txns.json()["transactions"]) == ["escrow_fund", "milestone_release"]
    hidden = api.get(f"/api/v1/projects/{pid}/transactions", headers=auth(student2))
    assert hidden.status_code == 403
    assert hidden.json()["code"] == "forbidden"

    notices = api.get("/api/v1/notifications", headers=auth(client_user))
    assert notices.status_code == 200


def test_error_bodies_carry_code_and_message(api, client_user, student):
    missing = api.get("/api/v1/projects/does-not-exist", headers=auth(client_user))
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"
    assert missing.json()["message"]

    forbidden = api.post("/api/v1/projects", headers=auth(student), json={"title": "Not allowed"})
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "forbidden"

    pid, accepted = _contracted_project(api, client_user, student)
    first = accepted["milestones"][0]["milestoneId"]
    early = api.post(f"/api/v1/projects/{pid}/escrow/milestones/{first}/release", headers=auth(client_user))
    assert early.status_code == 409
    assert early.json()["code"] == "invalid_state"

    broke = api.post("/api/v1/wallet/withdraw", headers=auth(student), json={"amount": 10})
    assert broke.status_code == 409
    assert broke.json()["code"] == "insufficient_funds"

    malformed = api.post("/api/v1/projects", headers=auth(client_user), json={"milestones": []})
    assert malformed.status_code == 422
    assert malformed.json()["code"] == "invalid_state"
    assert "title" in malformed.json()["message"]
    assert malformed.json()["details"]["errors"]


def test_dispute_resolution_over_http(api, client_user, student, admin):
    pid, _ = _contracted_project(api, client_user, student)
    api.post(f"/api/v1/projects/{pid}/escrow/deposit", headers=auth(client_user), json={"amount": 500})

    opened = api.post(f"/api/v1/projects/{pid}/disputes", headers=auth(student), json={"reason": "Client went silent"})
    assert opened.status_code == 201
    dispute_id = opened.json()["disputeId"]

    bad = api.post(
        f"/api/v1/admin/disputes/{dispute_id}/resolve",
        headers=auth(admin),
        json={"outcome": {"kind": "coin_flip"}},
    )
    assert bad.status_code == 422
    assert bad.json()["code"] == "invalid_state"

    not_admin = api.post(
        f"/api/v1/admin/disputes/{dispute_id}/resolve",
        headers=auth(client_user),
        json={"outcome": {"kind": "refund_client", "amount": 500}},
    )
    assert not_admin.status_code == 403

    resolved = api.post(
        f"/api/v1/admin/disputes/{dispute_id}/resolve",
        headers=auth(admin),
        json={"outcome": {"kind": "split", "clientAmount": 300, "assigneeAmount": 200}},
    )
    assert resolved.status_code == 200
    assert len(resolved.json()["transactionIds"]) == 2

    dispute = api.get(f"/api/v1/disputes/{dispute_id}", headers=auth(student)).json()
    assert dispute["status"] == "resolved"
    assert dispute["outcome"] == {"kind": "split", "client_amount": 300, "assignee_amount": 200}
    assert api.get(f"/api/v1/projects/{pid}", headers=auth(client_user)).json()["status"] == "completed"

    report = api.post("/api/v1/admin/reconciliation", headers=auth(admin)).json()
    assert report["ok"] is True
    assert report["mismatches"] == []


def test_withdraw_replays_with_idempotency_key(api, store):
    rich = make_user(store, "student", wallet=400)
    headers = auth(rich, **{"Idempotency-Key": "payout-7"})

    first = api.post("/api/v1/wallet/withdraw", headers=headers, json={"amount": 150})
    second = api.post("/api/v1/wallet/withdraw", headers=headers, json={"amount": 150})

    assert first.json()["walletBalance"] == 250
    assert second.json()["replayed"] is True
    assert second.json()["walletBalance"] == 250

    empty = api.post("/api/v1/wallet/withdraw", headers=auth(rich, **{"Idempotency-Key": "  "}), json={"amount": 1})
    assert empty.status_code == 400


def test_admin_reads_project_audit_trail(api, client_user, student, admin):
    pid, _ = _contracted_project(api, client_user, student)
    api.post(f"/api/v1/projects/{pid}/escrow/deposit", headers=auth(client_user), json={"amount": 500})

    trail = api.get(f"/api/v1/admin/projects/{pid}/audit", headers=auth(admin))
    assert trail.status_code == 200
    deposits = [r for r in trail.json() if r["action"] == "ESCROW_DEPOSIT"]
    assert len(deposits) == 1
    assert deposits[0]["actorId"] == client_user.id
    assert deposits[0]["payload"] == {"amount": 500, "escrow_balance": 500}
    assert deposits[0]["payloadHash"]

    assert api.get(f"/api/v1/admin/projects/{pid}/audit", headers=auth(client_user)).status_code == 403
    missing = api.get("/api/v1/admin/projects/nope/audit", headers=auth(admin))
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"
