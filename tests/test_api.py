"""
End-to-end checks through the Flask routes.

These tests never hold an app context open while the client runs; Flask would
reuse it for every request and the logged-in user would leak between calls.
"""
import pytest

from extensions import db
from ledger.service import Ledger

PASSWORD = "secret123"
ADMIN_PASSWORD = "admin-pass-1"


def _signup(client, name="jane doe", email="jane@example.com", password=PASSWORD, **extra):
    payload = {"name": name, "email": email, "password": password}
    payload.update(extra)
    return client.post("/api/signup", json=payload)


def _login(client, email, password):
    return client.post("/api/login", json={"email": email, "password": password})


@pytest.fixture
def admin_client(app):
    with app.app_context():
        ledger = Ledger(db.session, app.config)
        ledger.accounts.create_account("site admin", "admin@fortress.com", ADMIN_PASSWORD, is_admin=True)

    client = app.test_client()
    assert _login(client, "admin@fortress.com", ADMIN_PASSWORD).status_code == 200
    return client


def _make_verified(app, uid, balance=None):
    with app.app_context():
        ledger = Ledger(db.session, app.config)
        account = ledger.store.get_account(uid)
        account.kyc_status = "verified"
        if balance is not None:
            account.balance = balance
            ledger.store.refresh_vip(account)
        ledger.store.save()


def test_healthz(client):
    assert client.get("/healthz").get_json() == {"status": "ok"}


def test_signup_logs_in(client):
    response = _signup(client)
    assert response.status_code == 201
    user = response.get_json()["user"]
    assert user["uid"] == "UID-10001"
    assert user["name"] == "Jane Doe"
    assert "passwordHash" not in user

    session = client.get("/session")
    assert session.status_code == 200
    assert session.get_json()["user"]["email"] == "jane@example.com"


def test_signup_errors_are_json(client):
    _signup(client)
    response = _signup(client)
    assert response.status_code == 409
    assert response.get_json()["code"] == "AccountExists"

    response = client.post("/api/signup", data="not json", content_type="text/plain")
    assert response.status_code == 400
    assert response.get_json()["code"] == "InvalidRequest"


def test_login_and_logout(client):
    _signup(client)
    client.post("/api/logout")

    assert client.get("/session").status_code == 401
    bad = _login(client, "jane@example.com", "wrong-password")
    assert bad.status_code == 401
    assert bad.get_json()["code"] == "AuthFailed"

    good = _login(client, "jane@example.com", PASSWORD)
    assert good.status_code == 200
    assert good.get_json()["user"]["loginHistory"][0]["ipAddress"]


def test_routes_require_login(client):
    response = client.get("/accounts/UID-10001")
    assert response.status_code == 401
    assert response.get_json()["code"] == "AuthRequired"
    assert client.get("/admin/data").status_code == 401


def test_cannot_touch_another_account(app, client):
    _signup(client, email="a@example.com")
    other = app.test_client()
    _signup(other, name="bob", email="b@example.com")

    response = client.post("/accounts/UID-10002/deposits", json={"amount": 100, "network": "BTC"})
    assert response.status_code == 403
    assert response.get_json()["code"] == "Unauthorized"
    assert client.get("/admin/accounts").status_code == 403


def test_unknown_route_is_json(client):
    response = client.get("/nope")
    assert response.status_code == 404
    assert response.get_json()["code"] == "Not Found"


def test_public_settings(client):
    data = client.get("/settings").get_json()
    assert set(data["depositAddresses"]) == {"TRC20", "ERC20", "BTC"}
    assert data["vipTiers"][-1]["tradeLimit"] == "unlimited"


def test_deposit_flow(app, client, admin_client):
    _signup(client)
    response = client.post("/accounts/UID-10002/deposits",
                           json={"amount": 250, "network": "trc20", "proof": "tx-hash"})
    assert response.status_code == 201
    tx_id = response.get_json()["transactionId"]
    assert response.get_json()["status"] == "Pending"

    pending = admin_client.get("/admin/deposits/pending").get_json()
    assert [row["id"] for row in pending] == [tx_id]
    assert pending[0]["userEmail"] == "jane@example.com"

    wrong = admin_client.post(f"/admin/deposits/{tx_id}/resolve", json={"password": "nope", "status": "Completed"})
    assert wrong.status_code == 401

    ok = admin_client.post(f"/admin/deposits/{tx_id}/resolve",
                           json={"password": ADMIN_PASSWORD, "status": "Completed"})
    assert ok.status_code == 200
    assert ok.get_json()["transaction"]["status"] == "Completed"

    again = admin_client.post(f"/admin/deposits/{tx_id}/resolve",
                              json={"password": ADMIN_PASSWORD, "status": "Failed"})
    assert again.status_code == 409

    snapshot = client.get("/accounts/UID-10002").get_json()
    assert snapshot["balance"] == 250.0
    assert snapshot["vipLevel"] == 1
    assert snapshot["notifications"][0]["title"] == "Deposit Completed"


def test_withdrawal_requires_kyc(app, client):
    _signup(client)
    response = client.post("/accounts/UID-10001/withdrawals",
                           json={"amount": 10, "address": "T-address", "password": PASSWORD})
    assert response.status_code == 403
    assert response.get_json()["code"] == "KycRequired"

    _make_verified(app, "UID-10001", balance=100)
    response = client.post("/accounts/UID-10001/withdrawals",
                           json={"amount": 10, "address": "T-address", "password": PASSWORD})
    assert response.status_code == 201


def test_contract_placed_and_resolved_by_admin(app, client, admin_client):
    _signup(client)
    _make_verified(app, "UID-10002", balance=1000)

    response = client.post("/accounts/UID-10002/contracts", json={
        "amount": 100, "type": "buy", "duration": 60,
        "profitRate": 0.05, "commissionRate": 0.02, "entryPrice": 50000,
    })
    assert response.status_code == 201
    body = response.get_json()
    assert body["balance"] == 898.0
    contract_id = body["contractId"]

    second = client.post("/accounts/UID-10002/contracts", json={
        "amount": 100, "type": "buy", "duration": 60,
        "profitRate": 0.05, "commissionRate": 0.02, "entryPrice": 50000,
    })
    assert second.status_code == 409
    assert second.get_json()["code"] == "TradeLimitReached"

    early = client.post(f"/accounts/UID-10002/contracts/{contract_id}/complete")
    assert early.get_json()["contract"]["status"] == "active"

    active = admin_client.get("/admin/contracts/active").get_json()
    assert [c["id"] for c in active] == [contract_id]

    resolved = admin_client.post(f"/admin/contracts/{contract_id}/resolve",
                                 json={"password": ADMIN_PASSWORD, "outcome": "win"})
    assert resolved.status_code == 200
    assert resolved.get_json()["contract"]["status"] == "won"

    snapshot = client.get("/accounts/UID-10002").get_json()
    assert snapshot["balance"] == 1003.0
    assert snapshot["transactions"][0]["type"] == "Trade"
    assert snapshot["transactions"][0]["amount"] == 5.0

    trades = admin_client.get("/admin/trades").get_json()
    assert trades[0]["userId"] == "UID-10002"


def test_admin_balance_override_and_settings(client, admin_client):
    _signup(client)

    response = admin_client.post("/admin/accounts/UID-10002/balance",
                                 json={"password": ADMIN_PASSWORD, "balance": 150})
    assert response.get_json() == {"uid": "UID-10002", "balance": 150.0, "vipLevel": 1}

    response = admin_client.put("/admin/settings", json={
        "password": ADMIN_PASSWORD,
        "settings": {"depositAddresses": {"BTC": "bc1-updated"}},
    })
    assert response.status_code == 200
    assert client.get("/settings").get_json()["depositAddresses"]["BTC"] == "bc1-updated"

    stats = admin_client.get("/admin/data").get_json()
    assert stats["total_users"] == 2
    assert stats["total_balance"] == 150.0


def test_admin_creates_account(admin_client):
    response = admin_client.post("/admin/accounts", json={"name": "new user", "email": "new@example.com"})
    assert response.status_code == 201
    body = response.get_json()
    assert body["user"]["uid"] == "UID-10002"
    assert body["temporaryPassword"]

    fresh = admin_client.application.test_client()
    assert _login(fresh, "new@example.com", body["temporaryPassword"]).status_code == 200
