"""
Route-level tests: auth, the response envelope, status codes and the
boundary projection of player documents.
"""

import jwt
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from game_economy.main import app
from game_economy.settings import settings


def _token(user_id="u1"):
    return jwt.encode({"userId": user_id}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.fixture
def client(db):
    app.state.mongodb = db
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def auth():
    return {"Authorization": f"Bearer {_token()}"}


# ---------------- health / auth ----------------

def test_healthz(client):
    resp = client.get("/healthz")

    assert resp.status_code == 200
    assert resp.json()["db_connected"] is True


def test_healthz_reports_unreachable_db(client, db):
    db.available = False

    assert client.get("/healthz").json()["db_connected"] is False


def test_missing_token(client):
    resp = client.get("/game/player-state")

    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Authorization token required"}


def test_bad_signature(client):
    forged = jwt.encode({"userId": "u1"}, "not-the-secret-not-the-secret-xx", algorithm="HS256")
    resp = client.get("/game/player-state", headers={"Authorization": f"Bearer {forged}"})

    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_token_without_user_id(client):
    token = jwt.encode({"sub": "u1"}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    resp = client.get("/game/player-state", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401


# ---------------- player state ----------------

def test_get_player_state_projects_aliases(client, auth):
    resp = client.get("/game/player-state", headers=auth)
    body = resp.json()

    assert resp.status_code == 200
    assert body["success"] is True
    data = body["data"]
    assert "_id" not in data and "id" in data
    assert data["onboarding"]["bankOnboardingComplete"] is False
    assert data["onboarding"]["hasCompletedBankOnboarding"] is False


def test_put_player_state_rejects_financial(client, auth):
    resp = client.put("/game/player-state", json={"financial": {"rupees": 1}}, headers=auth)

    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_rupees_requires_real_numbers(client, auth):
    client.get("/game/player-state", headers=auth)

    resp = client.put("/game/player-state/rupees", json={"rupees": "100", "operation": "add"}, headers=auth)

    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid request parameters"


def test_rupees_subtract_overdraw(client, auth):
    client.get("/game/player-state", headers=auth)

    resp = client.put("/game/player-state/rupees", json={"rupees": 1, "operation": "subtract"}, headers=auth)

    assert resp.status_code == 400
    assert resp.json()["error"] == "Insufficient rupees"


def test_claim_starter_once(client, auth):
    first = client.post("/game/player-state/claim-starter", headers=auth).json()
    second = client.post("/game/player-state/claim-starter", headers=auth).json()

    assert first["data"]["newlyGranted"] is True
    assert first["message"] == "Starter money claimed"
    assert second["data"]["newlyGranted"] is False
    assert second["data"]["rupees"] == settings.starter_amount
    status = client.get("/game/player-state/starter-status", headers=auth).json()
    assert status["data"] == {"claimed": True, "rupees": settings.starter_amount}


# ---------------- ledger ----------------

def test_bank_flow(client, auth):
    client.post("/game/player-state/claim-starter", headers=auth)

    created = client.post("/game/bank-account/create",
                          json={"accountHolder": "Asha", "initialDeposit": 200}, headers=auth)
    assert created.status_code == 200
    assert created.json()["data"]["balance"] == 200

    again = client.post("/game/bank-account/create", json={"accountHolder": "Asha"}, headers=auth)
    assert again.status_code == 409

    deposit = client.post("/game/bank-account/deposit", json={"amount": 300}, headers=auth).json()
    assert deposit["data"]["account"]["balance"] == 500
    assert deposit["data"]["transaction"]["type"] == "deposit"

    too_much = client.post("/game/bank-account/withdraw", json={"amount": 501}, headers=auth)
    assert too_much.status_code == 400
    assert too_much.json()["error"] == "Insufficient bank balance"

    withdraw = client.post("/game/bank-account/withdraw", json={"amount": 500}, headers=auth).json()
    assert withdraw["data"]["account"]["balance"] == 0

    state = client.get("/game/player-state", headers=auth).json()["data"]
    assert state["financial"]["rupees"] == settings.starter_amount
    assert state["financial"]["bankBalance"] == 0


def test_fixed_deposit_routes(client, auth):
    client.post("/game/player-state/claim-starter", headers=auth)
    client.post("/game/bank-account/deposit", json={"amount": 1000}, headers=auth)

    created = client.post("/game/fixed-deposits", json={"amount": 500, "duration": 365}, headers=auth).json()
    assert created["data"]["interestRate"] == 8.5

    listed = client.get("/game/fixed-deposits", headers=auth).json()["data"]
    assert [fd["id"] for fd in listed] == [created["data"]["id"]]

    early = client.post(f"/game/fixed-deposits/{created['data']['id']}/claim", headers=auth)
    assert early.status_code == 400

    assert client.post("/game/fixed-deposits/nope/claim", headers=auth).status_code == 400
    assert client.post(f"/game/fixed-deposits/{ObjectId()}/claim", headers=auth).status_code == 404


def test_stock_routes(client, auth):
    client.post("/game/player-state/claim-starter", headers=auth)

    buy = client.post("/game/stock-portfolio/buy",
                      json={"stockId": "TCS", "stockName": "Tata Consultancy", "quantity": 5, "price": 100},
                      headers=auth)
    assert buy.status_code == 200
    assert buy.json()["data"]["totalCost"] == 500

    sell = client.post("/game/stock-portfolio/sell",
                       json={"stockId": "TCS", "quantity": 5, "price": 110}, headers=auth).json()
    assert sell["data"]["profit"] == 50
    assert sell["data"]["holding"] is None
    assert sell["message"] == "Successfully sold 5 shares of Tata Consultancy"

    zero = client.post("/game/stock-portfolio/buy",
                       json={"stockId": "TCS", "stockName": "Tata Consultancy", "quantity": 0, "price": 100},
                       headers=auth)
    assert zero.status_code == 400

    txns = client.get("/game/stock-transactions", headers=auth).json()["data"]
    assert len(txns) == 2


def test_sync(client, auth):
    body = client.get("/game/sync", headers=auth).json()["data"]

    assert body["playerState"]["userId"] == "u1"
    assert body["bankAccount"] is None
    assert body["fixedDeposits"] == []
    assert body["stockPortfolio"] is None
    assert body["stockTransactions"] == []
    assert "syncedAt" in body


def test_store_unavailable(client, auth, db):
    db.available = False

    resp = client.get("/game/player-state", headers=auth)

    assert resp.status_code == 503
    assert resp.json()["success"] is False
