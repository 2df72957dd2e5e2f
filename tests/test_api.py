from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from ai_client import ReceiptScanner
from auth import issue_identity_token
from database import Base, get_db, make_engine
from main import app, get_rate_limiter, get_receipt_scanner
from rate_limit import RateLimiter


class FakeVision:
    def generate(self, parts):
        return (
            '{"amount": 18.2, "date": "2024-03-05", "description": "Snacks", '
            '"merchantName": "Corner Shop", "category": "Groceries"}'
        )


@pytest.fixture()
def client():
    engine = make_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    limiter = RateLimiter(
        capacity=100, refill_rate=100, interval_secs=60, blocked_user_ids=frozenset()
    )

    def override_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_receipt_scanner] = lambda: ReceiptScanner(FakeVision())
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _auth(external_id: str = "user_1") -> dict[str, str]:
    token = issue_identity_token(external_id, f"{external_id}@example.com", "Ada")
    return {"Authorization": f"Bearer {token}"}


def _create_account(client: TestClient, headers, **payload) -> dict:
    body = {"name": "Main", "balance": "100.00", **payload}
    resp = client.post("/api/accounts", json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _expense(account_id: int, amount: str = "25.50") -> dict:
    return {
        "account_id": account_id,
        "type": "expense",
        "amount": amount,
        "category": "groceries",
        "description": "Weekly shop",
        "date": "2024-03-05",
    }


def test_requires_identity(client) -> None:
    assert client.get("/api/accounts").status_code == 401
    resp = client.get("/api/accounts", headers={"Authorization": "Bearer forged"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Unauthorized"


def test_transaction_lifecycle_keeps_balance(client) -> None:
    headers = _auth()
    account = _create_account(client, headers)
    assert account["is_default"] is True
    assert Decimal(account["balance"]) == Decimal("100.00")

    resp = client.post("/api/transactions", json=_expense(account["id"]), headers=headers)
    assert resp.status_code == 201, resp.text
    txn = resp.json()
    assert Decimal(txn["amount"]) == Decimal("25.50")

    balance = client.get(f"/api/accounts/{account['id']}/balance", headers=headers)
    assert Decimal(balance.json()["balance"]) == Decimal("74.50")

    listing = client.get("/api/transactions", headers=headers).json()
    assert [item["id"] for item in listing["items"]] == [txn["id"]]
    assert listing["has_more"] is False

    detail = client.get(f"/api/accounts/{account['id']}", headers=headers).json()
    assert detail["transaction_count"] == 1
    assert detail["transactions"][0]["description"] == "Weekly shop"

    resp = client.post(
        "/api/transactions/bulk-delete",
        json={"transaction_ids": [txn["id"]]},
        headers=headers,
    )
    assert resp.json()["deleted"] == 1
    balance = client.get(f"/api/accounts/{account['id']}/balance", headers=headers)
    assert Decimal(balance.json()["balance"]) == Decimal("100.00")


def test_users_cannot_see_each_others_data(client) -> None:
    owner = _auth("owner")
    account = _create_account(client, owner)
    txn = client.post(
        "/api/transactions", json=_expense(account["id"]), headers=owner
    ).json()

    other = _auth("other")
    assert client.get(f"/api/accounts/{account['id']}", headers=other).status_code == 404
    assert client.get(f"/api/transactions/{txn['id']}", headers=other).status_code == 404
    resp = client.post("/api/transactions", json=_expense(account["id"]), headers=other)
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Account not found"


def test_validation_errors(client) -> None:
    headers = _auth()
    account = _create_account(client, headers)
    recurring_without_interval = {**_expense(account["id"]), "is_recurring": True}
    resp = client.post(
        "/api/transactions", json=recurring_without_interval, headers=headers
    )
    assert resp.status_code == 422

    resp = client.post(
        "/api/transactions/bulk-delete", json={"transaction_ids": []}, headers=headers
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No transaction IDs provided"

    resp = client.get("/api/transactions?period=custom", headers=headers)
    assert resp.status_code == 400


def test_rate_limit_maps_to_429(client) -> None:
    headers = _auth()
    account = _create_account(client, headers)
    strict = RateLimiter(
        capacity=1, refill_rate=1, interval_secs=3600, blocked_user_ids=frozenset()
    )
    app.dependency_overrides[get_rate_limiter] = lambda: strict

    first = client.post("/api/transactions", json=_expense(account["id"]), headers=headers)
    assert first.status_code == 201
    second = client.post("/api/transactions", json=_expense(account["id"]), headers=headers)
    assert second.status_code == 429
    assert second.json()["detail"] == "Too many requests. Please try again later."


def test_blocked_user_maps_to_403(client) -> None:
    headers = _auth("bot")
    account = _create_account(client, headers)
    blocking = RateLimiter(capacity=5, blocked_user_ids=frozenset({"bot"}))
    app.dependency_overrides[get_rate_limiter] = lambda: blocking

    resp = client.post("/api/transactions", json=_expense(account["id"]), headers=headers)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Request blocked"


def test_default_switch_and_budget(client) -> None:
    headers = _auth()
    main = _create_account(client, headers)
    savings = _create_account(client, headers, name="Savings", type="savings", balance="0")
    assert savings["is_default"] is False

    resp = client.post(f"/api/accounts/{savings['id']}/default", headers=headers)
    assert resp.json()["is_default"] is True
    accounts = {a["id"]: a for a in client.get("/api/accounts", headers=headers).json()}
    assert accounts[main["id"]]["is_default"] is False

    resp = client.put("/api/budget", json={"amount": "400"}, headers=headers)
    assert Decimal(resp.json()["amount"]) == Decimal("400.00")
    status = client.get("/api/budget", headers=headers).json()
    assert Decimal(status["budget"]["amount"]) == Decimal("400.00")
    assert Decimal(status["current_expenses"]) == Decimal("0.00")


def test_scan_receipt(client) -> None:
    resp = client.post(
        "/api/receipts/scan",
        files={"file": ("receipt.jpg", b"\xff\xd8\xff", "image/jpeg")},
        headers=_auth(),
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert Decimal(body["amount"]) == Decimal("18.20")
    assert body["merchant_name"] == "Corner Shop"
    assert body["category"] == "groceries"


def test_seed_account(client) -> None:
    headers = _auth()
    account = _create_account(client, headers)
    resp = client.post(f"/api/accounts/{account['id']}/seed?days=2", headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert 3 <= body["created"] <= 9
    recalculated = client.post(
        f"/api/accounts/{account['id']}/recalculate", headers=headers
    ).json()
    assert recalculated["balance"] == body["account"]["balance"]


def test_pagination_params_are_validated(client) -> None:
    headers = _auth()
    account = _create_account(client, headers)
    for _ in range(3):
        client.post("/api/transactions", json=_expense(account["id"]), headers=headers)

    assert client.get("/api/transactions?page=abc", headers=headers).status_code == 422
    assert client.get("/api/transactions?limit=x", headers=headers).status_code == 422
    assert client.get("/api/transactions?page=0", headers=headers).status_code == 422
    assert client.get("/api/transactions?limit=101", headers=headers).status_code == 422

    first = client.get("/api/transactions?page=1&limit=2", headers=headers).json()
    assert (len(first["items"]), first["has_more"]) == (2, True)
    second = client.get("/api/transactions?page=2&limit=2", headers=headers).json()
    assert (len(second["items"]), second["has_more"]) == (1, False)


def test_amount_below_one_cent_is_rejected(client) -> None:
    headers = _auth()
    account = _create_account(client, headers)
    resp = client.post(
        "/api/transactions", json=_expense(account["id"], "0.001"), headers=headers
    )
    assert resp.status_code == 422

    listing = client.get("/api/transactions", headers=headers).json()
    assert listing["items"] == []
    balance = client.get(f"/api/accounts/{account['id']}/balance", headers=headers)
    assert Decimal(balance.json()["balance"]) == Decimal("100.00")
