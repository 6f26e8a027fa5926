from __future__ import annotations

import time
from datetime import date, timedelta

from family_finance import models
from family_finance.services.bank_service import map_account_type
from family_finance.services.budget_service import BudgetService
from family_finance.services.spending_category_service import SpendingCategoryService


def _plaid_txn(txn_id, amount, *, account_id="acc-checking", name="Whole Foods", category=None, days_ago=2):
    return {
        "transaction_id": txn_id,
        "account_id": account_id,
        "amount": amount,
        "date": (date.today() - timedelta(days=days_ago)).isoformat(),
        "name": name,
        "merchant_name": name,
        "pending": False,
        "category": category or [],
    }


def _connect(client, headers):
    res = client.post("/api/bank-accounts", json={"public_token": "public-sandbox-1"}, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def test_map_account_type():
    assert map_account_type("depository", "checking") == models.AccountType.CHECKING
    assert map_account_type("depository", "Savings") == models.AccountType.SAVINGS
    assert map_account_type("credit", "credit card") == models.AccountType.CREDIT
    assert map_account_type("loan", "mortgage") == models.AccountType.LOAN
    assert map_account_type(None, None) == models.AccountType.CHECKING


def test_link_token(client, family):
    res = client.post("/api/bank-accounts/link-token", headers=family["headers"]["admin"])
    assert res.status_code == 200
    assert res.json()["link_token"] == f"link-sandbox-{family['admin'].id}"


def test_connect_creates_accounts_and_syncs(client, db_session, family, fake_plaid):
    fam, admin = family["family"], family["admin"]
    needs = BudgetService(db_session).create_category(fam.id, admin.id, {"name": "Needs", "target_percentage": 50})
    groceries = SpendingCategoryService(db_session).create(
        fam.id, admin.id, {"name": "Groceries", "budget_category_id": needs.id}
    )
    fake_plaid.transactions = [
        _plaid_txn("t-1", 54.20, category=["Food and Drink", "Groceries"]),
        _plaid_txn("t-2", -1200.00, name="Payroll"),
        _plaid_txn("t-3", 18.00, account_id="acc-credit", name="Coffee Shop"),
    ]

    accounts = _connect(client, family["headers"]["editor"])
    assert len(accounts) == 2
    checking = next(a for a in accounts if a["account_type"] == "checking")
    credit = next(a for a in accounts if a["account_type"] == "credit")
    assert checking["institution_name"] == "Test Bank"
    assert checking["account_number"] == "0001"
    assert checking["current_balance"] == 2500.0
    assert checking["last_sync_at"] is not None
    assert credit["available_balance"] is None

    page = client.get("/api/transactions", headers=family["headers"]["admin"]).json()
    assert page["total"] == 3
    mapped = next(t for t in page["transactions"] if t["description"] == "Whole Foods")
    assert mapped["spending_category_id"] == groceries.id
    assert mapped["category_confidence"] == 0.6

    # a second sync updates rather than duplicates
    res = client.post(f"/api/bank-accounts/{checking['id']}/sync", headers=family["headers"]["admin"])
    assert res.json() == {"account_id": checking["id"], "new_count": 0, "updated_count": 2}


def test_sync_failure_marks_error(client, family, fake_plaid):
    headers = family["headers"]["admin"]
    checking = next(a for a in _connect(client, headers) if a["account_type"] == "checking")
    fake_plaid.fail = True

    res = client.post(f"/api/bank-accounts/{checking['id']}/sync", headers=headers)
    assert res.status_code == 502
    assert "ITEM_LOGIN_REQUIRED" in res.json()["detail"]
    assert client.get(f"/api/bank-accounts/{checking['id']}", headers=headers).json()["sync_status"] == "error"

    summary = client.post("/api/bank-accounts/sync-all", headers=headers).json()
    assert summary["total_accounts"] == 2
    assert summary["error_count"] == 2


def test_connect_failure_is_upstream_error(client, family, fake_plaid):
    fake_plaid.fail = True
    res = client.post(
        "/api/bank-accounts", json={"public_token": "public-sandbox-1"}, headers=family["headers"]["admin"]
    )
    assert res.status_code == 502


def test_disconnected_account_cannot_sync(client, family):
    headers = family["headers"]["admin"]
    checking = next(a for a in _connect(client, headers) if a["account_type"] == "checking")
    res = client.patch(
        f"/api/bank-accounts/{checking['id']}",
        json={"account_name": "Joint", "sync_status": "disconnected"},
        headers=headers,
    )
    assert res.json()["account_name"] == "Joint"
    assert client.post(f"/api/bank-accounts/{checking['id']}/sync", headers=headers).status_code == 400


def test_delete_removes_item_with_last_account(client, family, fake_plaid):
    headers = family["headers"]["admin"]
    first, second = _connect(client, headers)

    assert client.delete(f"/api/bank-accounts/{first['id']}", headers=headers).status_code == 204
    assert fake_plaid.removed == []
    assert client.delete(f"/api/bank-accounts/{second['id']}", headers=headers).status_code == 204
    assert fake_plaid.removed == ["access-sandbox-1"]

    assert client.get("/api/bank-accounts", headers=headers).json() == []
    assert client.get(f"/api/bank-accounts/{first['id']}", headers=headers).status_code == 404


def test_reconnect_returns_update_link(client, family):
    headers = family["headers"]["admin"]
    account = _connect(client, headers)[0]
    res = client.post(f"/api/bank-accounts/{account['id']}/reconnect", headers=headers)
    assert res.status_code == 200
    assert res.json()["link_token"].startswith("link-sandbox-")


def test_webhooks(client, family, fake_plaid, sign_webhook):
    headers = family["headers"]["admin"]
    _connect(client, headers)
    fake_plaid.transactions = [_plaid_txn("t-9", 12.5, name="Gas Station")]

    def post(payload: dict):
        body, signed = sign_webhook(payload)
        return client.post("/api/plaid/webhook", content=body, headers=signed)

    res = post({"webhook_type": "TRANSACTIONS", "webhook_code": "DEFAULT_UPDATE", "item_id": "item-1"})
    assert res.json() == {"handled": True, "accounts": 2}
    assert client.get("/api/transactions", headers=headers).json()["total"] == 1

    res = post({"webhook_type": "ITEM", "webhook_code": "ERROR", "item_id": "item-1", "error": {"error_code": "X"}})
    assert res.json()["handled"] is True
    statuses = {a["sync_status"] for a in client.get("/api/bank-accounts", headers=headers).json()}
    assert statuses == {"error"}

    unknown = post({"webhook_type": "TRANSACTIONS", "webhook_code": "DEFAULT_UPDATE", "item_id": "nope"})
    assert unknown.json() == {"handled": False, "accounts": 0}


def test_webhook_requires_valid_signature(client, family, sign_webhook):
    headers = family["headers"]["admin"]
    _connect(client, headers)
    error_hook = {"webhook_type": "ITEM", "webhook_code": "ERROR", "item_id": "item-1"}

    unsigned = client.post("/api/plaid/webhook", json=error_hook)
    assert unsigned.status_code == 401
    assert unsigned.json()["detail"] == "Missing webhook signature"

    _, signed = sign_webhook({"webhook_type": "TRANSACTIONS", "webhook_code": "DEFAULT_UPDATE", "item_id": "item-1"})
    tampered = client.post("/api/plaid/webhook", json=error_hook, headers=signed)
    assert tampered.status_code == 401
    assert tampered.json()["detail"] == "Webhook body does not match signature"

    body, stale = sign_webhook(error_hook, issued_at=time.time() - 3600)
    assert client.post("/api/plaid/webhook", content=body, headers=stale).status_code == 401

    body, unknown_key = sign_webhook(error_hook, key_id="rotated-key")
    assert client.post("/api/plaid/webhook", content=body, headers=unknown_key).status_code == 401

    garbage = client.post("/api/plaid/webhook", json=error_hook, headers={"Plaid-Verification": "not-a-jwt"})
    assert garbage.status_code == 401

    statuses = {a["sync_status"] for a in client.get("/api/bank-accounts", headers=headers).json()}
    assert statuses == {"active"}
