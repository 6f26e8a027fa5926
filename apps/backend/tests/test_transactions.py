from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from family_finance import models
from family_finance.services.payment_service import PaymentService
from family_finance.services.spending_category_service import SpendingCategoryService
from family_finance.services.transaction_service import (
    map_provider_category,
    score_payment_match,
    suggest_category,
)

CATEGORIES = [
    SimpleNamespace(id=1, name="Groceries"),
    SimpleNamespace(id=2, name="Transportation"),
    SimpleNamespace(id=3, name="Housing"),
    SimpleNamespace(id=4, name="Dining Out"),
]


class TestSuggestCategory:
    def test_full_keyword_match(self):
        result = suggest_category("Safeway grocery market", "Food Supermarket", CATEGORIES)
        assert result["spending_category_id"] == 1
        assert result["confidence"] == 0.9
        assert result["reason"].startswith("Matched keywords: grocery")

    def test_score_scales_with_matched_share(self):
        assert suggest_category("Monthly rent", None, CATEGORIES)["confidence"] == 0.3
        assert suggest_category("Shell gas station fuel", None, CATEGORIES)["confidence"] == 0.72

    def test_rule_needs_matching_family_category(self):
        # Healthcare is not among the family's categories
        assert suggest_category("CVS pharmacy", None, CATEGORIES) is None
        assert suggest_category("", None, CATEGORIES) is None

    def test_provider_category_mapping(self):
        assert map_provider_category(["Food and Drink", "Groceries"], CATEGORIES).id == 1
        assert map_provider_category(["Travel", "Taxi"], CATEGORIES).id == 2
        assert map_provider_category([], CATEGORIES) is None
        assert map_provider_category(["Shops"], CATEGORIES) is None


def test_score_payment_match():
    payment = SimpleNamespace(amount=Decimal("120.00"), due_date=date(2030, 1, 10), payee="City Power & Light")
    score, reasons = score_payment_match(Decimal("120.00"), date(2030, 1, 10), "City Power", payment)
    assert score == 1.0
    assert reasons == ["exact amount match", "same date", "merchant/payee name match"]

    score, _ = score_payment_match(Decimal("120.00"), date(2030, 1, 13), "Someone Else", payment)
    assert score == 0.4


@pytest.fixture()
def categories(db_session, family, budget):
    svc = SpendingCategoryService(db_session)
    fam, admin = family["family"], family["admin"]
    return {
        name: svc.create(fam.id, admin.id, {"name": name, "budget_category_id": budget[bucket].id})
        for name, bucket in (("Groceries", "Needs"), ("Transportation", "Needs"), ("Housing", "Needs"))
    }


def test_auto_categorize(client, family, categories, make_account, make_transaction):
    account = make_account(family["family"].id)
    today = date.today()
    grocery = make_transaction(account, amount="82.10", when=today, description="SUPERMARKET grocery food market")
    fuel = make_transaction(account, amount="40.00", when=today, description="Shell gas station fuel")
    rent = make_transaction(account, amount="1500.00", when=today, description="Monthly rent")

    res = client.post("/api/transactions/auto-categorize", json={}, headers=family["headers"]["editor"])
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["categorized_count"] == 2
    applied = {r["transaction_id"]: r["spending_category_id"] for r in body["results"]}
    assert applied == {grocery.id: categories["Groceries"].id, fuel.id: categories["Transportation"].id}

    remaining = client.get("/api/transactions/uncategorized", headers=family["headers"]["admin"]).json()
    # rule-applied categories under 0.8 still count as uncategorized
    by_id = {t["id"]: t for t in remaining["transactions"]}
    assert set(by_id) == {fuel.id, rent.id}
    assert by_id[rent.id]["suggestions"] == []
    assert by_id[fuel.id]["suggestions"][0]["name"] == "Transportation"


def test_update_and_batch_categorize(client, family, categories, make_account, make_transaction):
    headers = family["headers"]["admin"]
    account = make_account(family["family"].id)
    first = make_transaction(account, amount="10", when=date.today(), description="A")
    second = make_transaction(account, amount="20", when=date.today(), description="B")

    res = client.patch(
        f"/api/transactions/{first.id}",
        json={"spending_category_id": categories["Housing"].id, "notes": "split with roommate"},
        headers=headers,
    )
    assert res.status_code == 200
    assert res.json()["user_categorized"] is True
    assert res.json()["category_confidence"] == 1.0

    res = client.post(
        "/api/transactions/categorize-batch",
        json={
            "updates": [
                {"transaction_id": second.id, "spending_category_id": categories["Groceries"].id},
                {"transaction_id": 999999, "spending_category_id": categories["Groceries"].id},
                {"transaction_id": first.id, "spending_category_id": 424242},
            ]
        },
        headers=headers,
    )
    body = res.json()
    assert body["updated_count"] == 1
    assert sorted(e["transaction_id"] for e in body["errors"]) == [first.id, 999999]

    filtered = client.get(
        "/api/transactions", params={"spending_category_id": categories["Groceries"].id}, headers=headers
    ).json()
    assert [t["id"] for t in filtered["transactions"]] == [second.id]
    assert client.patch(
        f"/api/transactions/{second.id}", json={"notes": "x"}, headers=family["headers"]["viewer"]
    ).status_code == 403


def test_transactions_are_family_scoped(client, family, other_family, make_account, make_transaction):
    mine = make_transaction(make_account(family["family"].id), amount="5", when=date.today())
    assert client.get(f"/api/transactions/{mine.id}", headers=other_family["headers"]).status_code == 404
    assert client.get("/api/transactions", headers=other_family["headers"]).json()["total"] == 0


def test_match_payments(client, db_session, family, make_account, make_transaction):
    fam, admin = family["family"], family["admin"]
    today = date.today()
    payment = PaymentService(db_session).create(
        fam.id, admin.id, {"payee": "City Power & Light", "amount": Decimal("120.00"), "due_date": today}
    )
    account = make_account(fam.id)
    txn = make_transaction(
        account, amount="120.00", when=today - timedelta(days=1), description="CITY POWER", merchant="City Power"
    )
    make_transaction(account, amount="64.00", when=today, description="Unrelated")

    res = client.post("/api/transactions/match-payments", json={}, headers=family["headers"]["viewer"])
    assert res.status_code == 200
    matches = res.json()
    assert len(matches) == 1
    assert matches[0]["transaction_id"] == txn.id
    assert matches[0]["payment_id"] == payment.id
    assert matches[0]["confidence"] == 0.9
    assert "merchant/payee name match" in matches[0]["reasons"]
    assert payment.status == models.PaymentStatus.SCHEDULED
