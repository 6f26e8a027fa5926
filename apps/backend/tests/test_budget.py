from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from family_finance.core.errors import ValidationFailed
from family_finance.services.budget_service import (
    CategoryShare,
    compute_allocation_amounts,
    summarize_percentage_set,
    validate_category_percentages,
)


def _cat(id_, pct, active=True):
    c = MagicMock()
    c.id = id_
    c.target_percentage = Decimal(pct)
    c.is_active = active
    return c


class TestBudgetMath:
    def test_total_cannot_exceed_hundred(self):
        cats = [_cat(1, "50"), _cat(2, "30")]
        assert validate_category_percentages(cats, Decimal("20")) == Decimal("100.00")
        with pytest.raises(ValidationFailed) as exc:
            validate_category_percentages(cats, Decimal("20.01"))
        assert "Current total: 100.01%" in exc.value.message

    def test_inactive_and_excluded_rows_ignored(self):
        cats = [_cat(1, "60"), _cat(2, "40", active=False)]
        assert validate_category_percentages(cats, Decimal("40")) == Decimal("100.00")
        # editing category 1 replaces its own share
        assert validate_category_percentages(cats, Decimal("90"), exclude_id=1) == Decimal("90.00")

    def test_allocation_rounds_each_line(self):
        lines = compute_allocation_amounts(
            Decimal("1000.00"),
            [CategoryShare(1, Decimal("33.33")), CategoryShare(2, Decimal("33.33")), CategoryShare(3, Decimal("33.34"))],
        )
        assert [line.amount for line in lines] == [Decimal("333.30"), Decimal("333.30"), Decimal("333.40")]

    def test_allocation_overrides(self):
        lines = compute_allocation_amounts(
            Decimal("2000"), [CategoryShare(1, Decimal("50")), CategoryShare(2, Decimal("50"))], {2: Decimal("25")}
        )
        assert lines[1].percentage == Decimal("25.00")
        assert lines[1].amount == Decimal("500.00")
        with pytest.raises(ValidationFailed):
            compute_allocation_amounts(Decimal("100"), [CategoryShare(1, Decimal("10"))], {1: Decimal("101")})

    def test_percentage_set_summary(self):
        under = summarize_percentage_set([Decimal("50"), Decimal("30")])
        assert under["is_valid"] is False
        assert under["difference"] == -20.0
        assert under["suggestions"][0] == "Add 20% to reach 100%"
        exact = summarize_percentage_set([Decimal("50"), Decimal("30"), Decimal("20")])
        assert exact["is_valid"] is True and exact["suggestions"] == []
        over = summarize_percentage_set([Decimal("60"), Decimal("50")])
        assert over["suggestions"] == ["Reduce category percentages by 10%"]


def test_budget_category_crud(client, family):
    headers = family["headers"]["admin"]
    res = client.post("/api/budget-categories", json={"name": "Needs", "target_percentage": 60}, headers=headers)
    assert res.status_code == 201, res.text
    needs = res.json()
    assert needs["target_percentage"] == 60.0
    assert needs["color"].startswith("#")

    dup = client.post("/api/budget-categories", json={"name": "needs", "target_percentage": 10}, headers=headers)
    assert dup.status_code == 409

    over = client.post("/api/budget-categories", json={"name": "Wants", "target_percentage": 41}, headers=headers)
    assert over.status_code == 400
    assert "cannot exceed 100%" in over.json()["detail"]

    client.post("/api/budget-categories", json={"name": "Wants", "target_percentage": 40}, headers=headers)
    overview = client.get("/api/budget/overview", headers=headers).json()
    assert overview["total_percentage"] == 100.0
    assert overview["is_complete"] is True
    assert overview["category_count"] == 2

    patched = client.patch(
        f"/api/budget-categories/{needs['id']}", json={"target_percentage": 50}, headers=headers
    )
    assert patched.status_code == 200
    assert client.get("/api/budget/overview", headers=headers).json()["remaining_percentage"] == 10.0

    assert client.delete(f"/api/budget-categories/{needs['id']}", headers=headers).status_code == 204
    assert client.get(f"/api/budget-categories/{needs['id']}", headers=headers).status_code == 404


def test_viewer_cannot_edit_budget(client, family):
    res = client.post(
        "/api/budget-categories",
        json={"name": "Needs", "target_percentage": 50},
        headers=family["headers"]["viewer"],
    )
    assert res.status_code == 403


def test_generate_allocation(client, family, budget):
    headers = family["headers"]["admin"]
    income = client.post(
        "/api/income-events",
        json={"name": "Paycheck", "amount": "3000.00", "scheduled_date": "2025-03-01"},
        headers=headers,
    ).json()

    res = client.post(f"/api/budget-allocations/income-events/{income['id']}/generate", headers=headers)
    assert res.status_code == 201, res.text
    body = res.json()
    amounts = {a["budget_category_name"]: a["amount"] for a in body["allocations"]}
    assert amounts == {"Needs": 1500.0, "Wants": 900.0, "Savings": 600.0}
    assert body["summary"]["unallocated_amount"] == 0.0

    again = client.post(f"/api/budget-allocations/income-events/{income['id']}/generate", headers=headers)
    assert again.status_code == 409

    needs_alloc = next(a for a in body["allocations"] if a["budget_category_name"] == "Needs")
    too_much = client.patch(f"/api/budget-allocations/{needs_alloc['id']}", json={"amount": "1500.01"}, headers=headers)
    assert too_much.status_code == 400
    ok = client.patch(f"/api/budget-allocations/{needs_alloc['id']}", json={"amount": "1200"}, headers=headers)
    assert ok.json()["percentage"] == 40.0


def test_generate_allocation_with_overrides(client, family, budget):
    headers = family["headers"]["admin"]
    income = client.post(
        "/api/income-events",
        json={"name": "Bonus", "amount": "1000", "scheduled_date": "2025-03-15"},
        headers=headers,
    ).json()
    res = client.post(
        f"/api/budget-allocations/income-events/{income['id']}/generate",
        json={"overrides": [{"budget_category_id": budget["Savings"].id, "percentage": "10"}]},
        headers=headers,
    )
    assert res.status_code == 201, res.text
    assert res.json()["summary"]["total_allocated"] == 900.0
    assert res.json()["summary"]["unallocated_amount"] == 100.0


def test_templates_and_validate(client, family):
    headers = family["headers"]["admin"]
    names = [t["name"] for t in client.get("/api/budget/templates", headers=headers).json()]
    assert "50/30/20" in names

    applied = client.post("/api/budget/templates/apply", json={"template_name": "70/20/10"}, headers=headers)
    assert applied.status_code == 200, applied.text
    assert sum(c["target_percentage"] for c in applied.json()) == 100.0

    missing = client.post("/api/budget/templates/apply", json={"template_name": "nope"}, headers=headers)
    assert missing.status_code == 404

    cats = applied.json()
    res = client.post(
        "/api/budget-categories/validate-percentages",
        json={"categories": [{"id": cats[0]["id"], "target_percentage": "70"}, {"id": cats[1]["id"], "target_percentage": "20"}]},
        headers=headers,
    )
    assert res.json()["is_valid"] is False
    assert res.json()["difference"] == -10.0
