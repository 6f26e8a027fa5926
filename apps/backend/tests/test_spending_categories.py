from __future__ import annotations

from datetime import date

import pytest

from family_finance.core.errors import Conflict, NotFound, ValidationFailed
from family_finance.services.spending_category_service import SpendingCategoryService


@pytest.fixture()
def svc(db_session):
    return SpendingCategoryService(db_session)


def _create(svc, family, budget, name, parent=None, bucket="Needs"):
    return svc.create(
        family["family"].id,
        family["admin"].id,
        {"name": name, "budget_category_id": budget[bucket].id, "parent_category_id": parent},
    )


class TestSpendingCategoryService:
    def test_names_unique_per_parent(self, svc, family, budget):
        utilities = _create(svc, family, budget, "Utilities")
        _create(svc, family, budget, "Electric", parent=utilities.id)
        with pytest.raises(Conflict, match="Category name already exists"):
            _create(svc, family, budget, "electric", parent=utilities.id)
        # same name under a different parent is fine
        assert _create(svc, family, budget, "Electric").parent_category_id is None

    def test_unknown_budget_category(self, svc, family):
        with pytest.raises(NotFound):
            svc.create(family["family"].id, family["admin"].id, {"name": "X", "budget_category_id": 99999})

    def test_parent_validation_and_cycles(self, svc, family, budget):
        fam_id, admin_id = family["family"].id, family["admin"].id
        top = _create(svc, family, budget, "Home")
        mid = _create(svc, family, budget, "Repairs", parent=top.id)
        leaf = _create(svc, family, budget, "Plumbing", parent=mid.id)

        with pytest.raises(ValidationFailed, match="own parent"):
            svc.update(fam_id, admin_id, top.id, {"parent_category_id": top.id})
        with pytest.raises(ValidationFailed, match="Invalid parent"):
            svc.update(fam_id, admin_id, top.id, {"parent_category_id": 123456})
        with pytest.raises(ValidationFailed, match="cycles"):
            svc.update(fam_id, admin_id, top.id, {"parent_category_id": leaf.id})

        moved = svc.update(fam_id, admin_id, leaf.id, {"parent_category_id": top.id})
        assert moved.parent_category_id == top.id

    def test_delete_reparents_and_moves_items(self, svc, family, budget, make_account, make_transaction):
        fam_id, admin_id = family["family"].id, family["admin"].id
        top = _create(svc, family, budget, "Food")
        mid = _create(svc, family, budget, "Takeout", parent=top.id)
        leaf = _create(svc, family, budget, "Pizza", parent=mid.id)
        other = _create(svc, family, budget, "Misc", bucket="Wants")
        txn = make_transaction(make_account(fam_id), amount="25", when=date.today(), category_id=mid.id)

        with pytest.raises(ValidationFailed):
            svc.delete(fam_id, admin_id, mid.id, move_transactions_to=mid.id)

        svc.delete(fam_id, admin_id, mid.id, move_transactions_to=other.id)
        svc.db.refresh(leaf)
        svc.db.refresh(txn)
        assert leaf.parent_category_id == top.id
        assert txn.spending_category_id == other.id
        assert [c.name for c in svc.list(fam_id)] == ["Food", "Misc", "Pizza"]

    def test_defaults_are_nested(self):
        defaults = SpendingCategoryService.defaults()
        names = [d["name"] for d in defaults]
        assert "Housing" in names and "Groceries" in names
        housing = next(d for d in defaults if d["name"] == "Housing")
        assert housing["children"]


def test_hierarchy_and_usage(client, family, budget, make_account, make_transaction):
    headers = family["headers"]["admin"]
    parent = client.post(
        "/api/spending-categories",
        json={"name": "Transport", "budget_category_id": budget["Needs"].id, "color": "#112233"},
        headers=headers,
    ).json()
    child = client.post(
        "/api/spending-categories",
        json={"name": "Fuel", "budget_category_id": budget["Needs"].id, "parent_category_id": parent["id"]},
        headers=headers,
    )
    assert child.status_code == 201, child.text
    child = child.json()

    account = make_account(family["family"].id)
    make_transaction(account, amount="30", when=date(2025, 1, 5), description="Fill up", category_id=child["id"])
    make_transaction(account, amount="50", when=date(2025, 2, 5), description="Fill up 2", category_id=child["id"])
    make_transaction(account, amount="-10", when=date(2025, 2, 6), description="Refund", category_id=child["id"])

    tree = client.get("/api/spending-categories/hierarchy", headers=headers).json()
    assert [n["name"] for n in tree] == ["Transport"]
    assert tree[0]["budget_category"]["name"] == "Needs"
    fuel = tree[0]["children"][0]
    assert fuel["transaction_count"] == 2
    assert fuel["total_spent"] == 80.0

    stats = client.get(
        "/api/spending-categories/usage-stats",
        params={"start_date": "2025-01-01", "end_date": "2025-02-28"},
        headers=headers,
    ).json()
    assert stats[0]["category_name"] == "Fuel"
    assert stats[0]["average_amount"] == 40.0
    assert stats[0]["monthly_average"] == 40.0
    assert stats[0]["percentage_of_total_spending"] == 100.0
    assert stats[0]["last_used"] == "2025-02-05"

    bad_color = client.post(
        "/api/spending-categories",
        json={"name": "Bad", "budget_category_id": budget["Needs"].id, "color": "red"},
        headers=headers,
    )
    assert bad_color.status_code == 400

    assert client.delete(f"/api/spending-categories/{parent['id']}", headers=headers).status_code == 204
    assert client.get(f"/api/spending-categories/{parent['id']}", headers=headers).json()["is_active"] is False
    tree = client.get("/api/spending-categories/hierarchy", headers=headers).json()
    assert [n["name"] for n in tree] == ["Fuel"]


def test_budget_category_with_active_children_cannot_be_deleted(client, family, budget):
    headers = family["headers"]["admin"]
    client.post(
        "/api/spending-categories",
        json={"name": "Rent", "budget_category_id": budget["Needs"].id},
        headers=headers,
    )
    res = client.delete(f"/api/budget-categories/{budget['Needs'].id}", headers=headers)
    assert res.status_code == 409
