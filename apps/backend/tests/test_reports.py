from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from family_finance import models
from family_finance.core.errors import ValidationFailed
from family_finance.services.budget_service import BudgetService
from family_finance.services.income_service import IncomeService
from family_finance.services.payment_service import PaymentService
from family_finance.services.report_service import (
    ReportService,
    budget_status,
    default_range,
    period_key,
    savings_trend,
)
from family_finance.services.spending_category_service import SpendingCategoryService

JAN_FEB = {"start_date": "2025-01-01", "end_date": "2025-02-28"}


class TestReportHelpers:
    def test_period_key(self):
        thursday = date(2025, 3, 13)
        assert period_key(thursday, "day") == "2025-03-13"
        assert period_key(thursday, "week") == "2025-03-10"
        assert period_key(thursday, "month") == "2025-03"
        assert period_key(thursday, "quarter") == "2025-Q1"
        assert period_key(date(2025, 10, 1), "quarter") == "2025-Q4"
        assert period_key(thursday, "year") == "2025"
        with pytest.raises(ValidationFailed, match="group_by must be one of"):
            period_key(thursday, "fortnight")

    @pytest.mark.parametrize(
        "pct,budgeted,spent,expected",
        [
            ("50", "100", "50", "under_budget"),
            ("75", "100", "75", "under_budget"),
            ("90", "100", "90", "on_track"),
            ("100", "100", "100", "on_track"),
            ("110", "100", "110", "over_budget"),
            ("130", "100", "130", "way_over_budget"),
            ("0", "0", "10", "way_over_budget"),
            ("0", "0", "0", "under_budget"),
        ],
    )
    def test_budget_status(self, pct, budgeted, spent, expected):
        assert budget_status(Decimal(pct), Decimal(budgeted), Decimal(spent)) == expected

    def test_savings_trend(self):
        assert savings_trend([10, 10, 10, 20, 20, 20]) == "increasing"
        assert savings_trend([20, 20, 20, 10, 10, 10]) == "decreasing"
        assert savings_trend([10, 10, 10, 10, 11]) == "stable"
        assert savings_trend([10, 40]) == "stable"
        assert savings_trend([]) == "stable"

    def test_default_range(self):
        assert default_range(date(2025, 6, 18)) == (date(2024, 7, 1), date(2025, 6, 18))
        assert default_range(date(2025, 6, 18), months=1) == (date(2025, 6, 1), date(2025, 6, 18))


@pytest.fixture()
def ledger(db_session, family, budget, make_account, make_transaction):
    """Two received paychecks, a paid rent bill and some card spending in Jan/Feb 2025."""
    fam, admin = family["family"], family["admin"]
    income = IncomeService(db_session)
    budgets = BudgetService(db_session)
    for when in (date(2025, 1, 15), date(2025, 2, 15)):
        event = income.create(
            fam.id,
            admin.id,
            {"name": "Paycheck", "amount": Decimal("3000.00"), "scheduled_date": when, "source": "Employer"},
        )
        budgets.generate_allocation(fam.id, event.id)
        income.mark_received(fam.id, admin.id, event.id, actual_date=when)

    rent = PaymentService(db_session).create(
        fam.id,
        admin.id,
        {"payee": "Landlord", "amount": Decimal("1000.00"), "due_date": date(2025, 1, 5)},
        today=date(2025, 1, 1),
    )
    PaymentService(db_session).mark_paid(fam.id, admin.id, rent.id, paid_date=date(2025, 1, 5))

    groceries = SpendingCategoryService(db_session).create(
        fam.id, admin.id, {"name": "Groceries", "budget_category_id": budget["Needs"].id}
    )
    account = make_account(fam.id)
    make_transaction(account, amount="200.00", when=date(2025, 1, 10), description="Market", category_id=groceries.id)
    make_transaction(account, amount="400.00", when=date(2025, 2, 12), description="Hardware Store")
    make_transaction(account, amount="-50.00", when=date(2025, 2, 13), description="Refund")
    return {"groceries": groceries, "rent": rent}


def test_cash_flow_by_month(client, family, ledger):
    res = client.get("/api/reports/cash-flow", params=JAN_FEB, headers=family["headers"]["viewer"])
    assert res.status_code == 200, res.text
    body = res.json()
    jan, feb = body["periods"]
    assert jan["period"] == "2025-01"
    assert jan["start_date"] == "2025-01-01"
    assert (jan["income"], jan["expenses"], jan["net"]) == (3000.0, 1200.0, 1800.0)
    assert jan["income_breakdown"] == {"Employer": 3000.0}
    assert jan["expense_breakdown"] == {"Groceries": 200.0, "Uncategorized": 1000.0}
    assert (feb["income"], feb["expenses"], feb["net"]) == (3000.0, 400.0, 2600.0)
    assert body["totals"] == {"income": 6000.0, "expenses": 1600.0, "net": 4400.0}


def test_cash_flow_by_quarter(client, family, ledger):
    res = client.get(
        "/api/reports/cash-flow", params={**JAN_FEB, "group_by": "quarter"}, headers=family["headers"]["admin"]
    )
    periods = res.json()["periods"]
    assert [p["period"] for p in periods] == ["2025-Q1"]
    assert periods[0]["net"] == 4400.0


def test_report_range_validation(client, family):
    headers = family["headers"]["admin"]
    res = client.get(
        "/api/reports/cash-flow", params={"start_date": "2015-01-01", "end_date": "2025-01-01"}, headers=headers
    )
    assert res.status_code == 400
    assert res.json()["detail"] == "Date range cannot exceed 5 years"

    res = client.get(
        "/api/reports/spending-analysis", params={"start_date": "2025-02-01", "end_date": "2025-01-01"}, headers=headers
    )
    assert res.status_code == 400
    assert res.json()["detail"] == "end_date must be on or after start_date"

    res = client.get("/api/reports/savings-rate", params={"target_rate": 150}, headers=headers)
    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "query.target_rate"


def test_spending_analysis(client, family, ledger):
    body = client.get("/api/reports/spending-analysis", params=JAN_FEB, headers=family["headers"]["admin"]).json()
    assert body["total_spending"] == 1600.0
    first, second = body["category_breakdown"]
    assert first == {"category": "Uncategorized", "amount": 1400.0, "count": 2, "percentage": 87.5}
    assert second == {"category": "Groceries", "amount": 200.0, "count": 1, "percentage": 12.5}
    assert [m["merchant"] for m in body["top_merchants"]] == ["Landlord", "Hardware Store", "Market"]
    assert body["monthly_trends"] == [{"month": "2025-01", "amount": 1200.0}, {"month": "2025-02", "amount": 400.0}]


def test_budget_performance(client, family, ledger):
    body = client.get("/api/reports/budget-performance", params=JAN_FEB, headers=family["headers"]["admin"]).json()
    rows = {r["name"]: r for r in body["categories"]}
    assert rows["Needs"]["budgeted"] == 3000.0
    assert rows["Needs"]["spent"] == 200.0
    assert rows["Needs"]["status"] == "under_budget"
    assert rows["Wants"]["spent"] == 0.0
    assert body["overall"]["total_budgeted"] == 6000.0
    assert body["overall"]["variance"] == 5800.0
    assert body["overall"]["status"] == "under_budget"


def test_income_analysis(client, family, ledger):
    body = client.get("/api/reports/income-analysis", params=JAN_FEB, headers=family["headers"]["admin"]).json()
    assert body["total_income"] == 6000.0
    assert body["regular_income"] == 0.0
    assert body["irregular_income"] == 6000.0
    assert body["average_monthly_income"] == 3000.0
    assert body["income_consistency"] == 100.0
    assert body["growth_trend"] == "stable"
    assert body["sources"] == [
        {"source": "Employer", "amount": 6000.0, "count": 2, "frequency": "once", "reliability": 100.0}
    ]


def test_savings_rate(client, family, ledger):
    res = client.get(
        "/api/reports/savings-rate", params={**JAN_FEB, "target_rate": 70}, headers=family["headers"]["admin"]
    )
    body = res.json()
    assert [m["savings_rate"] for m in body["monthly_data"]] == [60.0, 86.67]
    assert body["current_savings_rate"] == 86.67
    assert body["overall_savings_rate"] == 73.33
    assert body["months_above_target"] == 1
    assert body["savings_trend"] == "stable"
    assert body["total_saved"] == 4400.0


def test_savings_rate_target_bounds(db_session, family):
    with pytest.raises(ValidationFailed, match="Target rate must be between 0 and 100"):
        ReportService(db_session).savings_rate(family["family"].id, date(2025, 1, 1), date(2025, 1, 31), -1)


def test_monthly_and_annual_summary(client, family, ledger):
    headers = family["headers"]["admin"]
    month = client.get("/api/reports/monthly-summary", params={"month": "2025-01"}, headers=headers).json()
    assert month["month"] == "2025-01"
    assert (month["income"], month["expenses"], month["net"]) == (3000.0, 1200.0, 1800.0)
    assert month["savings_rate"] == 60.0
    assert month["payments"] == {"total": 1, "paid": 1, "overdue": 0, "scheduled": 0}
    assert [c["category"] for c in month["top_categories"]] == ["Uncategorized", "Groceries"]
    assert month["budget"]["total_budgeted"] == 3000.0

    assert client.get("/api/reports/monthly-summary", params={"month": "2025-1"}, headers=headers).status_code == 400

    year = client.get("/api/reports/annual-summary", params={"year": 2025}, headers=headers).json()
    assert len(year["months"]) == 12
    assert year["totals"]["income"] == 6000.0
    assert year["totals"]["average_monthly_income"] == 500.0
    assert year["best_month"] == "2025-02"
    assert year["worst_month"] == "2025-03"


def test_net_worth(client, family, make_account):
    fam_id = family["family"].id
    make_account(fam_id, balance="1000.00", name="Checking")
    make_account(fam_id, account_type=models.AccountType.CREDIT, balance="-250.00", name="Card")
    body = client.get("/api/reports/net-worth", headers=family["headers"]["viewer"]).json()
    assert body["total_assets"] == 1000.0
    assert body["total_liabilities"] == 250.0
    assert body["net_worth"] == 750.0
    assert body["by_type"] == {"checking": 1000.0, "credit": 250.0}
    assert {a["kind"] for a in body["accounts"]} == {"asset", "liability"}


def test_debt_analysis(db_session, family, make_account):
    fam, admin = family["family"], family["admin"]
    make_account(fam.id, account_type=models.AccountType.CREDIT, balance="250.00", name="Card")
    make_account(fam.id, account_type=models.AccountType.LOAN, balance="5000.00", name="Car Loan")
    PaymentService(db_session).create(
        fam.id,
        admin.id,
        {
            "payee": "Auto Lender",
            "amount": Decimal("300.00"),
            "due_date": date(2030, 1, 1),
            "payment_type": models.PaymentType.RECURRING,
            "frequency": models.Frequency.MONTHLY,
        },
    )
    body = ReportService(db_session).debt_analysis(fam.id, today=date(2029, 12, 1))
    assert body["total_debt"] == 5250.0
    assert body["debt_by_type"] == {
        "credit": {"amount": 250.0, "accounts": 1},
        "loan": {"amount": 5000.0, "accounts": 1},
    }
    assert body["monthly_payment_obligations"] == 300.0
    assert body["estimated_monthly_interest"] == 78.75
    # 5250 / (300 - 78.75) = 23.7
    assert body["months_to_payoff"] == 24
    assert body["debt_to_income_ratio"] == 0.0


def test_debt_analysis_without_debt(db_session, family):
    body = ReportService(db_session).debt_analysis(family["family"].id)
    assert body["total_debt"] == 0.0
    assert body["months_to_payoff"] == 0


def test_custom_report(client, family, ledger):
    headers = family["headers"]["admin"]
    res = client.post(
        "/api/reports/custom",
        json={"sections": ["cash_flow", "net_worth"], **JAN_FEB},
        headers=headers,
    )
    assert res.status_code == 200
    sections = res.json()["sections"]
    assert set(sections) == {"cash_flow", "net_worth"}
    assert sections["cash_flow"]["totals"]["net"] == 4400.0

    res = client.post(
        "/api/reports/custom",
        json={"sections": ["cash_flow"], "start_date": "2025-03-01", "end_date": "2025-01-01"},
        headers=headers,
    )
    assert res.status_code == 400


def test_reports_are_family_scoped(client, other_family, ledger):
    body = client.get("/api/reports/cash-flow", params=JAN_FEB, headers=other_family["headers"]).json()
    assert body["totals"] == {"income": 0.0, "expenses": 0.0, "net": 0.0}


def test_reports_need_view_permission(client, db_session, family):
    viewer = family["viewer"]
    viewer.permissions = {**viewer.permissions, "can_view_reports": False}
    db_session.commit()
    res = client.get("/api/reports/net-worth", headers=family["headers"]["viewer"])
    assert res.status_code == 403
