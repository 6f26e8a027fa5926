from __future__ import annotations

import json
from datetime import date, timedelta
from decimal import Decimal

from family_finance import models
from family_finance.core.config import settings
from family_finance.services.export_service import export_report, report_rows, rows_to_csv
from family_finance.services.income_service import IncomeService
from family_finance.services.payment_service import PaymentService

JAN_FEB = {"start_date": "2025-01-01", "end_date": "2025-02-28"}


def test_rows_to_csv_flattens_nested_values():
    rows = [
        {"month": "2025-01", "totals": {"in": 10.0, "out": 4.0}, "tags": ["a", "b"]},
        {"month": "2025-02", "totals": {"in": 12.0}, "extra": 1},
    ]
    lines = rows_to_csv(rows).splitlines()
    assert lines[0] == "month,totals.in,totals.out,tags,extra"
    assert lines[1] == '2025-01,10.0,4.0,"[""a"", ""b""]",'
    assert lines[2] == "2025-02,12.0,,,1"


def test_rows_to_csv_neutralises_formulas():
    rows = [
        {"merchant": "=HYPERLINK(\"http://evil\")", "amount": -50.0},
        {"merchant": "@SUM(A1:A2)", "amount": 12.5},
        {"merchant": "+1 Deli", "amount": 3.0},
        {"merchant": "Corner Shop", "amount": 4.0},
    ]
    lines = rows_to_csv(rows).splitlines()
    assert lines[1] == "\"'=HYPERLINK(\"\"http://evil\"\")\",-50.0"
    assert lines[2] == "'@SUM(A1:A2),12.5"
    assert lines[3] == "'+1 Deli,3.0"
    assert lines[4] == "Corner Shop,4.0"


def test_summary_reports_export_a_single_row():
    data = {"as_of": "2025-01-31", "net_worth": 750.0, "by_type": {"checking": 1000.0}, "accounts": []}
    assert report_rows(models.ReportType.NET_WORTH, data) == [
        {"as_of": "2025-01-31", "net_worth": 750.0, "by_type": {"checking": 1000.0}}
    ]
    body, media_type, filename = export_report(models.ReportType.NET_WORTH, data, "json")
    assert media_type == "application/json"
    assert filename == f"net_worth_{date.today().isoformat()}.json"
    assert json.loads(body) == data


def test_export_cash_flow_csv(client, family):
    res = client.get(
        "/api/reports/export",
        params={"report_type": "cash_flow", "format": "csv", **JAN_FEB},
        headers=family["headers"]["viewer"],
    )
    assert res.status_code == 200, res.text
    assert res.headers["content-type"].startswith("text/csv")
    assert res.headers["content-disposition"] == (
        f'attachment; filename="cash_flow_{date.today().isoformat()}.csv"'
    )
    lines = res.text.splitlines()
    assert lines[0] == "period,start_date,income,expenses,net"
    assert lines[1:] == ["2025-01,2025-01-01,0.0,0.0,0.0", "2025-02,2025-02-01,0.0,0.0,0.0"]


def test_export_json_and_validation(client, family):
    headers = family["headers"]["admin"]
    res = client.get(
        "/api/reports/export",
        params={"report_type": "savings_rate", "format": "json", **JAN_FEB},
        headers=headers,
    )
    assert res.status_code == 200
    body = json.loads(res.text)
    assert [m["month"] for m in body["monthly_data"]] == ["2025-01", "2025-02"]

    res = client.get("/api/reports/export", params={"report_type": "cash_flow", "format": "xml"}, headers=headers)
    assert res.status_code == 400
    res = client.get("/api/reports/export", params={"report_type": "tax_return"}, headers=headers)
    assert res.status_code == 400


def test_export_is_rate_limited(client, family, monkeypatch):
    monkeypatch.setitem(settings.RATE_LIMITS, "report_export", (2, 60))
    headers = family["headers"]["admin"]
    params = {"report_type": "net_worth"}
    assert client.get("/api/reports/export", params=params, headers=headers).status_code == 200
    assert client.get("/api/reports/export", params=params, headers=headers).status_code == 200
    res = client.get("/api/reports/export", params=params, headers=headers)
    assert res.status_code == 429
    assert res.json()["detail"] == "Too many export requests, please try again later."
    assert int(res.headers["Retry-After"]) > 0


def test_dashboard_snapshot(client, db_session, family, budget, make_account, make_transaction):
    fam, admin = family["family"], family["admin"]
    today = date.today()
    checking = make_account(fam.id, balance="1000.00", name="Checking")
    card = make_account(fam.id, account_type=models.AccountType.CREDIT, balance="200.00", name="Card")
    card.sync_status = models.SyncStatus.ERROR
    db_session.commit()
    make_transaction(checking, amount="30.00", when=today, description="Coffee Roasters")

    income = IncomeService(db_session)
    paycheck = income.create(
        fam.id, admin.id, {"name": "Paycheck", "amount": Decimal("500.00"), "scheduled_date": today}
    )
    income.mark_received(fam.id, admin.id, paycheck.id, actual_date=today)
    income.create(
        fam.id, admin.id, {"name": "Side gig", "amount": Decimal("250.00"), "scheduled_date": today + timedelta(days=2)}
    )

    payments = PaymentService(db_session)
    for payee, amount, offset in (("City Power", "120.00", 3), ("Water", "50.00", -5), ("Insurance", "900.00", 20)):
        payments.create(
            fam.id, admin.id, {"payee": payee, "amount": Decimal(amount), "due_date": today + timedelta(days=offset)}
        )

    res = client.get("/api/analytics/dashboard", headers=family["headers"]["viewer"])
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["as_of"] == today.isoformat()
    assert body["total_balance"] == 800.0
    assert body["account_count"] == 2
    assert body["accounts_needing_attention"] == 1
    assert body["month"] == today.strftime("%Y-%m")
    assert (body["month_income"], body["month_expenses"], body["month_net"]) == (500.0, 30.0, 470.0)
    assert [p["payee"] for p in body["upcoming_payments"]] == ["City Power"]
    assert body["upcoming_payments_total"] == 120.0
    assert [i["name"] for i in body["upcoming_income"]] == ["Side gig"]
    assert body["upcoming_income_total"] == 250.0
    assert body["overdue_count"] == 1
    assert body["overdue_total"] == 50.0
    assert body["budget"] == {
        "total_percentage": 100.0,
        "remaining_percentage": 0.0,
        "is_complete": True,
        "category_count": 3,
    }
    assert [t["description"] for t in body["recent_transactions"]] == ["Coffee Roasters"]


def test_dashboard_requires_login(client):
    assert client.get("/api/analytics/dashboard").status_code == 401
