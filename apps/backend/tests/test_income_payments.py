from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from family_finance import models
from family_finance.core.errors import ValidationFailed
from family_finance.services.attribution_service import AttributionService
from family_finance.services.income_service import IncomeService
from family_finance.services.payment_service import PaymentService


class TestIncomeLifecycle:
    def test_create_sets_next_occurrence(self, db_session, family):
        fam, admin = family["family"], family["admin"]
        row = IncomeService(db_session).create(
            fam.id,
            admin.id,
            {
                "name": "Salary",
                "amount": Decimal("2500"),
                "scheduled_date": date(2025, 1, 31),
                "frequency": models.Frequency.MONTHLY,
            },
        )
        assert row.next_occurrence == date(2025, 2, 28)
        assert row.remaining_amount == Decimal("2500.00")
        assert row.status == models.IncomeStatus.SCHEDULED

    def test_mark_received_spawns_next_event(self, db_session, family):
        fam, admin = family["family"], family["admin"]
        svc = IncomeService(db_session)
        row = svc.create(
            fam.id,
            admin.id,
            {
                "name": "Salary",
                "amount": Decimal("2000"),
                "scheduled_date": date(2025, 3, 1),
                "frequency": models.Frequency.BIWEEKLY,
            },
        )
        received = svc.mark_received(
            fam.id, admin.id, row.id, actual_amount=Decimal("2100"), actual_date=date(2025, 3, 2)
        )
        assert received.status == models.IncomeStatus.RECEIVED
        assert received.remaining_amount == Decimal("2100.00")

        rows, total = svc.list(fam.id)
        assert total == 2
        spawned = next(r for r in rows if r.id != row.id)
        assert spawned.scheduled_date == date(2025, 3, 15)
        assert spawned.status == models.IncomeStatus.SCHEDULED
        assert spawned.next_occurrence == date(2025, 3, 29)

        with pytest.raises(ValidationFailed, match="already marked as received"):
            svc.mark_received(fam.id, admin.id, row.id)

    def test_actual_amount_respects_allocations(self, db_session, family):
        fam, admin = family["family"], family["admin"]
        income = IncomeService(db_session).create(
            fam.id, admin.id, {"name": "Pay", "amount": Decimal("1000"), "scheduled_date": date(2030, 1, 1)}
        )
        payment = PaymentService(db_session).create(
            fam.id, admin.id, {"payee": "Rent", "amount": Decimal("800"), "due_date": date(2030, 1, 5)}
        )
        AttributionService(db_session).create(fam.id, admin.id, payment.id, income.id, Decimal("800"))

        svc = IncomeService(db_session)
        with pytest.raises(ValidationFailed):
            svc.mark_received(fam.id, admin.id, income.id, actual_amount=Decimal("700"))
        with pytest.raises(ValidationFailed):
            svc.update(fam.id, admin.id, income.id, {"amount": Decimal("799")})

        row = svc.mark_received(fam.id, admin.id, income.id, actual_amount=Decimal("900"))
        assert row.remaining_amount == Decimal("100.00")

        reverted = svc.revert_received(fam.id, admin.id, income.id)
        assert reverted.status == models.IncomeStatus.SCHEDULED
        assert reverted.actual_amount is None
        assert reverted.remaining_amount == Decimal("200.00")

    def test_received_event_is_read_only(self, db_session, family):
        fam, admin = family["family"], family["admin"]
        svc = IncomeService(db_session)
        row = svc.create(fam.id, admin.id, {"name": "Gift", "amount": Decimal("50"), "scheduled_date": date(2025, 1, 1)})
        svc.mark_received(fam.id, admin.id, row.id)
        with pytest.raises(ValidationFailed, match="Cannot update received"):
            svc.update(fam.id, admin.id, row.id, {"name": "Birthday gift"})

    def test_summary_and_upcoming(self, db_session, family):
        fam, admin = family["family"], family["admin"]
        svc = IncomeService(db_session)
        today = date(2030, 6, 1)
        svc.create(fam.id, admin.id, {"name": "A", "amount": Decimal("100"), "scheduled_date": today + timedelta(days=3)})
        svc.create(fam.id, admin.id, {"name": "B", "amount": Decimal("200"), "scheduled_date": today + timedelta(days=45)})
        got = svc.create(fam.id, admin.id, {"name": "C", "amount": Decimal("300"), "scheduled_date": today})
        svc.mark_received(fam.id, admin.id, got.id, actual_amount=Decimal("250"), actual_date=today)

        assert [r.name for r in svc.upcoming(fam.id, 30, today=today)] == ["A"]
        summary = svc.summary(fam.id)
        assert summary["total_scheduled"] == 600.0
        assert summary["total_received"] == 250.0
        assert summary["received_count"] == 1
        assert summary["scheduled_count"] == 2


class TestPaymentLifecycle:
    def test_past_due_payment_starts_overdue(self, db_session, family):
        fam, admin = family["family"], family["admin"]
        row = PaymentService(db_session).create(
            fam.id,
            admin.id,
            {"payee": "Water", "amount": Decimal("45"), "due_date": date(2025, 1, 1)},
            today=date(2025, 1, 10),
        )
        assert row.status == models.PaymentStatus.OVERDUE
        assert row.next_due_date is None

    def test_partial_then_recurring_spawn(self, db_session, family):
        fam, admin = family["family"], family["admin"]
        svc = PaymentService(db_session)
        row = svc.create(
            fam.id,
            admin.id,
            {
                "payee": "Internet",
                "amount": Decimal("80"),
                "due_date": date(2030, 1, 31),
                "payment_type": models.PaymentType.RECURRING,
                "frequency": models.Frequency.MONTHLY,
            },
        )
        assert row.next_due_date == date(2030, 2, 28)

        paid = svc.mark_paid(fam.id, admin.id, row.id, paid_amount=Decimal("50"), paid_date=date(2030, 1, 30))
        assert paid.status == models.PaymentStatus.PARTIAL

        rows, total = svc.list(fam.id)
        assert total == 2
        nxt = next(r for r in rows if r.id != row.id)
        assert nxt.due_date == date(2030, 2, 28)
        assert nxt.next_due_date == date(2030, 3, 28)
        assert nxt.status == models.PaymentStatus.SCHEDULED

    def test_variable_payment_does_not_spawn(self, db_session, family):
        fam, admin = family["family"], family["admin"]
        svc = PaymentService(db_session)
        row = svc.create(
            fam.id,
            admin.id,
            {
                "payee": "Electric",
                "amount": Decimal("95"),
                "due_date": date(2030, 1, 15),
                "payment_type": models.PaymentType.VARIABLE,
                "frequency": models.Frequency.MONTHLY,
            },
        )
        svc.mark_paid(fam.id, admin.id, row.id, paid_date=date(2030, 1, 14))
        rows, total = svc.list(fam.id)
        assert total == 1
        assert rows[0].status == models.PaymentStatus.PAID

    def test_mark_paid_full_and_revert(self, db_session, family):
        fam, admin = family["family"], family["admin"]
        svc = PaymentService(db_session)
        row = svc.create(fam.id, admin.id, {"payee": "Doctor", "amount": Decimal("120"), "due_date": date(2030, 5, 1)})
        paid = svc.mark_paid(fam.id, admin.id, row.id)
        assert paid.status == models.PaymentStatus.PAID
        assert paid.paid_amount == Decimal("120.00")
        with pytest.raises(ValidationFailed, match="already marked as paid"):
            svc.mark_paid(fam.id, admin.id, row.id)
        with pytest.raises(ValidationFailed, match="Cannot update paid payment"):
            svc.update(fam.id, admin.id, row.id, {"payee": "Dentist"})

        reverted = svc.revert_paid(fam.id, admin.id, row.id, today=date(2030, 5, 2))
        assert reverted.status == models.PaymentStatus.OVERDUE
        assert reverted.paid_date is None
        assert svc.list(fam.id)[1] == 1

    def test_cancelled_payment_cannot_be_paid(self, db_session, family):
        fam, admin = family["family"], family["admin"]
        svc = PaymentService(db_session)
        row = svc.create(fam.id, admin.id, {"payee": "Gym", "amount": Decimal("30"), "due_date": date(2030, 1, 1)})
        svc.update(fam.id, admin.id, row.id, {"status": models.PaymentStatus.CANCELLED})
        with pytest.raises(ValidationFailed, match="cancelled"):
            svc.mark_paid(fam.id, admin.id, row.id)
        with pytest.raises(ValidationFailed, match="mark-paid"):
            svc.update(fam.id, admin.id, row.id, {"status": models.PaymentStatus.PAID})

    def test_amount_cannot_drop_below_attributed(self, db_session, family):
        fam, admin = family["family"], family["admin"]
        income = IncomeService(db_session).create(
            fam.id, admin.id, {"name": "Pay", "amount": Decimal("500"), "scheduled_date": date(2030, 1, 1)}
        )
        svc = PaymentService(db_session)
        row = svc.create(fam.id, admin.id, {"payee": "Car", "amount": Decimal("300"), "due_date": date(2030, 1, 9)})
        AttributionService(db_session).create(fam.id, admin.id, row.id, income.id, Decimal("250"))
        with pytest.raises(ValidationFailed, match="attributed total"):
            svc.update(fam.id, admin.id, row.id, {"amount": Decimal("200")})
        assert svc.update(fam.id, admin.id, row.id, {"amount": Decimal("250")}).amount == Decimal("250.00")

    def test_overdue_flips_open_payments(self, db_session, family):
        fam, admin = family["family"], family["admin"]
        svc = PaymentService(db_session)
        svc.create(fam.id, admin.id, {"payee": "Old", "amount": Decimal("10"), "due_date": date(2030, 1, 1)})
        svc.create(fam.id, admin.id, {"payee": "New", "amount": Decimal("10"), "due_date": date(2030, 3, 1)})

        rows = svc.overdue(fam.id, today=date(2030, 2, 1))
        assert [r.payee for r in rows] == ["Old"]
        assert rows[0].status == models.PaymentStatus.OVERDUE


def test_income_api(client, family):
    headers = family["headers"]["admin"]
    created = client.post(
        "/api/income-events",
        json={"name": "Salary", "amount": "1500.50", "scheduled_date": "2030-01-15", "frequency": "monthly"},
        headers=headers,
    )
    assert created.status_code == 201, created.text
    body = created.json()
    assert body["next_occurrence"] == "2030-02-15"
    assert body["remaining_amount"] == 1500.5

    bulk = client.post(
        "/api/income-events/bulk",
        json={
            "income_events": [
                {"name": "Side gig", "amount": "200", "scheduled_date": "2030-01-20"},
                {"name": "Refund", "amount": "35.10", "scheduled_date": "2030-01-22"},
            ]
        },
        headers=headers,
    )
    assert bulk.status_code == 201
    assert len(bulk.json()) == 2

    page = client.get("/api/income-events", headers=headers).json()
    assert page["total"] == 3

    received = client.post(
        f"/api/income-events/{body['id']}/mark-received",
        json={"actual_amount": "1490.00", "actual_date": "2030-01-15"},
        headers=headers,
    )
    assert received.status_code == 200, received.text
    assert received.json()["status"] == "received"

    bad = client.post(
        "/api/income-events", json={"name": "Zero", "amount": "0", "scheduled_date": "2030-01-01"}, headers=headers
    )
    assert bad.status_code == 400
    assert bad.json()["detail"] == "Validation failed"
    assert bad.json()["errors"][0]["field"] == "amount"


def test_payment_api(client, family):
    headers = family["headers"]["admin"]
    mismatched = client.post(
        "/api/payments",
        json={"payee": "Rent", "amount": "900", "due_date": "2030-01-01", "payment_type": "recurring"},
        headers=headers,
    )
    assert mismatched.status_code == 400

    created = client.post(
        "/api/payments",
        json={
            "payee": "Rent",
            "amount": "900",
            "due_date": "2030-01-01",
            "payment_type": "recurring",
            "frequency": "monthly",
        },
        headers=headers,
    )
    assert created.status_code == 201, created.text
    payment = created.json()
    assert payment["attributed_amount"] == 0.0

    paid = client.post(f"/api/payments/{payment['id']}/mark-paid", headers=headers)
    assert paid.status_code == 200
    assert paid.json()["status"] == "paid"

    summary = client.get("/api/payments/summary", headers=headers).json()
    assert summary["count"] == 2
    assert summary["paid_count"] == 1

    assert client.delete(f"/api/payments/{payment['id']}", headers=family["headers"]["viewer"]).status_code == 403
    assert client.delete(f"/api/payments/{payment['id']}", headers=headers).status_code == 204
