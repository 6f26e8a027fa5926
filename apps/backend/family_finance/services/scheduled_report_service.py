from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.errors import NotFound, ValidationFailed
from family_finance.services.audit_service import AuditService, snapshot
from family_finance.services.report_service import ReportService
from family_finance.utils.schedule import add_months

logger = logging.getLogger(__name__)

_SNAPSHOT_FIELDS = ("name", "report_type", "frequency", "recipients", "delivery_day", "delivery_hour", "status")
_MONTH_STEPS = {
    models.ReportFrequency.MONTHLY: 1,
    models.ReportFrequency.QUARTERLY: 3,
    models.ReportFrequency.ANNUAL: 12,
}


def validate_delivery_day(frequency: models.ReportFrequency, delivery_day: Optional[int]) -> None:
    if delivery_day is None:
        return
    if frequency == models.ReportFrequency.WEEKLY:
        if not 0 <= delivery_day <= 6:
            raise ValidationFailed("Weekly reports need a delivery_day between 0 (Monday) and 6 (Sunday)")
    elif not 1 <= delivery_day <= 31:
        raise ValidationFailed("delivery_day must be between 1 and 31")


def compute_next_execution(
    frequency: models.ReportFrequency,
    delivery_day: Optional[int],
    delivery_hour: int,
    after: datetime,
) -> datetime:
    """First delivery slot strictly after ``after``.

    Weekly reports run on ``delivery_day`` as a weekday (Monday = 0). The
    other frequencies run on that day of the month, clamped to short months,
    every 1, 3 or 12 months. Without a delivery day weekly reports use Monday
    and the rest use the 1st.
    """
    if frequency == models.ReportFrequency.WEEKLY:
        weekday = 0 if delivery_day is None else delivery_day
        candidate = datetime.combine(after.date(), datetime.min.time()).replace(hour=delivery_hour)
        candidate += timedelta(days=(weekday - candidate.weekday()) % 7)
        if candidate <= after:
            candidate += timedelta(days=7)
        return candidate

    day = delivery_day or 1
    step = _MONTH_STEPS[frequency]

    def slot(month_start: date) -> datetime:
        last = calendar.monthrange(month_start.year, month_start.month)[1]
        return datetime(month_start.year, month_start.month, min(day, last), delivery_hour)

    month_start = after.date().replace(day=1)
    candidate = slot(month_start)
    while candidate <= after:
        month_start = add_months(month_start, step)
        candidate = slot(month_start)
    return candidate


def summarize(report_type: models.ReportType, data: dict) -> dict:
    """Small digest of a generated report kept on the execution row."""
    keys = (
        "totals",
        "total_spending",
        "overall",
        "total_income",
        "net_worth",
        "average_savings_rate",
        "income",
        "expenses",
        "net",
        "year",
        "month",
    )
    digest = {k: data[k] for k in keys if k in data}
    digest["report_type"] = report_type.value
    return digest


class ScheduledReportService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.audit = AuditService(db)

    def get(self, family_id: int, report_id: int) -> models.ScheduledReport:
        row = (
            self.db.query(models.ScheduledReport)
            .filter(models.ScheduledReport.family_id == family_id, models.ScheduledReport.id == report_id)
            .first()
        )
        if row is None:
            raise NotFound("Scheduled report not found")
        return row

    def list(self, family_id: int, *, status: Optional[models.ScheduledReportStatus] = None):
        q = self.db.query(models.ScheduledReport).filter(models.ScheduledReport.family_id == family_id)
        if status is not None:
            q = q.filter(models.ScheduledReport.status == status)
        return q.order_by(models.ScheduledReport.created_at.desc(), models.ScheduledReport.id.desc()).all()

    def create(
        self, family_id: int, member_id: int, payload: dict, *, now: Optional[datetime] = None
    ) -> models.ScheduledReport:
        now = now or models.utcnow_naive()
        validate_delivery_day(payload["frequency"], payload.get("delivery_day"))
        row = models.ScheduledReport(
            family_id=family_id,
            created_by_id=member_id,
            name=payload["name"].strip(),
            description=payload.get("description"),
            report_type=payload["report_type"],
            frequency=payload["frequency"],
            recipients=[str(r).lower() for r in payload["recipients"]],
            parameters=dict(payload.get("parameters") or {}),
            timezone=payload.get("timezone") or "UTC",
            delivery_day=payload.get("delivery_day"),
            delivery_hour=payload.get("delivery_hour", 9),
            status=models.ScheduledReportStatus.ACTIVE,
        )
        row.next_execution = compute_next_execution(row.frequency, row.delivery_day, row.delivery_hour, now)
        self.db.add(row)
        self.db.flush()
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.CREATE,
            entity_type="ScheduledReport",
            entity_id=row.id,
            new_values=snapshot(row, _SNAPSHOT_FIELDS),
        )
        self.db.commit()
        self.db.refresh(row)
        logger.info("Scheduled %s report %s for family %s", row.frequency.value, row.id, family_id)
        return row

    def update(
        self, family_id: int, member_id: int, report_id: int, patch: dict, *, now: Optional[datetime] = None
    ) -> models.ScheduledReport:
        row = self.get(family_id, report_id)
        old = snapshot(row, _SNAPSHOT_FIELDS)
        frequency = patch.get("frequency") or row.frequency
        delivery_day = patch["delivery_day"] if "delivery_day" in patch else row.delivery_day
        validate_delivery_day(frequency, delivery_day)
        for key in ("name", "description", "report_type", "frequency", "parameters", "timezone", "delivery_hour", "status"):
            if key in patch and patch[key] is not None:
                setattr(row, key, patch[key])
        if patch.get("recipients") is not None:
            row.recipients = [str(r).lower() for r in patch["recipients"]]
        row.delivery_day = delivery_day
        schedule_keys = {"frequency", "delivery_day", "delivery_hour", "status"}
        if schedule_keys & patch.keys() and row.status == models.ScheduledReportStatus.ACTIVE:
            row.next_execution = compute_next_execution(
                row.frequency, row.delivery_day, row.delivery_hour, now or models.utcnow_naive()
            )
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="ScheduledReport",
            entity_id=row.id,
            old_values=old,
            new_values=snapshot(row, _SNAPSHOT_FIELDS),
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete(self, family_id: int, member_id: int, report_id: int) -> None:
        row = self.get(family_id, report_id)
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.DELETE,
            entity_type="ScheduledReport",
            entity_id=row.id,
            old_values=snapshot(row, _SNAPSHOT_FIELDS),
        )
        self.db.delete(row)
        self.db.commit()

    def run(
        self, family_id: int, report_id: int, *, now: Optional[datetime] = None
    ) -> tuple[models.ReportExecution, Optional[dict]]:
        """Generate the report now and record the execution.

        Returns the execution row and the report data (``None`` on failure).
        A failed run flips the schedule to ``error`` instead of raising.
        """
        row = self.get(family_id, report_id)
        if row.status != models.ScheduledReportStatus.ACTIVE:
            raise ValidationFailed("Only active scheduled reports can be run")
        started = now or models.utcnow_naive()
        execution = models.ReportExecution(
            scheduled_report_id=row.id, status=models.ExecutionStatus.SUCCESS, started_at=started
        )
        data: Optional[dict] = None
        try:
            data = ReportService(self.db).generate(family_id, row.report_type, row.parameters)
        except Exception as exc:  # recorded on the execution row
            logger.exception("Scheduled report %s failed", row.id)
            data = None
            execution.status = models.ExecutionStatus.FAILED
            execution.error_message = str(getattr(exc, "message", exc))[:2000]
            row.status = models.ScheduledReportStatus.ERROR
        else:
            execution.summary = {**summarize(row.report_type, data), "recipients": len(row.recipients)}
            row.next_execution = compute_next_execution(row.frequency, row.delivery_day, row.delivery_hour, started)
            logger.info("Scheduled report %s generated for %d recipients", row.id, len(row.recipients))
        execution.completed_at = models.utcnow_naive()
        row.last_execution = started
        self.db.add(execution)
        self.db.commit()
        self.db.refresh(execution)
        return execution, data

    def executions(self, family_id: int, report_id: int, *, limit: int = 50) -> list[models.ReportExecution]:
        row = self.get(family_id, report_id)
        return (
            self.db.query(models.ReportExecution)
            .filter(models.ReportExecution.scheduled_report_id == row.id)
            .order_by(models.ReportExecution.started_at.desc(), models.ReportExecution.id.desc())
            .limit(limit)
            .all()
        )

    def due(self, *, now: Optional[datetime] = None, family_id: Optional[int] = None) -> list[models.ScheduledReport]:
        now = now or models.utcnow_naive()
        q = self.db.query(models.ScheduledReport).filter(
            models.ScheduledReport.status == models.ScheduledReportStatus.ACTIVE,
            models.ScheduledReport.next_execution.is_not(None),
            models.ScheduledReport.next_execution <= now,
        )
        if family_id is not None:
            q = q.filter(models.ScheduledReport.family_id == family_id)
        return q.order_by(models.ScheduledReport.next_execution).all()

    def run_due(self, *, now: Optional[datetime] = None) -> int:
        """Run every due schedule across all families; returns how many ran."""
        count = 0
        for row in self.due(now=now):
            self.run(row.family_id, row.id, now=now)
            count += 1
        return count
