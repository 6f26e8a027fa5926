"""Report handlers. Every route here requires ``can_view_reports``."""

from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from fastapi import Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.database import get_db
from family_finance.core.deps import can_view_reports
from family_finance.core.errors import ValidationFailed
from family_finance.core.rate_limit import enforce_rate_limit
from family_finance.schemas import CustomReportRequest, ScheduledReportCreate, ScheduledReportUpdate
from family_finance.services.export_service import export_report
from family_finance.services.report_service import ReportService, default_range
from family_finance.services.scheduled_report_service import ScheduledReportService


def _range(start_date: Optional[date], end_date: Optional[date]) -> tuple[date, date]:
    default_start, default_end = default_range()
    start = start_date or default_start
    end = end_date or default_end
    if end < start:
        raise ValidationFailed("end_date must be on or after start_date")
    return start, end


def cash_flow(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    group_by: Literal["day", "week", "month", "quarter", "year"] = "month",
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> dict:
    start, end = _range(start_date, end_date)
    return ReportService(db).cash_flow(member.family_id, start, end, group_by)


def spending_analysis(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> dict:
    start, end = _range(start_date, end_date)
    return ReportService(db).spending_analysis(member.family_id, start, end)


def budget_performance(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> dict:
    start, end = _range(start_date, end_date)
    return ReportService(db).budget_performance(member.family_id, start, end)


def income_analysis(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> dict:
    start, end = _range(start_date, end_date)
    return ReportService(db).income_analysis(member.family_id, start, end)


def net_worth(member: models.FamilyMember = Depends(can_view_reports), db: Session = Depends(get_db)) -> dict:
    return ReportService(db).net_worth(member.family_id)


def savings_rate(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    target_rate: float = Query(20.0, ge=0, le=100),
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> dict:
    start, end = _range(start_date, end_date)
    return ReportService(db).savings_rate(member.family_id, start, end, target_rate)


def monthly_summary(
    month: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$"),
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> dict:
    target = None
    if month:
        try:
            target = date.fromisoformat(f"{month}-01")
        except ValueError:
            raise ValidationFailed("month must be formatted as YYYY-MM")
    return ReportService(db).monthly_summary(member.family_id, target)


def annual_summary(
    year: Optional[int] = Query(None, ge=1970, le=2100),
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> dict:
    return ReportService(db).annual_summary(member.family_id, year)


def debt_analysis(member: models.FamilyMember = Depends(can_view_reports), db: Session = Depends(get_db)) -> dict:
    return ReportService(db).debt_analysis(member.family_id)


def custom_report(
    payload: CustomReportRequest,
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> dict:
    return ReportService(db).custom(member.family_id, payload.sections, payload.start_date, payload.end_date)


def export(
    request: Request,
    report_type: models.ReportType,
    format: Literal["csv", "json"] = "csv",
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    group_by: Literal["day", "week", "month", "quarter", "year"] = "month",
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> Response:
    enforce_rate_limit(request, "report_export", str(member.id))
    start, end = _range(start_date, end_date)
    params = {"start_date": start, "end_date": end, "group_by": group_by}
    data = ReportService(db).generate(member.family_id, report_type, params)
    body, media_type, filename = export_report(report_type, data, format)
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# Scheduled reports ----------------------------------------------------------
def list_scheduled(
    status: Optional[models.ScheduledReportStatus] = None,
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> list[models.ScheduledReport]:
    return ScheduledReportService(db).list(member.family_id, status=status)


def create_scheduled(
    payload: ScheduledReportCreate,
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> models.ScheduledReport:
    return ScheduledReportService(db).create(member.family_id, member.id, payload.model_dump())


def get_scheduled(
    report_id: int,
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> models.ScheduledReport:
    return ScheduledReportService(db).get(member.family_id, report_id)


def update_scheduled(
    report_id: int,
    payload: ScheduledReportUpdate,
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> models.ScheduledReport:
    return ScheduledReportService(db).update(
        member.family_id, member.id, report_id, payload.model_dump(exclude_unset=True)
    )


def delete_scheduled(
    report_id: int,
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> None:
    ScheduledReportService(db).delete(member.family_id, member.id, report_id)


def run_scheduled(
    report_id: int,
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> dict:
    execution, data = ScheduledReportService(db).run(member.family_id, report_id)
    return {"execution": execution, "data": data}


def list_executions(
    report_id: int,
    limit: int = Query(50, ge=1, le=200),
    member: models.FamilyMember = Depends(can_view_reports),
    db: Session = Depends(get_db),
) -> list[models.ReportExecution]:
    return ScheduledReportService(db).executions(member.family_id, report_id, limit=limit)


def due_scheduled(
    member: models.FamilyMember = Depends(can_view_reports), db: Session = Depends(get_db)
) -> list[models.ScheduledReport]:
    return ScheduledReportService(db).due(family_id=member.family_id)
