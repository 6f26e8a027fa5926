from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.database import get_db
from family_finance.core.deps import get_current_member
from family_finance.services.dashboard_service import DashboardService


def get_dashboard(member: models.FamilyMember = Depends(get_current_member), db: Session = Depends(get_db)) -> dict:
    return DashboardService(db).snapshot(member.family_id)
