from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable

from sqlalchemy.orm import Session

from family_finance import models


def snapshot(row: Any, fields: Iterable[str]) -> dict[str, Any]:
    """JSON-safe copy of selected attributes for audit old/new values."""
    out: dict[str, Any] = {}
    for name in fields:
        value = getattr(row, name, None)
        if isinstance(value, Decimal):
            value = float(value)
        elif isinstance(value, Enum):
            value = value.value
        elif isinstance(value, (date, datetime)):
            value = value.isoformat()
        out[name] = value
    return out


class AuditService:
    """Append-only family activity log. Callers own the commit."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        *,
        family_id: int,
        member_id: int | None,
        action: models.AuditAction,
        entity_type: str,
        entity_id: int | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        ip_address: str | None = None,
    ) -> models.AuditLog:
        row = models.AuditLog(
            family_id=family_id,
            family_member_id=member_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
        )
        self.db.add(row)
        return row

    def list_for_family(self, family_id: int, *, limit: int = 50, offset: int = 0) -> tuple[list[models.AuditLog], int]:
        q = self.db.query(models.AuditLog).filter(models.AuditLog.family_id == family_id)
        total = q.count()
        rows = (
            q.order_by(models.AuditLog.created_at.desc(), models.AuditLog.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return rows, total
