from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal

from .core.database import session_scope
from .core.logging_config import configure_logging
from .services.attribution_service import AttributionService
from .services.auth_service import AuthService
from .services.budget_service import BudgetService
from .services.income_service import IncomeService
from .services.payment_service import PaymentService
from .services.spending_category_service import SpendingCategoryService
from . import models

logger = logging.getLogger(__name__)

DEMO_EMAIL = "demo@example.com"
DEMO_PASSWORD = "demo-pass-123"


def seed() -> None:
    """Create a demo family with a 50/30/20 budget, categories, income and bills."""
    with session_scope() as db:
        auth = AuthService(db)
        if auth.find_by_email(DEMO_EMAIL) is not None:
            logger.info("Demo family already present; nothing to do")
            return
        member, family, _ = auth.register(
            email=DEMO_EMAIL,
            password=DEMO_PASSWORD,
            first_name="Demo",
            last_name="Parent",
            family_name="Demo Family",
        )
        member.email_verified = True
        member.email_verification_token = None
        db.commit()

        budget_categories = BudgetService(db).apply_template(family.id, member.id, template_name="50/30/20")
        by_name = {c.name: c for c in budget_categories}

        spending = SpendingCategoryService(db)
        spending_ids: dict[str, int] = {}
        for default in SpendingCategoryService.defaults():
            parent = spending.create(
                family.id,
                member.id,
                {
                    "name": default["name"],
                    "budget_category_id": by_name[default["budget_category_name"]].id,
                    "icon": default["icon"],
                    "color": default["color"],
                },
            )
            spending_ids[parent.name] = parent.id
            for child in default["children"]:
                row = spending.create(
                    family.id,
                    member.id,
                    {
                        "name": child["name"],
                        "budget_category_id": parent.budget_category_id,
                        "parent_category_id": parent.id,
                        "icon": child["icon"],
                        "color": child["color"],
                    },
                )
                spending_ids[row.name] = row.id

        today = date.today()
        income = IncomeService(db)
        paycheck = income.create(
            family.id,
            member.id,
            {
                "name": "Paycheck",
                "amount": Decimal("3200.00"),
                "scheduled_date": today,
                "frequency": models.Frequency.BIWEEKLY,
                "source": "Employer",
            },
        )
        income.create(
            family.id,
            member.id,
            {
                "name": "Paycheck",
                "amount": Decimal("3200.00"),
                "scheduled_date": today + timedelta(days=14),
                "frequency": models.Frequency.ONCE,
                "source": "Employer",
            },
        )

        payments = PaymentService(db)
        rent = payments.create(
            family.id,
            member.id,
            {
                "payee": "Landlord",
                "amount": Decimal("1500.00"),
                "due_date": today + timedelta(days=3),
                "payment_type": models.PaymentType.RECURRING,
                "frequency": models.Frequency.MONTHLY,
                "spending_category_id": spending_ids["Rent/Mortgage"],
            },
        )
        payments.create(
            family.id,
            member.id,
            {
                "payee": "City Power",
                "amount": Decimal("120.00"),
                "due_date": today + timedelta(days=10),
                "payment_type": models.PaymentType.RECURRING,
                "frequency": models.Frequency.MONTHLY,
                "spending_category_id": spending_ids["Electric"],
                "auto_pay_enabled": True,
            },
        )
        AttributionService(db).create(family.id, member.id, rent.id, paycheck.id, Decimal("1500.00"))
        BudgetService(db).generate_allocation(family.id, paycheck.id)
        logger.info("Seeded demo family %s (%s / %s)", family.id, DEMO_EMAIL, DEMO_PASSWORD)


if __name__ == "__main__":
    configure_logging()
    seed()
