"""Router aggregation: every feature router is mounted under ``/api``."""

from fastapi import FastAPI

from . import analytics, auth, bank_accounts, budget, families, income, payments, reports, spending_categories, transactions


def register_routers(app: FastAPI) -> None:
    """Attach all API routes to the FastAPI application."""

    app.include_router(auth.router, prefix="/api")
    app.include_router(families.router, prefix="/api")
    app.include_router(bank_accounts.router, prefix="/api")
    app.include_router(bank_accounts.webhook_router, prefix="/api")
    app.include_router(transactions.router, prefix="/api")
    app.include_router(spending_categories.router, prefix="/api")
    app.include_router(budget.categories_router, prefix="/api")
    app.include_router(budget.allocations_router, prefix="/api")
    app.include_router(budget.router, prefix="/api")
    app.include_router(income.router, prefix="/api")
    app.include_router(payments.router, prefix="/api")
    app.include_router(reports.router, prefix="/api")
    app.include_router(analytics.router, prefix="/api")
