"""Transactions router."""

from fastapi import APIRouter

from family_finance.api.transactions import handlers
from family_finance.schemas import (
    AutoCategorizeResult,
    BatchCategorizeResult,
    PaymentMatchOut,
    TransactionOut,
    TransactionPage,
    UncategorizedPage,
)

router = APIRouter(prefix="/transactions", tags=["transactions"])

router.add_api_route("", handlers.list_transactions, methods=["GET"], response_model=TransactionPage)

router.add_api_route(
    "/uncategorized",
    handlers.list_uncategorized,
    methods=["GET"],
    response_model=UncategorizedPage,
)

router.add_api_route(
    "/categorize-batch",
    handlers.categorize_batch,
    methods=["POST"],
    response_model=BatchCategorizeResult,
)

router.add_api_route(
    "/auto-categorize",
    handlers.auto_categorize,
    methods=["POST"],
    response_model=AutoCategorizeResult,
)

router.add_api_route(
    "/match-payments",
    handlers.match_payments,
    methods=["POST"],
    response_model=list[PaymentMatchOut],
)

router.add_api_route(
    "/{transaction_id}",
    handlers.get_transaction,
    methods=["GET"],
    response_model=TransactionOut,
)

router.add_api_route(
    "/{transaction_id}",
    handlers.update_transaction,
    methods=["PATCH"],
    response_model=TransactionOut,
)
