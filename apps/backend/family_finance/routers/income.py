from fastapi import APIRouter

from family_finance.api.income import handlers
from family_finance.schemas import (
    IncomeAttributionsOut,
    IncomeEventOut,
    IncomeEventPage,
    IncomeSummaryOut,
)

router = APIRouter(prefix="/income-events", tags=["income-events"])

router.add_api_route("", handlers.list_income_events, methods=["GET"], response_model=IncomeEventPage)

router.add_api_route(
    "",
    handlers.create_income_event,
    methods=["POST"],
    response_model=IncomeEventOut,
    status_code=201,
)

router.add_api_route(
    "/bulk",
    handlers.bulk_create_income_events,
    methods=["POST"],
    response_model=list[IncomeEventOut],
    status_code=201,
)

router.add_api_route("/summary", handlers.income_summary, methods=["GET"], response_model=IncomeSummaryOut)

router.add_api_route(
    "/upcoming",
    handlers.upcoming_income,
    methods=["GET"],
    response_model=list[IncomeEventOut],
)

router.add_api_route(
    "/{income_id}",
    handlers.get_income_event,
    methods=["GET"],
    response_model=IncomeEventOut,
)

router.add_api_route(
    "/{income_id}",
    handlers.update_income_event,
    methods=["PATCH"],
    response_model=IncomeEventOut,
)

router.add_api_route(
    "/{income_id}",
    handlers.delete_income_event,
    methods=["DELETE"],
    status_code=204,
)

router.add_api_route(
    "/{income_id}/mark-received",
    handlers.mark_received,
    methods=["POST"],
    response_model=IncomeEventOut,
)

router.add_api_route(
    "/{income_id}/revert-received",
    handlers.revert_received,
    methods=["POST"],
    response_model=IncomeEventOut,
)

router.add_api_route(
    "/{income_id}/attributions",
    handlers.income_attributions,
    methods=["GET"],
    response_model=IncomeAttributionsOut,
)
