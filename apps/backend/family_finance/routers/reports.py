"""Reports router. Report bodies are free-form dicts built by ReportService."""

from fastapi import APIRouter

from family_finance.api.reports import handlers
from family_finance.schemas import ReportExecutionOut, ReportRunOut, ScheduledReportOut

router = APIRouter(prefix="/reports", tags=["reports"])

router.add_api_route("/cash-flow", handlers.cash_flow, methods=["GET"])
router.add_api_route("/spending-analysis", handlers.spending_analysis, methods=["GET"])
router.add_api_route("/budget-performance", handlers.budget_performance, methods=["GET"])
router.add_api_route("/income-analysis", handlers.income_analysis, methods=["GET"])
router.add_api_route("/net-worth", handlers.net_worth, methods=["GET"])
router.add_api_route("/savings-rate", handlers.savings_rate, methods=["GET"])
router.add_api_route("/monthly-summary", handlers.monthly_summary, methods=["GET"])
router.add_api_route("/annual-summary", handlers.annual_summary, methods=["GET"])
router.add_api_route("/debt-analysis", handlers.debt_analysis, methods=["GET"])
router.add_api_route("/custom", handlers.custom_report, methods=["POST"])
router.add_api_route("/export", handlers.export, methods=["GET"])

router.add_api_route(
    "/scheduled",
    handlers.list_scheduled,
    methods=["GET"],
    response_model=list[ScheduledReportOut],
)

router.add_api_route(
    "/scheduled",
    handlers.create_scheduled,
    methods=["POST"],
    response_model=ScheduledReportOut,
    status_code=201,
)

router.add_api_route(
    "/scheduled/due",
    handlers.due_scheduled,
    methods=["GET"],
    response_model=list[ScheduledReportOut],
)

router.add_api_route(
    "/scheduled/{report_id}",
    handlers.get_scheduled,
    methods=["GET"],
    response_model=ScheduledReportOut,
)

router.add_api_route(
    "/scheduled/{report_id}",
    handlers.update_scheduled,
    methods=["PATCH"],
    response_model=ScheduledReportOut,
)

router.add_api_route(
    "/scheduled/{report_id}",
    handlers.delete_scheduled,
    methods=["DELETE"],
    status_code=204,
)

router.add_api_route(
    "/scheduled/{report_id}/run",
    handlers.run_scheduled,
    methods=["POST"],
    response_model=ReportRunOut,
)

router.add_api_route(
    "/scheduled/{report_id}/executions",
    handlers.list_executions,
    methods=["GET"],
    response_model=list[ReportExecutionOut],
)
