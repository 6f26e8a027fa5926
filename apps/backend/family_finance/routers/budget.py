"""Budget category, allocation and budget analysis routers."""

from fastapi import APIRouter

from family_finance.api.budget import handlers
from family_finance.schemas import (
    BudgetAllocationOut,
    BudgetCategoryOut,
    BudgetOverviewOut,
    BudgetPerformanceOut,
    BudgetProjectionsOut,
    BudgetTemplateOut,
    GenerateAllocationOut,
    ValidatePercentagesOut,
)

categories_router = APIRouter(prefix="/budget-categories", tags=["budget-categories"])
allocations_router = APIRouter(prefix="/budget-allocations", tags=["budget-allocations"])
router = APIRouter(prefix="/budget", tags=["budget"])

categories_router.add_api_route(
    "",
    handlers.list_budget_categories,
    methods=["GET"],
    response_model=list[BudgetCategoryOut],
)

categories_router.add_api_route(
    "",
    handlers.create_budget_category,
    methods=["POST"],
    response_model=BudgetCategoryOut,
    status_code=201,
)

categories_router.add_api_route(
    "/validate-percentages",
    handlers.validate_percentages,
    methods=["POST"],
    response_model=ValidatePercentagesOut,
)

categories_router.add_api_route(
    "/{category_id}",
    handlers.get_budget_category,
    methods=["GET"],
    response_model=BudgetCategoryOut,
)

categories_router.add_api_route(
    "/{category_id}",
    handlers.update_budget_category,
    methods=["PATCH"],
    response_model=BudgetCategoryOut,
)

categories_router.add_api_route(
    "/{category_id}",
    handlers.delete_budget_category,
    methods=["DELETE"],
    status_code=204,
)

allocations_router.add_api_route(
    "",
    handlers.list_allocations,
    methods=["GET"],
    response_model=list[BudgetAllocationOut],
)

allocations_router.add_api_route(
    "/income-events/{income_event_id}/generate",
    handlers.generate_allocation,
    methods=["POST"],
    response_model=GenerateAllocationOut,
    status_code=201,
)

allocations_router.add_api_route(
    "/{allocation_id}",
    handlers.update_allocation,
    methods=["PATCH"],
    response_model=BudgetAllocationOut,
)

allocations_router.add_api_route(
    "/{allocation_id}",
    handlers.delete_allocation,
    methods=["DELETE"],
    status_code=204,
)

router.add_api_route("/overview", handlers.get_overview, methods=["GET"], response_model=BudgetOverviewOut)

router.add_api_route(
    "/performance",
    handlers.get_performance,
    methods=["GET"],
    response_model=BudgetPerformanceOut,
)

router.add_api_route(
    "/projections",
    handlers.get_projections,
    methods=["GET"],
    response_model=BudgetProjectionsOut,
)

router.add_api_route(
    "/templates",
    handlers.list_templates,
    methods=["GET"],
    response_model=list[BudgetTemplateOut],
)

router.add_api_route(
    "/templates/apply",
    handlers.apply_template,
    methods=["POST"],
    response_model=list[BudgetCategoryOut],
)
