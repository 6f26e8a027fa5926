from fastapi import APIRouter

from family_finance.api.spending_categories import handlers
from family_finance.schemas import (
    CategoryUsageOut,
    DefaultCategoryOut,
    SpendingCategoryNode,
    SpendingCategoryOut,
)

router = APIRouter(prefix="/spending-categories", tags=["spending-categories"])

router.add_api_route(
    "",
    handlers.list_spending_categories,
    methods=["GET"],
    response_model=list[SpendingCategoryOut],
)

router.add_api_route(
    "",
    handlers.create_spending_category,
    methods=["POST"],
    response_model=SpendingCategoryOut,
    status_code=201,
)

router.add_api_route(
    "/hierarchy",
    handlers.get_hierarchy,
    methods=["GET"],
    response_model=list[SpendingCategoryNode],
)

router.add_api_route(
    "/usage-stats",
    handlers.get_usage_stats,
    methods=["GET"],
    response_model=list[CategoryUsageOut],
)

router.add_api_route(
    "/defaults",
    handlers.get_defaults,
    methods=["GET"],
    response_model=list[DefaultCategoryOut],
)

router.add_api_route(
    "/{category_id}",
    handlers.get_spending_category,
    methods=["GET"],
    response_model=SpendingCategoryOut,
)

router.add_api_route(
    "/{category_id}",
    handlers.update_spending_category,
    methods=["PATCH"],
    response_model=SpendingCategoryOut,
)

router.add_api_route(
    "/{category_id}",
    handlers.delete_spending_category,
    methods=["DELETE"],
    status_code=204,
)
