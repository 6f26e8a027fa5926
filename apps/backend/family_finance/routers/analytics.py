from fastapi import APIRouter

from family_finance.api.analytics import handlers
from family_finance.schemas import DashboardOut

router = APIRouter(prefix="/analytics", tags=["analytics"])

router.add_api_route("/dashboard", handlers.get_dashboard, methods=["GET"], response_model=DashboardOut)
