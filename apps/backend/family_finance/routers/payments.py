"""Payments router, attribution routes nested under each payment."""

from typing import Optional

from fastapi import APIRouter

from family_finance.api.payments import handlers
from family_finance.schemas import (
    AttributionHistoryPage,
    AttributionOut,
    AttributionSuggestionOut,
    AutoAttributeResult,
    CapacityOut,
    PaymentAttributionsOut,
    PaymentOut,
    PaymentPage,
    PaymentSummaryOut,
)

router = APIRouter(prefix="/payments", tags=["payments"])

router.add_api_route("", handlers.list_payments, methods=["GET"], response_model=PaymentPage)

router.add_api_route(
    "",
    handlers.create_payment,
    methods=["POST"],
    response_model=PaymentOut,
    status_code=201,
)

router.add_api_route(
    "/bulk",
    handlers.bulk_create_payments,
    methods=["POST"],
    response_model=list[PaymentOut],
    status_code=201,
)

router.add_api_route("/summary", handlers.payment_summary, methods=["GET"], response_model=PaymentSummaryOut)

router.add_api_route("/upcoming", handlers.upcoming_payments, methods=["GET"], response_model=list[PaymentOut])

router.add_api_route("/overdue", handlers.overdue_payments, methods=["GET"], response_model=list[PaymentOut])

router.add_api_route(
    "/auto-attribute",
    handlers.auto_attribute_all,
    methods=["POST"],
    response_model=AutoAttributeResult,
)

router.add_api_route(
    "/attribution-history",
    handlers.attribution_history,
    methods=["GET"],
    response_model=AttributionHistoryPage,
)

router.add_api_route("/{payment_id}", handlers.get_payment, methods=["GET"], response_model=PaymentOut)

router.add_api_route("/{payment_id}", handlers.update_payment, methods=["PATCH"], response_model=PaymentOut)

router.add_api_route("/{payment_id}", handlers.delete_payment, methods=["DELETE"], status_code=204)

router.add_api_route(
    "/{payment_id}/mark-paid",
    handlers.mark_paid,
    methods=["POST"],
    response_model=PaymentOut,
)

router.add_api_route(
    "/{payment_id}/revert-paid",
    handlers.revert_paid,
    methods=["POST"],
    response_model=PaymentOut,
)

router.add_api_route(
    "/{payment_id}/attributions",
    handlers.list_attributions,
    methods=["GET"],
    response_model=PaymentAttributionsOut,
)

router.add_api_route(
    "/{payment_id}/attributions",
    handlers.create_attribution,
    methods=["POST"],
    response_model=AttributionOut,
    status_code=201,
)

router.add_api_route(
    "/{payment_id}/attributions/split",
    handlers.split_attributions,
    methods=["POST"],
    response_model=list[AttributionOut],
    status_code=201,
)

router.add_api_route(
    "/{payment_id}/attributions/auto",
    handlers.auto_attribute,
    methods=["POST"],
    response_model=Optional[AttributionOut],
)

router.add_api_route(
    "/{payment_id}/attributions/validate",
    handlers.validate_attributions,
    methods=["POST"],
    response_model=CapacityOut,
)

router.add_api_route(
    "/{payment_id}/attributions/{attribution_id}",
    handlers.update_attribution,
    methods=["PATCH"],
    response_model=AttributionOut,
)

router.add_api_route(
    "/{payment_id}/attributions/{attribution_id}",
    handlers.delete_attribution,
    methods=["DELETE"],
    status_code=204,
)

router.add_api_route(
    "/{payment_id}/attribution-suggestions",
    handlers.attribution_suggestions,
    methods=["GET"],
    response_model=list[AttributionSuggestionOut],
)
