"""Bank account router plus the signed Plaid webhook."""

from fastapi import APIRouter

from family_finance.api.bank_accounts import handlers
from family_finance.schemas import BankAccountOut, LinkTokenOut, SyncAllResult, SyncResult

router = APIRouter(prefix="/bank-accounts", tags=["bank-accounts"])
webhook_router = APIRouter(prefix="/plaid", tags=["plaid"])

router.add_api_route(
    "/link-token",
    handlers.create_link_token,
    methods=["POST"],
    response_model=LinkTokenOut,
)

router.add_api_route(
    "",
    handlers.connect_bank_account,
    methods=["POST"],
    response_model=list[BankAccountOut],
    status_code=201,
)

router.add_api_route("", handlers.list_bank_accounts, methods=["GET"], response_model=list[BankAccountOut])

router.add_api_route(
    "/sync-all",
    handlers.sync_all_bank_accounts,
    methods=["POST"],
    response_model=SyncAllResult,
)

router.add_api_route(
    "/{account_id}",
    handlers.get_bank_account,
    methods=["GET"],
    response_model=BankAccountOut,
)

router.add_api_route(
    "/{account_id}",
    handlers.update_bank_account,
    methods=["PATCH"],
    response_model=BankAccountOut,
)

router.add_api_route(
    "/{account_id}",
    handlers.delete_bank_account,
    methods=["DELETE"],
    status_code=204,
)

router.add_api_route(
    "/{account_id}/sync",
    handlers.sync_bank_account,
    methods=["POST"],
    response_model=SyncResult,
)

router.add_api_route(
    "/{account_id}/reconnect",
    handlers.reconnect_bank_account,
    methods=["POST"],
    response_model=LinkTokenOut,
)

webhook_router.add_api_route("/webhook", handlers.plaid_webhook, methods=["POST"])
