from flask import current_app

from app.errors import ForbiddenError
from app.extensions import csrf
from app.billing import purchases
from app.utils.helpers import json_body
from app.utils.responses import respond_success
from . import dev_bp


@dev_bp.before_request
def _dev_only():
    app_env = (current_app.config.get("APP_ENV") or "").lower()
    if app_env == "production" or not current_app.config.get("ENABLE_DEV_BILLING"):
        raise ForbiddenError("Dev billing endpoints are disabled")


@csrf.exempt
@dev_bp.post("/settle")
def settle():
    data = json_body()
    result = purchases.dev_settle(data.get("transaction_id"), (data.get("status") or "").strip().lower())
    return respond_success(result)
