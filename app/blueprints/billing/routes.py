from flask import request
from flask_login import current_user

from app.extensions import csrf, limiter
from app.billing import purchases
from app.billing.plans import list_active_products, list_public_plans
from app.models.billing_credit import CREDIT_AVAILABLE, CREDIT_CONSUMED
from app.services import credits as credit_service
from app.services.policy import login_required_api
from app.utils.helpers import json_body
from app.utils.responses import respond_success
from app.utils.validators import require_choice
from . import bp


@bp.get("/plans")
def plans():
    return respond_success({"plans": [p.to_dict() for p in list_public_plans()]})


@bp.get("/products")
def products():
    return respond_success({"products": [p.to_dict() for p in list_active_products()]})


@bp.post("/purchase-intent")
@limiter.limit("10/minute")
@login_required_api
def purchase_intent():
    result = purchases.create_purchase_intent(current_user, json_body())
    return respond_success(result, message="Purchase intent created", status=201)


@bp.get("/transactions/status")
@login_required_api
def transaction_status():
    result = purchases.transaction_status(
        current_user,
        transaction_id=request.args.get("transaction_id") or None,
        reference=(request.args.get("reference") or "").strip() or None,
    )
    return respond_success(result)


@bp.get("/credits")
@login_required_api
def credits():
    status = request.args.get("status")
    if status:
        require_choice(status, "status", (CREDIT_AVAILABLE, CREDIT_CONSUMED))
    items = credit_service.list_credits(current_user.id, status=status)
    return respond_success({"credits": [c.to_dict() for c in items]})


@bp.post("/credits/confirm")
@limiter.limit("10/minute")
@login_required_api
def confirm_credit():
    result = purchases.confirm_credit_purchase(current_user, json_body().get("transaction_id"))
    return respond_success(result)


@bp.post("/beta-grant")
@login_required_api
def beta_grant():
    result = purchases.beta_grant(current_user)
    return respond_success(result, message="Beta credit granted")


@csrf.exempt
@bp.post("/webhook")
def provider_webhook():
    result = purchases.process_provider_webhook(json_body().get("provider_payment_id"))
    return respond_success(result)
