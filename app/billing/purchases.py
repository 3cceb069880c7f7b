"""
Purchase flows: purchase intents, provider callbacks, dev settlement, credit
confirmation and the soft-beta system grant.
"""
from typing import Dict, Optional

from flask import current_app

from app.errors import AppError, ConflictError, ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from app.extensions import db
from app.models import BillingTransaction, Club
from app.models.billing_credit import CREDIT_SOURCE_SYSTEM
from app.models.billing_transaction import TX_COMPLETED, TX_FAILED, TX_PENDING, TX_REFUNDED
from app.billing.plans import CREDIT_CODES, PAID_PLAN_IDS, get_plan, get_product, is_soft_beta_strict
from app.billing.providers import PROVIDER_KASPI, get_payment_provider
from app.billing.settlement import settle_transaction
from app.services import credits as credit_service
from app.services import policy
from app.services import transactions as tx_service
from app.observability import log_event
from app.utils.validators import parse_int

PROVIDER_BETA_GRANT = "system-beta-grant"
DEV_SETTLE_STATUSES = (TX_COMPLETED, TX_FAILED, TX_REFUNDED)


class PaymentProviderError(AppError):
    status_code = 502
    code = "PAYMENT_PROVIDER_ERROR"


def _normalize_product_code(raw) -> str:
    code = (raw or "").strip() if isinstance(raw, str) else ""
    if not code:
        raise ValidationError("product_code is required", {"field": "product_code"})
    if code.lower() in PAID_PLAN_IDS:
        return code.lower()
    if code in CREDIT_CODES:
        return code
    raise ValidationError(f"Unknown product code: {code}", {"field": "product_code"})


def create_purchase_intent(user, payload: Dict) -> Dict:
    if user is None or not getattr(user, "is_authenticated", False):
        raise UnauthorizedError()
    product_code = _normalize_product_code(payload.get("product_code"))
    quantity = parse_int(payload.get("quantity", 1), "quantity", minimum=1)
    context = payload.get("context") if isinstance(payload.get("context"), dict) else {}
    club_id = parse_int(payload.get("club_id", context.get("clubId")), "club_id", required=False)

    currency = current_app.config.get("BILLING_CURRENCY", "KZT")
    plan_id = None
    if product_code in CREDIT_CODES:
        product = get_product(product_code)
        if product is None:
            raise NotFoundError(f"Product {product_code} not found")
        if not product.is_active:
            raise ValidationError(f"Product {product_code} is not available")
        amount = product.price * quantity
        title = product.title
        currency = product.currency_code or currency
        club_id = None
    else:
        if quantity != 1:
            raise ValidationError("Club subscriptions must have quantity=1", {"field": "quantity"})
        plan = get_plan(product_code)
        plan_id = plan.id
        amount = plan.price_monthly
        title = plan.title
        currency = plan.currency_code or currency
        if club_id is not None:
            club = db.session.get(Club, club_id)
            if club is None:
                raise NotFoundError("Club not found")
            policy.require_club_owner(club.id, user)

    provider = get_payment_provider()
    tx = tx_service.create_pending_transaction(
        user_id=user.id,
        club_id=club_id,
        plan_id=plan_id,
        product_code=product_code,
        quantity=quantity,
        amount=amount,
        currency_code=currency,
        provider=provider.provider_id,
    )
    try:
        intent = provider.create_payment_intent(tx, title)
    except AppError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "billing.purchase_intent.provider_failed",
            extra={"user_id": user.id, "product_code": product_code, "provider": provider.provider_id},
        )
        raise PaymentProviderError("Could not create payment")

    tx.provider_payment_id = intent["providerPaymentId"]
    settlement = None
    if intent.get("autoSettle"):
        original = tx.status
        tx_service.mark_status(tx, TX_COMPLETED)
        settlement = settle_transaction(tx, original, caller="simulated")
    db.session.commit()

    log_event(
        "billing.purchase_intent.created",
        transaction_id=tx.id,
        product_code=product_code,
        amount=amount,
        user_id=user.id,
        club_id=club_id,
        provider=provider.provider_id,
    )
    payload_extra = intent.get("payload") or {}
    result = {
        "transaction_id": tx.id,
        "transaction_reference": tx.provider_payment_id,
        "status": tx.status,
        "payment": {
            "provider": intent["provider"],
            "invoice_url": intent.get("paymentUrl"),
            "qr_payload": payload_extra.get("qr_payload"),
            "instructions": intent.get("instructions"),
            "dev_note": payload_extra.get("dev_note"),
        },
    }
    if settlement is not None:
        result["settlement"] = settlement
    return result


def _can_view_transaction(tx: BillingTransaction, user) -> bool:
    if tx.user_id is not None and tx.user_id == user.id:
        return True
    if tx.club_id is not None:
        return policy.club_role(tx.club_id, user.id) == "owner"
    return False


def transaction_status(user, transaction_id=None, reference: Optional[str] = None) -> Dict:
    if user is None or not getattr(user, "is_authenticated", False):
        raise UnauthorizedError()
    if transaction_id is None and not reference:
        raise ValidationError("transaction_id or reference is required")
    if transaction_id is not None:
        tx = tx_service.get_transaction(parse_int(transaction_id, "transaction_id"))
    else:
        tx = tx_service.get_by_provider_payment_id(reference)
    # not-yours and missing look the same
    if tx is None or not _can_view_transaction(tx, user):
        raise NotFoundError("Transaction not found")
    return {
        "transaction_id": tx.id,
        "status": tx.status,
        "product_code": tx.product_code,
        "amount": tx.amount,
        "currency_code": tx.currency_code,
    }


def process_provider_webhook(provider_payment_id: Optional[str]) -> Dict:
    if not provider_payment_id:
        raise ValidationError("provider_payment_id is required", {"field": "provider_payment_id"})
    tx = tx_service.get_by_provider_payment_id(provider_payment_id)
    if tx is None:
        raise NotFoundError("Transaction not found")
    if tx.provider != PROVIDER_KASPI:
        # signed provider events settle only through their own verified endpoint
        log_event("billing.webhook.rejected_provider", transaction_id=tx.id, provider=tx.provider)
        raise NotFoundError("Transaction not found")
    if tx.status == TX_COMPLETED:
        log_event("billing.webhook.already_completed", transaction_id=tx.id)
        return {"ok": True, "alreadyCompleted": True}
    if tx.status != TX_PENDING:
        raise ConflictError(f"Transaction is {tx.status}", {"status": tx.status})

    original = tx.status
    tx_service.mark_status(tx, TX_COMPLETED)
    settlement = settle_transaction(tx, original, caller="webhook")
    db.session.commit()
    log_event("billing.webhook.settled", transaction_id=tx.id, **settlement)
    return {"ok": True, "settlement": settlement}


def dev_settle(transaction_id, status: str) -> Dict:
    tx_id = parse_int(transaction_id, "transaction_id")
    if status not in DEV_SETTLE_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(DEV_SETTLE_STATUSES)}",
            {"field": "status", "allowed": list(DEV_SETTLE_STATUSES)},
        )
    tx = tx_service.get_transaction(tx_id)
    if tx is None:
        raise NotFoundError("Transaction not found")

    original = tx.status
    tx_service.mark_status(tx, status)
    settlement = None
    if status == TX_COMPLETED:
        settlement = settle_transaction(tx, original, caller="dev_settle")
    db.session.commit()
    log_event("billing.dev_settle", transaction_id=tx.id, status=status, previous_status=original)
    return {"transaction": tx.to_dict(), "settlement": settlement}


def confirm_credit_purchase(user, transaction_id) -> Dict:
    if user is None or not getattr(user, "is_authenticated", False):
        raise UnauthorizedError()
    tx = tx_service.get_transaction(parse_int(transaction_id, "transaction_id"))
    if tx is None or tx.user_id != user.id:
        raise NotFoundError("Transaction not found")
    if tx.product_code not in CREDIT_CODES:
        raise ValidationError("Transaction is not a credit purchase")
    if tx.status != TX_COMPLETED:
        raise ConflictError(f"Transaction is {tx.status}, not completed", {"status": tx.status})

    credit, created = credit_service.ensure_credit_for_transaction(
        user_id=user.id,
        credit_code=tx.product_code,
        source_transaction_id=tx.id,
    )
    db.session.commit()
    return {"status": "confirmed" if created else "already_confirmed", "credit": credit.to_dict()}


def beta_grant(user, credit_code: str = CREDIT_CODES[0]) -> Dict:
    if user is None or not getattr(user, "is_authenticated", False):
        raise UnauthorizedError()
    if not is_soft_beta_strict():
        log_event("billing.beta_grant.refused", level="warning", user_id=user.id)
        raise ForbiddenError("System grants are only available in soft beta mode")

    try:
        tx = BillingTransaction(
            user_id=user.id,
            product_code=credit_code,
            provider=PROVIDER_BETA_GRANT,
            amount=0,
            currency_code=current_app.config.get("BILLING_CURRENCY", "KZT"),
            status=TX_COMPLETED,
        )
        db.session.add(tx)
        db.session.flush()
        credit = credit_service.create_credit(
            user_id=user.id,
            credit_code=credit_code,
            source_transaction_id=tx.id,
            source=CREDIT_SOURCE_SYSTEM,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    log_event("billing.beta_grant", user_id=user.id, credit_id=credit.id, transaction_id=tx.id)
    return {"creditId": credit.id, "transactionId": tx.id}
