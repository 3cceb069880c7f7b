import hashlib
import json

import stripe
from flask import request, current_app
from sqlalchemy.exc import IntegrityError

from . import bp
from app.errors import InternalError, ValidationError
from app.extensions import db, csrf
from app.models import BillingEventLog
from app.models.billing_transaction import TX_COMPLETED, TX_FAILED, TX_PENDING
from app.billing.providers import PROVIDER_STRIPE
from app.billing.settlement import settle_transaction
from app.services import transactions as tx_service
from app.observability import log_event
from app.utils.helpers import utcnow
from app.utils.responses import respond_success

FAILURE_EVENTS = ("checkout.session.expired", "checkout.session.async_payment_failed")


def _transaction_from_session(obj: dict):
    meta = obj.get("metadata") or {}
    tx = None
    tx_id = meta.get("transaction_id")
    if tx_id:
        try:
            tx = tx_service.get_transaction(int(tx_id))
        except (TypeError, ValueError):
            tx = None
    if tx is None and obj.get("id"):
        tx = tx_service.get_by_provider_payment_id(obj["id"])
    return tx


def _handle_checkout_completed(obj: dict) -> str:
    tx = _transaction_from_session(obj)
    if tx is None:
        return "transaction_not_found"
    if obj.get("payment_status") not in (None, "paid", "no_payment_required"):
        # async payment methods settle on checkout.session.async_payment_succeeded
        return f"payment_status:{obj.get('payment_status')}"
    original = tx.status
    if original != TX_COMPLETED:
        tx_service.mark_status(tx, TX_COMPLETED)
    settlement = settle_transaction(tx, original, caller="stripe_webhook")
    log_event("billing.stripe.settled", transaction_id=tx.id, **settlement)
    return "settled"


def _handle_checkout_failed(obj: dict) -> str:
    tx = _transaction_from_session(obj)
    if tx is None:
        return "transaction_not_found"
    if tx.status == TX_PENDING:
        tx_service.mark_status(tx, TX_FAILED)
    return "failed"


# ----- Stripe Webhook (one-time checkout settlement) -----
@csrf.exempt
@bp.post("/stripe")
def stripe_webhook():
    """
    Stripe → /webhooks/stripe
    Verifies signature, journals the event, idempotently settles the transaction.
    """
    # 1) Verify signature
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise InternalError("Stripe webhook secret not configured")

    raw_bytes = request.get_data(cache=False, as_text=False)
    sig_header = request.headers.get("Stripe-Signature", "")

    try:
        event = stripe.Webhook.construct_event(
            payload=raw_bytes.decode("utf-8"),
            sig_header=sig_header,
            secret=secret,
        )
    except (ValueError, stripe.SignatureVerificationError):
        # Log invalid attempts with a deterministic synthetic id (no payload trust)
        digest = hashlib.sha256(raw_bytes).hexdigest()[:32]
        synthetic_id = f"invalid:{digest}"
        if not db.session.execute(
            db.select(BillingEventLog.id).where(
                BillingEventLog.provider == PROVIDER_STRIPE,
                BillingEventLog.provider_event_id == synthetic_id,
            )
        ).first():
            db.session.add(BillingEventLog(
                provider=PROVIDER_STRIPE,
                provider_event_id=synthetic_id,
                type="signature_invalid",
                signature_valid=False,
                payload={},
            ))
            db.session.commit()
        raise ValidationError("invalid_signature")

    # 2) Idempotency guard (short-circuit if already processed)
    ev_id = event.get("id")
    ev_type = event.get("type")
    if not ev_id or not ev_type:
        raise ValidationError("malformed_event")

    existing = db.session.execute(
        db.select(BillingEventLog.id).where(
            BillingEventLog.provider == PROVIDER_STRIPE,
            BillingEventLog.provider_event_id == ev_id,
        )
    ).first()
    if existing:
        return respond_success({"ok": True, "duplicate": True})

    # 3) Persist raw payload to log (for audit/forensics)
    try:
        payload_json = json.loads(raw_bytes.decode("utf-8"))
    except ValueError:
        payload_json = {"_decode_error": True}

    log = BillingEventLog(
        provider=PROVIDER_STRIPE,
        provider_event_id=ev_id,
        type=ev_type,
        signature_valid=True,
        payload=payload_json,
    )
    db.session.add(log)
    try:
        db.session.commit()
    except IntegrityError:
        # concurrent redelivery won the insert
        db.session.rollback()
        return respond_success({"ok": True, "duplicate": True})

    # 4) Handle event types
    obj = (event.get("data") or {}).get("object") or {}
    if hasattr(obj, "to_dict_recursive"):
        obj = obj.to_dict_recursive()
    elif hasattr(obj, "to_dict"):
        obj = obj.to_dict()

    try:
        if ev_type in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
            outcome = _handle_checkout_completed(obj)
        elif ev_type in FAILURE_EVENTS:
            outcome = _handle_checkout_failed(obj)
        else:
            outcome = "ignored"
        log.notes = outcome
        log.processed_at = utcnow()
        db.session.commit()
    except Exception as e:
        # Attach note and surface 200 to prevent endless Stripe retries; ops can review logs
        db.session.rollback()
        log = db.session.get(BillingEventLog, log.id)
        log.notes = f"handler_error:{type(e).__name__}"
        db.session.commit()
        current_app.logger.exception("stripe_webhook_handler_error", extra={"event_id": ev_id})

    return respond_success({"ok": True})
