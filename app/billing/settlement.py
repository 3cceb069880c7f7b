"""
Turn a completed transaction into what it paid for.

Called by the provider webhooks, the Stripe webhook, the dev settle endpoint
and simulated auto-settlement. The caller flips the transaction status and
commits; settlement only adds rows in the same session.
"""
from datetime import timedelta
from typing import Dict, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.models import ClubSubscriptionEntitlement
from app.models.billing_transaction import TX_COMPLETED
from app.billing.plans import CREDIT_CODES, PAID_PLAN_IDS
from app.services import credits as credit_service
from app.services import entitlements as entitlement_service
from app.services import subscriptions as subscription_service
from app.observability import log_event
from app.utils.helpers import utcnow

ENTITLEMENT_CREDIT = "credit"
ENTITLEMENT_SUBSCRIPTION = "subscription"
ENTITLEMENT_CLUB_CREATION = "club_creation"
ENTITLEMENT_NONE = "none"


def _result(settled: bool, kind: str, entitlement_id=None, skip: bool = False) -> Dict:
    return {
        "settled": settled,
        "entitlementType": kind,
        "entitlementId": entitlement_id,
        "idempotentSkip": skip,
    }


def _settle_credit(tx, caller: str) -> Dict:
    credit, created = credit_service.ensure_credit_for_transaction(
        user_id=tx.user_id,
        credit_code=tx.product_code,
        source_transaction_id=tx.id,
    )
    if not created:
        log_event("billing.settlement.idempotent_skip", caller=caller, transaction_id=tx.id, kind=ENTITLEMENT_CREDIT)
        return _result(False, ENTITLEMENT_CREDIT, credit.id, skip=True)
    log_event("billing.settlement.credit_issued", caller=caller, transaction_id=tx.id, credit_id=credit.id)
    return _result(True, ENTITLEMENT_CREDIT, credit.id)


def _settle_subscription(tx, original_status: str, caller: str) -> Dict:
    if original_status == TX_COMPLETED:
        log_event("billing.settlement.idempotent_skip", caller=caller, transaction_id=tx.id,
                  kind=ENTITLEMENT_SUBSCRIPTION, club_id=tx.club_id)
        return _result(False, ENTITLEMENT_SUBSCRIPTION, tx.club_id, skip=True)

    days = int(current_app.config.get("SUBSCRIPTION_PERIOD_DAYS", 30))
    start = utcnow()
    end = start + timedelta(days=days)
    sub = subscription_service.activate_subscription(tx.club_id, tx.plan_id, start, end)
    tx.period_start = start
    tx.period_end = end
    log_event(
        "billing.settlement.subscription_activated",
        caller=caller,
        transaction_id=tx.id,
        club_id=tx.club_id,
        plan_id=tx.plan_id,
        period_end=end,
    )
    return _result(True, ENTITLEMENT_SUBSCRIPTION, sub.club_id)


def _entitlement_for_transaction(tx_id: int) -> Optional[ClubSubscriptionEntitlement]:
    return db.session.execute(
        db.select(ClubSubscriptionEntitlement).where(ClubSubscriptionEntitlement.source_transaction_id == tx_id)
    ).scalar_one_or_none()


def _settle_club_creation(tx, caller: str) -> Dict:
    existing = _entitlement_for_transaction(tx.id)
    if existing is not None:
        log_event("billing.settlement.idempotent_skip", caller=caller, transaction_id=tx.id,
                  kind=ENTITLEMENT_CLUB_CREATION)
        return _result(False, ENTITLEMENT_CLUB_CREATION, existing.id, skip=True)
    try:
        with db.session.begin_nested():
            ent = entitlement_service.grant_entitlement(
                user_id=tx.user_id,
                plan_id=tx.plan_id,
                source_transaction_id=tx.id,
            )
    except IntegrityError:
        existing = _entitlement_for_transaction(tx.id)
        if existing is None:
            raise
        return _result(False, ENTITLEMENT_CLUB_CREATION, existing.id, skip=True)
    tx.period_start = ent.valid_from
    tx.period_end = ent.valid_until
    return _result(True, ENTITLEMENT_CLUB_CREATION, ent.id)


def settle_transaction(tx, original_status: str, caller: str) -> Dict:
    """
    Issue the entitlement a completed transaction paid for.

    * one-off credit product with a user -> one credit, idempotent on tx id
    * club plan with a club -> (re)activate the club subscription
    * club plan without a club -> club-creation entitlement for the buyer
    """
    if tx.product_code in CREDIT_CODES and tx.user_id:
        return _settle_credit(tx, caller)

    if tx.plan_id in PAID_PLAN_IDS and tx.club_id:
        return _settle_subscription(tx, original_status, caller)

    if tx.plan_id in PAID_PLAN_IDS and tx.user_id:
        return _settle_club_creation(tx, caller)

    current_app.logger.warning(
        "billing.settlement.no_entitlement",
        extra={"caller": caller, "transaction_id": tx.id, "product_code": tx.product_code},
    )
    return _result(False, ENTITLEMENT_NONE)
