from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from app.errors import PaywallError, ValidationError
from app.extensions import db
from app.models import BillingCredit
from app.models.billing_credit import CREDIT_AVAILABLE, CREDIT_CONSUMED, CREDIT_SOURCE_USER
from app.billing.plans import CREDIT_CODES
from app.observability import log_event
from app.utils.helpers import utcnow


def create_credit(*, user_id: int, credit_code: str, source_transaction_id: int,
                  source: str = CREDIT_SOURCE_USER) -> BillingCredit:
    """Insert an available credit. Raises IntegrityError if the transaction already funded one."""
    if credit_code not in CREDIT_CODES:
        raise ValidationError(f"Unknown credit code: {credit_code}", {"creditCode": credit_code})
    credit = BillingCredit(
        user_id=user_id,
        credit_code=credit_code,
        status=CREDIT_AVAILABLE,
        source=source,
        source_transaction_id=source_transaction_id,
    )
    db.session.add(credit)
    db.session.flush()
    return credit


def credit_for_transaction(transaction_id: int) -> Optional[BillingCredit]:
    return db.session.execute(
        db.select(BillingCredit).where(BillingCredit.source_transaction_id == transaction_id)
    ).scalar_one_or_none()


def ensure_credit_for_transaction(*, user_id: int, credit_code: str, source_transaction_id: int,
                                  source: str = CREDIT_SOURCE_USER) -> Tuple[BillingCredit, bool]:
    """
    Idempotent issue: (credit, created). A concurrent or repeated settlement
    trips the unique constraint on source_transaction_id and gets the existing row.
    """
    existing = credit_for_transaction(source_transaction_id)
    if existing is not None:
        return existing, False
    try:
        with db.session.begin_nested():
            credit = create_credit(
                user_id=user_id,
                credit_code=credit_code,
                source_transaction_id=source_transaction_id,
                source=source,
            )
    except IntegrityError:
        existing = credit_for_transaction(source_transaction_id)
        if existing is None:
            raise
        log_event("billing.credit.idempotent_skip", transaction_id=source_transaction_id)
        return existing, False
    log_event("billing.credit.issued", credit_id=credit.id, user_id=user_id, transaction_id=source_transaction_id)
    return credit, True


def has_available_credit(user_id: int, credit_code: str) -> bool:
    row = db.session.execute(
        db.select(BillingCredit.id).where(
            BillingCredit.user_id == user_id,
            BillingCredit.credit_code == credit_code,
            BillingCredit.status == CREDIT_AVAILABLE,
        ).limit(1)
    ).first()
    return row is not None


def list_credits(user_id: int, status: Optional[str] = None):
    q = db.select(BillingCredit).where(BillingCredit.user_id == user_id)
    if status:
        q = q.where(BillingCredit.status == status)
    return db.session.execute(q.order_by(BillingCredit.created_at.desc(), BillingCredit.id.desc())).scalars().all()


def consume_credit(user_id: int, credit_code: str, event_id: int, now: Optional[datetime] = None) -> BillingCredit:
    """
    Spend the oldest available credit on ``event_id`` inside the caller's
    transaction. The UPDATE only matches a still-available row, so a credit
    can never be consumed twice.
    """
    if event_id is None:
        raise ValidationError("event_id is required to consume a credit")
    now = now or utcnow()

    candidate = db.session.execute(
        db.select(BillingCredit.id).where(
            BillingCredit.user_id == user_id,
            BillingCredit.credit_code == credit_code,
            BillingCredit.status == CREDIT_AVAILABLE,
        ).order_by(BillingCredit.created_at.asc(), BillingCredit.id.asc()).limit(1)
    ).scalar_one_or_none()

    if candidate is not None:
        result = db.session.execute(
            update(BillingCredit)
            .where(BillingCredit.id == candidate, BillingCredit.status == CREDIT_AVAILABLE)
            .values(status=CREDIT_CONSUMED, consumed_event_id=event_id, consumed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            credit = db.session.get(BillingCredit, candidate)
            db.session.refresh(credit)
            log_event("billing.credit.consumed", credit_id=candidate, user_id=user_id, event_id=event_id)
            return credit

    raise PaywallError(
        "No available credit to consume",
        "PUBLISH_REQUIRES_PAYMENT",
        current_plan_id="free",
        meta={"creditCode": credit_code, "eventId": event_id},
    )


def consumed_credits_for_event(event_id: int):
    return db.session.execute(
        db.select(BillingCredit).where(
            BillingCredit.consumed_event_id == event_id,
            BillingCredit.status == CREDIT_CONSUMED,
        )
    ).scalars().all()
