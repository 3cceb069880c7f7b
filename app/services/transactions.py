from typing import Optional

from app.errors import ValidationError
from app.extensions import db
from app.models import BillingTransaction
from app.models.billing_transaction import TX_PENDING, TX_STATUSES


def create_pending_transaction(*, user_id: Optional[int], product_code: str, amount: int, currency_code: str,
                               provider: str, club_id: Optional[int] = None, plan_id: Optional[str] = None,
                               quantity: int = 1) -> BillingTransaction:
    tx = BillingTransaction(
        user_id=user_id,
        club_id=club_id,
        plan_id=plan_id,
        product_code=product_code,
        quantity=quantity,
        provider=provider,
        amount=amount,
        currency_code=currency_code,
        status=TX_PENDING,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def get_transaction(transaction_id: int) -> Optional[BillingTransaction]:
    return db.session.get(BillingTransaction, transaction_id)


def get_by_provider_payment_id(reference: str) -> Optional[BillingTransaction]:
    if not reference:
        return None
    return db.session.execute(
        db.select(BillingTransaction).where(BillingTransaction.provider_payment_id == reference)
    ).scalar_one_or_none()


def mark_status(tx: BillingTransaction, status: str) -> BillingTransaction:
    if status not in TX_STATUSES:
        raise ValidationError(f"Invalid transaction status: {status}", {"status": status})
    tx.status = status
    db.session.flush()
    return tx
