from sqlalchemy import func, CheckConstraint, Index
from app.extensions import db
from app.utils.helpers import utcnow, iso
from .types import UTCDateTime

TX_PENDING = "pending"
TX_COMPLETED = "completed"
TX_FAILED = "failed"
TX_REFUNDED = "refunded"
TX_STATUSES = (TX_PENDING, TX_COMPLETED, TX_FAILED, TX_REFUNDED)

class BillingTransaction(db.Model):
    """Append-style purchase record; only status (and settlement period) move after insert."""
    __tablename__ = "billing_transactions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=True, index=True)
    club_id = db.Column(db.Integer, db.ForeignKey("clubs.id", ondelete="RESTRICT"), nullable=True, index=True)
    plan_id = db.Column(db.String(32), db.ForeignKey("club_plans.id", ondelete="RESTRICT"), nullable=True)
    product_code = db.Column(db.String(40), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1, server_default="1")

    provider = db.Column(db.String(40), nullable=False)
    provider_payment_id = db.Column(db.String(255), nullable=True, unique=True)

    amount = db.Column(db.Integer, nullable=False)
    currency_code = db.Column(db.String(3), nullable=False, server_default="KZT")
    status = db.Column(db.String(20), nullable=False, default=TX_PENDING, server_default=TX_PENDING)

    period_start = db.Column(UTCDateTime, nullable=True)
    period_end = db.Column(UTCDateTime, nullable=True)

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','completed','failed','refunded')",
            name="ck_billing_transactions_status_valid",
        ),
        CheckConstraint("amount >= 0", name="ck_billing_transactions_amount_nonneg"),
        Index("ix_billing_transactions_status", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "clubId": self.club_id,
            "planId": self.plan_id,
            "productCode": self.product_code,
            "quantity": self.quantity,
            "provider": self.provider,
            "providerPaymentId": self.provider_payment_id,
            "amount": self.amount,
            "currencyCode": self.currency_code,
            "status": self.status,
            "periodStart": iso(self.period_start),
            "periodEnd": iso(self.period_end),
            "createdAt": iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<BillingTransaction id={self.id} product={self.product_code!r} status={self.status!r}>"
