from sqlalchemy import func, CheckConstraint, Index
from app.extensions import db
from app.utils.helpers import utcnow, iso
from .types import UTCDateTime

CREDIT_AVAILABLE = "available"
CREDIT_CONSUMED = "consumed"

CREDIT_SOURCE_USER = "user"
CREDIT_SOURCE_ADMIN = "admin"
CREDIT_SOURCE_SYSTEM = "system"

class BillingCredit(db.Model):
    __tablename__ = "billing_credits"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    credit_code = db.Column(db.String(40), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=CREDIT_AVAILABLE, server_default=CREDIT_AVAILABLE)
    source = db.Column(db.String(20), nullable=False, default=CREDIT_SOURCE_USER, server_default=CREDIT_SOURCE_USER)

    # one credit per funding transaction: settlement retries hit this constraint
    source_transaction_id = db.Column(
        db.Integer,
        db.ForeignKey("billing_transactions.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    consumed_event_id = db.Column(db.Integer, db.ForeignKey("events.id", ondelete="SET NULL"), nullable=True, index=True)
    consumed_at = db.Column(UTCDateTime, nullable=True)

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('available','consumed')", name="ck_billing_credits_status_valid"),
        CheckConstraint("source IN ('user','admin','system')", name="ck_billing_credits_source_valid"),
        CheckConstraint(
            "status <> 'consumed' OR consumed_at IS NOT NULL",
            name="ck_billing_credits_consumed_at",
        ),
        Index("ix_billing_credits_user_code_status", "user_id", "credit_code", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "creditCode": self.credit_code,
            "status": self.status,
            "source": self.source,
            "sourceTransactionId": self.source_transaction_id,
            "consumedEventId": self.consumed_event_id,
            "consumedAt": iso(self.consumed_at),
            "createdAt": iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<BillingCredit id={self.id} user_id={self.user_id} status={self.status!r}>"
