from sqlalchemy import func, CheckConstraint, Index
from app.extensions import db
from app.utils.helpers import utcnow, iso
from .types import UTCDateTime

ENT_ACTIVE = "active"
ENT_CONSUMED = "consumed"
ENT_EXPIRED = "expired"
ENT_CANCELLED = "cancelled"

class ClubSubscriptionEntitlement(db.Model):
    """A pre-paid right to create exactly one club."""
    __tablename__ = "club_subscription_entitlements"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    plan_id = db.Column(db.String(32), db.ForeignKey("club_plans.id", ondelete="RESTRICT"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ENT_ACTIVE, server_default=ENT_ACTIVE)
    valid_from = db.Column(UTCDateTime, nullable=False)
    valid_until = db.Column(UTCDateTime, nullable=False)

    # NULL until consumed; a club is linked to at most one entitlement
    club_id = db.Column(db.Integer, db.ForeignKey("clubs.id", ondelete="RESTRICT"), nullable=True, unique=True)
    consumed_at = db.Column(UTCDateTime, nullable=True)
    source_transaction_id = db.Column(
        db.Integer,
        db.ForeignKey("billing_transactions.id", ondelete="RESTRICT"),
        nullable=True,
        unique=True,
    )

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('active','consumed','expired','cancelled')",
            name="ck_cse_status_valid",
        ),
        CheckConstraint(
            "status <> 'consumed' OR (club_id IS NOT NULL AND consumed_at IS NOT NULL)",
            name="ck_cse_consumed_linked",
        ),
        CheckConstraint("valid_until > valid_from", name="ck_cse_window"),
        Index("ix_cse_user_status", "user_id", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "planId": self.plan_id,
            "status": self.status,
            "validFrom": iso(self.valid_from),
            "validUntil": iso(self.valid_until),
            "clubId": self.club_id,
            "consumedAt": iso(self.consumed_at),
        }

    def __repr__(self) -> str:
        return f"<ClubSubscriptionEntitlement id={self.id} user_id={self.user_id} status={self.status!r} club_id={self.club_id}>"
