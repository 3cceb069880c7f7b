from sqlalchemy import func, CheckConstraint
from app.extensions import db
from app.utils.helpers import utcnow, iso
from .types import UTCDateTime

SUB_PENDING = "pending"
SUB_ACTIVE = "active"
SUB_GRACE = "grace"
SUB_EXPIRED = "expired"
SUBSCRIPTION_STATUSES = (SUB_PENDING, SUB_ACTIVE, SUB_GRACE, SUB_EXPIRED)

class ClubSubscription(db.Model):
    __tablename__ = "club_subscriptions"

    # one-to-one with clubs
    club_id = db.Column(db.Integer, db.ForeignKey("clubs.id", ondelete="CASCADE"), primary_key=True)
    plan_id = db.Column(db.String(32), db.ForeignKey("club_plans.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=SUB_PENDING, server_default=SUB_PENDING, index=True)
    current_period_start = db.Column(UTCDateTime, nullable=True)
    current_period_end = db.Column(UTCDateTime, nullable=True, index=True)
    grace_until = db.Column(UTCDateTime, nullable=True)

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','active','grace','expired')",
            name="ck_club_subscriptions_status_valid",
        ),
    )

    def to_dict(self):
        return {
            "clubId": self.club_id,
            "planId": self.plan_id,
            "status": self.status,
            "currentPeriodStart": iso(self.current_period_start),
            "currentPeriodEnd": iso(self.current_period_end),
            "graceUntil": iso(self.grace_until),
        }

    def __repr__(self) -> str:
        return f"<ClubSubscription club_id={self.club_id} plan={self.plan_id!r} status={self.status!r}>"
