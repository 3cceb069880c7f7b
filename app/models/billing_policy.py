from sqlalchemy import func, UniqueConstraint
from app.extensions import db
from app.utils.helpers import utcnow
from .types import UTCDateTime

DEFAULT_POLICY_ID = "default"

class BillingPolicy(db.Model):
    __tablename__ = "billing_policies"

    id = db.Column(db.String(32), primary_key=True)
    grace_period_days = db.Column(db.Integer, nullable=False, server_default="7")
    pending_ttl_minutes = db.Column(db.Integer, nullable=False, server_default="60")

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)


class BillingPolicyAction(db.Model):
    """(subscription status, action) -> allowed. Missing rows mean 'denied'."""
    __tablename__ = "billing_policy_actions"

    id = db.Column(db.Integer, primary_key=True)
    policy_id = db.Column(db.String(32), db.ForeignKey("billing_policies.id", ondelete="CASCADE"), nullable=False)
    status = db.Column(db.String(20), nullable=False)
    action = db.Column(db.String(64), nullable=False)
    is_allowed = db.Column(db.Boolean, nullable=False)

    __table_args__ = (
        UniqueConstraint("policy_id", "status", "action", name="uq_billing_policy_actions_key"),
    )
