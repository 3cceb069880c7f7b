from sqlalchemy import func
from sqlalchemy.sql import expression
from app.extensions import db
from app.utils.helpers import utcnow
from .types import UTCDateTime

class ClubPlan(db.Model):
    """Paid club tiers. The free tier is not stored (see app.billing.plans.FREE_PLAN)."""
    __tablename__ = "club_plans"

    id = db.Column(db.String(32), primary_key=True)  # club_50 | club_500 | club_unlimited
    title = db.Column(db.String(80), nullable=False)
    price_monthly = db.Column(db.Integer, nullable=False)
    currency_code = db.Column(db.String(3), nullable=False, server_default="KZT")
    # NULL = unlimited
    max_members = db.Column(db.Integer, nullable=True)
    max_event_participants = db.Column(db.Integer, nullable=True)
    allow_paid_events = db.Column(db.Boolean, nullable=False, default=False, server_default=expression.false())
    allow_csv_export = db.Column(db.Boolean, nullable=False, default=False, server_default=expression.false())
    is_public = db.Column(db.Boolean, nullable=False, default=True, server_default=expression.true())

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "priceMonthly": self.price_monthly,
            "currencyCode": self.currency_code,
            "maxMembers": self.max_members,
            "maxEventParticipants": self.max_event_participants,
            "allowPaidEvents": self.allow_paid_events,
            "allowCsvExport": self.allow_csv_export,
        }

    def __repr__(self) -> str:
        return f"<ClubPlan {self.id} {self.price_monthly} {self.currency_code}>"
