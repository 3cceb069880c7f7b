from sqlalchemy import func, UniqueConstraint
from sqlalchemy.sql import expression
from app.extensions import db
from app.utils.helpers import utcnow
from .types import UTCDateTime

class BillingEventLog(db.Model):
    """Raw provider webhook journal; the unique event id makes redelivery a no-op."""
    __tablename__ = "billing_event_logs"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(40), nullable=False, server_default="stripe")
    provider_event_id = db.Column(db.String(255), nullable=False, index=True)
    type = db.Column(db.String(80), nullable=False, index=True)
    signature_valid = db.Column(db.Boolean, nullable=False, default=True, server_default=expression.true())
    payload = db.Column(db.JSON, nullable=False, default=dict)
    notes = db.Column(db.String(255), nullable=True)

    processed_at = db.Column(UTCDateTime, nullable=True)
    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("provider", "provider_event_id", name="uq_billing_event_logs_provider_event"),
    )
