from sqlalchemy import func, CheckConstraint, UniqueConstraint
from sqlalchemy.sql import expression
from app.extensions import db
from app.utils.helpers import utcnow, iso
from .types import UTCDateTime

EVENT_DRAFT = "draft"
EVENT_PUBLISHED = "published"

class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    starts_at = db.Column(UTCDateTime, nullable=True)

    # NULL = no cap
    max_participants = db.Column(db.Integer, nullable=True)
    is_paid = db.Column(db.Boolean, nullable=False, default=False, server_default=expression.false())
    price = db.Column(db.Integer, nullable=True)

    club_id = db.Column(db.Integer, db.ForeignKey("clubs.id", ondelete="SET NULL"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default=EVENT_DRAFT, server_default=EVENT_DRAFT, index=True)
    published_at = db.Column(UTCDateTime, nullable=True)

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('draft','published')", name="ck_events_status_valid"),
        CheckConstraint("max_participants IS NULL OR max_participants > 0", name="ck_events_max_participants_positive"),
    )

    @property
    def is_published(self) -> bool:
        return self.status == EVENT_PUBLISHED

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "startsAt": iso(self.starts_at),
            "maxParticipants": self.max_participants,
            "isPaid": self.is_paid,
            "price": self.price,
            "clubId": self.club_id,
            "createdBy": self.created_by_user_id,
            "status": self.status,
            "publishedAt": iso(self.published_at),
            "createdAt": iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<Event id={self.id} status={self.status!r} max={self.max_participants}>"


class EventParticipant(db.Model):
    __tablename__ = "event_participants"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    display_name = db.Column(db.String(120), nullable=True)
    registered_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_participants_event_user"),
    )

    def to_dict(self):
        return {
            "eventId": self.event_id,
            "userId": self.user_id,
            "displayName": self.display_name,
            "registeredAt": iso(self.registered_at),
        }
