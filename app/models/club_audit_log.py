from sqlalchemy import func, Index
from app.extensions import db
from app.utils.helpers import utcnow, iso
from .types import UTCDateTime

class ClubAuditLog(db.Model):
    """Append-only club management trail (best-effort writes, see app.services.audit)."""
    __tablename__ = "club_audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    club_id = db.Column(db.Integer, db.ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action_code = db.Column(db.String(64), nullable=False)
    target_user_id = db.Column(db.Integer, nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)
    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        Index("ix_club_audit_logs_club_created", "club_id", "created_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "clubId": self.club_id,
            "actorUserId": self.actor_user_id,
            "actionCode": self.action_code,
            "targetUserId": self.target_user_id,
            "metadata": self.meta or {},
            "createdAt": iso(self.created_at),
        }
