from sqlalchemy import func, CheckConstraint, Index, text
from app.extensions import db
from app.utils.helpers import utcnow, iso
from .types import UTCDateTime

JOIN_PENDING = "pending"
JOIN_APPROVED = "approved"
JOIN_REJECTED = "rejected"

class ClubJoinRequest(db.Model):
    __tablename__ = "club_join_requests"

    id = db.Column(db.Integer, primary_key=True)
    club_id = db.Column(db.Integer, db.ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False, index=True)
    requester_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=JOIN_PENDING, server_default=JOIN_PENDING)
    message = db.Column(db.String(500), nullable=True)
    decided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','approved','rejected')",
            name="ck_club_join_requests_status_valid",
        ),
        # one open request per (club, requester)
        Index(
            "uq_club_join_requests_pending",
            "club_id",
            "requester_user_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "clubId": self.club_id,
            "requesterUserId": self.requester_user_id,
            "status": self.status,
            "message": self.message,
            "decidedBy": self.decided_by_user_id,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }
