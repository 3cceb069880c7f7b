from sqlalchemy import func, CheckConstraint, UniqueConstraint
from app.extensions import db
from app.utils.helpers import utcnow, iso
from .types import UTCDateTime

# Keep simple text+CHECK for evolvable roles (no DB enum migration pain)
ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"
ROLE_ORGANIZER = "organizer"
ROLE_MEMBER = "member"
ROLE_PENDING = "pending"
ROLE_CHOICES = (ROLE_OWNER, ROLE_ADMIN, ROLE_ORGANIZER, ROLE_MEMBER, ROLE_PENDING)
# roles that may be handed out through member management (owner is transfer-only)
ASSIGNABLE_ROLES = (ROLE_ADMIN, ROLE_ORGANIZER, ROLE_MEMBER)

class ClubMember(db.Model):
    __tablename__ = "club_members"

    id = db.Column(db.Integer, primary_key=True)

    club_id = db.Column(
        db.Integer,
        db.ForeignKey("clubs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # default is member; owner/admin must be explicit
    role = db.Column(db.String(20), nullable=False, default=ROLE_MEMBER, server_default=ROLE_MEMBER)
    invited_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("club_id", "user_id", name="uq_club_members_club_user"),
        CheckConstraint(
            "role IN ('owner','admin','organizer','member','pending')",
            name="ck_club_members_role_valid",
        ),
    )

    def to_dict(self):
        return {
            "clubId": self.club_id,
            "userId": self.user_id,
            "role": self.role,
            "joinedAt": iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<ClubMember club_id={self.club_id} user_id={self.user_id} role={self.role!r}>"
