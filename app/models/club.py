from sqlalchemy import func, CheckConstraint
from app.extensions import db
from app.utils.helpers import utcnow, iso
from .types import UTCDateTime

VISIBILITY_PUBLIC = "public"
VISIBILITY_PRIVATE = "private"
VISIBILITIES = (VISIBILITY_PUBLIC, VISIBILITY_PRIVATE)

class Club(db.Model):
    __tablename__ = "clubs"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    city = db.Column(db.String(100), nullable=True, index=True)
    visibility = db.Column(db.String(20), nullable=False, default=VISIBILITY_PUBLIC, server_default=VISIBILITY_PUBLIC)

    created_by_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    archived_at = db.Column(UTCDateTime, nullable=True)

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("visibility IN ('public','private')", name="ck_clubs_visibility_valid"),
    )

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "city": self.city,
            "visibility": self.visibility,
            "createdBy": self.created_by_user_id,
            "isArchived": self.is_archived,
            "archivedAt": iso(self.archived_at),
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Club id={self.id} name={self.name!r}>"
