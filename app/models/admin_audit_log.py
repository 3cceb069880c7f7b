from sqlalchemy import func, CheckConstraint, Index
from app.extensions import db
from app.utils.helpers import utcnow, iso
from .types import UTCDateTime

RESULT_SUCCESS = "success"
RESULT_REJECTED = "rejected"

TARGET_USER = "user"
TARGET_CLUB = "club"

class AdminAuditLog(db.Model):
    """Append-only. Rows are never updated or deleted."""
    __tablename__ = "admin_audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.String(64), nullable=False, index=True)
    action_type = db.Column(db.String(64), nullable=False, index=True)
    target_type = db.Column(db.String(10), nullable=False)
    target_id = db.Column(db.String(64), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    result = db.Column(db.String(10), nullable=False)
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)
    related_entity_id = db.Column(db.String(64), nullable=True)
    error_code = db.Column(db.String(64), nullable=True)

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint("target_type IN ('user','club')", name="ck_admin_audit_target_type"),
        CheckConstraint("result IN ('success','rejected')", name="ck_admin_audit_result"),
        CheckConstraint("length(trim(reason)) > 0", name="ck_admin_audit_reason_nonempty"),
        CheckConstraint(
            "result <> 'rejected' OR error_code IS NOT NULL",
            name="ck_admin_audit_rejected_has_code",
        ),
        Index("ix_admin_audit_target", "target_type", "target_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "actorId": self.actor_id,
            "actionType": self.action_type,
            "targetType": self.target_type,
            "targetId": self.target_id,
            "reason": self.reason,
            "result": self.result,
            "metadata": self.meta or {},
            "relatedEntityId": self.related_entity_id,
            "errorCode": self.error_code,
            "createdAt": iso(self.created_at),
        }
