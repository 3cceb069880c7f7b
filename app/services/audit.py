"""
Audit trails.

Two writers with deliberately different durability:

* ``log_club_action`` is best-effort. It writes inside a SAVEPOINT; a failed
  insert rolls back only the savepoint, is logged as ``club_audit.write_failed``
  and the surrounding club operation carries on.
* ``write_admin_audit`` is durable. It raises on any failure, and
  ``admin_atomic_mutation`` makes the mutation and its audit row commit or roll
  back together.
"""
from typing import Any, Callable, Dict, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from app.errors import InternalError, ValidationError
from app.extensions import db
from app.models import AdminAuditLog, ClubAuditLog
from app.models.admin_audit_log import RESULT_REJECTED, RESULT_SUCCESS, TARGET_CLUB, TARGET_USER
from app.observability import log_event

# Club action codes
CLUB_CREATED = "CLUB_CREATED"
CLUB_UPDATED = "CLUB_UPDATED"
CLUB_VISIBILITY_CHANGED = "CLUB_VISIBILITY_CHANGED"
CLUB_ARCHIVED = "CLUB_ARCHIVED"
CLUB_UNARCHIVED = "CLUB_UNARCHIVED"
MEMBER_ADDED = "MEMBER_ADDED"
MEMBER_REMOVED = "MEMBER_REMOVED"
MEMBER_LEFT = "MEMBER_LEFT"
ROLE_CHANGED = "ROLE_CHANGED"
JOIN_REQUEST_APPROVED = "JOIN_REQUEST_APPROVED"
JOIN_REQUEST_REJECTED = "JOIN_REQUEST_REJECTED"
EVENT_PUBLISHED = "EVENT_PUBLISHED"

# Admin action codes
ADMIN_GRANT_CREDIT = "ADMIN_GRANT_CREDIT"
ADMIN_GRANT_CREDIT_REJECTED = "ADMIN_GRANT_CREDIT_REJECTED"
ADMIN_EXTEND_SUBSCRIPTION = "ADMIN_EXTEND_SUBSCRIPTION"
ADMIN_EXTEND_SUBSCRIPTION_REJECTED = "ADMIN_EXTEND_SUBSCRIPTION_REJECTED"

TARGET_TYPES = (TARGET_USER, TARGET_CLUB)
RESULTS = (RESULT_SUCCESS, RESULT_REJECTED)

DEFAULT_AUDIT_LIMIT = 100
MAX_AUDIT_LIMIT = 500


class AdminAuditWriteError(InternalError):
    code = "ADMIN_AUDIT_WRITE_FAILED"


def log_club_action(club_id: int, actor_user_id: Optional[int], action_code: str,
                    target_user_id: Optional[int] = None, metadata: Optional[Dict[str, Any]] = None) -> bool:
    """Returns False when the entry could not be written. Never raises."""
    try:
        with db.session.begin_nested():
            db.session.add(ClubAuditLog(
                club_id=club_id,
                actor_user_id=actor_user_id,
                action_code=action_code,
                target_user_id=target_user_id,
                meta=metadata or {},
            ))
    except SQLAlchemyError as exc:
        current_app.logger.warning(
            "club_audit.write_failed",
            extra={"club_id": club_id, "action_code": action_code, "error": type(exc).__name__},
        )
        return False
    return True


def list_club_audit(club_id: int, limit: int = 50):
    limit = max(1, min(int(limit), MAX_AUDIT_LIMIT))
    return db.session.execute(
        db.select(ClubAuditLog)
        .where(ClubAuditLog.club_id == club_id)
        .order_by(ClubAuditLog.created_at.desc(), ClubAuditLog.id.desc())
        .limit(limit)
    ).scalars().all()


def _validate_admin_entry(target_type: str, reason: str, result: str, error_code: Optional[str]) -> None:
    if not (reason or "").strip():
        raise AdminAuditWriteError("Admin audit entry requires a reason")
    if target_type not in TARGET_TYPES:
        raise AdminAuditWriteError(f"Invalid audit target_type: {target_type}")
    if result not in RESULTS:
        raise AdminAuditWriteError(f"Invalid audit result: {result}")
    if result == RESULT_REJECTED and not error_code:
        raise AdminAuditWriteError("Rejected admin audit entry requires an error_code")


def write_admin_audit(*, actor_id, action_type: str, target_type: str, target_id, reason: str,
                      result: str = RESULT_SUCCESS, metadata: Optional[Dict[str, Any]] = None,
                      related_entity_id=None, error_code: Optional[str] = None,
                      commit: bool = False) -> AdminAuditLog:
    """
    Insert an admin audit row in the current transaction (``commit=True`` for
    standalone rejection entries). Raises AdminAuditWriteError on any failure.
    """
    _validate_admin_entry(target_type, reason, result, error_code)
    entry = AdminAuditLog(
        actor_id=str(actor_id),
        action_type=action_type,
        target_type=target_type,
        target_id=str(target_id),
        reason=reason.strip(),
        result=result,
        meta=metadata or {},
        related_entity_id=str(related_entity_id) if related_entity_id is not None else None,
        error_code=error_code,
    )
    try:
        db.session.add(entry)
        db.session.flush()
        if commit:
            db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("admin_audit.write_failed", extra={"action_type": action_type})
        raise AdminAuditWriteError("Failed to write admin audit entry") from exc
    log_event("admin_audit.written", action_type=action_type, result=result, target_type=target_type,
              target_id=str(target_id))
    return entry


def admin_atomic_mutation(mutation: Callable[[], Any], audit: Callable[[Any], AdminAuditLog]):
    """
    Run ``mutation()`` then ``audit(result)`` in one transaction and commit.
    Any failure in either rolls both back and propagates.
    """
    try:
        outcome = mutation()
        audit(outcome)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return outcome


def list_admin_audit(*, action_type: Optional[str] = None, target_type: Optional[str] = None,
                     target_id: Optional[str] = None, actor_id: Optional[str] = None,
                     result: Optional[str] = None, limit: Optional[int] = None,
                     cursor: Optional[int] = None) -> Dict[str, Any]:
    """Newest first; ``cursor`` is the last id of the previous page."""
    if target_type is not None and target_type not in TARGET_TYPES:
        raise ValidationError("targetType must be one of: user, club", {"targetType": target_type})
    if result is not None and result not in RESULTS:
        raise ValidationError("result must be one of: success, rejected", {"result": result})
    limit = DEFAULT_AUDIT_LIMIT if limit is None else limit
    if limit < 1 or limit > MAX_AUDIT_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_AUDIT_LIMIT}", {"limit": limit})

    A = AdminAuditLog
    q = db.select(A)
    if action_type:
        q = q.where(A.action_type == action_type)
    if target_type:
        q = q.where(A.target_type == target_type)
    if target_id:
        q = q.where(A.target_id == str(target_id))
    if actor_id:
        q = q.where(A.actor_id == str(actor_id))
    if result:
        q = q.where(A.result == result)
    if cursor:
        q = q.where(A.id < cursor)

    rows = db.session.execute(q.order_by(A.id.desc()).limit(limit + 1)).scalars().all()
    has_more = len(rows) > limit
    rows = rows[:limit]
    return {
        "items": rows,
        "nextCursor": rows[-1].id if has_more and rows else None,
    }
