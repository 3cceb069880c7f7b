"""
Admin billing operations.

Admins may grant one-off credits and extend an existing club subscription;
everything else that touches money or subscription state is refused by
``assert_operation_allowed``. Every attempt, successful or not, lands in the
admin audit log.
"""
from datetime import timedelta

from app.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.extensions import db
from app.models import BillingTransaction, Club, ClubSubscription, User
from app.models.admin_audit_log import RESULT_REJECTED, TARGET_CLUB, TARGET_USER
from app.models.billing_credit import CREDIT_SOURCE_ADMIN
from app.models.billing_transaction import TX_COMPLETED
from app.models.club_subscription import SUB_ACTIVE, SUB_EXPIRED, SUB_GRACE
from app.billing.plans import CREDIT_CODES
from app.services import audit as audit_service
from app.services import credits as credit_service
from app.observability import log_event
from app.utils.helpers import as_utc, iso, utcnow

PROVIDER_ADMIN_GRANT = "admin-grant"

FORBIDDEN_OPERATIONS = {
    "ISSUE_REFUND": "Issuing refunds",
    "MODIFY_TRANSACTION": "Editing billing transactions",
    "DELETE_CREDIT": "Deleting credits",
    "REVOKE_CREDIT": "Revoking credits",
    "DOWNGRADE_PLAN": "Downgrading a subscription plan",
    "CANCEL_SUBSCRIPTION": "Cancelling a subscription",
    "CHANGE_PLAN_PRICE": "Changing plan prices",
    "CONSUME_CREDIT_MANUALLY": "Consuming credits manually",
}


def assert_operation_allowed(actor, operation: str, target_type: str = TARGET_USER, target_id="-",
                             reason: str = None):
    """Always raises for a forbidden operation, after auditing the attempt."""
    if operation not in FORBIDDEN_OPERATIONS:
        return
    description = FORBIDDEN_OPERATIONS[operation]
    is_subscription_op = "PLAN" in operation or "SUBSCRIPTION" in operation
    try:
        audit_service.write_admin_audit(
            actor_id=actor.id,
            action_type=(
                audit_service.ADMIN_EXTEND_SUBSCRIPTION_REJECTED
                if is_subscription_op
                else audit_service.ADMIN_GRANT_CREDIT_REJECTED
            ),
            target_type=target_type,
            target_id=target_id,
            reason=reason or f"Attempted forbidden operation: {operation}",
            result=RESULT_REJECTED,
            error_code=f"FORBIDDEN_{operation}",
            metadata={"forbiddenOperationCode": operation},
            commit=True,
        )
    except audit_service.AdminAuditWriteError:
        log_event("admin.forbidden_operation.audit_failed", level="error", operation=operation)
    raise ForbiddenError(f"{description} is forbidden for admins", {"operation": operation})


def _reject(actor, action_type, target_type, target_id, reason, error_code, exc, metadata=None):
    audit_service.write_admin_audit(
        actor_id=actor.id,
        action_type=action_type,
        target_type=target_type,
        target_id=target_id,
        reason=reason,
        result=RESULT_REJECTED,
        error_code=error_code,
        metadata=metadata,
        commit=True,
    )
    raise exc


def admin_grant_one_off_credit(actor, user_id, credit_code: str, reason: str):
    action = audit_service.ADMIN_GRANT_CREDIT_REJECTED
    if not (reason or "").strip():
        _reject(actor, action, TARGET_USER, user_id,
                "Attempted to grant credit without providing reason", "REASON_REQUIRED",
                ValidationError("Reason is required", {"errorCode": "REASON_REQUIRED"}))
    if credit_code not in CREDIT_CODES:
        _reject(actor, action, TARGET_USER, user_id,
                f"Attempted to grant invalid credit code: {credit_code}", "INVALID_CREDIT_CODE",
                ValidationError(f"Invalid credit code: {credit_code}", {"errorCode": "INVALID_CREDIT_CODE"}),
                metadata={"providedCreditCode": credit_code, "validCodes": list(CREDIT_CODES)})
    user = db.session.get(User, user_id)
    if user is None:
        _reject(actor, action, TARGET_USER, user_id,
                "Attempted to grant credit to non-existent user", "USER_NOT_FOUND",
                NotFoundError("User not found", {"errorCode": "USER_NOT_FOUND"}))

    def mutation():
        tx = BillingTransaction(
            user_id=user.id,
            product_code=credit_code,
            provider=PROVIDER_ADMIN_GRANT,
            amount=0,
            status=TX_COMPLETED,
        )
        db.session.add(tx)
        db.session.flush()
        credit = credit_service.create_credit(
            user_id=user.id,
            credit_code=credit_code,
            source_transaction_id=tx.id,
            source=CREDIT_SOURCE_ADMIN,
        )
        return {"transaction": tx, "credit": credit}

    def audit(outcome):
        return audit_service.write_admin_audit(
            actor_id=actor.id,
            action_type=audit_service.ADMIN_GRANT_CREDIT,
            target_type=TARGET_USER,
            target_id=user.id,
            reason=reason,
            related_entity_id=outcome["credit"].id,
            metadata={"creditCode": credit_code, "transactionId": outcome["transaction"].id},
        )

    outcome = audit_service.admin_atomic_mutation(mutation, audit)
    log_event("admin.credit_granted", actor_id=actor.id, user_id=user.id, credit_id=outcome["credit"].id)
    return outcome


def admin_extend_subscription(actor, club_id, days, reason: str):
    action = audit_service.ADMIN_EXTEND_SUBSCRIPTION_REJECTED
    if not (reason or "").strip():
        _reject(actor, action, TARGET_CLUB, club_id,
                "Attempted to extend subscription without providing reason", "REASON_REQUIRED",
                ValidationError("Reason is required", {"errorCode": "REASON_REQUIRED"}))
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        _reject(actor, action, TARGET_CLUB, club_id,
                f"Invalid extension days: {days}. Must be positive integer.", "INVALID_DAYS",
                ValidationError("days must be a positive integer", {"errorCode": "INVALID_DAYS"}),
                metadata={"providedDays": str(days)})
    club = db.session.get(Club, club_id)
    if club is None:
        _reject(actor, action, TARGET_CLUB, club_id,
                "Attempted to extend subscription for non-existent club", "CLUB_NOT_FOUND",
                NotFoundError("Club not found", {"errorCode": "CLUB_NOT_FOUND"}))
    sub = db.session.get(ClubSubscription, club.id)
    if sub is None:
        _reject(actor, action, TARGET_CLUB, club.id,
                "Attempted to extend a club without a subscription", "SUBSCRIPTION_NOT_FOUND",
                NotFoundError("Subscription not found", {"errorCode": "SUBSCRIPTION_NOT_FOUND"}))
    if sub.status not in (SUB_ACTIVE, SUB_GRACE, SUB_EXPIRED):
        _reject(actor, action, TARGET_CLUB, club.id,
                f"Attempted to extend subscription in status {sub.status}", "INVALID_SUBSCRIPTION_STATUS",
                ConflictError(f"Cannot extend a subscription in status {sub.status}",
                              {"errorCode": "INVALID_SUBSCRIPTION_STATUS"}),
                metadata={"status": sub.status})

    previous_end = as_utc(sub.current_period_end)
    previous_status = sub.status

    def mutation():
        now = utcnow()
        base = previous_end if previous_end and previous_end > now else now
        sub.current_period_end = base + timedelta(days=days)
        sub.status = SUB_ACTIVE
        sub.grace_until = None
        db.session.flush()
        return sub

    def audit(updated):
        return audit_service.write_admin_audit(
            actor_id=actor.id,
            action_type=audit_service.ADMIN_EXTEND_SUBSCRIPTION,
            target_type=TARGET_CLUB,
            target_id=club.id,
            reason=reason,
            related_entity_id=club.id,
            metadata={
                "days": days,
                "previousStatus": previous_status,
                "previousPeriodEnd": iso(previous_end),
                "newPeriodEnd": iso(updated.current_period_end),
            },
        )

    updated = audit_service.admin_atomic_mutation(mutation, audit)
    log_event("admin.subscription_extended", actor_id=actor.id, club_id=club.id, days=days)
    return updated


def list_users(q: str = None, limit: int = 50):
    query = db.select(User)
    if q:
        query = query.where(User.email.ilike(f"%{q}%") | User.display_name.ilike(f"%{q}%"))
    return db.session.execute(query.order_by(User.id.desc()).limit(limit)).scalars().all()


def list_clubs(q: str = None, limit: int = 50):
    query = db.select(Club)
    if q:
        query = query.where(Club.name.ilike(f"%{q}%"))
    return db.session.execute(query.order_by(Club.id.desc()).limit(limit)).scalars().all()
