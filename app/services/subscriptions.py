from datetime import datetime, timedelta
from typing import Optional

from app.extensions import db
from app.models import BillingPolicy, BillingPolicyAction, ClubSubscription
from app.models.billing_policy import DEFAULT_POLICY_ID
from app.models.club_subscription import SUB_ACTIVE, SUB_GRACE, SUB_EXPIRED
from app.billing.plans import PLAN_FREE, get_plan
from app.observability import log_event
from app.utils.helpers import utcnow, as_utc

DEFAULT_GRACE_DAYS = 7


def get_policy() -> Optional[BillingPolicy]:
    return db.session.get(BillingPolicy, DEFAULT_POLICY_ID)


def grace_period_days() -> int:
    policy = get_policy()
    return policy.grace_period_days if policy else DEFAULT_GRACE_DAYS


def is_action_allowed(status: str, action: str) -> bool:
    if status == SUB_ACTIVE:
        return True
    row = db.session.execute(
        db.select(BillingPolicyAction).where(
            BillingPolicyAction.policy_id == DEFAULT_POLICY_ID,
            BillingPolicyAction.status == status,
            BillingPolicyAction.action == action,
        )
    ).scalar_one_or_none()
    return bool(row and row.is_allowed)


def refresh_status(sub: ClubSubscription, now: Optional[datetime] = None) -> bool:
    """
    Apply time-based transitions in place: active -> grace once the period
    lapses, grace -> expired once grace_until passes. Returns True if changed.
    """
    now = now or utcnow()
    changed = False
    period_end = as_utc(sub.current_period_end)
    if sub.status == SUB_ACTIVE and period_end is not None and period_end <= now:
        sub.status = SUB_GRACE
        sub.grace_until = period_end + timedelta(days=grace_period_days())
        changed = True
    if sub.status == SUB_GRACE:
        grace_until = as_utc(sub.grace_until)
        if grace_until is None or grace_until <= now:
            sub.status = SUB_EXPIRED
            changed = True
    if changed:
        log_event("billing.subscription.status_changed", club_id=sub.club_id, status=sub.status)
    return changed


def get_club_subscription(club_id: int) -> Optional[ClubSubscription]:
    sub = db.session.get(ClubSubscription, club_id)
    if sub is not None and refresh_status(sub):
        db.session.commit()
    return sub


def activate_subscription(club_id: int, plan_id: str, period_start: datetime, period_end: datetime) -> ClubSubscription:
    """Upsert on club_id; REPLACE the period and clear any grace window. Caller commits."""
    sub = db.session.get(ClubSubscription, club_id)
    if sub is None:
        sub = ClubSubscription(club_id=club_id)
        db.session.add(sub)
    sub.plan_id = plan_id
    sub.status = SUB_ACTIVE
    sub.current_period_start = period_start
    sub.current_period_end = period_end
    sub.grace_until = None
    db.session.flush()
    return sub


def get_club_current_plan(club_id: int) -> dict:
    sub = get_club_subscription(club_id)
    if sub is None:
        return {"planId": PLAN_FREE, "plan": get_plan(PLAN_FREE), "subscription": None}
    return {"planId": sub.plan_id, "plan": get_plan(sub.plan_id), "subscription": sub}


def sweep_subscriptions(now: Optional[datetime] = None) -> int:
    """Batch form of refresh_status for the CLI."""
    now = now or utcnow()
    changed = 0
    for sub in db.session.execute(
        db.select(ClubSubscription).where(ClubSubscription.status.in_((SUB_ACTIVE, SUB_GRACE)))
    ).scalars():
        if refresh_status(sub, now):
            changed += 1
    db.session.commit()
    return changed
