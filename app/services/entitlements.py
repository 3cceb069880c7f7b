"""
Club-creation entitlements.

An entitlement is consumed exactly once. ``consume_entitlement`` is a single
conditional UPDATE whose WHERE clause re-checks ``status='active' AND club_id
IS NULL``; when two requests race for the same row the database serialises the
writes and the loser sees zero affected rows.
"""
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import update

from app.extensions import db
from app.models import ClubSubscriptionEntitlement
from app.models.club_subscription_entitlement import ENT_ACTIVE, ENT_CONSUMED, ENT_EXPIRED
from app.observability import log_event
from app.utils.helpers import utcnow


def _usable(user_id: int, now: datetime):
    E = ClubSubscriptionEntitlement
    return (
        E.user_id == user_id,
        E.status == ENT_ACTIVE,
        E.valid_from <= now,
        E.valid_until > now,
        E.club_id.is_(None),
    )


def find_unlinked_active(user_id: int, now: Optional[datetime] = None) -> Optional[ClubSubscriptionEntitlement]:
    now = now or utcnow()
    E = ClubSubscriptionEntitlement
    return db.session.execute(
        db.select(E).where(*_usable(user_id, now)).order_by(E.valid_until.asc(), E.id.asc()).limit(1)
    ).scalar_one_or_none()


def has_unlinked_active(user_id: int, now: Optional[datetime] = None) -> bool:
    return find_unlinked_active(user_id, now) is not None


def list_for_user(user_id: int):
    E = ClubSubscriptionEntitlement
    return db.session.execute(
        db.select(E).where(E.user_id == user_id).order_by(E.created_at.desc(), E.id.desc())
    ).scalars().all()


def grant_entitlement(*, user_id: int, plan_id: str, valid_from: Optional[datetime] = None,
                      valid_until: Optional[datetime] = None, days: Optional[int] = None,
                      source_transaction_id: Optional[int] = None) -> ClubSubscriptionEntitlement:
    """Insert an active entitlement. Caller commits."""
    valid_from = valid_from or utcnow()
    if valid_until is None:
        days = days or int(current_app.config.get("ENTITLEMENT_VALIDITY_DAYS", 30))
        valid_until = valid_from + timedelta(days=days)
    ent = ClubSubscriptionEntitlement(
        user_id=user_id,
        plan_id=plan_id,
        status=ENT_ACTIVE,
        valid_from=valid_from,
        valid_until=valid_until,
        source_transaction_id=source_transaction_id,
    )
    db.session.add(ent)
    db.session.flush()
    log_event("billing.entitlement.granted", entitlement_id=ent.id, user_id=user_id, plan_id=plan_id)
    return ent


def consume_entitlement(entitlement_id: int, club_id: int, now: Optional[datetime] = None) -> bool:
    """
    active -> consumed, linking club_id, in the caller's transaction.
    Returns False when another writer got there first (or the row lapsed).
    """
    now = now or utcnow()
    E = ClubSubscriptionEntitlement
    result = db.session.execute(
        update(E)
        .where(
            E.id == entitlement_id,
            E.status == ENT_ACTIVE,
            E.club_id.is_(None),
            E.valid_from <= now,
            E.valid_until > now,
        )
        .values(status=ENT_CONSUMED, consumed_at=now, club_id=club_id, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def expire_lapsed(now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    E = ClubSubscriptionEntitlement
    result = db.session.execute(
        update(E)
        .where(E.status == ENT_ACTIVE, E.valid_until <= now)
        .values(status=ENT_EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount
