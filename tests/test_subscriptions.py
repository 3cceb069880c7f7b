from datetime import timedelta

from app.extensions import db
from app.models import Club, ClubSubscription, ClubSubscriptionEntitlement
from app.services import entitlements as entitlement_service
from app.services import subscriptions as subscription_service
from app.utils.helpers import as_utc, utcnow


def _sub(app, club_id):
    with app.app_context():
        return db.session.get(ClubSubscription, club_id)


def test_refresh_active_to_grace_then_expired(app, make_user):
    owner = make_user()
    now = utcnow()
    with app.app_context():
        club = Club(name="Lapsing", created_by_user_id=owner)
        db.session.add(club)
        db.session.flush()
        sub = subscription_service.activate_subscription(club.id, "club_50", now - timedelta(days=30), now - timedelta(days=1))

        assert subscription_service.refresh_status(sub, now) is True
        assert sub.status == "grace"
        assert as_utc(sub.grace_until) == as_utc(sub.current_period_end) + timedelta(days=7)

        assert subscription_service.refresh_status(sub, now) is False
        assert subscription_service.refresh_status(sub, now + timedelta(days=7)) is True
        assert sub.status == "expired"


def test_grace_without_deadline_expires_immediately(app, make_user, make_club, set_subscription):
    club_id = make_club(make_user())
    set_subscription(club_id, status="grace", period_end=utcnow() - timedelta(days=2), grace_until=None)
    with app.app_context():
        sub = subscription_service.get_club_subscription(club_id)
        assert sub.status == "expired"
    assert _sub(app, club_id).status == "expired"


def test_activate_replaces_period_and_clears_grace(app, make_user, make_club, set_subscription):
    club_id = make_club(make_user())
    now = utcnow()
    set_subscription(club_id, status="grace", period_end=now - timedelta(days=1), grace_until=now + timedelta(days=6))
    with app.app_context():
        subscription_service.activate_subscription(club_id, "club_500", now, now + timedelta(days=30))
        db.session.commit()

    sub = _sub(app, club_id)
    assert sub.status == "active"
    assert sub.plan_id == "club_500"
    assert sub.grace_until is None
    assert as_utc(sub.current_period_end) == now + timedelta(days=30)


def test_current_plan_falls_back_to_free(app, make_user):
    with app.app_context():
        club = Club(name="Free Club", created_by_user_id=make_user())
        db.session.add(club)
        db.session.commit()
        info = subscription_service.get_club_current_plan(club.id)
        assert info["planId"] == "free"
        assert info["subscription"] is None
        assert info["plan"].max_event_participants == 15


def test_policy_matrix_from_seeded_rows(app):
    with app.app_context():
        allowed = subscription_service.is_action_allowed
        assert allowed("active", "CLUB_CREATE_EVENT") is True
        assert allowed("grace", "CLUB_EXPORT_PARTICIPANTS_CSV") is True
        assert allowed("grace", "CLUB_UPDATE_EVENT") is True
        assert allowed("expired", "CLUB_UPDATE_EVENT") is False
        assert allowed("grace", "CLUB_CREATE_EVENT") is False
        assert allowed("expired", "CLUB_REMOVE_MEMBER") is True
        assert allowed("expired", "CLUB_INVITE_MEMBER") is False
        assert allowed("pending", "CLUB_UPDATE") is True
        assert subscription_service.grace_period_days() == 7


def test_sweep_subscriptions(app, make_user, make_club, set_subscription):
    now = utcnow()
    lapsed = make_club(make_user())
    healthy = make_club(make_user())
    over_grace = make_club(make_user())
    set_subscription(lapsed, status="active", period_end=now - timedelta(hours=2))
    set_subscription(over_grace, status="grace", period_end=now - timedelta(days=10), grace_until=now - timedelta(days=3))

    with app.app_context():
        assert subscription_service.sweep_subscriptions(now) == 2

    assert _sub(app, lapsed).status == "grace"
    assert _sub(app, healthy).status == "active"
    assert _sub(app, over_grace).status == "expired"


def test_expire_lapsed_entitlements(app, make_user, grant_entitlement):
    uid = make_user()
    now = utcnow()
    stale = grant_entitlement(uid, valid_from=now - timedelta(days=40), valid_until=now - timedelta(days=10))
    fresh = grant_entitlement(uid, valid_from=now - timedelta(minutes=1))

    with app.app_context():
        assert entitlement_service.expire_lapsed(now) == 1
        assert db.session.get(ClubSubscriptionEntitlement, stale).status == "expired"
        assert db.session.get(ClubSubscriptionEntitlement, fresh).status == "active"
        assert entitlement_service.find_unlinked_active(uid, now).id == fresh


def test_consume_entitlement_only_once(app, make_user, grant_entitlement):
    uid = make_user()
    ent_id = grant_entitlement(uid)
    with app.app_context():
        first = Club(name="First", created_by_user_id=uid)
        second = Club(name="Second", created_by_user_id=uid)
        db.session.add_all([first, second])
        db.session.flush()
        assert entitlement_service.consume_entitlement(ent_id, first.id) is True
        assert entitlement_service.consume_entitlement(ent_id, second.id) is False
        db.session.commit()
        assert entitlement_service.has_unlinked_active(uid) is False
