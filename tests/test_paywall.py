from datetime import timedelta

import pytest

from app.extensions import db
from app.models import ClubMember, ClubSubscription, User
from app.billing import paywall
from app.billing.plans import ACTION_CREATE_EVENT, ACTION_EXPORT_CSV, ACTION_UPDATE_CLUB
from app.errors import PaywallError
from app.utils.helpers import utcnow


def _fill_members(app, club_id, count):
    with app.app_context():
        for i in range(count):
            u = User(email=f"filler{i}@example.test")
            u.set_password("password123")
            db.session.add(u)
            db.session.flush()
            db.session.add(ClubMember(club_id=club_id, user_id=u.id, role="member"))
        db.session.commit()


def _grace(set_subscription, club_id):
    now = utcnow()
    set_subscription(club_id, status="grace", period_end=now - timedelta(days=1), grace_until=now + timedelta(days=6))


def test_member_limit_recommends_next_plan(app, client, login_as, make_user, make_club):
    owner = make_user()
    club_id = make_club(owner, "club_50")
    _fill_members(app, club_id, 49)  # owner + 49 = plan limit
    newcomer = make_user()

    login_as(owner)
    resp = client.post(f"/api/clubs/{club_id}/members", json={"userId": newcomer})
    assert resp.status_code == 402
    details = resp.get_json()["error"]["details"]
    assert details["reason"] == "MAX_CLUB_MEMBERS_EXCEEDED"
    assert details["currentPlanId"] == "club_50"
    assert details["requiredPlanId"] == "club_500"
    assert details["meta"] == {"current": 50, "limit": 50}
    assert details["cta"] == {"type": "OPEN_PRICING", "href": "/pricing"}


def test_member_added_under_limit(app, client, login_as, make_user, make_club):
    owner = make_user()
    club_id = make_club(owner)
    newcomer = make_user()

    login_as(owner)
    resp = client.post(f"/api/clubs/{club_id}/members", json={"userId": newcomer, "role": "organizer"})
    assert resp.status_code == 201
    assert resp.get_json()["data"]["member"]["role"] == "organizer"


def test_grace_allows_export_but_not_new_events(app, client, login_as, make_user, make_club, set_subscription):
    owner = make_user()
    club_id = make_club(owner)
    _grace(set_subscription, club_id)
    login_as(owner)

    resp = client.post("/api/events", json={"title": "Blocked", "clubId": club_id, "maxParticipants": 10})
    assert resp.status_code == 402
    details = resp.get_json()["error"]["details"]
    assert details["reason"] == "SUBSCRIPTION_NOT_ACTIVE"
    assert details["meta"] == {"status": "grace"}

    assert client.patch(f"/api/clubs/{club_id}", json={"description": "still editable"}).status_code == 200


def test_expired_blocks_invites_but_allows_removal(app, client, login_as, make_user, make_club, add_member,
                                                   set_subscription):
    owner = make_user()
    member = make_user()
    club_id = make_club(owner)
    add_member(club_id, member)
    set_subscription(club_id, status="expired", period_end=utcnow() - timedelta(days=30))
    login_as(owner)

    invite = client.post(f"/api/clubs/{club_id}/members", json={"userId": make_user()})
    assert invite.status_code == 402
    assert invite.get_json()["error"]["details"]["reason"] == "SUBSCRIPTION_NOT_ACTIVE"

    assert client.delete(f"/api/clubs/{club_id}/members/{member}").status_code == 200


def test_lapsed_active_subscription_moves_to_grace_on_read(app, client, login_as, make_user, make_club,
                                                          set_subscription):
    owner = make_user()
    club_id = make_club(owner)
    set_subscription(club_id, status="active", period_end=utcnow() - timedelta(hours=1))
    login_as(owner)

    data = client.get(f"/api/clubs/{club_id}/current-plan").get_json()["data"]
    assert data["subscription"]["status"] == "grace"
    assert data["subscription"]["graceUntil"] is not None


def test_free_club_limits_without_subscription(app, make_user):
    owner_id = make_user()
    with app.test_request_context():
        from app.models import Club
        club = Club(name="No Sub", created_by_user_id=owner_id)
        db.session.add(club)
        db.session.commit()
        assert db.session.get(ClubSubscription, club.id) is None

        paywall.enforce_club_action(club.id, ACTION_CREATE_EVENT, {"eventParticipantsCount": 15})
        with pytest.raises(PaywallError) as exc:
            paywall.enforce_club_action(club.id, ACTION_CREATE_EVENT, {"eventParticipantsCount": 16})
        assert exc.value.reason == "MAX_EVENT_PARTICIPANTS_EXCEEDED"
        assert exc.value.required_plan_id == "club_50"

        with pytest.raises(PaywallError) as exc:
            paywall.enforce_club_action(club.id, ACTION_EXPORT_CSV)
        assert exc.value.reason == "CSV_EXPORT_NOT_ALLOWED"

        with pytest.raises(PaywallError) as exc:
            paywall.enforce_club_action(club.id, ACTION_CREATE_EVENT, {"isPaidEvent": True})
        assert exc.value.reason == "PAID_EVENTS_NOT_ALLOWED"

        paywall.enforce_club_action(club.id, ACTION_UPDATE_CLUB)


def test_unlimited_plan_has_no_participant_cap(app, client, login_as, make_user, make_club):
    owner = make_user()
    club_id = make_club(owner, "club_unlimited")
    login_as(owner)

    resp = client.post("/api/events", json={"title": "Marathon", "clubId": club_id, "maxParticipants": 5000})
    assert resp.status_code == 201
    event_id = resp.get_json()["data"]["event"]["id"]
    assert client.post(f"/api/events/{event_id}/publish").status_code == 200


def test_club_csv_export_on_paid_plan(app, client, login_as, make_user, make_club):
    owner = make_user()
    club_id = make_club(owner)
    login_as(owner)
    event_id = client.post("/api/events", json={"title": "Club run", "clubId": club_id}).get_json()["data"]["event"]["id"]
    client.post(f"/api/events/{event_id}/publish")

    resp = client.get(f"/api/events/{event_id}/participants.csv")
    assert resp.status_code == 200


def test_club_event_credit_confirmation_is_rejected(app, client, login_as, make_user, make_club):
    owner = make_user()
    club_id = make_club(owner)
    login_as(owner)
    event_id = client.post("/api/events", json={"title": "Club run", "clubId": club_id}).get_json()["data"]["event"]["id"]

    assert client.post(f"/api/events/{event_id}/publish?confirm_credit=1").status_code == 400


def test_soft_beta_mode_falls_back_to_hard_for_unknown_value(app):
    from app.billing.plans import paywall_mode
    app.config["PAYWALL_MODE"] = "lenient"
    try:
        with app.app_context():
            assert paywall_mode() == "hard"
    finally:
        app.config["PAYWALL_MODE"] = "hard"
