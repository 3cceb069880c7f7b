import types

import pytest

from app.errors import ClubArchivedError, ForbiddenError, NotFoundError, UnauthorizedError
from app.extensions import db
from app.models import User
from app.services import policy


class DummyUser:
    def __init__(self, uid, auth=True, admin=False):
        self.id, self.is_authenticated, self.is_admin = uid, auth, admin


def test_require_club_role_anonymous(app, make_user, make_club):
    club_id = make_club(make_user())
    with app.app_context():
        with pytest.raises(UnauthorizedError):
            policy.require_club_role(club_id, DummyUser(None, auth=False))
        with pytest.raises(UnauthorizedError):
            policy.require_club_role(club_id, None)


def test_require_club_role_checks_membership_and_role(app, make_user, make_club, add_member):
    owner = make_user()
    organizer = make_user()
    pending = make_user()
    club_id = make_club(owner)
    add_member(club_id, organizer, role="organizer")
    add_member(club_id, pending, role="pending")

    with app.app_context():
        assert policy.require_club_owner(club_id, DummyUser(owner)).role == "owner"
        assert policy.require_club_manager(club_id, DummyUser(owner)).role == "owner"
        assert policy.require_club_member(club_id, DummyUser(organizer)).role == "organizer"
        assert policy.require_club_role(club_id, DummyUser(organizer), "owner", "organizer").role == "organizer"

        with pytest.raises(ForbiddenError):
            policy.require_club_manager(club_id, DummyUser(organizer))
        with pytest.raises(ForbiddenError):
            policy.require_club_member(club_id, DummyUser(pending))
        with pytest.raises(ForbiddenError):
            policy.require_club_member(club_id, DummyUser(make_user()))


def test_membership_helpers(app, make_user, make_club, add_member):
    owner = make_user()
    pending = make_user()
    club_id = make_club(owner)
    add_member(club_id, pending, role="pending")

    with app.app_context():
        assert policy.club_role(club_id, owner) == "owner"
        assert policy.club_role(club_id, None) is None
        assert policy.is_club_member(club_id, owner) is True
        assert policy.is_club_member(club_id, pending) is False
        with pytest.raises(NotFoundError):
            policy.get_club_or_404(123456)


def test_archived_club_guard():
    policy.assert_club_not_archived(types.SimpleNamespace(is_archived=False))
    with pytest.raises(ClubArchivedError):
        policy.assert_club_not_archived(types.SimpleNamespace(is_archived=True))


def test_admin_required_decorator(app, make_user):
    @policy.admin_required
    def view():
        return "ok"

    plain = make_user()
    admin = make_user(admin=True)
    with app.test_request_context():
        policy_user = db.session.get(User, admin)
        with pytest.MonkeyPatch.context() as mp:
            mp.setattr(policy, "current_user", DummyUser(None, auth=False))
            with pytest.raises(UnauthorizedError):
                view()
            mp.setattr(policy, "current_user", db.session.get(User, plain))
            with pytest.raises(ForbiddenError):
                view()
            mp.setattr(policy, "current_user", policy_user)
            assert view() == "ok"


def test_login_required_api_returns_json_401(client):
    resp = client.get("/api/billing/credits")
    assert resp.status_code == 401
    body = resp.get_json()
    assert body["success"] is False
    assert body["error"]["code"] == "UNAUTHORIZED"
