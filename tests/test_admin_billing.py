from datetime import timedelta

import pytest

from app.errors import ForbiddenError
from app.extensions import db
from app.models import AdminAuditLog, BillingCredit, BillingTransaction, ClubSubscription, User
from app.billing import admin_ops
from app.services import audit as audit_service
from app.utils.helpers import as_utc, utcnow


def _audit_rows(app, **filters):
    with app.app_context():
        q = db.select(AdminAuditLog)
        for key, value in filters.items():
            q = q.where(getattr(AdminAuditLog, key) == value)
        return db.session.execute(q.order_by(AdminAuditLog.id)).scalars().all()


def _credit_count(app, user_id):
    with app.app_context():
        return db.session.execute(
            db.select(db.func.count(BillingCredit.id)).where(BillingCredit.user_id == user_id)
        ).scalar_one()


def test_admin_routes_require_admin(client, login_as, make_user):
    assert client.get("/api/admin/users").status_code == 401
    login_as(make_user())
    assert client.get("/api/admin/users").status_code == 403


def test_grant_credit_creates_credit_and_audit(app, client, login_as, make_user):
    admin = make_user(admin=True)
    target = make_user()
    login_as(admin)

    resp = client.post(f"/api/admin/users/{target}/credits",
                       json={"creditCode": "EVENT_UPGRADE_500", "reason": "Support ticket #42"})
    assert resp.status_code == 201, resp.get_json()
    data = resp.get_json()["data"]
    assert data["credit"]["status"] == "available"

    with app.app_context():
        credit = db.session.get(BillingCredit, data["credit"]["id"])
        assert credit.source == "admin"
        tx = db.session.get(BillingTransaction, data["transactionId"])
        assert tx.provider == "admin-grant"
        assert tx.amount == 0
        assert tx.status == "completed"

    rows = _audit_rows(app, action_type="ADMIN_GRANT_CREDIT")
    assert len(rows) == 1
    assert rows[0].result == "success"
    assert rows[0].related_entity_id == str(data["credit"]["id"])
    assert rows[0].actor_id == str(admin)
    assert rows[0].target_id == str(target)


@pytest.mark.parametrize(
    "payload,status,error_code",
    [
        ({"creditCode": "EVENT_UPGRADE_500", "reason": "   "}, 400, "REASON_REQUIRED"),
        ({"creditCode": "BOGUS", "reason": "why not"}, 400, "INVALID_CREDIT_CODE"),
    ],
)
def test_grant_credit_rejections_are_audited(app, client, login_as, make_user, payload, status, error_code):
    admin = make_user(admin=True)
    target = make_user()
    login_as(admin)

    resp = client.post(f"/api/admin/users/{target}/credits", json=payload)
    assert resp.status_code == status
    assert resp.get_json()["error"]["details"]["errorCode"] == error_code

    rows = _audit_rows(app, action_type="ADMIN_GRANT_CREDIT_REJECTED")
    assert [r.error_code for r in rows] == [error_code]
    assert rows[0].result == "rejected"
    assert _credit_count(app, target) == 0


def test_grant_credit_unknown_user(app, client, login_as, make_user):
    login_as(make_user(admin=True))
    resp = client.post("/api/admin/users/99999/credits",
                       json={"creditCode": "EVENT_UPGRADE_500", "reason": "test"})
    assert resp.status_code == 404
    rows = _audit_rows(app, error_code="USER_NOT_FOUND")
    assert len(rows) == 1


def test_grant_rolls_back_when_audit_fails(app, client, login_as, make_user, monkeypatch):
    admin = make_user(admin=True)
    target = make_user()
    login_as(admin)

    def _broken_audit(**kwargs):
        raise audit_service.AdminAuditWriteError("Failed to write admin audit entry")

    monkeypatch.setattr(audit_service, "write_admin_audit", _broken_audit)

    resp = client.post(f"/api/admin/users/{target}/credits",
                       json={"creditCode": "EVENT_UPGRADE_500", "reason": "Goodwill"})
    assert resp.status_code == 500
    assert resp.get_json()["error"]["code"] == "ADMIN_AUDIT_WRITE_FAILED"

    # neither the credit nor its funding transaction survived
    assert _credit_count(app, target) == 0
    with app.app_context():
        assert db.session.execute(
            db.select(db.func.count(BillingTransaction.id)).where(BillingTransaction.user_id == target)
        ).scalar_one() == 0


def test_extend_subscription_from_future_end(app, client, login_as, make_user, make_club):
    admin = make_user(admin=True)
    owner = make_user()
    club_id = make_club(owner)
    with app.app_context():
        before = as_utc(db.session.get(ClubSubscription, club_id).current_period_end)

    login_as(admin)
    resp = client.post(f"/api/admin/clubs/{club_id}/subscription/extend", json={"days": "10", "reason": "Outage"})
    assert resp.status_code == 200, resp.get_json()

    with app.app_context():
        sub = db.session.get(ClubSubscription, club_id)
        assert as_utc(sub.current_period_end) == before + timedelta(days=10)
        assert sub.status == "active"

    rows = _audit_rows(app, action_type="ADMIN_EXTEND_SUBSCRIPTION")
    assert len(rows) == 1
    assert rows[0].meta["days"] == 10
    assert rows[0].meta["previousPeriodEnd"] is not None


def test_extend_expired_subscription_restarts_from_now(app, client, login_as, make_user, make_club,
                                                      set_subscription):
    admin = make_user(admin=True)
    owner = make_user()
    club_id = make_club(owner)
    now = utcnow()
    set_subscription(club_id, status="expired", period_end=now - timedelta(days=20))

    login_as(admin)
    resp = client.post(f"/api/admin/clubs/{club_id}/subscription/extend", json={"days": 7, "reason": "Goodwill"})
    assert resp.status_code == 200

    with app.app_context():
        sub = db.session.get(ClubSubscription, club_id)
        assert sub.status == "active"
        assert sub.grace_until is None
        assert as_utc(sub.current_period_end) >= now + timedelta(days=7)


@pytest.mark.parametrize("days", [0, -3, "abc", None, 1.5])
def test_extend_invalid_days(app, client, login_as, make_user, make_club, days):
    admin = make_user(admin=True)
    club_id = make_club(make_user())
    login_as(admin)

    resp = client.post(f"/api/admin/clubs/{club_id}/subscription/extend", json={"days": days, "reason": "x"})
    assert resp.status_code == 400
    assert resp.get_json()["error"]["details"]["errorCode"] == "INVALID_DAYS"
    assert len(_audit_rows(app, error_code="INVALID_DAYS")) == 1


def test_extend_unknown_club(app, client, login_as, make_user):
    login_as(make_user(admin=True))
    resp = client.post("/api/admin/clubs/4242/subscription/extend", json={"days": 5, "reason": "x"})
    assert resp.status_code == 404
    assert resp.get_json()["error"]["details"]["errorCode"] == "CLUB_NOT_FOUND"


def test_extend_pending_subscription_conflicts(app, client, login_as, make_user, make_club, set_subscription):
    admin = make_user(admin=True)
    club_id = make_club(make_user())
    set_subscription(club_id, status="pending")

    login_as(admin)
    resp = client.post(f"/api/admin/clubs/{club_id}/subscription/extend", json={"days": 5, "reason": "x"})
    assert resp.status_code == 409
    assert resp.get_json()["error"]["details"]["errorCode"] == "INVALID_SUBSCRIPTION_STATUS"


@pytest.mark.parametrize("operation", sorted(admin_ops.FORBIDDEN_OPERATIONS))
def test_forbidden_operations_refused_and_audited(app, make_user, operation):
    admin_id = make_user(admin=True)
    with app.test_request_context():
        admin = db.session.get(User, admin_id)
        with pytest.raises(ForbiddenError):
            admin_ops.assert_operation_allowed(admin, operation, target_id=admin_id)

    rows = _audit_rows(app, error_code=f"FORBIDDEN_{operation}")
    assert len(rows) == 1
    assert rows[0].meta["forbiddenOperationCode"] == operation


def test_allowed_operation_passes(app, make_user):
    admin_id = make_user(admin=True)
    with app.test_request_context():
        admin = db.session.get(User, admin_id)
        assert admin_ops.assert_operation_allowed(admin, "GRANT_CREDIT") is None
    assert _audit_rows(app) == []


def test_audit_listing_filters_and_pagination(app, client, login_as, make_user):
    admin = make_user(admin=True)
    target = make_user()
    login_as(admin)
    for i in range(3):
        client.post(f"/api/admin/users/{target}/credits",
                    json={"creditCode": "EVENT_UPGRADE_500", "reason": f"grant {i}"})
    client.post(f"/api/admin/users/{target}/credits", json={"creditCode": "NOPE", "reason": "bad"})

    resp = client.get("/api/admin/audit?result=success&limit=2")
    assert resp.status_code == 200
    page = resp.get_json()["data"]
    assert len(page["items"]) == 2
    assert page["nextCursor"] is not None

    rest = client.get(f"/api/admin/audit?result=success&limit=2&cursor={page['nextCursor']}").get_json()["data"]
    assert len(rest["items"]) == 1
    assert rest["nextCursor"] is None

    rejected = client.get("/api/admin/audit?result=rejected").get_json()["data"]["items"]
    assert [r["errorCode"] for r in rejected] == ["INVALID_CREDIT_CODE"]


@pytest.mark.parametrize("query", ["targetType=org", "result=maybe", "limit=0", "limit=501", "limit=abc"])
def test_audit_listing_rejects_bad_filters(client, login_as, make_user, query):
    login_as(make_user(admin=True))
    assert client.get(f"/api/admin/audit?{query}").status_code == 400


def test_admin_lists_users_and_clubs(client, login_as, make_user, make_club):
    make_club(make_user("owner@example.test"), name="Private Runners", visibility="private")
    login_as(make_user(admin=True))

    users = client.get("/api/admin/users?q=owner").get_json()["data"]["items"]
    assert [u["email"] for u in users] == ["owner@example.test"]

    clubs = client.get("/api/admin/clubs").get_json()["data"]["items"]
    assert [c["name"] for c in clubs] == ["Private Runners"]
