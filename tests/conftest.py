import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

from datetime import timedelta

import pytest
from app import create_app
from app.cli import seed_billing_catalogue
from app.extensions import db
from app.models import BillingCredit, BillingTransaction, ClubMember, ClubSubscription, User
from app.models.billing_transaction import TX_COMPLETED
from app.models.club_subscription import SUB_ACTIVE
from app.models.user import ROLE_ADMIN
from app.services import entitlements as entitlement_service
from app.utils.helpers import utcnow


@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
        SQLALCHEMY_EXPIRE_ON_COMMIT=False,  # avoid DetachedInstanceError in tests
        MAIL_SUPPRESS_SEND=True,
        APP_BASE_URL="http://example.test",
        WTF_CSRF_ENABLED=False,
        RATELIMIT_ENABLED=False,
        PAYMENT_PROVIDER_MODE="stub",
        PAYWALL_MODE="hard",
        ENABLE_DEV_BILLING=True,
        STRIPE_WEBHOOK_SECRET="whsec_test_x",
    )
    with app.app_context():
        db.create_all()
        db.session.expire_on_commit = False
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


def _wipe():
    db.session.rollback()
    for tbl in reversed(db.metadata.sorted_tables):
        db.session.execute(tbl.delete())
    db.session.commit()


@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test, then seed the billing catalogue every test relies on
    with app.app_context():
        _wipe()
        seed_billing_catalogue()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        _wipe()


# --- factories ---------------------------------------------------------------

@pytest.fixture()
def make_user(app):
    counter = {"n": 0}

    def _make(email=None, *, admin=False, password="password123", display_name=None):
        counter["n"] += 1
        with app.app_context():
            u = User(
                email=email or f"user{counter['n']}@example.test",
                display_name=display_name,
                role=ROLE_ADMIN if admin else "user",
            )
            u.set_password(password)
            db.session.add(u)
            db.session.commit()
            return u.id

    return _make


def login(client, user_id: int):
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)
        sess["_fresh"] = True


@pytest.fixture()
def login_as(client):
    def _login(user_id: int):
        login(client, user_id)
        return client
    return _login


@pytest.fixture()
def grant_entitlement(app):
    def _grant(user_id: int, plan_id: str = "club_50", *, days: int = 30, valid_from=None, valid_until=None):
        with app.app_context():
            ent = entitlement_service.grant_entitlement(
                user_id=user_id,
                plan_id=plan_id,
                days=days,
                valid_from=valid_from,
                valid_until=valid_until,
            )
            db.session.commit()
            return ent.id
    return _grant


@pytest.fixture()
def make_club(app, client, grant_entitlement):
    """Create a club through the API so the entitlement + subscription path is exercised."""
    def _make(owner_id: int, plan_id: str = "club_50", **fields):
        grant_entitlement(owner_id, plan_id)
        login(client, owner_id)
        payload = {"name": fields.pop("name", "Morning Runners"), "city": "Almaty", **fields}
        resp = client.post("/api/clubs", json=payload)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()["data"]["club"]["id"]
    return _make


@pytest.fixture()
def add_member(app):
    def _add(club_id: int, user_id: int, role: str = "member"):
        with app.app_context():
            db.session.add(ClubMember(club_id=club_id, user_id=user_id, role=role))
            db.session.commit()
    return _add


@pytest.fixture()
def set_subscription(app):
    def _set(club_id: int, *, status: str = SUB_ACTIVE, plan_id: str = None, period_end=None, grace_until=None):
        with app.app_context():
            sub = db.session.get(ClubSubscription, club_id)
            if sub is None:
                sub = ClubSubscription(club_id=club_id, plan_id=plan_id or "club_50")
                db.session.add(sub)
            if plan_id:
                sub.plan_id = plan_id
            sub.status = status
            now = utcnow()
            sub.current_period_start = now - timedelta(days=30)
            sub.current_period_end = period_end or (now + timedelta(days=30))
            sub.grace_until = grace_until
            db.session.commit()
    return _set


@pytest.fixture()
def give_credit(app):
    def _give(user_id: int, credit_code: str = "EVENT_UPGRADE_500"):
        with app.app_context():
            tx = BillingTransaction(
                user_id=user_id,
                product_code=credit_code,
                provider="test",
                amount=1000,
                currency_code="KZT",
                status=TX_COMPLETED,
            )
            db.session.add(tx)
            db.session.flush()
            credit = BillingCredit(user_id=user_id, credit_code=credit_code, source_transaction_id=tx.id)
            db.session.add(credit)
            db.session.commit()
            return credit.id
    return _give
