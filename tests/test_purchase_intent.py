from app.extensions import db
from app.models import BillingCredit, BillingTransaction, ClubSubscription, ClubSubscriptionEntitlement


def _intent(client, **payload):
    return client.post("/api/billing/purchase-intent", json=payload)


def test_plans_and_products_are_public(client):
    plans = client.get("/api/billing/plans").get_json()["data"]["plans"]
    assert [p["id"] for p in plans] == ["free", "club_50", "club_500", "club_unlimited"]
    assert plans[0]["maxEventParticipants"] == 15

    products = client.get("/api/billing/products").get_json()["data"]["products"]
    assert products[0]["code"] == "EVENT_UPGRADE_500"
    assert products[0]["constraints"]["max_participants"] == 500


def test_stub_intent_returns_kaspi_invoice(app, client, login_as, make_user):
    uid = make_user()
    login_as(uid)

    resp = _intent(client, product_code="EVENT_UPGRADE_500")
    assert resp.status_code == 201, resp.get_json()
    data = resp.get_json()["data"]
    assert data["status"] == "pending"
    assert data["transaction_reference"].startswith("KASPI_")
    assert data["payment"]["provider"] == "kaspi"
    assert data["payment"]["invoice_url"].endswith(data["transaction_reference"])
    assert data["payment"]["qr_payload"] == f"kaspi://pay/{data['transaction_reference']}"
    assert "settlement" not in data

    with app.app_context():
        tx = db.session.get(BillingTransaction, data["transaction_id"])
        assert tx.amount == 1000
        assert tx.user_id == uid


def test_intent_requires_login(client):
    assert _intent(client, product_code="EVENT_UPGRADE_500").status_code == 401


def test_unknown_product_rejected(client, login_as, make_user):
    login_as(make_user())
    assert _intent(client, product_code="GOLD_BAR").status_code == 400
    assert _intent(client).status_code == 400


def test_plan_codes_are_case_insensitive(app, client, login_as, make_user):
    login_as(make_user())
    resp = _intent(client, product_code="CLUB_500")
    assert resp.status_code == 201
    with app.app_context():
        tx = db.session.get(BillingTransaction, resp.get_json()["data"]["transaction_id"])
        assert tx.plan_id == "club_500"
        assert tx.amount == 15000


def test_subscription_quantity_must_be_one(client, login_as, make_user):
    login_as(make_user())
    assert _intent(client, product_code="club_50", quantity=2).status_code == 400


def test_club_renewal_requires_owner(client, login_as, make_user, make_club):
    owner = make_user()
    club_id = make_club(owner)
    login_as(make_user())
    assert _intent(client, product_code="club_50", club_id=club_id).status_code == 403


def test_status_only_visible_to_buyer(client, login_as, make_user):
    buyer = make_user()
    login_as(buyer)
    tx_id = _intent(client, product_code="EVENT_UPGRADE_500").get_json()["data"]["transaction_id"]

    ok = client.get(f"/api/billing/transactions/status?transaction_id={tx_id}")
    assert ok.status_code == 200
    assert ok.get_json()["data"]["status"] == "pending"

    login_as(make_user())
    assert client.get(f"/api/billing/transactions/status?transaction_id={tx_id}").status_code == 404


def test_provider_webhook_settles_once(app, client, login_as, make_user):
    uid = make_user()
    login_as(uid)
    ref = _intent(client, product_code="EVENT_UPGRADE_500").get_json()["data"]["transaction_reference"]

    first = client.post("/api/billing/webhook", json={"provider_payment_id": ref})
    assert first.status_code == 200
    assert first.get_json()["data"]["settlement"]["entitlementType"] == "credit"

    second = client.post("/api/billing/webhook", json={"provider_payment_id": ref})
    assert second.get_json()["data"]["alreadyCompleted"] is True

    with app.app_context():
        assert db.session.execute(
            db.select(db.func.count(BillingCredit.id)).where(BillingCredit.user_id == uid)
        ).scalar_one() == 1

    assert client.post("/api/billing/webhook", json={"provider_payment_id": "nope"}).status_code == 404
    assert client.post("/api/billing/webhook", json={}).status_code == 400


def test_provider_webhook_ignores_stripe_transactions(app, client, make_user):
    uid = make_user()
    with app.app_context():
        tx = BillingTransaction(user_id=uid, product_code="EVENT_UPGRADE_500", amount=1000, currency_code="KZT",
                                provider="stripe", provider_payment_id="cs_test_abc")
        db.session.add(tx)
        db.session.commit()
        tx_id = tx.id

    # anonymous caller holding the checkout session id
    resp = client.post("/api/billing/webhook", json={"provider_payment_id": "cs_test_abc"})
    assert resp.status_code == 404

    with app.app_context():
        assert db.session.get(BillingTransaction, tx_id).status == "pending"
        assert db.session.execute(db.select(db.func.count(BillingCredit.id))).scalar_one() == 0


def test_provider_webhook_does_not_revive_failed_transaction(app, client, login_as, make_user):
    uid = make_user()
    login_as(uid)
    data = _intent(client, product_code="EVENT_UPGRADE_500").get_json()["data"]
    client.post("/api/dev/billing/settle", json={"transaction_id": data["transaction_id"], "status": "failed"})

    resp = client.post("/api/billing/webhook", json={"provider_payment_id": data["transaction_reference"]})
    assert resp.status_code == 409
    assert resp.get_json()["error"]["details"] == {"status": "failed"}

    with app.app_context():
        assert db.session.get(BillingTransaction, data["transaction_id"]).status == "failed"
        assert db.session.execute(db.select(db.func.count(BillingCredit.id))).scalar_one() == 0


def test_dev_settle_failed_issues_nothing(app, client, login_as, make_user):
    uid = make_user()
    login_as(uid)
    tx_id = _intent(client, product_code="EVENT_UPGRADE_500").get_json()["data"]["transaction_id"]

    resp = client.post("/api/dev/billing/settle", json={"transaction_id": tx_id, "status": "failed"})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["settlement"] is None
    with app.app_context():
        assert db.session.execute(db.select(db.func.count(BillingCredit.id))).scalar_one() == 0


def test_dev_settle_rejects_unknown_status(client, login_as, make_user):
    login_as(make_user())
    tx_id = _intent(client, product_code="EVENT_UPGRADE_500").get_json()["data"]["transaction_id"]
    assert client.post("/api/dev/billing/settle", json={"transaction_id": tx_id, "status": "paid"}).status_code == 400


def test_dev_settle_disabled(app, client):
    app.config["ENABLE_DEV_BILLING"] = False
    try:
        assert client.post("/api/dev/billing/settle", json={"transaction_id": 1, "status": "completed"}).status_code == 403
    finally:
        app.config["ENABLE_DEV_BILLING"] = True


def test_club_plan_purchase_then_create_club(app, client, login_as, make_user):
    uid = make_user()
    login_as(uid)
    tx_id = _intent(client, product_code="club_50").get_json()["data"]["transaction_id"]
    client.post("/api/dev/billing/settle", json={"transaction_id": tx_id, "status": "completed"})

    resp = client.post("/api/clubs", json={"name": "Paid Club", "city": "Astana"})
    assert resp.status_code == 201
    club_id = resp.get_json()["data"]["club"]["id"]
    with app.app_context():
        ent = db.session.execute(
            db.select(ClubSubscriptionEntitlement).where(ClubSubscriptionEntitlement.source_transaction_id == tx_id)
        ).scalar_one()
        assert ent.club_id == club_id
        assert db.session.get(ClubSubscription, club_id).plan_id == "club_50"


def test_renewal_reactivates_expired_club(app, client, login_as, make_user, make_club, set_subscription):
    owner = make_user()
    club_id = make_club(owner)
    set_subscription(club_id, status="expired")
    login_as(owner)

    tx_id = _intent(client, product_code="club_500", club_id=club_id).get_json()["data"]["transaction_id"]
    settled = client.post("/api/dev/billing/settle", json={"transaction_id": tx_id, "status": "completed"})
    assert settled.get_json()["data"]["settlement"]["entitlementType"] == "subscription"

    with app.app_context():
        sub = db.session.get(ClubSubscription, club_id)
        assert sub.status == "active"
        assert sub.plan_id == "club_500"


def test_simulated_mode_auto_settles(app, client, login_as, make_user):
    app.config["PAYMENT_PROVIDER_MODE"] = "simulated"
    try:
        login_as(make_user())
        data = _intent(client, product_code="EVENT_UPGRADE_500").get_json()["data"]
        assert data["status"] == "completed"
        assert data["settlement"]["settled"] is True
        assert data["transaction_reference"].startswith("SIM_")
    finally:
        app.config["PAYMENT_PROVIDER_MODE"] = "stub"


def test_credit_confirm_is_idempotent(app, client, login_as, make_user):
    uid = make_user()
    login_as(uid)
    tx_id = _intent(client, product_code="EVENT_UPGRADE_500").get_json()["data"]["transaction_id"]

    # not paid yet
    assert client.post("/api/billing/credits/confirm", json={"transaction_id": tx_id}).status_code == 409

    client.post("/api/dev/billing/settle", json={"transaction_id": tx_id, "status": "completed"})
    resp = client.post("/api/billing/credits/confirm", json={"transaction_id": tx_id})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["status"] == "already_confirmed"

    credits = client.get("/api/billing/credits?status=available").get_json()["data"]["credits"]
    assert len(credits) == 1


def test_beta_grant_only_in_soft_beta(app, client, login_as, make_user):
    login_as(make_user())
    assert client.post("/api/billing/beta-grant").status_code == 403

    app.config["PAYWALL_MODE"] = "soft_beta_strict"
    try:
        resp = client.post("/api/billing/beta-grant")
        assert resp.status_code == 200
        with app.app_context():
            credit = db.session.get(BillingCredit, resp.get_json()["data"]["creditId"])
            assert credit.source == "system"
    finally:
        app.config["PAYWALL_MODE"] = "hard"
