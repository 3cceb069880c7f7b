import click
from flask.cli import with_appcontext
from app.extensions import db
from app.models import BillingPolicy, BillingPolicyAction, BillingProduct, ClubPlan, User
from app.models.billing_policy import DEFAULT_POLICY_ID
from app.models.club_subscription import SUBSCRIPTION_STATUSES, SUB_ACTIVE
from app.models.user import ROLE_ADMIN
from app.billing.plans import ACTION_CODES, PAID_PLAN_IDS, PLAN_CATALOGUE, POLICY_MATRIX, PRODUCT_CATALOGUE
from app.services import entitlements as entitlement_service
from app.services import subscriptions as subscription_service


def seed_billing_catalogue() -> dict:
    """Upsert plans, products and the default status/action policy. Idempotent."""
    counts = {"plans": 0, "products": 0, "policyActions": 0}

    for entry in PLAN_CATALOGUE:
        row = db.session.get(ClubPlan, entry["id"])
        if row is None:
            row = ClubPlan(id=entry["id"])
            db.session.add(row)
        for key, value in entry.items():
            setattr(row, key, value)
        counts["plans"] += 1

    for entry in PRODUCT_CATALOGUE:
        row = db.session.get(BillingProduct, entry["code"])
        if row is None:
            row = BillingProduct(code=entry["code"])
            db.session.add(row)
        for key, value in entry.items():
            setattr(row, key, value)
        counts["products"] += 1

    policy = db.session.get(BillingPolicy, DEFAULT_POLICY_ID)
    if policy is None:
        policy = BillingPolicy(id=DEFAULT_POLICY_ID, grace_period_days=7, pending_ttl_minutes=60)
        db.session.add(policy)
    db.session.flush()

    existing = {
        (r.status, r.action): r
        for r in db.session.execute(
            db.select(BillingPolicyAction).where(BillingPolicyAction.policy_id == DEFAULT_POLICY_ID)
        ).scalars()
    }
    for status in SUBSCRIPTION_STATUSES:
        if status == SUB_ACTIVE:
            continue
        allowed = set(POLICY_MATRIX.get(status, ()))
        for action in ACTION_CODES:
            row = existing.get((status, action))
            if row is None:
                row = BillingPolicyAction(policy_id=DEFAULT_POLICY_ID, status=status, action=action)
                db.session.add(row)
            row.is_allowed = action in allowed
            counts["policyActions"] += 1

    db.session.commit()
    return counts


def _user_by_email(email: str) -> User:
    user = db.session.execute(
        db.select(User).where(db.func.lower(User.email) == email.strip().lower())
    ).scalar_one_or_none()
    if not user:
        raise click.ClickException(f"User {email} not found")
    return user


@click.group()
def billing():
    """Billing catalogue and lifecycle ops."""


@billing.command("seed")
@with_appcontext
def billing_seed():
    counts = seed_billing_catalogue()
    click.echo(
        f"Seeded plans={counts['plans']} products={counts['products']} policy_actions={counts['policyActions']}"
    )


@billing.command("sweep-subscriptions")
@with_appcontext
def billing_sweep():
    changed = subscription_service.sweep_subscriptions()
    expired = entitlement_service.expire_lapsed()
    click.echo(f"Subscriptions transitioned={changed} entitlements expired={expired}")


@click.group()
def users():
    """User management."""


@users.command("create")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--admin", "make_admin", is_flag=True, default=False)
@with_appcontext
def users_create(email, password, make_admin):
    email = email.strip().lower()
    if db.session.execute(
        db.select(User.id).where(db.func.lower(User.email) == email)
    ).first():
        raise click.ClickException("User already exists")

    user = User(email=email, is_active=True)
    user.set_password(password)
    if make_admin:
        user.role = ROLE_ADMIN
    db.session.add(user)
    db.session.commit()

    click.echo(f"User created id={user.id} email={user.email} role={user.role}")


@users.command("promote-admin")
@click.option("--email", required=True)
@with_appcontext
def users_promote_admin(email):
    user = _user_by_email(email)
    user.role = ROLE_ADMIN
    db.session.commit()
    click.echo(f"Promoted {user.email} to admin")


@click.group()
def entitlements():
    """Club-creation entitlement ops."""


@entitlements.command("grant")
@click.option("--email", required=True)
@click.option("--plan", "plan_id", type=click.Choice(PAID_PLAN_IDS), required=True)
@click.option("--days", type=int, default=None, help="Validity window (defaults to ENTITLEMENT_VALIDITY_DAYS)")
@with_appcontext
def entitlements_grant(email, plan_id, days):
    user = _user_by_email(email)
    if db.session.get(ClubPlan, plan_id) is None:
        raise click.ClickException(f"Plan {plan_id} not seeded; run `flask billing seed` first")
    if days is not None and days < 1:
        raise click.ClickException("--days must be >= 1")
    ent = entitlement_service.grant_entitlement(user_id=user.id, plan_id=plan_id, days=days)
    db.session.commit()
    click.echo(f"Entitlement id={ent.id} granted to {user.email} plan={plan_id} valid_until={ent.valid_until.isoformat()}")


def register_cli(app):
    app.cli.add_command(billing)
    app.cli.add_command(users)
    app.cli.add_command(entitlements)
