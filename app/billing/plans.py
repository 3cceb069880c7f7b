"""
Plan catalogue, one-off products and paywall mode.

The free tier lives in code; paid club plans, one-off products and the billing
policy matrix live in the database and are seeded by ``flask billing seed``.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional

from flask import current_app

from app.errors import NotFoundError, InternalError
from app.extensions import db

PLAN_FREE = "free"
PLAN_CLUB_50 = "club_50"
PLAN_CLUB_500 = "club_500"
PLAN_CLUB_UNLIMITED = "club_unlimited"
PAID_PLAN_IDS = (PLAN_CLUB_50, PLAN_CLUB_500, PLAN_CLUB_UNLIMITED)

CREDIT_EVENT_UPGRADE_500 = "EVENT_UPGRADE_500"
CREDIT_CODES = (CREDIT_EVENT_UPGRADE_500,)
DEFAULT_ONE_OFF_LIMIT = 500

# Canonical policy action codes
ACTION_CREATE_EVENT = "CLUB_CREATE_EVENT"
ACTION_UPDATE_EVENT = "CLUB_UPDATE_EVENT"  # catalogue only: no event-edit endpoint checks it yet
ACTION_CREATE_PAID_EVENT = "CLUB_CREATE_PAID_EVENT"
ACTION_EXPORT_CSV = "CLUB_EXPORT_PARTICIPANTS_CSV"
ACTION_INVITE_MEMBER = "CLUB_INVITE_MEMBER"
ACTION_REMOVE_MEMBER = "CLUB_REMOVE_MEMBER"
ACTION_UPDATE_CLUB = "CLUB_UPDATE"
ACTION_CODES = (
    ACTION_CREATE_EVENT,
    ACTION_UPDATE_EVENT,
    ACTION_CREATE_PAID_EVENT,
    ACTION_EXPORT_CSV,
    ACTION_INVITE_MEMBER,
    ACTION_REMOVE_MEMBER,
    ACTION_UPDATE_CLUB,
)

PAYWALL_MODE_HARD = "hard"
PAYWALL_MODE_SOFT_BETA_STRICT = "soft_beta_strict"
PAYWALL_MODES = (PAYWALL_MODE_HARD, PAYWALL_MODE_SOFT_BETA_STRICT)


@dataclass(frozen=True)
class Plan:
    id: str
    title: str
    price_monthly: int
    currency_code: str
    max_members: Optional[int]
    max_event_participants: Optional[int]
    allow_paid_events: bool
    allow_csv_export: bool

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "title": self.title,
            "priceMonthly": self.price_monthly,
            "currencyCode": self.currency_code,
            "maxMembers": self.max_members,
            "maxEventParticipants": self.max_event_participants,
            "allowPaidEvents": self.allow_paid_events,
            "allowCsvExport": self.allow_csv_export,
        }


# Seed data for `flask billing seed`
PLAN_CATALOGUE: List[Dict] = [
    {"id": PLAN_CLUB_50, "title": "Club 50", "price_monthly": 5000, "max_members": 50,
     "max_event_participants": 50, "allow_paid_events": True, "allow_csv_export": True},
    {"id": PLAN_CLUB_500, "title": "Club 500", "price_monthly": 15000, "max_members": 500,
     "max_event_participants": 500, "allow_paid_events": True, "allow_csv_export": True},
    {"id": PLAN_CLUB_UNLIMITED, "title": "Club Unlimited", "price_monthly": 45000, "max_members": None,
     "max_event_participants": None, "allow_paid_events": True, "allow_csv_export": True},
]

PRODUCT_CATALOGUE: List[Dict] = [
    {"code": CREDIT_EVENT_UPGRADE_500, "title": "Event upgrade (up to 500 participants)", "type": "credit",
     "price": 1000, "constraints": {"max_participants": DEFAULT_ONE_OFF_LIMIT}},
]

# status -> actions allowed outside "active" (active is always allowed)
POLICY_MATRIX: Dict[str, List[str]] = {
    "grace": [ACTION_UPDATE_EVENT, ACTION_EXPORT_CSV, ACTION_REMOVE_MEMBER, ACTION_UPDATE_CLUB],
    "pending": [ACTION_REMOVE_MEMBER, ACTION_UPDATE_CLUB],
    "expired": [ACTION_REMOVE_MEMBER, ACTION_UPDATE_CLUB],
}


def free_plan() -> Plan:
    cfg = current_app.config
    return Plan(
        id=PLAN_FREE,
        title="Free",
        price_monthly=0,
        currency_code=cfg.get("BILLING_CURRENCY", "KZT"),
        max_members=None,
        max_event_participants=int(cfg.get("FREE_EVENT_PARTICIPANTS", 15)),
        allow_paid_events=False,
        allow_csv_export=False,
    )


def _from_row(row) -> Plan:
    return Plan(
        id=row.id,
        title=row.title,
        price_monthly=row.price_monthly,
        currency_code=row.currency_code,
        max_members=row.max_members,
        max_event_participants=row.max_event_participants,
        allow_paid_events=bool(row.allow_paid_events),
        allow_csv_export=bool(row.allow_csv_export),
    )


def get_plan(plan_id: str) -> Plan:
    if plan_id == PLAN_FREE:
        return free_plan()
    from app.models import ClubPlan
    row = db.session.get(ClubPlan, plan_id)
    if row is None:
        raise NotFoundError(f"Plan '{plan_id}' not found")
    return _from_row(row)


def list_public_plans() -> List[Plan]:
    from app.models import ClubPlan
    rows = db.session.execute(
        db.select(ClubPlan).where(ClubPlan.is_public.is_(True)).order_by(ClubPlan.price_monthly.asc())
    ).scalars().all()
    return [free_plan()] + [_from_row(r) for r in rows]


def required_plan_for_participants(count: int) -> str:
    if count <= int(current_app.config.get("FREE_EVENT_PARTICIPANTS", 15)):
        return PLAN_FREE
    if count <= 50:
        return PLAN_CLUB_50
    if count <= 500:
        return PLAN_CLUB_500
    return PLAN_CLUB_UNLIMITED


def required_plan_for_members(count: int) -> str:
    if count <= 50:
        return PLAN_CLUB_50
    if count <= 500:
        return PLAN_CLUB_500
    return PLAN_CLUB_UNLIMITED


def get_product(code: str):
    from app.models import BillingProduct
    return db.session.get(BillingProduct, code)


def list_active_products():
    from app.models import BillingProduct
    return db.session.execute(
        db.select(BillingProduct).where(BillingProduct.is_active.is_(True)).order_by(BillingProduct.code)
    ).scalars().all()


def one_off_product(code: str = CREDIT_EVENT_UPGRADE_500):
    """The configured one-off product; its absence is a deployment error, not a user error."""
    product = get_product(code)
    if product is None:
        current_app.logger.error("billing.product_missing", extra={"product_code": code})
        raise InternalError("One-off product configuration missing")
    return product


def one_off_limit(product) -> int:
    return int((product.constraints or {}).get("max_participants") or DEFAULT_ONE_OFF_LIMIT)


def paywall_mode() -> str:
    raw = (current_app.config.get("PAYWALL_MODE") or "").strip().lower()
    if not raw:
        return PAYWALL_MODE_HARD
    if raw in PAYWALL_MODES:
        return raw
    current_app.logger.warning(
        "Invalid PAYWALL_MODE=%r (valid: %s); defaulting to 'hard'", raw, ", ".join(PAYWALL_MODES)
    )
    return PAYWALL_MODE_HARD


def is_soft_beta_strict() -> bool:
    return paywall_mode() == PAYWALL_MODE_SOFT_BETA_STRICT
