"""
Paywall enforcement for club actions and event publishing.

Both entry points raise instead of returning a verdict: ``PaywallError`` (402)
when payment or a consumable allowance is needed, ``CreditConfirmationRequired``
(409) when a credit would be spent silently, ``ValidationError`` / ``AuthError``
for requests that can never succeed.
"""
from typing import Dict, Optional

from flask import current_app

from app.errors import AuthError, CreditConfirmationRequired, PaywallError, ValidationError
from app.billing.plans import (
    ACTION_CREATE_EVENT,
    ACTION_CREATE_PAID_EVENT,
    ACTION_EXPORT_CSV,
    ACTION_INVITE_MEMBER,
    CREDIT_EVENT_UPGRADE_500,
    PLAN_CLUB_50,
    PLAN_CLUB_500,
    PLAN_FREE,
    Plan,
    free_plan,
    get_plan,
    one_off_limit,
    one_off_product,
    required_plan_for_members,
    required_plan_for_participants,
)
from app.services import credits as credit_service
from app.services import subscriptions as subscription_service
from app.models.club_member import ROLE_OWNER
from app.observability import log_event

OPTION_ONE_OFF = "ONE_OFF_CREDIT"
OPTION_CLUB_ACCESS = "CLUB_ACCESS"


def _club_option(plan_id: str) -> Dict:
    return {"type": OPTION_CLUB_ACCESS, "recommendedPlanId": plan_id}


def _required_paid_plan(count: int) -> Optional[str]:
    required = required_plan_for_participants(count)
    return None if required == PLAN_FREE else required


def _check_plan_limits(plan: Plan, action: str, context: Dict) -> None:
    if action == ACTION_CREATE_PAID_EVENT or context.get("isPaidEvent"):
        if not plan.allow_paid_events:
            raise PaywallError(
                "Paid events are not available on your plan",
                "PAID_EVENTS_NOT_ALLOWED",
                current_plan_id=plan.id,
                required_plan_id=PLAN_CLUB_50,
            )

    if action == ACTION_EXPORT_CSV and not plan.allow_csv_export:
        raise PaywallError(
            "CSV export is not available on your plan",
            "CSV_EXPORT_NOT_ALLOWED",
            current_plan_id=plan.id,
            required_plan_id=PLAN_CLUB_50,
        )

    participants = context.get("eventParticipantsCount")
    if action == ACTION_CREATE_EVENT and participants:
        if plan.max_event_participants is not None and participants > plan.max_event_participants:
            raise PaywallError(
                f"Event with {participants} participants exceeds your plan limit of {plan.max_event_participants}",
                "MAX_EVENT_PARTICIPANTS_EXCEEDED",
                current_plan_id=plan.id,
                required_plan_id=_required_paid_plan(participants),
                meta={"requested": participants, "limit": plan.max_event_participants},
            )

    members = context.get("clubMembersCount")
    if action == ACTION_INVITE_MEMBER and members is not None:
        if plan.max_members is not None and members >= plan.max_members:
            raise PaywallError(
                f"Club has reached its member limit ({plan.max_members})",
                "MAX_CLUB_MEMBERS_EXCEEDED",
                current_plan_id=plan.id,
                required_plan_id=required_plan_for_members(members + 1),
                meta={"current": members, "limit": plan.max_members},
            )


def enforce_club_action(club_id: int, action: str, context: Optional[Dict] = None) -> None:
    context = context or {}
    sub = subscription_service.get_club_subscription(club_id)

    if sub is None:
        _check_plan_limits(free_plan(), action, context)
        return

    plan = get_plan(sub.plan_id)
    if not subscription_service.is_action_allowed(sub.status, action):
        raise PaywallError(
            f'Action "{action}" not allowed for subscription status "{sub.status}"',
            "SUBSCRIPTION_NOT_ACTIVE",
            current_plan_id=sub.plan_id,
            meta={"status": sub.status},
        )
    _check_plan_limits(plan, action, context)


def _enforce_club_event_publish(user_id: int, club_id: int, max_participants: Optional[int],
                                is_paid: bool, confirm_credit: bool) -> None:
    if confirm_credit:
        raise ValidationError("Credits do not apply to club events; club events use the club subscription")

    sub = subscription_service.get_club_subscription(club_id)
    plan = get_plan(sub.plan_id) if sub else free_plan()

    if sub is not None and not subscription_service.is_action_allowed(sub.status, ACTION_CREATE_EVENT):
        raise PaywallError(
            f'Publishing is not available while the subscription is "{sub.status}"',
            "SUBSCRIPTION_NOT_ACTIVE",
            current_plan_id=sub.plan_id,
            meta={"status": sub.status},
            options=[_club_option(sub.plan_id)],
        )

    if is_paid and not plan.allow_paid_events:
        raise PaywallError(
            "Paid events are not available on your plan",
            "PAID_EVENTS_NOT_ALLOWED",
            current_plan_id=plan.id,
            required_plan_id=PLAN_CLUB_50,
            options=[_club_option(PLAN_CLUB_50)],
        )

    if is_paid:
        from app.services.policy import club_role
        if club_role(club_id, user_id) != ROLE_OWNER:
            raise AuthError("Only the club owner can publish paid events", status_code=403)

    if (max_participants is not None and plan.max_event_participants is not None
            and max_participants > plan.max_event_participants):
        required = required_plan_for_participants(max_participants)
        raise PaywallError(
            f"Event with {max_participants} participants exceeds your plan limit of {plan.max_event_participants}",
            "MAX_EVENT_PARTICIPANTS_EXCEEDED",
            current_plan_id=plan.id,
            required_plan_id=None if required == PLAN_FREE else required,
            meta={"requested": max_participants, "limit": plan.max_event_participants},
            options=[_club_option(required)],
        )


def enforce_event_publish(*, user_id: int, club_id: Optional[int], max_participants: Optional[int],
                          is_paid: bool, event_id: Optional[int] = None, confirm_credit: bool = False,
                          confirm_href: Optional[str] = None) -> Optional[str]:
    """
    Decide whether an event may be published.

    Returns the credit code the caller must consume together with the publish,
    or None when no credit is involved.
    """
    if club_id is not None:
        _enforce_club_event_publish(user_id, club_id, max_participants, is_paid, confirm_credit)
        return None

    free = free_plan()
    free_limit = free.max_event_participants
    product = one_off_product(CREDIT_EVENT_UPGRADE_500)
    ceiling = one_off_limit(product)

    if is_paid and not free.allow_paid_events:
        raise PaywallError(
            "Paid events are only available on paid club plans",
            "PAID_EVENTS_NOT_ALLOWED",
            current_plan_id=PLAN_FREE,
            required_plan_id=PLAN_CLUB_50,
            options=[_club_option(PLAN_CLUB_50)],
        )

    if max_participants is None or max_participants <= free_limit:
        return None

    if max_participants > ceiling:
        # beyond what a one-off credit can authorize: club billing only
        raise PaywallError(
            f"Events above {ceiling} participants require a club subscription",
            "CLUB_REQUIRED_FOR_LARGE_EVENT",
            current_plan_id=PLAN_FREE,
            meta={"requestedParticipants": max_participants, "maxOneOffLimit": ceiling},
            options=[_club_option(PLAN_CLUB_500)],
        )

    if not credit_service.has_available_credit(user_id, CREDIT_EVENT_UPGRADE_500):
        raise PaywallError(
            f"An event for {max_participants} participants requires payment",
            "PUBLISH_REQUIRES_PAYMENT",
            current_plan_id=PLAN_FREE,
            meta={"requestedParticipants": max_participants, "freeLimit": free_limit},
            options=[
                {
                    "type": OPTION_ONE_OFF,
                    "productCode": product.code,
                    "price": product.price,
                    "currencyCode": product.currency_code,
                    "provider": _provider_id(),
                },
                _club_option(PLAN_CLUB_50),
            ],
        )

    if not confirm_credit:
        raise CreditConfirmationRequired(
            credit_code=CREDIT_EVENT_UPGRADE_500,
            event_id=event_id,
            requested_participants=max_participants,
            confirm_href=confirm_href,
        )

    log_event(
        "billing.credit.will_consume",
        user_id=user_id,
        credit_code=CREDIT_EVENT_UPGRADE_500,
        event_id=event_id,
        max_participants=max_participants,
    )
    return CREDIT_EVENT_UPGRADE_500


def _provider_id() -> str:
    from app.billing.providers import provider_id_for_mode
    return provider_id_for_mode(current_app.config.get("PAYMENT_PROVIDER_MODE"))
