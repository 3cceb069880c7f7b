from .user import User
from .club import Club
from .club_member import ClubMember
from .club_join_request import ClubJoinRequest
from .event import Event, EventParticipant
from .club_plan import ClubPlan
from .billing_product import BillingProduct
from .billing_policy import BillingPolicy, BillingPolicyAction
from .club_subscription import ClubSubscription
from .club_subscription_entitlement import ClubSubscriptionEntitlement
from .billing_transaction import BillingTransaction
from .billing_credit import BillingCredit
from .admin_audit_log import AdminAuditLog
from .club_audit_log import ClubAuditLog
from .billing_event import BillingEventLog

__all__ = [
    "User",
    "Club",
    "ClubMember",
    "ClubJoinRequest",
    "Event",
    "EventParticipant",
    "ClubPlan",
    "BillingProduct",
    "BillingPolicy",
    "BillingPolicyAction",
    "ClubSubscription",
    "ClubSubscriptionEntitlement",
    "BillingTransaction",
    "BillingCredit",
    "AdminAuditLog",
    "ClubAuditLog",
    "BillingEventLog",
]
