"""
Club lifecycle, membership and join requests.

Club creation is paywalled by a club-creation entitlement. The entitlement is
consumed by a conditional UPDATE in the same transaction that inserts the club,
so a lost race leaves neither a club row nor a consumed entitlement behind.
"""
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.errors import ConflictError, ForbiddenError, NotFoundError, PaywallError, UnauthorizedError, ValidationError
from app.extensions import db
from app.models import Club, ClubJoinRequest, ClubMember, User
from app.models.club import VISIBILITIES, VISIBILITY_PUBLIC
from app.models.club_join_request import JOIN_APPROVED, JOIN_PENDING, JOIN_REJECTED
from app.models.club_member import ASSIGNABLE_ROLES, ROLE_MEMBER, ROLE_OWNER, ROLE_PENDING
from app.billing.plans import ACTION_INVITE_MEMBER, ACTION_REMOVE_MEMBER, ACTION_UPDATE_CLUB, PAID_PLAN_IDS
from app.billing.paywall import enforce_club_action
from app.services import audit as audit_service
from app.services import entitlements as entitlement_service
from app.services import notifications
from app.services import policy
from app.services import subscriptions as subscription_service
from app.observability import log_event
from app.utils.helpers import as_utc, utcnow
from app.utils.validators import clean_str, is_valid_city, require_choice

NAME_MIN = 2
NAME_MAX = 120
DESCRIPTION_MAX = 2000


def _requires_plan() -> PaywallError:
    return PaywallError(
        "Creating a club requires a paid club plan",
        "CLUB_CREATION_REQUIRES_PLAN",
        current_plan_id="free",
        required_plan_id=PAID_PLAN_IDS[0],
        options=[{"type": "CLUB_ACCESS", "recommendedPlanId": PAID_PLAN_IDS[0]}],
    )


def _clean_club_fields(payload: Dict, partial: bool = False) -> Dict:
    out = {}
    if not partial or "name" in payload:
        name = clean_str(payload.get("name"), max_len=NAME_MAX + 1)
        if not name or len(name) < NAME_MIN or len(name) > NAME_MAX:
            raise ValidationError(f"name must be {NAME_MIN}-{NAME_MAX} characters", {"field": "name"})
        out["name"] = name
    if not partial or "description" in payload:
        out["description"] = clean_str(payload.get("description"), max_len=DESCRIPTION_MAX)
    if not partial or "city" in payload:
        city = clean_str(payload.get("city"), max_len=100)
        if not is_valid_city(city):
            raise ValidationError("Invalid city", {"field": "city"})
        out["city"] = city
    if not partial or "visibility" in payload:
        out["visibility"] = require_choice(payload.get("visibility") or VISIBILITY_PUBLIC, "visibility", VISIBILITIES)
    return out


def member_count(club_id: int) -> int:
    return db.session.execute(
        db.select(func.count(ClubMember.id)).where(ClubMember.club_id == club_id, ClubMember.role != ROLE_PENDING)
    ).scalar_one()


# --- create / read / update -------------------------------------------------

def create_club(user, payload: Dict) -> Club:
    if user is None or not getattr(user, "is_authenticated", False):
        raise UnauthorizedError()
    fields = _clean_club_fields(payload)

    now = utcnow()
    ent = entitlement_service.find_unlinked_active(user.id, now)
    if ent is None:
        log_event("club.create.paywalled", user_id=user.id)
        raise _requires_plan()

    try:
        club = Club(created_by_user_id=user.id, **fields)
        db.session.add(club)
        db.session.flush()

        if not entitlement_service.consume_entitlement(ent.id, club.id, now):
            db.session.rollback()
            log_event("club.create.entitlement_lost", user_id=user.id, entitlement_id=ent.id)
            raise _requires_plan()

        db.session.add(ClubMember(club_id=club.id, user_id=user.id, role=ROLE_OWNER))
        subscription_service.activate_subscription(club.id, ent.plan_id, now, as_utc(ent.valid_until))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        log_event("club.create.entitlement_conflict", level="warning", user_id=user.id, entitlement_id=ent.id)
        raise _requires_plan()

    audit_service.log_club_action(club.id, user.id, audit_service.CLUB_CREATED,
                                  metadata={"entitlementId": ent.id, "planId": ent.plan_id})
    db.session.commit()
    log_event("club.created", club_id=club.id, user_id=user.id, plan_id=ent.plan_id)
    return club


def get_club(club_id: int, user=None) -> Club:
    club = policy.get_club_or_404(club_id)
    if club.visibility != VISIBILITY_PUBLIC:
        uid = user.id if user is not None and getattr(user, "is_authenticated", False) else None
        if not policy.is_club_member(club.id, uid):
            # private clubs are invisible to outsiders
            raise NotFoundError("Club not found")
    return club


def list_clubs(page: int = 1, limit: int = 20, q: Optional[str] = None) -> Dict:
    page = max(1, page)
    limit = max(1, min(limit, 100))
    query = db.select(Club).where(Club.visibility == VISIBILITY_PUBLIC, Club.archived_at.is_(None))
    if q:
        like = f"%{q}%"
        query = query.where(Club.name.ilike(like) | Club.city.ilike(like))
    total = db.session.execute(db.select(func.count()).select_from(query.subquery())).scalar_one()
    rows = db.session.execute(
        query.order_by(Club.created_at.desc(), Club.id.desc()).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return {"items": rows, "page": page, "limit": limit, "total": total}


def update_club(club_id: int, user, payload: Dict) -> Club:
    club = policy.get_club_or_404(club_id)
    membership = policy.require_club_manager(club.id, user)
    policy.assert_club_not_archived(club)
    fields = _clean_club_fields(payload, partial=True)
    if not fields:
        raise ValidationError("Nothing to update")

    visibility_change = "visibility" in fields and fields["visibility"] != club.visibility
    if visibility_change and membership.role != ROLE_OWNER:
        raise ForbiddenError("Only the club owner can change visibility")

    enforce_club_action(club.id, ACTION_UPDATE_CLUB)

    before = {k: getattr(club, k) for k in fields}
    for key, value in fields.items():
        setattr(club, key, value)
    db.session.flush()

    changed = {k: {"from": before[k], "to": v} for k, v in fields.items() if before[k] != v}
    if visibility_change:
        audit_service.log_club_action(club.id, user.id, audit_service.CLUB_VISIBILITY_CHANGED,
                                      metadata=changed.pop("visibility"))
    if changed:
        audit_service.log_club_action(club.id, user.id, audit_service.CLUB_UPDATED,
                                      metadata={"fields": sorted(changed)})
    db.session.commit()
    return club


def archive_club(club_id: int, user) -> Club:
    club = policy.get_club_or_404(club_id)
    policy.require_club_owner(club.id, user)
    if club.is_archived:
        return club
    club.archived_at = utcnow()
    audit_service.log_club_action(club.id, user.id, audit_service.CLUB_ARCHIVED)
    db.session.commit()
    log_event("club.archived", club_id=club.id, user_id=user.id)
    return club


def unarchive_club(club_id: int, user) -> Club:
    club = policy.get_club_or_404(club_id)
    policy.require_club_owner(club.id, user)
    if not club.is_archived:
        return club
    club.archived_at = None
    audit_service.log_club_action(club.id, user.id, audit_service.CLUB_UNARCHIVED)
    db.session.commit()
    log_event("club.unarchived", club_id=club.id, user_id=user.id)
    return club


# --- members ----------------------------------------------------------------

def list_members(club_id: int, user):
    club = policy.get_club_or_404(club_id)
    policy.require_club_member(club.id, user)
    return db.session.execute(
        db.select(ClubMember).where(ClubMember.club_id == club.id, ClubMember.role != ROLE_PENDING)
        .order_by(ClubMember.created_at.asc(), ClubMember.id.asc())
    ).scalars().all()


def add_member(club_id: int, user_id: int, role: str, actor) -> ClubMember:
    club = policy.get_club_or_404(club_id)
    policy.require_club_owner(club.id, actor)
    policy.assert_club_not_archived(club)
    role = role or ROLE_MEMBER
    if role == ROLE_OWNER:
        raise ValidationError("The owner role cannot be assigned")
    require_choice(role, "role", ASSIGNABLE_ROLES)
    if db.session.get(User, user_id) is None:
        raise NotFoundError("User not found")
    existing = policy.get_membership(club.id, user_id)
    if existing is not None and existing.role != ROLE_PENDING:
        raise ConflictError("User is already a member of this club")

    enforce_club_action(club.id, ACTION_INVITE_MEMBER, {"clubMembersCount": member_count(club.id)})

    if existing is not None:
        existing.role = role
        existing.invited_by_user_id = actor.id
        member = existing
    else:
        member = ClubMember(club_id=club.id, user_id=user_id, role=role, invited_by_user_id=actor.id)
        db.session.add(member)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("User is already a member of this club")
    audit_service.log_club_action(club.id, actor.id, audit_service.MEMBER_ADDED, target_user_id=user_id,
                                  metadata={"role": role})
    db.session.commit()
    return member


def change_member_role(club_id: int, user_id: int, role: str, actor) -> ClubMember:
    club = policy.get_club_or_404(club_id)
    policy.require_club_owner(club.id, actor)
    policy.assert_club_not_archived(club)
    if role == ROLE_OWNER:
        raise ValidationError("The owner role cannot be assigned")
    require_choice(role, "role", ASSIGNABLE_ROLES)
    member = policy.get_membership(club.id, user_id)
    if member is None or member.role == ROLE_PENDING:
        raise NotFoundError("Member not found")
    if member.role == ROLE_OWNER:
        raise ForbiddenError("The owner's role cannot be changed")
    previous = member.role
    if previous == role:
        return member
    member.role = role
    audit_service.log_club_action(club.id, actor.id, audit_service.ROLE_CHANGED, target_user_id=user_id,
                                  metadata={"from": previous, "to": role})
    db.session.commit()
    return member


def remove_member(club_id: int, user_id: int, actor) -> None:
    club = policy.get_club_or_404(club_id)
    if actor is None or not getattr(actor, "is_authenticated", False):
        raise UnauthorizedError()
    member = policy.get_membership(club.id, user_id)

    if user_id == actor.id:
        # leaving is allowed even from an archived club
        if member is None:
            raise NotFoundError("Member not found")
        if member.role == ROLE_OWNER:
            raise ForbiddenError("The club owner cannot leave the club")
        db.session.delete(member)
        audit_service.log_club_action(club.id, actor.id, audit_service.MEMBER_LEFT, target_user_id=user_id)
        db.session.commit()
        return

    policy.require_club_owner(club.id, actor)
    policy.assert_club_not_archived(club)
    if member is None:
        raise NotFoundError("Member not found")
    if member.role == ROLE_OWNER:
        raise ForbiddenError("The club owner cannot be removed")
    enforce_club_action(club.id, ACTION_REMOVE_MEMBER)
    role = member.role
    db.session.delete(member)
    audit_service.log_club_action(club.id, actor.id, audit_service.MEMBER_REMOVED, target_user_id=user_id,
                                  metadata={"role": role})
    db.session.commit()


# --- join requests ----------------------------------------------------------

def _pending_request(club_id: int, user_id: int) -> Optional[ClubJoinRequest]:
    return db.session.execute(
        db.select(ClubJoinRequest).where(
            ClubJoinRequest.club_id == club_id,
            ClubJoinRequest.requester_user_id == user_id,
            ClubJoinRequest.status == JOIN_PENDING,
        )
    ).scalar_one_or_none()


def create_join_request(club_id: int, user, message: Optional[str] = None):
    """Returns (request, created). A repeated request returns the open one unchanged."""
    if user is None or not getattr(user, "is_authenticated", False):
        raise UnauthorizedError()
    club = policy.get_club_or_404(club_id)
    policy.assert_club_not_archived(club)
    if policy.is_club_member(club.id, user.id):
        raise ConflictError("You are already a member of this club")

    existing = _pending_request(club.id, user.id)
    if existing is not None:
        return existing, False

    req = ClubJoinRequest(club_id=club.id, requester_user_id=user.id, message=clean_str(message, max_len=500))
    db.session.add(req)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = _pending_request(club.id, user.id)
        if existing is None:
            raise
        return existing, False
    log_event("club.join_request.created", club_id=club.id, user_id=user.id, request_id=req.id)
    return req, True


def list_join_requests(club_id: int, actor, status: Optional[str] = JOIN_PENDING):
    club = policy.get_club_or_404(club_id)
    policy.require_club_manager(club.id, actor)
    q = db.select(ClubJoinRequest).where(ClubJoinRequest.club_id == club.id)
    if status:
        q = q.where(ClubJoinRequest.status == status)
    return db.session.execute(q.order_by(ClubJoinRequest.created_at.asc())).scalars().all()


def _load_pending_request(club, request_id: int) -> ClubJoinRequest:
    req = db.session.get(ClubJoinRequest, request_id)
    if req is None or req.club_id != club.id:
        raise NotFoundError("Join request not found")
    if req.status != JOIN_PENDING:
        raise ConflictError(f"Join request already {req.status}")
    return req


def approve_join_request(club_id: int, request_id: int, actor) -> ClubJoinRequest:
    club = policy.get_club_or_404(club_id)
    policy.require_club_manager(club.id, actor)
    policy.assert_club_not_archived(club)
    req = _load_pending_request(club, request_id)

    enforce_club_action(club.id, ACTION_INVITE_MEMBER, {"clubMembersCount": member_count(club.id)})

    member = policy.get_membership(club.id, req.requester_user_id)
    if member is None:
        db.session.add(ClubMember(club_id=club.id, user_id=req.requester_user_id, role=ROLE_MEMBER,
                                  invited_by_user_id=actor.id))
    elif member.role == ROLE_PENDING:
        member.role = ROLE_MEMBER
    req.status = JOIN_APPROVED
    req.decided_by_user_id = actor.id
    db.session.flush()
    audit_service.log_club_action(club.id, actor.id, audit_service.JOIN_REQUEST_APPROVED,
                                  target_user_id=req.requester_user_id, metadata={"requestId": req.id})
    db.session.commit()

    notifications.notify_join_request_decision(db.session.get(User, req.requester_user_id), club, approved=True)
    return req


def reject_join_request(club_id: int, request_id: int, actor) -> ClubJoinRequest:
    club = policy.get_club_or_404(club_id)
    policy.require_club_manager(club.id, actor)
    req = _load_pending_request(club, request_id)
    req.status = JOIN_REJECTED
    req.decided_by_user_id = actor.id
    db.session.flush()
    audit_service.log_club_action(club.id, actor.id, audit_service.JOIN_REQUEST_REJECTED,
                                  target_user_id=req.requester_user_id, metadata={"requestId": req.id})
    db.session.commit()

    notifications.notify_join_request_decision(db.session.get(User, req.requester_user_id), club, approved=False)
    return req


def club_audit(club_id: int, actor, limit: int = 50):
    club = policy.get_club_or_404(club_id)
    policy.require_club_manager(club.id, actor)
    return audit_service.list_club_audit(club.id, limit)
