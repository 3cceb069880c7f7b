import csv
import io
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from app.errors import ConflictError, ForbiddenError, NotFoundError, PaywallError, UnauthorizedError, ValidationError
from app.extensions import db
from app.models import Event, EventParticipant, User
from app.models.club_member import ROLE_ADMIN, ROLE_ORGANIZER, ROLE_OWNER
from app.models.event import EVENT_DRAFT, EVENT_PUBLISHED
from app.billing.plans import ACTION_CREATE_EVENT, ACTION_EXPORT_CSV
from app.billing.paywall import enforce_club_action, enforce_event_publish
from app.services import audit as audit_service
from app.services import credits as credit_service
from app.services import policy
from app.observability import log_event
from app.utils.helpers import as_utc, utcnow
from app.utils.validators import clean_str, parse_bool, parse_int

EVENT_CREATOR_ROLES = (ROLE_OWNER, ROLE_ADMIN, ROLE_ORGANIZER)


def _require_user(user):
    if user is None or not getattr(user, "is_authenticated", False):
        raise UnauthorizedError()


def _parse_starts_at(raw) -> Optional[datetime]:
    if raw in (None, ""):
        return None
    try:
        return as_utc(datetime.fromisoformat(str(raw).replace("Z", "+00:00")))
    except ValueError:
        raise ValidationError("startsAt must be an ISO-8601 datetime", {"field": "startsAt"})


def create_event(user, payload: Dict) -> Event:
    _require_user(user)
    title = clean_str(payload.get("title"), max_len=200)
    if not title:
        raise ValidationError("title is required", {"field": "title"})
    max_participants = parse_int(payload.get("maxParticipants"), "maxParticipants", required=False, minimum=1)
    is_paid = parse_bool(payload.get("isPaid"))
    price = parse_int(payload.get("price"), "price", required=is_paid, minimum=0) if is_paid else None
    club_id = parse_int(payload.get("clubId"), "clubId", required=False)

    if club_id is not None:
        club = policy.get_club_or_404(club_id)
        policy.require_club_role(club.id, user, *EVENT_CREATOR_ROLES)
        policy.assert_club_not_archived(club)
        enforce_club_action(club.id, ACTION_CREATE_EVENT, {
            "eventParticipantsCount": max_participants,
            "isPaidEvent": is_paid,
        })

    event = Event(
        title=title,
        description=clean_str(payload.get("description"), max_len=5000),
        starts_at=_parse_starts_at(payload.get("startsAt")),
        max_participants=max_participants,
        is_paid=is_paid,
        price=price,
        club_id=club_id,
        created_by_user_id=user.id,
        status=EVENT_DRAFT,
    )
    db.session.add(event)
    db.session.commit()
    log_event("event.created", event_id=event.id, user_id=user.id, club_id=club_id)
    return event


def get_event(event_id: int, user=None) -> Event:
    event = db.session.get(Event, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    if not event.is_published:
        uid = user.id if user is not None and getattr(user, "is_authenticated", False) else None
        if uid != event.created_by_user_id:
            raise NotFoundError("Event not found")
    return event


def publish_event(event_id: int, user, confirm_credit: bool = False, confirm_href: Optional[str] = None) -> Dict:
    """
    Publish a draft. When a one-off credit pays for the size, the credit is
    consumed and the event published in one transaction.
    """
    _require_user(user)
    event = db.session.get(Event, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    if event.created_by_user_id != user.id:
        raise ForbiddenError("Only the event creator can publish it")
    if event.is_published:
        return {"event": event, "alreadyPublished": True, "creditConsumed": False}

    if event.club_id is not None:
        policy.assert_club_not_archived(policy.get_club_or_404(event.club_id))

    credit_code = enforce_event_publish(
        user_id=user.id,
        club_id=event.club_id,
        max_participants=event.max_participants,
        is_paid=event.is_paid,
        event_id=event.id,
        confirm_credit=confirm_credit,
        confirm_href=confirm_href,
    )

    now = utcnow()
    credit = None
    try:
        if credit_code:
            credit = credit_service.consume_credit(user.id, credit_code, event.id, now)
        result = db.session.execute(
            update(Event)
            .where(Event.id == event.id, Event.status == EVENT_DRAFT)
            .values(status=EVENT_PUBLISHED, published_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # a concurrent publish won; keep our credit
            db.session.rollback()
            db.session.refresh(event)
            return {"event": event, "alreadyPublished": True, "creditConsumed": False}
        if event.club_id is not None:
            audit_service.log_club_action(event.club_id, user.id, audit_service.EVENT_PUBLISHED,
                                          metadata={"eventId": event.id})
        db.session.commit()
    except PaywallError:
        db.session.rollback()
        log_event("event.publish.credit_race_lost", level="warning", event_id=event_id, user_id=user.id)
        raise

    db.session.refresh(event)
    log_event(
        "event.published",
        event_id=event.id,
        user_id=user.id,
        credit_id=credit.id if credit else None,
    )
    return {"event": event, "alreadyPublished": False, "creditConsumed": credit is not None}


def participant_count(event_id: int) -> int:
    return db.session.execute(
        db.select(func.count(EventParticipant.id)).where(EventParticipant.event_id == event_id)
    ).scalar_one()


def register_participant(event_id: int, user) -> EventParticipant:
    _require_user(user)
    event = db.session.get(Event, event_id)
    if event is None or not event.is_published:
        raise NotFoundError("Event not found")
    if event.max_participants is not None and participant_count(event.id) >= event.max_participants:
        raise ConflictError("Event is full", {"maxParticipants": event.max_participants})

    participant = EventParticipant(
        event_id=event.id,
        user_id=user.id,
        display_name=user.display_name or user.email,
    )
    db.session.add(participant)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Already registered for this event")
    return participant


def export_participants_csv(event_id: int, user) -> str:
    _require_user(user)
    event = db.session.get(Event, event_id)
    if event is None:
        raise NotFoundError("Event not found")

    if event.club_id is not None:
        policy.require_club_manager(event.club_id, user)
        enforce_club_action(event.club_id, ACTION_EXPORT_CSV)
    elif event.created_by_user_id != user.id:
        raise ForbiddenError("Only the event creator can export participants")

    rows = db.session.execute(
        db.select(EventParticipant, User.email)
        .join(User, User.id == EventParticipant.user_id)
        .where(EventParticipant.event_id == event.id)
        .order_by(EventParticipant.registered_at.asc(), EventParticipant.id.asc())
    ).all()

    buf = io.StringIO(newline="")
    w = csv.writer(buf)
    w.writerow(["user_id", "display_name", "email", "registered_at"])
    for participant, email in rows:
        registered = as_utc(participant.registered_at)
        w.writerow([
            participant.user_id,
            participant.display_name or "",
            email,
            registered.isoformat() if registered else "",
        ])
    csv_str = buf.getvalue()
    buf.close()
    log_event("event.participants_exported", event_id=event.id, user_id=user.id, rows=len(rows))
    return csv_str
