from functools import wraps
from typing import Optional

from flask_login import current_user

from app.errors import ClubArchivedError, ForbiddenError, NotFoundError, UnauthorizedError
from app.extensions import db
from app.models import Club, ClubMember
from app.models.club_member import ROLE_OWNER, ROLE_ADMIN, ROLE_PENDING


def login_required_api(fn):
    """JSON flavour of flask_login.login_required: 401 envelope instead of a redirect."""
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not current_user.is_authenticated:
            raise UnauthorizedError()
        return fn(*args, **kwargs)
    return _wrap


def admin_required(fn):
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not current_user.is_authenticated:
            raise UnauthorizedError()
        if not current_user.is_admin:
            raise ForbiddenError("Admin access required")
        return fn(*args, **kwargs)
    return _wrap


def get_club_or_404(club_id: int) -> Club:
    club = db.session.get(Club, club_id)
    if club is None:
        raise NotFoundError("Club not found")
    return club


def get_membership(club_id: int, user_id: int) -> Optional[ClubMember]:
    return db.session.execute(
        db.select(ClubMember).where(ClubMember.club_id == club_id, ClubMember.user_id == user_id)
    ).scalar_one_or_none()


def club_role(club_id: int, user_id: Optional[int]) -> Optional[str]:
    if user_id is None:
        return None
    m = get_membership(club_id, user_id)
    return m.role if m else None


def is_club_member(club_id: int, user_id: Optional[int]) -> bool:
    role = club_role(club_id, user_id)
    return role is not None and role != ROLE_PENDING


def require_club_role(club_id: int, user, *roles) -> ClubMember:
    if user is None or not getattr(user, "is_authenticated", False):
        raise UnauthorizedError()
    m = get_membership(club_id, user.id)
    if m is None or m.role == ROLE_PENDING:
        raise ForbiddenError("Club membership required")
    if roles and m.role not in roles:
        raise ForbiddenError(f"Requires club role: {', '.join(roles)}")
    return m


def require_club_member(club_id: int, user) -> ClubMember:
    return require_club_role(club_id, user)


def require_club_owner(club_id: int, user) -> ClubMember:
    return require_club_role(club_id, user, ROLE_OWNER)


def require_club_manager(club_id: int, user) -> ClubMember:
    return require_club_role(club_id, user, ROLE_OWNER, ROLE_ADMIN)


def assert_club_not_archived(club: Club) -> None:
    if club.is_archived:
        raise ClubArchivedError()
