from flask import request
from flask_login import login_user, logout_user, current_user
from flask_wtf.csrf import generate_csrf
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.errors import AuthError, ConflictError, ValidationError
from app.extensions import db, limiter
from app.models.user import User
from app.services import credits as credit_service
from app.services import entitlements as entitlement_service
from app.services.policy import login_required_api
from app.observability import log_event
from app.utils.helpers import json_body
from app.utils.responses import respond_success
from app.utils.validators import clean_str, is_valid_email
from . import bp

PASSWORD_MIN = 8


def _login_email_scope():
    data_json = request.get_json(silent=True) or {}
    email = (data_json.get("email") or "").strip().lower()
    # Keep a stable scope even if email is blank
    return f"login-email:{email or 'missing'}"


def _find_user(email: str):
    return db.session.execute(
        db.select(User).where(func.lower(User.email) == func.lower(email))
    ).scalar_one_or_none()


@bp.get("/csrf")
def csrf_token():
    token = generate_csrf()
    resp = respond_success({"csrfToken": token})
    # keep tokens fresh; avoid caches holding stale tokens
    resp.headers["Cache-Control"] = "no-store"
    return resp


@bp.post("/register")
@limiter.limit("5 per minute; 20 per hour")
def register():
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    display_name = clean_str(data.get("displayName"), max_len=120)

    if not is_valid_email(email):
        raise ValidationError("A valid email is required", {"field": "email"})
    if len(password) < PASSWORD_MIN:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN} characters", {"field": "password"})
    if _find_user(email) is not None:
        raise ConflictError("An account with that email already exists")

    user = User(email=email, display_name=display_name)
    user.set_password(password)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("An account with that email already exists")

    login_user(user)
    log_event("auth.registered", user_id=user.id)
    return respond_success({"user": user.to_dict()}, status=201)


@bp.post("/login")
@limiter.limit("10 per minute; 100 per hour")              # per-IP (anon → IP via _rate_limit_key)
@limiter.limit("5 per minute; 20 per hour", key_func=_login_email_scope)  # per-account
def login():
    data = json_body()
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""
    if not email or not password:
        raise ValidationError("Email and password are required")

    user = _find_user(email)
    if not user or not user.check_password(password) or not user.is_active:
        raise AuthError("Invalid credentials")

    login_user(user)
    log_event("auth.login", user_id=user.id)
    return respond_success({"user": user.to_dict()})


@bp.post("/logout")
def logout():
    if current_user.is_authenticated:
        logout_user()
    return respond_success({"ok": True})


@bp.get("/me")
@login_required_api
def me():
    credits = credit_service.list_credits(current_user.id)
    entitlements = entitlement_service.list_for_user(current_user.id)
    return respond_success({
        "user": current_user.to_dict(),
        "credits": [c.to_dict() for c in credits],
        "entitlements": [e.to_dict() for e in entitlements],
        "canCreateClub": entitlement_service.has_unlinked_active(current_user.id),
    })
