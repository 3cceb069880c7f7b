from flask import request
from flask_login import current_user

from app.billing import admin_ops
from app.utils.helpers import json_body
from app.utils.responses import respond_success
from app.utils.validators import parse_int
from . import bp


def _limit(default: int = 50, maximum: int = 200) -> int:
    limit = parse_int(request.args.get("limit"), "limit", required=False, minimum=1) or default
    return min(limit, maximum)


@bp.get("/users")
def users():
    rows = admin_ops.list_users(q=(request.args.get("q") or "").strip() or None, limit=_limit())
    return respond_success({"items": [u.to_dict() for u in rows]})


@bp.get("/clubs")
def clubs():
    rows = admin_ops.list_clubs(q=(request.args.get("q") or "").strip() or None, limit=_limit())
    return respond_success({"items": [c.to_dict() for c in rows]})


@bp.post("/users/<int:user_id>/credits")
def grant_credit(user_id: int):
    data = json_body()
    outcome = admin_ops.admin_grant_one_off_credit(
        current_user,
        user_id,
        data.get("creditCode") or data.get("credit_code"),
        data.get("reason"),
    )
    return respond_success({
        "credit": outcome["credit"].to_dict(),
        "transactionId": outcome["transaction"].id,
    }, message="Credit granted", status=201)


@bp.post("/clubs/<int:club_id>/subscription/extend")
def extend_subscription(club_id: int):
    data = json_body()
    days = data.get("days")
    if isinstance(days, str) and days.strip().isdigit():
        days = int(days.strip())
    sub = admin_ops.admin_extend_subscription(current_user, club_id, days, data.get("reason"))
    return respond_success({"subscription": sub.to_dict()}, message="Subscription extended")
