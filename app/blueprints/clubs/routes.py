from flask import request
from flask_login import current_user

from app.services import clubs as club_service
from app.services import subscriptions as subscription_service
from app.services.policy import get_club_or_404, login_required_api, require_club_member
from app.utils.helpers import json_body
from app.utils.responses import respond_success
from app.utils.validators import parse_int
from . import bp


@bp.get("")
@bp.get("/")
def list_clubs():
    page = parse_int(request.args.get("page"), "page", required=False, minimum=1) or 1
    limit = parse_int(request.args.get("limit"), "limit", required=False, minimum=1) or 20
    result = club_service.list_clubs(page=page, limit=limit, q=(request.args.get("q") or "").strip() or None)
    return respond_success({
        "items": [c.to_dict() for c in result["items"]],
        "page": result["page"],
        "limit": result["limit"],
        "total": result["total"],
    })


@bp.post("")
@bp.post("/")
@login_required_api
def create_club():
    club = club_service.create_club(current_user, json_body())
    return respond_success({"club": club.to_dict()}, message="Club created", status=201)


@bp.get("/<int:club_id>")
def get_club(club_id: int):
    club = club_service.get_club(club_id, current_user)
    return respond_success({"club": club.to_dict()})


@bp.patch("/<int:club_id>")
@login_required_api
def update_club(club_id: int):
    club = club_service.update_club(club_id, current_user, json_body())
    return respond_success({"club": club.to_dict()})


@bp.post("/<int:club_id>/archive")
@login_required_api
def archive_club(club_id: int):
    club = club_service.archive_club(club_id, current_user)
    return respond_success({"club": club.to_dict()})


@bp.post("/<int:club_id>/unarchive")
@login_required_api
def unarchive_club(club_id: int):
    club = club_service.unarchive_club(club_id, current_user)
    return respond_success({"club": club.to_dict()})


# --- members ---

@bp.get("/<int:club_id>/members")
@login_required_api
def list_members(club_id: int):
    members = club_service.list_members(club_id, current_user)
    return respond_success({"items": [m.to_dict() for m in members]})


@bp.post("/<int:club_id>/members")
@login_required_api
def add_member(club_id: int):
    data = json_body()
    user_id = parse_int(data.get("userId"), "userId")
    member = club_service.add_member(club_id, user_id, data.get("role"), current_user)
    return respond_success({"member": member.to_dict()}, status=201)


@bp.patch("/<int:club_id>/members/<int:user_id>")
@login_required_api
def change_member_role(club_id: int, user_id: int):
    member = club_service.change_member_role(club_id, user_id, json_body().get("role"), current_user)
    return respond_success({"member": member.to_dict()})


@bp.delete("/<int:club_id>/members/<int:user_id>")
@login_required_api
def remove_member(club_id: int, user_id: int):
    club_service.remove_member(club_id, user_id, current_user)
    return respond_success({"removed": True})


# --- join requests ---

@bp.post("/<int:club_id>/join-requests")
@login_required_api
def create_join_request(club_id: int):
    req, created = club_service.create_join_request(club_id, current_user, json_body().get("message"))
    return respond_success({"request": req.to_dict(), "created": created}, status=201 if created else 200)


@bp.get("/<int:club_id>/join-requests")
@login_required_api
def list_join_requests(club_id: int):
    status = request.args.get("status", "pending")
    items = club_service.list_join_requests(club_id, current_user, status=None if status == "all" else status)
    return respond_success({"items": [r.to_dict() for r in items]})


@bp.post("/<int:club_id>/join-requests/<int:request_id>/approve")
@login_required_api
def approve_join_request(club_id: int, request_id: int):
    req = club_service.approve_join_request(club_id, request_id, current_user)
    return respond_success({"request": req.to_dict()})


@bp.post("/<int:club_id>/join-requests/<int:request_id>/reject")
@login_required_api
def reject_join_request(club_id: int, request_id: int):
    req = club_service.reject_join_request(club_id, request_id, current_user)
    return respond_success({"request": req.to_dict()})


# --- billing view / audit ---

@bp.get("/<int:club_id>/current-plan")
@login_required_api
def current_plan(club_id: int):
    get_club_or_404(club_id)
    require_club_member(club_id, current_user)
    info = subscription_service.get_club_current_plan(club_id)
    sub = info["subscription"]
    return respond_success({
        "planId": info["planId"],
        "plan": info["plan"].to_dict(),
        "subscription": sub.to_dict() if sub else None,
    })


@bp.get("/<int:club_id>/audit")
@login_required_api
def club_audit(club_id: int):
    limit = parse_int(request.args.get("limit"), "limit", required=False, minimum=1) or 50
    entries = club_service.club_audit(club_id, current_user, limit=limit)
    return respond_success({"items": [e.to_dict() for e in entries]})
