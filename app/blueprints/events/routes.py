from datetime import datetime, timezone

from flask import make_response, request, url_for
from flask_login import current_user

from app.services import events as event_service
from app.services.policy import login_required_api
from app.utils.helpers import json_body
from app.utils.responses import respond_success
from app.utils.validators import parse_bool
from . import bp


@bp.post("")
@bp.post("/")
@login_required_api
def create_event():
    event = event_service.create_event(current_user, json_body())
    return respond_success({"event": event.to_dict()}, status=201)


@bp.get("/<int:event_id>")
def get_event(event_id: int):
    event = event_service.get_event(event_id, current_user)
    data = event.to_dict()
    data["participantsCount"] = event_service.participant_count(event.id)
    return respond_success({"event": data})


@bp.post("/<int:event_id>/publish")
@login_required_api
def publish_event(event_id: int):
    confirm = parse_bool(request.args.get("confirm_credit")) or parse_bool(json_body().get("confirmCredit"))
    result = event_service.publish_event(
        event_id,
        current_user,
        confirm_credit=confirm,
        confirm_href=url_for("events.publish_event", event_id=event_id, confirm_credit=1),
    )
    return respond_success({
        "event": result["event"].to_dict(),
        "alreadyPublished": result["alreadyPublished"],
        "creditConsumed": result["creditConsumed"],
    })


@bp.post("/<int:event_id>/participants")
@login_required_api
def register_participant(event_id: int):
    participant = event_service.register_participant(event_id, current_user)
    return respond_success({"participant": participant.to_dict()}, status=201)


@bp.get("/<int:event_id>/participants.csv")
@login_required_api
def export_participants_csv(event_id: int):
    csv_str = event_service.export_participants_csv(event_id, current_user)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    filename = f"event_{event_id}_participants_{stamp}.csv"

    resp = make_response(csv_str)
    resp.headers["Content-Type"] = "text/csv; charset=utf-8"
    resp.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return resp
