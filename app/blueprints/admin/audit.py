from flask import request

from app.services import audit as audit_service
from app.utils.responses import respond_success
from app.utils.validators import parse_int
from . import bp


@bp.get("/audit")
def audit_log():
    args = request.args
    page = audit_service.list_admin_audit(
        action_type=args.get("actionType") or None,
        target_type=args.get("targetType") or None,
        target_id=args.get("targetId") or None,
        actor_id=args.get("actorId") or None,
        result=args.get("result") or None,
        limit=parse_int(args.get("limit"), "limit", required=False),
        cursor=parse_int(args.get("cursor"), "cursor", required=False, minimum=1),
    )
    return respond_success({
        "items": [e.to_dict() for e in page["items"]],
        "nextCursor": page["nextCursor"],
    })
