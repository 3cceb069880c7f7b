from typing import Any, Optional

from flask import current_app, jsonify, request

from app.errors import AppError, InternalError, PaywallError


def wants_json() -> bool:
    # Match the app's JSON detection style (429 / 403 handlers)
    accept = (request.headers.get("Accept") or "").lower()
    return (
        "application/json" in accept
        or request.is_json
        or request.path.startswith("/api/")
        or request.path.endswith(".json")
    )


def respond_success(data: Any = None, message: Optional[str] = None, status: int = 200, headers=None):
    payload = {"success": True, "data": data}
    if message:
        payload["message"] = message
    resp = jsonify(payload)
    resp.status_code = status
    if headers:
        resp.headers.update(headers)
    return resp


def respond_error(error: Exception, fallback_message: str = "Internal Server Error"):
    """Render any exception into the error envelope; non-AppErrors become 500."""
    if isinstance(error, PaywallError):
        body = {"code": error.code, "message": error.message, "details": error.to_json()}
        status = 402
    elif isinstance(error, AppError):
        body = error.to_dict()
        status = error.status_code
    else:
        current_app.logger.exception("api.unhandled_error", extra={"path": request.path})
        internal = InternalError(fallback_message)
        body = internal.to_dict()
        status = internal.status_code

    resp = jsonify({"success": False, "error": body})
    resp.status_code = status
    return resp
