"""
Application error hierarchy.

Every error carries an HTTP status, a machine-readable ``code`` and optional
``details``; ``app.utils.responses.respond_error`` renders them into the
``{"success": false, "error": {...}}`` envelope.
"""
from typing import Any, Dict, List, Optional

PRICING_CTA = {"type": "OPEN_PRICING", "href": "/pricing"}


class AppError(Exception):
    status_code = 400
    code = "AppError"

    def __init__(self, message: str = "", *, status_code: Optional[int] = None,
                 code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body = {"code": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    status_code = 400
    code = "ValidationError"

    def __init__(self, message: str = "Invalid request", details: Any = None):
        super().__init__(message, details=details)


class UnauthorizedError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Login required", details: Any = None):
        super().__init__(message, details=details)


class AuthError(AppError):
    code = "AuthError"

    def __init__(self, message: str, details: Any = None, status_code: int = 401):
        super().__init__(message, status_code=status_code, details=details)


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Not allowed", details: Any = None):
        super().__init__(message, details=details)


class ClubArchivedError(AppError):
    status_code = 403
    code = "CLUB_ARCHIVED"

    def __init__(self, message: str = "Club is archived. This operation is not allowed.", details: Any = None):
        super().__init__(message, details=details)


class NotFoundError(AppError):
    status_code = 404
    code = "NotFound"

    def __init__(self, message: str = "Not found", details: Any = None):
        super().__init__(message, details=details)


class ConflictError(AppError):
    status_code = 409
    code = "Conflict"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message, details=details)


class InternalError(AppError):
    status_code = 500
    code = "InternalError"

    def __init__(self, message: str = "Internal Server Error", details: Any = None):
        super().__init__(message, details=details)


class PaywallError(AppError):
    """
    402 Payment Required.

    ``reason`` is the typed paywall reason (e.g. CLUB_CREATION_REQUIRES_PLAN);
    ``options`` enumerates remediation (ONE_OFF_CREDIT / CLUB_ACCESS). Without
    options the client is pointed at the pricing page.
    """
    status_code = 402
    code = "PAYWALL"

    def __init__(self, message: str, reason: str, *, current_plan_id: Optional[str] = None,
                 required_plan_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None,
                 options: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.reason = reason
        self.current_plan_id = current_plan_id
        self.required_plan_id = required_plan_id
        self.meta = meta
        self.options = options
        self.cta = None if options else dict(PRICING_CTA)
        self.details = self.to_json()

    def to_json(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "reason": self.reason,
            "currentPlanId": self.current_plan_id,
            "requiredPlanId": self.required_plan_id,
            "meta": self.meta,
            "options": self.options,
            "cta": self.cta,
        }


class CreditConfirmationRequired(AppError):
    """409: a credit would be spent; the client must repeat with confirm_credit=1."""
    status_code = 409
    code = "CREDIT_CONFIRMATION_REQUIRED"
    reason = "EVENT_UPGRADE_WILL_BE_CONSUMED"

    def __init__(self, *, credit_code: str, event_id: Optional[int], requested_participants: Optional[int],
                 confirm_href: Optional[str] = None):
        super().__init__("Publishing will consume a one-off credit")
        self.meta = {
            "creditCode": credit_code,
            "eventId": event_id,
            "requestedParticipants": requested_participants,
        }
        self.cta = {"type": "CONFIRM_CONSUME_CREDIT", "href": confirm_href}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "reason": self.reason,
            "meta": self.meta,
            "cta": self.cta,
        }
