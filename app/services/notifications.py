import json
import time
from typing import Optional

from flask import current_app
from flask_mail import Message

from app.extensions import mail


def _log_structured(event: str, level: str = "info", **fields):
    getattr(current_app.logger, level)(json.dumps({"event": event, **fields}))


def send_plain_email(to_email: Optional[str], subject: str, body: str) -> bool:
    """Best-effort send. A mail failure never fails the request that triggered it."""
    if not to_email:
        return False
    msg = Message(recipients=[to_email], subject=subject, body=body)
    start = time.perf_counter()
    try:
        mail.send(msg)
    except Exception as ex:
        _log_structured(
            "mail_send",
            level="warning",
            to=to_email.lower(),
            subject=subject,
            outcome="smtp_error",
            latency_ms=int((time.perf_counter() - start) * 1000),
            smtp_error=str(ex),
        )
        return False
    _log_structured(
        "mail_send",
        to=to_email.lower(),
        subject=subject,
        outcome="sent",
        latency_ms=int((time.perf_counter() - start) * 1000),
    )
    return True


def notify_join_request_decision(user, club, approved: bool) -> bool:
    if approved:
        subject = f"You joined {club.name}"
        body = f"Your request to join {club.name} was approved. Welcome aboard!"
    else:
        subject = f"Your request to join {club.name}"
        body = f"Your request to join {club.name} was declined by the club organisers."
    return send_plain_email(getattr(user, "email", None), subject, body)
