from flask import Blueprint

bp = Blueprint("billing", __name__)
# /api/dev/billing: local settlement helpers, never enabled in production
dev_bp = Blueprint("dev_billing", __name__)

from . import routes, dev  # noqa: E402,F401
