from flask import Blueprint

from app.services.policy import admin_required

bp = Blueprint("admin", __name__)


@bp.before_request
@admin_required
def _require_admin():
    return None


# Import submodules so their routes register on the same bp
from . import billing  # noqa: E402,F401
from . import audit  # noqa: E402,F401
