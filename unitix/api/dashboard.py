from flask import Blueprint
from flask_login import login_required

from ..auth import acting_user, require_roles
from ..errors import ok
from ..extensions import services

bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@bp.get("/student/<user_id>")
@login_required
def student(user_id: str):
    return ok({"dashboard": services().dashboard.student(user_id, acting_user())})


@bp.get("/staff/<user_id>")
@login_required
def staff(user_id: str):
    return ok({"dashboard": services().dashboard.staff(user_id, acting_user())})


@bp.get("/admin")
@require_roles("admin")
def admin():
    return ok({"dashboard": services().dashboard.admin()})
