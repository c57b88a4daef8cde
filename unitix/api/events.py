from flask import Blueprint, request
from flask_login import login_required

from ..auth import acting_user, optional_user, require_roles
from ..errors import ok
from ..extensions import services
from ..serializers import public_event
from ..utils import page_args, pagination
from ..validators import EventCreateRequest, EventUpdateRequest, parse_body

bp = Blueprint("events", __name__, url_prefix="/api")


@bp.get("/events")
def list_events():
    page, limit = page_args(request.args)
    events, total = services().events.list_events(
        page=page,
        limit=limit,
        category=(request.args.get("category") or "").strip(),
        search=(request.args.get("search") or "").strip(),
        date=(request.args.get("date") or "").strip(),
        featured=request.args.get("featured") == "true",
    )
    return ok({"events": [public_event(e) for e in events], "pagination": pagination(page, limit, total)})


@bp.post("/events")
@require_roles("staff", "admin")
def create_event():
    req = parse_body(EventCreateRequest)
    event = services().events.create_event(req, acting_user())
    return ok({"event": public_event(event)}, 201)


@bp.get("/events/<event_id>")
def get_event(event_id: str):
    event = services().events.get_event(event_id, optional_user())
    return ok({"event": public_event(event)})


@bp.put("/events/<event_id>")
@login_required
def update_event(event_id: str):
    req = parse_body(EventUpdateRequest)
    event = services().events.update_event(event_id, req, acting_user())
    return ok({"event": public_event(event)})


@bp.post("/events/<event_id>/publish")
@require_roles("staff", "admin")
def publish_event(event_id: str):
    event = services().events.publish_event(event_id, acting_user())
    return ok({"event": public_event(event)})


@bp.delete("/events/<event_id>")
@login_required
def cancel_event(event_id: str):
    event = services().events.cancel_event(event_id, acting_user())
    return ok({"message": "Event cancelled successfully.", "event": public_event(event)})
