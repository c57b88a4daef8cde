from flask import Blueprint, request
from flask_login import login_required

from ..auth import acting_user, require_roles
from ..errors import ok
from ..extensions import services
from ..serializers import public_ticket, public_transaction
from ..utils import page_args, pagination
from ..validators import CheckInRequest, TicketPurchaseRequest, parse_body

bp = Blueprint("tickets", __name__, url_prefix="/api")


@bp.post("/tickets/buy")
@login_required
def buy_tickets():
    req = parse_body(TicketPurchaseRequest)
    tickets, transaction = services().tickets.purchase(req.event_id, req.ticket_type, req.quantity, acting_user())
    return ok(
        {
            "tickets": [public_ticket(t) for t in tickets],
            "transaction": public_transaction(transaction),
            "totalAmount": transaction["amount"],
            "message": "Tickets created successfully. Please complete payment.",
        },
        201,
    )


@bp.get("/tickets/user/<user_id>")
@login_required
def user_tickets(user_id: str):
    page, limit = page_args(request.args)
    rows, total = services().tickets.list_user_tickets(
        user_id, acting_user(), page=page, limit=limit, status=(request.args.get("status") or "").strip()
    )
    return ok({"tickets": [public_ticket(t, ev) for t, ev in rows], "pagination": pagination(page, limit, total)})


@bp.get("/tickets/<ticket_id>/qr")
@login_required
def ticket_qr(ticket_id: str):
    return ok(services().tickets.ticket_qr(ticket_id, acting_user()))


@bp.post("/tickets/<ticket_id>/checkin")
@require_roles("staff", "admin")
def check_in(ticket_id: str):
    req = parse_body(CheckInRequest)
    ticket = services().checkin.check_in(ticket_id, req.qr_code, acting_user())
    return ok({"ticket": public_ticket(ticket), "message": "Ticket checked in successfully."})
