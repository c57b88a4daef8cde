from flask import Blueprint, request
from flask_login import login_required

from ..auth import acting_user
from ..errors import NotFound, ok
from ..extensions import services
from ..serializers import public_transaction
from ..validators import PaymentRequest, parse_body

bp = Blueprint("payments", __name__, url_prefix="/api")


@bp.post("/payments/initiate")
@login_required
def initiate_payment():
    req = parse_body(PaymentRequest)
    transaction, response = services().payments.pay(
        req.ticket_ids, req.payment_method, acting_user(), req.phone_number
    )
    return ok(
        {
            "transaction": public_transaction(transaction),
            "paymentResponse": response,
            "totalAmount": transaction["amount"],
            "message": "Payment initiated successfully.",
        }
    )


@bp.post("/payments/callback/<gateway>")
def payment_callback(gateway: str):
    if gateway != "mpesa":
        raise NotFound("Unsupported payment gateway.")
    transaction, applied = services().payments.handle_mpesa_callback(request.get_json(silent=True))
    return ok(
        {
            "success": True,
            "message": "Callback processed successfully." if applied else "Callback already processed.",
            "status": transaction["status"],
        }
    )
