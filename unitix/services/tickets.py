import base64
import io
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import qrcode
from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError
from qrcode.image.pure import PyPNGImage

from ..auth import User, ensure_owner_or_admin
from ..db import Database
from ..errors import Conflict, Forbidden, Internal, InvalidArgument, InvalidState, NotFound
from ..security import new_qr_token
from ..utils import iso, now_utc, to_oid
from .events import find_ticket_type

logger = logging.getLogger(__name__)

TICKET_STATUSES = ("purchased", "used", "refunded", "expired")


def render_qr_data_url(data: str) -> str:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(image_factory=PyPNGImage)
    buf = io.BytesIO()
    img.save(buf)
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class TicketService:
    def __init__(self, db: Database, max_per_user: int = 10):
        self.db = db
        self.max_per_user = max_per_user

    # -------------------------
    # Issuance
    # -------------------------
    def purchase(
        self, event_id: str, ticket_type: str, quantity: int, buyer: User
    ) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        event = self._load_event(to_oid(event_id, "eventId"))
        if not event:
            raise NotFound("Event not found.")
        if event.get("status") != "published":
            raise InvalidState("Event is not available for purchase.")

        idx, tt = find_ticket_type(event, ticket_type)
        if tt is None:
            raise InvalidArgument("Invalid ticket type.", {"field": "ticketType"})
        if int(tt.get("available", 0)) < quantity:
            raise Conflict("Not enough tickets available.")

        held = self.db.tickets.count_documents(
            {"event_id": event["_id"], "buyer_id": buyer.oid, "status": "purchased"}
        )
        if held + quantity > self.max_per_user:
            raise Conflict(f"Maximum {self.max_per_user} tickets per user for this event.")

        reserved = self._reserve(event["_id"], idx, ticket_type, quantity)
        if not reserved:
            # another buyer drained the pool between the read and the update
            raise Conflict("Not enough tickets available.")

        unit_price = float(reserved["ticket_types"][idx]["price"])
        txn_id = ObjectId()
        now = now_utc()
        tickets = [
            {
                "_id": ObjectId(),
                "event_id": event["_id"],
                "buyer_id": buyer.oid,
                "type": ticket_type,
                "price": unit_price,
                "qr_code": new_qr_token(),
                "status": "purchased",
                "purchase_date": now,
                "used_date": None,
                "checked_in_by": None,
                "transaction_id": txn_id,
                "created_at": now,
                "updated_at": now,
            }
            for _ in range(quantity)
        ]
        transaction = {
            "_id": txn_id,
            "ticket_ids": [t["_id"] for t in tickets],
            "buyer_id": buyer.oid,
            "amount": round(unit_price * quantity, 2),
            "payment_method": None,
            "status": "pending",
            "gateway_transaction_id": None,
            "merchant_request_id": None,
            "payment_date": None,
            "created_at": now,
            "updated_at": now,
        }

        try:
            self.db.tickets.insert_many(tickets)
            self.db.transactions.insert_one(transaction)
        except PyMongoError:
            logger.exception("Failed to record purchase; releasing %d '%s' on event %s", quantity, ticket_type, event["_id"])
            self.db.tickets.delete_many({"transaction_id": txn_id})
            self.db.transactions.delete_one({"_id": txn_id})
            self._release(event["_id"], idx, ticket_type, quantity)
            raise Internal("Purchase could not be recorded. Please try again.")

        logger.info(
            "Issued %d '%s' tickets on event %s to %s (transaction %s)",
            quantity, ticket_type, event["_id"], buyer.email, txn_id,
        )
        return tickets, transaction

    def _load_event(self, event_oid: ObjectId) -> Optional[Dict[str, Any]]:
        return self.db.events.find_one({"_id": event_oid})

    def _reserve(self, event_oid: ObjectId, idx: int, ticket_type: str, quantity: int) -> Optional[Dict[str, Any]]:
        # Atomic oversell protection: only decrement while available >= quantity
        path = f"ticket_types.{idx}"
        return self.db.events.find_one_and_update(
            {
                "_id": event_oid,
                "status": "published",
                f"{path}.type": ticket_type,
                f"{path}.available": {"$gte": quantity},
            },
            {"$inc": {f"{path}.available": -quantity}, "$set": {"updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )

    def _release(self, event_oid: ObjectId, idx: int, ticket_type: str, quantity: int) -> None:
        path = f"ticket_types.{idx}"
        self.db.events.update_one(
            {"_id": event_oid, f"{path}.type": ticket_type},
            {"$inc": {f"{path}.available": quantity}, "$set": {"updated_at": now_utc()}},
        )

    # -------------------------
    # Reads
    # -------------------------
    def list_user_tickets(
        self, user_id: str, viewer: User, page: int = 1, limit: int = 10, status: str = ""
    ) -> Tuple[List[Tuple[Dict[str, Any], Optional[Dict[str, Any]]]], int]:
        ensure_owner_or_admin(viewer, user_id)
        query: Dict[str, Any] = {"buyer_id": to_oid(user_id, "userId")}
        if status:
            if status not in TICKET_STATUSES:
                raise InvalidArgument("Unknown ticket status.", {"field": "status"})
            query["status"] = status

        total = self.db.tickets.count_documents(query)
        docs = list(
            self.db.tickets.find(query).sort("purchase_date", DESCENDING).skip((page - 1) * limit).limit(limit)
        )
        event_ids = list({d["event_id"] for d in docs})
        events_map = {e["_id"]: e for e in self.db.events.find({"_id": {"$in": event_ids}})}
        return [(d, events_map.get(d["event_id"])) for d in docs], total

    def ticket_qr(self, ticket_id: str, viewer: User) -> Dict[str, Any]:
        ticket = self.db.tickets.find_one({"_id": to_oid(ticket_id, "ticketId")})
        if not ticket:
            raise NotFound("Ticket not found.")
        if viewer.role == "student" and ticket.get("buyer_id") != viewer.oid:
            raise Forbidden("Access denied.")

        event = self.db.events.find_one({"_id": ticket["event_id"]}) or {}
        buyer = self.db.users.find_one({"_id": ticket["buyer_id"]}, {"name": 1}) or {}
        summary = {
            "id": str(ticket["_id"]),
            "eventTitle": event.get("title", ""),
            "eventDate": iso(event.get("date")),
            "venue": event.get("venue", ""),
            "ticketType": ticket.get("type", ""),
            "qrCode": ticket.get("qr_code", ""),
            "status": ticket.get("status", ""),
            "buyerName": buyer.get("name", ""),
        }
        payload = json.dumps(
            {
                "ticketId": summary["id"],
                "qrCode": summary["qrCode"],
                "eventTitle": summary["eventTitle"],
                "eventDate": summary["eventDate"],
                "venue": summary["venue"],
                "ticketType": summary["ticketType"],
                "buyerName": summary["buyerName"],
            }
        )
        return {"qrCodeImage": render_qr_data_url(payload), "ticket": summary}
