import logging
from typing import Any, Dict

from pymongo import ReturnDocument

from ..auth import User
from ..db import Database
from ..errors import AlreadyUsed, EventExpired, InvalidArgument, InvalidState, NotFound
from ..utils import now_utc, to_oid

logger = logging.getLogger(__name__)


class CheckInService:
    """purchased -> used, once, at the door."""

    def __init__(self, db: Database):
        self.db = db

    def check_in(self, ticket_id: str, qr_code: str, staff: User) -> Dict[str, Any]:
        ticket = self.db.tickets.find_one({"_id": to_oid(ticket_id, "ticketId")})
        if not ticket:
            raise NotFound("Ticket not found.")
        if ticket.get("qr_code") != qr_code:
            raise InvalidArgument("Invalid QR code.", {"field": "qrCode"})

        status = ticket.get("status")
        if status == "used":
            raise AlreadyUsed()
        if status != "purchased":
            raise InvalidState("Ticket is not valid for check-in.", status=400)

        event = self.db.events.find_one({"_id": ticket["event_id"]})
        if not event:
            raise NotFound("Event not found.")
        now = now_utc()
        event_date = event.get("date")
        if event_date and event_date < now and event_date.date() != now.date():
            raise EventExpired()

        updated = self.db.tickets.find_one_and_update(
            {"_id": ticket["_id"], "status": "purchased"},
            {"$set": {"status": "used", "used_date": now, "checked_in_by": staff.oid, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            # a concurrent scan won
            raise AlreadyUsed()

        logger.info("Ticket %s checked in by %s", ticket["_id"], staff.email)
        return updated
