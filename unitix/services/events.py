import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING, DESCENDING, ReturnDocument

from ..auth import User, ensure_owner_or_admin
from ..db import Database
from ..errors import Conflict, InvalidArgument, InvalidState, NotFound, Unauthenticated
from ..utils import now_utc, to_oid
from ..validators import EventCreateRequest, EventUpdateRequest, TicketTypeInput

logger = logging.getLogger(__name__)

# fields copied straight from an update request onto the event document
EVENT_FIELDS = (
    "title",
    "description",
    "category",
    "date",
    "end_date",
    "venue",
    "capacity",
    "tags",
    "requires_approval",
    "is_featured",
    "images",
    "videos",
)


def find_ticket_type(event: Dict[str, Any], ticket_type: str) -> Tuple[int, Optional[Dict[str, Any]]]:
    for idx, tt in enumerate(event.get("ticket_types", [])):
        if tt.get("type") == ticket_type:
            return idx, tt
    return -1, None


def issued_count(tt: Dict[str, Any]) -> int:
    return int(tt.get("quantity", 0)) - int(tt.get("available", 0))


def merge_ticket_types(current: List[Dict[str, Any]], incoming: List[TicketTypeInput]) -> List[Dict[str, Any]]:
    """Apply a new ticket-type list while keeping what was already issued.

    ``available`` is always recomputed as ``quantity - issued`` so it never
    exceeds ``quantity``.
    """
    by_type = {t["type"]: t for t in current}
    merged = []
    for item in incoming:
        old = by_type.pop(item.type, None)
        issued = issued_count(old) if old else 0
        if item.quantity < issued:
            raise Conflict(
                f"Quantity for '{item.type}' cannot be less than already issued ({issued}).",
                {"field": "ticketTypes"},
            )
        merged.append(
            {"type": item.type, "price": float(item.price), "quantity": item.quantity, "available": item.quantity - issued}
        )
    for leftover in by_type.values():
        if issued_count(leftover) > 0:
            raise Conflict(
                f"Cannot remove ticket type '{leftover['type']}' with issued tickets.", {"field": "ticketTypes"}
            )
    return merged


class EventService:
    def __init__(self, db: Database):
        self.db = db

    def _load(self, event_id: str) -> Dict[str, Any]:
        event = self.db.events.find_one({"_id": to_oid(event_id, "eventId")})
        if not event:
            raise NotFound("Event not found.")
        return event

    def list_events(
        self,
        page: int = 1,
        limit: int = 10,
        category: str = "",
        search: str = "",
        date: str = "",
        featured: bool = False,
    ) -> Tuple[List[Dict[str, Any]], int]:
        query: Dict[str, Any] = {"status": "published"}
        if category:
            query["category"] = category
        if search:
            query["$or"] = [
                {"title": {"$regex": re.escape(search), "$options": "i"}},
                {"description": {"$regex": re.escape(search), "$options": "i"}},
            ]
        if date == "upcoming":
            query["date"] = {"$gte": now_utc()}
        elif date == "past":
            query["date"] = {"$lt": now_utc()}
        if featured:
            query["is_featured"] = True

        total = self.db.events.count_documents(query)
        cursor = (
            self.db.events.find(query)
            .sort([("date", ASCENDING), ("created_at", DESCENDING)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return list(cursor), total

    def get_event(self, event_id: str, viewer: Optional[User]) -> Dict[str, Any]:
        event = self._load(event_id)
        if event.get("status") == "draft":
            if viewer is None:
                raise Unauthenticated()
            ensure_owner_or_admin(viewer, event.get("organizer_id"))
        return event

    def create_event(self, req: EventCreateRequest, organizer: User) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "title": req.title,
            "description": req.description,
            "category": req.category,
            "date": req.date,
            "end_date": req.end_date,
            "venue": req.venue,
            "capacity": req.capacity,
            "ticket_types": merge_ticket_types([], req.ticket_types),
            "organizer_id": organizer.oid,
            "images": req.images or [],
            "videos": req.videos or [],
            "status": "draft",
            "tags": req.tags or [],
            "is_featured": bool(req.is_featured),
            "requires_approval": bool(req.requires_approval),
            "published_at": None,
            "created_at": now_utc(),
            "updated_at": now_utc(),
        }
        res = self.db.events.insert_one(doc)
        logger.info("Event %s created by %s", res.inserted_id, organizer.email)
        return self.db.events.find_one({"_id": res.inserted_id})

    def update_event(self, event_id: str, req: EventUpdateRequest, actor: User) -> Dict[str, Any]:
        event = self._load(event_id)
        ensure_owner_or_admin(actor, event.get("organizer_id"))
        if event.get("status") != "draft" and not actor.is_admin:
            raise InvalidState(f"Cannot edit {event.get('status')} events.")

        data = req.model_dump(exclude_unset=True)
        updates: Dict[str, Any] = {}
        for field in EVENT_FIELDS:
            if field in data and (data[field] is not None or field == "end_date"):
                updates[field] = data[field]

        start = updates.get("date", event.get("date"))
        end = updates.get("end_date", event.get("end_date"))
        if start and end and end <= start:
            raise InvalidArgument("End date must be after start date.", {"field": "endDate"})

        query: Dict[str, Any] = {"_id": event["_id"]}
        if req.ticket_types is not None:
            updates["ticket_types"] = merge_ticket_types(event.get("ticket_types", []), req.ticket_types)
            # purchases decrement available concurrently; only write over the list we read
            query["ticket_types"] = event.get("ticket_types", [])

        updates["updated_at"] = now_utc()
        updated = self.db.events.find_one_and_update(query, {"$set": updates}, return_document=ReturnDocument.AFTER)
        if not updated:
            raise Conflict("Ticket inventory changed while updating; please retry.")
        return updated

    def publish_event(self, event_id: str, actor: User) -> Dict[str, Any]:
        event = self._load(event_id)
        ensure_owner_or_admin(actor, event.get("organizer_id"))
        status = event.get("status")
        if status == "published":
            return event
        if status != "draft":
            raise InvalidState(f"Cannot publish a {status} event.")

        updated = self.db.events.find_one_and_update(
            {"_id": event["_id"], "status": "draft"},
            {"$set": {"status": "published", "published_at": now_utc(), "updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise InvalidState("Event status changed; please reload.")
        logger.info("Event %s published", event["_id"])
        return updated

    def cancel_event(self, event_id: str, actor: User) -> Dict[str, Any]:
        event = self._load(event_id)
        ensure_owner_or_admin(actor, event.get("organizer_id"))
        if event.get("status") == "cancelled":
            return event

        sold = self.db.tickets.count_documents({"event_id": event["_id"], "status": "purchased"})
        if sold > 0 and not actor.is_admin:
            raise InvalidState("Cannot delete event with sold tickets.")

        # soft delete; ticket rows keep pointing at the event
        updated = self.db.events.find_one_and_update(
            {"_id": event["_id"]},
            {"$set": {"status": "cancelled", "updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        logger.info("Event %s cancelled by %s", event["_id"], actor.email)
        return updated
