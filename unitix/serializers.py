from typing import Any, Dict, Optional

from .utils import iso, oid_str


def public_user(u: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(u["_id"]),
        "name": u.get("name", ""),
        "email": u.get("email", ""),
        "role": u.get("role", "student"),
        "universityId": u.get("university_id"),
        "profilePic": u.get("profile_pic"),
        "phone": u.get("phone"),
        "department": u.get("department"),
        "isActive": bool(u.get("is_active", True)),
        "lastLogin": iso(u.get("last_login")),
        "createdAt": iso(u.get("created_at")),
    }


def public_ticket_type(t: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": t.get("type", ""),
        "price": float(t.get("price", 0.0)),
        "quantity": int(t.get("quantity", 0)),
        "available": int(t.get("available", 0)),
    }


def public_event(e: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(e["_id"]),
        "title": e.get("title", ""),
        "description": e.get("description", ""),
        "category": e.get("category", ""),
        "date": iso(e.get("date")),
        "endDate": iso(e.get("end_date")),
        "venue": e.get("venue", ""),
        "capacity": int(e.get("capacity", 0)),
        "ticketTypes": [public_ticket_type(t) for t in e.get("ticket_types", [])],
        "organizer": oid_str(e.get("organizer_id")),
        "images": list(e.get("images", [])),
        "videos": list(e.get("videos", [])),
        "status": e.get("status", "draft"),
        "tags": list(e.get("tags", [])),
        "isFeatured": bool(e.get("is_featured", False)),
        "requiresApproval": bool(e.get("requires_approval", False)),
        "publishedAt": iso(e.get("published_at")),
        "createdAt": iso(e.get("created_at")),
        "updatedAt": iso(e.get("updated_at")),
    }


def event_summary(e: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(e["_id"]),
        "title": e.get("title", ""),
        "date": iso(e.get("date")),
        "venue": e.get("venue", ""),
        "status": e.get("status", ""),
        "category": e.get("category", ""),
    }


def public_ticket(t: Dict[str, Any], event_doc: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    out = {
        "id": str(t["_id"]),
        "event": oid_str(t.get("event_id")),
        "buyer": oid_str(t.get("buyer_id")),
        "type": t.get("type", ""),
        "price": float(t.get("price", 0.0)),
        "qrCode": t.get("qr_code", ""),
        "status": t.get("status", "purchased"),
        "purchaseDate": iso(t.get("purchase_date")),
        "usedDate": iso(t.get("used_date")),
        "checkedInBy": oid_str(t.get("checked_in_by")),
        "transactionId": oid_str(t.get("transaction_id")),
    }
    if event_doc:
        out["eventDetails"] = event_summary(event_doc)
    return out


def public_transaction(tx: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(tx["_id"]),
        "tickets": [str(t) for t in tx.get("ticket_ids", [])],
        "buyer": oid_str(tx.get("buyer_id")),
        "amount": round(float(tx.get("amount", 0.0)), 2),
        "paymentMethod": tx.get("payment_method"),
        "status": tx.get("status", "pending"),
        "gatewayTransactionId": tx.get("gateway_transaction_id"),
        "merchantRequestId": tx.get("merchant_request_id"),
        "failureReason": tx.get("failure_reason"),
        "paymentDate": iso(tx.get("payment_date")),
        "createdAt": iso(tx.get("created_at")),
    }


def public_notification(n: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(n["_id"]),
        "recipient": oid_str(n.get("recipient_id")),
        "event": oid_str(n.get("event_id")),
        "ticket": oid_str(n.get("ticket_id")),
        "type": n.get("type", ""),
        "title": n.get("title", ""),
        "message": n.get("message", ""),
        "isRead": bool(n.get("is_read", False)),
        "createdAt": iso(n.get("created_at")),
    }
