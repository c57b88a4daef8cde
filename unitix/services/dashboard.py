"""Role-scoped read-only reporting. Nothing here writes."""
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List

from pymongo import DESCENDING

from ..auth import User, ensure_owner_or_admin
from ..db import Database
from ..serializers import event_summary, public_event, public_notification, public_ticket, public_transaction, public_user
from ..utils import iso, now_utc, to_oid

ISSUED = ("purchased", "used")


def _month_start(now: datetime, months_back: int) -> datetime:
    index = now.year * 12 + (now.month - 1) - months_back
    return datetime(index // 12, index % 12 + 1, 1)


def _bucket(rows: Iterable[Dict[str, Any]], field: str, fmt: str, amount: str = "") -> List[Dict[str, Any]]:
    buckets: Dict[str, Dict[str, Any]] = OrderedDict()
    for row in sorted(rows, key=lambda r: r[field]):
        key = row[field].strftime(fmt)
        b = buckets.setdefault(key, {"period": key, "count": 0})
        b["count"] += 1
        if amount:
            b["revenue"] = round(b.get("revenue", 0.0) + float(row.get(amount, 0.0)), 2)
    return list(buckets.values())


class DashboardService:
    def __init__(self, db: Database):
        self.db = db

    def _events_by_id(self, ids: Iterable[Any]) -> Dict[Any, Dict[str, Any]]:
        return {e["_id"]: e for e in self.db.events.find({"_id": {"$in": list(set(ids))}})}

    def student(self, user_id: str, viewer: User) -> Dict[str, Any]:
        ensure_owner_or_admin(viewer, user_id)
        uid = to_oid(user_id, "userId")
        now = now_utc()

        tickets = list(self.db.tickets.find({"buyer_id": uid}).sort("purchase_date", DESCENDING).limit(50))
        events = self._events_by_id(t["event_id"] for t in tickets)

        upcoming, past = [], []
        for t in tickets:
            ev = events.get(t["event_id"])
            if not ev or not ev.get("date"):
                continue
            if ev["date"] > now and t.get("status") == "purchased":
                upcoming.append(public_ticket(t, ev))
            elif ev["date"] <= now and t.get("status") in ISSUED:
                past.append(public_ticket(t, ev))

        notifications = list(
            self.db.notifications.find({"recipient_id": uid}).sort("created_at", DESCENDING).limit(10)
        )
        return {
            "user": {
                "totalTickets": self.db.tickets.count_documents({"buyer_id": uid}),
                "usedTickets": self.db.tickets.count_documents({"buyer_id": uid, "status": "used"}),
                "purchasedTickets": self.db.tickets.count_documents({"buyer_id": uid, "status": "purchased"}),
                "unreadNotifications": self.db.notifications.count_documents({"recipient_id": uid, "is_read": False}),
            },
            "upcomingEvents": upcoming[:5],
            "pastEvents": past[:5],
            "recentTickets": [public_ticket(t, events.get(t["event_id"])) for t in tickets[:3]],
            "notifications": [public_notification(n) for n in notifications],
        }

    def staff(self, user_id: str, viewer: User) -> Dict[str, Any]:
        ensure_owner_or_admin(viewer, user_id)
        uid = to_oid(user_id, "userId")
        now = now_utc()

        my_events = list(self.db.events.find({"organizer_id": uid}).sort("created_at", DESCENDING))
        events = {e["_id"]: e for e in my_events}
        tickets = list(
            self.db.tickets.find({"event_id": {"$in": list(events)}}).sort("purchase_date", DESCENDING)
        )

        txn_ids = list({t["transaction_id"] for t in tickets if t.get("transaction_id")})
        completed = {
            tx["_id"] for tx in self.db.transactions.find({"_id": {"$in": txn_ids}, "status": "completed"}, {"_id": 1})
        }
        buyers = {
            u["_id"]: u
            for u in self.db.users.find({"_id": {"$in": list({t["buyer_id"] for t in tickets})}}, {"name": 1, "email": 1})
        }

        per_event: Dict[Any, Dict[str, Any]] = {
            eid: {"event": event_summary(ev), "ticketsIssued": 0, "ticketsUsed": 0, "revenue": 0.0}
            for eid, ev in events.items()
        }
        for t in tickets:
            row = per_event[t["event_id"]]
            if t.get("status") in ISSUED:
                row["ticketsIssued"] += 1
            if t.get("status") == "used":
                row["ticketsUsed"] += 1
            if t.get("transaction_id") in completed and t.get("status") in ISSUED:
                row["revenue"] = round(row["revenue"] + float(t.get("price", 0.0)), 2)

        upcoming = [e for e in my_events if e.get("date") and e["date"] > now]

        def buyer_info(t: Dict[str, Any]) -> Dict[str, Any]:
            b = buyers.get(t["buyer_id"], {})
            return {"id": str(t["buyer_id"]), "name": b.get("name", ""), "email": b.get("email", "")}

        return {
            "stats": {
                "totalEvents": len(my_events),
                "upcomingEvents": len(upcoming),
                "pastEvents": len(my_events) - len(upcoming),
                "totalSales": round(sum(r["revenue"] for r in per_event.values()), 2),
                "totalTicketsSold": sum(r["ticketsUsed"] for r in per_event.values()),
                "totalTicketsPurchased": sum(r["ticketsIssued"] for r in per_event.values()),
            },
            "myEvents": [public_event(e) for e in my_events[:5]],
            "upcomingEvents": [public_event(e) for e in upcoming[:3]],
            "salesByEvent": sorted(per_event.values(), key=lambda r: r["revenue"], reverse=True),
            "recentActivity": [
                {
                    "type": "ticket_sold",
                    "ticketId": str(t["_id"]),
                    "eventTitle": events[t["event_id"]].get("title", ""),
                    "buyerName": buyer_info(t)["name"],
                    "purchaseDate": iso(t.get("purchase_date")),
                    "amount": float(t.get("price", 0.0)),
                }
                for t in tickets[:5]
            ],
            "attendeeList": [
                {
                    "ticket": public_ticket(t),
                    "buyer": buyer_info(t),
                    "event": event_summary(events[t["event_id"]]),
                    "status": t.get("status"),
                }
                for t in tickets[:10]
            ],
        }

    def admin(self) -> Dict[str, Any]:
        now = now_utc()
        users, events, tickets, txns = self.db.users, self.db.events, self.db.tickets, self.db.transactions

        revenue = list(txns.aggregate([
            {"$match": {"status": "completed"}},
            {"$group": {"_id": None, "total": {"$sum": "$amount"}}},
        ]))
        by_role = users.aggregate([
            {"$match": {"is_active": True}},
            {"$group": {"_id": "$role", "count": {"$sum": 1}}},
        ])
        by_category = events.aggregate([
            {"$match": {"status": "published"}},
            {"$group": {"_id": "$category", "count": {"$sum": 1}}},
            {"$sort": {"count": -1}},
        ])

        completed = list(
            txns.find({"status": "completed"}, {"_id": 1, "amount": 1, "payment_date": 1})
        )
        trend_rows = [
            tx for tx in completed if tx.get("payment_date") and tx["payment_date"] >= _month_start(now, 5)
        ]
        growth_rows = list(users.find({"created_at": {"$gte": now - timedelta(days=30)}}, {"created_at": 1}))

        top = list(tickets.aggregate([
            {"$match": {"transaction_id": {"$in": [tx["_id"] for tx in completed]}, "status": {"$in": list(ISSUED)}}},
            {"$group": {"_id": "$event_id", "totalRevenue": {"$sum": "$price"}, "ticketsSold": {"$sum": 1}}},
            {"$sort": {"totalRevenue": -1}},
            {"$limit": 10},
        ]))
        top_events = self._events_by_id(r["_id"] for r in top)

        return {
            "overview": {
                "totalUsers": users.count_documents({"is_active": True}),
                "totalEvents": events.count_documents({}),
                "publishedEvents": events.count_documents({"status": "published"}),
                "totalTickets": tickets.count_documents({}),
                "usedTickets": tickets.count_documents({"status": "used"}),
                "totalRevenue": round(float(revenue[0]["total"]), 2) if revenue else 0.0,
            },
            "usersByRole": {r["_id"]: r["count"] for r in by_role},
            "recentActivity": {
                "recentUsers": [public_user(u) for u in users.find().sort("created_at", DESCENDING).limit(5)],
                "recentEvents": [public_event(e) for e in events.find().sort("created_at", DESCENDING).limit(5)],
                "recentTransactions": [
                    public_transaction(tx) for tx in txns.find().sort("created_at", DESCENDING).limit(10)
                ],
            },
            "analytics": {
                "userGrowth": _bucket(growth_rows, "created_at", "%Y-%m-%d"),
                "eventCategories": [{"category": r["_id"], "count": r["count"]} for r in by_category],
                "revenueTrend": _bucket(trend_rows, "payment_date", "%Y-%m", amount="amount"),
                "topPerformingEvents": [
                    {
                        "eventId": str(r["_id"]),
                        "title": top_events.get(r["_id"], {}).get("title", ""),
                        "totalRevenue": round(float(r["totalRevenue"]), 2),
                        "ticketsSold": r["ticketsSold"],
                    }
                    for r in top
                ],
            },
        }
