"""Payment initiation and settlement.

No real gateway is wired in. Card and mobile-money outcomes come from a
``SettlementPolicy`` so tests can pin them, and the mobile-money push is
settled later by ``SettlementScheduler`` unless the gateway callback gets
there first. Every settlement write only applies to a transaction that is
still ``pending``, so whichever path arrives second is a no-op.
"""
import logging
import random
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument

from ..auth import User
from ..db import Database
from ..errors import InvalidArgument, InvalidState, NotFound
from ..utils import now_utc, to_oid

logger = logging.getLogger(__name__)


class SettlementPolicy:
    def approve(self, method: str, amount: float) -> bool:
        raise NotImplementedError


class RandomSettlementPolicy(SettlementPolicy):
    """Approves with a fixed probability per method; seed ``rng`` for repeatable runs."""

    def __init__(self, rates: Dict[str, float], rng: Optional[random.Random] = None):
        self.rates = dict(rates)
        self.rng = rng or random.Random()
        self._lock = threading.Lock()

    def approve(self, method: str, amount: float) -> bool:
        rate = self.rates.get(method, 1.0)
        with self._lock:
            return self.rng.random() < rate


class FixedSettlementPolicy(SettlementPolicy):
    def __init__(self, approve: bool = True):
        self.outcome = approve

    def approve(self, method: str, amount: float) -> bool:
        return self.outcome


class SettlementScheduler:
    """Runs delayed settlements on timer threads, one cancellable timer per key."""

    def __init__(self):
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._closed = False

    def schedule(self, key: str, delay: float, fn: Callable[[], Any]) -> str:
        timer = threading.Timer(delay, lambda: self._run(key, timer, fn))
        timer.daemon = True
        with self._lock:
            if self._closed:
                raise RuntimeError("Scheduler is shut down.")
            previous = self._timers.pop(key, None)
            if previous:
                previous.cancel()
            self._timers[key] = timer
        timer.start()
        return key

    def _run(self, key: str, timer: threading.Timer, fn: Callable[[], Any]) -> None:
        with self._lock:
            # a reschedule under the same key may already own the slot
            if self._timers.get(key) is timer:
                del self._timers[key]
        try:
            fn()
        except Exception:
            logger.exception("Scheduled settlement %s failed", key)

    def cancel(self, key: str) -> bool:
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def pending(self) -> List[str]:
        with self._lock:
            return list(self._timers)

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()


def _reference(prefix: str) -> str:
    return f"{prefix}{int(time.time() * 1000)}"


class PaymentService:
    def __init__(
        self,
        db: Database,
        policy: SettlementPolicy,
        scheduler: SettlementScheduler,
        mobile_money_delay: float = 5.0,
    ):
        self.db = db
        self.policy = policy
        self.scheduler = scheduler
        self.mobile_money_delay = mobile_money_delay

    # -------------------------
    # Initiation
    # -------------------------
    def pay(
        self, ticket_ids: List[str], method: str, buyer: User, phone_number: Optional[str] = None
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        oids = [to_oid(t, "ticketIds") for t in ticket_ids]
        tickets = list(self.db.tickets.find({"_id": {"$in": oids}, "buyer_id": buyer.oid, "status": "purchased"}))
        if len(tickets) != len(oids):
            raise NotFound("Some tickets not found or not authorized.")

        total = round(sum(float(t.get("price", 0.0)) for t in tickets), 2)
        txn = self._transaction_for(tickets, oids, buyer, total)
        self.db.transactions.update_one(
            {"_id": txn["_id"], "status": "pending"},
            {
                "$set": {
                    "payment_method": method,
                    "amount": total,
                    "phone_number": phone_number,
                    "updated_at": now_utc(),
                }
            },
        )

        if method == "cash":
            response = self._pay_cash(txn["_id"], total)
        elif method == "card":
            response = self._pay_card(txn["_id"], total)
        elif method == "mobile-money":
            response = self._pay_mobile_money(txn["_id"], total, phone_number)
        else:
            raise InvalidArgument("Unsupported payment method.", {"field": "paymentMethod"})

        return self.db.transactions.find_one({"_id": txn["_id"]}), response

    def _transaction_for(
        self, tickets: List[Dict[str, Any]], oids: List[ObjectId], buyer: User, total: float
    ) -> Dict[str, Any]:
        """Reuse the pending transaction that covers exactly these tickets, or open a new one."""
        linked = {t.get("transaction_id") for t in tickets if t.get("transaction_id")}
        existing = list(self.db.transactions.find({"_id": {"$in": list(linked)}})) if linked else []
        if any(tx.get("status") == "completed" for tx in existing):
            raise InvalidState("Some tickets have already been paid for.")

        if len(existing) == 1 and all(t.get("transaction_id") for t in tickets):
            tx = existing[0]
            if tx.get("status") == "pending" and set(tx.get("ticket_ids", [])) == set(oids):
                return tx

        now = now_utc()
        tx = {
            "_id": ObjectId(),
            "ticket_ids": oids,
            "buyer_id": buyer.oid,
            "amount": total,
            "payment_method": None,
            "status": "pending",
            "gateway_transaction_id": None,
            "merchant_request_id": None,
            "payment_date": None,
            "created_at": now,
            "updated_at": now,
        }
        self.db.transactions.insert_one(tx)
        self.db.tickets.update_many({"_id": {"$in": oids}}, {"$set": {"transaction_id": tx["_id"], "updated_at": now}})

        for old in existing:
            if old.get("status") == "pending":
                self.scheduler.cancel(str(old["_id"]))
                self.settle(old["_id"], "failed", failure_reason=f"Superseded by transaction {tx['_id']}")
        return tx

    def _pay_cash(self, txn_oid: ObjectId, total: float) -> Dict[str, Any]:
        # settled physically at the venue
        self.settle(txn_oid, "completed", payment_date=now_utc())
        return {"status": "completed", "message": "Cash payment recorded.", "amount": total}

    def _pay_card(self, txn_oid: ObjectId, total: float) -> Dict[str, Any]:
        if self.policy.approve("card", total):
            ref = _reference("CARD")
            self.settle(txn_oid, "completed", payment_date=now_utc(), gateway_transaction_id=ref)
            return {
                "status": "completed",
                "message": "Card payment processed successfully.",
                "amount": total,
                "transactionId": ref,
            }

        self.settle(txn_oid, "failed", failure_reason="Card payment declined")
        return {"status": "failed", "message": "Card payment declined.", "amount": total}

    def _pay_mobile_money(self, txn_oid: ObjectId, total: float, phone_number: Optional[str]) -> Dict[str, Any]:
        merchant_request_id = f"MR-{uuid.uuid4().hex}"
        self.db.transactions.update_one(
            {"_id": txn_oid}, {"$set": {"merchant_request_id": merchant_request_id, "updated_at": now_utc()}}
        )
        logger.info("Mobile money push to %s for %.2f (transaction %s)", phone_number, total, txn_oid)
        self.scheduler.schedule(str(txn_oid), self.mobile_money_delay, lambda: self.settle_simulated_push(txn_oid))
        return {
            "status": "pending",
            "message": "Mobile money push initiated. Please check your phone.",
            "phoneNumber": phone_number,
            "amount": total,
            "reference": str(txn_oid),
            "merchantRequestId": merchant_request_id,
        }

    # -------------------------
    # Settlement
    # -------------------------
    def settle(self, txn_oid: ObjectId, status: str, **fields: Any) -> bool:
        """Move a pending transaction to ``status``. Returns False if it was already settled."""
        tx = self.db.transactions.find_one_and_update(
            {"_id": txn_oid, "status": "pending"},
            {"$set": {"status": status, "updated_at": now_utc(), **fields}},
            return_document=ReturnDocument.AFTER,
        )
        if tx is None:
            logger.info("Transaction %s already settled; ignoring %s", txn_oid, status)
            return False

        logger.info("Transaction %s settled as %s", txn_oid, status)
        if status == "completed":
            self._notify_paid(tx)
        return True

    def _notify_paid(self, tx: Dict[str, Any]) -> None:
        ticket_ids = tx.get("ticket_ids") or []
        first = self.db.tickets.find_one({"_id": ticket_ids[0]}, {"event_id": 1}) if ticket_ids else None
        self.db.notifications.insert_one(
            {
                "recipient_id": tx.get("buyer_id"),
                "event_id": first.get("event_id") if first else None,
                "ticket_id": ticket_ids[0] if ticket_ids else None,
                "type": "payment_confirmation",
                "title": "Payment received",
                "message": f"Your payment of {float(tx.get('amount', 0.0)):.2f} for {len(ticket_ids)} ticket(s) was received.",
                "is_read": False,
                "created_at": now_utc(),
            }
        )

    def settle_simulated_push(self, txn_oid: ObjectId) -> bool:
        tx = self.db.transactions.find_one({"_id": txn_oid})
        if not tx or tx.get("status") != "pending":
            return False
        if self.policy.approve("mobile-money", float(tx.get("amount", 0.0))):
            return self.settle(
                txn_oid, "completed", payment_date=now_utc(), gateway_transaction_id=_reference("MP")
            )
        return self.settle(txn_oid, "failed", failure_reason="Mobile money payment was not completed")

    def handle_mpesa_callback(self, payload: Any) -> Tuple[Dict[str, Any], bool]:
        body = payload.get("Body") if isinstance(payload, dict) else None
        callback = body.get("stkCallback") if isinstance(body, dict) else None
        if not isinstance(callback, dict) or not callback.get("MerchantRequestID"):
            raise InvalidArgument("Invalid callback format.")

        tx = self.db.transactions.find_one({"merchant_request_id": callback["MerchantRequestID"]})
        if not tx:
            raise NotFound("Transaction not found.")

        paid = str(callback.get("ResultCode")) == "0"
        fields = _callback_fields(callback) if paid else {}

        # the gateway answered; the simulated push must not race it
        self.scheduler.cancel(str(tx["_id"]))

        if paid:
            applied = self.settle(tx["_id"], "completed", **fields)
        else:
            applied = self.settle(tx["_id"], "failed", failure_reason=callback.get("ResultDesc") or "Payment failed")

        return self.db.transactions.find_one({"_id": tx["_id"]}), applied


def _callback_fields(callback: Dict[str, Any]) -> Dict[str, Any]:
    """Settlement fields from a successful ``stkCallback``; raises InvalidArgument on bad metadata."""
    metadata = callback.get("CallbackMetadata") or {}
    items = metadata.get("Item") if isinstance(metadata, dict) else None
    if items is not None and not isinstance(items, list):
        raise InvalidArgument("Invalid callback metadata.")
    meta = {i.get("Name"): i.get("Value") for i in items or [] if isinstance(i, dict)}

    fields: Dict[str, Any] = {
        "payment_date": now_utc(),
        "gateway_transaction_id": callback.get("CheckoutRequestID"),
    }
    amount = meta.get("Amount")
    if amount is not None:
        if isinstance(amount, bool):
            raise InvalidArgument("Invalid callback amount.")
        try:
            fields["paid_amount"] = float(amount)
        except (TypeError, ValueError):
            raise InvalidArgument("Invalid callback amount.")
    phone = meta.get("PhoneNumber")
    if phone is not None:
        if not isinstance(phone, (str, int)) or isinstance(phone, bool):
            raise InvalidArgument("Invalid callback phone number.")
        fields["phone_number"] = str(phone)
    receipt = meta.get("MpesaReceiptNumber")
    if receipt:
        if not isinstance(receipt, str):
            raise InvalidArgument("Invalid callback receipt number.")
        fields["gateway_receipt"] = receipt
    return fields
