import random

import pytest
from bson import ObjectId

from unitix.services.payments import FixedSettlementPolicy, RandomSettlementPolicy, SettlementScheduler

from tests.helpers import auth, buy, pay

PHONE = "+254712345678"


def _buy(client, account, event, quantity=1):
    r = buy(client, account, event["id"], quantity=quantity)
    assert r.status_code == 201
    return r.get_json()


def _callback(merchant_request_id, result_code=0, desc="The service request is processed successfully."):
    callback = {
        "MerchantRequestID": merchant_request_id,
        "CheckoutRequestID": "ws_CO_123",
        "ResultCode": result_code,
        "ResultDesc": desc,
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": 25},
                {"Name": "MpesaReceiptNumber", "Value": "QK123ABC"},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": callback}}


def test_cash_completes_synchronously(client, db, student, published_event):
    purchase = _buy(client, student, published_event, quantity=2)
    ids = [t["id"] for t in purchase["tickets"]]

    r = pay(client, student, ids, "cash")
    assert r.status_code == 200
    body = r.get_json()
    assert body["paymentResponse"]["status"] == "completed"
    assert body["transaction"]["status"] == "completed"
    assert body["transaction"]["paymentMethod"] == "cash"
    assert body["totalAmount"] == 50.0
    # reuses the purchase transaction
    assert body["transaction"]["id"] == purchase["transaction"]["id"]
    assert db.transactions.count_documents({}) == 1

    again = pay(client, student, ids, "cash")
    assert again.status_code == 409


def test_card_declined(client, policy, student, published_event):
    policy.outcome = False
    purchase = _buy(client, student, published_event)
    r = pay(client, student, [purchase["tickets"][0]["id"]], "card")
    assert r.status_code == 200
    assert r.get_json()["transaction"]["status"] == "failed"
    assert r.get_json()["transaction"]["failureReason"] == "Card payment declined"


def test_card_approved_has_reference(client, student, published_event):
    purchase = _buy(client, student, published_event)
    r = pay(client, student, [purchase["tickets"][0]["id"]], "card")
    body = r.get_json()
    assert body["transaction"]["status"] == "completed"
    assert body["paymentResponse"]["transactionId"].startswith("CARD")
    assert body["transaction"]["gatewayTransactionId"] == body["paymentResponse"]["transactionId"]


def test_seeded_policy_is_repeatable():
    rates = {"card": 0.5, "mobile-money": 0.5}
    a = RandomSettlementPolicy(rates, random.Random(42))
    b = RandomSettlementPolicy(rates, random.Random(42))
    assert [a.approve("card", 10) for _ in range(20)] == [b.approve("card", 10) for _ in range(20)]

    always = RandomSettlementPolicy({"card": 1.0}, random.Random(1))
    never = RandomSettlementPolicy({"card": 0.0}, random.Random(1))
    assert all(always.approve("card", 1) for _ in range(10))
    assert not any(never.approve("card", 1) for _ in range(10))


def test_payment_requires_own_purchased_tickets(client, student, other_student, published_event):
    purchase = _buy(client, student, published_event)
    tid = purchase["tickets"][0]["id"]

    assert pay(client, other_student, [tid], "cash").status_code == 404
    assert pay(client, student, [str(ObjectId())], "cash").status_code == 404
    assert pay(client, student, [tid], "bitcoin").status_code == 400


def test_mobile_money_requires_phone(client, student, published_event):
    purchase = _buy(client, student, published_event)
    r = pay(client, student, [purchase["tickets"][0]["id"]], "mobile-money")
    assert r.status_code == 400
    r = pay(client, student, [purchase["tickets"][0]["id"]], "mobile-money", phone="12345")
    assert r.status_code == 400


def test_mobile_money_settles_later(client, db, scheduler, student, published_event):
    purchase = _buy(client, student, published_event)
    r = pay(client, student, [purchase["tickets"][0]["id"]], "mpesa", phone=PHONE)
    assert r.status_code == 200
    body = r.get_json()
    assert body["paymentResponse"]["status"] == "pending"
    assert body["transaction"]["status"] == "pending"
    assert body["transaction"]["paymentMethod"] == "mobile-money"
    assert scheduler.pending() == [body["transaction"]["id"]]
    assert scheduler.delays[body["transaction"]["id"]] == 5

    scheduler.run_all()
    tx = db.transactions.find_one({"_id": ObjectId(body["transaction"]["id"])})
    assert tx["status"] == "completed"
    assert tx["gateway_transaction_id"].startswith("MP")


def test_mpesa_callback_completes_and_replay_is_noop(client, db, scheduler, student, published_event):
    purchase = _buy(client, student, published_event)
    body = pay(client, student, [purchase["tickets"][0]["id"]], "mobile-money", phone=PHONE).get_json()
    merchant_id = body["paymentResponse"]["merchantRequestId"]

    r = client.post("/api/payments/callback/mpesa", json=_callback(merchant_id))
    assert r.status_code == 200
    assert r.get_json()["status"] == "completed"
    assert r.get_json()["message"] == "Callback processed successfully."
    # the simulated push no longer races the gateway
    assert scheduler.pending() == []

    tx = db.transactions.find_one({"merchant_request_id": merchant_id})
    assert tx["gateway_receipt"] == "QK123ABC"
    assert tx["paid_amount"] == 25.0
    settled_at = tx["updated_at"]

    replay = client.post("/api/payments/callback/mpesa", json=_callback(merchant_id, 1032, "Request cancelled by user"))
    assert replay.status_code == 200
    assert replay.get_json()["success"] is True
    assert replay.get_json()["message"] == "Callback already processed."
    tx = db.transactions.find_one({"merchant_request_id": merchant_id})
    assert tx["status"] == "completed"
    assert tx["updated_at"] == settled_at


def test_mpesa_callback_failure(client, db, student, published_event):
    purchase = _buy(client, student, published_event)
    body = pay(client, student, [purchase["tickets"][0]["id"]], "mobile-money", phone=PHONE).get_json()
    merchant_id = body["paymentResponse"]["merchantRequestId"]

    r = client.post("/api/payments/callback/mpesa", json=_callback(merchant_id, 1032, "Request cancelled by user"))
    assert r.get_json()["status"] == "failed"
    tx = db.transactions.find_one({"merchant_request_id": merchant_id})
    assert tx["failure_reason"] == "Request cancelled by user"


def test_callback_validation(client):
    assert client.post("/api/payments/callback/mpesa", json={"Body": {}}).status_code == 400
    assert client.post("/api/payments/callback/mpesa", json=_callback("MR-unknown")).status_code == 404
    assert client.post("/api/payments/callback/paypal", json={}).status_code == 404


def test_callback_with_bad_amount_keeps_transaction_pending(client, db, scheduler, student, published_event):
    purchase = _buy(client, student, published_event)
    body = pay(client, student, [purchase["tickets"][0]["id"]], "mobile-money", phone=PHONE).get_json()
    merchant_id = body["paymentResponse"]["merchantRequestId"]
    tx_id = body["transaction"]["id"]

    bad = _callback(merchant_id)
    bad["Body"]["stkCallback"]["CallbackMetadata"]["Item"][0]["Value"] = "KES 25"
    r = client.post("/api/payments/callback/mpesa", json=bad)
    assert r.status_code == 400
    assert r.get_json()["code"] == "validation_error"
    assert db.transactions.find_one({"_id": ObjectId(tx_id)})["status"] == "pending"
    # the simulated push is still armed
    assert scheduler.pending() == [tx_id]

    r = client.post("/api/payments/callback/mpesa", json=_callback(merchant_id))
    assert r.status_code == 200
    assert r.get_json()["status"] == "completed"
    assert scheduler.pending() == []


def test_new_selection_supersedes_pending_transaction(client, db, student, published_event):
    first = _buy(client, student, published_event)
    second = _buy(client, student, published_event)
    ids = [first["tickets"][0]["id"], second["tickets"][0]["id"]]

    r = pay(client, student, ids, "cash")
    assert r.status_code == 200
    new_id = r.get_json()["transaction"]["id"]
    assert new_id not in (first["transaction"]["id"], second["transaction"]["id"])
    assert r.get_json()["totalAmount"] == 50.0

    for old in (first, second):
        tx = db.transactions.find_one({"_id": ObjectId(old["transaction"]["id"])})
        assert tx["status"] == "failed"
        assert tx["failure_reason"].startswith("Superseded")
    assert db.tickets.count_documents({"transaction_id": ObjectId(new_id)}) == 2


def test_settle_only_moves_pending(app):
    payments = app.extensions["unitix.services"].payments
    oid = ObjectId()
    app.extensions["unitix.db"].transactions.insert_one({"_id": oid, "status": "pending", "amount": 5.0})

    assert payments.settle(oid, "completed") is True
    assert payments.settle(oid, "failed", failure_reason="late") is False
    assert app.extensions["unitix.db"].transactions.find_one({"_id": oid})["status"] == "completed"


def test_scheduler_cancel_and_shutdown():
    fired = []
    sched = SettlementScheduler()
    sched.schedule("a", 60, lambda: fired.append("a"))
    sched.schedule("b", 60, lambda: fired.append("b"))
    assert sorted(sched.pending()) == ["a", "b"]

    assert sched.cancel("a") is True
    assert sched.cancel("a") is False
    sched.shutdown()
    assert sched.pending() == []
    with pytest.raises(RuntimeError):
        sched.schedule("c", 1, lambda: None)
    assert fired == []


def test_stale_timer_does_not_evict_rescheduled_key():
    fired = []
    sched = SettlementScheduler()
    sched.schedule("k", 60, lambda: fired.append("first"))
    stale = sched._timers["k"]
    sched.schedule("k", 60, lambda: fired.append("second"))

    # the replaced timer fires anyway, racing its own cancel
    sched._run("k", stale, lambda: fired.append("first"))
    assert fired == ["first"]
    assert sched.pending() == ["k"]

    current = sched._timers["k"]
    sched._run("k", current, lambda: fired.append("second"))
    assert fired == ["first", "second"]
    assert sched.pending() == []
    sched.shutdown()


def test_fixed_policy():
    assert FixedSettlementPolicy().approve("card", 1) is True
    assert FixedSettlementPolicy(approve=False).approve("mobile-money", 1) is False
