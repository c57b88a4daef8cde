from datetime import datetime, timedelta, timezone

PASSWORD = "Passw0rdX"


def auth(account):
    return {"Authorization": f"Bearer {account['token']}"}


def register(client, name, email, role="student", university_id=None, password=PASSWORD):
    body = {"name": name, "email": email, "password": password, "role": role}
    if university_id:
        body["universityId"] = university_id
    r = client.post("/api/auth/register", json=body)
    assert r.status_code == 201, r.get_json()
    data = r.get_json()
    return {"user": data["user"], "token": data["token"], "refreshToken": data["refreshToken"]}


def login(client, email, password=PASSWORD):
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.get_json()
    data = r.get_json()
    return {"user": data["user"], "token": data["token"], "refreshToken": data["refreshToken"]}


def future(days=10):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def create_event(client, account, **overrides):
    body = {
        "title": "Spring Concert",
        "description": "Live music on the main quad.",
        "category": "cultural",
        "date": future(),
        "venue": "Main Quad",
        "capacity": 200,
        "ticketTypes": [{"type": "general", "price": 10.0, "quantity": 50}],
    }
    if "ticket_types" in overrides:
        body["ticketTypes"] = overrides.pop("ticket_types")
    body.update(overrides)
    r = client.post("/api/events", json=body, headers=auth(account))
    assert r.status_code == 201, r.get_json()
    return r.get_json()["event"]


def publish(client, account, event_id):
    r = client.post(f"/api/events/{event_id}/publish", headers=auth(account))
    assert r.status_code == 200, r.get_json()
    return r.get_json()["event"]


def buy(client, account, event_id, ticket_type="general", quantity=1):
    return client.post(
        "/api/tickets/buy",
        json={"eventId": event_id, "ticketType": ticket_type, "quantity": quantity},
        headers=auth(account),
    )


def pay(client, account, ticket_ids, method="cash", phone=None):
    body = {"ticketIds": ticket_ids, "paymentMethod": method}
    if phone:
        body["phoneNumber"] = phone
    return client.post("/api/payments/initiate", json=body, headers=auth(account))


def available(client, event_id, ticket_type="general"):
    event = client.get(f"/api/events/{event_id}").get_json()["event"]
    return next(t["available"] for t in event["ticketTypes"] if t["type"] == ticket_type)
