from tests.helpers import auth, buy, pay


def _sell(client, student, staff, event, quantity=2):
    purchase = buy(client, student, event["id"], quantity=quantity).get_json()
    ids = [t["id"] for t in purchase["tickets"]]
    assert pay(client, student, ids, "cash").status_code == 200
    ticket = purchase["tickets"][0]
    r = client.post(f"/api/tickets/{ticket['id']}/checkin", json={"qrCode": ticket["qrCode"]}, headers=auth(staff))
    assert r.status_code == 200
    return purchase


def test_student_dashboard(client, staff, student, other_student, published_event):
    _sell(client, student, staff, published_event)
    uid = student["user"]["id"]

    r = client.get(f"/api/dashboard/student/{uid}", headers=auth(student))
    assert r.status_code == 200
    dash = r.get_json()["dashboard"]
    assert dash["user"] == {"totalTickets": 2, "usedTickets": 1, "purchasedTickets": 1, "unreadNotifications": 1}
    assert dash["notifications"][0]["type"] == "payment_confirmation"
    assert len(dash["upcomingEvents"]) == 1
    assert dash["upcomingEvents"][0]["eventDetails"]["id"] == published_event["id"]
    assert dash["pastEvents"] == []
    assert len(dash["recentTickets"]) == 2

    assert client.get(f"/api/dashboard/student/{uid}", headers=auth(other_student)).status_code == 403


def test_staff_dashboard(client, staff, student, published_event):
    _sell(client, student, staff, published_event)
    r = client.get(f"/api/dashboard/staff/{staff['user']['id']}", headers=auth(staff))
    assert r.status_code == 200
    dash = r.get_json()["dashboard"]

    assert dash["stats"]["totalEvents"] == 1
    assert dash["stats"]["upcomingEvents"] == 1
    assert dash["stats"]["totalSales"] == 50.0
    assert dash["stats"]["totalTicketsPurchased"] == 2
    assert dash["salesByEvent"][0]["ticketsUsed"] == 1
    assert {a["buyer"]["email"] for a in dash["attendeeList"]} == {"alice@uni.test"}
    assert dash["recentActivity"][0]["eventTitle"] == published_event["title"]


def test_admin_dashboard(client, admin, staff, student, published_event):
    _sell(client, student, staff, published_event)
    assert client.get("/api/dashboard/admin", headers=auth(staff)).status_code == 403

    r = client.get("/api/dashboard/admin", headers=auth(admin))
    assert r.status_code == 200
    dash = r.get_json()["dashboard"]

    overview = dash["overview"]
    assert overview["totalUsers"] == 3
    assert overview["publishedEvents"] == 1
    assert overview["totalTickets"] == 2
    assert overview["usedTickets"] == 1
    assert overview["totalRevenue"] == 50.0

    assert dash["usersByRole"] == {"student": 1, "staff": 1, "admin": 1}
    assert dash["analytics"]["eventCategories"] == [{"category": "cultural", "count": 1}]
    assert dash["analytics"]["revenueTrend"][0]["revenue"] == 50.0
    assert dash["analytics"]["userGrowth"][0]["count"] == 3
    top = dash["analytics"]["topPerformingEvents"]
    assert top[0]["eventId"] == published_event["id"]
    assert top[0]["ticketsSold"] == 2
    assert top[0]["totalRevenue"] == 50.0
    assert len(dash["recentActivity"]["recentTransactions"]) == 1
