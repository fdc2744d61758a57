"""
HTTP surface: envelopes, admin session, mock gateway webhook, scanning.
"""
import json
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from eventpass.server import app


@pytest.fixture
def client():
    with TestClient(app, follow_redirects=False) as c:
        yield c


@pytest.fixture
def admin(client):
    r = client.post("/api/admin/login",
                    json={"username": "admin", "password": "door-pass"})
    assert r.status_code == 200
    return client


def make_event(client, quantity=5):
    r = client.post("/api/admin/events", json={
        "name": "Rooftop Jazz",
        "eventDate": (date.today() + timedelta(days=30)).isoformat(),
        "eventTime": "20:00",
        "venue": "Terrace",
        "ticketTypes": [{"name": "Standing", "price": 79_900,
                         "totalQuantity": quantity}],
    })
    assert r.status_code == 200, r.text
    return r.json()


def buy(client, phone="919812345678"):
    body = make_event(client)
    event = body["event"]
    user = client.post("/api/users", json={
        "phoneNumber": phone, "fullName": "Ravi Kumar",
        "email": "ravi@example.com",
    }).json()
    r = client.post("/api/orders", json={
        "userId": user["userId"], "eventId": event["eventId"],
        "ticketTypeId": event["ticketTypes"][0]["ticketTypeId"],
    })
    assert r.status_code == 200, r.text
    return r.json()


def deliver_webhook(client, ref, kind="succeeded"):
    gateway = app.state.services.gateway
    body = json.dumps(gateway.settle(ref, kind)).encode()
    return client.post("/payments/webhook", content=body, headers={
        "x-mockpay-signature": gateway.sign(body),
        "content-type": "application/json",
    })


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_login_failure(client):
    r = client.post("/api/admin/login",
                    json={"username": "admin", "password": "nope"})
    assert r.status_code == 401
    assert r.json()["success"] is False
    assert r.json()["kind"] == "unauthorized"


def test_admin_routes_need_a_session(client):
    r = client.post("/api/admin/scan", json={"qrData": "UE1"})
    assert r.status_code == 401
    assert r.json()["kind"] == "unauthorized"


def test_created_event_has_deep_link_and_qr(admin):
    body = make_event(admin)
    code = body["event"]["code"]
    assert code == f"EVT-{body['event']['eventId']}"
    assert code in body["deepLink"]
    assert body["qrCode"].startswith("data:image/png;base64,")

    listed = admin.get("/api/events").json()["events"]
    assert code in [e["code"] for e in listed]


def test_purchase_scan_and_redeem(admin):
    created = buy(admin)
    order = created["order"]
    assert "/mockpay/" in created["paymentUrl"]
    assert order["status"] == "pending"

    r = deliver_webhook(admin, order["providerReference"])
    assert r.json() == {"ok": True, "outcome": "applied"}

    detail = admin.get(f"/api/orders/{order['orderNumber']}").json()
    assert detail["order"]["status"] == "completed"
    assert detail["customerName"] == "Ravi Kumar"

    scan = admin.post("/api/admin/scan",
                      json={"qrData": order["orderNumber"]}).json()
    assert scan["alreadyScanned"] is False
    assert scan["order"]["orderId"] == order["orderId"]

    first = admin.post("/api/admin/scan/confirm",
                       json={"orderId": order["orderId"]})
    assert first.status_code == 200
    assert first.json()["scannedBy"] == "admin"

    second = admin.post("/api/admin/scan/confirm",
                        json={"orderId": order["orderId"]})
    assert second.status_code == 400
    assert second.json()["kind"] == "already_scanned"

    rescan = admin.post("/api/admin/scan",
                        json={"qrData": order["orderNumber"]}).json()
    assert rescan["alreadyScanned"] is True


def test_replayed_webhook_is_idempotent(admin):
    ref = buy(admin, phone="919812345679")["order"]["providerReference"]
    gateway = app.state.services.gateway
    body = json.dumps(gateway.settle(ref, "succeeded")).encode()
    headers = {"x-mockpay-signature": gateway.sign(body)}
    first = admin.post("/payments/webhook", content=body, headers=headers)
    second = admin.post("/payments/webhook", content=body, headers=headers)
    assert first.json()["outcome"] == "applied"
    assert second.json() == {"ok": True, "idempotent": True}


def test_cancelled_link_cancels_order(admin):
    order = buy(admin, phone="919812345670")["order"]
    r = deliver_webhook(admin, order["providerReference"], "canceled")
    assert r.json()["outcome"] == "cancelled"
    detail = admin.get(f"/api/orders/{order['orderNumber']}").json()
    assert detail["order"]["status"] == "cancelled"


def test_webhook_with_bad_signature(client):
    r = client.post("/payments/webhook", content=b'{"type":"x"}',
                    headers={"x-mockpay-signature": "forged"})
    assert r.status_code == 400


def test_callback_confirms_with_gateway(admin):
    order = buy(admin, phone="919812345671")["order"]
    ref = order["providerReference"]

    r = admin.get(f"/payments/callback?ref={ref}")
    assert r.status_code == 303
    assert "/payment/error" in r.headers["location"]

    app.state.services.gateway.settle(ref, "succeeded")
    r = admin.get(f"/payments/callback?ref={ref}")
    assert r.status_code == 303
    assert "/payment/success" in r.headers["location"]
    detail = admin.get(f"/api/orders/{order['orderNumber']}").json()
    assert detail["order"]["status"] == "completed"


def test_callback_for_unknown_reference(client):
    r = client.get("/payments/callback?ref=plink_nothing")
    assert r.status_code == 303
    assert r.headers["location"].endswith("/payment/error")


def test_whatsapp_verification(client):
    ok = client.get("/webhook/whatsapp", params={
        "hub.mode": "subscribe", "hub.verify_token": "verify-me",
        "hub.challenge": "12345",
    })
    assert ok.status_code == 200
    assert ok.text == "12345"

    bad = client.get("/webhook/whatsapp", params={
        "hub.mode": "subscribe", "hub.verify_token": "wrong",
        "hub.challenge": "12345",
    })
    assert bad.status_code == 403


def test_whatsapp_inbound_message(client):
    payload = {"entry": [{"changes": [{"value": {
        "contacts": [{"wa_id": "919800000099",
                      "profile": {"name": "Meera"}}],
        "messages": [{"from": "919800000099", "id": "wamid.srv1",
                      "type": "text", "text": {"body": "hi"}}],
    }}]}]}
    r = client.post("/webhook/whatsapp", json=payload)
    assert r.json() == {"ok": True, "handled": 1}

    status_only = {"entry": [{"changes": [{"value": {"statuses": [{}]}}]}]}
    r = client.post("/webhook/whatsapp", json=status_only)
    assert r.json()["handled"] == 0


def test_not_found_envelopes(client):
    missing = client.get("/api/orders/UE0000")
    assert missing.status_code == 404
    assert missing.json()["kind"] == "not_found"

    assert client.get("/s/doesnotexist").status_code == 404
    assert client.get("/api/events/999999").status_code == 404


def test_order_for_missing_fields(client):
    r = client.post("/api/orders", json={"eventId": 1})
    assert r.status_code == 400
    assert r.json()["kind"] == "invalid_input"


def test_order_price_comes_from_ticket_type(admin):
    event = make_event(admin)["event"]
    admin.post("/api/admin/logout")
    user = admin.post("/api/users", json={
        "phoneNumber": "919812345672", "fullName": "Ravi Kumar",
    }).json()
    r = admin.post("/api/orders", json={
        "userId": user["userId"], "eventId": event["eventId"],
        "ticketTypeId": event["ticketTypes"][0]["ticketTypeId"],
        "amount": 1,
    })
    assert r.status_code == 200
    assert r.json()["order"]["amount"] == 79_900
    assert app.state.services.gateway.links[
        r.json()["order"]["providerReference"]
    ]["amount"] == 79_900


def test_event_update_and_deactivate(admin):
    created = make_event(admin)
    event = created["event"]
    tt = event["ticketTypes"][0]

    r = admin.put(f"/api/admin/events/{event['eventId']}", json={
        "name": "Rooftop Jazz II", "venue": "Upper Terrace",
        "ticketTypes": [{"ticketTypeId": tt["ticketTypeId"],
                         "name": "Early Bird", "price": 59_900}],
    })
    assert r.status_code == 200, r.text
    updated = r.json()["event"]
    assert updated["name"] == "Rooftop Jazz II"
    assert updated["venue"] == "Upper Terrace"
    assert updated["ticketTypes"][0]["price"] == 59_900
    assert updated["ticketTypes"][0]["name"] == "Early Bird"
    assert updated["ticketTypes"][0]["availableQuantity"] == 5

    r = admin.delete(f"/api/admin/events/{event['eventId']}")
    assert r.json() == {"success": True, "message": "Event deactivated",
                        "eventId": event["eventId"]}
    assert admin.get(f"/api/events/{event['eventId']}").status_code == 404
    listed = admin.get("/api/events").json()["events"]
    assert event["code"] not in [e["code"] for e in listed]
    every = admin.get("/api/admin/events").json()["events"]
    assert {"code": event["code"], "isActive": False}.items() <= next(
        e for e in every if e["code"] == event["code"]
    ).items()


def test_event_update_rejects_bad_input(admin):
    event = make_event(admin)["event"]
    r = admin.put(f"/api/admin/events/{event['eventId']}",
                  json={"eventDate": "next friday"})
    assert r.status_code == 400
    r = admin.put(f"/api/admin/events/{event['eventId']}",
                  json={"ticketTypes": [{"ticketTypeId": 999999,
                                         "name": "Ghost", "price": 100}]})
    assert r.status_code == 404
    assert admin.put("/api/admin/events/999999",
                     json={"name": "x"}).status_code == 404
    assert admin.delete("/api/admin/events/999999").status_code == 404


def test_admin_order_list_and_stats(admin):
    before = admin.get("/api/admin/stats").json()["stats"]

    paid = buy(admin, phone="919812345673")["order"]
    deliver_webhook(admin, paid["providerReference"])
    pending = buy(admin, phone="919812345674")["order"]

    r = admin.get("/api/admin/orders", params={"status": "completed"})
    assert r.status_code == 200
    body = r.json()
    numbers = [o["orderNumber"] for o in body["orders"]]
    assert paid["orderNumber"] in numbers
    assert pending["orderNumber"] not in numbers
    assert all(o["status"] == "completed" for o in body["orders"])
    row = body["orders"][numbers.index(paid["orderNumber"])]
    assert row["customerName"] == "Ravi Kumar"
    assert row["eventName"] == "Rooftop Jazz"
    assert row["ticketType"] == "Standing"

    r = admin.get("/api/admin/orders", params={"status": "bogus"})
    assert r.status_code == 400

    after = admin.get("/api/admin/stats").json()["stats"]
    assert after["orders"]["completed"] == before["orders"]["completed"] + 1
    assert after["orders"]["pending"] == before["orders"]["pending"] + 1
    assert after["revenue"] == before["revenue"] + 79_900
    assert after["totalOrders"] == before["totalOrders"] + 2


def test_scanner_account_can_scan_but_not_administer(admin):
    r = admin.post("/api/admin/users", json={
        "username": "door1", "password": "gate-keeper-1",
        "fullName": "Front Door",
    })
    assert r.status_code == 200, r.text
    assert r.json()["user"]["role"] == "scanner"

    order = buy(admin, phone="919812345675")["order"]
    deliver_webhook(admin, order["providerReference"])

    door = TestClient(app, follow_redirects=False)
    r = door.post("/api/admin/login",
                  json={"username": "door1", "password": "gate-keeper-1"})
    assert r.json() == {"success": True, "username": "door1",
                        "role": "scanner"}

    r = door.post("/api/admin/scan/confirm", json={"orderId": order["orderId"]})
    assert r.status_code == 200
    assert r.json()["scannedBy"] == "door1"

    for path in ("/api/admin/orders", "/api/admin/events",
                 "/api/admin/stats", "/api/admin/users"):
        r = door.get(path)
        assert r.status_code == 403, path
        assert r.json()["kind"] == "forbidden"
    r = door.post(f"/api/orders/{order['orderId']}/payment-success", json={})
    assert r.status_code == 403

    listed = admin.get("/api/admin/users").json()["users"]
    assert "door1" in [u["username"] for u in listed]


def test_admin_account_validation_and_deactivation(admin):
    r = admin.post("/api/admin/users", json={
        "username": "door2", "password": "gate-keeper-2", "role": "janitor",
    })
    assert r.status_code == 400
    r = admin.post("/api/admin/users",
                   json={"username": "door2", "password": "short"})
    assert r.status_code == 400

    created = admin.post("/api/admin/users", json={
        "username": "door2", "password": "gate-keeper-2", "role": "admin",
    }).json()["user"]
    dup = admin.post("/api/admin/users",
                     json={"username": "door2", "password": "gate-keeper-2"})
    assert dup.status_code == 400

    r = admin.put(f"/api/admin/users/{created['adminId']}",
                  json={"isActive": False})
    assert r.json()["user"]["isActive"] is False

    other = TestClient(app, follow_redirects=False)
    r = other.post("/api/admin/login",
                   json={"username": "door2", "password": "gate-keeper-2"})
    assert r.status_code == 401
    assert admin.put("/api/admin/users/999999",
                     json={"role": "admin"}).status_code == 404
