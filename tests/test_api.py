from datetime import datetime, timedelta

import pytest

from auth import create_access_token, get_password_hash
from conftest import sign
from exceptions import GatewayError
from models import DonationStatus, PaymentMethod, new_donation_document

DESKTOP_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"
MOBILE_UA = "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 Mobile Safari/537.36"


@pytest.fixture
def upi_pledge():
    return {
        "donorName": "Asha",
        "email": "a@x.com",
        "amount": 500,
        "campaign": "Education for All",
        "paymentMethod": "upi-id",
        "upiId": "asha@upi",
    }


def completed(name, amount=300, campaign="Education for All", reference=None, **kwargs):
    return new_donation_document(
        donor_name=name, email=f"{name.lower()}@example.org", amount=amount, campaign=campaign,
        payment_method=PaymentMethod.CARD, transaction_id=reference or f"pay_{name}",
        status=DonationStatus.COMPLETED, approved=True, **kwargs
    )


# Donation intake

def test_upi_id_desktop_submission(client, donation_store, upi_pledge):
    resp = client.post("/api/donations", json=upi_pledge, headers={"User-Agent": DESKTOP_UA})

    assert resp.status_code == 201
    body = resp.json()
    assert body["action"] == "show_qr"
    assert body["paymentUri"].startswith("upi://pay?")
    assert body["qrCode"].startswith("data:image/png;base64,")
    assert donation_store.count({"status": "pending"}) == 1


def test_upi_id_mobile_submission(client, upi_pledge):
    resp = client.post("/api/donations", json=upi_pledge, headers={"User-Agent": MOBILE_UA})
    assert resp.status_code == 201
    assert resp.json()["action"] == "open_uri"


def test_invalid_submission_reports_fields(client, donation_store, upi_pledge):
    upi_pledge["amount"] = 0
    resp = client.post("/api/donations", json=upi_pledge)

    assert resp.status_code == 400
    assert any(err["field"].endswith("amount") for err in resp.json()["errors"])
    assert donation_store.count() == 0


def test_operator_injection_is_rejected(client, donation_store, upi_pledge):
    upi_pledge["campaign"] = {"$ne": None}
    resp = client.post("/api/donations", json=upi_pledge)
    assert resp.status_code == 400
    assert resp.json() == {"detail": "Invalid input detected"}
    assert donation_store.count() == 0


def test_script_payload_is_rejected(client, donation_store, upi_pledge):
    upi_pledge["message"] = "<script>alert(1)</script>"
    resp = client.post("/api/donations", json=upi_pledge)
    assert resp.status_code == 400
    assert donation_store.count() == 0


def test_checkout_and_verify(client, donation_store, pledge):
    checkout = client.post("/api/donations", json=pledge).json()
    assert checkout["action"] == "checkout"
    order_id = checkout["orderId"]

    resp = client.post("/api/donations/verify", json={
        "razorpay_payment_id": "pay_001",
        "razorpay_order_id": order_id,
        "razorpay_signature": sign(order_id, "pay_001"),
    })

    assert resp.status_code == 200
    assert resp.json()["transactionId"] == "pay_001"
    assert donation_store.find_by_transaction_id("pay_001")["status"] == "completed"

    stats = client.get("/api/campaigns/stats", params={"title": "Education for All"}).json()
    assert stats == {"title": "Education for All", "raised": 500, "donors": 1}


def test_forged_verification_is_rejected(client, donation_store, pledge):
    order_id = client.post("/api/donations", json=pledge).json()["orderId"]
    resp = client.post("/api/donations/verify", json={
        "paymentId": "pay_001", "orderId": order_id, "signature": "f" * 64,
    })
    assert resp.status_code == 400
    assert "verified" in resp.json()["detail"]
    assert donation_store.count() == 0


def test_gateway_outage_returns_502(client, gateway, pledge):
    gateway.fail_with = GatewayError("Razorpay request timed out: POST /orders")

    resp = client.post("/api/donations", json=pledge)

    assert resp.status_code == 502
    assert "timed out" not in resp.json()["detail"]


# Public reads

def test_recent_feed_shows_only_public_donations(client, donation_store):
    donation_store.insert(completed("Visible", message="Happy to help"))
    donation_store.insert(completed("Hidden", is_anonymous=True))
    donation_store.insert(new_donation_document(
        donor_name="Pending", email="p@x.com", amount=50, campaign="Education for All",
        payment_method=PaymentMethod.UPI_ID, transaction_id="UPIID_1",
    ))

    resp = client.get("/api/donations/recent")

    assert resp.status_code == 200
    feed = resp.json()
    assert [d["donorName"] for d in feed] == ["Visible"]
    assert set(feed[0]) == {"id", "donorName", "amount", "campaign", "date", "message"}


def test_recent_feed_limit_is_bounded(client):
    assert client.get("/api/donations/recent", params={"limit": 0}).status_code == 422
    assert client.get("/api/donations/recent", params={"limit": 51}).status_code == 422


def test_public_campaigns(client, campaign_store, donation_store):
    campaign_store.insert({"title": "A", "description": "a", "target": 1000, "status": "active", "createdAt": datetime.utcnow()})
    campaign_store.insert({"title": "B", "description": "b", "target": 500, "status": "active", "createdAt": datetime.utcnow()})
    campaign_store.insert({"title": "Old", "description": "c", "target": 500, "status": "closed", "createdAt": datetime.utcnow()})
    donation_store.insert(completed("Ravi", amount=400, campaign="A"))

    campaigns = {c["title"]: c for c in client.get("/api/campaigns").json()}

    assert set(campaigns) == {"A", "B"}
    assert (campaigns["A"]["raised"], campaigns["A"]["donors"]) == (400, 1)
    assert (campaigns["B"]["raised"], campaigns["B"]["donors"]) == (0, 0)


# Admin

@pytest.mark.parametrize("method, path", [
    ("get", "/api/admin/donations"),
    ("get", "/api/admin/dashboard-stats"),
    ("put", "/api/admin/donations/65a000000000000000000000/approve"),
    ("get", "/api/admin/donations/export"),
])
def test_admin_routes_require_token(client, method, path):
    resp = getattr(client, method)(path)
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"


def test_expired_token_is_rejected(client):
    token = create_access_token({"sub": "admin"}, expires_delta=timedelta(minutes=-1))
    resp = client.get("/api/admin/donations", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_login(client, admin_store):
    admin_store.insert({"username": "admin", "hashedPassword": get_password_hash("s3cret-pass"), "isActive": True})

    resp = client.post("/api/admin/login", json={"username": "admin", "password": "s3cret-pass"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]
    assert client.get("/api/admin/dashboard-stats", headers={"Authorization": f"Bearer {token}"}).status_code == 200

    resp = client.post("/api/admin/login", json={"username": "admin", "password": "wrong"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Incorrect username or password"


def test_change_password(client, admin_store, admin_headers):
    admin_store.insert({"username": "admin", "hashedPassword": get_password_hash("old-password"), "isActive": True})

    wrong = client.put("/api/admin/change-password", headers=admin_headers,
                       json={"current_password": "nope", "new_password": "new-password"})
    assert wrong.status_code == 400

    resp = client.put("/api/admin/change-password", headers=admin_headers,
                      json={"current_password": "old-password", "new_password": "new-password"})
    assert resp.status_code == 200
    login = client.post("/api/admin/login", json={"username": "admin", "password": "new-password"})
    assert login.status_code == 200


def test_admin_approves_upi_pledge(client, donation_store, admin_headers, upi_pledge):
    client.post("/api/donations", json=upi_pledge, headers={"User-Agent": MOBILE_UA})
    donations = client.get("/api/admin/donations", headers=admin_headers).json()
    assert len(donations) == 1
    assert donations[0]["status"] == "pending"
    assert donations[0]["email"] == "a@x.com"
    assert client.get("/api/donations/recent").json() == []

    resp = client.put(f"/api/admin/donations/{donations[0]['id']}/approve", headers=admin_headers)

    assert resp.status_code == 200
    assert resp.json()["approved"] is True
    assert [d["donorName"] for d in client.get("/api/donations/recent").json()] == ["Asha"]
    stats = client.get("/api/admin/dashboard-stats", headers=admin_headers).json()
    assert stats["approvedCount"] == 1
    assert stats["totalAmount"] == 500


def test_approving_unknown_donation_is_404(client, admin_headers):
    resp = client.put("/api/admin/donations/65a000000000000000000000/approve", headers=admin_headers)
    assert resp.status_code == 404


def test_admin_donation_detail(client, donation_store, admin_headers):
    donation_id = donation_store.insert(completed("Meera", phone="9876543210"))
    resp = client.get(f"/api/admin/donations/{donation_id}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["phone"] == "9876543210"


def test_admin_campaign_management(client, admin_headers, donation_store):
    created = client.post("/api/admin/campaigns", headers=admin_headers,
                          json={"title": "Food Drive", "description": "Meals", "target": 20000})
    assert created.status_code == 201
    campaign_id = created.json()["id"]

    duplicate = client.post("/api/admin/campaigns", headers=admin_headers,
                            json={"title": "Food Drive", "description": "Again"})
    assert duplicate.status_code == 400

    donation_store.insert(completed("Ravi", amount=1500, campaign="Food Drive"))
    updated = client.put(f"/api/admin/campaigns/{campaign_id}", headers=admin_headers, json={"status": "closed"})
    assert updated.status_code == 200
    assert updated.json()["raised"] == 1500

    assert client.get("/api/campaigns").json() == []
    assert len(client.get("/api/admin/campaigns", headers=admin_headers).json()) == 1


def test_csv_export(client, donation_store, admin_headers):
    donation_store.insert(completed("Meera"))
    resp = client.get("/api/admin/donations/export", headers=admin_headers)

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "attachment; filename=donations_" in resp.headers["content-disposition"]
    lines = resp.text.strip().splitlines()
    assert lines[0].startswith("Transaction ID,Donor Name,Email")
    assert "pay_Meera" in lines[1]


def test_export_rejects_unknown_format(client, admin_headers):
    resp = client.get("/api/admin/donations/export", params={"format": "pdf"}, headers=admin_headers)
    assert resp.status_code == 422


def test_health_without_database(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["database"] == "unavailable"


def test_qr_donation_is_recorded_once_paid(client, donation_store, gateway, pledge):
    pledge["paymentMethod"] = "qr"
    qr_id = client.post("/api/donations", json=pledge).json()["qrId"]

    pending = client.post(f"/api/donations/qr/{qr_id}/confirm")
    assert pending.status_code == 200
    assert pending.json()["status"] == "pending"
    assert donation_store.count() == 0

    gateway.pay_qr(qr_id, "pay_qr1")
    resp = client.post(f"/api/donations/qr/{qr_id}/confirm")

    assert resp.status_code == 200
    assert resp.json()["transactionId"] == "pay_qr1"
    stats = client.get("/api/campaigns/stats", params={"title": "Education for All"}).json()
    assert (stats["raised"], stats["donors"]) == (500, 1)


def test_unknown_qr_id_is_404(client):
    assert client.post("/api/donations/qr/not-a-qr/confirm").status_code == 404


def test_gateway_calls_run_off_the_event_loop(client, gateway, pledge):
    order_id = client.post("/api/donations", json=pledge).json()["orderId"]
    client.post("/api/donations/verify", json={
        "paymentId": "pay_001", "orderId": order_id, "signature": sign(order_id, "pay_001"),
    })

    assert [path for _, path, _ in gateway.calls] == ["/orders", f"/orders/{order_id}"]
    assert gateway.called_on_event_loop is False


def test_plain_text_with_equals_sign_is_accepted(client, donation_store, upi_pledge):
    upi_pledge["message"] = "Matching donations=2x this month, count me in"
    resp = client.post("/api/donations", json=upi_pledge, headers={"User-Agent": MOBILE_UA})
    assert resp.status_code == 201
    assert donation_store.find_many()[0]["message"].startswith("Matching donations=2x")


def test_html_event_handler_is_rejected(client, donation_store, upi_pledge):
    upi_pledge["message"] = '<img src=x onerror="alert(1)">'
    resp = client.post("/api/donations", json=upi_pledge)
    assert resp.status_code == 400
    assert donation_store.count() == 0


def test_campaign_status_must_be_known(client, admin_headers, campaign_store):
    campaign_id = campaign_store.insert({"title": "A", "description": "a", "target": 1000, "status": "active"})
    resp = client.put(f"/api/admin/campaigns/{campaign_id}", headers=admin_headers, json={"status": "paused"})
    assert resp.status_code == 422
