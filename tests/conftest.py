import asyncio
import hashlib
import hmac

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from database import get_db
from donations import DonationService
from main import app, get_gateway
from payments import RazorpayClient
from security_middleware import limiter
from store import AdminStore, CampaignStore, DonationStore

KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret"


def sign(order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


class StubGateway(RazorpayClient):
    """Razorpay client answering its HTTP calls from memory."""

    def __init__(self):
        super().__init__(KEY_ID, KEY_SECRET, api_base="https://gateway.invalid/v1")
        self.orders = {}
        self.qr_codes = {}
        self.qr_payments = {}
        self.calls = []
        self.fail_with = None
        self.called_on_event_loop = False

    def pay_qr(self, qr_id, payment_id, status="captured"):
        """Simulate a payer scanning the code and paying it."""
        qr = self.qr_codes[qr_id]
        self.qr_payments[qr_id].append({
            "id": payment_id, "amount": qr["payment_amount"], "currency": "INR", "status": status,
        })

    def _request(self, method, path, **kwargs):
        self.calls.append((method, path, kwargs.get("json")))
        try:
            asyncio.get_running_loop()
            self.called_on_event_loop = True
        except RuntimeError:
            pass
        if self.fail_with is not None:
            raise self.fail_with
        if method == "POST" and path == "/orders":
            payload = kwargs["json"]
            order = {
                "id": f"order_test{len(self.orders) + 1}",
                "amount": payload["amount"],
                "currency": payload["currency"],
                "status": "created",
                "notes": payload.get("notes", {}),
            }
            self.orders[order["id"]] = order
            return order
        if method == "GET" and path.startswith("/orders/"):
            return self.orders[path.rsplit("/", 1)[1]]
        if method == "POST" and path == "/payments/qr_codes":
            payload = kwargs["json"]
            qr = dict(payload, id=f"qr_test{len(self.qr_codes) + 1}", status="active")
            qr["image_url"] = f"https://rzp.invalid/{qr['id']}.png"
            self.qr_codes[qr["id"]] = qr
            self.qr_payments[qr["id"]] = []
            return qr
        if method == "GET" and path.startswith("/payments/qr_codes/"):
            parts = path.split("/")
            qr_id = parts[3]
            if path.endswith("/payments"):
                return {"entity": "collection", "count": len(self.qr_payments[qr_id]), "items": self.qr_payments[qr_id]}
            return self.qr_codes[qr_id]
        raise AssertionError(f"unexpected gateway call {method} {path}")


@pytest.fixture
def db():
    return mongomock.MongoClient()["ngo_donations_test"]


@pytest.fixture
def donation_store(db):
    store = DonationStore(db)
    store.ensure_indexes()
    return store


@pytest.fixture
def campaign_store(db):
    return CampaignStore(db)


@pytest.fixture
def admin_store(db):
    return AdminStore(db)


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def service(donation_store, gateway):
    return DonationService(donation_store, gateway, payee_address="ngo@upi", payee_name="Test NGO")


@pytest.fixture
def client(db, gateway, donation_store):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True


@pytest.fixture
def admin_headers():
    token = create_access_token({"sub": "admin"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def pledge():
    return {
        "donorName": "Asha",
        "email": "a@x.com",
        "amount": 500,
        "campaign": "Education for All",
        "paymentMethod": "card",
    }
