"""
Razorpay gateway client.

Amounts cross this boundary in whole rupees; the provider works in paise.
The conversion happens here and nowhere else.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import requests

import config
from exceptions import GatewayError

logger = logging.getLogger(__name__)

PAISE_PER_RUPEE = 100


def to_paise(amount: float) -> int:
    return int(round(float(amount) * PAISE_PER_RUPEE))


def from_paise(amount: int) -> float:
    return amount / PAISE_PER_RUPEE


@dataclass
class GatewayOrder:
    order_id: str
    amount: float
    currency: str
    status: str = "created"
    notes: dict = field(default_factory=dict)

    @classmethod
    def from_response(cls, data: dict) -> "GatewayOrder":
        return cls(
            order_id=data["id"],
            amount=from_paise(int(data.get("amount", 0))),
            currency=data.get("currency", config.CURRENCY),
            status=data.get("status", "created"),
            notes=data.get("notes") or {},
        )


@dataclass
class GatewayQrCode:
    """A single-use, fixed-amount UPI QR code issued by the gateway."""
    qr_id: str
    image_url: str
    amount: float
    status: str = "active"
    notes: dict = field(default_factory=dict)

    @classmethod
    def from_response(cls, data: dict) -> "GatewayQrCode":
        return cls(
            qr_id=data["id"],
            image_url=data.get("image_url", ""),
            amount=from_paise(int(data.get("payment_amount", 0))),
            status=data.get("status", "active"),
            notes=data.get("notes") or {},
        )


@dataclass
class GatewayPayment:
    payment_id: str
    amount: float
    currency: str
    status: str

    @property
    def captured(self) -> bool:
        return self.status == "captured"

    @classmethod
    def from_response(cls, data: dict) -> "GatewayPayment":
        return cls(
            payment_id=data["id"],
            amount=from_paise(int(data.get("amount", 0))),
            currency=data.get("currency", config.CURRENCY),
            status=data.get("status", ""),
        )

class RazorpayClient:
    """Order creation and payment signature checks against Razorpay."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        api_base: str = config.RAZORPAY_API_BASE,
        timeout: float = config.GATEWAY_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.key_id = key_id
        self._key_secret = key_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self._key_secret)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.configured:
            raise GatewayError("Razorpay credentials are not configured")
        url = f"{self.api_base}{path}"
        try:
            resp = self.session.request(
                method, url, auth=(self.key_id, self._key_secret), timeout=self.timeout, **kwargs
            )
        except requests.Timeout as e:
            raise GatewayError(f"Razorpay request timed out: {method} {path}") from e
        except requests.RequestException as e:
            raise GatewayError(f"Razorpay request failed: {e}") from e

        if resp.status_code >= 400:
            try:
                description = resp.json().get("error", {}).get("description", resp.text)
            except ValueError:
                description = resp.text
            raise GatewayError(f"Razorpay rejected {method} {path} ({resp.status_code}): {description}")

        try:
            return resp.json()
        except ValueError as e:
            raise GatewayError(f"Razorpay returned a non-JSON body for {method} {path}") from e

    def create_order(
        self,
        amount: float,
        currency: str = config.CURRENCY,
        receipt: Optional[str] = None,
        notes: Optional[dict] = None,
    ) -> GatewayOrder:
        """Create an order for ``amount`` rupees."""
        payload = {"amount": to_paise(amount), "currency": currency}
        if receipt:
            payload["receipt"] = receipt[:40]
        if notes:
            payload["notes"] = notes
        order = GatewayOrder.from_response(self._request("POST", "/orders", json=payload))
        logger.info(f"Created gateway order {order.order_id} for {order.amount} {order.currency}")
        return order

    def fetch_order(self, order_id: str) -> GatewayOrder:
        return GatewayOrder.from_response(self._request("GET", f"/orders/{order_id}"))

    def create_qr_code(
        self,
        amount: float,
        name: str,
        description: str,
        notes: Optional[dict] = None,
        close_by: Optional[int] = None,
    ) -> GatewayQrCode:
        """Create a single-use UPI QR code that only accepts exactly ``amount`` rupees.

        Payments made by scanning it are captured and tracked by the gateway.
        """
        payload = {
            "type": "upi_qr",
            "name": name,
            "usage": "single_use",
            "fixed_amount": True,
            "payment_amount": to_paise(amount),
            "description": description,
        }
        if notes:
            payload["notes"] = notes
        if close_by:
            payload["close_by"] = int(close_by)
        qr = GatewayQrCode.from_response(self._request("POST", "/payments/qr_codes", json=payload))
        logger.info(f"Created gateway QR code {qr.qr_id} for {qr.amount}")
        return qr

    def fetch_qr_code(self, qr_id: str) -> GatewayQrCode:
        return GatewayQrCode.from_response(self._request("GET", f"/payments/qr_codes/{qr_id}"))

    def fetch_qr_payments(self, qr_id: str) -> List[GatewayPayment]:
        data = self._request("GET", f"/payments/qr_codes/{qr_id}/payments")
        return [GatewayPayment.from_response(item) for item in data.get("items", [])]

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Check the checkout signature: HMAC-SHA256 of ``order_id|payment_id`` keyed with the secret."""
        if not self._key_secret or not signature:
            return False
        expected = hmac.new(
            self._key_secret.encode("utf-8"),
            f"{order_id}|{payment_id}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)


def create_gateway_client() -> RazorpayClient:
    return RazorpayClient(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET)
