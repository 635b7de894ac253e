from datetime import datetime
from enum import Enum
from typing import Optional

# Documents are stored with camelCase keys; collection names below.
DONATIONS = "donations"
CAMPAIGNS = "campaigns"
ADMINS = "admins"

ANONYMOUS_DONOR = "Anonymous"

# Razorpay caps each order note value at 256 characters. Pledge fields that
# ride on an order as notes must fit.
GATEWAY_NOTE_LIMIT = 256


class PaymentMethod(str, Enum):
    CARD = "card"
    UPI = "upi"
    UPI_ID = "upi-id"
    QR = "qr"

    @property
    def uses_gateway(self) -> bool:
        return self is not PaymentMethod.UPI_ID

    @property
    def reference_prefix(self) -> str:
        return self.value.replace("-", "").upper()


class DonationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class CampaignStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


# Filter a donation must satisfy to count towards a campaign and to be public.
COUNTED_DONATION = {"status": DonationStatus.COMPLETED.value, "approved": True}


def new_donation_document(
    *,
    donor_name: str,
    email: str,
    amount: float,
    campaign: str,
    payment_method: PaymentMethod,
    transaction_id: str,
    status: DonationStatus = DonationStatus.PENDING,
    approved: bool = False,
    is_anonymous: bool = False,
    phone: Optional[str] = None,
    message: Optional[str] = None,
    order_id: Optional[str] = None,
    payer_upi_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Build a donation document ready for insertion.

    The donor name is replaced with "Anonymous" here, so the real name of an
    anonymous donor never reaches the store. Contact fields are kept for
    receipts.
    """
    now = now or datetime.utcnow()
    document = {
        "donorName": ANONYMOUS_DONOR if is_anonymous else donor_name,
        "email": email,
        "phone": phone,
        "amount": amount,
        "campaign": campaign,
        "paymentMethod": payment_method.value,
        "transactionId": transaction_id,
        "status": status.value,
        "approved": approved,
        "isAnonymous": is_anonymous,
        "message": message or "",
        "createdAt": now,
        "updatedAt": now,
    }
    if order_id:
        document["orderId"] = order_id
    if payer_upi_id:
        document["payerUpiId"] = payer_upi_id
    return document


def counts_towards_campaign(donation: dict) -> bool:
    return donation.get("status") == DonationStatus.COMPLETED.value and donation.get("approved") is True
