"""
Donation lifecycle.

Three payment paths lead to a donation record:

* hosted checkout (``card``/``upi``): a gateway order is created and nothing
  is stored until the signed checkout callback is verified;
* UPI address intent (``upi-id``): a ``pending`` record is stored right away
  and waits for an admin to confirm the money arrived;
* gateway QR (``qr``): the gateway issues a single-use QR code for the exact
  amount, and the record is only written once the gateway reports a captured
  payment against it.

Verified donations are stored ``completed`` and ``approved``. Everything else
becomes visible only after ``approve_donation``.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import List, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

import config
from exceptions import NotFoundError, ValidationError, VerificationError
from models import (
    ANONYMOUS_DONOR,
    COUNTED_DONATION,
    DonationStatus,
    PaymentMethod,
    counts_towards_campaign,
    new_donation_document,
)
from payments import RazorpayClient
from schemas import DonationPledge, UpiIdPledge
from store import NEWEST_FIRST, DonationStore
from upi import (
    build_upi_uri,
    generate_correlation_id,
    is_mobile_user_agent,
    render_qr_data_url,
)
from visibility import PUBLIC_DONATION_FILTER, public_recent_donations, to_admin_donation

logger = logging.getLogger(__name__)

pledge_adapter = TypeAdapter(DonationPledge)

REQUIRED_NOTES = ("donorName", "email", "campaign", "paymentMethod")
QR_ID_PATTERN = re.compile(r'^qr_[A-Za-z0-9]+$')


@dataclass
class LifecycleResult:
    """Outcome of a lifecycle step.

    ``response`` goes back to the caller, ``event`` names the realtime
    notification to send to admins (``None`` when nothing changed).
    """
    response: dict
    donation: Optional[dict] = None
    event: Optional[str] = None


def parse_pledge(payload) -> DonationPledge:
    try:
        return pledge_adapter.validate_python(payload)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        summary = "; ".join(f"{err['field']}: {err['message']}" for err in errors)
        raise ValidationError(f"Invalid donation details ({summary})", errors=errors) from e


def pledge_notes(pledge) -> dict:
    """Pledge details carried on a gateway order or QR code until the payment is confirmed.

    Field lengths are bounded by the pledge schema, so every value fits in a note.
    """
    notes = {
        "donorName": ANONYMOUS_DONOR if pledge.is_anonymous else pledge.donor_name,
        "email": pledge.email,
        "phone": pledge.phone or "",
        "campaign": pledge.campaign,
        "paymentMethod": pledge.payment_method,
        "isAnonymous": "true" if pledge.is_anonymous else "false",
        "message": pledge.message or "",
    }
    return {k: str(v) for k, v in notes.items()}


class DonationService:
    def __init__(
        self,
        donations: DonationStore,
        gateway: RazorpayClient,
        payee_address: str = config.UPI_PAYEE_ADDRESS,
        payee_name: str = config.UPI_PAYEE_NAME,
        currency: str = config.CURRENCY,
        qr_ttl_minutes: int = config.QR_CODE_TTL_MINUTES,
    ):
        self.donations = donations
        self.gateway = gateway
        self.payee_address = payee_address
        self.payee_name = payee_name
        self.currency = currency
        self.qr_ttl_minutes = qr_ttl_minutes

    # Intake

    def submit_donation(self, payload, user_agent: Optional[str] = None) -> LifecycleResult:
        """Validate a pledge and start the payment path its method selects."""
        pledge = parse_pledge(payload)
        method = PaymentMethod(pledge.payment_method)

        if not method.uses_gateway:
            return self._submit_address_intent(pledge, user_agent)
        if method is PaymentMethod.QR:
            return self._submit_gateway_qr(pledge)

        order = self.gateway.create_order(
            pledge.amount,
            currency=self.currency,
            receipt=generate_correlation_id(method.reference_prefix),
            notes=pledge_notes(pledge),
        )
        return LifecycleResult({
            "action": "checkout",
            "orderId": order.order_id,
            "amount": order.amount,
            "currency": order.currency,
            "keyId": self.gateway.key_id,
        })

    def _submit_gateway_qr(self, pledge) -> LifecycleResult:
        close_by = int(time.time()) + self.qr_ttl_minutes * 60 if self.qr_ttl_minutes else None
        qr = self.gateway.create_qr_code(
            pledge.amount,
            name=self.payee_name,
            description=f"Donation to {pledge.campaign}",
            notes=pledge_notes(pledge),
            close_by=close_by,
        )
        return LifecycleResult({
            "action": "show_qr",
            "qrId": qr.qr_id,
            "amount": qr.amount,
            "currency": self.currency,
            "qrCode": qr.image_url,
        })

    def _submit_address_intent(self, pledge: UpiIdPledge, user_agent: Optional[str]) -> LifecycleResult:
        method = PaymentMethod.UPI_ID
        reference = generate_correlation_id(method.reference_prefix)
        document = new_donation_document(
            donor_name=pledge.donor_name,
            email=pledge.email,
            phone=pledge.phone,
            amount=pledge.amount,
            campaign=pledge.campaign,
            payment_method=method,
            transaction_id=reference,
            is_anonymous=pledge.is_anonymous,
            message=pledge.message,
            payer_upi_id=pledge.upi_id,
        )
        self.donations.insert(document)
        logger.info(f"Pending UPI donation {reference} recorded for campaign '{pledge.campaign}'")

        payment_uri = build_upi_uri(
            self.payee_address,
            self.payee_name,
            pledge.amount,
            note=f"Donation {reference}",
            reference=reference,
            currency=self.currency,
        )
        response = {
            "action": "open_uri",
            "transactionId": reference,
            "status": DonationStatus.PENDING.value,
            "amount": pledge.amount,
            "paymentUri": payment_uri,
        }
        if not is_mobile_user_agent(user_agent):
            response["action"] = "show_qr"
            response["qrCode"] = render_qr_data_url(payment_uri)
        return LifecycleResult(response, donation=document, event="donation_pledged")

    # Verification

    def verify_and_finalize(self, payment_id: str, order_id: str, signature: str) -> LifecycleResult:
        """Check a checkout signature and store the donation as completed and approved.

        Keyed on the gateway payment id, so a repeated callback updates the
        same record instead of adding a second one.
        """
        if not self.gateway.verify_signature(order_id, payment_id, signature):
            logger.warning(f"Signature mismatch for order {order_id}, payment {payment_id}")
            raise VerificationError(f"Signature mismatch for order {order_id}")

        existing = self._finalized(payment_id)
        if existing:
            return LifecycleResult(self._finalized_response(existing), donation=existing)

        order = self.gateway.fetch_order(order_id)
        document = self._document_from_notes(order.notes, order.amount, payment_id, order.order_id)
        return self._finalize(payment_id, document)

    def confirm_qr_payment(self, qr_id: str) -> LifecycleResult:
        """Record the payment captured against a gateway QR code, if there is one yet.

        The gateway is asked directly with the server's credentials, so the
        caller only names the code. Until a payment is captured nothing is
        written and the response reports ``pending``.
        """
        if not QR_ID_PATTERN.match(qr_id or ""):
            raise NotFoundError("QR code not found")

        captured = [p for p in self.gateway.fetch_qr_payments(qr_id) if p.captured]
        if not captured:
            return LifecycleResult({"success": False, "qrId": qr_id, "status": DonationStatus.PENDING.value})

        payment = captured[0]
        existing = self._finalized(payment.payment_id)
        if existing:
            return LifecycleResult(self._finalized_response(existing), donation=existing)

        qr = self.gateway.fetch_qr_code(qr_id)
        document = self._document_from_notes(qr.notes, payment.amount, payment.payment_id, qr.qr_id)
        return self._finalize(payment.payment_id, document)

    def _finalized(self, payment_id: str) -> Optional[dict]:
        existing = self.donations.find_by_transaction_id(payment_id)
        if existing and counts_towards_campaign(existing):
            logger.info(f"Payment {payment_id} already finalized")
            return existing
        return None

    def _finalize(self, payment_id: str, document: dict) -> LifecycleResult:
        set_fields = {"status": DonationStatus.COMPLETED.value, "approved": True}
        insert_fields = {
            k: v for k, v in document.items()
            if k not in ("status", "approved", "transactionId", "updatedAt")
        }
        donation = self.donations.upsert_by_transaction_id(payment_id, set_fields, insert_fields)
        logger.info(f"Payment {payment_id} verified, donation of {donation['amount']} to '{donation['campaign']}' completed")
        return LifecycleResult(self._finalized_response(donation), donation=donation, event="donation_completed")

    def _document_from_notes(self, notes: dict, amount: float, payment_id: str, gateway_reference: str) -> dict:
        notes = notes or {}
        missing = [key for key in REQUIRED_NOTES if not notes.get(key)]
        if missing:
            raise VerificationError(f"{gateway_reference} carries no pledge details (missing {', '.join(missing)})")
        try:
            method = PaymentMethod(notes["paymentMethod"])
        except ValueError as e:
            raise VerificationError(f"{gateway_reference} has unknown payment method {notes['paymentMethod']!r}") from e

        is_anonymous = str(notes.get("isAnonymous", "false")).lower() == "true"
        return new_donation_document(
            donor_name=notes["donorName"],
            email=notes["email"],
            phone=notes.get("phone") or None,
            amount=amount,
            campaign=notes["campaign"],
            payment_method=method,
            transaction_id=payment_id,
            status=DonationStatus.COMPLETED,
            approved=True,
            is_anonymous=is_anonymous,
            message=notes.get("message"),
            order_id=gateway_reference,
        )

    @staticmethod
    def _finalized_response(donation: dict) -> dict:
        return {
            "success": True,
            "transactionId": donation["transactionId"],
            "status": donation["status"],
            "amount": donation["amount"],
            "campaign": donation["campaign"],
        }

    # Admin actions

    def approve_donation(self, donation_id: str, admin: str) -> LifecycleResult:
        """Mark a donation as received and approved. Approving twice changes nothing."""
        donation = self.donations.mark_approved(donation_id, admin)
        if donation is None:
            existing = self.donations.find_by_id(donation_id)
            if not existing:
                raise NotFoundError("Donation not found")
            return LifecycleResult(to_admin_donation(existing), donation=existing)

        logger.info(f"Donation {donation_id} approved by {admin}")
        return LifecycleResult(to_admin_donation(donation), donation=donation, event="donation_approved")

    def get_donation(self, donation_id: str) -> dict:
        donation = self.donations.find_by_id(donation_id)
        if not donation:
            raise NotFoundError("Donation not found")
        return to_admin_donation(donation)

    # Reads

    def list_public_recent_donations(self, limit: int = config.RECENT_DONATIONS_LIMIT) -> List[dict]:
        found = self.donations.find_many(PUBLIC_DONATION_FILTER, sort=NEWEST_FIRST, limit=limit)
        return public_recent_donations(found)

    def list_all_donations_for_admin(
        self,
        status: Optional[str] = None,
        payment_method: Optional[str] = None,
        campaign: Optional[str] = None,
        approved: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[dict]:
        filter = {}
        if status and status != "all":
            filter["status"] = status
        if payment_method and payment_method != "all":
            filter["paymentMethod"] = payment_method
        if campaign and campaign != "all":
            filter["campaign"] = campaign
        if approved is not None:
            filter["approved"] = approved
        found = self.donations.find_many(filter, sort=NEWEST_FIRST, skip=skip, limit=limit)
        return [to_admin_donation(d) for d in found]

    def dashboard_stats(self) -> dict:
        counted = self.donations.find_many(COUNTED_DONATION)
        return {
            "totalDonations": self.donations.count(),
            "completedCount": self.donations.count({"status": DonationStatus.COMPLETED.value}),
            "pendingCount": self.donations.count({"status": DonationStatus.PENDING.value}),
            "approvedCount": self.donations.count({"approved": True}),
            "totalAmount": round(sum(d.get("amount", 0) for d in counted), 2),
        }
