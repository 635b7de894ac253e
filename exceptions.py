"""
Error taxonomy for the donation lifecycle.

Each error carries the HTTP status it maps to and the message a public
caller may see. The raw cause stays in the log.
"""

from typing import Optional


class DonationError(Exception):
    status_code = 500
    public_message = "Something went wrong. Please try again later."

    def __init__(self, message: str, public_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if public_message is not None:
            self.public_message = public_message


class ValidationError(DonationError):
    """Bad caller input. Never retried."""
    status_code = 400

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message, public_message=message)
        self.errors = errors or []


class AuthError(DonationError):
    status_code = 401
    public_message = "Could not validate credentials"


class NotFoundError(DonationError):
    status_code = 404

    def __init__(self, message: str):
        super().__init__(message, public_message=message)


class GatewayError(DonationError):
    """Payment provider unavailable, timed out, or rejected the request."""
    status_code = 502
    public_message = "Payment service is temporarily unavailable. Please try again later."


class VerificationError(DonationError):
    """Payment signature did not match the order."""
    status_code = 400
    public_message = "Payment could not be verified. Please start the donation again."


class PersistenceError(DonationError):
    status_code = 500
    public_message = "Could not save your donation. Please try again later."
