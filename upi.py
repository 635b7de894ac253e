"""
UPI payment intents.

Builds ``upi://pay`` deep links for the organization's payee address and
renders them as scannable QR codes for desktop browsers.
"""

import base64
import re
import time
import uuid
from io import BytesIO
from typing import Optional
from urllib.parse import quote, urlencode

import qrcode
from qrcode.image.pil import PilImage

UPI_ID_PATTERN = re.compile(r'^[\w.\-]{2,256}@[a-zA-Z][a-zA-Z0-9.\-]{1,64}$')
MOBILE_UA_PATTERN = re.compile(r'Android|iPhone|iPad|iPod|Mobile|Opera Mini|IEMobile|BlackBerry', re.IGNORECASE)

QR_BOX_SIZE = 10
QR_BORDER = 2


def is_valid_upi_id(value: Optional[str]) -> bool:
    """A UPI address looks like ``handle@provider``."""
    if not value:
        return False
    return bool(UPI_ID_PATTERN.match(value.strip()))


def is_mobile_user_agent(user_agent: Optional[str]) -> bool:
    if not user_agent:
        return False
    return bool(MOBILE_UA_PATTERN.search(user_agent))


def generate_correlation_id(prefix: str) -> str:
    """Local reference of the form ``<PREFIX>_<epoch ms>_<9 random chars>``."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def format_amount(amount: float) -> str:
    if float(amount).is_integer():
        return str(int(amount))
    return f"{amount:.2f}"


def build_upi_uri(
    payee_address: str,
    payee_name: str,
    amount: float,
    note: str,
    reference: Optional[str] = None,
    currency: str = "INR",
) -> str:
    """Build a ``upi://pay`` link. The amount is in whole rupees."""
    params = {
        "pa": payee_address,
        "pn": payee_name,
        "am": format_amount(amount),
        "cu": currency,
        "tn": note,
    }
    if reference:
        params["tr"] = reference
    return "upi://pay?" + urlencode(params, quote_via=quote, safe="@")


def render_qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=QR_BOX_SIZE,
        border=QR_BORDER,
        image_factory=PilImage,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def render_qr_data_url(data: str) -> str:
    """Render ``data`` as a PNG QR code embedded in a ``data:`` URL."""
    encoded = base64.b64encode(render_qr_png(data)).decode("ascii")
    return f"data:image/png;base64,{encoded}"
