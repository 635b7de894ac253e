from datetime import datetime
from io import BytesIO
from typing import Iterable, Tuple

import pandas as pd

EXPORT_FORMATS = ("csv", "excel")

COLUMNS = [
    ("Transaction ID", "transactionId"),
    ("Donor Name", "donorName"),
    ("Email", "email"),
    ("Phone", "phone"),
    ("Amount (INR)", "amount"),
    ("Campaign", "campaign"),
    ("Payment Method", "paymentMethod"),
    ("Status", "status"),
    ("Approved", "approved"),
    ("Anonymous", "isAnonymous"),
    ("Message", "message"),
    ("Created At", "createdAt"),
    ("Approved By", "approvedBy"),
    ("Approved At", "approvedAt"),
]


def _cell(key: str, value):
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if key in ("approved", "isAnonymous"):
        return "Yes" if value else "No"
    if value is None:
        return ""
    return value


def donations_frame(donations: Iterable[dict]) -> pd.DataFrame:
    rows = [{label: _cell(key, d.get(key)) for label, key in COLUMNS} for d in donations]
    return pd.DataFrame(rows, columns=[label for label, _ in COLUMNS])


def build_donation_export(donations: Iterable[dict], format: str = "csv") -> Tuple[BytesIO, str, str]:
    """Write donations as CSV or Excel. Returns (buffer, media type, filename)."""
    if format not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {format}")

    df = donations_frame(donations)
    filename = f"donations_{datetime.now().strftime('%Y%m%d_%H%M%S')}.{'xlsx' if format == 'excel' else 'csv'}"
    output = BytesIO()

    if format == "excel":
        df.to_excel(output, index=False, engine='openpyxl')
        media_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    else:
        df.to_csv(output, index=False)
        media_type = "text/csv"

    output.seek(0)
    return output, media_type, filename
