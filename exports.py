# exports.py
# Admin exports: CSV rendering with pandas plus sample rows for demo mode

import io
from datetime import date, timedelta

import pandas as pd

from errors import ApiError, NotFound

# Headings shared by the export queries, the sample rows and empty CSV files
EXPORT_COLUMNS = {
    "listings": ["ID", "Title", "Address", "City", "Rent", "Owner Email", "Verified",
                 "Available Units", "Created Date"],
    "bookings": ["Booking ID", "Listing ID", "User Email", "Amount", "Date", "Status"],
    "users": ["ID", "Name", "Email", "Role", "Join Date"],
}
EXPORT_KINDS = tuple(EXPORT_COLUMNS)
EXPORT_FORMATS = ("json", "csv")
MOCK_ROW_COUNT = 10

_CITIES = ["New York", "Boston", "Chicago", "Austin", "Seattle"]


def check_format(fmt):
    fmt = (fmt or "json").lower()
    if fmt not in EXPORT_FORMATS:
        raise ApiError("format must be json or csv")
    return fmt


def mock_rows(kind, count=MOCK_ROW_COUNT):
    """Sample rows using the same headings as the real export queries"""
    if kind not in EXPORT_KINDS:
        raise NotFound(f"Unknown export: {kind}")

    start = date(2024, 1, 1)
    rows = []
    for i in range(1, count + 1):
        day = (start + timedelta(days=i)).isoformat()
        if kind == "listings":
            rows.append({
                "ID": i,
                "Title": f"Sample Listing {i}",
                "Address": f"{100 + i} Main Street",
                "City": _CITIES[i % len(_CITIES)],
                "Rent": 1000 + i * 50,
                "Owner Email": f"owner{i}@example.com",
                "Verified": "Yes" if i % 2 == 0 else "No",
                "Available Units": i % 3,
                "Created Date": day,
            })
        elif kind == "bookings":
            rows.append({
                "Booking ID": i,
                "Listing ID": (i % 4) + 1,
                "User Email": f"renter{i}@example.com",
                "Amount": 500 + i * 25,
                "Date": day,
                "Status": "confirmed" if i % 3 else "pending",
            })
        else:
            rows.append({
                "ID": i,
                "Name": f"User {i}",
                "Email": f"user{i}@example.com",
                "Role": ["user", "owner", "admin"][i % 3],
                "Join Date": day,
            })
    return rows


def to_frame(rows, kind):
    if kind not in EXPORT_COLUMNS:
        raise NotFound(f"Unknown export: {kind}")
    df = pd.DataFrame(rows, columns=EXPORT_COLUMNS[kind])
    # Dates and decimals come back from the driver as objects
    for col in df.columns:
        if df[col].dtype == object:
            df[col] = df[col].map(lambda v: v.isoformat() if hasattr(v, "isoformat") else v)
    return df


def to_csv(rows, kind):
    """Render export rows as CSV text"""
    buf = io.StringIO()
    to_frame(rows, kind).to_csv(buf, index=False)
    return buf.getvalue()
