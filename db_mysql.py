# MySQL Database Operations for RentalHub
# Uses SQLAlchemy with PyMySQL driver; every query is hand-written SQL

import os
import logging
from datetime import date, datetime

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import IntegrityError
from dotenv import load_dotenv

import search
from errors import ApiError, NotFound, Conflict

load_dotenv()

logger = logging.getLogger(__name__)

# ========== DATABASE CONNECTION ==========
def get_engine():
    # DATABASE_URL wins; otherwise build a MySQL URL from the MYSQL_* settings
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return create_engine(database_url, pool_pre_ping=True, echo=False)

    query = {"charset": "utf8mb4"}
    if os.getenv("MYSQL_SSL_CA"):
        query["ssl_ca"] = os.getenv("MYSQL_SSL_CA")

    url = URL.create(
        drivername="mysql+pymysql",
        username=os.getenv("MYSQL_USER"),
        password=os.getenv("MYSQL_PASSWORD"),
        host=os.getenv("MYSQL_HOST", "localhost"),
        port=int(os.getenv("MYSQL_PORT", 3306)),
        database=os.getenv("MYSQL_DB", "rental_homes"),
        query=query,
    )
    return create_engine(url, pool_pre_ping=True, echo=False)

engine = get_engine()


def check_database_health():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("SQL health check failed: %s", e)
        return False

# ========== COERCION HELPERS ==========

def _to_int(value, field, minimum=None, maximum=None):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ApiError(f"{field} must be a whole number")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ApiError(f"{field} must be a whole number")
    if isinstance(value, float) and value != number:
        raise ApiError(f"{field} must be a whole number")
    if minimum is not None and number < minimum:
        raise ApiError(f"{field} must be at least {minimum}")
    if maximum is not None and number > maximum:
        raise ApiError(f"{field} must be at most {maximum}")
    return number


def _to_float(value, field, minimum=None, maximum=None):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ApiError(f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ApiError(f"{field} must be a number")
    if minimum is not None and number < minimum:
        raise ApiError(f"{field} must be at least {minimum}")
    if maximum is not None and number > maximum:
        raise ApiError(f"{field} must be at most {maximum}")
    return number


def _to_date(value, field):
    # Stored as ISO 'YYYY-MM-DD' so MySQL and SQLite compare it the same way
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value).strip()[:10]).isoformat()
    except ValueError:
        raise ApiError(f"{field} must be a date (YYYY-MM-DD)")


def _to_timestamp(value):
    # MySQL returns datetime objects, SQLite returns "YYYY-MM-DD HH:MM:SS" text
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _to_flag(value):
    if isinstance(value, str):
        return 1 if value.strip().lower() in search.TRUTHY else 0
    return 1 if value else 0


def _to_text(value, field, max_length):
    if value is None:
        return None
    value = str(value).strip()
    if len(value) > max_length:
        raise ApiError(f"{field} must be at most {max_length} characters")
    return value

# ========== LISTINGS ==========

LISTING_FIELDS = [
    "title", "description", "image_url", "address", "latitude", "longitude",
    "owner_phone", "bedrooms", "bathrooms", "area_sqft", "furnished", "verified",
    "deposit", "available_from", "contact_start", "contact_end", "price",
    "total_units", "available_units", "city", "category",
]

# Field names used by the older show-based client forms
LISTING_ALIASES = {
    "show_date": "available_from",
    "start_time": "contact_start",
    "end_time": "contact_end",
    "total_seats": "total_units",
    "available_seats": "available_units",
    "venue": "city",
}


def clean_listing_payload(data):
    """
    Map aliases, keep whitelisted columns and coerce their types.
    Only keys present in the payload are returned.
    """
    payload = {}
    for key, value in (data or {}).items():
        key = LISTING_ALIASES.get(key, key)
        if key in LISTING_FIELDS:
            payload[key] = value

    cleaned = {}
    for key, value in payload.items():
        if key == "title":
            value = _to_text(value, "title", 200)
        elif key in ("description",):
            value = _to_text(value, key, 4000)
        elif key in ("image_url",):
            value = _to_text(value, key, 2000)
        elif key in ("address", "city", "category", "furnished", "owner_phone",
                     "contact_start", "contact_end"):
            value = _to_text(value, key, 300)
        elif key == "latitude":
            value = _to_float(value, key, -90, 90)
        elif key == "longitude":
            value = _to_float(value, key, -180, 180)
        elif key in ("bedrooms", "bathrooms", "area_sqft"):
            value = _to_int(value, key, minimum=0)
        elif key in ("price", "deposit"):
            value = _to_float(value, key, minimum=0)
        elif key == "total_units":
            value = _to_int(value, key, minimum=1)
        elif key == "available_units":
            value = _to_int(value, key, minimum=0)
        elif key == "verified":
            value = _to_flag(value)
        elif key == "available_from":
            value = _to_date(value, key)
        cleaned[key] = value
    return cleaned


def _check_units(total_units, available_units):
    if total_units is None or total_units < 1:
        raise ApiError("total_units must be at least 1")
    if available_units is None or available_units < 0:
        raise ApiError("available_units cannot be negative")
    if available_units > total_units:
        raise ApiError("available_units cannot exceed total_units")


def get_listing(listing_id, conn=None):
    sql = text("SELECT * FROM listings WHERE listing_id = :id")
    if conn is not None:
        row = conn.execute(sql, {"id": listing_id}).mappings().first()
    else:
        with engine.connect() as c:
            row = c.execute(sql, {"id": listing_id}).mappings().first()
    return dict(row) if row else None


def get_listing_detail(listing_id):
    # Listing plus its images and rating summary
    listing = get_listing(listing_id)
    if not listing:
        return None
    listing["images"] = get_listing_images(listing_id)
    summary = get_rating_summary(listing_id)
    listing["rating_average"] = summary["average"]
    listing["rating_count"] = summary["count"]
    return listing


def search_listings(criteria):
    """
    Run the filter/sort/paginate pipeline.
    Scalar filters and ordering happen in SQL; distance filtering and
    distance ordering happen in Python on the SQL result.
    """
    where, params = search.build_where(criteria)
    order = search.order_by(criteria)
    page, page_size = criteria["page"], criteria["page_size"]

    with engine.connect() as conn:
        if search.needs_geo(criteria):
            result = conn.execute(text(f"SELECT * FROM listings {where} ORDER BY {order}"), params)
            rows = search.apply_geo([dict(r) for r in result.mappings()], criteria)
            total = len(rows)
            items = search.paginate(rows, page, page_size)
        else:
            total = conn.execute(text(f"SELECT COUNT(*) FROM listings {where}"), params).scalar_one()
            result = conn.execute(text(f"""
                SELECT * FROM listings {where}
                ORDER BY {order}
                LIMIT :limit OFFSET :offset
            """), {**params, "limit": page_size, "offset": (page - 1) * page_size})
            items = [dict(r) for r in result.mappings()]

    return {
        "ok": True,
        "total": int(total),
        "page": page,
        "page_size": page_size,
        "pages": search.page_count(int(total), page_size),
        "items": items,
    }


def create_listing(owner_id, data, images=None):
    """Insert a listing (and its images) and return the stored row"""
    values = clean_listing_payload(data)

    if not values.get("title"):
        raise ApiError("title is required")
    if values.get("price") is None:
        raise ApiError("price is required")

    values.setdefault("total_units", 1)
    if values["total_units"] is None:
        values["total_units"] = 1
    if values.get("available_units") is None:
        values["available_units"] = values["total_units"]
    _check_units(values["total_units"], values["available_units"])
    values["verified"] = values.get("verified") or 0

    images = images or []
    if not isinstance(images, list):
        raise ApiError("images must be a list")
    if images and not values.get("image_url"):
        first = images[0] if isinstance(images[0], dict) else {}
        values["image_url"] = first.get("url") or first.get("image_url") or first.get("preview")

    columns = ["owner_id"] + list(values.keys())
    with engine.begin() as conn:
        result = conn.execute(text(f"""
            INSERT INTO listings ({', '.join(columns)})
            VALUES ({', '.join(':' + c for c in columns)})
        """), {"owner_id": owner_id, **values})
        listing_id = result.lastrowid

        for position, image in enumerate(images):
            if not isinstance(image, dict):
                raise ApiError("each image must be an object")
            _insert_image(conn, listing_id, {
                "image_url": image.get("url") or image.get("image_url") or image.get("preview"),
                "image_name": image.get("name") or image.get("image_name"),
                "image_size": image.get("size") or image.get("image_size"),
                "image_width": (image.get("dimensions") or {}).get("width") or image.get("image_width"),
                "image_height": (image.get("dimensions") or {}).get("height") or image.get("image_height"),
                "is_primary": 1 if position == 0 else 0,
                "sort_order": position,
            })

        return get_listing(listing_id, conn)


def update_listing(listing_id, data):
    """Partial update; unit constraints are checked against the merged row"""
    values = clean_listing_payload(data)

    with engine.begin() as conn:
        current = get_listing(listing_id, conn)
        if not current:
            raise NotFound("Listing not found")
        if not values:
            return current

        if "title" in values and not values["title"]:
            raise ApiError("title cannot be empty")
        if "price" in values and values["price"] is None:
            raise ApiError("price cannot be empty")

        merged_total = values.get("total_units", current["total_units"])
        merged_available = values.get("available_units", current["available_units"])
        _check_units(merged_total, merged_available)

        set_clause = ", ".join(f"{col} = :{col}" for col in values)
        conn.execute(text(f"""
            UPDATE listings
            SET {set_clause}, updated_at = CURRENT_TIMESTAMP
            WHERE listing_id = :listing_id
        """), {**values, "listing_id": listing_id})

        return get_listing(listing_id, conn)


def delete_listing(listing_id):
    # Children go in the same transaction; purchases stay as history
    with engine.begin() as conn:
        if not get_listing(listing_id, conn):
            raise NotFound("Listing not found")
        for table in ("images", "ratings", "rental_bookings"):
            conn.execute(text(f"DELETE FROM {table} WHERE listing_id = :id"), {"id": listing_id})
        conn.execute(text("DELETE FROM listings WHERE listing_id = :id"), {"id": listing_id})
    return True


def verify_listing(listing_id):
    with engine.begin() as conn:
        result = conn.execute(text("""
            UPDATE listings SET verified = 1, updated_at = CURRENT_TIMESTAMP
            WHERE listing_id = :id
        """), {"id": listing_id})
        if result.rowcount == 0:
            raise NotFound("Listing not found")
    return True

# ========== PURCHASES ==========

def create_purchase(listing_id, buyer_id, notes=None):
    """
    Free purchase of one unit.
    The decrement is a conditional UPDATE, so two buyers racing for the last
    unit cannot both succeed and available_units never goes below zero.
    """
    notes = _to_text(notes, "notes", 1000) or None

    with engine.begin() as conn:
        listing = conn.execute(text("""
            SELECT listing_id, owner_id, title, available_units
            FROM listings
            WHERE listing_id = :id
        """), {"id": listing_id}).mappings().first()

        if not listing:
            raise NotFound("Listing not found")

        if int(listing["owner_id"]) == int(buyer_id):
            raise ApiError("You cannot purchase your own property")

        decremented = conn.execute(text("""
            UPDATE listings
            SET available_units = available_units - 1,
                updated_at = CURRENT_TIMESTAMP
            WHERE listing_id = :id AND available_units > 0
        """), {"id": listing_id})

        if decremented.rowcount == 0:
            raise Conflict("This property is no longer available")

        result = conn.execute(text("""
            INSERT INTO purchases (listing_id, buyer_id, seller_id, status, notes)
            VALUES (:listing_id, :buyer_id, :seller_id, 'completed', :notes)
        """), {
            "listing_id": listing_id,
            "buyer_id": buyer_id,
            "seller_id": listing["owner_id"],
            "notes": notes,
        })
        purchase_id = result.lastrowid

        purchase_date = conn.execute(text("""
            SELECT purchase_date FROM purchases WHERE purchase_id = :id
        """), {"id": purchase_id}).scalar_one()

    return {
        "purchase_id": purchase_id,
        "listing_id": listing_id,
        "title": listing["title"],
        "purchase_date": _to_timestamp(purchase_date),
        "status": "completed",
    }


def cancel_purchase(purchase_id, user_id, is_admin=False):
    """Cancel a completed purchase and hand the unit back to the listing"""
    with engine.begin() as conn:
        purchase = conn.execute(text("""
            SELECT purchase_id, listing_id, buyer_id, status
            FROM purchases
            WHERE purchase_id = :id
        """), {"id": purchase_id}).mappings().first()

        if not purchase:
            raise NotFound("Purchase not found")
        if not is_admin and int(purchase["buyer_id"]) != int(user_id):
            raise ApiError("You can only cancel your own purchases", 403)

        cancelled = conn.execute(text("""
            UPDATE purchases
            SET status = 'cancelled', updated_at = CURRENT_TIMESTAMP
            WHERE purchase_id = :id AND status = 'completed'
        """), {"id": purchase_id})
        if cancelled.rowcount == 0:
            raise Conflict("Only completed purchases can be cancelled")

        # Capped so a cancelled purchase on an edited listing cannot overflow it
        conn.execute(text("""
            UPDATE listings
            SET available_units = available_units + 1,
                updated_at = CURRENT_TIMESTAMP
            WHERE listing_id = :listing_id AND available_units < total_units
        """), {"listing_id": purchase["listing_id"]})

    return {"purchase_id": purchase_id, "status": "cancelled"}


_PURCHASE_SELECT = """
    SELECT
        p.purchase_id, p.purchase_date, p.status, p.notes, p.listing_id,
        l.title, l.description, l.address, l.image_url, l.bedrooms, l.bathrooms,
        l.area_sqft, l.furnished, l.price, l.city,
        u.full_name AS party_name, u.email AS party_email, l.owner_phone
    FROM purchases p
    LEFT JOIN listings l ON l.listing_id = p.listing_id
    LEFT JOIN users u ON u.user_id = p.{party}
    WHERE p.{owner} = :user_id
    ORDER BY p.purchase_date DESC, p.purchase_id DESC
"""


def _shape_purchase(row, party_key, with_phone):
    party = {"name": row["party_name"], "email": row["party_email"]}
    if with_phone:
        party["phone"] = row["owner_phone"]
    return {
        "purchase_id": row["purchase_id"],
        "purchase_date": row["purchase_date"],
        "status": row["status"],
        "notes": row["notes"],
        "listing_id": row["listing_id"],
        "property": {
            "title": row["title"],
            "description": row["description"],
            "address": row["address"],
            "image_url": row["image_url"],
            "bedrooms": row["bedrooms"],
            "bathrooms": row["bathrooms"],
            "area_sqft": row["area_sqft"],
            "furnished": row["furnished"],
            "price": row["price"],
            "city": row["city"],
        },
        party_key: party,
    }


def get_user_purchases(buyer_id):
    with engine.connect() as conn:
        result = conn.execute(
            text(_PURCHASE_SELECT.format(party="seller_id", owner="buyer_id")),
            {"user_id": buyer_id},
        )
        return [_shape_purchase(r, "seller", True) for r in result.mappings()]


def get_seller_sales(seller_id):
    with engine.connect() as conn:
        result = conn.execute(
            text(_PURCHASE_SELECT.format(party="buyer_id", owner="seller_id")),
            {"user_id": seller_id},
        )
        return [_shape_purchase(r, "buyer", False) for r in result.mappings()]


def get_purchase_stats(user_id, role):
    # Buyers see their purchases, owners their sales, admins everything
    if role == "user":
        where, params = "WHERE buyer_id = :user_id", {"user_id": user_id}
    elif role == "owner":
        where, params = "WHERE seller_id = :user_id", {"user_id": user_id}
    else:
        where, params = "", {}

    with engine.connect() as conn:
        row = conn.execute(text(f"""
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END), 0) AS completed,
                COALESCE(SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END), 0) AS pending,
                COALESCE(SUM(CASE WHEN status = 'cancelled' THEN 1 ELSE 0 END), 0) AS cancelled
            FROM purchases
            {where}
        """), params).mappings().first()

    return {key: int(row[key]) for key in ("total", "completed", "pending", "cancelled")}

# ========== RATINGS ==========

def submit_rating(listing_id, user_id, score):
    score = _to_int(score, "score", 1, 5)
    if score is None:
        raise ApiError("Score must be 1-5")

    with engine.begin() as conn:
        if not get_listing(listing_id, conn):
            raise NotFound("Listing not found")

        existing = conn.execute(text("""
            SELECT rating_id FROM ratings
            WHERE listing_id = :listing_id AND user_id = :user_id
        """), {"listing_id": listing_id, "user_id": user_id}).first()

        if existing:
            conn.execute(text("""
                UPDATE ratings SET score = :score, created_at = CURRENT_TIMESTAMP
                WHERE rating_id = :id
            """), {"score": score, "id": existing[0]})
            return {"rating_id": existing[0], "score": score, "updated": True}

        try:
            result = conn.execute(text("""
                INSERT INTO ratings (listing_id, user_id, score)
                VALUES (:listing_id, :user_id, :score)
            """), {"listing_id": listing_id, "user_id": user_id, "score": score})
        except IntegrityError:
            raise Conflict("Rating was submitted concurrently, please retry")
        return {"rating_id": result.lastrowid, "score": score, "updated": False}


def get_listing_ratings(listing_id):
    with engine.connect() as conn:
        result = conn.execute(text("""
            SELECT r.rating_id, r.user_id, r.score, r.created_at, u.full_name AS name
            FROM ratings r
            LEFT JOIN users u ON u.user_id = r.user_id
            WHERE r.listing_id = :listing_id
            ORDER BY r.created_at DESC, r.rating_id DESC
        """), {"listing_id": listing_id})
        return [dict(r) for r in result.mappings()]


def get_rating_summary(listing_id):
    with engine.connect() as conn:
        row = conn.execute(text("""
            SELECT AVG(score) AS average, COUNT(*) AS cnt
            FROM ratings
            WHERE listing_id = :listing_id
        """), {"listing_id": listing_id}).mappings().first()

    average = row["average"]
    return {
        "average": round(float(average), 2) if average is not None else None,
        "count": int(row["cnt"]),
    }

# ========== IMAGES ==========

def _insert_image(conn, listing_id, image):
    if not image.get("image_url"):
        raise ApiError("image_url is required")
    result = conn.execute(text("""
        INSERT INTO images (
            listing_id, image_url, image_name, image_size,
            image_width, image_height, is_primary, sort_order
        ) VALUES (
            :listing_id, :image_url, :image_name, :image_size,
            :image_width, :image_height, :is_primary, :sort_order
        )
    """), {
        "listing_id": listing_id,
        "image_url": _to_text(image["image_url"], "image_url", 2000),
        "image_name": _to_text(image.get("image_name"), "image_name", 255),
        "image_size": _to_int(image.get("image_size"), "image_size", minimum=0),
        "image_width": _to_int(image.get("image_width"), "image_width", minimum=0),
        "image_height": _to_int(image.get("image_height"), "image_height", minimum=0),
        "is_primary": _to_flag(image.get("is_primary")),
        "sort_order": _to_int(image.get("sort_order"), "sort_order", minimum=0) or 0,
    })
    return result.lastrowid


def get_image(image_id, conn=None):
    sql = text("SELECT * FROM images WHERE image_id = :id")
    if conn is not None:
        row = conn.execute(sql, {"id": image_id}).mappings().first()
    else:
        with engine.connect() as c:
            row = c.execute(sql, {"id": image_id}).mappings().first()
    return dict(row) if row else None


def get_listing_images(listing_id):
    with engine.connect() as conn:
        result = conn.execute(text("""
            SELECT image_id, listing_id, image_url, image_name, image_size,
                   image_width, image_height, is_primary, sort_order, created_at
            FROM images
            WHERE listing_id = :listing_id
            ORDER BY sort_order ASC, created_at ASC, image_id ASC
        """), {"listing_id": listing_id})
        return [dict(r) for r in result.mappings()]


def add_image(listing_id, data):
    data = dict(data or {})
    with engine.begin() as conn:
        if not get_listing(listing_id, conn):
            raise NotFound("Listing not found")

        if data.get("sort_order") in (None, ""):
            data["sort_order"] = conn.execute(text("""
                SELECT COUNT(*) FROM images WHERE listing_id = :listing_id
            """), {"listing_id": listing_id}).scalar_one()

        if _to_flag(data.get("is_primary")):
            conn.execute(text("""
                UPDATE images SET is_primary = 0 WHERE listing_id = :listing_id
            """), {"listing_id": listing_id})

        image_id = _insert_image(conn, listing_id, data)
        return get_image(image_id, conn)


def update_image(image_id, data):
    data = data or {}
    fields = {}
    if "image_name" in data:
        fields["image_name"] = _to_text(data["image_name"], "image_name", 255)
    if "sort_order" in data:
        fields["sort_order"] = _to_int(data["sort_order"], "sort_order", minimum=0) or 0
    if "is_primary" in data:
        fields["is_primary"] = _to_flag(data["is_primary"])

    with engine.begin() as conn:
        image = get_image(image_id, conn)
        if not image:
            raise NotFound("Image not found")
        if not fields:
            return image

        if fields.get("is_primary"):
            conn.execute(text("""
                UPDATE images SET is_primary = 0 WHERE listing_id = :listing_id
            """), {"listing_id": image["listing_id"]})

        set_clause = ", ".join(f"{col} = :{col}" for col in fields)
        conn.execute(text(f"""
            UPDATE images SET {set_clause}, updated_at = CURRENT_TIMESTAMP
            WHERE image_id = :image_id
        """), {**fields, "image_id": image_id})
        return get_image(image_id, conn)


def delete_image(image_id):
    with engine.begin() as conn:
        result = conn.execute(text("DELETE FROM images WHERE image_id = :id"), {"id": image_id})
        if result.rowcount == 0:
            raise NotFound("Image not found")
    return True


def reorder_images(listing_id, image_ids):
    if not isinstance(image_ids, list):
        raise ApiError("imageIds must be an array")
    ids = [_to_int(i, "imageIds", minimum=1) for i in image_ids]

    with engine.begin() as conn:
        if not get_listing(listing_id, conn):
            raise NotFound("Listing not found")
        for position, image_id in enumerate(ids):
            # Ids belonging to another listing simply match nothing
            conn.execute(text("""
                UPDATE images SET sort_order = :sort_order, updated_at = CURRENT_TIMESTAMP
                WHERE image_id = :image_id AND listing_id = :listing_id
            """), {"sort_order": position, "image_id": image_id, "listing_id": listing_id})
    return get_listing_images(listing_id)


def set_primary_image(image_id):
    """Make one image the listing's only primary image and its cover"""
    with engine.begin() as conn:
        image = get_image(image_id, conn)
        if not image:
            raise NotFound("Image not found")

        conn.execute(text("""
            UPDATE images SET is_primary = CASE WHEN image_id = :image_id THEN 1 ELSE 0 END
            WHERE listing_id = :listing_id
        """), {"image_id": image_id, "listing_id": image["listing_id"]})
        conn.execute(text("""
            UPDATE listings SET image_url = :image_url, updated_at = CURRENT_TIMESTAMP
            WHERE listing_id = :listing_id
        """), {"image_url": image["image_url"], "listing_id": image["listing_id"]})
    return True

# ========== BOOKINGS ==========

BOOKING_STATUSES = ("pending", "confirmed", "cancelled")


def get_all_bookings():
    with engine.connect() as conn:
        result = conn.execute(text("""
            SELECT b.id, b.listing_id, b.user_email, b.amount, b.booking_date,
                   b.status, b.created_at, l.title
            FROM rental_bookings b
            LEFT JOIN listings l ON l.listing_id = b.listing_id
            ORDER BY b.created_at DESC, b.id DESC
        """))
        return [dict(r) for r in result.mappings()]


def get_bookings_for_email(email):
    with engine.connect() as conn:
        result = conn.execute(text("""
            SELECT b.id, b.listing_id, b.amount, b.booking_date, b.status, b.created_at,
                   l.title, l.address, l.price
            FROM rental_bookings b
            LEFT JOIN listings l ON l.listing_id = b.listing_id
            WHERE LOWER(b.user_email) = :email
            ORDER BY b.booking_date DESC, b.id DESC
        """), {"email": (email or "").lower()})
        return [dict(r) for r in result.mappings()]


def _booking_status(value):
    status = (value or "confirmed").strip().lower()
    if status not in BOOKING_STATUSES:
        raise ApiError(f"status must be one of: {', '.join(BOOKING_STATUSES)}")
    return status


def create_booking(data):
    data = data or {}
    listing_id = _to_int(data.get("listingId", data.get("listing_id")), "listing_id", minimum=1)
    user_email = _to_text(data.get("userEmail", data.get("user_email")), "user_email", 150)
    booking_date = _to_date(data.get("date", data.get("booking_date")), "booking_date")
    amount = _to_float(data.get("amount"), "amount", minimum=0) or 0
    status = _booking_status(data.get("status"))

    if listing_id is None or not user_email or booking_date is None:
        raise ApiError("listing_id, user_email and booking_date are required")

    with engine.begin() as conn:
        if not get_listing(listing_id, conn):
            raise NotFound("Listing not found")
        result = conn.execute(text("""
            INSERT INTO rental_bookings (listing_id, user_email, amount, booking_date, status)
            VALUES (:listing_id, :user_email, :amount, :booking_date, :status)
        """), {
            "listing_id": listing_id,
            "user_email": user_email.lower(),
            "amount": amount,
            "booking_date": booking_date,
            "status": status,
        })
        return result.lastrowid


def update_booking(booking_id, data):
    data = data or {}
    fields = {}
    if "status" in data:
        fields["status"] = _booking_status(data["status"])
    if "amount" in data:
        fields["amount"] = _to_float(data["amount"], "amount", minimum=0) or 0
    if not fields:
        raise ApiError("Nothing to update")

    set_clause = ", ".join(f"{col} = :{col}" for col in fields)
    with engine.begin() as conn:
        result = conn.execute(text(f"""
            UPDATE rental_bookings SET {set_clause} WHERE id = :id
        """), {**fields, "id": booking_id})
        if result.rowcount == 0:
            raise NotFound("Booking not found")
    return True


def delete_booking(booking_id):
    with engine.begin() as conn:
        result = conn.execute(text("DELETE FROM rental_bookings WHERE id = :id"), {"id": booking_id})
        if result.rowcount == 0:
            raise NotFound("Booking not found")
    return True

# ========== ADMIN STATISTICS ==========

def get_dashboard_stats():
    with engine.connect() as conn:
        listings = conn.execute(text("""
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN verified = 1 THEN 1 ELSE 0 END), 0) AS verified,
                COALESCE(SUM(CASE WHEN latitude IS NOT NULL AND longitude IS NOT NULL
                                  THEN 1 ELSE 0 END), 0) AS with_location,
                COALESCE(SUM(CASE WHEN (image_url IS NOT NULL AND image_url <> '')
                                    OR EXISTS (SELECT 1 FROM images i
                                               WHERE i.listing_id = listings.listing_id)
                                  THEN 1 ELSE 0 END), 0) AS with_images,
                COALESCE(SUM(available_units), 0) AS available_units
            FROM listings
        """)).mappings().first()

        users = conn.execute(text("""
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN role = 'user' THEN 1 ELSE 0 END), 0) AS renters,
                COALESCE(SUM(CASE WHEN role = 'owner' THEN 1 ELSE 0 END), 0) AS owners,
                COALESCE(SUM(CASE WHEN role = 'admin' THEN 1 ELSE 0 END), 0) AS admins
            FROM users
        """)).mappings().first()

        bookings = conn.execute(text("SELECT COUNT(*) FROM rental_bookings")).scalar_one()
        purchases = conn.execute(text("""
            SELECT COUNT(*) FROM purchases WHERE status = 'completed'
        """)).scalar_one()

    return {
        "total_listings": int(listings["total"]),
        "verified_listings": int(listings["verified"]),
        "with_location": int(listings["with_location"]),
        "with_images": int(listings["with_images"]),
        "available_units": int(listings["available_units"]),
        "total_users": int(users["total"]),
        "renters": int(users["renters"]),
        "owners": int(users["owners"]),
        "admins": int(users["admins"]),
        "total_bookings": int(bookings),
        "completed_purchases": int(purchases),
    }

# ========== EXPORTS ==========

def get_export_rows(kind):
    # Column aliases are the headings shown in the exported files
    queries = {
        "listings": """
            SELECT l.listing_id AS "ID", l.title AS "Title", l.address AS "Address",
                   l.city AS "City", l.price AS "Rent", u.email AS "Owner Email",
                   CASE WHEN l.verified = 1 THEN 'Yes' ELSE 'No' END AS "Verified",
                   l.available_units AS "Available Units", l.created_at AS "Created Date"
            FROM listings l
            LEFT JOIN users u ON u.user_id = l.owner_id
            ORDER BY l.created_at DESC, l.listing_id DESC
        """,
        "bookings": """
            SELECT id AS "Booking ID", listing_id AS "Listing ID", user_email AS "User Email",
                   amount AS "Amount", booking_date AS "Date", status AS "Status"
            FROM rental_bookings
            ORDER BY created_at DESC, id DESC
        """,
        "users": """
            SELECT user_id AS "ID", full_name AS "Name", email AS "Email",
                   role AS "Role", created_at AS "Join Date"
            FROM users
            ORDER BY created_at DESC, user_id DESC
        """,
    }
    if kind not in queries:
        raise NotFound(f"Unknown export: {kind}")

    sql = queries[kind]
    if engine.dialect.name == "mysql":
        # MySQL quotes identifiers with backticks unless ANSI_QUOTES is on
        sql = sql.replace('"', "`")

    with engine.connect() as conn:
        result = conn.execute(text(sql))
        return [dict(r) for r in result.mappings()]
