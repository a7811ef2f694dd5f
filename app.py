# app.py
import os
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from dotenv import load_dotenv
from flask import Flask, Response, request, jsonify
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_login import current_user
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException

import db_mongo
import exports
import search
from db_mysql import (
    check_database_health,
    get_listing, get_listing_detail, search_listings,
    create_listing, update_listing, delete_listing, verify_listing,
    # Purchases
    create_purchase, cancel_purchase, get_user_purchases, get_seller_sales,
    get_purchase_stats,
    # Ratings
    submit_rating, get_listing_ratings, get_rating_summary,
    # Images
    get_image, get_listing_images, add_image, update_image, delete_image,
    reorder_images, set_primary_image,
    # Bookings
    get_all_bookings, get_bookings_for_email, create_booking, update_booking,
    delete_booking,
    # Admin
    get_dashboard_stats, get_export_rows,
)
from auth import (
    login_manager, bcrypt,
    register_user, authenticate_user, change_password, issue_token,
    log_user_activity,
    login_required, roles_required, admin_required,
    get_all_users, get_user, update_user, delete_user, get_user_emails,
    get_activity_summary,
)
from errors import ApiError, Forbidden, NotFound

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


class ApiJSONProvider(DefaultJSONProvider):
    # ISO dates and plain numbers instead of HTTP dates and decimal strings
    @staticmethod
    def default(o):
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        if isinstance(o, Decimal):
            return float(o)
        return DefaultJSONProvider.default(o)


# ========== FLASK APP INITIALIZATION ==========
app = Flask(__name__)
app.json = ApiJSONProvider(app)
app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")
app.config["JWT_SECRET_KEY"] = os.environ.get("JWT_SECRET_KEY", "dev-jwt-secret-change-in-production")
app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(days=int(os.environ.get("JWT_EXPIRES_DAYS", 7)))
app.config["BCRYPT_LOG_ROUNDS"] = int(os.environ.get("BCRYPT_LOG_ROUNDS", 12))
app.config["MAX_CONTENT_LENGTH"] = 16 * 1024 * 1024  # 16MB

cors_origins = [
    o.strip()
    for o in os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if o.strip()
]
CORS(app, resources={r"/api/*": {"origins": cors_origins}})

# Initialize Flask-Login (bearer tokens only, no session login)
login_manager.init_app(app)

# Initialize Flask-Bcrypt
bcrypt.init_app(app)

jwt = JWTManager(app)


@app.before_request
def log_request():
    logger.info("%s %s", request.method, request.path)


def _json_body():
    # Missing or non-JSON bodies behave like an empty object
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _is_admin():
    return current_user.is_authenticated and current_user.role == "admin"


def _require_listing_access(listing_id):
    """Return the listing if the caller owns it or is an admin"""
    listing = get_listing(listing_id)
    if not listing:
        raise NotFound("Listing not found")
    if not _is_admin() and int(listing["owner_id"]) != int(current_user.id):
        raise Forbidden("You can only manage your own listings")
    return listing


def _require_image_access(image_id):
    image = get_image(image_id)
    if not image:
        raise NotFound("Image not found")
    _require_listing_access(image["listing_id"])
    return image


def _listing_id_from(data):
    # Accepts listingId or listing_id; booleans are not ids
    raw_id = data.get("listingId", data.get("listing_id"))
    if isinstance(raw_id, bool):
        raw_id = None
    try:
        return int(raw_id)
    except (TypeError, ValueError):
        raise ApiError("A valid listingId is required")


def _record_search(criteria, total):
    # History lives in MongoDB; a Mongo outage must not fail the search
    if not current_user.is_authenticated:
        return
    query = {k: v for k, v in criteria.items() if k not in ("page", "page_size")}
    try:
        db_mongo.add_search_to_history(current_user.id, query, total)
    except PyMongoError as e:
        logger.warning("Could not record search history for user %s: %s", current_user.id, e)

# ==================== AUTHENTICATION API ====================

@app.route("/api/auth/register", methods=["POST"])
def api_register():
    """Registration for renters, owners and (with a code) admins"""
    data = _json_body()

    user = register_user(
        data.get("name") or data.get("full_name"),
        data.get("email"),
        data.get("password"),
        data.get("role"),
        admin_code=data.get("admin_code") or data.get("adminCode"),
    )

    log_user_activity(user.id, "register", {"role": user.role})
    try:
        db_mongo.ensure_user_profile(user.id, user.email, user.full_name)
    except PyMongoError as e:
        logger.warning("Could not create profile document for user %s: %s", user.id, e)

    return jsonify({
        "ok": True,
        "message": "Registration successful",
        "token": issue_token(user),
        "user": user.to_dict(),
    }), 201


@app.route("/api/auth/login", methods=["POST"])
def api_login():
    """Login endpoint shared by the renter, owner and admin login pages"""
    data = _json_body()

    expected_role = (data.get("role") or "").strip().lower() or None
    user = authenticate_user(data.get("email"), data.get("password"), expected_role)

    log_user_activity(user.id, "login", {
        "ip_address": request.remote_addr,
        "user_agent": request.headers.get("User-Agent", "")[:255],
    })

    return jsonify({
        "ok": True,
        "message": "Login successful",
        "token": issue_token(user),
        "user": user.to_dict(),
    })


@app.route("/api/auth/me", methods=["GET"])
@login_required
def api_current_user():
    return jsonify({"ok": True, "user": current_user.to_dict()})


@app.route("/api/auth/change-password", methods=["POST"])
@login_required
def api_change_password():
    """Change user password"""
    data = _json_body()

    old_password = data.get("old_password") or data.get("currentPassword")
    new_password = data.get("new_password") or data.get("newPassword")
    if not old_password or not new_password:
        raise ApiError("Both passwords required")

    change_password(current_user.id, old_password, new_password)
    log_user_activity(current_user.id, "change_password")
    return jsonify({"ok": True, "message": "Password changed successfully"})

# ==================== LISTINGS ====================

_PAGING_KEYS = ("page", "page_size", "pageSize", "sort")


@app.route("/api/listings", methods=["GET"])
def api_listings():
    """All listings, paged"""
    args = {k: v for k, v in request.args.items() if k in _PAGING_KEYS}
    criteria = search.parse_search_args(args)
    return jsonify(search_listings(criteria))


@app.route("/api/listings/search", methods=["GET"])
def api_search_listings():
    """Filter / sort / paginate listings"""
    criteria = search.parse_search_args(request.args)
    result = search_listings(criteria)
    _record_search(criteria, result["total"])
    return jsonify(result)


@app.route("/api/listings/mine", methods=["GET"])
@roles_required("owner", "admin")
def api_my_listings():
    args = {k: v for k, v in request.args.items() if k in _PAGING_KEYS}
    args["owner_id"] = current_user.id
    criteria = search.parse_search_args(args)
    return jsonify(search_listings(criteria))


@app.route("/api/listings/<int:listing_id>", methods=["GET"])
def api_get_listing(listing_id):
    listing = get_listing_detail(listing_id)
    if not listing:
        raise NotFound("Listing not found")
    return jsonify({"ok": True, "data": listing})


@app.route("/api/listings", methods=["POST"])
@roles_required("owner", "admin")
def api_create_listing():
    data = _json_body()
    images = data.pop("images", None)
    if not _is_admin():
        data.pop("verified", None)

    listing = create_listing(current_user.id, data, images)
    logger.info("Listing %s created by user %s", listing["listing_id"], current_user.id)
    log_user_activity(current_user.id, "create_listing", {"listing_id": listing["listing_id"]})
    return jsonify({"ok": True, "message": "Listing created", "data": listing}), 201


@app.route("/api/listings/<int:listing_id>", methods=["PUT"])
@roles_required("owner", "admin")
def api_update_listing(listing_id):
    _require_listing_access(listing_id)

    data = _json_body()
    data.pop("images", None)
    if not _is_admin():
        data.pop("verified", None)

    listing = update_listing(listing_id, data)
    return jsonify({"ok": True, "message": "Listing updated", "data": listing})


@app.route("/api/listings/<int:listing_id>", methods=["DELETE"])
@roles_required("owner", "admin")
def api_delete_listing(listing_id):
    _require_listing_access(listing_id)
    delete_listing(listing_id)

    try:
        db_mongo.forget_listing(listing_id)
    except PyMongoError as e:
        logger.warning("Could not remove listing %s from favourites: %s", listing_id, e)

    log_user_activity(current_user.id, "delete_listing", {"listing_id": listing_id})
    return jsonify({"ok": True, "message": "Listing deleted"})


@app.route("/api/listings/<int:listing_id>/verify", methods=["POST"])
@admin_required
def api_verify_listing(listing_id):
    verify_listing(listing_id)
    return jsonify({"ok": True, "message": "Listing verified"})

# ==================== PURCHASES ====================

@app.route("/api/purchases", methods=["POST"])
@login_required
def api_create_purchase():
    """Take one unit of a listing"""
    data = _json_body()
    listing_id = _listing_id_from(data)

    purchase = create_purchase(listing_id, current_user.id, data.get("notes"))
    logger.info("Purchase %s: listing %s by user %s",
                purchase["purchase_id"], listing_id, current_user.id)
    log_user_activity(current_user.id, "purchase", {
        "listing_id": listing_id,
        "purchase_id": purchase["purchase_id"],
    })

    return jsonify({
        "ok": True,
        "message": f"Successfully purchased {purchase['title']}",
        "purchase_id": purchase["purchase_id"],
        "data": {
            "listing_id": purchase["listing_id"],
            "purchase_id": purchase["purchase_id"],
            "purchase_date": purchase["purchase_date"],
            "status": purchase["status"],
        },
    }), 201


@app.route("/api/purchases/my-purchases", methods=["GET"])
@login_required
def api_my_purchases():
    purchases = get_user_purchases(current_user.id)
    return jsonify({"ok": True, "count": len(purchases), "data": purchases})


@app.route("/api/purchases/my-sales", methods=["GET"])
@roles_required("owner", "admin")
def api_my_sales():
    sales = get_seller_sales(current_user.id)
    return jsonify({"ok": True, "count": len(sales), "data": sales})


@app.route("/api/purchases/stats", methods=["GET"])
@login_required
def api_purchase_stats():
    return jsonify({"ok": True, "data": get_purchase_stats(current_user.id, current_user.role)})


@app.route("/api/purchases/<int:purchase_id>/cancel", methods=["POST"])
@login_required
def api_cancel_purchase(purchase_id):
    result = cancel_purchase(purchase_id, current_user.id, is_admin=_is_admin())
    log_user_activity(current_user.id, "cancel_purchase", {"purchase_id": purchase_id})
    return jsonify({"ok": True, "message": "Purchase cancelled", "data": result})

# ==================== RATINGS ====================

@app.route("/api/ratings/<int:listing_id>", methods=["GET"])
def api_get_ratings(listing_id):
    return jsonify({"ok": True, "data": get_listing_ratings(listing_id)})


@app.route("/api/ratings/<int:listing_id>/avg", methods=["GET"])
def api_rating_average(listing_id):
    return jsonify({"ok": True, **get_rating_summary(listing_id)})


@app.route("/api/ratings/<int:listing_id>", methods=["POST"])
@login_required
def api_submit_rating(listing_id):
    data = _json_body()
    result = submit_rating(listing_id, current_user.id, data.get("score"))
    message = "Rating updated" if result["updated"] else "Rating submitted"
    return jsonify({"ok": True, "message": message, "data": result})

# ==================== IMAGES ====================

@app.route("/api/images/listing/<int:listing_id>", methods=["GET"])
@login_required
def api_listing_images(listing_id):
    return jsonify({"ok": True, "data": get_listing_images(listing_id)})


@app.route("/api/images/listing/<int:listing_id>", methods=["POST"])
@login_required
def api_add_image(listing_id):
    _require_listing_access(listing_id)
    image = add_image(listing_id, _json_body())
    return jsonify({"ok": True, "message": "Image added", "data": image}), 201


@app.route("/api/images/<int:image_id>", methods=["PUT"])
@login_required
def api_update_image(image_id):
    _require_image_access(image_id)
    image = update_image(image_id, _json_body())
    return jsonify({"ok": True, "message": "Image updated", "data": image})


@app.route("/api/images/<int:image_id>", methods=["DELETE"])
@login_required
def api_delete_image(image_id):
    _require_image_access(image_id)
    delete_image(image_id)
    return jsonify({"ok": True, "message": "Image deleted"})


@app.route("/api/images/listing/<int:listing_id>/reorder", methods=["PUT"])
@login_required
def api_reorder_images(listing_id):
    _require_listing_access(listing_id)
    data = _json_body()
    images = reorder_images(listing_id, data.get("imageIds", data.get("image_ids")))
    return jsonify({"ok": True, "message": "Images reordered", "data": images})


@app.route("/api/images/<int:image_id>/primary", methods=["PUT"])
@login_required
def api_set_primary_image(image_id):
    _require_image_access(image_id)
    set_primary_image(image_id)
    return jsonify({"ok": True, "message": "Primary image updated"})

# ==================== FAVORITES & HISTORY (MONGODB) ====================

@app.route("/api/favorites", methods=["GET"])
@login_required
def api_get_favorites():
    try:
        favorites = db_mongo.get_favorites(current_user.id)
    except PyMongoError as e:
        logger.error("Favourites unavailable: %s", e)
        return jsonify({"ok": False, "error": "Favourites are temporarily unavailable"}), 503
    return jsonify({"ok": True, "count": len(favorites), "data": favorites})


@app.route("/api/favorites", methods=["POST"])
@login_required
def api_add_favorite():
    listing_id = _listing_id_from(_json_body())

    listing = get_listing(listing_id)
    if not listing:
        raise NotFound("Listing not found")

    try:
        added = db_mongo.save_listing_to_favorites(current_user.id, listing)
    except PyMongoError as e:
        logger.error("Favourites unavailable: %s", e)
        return jsonify({"ok": False, "error": "Favourites are temporarily unavailable"}), 503

    message = "Listing saved" if added else "Listing already saved"
    return jsonify({"ok": True, "message": message, "added": added})


@app.route("/api/favorites/<int:listing_id>", methods=["DELETE"])
@login_required
def api_remove_favorite(listing_id):
    try:
        removed = db_mongo.remove_listing_from_favorites(current_user.id, listing_id)
    except PyMongoError as e:
        logger.error("Favourites unavailable: %s", e)
        return jsonify({"ok": False, "error": "Favourites are temporarily unavailable"}), 503

    if not removed:
        raise NotFound("Listing is not in your favourites")
    return jsonify({"ok": True, "message": "Listing removed from favourites"})


@app.route("/api/user/history", methods=["GET"])
@login_required
def api_search_history():
    try:
        history = db_mongo.get_search_history(current_user.id)
    except PyMongoError as e:
        logger.error("Search history unavailable: %s", e)
        return jsonify({"ok": False, "error": "Search history is temporarily unavailable"}), 503
    return jsonify({"ok": True, "count": len(history), "data": history})

# ==================== RENTER BOOKINGS ====================

@app.route("/api/bookings", methods=["GET"])
@login_required
def api_my_bookings():
    bookings = get_bookings_for_email(current_user.email)
    return jsonify({"ok": True, "count": len(bookings), "data": bookings})

# ==================== ADMIN ====================

@app.route("/api/admin/stats", methods=["GET"])
@admin_required
def api_admin_stats():
    """Dashboard totals (admin only)"""
    return jsonify({"ok": True, "data": get_dashboard_stats()})


@app.route("/api/admin/users", methods=["GET"])
@admin_required
def api_admin_users():
    """Get all users (admin only)"""
    users = get_all_users()
    return jsonify({"ok": True, "count": len(users), "data": users})


@app.route("/api/admin/users/<int:user_id>", methods=["GET"])
@admin_required
def api_admin_get_user(user_id):
    return jsonify({"ok": True, "data": get_user(user_id)})


@app.route("/api/admin/users/<int:user_id>", methods=["PUT"])
@admin_required
def api_admin_update_user(user_id):
    user = update_user(user_id, _json_body())
    log_user_activity(current_user.id, "admin_update_user", {"user_id": user_id})
    return jsonify({"ok": True, "message": "User updated", "data": user})


@app.route("/api/admin/users/<int:user_id>", methods=["DELETE"])
@admin_required
def api_admin_delete_user(user_id):
    if int(user_id) == int(current_user.id):
        raise ApiError("You cannot delete your own account")
    delete_user(user_id)
    log_user_activity(current_user.id, "admin_delete_user", {"user_id": user_id})
    return jsonify({"ok": True, "message": "User deleted"})


@app.route("/api/admin/bookings", methods=["GET"])
@admin_required
def api_admin_bookings():
    bookings = get_all_bookings()
    return jsonify({"ok": True, "count": len(bookings), "data": bookings})


@app.route("/api/admin/bookings", methods=["POST"])
@admin_required
def api_admin_create_booking():
    booking_id = create_booking(_json_body())
    return jsonify({"ok": True, "message": "Booking created", "id": booking_id}), 201


@app.route("/api/admin/bookings/<int:booking_id>", methods=["PUT"])
@admin_required
def api_admin_update_booking(booking_id):
    update_booking(booking_id, _json_body())
    return jsonify({"ok": True, "message": "Booking updated"})


@app.route("/api/admin/bookings/<int:booking_id>", methods=["DELETE"])
@admin_required
def api_admin_delete_booking(booking_id):
    delete_booking(booking_id)
    return jsonify({"ok": True, "message": "Booking deleted"})


@app.route("/api/admin/send-bulk-email", methods=["POST"])
@admin_required
def api_admin_bulk_email():
    """Count recipients and log the send; there is no mail transport"""
    data = _json_body()
    subject = (data.get("subject") or "").strip()
    body = (data.get("body") or data.get("message") or "").strip()
    if not subject or not body:
        raise ApiError("subject and body are required")

    recipients = get_user_emails()
    logger.info("Bulk email %r queued for %d recipients", subject, len(recipients))
    log_user_activity(current_user.id, "bulk_email", {"subject": subject, "recipients": len(recipients)})
    return jsonify({
        "ok": True,
        "message": f"Email sent to {len(recipients)} users",
        "sent": len(recipients),
    })


@app.route("/api/admin/send-welcome-emails", methods=["POST"])
@admin_required
def api_admin_welcome_emails():
    recipients = get_user_emails()
    logger.info("Welcome email queued for %d recipients", len(recipients))
    log_user_activity(current_user.id, "welcome_emails", {"recipients": len(recipients)})
    return jsonify({
        "ok": True,
        "message": f"Welcome emails sent to {len(recipients)} users",
        "sent": len(recipients),
    })


@app.route("/api/admin/activity", methods=["GET"])
@admin_required
def api_admin_activity():
    """Get activity summary (admin only)"""
    try:
        limit = int(request.args.get("limit", 100))
    except ValueError:
        raise ApiError("limit must be a whole number")
    activity = get_activity_summary(max(1, min(limit, 500)))
    return jsonify({"ok": True, "count": len(activity), "data": activity})


@app.route("/api/admin/export/<kind>", methods=["GET"])
@login_required
def api_admin_export(kind):
    """Listings, bookings or users as JSON or a CSV download"""
    fmt = exports.check_format(request.args.get("format"))
    mock = (request.args.get("mock", "").lower() in search.TRUTHY
            or os.environ.get("MOCK_EXPORTS") == "1")

    if mock:
        rows = exports.mock_rows(kind)
    else:
        if not _is_admin():
            raise Forbidden("Forbidden")
        rows = get_export_rows(kind)

    if fmt == "csv":
        return Response(
            exports.to_csv(rows, kind),
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={kind}.csv"},
        )
    return jsonify({"ok": True, "kind": kind, "count": len(rows), "data": rows})

# ==================== HEALTH CHECK ====================

@app.route("/api/health", methods=["GET"])
def api_health():
    """System health check."""
    sql_ok = check_database_health()
    mongo_ok = db_mongo.check_database_health()

    return jsonify({
        "status": "healthy" if (sql_ok and mongo_ok) else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "sql_connected": sql_ok,
        "mongodb_connected": mongo_ok,
    })

# ==================== ERROR HANDLERS ====================

@app.errorhandler(ApiError)
def handle_api_error(e):
    if e.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.path, e.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.path, e.status_code, e.message)
    return jsonify(e.to_dict()), e.status_code


@app.errorhandler(400)
def bad_request(e):
    return jsonify({"ok": False, "error": "Bad request"}), 400


@app.errorhandler(401)
def unauthorized(e):
    return jsonify({"ok": False, "error": "Unauthorized - login required"}), 401


@app.errorhandler(403)
def forbidden(e):
    return jsonify({"ok": False, "error": "Forbidden - insufficient permissions"}), 403


@app.errorhandler(404)
def not_found(e):
    return jsonify({"ok": False, "error": "Endpoint not found"}), 404


@app.errorhandler(405)
def method_not_allowed(e):
    return jsonify({"ok": False, "error": "Method not allowed"}), 405


@app.errorhandler(500)
def server_error(e):
    return jsonify({"ok": False, "error": "Internal server error"}), 500


@app.errorhandler(Exception)
def unhandled_error(e):
    if isinstance(e, HTTPException):
        return jsonify({"ok": False, "error": e.description}), e.code
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"ok": False, "error": "Internal server error"}), 500

# ==================== STARTUP ====================

if __name__ == "__main__":
    if db_mongo.initialize_mongodb():
        print("✓ MongoDB initialized successfully")
    else:
        print("✗ MongoDB initialization warning: favourites and history unavailable")

    port = int(os.environ.get("PORT", 5001))
    print("🚀 Starting RentalHub API...")
    print(f"📍 Server running on http://0.0.0.0:{port}")
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG") == "1")
