# MongoDB utilities for RentalHub.
# Holds per-user documents: profile, saved (favourite) listings and search history

import os
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from dotenv import load_dotenv
from pymongo import MongoClient, ASCENDING
from pymongo.errors import PyMongoError

load_dotenv()

MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "rental_homes")
SEARCH_HISTORY_LIMIT = 20

_client: Optional[MongoClient] = None


# ========== CONNECTION ==========
def get_db():
    # Return a connected DB handle (reused client)
    global _client
    if _client is None:
        client = MongoClient(
            MONGO_URL,
            serverSelectionTimeoutMS=5000,
            appname="rentalhub"
        )
        client.admin.command("ping")
        _client = client
    return _client[MONGO_DB]


# ========== INITIALIZATION ==========
def initialize_mongodb() -> bool:
    # Create collections + indexes if absent
    try:
        db = get_db()

        if "user_profiles" not in db.list_collection_names():
            db.create_collection("user_profiles")

        db.user_profiles.create_index([("user_id", ASCENDING)], unique=True)
        db.user_profiles.create_index([("email", ASCENDING)])
        db.user_profiles.create_index([("saved_listings.listing_id", ASCENDING)])
        return True
    except PyMongoError as e:
        print("Mongo init error:", e)
        return False


def _now():
    return datetime.now(timezone.utc)


def _clean(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is not None and "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc


# ========== USER PROFILES ==========
def ensure_user_profile(user_id: int, email: Optional[str] = None,
                        full_name: Optional[str] = None) -> None:
    # Create the profile document on first use
    db = get_db()
    update: Dict[str, Any] = {
        "$setOnInsert": {
            "registration_date": _now(),
            "saved_listings": [],
            "search_history": [],
        }
    }
    details = {k: v for k, v in {"email": email, "full_name": full_name}.items() if v}
    if details:
        update["$set"] = details

    db.user_profiles.update_one({"user_id": int(user_id)}, update, upsert=True)


def get_user_profile(user_id: int) -> Optional[Dict[str, Any]]:
    db = get_db()
    return _clean(db.user_profiles.find_one({"user_id": int(user_id)}))


# ========== SEARCH HISTORY ==========
def add_search_to_history(user_id: int, search_query: Dict[str, Any], results_count: int):
    # Keep only the most recent searches
    db = get_db()

    search_entry = {
        "timestamp": _now(),
        "search_query": {k: v for k, v in search_query.items() if v not in (None, "", False)},
        "results_count": int(results_count),
    }

    db.user_profiles.update_one(
        {"user_id": int(user_id)},
        {
            "$push": {
                "search_history": {
                    "$each": [search_entry],
                    "$slice": -SEARCH_HISTORY_LIMIT,
                }
            },
            "$setOnInsert": {"registration_date": _now(), "saved_listings": []},
        },
        upsert=True,
    )


def get_search_history(user_id: int) -> List[Dict[str, Any]]:
    profile = get_user_profile(user_id) or {}
    # Newest first
    return list(reversed(profile.get("search_history", [])))


# ========== FAVORITES ==========
def _listing_snapshot(listing: Dict[str, Any]) -> Dict[str, Any]:
    # BSON has no Decimal, so numbers are stored as floats
    price = listing.get("price")
    return {
        "listing_id": int(listing["listing_id"]),
        "title": listing.get("title"),
        "address": listing.get("address"),
        "city": listing.get("city"),
        "price": float(price) if price is not None else None,
        "verified": bool(listing.get("verified")),
        "image_url": listing.get("image_url"),
    }


def save_listing_to_favorites(user_id: int, listing: Dict[str, Any]) -> bool:
    """Add a listing to favourites; returns False if it was already saved"""
    db = get_db()
    ensure_user_profile(user_id)

    favorite = _listing_snapshot(listing)
    favorite["saved_at"] = _now()

    result = db.user_profiles.update_one(
        {"user_id": int(user_id), "saved_listings.listing_id": {"$ne": favorite["listing_id"]}},
        {"$push": {"saved_listings": favorite}},
    )
    return result.modified_count > 0


def remove_listing_from_favorites(user_id: int, listing_id: int) -> bool:
    db = get_db()
    result = db.user_profiles.update_one(
        {"user_id": int(user_id)},
        {"$pull": {"saved_listings": {"listing_id": int(listing_id)}}},
    )
    return result.modified_count > 0


def get_favorites(user_id: int) -> List[Dict[str, Any]]:
    profile = get_user_profile(user_id) or {}
    # Saved in push order, newest last
    return list(reversed(profile.get("saved_listings", [])))


def forget_listing(listing_id: int) -> int:
    # Drop a deleted listing from everyone's favourites
    db = get_db()
    result = db.user_profiles.update_many(
        {"saved_listings.listing_id": int(listing_id)},
        {"$pull": {"saved_listings": {"listing_id": int(listing_id)}}},
    )
    return result.modified_count


def check_database_health() -> bool:
    # Check if MongoDB database is accessible
    try:
        db = get_db()
        db.command("ping")
        return True
    except PyMongoError:
        return False
