# search.py
"""
Listing search helpers for RentalHub
Turns query-string arguments into validated criteria, SQL predicates and
ORDER BY clauses, and handles the distance part of the pipeline in Python.
"""

import math
from typing import Any, Dict, List, Optional, Tuple

from errors import ApiError

EARTH_RADIUS_KM = 6371.0
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# camelCase names sent by the React client
ALIASES = {
    "minPrice": "min_price",
    "maxPrice": "max_price",
    "minBeds": "min_beds",
    "minBaths": "min_baths",
    "pageSize": "page_size",
    "ownerId": "owner_id",
    "radiusKm": "radius_km",
}

SORT_KEYS = {
    "default": "(available_from IS NULL), available_from ASC, created_at DESC, listing_id DESC",
    "newest": "created_at DESC, listing_id DESC",
    "date_asc": "(available_from IS NULL), available_from ASC, listing_id ASC",
    "date_desc": "(available_from IS NULL), available_from DESC, listing_id DESC",
    "price_asc": "price ASC, listing_id ASC",
    "price_desc": "price DESC, listing_id DESC",
    # distance is applied in Python; the SQL order only makes ties stable
    "distance": "listing_id ASC",
}

AVAILABILITY = ("available", "soldout")
TRUTHY = ("1", "true", "yes", "on")


# ========== PARSING ==========

def _number(args, key, cast=float, minimum=None, maximum=None):
    raw = args.get(key)
    if raw is None or str(raw).strip() == "":
        return None
    try:
        value = cast(str(raw).strip())
    except ValueError:
        raise ApiError(f"Invalid value for {key}: {raw}")
    if isinstance(value, float) and not math.isfinite(value):
        raise ApiError(f"Invalid value for {key}: {raw}")
    if minimum is not None and value < minimum:
        raise ApiError(f"{key} must be at least {minimum}")
    if maximum is not None and value > maximum:
        raise ApiError(f"{key} must be at most {maximum}")
    return value


def _text(args, key):
    raw = args.get(key)
    if raw is None:
        return None
    raw = str(raw).strip()
    return raw or None


def normalize_args(args) -> Dict[str, Any]:
    # Accept both snake_case and the client's camelCase names
    out = {}
    for key in args.keys():
        value = args.get(key)
        out[ALIASES.get(key, key)] = value
    return out


def parse_search_args(args) -> Dict[str, Any]:
    """
    Validate raw query arguments and return a criteria dict.
    Raises ApiError (400) for anything malformed.
    """
    args = normalize_args(args)

    criteria = {
        "q": _text(args, "q"),
        "min_price": _number(args, "min_price", minimum=0),
        "max_price": _number(args, "max_price", minimum=0),
        "category": _text(args, "category"),
        "city": _text(args, "city"),
        "furnished": _text(args, "furnished"),
        "verified": str(args.get("verified") or "").strip().lower() in TRUTHY,
        "min_beds": _number(args, "min_beds", cast=int, minimum=0),
        "min_baths": _number(args, "min_baths", cast=int, minimum=0),
        "owner_id": _number(args, "owner_id", cast=int, minimum=1),
        "lat": _number(args, "lat", minimum=-90, maximum=90),
        "lng": _number(args, "lng", minimum=-180, maximum=180),
        "radius_km": _number(args, "radius_km", minimum=0),
        "page": _number(args, "page", cast=int, minimum=1) or 1,
        "page_size": _number(args, "page_size", cast=int, minimum=1, maximum=MAX_PAGE_SIZE)
                     or DEFAULT_PAGE_SIZE,
    }

    availability = _text(args, "availability")
    if availability is not None:
        availability = availability.lower()
        if availability not in AVAILABILITY:
            raise ApiError("availability must be 'available' or 'soldout'")
    criteria["availability"] = availability

    sort = (_text(args, "sort") or "default").lower()
    if sort not in SORT_KEYS:
        raise ApiError(f"Unknown sort key: {sort}")
    criteria["sort"] = sort

    if (criteria["min_price"] is not None and criteria["max_price"] is not None
            and criteria["min_price"] > criteria["max_price"]):
        raise ApiError("min_price cannot be greater than max_price")

    if (criteria["lat"] is None) != (criteria["lng"] is None):
        raise ApiError("lat and lng must be given together")

    if criteria["radius_km"] is not None and criteria["lat"] is None:
        raise ApiError("radius_km requires lat and lng")

    if sort == "distance" and criteria["lat"] is None:
        raise ApiError("sort=distance requires lat and lng")

    return criteria


# ========== SQL BUILDING ==========

def build_where(criteria: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """Return (WHERE clause or '', bind params) for the scalar filters"""
    where: List[str] = []
    params: Dict[str, Any] = {}

    if criteria.get("q"):
        where.append(
            "(LOWER(title) LIKE :q OR LOWER(COALESCE(address, '')) LIKE :q "
            "OR LOWER(COALESCE(description, '')) LIKE :q OR LOWER(COALESCE(city, '')) LIKE :q)"
        )
        params["q"] = f"%{criteria['q'].lower()}%"
    if criteria.get("min_price") is not None:
        where.append("price >= :min_price")
        params["min_price"] = criteria["min_price"]
    if criteria.get("max_price") is not None:
        where.append("price <= :max_price")
        params["max_price"] = criteria["max_price"]
    if criteria.get("category"):
        where.append("category = :category")
        params["category"] = criteria["category"]
    if criteria.get("city"):
        where.append("LOWER(city) = :city")
        params["city"] = criteria["city"].lower()
    if criteria.get("furnished"):
        where.append("LOWER(furnished) = :furnished")
        params["furnished"] = criteria["furnished"].lower()
    if criteria.get("verified"):
        where.append("verified = 1")
    if criteria.get("min_beds") is not None:
        where.append("bedrooms >= :min_beds")
        params["min_beds"] = criteria["min_beds"]
    if criteria.get("min_baths") is not None:
        where.append("bathrooms >= :min_baths")
        params["min_baths"] = criteria["min_baths"]
    if criteria.get("availability") == "available":
        where.append("available_units > 0")
    elif criteria.get("availability") == "soldout":
        where.append("available_units <= 0")
    if criteria.get("owner_id") is not None:
        where.append("owner_id = :owner_id")
        params["owner_id"] = criteria["owner_id"]

    clause = "WHERE " + " AND ".join(where) if where else ""
    return clause, params


def order_by(criteria: Dict[str, Any]) -> str:
    return SORT_KEYS[criteria.get("sort") or "default"]


def needs_geo(criteria: Dict[str, Any]) -> bool:
    return criteria.get("lat") is not None and criteria.get("lng") is not None


# ========== DISTANCE ==========

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    # Great-circle distance on a spherical Earth
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _distance_for(row: Dict[str, Any], lat: float, lng: float) -> Optional[float]:
    if row.get("latitude") is None or row.get("longitude") is None:
        return None
    return round(haversine_km(lat, lng, float(row["latitude"]), float(row["longitude"])), 2)


def apply_geo(rows: List[Dict[str, Any]], criteria: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Attach distance_km, drop rows outside the radius (or without coordinates
    when a radius is set) and order by distance when asked to.
    Input order is preserved otherwise.
    """
    lat, lng, radius = criteria["lat"], criteria["lng"], criteria.get("radius_km")

    kept = []
    for row in rows:
        row["distance_km"] = _distance_for(row, lat, lng)
        if radius is not None and (row["distance_km"] is None or row["distance_km"] > radius):
            continue
        kept.append(row)

    if criteria.get("sort") == "distance":
        # sorted() is stable, so SQL order breaks ties
        kept = sorted(kept, key=lambda r: (r["distance_km"] is None, r["distance_km"] or 0.0))
    return kept


def paginate(items: List[Any], page: int, page_size: int) -> List[Any]:
    start = (page - 1) * page_size
    return items[start:start + page_size]


def page_count(total: int, page_size: int) -> int:
    return max(1, math.ceil(total / page_size))
