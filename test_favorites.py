from pymongo.errors import ServerSelectionTimeoutError

import db_mongo


def _down():
    raise ServerSelectionTimeoutError("mongo is down")


def test_favorites_round_trip(client, owner, renter, make_listing):
    listing = make_listing(owner, title="Sunny Loft", price=1999.5)
    lid = listing["listing_id"]

    first = client.post("/api/favorites", headers=renter["headers"], json={"listingId": lid})
    assert first.status_code == 200
    assert first.get_json()["added"] is True

    again = client.post("/api/favorites", headers=renter["headers"], json={"listingId": lid})
    assert again.get_json()["added"] is False

    favorites = client.get("/api/favorites", headers=renter["headers"]).get_json()
    assert favorites["count"] == 1
    saved = favorites["data"][0]
    assert saved["listing_id"] == lid
    assert saved["title"] == "Sunny Loft"
    assert saved["price"] == 1999.5
    assert saved["saved_at"]

    assert client.delete(f"/api/favorites/{lid}", headers=renter["headers"]).status_code == 200
    assert client.delete(f"/api/favorites/{lid}", headers=renter["headers"]).status_code == 404
    assert client.get("/api/favorites", headers=renter["headers"]).get_json()["count"] == 0


def test_favorites_newest_first(client, owner, renter, make_listing):
    older = make_listing(owner, title="Older")
    newer = make_listing(owner, title="Newer")
    client.post("/api/favorites", headers=renter["headers"], json={"listingId": older["listing_id"]})
    client.post("/api/favorites", headers=renter["headers"], json={"listingId": newer["listing_id"]})

    data = client.get("/api/favorites", headers=renter["headers"]).get_json()["data"]
    assert [f["title"] for f in data] == ["Newer", "Older"]


def test_favorite_validation(client, renter):
    assert client.post("/api/favorites", headers=renter["headers"], json={}).status_code == 400
    assert client.post("/api/favorites", headers=renter["headers"],
                       json={"listingId": 999999}).status_code == 404
    assert client.get("/api/favorites").status_code == 401


def test_favorites_report_mongo_outage(client, renter, owner, make_listing, monkeypatch):
    listing = make_listing(owner)
    monkeypatch.setattr(db_mongo, "get_db", _down)

    assert client.get("/api/favorites", headers=renter["headers"]).status_code == 503
    resp = client.post("/api/favorites", headers=renter["headers"], json={"listingId": listing["listing_id"]})
    assert resp.status_code == 503
    assert resp.get_json()["ok"] is False
    assert client.delete(f"/api/favorites/{listing['listing_id']}", headers=renter["headers"]).status_code == 503


def test_mongo_outage_does_not_break_sql_requests(client, owner, renter, make_listing, monkeypatch):
    listing = make_listing(owner)
    monkeypatch.setattr(db_mongo, "get_db", _down)

    assert client.get("/api/listings/search?city=Boston", headers=renter["headers"]).status_code == 200
    assert client.delete(f"/api/listings/{listing['listing_id']}", headers=owner["headers"]).status_code == 200
    resp = client.post("/api/auth/register", json={
        "name": "Late", "email": "late@example.com", "password": "secret12", "role": "user",
    })
    assert resp.status_code == 201


def test_deleted_listing_leaves_favorites(client, owner, renter, make_listing):
    listing = make_listing(owner)
    client.post("/api/favorites", headers=renter["headers"], json={"listingId": listing["listing_id"]})

    client.delete(f"/api/listings/{listing['listing_id']}", headers=owner["headers"])
    assert client.get("/api/favorites", headers=renter["headers"]).get_json()["count"] == 0


def test_search_history_recorded_for_signed_in_users(client, owner, renter, make_listing):
    make_listing(owner, city="Boston")
    client.get("/api/listings/search?city=Boston", headers=renter["headers"])
    client.get("/api/listings/search?city=Chicago&sort=price_asc", headers=renter["headers"])
    client.get("/api/listings/search?city=Denver")

    history = client.get("/api/user/history", headers=renter["headers"]).get_json()
    assert history["count"] == 2
    latest = history["data"][0]
    assert latest["search_query"]["city"] == "Chicago"
    assert latest["search_query"]["sort"] == "price_asc"
    assert latest["results_count"] == 0
    assert history["data"][1]["results_count"] == 1


def test_search_history_is_capped(renter):
    for i in range(db_mongo.SEARCH_HISTORY_LIMIT + 5):
        db_mongo.add_search_to_history(renter["id"], {"q": f"term {i}"}, i)

    history = db_mongo.get_search_history(renter["id"])
    assert len(history) == db_mongo.SEARCH_HISTORY_LIMIT
    assert history[0]["search_query"]["q"] == f"term {db_mongo.SEARCH_HISTORY_LIMIT + 4}"
    assert history[-1]["search_query"]["q"] == "term 5"


def test_health(client, monkeypatch):
    monkeypatch.setattr(db_mongo, "check_database_health", lambda: True)
    body = client.get("/api/health").get_json()
    assert body["status"] == "healthy"
    assert body["sql_connected"] is True
    assert body["mongodb_connected"] is True

    monkeypatch.setattr(db_mongo, "check_database_health", lambda: False)
    assert client.get("/api/health").get_json()["status"] == "degraded"


def test_health_reports_mongo_down(client, monkeypatch):
    monkeypatch.setattr(db_mongo, "get_db", _down)
    body = client.get("/api/health").get_json()
    assert body["mongodb_connected"] is False
    assert body["status"] == "degraded"


def test_boolean_listing_id_is_rejected(client, renter, owner, make_listing):
    make_listing(owner)
    resp = client.post("/api/favorites", headers=renter["headers"], json={"listingId": True})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "A valid listingId is required"
