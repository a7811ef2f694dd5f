import threading
from datetime import datetime

import pytest

import db_mysql
from errors import Conflict


def _units(client, listing_id):
    return client.get(f"/api/listings/{listing_id}").get_json()["data"]["available_units"]


def test_purchase_decrements_units(client, owner, renter, make_listing):
    listing = make_listing(owner, title="Lake House", total_units=2)

    resp = client.post("/api/purchases", headers=renter["headers"], json={
        "listingId": listing["listing_id"], "notes": "Moving in June",
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["ok"] is True
    assert body["message"] == "Successfully purchased Lake House"
    assert body["data"]["status"] == "completed"
    assert body["data"]["listing_id"] == listing["listing_id"]
    assert body["purchase_id"] == body["data"]["purchase_id"]
    assert body["data"]["purchase_date"]

    assert _units(client, listing["listing_id"]) == 1


def test_sold_out_listing_conflicts(client, owner, make_user, make_listing):
    listing = make_listing(owner, total_units=1)
    first = make_user("user")
    second = make_user("user")

    assert client.post("/api/purchases", headers=first["headers"],
                       json={"listingId": listing["listing_id"]}).status_code == 201
    resp = client.post("/api/purchases", headers=second["headers"],
                       json={"listingId": listing["listing_id"]})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "This property is no longer available"
    assert _units(client, listing["listing_id"]) == 0


def test_units_never_go_negative(client, owner, make_user, make_listing):
    listing = make_listing(owner, total_units=3)
    statuses = []
    for _ in range(5):
        buyer = make_user("user")
        resp = client.post("/api/purchases", headers=buyer["headers"],
                           json={"listing_id": listing["listing_id"]})
        statuses.append(resp.status_code)

    assert statuses == [201, 201, 201, 409, 409]
    assert _units(client, listing["listing_id"]) == 0

    stats = db_mysql.get_purchase_stats(owner["id"], "owner")
    assert stats["completed"] == 3


def test_conditional_update_refuses_last_unit_twice(owner, renter, make_user, make_listing):
    listing = make_listing(owner, total_units=1)
    other = make_user("user")

    db_mysql.create_purchase(listing["listing_id"], renter["id"])
    with pytest.raises(Conflict):
        db_mysql.create_purchase(listing["listing_id"], other["id"])


def test_purchase_errors(client, owner, renter, make_listing):
    listing = make_listing(owner)

    own = client.post("/api/purchases", headers=owner["headers"], json={"listingId": listing["listing_id"]})
    assert own.status_code == 400
    assert own.get_json()["error"] == "You cannot purchase your own property"

    assert client.post("/api/purchases", headers=renter["headers"], json={}).status_code == 400
    assert client.post("/api/purchases", headers=renter["headers"],
                       json={"listingId": "abc"}).status_code == 400
    assert client.post("/api/purchases", headers=renter["headers"],
                       json={"listingId": 999999}).status_code == 404
    assert client.post("/api/purchases", json={"listingId": listing["listing_id"]}).status_code == 401

    assert _units(client, listing["listing_id"]) == 1


def test_my_purchases_and_sales(client, owner, renter, make_listing):
    listing = make_listing(owner, title="Corner Flat", owner_phone="+1-555-0100", total_units=2)
    client.post("/api/purchases", headers=renter["headers"], json={"listingId": listing["listing_id"]})

    purchases = client.get("/api/purchases/my-purchases", headers=renter["headers"]).get_json()
    assert purchases["count"] == 1
    item = purchases["data"][0]
    assert item["property"]["title"] == "Corner Flat"
    assert item["seller"]["email"] == owner["email"]
    assert item["seller"]["phone"] == "+1-555-0100"

    sales = client.get("/api/purchases/my-sales", headers=owner["headers"]).get_json()
    assert sales["count"] == 1
    assert sales["data"][0]["buyer"]["email"] == renter["email"]

    assert client.get("/api/purchases/my-sales", headers=renter["headers"]).status_code == 403


def test_purchase_stats_by_role(client, owner, renter, admin, make_listing):
    listing = make_listing(owner, total_units=3)
    for _ in range(2):
        client.post("/api/purchases", headers=renter["headers"], json={"listingId": listing["listing_id"]})

    renter_stats = client.get("/api/purchases/stats", headers=renter["headers"]).get_json()["data"]
    owner_stats = client.get("/api/purchases/stats", headers=owner["headers"]).get_json()["data"]
    admin_stats = client.get("/api/purchases/stats", headers=admin["headers"]).get_json()["data"]

    assert renter_stats == {"total": 2, "completed": 2, "pending": 0, "cancelled": 0}
    assert owner_stats["total"] == 2
    assert admin_stats["total"] == 2


def test_cancel_purchase_restores_unit(client, owner, renter, make_user, make_listing):
    listing = make_listing(owner, total_units=1)
    purchase_id = client.post("/api/purchases", headers=renter["headers"],
                              json={"listingId": listing["listing_id"]}).get_json()["purchase_id"]
    assert _units(client, listing["listing_id"]) == 0

    stranger = make_user("user")
    resp = client.post(f"/api/purchases/{purchase_id}/cancel", headers=stranger["headers"])
    assert resp.status_code == 403

    resp = client.post(f"/api/purchases/{purchase_id}/cancel", headers=renter["headers"])
    assert resp.status_code == 200
    assert resp.get_json()["data"]["status"] == "cancelled"
    assert _units(client, listing["listing_id"]) == 1

    again = client.post(f"/api/purchases/{purchase_id}/cancel", headers=renter["headers"])
    assert again.status_code == 409
    assert _units(client, listing["listing_id"]) == 1

    assert client.post("/api/purchases/999999/cancel", headers=renter["headers"]).status_code == 404


def test_cancel_never_exceeds_total_units(client, owner, renter, admin, make_listing):
    listing = make_listing(owner, total_units=2)
    purchase_id = client.post("/api/purchases", headers=renter["headers"],
                              json={"listingId": listing["listing_id"]}).get_json()["purchase_id"]
    # Owner restocks after the sale
    client.put(f"/api/listings/{listing['listing_id']}", headers=owner["headers"],
               json={"available_units": 2})

    resp = client.post(f"/api/purchases/{purchase_id}/cancel", headers=admin["headers"])
    assert resp.status_code == 200
    assert _units(client, listing["listing_id"]) == 2


def test_concurrent_buyers_get_exactly_one_unit(app, client, owner, make_user, make_listing):
    listing = make_listing(owner, total_units=1)
    buyers = [make_user("user") for _ in range(6)]
    barrier = threading.Barrier(len(buyers))
    results = []
    lock = threading.Lock()

    def buy(buyer):
        local_client = app.test_client()
        barrier.wait()
        resp = local_client.post("/api/purchases", headers=buyer["headers"],
                                 json={"listingId": listing["listing_id"]})
        with lock:
            results.append((resp.status_code, resp.get_json().get("error")))

    threads = [threading.Thread(target=buy, args=(b,)) for b in buyers]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    statuses = sorted(status for status, _ in results)
    assert statuses == [201, 409, 409, 409, 409, 409]
    assert all(error == "This property is no longer available" for status, error in results if status == 409)
    assert _units(client, listing["listing_id"]) == 0
    assert db_mysql.get_purchase_stats(owner["id"], "owner")["completed"] == 1


def test_purchase_date_is_a_timestamp(renter, owner, make_listing):
    listing = make_listing(owner)
    purchase = db_mysql.create_purchase(listing["listing_id"], renter["id"])
    assert isinstance(purchase["purchase_date"], datetime)


def test_purchase_date_is_iso_on_the_wire(client, owner, renter, make_listing):
    listing = make_listing(owner)
    body = client.post("/api/purchases", headers=renter["headers"],
                       json={"listingId": listing["listing_id"]}).get_json()
    stamp = body["data"]["purchase_date"]
    assert "T" in stamp
    assert datetime.fromisoformat(stamp)


def test_boolean_listing_id_is_rejected(client, renter):
    resp = client.post("/api/purchases", headers=renter["headers"], json={"listingId": True})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "A valid listingId is required"
