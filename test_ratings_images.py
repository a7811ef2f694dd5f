import pytest


# ---------- ratings ----------

def test_rating_upsert_and_average(client, owner, make_user, make_listing):
    listing = make_listing(owner)
    url = f"/api/ratings/{listing['listing_id']}"
    alice = make_user("user", name="Alice")
    bob = make_user("user", name="Bob")

    first = client.post(url, headers=alice["headers"], json={"score": 2})
    assert first.status_code == 200
    assert first.get_json()["data"]["updated"] is False

    again = client.post(url, headers=alice["headers"], json={"score": 5})
    assert again.get_json()["data"]["updated"] is True
    assert again.get_json()["data"]["rating_id"] == first.get_json()["data"]["rating_id"]

    client.post(url, headers=bob["headers"], json={"score": 4})

    avg = client.get(f"{url}/avg").get_json()
    assert avg["average"] == 4.5
    assert avg["count"] == 2

    ratings = client.get(url).get_json()["data"]
    assert len(ratings) == 2
    assert {r["name"] for r in ratings} == {"Alice", "Bob"}


def test_average_without_ratings(client, owner, make_listing):
    listing = make_listing(owner)
    avg = client.get(f"/api/ratings/{listing['listing_id']}/avg").get_json()
    assert avg["average"] is None
    assert avg["count"] == 0


@pytest.mark.parametrize("score", [0, 6, "five", 3.5, None, True])
def test_rating_score_validation(client, owner, renter, make_listing, score):
    listing = make_listing(owner)
    resp = client.post(f"/api/ratings/{listing['listing_id']}", headers=renter["headers"], json={"score": score})
    assert resp.status_code == 400


def test_rating_needs_listing_and_login(client, owner, renter, make_listing):
    assert client.post("/api/ratings/999999", headers=renter["headers"], json={"score": 3}).status_code == 404
    listing = make_listing(owner)
    assert client.post(f"/api/ratings/{listing['listing_id']}", json={"score": 3}).status_code == 401

# ---------- images ----------

def _add(client, account, listing_id, url, **extra):
    resp = client.post(f"/api/images/listing/{listing_id}", headers=account["headers"],
                       json={"image_url": url, **extra})
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["data"]


def test_add_and_list_images(client, owner, make_listing):
    listing = make_listing(owner)
    lid = listing["listing_id"]
    a = _add(client, owner, lid, "https://img.example.com/a.jpg", image_name="a")
    b = _add(client, owner, lid, "https://img.example.com/b.jpg", image_name="b")
    assert (a["sort_order"], b["sort_order"]) == (0, 1)

    images = client.get(f"/api/images/listing/{lid}", headers=owner["headers"]).get_json()["data"]
    assert [i["image_name"] for i in images] == ["a", "b"]

    missing = client.post(f"/api/images/listing/{lid}", headers=owner["headers"], json={"image_name": "x"})
    assert missing.status_code == 400


def test_primary_image_is_unique(client, owner, make_listing):
    lid = make_listing(owner)["listing_id"]
    a = _add(client, owner, lid, "https://img.example.com/a.jpg", is_primary=True)
    b = _add(client, owner, lid, "https://img.example.com/b.jpg", is_primary=True)

    images = client.get(f"/api/images/listing/{lid}", headers=owner["headers"]).get_json()["data"]
    assert {i["image_id"]: i["is_primary"] for i in images} == {a["image_id"]: 0, b["image_id"]: 1}

    resp = client.put(f"/api/images/{a['image_id']}/primary", headers=owner["headers"])
    assert resp.status_code == 200
    images = client.get(f"/api/images/listing/{lid}", headers=owner["headers"]).get_json()["data"]
    assert [i["image_id"] for i in images if i["is_primary"]] == [a["image_id"]]

    listing = client.get(f"/api/listings/{lid}").get_json()["data"]
    assert listing["image_url"] == "https://img.example.com/a.jpg"


def test_reorder_images_ignores_foreign_ids(client, owner, make_listing):
    lid = make_listing(owner)["listing_id"]
    other_lid = make_listing(owner, title="Other")["listing_id"]
    a = _add(client, owner, lid, "https://img.example.com/a.jpg")
    b = _add(client, owner, lid, "https://img.example.com/b.jpg")
    c = _add(client, owner, lid, "https://img.example.com/c.jpg")
    foreign = _add(client, owner, other_lid, "https://img.example.com/z.jpg")

    resp = client.put(f"/api/images/listing/{lid}/reorder", headers=owner["headers"],
                      json={"imageIds": [foreign["image_id"], c["image_id"], a["image_id"], b["image_id"]]})
    assert resp.status_code == 200
    assert [i["image_id"] for i in resp.get_json()["data"]] == [c["image_id"], a["image_id"], b["image_id"]]

    foreign_after = client.get(f"/api/images/listing/{other_lid}", headers=owner["headers"]).get_json()["data"]
    assert foreign_after[0]["sort_order"] == 0

    bad = client.put(f"/api/images/listing/{lid}/reorder", headers=owner["headers"], json={"imageIds": "1,2"})
    assert bad.status_code == 400


def test_update_and_delete_image(client, owner, make_listing):
    lid = make_listing(owner)["listing_id"]
    image = _add(client, owner, lid, "https://img.example.com/a.jpg")

    resp = client.put(f"/api/images/{image['image_id']}", headers=owner["headers"],
                      json={"image_name": "front door", "sort_order": 4})
    assert resp.get_json()["data"]["image_name"] == "front door"
    assert resp.get_json()["data"]["sort_order"] == 4

    assert client.delete(f"/api/images/{image['image_id']}", headers=owner["headers"]).status_code == 200
    assert client.delete(f"/api/images/{image['image_id']}", headers=owner["headers"]).status_code == 404


def test_image_mutations_need_listing_owner(client, make_user, make_listing, admin):
    alice = make_user("owner")
    mallory = make_user("owner")
    lid = make_listing(alice)["listing_id"]
    image = _add(client, alice, lid, "https://img.example.com/a.jpg")

    assert client.post(f"/api/images/listing/{lid}", headers=mallory["headers"],
                       json={"image_url": "https://evil.example.com/x.jpg"}).status_code == 403
    assert client.delete(f"/api/images/{image['image_id']}", headers=mallory["headers"]).status_code == 403
    assert client.put(f"/api/images/{image['image_id']}/primary", headers=mallory["headers"]).status_code == 403
    assert client.put(f"/api/images/{image['image_id']}", headers=admin["headers"],
                      json={"image_name": "by admin"}).status_code == 200
