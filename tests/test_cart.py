import pytest
from pymongo.errors import DuplicateKeyError

import cart
from config import CART_MAX_QUANTITY_PER_LINE
from guest_cart import GuestCart
from tests.conftest import RacingCollection, RacingDb, register


def _sync_with(client, headers):
    def submit(body):
        res = client.post("/cart/sync", json=body, headers=headers)
        res.raise_for_status()
        return res.json()

    return submit


def test_guest_cart_merges_into_empty_account_on_login(client, make_product, tmp_path):
    product_id = make_product()
    guest = GuestCart(tmp_path / "cart.json")
    guest.add({"id": product_id, "name": "Linen Shirt", "price": 50.0}, size="M")

    headers, _ = register(client, "guest@example.com")
    result = guest.sync_to_account(_sync_with(client, headers))

    assert [r["status"] for r in result["results"]] == ["merged"]
    rows = client.get("/cart", headers=headers).json()
    assert len(rows) == 1
    assert rows[0]["product_id"] == product_id
    assert rows[0]["size"] == "M"
    assert rows[0]["quantity"] == 1
    assert rows[0]["product"]["name"] == "Linen Shirt"
    assert guest.items == []
    assert not (tmp_path / "cart.json").exists()


def test_guest_cart_kept_when_sync_fails(make_product, tmp_path):
    product_id = make_product()
    guest = GuestCart(tmp_path / "cart.json")
    guest.add({"id": product_id}, size="S", quantity=2)

    def broken(body):
        raise RuntimeError("network down")

    with pytest.raises(RuntimeError):
        guest.sync_to_account(broken)
    reloaded = GuestCart(tmp_path / "cart.json")
    assert reloaded.items[0]["quantity"] == 2


def test_guest_cart_lines_are_keyed_by_product_and_size(tmp_path):
    guest = GuestCart(tmp_path / "cart.json")
    product = {"id": "p1", "price": 10.0}
    guest.add(product, size="M")
    guest.add(product, size="M")
    guest.add(product, size="L")
    assert guest.count == 3
    assert guest.total == 30.0
    guest.update_quantity("p1", 5, size="L")
    with pytest.raises(ValueError):
        guest.update_quantity("p1", 0, size="L")
    guest.remove("p1", size="M")
    assert guest.sync_payload() == {"items": [{"product_id": "p1", "quantity": 5, "size": "L"}]}


def test_sync_sums_existing_line_and_clamps(client, user, make_product):
    product_id = make_product()
    client.post("/cart", json={"product_id": product_id, "size": "M", "quantity": 3}, headers=user["headers"])

    res = client.post("/cart/sync", json={"items": [{"product_id": product_id, "size": "M", "quantity": 2}]},
                      headers=user["headers"])
    assert res.status_code == 200
    assert res.json()["items"][0]["quantity"] == 5

    res = client.post("/cart/sync", json={"items": [
        {"product_id": product_id, "size": "M", "quantity": CART_MAX_QUANTITY_PER_LINE}]},
        headers=user["headers"])
    assert res.json()["items"][0]["quantity"] == CART_MAX_QUANTITY_PER_LINE


def test_sync_entries_fail_independently(client, user, make_product):
    good = make_product()
    res = client.post("/cart/sync", json={"items": [
        {"product_id": "not-an-id", "quantity": 1},
        {"product_id": "64b7f0c2a1b2c3d4e5f60718", "quantity": 1},
        {"product_id": good, "size": "XXL", "quantity": 1},
        {"product_id": good, "size": "S", "quantity": 2},
    ]}, headers=user["headers"])
    assert res.status_code == 200
    body = res.json()
    assert [r["status"] for r in body["results"]] == ["failed", "failed", "failed", "merged"]
    assert len(body["items"]) == 1
    assert body["items"][0]["quantity"] == 2


def test_add_increments_matching_row_only(client, user, make_product):
    product_id = make_product()
    for size in ("M", "M", "L"):
        res = client.post("/cart", json={"product_id": product_id, "size": size}, headers=user["headers"])
        assert res.status_code == 200
    rows = sorted(client.get("/cart", headers=user["headers"]).json(), key=lambda r: r["size"])
    assert [(r["size"], r["quantity"]) for r in rows] == [("L", 1), ("M", 2)]


def test_add_unknown_product(client, user):
    res = client.post("/cart", json={"product_id": "64b7f0c2a1b2c3d4e5f60718"}, headers=user["headers"])
    assert res.status_code == 404


def test_repeated_increments_converge_on_one_row(db, make_product):
    product_id = make_product()
    for _ in range(4):
        cart._increment(db, "u1", product_id, "M", 1)
    rows = list(db["cart"].find({"user_id": "u1"}))
    assert len(rows) == 1
    assert rows[0]["quantity"] == 4
    with pytest.raises(DuplicateKeyError):
        db["cart"].insert_one({"user_id": "u1", "product_id": product_id, "size": "M", "quantity": 1})


def test_lost_upsert_race_lands_on_rival_row(db, make_product):
    product_id = make_product()
    key = {"user_id": "u1", "product_id": product_id, "size": "M"}
    racing = RacingCollection(db["cart"], "find_one_and_update",
                              rival=lambda coll: coll.insert_one(dict(key, quantity=1)))

    row = cart._increment(RacingDb(db, "cart", racing), "u1", product_id, "M", 2)

    assert racing.raced
    assert row["quantity"] == 3
    assert db["cart"].count_documents(key) == 1


def test_upsert_retried_when_rival_row_vanishes(db, make_product):
    product_id = make_product()
    racing = RacingCollection(db["cart"], "find_one_and_update")

    row = cart._increment(RacingDb(db, "cart", racing), "u1", product_id, "M", 2)

    assert racing.raced
    assert row["quantity"] == 2
    assert db["cart"].count_documents({"user_id": "u1"}) == 1


def test_sync_keeps_going_after_unexpected_entry_error(client, user, make_product, monkeypatch):
    broken, good = make_product("Broken"), make_product("Good")
    real = cart._increment

    def flaky(db, user_id, product_id, *args, **kwargs):
        if product_id == broken:
            raise TypeError("'NoneType' object is not subscriptable")
        return real(db, user_id, product_id, *args, **kwargs)

    monkeypatch.setattr(cart, "_increment", flaky)
    res = client.post("/cart/sync", json={"items": [
        {"product_id": broken, "size": "M", "quantity": 1},
        {"product_id": good, "size": "M", "quantity": 1},
    ]}, headers=user["headers"])

    assert res.status_code == 200
    assert [r["status"] for r in res.json()["results"]] == ["failed", "merged"]


def test_update_quantity_by_row_id(client, user, other_user, make_product):
    product_id = make_product()
    row = client.post("/cart", json={"product_id": product_id, "size": "M"}, headers=user["headers"]).json()

    res = client.put(f"/cart/{row['id']}", json={"quantity": 4}, headers=user["headers"])
    assert res.status_code == 200
    assert res.json()["quantity"] == 4

    assert client.put(f"/cart/{row['id']}", json={"quantity": 0}, headers=user["headers"]).status_code == 422
    assert client.put(f"/cart/{row['id']}", json={"quantity": 2}, headers=other_user["headers"]).status_code == 404


def test_remove_and_clear(client, user, make_product):
    product_id = make_product()
    row = client.post("/cart", json={"product_id": product_id, "size": "M"}, headers=user["headers"]).json()
    client.post("/cart", json={"product_id": product_id, "size": "L"}, headers=user["headers"])

    assert client.delete(f"/cart/{row['id']}", headers=user["headers"]).status_code == 204
    assert len(client.get("/cart", headers=user["headers"]).json()) == 1
    assert client.delete("/cart", headers=user["headers"]).json()["removed"] == 1
    assert client.get("/cart", headers=user["headers"]).json() == []


def test_cart_requires_login(client):
    assert client.get("/cart").status_code == 401
