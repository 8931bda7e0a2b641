import random

ADDRESS = {
    "name": "Alice Liddell",
    "mobile": "+15550100",
    "address_line1": "1 Rabbit Hole",
    "city": "Oxford",
    "state": "Oxon",
    "zip": "OX1",
    "country": "UK",
}


def _create(client, headers, **extra):
    res = client.post("/addresses", json=dict(ADDRESS, **extra), headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def _defaults(client, headers):
    return [a["id"] for a in client.get("/addresses", headers=headers).json() if a["is_default"]]


def test_new_default_replaces_previous(client, user):
    a = _create(client, user["headers"], is_default=True)
    b = _create(client, user["headers"], name="Second", is_default=True)

    listing = client.get("/addresses", headers=user["headers"]).json()
    by_id = {x["id"]: x for x in listing}
    assert by_id[a["id"]]["is_default"] is False
    assert by_id[b["id"]]["is_default"] is True
    assert listing[0]["id"] == b["id"]


def test_update_can_move_default(client, user):
    a = _create(client, user["headers"], is_default=True)
    b = _create(client, user["headers"])
    res = client.put(f"/addresses/{b['id']}", json={"is_default": True, "city": "Cambridge"}, headers=user["headers"])
    assert res.status_code == 200
    assert res.json()["city"] == "Cambridge"
    assert _defaults(client, user["headers"]) == [b["id"]]
    assert client.get(f"/addresses/{a['id']}", headers=user["headers"]).json()["is_default"] is False


def test_at_most_one_default_for_any_sequence(client, user):
    rng = random.Random(7)
    ids = []
    for step in range(12):
        if not ids or rng.random() < 0.4:
            ids.append(_create(client, user["headers"], is_default=rng.random() < 0.5)["id"])
        else:
            target = rng.choice(ids)
            client.put(f"/addresses/{target}", json={"is_default": rng.random() < 0.5}, headers=user["headers"])
        assert len(_defaults(client, user["headers"])) <= 1


def test_deleting_default_does_not_promote(client, user):
    a = _create(client, user["headers"], is_default=True)
    _create(client, user["headers"])
    res = client.delete(f"/addresses/{a['id']}", headers=user["headers"])
    assert res.status_code == 200
    assert _defaults(client, user["headers"]) == []


def test_other_users_address_is_rejected(client, user, other_user):
    a = _create(client, user["headers"])
    assert client.get(f"/addresses/{a['id']}", headers=other_user["headers"]).status_code == 403
    assert client.put(f"/addresses/{a['id']}", json={"city": "X"}, headers=other_user["headers"]).status_code == 403
    assert client.delete(f"/addresses/{a['id']}", headers=other_user["headers"]).status_code == 403
    assert client.get("/addresses", headers=other_user["headers"]).json() == []


def test_missing_and_invalid_addresses(client, user):
    assert client.get("/addresses/64b7f0c2a1b2c3d4e5f60718", headers=user["headers"]).status_code == 404
    assert client.get("/addresses/bogus", headers=user["headers"]).status_code == 422
    res = client.post("/addresses", json={"name": "No city"}, headers=user["headers"])
    assert res.status_code == 422


def test_update_cannot_null_required_field(client, user):
    a = _create(client, user["headers"])
    res = client.put(f"/addresses/{a['id']}", json={"city": None}, headers=user["headers"])
    assert res.status_code == 422
    assert res.json()["code"] == "validation_error"
