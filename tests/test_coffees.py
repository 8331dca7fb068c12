def _token(register, username):
    return register(username).json()["user"]["token"]


def test_alice_scenario(client, register):
    resp = register("alice")
    assert resp.status_code == 200
    token = resp.json()["user"]["token"]
    assert register("alice").status_code == 409

    resp = client.get("/api/coffees", params={"token": token})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "coffees": []}

    resp = client.post("/api/coffees", json={"token": token, "coffees": [{"name": "X"}]})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "saved": 1}

    coffees = client.get("/api/coffees", params={"token": token}).json()["coffees"]
    assert len(coffees) == 1
    assert coffees[0]["name"] == "X"
    assert isinstance(coffees[0]["id"], int)
    assert coffees[0]["savedAt"].endswith("Z")


def test_save_replaces_whole_list(client, register):
    token = _token(register, "alice")
    a = {"name": "Gesha", "origin": "Panama", "tastingNotes": "jasmine"}
    b = {"name": "Sidra", "origin": "Ecuador", "altitude": "2000"}

    client.post("/api/coffees", json={"token": token, "coffees": [a, b]})
    coffees = client.get("/api/coffees", params={"token": token}).json()["coffees"]
    stripped = [{k: v for k, v in c.items() if k not in ("id", "savedAt")} for c in coffees]
    assert stripped == [a, b]

    c = {"name": "Bourbon"}
    client.post("/api/coffees", json={"token": token, "coffees": [c]})
    coffees = client.get("/api/coffees", params={"token": token}).json()["coffees"]
    assert [co["name"] for co in coffees] == ["Bourbon"]


def test_save_empty_or_missing_list_clears(client, register):
    token = _token(register, "alice")
    client.post("/api/coffees", json={"token": token, "coffees": [{"name": "X"}]})

    resp = client.post("/api/coffees", json={"token": token, "coffees": []})
    assert resp.json()["saved"] == 0
    assert client.get("/api/coffees", params={"token": token}).json()["coffees"] == []

    client.post("/api/coffees", json={"token": token, "coffees": [{"name": "Y"}]})
    resp = client.post("/api/coffees", json={"token": token})
    assert resp.json()["saved"] == 0
    assert client.get("/api/coffees", params={"token": token}).json()["coffees"] == []


def test_users_do_not_see_each_others_coffees(client, register):
    alice = _token(register, "alice")
    bob = _token(register, "bob")
    client.post("/api/coffees", json={"token": alice, "coffees": [{"name": "A"}]})
    client.post("/api/coffees", json={"token": bob, "coffees": [{"name": "B"}]})

    client.post("/api/coffees", json={"token": alice, "coffees": []})

    assert client.get("/api/coffees", params={"token": alice}).json()["coffees"] == []
    bob_coffees = client.get("/api/coffees", params={"token": bob}).json()["coffees"]
    assert [c["name"] for c in bob_coffees] == ["B"]


def test_coffees_require_token(client):
    resp = client.get("/api/coffees")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Unauthorized"}

    resp = client.post("/api/coffees", json={"coffees": []})
    assert resp.status_code == 401


def test_coffees_reject_unknown_token(client):
    resp = client.get("/api/coffees", params={"token": "bogus"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid token"

    resp = client.post("/api/coffees", json={"token": "bogus", "coffees": [{"name": "X"}]})
    assert resp.status_code == 401
