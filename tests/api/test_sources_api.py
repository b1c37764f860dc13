"""Tests for /api/v1/sources routes."""


def test_create_and_list_by_type(client):
    client.post("/api/v1/sources", json={"name": "Iraqi Airways"})
    client.post("/api/v1/sources", json={"name": "Grand Hotel", "type": "supplier"})

    everything = client.get("/api/v1/sources").json()["sources"]
    assert [s["name"] for s in everything] == ["Grand Hotel", "Iraqi Airways"]

    airlines = client.get("/api/v1/sources", params={"type": "airline"}).json()["sources"]
    assert [s["type"] for s in airlines] == ["airline"]


def test_unknown_type_rejected(client):
    response = client.post("/api/v1/sources", json={"name": "Bus Co", "type": "bus"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "E-1007"


def test_rename_updates_balances(client, source_id, actor_headers):
    balance = client.post(
        "/api/v1/balances",
        json={"source_id": source_id, "amount": "10", "currency": "IQD"},
        headers=actor_headers,
    ).json()

    renamed = client.patch(f"/api/v1/sources/{source_id}", json={"name": "IA Holidays", "type": "supplier"})

    assert renamed.json()["name"] == "IA Holidays"
    updated = client.get(f"/api/v1/balances/{balance['id']}").json()
    assert updated["source_name"] == "IA Holidays"
    assert updated["type"] == "supplier"


def test_delete_in_use_rejected(client, source_id, actor_headers):
    client.post(
        "/api/v1/balances",
        json={"source_id": source_id, "amount": "10", "currency": "IQD"},
        headers=actor_headers,
    )
    response = client.delete(f"/api/v1/sources/{source_id}")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "E-1009"


def test_delete_unused(client, source_id):
    assert client.delete(f"/api/v1/sources/{source_id}").json() == {"deleted": True, "id": source_id}
    assert client.get("/api/v1/sources").json()["sources"] == []


def test_delete_unknown(client):
    assert client.delete("/api/v1/sources/missing").status_code == 404
