from fastapi.testclient import TestClient

from server.main import app, brain

client = TestClient(app)


def frame(t, tick, yaw):
    return {
        "time": t,
        "tick": tick,
        "latency": 0.03,
        "entities": [{
            "entity_id": 5,
            "yaw": yaw,
            "simulation_time": t,
            "origin": [100.0, 20.0, 0.0],
            "hitboxes": {"0": [100.0, 20.0, 64.0], "2": [100.0, 20.0, 0.0]},
        }],
    }


def test_healthz():
    assert client.get("/healthz").json() == {"status": "healthy"}


def test_push_update_resolve():
    client.post("/reset")
    for i in range(1, 9):
        r = client.post("/telemetry", json=frame(i / 64.0, i, 10.0 if i % 2 else 70.0))
        assert r.status_code == 200
        r = client.post("/update")
        assert r.json()["active"] == [5]

    r = client.get("/resolve/5")
    assert r.status_code == 200
    body = r.json()
    assert body["source"] == "jitter"
    assert -180.0 < body["yaw"] <= 180.0

    r = client.get("/rewind/5")
    assert r.status_code == 200
    assert r.json()["tick"] > 0

    r = client.post("/shot", json={"entity_id": 5, "hit": False, "reason": "resolver"})
    assert r.json() == {"ok": True}
    assert brain.store.get(5).miss_count == 1

    stats = client.get("/stats").json()
    assert stats["tracked"] == 1


def test_unknown_entity_404():
    client.post("/reset")
    assert client.get("/resolve/404").status_code == 404
    assert client.get("/rewind/404").status_code == 404
    r = client.post("/shot", json={"entity_id": 404, "hit": True, "damage": 10})
    assert r.json() == {"ok": False}


def test_evict():
    client.post("/reset")
    client.post("/telemetry", json=frame(1.0, 64, 0.0))
    client.post("/update")
    client.post("/telemetry", json=frame(20.0, 1280, 0.0) | {"entities": []})
    r = client.post("/evict", json={})
    assert r.json() == {"ok": True, "evicted": 1}
