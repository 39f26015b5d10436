def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["trace_id"]
    assert response.headers["X-Trace-ID"] == payload["trace_id"]


def test_ready(client):
    response = client.get("/ready", headers={"X-Trace-ID": "ward-round-42"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    assert payload["trace_id"] == "ward-round-42"


def test_oversized_trace_id_is_replaced(client):
    response = client.get("/health", headers={"X-Trace-ID": "x" * 100})
    assert response.status_code == 200
    assert len(response.json()["trace_id"]) == 36
