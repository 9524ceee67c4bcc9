def test_error_responses_include_request_id_in_body_and_header(client):
    r = client.get("/this-route-does-not-exist")
    assert r.status_code == 404

    payload = r.json()
    assert "request_id" in payload
    assert payload["request_id"], payload

    assert r.headers.get("x-request-id") == payload["request_id"]


def test_caller_supplied_request_id_is_echoed(client, persons):
    r = client.get("/api/v1/tasks", params={"id": [0]}, headers={"X-Request-ID": "req-123"})

    assert r.status_code == 400
    assert r.json()["request_id"] == "req-123"
    assert r.headers["x-request-id"] == "req-123"
