from userprops.core.metrics import METRICS, normalize_path, user_property_mutations_total


def test_normalize_path_replaces_ids():
    assert normalize_path("/api/user-properties/") == "/api/user-properties"
    assert normalize_path("/items/123/0b7c9d2e-4f1a-4c7e-9d55-2f3a1b6c8e90") == "/items/:id/:id"


def test_mutations_are_exported(client, workspace_id):
    resp = client.put(
        "/api/user-properties/",
        json={"workspaceId": workspace_id, "name": "email", "definition": {"type": "Trait", "path": "email"}},
    )
    assert resp.status_code == 200
    assert user_property_mutations_total.value({"type": "created"}) == 1

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert metrics.headers["content-type"].startswith("text/plain")
    assert 'user_property_mutations_total{type="created"} 1.0' in metrics.text
    assert 'http_requests_total{method="PUT",path="/api/user-properties",status="200"} 1.0' in metrics.text


def test_reset_clears_counters():
    user_property_mutations_total.inc({"type": "deleted"})
    METRICS.reset()
    assert user_property_mutations_total.value({"type": "deleted"}) == 0
