import os

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest
from fastapi.testclient import TestClient

from app.identity import header_identity_resolver, unavailable_identity_resolver
from app.main import create_app
from scopegate.services.scope import ScopePolicy


PICKER = {
    "X-User-Id": "u2",
    "X-Role-Family": "pickers",
    "X-Warehouse-Ids": "w1",
    "X-Warehouse-Codes": "RTZ",
}


@pytest.fixture
def client(registry, executor):
    app = create_app(
        registry=registry,
        executor=executor,
        policy=ScopePolicy.enforcing(),
        identity_resolver=header_identity_resolver,
    )
    return TestClient(app)


def test_root_and_health(client):
    root = client.get("/")
    assert root.status_code == 200
    assert "widgets" in root.json()["resources"]
    assert root.headers["cache-control"] == "no-store"

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["database"]["ok"] is True


def test_list_widgets_is_scoped(client):
    response = client.get("/api/widgets", params={"page": 1, "pageSize": 10}, headers=PICKER)
    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    body = response.json()
    assert body["total"] == 2
    assert body["page"] == 1
    assert body["pageSize"] == 10
    assert body["resource"] == "widgets"
    assert {row["warehouse_id"] for row in body["rows"]} == {"w1"}


def test_repeated_filters_become_in(client):
    headers = dict(PICKER, **{"X-All-Warehouses": "true"})
    response = client.get(
        "/api/widgets?filters[warehouse_id]=w1&filters[warehouse_id]=w2&sort=-name",
        headers=headers,
    )
    body = response.json()
    assert body["total"] == 3
    assert [row["name"] for row in body["rows"]] == ["Gamma", "Beta", "Alpha"]

    response = client.get("/api/widgets?filters[is_active]=true&activeOnly=true", headers=headers)
    assert response.json()["total"] == 3


def test_projection_and_raw(client):
    projected = client.get("/api/tally_cards", headers=PICKER).json()
    assert projected["raw"] is False
    assert "card_uid" not in projected["rows"][0]

    raw = client.get("/api/tally_cards?raw=true", headers=PICKER).json()
    assert raw["raw"] is True
    assert raw["rows"][0]["card_uid"] == "A1"


def test_missing_identity_is_401_when_scoping_enforced(client):
    response = client.get("/api/widgets")
    assert response.status_code == 401
    body = response.json()
    assert body["error"]["type"] == "identity_unavailable"
    assert body["resource"] == "widgets"
    assert response.headers["cache-control"] == "no-store"


def test_missing_identity_runs_unscoped_when_scoping_disabled(registry, executor):
    app = create_app(
        registry=registry,
        executor=executor,
        policy=ScopePolicy.disabled("internal reporting deployment"),
        identity_resolver=unavailable_identity_resolver,
    )
    response = TestClient(app).get("/api/widgets")
    assert response.status_code == 200
    assert response.json()["total"] == 3


def test_error_envelope_status_codes(client):
    unknown = client.get("/api/gadgets", headers=PICKER)
    assert unknown.status_code == 404
    assert unknown.json()["error"]["type"] == "resource_not_found"
    assert unknown.json()["resource"] == "gadgets"

    bad_page = client.get("/api/widgets?pageSize=abc", headers=PICKER)
    assert bad_page.status_code == 400
    assert bad_page.json()["error"]["field"] == "pageSize"

    too_big = client.get("/api/widgets?pageSize=5000", headers=PICKER)
    assert too_big.status_code == 400

    no_lists = client.get("/api/widgets", headers={"X-User-Id": "u2"})
    assert no_lists.status_code == 500
    assert no_lists.json()["error"]["type"] == "scope_configuration_error"

    missing_row = client.get("/api/widgets/wd3", headers=PICKER)
    assert missing_row.status_code == 404
    assert missing_row.json()["error"]["type"] == "record_not_found"


def test_get_record(client):
    response = client.get("/api/warehouse_locations/loc1", headers=PICKER)
    assert response.status_code == 200
    row = response.json()["row"]
    assert row["warehouse_code"] == "RTZ"
    assert row["warehouse"]["name"] == "Rotterdam"


def test_write_round_trip(client):
    created = client.post("/api/widgets", json={"name": "Delta", "warehouse_id": "w1"}, headers=PICKER)
    assert created.status_code == 201
    new_id = created.json()["id"]

    patched = client.patch(f"/api/widgets/{new_id}", json={"name": "Delta Prime"}, headers=PICKER)
    assert patched.status_code == 200
    assert patched.json()["row"]["name"] == "Delta Prime"

    deleted = client.delete(f"/api/widgets/{new_id}", headers=PICKER)
    assert deleted.json() == {"success": True}
    active = client.get("/api/widgets?activeOnly=true", headers=PICKER).json()
    assert new_id not in {row["id"] for row in active["rows"]}


def test_out_of_scope_write_is_forbidden(client):
    response = client.patch("/api/widgets/wd3", json={"name": "Mine now"}, headers=PICKER)
    assert response.status_code == 403
    assert response.json()["error"]["type"] == "forbidden_out_of_scope_warehouse"


def test_history_endpoint(client):
    response = client.get("/api/resources/stock-adjustments/e-a1-2/history?limit=3", headers=PICKER)
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 5
    assert [row["id"] for row in body["rows"]] == ["e-a1-5", "e-a1-4", "e-a1-3"]
    assert body["rows"][0]["updated_at_pretty"] == "Jan 06, 2024 10:00"

    composite = client.get("/api/resources/stock-adjustments/a|b/history", headers=PICKER)
    assert composite.status_code == 400

    disabled = client.get("/api/resources/widgets/wd1/history", headers=PICKER)
    assert disabled.status_code == 400
    assert disabled.json()["error"]["type"] == "history_not_enabled"
