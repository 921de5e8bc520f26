import csv
import io

import pytest
from fastapi.testclient import TestClient

from lv_inventory_service import config, persistence
from lv_inventory_service.inventory import InventoryRegistry
from lv_inventory_service.main import app, get_db, get_procore_client, get_registry
from lv_inventory_service.reporting import CSV_HEADERS
from lv_inventory_service.schemas import ProcoreSession

INVENTORY_PATH = "/projects/42/custom_fields/low_voltage_inventory"


@pytest.fixture
def registry(procore, session_factory):
    return InventoryRegistry(procore, session_factory)


@pytest.fixture
def client(procore, registry, session_factory, fake_procore):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_procore_client] = lambda: procore
    app.dependency_overrides[get_registry] = lambda: registry
    fake_procore.add("PUT", INVENTORY_PATH, None)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def logged_in(session_factory, session):
    with session_factory() as db:
        persistence.save_session(db, config.PROCORE_SESSION_KEY, session)
    return session


def create_item(client, **fields):
    body = {"description": "Cat6 plenum cable", "category": "Cable", "quantityAvailable": 10, "cost": 2, **fields}
    response = client.post("/projects/42/inventory", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_read_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestItems:
    def test_create_returns_camel_case_record(self, client, logged_in):
        item = create_item(client, reorderThreshold=10)
        assert item["id"]
        assert item["projectId"] == "42"
        assert item["quantityAvailable"] == 10
        assert item["totalQuantity"] == 10
        assert item["needsReorder"] is True

    def test_create_accepts_snake_case(self, client, logged_in):
        item = create_item(client, part_number="2412-010")
        assert item["partNumber"] == "2412-010"

    def test_create_rejects_negative_quantity(self, client, logged_in):
        response = client.post("/projects/42/inventory", json={"quantityAvailable": -1})
        assert response.status_code == 422

    def test_create_saves_upstream(self, client, logged_in, fake_procore):
        create_item(client)
        assert len(fake_procore.calls("PUT", INVENTORY_PATH)) == 1

    def test_list_and_quick_search(self, client, logged_in):
        create_item(client)
        create_item(client, description="Keystone jack", category="Connectors")

        assert len(client.get("/projects/42/inventory").json()) == 2
        assert [item["description"] for item in client.get("/projects/42/inventory?q=keystone").json()] == [
            "Keystone jack"
        ]

    def test_read_unknown_item(self, client, logged_in):
        response = client.get("/projects/42/inventory/missing")
        assert response.status_code == 404
        assert "missing" in response.json()["detail"]

    def test_update(self, client, logged_in):
        item = create_item(client)
        response = client.put(f"/projects/42/inventory/{item['id']}", json={"location": "Site Trailer"})
        assert response.status_code == 200
        assert response.json()["location"] == "Site Trailer"
        assert response.json()["description"] == item["description"]

    def test_update_unknown_item(self, client, logged_in):
        response = client.put("/projects/42/inventory/missing", json={"location": "x"})
        assert response.status_code == 404

    def test_delete(self, client, logged_in):
        item = create_item(client)
        assert client.delete(f"/projects/42/inventory/{item['id']}").status_code == 204
        assert client.get(f"/projects/42/inventory/{item['id']}").status_code == 404
        assert client.delete(f"/projects/42/inventory/{item['id']}").status_code == 404

    def test_search_by_fields(self, client, logged_in):
        create_item(client, location="Warehouse")
        create_item(client, location="Job Site")
        results = client.get("/projects/42/inventory/search", params={"location": "site", "category": "cable"}).json()
        assert [item["location"] for item in results] == ["Job Site"]

    def test_items_needing_reorder(self, client, logged_in):
        create_item(client, reorderThreshold=2)
        create_item(client, description="Jack", reorderThreshold=20)
        assert [item["description"] for item in client.get("/projects/42/inventory/reorder").json()] == ["Jack"]

    def test_requires_login(self, client, session_factory):
        response = client.post("/projects/42/inventory", json={"description": "Cat6 jack"})

        assert response.status_code == 401
        assert response.json()["login_url"].startswith("https://procore.test/rest/v1.0/oauth/authorize")
        assert client.get("/projects/42/inventory").status_code == 401
        with session_factory() as db:
            assert persistence.read_snapshot(db, "42") is None

    def test_works_from_local_storage_while_procore_is_down(self, client, logged_in, fake_procore, session_factory):
        fake_procore.add("PUT", INVENTORY_PATH, {"errors": "down"}, status_code=503)

        item = create_item(client)

        assert client.get(f"/projects/42/inventory/{item['id']}").status_code == 200
        with session_factory() as db:
            [stored] = persistence.read_snapshot(db, "42")
        assert stored["id"] == item["id"]


class TestAdjust:
    def adjust(self, client, item_id, type_, quantity):
        return client.post(f"/projects/42/inventory/{item_id}/adjust", json={"type": type_, "quantity": quantity})

    def test_add_and_remove(self, client, logged_in):
        item = create_item(client, quantityAvailable=3)
        assert self.adjust(client, item["id"], "add", 4).json()["quantityAvailable"] == 7
        assert self.adjust(client, item["id"], "remove", 20).json()["quantityAvailable"] == 0

    def test_allocate_and_deallocate(self, client, logged_in):
        item = create_item(client, quantityAvailable=10)
        allocated = self.adjust(client, item["id"], "allocate", 6).json()
        assert (allocated["quantityAvailable"], allocated["quantityAllocated"]) == (4, 6)
        returned = self.adjust(client, item["id"], "deallocate", 2).json()
        assert (returned["quantityAvailable"], returned["quantityAllocated"]) == (6, 4)

    def test_allocating_too_much_is_rejected(self, client, logged_in):
        item = create_item(client, quantityAvailable=3)
        response = self.adjust(client, item["id"], "allocate", 5)
        assert response.status_code == 400
        assert client.get(f"/projects/42/inventory/{item['id']}").json()["quantityAvailable"] == 3

    def test_quantity_must_be_positive(self, client, logged_in):
        item = create_item(client)
        assert self.adjust(client, item["id"], "add", 0).status_code == 422

    def test_unknown_item(self, client, logged_in):
        assert self.adjust(client, "missing", "add", 1).status_code == 404


class TestReports:
    def test_report(self, client, logged_in):
        create_item(client, category="Cable", cost=10, quantityAvailable=1)
        create_item(client, category="Cable", cost=20, quantityAvailable=1, quantityAllocated=1)
        create_item(client, category="Devices", cost=30, quantityAvailable=1)

        report = client.get("/projects/42/inventory/report").json()

        assert report["totalItems"] == 3
        assert report["totalValue"] == 80
        assert report["byCategory"]["Cable"] == {"count": 2, "value": 50}

    def test_report_filters(self, client, logged_in):
        create_item(client, category="Cable")
        create_item(client, category="Devices")
        assert client.get("/projects/42/inventory/report", params={"category": "dev"}).json()["totalItems"] == 1

    def test_report_download(self, client, logged_in):
        create_item(client)
        response = client.get("/projects/42/inventory/report.json")
        assert response.status_code == 200
        assert "_LV_Inventory_Report_" in response.headers["content-disposition"]
        assert response.json()["totalItems"] == 1

    def test_csv_export(self, client, logged_in):
        item = create_item(client)
        response = client.get("/projects/42/inventory/export.csv")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "42_LV_Inventory_" in response.headers["content-disposition"]
        header, row = list(csv.reader(io.StringIO(response.text)))
        assert header == CSV_HEADERS
        assert row[0] == item["id"]


def test_inventory_options(client):
    options = client.get("/inventory/options").json()
    assert options["categories"][0] == "Cable"
    assert options["categories"][-1] == "Other"
    assert "Cat6A" in options["subCategories"]["Cable"]
    assert "Roll" in options["units"]


class TestSync:
    def test_purchase_order_sync(self, client, logged_in, fake_procore):
        fake_procore.add("GET", "/projects/42/purchase_orders", [
            {"id": 1, "title": "Cable", "status": "Closed"},
        ])
        fake_procore.add("GET", "/projects/42/purchase_order_contracts/1/line_items", [
            {"description": "Cat6 cable", "quantity": 10, "received_quantity": 2},
        ])

        response = client.post("/projects/42/sync/purchase-orders")

        assert response.status_code == 200
        assert response.json() == {"projectId": "42", "updatedItems": 1}
        [item] = client.get("/projects/42/inventory").json()
        assert item["category"] == "Cable"
        assert item["reorderThreshold"] == 2

    def test_upstream_failure(self, client, logged_in, fake_procore):
        fake_procore.add("GET", "/projects/42/purchase_orders", {"errors": "down"}, status_code=500)
        assert client.post("/projects/42/sync/purchase-orders").status_code == 502

    def test_requires_login(self, client):
        response = client.post("/projects/42/sync/purchase-orders")
        assert response.status_code == 401
        assert response.json()["login_url"].startswith("https://procore.test/rest/v1.0/oauth/authorize")

    def test_rfis(self, client, logged_in, fake_procore):
        fake_procore.add("GET", "/projects/42/rfis", [
            {"id": 4, "subject": "Data drops", "responses": [{"body": "Provide CAT6-BLU at each desk"}]},
        ])
        response = client.post("/projects/42/sync/rfis")
        assert response.json()[0]["partNumbers"] == ["CAT6-BLU"]


class TestAuth:
    def test_login_redirects_to_procore(self, client):
        response = client.get("/auth/login", follow_redirects=False)
        assert response.status_code == 307
        assert response.headers["location"].startswith("https://procore.test/rest/v1.0/oauth/authorize")

    def test_callback_stores_tokens(self, client, fake_procore, session_factory):
        fake_procore.add("POST", "/oauth/token", {"access_token": "new", "refresh_token": "r", "expires_in": 7200})

        response = client.get("/auth/callback", params={"code": "abc"})

        assert response.status_code == 200
        with session_factory() as db:
            stored = persistence.load_session(db, config.PROCORE_SESSION_KEY)
        assert stored.access_token == "new"
        assert stored.is_valid()

    def test_callback_failure(self, client, fake_procore):
        fake_procore.add("POST", "/oauth/token", {"error": "invalid_grant"}, status_code=400)
        assert client.get("/auth/callback", params={"code": "abc"}).status_code == 401

    def test_projects_of_first_company(self, client, logged_in, fake_procore):
        fake_procore.add("GET", "/me", {"id": 1})
        fake_procore.add("GET", "/companies", [{"id": 8}, {"id": 9}])
        fake_procore.add("GET", "/companies/8/projects", [{"id": 42, "name": "Tower A"}])

        assert client.get("/projects").json() == [{"id": 42, "name": "Tower A"}]

    def test_no_companies(self, client, logged_in, fake_procore):
        fake_procore.add("GET", "/me", {"id": 1})
        fake_procore.add("GET", "/companies", [])
        assert client.get("/projects").status_code == 404

    def test_refreshed_tokens_are_persisted(self, client, session_factory, fake_procore):
        with session_factory() as db:
            persistence.save_session(db, config.PROCORE_SESSION_KEY, ProcoreSession(refresh_token="old-refresh"))
        fake_procore.add("POST", "/oauth/token", {"access_token": "fresh", "refresh_token": "next"})
        fake_procore.add("GET", "/projects/42", {"id": 42, "name": "Tower A"})

        assert client.get("/projects/42").json()["name"] == "Tower A"

        with session_factory() as db:
            stored = persistence.load_session(db, config.PROCORE_SESSION_KEY)
        assert stored.access_token == "fresh"
        assert stored.refresh_token == "next"

    def test_rejected_refresh_token_is_dropped(self, client, session_factory, fake_procore):
        with session_factory() as db:
            persistence.save_session(db, config.PROCORE_SESSION_KEY, ProcoreSession(refresh_token="revoked"))
        fake_procore.add("POST", "/oauth/token", {"error": "invalid_grant"}, status_code=400)

        assert client.get("/projects/42/inventory").status_code == 401
        assert client.get("/projects/42/inventory").status_code == 401

        assert len(fake_procore.calls("POST", "/oauth/token")) == 1
        with session_factory() as db:
            assert persistence.load_session(db, config.PROCORE_SESSION_KEY).refresh_token is None
