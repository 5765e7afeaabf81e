"""
Integration tests for the HTTP API.

Tests cover:
- Import, get, delete and sales endpoints
- Wire format (camelCase fields, UTC timestamps, null category price)
- Error mapping (400 / 404)
"""

import tempfile
import uuid

import pytest
from fastapi.testclient import TestClient

from market.megamarket_server.api import create_app
from market.megamarket_server.config import Settings

ROOT_ID = "069cb8d7-bbdd-47d3-ad8f-82ef4c269df1"
PHONES_ID = "d515e43f-f3f6-4471-bb77-6b455017a2d2"
JPHONE_ID = "863e1a7a-1304-42ae-943b-179184c077e3"
XOMIA_ID = "b1d8fd7d-2ae3-47d5-b2f9-0f094af800d4"
TV_ID = "1cc0129a-2bfe-474c-9ee6-d435bf5fc8f2"

NOT_FOUND = {"code": 404, "message": "Item not found"}
VALIDATION_FAILED = {"code": 400, "message": "Validation Failed"}


class TestHttpApi:
    """Tests for the REST endpoints."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def client(self, data_dir):
        """Create client for an app backed by a fresh database."""
        settings = Settings(data_dir=data_dir, sqlite_wal_mode=False)
        with TestClient(create_app(settings)) as client:
            yield client

    @pytest.fixture
    def catalog(self, client):
        """Goods -> Phones -> [jPhone 79999, Xomia 59999], empty TV category."""
        response = client.post(
            "/imports",
            json={
                "items": [
                    {"type": "CATEGORY", "name": "Goods", "id": ROOT_ID, "parentId": None},
                    {"type": "CATEGORY", "name": "Phones", "id": PHONES_ID, "parentId": ROOT_ID},
                    {"type": "CATEGORY", "name": "TVs", "id": TV_ID, "parentId": ROOT_ID},
                ],
                "updateDate": "2022-02-01T12:00:00.000Z",
            },
        )
        assert response.status_code == 200
        response = client.post(
            "/imports",
            json={
                "items": [
                    {
                        "type": "OFFER",
                        "name": "jPhone 13",
                        "id": JPHONE_ID,
                        "parentId": PHONES_ID,
                        "price": 79999,
                    },
                    {
                        "type": "OFFER",
                        "name": "Xomia Readme 10",
                        "id": XOMIA_ID,
                        "parentId": PHONES_ID,
                        "price": 59999,
                    },
                ],
                "updateDate": "2022-02-02T12:00:00+03:00",
            },
        )
        assert response.status_code == 200
        return client

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_get_category_tree(self, catalog):
        response = catalog.get(f"/nodes/{ROOT_ID}")

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == ROOT_ID
        assert body["type"] == "CATEGORY"
        assert body["parentId"] is None
        assert body["price"] == 69999
        assert body["date"] == "2022-02-02T09:00:00.000Z"

        children = {child["id"]: child for child in body["children"]}
        assert set(children) == {PHONES_ID, TV_ID}
        assert children[TV_ID]["price"] is None
        assert children[TV_ID]["children"] == []
        assert children[TV_ID]["date"] == "2022-02-01T12:00:00.000Z"

        phones = children[PHONES_ID]
        assert phones["price"] == 69999
        offers = {offer["id"]: offer for offer in phones["children"]}
        assert offers[JPHONE_ID]["price"] == 79999
        assert offers[JPHONE_ID]["children"] is None
        assert offers[JPHONE_ID]["parentId"] == PHONES_ID

    def test_get_offer(self, catalog):
        response = catalog.get(f"/nodes/{XOMIA_ID}")

        assert response.status_code == 200
        assert response.json() == {
            "id": XOMIA_ID,
            "name": "Xomia Readme 10",
            "type": "OFFER",
            "price": 59999,
            "date": "2022-02-02T09:00:00.000Z",
            "parentId": PHONES_ID,
            "children": None,
        }

    def test_get_unknown(self, client):
        response = client.get(f"/nodes/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json() == NOT_FOUND

    def test_get_malformed_id(self, client):
        response = client.get("/nodes/not-a-uuid")
        assert response.status_code == 400
        assert response.json() == VALIDATION_FAILED

    @pytest.mark.parametrize(
        "item",
        [
            {"type": "OFFER", "name": "no price", "id": str(uuid.uuid4())},
            {"type": "OFFER", "name": "zero", "id": str(uuid.uuid4()), "price": 0},
            {"type": "OFFER", "name": "huge", "id": str(uuid.uuid4()), "price": 2**63},
            {"type": "CATEGORY", "name": "priced", "id": str(uuid.uuid4()), "price": 5},
            {"type": "OFFER", "name": "", "id": str(uuid.uuid4()), "price": 5},
            {"type": "THING", "name": "bad type", "id": str(uuid.uuid4())},
            {"type": "OFFER", "name": "bad id", "id": "123", "price": 5},
            {
                "type": "OFFER",
                "name": "orphan",
                "id": str(uuid.uuid4()),
                "price": 5,
                "parentId": str(uuid.uuid4()),
            },
        ],
    )
    def test_import_invalid_item(self, client, item):
        response = client.post(
            "/imports", json={"items": [item], "updateDate": "2022-02-01T12:00:00.000Z"}
        )
        assert response.status_code == 400
        assert response.json() == VALIDATION_FAILED

    @pytest.mark.parametrize(
        "update_date",
        [None, "yesterday", "2022-02-01T12:00:00", 1643716800, "1643716800"],
    )
    def test_import_invalid_date(self, client, update_date):
        response = client.post("/imports", json={"items": [], "updateDate": update_date})
        assert response.status_code == 400

    def test_import_without_items(self, client):
        response = client.post("/imports", json={"updateDate": "2022-02-01T12:00:00.000Z"})
        assert response.status_code == 200

    def test_kind_change_rejected(self, catalog):
        response = catalog.post(
            "/imports",
            json={
                "items": [{"type": "CATEGORY", "name": "jPhone 13", "id": JPHONE_ID}],
                "updateDate": "2022-02-03T12:00:00.000Z",
            },
        )
        assert response.status_code == 400
        assert catalog.get(f"/nodes/{JPHONE_ID}").json()["type"] == "OFFER"

    def test_update_price(self, catalog):
        response = catalog.post(
            "/imports",
            json={
                "items": [
                    {
                        "type": "OFFER",
                        "name": "jPhone 13",
                        "id": JPHONE_ID,
                        "parentId": PHONES_ID,
                        "price": 60001,
                    }
                ],
                "updateDate": "2022-02-03T15:00:00.000Z",
            },
        )
        assert response.status_code == 200

        root = catalog.get(f"/nodes/{ROOT_ID}").json()
        assert root["price"] == 60000
        assert root["date"] == "2022-02-03T15:00:00.000Z"

    def test_delete_cascades(self, catalog):
        response = catalog.delete(f"/delete/{PHONES_ID}")
        assert response.status_code == 200

        for node_id in (PHONES_ID, JPHONE_ID, XOMIA_ID):
            assert catalog.get(f"/nodes/{node_id}").status_code == 404

        root = catalog.get(f"/nodes/{ROOT_ID}").json()
        assert root["price"] is None
        assert root["date"] == "2022-02-02T09:00:00.000Z"
        assert [child["id"] for child in root["children"]] == [TV_ID]

    def test_delete_unknown(self, client):
        response = client.delete(f"/delete/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json() == NOT_FOUND

    def test_sales(self, catalog):
        response = catalog.get("/sales", params={"date": "2022-02-03T09:00:00.000Z"})

        assert response.status_code == 200
        ids = {item["id"] for item in response.json()["items"]}
        assert ids == {JPHONE_ID, XOMIA_ID}

    def test_sales_outside_window(self, catalog):
        response = catalog.get("/sales", params={"date": "2022-02-03T09:00:00.001Z"})

        assert response.status_code == 200
        assert response.json()["items"] == []

    @pytest.mark.parametrize(
        "date",
        ["not a date", "1643716800", "2022-02-03T09:00:00", "2022-02-03 09:00:00Z"],
    )
    def test_sales_invalid_date(self, client, date):
        response = client.get("/sales", params={"date": date})
        assert response.status_code == 400
        assert response.json() == VALIDATION_FAILED
