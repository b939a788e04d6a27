import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from labstock.api.main import create_app

D = Decimal


@pytest.fixture
def client(settings, session_factory, clock):
    app = create_app(settings=settings, session_factory=session_factory, today=clock)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def medium_id(client):
    response = client.post("/nomenclature", json={"name": "RPMI 1640", "category": "medium"})
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture
def receive(client, medium_id, clock):
    def _receive(number, quantity=1, per_unit="500", expires_in=None, **extra):
        body = {
            "nomenclature_id": medium_id,
            "batch_number": number,
            "quantity": quantity,
            "volume_per_unit": per_unit,
            **extra,
        }
        if expires_in is not None:
            body["expiration_date"] = (clock.today + timedelta(days=expires_in)).isoformat()
        response = client.post("/batches", json=body)
        assert response.status_code == 201, response.text
        return response.json()

    return _receive


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestCatalogEndpoints:
    def test_register_and_get(self, client, medium_id):
        body = client.get(f"/nomenclature/{medium_id}").json()
        assert body["unit"] == "ml"
        assert body["category"] == "medium"

    def test_container_type_link(self, client):
        container = client.post(
            "/container-types", json={"code": "T75", "name": "Flask T75", "surface_area_cm2": 75}
        ).json()
        item = client.post(
            "/nomenclature",
            json={"name": "T75 flasks", "category": "consumable", "container_type_id": container["id"]},
        ).json()
        assert item["container_type_id"] == container["id"]
        assert item["unit"] == "pcs"
        assert [c["code"] for c in client.get("/container-types").json()] == ["T75"]

    def test_invalid_category_is_422(self, client):
        response = client.post("/nomenclature", json={"name": "X", "category": "antibody"})
        assert response.status_code == 422

    def test_unknown_unit_uses_error_payload(self, client):
        response = client.post(
            "/nomenclature", json={"name": "X", "category": "medium", "unit": "gallon"}
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_unknown_item_is_404(self, client):
        response = client.get(f"/nomenclature/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_unit_frozen_once_stocked(self, client, medium_id, receive):
        receive("LOT-1")
        response = client.patch(f"/nomenclature/{medium_id}", json={"unit": "l"})
        assert response.status_code == 422
        renamed = client.patch(f"/nomenclature/{medium_id}", json={"name": "RPMI"})
        assert renamed.json()["name"] == "RPMI"


class TestBatchEndpoints:
    def test_receive_reports_content_and_expiry_band(self, receive):
        batch = receive("LOT-1", quantity=3, expires_in=5, manufacturer="Gibco")
        assert batch["status"] == "available"
        assert D(batch["total_content"]) == D("1500")
        assert batch["days_until_expiration"] == 5
        assert batch["expiration_warning_level"] == "critical"
        assert batch["manufacturer"] == "Gibco"

    def test_batch_without_date_has_no_band(self, receive):
        batch = receive("LOT-1")
        assert batch["days_until_expiration"] is None
        assert batch["expiration_warning_level"] is None

    def test_duplicate_batch_number_is_422(self, receive, client, medium_id):
        receive("LOT-1")
        response = client.post(
            "/batches",
            json={"nomenclature_id": medium_id, "batch_number": "LOT-1", "quantity": 1},
        )
        assert response.status_code == 422

    def test_consume_cascade(self, client, receive):
        batch = receive("LOT-1", quantity=3)
        response = client.post(f"/batches/{batch['id']}/consume", json={"amount": "700"})
        assert response.status_code == 200
        body = response.json()
        assert body["quantity"] == 2
        assert D(body["current_unit_volume"]) == D("300")

    def test_over_consumption_is_409(self, client, receive):
        batch = receive("LOT-1")
        response = client.post(f"/batches/{batch['id']}/consume", json={"amount": "501"})
        assert response.status_code == 409
        assert response.json()["code"] == "INSUFFICIENT_STOCK"

    def test_adjust_dispose_and_movements(self, client, receive):
        batch = receive("LOT-1", quantity=2)
        client.post(f"/batches/{batch['id']}/adjust", json={"delta": "-100", "reason": "spill"})
        disposed = client.post(
            f"/batches/{batch['id']}/dispose", json={"reason_code": "contamination"}
        ).json()
        assert disposed["status"] == "depleted"

        movements = client.get(f"/batches/{batch['id']}/movements").json()
        assert [m["movement_type"] for m in movements] == ["adjust", "adjust", "receive"]
        assert movements[0]["reason"] == "dispose:contamination"
        assert D(movements[0]["amount"]) == D("-900")

        limited = client.get(f"/batches/{batch['id']}/movements", params={"limit": 1}).json()
        assert len(limited) == 1

    def test_reserve_release(self, client, receive):
        batch = receive("LOT-1")
        assert client.post(f"/batches/{batch['id']}/reserve").json()["status"] == "reserved"
        assert client.post(f"/batches/{batch['id']}/reserve").status_code == 422
        assert client.post(f"/batches/{batch['id']}/release").json()["status"] == "available"

    def test_expire(self, client, receive, clock):
        batch = receive("LOT-1", expires_in=1)
        clock.advance(2)
        assert client.post(f"/batches/{batch['id']}/expire").json()["status"] == "expired"
        response = client.post(f"/batches/{batch['id']}/consume", json={"amount": "1"})
        assert response.status_code == 422

    def test_reconciliation(self, client, receive):
        batch = receive("LOT-1", quantity=4)
        client.post(f"/batches/{batch['id']}/consume", json={"amount": "1234.5"})
        report = client.get(f"/batches/{batch['id']}/reconciliation").json()
        assert report["consistent"] is True
        assert report["movement_count"] == 2
        assert report["replayed_quantity"] == report["live_quantity"] == 2

    def test_unknown_batch_is_404(self, client):
        assert client.get(f"/batches/{uuid.uuid4()}").status_code == 404
        assert client.get(f"/batches/{uuid.uuid4()}/movements").status_code == 404


class TestStockAndAllocation:
    def test_stock(self, client, medium_id, receive):
        receive("LOT-1", quantity=2)
        receive("LOT-2", current_unit_volume="120")
        stock = client.get(f"/nomenclature/{medium_id}/stock").json()
        assert stock["batch_count"] == 2
        assert stock["total_units"] == 3
        assert D(stock["total_volume"]) == D("1120")
        assert stock["unit"] == "ml"

    def test_allocate_fefo(self, client, medium_id, receive):
        late = receive("B2", per_unit="10", expires_in=20)
        early = receive("B1", per_unit="10", expires_in=5)

        response = client.post(f"/nomenclature/{medium_id}/allocate", json={"amount": "15"})

        assert response.status_code == 200
        legs = response.json()["legs"]
        assert [leg["batch_id"] for leg in legs] == [early["id"], late["id"]]
        assert [D(leg["amount"]) for leg in legs] == [D("10"), D("5")]

    def test_dry_run_changes_nothing(self, client, medium_id, receive):
        batch = receive("B1", per_unit="10", expires_in=5)
        body = client.post(
            f"/nomenclature/{medium_id}/allocate", json={"amount": "25", "dry_run": True}
        ).json()
        assert body["dry_run"] is True
        assert D(body["shortfall"]) == D("15")
        assert D(client.get(f"/batches/{batch['id']}").json()["total_content"]) == D("10")

    def test_insufficient_allocation_is_409_and_atomic(self, client, medium_id, receive):
        batch = receive("B1", per_unit="10", expires_in=5)
        response = client.post(f"/nomenclature/{medium_id}/allocate", json={"amount": "11"})
        assert response.status_code == 409
        assert response.json()["code"] == "INSUFFICIENT_STOCK"
        assert len(client.get(f"/batches/{batch['id']}/movements").json()) == 1

    def test_allocate_in_litres(self, client, medium_id, receive):
        receive("B1", quantity=2, expires_in=5)
        body = client.post(
            f"/nomenclature/{medium_id}/allocate", json={"amount": "0.6", "unit": "l"}
        ).json()
        assert D(body["requested"]) == D("600")
        assert body["unit"] == "ml"

    def test_batches_of_item_filtered_by_status(self, client, medium_id, receive):
        first = receive("B1")
        receive("B2")
        client.post(f"/batches/{first['id']}/reserve")
        reserved = client.get(
            f"/nomenclature/{medium_id}/batches", params={"status": "reserved"}
        ).json()
        assert [b["id"] for b in reserved] == [first["id"]]
        assert len(client.get(f"/nomenclature/{medium_id}/batches").json()) == 2


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "trace-42"})
    assert response.headers["X-Request-ID"] == "trace-42"
