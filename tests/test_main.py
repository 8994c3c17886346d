from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

import delivery_lifecycle
import delivery_store
import main
from delivery_models import Delivery


@pytest.fixture(autouse=True)
def clear_guard():
    delivery_lifecycle.default_guard().clear()
    yield
    delivery_lifecycle.default_guard().clear()


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def headers():
    return {"X-API-KEY": "DEV_KEY"}


@pytest.fixture
def stored(monkeypatch):
    """In-memory stand-in for the remote store, keyed by delivery id."""
    deliveries = {
        7: Delivery(
            id=7,
            status="Pending",
            date="2026-03-02T09:30:00",
            confirmedDate="0001-01-01T00:00:00",
            observations="",
            productItems=[{"quantity": 2, "unitPrice": 90, "discount": 10}],
            order={"id": 3, "crates": 4},
        ),
    }
    calls = []

    async def get_delivery(delivery_id):
        if delivery_id not in deliveries:
            raise delivery_store.StoreError("Not found", 404)
        return deliveries[delivery_id]

    async def change_delivery_status(delivery_id, status, **kwargs):
        calls.append((delivery_id, status, kwargs))
        current = deliveries[delivery_id]
        if current.status != "Pending":
            raise delivery_store.StoreError("Delivery is not pending", 409)
        updated = current.model_copy(
            update={
                "status": status,
                "crates": kwargs.get("crates") or 0,
                "amountReceived": kwargs.get("amount"),
                "paymentMethod": kwargs.get("payment_method"),
            }
        )
        deliveries[delivery_id] = updated
        return updated

    monkeypatch.setattr(delivery_store, "get_delivery", get_delivery)
    monkeypatch.setattr(delivery_store, "change_delivery_status", change_delivery_status)

    return SimpleNamespace(deliveries=deliveries, calls=calls)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requires_api_key(client, stored):
    resp = client.get("/api/v1/deliveries/7", headers={"X-API-KEY": "nope"})
    assert resp.status_code == 401


def test_delivery_detail_with_pricing(client, headers, stored):
    resp = client.get("/api/v1/deliveries/7", headers=headers)

    assert resp.status_code == 200
    data = resp.json()
    assert data["delivery"]["confirmedDate"] is None
    assert data["pricing"]["total"] == pytest.approx(180)
    assert data["pricing"]["totalDiscount"] == pytest.approx(20)
    assert data["pricing"]["display"]["subtotal"] == "$200.00"
    assert data["display"]["status"] == "Pendiente"
    assert data["display"]["returnedCrates"] == "-"
    assert data["display"]["orderCrates"] == "4"


def test_delivery_not_found(client, headers, stored):
    resp = client.get("/api/v1/deliveries/99", headers=headers)
    assert resp.status_code == 404


def test_confirm_then_confirm_again(client, headers, stored):
    resp = client.post(
        "/api/v1/deliveries/7/confirm",
        json={"amountReceived": 0, "paymentMethod": None, "returnedCrates": 3},
        headers=headers,
    )

    assert resp.status_code == 200
    assert resp.json()["status"] == "Confirmed"
    assert resp.json()["crates"] == 3
    assert resp.json()["paymentMethod"] is None

    again = client.post("/api/v1/deliveries/7/confirm", json={}, headers=headers)
    assert again.status_code == 409
    assert len(stored.calls) == 1


def test_confirm_amount_requires_method(client, headers, stored):
    resp = client.post(
        "/api/v1/deliveries/7/confirm",
        json={"amountReceived": 50, "paymentMethod": None, "returnedCrates": 0},
        headers=headers,
    )

    assert resp.status_code == 422
    assert "paymentMethod" in resp.json()["detail"]["fields"]
    assert stored.calls == []


def test_confirm_unknown_payment_method(client, headers, stored):
    resp = client.post(
        "/api/v1/deliveries/7/confirm",
        json={"amountReceived": 50, "paymentMethod": "bitcoin"},
        headers=headers,
    )
    assert resp.status_code == 422


def test_cancel(client, headers, stored):
    resp = client.post("/api/v1/deliveries/7/cancel", headers=headers)

    assert resp.status_code == 200
    assert resp.json()["status"] == "Canceled"
    assert stored.calls == [(7, "Canceled", {})]


def test_store_rejection_maps_to_400(client, headers, stored, monkeypatch):
    async def reject(*args, **kwargs):
        raise delivery_store.StoreFieldError("crates", "Too many crates", 400)

    monkeypatch.setattr(delivery_store, "change_delivery_status", reject)

    resp = client.post(
        "/api/v1/deliveries/7/confirm",
        json={"returnedCrates": 40},
        headers=headers,
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == {
        "error": "Too many crates",
        "field": "crates",
        "fields": {"crates": "Too many crates"},
    }


def test_store_down_maps_to_503(client, headers, stored, monkeypatch):
    async def down(*args, **kwargs):
        raise delivery_store.StoreUnavailable("connection refused")

    monkeypatch.setattr(delivery_store, "change_delivery_status", down)

    resp = client.post("/api/v1/deliveries/7/cancel", headers=headers)
    assert resp.status_code == 503


def test_edit_observations(client, headers, stored, monkeypatch):
    async def update(delivery_id, changes):
        return stored.deliveries[delivery_id].model_copy(update=changes)

    monkeypatch.setattr(delivery_store, "update_delivery", update)

    resp = client.put(
        "/api/v1/deliveries/7/observations",
        json={"observations": "Llamar antes"},
        headers=headers,
    )

    assert resp.status_code == 200
    assert resp.json()["observations"] == "Llamar antes"


def test_list_deliveries_passes_filters(client, headers, stored, monkeypatch):
    seen = {}

    async def get_deliveries(page, page_size, filters):
        seen.update(page=page, page_size=page_size, **filters)
        return [stored.deliveries[7]]

    monkeypatch.setattr(delivery_store, "get_deliveries", get_deliveries)

    resp = client.get(
        "/api/v1/deliveries?page=2&status=Pending&client_id=5",
        headers=headers,
    )

    assert resp.status_code == 200
    assert [d["id"] for d in resp.json()] == [7]
    assert seen["page"] == 2
    assert seen["status"] == "Pending"
    assert seen["client_id"] == 5
    assert seen["user_id"] is None


def test_client_confirmed_deliveries(client, headers, monkeypatch):
    async def confirmed(client_id):
        return [Delivery(id=1, status="Confirmed", confirmedDate="2026-03-02T18:00:00")]

    monkeypatch.setattr(delivery_store, "get_confirmed_deliveries_by_client", confirmed)

    resp = client.get("/api/v1/clients/5/deliveries/confirmed", headers=headers)

    assert resp.status_code == 200
    assert resp.json()[0]["status"] == "Confirmed"


def test_confirm_nan_amount_is_422(client, headers, stored):
    resp = client.post(
        "/api/v1/deliveries/7/confirm",
        content='{"amountReceived": NaN, "paymentMethod": "Cash", "returnedCrates": 0}',
        headers={**headers, "Content-Type": "application/json"},
    )

    assert resp.status_code == 422
    assert "amountReceived" in resp.json()["detail"]["fields"]
    assert stored.calls == []


def test_detail_with_legacy_discount_is_422(client, headers, stored):
    stored.deliveries[8] = Delivery.model_validate(
        {"id": 8, "status": "Confirmed", "productItems": [{"quantity": 1, "unitPrice": 0, "discount": 100}]}
    )

    resp = client.get("/api/v1/deliveries/8", headers=headers)

    assert resp.status_code == 422
