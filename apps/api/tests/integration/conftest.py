import pytest

from app.auth.jwt import issue_caller_token
from app.config import settings


@pytest.fixture
def auth_headers():
    def _headers(role: str, sub: str, name: str | None = None) -> dict[str, str]:
        token = issue_caller_token(sub, role, settings.jwt_secret, name=name)
        return {"Authorization": f"Bearer {token}"}

    return {
        "buyer": _headers("buyer", "buyer-1", "Ada Buyer"),
        "other_buyer": _headers("buyer", "buyer-2", "Ben Buyer"),
        "shop_a": _headers("vendor", "shop-a", "Corner Shop"),
        "shop_b": _headers("vendor", "shop-b", "Market Stall"),
        "courier_a": _headers("delivery", "courier-a", "Kofi Rider"),
        "courier_b": _headers("delivery", "courier-b", "Ama Rider"),
        "admin": _headers("admin", "admin-1", "Ops Admin"),
    }


@pytest.fixture
def order_payload():
    return {
        "shop_id": "shop-a",
        "products": [
            {"product_id": "p-1", "name": "Milk", "price": "2.50", "quantity": 2},
            {"product_id": "p-2", "name": "Bread", "price": "1.25", "quantity": 1},
        ],
        "delivery_cost": "3.00",
        "payment_type": "COD",
    }


@pytest.fixture
def online_couriers(client, auth_headers):
    for courier_id, name in (("courier-a", "Kofi Rider"), ("courier-b", "Ama Rider")):
        created = client.post(
            "/api/v1/couriers",
            json={"name": name, "id": courier_id},
            headers=auth_headers["admin"],
        )
        assert created.status_code == 201
        online = client.patch(
            f"/api/v1/couriers/{courier_id}/availability",
            json={"is_available": True},
            headers=auth_headers[courier_id.replace("-", "_")],
        )
        assert online.status_code == 200
    return ["courier-a", "courier-b"]


@pytest.fixture
def place_order_via_api(client, auth_headers, order_payload):
    def _place(shop_id: str = "shop-a") -> dict:
        response = client.post(
            "/api/v1/orders",
            json={**order_payload, "shop_id": shop_id},
            headers=auth_headers["buyer"],
        )
        assert response.status_code == 201
        return response.json()

    return _place


@pytest.fixture
def transition(client, auth_headers):
    def _transition(order_id: str, actor: str, status: str, **extra):
        return client.post(
            f"/api/v1/orders/{order_id}/transition",
            json={"status": status, **extra},
            headers=auth_headers[actor],
        )

    return _transition
