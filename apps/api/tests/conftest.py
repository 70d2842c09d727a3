from decimal import Decimal
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401
from app.auth.dependencies import AuthContext
from app.config import settings
from app.db.base import Base
from app.db.session import engine as app_engine
from app.db.session import get_db
from app.integrations.realtime_bus import get_realtime_bus
from app.main import app
from app.models.order import OrderStatus, PaymentType
from app.observability import metrics_store
from app.schemas.order import OrderCreate, OrderProduct
from app.services import courier_service, orders_service

testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=app_engine)


class FakeRealtimeBus:
    def __init__(self) -> None:
        self.published: list[tuple[str, str, dict[str, Any]]] = []

    def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        self.published.append((channel, event, payload))

    def channels(self, event: str | None = None) -> list[str]:
        return [channel for channel, name, _ in self.published if event is None or name == event]


@pytest.fixture(scope="session", autouse=True)
def enable_testing_mode():
    original_testing = settings.testing
    original_log_json = settings.log_json
    settings.testing = True
    settings.log_json = False
    yield
    settings.testing = original_testing
    settings.log_json = original_log_json


@pytest.fixture(scope="session", autouse=True)
def enable_test_auth_bypass():
    original = settings.enable_test_auth_bypass
    settings.enable_test_auth_bypass = True
    yield
    settings.enable_test_auth_bypass = original


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=app_engine)
    Base.metadata.create_all(bind=app_engine)
    yield


@pytest.fixture(autouse=True)
def reset_metrics_store():
    metrics_store.reset()
    yield


@pytest.fixture
def db_session():
    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def other_session():
    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def bus() -> FakeRealtimeBus:
    return FakeRealtimeBus()


@pytest.fixture
def client(bus):
    def override_get_db():
        db = testing_session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_realtime_bus] = lambda: bus
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def buyer() -> AuthContext:
    return AuthContext(user_id="buyer-1", role="buyer", name="Ada Buyer")


@pytest.fixture
def vendor() -> AuthContext:
    return AuthContext(user_id="shop-1", role="vendor", name="Corner Shop")


@pytest.fixture
def admin() -> AuthContext:
    return AuthContext(user_id="admin-1", role="admin", name="Ops Admin")


@pytest.fixture
def courier_as():
    def _caller(courier_id: str, name: str | None = None) -> AuthContext:
        return AuthContext(user_id=courier_id, role="delivery", name=name)

    return _caller


@pytest.fixture
def place_order(db_session, buyer, bus):
    def _place(payment_type: PaymentType = PaymentType.COD, shop_id: str = "shop-1"):
        payload = OrderCreate(
            shop_id=shop_id,
            products=[
                OrderProduct(product_id="p-1", name="Milk", price=Decimal("2.50"), quantity=2),
                OrderProduct(product_id="p-2", name="Bread", price=Decimal("1.25"), quantity=1),
            ],
            delivery_cost=Decimal("3.00"),
            payment_type=payment_type,
        )
        return orders_service.create_order(db_session, payload, buyer, bus)

    return _place


@pytest.fixture
def add_courier(db_session, admin, courier_as):
    def _add(courier_id: str = "courier-a", name: str = "Kofi Rider", available: bool = True):
        courier = courier_service.register_courier(db_session, admin, name, courier_id=courier_id)
        if available:
            courier = courier_service.set_courier_availability(
                db_session, courier_id, True, courier_as(courier_id, name)
            )
        return courier

    return _add


@pytest.fixture
def assigned_order(db_session, place_order, add_courier, vendor, admin, bus):
    """An accepted COD order assigned to courier-a, with its otp pinned to 1234."""

    def _build(courier_id: str = "courier-a"):
        add_courier(courier_id)
        order = place_order()
        order.otp = "1234"
        db_session.commit()
        orders_service.transition_order(db_session, order.id, OrderStatus.ACCEPTED, vendor, bus)
        return orders_service.transition_order(
            db_session, order.id, OrderStatus.ASSIGNED, admin, bus, courier_id=courier_id
        )

    return _build
