import pytest
from sqlalchemy import update

from app.config import settings
from app.models.courier import Courier
from app.models.order import Order, OrderStatus
from app.services.dispatch_service import assign_manually, assign_order, auto_assign
from app.services.errors import (
    ConflictError,
    CourierUnavailableError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
)
from app.services.orders_service import transition_order


@pytest.fixture
def accepted_order(db_session, place_order, vendor, bus):
    def _build():
        order = place_order()
        return transition_order(db_session, order.id, OrderStatus.ACCEPTED, vendor, bus)

    return _build


def test_manual_assignment_sets_courier_and_notifies_them(
    db_session, accepted_order, add_courier, admin, bus
):
    add_courier("courier-a")
    order = accepted_order()

    assigned = assign_manually(db_session, order.id, "courier-a", admin, bus)

    assert assigned.status == OrderStatus.ASSIGNED
    assert assigned.courier_id == "courier-a"
    entry = assigned.timeline[-1]
    assert entry.action == "Delivery Assigned"
    assert entry.metadata_json == {
        "courier_id": "courier-a",
        "courier_name": "Kofi Rider",
        "assignment": "manual",
    }
    assert "notifications-user-courier-a" in bus.channels("new-notification")


def test_manual_assignment_rejects_unavailable_courier(
    db_session, accepted_order, add_courier, admin, bus
):
    add_courier("courier-a", available=False)
    order = accepted_order()

    with pytest.raises(CourierUnavailableError):
        assign_manually(db_session, order.id, "courier-a", admin, bus)

    db_session.refresh(order)
    assert order.status == OrderStatus.ACCEPTED
    assert order.courier_id is None


def test_manual_assignment_unknown_courier_is_not_found(db_session, accepted_order, admin, bus):
    order = accepted_order()

    with pytest.raises(NotFoundError):
        assign_manually(db_session, order.id, "ghost", admin, bus)


def test_manual_assignment_requires_admin(db_session, accepted_order, add_courier, vendor, bus):
    add_courier("courier-a")
    order = accepted_order()

    with pytest.raises(ForbiddenError):
        assign_manually(db_session, order.id, "courier-a", vendor, bus)


def test_pending_order_cannot_be_assigned(db_session, place_order, add_courier, admin, bus):
    add_courier("courier-a")
    order = place_order()

    with pytest.raises(InvalidTransitionError):
        assign_manually(db_session, order.id, "courier-a", admin, bus)


def test_courier_going_offline_between_check_and_write_is_unavailable(
    db_session, other_session, accepted_order, add_courier, admin, bus
):
    add_courier("courier-a")
    order = accepted_order()
    # loaded as available; this session does not see the other writer until it re-reads
    assert db_session.get(Courier, "courier-a").is_available is True

    other_session.execute(
        update(Courier).where(Courier.id == "courier-a").values(is_available=False)
    )
    other_session.commit()

    with pytest.raises(CourierUnavailableError):
        assign_order(db_session, order, "courier-a", admin, bus)

    db_session.refresh(order)
    assert order.status == OrderStatus.ACCEPTED
    assert order.courier_id is None


def test_order_moved_between_check_and_write_is_conflict(
    db_session, other_session, accepted_order, add_courier, admin, bus
):
    add_courier("courier-a")
    add_courier("courier-b", name="Ama Rider")
    order = accepted_order()
    stale = other_session.get(Order, order.id)

    assign_manually(db_session, order.id, "courier-a", admin, bus)

    with pytest.raises((ConflictError, InvalidTransitionError)) as exc_info:
        assign_order(other_session, stale, "courier-b", admin, bus)

    assert exc_info.value.status_code == 409
    db_session.refresh(order)
    assert order.courier_id == "courier-a"


def test_auto_assign_places_one_order_per_courier(
    db_session, accepted_order, add_courier, admin, bus
):
    add_courier("courier-a")
    orders = [accepted_order() for _ in range(3)]
    order_ids = [order.id for order in orders]

    result = auto_assign(db_session, admin, bus)

    assert result.assigned_count == 1
    assert result.assignments[0].order_id == str(order_ids[0])
    assert result.unplaced_order_ids == [str(order_ids[1]), str(order_ids[2])]
    for order_id in order_ids[1:]:
        order = db_session.get(Order, order_id)
        db_session.refresh(order)
        assert order.status == OrderStatus.ACCEPTED
        assert order.courier_id is None


def test_auto_assign_skips_unavailable_couriers(
    db_session, accepted_order, add_courier, admin, bus
):
    add_courier("courier-a", available=False)
    add_courier("courier-b", name="Ama Rider")
    first = accepted_order()
    second = accepted_order()

    result = auto_assign(db_session, admin, bus)

    assert result.assigned_count == 1
    assert [item.courier_id for item in result.assignments] == ["courier-b"]
    assert result.assignments[0].order_id == str(first.id)
    assert result.unplaced_order_ids == [str(second.id)]


def test_auto_assign_round_robin_prefers_least_loaded_courier(
    db_session, accepted_order, add_courier, admin, bus
):
    add_courier("courier-a")
    add_courier("courier-b", name="Ama Rider")
    busy = accepted_order()
    assign_manually(db_session, busy.id, "courier-a", admin, bus)
    waiting = accepted_order()

    result = auto_assign(db_session, admin, bus)

    assert result.assigned_count == 1
    assert result.assignments[0].order_id == str(waiting.id)
    assert result.assignments[0].courier_id == "courier-b"


def test_auto_assign_first_available_uses_registration_order(
    db_session, accepted_order, add_courier, admin, bus, monkeypatch
):
    monkeypatch.setattr(settings, "auto_assign_policy", "first_available")
    add_courier("courier-a")
    add_courier("courier-b", name="Ama Rider")
    busy = accepted_order()
    assign_manually(db_session, busy.id, "courier-a", admin, bus)
    accepted_order()

    result = auto_assign(db_session, admin, bus)

    assert [item.courier_id for item in result.assignments] == ["courier-a"]


def test_auto_assign_with_no_couriers_reports_everything_unplaced(
    db_session, accepted_order, admin, bus
):
    orders = [accepted_order(), accepted_order()]

    result = auto_assign(db_session, admin, bus)

    assert result.assigned_count == 0
    assert result.unplaced_order_ids == [str(order.id) for order in orders]
    assert result.failures == []


def test_auto_assign_is_admin_only(db_session, vendor, bus):
    with pytest.raises(ForbiddenError):
        auto_assign(db_session, vendor, bus)


def test_auto_assign_records_metrics(db_session, accepted_order, add_courier, admin, bus):
    from app.observability import metrics_store

    add_courier("courier-a")
    accepted_order()

    auto_assign(db_session, admin, bus)

    snapshot = metrics_store.snapshot()
    assert snapshot.counters["auto_assign_runs_total"] == 1
    assert snapshot.counters["auto_assign_orders_assigned_total"] == 1
    assert "auto_assign_seconds" in snapshot.timings
