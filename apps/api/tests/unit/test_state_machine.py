import pytest
from sqlalchemy import select

from app.auth.dependencies import AuthContext
from app.models.order import Order, OrderStatus
from app.models.timeline_entry import TimelineEntry
from app.services.errors import ConflictError, ForbiddenError, InvalidTransitionError
from app.services.orders_service import list_timeline, transition_order
from app.services.state_machine import (
    ORDER_STATE_TRANSITIONS,
    TIMELINE_COPY,
    allowed_targets,
    apply_transition,
    authorize_transition,
    describe,
)


def test_every_status_has_timeline_copy_and_an_edge_entry():
    assert set(TIMELINE_COPY) == set(OrderStatus)
    assert set(ORDER_STATE_TRANSITIONS) == set(OrderStatus)


def test_transition_graph_is_acyclic():
    def reachable(start: OrderStatus, seen: set[OrderStatus]) -> set[OrderStatus]:
        for target in ORDER_STATE_TRANSITIONS[start]:
            if target not in seen:
                seen.add(target)
                reachable(target, seen)
        return seen

    for status in OrderStatus:
        assert status not in reachable(status, set())


def test_terminal_and_unused_statuses_have_no_exits():
    assert ORDER_STATE_TRANSITIONS[OrderStatus.DELIVERED] == {}
    assert ORDER_STATE_TRANSITIONS[OrderStatus.REJECTED] == {}
    assert ORDER_STATE_TRANSITIONS[OrderStatus.OUT_FOR_DELIVERY] == {}


def test_allowed_targets_are_role_scoped():
    assert allowed_targets(OrderStatus.PENDING, "vendor") == ["accepted", "rejected"]
    assert allowed_targets(OrderStatus.ACCEPTED, "vendor") == []
    assert allowed_targets(OrderStatus.ACCEPTED, "admin") == ["assigned"]
    assert allowed_targets(OrderStatus.ASSIGNED, "delivery") == ["picked_up"]


def test_describe_uses_rejection_reason_and_marks_verified_handoff():
    rejected = describe(OrderStatus.REJECTED, reason="Out of stock")
    assert rejected == ("Order Rejected", "Out of stock")
    action, description = describe(OrderStatus.DELIVERED, otp_verified=True)
    assert action == "Order Delivered"
    assert description.endswith("(OTP verified)")


def test_vendor_accepts_order_and_timeline_grows(db_session, place_order, vendor, bus):
    order = place_order()
    assert order.status == OrderStatus.PENDING
    assert [entry.action for entry in order.timeline] == ["Order Placed"]

    accepted = transition_order(db_session, order.id, OrderStatus.ACCEPTED, vendor, bus)

    assert accepted.status == OrderStatus.ACCEPTED
    entries = list_timeline(db_session, order.id, vendor)
    assert [entry.sequence for entry in entries] == [0, 1]
    assert entries[1].action == "Order Accepted"
    assert entries[1].actor_role == "vendor"
    assert entries[1].actor_name == "Corner Shop"


def test_vendor_rejection_records_reason(db_session, place_order, vendor, bus):
    order = place_order()

    rejected = transition_order(
        db_session, order.id, OrderStatus.REJECTED, vendor, bus, reason="Shop closing early"
    )

    assert rejected.status == OrderStatus.REJECTED
    assert rejected.timeline[-1].description == "Shop closing early"
    assert rejected.timeline[-1].metadata_json == {"reason": "Shop closing early"}


def test_skipping_ahead_is_invalid_and_reports_allowed(db_session, place_order, vendor, bus):
    order = place_order()

    with pytest.raises(InvalidTransitionError) as exc_info:
        transition_order(db_session, order.id, OrderStatus.READY, vendor, bus)

    assert exc_info.value.status_code == 409
    assert exc_info.value.detail["current_status"] == "pending"
    assert exc_info.value.detail["allowed"] == ["accepted", "rejected"]
    db_session.refresh(order)
    assert order.status == OrderStatus.PENDING
    assert len(order.timeline) == 1


def test_other_shop_cannot_accept(db_session, place_order, bus):
    order = place_order()
    intruder = AuthContext(user_id="shop-2", role="vendor")
    with pytest.raises(ForbiddenError):
        transition_order(db_session, order.id, OrderStatus.ACCEPTED, intruder, bus)


def test_buyer_cannot_change_status(db_session, place_order, buyer, bus):
    order = place_order()

    with pytest.raises(ForbiddenError):
        authorize_transition(order, OrderStatus.ACCEPTED, buyer)


def test_role_not_allowed_on_reachable_edge_is_forbidden(db_session, assigned_order, courier_as):
    order = assigned_order()

    with pytest.raises(ForbiddenError):
        authorize_transition(order, OrderStatus.READY, courier_as("courier-a"))


def test_courier_is_forbidden_on_orders_assigned_to_someone_else(
    db_session, assigned_order, courier_as, bus
):
    order = assigned_order()

    with pytest.raises(ForbiddenError):
        transition_order(db_session, order.id, OrderStatus.PICKED_UP, courier_as("courier-z"), bus)


def test_stale_writer_loses_and_timeline_is_untouched(
    db_session, other_session, place_order, vendor, bus
):
    order = place_order()
    stale = other_session.get(Order, order.id)
    assert stale.status == OrderStatus.PENDING

    transition_order(db_session, order.id, OrderStatus.ACCEPTED, vendor, bus)

    with pytest.raises(ConflictError) as exc_info:
        apply_transition(other_session, stale, OrderStatus.REJECTED, vendor, bus)

    assert exc_info.value.retryable is True
    assert exc_info.value.detail["expected_status"] == "pending"
    statuses = list(
        db_session.scalars(
            select(TimelineEntry.status)
            .where(TimelineEntry.order_id == order.id)
            .order_by(TimelineEntry.sequence)
        )
    )
    assert statuses == ["pending", "accepted"]


def test_conflicts_are_counted(db_session, other_session, place_order, vendor, bus):
    from app.observability import metrics_store

    order = place_order()
    stale = other_session.get(Order, order.id)
    transition_order(db_session, order.id, OrderStatus.ACCEPTED, vendor, bus)

    with pytest.raises(ConflictError):
        apply_transition(other_session, stale, OrderStatus.ACCEPTED, vendor, bus)

    counters = metrics_store.snapshot().counters
    assert counters["order_transition_conflicts_total"] == 1
    assert counters["order_transitions_total"] == 1
