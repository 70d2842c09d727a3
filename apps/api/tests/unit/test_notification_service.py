import pytest
from sqlalchemy import event

from app.integrations.errors import IntegrationUnavailableError
from app.models.notification import Notification, ReceiverRole
from app.models.order import OrderStatus
from app.observability import metrics_store
from app.services import dispatch_service, notification_service, orders_service
from app.services.errors import ForbiddenError, NotFoundError
from app.services.handoff_service import verify_handoff


class BrokenRealtimeBus:
    def publish(self, channel, event, payload):
        raise IntegrationUnavailableError("realtime_bus", "Realtime bus returned 5xx")


def test_placing_an_order_notifies_admins_and_the_shop(db_session, place_order, bus):
    order = place_order()

    rows = db_session.query(Notification).all()
    assert {(row.receiver_role, row.receiver_id) for row in rows} == {
        ("admin", None),
        ("vendor", "shop-1"),
    }
    assert all("Ada Buyer" in row.message for row in rows)
    assert bus.channels("new-notification") == ["notifications-admin", "notifications-user-shop-1"]
    assert bus.channels("timeline_update") == [f"order-{order.id}"]


def test_acceptance_notifies_the_buyer(db_session, place_order, vendor, bus):
    order = place_order()
    bus.published.clear()

    orders_service.transition_order(db_session, order.id, OrderStatus.ACCEPTED, vendor, bus)

    latest = db_session.query(Notification).filter_by(receiver_role="buyer").one()
    assert latest.receiver_role == "buyer"
    assert latest.receiver_id == "buyer-1"
    assert latest.title == "Order Accepted"
    assert latest.metadata_json == {
        "type": "order_accepted",
        "order_id": str(order.id),
        "action": f"/orders/{order.id}",
    }
    assert "notifications-user-buyer-1" in bus.channels("new-notification")

    channel, _, payload = bus.published[0]
    assert channel == f"order-{order.id}"
    assert payload["new_status"] == "accepted"
    assert payload["entry"]["sequence"] == 1


def test_assignment_notifies_the_courier_and_audits_admin(db_session, assigned_order):
    order = assigned_order()

    courier_rows = db_session.query(Notification).filter_by(receiver_role="delivery").all()
    assert len(courier_rows) == 1
    assert courier_rows[0].receiver_id == "courier-a"
    assert courier_rows[0].metadata_json["action"] == f"/delivery/orders/{order.id}"

    audit = db_session.query(Notification).filter_by(receiver_role="admin", title="Order Updated")
    assert audit.count() == 1
    assert "Ops Admin" in audit.one().message


def test_delivery_notifies_buyer_admins_and_shop(db_session, assigned_order, courier_as, bus):
    order = assigned_order()
    courier = courier_as("courier-a")
    verify_handoff(db_session, order.id, None, OrderStatus.PICKED_UP, courier, bus)
    verify_handoff(db_session, order.id, "1234", OrderStatus.DELIVERED, courier, bus)

    delivered = db_session.query(Notification).filter_by(title="Order Delivered").all()
    assert {(row.receiver_role, row.receiver_id) for row in delivered} == {
        ("buyer", "buyer-1"),
        ("admin", None),
        ("vendor", "shop-1"),
    }
    admin_row = next(row for row in delivered if row.receiver_role == "admin")
    assert admin_row.message.startswith("Kofi Rider delivered order")


def test_admin_acting_on_an_order_does_not_duplicate_the_delivered_broadcast(
    db_session, place_order, admin, bus
):
    order = place_order()

    outgoing = notification_service.recipients_for_transition(
        db_session, order, OrderStatus.DELIVERED, admin
    )

    admin_items = [item for item in outgoing if item.receiver_role == ReceiverRole.ADMIN]
    assert len(admin_items) == 1


def test_bus_failure_keeps_the_transition_and_the_stored_notification(
    db_session, place_order, vendor
):
    order = place_order()
    broken = BrokenRealtimeBus()

    accepted = orders_service.transition_order(
        db_session, order.id, OrderStatus.ACCEPTED, vendor, broken
    )

    assert accepted.status == OrderStatus.ACCEPTED
    assert db_session.query(Notification).filter_by(receiver_role="buyer").count() == 1
    # one timeline publish plus one notification publish
    assert metrics_store.snapshot().counters["notification_failures_total"] == 2


def test_notifications_are_scoped_to_the_reader(
    db_session, place_order, buyer, vendor, admin, courier_as
):
    place_order()

    assert len(notification_service.list_notifications(db_session, vendor)) == 1
    assert len(notification_service.list_notifications(db_session, admin)) == 1
    assert notification_service.list_notifications(db_session, buyer) == []
    assert notification_service.list_notifications(db_session, courier_as("courier-a")) == []


def test_broadcast_to_all_reaches_everyone(db_session, buyer, courier_as, bus):
    outgoing = notification_service.OutgoingNotification(
        receiver_role=ReceiverRole.ALL,
        receiver_id=None,
        title="Maintenance",
        message="Ordering pauses at midnight",
        metadata={"type": "system"},
    )

    notification_service.send_notification(db_session, bus, outgoing)

    assert bus.channels() == ["notifications-all"]
    assert len(notification_service.list_notifications(db_session, buyer)) == 1
    assert len(notification_service.list_notifications(db_session, courier_as("courier-a"))) == 1


def test_mark_read_updates_unread_count(db_session, place_order, vendor):
    place_order()
    assert notification_service.unread_count(db_session, vendor) == 1
    row = notification_service.list_notifications(db_session, vendor)[0]

    notification_service.mark_read(db_session, str(row.id), vendor)

    assert notification_service.unread_count(db_session, vendor) == 0
    assert notification_service.list_notifications(db_session, vendor, unread_only=True) == []


def test_mark_read_rejects_other_readers(db_session, place_order, vendor, buyer):
    place_order()
    row = notification_service.list_notifications(db_session, vendor)[0]

    with pytest.raises(ForbiddenError):
        notification_service.mark_read(db_session, str(row.id), buyer)
    with pytest.raises(NotFoundError):
        notification_service.mark_read(db_session, "not-a-uuid", buyer)


def _notification_types(bus) -> list[str]:
    return [
        payload["metadata"]["type"]
        for _, name, payload in bus.published
        if name == "new-notification"
    ]


def test_fan_out_announces_the_committed_status_when_the_row_moves_on(
    db_session, other_session, place_order, add_courier, vendor, admin, bus
):
    add_courier("courier-a")
    order = place_order()
    bus.published.clear()
    dispatch_bus = type(bus)()
    raced = []

    def assign_right_after_accept(session):
        if raced:
            return
        raced.append(True)
        dispatch_service.assign_manually(other_session, order.id, "courier-a", admin, dispatch_bus)

    event.listen(db_session, "after_commit", assign_right_after_accept)
    try:
        orders_service.transition_order(db_session, order.id, OrderStatus.ACCEPTED, vendor, bus)
    finally:
        event.remove(db_session, "after_commit", assign_right_after_accept)

    assert raced == [True]
    assert _notification_types(bus) == ["order_accepted"]
    timeline = [payload for _, name, payload in bus.published if name == "timeline_update"]
    assert [payload["new_status"] for payload in timeline] == ["accepted"]
    assert _notification_types(dispatch_bus).count("delivery_assigned") == 1
    courier_rows = db_session.query(Notification).filter_by(receiver_role="delivery").all()
    assert len(courier_rows) == 1
