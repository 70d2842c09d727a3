import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth.dependencies import ADMIN, AuthContext
from app.integrations.errors import IntegrationError
from app.integrations.realtime_bus import RealtimeBus
from app.models.courier import Courier
from app.models.notification import Notification, ReceiverRole
from app.models.order import Order, OrderStatus
from app.models.timeline_entry import TimelineEntry
from app.observability import log_event, metrics_store
from app.services.errors import ForbiddenError, NotFoundError

NEW_NOTIFICATION_EVENT = "new-notification"
TIMELINE_UPDATE_EVENT = "timeline_update"


@dataclass(frozen=True)
class OutgoingNotification:
    receiver_role: ReceiverRole
    receiver_id: str | None
    title: str
    message: str
    metadata: dict[str, Any]


def channel_for(notification: Notification) -> str:
    if notification.receiver_role == ReceiverRole.ALL.value:
        return "notifications-all"
    if notification.receiver_id:
        return f"notifications-user-{notification.receiver_id}"
    return f"notifications-{notification.receiver_role}"


def order_channel(order_id: uuid.UUID) -> str:
    return f"order-{order_id}"


def _short_id(order: Order) -> str:
    return str(order.id)[:8]


def _buyer_link(order: Order) -> str:
    return f"/orders/{order.id}"


def _admin_link(order: Order) -> str:
    return f"/admin/dashboard?tab=orders&order={order.id}"


def _courier_link(order: Order) -> str:
    return f"/delivery/orders/{order.id}"


def _vendor_link(order: Order) -> str:
    return f"/vendor/dashboard?order={order.id}"


def _metadata(kind: str, order: Order, action: str) -> dict[str, Any]:
    return {"type": kind, "order_id": str(order.id), "action": action}


def _to_buyer(order: Order, kind: str, title: str, message: str) -> OutgoingNotification:
    return OutgoingNotification(
        receiver_role=ReceiverRole.BUYER,
        receiver_id=order.buyer_id,
        title=title,
        message=message,
        metadata=_metadata(kind, order, _buyer_link(order)),
    )


def _to_admins(order: Order, kind: str, title: str, message: str) -> OutgoingNotification:
    return OutgoingNotification(
        receiver_role=ReceiverRole.ADMIN,
        receiver_id=None,
        title=title,
        message=message,
        metadata=_metadata(kind, order, _admin_link(order)),
    )


def _to_vendor(order: Order, kind: str, title: str, message: str) -> OutgoingNotification:
    return OutgoingNotification(
        receiver_role=ReceiverRole.VENDOR,
        receiver_id=order.shop_id,
        title=title,
        message=message,
        metadata=_metadata(kind, order, _vendor_link(order)),
    )


def _courier_name(db: Session, courier_id: str | None) -> str:
    if not courier_id:
        return "the delivery partner"
    courier = db.get(Courier, courier_id)
    return courier.name if courier is not None else courier_id


def recipients_for_transition(
    db: Session,
    order: Order,
    status: OrderStatus,
    caller: AuthContext,
) -> list[OutgoingNotification]:
    """Who hears about ``order`` having just entered ``status``.

    ``status`` is the committed target, not ``order.status``: the row may
    already have moved on by the time the fan-out runs.
    """
    short_id = _short_id(order)
    outgoing: list[OutgoingNotification] = []

    if status == OrderStatus.ACCEPTED:
        outgoing.append(
            _to_buyer(
                order,
                "order_accepted",
                "Order Accepted",
                f"Your order #{short_id} has been accepted by the shop",
            )
        )
    elif status == OrderStatus.ASSIGNED:
        outgoing.append(
            OutgoingNotification(
                receiver_role=ReceiverRole.DELIVERY,
                receiver_id=order.courier_id,
                title="New Delivery Assigned",
                message=f"Order #{short_id} has been assigned to you",
                metadata=_metadata("delivery_assigned", order, _courier_link(order)),
            )
        )
    elif status == OrderStatus.READY:
        outgoing.append(
            _to_buyer(
                order,
                "order_ready",
                "Order Ready",
                f"Your order #{short_id} is ready for pickup",
            )
        )
    elif status == OrderStatus.PICKED_UP:
        outgoing.append(
            _to_buyer(
                order,
                "order_picked_up",
                "Order Picked Up",
                f"Your order #{short_id} is on its way",
            )
        )
    elif status == OrderStatus.REJECTED:
        outgoing.append(
            _to_buyer(
                order,
                "order_rejected",
                "Order Rejected",
                f"Your order #{short_id} has been rejected by the shop",
            )
        )
    elif status == OrderStatus.DELIVERED:
        courier_name = _courier_name(db, order.courier_id)
        outgoing.append(
            _to_buyer(
                order,
                "order_delivered",
                "Order Delivered",
                f"Your order #{short_id} has been delivered",
            )
        )
        outgoing.append(
            _to_admins(
                order,
                "order_delivered",
                "Order Delivered",
                f"{courier_name} delivered order #{short_id}",
            )
        )
        outgoing.append(
            _to_vendor(
                order,
                "order_delivered",
                "Order Delivered",
                f"Order #{short_id} has been delivered to the customer",
            )
        )

    admins_covered = any(
        item.receiver_role == ReceiverRole.ADMIN and item.receiver_id is None for item in outgoing
    )
    if caller.role == ADMIN and not admins_covered:
        outgoing.append(
            _to_admins(
                order,
                "audit",
                "Order Updated",
                f"{caller.display_name} moved order #{short_id} to {status.value}",
            )
        )
    return outgoing


def send_notification(
    db: Session,
    bus: RealtimeBus,
    outgoing: OutgoingNotification,
    order_id: uuid.UUID | None = None,
) -> Notification | None:
    """Persist one notification and publish it; failures are logged, never raised."""
    try:
        notification = Notification(
            receiver_role=outgoing.receiver_role.value,
            receiver_id=outgoing.receiver_id,
            title=outgoing.title,
            message=outgoing.message,
            metadata_json=outgoing.metadata,
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)
    except SQLAlchemyError:
        db.rollback()
        _record_failure("notification_persist_failed", order_id, outgoing)
        return None

    try:
        bus.publish(channel_for(notification), NEW_NOTIFICATION_EVENT, serialize(notification))
    except IntegrationError:
        _record_failure("notification_publish_failed", order_id, outgoing)
    return notification


def _record_failure(
    message: str,
    order_id: uuid.UUID | None,
    outgoing: OutgoingNotification,
) -> None:
    metrics_store.increment("notification_failures_total")
    log_event(
        message,
        order_id=str(order_id) if order_id else None,
        detail=f"{outgoing.receiver_role.value}:{outgoing.receiver_id or '*'}",
        level=logging.WARNING,
        exc_info=True,
    )


def serialize(notification: Notification) -> dict[str, Any]:
    return {
        "id": str(notification.id),
        "receiver_role": notification.receiver_role,
        "receiver_id": notification.receiver_id,
        "title": notification.title,
        "message": notification.message,
        "metadata": notification.metadata_json,
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


def _serialize_entry(entry: TimelineEntry) -> dict[str, Any]:
    return {
        "id": str(entry.id),
        "sequence": entry.sequence,
        "status": entry.status,
        "action": entry.action,
        "description": entry.description,
        "actor_role": entry.actor_role,
        "actor_id": entry.actor_id,
        "actor_name": entry.actor_name,
        "metadata": entry.metadata_json,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def publish_timeline_update(bus: RealtimeBus, order: Order, entry: TimelineEntry) -> None:
    try:
        bus.publish(
            order_channel(order.id),
            TIMELINE_UPDATE_EVENT,
            {"entry": _serialize_entry(entry), "new_status": entry.status},
        )
    except IntegrationError:
        metrics_store.increment("notification_failures_total")
        log_event(
            "timeline_publish_failed",
            order_id=str(order.id),
            level=logging.WARNING,
            exc_info=True,
        )


def fan_out_transition(
    db: Session,
    order: Order,
    previous_status: OrderStatus,
    next_status: OrderStatus,
    entry: TimelineEntry,
    caller: AuthContext,
    bus: RealtimeBus,
) -> list[Notification]:
    publish_timeline_update(bus, order, entry)

    try:
        outgoing = recipients_for_transition(db, order, next_status, caller)
    except SQLAlchemyError:
        db.rollback()
        metrics_store.increment("notification_failures_total")
        log_event(
            "notification_fan_out_failed",
            order_id=str(order.id),
            detail=f"{previous_status.value}->{next_status.value}",
            level=logging.WARNING,
            exc_info=True,
        )
        return []

    sent = [send_notification(db, bus, item, order.id) for item in outgoing]
    return [notification for notification in sent if notification is not None]


def notify_order_placed(
    db: Session,
    order: Order,
    entry: TimelineEntry,
    bus: RealtimeBus,
) -> list[Notification]:
    short_id = _short_id(order)
    buyer = order.buyer_name or order.buyer_id
    publish_timeline_update(bus, order, entry)
    outgoing = [
        _to_admins(order, "order_placed", "New Order", f"{buyer} placed order #{short_id}"),
        _to_vendor(
            order,
            "order_placed",
            "New Order Received",
            f"You have a new order #{short_id} from {buyer}",
        ),
    ]
    sent = [send_notification(db, bus, item, order.id) for item in outgoing]
    return [notification for notification in sent if notification is not None]


def _visible_to(caller: AuthContext):
    return or_(
        and_(Notification.receiver_id == caller.user_id, Notification.receiver_role == caller.role),
        and_(Notification.receiver_id.is_(None), Notification.receiver_role == caller.role),
        Notification.receiver_role == ReceiverRole.ALL.value,
    )


def list_notifications(
    db: Session,
    caller: AuthContext,
    unread_only: bool = False,
    limit: int = 50,
) -> list[Notification]:
    stmt = select(Notification).where(_visible_to(caller))
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    return list(db.scalars(stmt.order_by(Notification.created_at.desc()).limit(limit)))


def unread_count(db: Session, caller: AuthContext) -> int:
    count = db.scalar(
        select(func.count())
        .select_from(Notification)
        .where(_visible_to(caller), Notification.is_read.is_(False))
    )
    return int(count or 0)


def mark_read(db: Session, notification_id: str, caller: AuthContext) -> Notification:
    try:
        notification = db.get(Notification, uuid.UUID(notification_id))
    except ValueError as err:
        raise NotFoundError("Notification not found", notification_id=notification_id) from err
    if notification is None:
        raise NotFoundError("Notification not found", notification_id=notification_id)

    visible = db.scalar(
        select(func.count())
        .select_from(Notification)
        .where(Notification.id == notification.id, _visible_to(caller))
    )
    if not visible:
        raise ForbiddenError(
            "Notification belongs to another user", notification_id=notification_id
        )

    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification
