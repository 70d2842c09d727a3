import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import ColumnElement, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth.dependencies import ADMIN, BUYER, DELIVERY, VENDOR, AuthContext
from app.integrations.realtime_bus import RealtimeBus
from app.models.order import Order, OrderStatus
from app.models.timeline_entry import TimelineEntry
from app.observability import log_event, metrics_store
from app.services import commission_service, notification_service
from app.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    OrderLifecycleError,
)

# from-status -> {to-status: roles allowed to take that edge}
ORDER_STATE_TRANSITIONS: dict[OrderStatus, dict[OrderStatus, frozenset[str]]] = {
    OrderStatus.PENDING: {
        OrderStatus.ACCEPTED: frozenset({VENDOR, ADMIN}),
        OrderStatus.REJECTED: frozenset({VENDOR, ADMIN}),
    },
    OrderStatus.ACCEPTED: {
        OrderStatus.ASSIGNED: frozenset({ADMIN}),
    },
    OrderStatus.ASSIGNED: {
        OrderStatus.READY: frozenset({VENDOR, ADMIN}),
        OrderStatus.PICKED_UP: frozenset({DELIVERY}),
    },
    OrderStatus.READY: {
        OrderStatus.PICKED_UP: frozenset({DELIVERY}),
    },
    OrderStatus.OUT_FOR_DELIVERY: {},
    OrderStatus.PICKED_UP: {
        OrderStatus.DELIVERED: frozenset({DELIVERY}),
    },
    OrderStatus.DELIVERED: {},
    OrderStatus.REJECTED: {},
}

TIMELINE_COPY: dict[OrderStatus, tuple[str, str]] = {
    OrderStatus.PENDING: (
        "Order Placed",
        "Order has been placed and waiting for shop confirmation",
    ),
    OrderStatus.ACCEPTED: (
        "Order Accepted",
        "Shop has accepted the order and started preparing",
    ),
    OrderStatus.ASSIGNED: (
        "Delivery Assigned",
        "Order assigned to a delivery partner",
    ),
    OrderStatus.READY: ("Order Ready", "Order is ready for pickup"),
    OrderStatus.OUT_FOR_DELIVERY: (
        "On the Way",
        "Delivery partner is on the way to deliver",
    ),
    OrderStatus.PICKED_UP: (
        "Order Picked Up",
        "Delivery partner has picked up the order",
    ),
    OrderStatus.DELIVERED: (
        "Order Delivered",
        "Order has been successfully delivered",
    ),
    OrderStatus.REJECTED: ("Order Rejected", "Order has been rejected by the shop"),
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def load_order(db: Session, order_id: uuid.UUID | str) -> Order:
    try:
        key = order_id if isinstance(order_id, uuid.UUID) else uuid.UUID(str(order_id))
    except ValueError as err:
        raise NotFoundError("Order not found", order_id=str(order_id)) from err
    order = db.get(Order, key)
    if order is None:
        raise NotFoundError("Order not found", order_id=str(order_id))
    return order


def allowed_targets(current: OrderStatus, role: str) -> list[str]:
    edges = ORDER_STATE_TRANSITIONS.get(current, {})
    return sorted(target.value for target, roles in edges.items() if role in roles)


def ensure_can_act_on(order: Order, caller: AuthContext) -> None:
    if caller.role == DELIVERY and order.courier_id != caller.user_id:
        raise ForbiddenError("Order is not assigned to this courier", order_id=str(order.id))
    if caller.role == VENDOR and order.shop_id != caller.user_id:
        raise ForbiddenError("Order belongs to another shop", order_id=str(order.id))
    if caller.role == BUYER:
        raise ForbiddenError("Buyers cannot change order status", order_id=str(order.id))


def authorize_transition(order: Order, target: OrderStatus, caller: AuthContext) -> None:
    ensure_can_act_on(order, caller)

    edges = ORDER_STATE_TRANSITIONS.get(order.status, {})
    if target not in edges:
        raise InvalidTransitionError(
            order.status.value, target.value, allowed_targets(order.status, caller.role)
        )
    if caller.role not in edges[target]:
        raise ForbiddenError(
            f"Role {caller.role} cannot move an order from {order.status.value} to {target.value}",
            current_status=order.status.value,
            target_status=target.value,
        )


def describe(
    status: OrderStatus,
    *,
    reason: str | None = None,
    otp_verified: bool | None = None,
) -> tuple[str, str]:
    action, description = TIMELINE_COPY[status]
    if status == OrderStatus.REJECTED and reason:
        description = reason
    if otp_verified:
        description = f"{description} (OTP verified)"
    return action, description


def build_timeline_entry(
    order_id,
    sequence: int,
    status: OrderStatus,
    caller: AuthContext,
    *,
    reason: str | None = None,
    otp_verified: bool | None = None,
    metadata: dict[str, Any] | None = None,
    created_at: datetime | None = None,
) -> TimelineEntry:
    action, description = describe(status, reason=reason, otp_verified=otp_verified)
    return TimelineEntry(
        order_id=order_id,
        sequence=sequence,
        status=status.value,
        action=action,
        description=description,
        actor_role=caller.role,
        actor_id=caller.user_id,
        actor_name=caller.display_name,
        metadata_json=metadata or {},
        created_at=created_at or _now_utc(),
    )


def _record_conflict(order: Order, expected: OrderStatus, target: OrderStatus) -> ConflictError:
    metrics_store.increment("order_transition_conflicts_total")
    log_event(
        "order_transition_conflict",
        order_id=str(order.id),
        detail=f"{expected.value}->{target.value}",
        level=logging.WARNING,
    )
    return ConflictError(
        "This order was just updated, please reload and retry",
        order_id=str(order.id),
        expected_status=expected.value,
        target_status=target.value,
    )


def apply_transition(
    db: Session,
    order: Order,
    next_status: OrderStatus,
    caller: AuthContext,
    bus: RealtimeBus,
    *,
    patch: dict[str, Any] | None = None,
    conditions: Iterable[ColumnElement[bool]] = (),
    reason: str | None = None,
    otp_verified: bool | None = None,
    metadata: dict[str, Any] | None = None,
) -> Order:
    """Commit ``order.status -> next_status`` plus one timeline entry, or nothing.

    The UPDATE only matches while the row still holds the status the caller
    read (and any extra ownership ``conditions``). A lost race raises
    ``ConflictError`` and leaves the row untouched. Commission accrual and
    notification fan-out run after the commit and never undo it.
    """
    previous_status = order.status
    order_id = order.id
    now = _now_utc()

    sequence = db.scalar(
        select(func.count())
        .select_from(TimelineEntry)
        .where(TimelineEntry.order_id == order_id)
    )

    result = db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == previous_status, *conditions)
        .values(status=next_status, updated_at=now, **(patch or {}))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise _record_conflict(order, previous_status, next_status)

    entry = build_timeline_entry(
        order_id,
        sequence or 0,
        next_status,
        caller,
        reason=reason,
        otp_verified=otp_verified,
        metadata=metadata,
        created_at=now,
    )
    db.add(entry)
    try:
        db.commit()
    except IntegrityError as err:
        db.rollback()
        raise _record_conflict(order, previous_status, next_status) from err

    db.refresh(order)
    metrics_store.increment("order_transitions_total")
    log_event(
        "order_transition",
        order_id=str(order.id),
        courier_id=order.courier_id,
        detail=f"{previous_status.value}->{next_status.value}",
    )

    if next_status == OrderStatus.DELIVERED:
        _accrue_commission(db, order)
    notification_service.fan_out_transition(
        db, order, previous_status, next_status, entry, caller, bus
    )
    return order


def _accrue_commission(db: Session, order: Order) -> None:
    try:
        commission_service.accrue_for_delivery(db, order)
    except (SQLAlchemyError, OrderLifecycleError):
        db.rollback()
        metrics_store.increment("commission_accrual_failures_total")
        log_event(
            "commission_accrual_failed",
            order_id=str(order.id),
            courier_id=order.courier_id,
            level=logging.ERROR,
            exc_info=True,
        )
