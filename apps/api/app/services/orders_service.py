import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.auth.dependencies import ADMIN, BUYER, DELIVERY, VENDOR, AuthContext
from app.config import settings
from app.integrations.realtime_bus import RealtimeBus
from app.models.order import Order, OrderStatus, PaymentStatus, PaymentType
from app.models.timeline_entry import TimelineEntry
from app.observability import log_event, metrics_store
from app.schemas.order import OrderCreate
from app.services import dispatch_service, handoff_service, notification_service
from app.services.errors import ForbiddenError, MissingFieldError
from app.services.state_machine import (
    apply_transition,
    authorize_transition,
    build_timeline_entry,
    load_order,
)

OTP_VISIBLE_ROLES = frozenset({BUYER, ADMIN})


def _generate_otp(length: int) -> str:
    low = 10 ** (length - 1)
    return str(secrets.randbelow(9 * low) + low)


def _order_total(payload: OrderCreate) -> Decimal:
    subtotal = sum((item.price * item.quantity for item in payload.products), Decimal("0"))
    return (subtotal + payload.delivery_cost).quantize(Decimal("0.01"))


def create_order(
    db: Session,
    payload: OrderCreate,
    caller: AuthContext,
    bus: RealtimeBus,
) -> Order:
    if caller.role != BUYER:
        raise ForbiddenError("Only buyers can place orders")

    now = datetime.now(timezone.utc)
    order = Order(
        shop_id=payload.shop_id,
        buyer_id=caller.user_id,
        buyer_name=caller.name,
        status=OrderStatus.PENDING,
        products=[item.model_dump(mode="json") for item in payload.products],
        total_price=_order_total(payload),
        delivery_cost=payload.delivery_cost,
        payment_type=payload.payment_type,
        payment_status=(
            PaymentStatus.PAID
            if payload.payment_type == PaymentType.ONLINE
            else PaymentStatus.UNPAID
        ),
        otp=_generate_otp(settings.handoff_code_length),
        created_at=now,
        updated_at=now,
    )
    db.add(order)
    db.flush()

    entry = build_timeline_entry(order.id, 0, OrderStatus.PENDING, caller, created_at=now)
    db.add(entry)
    db.commit()
    db.refresh(order)

    metrics_store.increment("orders_created_total")
    log_event("order_created", order_id=str(order.id), detail=order.shop_id)
    notification_service.notify_order_placed(db, order, entry, bus)
    return order


def ensure_can_view(order: Order, caller: AuthContext) -> None:
    if caller.role == ADMIN:
        return
    if caller.role == BUYER and order.buyer_id == caller.user_id:
        return
    if caller.role == VENDOR and order.shop_id == caller.user_id:
        return
    if caller.role == DELIVERY and order.courier_id == caller.user_id:
        return
    raise ForbiddenError("Order is outside the caller's scope", order_id=str(order.id))


def get_order(db: Session, order_id: uuid.UUID | str, caller: AuthContext) -> Order:
    order = load_order(db, order_id)
    ensure_can_view(order, caller)
    return order


def _scoped(stmt, caller: AuthContext):
    if caller.role == BUYER:
        return stmt.where(Order.buyer_id == caller.user_id)
    if caller.role == VENDOR:
        return stmt.where(Order.shop_id == caller.user_id)
    if caller.role == DELIVERY:
        return stmt.where(Order.courier_id == caller.user_id)
    return stmt


def list_orders(
    db: Session,
    caller: AuthContext,
    status_filter: OrderStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    query = _scoped(select(Order), caller)
    count_query = _scoped(select(func.count()).select_from(Order), caller)
    if status_filter:
        query = query.where(Order.status == status_filter)
        count_query = count_query.where(Order.status == status_filter)

    total = db.scalar(count_query) or 0
    orders = db.scalars(
        query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
    )
    return list(orders), int(total)


def list_timeline(
    db: Session,
    order_id: uuid.UUID | str,
    caller: AuthContext,
) -> list[TimelineEntry]:
    order = get_order(db, order_id, caller)
    entries = db.scalars(
        select(TimelineEntry)
        .where(TimelineEntry.order_id == order.id)
        .order_by(TimelineEntry.sequence.asc())
    )
    return list(entries)


def otp_visible_to(caller: AuthContext) -> bool:
    return caller.role in OTP_VISIBLE_ROLES


def transition_order(
    db: Session,
    order_id: uuid.UUID | str,
    desired_status: OrderStatus,
    caller: AuthContext,
    bus: RealtimeBus,
    *,
    reason: str | None = None,
    courier_id: str | None = None,
    code: str | None = None,
) -> Order:
    """Move an order to ``desired_status`` on behalf of ``caller``.

    Assignment goes through the dispatch engine and the physical handoffs
    through the code check; every other edge is authorized and applied here.
    """
    order = load_order(db, order_id)

    if desired_status == OrderStatus.ASSIGNED:
        authorize_transition(order, desired_status, caller)
        if not courier_id:
            raise MissingFieldError(
                "courier_id is required to assign an order", field="courier_id"
            )
        return dispatch_service.assign_order(db, order, courier_id, caller, bus)

    if desired_status in handoff_service.HANDOFF_TARGETS:
        return handoff_service.verify_and_transition(db, order, code, desired_status, caller, bus)

    authorize_transition(order, desired_status, caller)
    return apply_transition(
        db,
        order,
        desired_status,
        caller,
        bus,
        reason=reason,
        metadata={"reason": reason} if reason else None,
    )
