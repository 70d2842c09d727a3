import hmac
import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.auth.dependencies import AuthContext
from app.integrations.realtime_bus import RealtimeBus
from app.models.order import Order, OrderStatus, PaymentStatus, PaymentType
from app.services.errors import CodeRequiredError, InvalidCodeError, InvalidTransitionError
from app.services.state_machine import (
    allowed_targets,
    apply_transition,
    authorize_transition,
    load_order,
)

HANDOFF_TARGETS = (OrderStatus.PICKED_UP, OrderStatus.DELIVERED)


def _code_matches(presented: str, expected: str) -> bool:
    return hmac.compare_digest(presented.encode(), expected.encode())


def verify_and_transition(
    db: Session,
    order: Order,
    presented_code: str | None,
    target_status: OrderStatus,
    caller: AuthContext,
    bus: RealtimeBus,
) -> Order:
    """Gate the physical handoffs on the order's one-time code.

    Pickup accepts a missing code and records that it was not verified.
    Delivery always requires the code. Both writes are conditional on the
    caller still being the assigned courier.
    """
    if target_status not in HANDOFF_TARGETS:
        raise InvalidTransitionError(
            order.status.value, target_status.value, allowed_targets(order.status, caller.role)
        )

    authorize_transition(order, target_status, caller)

    code = presented_code or None
    if target_status == OrderStatus.DELIVERED and code is None:
        raise CodeRequiredError("Delivery code is required", order_id=str(order.id))
    if code is not None and not _code_matches(code, order.otp):
        raise InvalidCodeError("Delivery code does not match", order_id=str(order.id))

    verified = code is not None
    now = datetime.now(timezone.utc)
    patch: dict = {}
    if verified:
        patch["otp_verified_at"] = now
    if target_status == OrderStatus.DELIVERED:
        patch["delivered_at"] = now
        if order.payment_type == PaymentType.COD:
            patch["payment_status"] = PaymentStatus.PAID

    return apply_transition(
        db,
        order,
        target_status,
        caller,
        bus,
        patch=patch,
        conditions=(Order.courier_id == caller.user_id,),
        otp_verified=verified,
        metadata={"otp_verified": verified},
    )


def verify_handoff(
    db: Session,
    order_id: uuid.UUID,
    presented_code: str | None,
    target_status: OrderStatus,
    caller: AuthContext,
    bus: RealtimeBus,
) -> Order:
    order = load_order(db, order_id)
    return verify_and_transition(db, order, presented_code, target_status, caller, bus)
