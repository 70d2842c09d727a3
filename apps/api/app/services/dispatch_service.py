import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session

from app.auth.dependencies import ADMIN, AuthContext
from app.config import settings
from app.integrations.realtime_bus import RealtimeBus
from app.models.courier import Courier
from app.models.order import Order, OrderStatus
from app.observability import log_event, metrics_store, observe_timing
from app.services.errors import (
    ConflictError,
    CourierUnavailableError,
    ForbiddenError,
    NotFoundError,
    OrderLifecycleError,
)
from app.services.state_machine import apply_transition, authorize_transition, load_order


@dataclass
class Assignment:
    order_id: str
    courier_id: str


@dataclass
class AssignmentFailure:
    order_id: str
    code: str
    message: str


@dataclass
class AutoAssignResult:
    assigned_count: int = 0
    assignments: list[Assignment] = field(default_factory=list)
    unplaced_order_ids: list[str] = field(default_factory=list)
    failures: list[AssignmentFailure] = field(default_factory=list)


def _get_courier(db: Session, courier_id: str) -> Courier:
    courier = db.get(Courier, courier_id)
    if courier is None:
        raise NotFoundError("Courier not found", courier_id=courier_id)
    return courier


def assign_order(
    db: Session,
    order: Order,
    courier_id: str,
    caller: AuthContext,
    bus: RealtimeBus,
    mode: str = "manual",
) -> Order:
    authorize_transition(order, OrderStatus.ASSIGNED, caller)
    if order.courier_id is not None:
        raise ConflictError(
            "Order already assigned",
            order_id=str(order.id),
            courier_id=order.courier_id,
        )

    courier = _get_courier(db, courier_id)
    if not courier.is_available:
        raise CourierUnavailableError("Courier is not available", courier_id=courier_id)

    courier_is_available = exists(
        select(Courier.id).where(Courier.id == courier_id, Courier.is_available.is_(True))
    )
    try:
        return apply_transition(
            db,
            order,
            OrderStatus.ASSIGNED,
            caller,
            bus,
            patch={"courier_id": courier_id},
            conditions=(Order.courier_id.is_(None), courier_is_available),
            metadata={
                "courier_id": courier_id,
                "courier_name": courier.name,
                "assignment": mode,
            },
        )
    except ConflictError as err:
        # the order may be fine and the courier went offline between read and write
        db.refresh(courier)
        if not courier.is_available:
            raise CourierUnavailableError(
                "Courier is not available", courier_id=courier_id
            ) from err
        raise


def assign_manually(
    db: Session,
    order_id: uuid.UUID | str,
    courier_id: str,
    caller: AuthContext,
    bus: RealtimeBus,
    mode: str = "manual",
) -> Order:
    order = load_order(db, order_id)
    return assign_order(db, order, courier_id, caller, bus, mode)


ACTIVE_STATUSES = (OrderStatus.ASSIGNED, OrderStatus.READY, OrderStatus.PICKED_UP)


def _courier_pool(db: Session) -> list[Courier]:
    """Available couriers in the order the configured policy serves them."""
    stmt = select(Courier).where(Courier.is_available.is_(True))
    if settings.auto_assign_policy == "round_robin":
        # couriers holding fewer live orders go first, so work rotates across sweeps
        active_load = (
            select(func.count(Order.id))
            .where(Order.courier_id == Courier.id, Order.status.in_(ACTIVE_STATUSES))
            .correlate(Courier)
            .scalar_subquery()
        )
        stmt = stmt.order_by(active_load.asc())
    return list(db.scalars(stmt.order_by(Courier.created_at.asc(), Courier.id.asc())))


def auto_assign(db: Session, caller: AuthContext, bus: RealtimeBus) -> AutoAssignResult:
    """Pair every unassigned accepted order with an available courier, oldest first.

    Each pairing goes through the same guarded write as a manual assignment, so
    a sweep racing another sweep or a manual assignment can only lose orders,
    never double-assign them. Per-order failures are collected, not raised.
    """
    if caller.role != ADMIN:
        raise ForbiddenError("Only admin can run auto-assignment")

    metrics_store.increment("auto_assign_runs_total")
    result = AutoAssignResult()

    with observe_timing("auto_assign_seconds"):
        orders = list(
            db.scalars(
                select(Order)
                .where(Order.status == OrderStatus.ACCEPTED, Order.courier_id.is_(None))
                .order_by(Order.created_at.asc(), Order.id.asc())
            )
        )
        # each courier is drawn at most once per sweep
        pool = [courier.id for courier in _courier_pool(db)]

        for order in orders:
            order_id = str(order.id)
            outcome = None
            while pool and outcome is None:
                courier_id = pool.pop(0)
                try:
                    assign_order(db, order, courier_id, caller, bus, mode="auto")
                except CourierUnavailableError:
                    continue
                except OrderLifecycleError as err:
                    pool.insert(0, courier_id)
                    outcome = "failed"
                    result.failures.append(
                        AssignmentFailure(order_id=order_id, code=err.code, message=err.message)
                    )
                    log_event(
                        "auto_assign_order_failed",
                        order_id=order_id,
                        courier_id=courier_id,
                        detail=err.code,
                        level=logging.WARNING,
                    )
                else:
                    outcome = "assigned"
                    result.assigned_count += 1
                    result.assignments.append(Assignment(order_id=order_id, courier_id=courier_id))

            if outcome is None:
                result.unplaced_order_ids.append(order_id)

    metrics_store.increment("auto_assign_orders_assigned_total", result.assigned_count)
    log_event(
        "auto_assign_completed",
        detail=(
            f"assigned={result.assigned_count} unplaced={len(result.unplaced_order_ids)} "
            f"failed={len(result.failures)}"
        ),
    )
    return result
