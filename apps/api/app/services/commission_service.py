import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth.dependencies import ADMIN, DELIVERY, AuthContext
from app.config import settings
from app.models.commission_entry import CommissionEntry, CommissionPaidStatus
from app.models.courier import Courier
from app.models.order import Order, OrderStatus
from app.observability import log_event, metrics_store
from app.services.errors import ForbiddenError, NotFoundError

_ZERO = Decimal("0.00")


@dataclass
class CommissionSummary:
    courier_id: str | None
    paid_total: Decimal
    pending_total: Decimal
    paid_count: int
    pending_count: int

    @property
    def total(self) -> Decimal:
        return self.paid_total + self.pending_total


def commission_amount(order: Order) -> Decimal:
    return settings.commission_flat_amount.quantize(Decimal("0.01"))


def _entry_for_order(db: Session, order_id: uuid.UUID) -> CommissionEntry | None:
    return db.scalar(select(CommissionEntry).where(CommissionEntry.order_id == order_id))


def accrue_for_delivery(db: Session, order: Order) -> CommissionEntry | None:
    """Record the courier's commission for a delivered order, at most once.

    The entry insert and the courier's cached total move together in one
    transaction. A second call for the same order returns the existing entry
    without touching the total.
    """
    if order.status != OrderStatus.DELIVERED or not order.courier_id:
        log_event(
            "commission_skipped",
            order_id=str(order.id),
            courier_id=order.courier_id,
            detail=order.status.value,
        )
        return None

    existing = _entry_for_order(db, order.id)
    if existing is not None:
        return existing

    if db.get(Courier, order.courier_id) is None:
        raise NotFoundError("Courier not found", courier_id=order.courier_id)

    amount = commission_amount(order)
    entry = CommissionEntry(order_id=order.id, courier_id=order.courier_id, amount=amount)
    db.add(entry)
    try:
        db.flush()
        db.execute(
            update(Courier)
            .where(Courier.id == order.courier_id)
            .values(total_commission=Courier.total_commission + amount)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except IntegrityError:
        # a concurrent accrual for the same order won the unique key
        db.rollback()
        return _entry_for_order(db, order.id)

    db.refresh(entry)
    metrics_store.increment("commission_entries_created_total")
    log_event(
        "commission_accrued",
        order_id=str(order.id),
        courier_id=order.courier_id,
        detail=str(amount),
    )
    return entry


def ledger_total(db: Session, courier_id: str) -> Decimal:
    total = db.scalar(
        select(func.coalesce(func.sum(CommissionEntry.amount), 0)).where(
            CommissionEntry.courier_id == courier_id
        )
    )
    return Decimal(str(total)).quantize(Decimal("0.01"))


def reconcile_courier_total(db: Session, courier_id: str) -> Decimal:
    """Overwrite the courier's cached total with the ledger sum.

    The sum is computed inside the UPDATE so an accrual committed between a
    read and the write cannot be lost.
    """
    courier = db.get(Courier, courier_id)
    if courier is None:
        raise NotFoundError("Courier not found", courier_id=courier_id)

    cached = courier.total_commission
    ledger_sum = (
        select(func.coalesce(func.sum(CommissionEntry.amount), 0))
        .where(CommissionEntry.courier_id == courier_id)
        .scalar_subquery()
    )
    db.execute(
        update(Courier)
        .where(Courier.id == courier_id)
        .values(total_commission=ledger_sum)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    db.refresh(courier)
    total = Decimal(str(courier.total_commission)).quantize(Decimal("0.01"))
    if cached != total:
        log_event(
            "commission_total_reconciled",
            courier_id=courier_id,
            detail=f"{cached}->{total}",
        )
    return total


def backfill_delivered_commissions(db: Session, caller: AuthContext) -> int:
    if caller.role != ADMIN:
        raise ForbiddenError("Only admin can recalculate commissions")

    missing = list(
        db.scalars(
            select(Order)
            .outerjoin(CommissionEntry, CommissionEntry.order_id == Order.id)
            .where(
                Order.status == OrderStatus.DELIVERED,
                Order.courier_id.is_not(None),
                CommissionEntry.id.is_(None),
            )
            .order_by(Order.delivered_at.asc())
        )
    )

    created = 0
    for order in missing:
        if accrue_for_delivery(db, order) is not None:
            created += 1

    courier_ids = set(db.scalars(select(CommissionEntry.courier_id).distinct()))
    for courier_id in courier_ids:
        reconcile_courier_total(db, courier_id)
    return created


def _scope_courier_id(caller: AuthContext, courier_id: str | None) -> str | None:
    if caller.role == ADMIN:
        return courier_id
    if caller.role == DELIVERY:
        if courier_id is not None and courier_id != caller.user_id:
            raise ForbiddenError("Couriers can only view their own commissions")
        return caller.user_id
    raise ForbiddenError("Insufficient role for commission views")


def list_commissions(
    db: Session,
    caller: AuthContext,
    courier_id: str | None = None,
    paid_status: CommissionPaidStatus | None = None,
) -> list[CommissionEntry]:
    scoped_courier_id = _scope_courier_id(caller, courier_id)
    stmt = select(CommissionEntry)
    if scoped_courier_id is not None:
        stmt = stmt.where(CommissionEntry.courier_id == scoped_courier_id)
    if paid_status is not None:
        stmt = stmt.where(CommissionEntry.paid_status == paid_status)
    stmt = stmt.order_by(CommissionEntry.paid_status.asc(), CommissionEntry.created_at.desc())
    return list(db.scalars(stmt))


def commission_summary(
    db: Session,
    caller: AuthContext,
    courier_id: str | None = None,
) -> CommissionSummary:
    scoped_courier_id = _scope_courier_id(caller, courier_id)
    stmt = select(
        CommissionEntry.paid_status,
        func.count(CommissionEntry.id),
        func.coalesce(func.sum(CommissionEntry.amount), 0),
    ).group_by(CommissionEntry.paid_status)
    if scoped_courier_id is not None:
        stmt = stmt.where(CommissionEntry.courier_id == scoped_courier_id)

    summary = CommissionSummary(
        courier_id=scoped_courier_id,
        paid_total=_ZERO,
        pending_total=_ZERO,
        paid_count=0,
        pending_count=0,
    )
    for paid_status, count, amount in db.execute(stmt):
        total = Decimal(str(amount)).quantize(Decimal("0.01"))
        if paid_status == CommissionPaidStatus.PAID:
            summary.paid_total, summary.paid_count = total, int(count)
        else:
            summary.pending_total, summary.pending_count = total, int(count)
    return summary


def set_commission_paid_status(
    db: Session,
    commission_id: str,
    paid_status: CommissionPaidStatus,
    caller: AuthContext,
) -> CommissionEntry:
    if caller.role != ADMIN:
        raise ForbiddenError("Only admin can settle commissions")
    try:
        entry = db.get(CommissionEntry, uuid.UUID(commission_id))
    except ValueError as err:
        raise NotFoundError("Commission not found", commission_id=commission_id) from err
    if entry is None:
        raise NotFoundError("Commission not found", commission_id=commission_id)

    entry.paid_status = paid_status
    db.commit()
    db.refresh(entry)
    log_event(
        "commission_paid_status_changed",
        order_id=str(entry.order_id),
        courier_id=entry.courier_id,
        detail=paid_status.value,
    )
    return entry
