import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Numeric, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class CommissionPaidStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class CommissionEntry(Base):
    __tablename__ = "commission_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # one entry per delivered order
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    courier_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("couriers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    paid_status: Mapped[CommissionPaidStatus] = mapped_column(
        Enum(
            CommissionPaidStatus,
            name="commission_paid_status",
            values_callable=lambda cls: [member.value for member in cls],
        ),
        nullable=False,
        default=CommissionPaidStatus.UNPAID,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
