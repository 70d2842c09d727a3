import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from app.models.commission_entry import CommissionPaidStatus


class CommissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    courier_id: str
    amount: Decimal
    paid_status: CommissionPaidStatus
    created_at: datetime


class CommissionListResponse(BaseModel):
    items: list[CommissionResponse]


class CommissionSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    courier_id: str | None
    paid_total: Decimal
    pending_total: Decimal
    paid_count: int
    pending_count: int
    total: Decimal


class CommissionPaidStatusUpdate(BaseModel):
    paid_status: CommissionPaidStatus


class CommissionRecalculateResponse(BaseModel):
    created: int
