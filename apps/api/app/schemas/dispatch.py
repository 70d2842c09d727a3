import uuid

from pydantic import BaseModel, Field

from app.models.order import OrderStatus


class ManualAssignRequest(BaseModel):
    courier_id: str = Field(min_length=1, max_length=64)


class HandoffRequest(BaseModel):
    target: OrderStatus
    code: str | None = Field(default=None, max_length=16)


class AutoAssignItem(BaseModel):
    order_id: uuid.UUID
    courier_id: str


class AutoAssignFailure(BaseModel):
    order_id: uuid.UUID
    code: str
    message: str


class AutoAssignResponse(BaseModel):
    assigned: int
    assignments: list[AutoAssignItem]
    unplaced_order_ids: list[uuid.UUID]
    failures: list[AutoAssignFailure]
