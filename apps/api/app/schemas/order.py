import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.order import OrderStatus, PaymentStatus, PaymentType


class OrderProduct(BaseModel):
    product_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    quantity: int = Field(gt=0)

    @field_validator("product_id", "name")
    @classmethod
    def strip_strings(cls, value: str) -> str:
        return value.strip()


class OrderCreate(BaseModel):
    shop_id: str = Field(min_length=1, max_length=64)
    products: list[OrderProduct] = Field(min_length=1)
    delivery_cost: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    payment_type: PaymentType = PaymentType.COD

    @field_validator("shop_id")
    @classmethod
    def strip_shop_id(cls, value: str) -> str:
        return value.strip()


class TimelineEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sequence: int
    status: OrderStatus
    action: str
    description: str
    actor_role: str
    actor_id: str | None
    actor_name: str | None
    metadata: dict[str, Any] = Field(validation_alias="metadata_json")
    created_at: datetime


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    shop_id: str
    buyer_id: str
    buyer_name: str | None
    courier_id: str | None
    status: OrderStatus
    products: list[OrderProduct]
    total_price: Decimal
    delivery_cost: Decimal
    payment_type: PaymentType
    payment_status: PaymentStatus
    otp: str | None = None
    created_at: datetime
    updated_at: datetime
    delivered_at: datetime | None
    otp_verified_at: datetime | None
    timeline: list[TimelineEntryResponse]


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int
    limit: int
    offset: int


class TimelineResponse(BaseModel):
    order_id: uuid.UUID
    items: list[TimelineEntryResponse]


class OrderTransitionRequest(BaseModel):
    status: OrderStatus
    reason: str | None = Field(default=None, max_length=500)
    courier_id: str | None = Field(default=None, max_length=64)
    code: str | None = Field(default=None, max_length=16)
