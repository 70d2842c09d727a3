from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CourierCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    contact: str | None = Field(default=None, max_length=64)
    id: str | None = Field(default=None, min_length=1, max_length=64)

    @field_validator("name", "contact")
    @classmethod
    def strip_strings(cls, value: str | None) -> str | None:
        if value is None:
            return value
        return value.strip()


class CourierAvailabilityUpdate(BaseModel):
    is_available: bool


class CourierResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    contact: str | None
    is_available: bool
    total_commission: Decimal
    created_at: datetime


class CourierRegisteredResponse(CourierResponse):
    login_code: str


class CourierListResponse(BaseModel):
    items: list[CourierResponse]
