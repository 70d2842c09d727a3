from app.schemas.commission import (
    CommissionListResponse,
    CommissionPaidStatusUpdate,
    CommissionRecalculateResponse,
    CommissionResponse,
    CommissionSummaryResponse,
)
from app.schemas.courier import (
    CourierAvailabilityUpdate,
    CourierCreate,
    CourierListResponse,
    CourierRegisteredResponse,
    CourierResponse,
)
from app.schemas.dispatch import (
    AutoAssignFailure,
    AutoAssignItem,
    AutoAssignResponse,
    HandoffRequest,
    ManualAssignRequest,
)
from app.schemas.notification import (
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from app.schemas.order import (
    OrderCreate,
    OrderListResponse,
    OrderProduct,
    OrderResponse,
    OrderTransitionRequest,
    TimelineEntryResponse,
    TimelineResponse,
)

__all__ = [
    "OrderCreate",
    "OrderProduct",
    "OrderResponse",
    "OrderListResponse",
    "OrderTransitionRequest",
    "TimelineEntryResponse",
    "TimelineResponse",
    "ManualAssignRequest",
    "HandoffRequest",
    "AutoAssignItem",
    "AutoAssignFailure",
    "AutoAssignResponse",
    "CourierCreate",
    "CourierAvailabilityUpdate",
    "CourierResponse",
    "CourierRegisteredResponse",
    "CourierListResponse",
    "CommissionResponse",
    "CommissionListResponse",
    "CommissionSummaryResponse",
    "CommissionPaidStatusUpdate",
    "CommissionRecalculateResponse",
    "NotificationResponse",
    "NotificationListResponse",
    "UnreadCountResponse",
]
