import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth.dependencies import (
    ADMIN,
    BUYER,
    DELIVERY,
    VENDOR,
    AuthContext,
    get_auth_context,
    require_admin,
    require_roles,
)
from app.db.session import get_db
from app.integrations.realtime_bus import RealtimeBus, get_realtime_bus
from app.models.order import Order, OrderStatus
from app.schemas.dispatch import HandoffRequest, ManualAssignRequest
from app.schemas.order import (
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    OrderTransitionRequest,
    TimelineEntryResponse,
    TimelineResponse,
)
from app.services import dispatch_service, handoff_service, orders_service

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


def _order_response(order: Order, auth: AuthContext) -> OrderResponse:
    response = OrderResponse.model_validate(order)
    if not orders_service.otp_visible_to(auth):
        response.otp = None
    return response


@router.post("", response_model=OrderResponse, summary="Place order", status_code=201)
def create_order_endpoint(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    bus: RealtimeBus = Depends(get_realtime_bus),
    auth: AuthContext = Depends(require_roles(BUYER)),
) -> OrderResponse:
    order = orders_service.create_order(db, payload, auth, bus)
    return _order_response(order, auth)


@router.get("", response_model=OrderListResponse, summary="List orders")
def list_orders_endpoint(
    status: OrderStatus | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_auth_context),
) -> OrderListResponse:
    orders, total = orders_service.list_orders(db, auth, status, limit=limit, offset=offset)
    return OrderListResponse(
        items=[_order_response(order, auth) for order in orders],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{order_id}", response_model=OrderResponse, summary="Get order")
def get_order_endpoint(
    order_id: uuid.UUID,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_auth_context),
) -> OrderResponse:
    return _order_response(orders_service.get_order(db, order_id, auth), auth)


@router.get("/{order_id}/timeline", response_model=TimelineResponse, summary="Order timeline")
def get_timeline_endpoint(
    order_id: uuid.UUID,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_auth_context),
) -> TimelineResponse:
    entries = orders_service.list_timeline(db, order_id, auth)
    return TimelineResponse(
        order_id=order_id,
        items=[TimelineEntryResponse.model_validate(entry) for entry in entries],
    )


@router.post("/{order_id}/transition", response_model=OrderResponse, summary="Change order status")
def transition_order_endpoint(
    order_id: uuid.UUID,
    payload: OrderTransitionRequest,
    db: Session = Depends(get_db),
    bus: RealtimeBus = Depends(get_realtime_bus),
    auth: AuthContext = Depends(require_roles(VENDOR, DELIVERY, ADMIN)),
) -> OrderResponse:
    order = orders_service.transition_order(
        db,
        order_id,
        payload.status,
        auth,
        bus,
        reason=payload.reason,
        courier_id=payload.courier_id,
        code=payload.code,
    )
    return _order_response(order, auth)


@router.post("/{order_id}/assign", response_model=OrderResponse, summary="Assign courier")
def assign_order_endpoint(
    order_id: uuid.UUID,
    payload: ManualAssignRequest,
    db: Session = Depends(get_db),
    bus: RealtimeBus = Depends(get_realtime_bus),
    auth: AuthContext = Depends(require_admin),
) -> OrderResponse:
    order = dispatch_service.assign_manually(db, order_id, payload.courier_id, auth, bus)
    return _order_response(order, auth)


@router.post(
    "/{order_id}/verify-handoff",
    response_model=OrderResponse,
    summary="Verify pickup or delivery handoff",
)
def verify_handoff_endpoint(
    order_id: uuid.UUID,
    payload: HandoffRequest,
    db: Session = Depends(get_db),
    bus: RealtimeBus = Depends(get_realtime_bus),
    auth: AuthContext = Depends(require_roles(DELIVERY)),
) -> OrderResponse:
    order = handoff_service.verify_handoff(db, order_id, payload.code, payload.target, auth, bus)
    return _order_response(order, auth)
