from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.auth.dependencies import (
    DELIVERY,
    AuthContext,
    get_auth_context,
    require_admin,
    require_roles,
)
from app.db.session import get_db
from app.schemas.courier import (
    CourierAvailabilityUpdate,
    CourierCreate,
    CourierListResponse,
    CourierRegisteredResponse,
    CourierResponse,
)
from app.services import courier_service

router = APIRouter(prefix="/api/v1/couriers", tags=["couriers"])


@router.post(
    "",
    response_model=CourierRegisteredResponse,
    summary="Register courier",
    status_code=201,
)
def register_courier_endpoint(
    payload: CourierCreate,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_admin),
) -> CourierRegisteredResponse:
    courier = courier_service.register_courier(
        db, auth, payload.name, payload.contact, courier_id=payload.id
    )
    return CourierRegisteredResponse.model_validate(courier)


@router.get("", response_model=CourierListResponse, summary="List couriers")
def list_couriers_endpoint(
    available_only: bool = False,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(get_auth_context),
) -> CourierListResponse:
    couriers = courier_service.list_couriers(db, available_only=available_only)
    return CourierListResponse(items=[CourierResponse.model_validate(c) for c in couriers])


@router.get("/{courier_id}", response_model=CourierResponse, summary="Get courier")
def get_courier_endpoint(
    courier_id: str,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(get_auth_context),
) -> CourierResponse:
    return CourierResponse.model_validate(courier_service.get_courier(db, courier_id))


@router.patch(
    "/{courier_id}/availability",
    response_model=CourierResponse,
    summary="Go online or offline",
)
def set_availability_endpoint(
    courier_id: str,
    payload: CourierAvailabilityUpdate,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_roles(DELIVERY)),
) -> CourierResponse:
    courier = courier_service.set_courier_availability(db, courier_id, payload.is_available, auth)
    return CourierResponse.model_validate(courier)
