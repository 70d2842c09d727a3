from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.auth.dependencies import AuthContext, require_admin
from app.db.session import get_db
from app.integrations.realtime_bus import RealtimeBus, get_realtime_bus
from app.schemas.dispatch import AutoAssignFailure, AutoAssignItem, AutoAssignResponse
from app.services.dispatch_service import auto_assign

router = APIRouter(prefix="/api/v1/dispatch", tags=["dispatch"])


@router.post(
    "/auto-assign",
    response_model=AutoAssignResponse,
    summary="Assign available couriers to accepted orders",
)
def auto_assign_endpoint(
    db: Session = Depends(get_db),
    bus: RealtimeBus = Depends(get_realtime_bus),
    auth: AuthContext = Depends(require_admin),
) -> AutoAssignResponse:
    result = auto_assign(db, auth, bus)
    return AutoAssignResponse(
        assigned=result.assigned_count,
        assignments=[
            AutoAssignItem(order_id=item.order_id, courier_id=item.courier_id)
            for item in result.assignments
        ],
        unplaced_order_ids=result.unplaced_order_ids,
        failures=[
            AutoAssignFailure(order_id=item.order_id, code=item.code, message=item.message)
            for item in result.failures
        ],
    )
