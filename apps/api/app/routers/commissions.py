from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.auth.dependencies import ADMIN, DELIVERY, AuthContext, require_admin, require_roles
from app.db.session import get_db
from app.models.commission_entry import CommissionPaidStatus
from app.schemas.commission import (
    CommissionListResponse,
    CommissionPaidStatusUpdate,
    CommissionRecalculateResponse,
    CommissionResponse,
    CommissionSummaryResponse,
)
from app.services import commission_service

router = APIRouter(prefix="/api/v1/commissions", tags=["commissions"])


@router.get("", response_model=CommissionListResponse, summary="List commission entries")
def list_commissions_endpoint(
    courier_id: str | None = None,
    paid_status: CommissionPaidStatus | None = None,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_roles(DELIVERY, ADMIN)),
) -> CommissionListResponse:
    entries = commission_service.list_commissions(db, auth, courier_id, paid_status)
    return CommissionListResponse(items=[CommissionResponse.model_validate(e) for e in entries])


@router.get("/summary", response_model=CommissionSummaryResponse, summary="Commission totals")
def commission_summary_endpoint(
    courier_id: str | None = None,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_roles(DELIVERY, ADMIN)),
) -> CommissionSummaryResponse:
    summary = commission_service.commission_summary(db, auth, courier_id)
    return CommissionSummaryResponse.model_validate(summary)


@router.post(
    "/recalculate",
    response_model=CommissionRecalculateResponse,
    summary="Backfill commissions for delivered orders",
)
def recalculate_commissions_endpoint(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_admin),
) -> CommissionRecalculateResponse:
    created = commission_service.backfill_delivered_commissions(db, auth)
    return CommissionRecalculateResponse(created=created)


@router.patch("/{commission_id}", response_model=CommissionResponse, summary="Settle commission")
def set_paid_status_endpoint(
    commission_id: str,
    payload: CommissionPaidStatusUpdate,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_admin),
) -> CommissionResponse:
    entry = commission_service.set_commission_paid_status(
        db, commission_id, payload.paid_status, auth
    )
    return CommissionResponse.model_validate(entry)
