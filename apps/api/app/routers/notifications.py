from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth.dependencies import AuthContext, get_auth_context
from app.db.session import get_db
from app.schemas.notification import (
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from app.services import notification_service

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse, summary="List notifications")
def list_notifications_endpoint(
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_auth_context),
) -> NotificationListResponse:
    items = notification_service.list_notifications(db, auth, unread_only=unread_only, limit=limit)
    return NotificationListResponse(items=[NotificationResponse.model_validate(n) for n in items])


@router.get("/unread-count", response_model=UnreadCountResponse, summary="Unread notifications")
def unread_count_endpoint(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_auth_context),
) -> UnreadCountResponse:
    return UnreadCountResponse(unread=notification_service.unread_count(db, auth))


@router.post(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Mark notification read",
)
def mark_read_endpoint(
    notification_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_auth_context),
) -> NotificationResponse:
    notification = notification_service.mark_read(db, notification_id, auth)
    return NotificationResponse.model_validate(notification)
