import secrets

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth.dependencies import ADMIN, DELIVERY, AuthContext
from app.config import settings
from app.models.courier import Courier
from app.observability import log_event
from app.services.errors import ConflictError, ForbiddenError, NotFoundError

_MAX_LOGIN_CODE_ATTEMPTS = 10


def _generate_login_code(length: int) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


def _generate_unique_login_code(db: Session) -> str:
    for _ in range(_MAX_LOGIN_CODE_ATTEMPTS):
        login_code = _generate_login_code(settings.courier_login_code_length)
        taken = db.scalar(select(Courier.id).where(Courier.login_code == login_code))
        if not taken:
            return login_code
    raise ConflictError("Could not generate a unique login code, please retry")


def _courier_id_for(name: str, login_code: str) -> str:
    slug = "-".join(name.lower().split())[:40] or "courier"
    return f"{slug}-{login_code}"


def register_courier(
    db: Session,
    caller: AuthContext,
    name: str,
    contact: str | None = None,
    courier_id: str | None = None,
) -> Courier:
    if caller.role != ADMIN:
        raise ForbiddenError("Only admin can register couriers")

    login_code = _generate_unique_login_code(db)
    courier = Courier(
        id=courier_id or _courier_id_for(name, login_code),
        name=name,
        contact=contact,
        login_code=login_code,
        is_available=False,
    )
    db.add(courier)
    try:
        db.commit()
    except IntegrityError as err:
        db.rollback()
        raise ConflictError("Courier already exists", courier_id=courier.id) from err

    db.refresh(courier)
    log_event("courier_registered", courier_id=courier.id)
    return courier


def get_courier(db: Session, courier_id: str) -> Courier:
    courier = db.get(Courier, courier_id)
    if courier is None:
        raise NotFoundError("Courier not found", courier_id=courier_id)
    return courier


def list_couriers(db: Session, available_only: bool = False) -> list[Courier]:
    stmt = select(Courier)
    if available_only:
        stmt = stmt.where(Courier.is_available.is_(True))
    return list(db.scalars(stmt.order_by(Courier.created_at.asc(), Courier.id.asc())))


def set_courier_availability(
    db: Session,
    courier_id: str,
    is_available: bool,
    caller: AuthContext,
) -> Courier:
    courier = get_courier(db, courier_id)
    if caller.role != DELIVERY or caller.user_id != courier_id:
        raise ForbiddenError(
            "Couriers can only change their own availability", courier_id=courier_id
        )

    courier.is_available = is_available
    db.commit()
    db.refresh(courier)
    log_event(
        "courier_availability_changed",
        courier_id=courier_id,
        detail="available" if is_available else "offline",
    )
    return courier
