from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Header, HTTPException, status

from app.auth.jwt import decode_jwt, jwt_http_exception
from app.config import allowed_roles_list, settings

BUYER = "buyer"
VENDOR = "vendor"
DELIVERY = "delivery"
ADMIN = "admin"

ALL_ROLES = (BUYER, VENDOR, DELIVERY, ADMIN)


@dataclass(frozen=True)
class AuthContext:
    """The resolved caller, passed explicitly into every lifecycle operation."""

    user_id: str
    role: str
    name: str | None = None
    source: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.user_id


def get_auth_context(
    authorization: str | None = Header(default=None),
) -> AuthContext:
    if not authorization or not authorization.startswith("Bearer "):
        if settings.enable_test_auth_bypass and authorization is None:
            return AuthContext(user_id="test-admin", role=ADMIN, name="Test Admin", source="test")
        raise jwt_http_exception("Missing bearer token")

    token = authorization.removeprefix("Bearer ").strip()
    try:
        payload = decode_jwt(token, settings.jwt_secret)
    except Exception as err:
        raise jwt_http_exception("Invalid JWT") from err

    role = payload.get("role")
    user_id = payload.get("sub")
    if role not in allowed_roles_list() or not isinstance(user_id, str) or not user_id:
        raise jwt_http_exception("Invalid JWT claims")

    name = payload.get("name")
    return AuthContext(
        user_id=user_id,
        role=role,
        name=name if isinstance(name, str) else None,
        source=payload.get("source"),
    )


def require_roles(*roles: str) -> Callable[[AuthContext], AuthContext]:
    def dependency(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if auth.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return auth

    return dependency


require_admin = require_roles(ADMIN)
