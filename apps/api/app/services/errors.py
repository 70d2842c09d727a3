from typing import Any

from fastapi import HTTPException, status


class OrderLifecycleError(HTTPException):
    """Base for every error the lifecycle core surfaces to callers.

    ``detail`` is always a mapping with a stable ``code``, a human ``message``
    and whatever context the caller needs to decide between retrying and
    prompting the user (current status, allowed targets, ...).
    """

    code = "error"
    http_status = status.HTTP_400_BAD_REQUEST
    retryable = False

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(
            status_code=self.http_status,
            detail={"code": self.code, "message": message, **context},
        )

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotFoundError(OrderLifecycleError):
    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND


class ForbiddenError(OrderLifecycleError):
    code = "forbidden"
    http_status = status.HTTP_403_FORBIDDEN


class InvalidTransitionError(OrderLifecycleError):
    code = "invalid_transition"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, current_status: str, target_status: str, allowed: list[str]) -> None:
        allowed_text = ", ".join(allowed) or "none"
        super().__init__(
            f"Cannot change status from {current_status} to {target_status}. "
            f"Allowed: {allowed_text}",
            current_status=current_status,
            target_status=target_status,
            allowed=allowed,
        )


class ConflictError(OrderLifecycleError):
    code = "conflict"
    http_status = status.HTTP_409_CONFLICT
    retryable = True


class MissingFieldError(OrderLifecycleError):
    code = "missing_field"


class InvalidCodeError(OrderLifecycleError):
    code = "invalid_code"


class CodeRequiredError(OrderLifecycleError):
    code = "code_required"


class CourierUnavailableError(OrderLifecycleError):
    code = "courier_unavailable"
    http_status = status.HTTP_409_CONFLICT
    retryable = True
