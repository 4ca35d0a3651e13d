from typing import Any

from fastapi import status


class AppError(Exception):
    code: str = "APP_ERROR"
    message: str = "Application error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    details: Any | None = None

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: Any | None = None,
    ):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        if details is not None:
            self.details = details

        super().__init__(self.message)


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    message = "Validation failed"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(details={field: [message]})


class NotFoundError(AppError):
    code = "NOT_FOUND"
    message = "Resource not found"
    status_code = status.HTTP_404_NOT_FOUND


class AuthError(AppError):
    code = "UNAUTHENTICATED"
    message = "Unauthenticated."
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(AppError):
    code = "FORBIDDEN"
    message = "You do not have permission to perform this action."
    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(AppError):
    code = "CONFLICT_ERROR"
    message = "Resource conflict"
    status_code = status.HTTP_409_CONFLICT


class DuplicateNameError(ConflictError):
    code = "DUPLICATE_NAME"
    message = "A role with this name already exists."


class DuplicateEmailError(ConflictError):
    code = "DUPLICATE_EMAIL"
    message = "The email has already been taken."


class InvalidReferenceError(AppError):
    code = "INVALID_REFERENCE"
    message = "One or more referenced records do not exist."
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, field: str, invalid_ids: list[int], message: str | None = None):
        self.field = field
        self.invalid_ids = list(invalid_ids)
        super().__init__(
            message,
            details={field: [f"Invalid id(s): {', '.join(str(i) for i in self.invalid_ids)}"]},
        )


class RoleDeletionBlockedError(ConflictError):
    code = "ROLE_DELETION_BLOCKED"
    message = "Cannot delete role."


class HasAssignedUsersError(RoleDeletionBlockedError):
    code = "ROLE_HAS_USERS"
    message = "Cannot delete role that is assigned to users."


class SystemRoleProtectedError(RoleDeletionBlockedError):
    code = "SYSTEM_ROLE_PROTECTED"
    message = "System roles cannot be modified or deleted."


class RateLimitError(AppError):
    code = "RATE_LIMITED"
    message = "Too many attempts, try again later"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class InternalError(AppError):
    code = "INTERNAL_ERROR"
    message = "Internal server error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


ERROR_CODE_BY_STATUS: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: "BAD_REQUEST",
    status.HTTP_401_UNAUTHORIZED: AuthError.code,
    status.HTTP_403_FORBIDDEN: ForbiddenError.code,
    status.HTTP_404_NOT_FOUND: NotFoundError.code,
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    status.HTTP_409_CONFLICT: ConflictError.code,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ValidationError.code,
    status.HTTP_429_TOO_MANY_REQUESTS: RateLimitError.code,
}


def error_payload(
    code: str,
    message: str,
    details: Any | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": False, "message": message, "error_code": code}
    if details is not None:
        payload["errors"] = details
    return payload


def success_payload(data: Any | None = None, message: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": True}
    if message is not None:
        payload["message"] = message
    if data is not None:
        payload["data"] = data
    return payload


def resolve_error_code(status_code: int) -> str:
    if status_code in ERROR_CODE_BY_STATUS:
        return ERROR_CODE_BY_STATUS[status_code]
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        return InternalError.code
    return "UNKNOWN_ERROR"
