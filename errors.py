from typing import Optional


class ServiceError(Exception):
    code = "internal_server_error"
    status_code = 500
    default_message = "Internal server error occurred"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None):
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, object]:
        return {
            "error": self.code,
            "message": self.message,
            "status_code": self.status_code,
        }


class ValidationError(ServiceError, ValueError):
    code = "validation_failed"
    status_code = 400
    default_message = "Request validation failed"


class Unauthorized(ServiceError):
    code = "unauthorized"
    status_code = 401
    default_message = "Access denied. Please login to continue"

    messages = {
        "unauthorized": default_message,
        "invalid_token": "Invalid or malformed authentication token",
        "session_expired": "Session expired, please login again",
        "invalid_credentials": "Invalid email or password",
    }

    def __init__(self, code: str = "unauthorized", message: Optional[str] = None):
        super().__init__(message or self.messages.get(code), code=code)


class Forbidden(ServiceError):
    code = "forbidden"
    status_code = 403
    default_message = "Access to this resource is forbidden"


class NotFound(ServiceError):
    code = "not_found"
    status_code = 404
    default_message = "Requested resource not found"


class Conflict(ServiceError):
    code = "already_exists"
    status_code = 409
    default_message = "Resource already exists"


class DependencyFailure(ServiceError):
    code = "database_error"
    status_code = 500
    default_message = "Database operation failed"
