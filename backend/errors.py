# errors.py — Application error taxonomy
# Each error carries a stable HTTP status and a short client-safe message.
# Handlers in main.py turn them into {"message": ...} responses.

from typing import Any, Dict, List, Optional


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, Any]]] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(AppError):
    """Malformed or out-of-range input"""
    status_code = 400
    default_message = "Invalid request"

    @classmethod
    def for_field(cls, field: str, msg: str) -> "ValidationError":
        return cls(errors=[{"loc": ["body", field], "msg": msg, "type": "value_error"}])


class AuthenticationError(AppError):
    status_code = 401
    default_message = "Not authenticated"


class AuthorizationError(AppError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict with existing data"


class InternalError(AppError):
    status_code = 500
