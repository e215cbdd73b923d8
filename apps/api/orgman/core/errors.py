"""Base error carrying a stable code for API and job-status consumers."""

from typing import Any


class ServiceError(Exception):
    """Structured error with a stable machine code and a readable message."""

    code = "service_error"
    status_code = 400

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}
