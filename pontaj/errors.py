from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str, details: object | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


class ShiftIntervalError(ValueError):
    """A shift interval that cannot be segmented (open, inverted, or too long).

    Input errors are permanent for the given input; the shift must be corrected
    before it is resubmitted.
    """

    def __init__(self, code: str, message: str, *, shift_id: int | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.shift_id = shift_id

    def to_api_error(self) -> ApiError:
        details = {"shift_id": self.shift_id} if self.shift_id is not None else None
        return ApiError(status_code=422, code=self.code, message=self.message, details=details)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: object | None = None,
) -> JSONResponse:
    error: dict[str, object] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(request),
    }
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})
