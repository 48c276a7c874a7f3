from typing import Any, Optional

from pydantic import BaseModel


class ApiError(Exception):
    """Error rendered as {success: false, error: {code, message, details}}"""

    def __init__(self, status_code: int, code: str, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[str] = None


class Envelope(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None


def ok(data: Any) -> dict:
    return {"success": True, "data": data}


def failure(code: str, message: str, details: Optional[str] = None) -> dict:
    return Envelope(success=False, error=ErrorBody(code=code, message=message, details=details)).model_dump(
        exclude={"data"}
    )
