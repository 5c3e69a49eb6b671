from typing import Any

from pydantic import BaseModel


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class Envelope(BaseModel):
    """Every response: ``{success, data?, error?}``."""
    success: bool
    data: Any | None = None
    error: ErrorBody | None = None


def ok(data: Any = None) -> dict:
    return {"success": True, "data": data}
