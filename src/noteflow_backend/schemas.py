from __future__ import annotations

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Error body shared by every endpoint.

    ``error`` is a stable machine-readable code derived from the HTTP status;
    ``message`` is meant for humans and may change.
    """

    error: str
    message: str
    request_id: str | None = None
    details: object | None = None
