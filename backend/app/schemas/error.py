from typing import Any

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    detail: Any
    code: str | None = None


class PublicErrorResponse(BaseModel):
    """Error body the checkout extension and script-tag embeds expect."""

    error: str
