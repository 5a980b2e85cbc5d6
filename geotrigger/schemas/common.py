"""Common API schemas."""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """Standard API response wrapper."""

    code: int = Field(default=0, description="Response code, 0 for success")
    message: str = Field(default="success", description="Response message")
    data: T | None = Field(default=None, description="Response data")


class ErrorResponse(BaseModel):
    """Error response model."""

    code: int = Field(..., description="HTTP status of the error")
    message: str = Field(..., description="Error message")
    data: Any = Field(default=None, description="Structured error detail")
