"""
Response envelope shared by every endpoint.

All responses follow the shape ``{"status": bool, "message": str,
"data": ...}``.  ``data`` is omitted when an operation has nothing to
return (for example a loan return).
"""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field


T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    status: bool = Field(True, description="Whether the request succeeded")
    message: str = Field(..., description="Human readable outcome")
    data: Optional[T] = None
