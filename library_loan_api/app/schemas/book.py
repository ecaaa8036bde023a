"""Pydantic models for books."""

from pydantic import BaseModel, Field


class BookRead(BaseModel):
    code: str = Field(..., description="Book code", examples=["JK-45"])
    title: str
    author: str
    # Informational only; availability is derived from open loans.
    stock: int

    model_config = {
        "from_attributes": True,
    }
