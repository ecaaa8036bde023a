"""
Pydantic models for loans.

``LoanRequest`` is the body accepted by both ``/loans/store`` and
``/loans/return``.  Codes are trimmed and must not be empty; a missing
or blank code is rejected with HTTP 422 before any service runs.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class LoanRequest(BaseModel):
    book_code: str = Field(..., description="Code of the book", examples=["JK-45"])
    member_code: str = Field(..., description="Code of the member", examples=["M001"])

    @field_validator("book_code", "member_code")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v


class LoanRead(BaseModel):
    id: int
    book_code: str
    member_code: str
    loan_date: datetime
    return_date: Optional[datetime] = None

    model_config = {
        "from_attributes": True,
    }
