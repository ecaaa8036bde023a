"""Pydantic models for library members."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class MemberRead(BaseModel):
    code: str = Field(..., description="Member code", examples=["M001"])
    name: str
    borrowed: int = Field(0, description="Number of books currently on loan")
    penalty_until: Optional[datetime] = Field(
        None, description="End of the member's penalty window, if any"
    )

    model_config = {
        "from_attributes": True,
    }
