"""Member endpoints."""

from typing import List

from fastapi import APIRouter, Depends

from library_loan_api.app.core.db import Database, get_database
from library_loan_api.app.schemas.common import ApiResponse
from library_loan_api.app.schemas.member import MemberRead
from library_loan_api.app.services.member_service import MemberService


router = APIRouter()


@router.get("", response_model=ApiResponse[List[MemberRead]])
async def list_members(db: Database = Depends(get_database)) -> ApiResponse[List[MemberRead]]:
    """List members with the number of books each one currently holds."""
    members = await MemberService(db).list_members()
    return ApiResponse(message="List of members", data=members)
