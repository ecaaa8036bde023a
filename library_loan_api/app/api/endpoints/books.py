"""Book endpoints."""

from typing import List

from fastapi import APIRouter, Depends

from library_loan_api.app.core.db import Database, get_database
from library_loan_api.app.schemas.book import BookRead
from library_loan_api.app.schemas.common import ApiResponse
from library_loan_api.app.services.book_service import BookService


router = APIRouter()


@router.get("", response_model=ApiResponse[List[BookRead]])
async def list_books(db: Database = Depends(get_database)) -> ApiResponse[List[BookRead]]:
    """List books that are available for loan.

    A book is available while nobody holds an open loan for it.
    """
    books = await BookService(db).list_available_books()
    return ApiResponse(message="List of available books", data=books)
