"""
Loan endpoints.

These routes list loans, lend a book to a member and record returns.
They rely on the ``LoanService`` for the lending rules and persistence;
failures are raised as ``LibraryError`` subclasses and rendered into the
response envelope by the handlers registered in ``main.py``.
"""

from typing import List

from fastapi import APIRouter, Depends, status

from library_loan_api.app.core.db import Database, get_database
from library_loan_api.app.schemas.common import ApiResponse
from library_loan_api.app.schemas.loan import LoanRead, LoanRequest
from library_loan_api.app.services.loan_policy import PENALTY_DAYS
from library_loan_api.app.services.loan_service import LoanService


router = APIRouter()


def get_loan_service(db: Database = Depends(get_database)) -> LoanService:
    return LoanService(db)


@router.get("", response_model=ApiResponse[List[LoanRead]])
async def list_loans(service: LoanService = Depends(get_loan_service)) -> ApiResponse[List[LoanRead]]:
    """List every loan, open and returned, most recent first."""
    loans = await service.list_loans()
    return ApiResponse(message="List of loans", data=loans)


@router.post(
    "/store",
    response_model=ApiResponse[int],
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Borrow limit reached or book already on loan"},
        403: {"description": "Member is in a penalty period"},
        404: {"description": "Book code or member code not found"},
        422: {"description": "book_code or member_code missing or empty"},
    },
)
async def store_loan(
    body: LoanRequest,
    service: LoanService = Depends(get_loan_service),
) -> ApiResponse[int]:
    """Lend a book to a member.

    Returns the id of the new loan in ``data``.  The member must exist,
    must not be in a penalty period and may hold at most two open
    loans; the book must exist and must not be on loan.
    """
    loan = await service.create_loan(body.book_code, body.member_code)
    return ApiResponse(message="Insert Data Successfully", data=loan.id)


@router.post(
    "/return",
    response_model=ApiResponse[None],
    response_model_exclude_none=True,
    responses={
        404: {"description": "No open loan matches the given book and member"},
        422: {"description": "book_code or member_code missing or empty"},
    },
)
async def return_loan(
    body: LoanRequest,
    service: LoanService = Depends(get_loan_service),
) -> ApiResponse[None]:
    """Return a borrowed book.

    Returning more than seven days after the loan date puts the member
    in a three-day penalty period.
    """
    decision = await service.return_loan(body.book_code, body.member_code)
    if decision.penalized:
        return ApiResponse(
            message=(
                "Book returned with a penalty. "
                f"Member cannot borrow books for {PENALTY_DAYS} days."
            )
        )
    return ApiResponse(message="Book returned successfully.")
