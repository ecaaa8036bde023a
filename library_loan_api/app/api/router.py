"""
Top-level API router.

Aggregates the domain-specific routers under a unified prefix.  When
new domains are introduced, update this file to include their routers.
"""

from fastapi import APIRouter

from .endpoints import books, loans, members

router = APIRouter()

router.include_router(books.router, prefix="/books", tags=["books"])
router.include_router(members.router, prefix="/members", tags=["members"])
router.include_router(loans.router, prefix="/loans", tags=["loans"])
