"""
Read-only queries over the book catalogue.

A book counts as available while no loan for it is open.  ``stock`` is
reported as stored and plays no part in availability: a book with zero
stock and no open loan is still listed.
"""

from typing import List

from library_loan_api.app.core.db import Database, storage_errors
from library_loan_api.app.schemas.book import BookRead


class BookService:
    """Service for listing books."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def list_available_books(self) -> List[BookRead]:
        """Return books that are not currently on loan, ordered by code."""
        with storage_errors("listing books"):
            with self.db.cursor() as cursor:
                rows = cursor.execute(
                    """
                    SELECT b.code, b.title, b.author, b.stock
                    FROM books b
                    LEFT JOIN loans l ON b.code = l.book_code AND l.return_date IS NULL
                    GROUP BY b.code, b.title, b.author, b.stock
                    HAVING COUNT(l.book_code) = 0
                    ORDER BY b.code
                    """
                ).fetchall()
        return [BookRead.model_validate(dict(row)) for row in rows]
