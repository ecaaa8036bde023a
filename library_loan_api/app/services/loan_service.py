"""
Business logic for lending and returning books.

The ``LoanService`` gathers the facts the lending rules need, asks
``loan_policy`` for a decision and writes the outcome back.  Each
operation runs inside one ``BEGIN IMMEDIATE`` transaction, so the
borrow‑limit and availability checks cannot be overtaken by a
concurrent request between the read and the insert.  The partial
unique index on open loans per book backs this up: if an insert still
collides, the request is rejected as "book unavailable".
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List

from library_loan_api.app.core.db import Database, format_timestamp, storage_errors
from library_loan_api.app.core.errors import (
    LibraryError,
    PolicyViolation,
    StorageError,
    ValidationError,
)
from library_loan_api.app.schemas.loan import LoanRead
from library_loan_api.app.services.loan_policy import (
    Book,
    Member,
    OpenLoan,
    ReturnDecision,
    evaluate_loan_request,
    evaluate_return_request,
)


logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LoanCreated:
    id: int
    book_code: str
    member_code: str
    loan_date: datetime


def _require_codes(book_code: str, member_code: str) -> tuple[str, str]:
    book_code = (book_code or "").strip()
    member_code = (member_code or "").strip()
    if not book_code:
        raise ValidationError("book_code is required")
    if not member_code:
        raise ValidationError("member_code is required")
    return book_code, member_code


class LoanService:
    """Service for creating, returning and listing loans."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow) -> None:
        self.db = db
        self.clock = clock

    async def create_loan(self, book_code: str, member_code: str) -> LoanCreated:
        """Lend ``book_code`` to ``member_code``.

        Raises ``NotFound``, ``Forbidden`` or ``PolicyViolation`` when the
        lending rules reject the request and ``StorageError`` when the
        database fails.  Nothing is written unless the loan is approved.
        """
        book_code, member_code = _require_codes(book_code, member_code)
        try:
            with self.db.transaction() as cursor:
                now = self.clock()
                with storage_errors("checking member code"):
                    row = cursor.execute(
                        "SELECT code, name, penalty_until FROM members WHERE code = ?",
                        (member_code,),
                    ).fetchone()
                member = Member.from_row(row) if row else None

                with storage_errors("checking book code"):
                    row = cursor.execute(
                        "SELECT code, title, author, stock FROM books WHERE code = ?",
                        (book_code,),
                    ).fetchone()
                book = Book.from_row(row) if row else None

                with storage_errors("counting the member's open loans"):
                    open_count = cursor.execute(
                        "SELECT COUNT(*) AS count FROM loans WHERE member_code = ? AND return_date IS NULL",
                        (member_code,),
                    ).fetchone()["count"]

                with storage_errors("checking the book's loan status"):
                    book_on_loan = cursor.execute(
                        "SELECT 1 FROM loans WHERE book_code = ? AND return_date IS NULL LIMIT 1",
                        (book_code,),
                    ).fetchone() is not None

                approval = evaluate_loan_request(member, book, open_count, book_on_loan, now)

                with storage_errors("creating the loan"):
                    try:
                        cursor.execute(
                            "INSERT INTO loans (book_code, member_code, loan_date) VALUES (?, ?, ?)",
                            (approval.book_code, approval.member_code, format_timestamp(approval.loan_date)),
                        )
                    except sqlite3.IntegrityError as exc:
                        # Open-loan unique index: another request lent the book first.
                        raise PolicyViolation(
                            "This book is currently on loan and has not been returned."
                        ) from exc
                loan_id = cursor.lastrowid
        except LibraryError as exc:
            logger.info(
                "Loan of %s to %s rejected (%s): %s",
                book_code, member_code, exc.status_code, exc.message,
            )
            raise
        except sqlite3.Error as exc:
            logger.exception("Transaction failed while creating loan of %s to %s", book_code, member_code)
            raise StorageError("Database error while creating the loan") from exc

        logger.info("Loan %s created: book %s to member %s", loan_id, book_code, member_code)
        return LoanCreated(
            id=loan_id,
            book_code=approval.book_code,
            member_code=approval.member_code,
            loan_date=approval.loan_date,
        )

    async def return_loan(self, book_code: str, member_code: str) -> ReturnDecision:
        """Close the open loan of ``book_code`` held by ``member_code``.

        A return more than seven days after the loan date also sets the
        member's ``penalty_until``.  Raises ``NotFound`` when no open loan
        matches and ``StorageError`` when the database fails.
        """
        book_code, member_code = _require_codes(book_code, member_code)
        try:
            with self.db.transaction() as cursor:
                now = self.clock()
                with storage_errors("checking the loan"):
                    row = cursor.execute(
                        """
                        SELECT id, book_code, member_code, loan_date FROM loans
                        WHERE book_code = ? AND member_code = ? AND return_date IS NULL
                        ORDER BY id DESC LIMIT 1
                        """,
                        (book_code, member_code),
                    ).fetchone()
                open_loan = OpenLoan.from_row(row) if row else None

                decision = evaluate_return_request(open_loan, now)

                with storage_errors("updating the loan"):
                    cursor.execute(
                        "UPDATE loans SET return_date = ? WHERE id = ?",
                        (format_timestamp(decision.return_date), decision.loan_id),
                    )
                if decision.penalized:
                    with storage_errors("applying the member penalty"):
                        cursor.execute(
                            "UPDATE members SET penalty_until = ? WHERE code = ?",
                            (format_timestamp(decision.penalty_until), member_code),
                        )
        except LibraryError as exc:
            logger.info(
                "Return of %s by %s rejected (%s): %s",
                book_code, member_code, exc.status_code, exc.message,
            )
            raise
        except sqlite3.Error as exc:
            logger.exception("Transaction failed while returning %s by %s", book_code, member_code)
            raise StorageError("Database error while returning the loan") from exc

        if decision.penalized:
            logger.info(
                "Loan %s returned after %s days; member %s penalised until %s",
                decision.loan_id, decision.elapsed_days, member_code, decision.penalty_until.isoformat(),
            )
        else:
            logger.info("Loan %s returned after %s days", decision.loan_id, decision.elapsed_days)
        return decision

    async def list_loans(self) -> List[LoanRead]:
        """Return every loan, most recent id first."""
        with storage_errors("listing loans"):
            with self.db.cursor() as cursor:
                rows = cursor.execute(
                    "SELECT id, book_code, member_code, loan_date, return_date FROM loans ORDER BY id DESC"
                ).fetchall()
        return [LoanRead.model_validate(dict(row)) for row in rows]
