"""
Lending rules for creating and returning loans.

Everything in this module is pure: callers fetch the facts from the
database, pass them in together with the current time and persist
whatever decision comes back.  Failures are raised as exceptions from
``core.errors`` so the HTTP layer can map them to status codes.

Rules
-----
* A member inside a penalty window cannot borrow.
* A member may hold at most ``BORROW_LIMIT`` open loans.
* Each book is a single copy: it cannot be lent while another loan
  for it is open.  ``books.stock`` is informational and never checked.
* A return after more than ``LATE_THRESHOLD_DAYS`` days (partial days
  rounded up) blocks the member for ``PENALTY_DAYS`` days from the
  moment of return.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from library_loan_api.app.core.db import parse_timestamp
from library_loan_api.app.core.errors import Forbidden, NotFound, PolicyViolation


BORROW_LIMIT = 2
LATE_THRESHOLD_DAYS = 7
PENALTY_DAYS = 3


@dataclass
class Member:
    code: str
    name: str
    penalty_until: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "Member":
        return cls(
            code=row["code"],
            name=row["name"],
            penalty_until=parse_timestamp(row["penalty_until"]),
        )

    def is_penalized(self, now: datetime) -> bool:
        return self.penalty_until is not None and self.penalty_until > now


@dataclass
class Book:
    code: str
    title: str
    author: str
    stock: int = 0

    @classmethod
    def from_row(cls, row) -> "Book":
        return cls(code=row["code"], title=row["title"], author=row["author"], stock=row["stock"])


@dataclass
class OpenLoan:
    id: int
    book_code: str
    member_code: str
    loan_date: datetime

    @classmethod
    def from_row(cls, row) -> "OpenLoan":
        return cls(
            id=row["id"],
            book_code=row["book_code"],
            member_code=row["member_code"],
            loan_date=parse_timestamp(row["loan_date"]),
        )


@dataclass(frozen=True)
class LoanApproval:
    """A loan that may be inserted as is."""

    book_code: str
    member_code: str
    loan_date: datetime


class ReturnOutcome(Enum):
    CLEAN = "clean"
    PENALTY = "penalty"


@dataclass(frozen=True)
class ReturnDecision:
    outcome: ReturnOutcome
    loan_id: int
    member_code: str
    return_date: datetime
    elapsed_days: int
    penalty_until: Optional[datetime] = None

    @property
    def penalized(self) -> bool:
        return self.outcome is ReturnOutcome.PENALTY


def elapsed_days(start: datetime, end: datetime) -> int:
    """Whole days between two instants, any partial day counting as one."""
    seconds = abs((end - start).total_seconds())
    return math.ceil(seconds / timedelta(days=1).total_seconds())


def evaluate_loan_request(
    member: Optional[Member],
    book: Optional[Book],
    member_open_loan_count: int,
    book_has_open_loan: bool,
    now: datetime,
) -> LoanApproval:
    """Decide whether ``member`` may borrow ``book`` at ``now``.

    Checks run in a fixed order and the first failing one wins: member
    exists, book exists, no active penalty, borrow limit, availability.

    Raises
    ------
    NotFound
        The member or the book does not exist.
    Forbidden
        The member's ``penalty_until`` is strictly after ``now``.
    PolicyViolation
        The member already has ``BORROW_LIMIT`` open loans, or the book
        is currently lent out.
    """
    if member is None:
        raise NotFound("Member code not found")
    if book is None:
        raise NotFound("Book code not found")
    if member.is_penalized(now):
        until = member.penalty_until.isoformat()
        raise Forbidden(
            f"Member is under penalty and cannot borrow books. Penalty ends at {until}.",
            penalty_until=member.penalty_until,
        )
    if member_open_loan_count >= BORROW_LIMIT:
        raise PolicyViolation(f"Member cannot borrow more than {BORROW_LIMIT} books.")
    if book_has_open_loan:
        raise PolicyViolation("This book is currently on loan and has not been returned.")
    return LoanApproval(book_code=book.code, member_code=member.code, loan_date=now)


def evaluate_return_request(open_loan: Optional[OpenLoan], now: datetime) -> ReturnDecision:
    """Decide how the return of ``open_loan`` at ``now`` is recorded.

    Raises ``NotFound`` when there is no open loan for the requested
    book and member.
    """
    if open_loan is None:
        raise NotFound("No open loan matches the given book and member.")

    days = elapsed_days(open_loan.loan_date, now)
    if days > LATE_THRESHOLD_DAYS:
        return ReturnDecision(
            outcome=ReturnOutcome.PENALTY,
            loan_id=open_loan.id,
            member_code=open_loan.member_code,
            return_date=now,
            elapsed_days=days,
            penalty_until=now + timedelta(days=PENALTY_DAYS),
        )
    return ReturnDecision(
        outcome=ReturnOutcome.CLEAN,
        loan_id=open_loan.id,
        member_code=open_loan.member_code,
        return_date=now,
        elapsed_days=days,
    )
