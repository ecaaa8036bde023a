import asyncio
import sqlite3
import threading
from datetime import timedelta

import pytest

from conftest import FIXED_NOW, add_loan, fetch_one, set_penalty
from library_loan_api.app.core.db import Database, parse_timestamp
from library_loan_api.app.core.errors import (
    Forbidden,
    NotFound,
    PolicyViolation,
    StorageError,
    ValidationError,
)
from library_loan_api.app.services.book_service import BookService
from library_loan_api.app.services.loan_service import LoanService
from library_loan_api.app.services.member_service import MemberService


@pytest.fixture
def service(db):
    return LoanService(db, clock=lambda: FIXED_NOW)


def run(coro):
    return asyncio.run(coro)


def open_loans(db, member_code):
    row = fetch_one(
        db,
        "SELECT COUNT(*) AS n FROM loans WHERE member_code = ? AND return_date IS NULL",
        (member_code,),
    )
    return row["n"]


# -------------------------------------------------------------
# create_loan

def test_create_loan_inserts_open_loan(db, service):
    created = run(service.create_loan("B1", "M1"))
    row = fetch_one(db, "SELECT * FROM loans WHERE id = ?", (created.id,))
    assert row["book_code"] == "B1"
    assert row["member_code"] == "M1"
    assert parse_timestamp(row["loan_date"]) == FIXED_NOW
    assert row["return_date"] is None


def test_create_loan_trims_codes(db, service):
    created = run(service.create_loan("  B1 ", "M1 "))
    assert created.book_code == "B1"
    assert created.member_code == "M1"


@pytest.mark.parametrize("book_code, member_code", [("", "M1"), ("B1", ""), ("  ", "M1"), (None, "M1")])
def test_create_loan_requires_codes(service, book_code, member_code):
    with pytest.raises(ValidationError):
        run(service.create_loan(book_code, member_code))


def test_create_loan_unknown_member(db, service):
    with pytest.raises(NotFound, match="Member"):
        run(service.create_loan("B1", "M404"))
    assert fetch_one(db, "SELECT COUNT(*) AS n FROM loans")["n"] == 0


def test_create_loan_unknown_book(service):
    with pytest.raises(NotFound, match="Book"):
        run(service.create_loan("B404", "M1"))


def test_create_loan_penalised_member(db, service):
    set_penalty(db, "M2", FIXED_NOW + timedelta(days=1))
    with pytest.raises(Forbidden):
        run(service.create_loan("B1", "M2"))


def test_create_loan_after_penalty_expired(db, service):
    set_penalty(db, "M2", FIXED_NOW - timedelta(minutes=1))
    assert run(service.create_loan("B1", "M2")).member_code == "M2"


def test_create_loan_borrow_limit(db, service):
    run(service.create_loan("B1", "M1"))
    run(service.create_loan("B2", "M1"))
    with pytest.raises(PolicyViolation):
        run(service.create_loan("B3", "M1"))
    assert open_loans(db, "M1") == 2


def test_create_loan_returned_loans_do_not_count(db, service):
    add_loan(db, "B2", "M1", FIXED_NOW - timedelta(days=20), FIXED_NOW - timedelta(days=15))
    add_loan(db, "B3", "M1", FIXED_NOW - timedelta(days=20), FIXED_NOW - timedelta(days=15))
    run(service.create_loan("B1", "M1"))
    assert open_loans(db, "M1") == 1


def test_create_loan_book_already_lent(db, service):
    run(service.create_loan("B1", "M1"))
    with pytest.raises(PolicyViolation):
        run(service.create_loan("B1", "M2"))
    assert open_loans(db, "M2") == 0


def test_open_loan_index_rejects_second_open_loan(db):
    add_loan(db, "B1", "M1", FIXED_NOW)
    with pytest.raises(sqlite3.IntegrityError):
        add_loan(db, "B1", "M2", FIXED_NOW)
    # A returned loan for the same book does not collide
    add_loan(db, "B2", "M1", FIXED_NOW - timedelta(days=2), FIXED_NOW)
    add_loan(db, "B2", "M2", FIXED_NOW)


def test_concurrent_loans_for_same_book_only_one_succeeds(db):
    barrier = threading.Barrier(3)
    results = {}

    def borrow(member_code):
        service = LoanService(db, clock=lambda: FIXED_NOW)
        barrier.wait()
        try:
            results[member_code] = run(service.create_loan("B1", member_code))
        except PolicyViolation as exc:
            results[member_code] = exc

    threads = [threading.Thread(target=borrow, args=(code,)) for code in ("M1", "M2", "M3")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    failures = [r for r in results.values() if isinstance(r, PolicyViolation)]
    assert len(results) == 3
    assert len(failures) == 2
    row = fetch_one(db, "SELECT COUNT(*) AS n FROM loans WHERE book_code = 'B1' AND return_date IS NULL")
    assert row["n"] == 1


def test_create_loan_storage_failure(db, service):
    with db.cursor() as cursor:
        cursor.execute("DROP TABLE loans")
    with pytest.raises(StorageError) as exc_info:
        run(service.create_loan("B1", "M1"))
    assert exc_info.value.status_code == 500
    assert "open loans" in exc_info.value.message
    assert "DROP" not in exc_info.value.message


def test_create_loan_unreachable_database(tmp_path):
    service = LoanService(Database(str(tmp_path / "missing" / "library.db")))
    with pytest.raises(StorageError):
        run(service.create_loan("B1", "M1"))


# -------------------------------------------------------------
# return_loan

def test_return_clean(db, service):
    loan_id = add_loan(db, "B1", "M1", FIXED_NOW - timedelta(days=2))
    decision = run(service.return_loan("B1", "M1"))
    assert not decision.penalized
    row = fetch_one(db, "SELECT return_date FROM loans WHERE id = ?", (loan_id,))
    assert parse_timestamp(row["return_date"]) == FIXED_NOW
    member = fetch_one(db, "SELECT penalty_until FROM members WHERE code = 'M1'")
    assert member["penalty_until"] is None


def test_return_late_sets_penalty(db, service):
    add_loan(db, "B1", "M1", FIXED_NOW - timedelta(days=10))
    decision = run(service.return_loan("B1", "M1"))
    assert decision.penalized
    member = fetch_one(db, "SELECT penalty_until FROM members WHERE code = 'M1'")
    assert parse_timestamp(member["penalty_until"]) == FIXED_NOW + timedelta(days=3)


def test_penalised_member_is_blocked_until_penalty_ends(db):
    add_loan(db, "B1", "M1", FIXED_NOW - timedelta(days=10))
    run(LoanService(db, clock=lambda: FIXED_NOW).return_loan("B1", "M1"))

    with pytest.raises(Forbidden):
        run(LoanService(db, clock=lambda: FIXED_NOW + timedelta(days=2)).create_loan("B2", "M1"))
    later = LoanService(db, clock=lambda: FIXED_NOW + timedelta(days=3, seconds=1))
    assert run(later.create_loan("B2", "M1")).member_code == "M1"


def test_return_without_open_loan(service):
    with pytest.raises(NotFound):
        run(service.return_loan("B1", "M3"))


def test_second_return_is_not_found(db, service):
    add_loan(db, "B1", "M1", FIXED_NOW - timedelta(days=1))
    run(service.return_loan("B1", "M1"))
    with pytest.raises(NotFound):
        run(service.return_loan("B1", "M1"))


def test_return_leaves_earlier_returned_loans_untouched(db, service):
    old_return = FIXED_NOW - timedelta(days=20)
    old_id = add_loan(db, "B1", "M1", FIXED_NOW - timedelta(days=25), old_return)
    add_loan(db, "B1", "M1", FIXED_NOW - timedelta(days=1))
    run(service.return_loan("B1", "M1"))
    row = fetch_one(db, "SELECT return_date FROM loans WHERE id = ?", (old_id,))
    assert parse_timestamp(row["return_date"]) == old_return


def test_borrow_then_return_makes_book_available_again(db, service):
    run(service.create_loan("B1", "M1"))
    decision = run(service.return_loan("B1", "M1"))
    assert not decision.penalized
    assert run(service.create_loan("B1", "M2")).book_code == "B1"


# -------------------------------------------------------------
# Queries

def test_list_loans_most_recent_first(db, service):
    first = run(service.create_loan("B1", "M1")).id
    second = run(service.create_loan("B2", "M2")).id
    loans = run(service.list_loans())
    assert [loan.id for loan in loans] == [second, first]
    assert loans[0].return_date is None


def test_available_books_exclude_open_loans_only(db):
    add_loan(db, "B1", "M1", FIXED_NOW)
    add_loan(db, "B2", "M1", FIXED_NOW - timedelta(days=3), FIXED_NOW)
    books = run(BookService(db).list_available_books())
    assert [book.code for book in books] == ["B2", "B3", "B4"]


def test_members_report_open_loan_counts(db):
    add_loan(db, "B1", "M1", FIXED_NOW)
    add_loan(db, "B2", "M1", FIXED_NOW)
    add_loan(db, "B3", "M2", FIXED_NOW - timedelta(days=3), FIXED_NOW)
    set_penalty(db, "M3", FIXED_NOW)
    members = {m.code: m for m in run(MemberService(db).list_members())}
    assert members["M1"].borrowed == 2
    assert members["M2"].borrowed == 0
    assert members["M3"].penalty_until == FIXED_NOW


def test_queries_surface_storage_failure(tmp_path):
    db = Database(str(tmp_path / "missing" / "library.db"))
    with pytest.raises(StorageError, match="listing books"):
        run(BookService(db).list_available_books())
    with pytest.raises(StorageError, match="listing members"):
        run(MemberService(db).list_members())
