from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from library_loan_api.app.core.db import Database, format_timestamp
from library_loan_api.app.main import create_app


BOOKS = [
    ("B1", "Harry Potter", "J.K Rowling", 1),
    ("B2", "A Study in Scarlet", "Arthur Conan Doyle", 1),
    ("B3", "Twilight", "Stephenie Meyer", 1),
    ("B4", "The Hobbit", "J.R.R. Tolkien", 0),
]

MEMBERS = [
    ("M1", "Angga"),
    ("M2", "Ferry"),
    ("M3", "Putri"),
]

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db(tmp_path):
    # Each test gets its own database file
    database = Database(str(tmp_path / "library_test.db"))
    database.init_db()
    with database.cursor() as cursor:
        cursor.executemany(
            "INSERT INTO books (code, title, author, stock) VALUES (?, ?, ?, ?)", BOOKS
        )
        cursor.executemany("INSERT INTO members (code, name) VALUES (?, ?)", MEMBERS)
    return database


@pytest.fixture
def client(db):
    app = create_app(database=db)
    with TestClient(app) as test_client:
        yield test_client


def add_loan(db, book_code, member_code, loan_date, return_date=None):
    """Insert a loan row directly and return its id."""
    with db.cursor() as cursor:
        cursor.execute(
            "INSERT INTO loans (book_code, member_code, loan_date, return_date) VALUES (?, ?, ?, ?)",
            (
                book_code,
                member_code,
                format_timestamp(loan_date),
                format_timestamp(return_date) if return_date else None,
            ),
        )
        return cursor.lastrowid


def set_penalty(db, member_code, until):
    with db.cursor() as cursor:
        cursor.execute(
            "UPDATE members SET penalty_until = ? WHERE code = ?",
            (format_timestamp(until), member_code),
        )


def fetch_one(db, sql, params=()):
    with db.cursor() as cursor:
        return cursor.execute(sql, params).fetchone()
