"""
SQLite database integration and simple migration system.

This module provides the ``Database`` handle used by every service.  A
handle knows where the database file lives and hands out short‑lived
connections: ``cursor`` for plain reads and ``transaction`` for
read‑decide‑write sequences that must not interleave with other
requests.  The application stores one handle on ``app.state`` and
routes receive it through the ``get_database`` dependency, so tests can
point the whole API at a temporary file.

The migration mechanism stores applied migration versions in the
``migrations`` table and executes new migrations in order.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from fastapi import Request

from .config import settings
from .errors import StorageError


logger = logging.getLogger(__name__)


MIGRATIONS: list[tuple[int, str]] = [
    # Migration 1: Initial schema
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS books (
            code TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            author TEXT NOT NULL,
            stock INTEGER NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS members (
            code TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            penalty_until TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS loans (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            book_code TEXT NOT NULL,
            member_code TEXT NOT NULL,
            loan_date TIMESTAMP NOT NULL,
            return_date TIMESTAMP,
            FOREIGN KEY(book_code) REFERENCES books(code),
            FOREIGN KEY(member_code) REFERENCES members(code)
        );
        """,
    ),
    # Migration 2: lookup indices and single-copy lending
    (
        2,
        """
        CREATE INDEX IF NOT EXISTS idx_loans_member_code ON loans(member_code);
        -- A book may have at most one loan without a return date.
        CREATE UNIQUE INDEX IF NOT EXISTS uq_loans_open_book
            ON loans(book_code) WHERE return_date IS NULL;
        """,
    ),
]


DEMO_BOOKS: list[tuple[str, str, str, int]] = [
    ("JK-45", "Harry Potter", "J.K Rowling", 1),
    ("SHR-1", "A Study in Scarlet", "Arthur Conan Doyle", 1),
    ("TW-11", "Twilight", "Stephenie Meyer", 1),
    ("HOB-83", "The Hobbit, or There and Back Again", "J.R.R. Tolkien", 1),
    ("NRN-7", "The Lion, the Witch and the Wardrobe", "C.S. Lewis", 1),
]

DEMO_MEMBERS: list[tuple[str, str]] = [
    ("M001", "Angga"),
    ("M002", "Ferry"),
    ("M003", "Putri"),
]


def get_database_path(db_url: Optional[str] = None) -> str:
    """Compute the path to the SQLite database file.

    If the URL is an absolute path, use it directly.  Otherwise resolve
    it relative to the package root.
    """
    db_url = db_url or settings.database_url
    if os.path.isabs(db_url):
        return db_url
    base_dir = Path(__file__).resolve().parent.parent.parent  # library_loan_api/
    return str((base_dir / db_url).resolve())


def format_timestamp(value: datetime) -> str:
    """Serialise an aware datetime as UTC ISO‑8601 text for storage."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a stored timestamp into an aware UTC datetime.

    Accepts ISO‑8601 text (with ``T`` or space separator, as written by
    SQLite's ``CURRENT_TIMESTAMP``).  Naive values are taken to be UTC.
    ``None`` and empty strings yield ``None``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class Database:
    """Handle on a single SQLite database file."""

    def __init__(self, path: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.path = get_database_path(path)
        self.timeout = settings.database_timeout if timeout is None else timeout

    def connect(self) -> sqlite3.Connection:
        """Create and return a new SQLite connection.

        Rows are returned as ``sqlite3.Row`` so columns can be accessed
        by name.  Foreign key enforcement is enabled per connection since
        SQLite disables it by default.
        """
        conn = sqlite3.connect(self.path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def cursor(self) -> Iterator[sqlite3.Cursor]:
        """Yield a cursor, commit on success and always close the connection."""
        conn = self.connect()
        try:
            yield conn.cursor()
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Yield a cursor inside a ``BEGIN IMMEDIATE`` transaction.

        The write lock is taken before the first read, so two requests
        that read then write the same rows are serialised instead of
        both acting on a stale view.  Any exception rolls the
        transaction back and is re‑raised.
        """
        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.cursor()
            try:
                yield cursor
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        finally:
            conn.close()

    def init_db(self, seed: bool = False) -> None:
        """Initialise the database and apply pending migrations.

        Creates the ``migrations`` table if it does not exist, checks
        the current schema version and applies any newer entries of
        ``MIGRATIONS``.  When ``seed`` is true the demo catalogue is
        inserted, skipping rows that already exist.
        """
        with self.cursor() as cursor:
            cursor.execute(
                "CREATE TABLE IF NOT EXISTS migrations (version INTEGER PRIMARY KEY)"
            )
            cursor.execute("SELECT MAX(version) as version FROM migrations")
            row = cursor.fetchone()
            current_version = row["version"] if row and row["version"] is not None else 0

            for version, sql in MIGRATIONS:
                if version > current_version:
                    logger.info("Applying migration %s to %s", version, self.path)
                    cursor.executescript(sql)
                    cursor.execute(
                        "INSERT INTO migrations (version) VALUES (?)", (version,)
                    )
                    current_version = version

            if seed:
                cursor.executemany(
                    "INSERT OR IGNORE INTO books (code, title, author, stock) VALUES (?, ?, ?, ?)",
                    DEMO_BOOKS,
                )
                cursor.executemany(
                    "INSERT OR IGNORE INTO members (code, name) VALUES (?, ?)",
                    DEMO_MEMBERS,
                )


def get_database(request: Request) -> Database:
    """FastAPI dependency returning the application's database handle."""
    return request.app.state.database


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Translate ``sqlite3.Error`` raised inside the block into ``StorageError``.

    The raw error is logged with its traceback; only a short description
    of the failed step reaches the client.
    """
    try:
        yield
    except sqlite3.Error as exc:
        logger.exception("Database error while %s", action)
        raise StorageError(f"Database error while {action}") from exc
