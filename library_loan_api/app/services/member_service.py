"""Read-only queries over library members."""

from typing import List

from library_loan_api.app.core.db import Database, parse_timestamp, storage_errors
from library_loan_api.app.schemas.member import MemberRead


class MemberService:
    """Service for listing members together with their open-loan counts."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def list_members(self) -> List[MemberRead]:
        """Return all members ordered by code.

        ``borrowed`` counts loans without a return date; returned loans
        are not included.
        """
        with storage_errors("listing members"):
            with self.db.cursor() as cursor:
                rows = cursor.execute(
                    """
                    SELECT m.code, m.name, m.penalty_until, COUNT(l.member_code) AS borrowed
                    FROM members m
                    LEFT JOIN loans l ON m.code = l.member_code AND l.return_date IS NULL
                    GROUP BY m.code, m.name, m.penalty_until
                    ORDER BY m.code
                    """
                ).fetchall()
        return [
            MemberRead(
                code=row["code"],
                name=row["name"],
                borrowed=row["borrowed"],
                penalty_until=parse_timestamp(row["penalty_until"]),
            )
            for row in rows
        ]
