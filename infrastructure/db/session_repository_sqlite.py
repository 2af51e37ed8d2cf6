from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Optional

from domain.models import Session
from domain.repositories import SessionRepository
from infrastructure.db.sqlite_connection import sqlite_transaction


class SqliteSessionRepository(SessionRepository):
    """
    SQLite-backed implementation of `SessionRepository`.

    Owns the `sessions` table. It references `accounts`, so it should
    share a database file with `SqliteAccountRepository` and be created
    after it.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_table()

    def _ensure_table(self) -> None:
        with sqlite_transaction(self._db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    token TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL REFERENCES accounts (id),
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS sessions_account_id ON sessions (account_id)"
            )

    @staticmethod
    def _to_domain(row: sqlite3.Row) -> Session:
        return Session(
            token=row["token"],
            account_id=row["account_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
        )

    def create_session(self, session: Session) -> Session:
        with sqlite_transaction(self._db_path) as conn:
            conn.execute(
                """
                INSERT INTO sessions (token, account_id, created_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    session.token,
                    session.account_id,
                    session.created_at.isoformat(),
                    session.expires_at.isoformat(),
                ),
            )
        return session

    def get_session(self, token: str) -> Optional[Session]:
        with sqlite_transaction(self._db_path) as conn:
            cur = conn.execute(
                "SELECT token, account_id, created_at, expires_at FROM sessions WHERE token = ?",
                (token,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return self._to_domain(row)
