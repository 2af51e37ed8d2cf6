from __future__ import annotations

from typing import Optional

import psycopg2

from domain.errors import StorageError
from domain.models import Session
from domain.repositories import SessionRepository


class PostgresSessionRepository(SessionRepository):
    """Postgres-backed implementation of `SessionRepository`."""

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._ensure_table()

    def _get_connection(self):
        try:
            return psycopg2.connect(self._dsn)
        except psycopg2.Error as exc:
            raise StorageError("cannot connect to Postgres") from exc

    def _ensure_table(self) -> None:
        conn = self._get_connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS sessions (
                        token TEXT PRIMARY KEY,
                        account_id TEXT NOT NULL REFERENCES accounts (id),
                        created_at TIMESTAMPTZ NOT NULL,
                        expires_at TIMESTAMPTZ NOT NULL
                    )
                    """
                )
                cur.execute(
                    "CREATE INDEX IF NOT EXISTS sessions_account_id ON sessions (account_id)"
                )
        except psycopg2.Error as exc:
            raise StorageError("cannot create sessions table") from exc
        finally:
            conn.close()

    def create_session(self, session: Session) -> Session:
        conn = self._get_connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO sessions (token, account_id, created_at, expires_at)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (session.token, session.account_id, session.created_at, session.expires_at),
                )
        except psycopg2.Error as exc:
            raise StorageError("session insert failed") from exc
        finally:
            conn.close()
        return session

    def get_session(self, token: str) -> Optional[Session]:
        conn = self._get_connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute(
                    "SELECT token, account_id, created_at, expires_at FROM sessions WHERE token = %s",
                    (token,),
                )
                row = cur.fetchone()
        except psycopg2.Error as exc:
            raise StorageError("session lookup failed") from exc
        finally:
            conn.close()
        if not row:
            return None
        return Session(token=row[0], account_id=row[1], created_at=row[2], expires_at=row[3])
