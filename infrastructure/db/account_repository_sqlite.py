from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Optional

from domain.errors import OwnerSlotTakenError, StorageError, UsernameTakenError
from domain.models import Account, Role
from domain.repositories import AccountRepository
from infrastructure.db.sqlite_connection import sqlite_transaction

_COLUMNS = (
    "id, username, password_hash, email, role, gems, crystals, xp, level, "
    "referred_by_id, created_at"
)


class SqliteAccountRepository(AccountRepository):
    """
    SQLite-backed implementation of `AccountRepository`.

    Manages the `accounts` table. Uniqueness of `username` and of the
    single OWNER row is enforced by the schema, not by the caller.
    Balances are stored as decimal TEXT so they are never truncated to
    64 bits.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_table()

    def _ensure_table(self) -> None:
        with sqlite_transaction(self._db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id TEXT PRIMARY KEY,
                    username TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    email TEXT,
                    role TEXT NOT NULL CHECK (role IN ('OWNER', 'PLAYER')),
                    gems TEXT NOT NULL DEFAULT '0',
                    crystals TEXT NOT NULL DEFAULT '0',
                    xp TEXT NOT NULL DEFAULT '0',
                    level INTEGER NOT NULL DEFAULT 1 CHECK (level >= 1),
                    referred_by_id TEXT REFERENCES accounts (id),
                    created_at TEXT NOT NULL,
                    CHECK (referred_by_id IS NULL OR referred_by_id <> id)
                )
                """
            )
            # At most one OWNER: settles concurrent first registrations.
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS accounts_single_owner
                ON accounts (role) WHERE role = 'OWNER'
                """
            )

    @staticmethod
    def _to_domain(row: sqlite3.Row) -> Account:
        return Account(
            id=row["id"],
            username=row["username"],
            password_hash=row["password_hash"],
            email=row["email"],
            role=Role(row["role"]),
            gems=int(row["gems"]),
            crystals=int(row["crystals"]),
            xp=int(row["xp"]),
            level=int(row["level"]),
            referred_by_id=row["referred_by_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _fetch(conn: sqlite3.Connection, where: str, value: str) -> Optional[sqlite3.Row]:
        cur = conn.execute(f"SELECT {_COLUMNS} FROM accounts WHERE {where} = ?", (value,))
        return cur.fetchone()

    def get_by_username(self, username: str) -> Optional[Account]:
        with sqlite_transaction(self._db_path) as conn:
            row = self._fetch(conn, "username", username)
            if not row:
                return None
            return self._to_domain(row)

    def get_by_id(self, account_id: str) -> Optional[Account]:
        with sqlite_transaction(self._db_path) as conn:
            row = self._fetch(conn, "id", account_id)
            if not row:
                return None
            return self._to_domain(row)

    def count_accounts(self) -> int:
        with sqlite_transaction(self._db_path) as conn:
            cur = conn.execute("SELECT COUNT(*) FROM accounts")
            return int(cur.fetchone()[0])

    def create_account(self, account: Account) -> Account:
        with sqlite_transaction(self._db_path) as conn:
            try:
                conn.execute(
                    f"""
                    INSERT INTO accounts ({_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        account.id,
                        account.username,
                        account.password_hash,
                        account.email,
                        account.role.value,
                        str(account.gems),
                        str(account.crystals),
                        str(account.xp),
                        account.level,
                        account.referred_by_id,
                        account.created_at.isoformat(),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                message = str(exc)
                if "accounts.username" in message:
                    raise UsernameTakenError(account.username) from exc
                if "accounts.role" in message:
                    raise OwnerSlotTakenError() from exc
                raise
            return self._to_domain(self._fetch(conn, "id", account.id))

    def link_referrer(self, account_id: str, referrer_id: str, bonus: int) -> Account:
        with sqlite_transaction(self._db_path) as conn:
            # Take the write lock up front so the gems read-modify-write
            # below cannot interleave with another writer.
            conn.execute("BEGIN IMMEDIATE")

            row = self._fetch(conn, "id", account_id)
            if row is None:
                raise StorageError(f"account {account_id} does not exist")
            if row["referred_by_id"] is not None or account_id == referrer_id:
                return self._to_domain(row)

            referrer = self._fetch(conn, "id", referrer_id)
            if referrer is None:
                raise StorageError(f"referrer {referrer_id} does not exist")

            conn.execute(
                "UPDATE accounts SET referred_by_id = ? WHERE id = ?",
                (referrer_id, account_id),
            )
            conn.execute(
                "UPDATE accounts SET gems = ? WHERE id = ?",
                (str(int(referrer["gems"]) + bonus), referrer_id),
            )
            return self._to_domain(self._fetch(conn, "id", account_id))
