from __future__ import annotations

from typing import Optional

import psycopg2
import psycopg2.errors
import psycopg2.extras

from domain.errors import OwnerSlotTakenError, StorageError, UsernameTakenError
from domain.models import Account, Role
from domain.repositories import AccountRepository

USERNAME_CONSTRAINT = "accounts_username_unique"
OWNER_SLOT_INDEX = "accounts_single_owner"

_COLUMNS = (
    "id, username, password_hash, email, role, gems, crystals, xp, level, "
    "referred_by_id, created_at"
)


class PostgresAccountRepository(AccountRepository):
    """
    Postgres-backed implementation of `AccountRepository`.

    Balances live in unbounded NUMERIC columns and are converted to
    Python ints on the way out. Constraint violations are told apart by
    constraint name.
    """

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
                    f"""
                    CREATE TABLE IF NOT EXISTS accounts (
                        id TEXT PRIMARY KEY,
                        username TEXT NOT NULL,
                        password_hash TEXT NOT NULL,
                        email TEXT,
                        role TEXT NOT NULL CHECK (role IN ('OWNER', 'PLAYER')),
                        gems NUMERIC NOT NULL DEFAULT 0 CHECK (gems >= 0),
                        crystals NUMERIC NOT NULL DEFAULT 0 CHECK (crystals >= 0),
                        xp NUMERIC NOT NULL DEFAULT 0 CHECK (xp >= 0),
                        level INTEGER NOT NULL DEFAULT 1 CHECK (level >= 1),
                        referred_by_id TEXT REFERENCES accounts (id),
                        created_at TIMESTAMPTZ NOT NULL,
                        CONSTRAINT {USERNAME_CONSTRAINT} UNIQUE (username),
                        CHECK (referred_by_id IS NULL OR referred_by_id <> id)
                    )
                    """
                )
                cur.execute(
                    f"""
                    CREATE UNIQUE INDEX IF NOT EXISTS {OWNER_SLOT_INDEX}
                    ON accounts (role) WHERE role = 'OWNER'
                    """
                )
        except psycopg2.Error as exc:
            raise StorageError("cannot create accounts table") from exc
        finally:
            conn.close()

    @staticmethod
    def _to_domain(row: dict) -> Account:
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
            created_at=row["created_at"],
        )

    def _select_one(self, where: str, value: str) -> Optional[Account]:
        conn = self._get_connection()
        try:
            with conn, conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(f"SELECT {_COLUMNS} FROM accounts WHERE {where} = %s", (value,))
                row = cur.fetchone()
        except psycopg2.Error as exc:
            raise StorageError("account lookup failed") from exc
        finally:
            conn.close()
        if not row:
            return None
        return self._to_domain(row)

    def get_by_username(self, username: str) -> Optional[Account]:
        return self._select_one("username", username)

    def get_by_id(self, account_id: str) -> Optional[Account]:
        return self._select_one("id", account_id)

    def count_accounts(self) -> int:
        conn = self._get_connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) FROM accounts")
                return int(cur.fetchone()[0])
        except psycopg2.Error as exc:
            raise StorageError("account count failed") from exc
        finally:
            conn.close()

    def create_account(self, account: Account) -> Account:
        conn = self._get_connection()
        try:
            with conn, conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(
                    f"""
                    INSERT INTO accounts ({_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_COLUMNS}
                    """,
                    (
                        account.id,
                        account.username,
                        account.password_hash,
                        account.email,
                        account.role.value,
                        account.gems,
                        account.crystals,
                        account.xp,
                        account.level,
                        account.referred_by_id,
                        account.created_at,
                    ),
                )
                return self._to_domain(cur.fetchone())
        except psycopg2.errors.UniqueViolation as exc:
            constraint = exc.diag.constraint_name
            if constraint == USERNAME_CONSTRAINT:
                raise UsernameTakenError(account.username) from exc
            if constraint == OWNER_SLOT_INDEX:
                raise OwnerSlotTakenError() from exc
            raise StorageError("account insert violated a unique constraint") from exc
        except psycopg2.Error as exc:
            raise StorageError("account insert failed") from exc
        finally:
            conn.close()

    def link_referrer(self, account_id: str, referrer_id: str, bonus: int) -> Account:
        conn = self._get_connection()
        try:
            with conn, conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(
                    """
                    UPDATE accounts SET referred_by_id = %s
                    WHERE id = %s AND referred_by_id IS NULL AND id <> %s
                    """,
                    (referrer_id, account_id, referrer_id),
                )
                if cur.rowcount == 1:
                    cur.execute(
                        "UPDATE accounts SET gems = gems + %s WHERE id = %s",
                        (bonus, referrer_id),
                    )
                    if cur.rowcount != 1:
                        # Leaving the block with an exception rolls back the link.
                        raise StorageError(f"referrer {referrer_id} does not exist")

                cur.execute(f"SELECT {_COLUMNS} FROM accounts WHERE id = %s", (account_id,))
                row = cur.fetchone()
                if row is None:
                    raise StorageError(f"account {account_id} does not exist")
                return self._to_domain(row)
        except psycopg2.Error as exc:
            raise StorageError("referral link failed") from exc
        finally:
            conn.close()
