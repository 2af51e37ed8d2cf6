import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest import mock

import psycopg2
import psycopg2.errors

from domain.errors import OwnerSlotTakenError, StorageError, UsernameTakenError
from domain.models import Account, Role, Session
from infrastructure.db.account_repository_postgres import (
    OWNER_SLOT_INDEX,
    USERNAME_CONSTRAINT,
    PostgresAccountRepository,
)
from infrastructure.db.session_repository_postgres import PostgresSessionRepository

NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


def unique_violation(constraint_name):
    class _UniqueViolation(psycopg2.errors.UniqueViolation):
        diag = SimpleNamespace(constraint_name=constraint_name)

    return _UniqueViolation()


def account_row(account_id, username, gems=1_000, referred_by_id=None):
    return {
        "id": account_id,
        "username": username,
        "password_hash": "$2b$04$not-a-real-hash",
        "email": None,
        "role": "PLAYER",
        "gems": Decimal(gems),
        "crystals": Decimal(0),
        "xp": Decimal(0),
        "level": 1,
        "referred_by_id": referred_by_id,
        "created_at": NOW,
    }


class FakeCursor:
    def __init__(self, conn):
        self._conn = conn
        self.rowcount = -1

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self._conn.statements.append(" ".join(sql.split()))
        if self._conn.errors:
            raise self._conn.errors.pop(0)
        if self._conn.rowcounts:
            self.rowcount = self._conn.rowcounts.pop(0)

    def fetchone(self):
        return self._conn.rows.pop(0) if self._conn.rows else None


class FakeConnection:
    """Stand-in for a psycopg2 connection: `with conn` commits or rolls back."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.statements = []
        self.errors = []
        self.rowcounts = []
        self.rows = []
        self.committed = False
        self.rolled_back = False
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.committed = True
        else:
            self.rolled_back = True
        return False

    def cursor(self, cursor_factory=None):
        return FakeCursor(self)

    def close(self):
        self.closed = True


class PostgresRepositoryTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.conn = FakeConnection()
        patcher = mock.patch("psycopg2.connect", return_value=self.conn)
        self.connect = patcher.start()
        self.addCleanup(patcher.stop)


class PostgresAccountRepositoryTests(PostgresRepositoryTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.repo = PostgresAccountRepository("postgresql://test")
        self.conn.reset()

    def _account(self, username, role=Role.PLAYER):
        return Account(
            id="acc-1",
            username=username,
            password_hash="$2b$04$not-a-real-hash",
            role=role,
            gems=1_000,
            crystals=0,
            xp=0,
            level=1,
            created_at=NOW,
        )

    def test_schema_declares_constraints(self):
        self.conn.reset()
        PostgresAccountRepository("postgresql://test")
        schema = " ".join(self.conn.statements)
        self.assertIn(f"CONSTRAINT {USERNAME_CONSTRAINT} UNIQUE (username)", schema)
        self.assertIn(f"CREATE UNIQUE INDEX IF NOT EXISTS {OWNER_SLOT_INDEX}", schema)
        self.assertIn("WHERE role = 'OWNER'", schema)

    def test_username_violation_maps_to_username_taken(self):
        self.conn.errors.append(unique_violation(USERNAME_CONSTRAINT))
        with self.assertRaises(UsernameTakenError):
            self.repo.create_account(self._account("alice"))
        self.assertTrue(self.conn.rolled_back)
        self.assertTrue(self.conn.closed)

    def test_owner_index_violation_maps_to_owner_slot_taken(self):
        self.conn.errors.append(unique_violation(OWNER_SLOT_INDEX))
        with self.assertRaises(OwnerSlotTakenError):
            self.repo.create_account(self._account("alice", role=Role.OWNER))

    def test_other_unique_violation_is_storage_error(self):
        self.conn.errors.append(unique_violation("accounts_pkey"))
        with self.assertRaises(StorageError):
            self.repo.create_account(self._account("alice"))

    def test_driver_failure_is_storage_error(self):
        self.conn.errors.append(psycopg2.OperationalError("server closed the connection"))
        with self.assertRaises(StorageError):
            self.repo.count_accounts()

    def test_numeric_balances_come_back_as_ints(self):
        self.conn.rows.append(account_row("acc-1", "whale", gems=10**30))
        account = self.repo.get_by_username("whale")
        self.assertEqual(account.gems, 10**30)
        self.assertIsInstance(account.gems, int)

    def test_link_referrer_links_and_credits_in_one_transaction(self):
        self.conn.rowcounts.extend([1, 1])
        self.conn.rows.append(account_row("bob-id", "bob", referred_by_id="alice-id"))

        linked = self.repo.link_referrer("bob-id", "alice-id", 100)

        self.assertEqual(linked.referred_by_id, "alice-id")
        self.assertEqual(len(self.conn.statements), 3)
        self.assertIn("referred_by_id IS NULL AND id <> %s", self.conn.statements[0])
        self.assertIn("gems = gems + %s", self.conn.statements[1])
        self.assertTrue(self.conn.committed)

    def test_link_referrer_skips_credit_when_already_linked(self):
        self.conn.rowcounts.append(0)
        self.conn.rows.append(account_row("bob-id", "bob", referred_by_id="alice-id"))

        linked = self.repo.link_referrer("bob-id", "alice-id", 100)

        self.assertEqual(linked.referred_by_id, "alice-id")
        self.assertFalse(any("gems = gems" in sql for sql in self.conn.statements))

    def test_link_referrer_rolls_back_when_referrer_missing(self):
        self.conn.rowcounts.extend([1, 0])

        with self.assertRaises(StorageError):
            self.repo.link_referrer("bob-id", "missing", 100)

        self.assertTrue(self.conn.rolled_back)
        self.assertFalse(self.conn.committed)
        self.assertTrue(self.conn.closed)


class PostgresSessionRepositoryTests(PostgresRepositoryTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.repo = PostgresSessionRepository("postgresql://test")
        self.conn.reset()

    def test_create_and_get_session(self):
        session = Session("tok-1", "acc-1", NOW, NOW + timedelta(hours=24))

        self.assertIs(self.repo.create_session(session), session)
        self.assertTrue(self.conn.committed)

        self.conn.rows.append(("tok-1", "acc-1", NOW, NOW + timedelta(hours=24)))
        self.assertEqual(self.repo.get_session("tok-1"), session)
        self.assertIsNone(self.repo.get_session("unknown"))

    def test_insert_failure_is_storage_error(self):
        self.conn.errors.append(psycopg2.errors.ForeignKeyViolation())
        with self.assertRaises(StorageError):
            self.repo.create_session(Session("tok-2", "missing", NOW, NOW))
        self.assertTrue(self.conn.rolled_back)


if __name__ == "__main__":
    unittest.main()
