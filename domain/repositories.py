from __future__ import annotations

from typing import Optional, Protocol

from .models import Account, Session


class AccountRepository(Protocol):
    """
    Persistence abstraction for player accounts.

    Implementations are responsible for:
    - Enforcing a storage-level unique constraint on `username` and
      raising `UsernameTakenError` when it fires.
    - Enforcing that at most one OWNER account exists and raising
      `OwnerSlotTakenError` when it fires.
    - Wrapping any other driver failure in `StorageError`.
    """

    def get_by_username(self, username: str) -> Optional[Account]:
        """Return the account with exactly this username, or None."""

        ...

    def get_by_id(self, account_id: str) -> Optional[Account]:
        ...

    def count_accounts(self) -> int:
        ...

    def create_account(self, account: Account) -> Account:
        """Persist a new account and return it as stored."""

        ...

    def link_referrer(self, account_id: str, referrer_id: str, bonus: int) -> Account:
        """
        Set `account_id`'s referrer and credit the referrer's gems by `bonus`.

        Both writes happen in one transaction. The link is only applied
        when the account has no referrer yet and differs from the referrer,
        so repeating the call is harmless. Returns the account after the
        operation.
        """

        ...


class SessionRepository(Protocol):
    """Persistence abstraction for login sessions keyed by token."""

    def create_session(self, session: Session) -> Session:
        ...

    def get_session(self, token: str) -> Optional[Session]:
        ...


class PasswordHasher(Protocol):
    """Slow, salted one-way credential hashing."""

    def hash_password(self, password: str) -> str:
        ...

    def verify_password(self, password: str, hashed: str) -> bool:
        ...
