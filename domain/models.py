from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    OWNER = "OWNER"
    PLAYER = "PLAYER"


@dataclass
class Account:
    """
    Persisted player identity: credentials, role and economy balances.

    Balances are plain Python ints, so they never overflow; stores are
    responsible for keeping them lossless (TEXT / NUMERIC columns).
    The model is independent of any transport or database schema.
    """

    id: str
    username: str
    password_hash: str
    role: Role
    gems: int
    crystals: int
    xp: int
    level: int
    created_at: datetime
    email: Optional[str] = None
    referred_by_id: Optional[str] = None


@dataclass
class Session:
    """Time-bounded authentication token bound to one account."""

    token: str
    account_id: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
