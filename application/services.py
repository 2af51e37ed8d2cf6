from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple

from domain.errors import OwnerSlotTakenError, StorageError, UsernameTakenError
from domain.models import Account, Role, Session
from domain.repositories import AccountRepository, PasswordHasher, SessionRepository
from logging_config import get_logger

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6

OWNER_STARTING_GEMS = 1_000_000
OWNER_STARTING_LEVEL = 100
PLAYER_STARTING_GEMS = 1_000
PLAYER_STARTING_LEVEL = 1

REFERRAL_BONUS_GEMS = 100

SESSION_TTL = timedelta(hours=24)
# 32 random bytes -> 256 bits of entropy.
SESSION_TOKEN_BYTES = 32


class RegistrationErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    WEAK_PASSWORD = "weak_password"
    USERNAME_TAKEN = "username_taken"


ERROR_MESSAGES = {
    RegistrationErrorKind.INVALID_INPUT: "Username and password are required",
    RegistrationErrorKind.WEAK_PASSWORD: (
        f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    ),
    RegistrationErrorKind.USERNAME_TAKEN: "Username already taken",
}


@dataclass
class RegistrationRequest:
    """
    Raw registration input as received from a channel (HTTP, bot, ...).

    Fields may be missing; validation happens in the application layer.
    """

    username: Optional[str]
    password: Optional[str]
    email: Optional[str] = None
    referral_code: Optional[str] = None


@dataclass
class RegistrationResult:
    """Outcome of `register_account`."""

    success: bool
    error: Optional[RegistrationErrorKind] = None
    error_message: Optional[str] = None
    account: Optional[Account] = None
    session: Optional[Session] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _failure(kind: RegistrationErrorKind) -> RegistrationResult:
    return RegistrationResult(success=False, error=kind, error_message=ERROR_MESSAGES[kind])


def validate_registration(request: RegistrationRequest) -> Optional[RegistrationErrorKind]:
    """
    Check input shape and password policy. Pure.

    Password length counts Unicode code points, not encoded bytes.
    """

    if not request.username or not request.password:
        return RegistrationErrorKind.INVALID_INPUT
    if len(request.password) < MIN_PASSWORD_LENGTH:
        return RegistrationErrorKind.WEAK_PASSWORD
    return None


def is_username_available(username: str, account_repo: AccountRepository) -> bool:
    """
    Fast-path duplicate check.

    The unique constraint in the store is what actually guarantees
    uniqueness; this only lets us answer early with a friendly error.
    """

    return account_repo.get_by_username(username) is None


def starting_profile(is_first: bool) -> Tuple[Role, int, int]:
    """Return (role, gems, level) for a new account."""

    if is_first:
        return Role.OWNER, OWNER_STARTING_GEMS, OWNER_STARTING_LEVEL
    return Role.PLAYER, PLAYER_STARTING_GEMS, PLAYER_STARTING_LEVEL


def create_account(
    username: str,
    password: str,
    email: Optional[str],
    account_repo: AccountRepository,
    hasher: PasswordHasher,
    now: Optional[datetime] = None,
) -> Account:
    """
    Hash the credential and persist a new account with its starting economy.

    The first account ever stored becomes the OWNER. If another request
    claims the owner slot between our count and our insert, the store
    rejects the OWNER row and the account is stored as a PLAYER instead.

    Raises `UsernameTakenError` if the username constraint fires and
    `StorageError` on any other store failure.
    """

    password_hash = hasher.hash_password(password)

    # Count after the slow hash so the count-to-insert window stays short.
    is_first = account_repo.count_accounts() == 0
    role, gems, level = starting_profile(is_first)
    account = Account(
        id=str(uuid.uuid4()),
        username=username,
        password_hash=password_hash,
        role=role,
        gems=gems,
        crystals=0,
        xp=0,
        level=level,
        created_at=now or _utcnow(),
        email=email or None,
    )

    try:
        return account_repo.create_account(account)
    except OwnerSlotTakenError:
        logger.info("owner_slot_already_taken", username=username)

    role, gems, level = starting_profile(False)
    return account_repo.create_account(replace(account, role=role, gems=gems, level=level))


def settle_referral(
    account: Account,
    referral_code: Optional[str],
    account_repo: AccountRepository,
) -> Account:
    """
    Link `account` to the referrer named by `referral_code` and pay the bonus.

    Best effort: unknown codes, self-referrals and store failures leave
    the account unchanged and never fail the registration.
    """

    if not referral_code:
        return account

    referrer = account_repo.get_by_username(referral_code)
    if referrer is None:
        logger.info("referral_code_unknown", account_id=account.id)
        return account

    if referrer.id == account.id:
        logger.info("referral_self_reference_ignored", account_id=account.id)
        return account

    try:
        linked = account_repo.link_referrer(account.id, referrer.id, REFERRAL_BONUS_GEMS)
    except StorageError:
        logger.warning(
            "referral_settlement_failed",
            account_id=account.id,
            referrer_id=referrer.id,
            exc_info=True,
        )
        return account

    logger.info(
        "referral_applied",
        account_id=account.id,
        referrer_id=referrer.id,
        bonus=REFERRAL_BONUS_GEMS,
    )
    return linked


def issue_session(
    account_id: str,
    session_repo: SessionRepository,
    now: Optional[datetime] = None,
) -> Session:
    """Mint and persist a new session that expires 24 hours from `now`."""

    created_at = now or _utcnow()
    session = Session(
        token=secrets.token_urlsafe(SESSION_TOKEN_BYTES),
        account_id=account_id,
        created_at=created_at,
        expires_at=created_at + SESSION_TTL,
    )
    return session_repo.create_session(session)


def register_account(
    request: RegistrationRequest,
    account_repo: AccountRepository,
    session_repo: SessionRepository,
    hasher: PasswordHasher,
    now: Optional[datetime] = None,
) -> RegistrationResult:
    """
    Register a new account and open its first session.

    Steps run strictly in order:
    - validate the input,
    - reject an already known username,
    - create the account (owner bootstrap, hashing, persistence),
    - settle the optional referral,
    - issue the session.

    Client-caused failures come back as an unsuccessful result with no
    state changed. `StorageError` propagates to the caller.
    """

    error = validate_registration(request)
    if error:
        logger.info("registration_rejected", reason=error.value)
        return _failure(error)

    username = request.username
    if not is_username_available(username, account_repo):
        logger.info("registration_rejected", reason=RegistrationErrorKind.USERNAME_TAKEN.value)
        return _failure(RegistrationErrorKind.USERNAME_TAKEN)

    try:
        account = create_account(
            username,
            request.password,
            request.email,
            account_repo,
            hasher,
            now=now,
        )
    except UsernameTakenError:
        # Lost a race against a concurrent registration of the same name.
        logger.info("registration_rejected", reason=RegistrationErrorKind.USERNAME_TAKEN.value)
        return _failure(RegistrationErrorKind.USERNAME_TAKEN)

    account = settle_referral(account, request.referral_code, account_repo)
    session = issue_session(account.id, session_repo, now=now)

    logger.info("account_registered", account_id=account.id, role=account.role.value)
    return RegistrationResult(success=True, account=account, session=session)
