from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from application.services import (
    ERROR_MESSAGES,
    RegistrationErrorKind,
    RegistrationRequest,
    register_account,
)
from config import AppConfig
from domain.errors import StorageError
from domain.repositories import AccountRepository, PasswordHasher, SessionRepository
from interfaces.http.serializers import account_to_payload
from logging_config import get_logger

logger = get_logger(__name__)

SESSION_COOKIE_NAME = "session-token"
INTERNAL_ERROR_MESSAGE = "Internal server error"

_STRING_FIELDS = ("username", "password", "email", "referral_code")


def _encodes_as_utf8(value: str) -> bool:
    # JSON allows lone surrogates such as "\ud800"; they cannot be stored or hashed.
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _parse_registration(payload: Any) -> Optional[RegistrationRequest]:
    """Map a decoded JSON body to a request; None if the shape is wrong."""

    if not isinstance(payload, dict):
        return None

    fields = {}
    for name in _STRING_FIELDS:
        value = payload.get(name)
        if value is not None and not isinstance(value, str):
            return None
        if value is not None and not _encodes_as_utf8(value):
            return None
        fields[name] = value
    return RegistrationRequest(**fields)


def _error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def create_app(
    account_repo: AccountRepository,
    session_repo: SessionRepository,
    hasher: PasswordHasher,
    config: AppConfig,
) -> FastAPI:
    """
    Configure and return a FastAPI app wired to the application layer.

    This module only deals with HTTP concerns: decoding the body, the JSON
    envelope, status codes and the session cookie.
    """

    app = FastAPI(title="Player registration")

    @app.post("/api/register")
    async def register(request: Request) -> JSONResponse:
        try:
            payload = await request.json()
        except ValueError:
            payload = None

        registration = _parse_registration(payload)
        if registration is None:
            return _error_response(
                ERROR_MESSAGES[RegistrationErrorKind.INVALID_INPUT], status_code=400
            )

        try:
            # Store and hashing calls block, keep them off the event loop.
            result = await run_in_threadpool(
                register_account,
                registration,
                account_repo,
                session_repo,
                hasher,
            )
        except StorageError:
            logger.exception("registration_storage_failure")
            return _error_response(INTERNAL_ERROR_MESSAGE, status_code=500)
        except Exception:
            logger.exception("registration_unexpected_failure")
            return _error_response(INTERNAL_ERROR_MESSAGE, status_code=500)

        if not result.success:
            return _error_response(result.error_message, status_code=400)

        session = result.session
        response = JSONResponse({"success": True, "user": account_to_payload(result.account)})
        response.set_cookie(
            SESSION_COOKIE_NAME,
            session.token,
            httponly=True,
            secure=config.is_production,
            samesite="lax",
            expires=session.expires_at,
        )
        return response

    return app
