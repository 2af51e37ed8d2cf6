from typing import Tuple

import uvicorn
from dotenv import load_dotenv

from config import AppConfig, load_config
from domain.repositories import AccountRepository, SessionRepository
from infrastructure.security.password_hasher import BcryptPasswordHasher
from interfaces.http.app import create_app
from logging_config import get_logger, setup_logging


load_dotenv()


def build_repositories(config: AppConfig) -> Tuple[AccountRepository, SessionRepository]:
    # Accounts first: the sessions table references it.
    if config.db_backend == "postgres":
        from infrastructure.db.account_repository_postgres import PostgresAccountRepository
        from infrastructure.db.session_repository_postgres import PostgresSessionRepository

        return (
            PostgresAccountRepository(config.database_url),
            PostgresSessionRepository(config.database_url),
        )

    from infrastructure.db.account_repository_sqlite import SqliteAccountRepository
    from infrastructure.db.session_repository_sqlite import SqliteSessionRepository

    return SqliteAccountRepository(config.db_path), SqliteSessionRepository(config.db_path)


def main() -> None:
    config = load_config()
    setup_logging(config.log_level, config.log_format)
    get_logger(__name__).info(
        "starting", environment=config.environment, db_backend=config.db_backend
    )

    account_repo, session_repo = build_repositories(config)
    hasher = BcryptPasswordHasher(rounds=config.bcrypt_rounds)

    app = create_app(account_repo, session_repo, hasher, config)
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
