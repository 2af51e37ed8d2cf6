from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Iterator

from domain.errors import StorageError

# Seconds a writer waits on a locked database before giving up.
SQLITE_TIMEOUT_SECONDS = 10.0


@contextmanager
def sqlite_transaction(db_path: str) -> Iterator[sqlite3.Connection]:
    """
    Open a connection, run the body in a transaction and close it.

    Commits on success and rolls back on error. Driver errors that the
    caller did not translate itself come out as `StorageError`.
    """

    try:
        conn = sqlite3.connect(db_path, timeout=SQLITE_TIMEOUT_SECONDS)
    except sqlite3.Error as exc:
        raise StorageError(f"cannot open database {db_path!r}") from exc

    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        with conn:
            yield conn
    except sqlite3.Error as exc:
        raise StorageError("sqlite operation failed") from exc
    finally:
        conn.close()
