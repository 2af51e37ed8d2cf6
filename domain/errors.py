class StorageError(Exception):
    """A backing store failed for reasons other than a known constraint."""


class UsernameTakenError(Exception):
    """The storage-level unique constraint on `username` rejected a write."""

    def __init__(self, username: str) -> None:
        super().__init__(f"username already exists: {username!r}")
        self.username = username


class OwnerSlotTakenError(Exception):
    """
    The store already holds an OWNER account.

    Raised by `create_account` when a second OWNER row is inserted, which
    is how concurrent first registrations are resolved.
    """
