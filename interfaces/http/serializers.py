from __future__ import annotations

from typing import Any, Dict

from domain.models import Account


def account_to_payload(account: Account) -> Dict[str, Any]:
    """
    Public JSON view of an account.

    The credential hash is never included. Currency balances are rendered
    as decimal strings so clients receive the exact stored integer even
    when it exceeds what a JSON number can hold losslessly.
    """

    return {
        "user_id": account.id,
        "username": account.username,
        "email": account.email,
        "role": account.role.value,
        "gems": str(account.gems),
        "crystals": str(account.crystals),
        "xp": str(account.xp),
        "level": account.level,
        "referred_by_id": account.referred_by_id,
        "created_at": account.created_at.isoformat(),
    }
