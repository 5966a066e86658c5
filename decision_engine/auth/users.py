from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import bcrypt

logger = logging.getLogger(__name__)

MEMBER = "member"
ADMIN = "admin"

# Demo participants; their usernames match the seeded lunch group
DEMO_MEMBERS = ("alice", "bob", "carol")


@dataclass(frozen=True)
class Account:
    username: str
    password_hash: bytes
    role: str = MEMBER

    def public(self) -> dict[str, Any]:
        return {"username": self.username, "role": self.role}


_accounts: dict[str, Account] = {}


def register_user(username: str, password: str, role: str = MEMBER) -> dict[str, Any]:
    """Add or replace an account. The username doubles as the participant id."""
    if role not in (MEMBER, ADMIN):
        raise ValueError(f"Unknown role: {role}")
    account = Account(username, bcrypt.hashpw(password.encode(), bcrypt.gensalt()), role)
    _accounts[username] = account
    return account.public()


def authenticate(username: str, password: str) -> dict[str, Any] | None:
    """Verify credentials. Returns ``{username, role}`` or ``None``."""
    account = _accounts.get(username)
    if account is None or not bcrypt.checkpw(password.encode(), account.password_hash):
        logger.info("Rejected login for %r", username)
        return None
    return account.public()


def _seed_accounts() -> None:
    for name in DEMO_MEMBERS:
        register_user(name, f"{name}123")
    register_user("admin", "admin123", role=ADMIN)


_seed_accounts()
