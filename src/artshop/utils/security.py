# password hashing and the admin predicate
from __future__ import annotations

from typing import Optional

import bcrypt

from artshop.db.models import Session
from artshop.utils.config import get_settings

UNUSABLE_PREFIX = "!external:"

# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """Return a salted bcrypt hash of `password` as text."""
    rounds = rounds or get_settings().bcrypt_rounds
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_encode(password), salt).decode("utf-8")


def unusable_password(external_id: str) -> str:
    """Marker stored for accounts created by an external identity hand-off."""
    return f"{UNUSABLE_PREFIX}{external_id}"


def verify_password(password: str, stored: Optional[str]) -> bool:
    """True if `password` matches the stored bcrypt hash.

    Unusable markers and malformed hashes never match.
    """
    if not stored or stored.startswith(UNUSABLE_PREFIX):
        return False
    try:
        return bcrypt.checkpw(_encode(password), stored.encode("utf-8"))
    except ValueError:
        return False


class AdminPolicy:
    """
    Decides whether a session may use back-office operations.

    Today this is a single configured email; a multi-admin model only has to
    replace this class.
    """

    def __init__(self, admin_email: str) -> None:
        self.admin_email = admin_email

    def is_admin(self, session: Optional[Session]) -> bool:
        return session is not None and session.email == self.admin_email


def get_admin_policy() -> AdminPolicy:
    return AdminPolicy(get_settings().admin_email)


def is_admin(session: Optional[Session]) -> bool:
    return get_admin_policy().is_admin(session)
