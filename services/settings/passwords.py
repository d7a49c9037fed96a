"""Admin password hashing backed by Argon2id."""

from __future__ import annotations

import logging
import socket

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

LOGGER = logging.getLogger(__name__)

_HASHER = PasswordHasher(type=Type.ID)


def hash_password(password: str) -> str:
    """Return a salted Argon2id hash of ``password``."""

    if not password:
        raise ValueError("password must not be empty")
    return _HASHER.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    try:
        return _HASHER.verify(hashed, password)
    except InvalidHashError:
        LOGGER.warning("Stored admin password hash is not a valid Argon2 hash")
        return False
    except VerificationError:
        return False


def default_admin_password() -> str:
    """Initial admin password derived from the host identity (the pod name)."""

    return socket.gethostname()


__all__ = ["default_admin_password", "hash_password", "verify_password"]
