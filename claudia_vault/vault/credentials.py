"""
Master credential hashing — verification-only storage of the master password.

The stored hash is an Argon2id PHC string
(``$argon2id$v=19$m=...,t=...,p=...$<salt>$<digest>``). It is independent
of the per-record encryption keys: it lets the vault reject a wrong password
quickly, but it cannot decrypt anything.
"""
import logging

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from .config import KdfParams, default_hash_params

logger = logging.getLogger("claudia.vault")


def _hasher(params: KdfParams | None) -> PasswordHasher:
    params = params or default_hash_params()
    return PasswordHasher(
        time_cost=params.time_cost,
        memory_cost=params.memory_cost,
        parallelism=params.parallelism,
    )


def hash_password(password: str, params: KdfParams | None = None) -> str:
    """Hash the master password with a fresh random salt.

    Hashing the same password twice yields two different strings.
    """
    return _hasher(params).hash(password)


def verify_password(password: str, hash_string: str) -> bool:
    """Check a candidate password against a stored hash.

    The cost parameters are read from the hash string itself. Returns False
    for a mismatch and for a malformed hash; never raises.
    """
    try:
        return PasswordHasher().verify(hash_string.strip(), password)
    except VerifyMismatchError:
        return False
    except (VerificationError, InvalidHashError):
        logger.warning("Master credential hash could not be verified (malformed)")
        return False


def needs_rehash(hash_string: str, params: KdfParams | None = None) -> bool:
    """Whether the stored hash was made with different cost parameters."""
    try:
        return _hasher(params).check_needs_rehash(hash_string.strip())
    except (InvalidHashError, ValueError):
        return True
