"""Password based key derivation for the vault."""
import hmac
import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

SALT_SIZE = 32
KEY_SIZE = 32  # AES-256
ITERATIONS = 100_000
VERIFY_ITERATIONS = 10_000

PBKDF2 = "PBKDF2"
ARGON2ID = "argon2id"

# Prefix mixed into the verification salt so that hash and key never share a domain.
_VERIFY_LABEL = b"vaultbox/verify\x00"


@dataclass(frozen=True)
class DerivedKey:
    key: bytes
    salt: bytes
    iterations: int
    algorithm: str = PBKDF2

    def __repr__(self) -> str:
        return (
            f"DerivedKey(salt={self.salt.hex()!r}, iterations={self.iterations}, "
            f"algorithm={self.algorithm!r})"
        )


def generate_salt(length: int = SALT_SIZE) -> bytes:
    """Return a cryptographically secure random salt."""
    return os.urandom(length)


def _to_bytes(password: Union[str, bytes]) -> bytes:
    if isinstance(password, str):
        return password.encode("utf-8")
    return password


def _pbkdf2(password: bytes, salt: bytes, iterations: int, length: int = KEY_SIZE) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password)


def derive_key(
    password: Union[str, bytes],
    salt: Optional[bytes] = None,
    iterations: int = ITERATIONS,
    algorithm: str = PBKDF2,
) -> DerivedKey:
    """
    Derive the 256-bit file encryption key from a password.

    A missing salt means first-time setup: a new 32-byte salt is generated and
    returned with the key so the caller can persist it. With a stored salt the
    same password always reproduces the same key.

    ``argon2id`` is accepted as an alternative; ``iterations`` is then used
    as the Argon2 time cost.
    """
    password = _to_bytes(password)
    if salt is None:
        salt = generate_salt()

    if algorithm == PBKDF2:
        if iterations < ITERATIONS:
            raise ValueError(f"PBKDF2 needs at least {ITERATIONS} iterations")
        key = _pbkdf2(password, salt, iterations)
    elif algorithm == ARGON2ID:
        key = hash_secret_raw(
            secret=password,
            salt=salt,
            time_cost=iterations,
            memory_cost=65536,
            parallelism=1,
            hash_len=KEY_SIZE,
            type=Type.ID,
        )
    else:
        raise ValueError(f"Unsupported key derivation: {algorithm}")

    logger.debug("Derived %s key (iterations=%d)", algorithm, iterations)
    return DerivedKey(key=key, salt=salt, iterations=iterations, algorithm=algorithm)


def hash_for_verification(
    password: Union[str, bytes],
    salt: Optional[Union[bytes, str]] = None,
    iterations: int = VERIFY_ITERATIONS,
) -> Tuple[str, str]:
    """
    Return ``(hash_hex, salt_hex)`` used only to check a later unlock attempt.

    The salt is prefixed with a fixed label before hashing, so a leaked
    verification hash says nothing about the output of :func:`derive_key`
    for the same password and salt.
    """
    if salt is None:
        salt = generate_salt()
    elif isinstance(salt, str):
        salt = bytes.fromhex(salt)
    digest = _pbkdf2(_to_bytes(password), _VERIFY_LABEL + salt, iterations)
    return digest.hex(), salt.hex()


def verify_password(
    password: Union[str, bytes],
    stored_hash: str,
    stored_salt: str,
    iterations: int = VERIFY_ITERATIONS,
) -> bool:
    """Check a password attempt against a stored verification hash."""
    try:
        expected = bytes.fromhex(stored_hash)
        computed, _ = hash_for_verification(password, stored_salt, iterations)
    except ValueError:
        logger.warning("Stored verification data is not valid hex")
        return False
    return hmac.compare_digest(bytes.fromhex(computed), expected)


def kdf_params_to_dict(derived: DerivedKey) -> Dict:
    return {
        "algo": derived.algorithm,
        "salt": derived.salt.hex(),
        "iterations": derived.iterations,
    }
