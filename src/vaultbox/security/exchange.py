"""RSA-OAEP key exchange for sharing short secrets such as a file key.

Keys travel as base64 strings: SPKI DER for the public half and PKCS8 DER
for the private half. RSA-OAEP with SHA-256 can only carry
``k - 2 * 32 - 2`` bytes (190 for a 2048-bit modulus), so never pass file
contents here; wrap a symmetric key instead.
"""
from __future__ import annotations

import base64
import binascii
import logging
import secrets
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from vaultbox.core.exceptions import KeyExchangeError, PayloadTooLargeError

logger = logging.getLogger(__name__)

KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537
_HASH_LEN = 32  # SHA-256


@dataclass(frozen=True)
class KeyPair:
    public_key: str
    private_key: str

    def __repr__(self) -> str:
        return f"KeyPair(public_key={self.public_key[:16]}..., private_key=<hidden>)"


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise KeyExchangeError(f"{what} is not valid base64") from exc


def generate_key_pair(key_size: int = KEY_SIZE) -> KeyPair:
    """Generate an RSA key pair and export it as base64 SPKI / PKCS8."""
    private = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size)
    public_der = private.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    private_der = private.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    logger.info("Generated %d-bit RSA key pair", key_size)
    return KeyPair(
        public_key=base64.b64encode(public_der).decode("ascii"),
        private_key=base64.b64encode(private_der).decode("ascii"),
    )


def _load_public(public_key: str) -> rsa.RSAPublicKey:
    der = _b64decode(public_key, "public key")
    try:
        key = serialization.load_der_public_key(der)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyExchangeError("malformed public key") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyExchangeError("public key is not an RSA key")
    return key


def _load_private(private_key: str) -> rsa.RSAPrivateKey:
    der = _b64decode(private_key, "private key")
    try:
        key = serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyExchangeError("malformed private key") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyExchangeError("private key is not an RSA key")
    return key


def max_plaintext_size(public_key: str) -> int:
    """Largest plaintext (in bytes) RSA-OAEP/SHA-256 accepts for this key."""
    key = _load_public(public_key)
    return key.key_size // 8 - 2 * _HASH_LEN - 2


def encrypt_with_public_key(plaintext: Union[str, bytes], public_key: str) -> str:
    """Encrypt a short secret for the holder of ``public_key``; returns base64."""
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")
    key = _load_public(public_key)
    limit = key.key_size // 8 - 2 * _HASH_LEN - 2
    if len(plaintext) > limit:
        raise PayloadTooLargeError(
            f"plaintext is {len(plaintext)} bytes; RSA-OAEP with this key carries at most {limit}"
        )
    ciphertext = key.encrypt(plaintext, _oaep())
    return base64.b64encode(ciphertext).decode("ascii")


def decrypt_with_private_key(ciphertext: str, private_key: str) -> bytes:
    """Inverse of :func:`encrypt_with_public_key`."""
    key = _load_private(private_key)
    raw = _b64decode(ciphertext, "ciphertext")
    try:
        return key.decrypt(raw, _oaep())
    except ValueError as exc:
        raise KeyExchangeError("decryption failed: ciphertext does not match this private key") from exc


def generate_share_token() -> str:
    """Random 256-bit token (hex) for share links."""
    return secrets.token_hex(32)
