"""Symmetric file encryption under a vault-derived key.

Two layers live here:

- ``encrypt`` / ``decrypt``: raw AES-256-CBC with PKCS7 padding and a fresh
  16-byte IV per call. Padding validation is the only integrity signal at
  this level and it is not a MAC.
- ``seal`` / ``open_sealed`` and the stream helpers: what the vault session
  uses. They produce an :class:`EncryptionMetadata` record that must be
  stored next to the ciphertext. For ``AES-256-CBC`` the record carries an
  HMAC-SHA256 tag (encrypt-then-MAC) over the header fields and the
  ciphertext. ``AES-256-GCM`` binds the header fields as associated data.

Header fields bound into the tag: algorithm, keyDerivation, iv, salt, iterations.
"""
import hashlib
import hmac
import logging
import os
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from vaultbox.core.exceptions import DecryptionError
from vaultbox.core.hashing import calculate_sha256_bytes

logger = logging.getLogger(__name__)

AES_CBC = "AES-256-CBC"
AES_GCM = "AES-256-GCM"

KEY_SIZE = 32
IV_SIZE = 16
NONCE_SIZE = 12
BLOCK_BITS = 128
MAC_SIZE = 32
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class EncryptionMetadata:
    """Per-file record needed to decrypt a blob. Hex strings throughout."""

    algorithm: str
    key_derivation: str
    iv: str
    salt: str
    iterations: int
    mac: Optional[str] = None
    is_zero_knowledge: bool = field(default=True)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "algorithm": self.algorithm,
            "keyDerivation": self.key_derivation,
            "iv": self.iv,
            "salt": self.salt,
            "iterations": self.iterations,
            "isZeroKnowledge": self.is_zero_knowledge,
        }
        if self.mac is not None:
            data["mac"] = self.mac
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptionMetadata":
        try:
            return cls(
                algorithm=str(data["algorithm"]),
                key_derivation=str(data["keyDerivation"]),
                iv=str(data["iv"]),
                salt=str(data["salt"]),
                iterations=int(data["iterations"]),
                mac=data.get("mac"),
                is_zero_knowledge=bool(data.get("isZeroKnowledge", True)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DecryptionError(f"Malformed encryption metadata: {exc}") from exc


def _check_key(key: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes, got {len(key)}")


def _unhex(value: str, what: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except (TypeError, ValueError) as exc:
        raise DecryptionError(f"{what} is not valid hex") from exc


# ----------------------------------------------------------------------
# Raw CBC
# ----------------------------------------------------------------------

def encrypt(plaintext: bytes, key: bytes) -> Tuple[bytes, bytes]:
    """Encrypt with AES-256-CBC/PKCS7 under a fresh random IV; returns (ciphertext, iv)."""
    _check_key(key)
    iv = os.urandom(IV_SIZE)
    padder = padding.PKCS7(BLOCK_BITS).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(padded) + encryptor.finalize(), iv


def decrypt(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
    """Inverse of :func:`encrypt`. Raises DecryptionError on any padding or size failure."""
    if len(key) != KEY_SIZE:
        raise DecryptionError("key has the wrong size")
    if len(iv) != IV_SIZE:
        raise DecryptionError("iv has the wrong size")
    if not ciphertext or len(ciphertext) % (BLOCK_BITS // 8):
        raise DecryptionError("ciphertext length is not a whole number of blocks")

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise DecryptionError("invalid padding: wrong key, wrong iv or corrupted data") from exc


def checksum(data: bytes) -> str:
    """SHA-256 hex digest of raw bytes, independent of encryption."""
    return calculate_sha256_bytes(data)


# ----------------------------------------------------------------------
# Authenticated envelope
# ----------------------------------------------------------------------

def _derive_mac_key(key: bytes, info: bytes = b"vaultbox-cbc-mac") -> bytes:
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=info)
    return hkdf.derive(key)


def _header(algorithm: str, key_derivation: str, iv_hex: str, salt_hex: str, iterations: int) -> bytes:
    return "|".join(
        [algorithm, key_derivation, iv_hex.lower(), salt_hex.lower(), str(iterations)]
    ).encode("utf-8")


def _metadata_header(metadata: EncryptionMetadata) -> bytes:
    return _header(
        metadata.algorithm,
        metadata.key_derivation,
        metadata.iv,
        metadata.salt,
        metadata.iterations,
    )


def seal(
    plaintext: bytes,
    key: bytes,
    *,
    salt: bytes,
    iterations: int,
    key_derivation: str = "PBKDF2",
    algorithm: str = AES_CBC,
) -> Tuple[bytes, EncryptionMetadata]:
    """Encrypt a whole payload and return (ciphertext, metadata)."""
    _check_key(key)
    if algorithm == AES_CBC:
        ciphertext, iv = encrypt(plaintext, key)
        header = _header(algorithm, key_derivation, iv.hex(), salt.hex(), iterations)
        tag = hmac.new(_derive_mac_key(key), header + ciphertext, hashlib.sha256).hexdigest()
    elif algorithm == AES_GCM:
        iv = os.urandom(NONCE_SIZE)
        header = _header(algorithm, key_derivation, iv.hex(), salt.hex(), iterations)
        ciphertext = AESGCM(key).encrypt(iv, plaintext, header)
        tag = None
    else:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    metadata = EncryptionMetadata(
        algorithm=algorithm,
        key_derivation=key_derivation,
        iv=iv.hex(),
        salt=salt.hex(),
        iterations=iterations,
        mac=tag,
    )
    logger.debug("Sealed %d bytes with %s", len(plaintext), algorithm)
    return ciphertext, metadata


def _check_untagged(allow_untagged: bool) -> None:
    if not allow_untagged:
        raise DecryptionError(
            f"{AES_CBC} metadata has no authentication tag; refusing to decrypt unauthenticated data"
        )


def _verify_tag(expected_hex: str, computed: bytes) -> None:
    expected = _unhex(expected_hex, "mac")
    if not hmac.compare_digest(expected, computed):
        raise DecryptionError("authentication tag mismatch: ciphertext or metadata was modified")


def open_sealed(
    ciphertext: bytes,
    key: bytes,
    metadata: EncryptionMetadata,
    *,
    allow_untagged: bool = False,
) -> bytes:
    """
    Decrypt a payload produced by :func:`seal`.

    CBC metadata without a ``mac`` is refused unless ``allow_untagged`` is set;
    such payloads are only protected by their padding.
    """
    if len(key) != KEY_SIZE:
        raise DecryptionError("key has the wrong size")
    iv = _unhex(metadata.iv, "iv")
    header = _metadata_header(metadata)

    if metadata.algorithm == AES_CBC:
        if metadata.mac is None:
            _check_untagged(allow_untagged)
            logger.warning("Decrypting legacy %s payload without an authentication tag", AES_CBC)
        else:
            computed = hmac.new(_derive_mac_key(key), header + ciphertext, hashlib.sha256).digest()
            _verify_tag(metadata.mac, computed)
        return decrypt(ciphertext, key, iv)

    if metadata.algorithm == AES_GCM:
        if len(iv) != NONCE_SIZE:
            raise DecryptionError("nonce has the wrong size")
        try:
            return AESGCM(key).decrypt(iv, ciphertext, header)
        except InvalidTag as exc:
            raise DecryptionError("authentication failed: wrong key or modified data") from exc

    raise DecryptionError(f"Unsupported algorithm: {metadata.algorithm}")


# ----------------------------------------------------------------------
# Streaming (CBC only)
# ----------------------------------------------------------------------

def encrypt_stream(
    src: BinaryIO,
    dst: BinaryIO,
    key: bytes,
    *,
    salt: bytes,
    iterations: int,
    key_derivation: str = "PBKDF2",
    chunk_size: int = CHUNK_SIZE,
) -> EncryptionMetadata:
    """Encrypt ``src`` into ``dst`` chunk by chunk; the output equals :func:`seal` with CBC."""
    _check_key(key)
    iv = os.urandom(IV_SIZE)
    header = _header(AES_CBC, key_derivation, iv.hex(), salt.hex(), iterations)
    mac = hmac.new(_derive_mac_key(key), header, hashlib.sha256)
    padder = padding.PKCS7(BLOCK_BITS).padder()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()

    total = 0
    while True:
        chunk = src.read(chunk_size)
        if not chunk:
            break
        total += len(chunk)
        ct = encryptor.update(padder.update(chunk))
        mac.update(ct)
        dst.write(ct)
    ct = encryptor.update(padder.finalize()) + encryptor.finalize()
    mac.update(ct)
    dst.write(ct)

    logger.debug("Stream-encrypted %d bytes", total)
    return EncryptionMetadata(
        algorithm=AES_CBC,
        key_derivation=key_derivation,
        iv=iv.hex(),
        salt=salt.hex(),
        iterations=iterations,
        mac=mac.hexdigest(),
    )


def decrypt_stream(
    src: BinaryIO,
    dst: BinaryIO,
    key: bytes,
    metadata: EncryptionMetadata,
    chunk_size: int = CHUNK_SIZE,
    *,
    allow_untagged: bool = False,
) -> None:
    """
    Decrypt ``src`` into ``dst``.

    The tag is checked in a first pass over ``src`` (which must be seekable)
    so no plaintext is written for a modified file.
    """
    if metadata.algorithm != AES_CBC:
        raise DecryptionError(f"Streaming decryption only supports {AES_CBC}")
    if len(key) != KEY_SIZE:
        raise DecryptionError("key has the wrong size")
    iv = _unhex(metadata.iv, "iv")
    if len(iv) != IV_SIZE:
        raise DecryptionError("iv has the wrong size")

    start = src.tell()
    if metadata.mac is None:
        _check_untagged(allow_untagged)
        logger.warning("Decrypting legacy %s stream without an authentication tag", AES_CBC)
    else:
        mac = hmac.new(_derive_mac_key(key), _metadata_header(metadata), hashlib.sha256)
        while True:
            chunk = src.read(chunk_size)
            if not chunk:
                break
            mac.update(chunk)
        _verify_tag(metadata.mac, mac.digest())
        src.seek(start)

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
    try:
        while True:
            chunk = src.read(chunk_size)
            if not chunk:
                break
            dst.write(unpadder.update(decryptor.update(chunk)))
        dst.write(unpadder.update(decryptor.finalize()) + unpadder.finalize())
    except ValueError as exc:
        raise DecryptionError("invalid padding or truncated ciphertext") from exc
