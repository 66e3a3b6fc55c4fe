"""Unit tests for the symmetric cipher module."""

import hashlib
import io
import os
from dataclasses import replace

import pytest

from vaultbox.core.exceptions import DecryptionError
from vaultbox.security import cipher
from vaultbox.security.cipher import EncryptionMetadata


@pytest.fixture
def key():
    return os.urandom(32)


@pytest.fixture
def salt():
    return os.urandom(32)


def _flip(data: bytes, index: int) -> bytes:
    buf = bytearray(data)
    buf[index] ^= 0x01
    return bytes(buf)


def _flip_hex(value: str) -> str:
    return _flip(bytes.fromhex(value), 0).hex()


# ==============================================================================
# Tests: raw CBC
# ==============================================================================

@pytest.mark.parametrize("size", [0, 1, 15, 16, 17, 10_000])
def test_encrypt_decrypt_roundtrip(key, size):
    data = os.urandom(size)
    ct, iv = cipher.encrypt(data, key)
    assert len(iv) == 16
    assert len(ct) % 16 == 0
    assert cipher.decrypt(ct, key, iv) == data


def test_encrypt_uses_fresh_iv(key):
    """Same payload, same key: different IVs and different ciphertexts."""
    ct1, iv1 = cipher.encrypt(b"same payload", key)
    ct2, iv2 = cipher.encrypt(b"same payload", key)
    assert iv1 != iv2
    assert ct1 != ct2


def test_encrypt_rejects_short_key():
    with pytest.raises(ValueError, match="32 bytes"):
        cipher.encrypt(b"data", b"short")


def test_decrypt_wrong_key_fails(key):
    ct, iv = cipher.encrypt(b"secret file contents", key)
    # padding check only: a wrong key still slips through about 1 time in 256
    failures = 0
    for _ in range(20):
        try:
            cipher.decrypt(ct, os.urandom(32), iv)
        except DecryptionError:
            failures += 1
    assert failures >= 15


def test_decrypt_rejects_bad_lengths(key):
    ct, iv = cipher.encrypt(b"data", key)
    with pytest.raises(DecryptionError, match="block"):
        cipher.decrypt(ct[:-1], key, iv)
    with pytest.raises(DecryptionError, match="iv"):
        cipher.decrypt(ct, key, iv[:8])
    with pytest.raises(DecryptionError, match="key"):
        cipher.decrypt(ct, key[:16], iv)
    with pytest.raises(DecryptionError):
        cipher.decrypt(b"", key, iv)


def test_checksum_matches_hashlib():
    assert cipher.checksum(b"hello") == hashlib.sha256(b"hello").hexdigest()


# ==============================================================================
# Tests: metadata
# ==============================================================================

def test_metadata_wire_names():
    meta = EncryptionMetadata(
        algorithm="AES-256-CBC",
        key_derivation="PBKDF2",
        iv="00" * 16,
        salt="11" * 32,
        iterations=100_000,
        mac="22" * 32,
    )
    data = meta.to_dict()
    assert data["keyDerivation"] == "PBKDF2"
    assert data["isZeroKnowledge"] is True
    assert EncryptionMetadata.from_dict(data) == meta


def test_metadata_without_mac_omits_field():
    meta = EncryptionMetadata("AES-256-CBC", "PBKDF2", "00" * 16, "11" * 32, 100_000)
    assert "mac" not in meta.to_dict()


def test_metadata_from_dict_missing_field():
    with pytest.raises(DecryptionError, match="Malformed"):
        EncryptionMetadata.from_dict({"algorithm": "AES-256-CBC"})


def test_metadata_is_immutable():
    meta = EncryptionMetadata("AES-256-CBC", "PBKDF2", "00" * 16, "11" * 32, 100_000)
    with pytest.raises(AttributeError):
        meta.iv = "ff" * 16


# ==============================================================================
# Tests: sealed envelope
# ==============================================================================

@pytest.mark.parametrize("algorithm", [cipher.AES_CBC, cipher.AES_GCM])
def test_seal_open_roundtrip(key, salt, algorithm):
    data = os.urandom(5000)
    blob, meta = cipher.seal(data, key, salt=salt, iterations=100_000, algorithm=algorithm)
    assert meta.algorithm == algorithm
    assert meta.salt == salt.hex()
    assert cipher.open_sealed(blob, key, meta) == data


def test_seal_cbc_matches_raw_ciphertext(key, salt):
    """The CBC envelope carries plain CBC ciphertext; the tag lives in metadata."""
    blob, meta = cipher.seal(b"payload", key, salt=salt, iterations=100_000)
    assert meta.mac is not None
    assert cipher.decrypt(blob, key, bytes.fromhex(meta.iv)) == b"payload"


@pytest.mark.parametrize("algorithm", [cipher.AES_CBC, cipher.AES_GCM])
def test_flipped_ciphertext_byte_is_detected(key, salt, algorithm):
    data = os.urandom(10_000)
    blob, meta = cipher.seal(data, key, salt=salt, iterations=100_000, algorithm=algorithm)
    for index in (0, len(blob) // 2, len(blob) - 1):
        with pytest.raises(DecryptionError):
            cipher.open_sealed(_flip(blob, index), key, meta)


@pytest.mark.parametrize("algorithm", [cipher.AES_CBC, cipher.AES_GCM])
def test_modified_metadata_is_detected(key, salt, algorithm):
    blob, meta = cipher.seal(b"data" * 100, key, salt=salt, iterations=100_000, algorithm=algorithm)
    for tampered in (
        replace(meta, iv=_flip_hex(meta.iv)),
        replace(meta, salt=_flip_hex(meta.salt)),
        replace(meta, iterations=meta.iterations + 1),
    ):
        with pytest.raises(DecryptionError):
            cipher.open_sealed(blob, key, tampered)


def test_modified_mac_is_detected(key, salt):
    blob, meta = cipher.seal(b"data", key, salt=salt, iterations=100_000)
    with pytest.raises(DecryptionError, match="tag"):
        cipher.open_sealed(blob, key, replace(meta, mac=_flip_hex(meta.mac)))


def test_open_sealed_wrong_key(key, salt):
    blob, meta = cipher.seal(b"data", key, salt=salt, iterations=100_000)
    with pytest.raises(DecryptionError):
        cipher.open_sealed(blob, os.urandom(32), meta)


def test_open_legacy_metadata_without_mac(key, salt, caplog):
    """Untagged CBC metadata decrypts only when explicitly allowed, relying on padding."""
    blob, meta = cipher.seal(b"legacy", key, salt=salt, iterations=100_000)
    legacy = replace(meta, mac=None)
    assert cipher.open_sealed(blob, key, legacy, allow_untagged=True) == b"legacy"
    assert "without an authentication tag" in caplog.text


def test_open_untagged_metadata_refused_by_default(key, salt):
    blob, meta = cipher.seal(b"A" * 64, key, salt=salt, iterations=100_000)
    with pytest.raises(DecryptionError, match="no authentication tag"):
        cipher.open_sealed(_flip(blob, 0), key, replace(meta, mac=None))
    with pytest.raises(DecryptionError, match="no authentication tag"):
        cipher.open_sealed(blob, key, replace(meta, mac=None))


def test_open_sealed_unknown_algorithm(key, salt):
    blob, meta = cipher.seal(b"data", key, salt=salt, iterations=100_000)
    with pytest.raises(DecryptionError, match="Unsupported"):
        cipher.open_sealed(blob, key, replace(meta, algorithm="ROT13"))


def test_open_sealed_bad_iv_hex(key, salt):
    blob, meta = cipher.seal(b"data", key, salt=salt, iterations=100_000)
    with pytest.raises(DecryptionError, match="hex"):
        cipher.open_sealed(blob, key, replace(meta, iv="zz"))


def test_seal_rejects_unknown_algorithm(key, salt):
    with pytest.raises(ValueError):
        cipher.seal(b"data", key, salt=salt, iterations=100_000, algorithm="DES")


# ==============================================================================
# Tests: streaming
# ==============================================================================

def test_stream_roundtrip_large_payload(key, salt):
    data = os.urandom(250_000)
    enc = io.BytesIO()
    meta = cipher.encrypt_stream(io.BytesIO(data), enc, key, salt=salt, iterations=100_000, chunk_size=4096)

    out = io.BytesIO()
    enc.seek(0)
    cipher.decrypt_stream(enc, out, key, meta, chunk_size=4096)
    assert out.getvalue() == data


def test_stream_output_interoperates_with_open_sealed(key, salt):
    data = os.urandom(70_000)
    enc = io.BytesIO()
    meta = cipher.encrypt_stream(io.BytesIO(data), enc, key, salt=salt, iterations=100_000)
    assert cipher.open_sealed(enc.getvalue(), key, meta) == data


def test_stream_tamper_writes_nothing(key, salt):
    enc = io.BytesIO()
    meta = cipher.encrypt_stream(io.BytesIO(b"x" * 1000), enc, key, salt=salt, iterations=100_000)
    tampered = io.BytesIO(_flip(enc.getvalue(), 500))

    out = io.BytesIO()
    with pytest.raises(DecryptionError):
        cipher.decrypt_stream(tampered, out, key, meta)
    assert out.getvalue() == b""


def test_stream_truncated_legacy_fails(key, salt):
    enc = io.BytesIO()
    meta = cipher.encrypt_stream(io.BytesIO(b"y" * 1000), enc, key, salt=salt, iterations=100_000)
    truncated = io.BytesIO(enc.getvalue()[:-5])
    with pytest.raises(DecryptionError):
        cipher.decrypt_stream(
            truncated, io.BytesIO(), key, replace(meta, mac=None), allow_untagged=True
        )


def test_stream_untagged_refused_by_default(key, salt):
    enc = io.BytesIO()
    meta = cipher.encrypt_stream(io.BytesIO(b"z" * 1000), enc, key, salt=salt, iterations=100_000)
    enc.seek(0)
    out = io.BytesIO()
    with pytest.raises(DecryptionError, match="no authentication tag"):
        cipher.decrypt_stream(enc, out, key, replace(meta, mac=None))
    assert out.getvalue() == b""


def test_stream_rejects_gcm_metadata(key, salt):
    _, meta = cipher.seal(b"data", key, salt=salt, iterations=100_000, algorithm=cipher.AES_GCM)
    with pytest.raises(DecryptionError, match="Streaming"):
        cipher.decrypt_stream(io.BytesIO(b""), io.BytesIO(), key, meta)
