"""Vault session: owns the derived key while unlocked, with idle auto-lock.

The session is the only object the rest of the application talks to. It
keeps a single derived key in memory between :meth:`VaultSession.unlock`
and :meth:`VaultSession.lock`, persists only the salt, the key-derivation
parameters and a verification hash through a
:class:`~vaultbox.security.store.VaultStore`, and locks itself after
``config.idle_timeout`` seconds without a successful encrypt/decrypt call.

A forgotten password cannot be recovered. Without it, files encrypted
under the vault are permanently unreadable.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple

from vaultbox.config import SUPPORTED_KDFS, VaultConfig
from vaultbox.core.exceptions import (
    InvalidPasswordError,
    MetadataMismatchError,
    StorageError,
    VaultLockedError,
    WeakPasswordError,
)

from . import cipher
from .cipher import EncryptionMetadata
from .kdf import derive_key, hash_for_verification, verify_password
from .store import (
    ENABLED_KEY,
    HASH_KEY,
    ITERATIONS_KEY,
    KDF_KEY,
    SALT_KEY,
    VERIFY_ITERATIONS_KEY,
    MemoryStore,
    VaultStore,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptedFile:
    encrypted_data: bytes
    metadata: EncryptionMetadata


@dataclass(frozen=True)
class _KeySnapshot:
    key: bytes
    salt: bytes
    key_derivation: str
    iterations: int
    generation: int


class VaultSession:
    def __init__(
        self,
        store: Optional[VaultStore] = None,
        config: Optional[VaultConfig] = None,
        account: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store if store is not None else MemoryStore()
        self.config = config if config is not None else VaultConfig()
        self.account = account
        self._clock = clock

        self._lock = threading.RLock()
        self._key: Optional[bytearray] = None
        self._salt: Optional[bytes] = None
        self._kdf_name: Optional[str] = None
        self._iterations: Optional[int] = None
        self._last_activity: Optional[float] = None
        self._timer: Optional[threading.Timer] = None
        # bumped on every unlock/lock so a stale timer can tell it is stale
        self._generation = 0
        self._executor: Optional[ThreadPoolExecutor] = None

    # ------------------------------------------------------------------
    # Lock state
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        """True once a salt and verification hash have been persisted."""
        return (
            self.store.get(self.account, SALT_KEY) is not None
            and self.store.get(self.account, HASH_KEY) is not None
        )

    def is_unlocked(self) -> bool:
        """Lock-state query. Does not count as activity."""
        with self._lock:
            if self._key is None:
                return False
            if self._expired():
                logger.info("Vault idle for more than %ss; locking", self.config.idle_timeout)
                self._lock_locked()
                return False
            return True

    @property
    def last_activity(self) -> Optional[float]:
        return self._last_activity

    def _expired(self) -> bool:
        return (
            self._last_activity is not None
            and self._clock() - self._last_activity >= self.config.idle_timeout
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def unlock(self, password: str, *, strict: bool = False) -> bool:
        """
        Unlock the vault with ``password``.

        The first call for an account sets the vault up: a salt (reused if
        one is already stored), the verification hash and the key-derivation
        parameters from ``config`` are persisted. Later calls verify the
        password and derive the key with the parameters stored at setup, so
        changing ``config`` never locks an existing vault out. A wrong
        password returns False and leaves the vault locked, or raises
        InvalidPasswordError when ``strict`` is set.
        """
        cfg = self.config
        with self._lock:
            stored_salt = self.store.get(self.account, SALT_KEY)
            stored_hash = self.store.get(self.account, HASH_KEY)

            if stored_hash is None:
                if len(password) < cfg.min_password_length:
                    raise WeakPasswordError(
                        f"vault password must be at least {cfg.min_password_length} characters"
                    )
                kdf_name, iterations = cfg.key_derivation, cfg.kdf_iterations
                derived = derive_key(
                    password,
                    self._decode_salt(stored_salt) if stored_salt is not None else None,
                    iterations=iterations,
                    algorithm=kdf_name,
                )
                verify_hash, salt_hex = hash_for_verification(
                    password, derived.salt, iterations=cfg.verify_iterations
                )
                if stored_salt is None:
                    self.store.set(self.account, SALT_KEY, salt_hex)
                self.store.set(self.account, KDF_KEY, kdf_name)
                self.store.set(self.account, ITERATIONS_KEY, str(iterations))
                self.store.set(self.account, VERIFY_ITERATIONS_KEY, str(cfg.verify_iterations))
                # the hash goes last: its presence marks the vault as set up
                self.store.set(self.account, HASH_KEY, verify_hash)
                logger.info("Encryption vault created for account %s", self.account)
            elif stored_salt is None:
                raise StorageError(
                    f"vault state for account {self.account} has a verification hash but no salt"
                )
            else:
                kdf_name, iterations, verify_iterations = self._stored_params()
                if not verify_password(
                    password, stored_hash, stored_salt, iterations=verify_iterations
                ):
                    logger.warning("Invalid vault password for account %s", self.account)
                    if strict:
                        raise InvalidPasswordError("Invalid encryption password")
                    return False
                derived = derive_key(
                    password,
                    self._decode_salt(stored_salt),
                    iterations=iterations,
                    algorithm=kdf_name,
                )

            self._wipe_key()
            self._key = bytearray(derived.key)
            self._salt = derived.salt
            self._kdf_name = kdf_name
            self._iterations = iterations
            self._generation += 1
            self._touch()
            logger.info("Vault unlocked for account %s", self.account)
            return True

    def _decode_salt(self, salt_hex: str) -> bytes:
        try:
            return bytes.fromhex(salt_hex)
        except ValueError as exc:
            raise StorageError(f"stored salt for account {self.account} is not valid hex") from exc

    def _stored_params(self) -> Tuple[str, int, int]:
        """(kdf, iterations, verify_iterations) recorded at setup; config values for older vaults."""
        cfg = self.config
        kdf_name = self.store.get(self.account, KDF_KEY) or cfg.key_derivation
        if kdf_name not in SUPPORTED_KDFS:
            raise StorageError(f"stored key derivation {kdf_name!r} is not supported")
        try:
            iterations = int(self.store.get(self.account, ITERATIONS_KEY) or cfg.kdf_iterations)
            verify_iterations = int(
                self.store.get(self.account, VERIFY_ITERATIONS_KEY) or cfg.verify_iterations
            )
        except ValueError as exc:
            raise StorageError(f"stored iteration counts are not integers: {exc}") from exc
        return kdf_name, iterations, verify_iterations

    def lock(self) -> None:
        """Discard the key and lock. Locking a locked vault is a no-op."""
        with self._lock:
            self._lock_locked()

    def _lock_locked(self) -> None:
        # caller holds self._lock
        self._cancel_timer()
        self._generation += 1
        if self._key is None:
            return
        self._wipe_key()
        self._salt = None
        self._kdf_name = None
        self._iterations = None
        self._last_activity = None
        logger.info("Vault locked for account %s", self.account)

    def _wipe_key(self) -> None:
        if self._key is not None:
            for i in range(len(self._key)):
                self._key[i] = 0
        self._key = None

    # ------------------------------------------------------------------
    # Auto-lock timer
    # ------------------------------------------------------------------

    def _touch(self) -> None:
        # caller holds self._lock
        self._last_activity = self._clock()
        self._cancel_timer()
        generation = self._generation
        timer = threading.Timer(self.config.idle_timeout, self._on_idle, args=(generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_idle(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._key is None:
                return
            if self._timer is not None and self._timer is not threading.current_thread():
                # a newer timer replaced this one
                return
            logger.info("Vault auto-locked after %ss of inactivity", self.config.idle_timeout)
            self._lock_locked()

    # ------------------------------------------------------------------
    # Encryption
    # ------------------------------------------------------------------

    def _active_key(self) -> _KeySnapshot:
        """Snapshot the key and its parameters, or raise if locked. Not activity by itself."""
        with self._lock:
            if self._key is None or self._expired():
                if self._key is not None:
                    self._lock_locked()
                raise VaultLockedError("Encryption vault is locked")
            return _KeySnapshot(
                key=bytes(self._key),
                salt=self._salt,
                key_derivation=self._kdf_name,
                iterations=self._iterations,
                generation=self._generation,
            )

    def _record_activity(self, generation: int) -> None:
        # only a completed operation under the same unlock resets the idle timer
        with self._lock:
            if self._key is None or generation != self._generation or self._expired():
                return
            self._touch()

    def _check_metadata(self, metadata: EncryptionMetadata, snap: _KeySnapshot) -> None:
        if metadata.salt.lower() != snap.salt.hex():
            raise MetadataMismatchError("metadata was produced under a different vault salt")
        if metadata.iterations != snap.iterations:
            raise MetadataMismatchError(
                f"metadata expects {metadata.iterations} iterations, vault uses {snap.iterations}"
            )
        if metadata.key_derivation != snap.key_derivation:
            raise MetadataMismatchError(
                f"metadata expects {metadata.key_derivation}, vault uses {snap.key_derivation}"
            )

    def encrypt_file(self, data: bytes) -> EncryptedFile:
        snap = self._active_key()
        encrypted, metadata = cipher.seal(
            data,
            snap.key,
            salt=snap.salt,
            iterations=snap.iterations,
            key_derivation=snap.key_derivation,
            algorithm=self.config.cipher,
        )
        self._record_activity(snap.generation)
        return EncryptedFile(encrypted_data=encrypted, metadata=metadata)

    def decrypt_file(self, encrypted_data: bytes, metadata: EncryptionMetadata) -> bytes:
        snap = self._active_key()
        self._check_metadata(metadata, snap)
        plaintext = cipher.open_sealed(
            encrypted_data, snap.key, metadata, allow_untagged=self.config.allow_legacy_cbc
        )
        self._record_activity(snap.generation)
        return plaintext

    def encrypt_path(self, src: Path | str, dst: Path | str) -> EncryptionMetadata:
        """
        Stream-encrypt a file on disk; the returned metadata must be kept with ``dst``.

        Streaming always writes AES-256-CBC with a mac, whatever ``config.cipher``
        says; use :meth:`encrypt_file` for AES-256-GCM.
        """
        snap = self._active_key()
        if self.config.cipher != cipher.AES_CBC:
            logger.warning(
                "Streaming encryption writes %s; configured cipher %s is not used for %s",
                cipher.AES_CBC,
                self.config.cipher,
                src,
            )
        with open(src, "rb") as inf, open(dst, "wb") as outf:
            metadata = cipher.encrypt_stream(
                inf,
                outf,
                snap.key,
                salt=snap.salt,
                iterations=snap.iterations,
                key_derivation=snap.key_derivation,
            )
        self._record_activity(snap.generation)
        return metadata

    def decrypt_path(self, src: Path | str, dst: Path | str, metadata: EncryptionMetadata) -> None:
        snap = self._active_key()
        self._check_metadata(metadata, snap)
        with open(src, "rb") as inf, open(dst, "wb") as outf:
            cipher.decrypt_stream(
                inf, outf, snap.key, metadata, allow_untagged=self.config.allow_legacy_cbc
            )
        self._record_activity(snap.generation)

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.config.workers, thread_name_prefix="vaultbox"
                )
            return self._executor

    def encrypt_file_async(self, data: bytes) -> "Future[EncryptedFile]":
        return self._pool().submit(self.encrypt_file, data)

    def decrypt_file_async(self, encrypted_data: bytes, metadata: EncryptionMetadata) -> "Future[bytes]":
        return self._pool().submit(self.decrypt_file, encrypted_data, metadata)

    def close(self) -> None:
        """Lock and release the worker pool."""
        self.lock()
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Account-level toggle
    # ------------------------------------------------------------------

    def is_encryption_enabled(self) -> bool:
        return self.store.get(self.account, ENABLED_KEY) == "true"

    def set_encryption_enabled(self, enabled: bool) -> None:
        """Persist the toggle. Turning encryption off always locks the vault first."""
        with self._lock:
            if not enabled:
                self._lock_locked()
            self.store.set(self.account, ENABLED_KEY, "true" if enabled else "false")
        logger.info("End-to-end encryption %s", "enabled" if enabled else "disabled")


# module-level default session
_default_session: Optional[VaultSession] = None
_default_lock = threading.Lock()


def get_session() -> VaultSession:
    global _default_session
    with _default_lock:
        if _default_session is None:
            _default_session = VaultSession()
        return _default_session


def unlock_vault(password: str) -> bool:
    return get_session().unlock(password)


def lock_vault() -> None:
    get_session().lock()


def encrypt_file(data: bytes) -> EncryptedFile:
    return get_session().encrypt_file(data)


def decrypt_file(encrypted_data: bytes, metadata: EncryptionMetadata) -> bytes:
    return get_session().decrypt_file(encrypted_data, metadata)


def is_unlocked() -> bool:
    return get_session().is_unlocked()


def is_encryption_enabled() -> bool:
    return get_session().is_encryption_enabled()


def set_encryption_enabled(enabled: bool) -> None:
    get_session().set_encryption_enabled(enabled)
