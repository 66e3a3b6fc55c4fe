"""Durable key/value storage for per-account vault state.

Only non-secret material is kept here: the key-derivation salt (hex), the
key-derivation parameters, the password verification hash (hex) and the
encryption-enabled flag. The derived key and the password are never
written anywhere.

Three backends:

- ``MemoryStore``: process-local dict, for tests and throwaway sessions.
- ``JsonFileStore``: one JSON document on disk, written atomically.
- ``KeyringStore``: the OS keystore through ``keyring``. Use only on a
  backend that ``assess_keyring_backend`` considers acceptable.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

try:
    import keyring
    from keyring.errors import KeyringError, PasswordDeleteError
except ImportError:
    keyring = None

from vaultbox.core.exceptions import StorageError

logger = logging.getLogger(__name__)

SALT_KEY = "encryption_salt"
HASH_KEY = "encryption_key_hash"
ENABLED_KEY = "encryption_enabled"
# key-derivation parameters chosen at setup; absent for vaults created before they were recorded
KDF_KEY = "encryption_kdf"
ITERATIONS_KEY = "encryption_iterations"
VERIFY_ITERATIONS_KEY = "encryption_verify_iterations"


class VaultStore:
    """Base class. Values are strings, namespaced by account."""

    def get(self, account: str, name: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, account: str, name: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, account: str, name: str) -> None:
        raise NotImplementedError


class MemoryStore(VaultStore):
    def __init__(self):
        self._data: Dict[str, Dict[str, str]] = {}

    def get(self, account: str, name: str) -> Optional[str]:
        return self._data.get(account, {}).get(name)

    def set(self, account: str, name: str, value: str) -> None:
        self._data.setdefault(account, {})[name] = value

    def delete(self, account: str, name: str) -> None:
        self._data.get(account, {}).pop(name, None)


class JsonFileStore(VaultStore):
    """
    Vault state in a single JSON file: ``{account: {name: value}}``.

    Writes go to a temporary file in the same directory followed by
    :func:`os.replace`, so a crash never leaves a half-written salt behind.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()

    def _load(self) -> Dict[str, Dict[str, str]]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"cannot read vault state from {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"vault state in {self.path} is not a JSON object")
        return data

    def _save(self, data: Dict[str, Dict[str, str]]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".vault-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StorageError(f"cannot write vault state to {self.path}: {exc}") from exc

    def get(self, account: str, name: str) -> Optional[str]:
        return self._load().get(account, {}).get(name)

    def set(self, account: str, name: str, value: str) -> None:
        data = self._load()
        data.setdefault(account, {})[name] = value
        self._save(data)

    def delete(self, account: str, name: str) -> None:
        data = self._load()
        if name in data.get(account, {}):
            del data[account][name]
            self._save(data)


def _require_keyring():
    if keyring is None:
        raise StorageError("keyring package is not available; install keyring to use KeyringStore")


def assess_keyring_backend() -> tuple[bool, str]:
    """Return (is_secure, message) describing the current keyring backend.

    Heuristics are used because the `keyring` package exposes different backends
    across platforms. If `keyring` is not available this returns (False, reason).
    """
    if keyring is None:
        return False, "keyring package is not installed"

    try:
        backend = keyring.get_keyring()
    except Exception as e:
        return False, f"failed to get keyring backend: {e}"

    name = backend.__class__.__name__
    priority = getattr(backend, "priority", None)

    insecure_indicators = ("Plaintext", "Uncrypted", "Simple", "File")
    if any(tok in name for tok in insecure_indicators):
        return False, f"insecure backend detected: {name}"

    if priority is not None and priority <= 0:
        return False, f"no suitable secure keyring backend available (priority={priority}, backend={name})"

    if "Win" in name or "Keychain" in name or "SecretService" in name or "KWallet" in name:
        return True, f"backend looks acceptable: {name} (priority={priority})"

    return True, f"unknown backend '{name}', treat with caution (priority={priority})"


class KeyringStore(VaultStore):
    """Vault state in the OS keystore, one entry per (service, account:name)."""

    def __init__(self, service: str = "vaultbox", force: bool = False):
        _require_keyring()
        if not force:
            secure, msg = assess_keyring_backend()
            if not secure:
                raise StorageError(
                    f"refusing to use OS keystore: {msg}; "
                    "pass force=True to override if you understand the risk"
                )
        self.service = service

    def _username(self, account: str, name: str) -> str:
        return f"{account}:{name}"

    def get(self, account: str, name: str) -> Optional[str]:
        try:
            return keyring.get_password(self.service, self._username(account, name))
        except KeyringError as exc:
            raise StorageError(f"keyring read failed: {exc}") from exc

    def set(self, account: str, name: str, value: str) -> None:
        try:
            keyring.set_password(self.service, self._username(account, name), value)
        except KeyringError as exc:
            raise StorageError(f"keyring write failed: {exc}") from exc

    def delete(self, account: str, name: str) -> None:
        try:
            keyring.delete_password(self.service, self._username(account, name))
        except PasswordDeleteError:
            # nothing stored under that name
            logger.debug("No keyring entry for %s/%s", account, name)
        except KeyringError as exc:
            raise StorageError(f"keyring delete failed: {exc}") from exc
