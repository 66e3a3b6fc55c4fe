"""
Vault configuration.

Values can be passed directly or read from the environment:

    VAULTBOX_IDLE_TIMEOUT       seconds of inactivity before auto-lock
    VAULTBOX_KDF_ITERATIONS     PBKDF2 iterations (argon2 time cost)
    VAULTBOX_VERIFY_ITERATIONS  iterations for the verification hash
    VAULTBOX_KDF                "PBKDF2" or "argon2id"
    VAULTBOX_CIPHER             "AES-256-CBC" or "AES-256-GCM"
    VAULTBOX_STORE_PATH         JSON file holding salt / verification hash
    VAULTBOX_ALLOW_LEGACY_CBC   "1" to decrypt CBC metadata that has no mac
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import logging
import os

from vaultbox.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 30 * 60
MIN_KDF_ITERATIONS = 100_000

SUPPORTED_KDFS = ("PBKDF2", "argon2id")
SUPPORTED_CIPHERS = ("AES-256-CBC", "AES-256-GCM")


def _default_store_path() -> Path:
    return Path.home() / ".vaultbox" / "vault.json"


@dataclass
class VaultConfig:
    """Tunables for a VaultSession."""

    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    kdf_iterations: Optional[int] = None
    verify_iterations: int = 10_000
    key_derivation: str = "PBKDF2"
    cipher: str = "AES-256-CBC"
    min_password_length: int = 12
    store_path: Path = field(default_factory=_default_store_path)
    workers: int = 2
    # CBC payloads without a mac carry no integrity check
    allow_legacy_cbc: bool = False

    def __post_init__(self) -> None:
        self.store_path = Path(self.store_path).expanduser()
        if self.kdf_iterations is None:
            # argon2id counts passes over memory, not hash rounds
            self.kdf_iterations = MIN_KDF_ITERATIONS if self.key_derivation == "PBKDF2" else 3
        if self.idle_timeout <= 0:
            raise ConfigurationError("idle_timeout must be positive")
        if self.key_derivation not in SUPPORTED_KDFS:
            raise ConfigurationError(f"Unsupported key derivation: {self.key_derivation}")
        if self.cipher not in SUPPORTED_CIPHERS:
            raise ConfigurationError(f"Unsupported cipher: {self.cipher}")
        # argon2 iterations are a time cost, so the PBKDF2 floor does not apply
        if self.key_derivation == "PBKDF2" and self.kdf_iterations < MIN_KDF_ITERATIONS:
            raise ConfigurationError(
                f"kdf_iterations must be at least {MIN_KDF_ITERATIONS} for PBKDF2"
            )
        if self.kdf_iterations < 1 or self.verify_iterations < 1:
            raise ConfigurationError("iteration counts must be positive")
        if self.min_password_length < 1:
            raise ConfigurationError("min_password_length must be positive")
        if self.workers < 1:
            raise ConfigurationError("workers must be at least 1")

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Build a config from VAULTBOX_* environment variables."""
        kwargs = {}
        try:
            if "VAULTBOX_IDLE_TIMEOUT" in os.environ:
                kwargs["idle_timeout"] = float(os.environ["VAULTBOX_IDLE_TIMEOUT"])
            if "VAULTBOX_KDF_ITERATIONS" in os.environ:
                kwargs["kdf_iterations"] = int(os.environ["VAULTBOX_KDF_ITERATIONS"])
            if "VAULTBOX_VERIFY_ITERATIONS" in os.environ:
                kwargs["verify_iterations"] = int(os.environ["VAULTBOX_VERIFY_ITERATIONS"])
        except ValueError as exc:
            raise ConfigurationError(f"Invalid numeric VAULTBOX_* setting: {exc}") from exc
        if "VAULTBOX_KDF" in os.environ:
            kwargs["key_derivation"] = os.environ["VAULTBOX_KDF"]
        if "VAULTBOX_CIPHER" in os.environ:
            kwargs["cipher"] = os.environ["VAULTBOX_CIPHER"].upper()
        if "VAULTBOX_STORE_PATH" in os.environ:
            kwargs["store_path"] = Path(os.environ["VAULTBOX_STORE_PATH"])
        if "VAULTBOX_ALLOW_LEGACY_CBC" in os.environ:
            kwargs["allow_legacy_cbc"] = os.environ["VAULTBOX_ALLOW_LEGACY_CBC"].lower() in (
                "1",
                "true",
                "yes",
            )
        logger.debug("Loaded vault config overrides: %s", sorted(kwargs))
        return cls(**kwargs)
