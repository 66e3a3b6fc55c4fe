"""Unit tests for VaultConfig."""

from pathlib import Path

import pytest

from vaultbox.config import VaultConfig
from vaultbox.core.exceptions import ConfigurationError


def test_defaults():
    cfg = VaultConfig()
    assert cfg.idle_timeout == 30 * 60
    assert cfg.kdf_iterations == 100_000
    assert cfg.verify_iterations == 10_000
    assert cfg.key_derivation == "PBKDF2"
    assert cfg.cipher == "AES-256-CBC"
    assert cfg.min_password_length == 12
    assert cfg.allow_legacy_cbc is False
    assert cfg.store_path == Path.home() / ".vaultbox" / "vault.json"


def test_argon2_default_time_cost():
    assert VaultConfig(key_derivation="argon2id").kdf_iterations == 3


@pytest.mark.parametrize(
    "kwargs",
    [
        {"idle_timeout": 0},
        {"kdf_iterations": 50_000},
        {"key_derivation": "scrypt"},
        {"cipher": "AES-128-ECB"},
        {"min_password_length": 0},
        {"workers": 0},
        {"verify_iterations": 0},
    ],
)
def test_invalid_values_rejected(kwargs):
    with pytest.raises(ConfigurationError):
        VaultConfig(**kwargs)


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("VAULTBOX_IDLE_TIMEOUT", "60")
    monkeypatch.setenv("VAULTBOX_KDF_ITERATIONS", "200000")
    monkeypatch.setenv("VAULTBOX_CIPHER", "aes-256-gcm")
    monkeypatch.setenv("VAULTBOX_STORE_PATH", str(tmp_path / "v.json"))

    cfg = VaultConfig.from_env()
    assert cfg.idle_timeout == 60.0
    assert cfg.kdf_iterations == 200_000
    assert cfg.cipher == "AES-256-GCM"
    assert cfg.store_path == tmp_path / "v.json"


def test_from_env_bad_number(monkeypatch):
    monkeypatch.setenv("VAULTBOX_IDLE_TIMEOUT", "soon")
    with pytest.raises(ConfigurationError, match="numeric"):
        VaultConfig.from_env()


@pytest.mark.parametrize("value,expected", [("1", True), ("true", True), ("0", False), ("no", False)])
def test_from_env_allow_legacy_cbc(monkeypatch, value, expected):
    monkeypatch.setenv("VAULTBOX_ALLOW_LEGACY_CBC", value)
    assert VaultConfig.from_env().allow_legacy_cbc is expected
