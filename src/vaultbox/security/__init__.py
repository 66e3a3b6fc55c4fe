"""Security package of vaultbox: key derivation, file ciphers, key exchange and the vault session.

- PBKDF2-SHA256 (or Argon2id) key derivation with a separate verification hash
- AES-256-CBC file encryption with an encrypt-then-MAC envelope (AES-256-GCM optional)
- RSA-OAEP key pairs for sharing short secrets
- VaultSession: lock/unlock lifecycle with idle auto-lock
"""

from .kdf import DerivedKey, generate_salt, derive_key, hash_for_verification, verify_password
from .cipher import (
    EncryptionMetadata,
    encrypt,
    decrypt,
    checksum,
    seal,
    open_sealed,
    encrypt_stream,
    decrypt_stream,
)
from .exchange import (
    KeyPair,
    generate_key_pair,
    encrypt_with_public_key,
    decrypt_with_private_key,
    generate_share_token,
)
from .store import VaultStore, MemoryStore, JsonFileStore, KeyringStore
from .session import (
    EncryptedFile,
    VaultSession,
    get_session,
    unlock_vault,
    lock_vault,
    encrypt_file,
    decrypt_file,
    is_unlocked,
    is_encryption_enabled,
    set_encryption_enabled,
)

__all__ = [
    "DerivedKey",
    "generate_salt",
    "derive_key",
    "hash_for_verification",
    "verify_password",
    "EncryptionMetadata",
    "encrypt",
    "decrypt",
    "checksum",
    "seal",
    "open_sealed",
    "encrypt_stream",
    "decrypt_stream",
    "KeyPair",
    "generate_key_pair",
    "encrypt_with_public_key",
    "decrypt_with_private_key",
    "generate_share_token",
    "VaultStore",
    "MemoryStore",
    "JsonFileStore",
    "KeyringStore",
    "EncryptedFile",
    "VaultSession",
    "get_session",
    "unlock_vault",
    "lock_vault",
    "encrypt_file",
    "decrypt_file",
    "is_unlocked",
    "is_encryption_enabled",
    "set_encryption_enabled",
]
