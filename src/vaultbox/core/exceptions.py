"""
Exceptions for the vaultbox package
Everything derives from VaultBoxError so callers have one general error catcher
"""


class VaultBoxError(Exception):
    # general container for errors
    pass


class ConfigurationError(VaultBoxError):
    # raised when a VaultConfig value is out of range or malformed
    pass


class StorageError(VaultBoxError):
    # raised when the vault state store cannot be read or written
    pass


class InvalidPasswordError(VaultBoxError):
    # raised on a verification hash mismatch (only when the caller asks for it)
    pass


class WeakPasswordError(VaultBoxError):
    # raised when a first-time vault password is too short
    pass


class VaultLockedError(VaultBoxError):
    # raised when an operation needs the key but the vault is locked
    pass


class MetadataMismatchError(VaultBoxError):
    # raised when file metadata belongs to a different salt / kdf setup
    pass


class DecryptionError(VaultBoxError):
    # raised on padding, tag or format failure; wrong key or corrupted data
    pass


class KeyExchangeError(VaultBoxError):
    # raised on malformed asymmetric key material or a key/ciphertext mismatch
    pass


class PayloadTooLargeError(KeyExchangeError):
    # raised when a plaintext exceeds the RSA-OAEP payload limit
    pass


class IntegrityCheckFailedError(VaultBoxError):
    # raised on a checksum mismatch
    pass
