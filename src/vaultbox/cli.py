"""Command line front end for the vault.

Each invocation is its own session: commands that need the key prompt for
the vault password (or read ``VAULTBOX_PASSWORD``), do their work and lock
again on exit. Encrypted files get a ``<name>.meta.json`` sidecar that must
travel with them; without it the file cannot be decrypted.
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import pyperclip

from vaultbox import __version__
from vaultbox.config import VaultConfig
from vaultbox.core.exceptions import IntegrityCheckFailedError, VaultBoxError, WeakPasswordError
from vaultbox.core.hashing import calculate_sha256
from vaultbox.logging_config import configure_logging
from vaultbox.clipboard import copy_to_clipboard
from vaultbox.security.cipher import EncryptionMetadata
from vaultbox.security.exchange import generate_key_pair, generate_share_token
from vaultbox.security.session import VaultSession
from vaultbox.security.store import JsonFileStore

logger = logging.getLogger(__name__)

META_SUFFIX = ".meta.json"


def _read_password(prompt: str = "Vault password: ") -> str:
    password = os.getenv("VAULTBOX_PASSWORD")
    if password:
        return password
    return getpass.getpass(prompt)


def _build_session(args) -> VaultSession:
    config = VaultConfig.from_env()
    store_path = Path(args.store) if args.store else config.store_path
    return VaultSession(JsonFileStore(store_path), config, account=args.account)


def _unlocked_session(args) -> VaultSession:
    session = _build_session(args)
    if not session.is_initialized():
        raise VaultBoxError("vault is not set up yet; run 'vaultbox init' first")
    if not session.unlock(_read_password()):
        raise VaultBoxError("invalid encryption password")
    return session


def cmd_init(args) -> int:
    session = _build_session(args)
    if session.is_initialized():
        print("Vault already exists for this account.")
        return 1
    password = _read_password("New vault password: ")
    if not os.getenv("VAULTBOX_PASSWORD"):
        confirm = getpass.getpass("Confirm password: ")
        if confirm != password:
            print("Passwords do not match.", file=sys.stderr)
            return 1
    try:
        session.unlock(password)
    except WeakPasswordError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    session.set_encryption_enabled(True)
    session.close()
    print("Encryption vault created.")
    print("If you forget this password your files cannot be recovered.")
    return 0


def cmd_status(args) -> int:
    session = _build_session(args)
    print(f"initialized: {session.is_initialized()}")
    print(f"encryption enabled: {session.is_encryption_enabled()}")
    return 0


def cmd_toggle(args) -> int:
    session = _build_session(args)
    session.set_encryption_enabled(args.command == "enable")
    print(f"encryption {args.command}d")
    return 0


def cmd_encrypt(args) -> int:
    session = _unlocked_session(args)
    try:
        if not session.is_encryption_enabled():
            raise VaultBoxError("encryption is disabled for this account; run 'vaultbox enable'")
        metadata = session.encrypt_path(args.src, args.dst)
    finally:
        session.close()
    meta_path = Path(str(args.dst) + META_SUFFIX)
    meta_path.write_text(json.dumps(metadata.to_dict(), indent=2), encoding="utf-8")
    print(f"wrote {args.dst} and {meta_path}")
    return 0


def cmd_decrypt(args) -> int:
    meta_path = Path(args.meta) if args.meta else Path(str(args.src) + META_SUFFIX)
    try:
        metadata = EncryptionMetadata.from_dict(json.loads(meta_path.read_text(encoding="utf-8")))
    except (OSError, json.JSONDecodeError) as exc:
        raise VaultBoxError(f"cannot read metadata {meta_path}: {exc}") from exc
    session = _unlocked_session(args)
    try:
        session.decrypt_path(args.src, args.dst, metadata)
    finally:
        session.close()
    print(f"wrote {args.dst}")
    return 0


def _write_private(path: Path, text: str) -> None:
    # created 0600 from the start; an existing file may have looser permissions
    path.unlink(missing_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(text)


def cmd_keygen(args) -> int:
    out = Path(args.directory)
    out.mkdir(parents=True, exist_ok=True)
    pair = generate_key_pair()
    (out / "public.b64").write_text(pair.public_key, encoding="utf-8")
    _write_private(out / "private.b64", pair.private_key)
    if args.copy:
        copy_to_clipboard(pair.public_key)
        print("public key copied to clipboard")
    print(f"wrote key pair to {out}")
    return 0


def cmd_checksum(args) -> int:
    digest = calculate_sha256(args.file)
    if args.expect is not None and digest != args.expect.strip().lower():
        raise IntegrityCheckFailedError(f"{args.file}: SHA-256 is {digest}, expected {args.expect}")
    print(digest)
    return 0


def cmd_share_token(args) -> int:
    token = generate_share_token()
    if args.copy:
        copy_to_clipboard(token)
    print(token)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vaultbox", description="Client-side encryption vault")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--store", default=None, help="vault state file (default from VAULTBOX_STORE_PATH)")
    parser.add_argument("--account", default="default")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="create the vault").set_defaults(func=cmd_init)
    sub.add_parser("status", help="show vault state").set_defaults(func=cmd_status)
    sub.add_parser("enable", help="turn encryption on").set_defaults(func=cmd_toggle)
    sub.add_parser("disable", help="turn encryption off").set_defaults(func=cmd_toggle)

    p = sub.add_parser("encrypt", help="encrypt a file")
    p.add_argument("src")
    p.add_argument("dst")
    p.set_defaults(func=cmd_encrypt)

    p = sub.add_parser("decrypt", help="decrypt a file")
    p.add_argument("src")
    p.add_argument("dst")
    p.add_argument("--meta", default=None, help=f"metadata file (default SRC{META_SUFFIX})")
    p.set_defaults(func=cmd_decrypt)

    p = sub.add_parser("keygen", help="generate an RSA-OAEP key pair")
    p.add_argument("directory")
    p.add_argument("--copy", action="store_true", help="copy the public key to the clipboard")
    p.set_defaults(func=cmd_keygen)

    p = sub.add_parser("checksum", help="SHA-256 of a file")
    p.add_argument("file")
    p.add_argument("--expect", default=None, metavar="HEX", help="fail unless the digest matches")
    p.set_defaults(func=cmd_checksum)

    p = sub.add_parser("share-token", help="print a random share token")
    p.add_argument("--copy", action="store_true")
    p.set_defaults(func=cmd_share_token)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)
    try:
        return args.func(args)
    except (VaultBoxError, OSError, pyperclip.PyperclipException) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
