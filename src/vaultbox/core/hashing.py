""" Utility for checksum operations. """

import hashlib
from pathlib import Path
from typing import Union


CHUNK_SIZE = 65536  # 64KB


def calculate_sha256_bytes(data: bytes) -> str:
    # SHA-256 of an in-memory payload
    return hashlib.sha256(data).hexdigest()


def calculate_sha256(file_path: Union[str, Path]) -> str:

    # Calculates the SHA-256 hash of a file without loading it whole.

    sha256 = hashlib.sha256()
    with open(file_path, 'rb') as f:
        while True:
            data = f.read(CHUNK_SIZE)
            if not data:
                break
            sha256.update(data)
    return sha256.hexdigest()
