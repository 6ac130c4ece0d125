"""Content hashing for change detection and upload integrity checks."""

import base64
import hashlib
from pathlib import Path
from typing import Union

CHUNK_SIZE = 1024 * 1024


def hash_file(file_path: Union[str, Path]) -> str:
    """Calculate the hex SHA-1 of a file, reading it in chunks."""
    sha1 = hashlib.sha1()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha1.update(chunk)
    return sha1.hexdigest()


def sha1_base64(hex_digest: str) -> str:
    """Convert a hex SHA-1 into the base64 form S3 checksum headers use."""
    return base64.b64encode(bytes.fromhex(hex_digest)).decode("ascii")


def sha1_hex(b64_digest: str) -> str:
    """Convert a base64 SHA-1 checksum back into hex."""
    return base64.b64decode(b64_digest).hex()
