"""
Git blob identity for local files.

A blob is identified by:

    SHA1("blob " + decimal(len(content)) + "\\0" + content)

which is exactly the `sha` the tree listing reports for each file. Hashing
local files the same way tells whether they match the remote without
downloading anything.
"""

from __future__ import annotations

import hashlib
from pathlib import Path


HASH_CHUNK_SIZE = 65536


def _blob_hasher(size: int):
    """SHA1 object already fed with the blob header for `size` bytes."""
    return hashlib.sha1(f"blob {size}\0".encode("ascii"))


def git_blob_hash(content: bytes) -> str:
    """
    Compute the git blob SHA1 of raw bytes.

    Args:
        content: File content.

    Returns:
        SHA1 hex string (40 characters)
    """
    h = _blob_hasher(len(content))
    h.update(content)
    return h.hexdigest()


def hash_file(path: str | Path) -> str:
    """Git blob SHA1 of a file on disk, streamed in chunks."""
    path = Path(path)
    h = _blob_hasher(path.stat().st_size)
    with open(path, "rb") as f:
        while True:
            chunk = f.read(HASH_CHUNK_SIZE)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def local_blob_matches(path: str | Path, expected_size: int, expected_hash: str) -> bool:
    """
    Compare a local file with a remote blob by size, then by content hash.

    Unreadable files never match.
    """
    path = Path(path)
    try:
        if path.stat().st_size != expected_size:
            return False
        actual = hash_file(path)
    except OSError:
        return False
    return actual == expected_hash.lower()
