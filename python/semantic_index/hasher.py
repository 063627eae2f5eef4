"""
Hasher - Content fingerprints using xxHash.

Fingerprints are for change detection only, not security. Text is hashed
after extraction (content_hash on document rows); images are hashed over
their raw bytes (file_hash on image rows).
"""

import logging
from pathlib import Path

import xxhash


logger = logging.getLogger(__name__)

_READ_BLOCK = 65536


def fingerprint(text: str) -> str:
    """Deterministic xxh64 hex digest of a string (UTF-8)."""
    return xxhash.xxh64(text.encode("utf-8")).hexdigest()


def fingerprint_file(path: Path | str) -> str:
    """
    Deterministic xxh64 hex digest of a file's bytes.

    Reads in 64KB blocks for memory efficiency. OSError propagates to the caller.
    """
    hasher = xxhash.xxh64()
    with open(path, "rb") as f:
        while block := f.read(_READ_BLOCK):
            hasher.update(block)
    return hasher.hexdigest()
