"""
Hasher - Fingerprints and identities using xxHash.

Fingerprints are short hashes used to notice that a larger artifact
(the dependency manifests, the set of workspace roots) has changed without
storing the artifact itself.
"""

import logging
from pathlib import Path
from typing import Iterable, List

import xxhash


logger = logging.getLogger(__name__)


NO_WORKSPACE = "no-workspace"


def hash_string(value: str) -> str:
    """Return the xxh64 hex digest of a string."""
    return xxhash.xxh64(value.encode("utf-8")).hexdigest()


def hash_file(path: Path) -> str:
    """
    Compute the xxh64 digest of a file's bytes.

    Reads in 64KB chunks for memory efficiency.
    """
    hasher = xxhash.xxh64()
    with open(path, "rb") as f:
        while chunk := f.read(65536):
            hasher.update(chunk)
    return hasher.hexdigest()


def hash_files(paths: Iterable[Path]) -> str:
    """
    Combined fingerprint of several files, empty when none exist.

    Each file contributes its name and digest so that moving content between
    files still changes the fingerprint. Unreadable files are ignored.
    """
    parts: List[str] = []
    for path in sorted(paths):
        try:
            parts.append(f"{path}={hash_file(path)}")
        except OSError as e:
            logger.debug(f"Skipping unreadable file for fingerprint {path}: {e}")
    if not parts:
        return ""
    return hash_string("::".join(parts))


def workspace_identity(roots: Iterable[Path]) -> str:
    """
    Stable identifier for a set of workspace roots.

    Independent of root order; a single root is its own identity.
    """
    paths = sorted({str(Path(r)) for r in roots})
    if not paths:
        return NO_WORKSPACE
    return "::".join(paths)


def storage_key(identity: str) -> str:
    """Deterministic file-name-safe key for a workspace identity."""
    return hash_string(identity)


def legacy_hash(value: str) -> str:
    """
    32-bit string hash used to name deprecated single-blob indexes.

    Computed over UTF-16 code units as a signed 32-bit value, rendered as
    the hex of its absolute value.
    """
    h = 0
    data = value.encode("utf-16-le")
    for i in range(0, len(data), 2):
        h = (h * 31 + (data[i] | data[i + 1] << 8)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return format(abs(h), "x")
