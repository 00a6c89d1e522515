"""Content digests and ``algo:hex`` checksum specs."""

from __future__ import annotations

import binascii
import hashlib
from dataclasses import dataclass

from blake3 import blake3

from stencil_core.errors import (
    ChecksumAlgorithmError,
    ChecksumFormatError,
    ChecksumHexError,
    ChecksumMismatchError,
)

ALGORITHM_BLAKE3 = "blake3"
ALGORITHM_SHA256 = "sha256"
ALGORITHM_MD5 = "md5"
SUPPORTED_ALGORITHMS = (ALGORITHM_BLAKE3, ALGORITHM_SHA256, ALGORITHM_MD5)


@dataclass(frozen=True)
class ChecksumSpec:
    """A parsed checksum: lowercase algorithm name and lowercase hex digest."""

    algorithm: str
    digest: str

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.digest}"


def parse_checksum_spec(value: str) -> ChecksumSpec | None:
    """
    Parse ``"<algorithm>:<hexdigest>"`` (case-insensitive).

    Returns None for an empty spec. Raises ChecksumFormatError when the colon
    or either half is missing, ChecksumAlgorithmError for algorithms outside
    SUPPORTED_ALGORITHMS, then ChecksumHexError when the digest is not hex.
    """
    raw = (value or "").strip().lower()
    if not raw:
        return None

    algorithm, sep, digest = raw.partition(":")
    algorithm = algorithm.strip()
    digest = digest.strip()
    if not sep or not algorithm or not digest:
        raise ChecksumFormatError(value)

    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ChecksumAlgorithmError(algorithm)

    try:
        binascii.unhexlify(digest)
    except (binascii.Error, ValueError) as e:
        raise ChecksumHexError(value) from e

    return ChecksumSpec(algorithm=algorithm, digest=digest)


def normalize_checksum(value: str) -> str:
    """Return the canonical ``algo:hex`` form of a spec ('' stays '')."""
    spec = parse_checksum_spec(value)
    return str(spec) if spec else ""


def compute_digest(content: bytes, algorithm: str = ALGORITHM_SHA256) -> str:
    """Lowercase hex digest of content with the named algorithm."""
    if algorithm == ALGORITHM_BLAKE3:
        return blake3(content).hexdigest()
    if algorithm == ALGORITHM_SHA256:
        return hashlib.sha256(content).hexdigest()
    if algorithm == ALGORITHM_MD5:
        return hashlib.md5(content).hexdigest()
    raise ChecksumAlgorithmError(algorithm)


def content_hash(content: bytes) -> str:
    """Hash used for merge decisions and lock entries (SHA-256 hex)."""
    return compute_digest(content, ALGORITHM_SHA256)


def verify_checksum(content: bytes, spec: str) -> None:
    """Raise unless content matches spec. An empty spec always passes."""
    parsed = parse_checksum_spec(spec)
    if parsed is None:
        return
    actual = compute_digest(content, parsed.algorithm)
    if actual != parsed.digest:
        raise ChecksumMismatchError(parsed.algorithm, parsed.digest, actual)
