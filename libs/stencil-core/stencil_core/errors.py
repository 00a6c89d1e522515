"""Error taxonomy for Stencil.

Every error the sync engine raises on purpose derives from StencilError.
ConflictError is the only one the orchestrator collects instead of
propagating; SyncConflictError is raised once at the end of a run that
recorded conflicts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path


class StencilError(Exception):
    """Base class for all Stencil errors."""


class ValidationError(StencilError):
    """Configuration has the wrong shape (no I/O attempted)."""


class RootDirRequiredError(ValidationError):
    def __init__(self) -> None:
        super().__init__("root dir is required")


class FetchError(StencilError):
    """Download failed (transport error or non-2xx status)."""

    def __init__(self, url: str, status_code: int | None = None, reason: str = "") -> None:
        self.url = url
        self.status_code = status_code
        self.reason = reason
        if status_code is not None:
            msg = f"download failed: {url} status={status_code}"
        else:
            msg = f"download failed: {url}: {reason}"
        super().__init__(msg)


# ---- checksums ---------------------------------------------------------------


class ChecksumError(StencilError):
    """Base class for checksum spec and verification failures."""


class ChecksumFormatError(ChecksumError):
    def __init__(self, spec: str) -> None:
        self.spec = spec
        super().__init__(f"invalid checksum format {spec!r}: expected '<algorithm>:<hex>'")


class ChecksumHexError(ChecksumError):
    def __init__(self, spec: str) -> None:
        self.spec = spec
        super().__init__(f"invalid checksum hex {spec!r}")


class ChecksumAlgorithmError(ChecksumError):
    def __init__(self, algorithm: str) -> None:
        self.algorithm = algorithm
        super().__init__(f"unsupported checksum algorithm {algorithm!r}")


class ChecksumMismatchError(ChecksumError):
    def __init__(self, algorithm: str, expected: str, actual: str) -> None:
        self.algorithm = algorithm
        self.expected = expected
        self.actual = actual
        super().__init__(f"checksum mismatch ({algorithm}): expected {expected}, got {actual}")


# ---- archives ----------------------------------------------------------------


class ArchiveError(StencilError):
    """Base class for artifact decoding and selection failures."""


class UnsupportedEncodingError(ArchiveError):
    def __init__(self, encoding: str) -> None:
        self.encoding = encoding
        super().__init__(f"unsupported encoding {encoding!r}")


class PathEscapeError(ArchiveError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"archive entry path escapes root: {path!r}")


class ExtractNotFoundError(ArchiveError):
    def __init__(self, extract: str) -> None:
        self.extract = extract
        super().__init__(f"extract path {extract!r} not found in archive")


# ---- writing -----------------------------------------------------------------


class ModeFormatError(StencilError):
    def __init__(self, value: str) -> None:
        self.value = value
        super().__init__(f"invalid file mode {value!r}")


class UnsupportedModeError(StencilError):
    def __init__(self, mode: str) -> None:
        self.mode = mode
        super().__init__(f"unsupported merge mode {mode!r}")


class ConflictError(StencilError):
    """Local and upstream content both diverged from the recorded baseline."""

    def __init__(self, path: str | Path, reason: str = "") -> None:
        self.path = str(path)
        self.reason = reason
        msg = f"conflict: {self.path}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class CorruptLockError(StencilError):
    def __init__(self, path: str | Path, reason: str = "") -> None:
        self.path = str(path)
        super().__init__(f"lock file {self.path} is corrupt: {reason}")


class SyncConflictError(StencilError):
    """Run finished with conflicts; the lock file was not written."""

    def __init__(self, result: Any) -> None:
        self.result = result
        conflicts = getattr(result, "conflicts", [])
        super().__init__(f"sync finished with {len(conflicts)} conflict(s)")
