"""Artifact decoding: zstd streams and tar+gzip / tar+xz archives.

Artifacts are fully buffered. Tar members are read into memory (never
extracted to disk by tarfile), keeping only regular files; every member path
is normalized and rejected if it could escape the archive root.
"""

from __future__ import annotations

import io
import lzma
import posixpath
import tarfile
from dataclasses import dataclass, field
from pathlib import Path

import zstandard
from stencil_core.errors import (
    ArchiveError,
    ExtractNotFoundError,
    PathEscapeError,
    UnsupportedEncodingError,
)
from stencil_core.models import (
    ENCODING_NONE,
    ENCODING_TAR_GZIP,
    ENCODING_TAR_XZ,
    ENCODING_ZSTD,
)

DEFAULT_FILE_MODE = "0644"

_TAR_MODES = {
    ENCODING_TAR_GZIP: "r:gz",
    ENCODING_TAR_XZ: "r:xz",
}


@dataclass
class ArchiveEntry:
    """One decoded output file. `path` is '' for unnamed single outputs."""

    path: str
    body: bytes
    mode: int = 0  # permission bits; 0 when the source carried none


@dataclass
class DecodedArtifact:
    """Decoded outputs of one rule: a single file or a fan-out of entries."""

    entries: list[ArchiveEntry] = field(default_factory=list)
    single: bool = True

    @property
    def content(self) -> bytes:
        """Body of a single-output artifact."""
        if not self.single:
            raise ArchiveError("artifact resolves to multiple files")
        return self.entries[0].body


def decode_artifact(
    artifact: bytes, encoding: str, extract: str = "", expand_archive: bool = False
) -> DecodedArtifact:
    """Decode artifact per encoding, then apply the extract/expand selection."""
    if encoding == ENCODING_NONE:
        return DecodedArtifact(entries=[ArchiveEntry(path="", body=artifact)])
    if encoding == ENCODING_ZSTD:
        return DecodedArtifact(entries=[ArchiveEntry(path="", body=decode_zstd(artifact))])
    if encoding in _TAR_MODES:
        return select_archive_content(
            read_archive_entries(artifact, encoding), extract, expand_archive
        )
    raise UnsupportedEncodingError(encoding)


def decode_zstd(content: bytes) -> bytes:
    """Decode every frame of a zstd stream; a truncated frame is an error."""
    dctx = zstandard.ZstdDecompressor()
    chunks: list[bytes] = []
    remaining = content
    try:
        while remaining:
            obj = dctx.decompressobj()
            chunks.append(obj.decompress(remaining))
            if not obj.eof:
                raise ArchiveError("zstd decode failed: truncated stream")
            remaining = obj.unused_data
    except zstandard.ZstdError as e:
        raise ArchiveError(f"zstd decode failed: {e}") from e
    return b"".join(chunks)


def read_archive_entries(content: bytes, encoding: str) -> list[ArchiveEntry]:
    """All regular files of a compressed tar, with normalized paths."""
    tar_mode = _TAR_MODES.get(encoding)
    if tar_mode is None:
        raise UnsupportedEncodingError(encoding)

    entries: list[ArchiveEntry] = []
    try:
        with tarfile.open(fileobj=io.BytesIO(content), mode=tar_mode) as tar:
            for member in tar:
                if not member.isfile():
                    continue
                name = normalize_entry_name(member.name)
                fh = tar.extractfile(member)
                body = fh.read() if fh is not None else b""
                entries.append(ArchiveEntry(path=name, body=body, mode=member.mode & 0o777))
    except (tarfile.TarError, lzma.LZMAError, EOFError, OSError) as e:
        raise ArchiveError(f"cannot read {encoding} archive: {e}") from e
    return entries


def normalize_entry_name(value: str) -> str:
    """Clean a member path; raise PathEscapeError if it leaves the archive root."""
    cleaned = posixpath.normpath(value) if value else "."
    if cleaned.startswith("./"):
        cleaned = cleaned[2:]
    if cleaned in (".", ""):
        raise ArchiveError(f"invalid archive entry path {value!r}")
    if cleaned.startswith("/") or cleaned == ".." or cleaned.startswith("../"):
        raise PathEscapeError(value)
    return cleaned


def select_archive_content(
    entries: list[ArchiveEntry], extract: str, expand_archive: bool
) -> DecodedArtifact:
    """
    Pick outputs from archive entries.

    expand_archive -> every entry; an exact path match -> that single entry;
    otherwise `extract` is a directory whose children are returned with the
    prefix stripped. No match raises ExtractNotFoundError.
    """
    if expand_archive:
        return DecodedArtifact(entries=list(entries), single=False)

    for entry in entries:
        if entry.path == extract:
            return DecodedArtifact(entries=[entry], single=True)

    prefix = extract + "/"
    children = [
        ArchiveEntry(path=entry.path[len(prefix) :], body=entry.body, mode=entry.mode)
        for entry in entries
        if entry.path.startswith(prefix) and entry.path[len(prefix) :]
    ]
    if children:
        return DecodedArtifact(entries=children, single=False)
    raise ExtractNotFoundError(extract)


def resolve_entry_mode(rule_mode: str, entry_mode: int) -> str:
    """Explicit rule mode, else the entry's bits as 4-digit octal, else 0644."""
    if rule_mode and rule_mode.strip():
        return rule_mode.strip()
    if entry_mode:
        return f"{entry_mode:04o}"
    return DEFAULT_FILE_MODE


def resolve_archive_target_path(root: Path, rel: str) -> Path:
    """Join an entry path under root, refusing anything that lands outside it."""
    target = Path(posixpath.normpath(posixpath.join(root.as_posix(), rel)))
    clean_root = Path(posixpath.normpath(root.as_posix()))
    if target != clean_root and clean_root not in target.parents:
        raise PathEscapeError(rel)
    return target
