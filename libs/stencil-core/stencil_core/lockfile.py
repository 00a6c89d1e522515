"""Lock store: per-target merge baselines persisted across runs (stencil.lock)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError
from ruamel.yaml.error import YAMLError

from stencil_core.errors import CorruptLockError
from stencil_core.models import LOCK_VERSION, LockEntry, LockFile
from stencil_core.yamlio import dump_yaml, load_yaml, write_text_atomic

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "stencil.lock"


def format_timestamp(now: datetime) -> str:
    """UTC ISO-8601 with a trailing Z (naive datetimes are taken as UTC)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def load_lock(path: Path) -> LockFile:
    """
    Load the lock file at path.

    A missing file yields an empty LockFile; anything present that does not
    parse into the lock schema raises CorruptLockError.
    """
    if not path.exists():
        return LockFile(version=LOCK_VERSION, files={})

    try:
        data = load_yaml(path.read_bytes())
    except (YAMLError, UnicodeDecodeError) as e:
        raise CorruptLockError(path, str(e)) from e

    if data is None:
        return LockFile(version=LOCK_VERSION, files={})
    if not isinstance(data, dict):
        raise CorruptLockError(path, "top level must be a mapping")

    try:
        lock = LockFile.model_validate(
            {"version": data.get("version") or LOCK_VERSION, "files": data.get("files") or {}}
        )
    except PydanticValidationError as e:
        raise CorruptLockError(path, str(e)) from e

    logger.debug(f"Loaded lock file {path} ({len(lock.files)} entries)")
    return lock


def save_lock(path: Path, lock: LockFile) -> None:
    """Serialize lock (entries sorted by path) and atomically replace path."""
    data = {
        "version": lock.version or LOCK_VERSION,
        "files": {
            target: {
                "source_url": entry.source_url,
                "applied_hash": entry.applied_hash,
                "source_hash": entry.source_hash,
                "updated_at": entry.updated_at,
            }
            for target, entry in sorted(lock.files.items())
        },
    }
    write_text_atomic(path, dump_yaml(data))
    logger.debug(f"Wrote lock file {path} ({len(lock.files)} entries)")


def stage_entry(
    lock: LockFile,
    target: str,
    *,
    source_url: str,
    applied_hash: str,
    source_hash: str,
    now: datetime,
) -> LockEntry:
    """Record a fresh baseline for target in the in-memory lock."""
    entry = LockEntry(
        source_url=source_url,
        applied_hash=applied_hash,
        source_hash=source_hash,
        updated_at=format_timestamp(now),
    )
    lock.files[target] = entry
    return entry
