"""Merge engine: decide what to do with one target file, then write it."""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from stencil_core.digest import content_hash
from stencil_core.errors import ConflictError, ModeFormatError, UnsupportedModeError
from stencil_core.models import (
    BACKUP_NONE,
    MERGE_KEEP_LOCAL,
    MERGE_OVERWRITE,
    MERGE_THREE_WAY,
    LockEntry,
)

from stencil_sync.backup import backup_file

logger = logging.getLogger(__name__)

DEFAULT_PERMISSIONS = 0o644
_OCTAL_RE = re.compile(r"[0-7]{1,5}")


class Outcome(Enum):
    """Per-file (and per-rule) result."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    CONFLICT = "conflict"


# Rule-level outcome of a fan-out is the highest-ranked entry outcome.
OUTCOME_PRIORITY = {
    Outcome.UPDATED: 3,
    Outcome.CREATED: 2,
    Outcome.SKIPPED: 1,
    Outcome.UNCHANGED: 0,
}


class MergeDecision(Enum):
    """What the merge engine decided for a target."""

    NO_OP = "no_op"  # content already identical
    WRITE = "write"  # create or update
    SKIP = "skip"  # keep local bytes
    CONFLICT = "conflict"


def decide_merge(
    current: bytes | None, incoming: bytes, baseline: str, mode: str
) -> MergeDecision:
    """
    Decide the action for one target.

    `current` is None when the target does not exist; `baseline` is the lock
    entry's applied hash ('' when there is none).
    """
    incoming_hash = content_hash(incoming)
    current_hash = content_hash(current) if current is not None else None

    if current_hash is not None and current_hash == incoming_hash:
        return MergeDecision.NO_OP

    if mode == MERGE_OVERWRITE:
        return MergeDecision.WRITE

    if mode == MERGE_KEEP_LOCAL:
        return MergeDecision.SKIP if current is not None else MergeDecision.WRITE

    if mode == MERGE_THREE_WAY:
        if current is None:
            return MergeDecision.WRITE
        if not baseline:
            # local content with no recorded baseline
            return MergeDecision.CONFLICT
        if current_hash == baseline:
            # local untouched since last sync: fast-forward
            return MergeDecision.WRITE
        if incoming_hash == baseline:
            # upstream unchanged, local edited: local wins
            return MergeDecision.SKIP
        return MergeDecision.CONFLICT

    raise UnsupportedModeError(mode)


def read_current(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def resolve_output_mode(value: str | None) -> int:
    """Octal mode string -> permission bits ('' means 0644)."""
    raw = (value or "").strip()
    if not raw:
        return DEFAULT_PERMISSIONS
    if not _OCTAL_RE.fullmatch(raw):
        raise ModeFormatError(raw)
    parsed = int(raw, 8)
    if parsed > 0o7777:
        raise ModeFormatError(raw)
    return parsed


def merge_file(
    target: Path,
    incoming: bytes,
    *,
    mode: str,
    backup: str = BACKUP_NONE,
    lock_entry: LockEntry | None = None,
    file_mode: str = "",
    dry_run: bool = False,
    now: datetime | None = None,
) -> Outcome:
    """
    Reconcile target with incoming bytes under mode and write if needed.

    Raises ConflictError when three_way cannot prove the local bytes are safe
    to discard; the target is left untouched in that case.
    """
    current = read_current(target)
    baseline = lock_entry.applied_hash if lock_entry else ""
    decision = decide_merge(current, incoming, baseline, mode)

    if decision == MergeDecision.NO_OP:
        return Outcome.UNCHANGED
    if decision == MergeDecision.SKIP:
        logger.info(f"Keeping local changes: {target}")
        return Outcome.SKIPPED
    if decision == MergeDecision.CONFLICT:
        reason = "no recorded baseline" if not baseline else "local and upstream both changed"
        raise ConflictError(target, reason)

    return write_target(
        target,
        incoming,
        current,
        file_mode=file_mode,
        backup=backup,
        dry_run=dry_run,
        now=now,
    )


def write_target(
    path: Path,
    incoming: bytes,
    current: bytes | None,
    *,
    file_mode: str = "",
    backup: str = BACKUP_NONE,
    dry_run: bool = False,
    now: datetime | None = None,
) -> Outcome:
    """Back up the previous bytes, then atomically write incoming with its mode."""
    perm = resolve_output_mode(file_mode)
    existed = current is not None
    outcome = Outcome.UPDATED if existed else Outcome.CREATED
    if dry_run:
        return outcome

    if existed:
        backup_file(path, current, backup, now or datetime.now(timezone.utc))

    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.parent / f".{path.name}.stenciltmp"
    try:
        temp_path.write_bytes(incoming)
        os.chmod(temp_path, perm)
        temp_path.replace(path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise
    return outcome


def highest_outcome(outcomes: list[Outcome]) -> Outcome:
    """Rule-level outcome for a fan-out: updated > created > skipped > unchanged."""
    if not outcomes:
        return Outcome.UNCHANGED
    return max(outcomes, key=lambda o: OUTCOME_PRIORITY.get(o, 0))
