"""Backups of prior file contents before an overwrite."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from stencil_core.errors import ValidationError
from stencil_core.models import BACKUP_NONE, BACKUP_TIMESTAMP

logger = logging.getLogger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def backup_path_for(path: Path, now: datetime) -> Path:
    """``<path>.<YYYYMMDDhhmmss>.bak``"""
    return path.with_name(f"{path.name}.{now.strftime(BACKUP_TIMESTAMP_FORMAT)}.bak")


def backup_file(path: Path, content: bytes, strategy: str, now: datetime) -> Path | None:
    """
    Persist content (the bytes about to be overwritten) per strategy.

    Returns the backup path, or None when the strategy writes nothing.
    """
    if strategy == BACKUP_NONE or not strategy:
        return None
    if strategy != BACKUP_TIMESTAMP:
        raise ValidationError(f"unsupported backup strategy {strategy!r}")

    dest = backup_path_for(path, now)
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(content)
    logger.debug(f"Backed up {path} -> {dest.name}")
    return dest
