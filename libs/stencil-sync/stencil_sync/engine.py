"""Manifest sync engine: fetch, verify, decode, merge, and record baselines."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from stencil_core.config import (
    RuleSettings,
    resolve_profile_files,
    resolve_rule_settings,
    validate_sync_config,
)
from stencil_core.digest import content_hash, verify_checksum
from stencil_core.errors import (
    ConflictError,
    RootDirRequiredError,
    SyncConflictError,
    ValidationError,
)
from stencil_core.lockfile import LOCK_FILE_NAME, load_lock, save_lock, stage_entry
from stencil_core.models import (
    MERGE_OVERWRITE,
    MERGE_THREE_WAY,
    FileRule,
    LockEntry,
    LockFile,
    SyncConfig,
)

from stencil_sync.archive import decode_artifact, resolve_archive_target_path, resolve_entry_mode
from stencil_sync.fetch import HttpFetcher
from stencil_sync.merge import Outcome, highest_outcome, merge_file

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncFileProgress:
    """Reported after each rule is processed."""

    index: int
    total: int
    path: str
    outcome: Outcome


@dataclass
class SyncOptions:
    """Controls one sync run."""

    root_dir: str | Path = ""
    lock_path: str | Path | None = None  # default: <root_dir>/stencil.lock
    mode_override: str = ""
    backup_override: str = ""
    dry_run: bool = False
    profile: str = ""
    now: Callable[[], datetime] | None = None
    on_file: Callable[[SyncFileProgress], None] | None = None


@dataclass
class SyncResult:
    """Counters per outcome plus the conflicting rule paths, in rule order."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    conflicts: list[str] = field(default_factory=list)

    def record(self, outcome: Outcome) -> None:
        if outcome == Outcome.CREATED:
            self.created += 1
        elif outcome == Outcome.UPDATED:
            self.updated += 1
        elif outcome == Outcome.UNCHANGED:
            self.unchanged += 1
        elif outcome == Outcome.SKIPPED:
            self.skipped += 1


@dataclass
class _Output:
    path: Path
    body: bytes
    file_mode: str


class ManifestSync:
    """Sync coordinator for one working tree."""

    def __init__(
        self,
        config: SyncConfig,
        options: SyncOptions,
        fetcher: HttpFetcher | None = None,
    ):
        self.config = config
        self.options = options
        self.fetcher = fetcher
        self._now = options.now or _utc_now
        self.lock: LockFile | None = None

    @property
    def root_path(self) -> Path:
        return Path(os.path.abspath(os.path.expanduser(str(self.options.root_dir))))

    @property
    def lock_path(self) -> Path:
        if self.options.lock_path:
            return Path(self.options.lock_path)
        return self.root_path / LOCK_FILE_NAME

    def resolve_target_path(self, rule_path: str) -> Path:
        """Absolute rule paths are kept; relative ones resolve against the root."""
        path = Path(os.path.expanduser(rule_path))
        if path.is_absolute():
            return Path(os.path.abspath(path))
        return Path(os.path.abspath(self.root_path / path))

    def sync(self) -> SyncResult:
        """
        Run every rule in declaration order.

        Conflicts are collected and reported through SyncConflictError at the
        end; any other error aborts the run. The lock file is written only when
        the run had no conflicts and is not a dry run.
        """
        if not str(self.options.root_dir or ""):
            raise RootDirRequiredError()
        validate_sync_config(self.config)
        rules = resolve_profile_files(self.config, self.options.profile)
        # settings for every rule are resolved before any download
        settings = [
            resolve_rule_settings(rule, self.options.mode_override, self.options.backup_override)
            for rule in rules
        ]

        self.lock = load_lock(self.lock_path)
        result = SyncResult()
        total = len(rules)

        fetcher = self.fetcher or HttpFetcher()
        try:
            for index, (rule, rule_settings) in enumerate(zip(rules, settings), start=1):
                try:
                    outcome = self._sync_rule(rule, rule_settings, self.lock, fetcher)
                except ConflictError as e:
                    logger.warning(f"Conflict: {rule.path} ({e.reason})")
                    result.conflicts.append(rule.path)
                    outcome = Outcome.CONFLICT
                else:
                    logger.info(f"[{index}/{total}] {rule.path}: {outcome.value}")

                result.record(outcome)
                if self.options.on_file is not None:
                    self.options.on_file(
                        SyncFileProgress(index=index, total=total, path=rule.path, outcome=outcome)
                    )
        finally:
            if self.fetcher is None:
                fetcher.close()

        if result.conflicts:
            raise SyncConflictError(result)
        if not self.options.dry_run:
            save_lock(self.lock_path, self.lock)
        return result

    def _sync_rule(
        self, rule: FileRule, settings: RuleSettings, lock: LockFile, fetcher: HttpFetcher
    ) -> Outcome:
        source = self.config.sources[rule.source]
        target = self.resolve_target_path(rule.path)

        artifact = fetcher.fetch(source)
        verify_checksum(artifact, rule.download_checksum)

        decoded = decode_artifact(artifact, rule.encoding, rule.extract, rule.expand_archive)
        if decoded.single:
            entry = decoded.entries[0]
            verify_checksum(entry.body, rule.output_checksum)
            outputs = [_Output(target, entry.body, resolve_entry_mode(rule.mode, entry.mode))]
        else:
            if rule.output_checksum:
                raise ValidationError(
                    f"{rule.path}: output_checksum cannot be used when extract "
                    "resolves to multiple files"
                )
            outputs = [
                _Output(
                    resolve_archive_target_path(target, entry.path),
                    entry.body,
                    resolve_entry_mode(rule.mode, entry.mode),
                )
                for entry in decoded.entries
            ]

        key = str(target)
        lock_entry = lock.files.get(key)
        now = self._now()

        # Only the first output is checked against the rule's baseline.
        outcomes: list[Outcome] = []
        for i, out in enumerate(outputs):
            mode = settings.merge
            if i > 0 and mode == MERGE_THREE_WAY:
                mode = MERGE_OVERWRITE
            outcomes.append(
                merge_file(
                    out.path,
                    out.body,
                    mode=mode,
                    backup=settings.backup,
                    lock_entry=lock_entry if i == 0 else None,
                    file_mode=out.file_mode,
                    dry_run=self.options.dry_run,
                    now=now,
                )
            )

        if outputs:
            applied_hash = content_hash(outputs[0].body)
            if _should_stage(outcomes[0], lock_entry, applied_hash, source.url):
                stage_entry(
                    lock,
                    key,
                    source_url=source.url,
                    applied_hash=applied_hash,
                    source_hash=content_hash(artifact),
                    now=now,
                )

        return highest_outcome(outcomes)


def _should_stage(
    outcome: Outcome, entry: LockEntry | None, applied_hash: str, source_url: str
) -> bool:
    if outcome in (Outcome.CREATED, Outcome.UPDATED):
        return True
    if outcome == Outcome.UNCHANGED:
        # adopt identical content as the baseline, without rewriting a matching entry
        return (
            entry is None or entry.applied_hash != applied_hash or entry.source_url != source_url
        )
    return False


def sync(
    config: SyncConfig, options: SyncOptions, fetcher: HttpFetcher | None = None
) -> SyncResult:
    """Run a sync; see ManifestSync.sync."""
    return ManifestSync(config, options, fetcher=fetcher).sync()
