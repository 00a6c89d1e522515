from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import pytest
from stencil_core.digest import compute_digest, content_hash
from stencil_core.errors import (
    ChecksumMismatchError,
    FetchError,
    PathEscapeError,
    RootDirRequiredError,
    SyncConflictError,
    ValidationError,
)
from stencil_core.lockfile import load_lock
from stencil_core.models import FileRule, Source, SyncConfig
from stencil_sync import Outcome, SyncOptions, sync

from tests.framework import (
    ArtifactServer,
    make_tar,
    make_zstd,
    read_file,
    run_sync,
    single_rule_config,
    write_file,
)

NOW = datetime(2026, 3, 1, 8, 30, 0, tzinfo=timezone.utc)


def _key(root: Path, rel: str) -> str:
    return os.path.abspath(root / rel)


def test_three_way_lifecycle(tmp_path):
    server = ArtifactServer()
    url = server.serve("f.txt", "v1")
    cfg = single_rule_config(url, merge="three_way")

    result = run_sync(server, cfg, tmp_path)
    assert result.created == 1
    assert read_file(tmp_path / "f.txt") == "v1"
    entry = load_lock(tmp_path / "stencil.lock").files[_key(tmp_path, "f.txt")]
    assert entry.applied_hash == content_hash(b"v1")
    assert entry.source_url == url

    write_file(tmp_path / "f.txt", "local")
    result = run_sync(server, cfg, tmp_path)
    assert result.skipped == 1
    assert read_file(tmp_path / "f.txt") == "local"

    server.serve("f.txt", "v2")
    lock_before = (tmp_path / "stencil.lock").read_bytes()

    with pytest.raises(SyncConflictError) as exc:
        run_sync(server, cfg, tmp_path)
    assert exc.value.result.conflicts == ["f.txt"]
    assert read_file(tmp_path / "f.txt") == "local"
    assert (tmp_path / "stencil.lock").read_bytes() == lock_before


def test_fast_forward_when_local_untouched(tmp_path):
    server = ArtifactServer()
    url = server.serve("f.txt", "v1")
    cfg = single_rule_config(url)
    run_sync(server, cfg, tmp_path)

    server.serve("f.txt", "v2")
    result = run_sync(server, cfg, tmp_path)
    assert result.updated == 1
    assert read_file(tmp_path / "f.txt") == "v2"
    entry = load_lock(tmp_path / "stencil.lock").files[_key(tmp_path, "f.txt")]
    assert entry.applied_hash == content_hash(b"v2")


def test_local_edit_kept_when_upstream_unchanged(tmp_path):
    server = ArtifactServer()
    cfg = single_rule_config(server.serve("f.txt", "v1"))
    run_sync(server, cfg, tmp_path)
    write_file(tmp_path / "f.txt", "local")

    result = run_sync(server, cfg, tmp_path)
    assert result.skipped == 1
    assert read_file(tmp_path / "f.txt") == "local"


def test_rerun_is_idempotent(tmp_path):
    server = ArtifactServer()
    cfg = single_rule_config(server.serve("f.txt", "v1"))
    run_sync(server, cfg, tmp_path, now=lambda: NOW)
    lock_bytes = (tmp_path / "stencil.lock").read_bytes()

    later = datetime(2027, 1, 1, tzinfo=timezone.utc)
    result = run_sync(server, cfg, tmp_path, now=lambda: later)
    assert result.unchanged == 1
    assert (tmp_path / "stencil.lock").read_bytes() == lock_bytes


def test_unchanged_content_is_adopted_as_baseline(tmp_path):
    server = ArtifactServer()
    cfg = single_rule_config(server.serve("f.txt", "v1"))
    write_file(tmp_path / "f.txt", "v1")

    result = run_sync(server, cfg, tmp_path)
    assert result.unchanged == 1
    lock = load_lock(tmp_path / "stencil.lock")
    assert lock.files[_key(tmp_path, "f.txt")].applied_hash == content_hash(b"v1")


@pytest.mark.parametrize("mode", ["overwrite", "keep_local", "three_way"])
def test_dry_run_writes_nothing(tmp_path, mode):
    server = ArtifactServer()
    cfg = SyncConfig(
        sources={"a": Source(url=server.serve("a", "new")), "b": Source(url=server.serve("b", "b"))},
        files=[
            FileRule(source="a", path="existing.txt", merge=mode, backup="timestamp"),
            FileRule(source="b", path="sub/new.txt", merge=mode),
        ],
    )
    write_file(tmp_path / "existing.txt", "new")
    before = sorted(p.relative_to(tmp_path) for p in tmp_path.rglob("*"))

    result = run_sync(server, cfg, tmp_path, dry_run=True)
    assert result.unchanged == 1
    assert result.created == 1
    assert sorted(p.relative_to(tmp_path) for p in tmp_path.rglob("*")) == before


def test_dry_run_reports_conflicts(tmp_path):
    server = ArtifactServer()
    cfg = single_rule_config(server.serve("f.txt", "upstream"))
    write_file(tmp_path / "f.txt", "local")
    with pytest.raises(SyncConflictError):
        run_sync(server, cfg, tmp_path, dry_run=True)
    assert not (tmp_path / "stencil.lock").exists()


def test_keep_local_and_overwrite_with_backup(tmp_path):
    server = ArtifactServer()
    cfg = SyncConfig(
        sources={"a": Source(url=server.serve("a", "A2")), "b": Source(url=server.serve("b", "B2"))},
        files=[
            FileRule(source="a", path="a.txt", merge="keep_local"),
            FileRule(source="b", path="b.txt", merge="overwrite", backup="timestamp"),
        ],
    )
    write_file(tmp_path / "a.txt", "A-local")
    write_file(tmp_path / "b.txt", "B-local")

    result = run_sync(server, cfg, tmp_path, now=lambda: NOW)
    assert (result.skipped, result.updated) == (1, 1)
    assert read_file(tmp_path / "a.txt") == "A-local"
    assert read_file(tmp_path / "b.txt") == "B2"
    assert read_file(tmp_path / "b.txt.20260301083000.bak") == "B-local"
    assert _key(tmp_path, "a.txt") not in load_lock(tmp_path / "stencil.lock").files


def test_mode_override_resolves_conflict(tmp_path):
    server = ArtifactServer()
    cfg = single_rule_config(server.serve("f.txt", "upstream"), merge="three_way")
    write_file(tmp_path / "f.txt", "local")

    result = run_sync(server, cfg, tmp_path, mode_override="overwrite", backup_override="timestamp", now=lambda: NOW)
    assert result.updated == 1
    assert read_file(tmp_path / "f.txt") == "upstream"
    assert read_file(tmp_path / "f.txt.20260301083000.bak") == "local"


def test_fetch_error_aborts_without_lock(tmp_path):
    server = ArtifactServer()
    url = server.serve("gone.txt", "nope", status=404)
    with pytest.raises(FetchError) as exc:
        run_sync(server, single_rule_config(url), tmp_path)
    assert exc.value.status_code == 404
    assert not (tmp_path / "stencil.lock").exists()
    assert not (tmp_path / "f.txt").exists()


def test_source_headers_are_sent(tmp_path):
    server = ArtifactServer()
    url = server.serve("f.txt", "v1")
    cfg = SyncConfig(
        sources={"src": Source(url=url, headers={"Authorization": "Bearer t0k"})},
        files=[FileRule(source="src", path="f.txt")],
    )
    run_sync(server, cfg, tmp_path)
    assert server.requests[0].headers["Authorization"] == "Bearer t0k"


def test_download_checksum_mismatch(tmp_path):
    server = ArtifactServer()
    bad = "sha256:" + "0" * 64
    cfg = single_rule_config(server.serve("f.txt", "v1"), download_checksum=bad)
    with pytest.raises(ChecksumMismatchError):
        run_sync(server, cfg, tmp_path)
    assert not (tmp_path / "f.txt").exists()


def test_zstd_with_output_checksum(tmp_path):
    server = ArtifactServer()
    artifact = make_zstd("decoded")
    cfg = single_rule_config(
        server.serve("f.txt.zst", artifact),
        encoding="zstd",
        download_checksum=f"blake3:{compute_digest(artifact, 'blake3')}",
        output_checksum=f"md5:{compute_digest(b'decoded', 'md5')}",
    )
    run_sync(server, cfg, tmp_path)
    assert read_file(tmp_path / "f.txt") == "decoded"
    entry = load_lock(tmp_path / "stencil.lock").files[_key(tmp_path, "f.txt")]
    assert entry.source_hash == content_hash(artifact)
    assert entry.applied_hash == content_hash(b"decoded")


def test_expand_archive_writes_every_file(tmp_path):
    server = ArtifactServer()
    archive = make_tar({"bin/run.sh": ("#!/bin/sh\n", 0o755), "conf/app.yaml": "a: 1\n"})
    cfg = single_rule_config(
        server.serve("bundle.tar.gz", archive), path="vendor", encoding="tar+gzip", expand_archive=True
    )
    result = run_sync(server, cfg, tmp_path)
    assert result.created == 1
    assert (tmp_path / "vendor/bin/run.sh").stat().st_mode & 0o777 == 0o755
    assert (tmp_path / "vendor/conf/app.yaml").stat().st_mode & 0o777 == 0o644

    lock = load_lock(tmp_path / "stencil.lock")
    assert list(lock.files) == [_key(tmp_path, "vendor")]


def test_directory_extract_with_output_checksum_is_rejected(tmp_path):
    server = ArtifactServer()
    archive = make_tar({"pkg/a.txt": "a", "pkg/b.txt": "b"})
    cfg = single_rule_config(
        server.serve("b.tar.gz", archive),
        path="out",
        encoding="tar+gzip",
        extract="pkg",
        output_checksum="md5:" + "0" * 32,
    )
    with pytest.raises(ValidationError):
        run_sync(server, cfg, tmp_path)
    assert not (tmp_path / "out").exists()


def test_escaping_archive_writes_nothing(tmp_path):
    server = ArtifactServer()
    archive = make_tar({"ok.txt": "fine", "../../evil.txt": "evil"})
    cfg = single_rule_config(
        server.serve("b.tar.gz", archive), path="out", encoding="tar+gzip", expand_archive=True
    )
    with pytest.raises(PathEscapeError):
        run_sync(server, cfg, tmp_path)
    assert list(tmp_path.iterdir()) == []


def test_root_dir_required():
    with pytest.raises(RootDirRequiredError):
        sync(single_rule_config("https://templates.example.com/x"), SyncOptions())


def test_validation_happens_before_any_download(tmp_path):
    server = ArtifactServer()
    cfg = SyncConfig(
        sources={"src": Source(url=server.serve("f.txt", "v1"))},
        files=[FileRule(source="src", path="a.txt"), FileRule(source="missing", path="b.txt")],
    )
    with pytest.raises(ValidationError):
        run_sync(server, cfg, tmp_path)
    assert server.requests == []
    assert not (tmp_path / "a.txt").exists()


def test_progress_callback_sees_each_rule(tmp_path):
    server = ArtifactServer()
    cfg = SyncConfig(
        sources={"a": Source(url=server.serve("a", "A")), "b": Source(url=server.serve("b", "B"))},
        files=[FileRule(source="a", path="a.txt"), FileRule(source="b", path="b.txt")],
    )
    write_file(tmp_path / "b.txt", "B")
    seen = []
    run_sync(server, cfg, tmp_path, on_file=seen.append)
    assert [(p.index, p.total, p.path, p.outcome) for p in seen] == [
        (1, 2, "a.txt", Outcome.CREATED),
        (2, 2, "b.txt", Outcome.UNCHANGED),
    ]


def test_profile_appends_rules(tmp_path):
    server = ArtifactServer()
    cfg = SyncConfig(
        sources={"a": Source(url=server.serve("a", "A")), "b": Source(url=server.serve("b", "B"))},
        files=[FileRule(source="a", path="a.txt")],
        profiles={"dev": [FileRule(source="b", path="dev/b.txt")]},
    )
    run_sync(server, cfg, tmp_path)
    assert not (tmp_path / "dev/b.txt").exists()

    result = run_sync(server, cfg, tmp_path, profile="dev")
    assert (result.unchanged, result.created) == (1, 1)
    assert read_file(tmp_path / "dev/b.txt") == "B"


def test_custom_lock_path(tmp_path):
    server = ArtifactServer()
    lock_path = tmp_path / "state" / "custom.lock"
    run_sync(server, single_rule_config(server.serve("f.txt", "v1")), tmp_path / "work", lock_path=lock_path)
    assert lock_path.exists()
    assert not (tmp_path / "work" / "stencil.lock").exists()
