"""Sync configuration: loading, repositories expansion, validation, rule settings."""

from __future__ import annotations

import logging
import os
import posixpath
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import httpx
from pydantic import ValidationError as PydanticValidationError
from ruamel.yaml.error import YAMLError

from stencil_core.digest import normalize_checksum
from stencil_core.errors import ChecksumError, FetchError, ValidationError
from stencil_core.models import (
    ARCHIVE_ENCODINGS,
    BACKUP_NONE,
    BACKUP_STRATEGIES,
    ENCODING_ZSTD,
    MERGE_OVERWRITE,
    MERGE_THREE_WAY,
    SUPPORTED_ENCODINGS,
    SYNC_CONFIG_VERSION,
    FileRule,
    ProjectConfig,
    Repository,
    RepositoryFile,
    Source,
    SyncConfig,
)
from stencil_core.yamlio import load_yaml

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "stencil.yaml"
CONFIG_ENV_VAR = "STENCIL_CONFIG"

DEFAULT_MERGE = MERGE_THREE_WAY
DEFAULT_BACKUP = BACKUP_NONE


# ---- loading -----------------------------------------------------------------


def default_config_location() -> str:
    """Config location from STENCIL_CONFIG, else ./stencil.yaml."""
    return os.environ.get(CONFIG_ENV_VAR) or CONFIG_FILE_NAME


def is_remote_location(value: str) -> bool:
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def parse_project_config(text: str | bytes, origin: str = "<memory>") -> ProjectConfig:
    try:
        data = load_yaml(text)
    except YAMLError as e:
        raise ValidationError(f"{origin}: invalid YAML: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(f"{origin}: top level must be a mapping")
    try:
        return ProjectConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"{origin}: {e}") from e


def load_project_config(location: str | Path) -> ProjectConfig:
    """Load stencil.yaml from a local path or an http(s) URL."""
    location = str(location)
    if is_remote_location(location):
        try:
            resp = httpx.get(location, follow_redirects=True)
        except httpx.HTTPError as e:
            raise FetchError(location, reason=str(e)) from e
        if not resp.is_success:
            raise FetchError(location, resp.status_code)
        return parse_project_config(resp.content, origin=location)

    path = Path(location).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"config not found: {path}")
    return parse_project_config(path.read_bytes(), origin=str(path))


def resolve_root_dir(location: str | Path) -> Path:
    """Working root: directory of a local config file, cwd for a remote one."""
    location = str(location)
    if is_remote_location(location):
        return Path.cwd()
    return Path(location).expanduser().resolve().parent


# ---- repositories shorthand --------------------------------------------------


def build_sync_config(project: ProjectConfig) -> SyncConfig:
    """
    Combine explicit sources/files with the expansion of `repositories`.

    Each repository file becomes one Source (id ``r<i>f<j>``) and one FileRule,
    appended after the explicitly declared rules.
    """
    cfg = SyncConfig(
        version=SYNC_CONFIG_VERSION,
        sources=dict(project.sources),
        files=list(project.files),
        profiles={name: list(rules) for name, rules in project.profiles.items()},
    )

    for repo_index, repo in enumerate(project.repositories):
        if not repo.url.strip():
            raise ValidationError(f"repositories[{repo_index}].url is required")
        for file_index, file in enumerate(repo.files):
            source_id, source, rule = _build_sync_entry(repo, file, repo_index, file_index)
            if source_id in cfg.sources:
                raise ValidationError(
                    f"repositories[{repo_index}].files[{file_index}] source id {source_id!r} "
                    "collides with a declared source"
                )
            cfg.sources[source_id] = source
            cfg.files.append(rule)

    return cfg


def _build_sync_entry(
    repo: Repository, file: RepositoryFile, repo_index: int, file_index: int
) -> tuple[str, Source, FileRule]:
    where = f"repositories[{repo_index}].files[{file_index}]"
    encoding, extract = _validate_repository_file(file, where)

    expand_archive = encoding in ARCHIVE_ENCODINGS and extract == ""
    target_name = file.rename.strip()
    if not expand_archive and not target_name:
        target_name = derive_target_name(file.file_name, encoding, extract)
        if not target_name:
            raise ValidationError(f"{where} could not determine output filename")

    target_path = os.path.expandvars(file.out_dir)
    if not expand_archive:
        target_path = os.path.join(target_path, target_name)

    try:
        download_checksum = normalize_checksum(file.download_digest)
    except ChecksumError as e:
        raise ValidationError(f"{where}.download_digest {e}") from e
    try:
        output_checksum = normalize_checksum(file.output_digest)
    except ChecksumError as e:
        raise ValidationError(f"{where}.output_digest {e}") from e
    if expand_archive and output_checksum:
        raise ValidationError(
            f"{where}.output_digest cannot be used when extract is omitted for archive encodings"
        )

    options = file.x_stencil
    merge = (options.merge.strip() if options else "") or MERGE_OVERWRITE
    backup = (options.backup.strip() if options else "") or BACKUP_NONE

    source_id = f"r{repo_index}f{file_index}"
    source = Source(url=join_url(repo.url, file.file_name), headers=dict(repo.headers))
    rule = FileRule(
        source=source_id,
        path=target_path,
        mode="" if expand_archive else file.mode,
        merge=merge,
        backup=backup,
        download_checksum=download_checksum,
        output_checksum=output_checksum,
        encoding=encoding,
        extract=extract,
        expand_archive=expand_archive,
    )
    return source_id, source, rule


def _validate_repository_file(file: RepositoryFile, where: str) -> tuple[str, str]:
    if not file.file_name.strip():
        raise ValidationError(f"{where}.file_name is required")
    if not file.out_dir.strip():
        raise ValidationError(f"{where}.out_dir is required")

    encoding = file.encoding.strip().lower()
    if encoding not in SUPPORTED_ENCODINGS:
        allowed = ", ".join(repr(e) for e in SUPPORTED_ENCODINGS if e)
        raise ValidationError(f"{where}.encoding must be one of {allowed}")

    extract = file.extract.strip()
    if extract == ".":
        extract = ""
    if extract and encoding not in ARCHIVE_ENCODINGS:
        raise ValidationError(f"{where}.extract requires archive encoding")
    if encoding in ARCHIVE_ENCODINGS:
        try:
            extract = normalize_extract_path(extract)
        except ValueError as e:
            raise ValidationError(f"{where}.extract {e}") from e
    else:
        extract = ""
    return encoding, extract


def join_url(base: str, file_name: str) -> str:
    return base.strip().rstrip("/") + "/" + file_name.strip().lstrip("/")


def normalize_extract_path(raw: str) -> str:
    """Clean an archive selector; '' and '.' select nothing. Raises ValueError on escape."""
    value = raw.strip()
    if not value:
        return ""
    if value.startswith("./"):
        value = value[2:]
    cleaned = posixpath.normpath(value)
    if cleaned == ".":
        return ""
    if cleaned.startswith("/") or cleaned == ".." or cleaned.startswith("../"):
        raise ValueError("must stay within archive root")
    return cleaned


def derive_target_name(file_name: str, encoding: str, extract: str) -> str:
    if encoding in ARCHIVE_ENCODINGS:
        name = posixpath.basename(extract)
    elif encoding == ENCODING_ZSTD:
        name = posixpath.basename(file_name.strip())
        for suffix in (".zst", ".zstd"):
            if name.endswith(suffix):
                name = name[: -len(suffix)]
                break
    else:
        name = posixpath.basename(file_name.strip())
    return "" if name in (".", "/") else name


# ---- validation --------------------------------------------------------------


def validate_sync_config(cfg: SyncConfig) -> None:
    """Structural checks run before any I/O."""
    for source_id, src in cfg.sources.items():
        if not src.url:
            raise ValidationError(f"source {source_id!r} url is required")
    for i, rule in enumerate(cfg.files):
        _validate_rule(cfg, rule, f"files[{i}]")
    for name, rules in cfg.profiles.items():
        for i, rule in enumerate(rules):
            _validate_rule(cfg, rule, f"profiles.{name}.files[{i}]")


def _validate_rule(cfg: SyncConfig, rule: FileRule, where: str) -> None:
    if not rule.source:
        raise ValidationError(f"{where}.source is required")
    if rule.source not in cfg.sources:
        raise ValidationError(f"{where}.source {rule.source!r} not found in sources")
    if not rule.path:
        raise ValidationError(f"{where}.path is required")
    if rule.expand_archive and rule.output_checksum:
        raise ValidationError(f"{where}.output_checksum cannot be used with expand_archive")


def resolve_profile_files(cfg: SyncConfig, profile: str | None) -> list[FileRule]:
    """Base rules, followed by the named profile's rules."""
    if not profile:
        return list(cfg.files)
    if profile not in cfg.profiles:
        raise ValidationError(f"profile {profile!r} not found")
    return list(cfg.files) + list(cfg.profiles[profile])


# ---- per-rule settings -------------------------------------------------------


@dataclass(frozen=True)
class RuleSettings:
    merge: str
    backup: str


def resolve_setting(override: str | None, rule_value: str | None, default: str) -> str:
    """Call-site override > per-rule value > default; blanks count as unset."""
    for candidate in (override, rule_value):
        if candidate and candidate.strip():
            return candidate.strip()
    return default


def resolve_rule_settings(
    rule: FileRule, mode_override: str | None = None, backup_override: str | None = None
) -> RuleSettings:
    merge = resolve_setting(mode_override, rule.merge, DEFAULT_MERGE)
    backup = resolve_setting(backup_override, rule.backup, DEFAULT_BACKUP)
    if backup not in BACKUP_STRATEGIES:
        raise ValidationError(
            f"unsupported backup strategy {backup!r} for {rule.path!r}: "
            f"expected one of {', '.join(BACKUP_STRATEGIES)}"
        )
    # Unknown merge modes are left for the merge engine to reject.
    return RuleSettings(merge=merge, backup=backup)
