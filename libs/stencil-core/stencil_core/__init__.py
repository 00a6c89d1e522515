"""Stencil Core - models, digests, lock store, and configuration."""

from stencil_core.config import (
    RuleSettings,
    build_sync_config,
    load_project_config,
    resolve_profile_files,
    resolve_rule_settings,
    validate_sync_config,
)
from stencil_core.digest import (
    ChecksumSpec,
    compute_digest,
    content_hash,
    parse_checksum_spec,
    verify_checksum,
)
from stencil_core.lockfile import LOCK_FILE_NAME, load_lock, save_lock
from stencil_core.models import (
    FileRule,
    LockEntry,
    LockFile,
    ProjectConfig,
    Repository,
    RepositoryFile,
    Source,
    SyncConfig,
)

__all__ = [
    # digest
    "ChecksumSpec",
    "compute_digest",
    "content_hash",
    "parse_checksum_spec",
    "verify_checksum",
    # lock store
    "LOCK_FILE_NAME",
    "load_lock",
    "save_lock",
    # config
    "RuleSettings",
    "build_sync_config",
    "load_project_config",
    "resolve_profile_files",
    "resolve_rule_settings",
    "validate_sync_config",
    "FileRule",
    "LockEntry",
    "LockFile",
    "ProjectConfig",
    "Repository",
    "RepositoryFile",
    "Source",
    "SyncConfig",
]

__version__ = "0.1.0"
