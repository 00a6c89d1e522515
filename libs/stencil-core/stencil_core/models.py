"""Core data models for Stencil."""

from pydantic import BaseModel, ConfigDict, Field

ENCODING_NONE = ""
ENCODING_ZSTD = "zstd"
ENCODING_TAR_GZIP = "tar+gzip"
ENCODING_TAR_XZ = "tar+xz"
SUPPORTED_ENCODINGS = (ENCODING_NONE, ENCODING_ZSTD, ENCODING_TAR_GZIP, ENCODING_TAR_XZ)
ARCHIVE_ENCODINGS = (ENCODING_TAR_GZIP, ENCODING_TAR_XZ)

MERGE_OVERWRITE = "overwrite"
MERGE_KEEP_LOCAL = "keep_local"
MERGE_THREE_WAY = "three_way"
MERGE_MODES = (MERGE_OVERWRITE, MERGE_KEEP_LOCAL, MERGE_THREE_WAY)

BACKUP_NONE = "none"
BACKUP_TIMESTAMP = "timestamp"
BACKUP_STRATEGIES = (BACKUP_NONE, BACKUP_TIMESTAMP)

SYNC_CONFIG_VERSION = "v1"
LOCK_VERSION = "v1"


class Source(BaseModel):
    """A downloadable artifact (in sync config `sources`)."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(default="", description="HTTP(S) URL fetched with one GET")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")


class FileRule(BaseModel):
    """One fetch-and-place operation (in sync config `files`)."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(default="", description="Id of a declared Source")
    path: str = Field(default="", description="Target path, relative to the root dir")
    mode: str = Field(default="", description="Octal file mode, e.g. '0755'")
    merge: str = Field(default="", description="overwrite | keep_local | three_way")
    backup: str = Field(default="", description="none | timestamp")
    download_checksum: str = Field(default="", description="algo:hex of the raw download")
    output_checksum: str = Field(default="", description="algo:hex of the decoded output")
    encoding: str = Field(default="", description="'' | zstd | tar+gzip | tar+xz")
    extract: str = Field(default="", description="Archive member or directory to select")
    expand_archive: bool = Field(default=False, description="Write every archive member")


class SyncConfig(BaseModel):
    """Normalized sync manifest consumed by the engine."""

    version: str = Field(default=SYNC_CONFIG_VERSION)
    sources: dict[str, Source] = Field(default_factory=dict)
    files: list[FileRule] = Field(default_factory=list)
    profiles: dict[str, list[FileRule]] = Field(
        default_factory=dict, description="profile name -> rules appended to `files`"
    )


class RepositoryFileOptions(BaseModel):
    """Per-file merge settings in the `repositories` shorthand (`x_stencil`)."""

    merge: str = Field(default="")
    backup: str = Field(default="")


class RepositoryFile(BaseModel):
    """One file listed under a repository."""

    file_name: str = Field(default="", description="Path appended to the repository URL")
    download_digest: str = Field(default="")
    output_digest: str = Field(default="")
    encoding: str = Field(default="")
    extract: str = Field(default="")
    out_dir: str = Field(default="", description="Target directory ($VARS expanded)")
    rename: str = Field(default="", description="Target file name override")
    mode: str = Field(default="")
    x_stencil: RepositoryFileOptions | None = Field(default=None)


class Repository(BaseModel):
    """Groups downloadable files under one base URL."""

    model_config = ConfigDict(populate_by_name=True)

    comment: str = Field(default="", alias="_comment")
    url: str = Field(default="")
    headers: dict[str, str] = Field(default_factory=dict)
    files: list[RepositoryFile] = Field(default_factory=list)


class ProjectConfig(BaseModel):
    """Top-level project file (stencil.yaml). Unknown keys are ignored."""

    version: int | str = Field(default=1)
    sources: dict[str, Source] = Field(default_factory=dict)
    files: list[FileRule] = Field(default_factory=list)
    profiles: dict[str, list[FileRule]] = Field(default_factory=dict)
    repositories: list[Repository] = Field(default_factory=list)


class LockEntry(BaseModel):
    """Merge baseline for one target path."""

    source_url: str = Field(default="")
    applied_hash: str = Field(default="", description="SHA256 hex of the bytes last written")
    source_hash: str = Field(default="", description="SHA256 hex of the raw download")
    updated_at: str = Field(default="", description="UTC timestamp, ISO-8601")


class LockFile(BaseModel):
    """Persistent sync state (stencil.lock)."""

    version: str = Field(default=LOCK_VERSION)
    files: dict[str, LockEntry] = Field(
        default_factory=dict, description="absolute target path -> baseline"
    )
