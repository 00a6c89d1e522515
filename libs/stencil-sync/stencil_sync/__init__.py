"""Stencil Sync - fetch, decode, and three-way merge engine."""

from stencil_sync.archive import ArchiveEntry, DecodedArtifact, decode_artifact
from stencil_sync.engine import ManifestSync, SyncFileProgress, SyncOptions, SyncResult, sync
from stencil_sync.fetch import HttpFetcher
from stencil_sync.merge import MergeDecision, Outcome, decide_merge, merge_file

__all__ = [
    "ManifestSync",
    "SyncOptions",
    "SyncResult",
    "SyncFileProgress",
    "sync",
    "HttpFetcher",
    "ArchiveEntry",
    "DecodedArtifact",
    "decode_artifact",
    "MergeDecision",
    "Outcome",
    "decide_merge",
    "merge_file",
]

__version__ = "0.1.0"
