"""Source parsing, lockfile and sync orchestration."""

from rulesync.core.lockfile import SourcesLock, read_lockfile, write_lockfile
from rulesync.core.source import SourceReference, parse_source
from rulesync.core.sync import SyncOptions, SyncResult, resolve_and_fetch_sources

__all__ = [
    "SourceReference",
    "SourcesLock",
    "SyncOptions",
    "SyncResult",
    "parse_source",
    "read_lockfile",
    "resolve_and_fetch_sources",
    "write_lockfile",
]
