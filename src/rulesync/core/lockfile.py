"""The sources lockfile (``rulesync.lock``).

Records, per configured source, the ref that was requested, the commit SHA it
resolved to and an integrity hash for every skill fetched from it.
"""

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rulesync.utils.output import logger
from rulesync.utils.paths import ensure_dir

LOCKFILE_NAME = "rulesync.lock"
LOCKFILE_VERSION = 1

_URL_PREFIXES = (
    "https://www.github.com/",
    "https://github.com/",
    "http://www.github.com/",
    "http://github.com/",
)


class LockedSkill(BaseModel):
    integrity: str


class LockedSource(BaseModel):
    """Locked state of one source."""

    model_config = ConfigDict(populate_by_name=True)

    requested_ref: Optional[str] = Field(default=None, alias="requestedRef")
    resolved_ref: str = Field(alias="resolvedRef")
    resolved_at: Optional[str] = Field(default=None, alias="resolvedAt")
    skills: dict[str, LockedSkill]


class SourcesLock(BaseModel):
    """Current lockfile schema."""

    model_config = ConfigDict(populate_by_name=True)

    lockfile_version: int = Field(alias="lockfileVersion")
    sources: dict[str, LockedSource]


class LegacyLockedSource(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resolved_ref: str = Field(alias="resolvedRef")
    skills: list[str]


class LegacySourcesLock(BaseModel):
    """Pre-versioning schema: skills were a plain list of names."""

    sources: dict[str, LegacyLockedSource]


@dataclass(frozen=True)
class FetchedFile:
    """A downloaded file, relative to its skill directory."""

    path: str
    content: str


def create_empty_lock() -> SourcesLock:
    return SourcesLock(lockfile_version=LOCKFILE_VERSION, sources={})


def lockfile_path(base_dir: Path) -> Path:
    return Path(base_dir) / LOCKFILE_NAME


def migrate_legacy_lock(legacy: LegacySourcesLock) -> SourcesLock:
    """Upgrade a legacy lockfile. Integrity cannot be recomputed, so it is left empty."""
    sources = {
        key: LockedSource(
            resolved_ref=entry.resolved_ref,
            skills={name: LockedSkill(integrity="") for name in entry.skills},
        )
        for key, entry in legacy.sources.items()
    }
    logger.info(
        f"Migrated legacy sources lockfile to version {LOCKFILE_VERSION}. "
        "Run 'rulesync install --update' to populate integrity hashes."
    )
    return SourcesLock(lockfile_version=LOCKFILE_VERSION, sources=sources)


def parse_lock_data(data: object) -> SourcesLock:
    """Interpret decoded lockfile JSON.

    Tries the current schema, then the legacy one, then gives up and returns
    an empty lock.
    """
    try:
        return SourcesLock.model_validate(data)
    except ValidationError:
        pass

    try:
        legacy = LegacySourcesLock.model_validate(data)
    except ValidationError:
        logger.warn(f"Invalid sources lockfile format ({LOCKFILE_NAME}). Starting fresh.")
        return create_empty_lock()
    return migrate_legacy_lock(legacy)


def read_lockfile(base_dir: Path) -> SourcesLock:
    """Read the lockfile from ``base_dir``.

    Never raises: a missing, unreadable or unrecognized lockfile yields an
    empty lock so installation can proceed.
    """
    path = lockfile_path(base_dir)
    if not path.exists():
        logger.debug("No sources lockfile found, starting fresh.")
        return create_empty_lock()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        logger.warn(f"Failed to read sources lockfile ({LOCKFILE_NAME}). Starting fresh.")
        return create_empty_lock()

    return parse_lock_data(data)


def serialize_lock(lock: SourcesLock) -> str:
    """Render the lock exactly as it is written to disk."""
    data = lock.model_dump(by_alias=True, exclude_none=True)
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def write_lockfile(base_dir: Path, lock: SourcesLock) -> Path:
    path = lockfile_path(base_dir)
    ensure_dir(path.parent)
    path.write_text(serialize_lock(lock), encoding="utf-8")
    logger.debug(f"Wrote sources lockfile to {path}")
    return path


def compute_skill_integrity(files: Iterable[FetchedFile]) -> str:
    """Hash a skill's complete file set.

    Files are sorted by path, then each contributes ``path NUL content NUL``
    to a single SHA-256, so the result is independent of fetch order.
    """
    digest = hashlib.sha256()
    for file in sorted(files, key=lambda f: f.path):
        digest.update(file.path.encode("utf-8"))
        digest.update(b"\0")
        digest.update(file.content.encode("utf-8"))
        digest.update(b"\0")
    return f"sha256-{digest.hexdigest()}"


def normalize_source_key(source: str) -> str:
    """Normalize a source key for lookups.

    Strips GitHub URL and ``github:`` prefixes, trailing slashes and a
    ``.git`` suffix, then lowercases, so ``https://github.com/Foo/Bar.git/``,
    ``github:Foo/Bar`` and ``foo/bar`` all map to ``foo/bar``.
    """
    key = source.strip()
    lowered = key.lower()
    for prefix in _URL_PREFIXES:
        if lowered.startswith(prefix):
            key = key[len(prefix) :]
            break

    if key.lower().startswith("github:"):
        key = key[len("github:") :]

    key = key.rstrip("/")
    if key.lower().endswith(".git"):
        key = key[: -len(".git")]
    key = key.rstrip("/")

    return key.lower()


def get_locked_source(lock: SourcesLock, source_key: str) -> Optional[LockedSource]:
    """Find the entry whose key normalizes to the same identity as ``source_key``."""
    normalized = normalize_source_key(source_key)
    for key, entry in lock.sources.items():
        if normalize_source_key(key) == normalized:
            return entry
    return None


def set_locked_source(lock: SourcesLock, source_key: str, entry: LockedSource) -> str:
    """Insert or replace the entry for ``source_key``.

    The first existing spelling of the key is kept; any other spellings of the
    same source are removed.

    Returns:
        The key the entry was stored under
    """
    normalized = normalize_source_key(source_key)
    matches = [key for key in lock.sources if normalize_source_key(key) == normalized]
    stored_key = matches[0] if matches else source_key
    for duplicate in matches[1:]:
        del lock.sources[duplicate]
    lock.sources[stored_key] = entry
    return stored_key


def prune_lock(lock: SourcesLock, keep_keys: Iterable[str]) -> dict[str, LockedSource]:
    """Drop entries whose normalized key is not among ``keep_keys``.

    Returns:
        The removed entries, keyed as they were stored
    """
    keep = {normalize_source_key(key) for key in keep_keys}
    removed = {
        key: entry
        for key, entry in lock.sources.items()
        if normalize_source_key(key) not in keep
    }
    for key in removed:
        del lock.sources[key]
        logger.debug(f"Pruned stale lockfile entry: {key}")
    return removed
