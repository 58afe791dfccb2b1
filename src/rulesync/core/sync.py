"""Source synchronization orchestrator.

For every configured source this module:
1. Reuses the locked commit or resolves the requested ref to a commit SHA
2. Short-circuits when the locked skills are already on disk at that commit
3. Lists remote skill directories and applies filter/precedence rules
4. Downloads changed skills into ``.rulesync/skills/.curated`` with bounded
   concurrency and hashes them
5. Merges the result into the lockfile

Afterwards stale lock entries are pruned and the lockfile is written only if
it changed.
"""

import asyncio
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Sequence

from rulesync.config.schema import SourceEntry
from rulesync.core.lockfile import (
    FetchedFile,
    LockedSkill,
    LockedSource,
    SourcesLock,
    compute_skill_integrity,
    get_locked_source,
    normalize_source_key,
    prune_lock,
    read_lockfile,
    serialize_lock,
    set_locked_source,
    write_lockfile,
)
from rulesync.core.skill import curated_dir, list_local_skill_names
from rulesync.core.source import GitProvider, SourceReference, parse_source
from rulesync.fetch.concurrency import (
    FETCH_CONCURRENCY_LIMIT,
    list_directory_recursive,
    with_semaphore,
)
from rulesync.fetch.github import MAX_FILE_SIZE, GitHubClient, resolve_token
from rulesync.fetch.protocols import (
    RemoteClientError,
    RemoteEntry,
    RemoteErrorKind,
    RemoteRepositoryClient,
)
from rulesync.utils.output import logger
from rulesync.utils.paths import check_path_traversal, ensure_dir, is_strictly_within

SUPPORTED_PROVIDERS = frozenset({GitProvider.GITHUB})
WILDCARD = "*"


class SyncError(Exception):
    """A sync run could not start or had to be aborted."""


class FrozenInstallError(SyncError):
    """The lockfile or curated cache does not match configuration in frozen mode."""


class UnsupportedProviderError(SyncError):
    """A source points at a provider that has no client implementation."""


@dataclass
class SyncOptions:
    """Options for a sync run.

    Attributes:
        update_sources: Re-resolve every ref even when the lockfile has one
        frozen: Verify lockfile and cache only; fail instead of fetching
        token: Explicit access token (takes precedence over environment)
        concurrency: Maximum simultaneous remote requests for the whole run
    """

    update_sources: bool = False
    frozen: bool = False
    token: Optional[str] = None
    concurrency: int = FETCH_CONCURRENCY_LIMIT


@dataclass(frozen=True)
class SyncResult:
    fetched_skill_count: int
    sources_processed: int


@dataclass(frozen=True)
class RemoteSkillDirectory:
    name: str
    path: str


@dataclass(frozen=True)
class PlannedSource:
    """A configured source after parsing."""

    entry: SourceEntry
    reference: SourceReference

    @property
    def key(self) -> str:
        return self.reference.lock_key


@dataclass
class SyncContext:
    """State shared by every source in one run.

    Attributes:
        base_dir: Project root containing ``.rulesync`` and ``rulesync.lock``
        client: Remote repository client
        semaphore: Run-wide limiter for remote requests
        lock: In-memory lockfile, mutated between sources
        options: Run options
        local_skill_names: Locally authored skills, which shadow remote ones
        claimed: Skill name -> key of the source that materialized it this run
    """

    base_dir: Path
    client: RemoteRepositoryClient
    semaphore: asyncio.Semaphore
    lock: SourcesLock
    options: SyncOptions
    local_skill_names: set[str] = field(default_factory=set)
    claimed: dict[str, str] = field(default_factory=dict)

    @property
    def curated_root(self) -> Path:
        return curated_dir(self.base_dir)


async def resolve_and_fetch_sources(
    sources: Sequence[SourceEntry],
    base_dir: Path,
    options: Optional[SyncOptions] = None,
    client: Optional[RemoteRepositoryClient] = None,
) -> SyncResult:
    """Fetch skills for all configured sources and update the lockfile.

    Args:
        sources: Configured source entries, processed in order
        base_dir: Project root
        options: Run options
        client: Remote client to use; a GitHubClient is created when omitted

    Returns:
        Number of skills downloaded and number of sources processed

    Raises:
        SourceParseError: If a source string is malformed
        UnsupportedProviderError: If a source uses a provider without a client
        FrozenInstallError: In frozen mode, if lockfile or cache is incomplete
        SyncError: For invalid option combinations
    """
    options = options or SyncOptions()
    base_dir = Path(base_dir)

    if not sources:
        return SyncResult(fetched_skill_count=0, sources_processed=0)

    if options.frozen and options.update_sources:
        raise SyncError("--frozen cannot be combined with --update.")

    planned = plan_sources(sources)

    lock = read_lockfile(base_dir)
    original_lock_json = serialize_lock(lock)

    if options.frozen:
        check_frozen(planned, lock, curated_dir(base_dir))

    semaphore = asyncio.Semaphore(options.concurrency)
    local_skill_names = list_local_skill_names(base_dir)

    if client is None:
        async with GitHubClient(token=resolve_token(options.token)) as github:
            context = SyncContext(
                base_dir, github, semaphore, lock, options, local_skill_names
            )
            total = await _sync_all(planned, context)
    else:
        context = SyncContext(base_dir, client, semaphore, lock, options, local_skill_names)
        total = await _sync_all(planned, context)

    removed = prune_lock(lock, [p.key for p in planned])
    if not options.frozen:
        for key, entry in removed.items():
            for name in entry.skills:
                if name not in context.claimed:
                    remove_curated_skill(context, name, key)

    if options.frozen:
        logger.debug("Frozen mode: lockfile left untouched.")
    elif serialize_lock(lock) != original_lock_json:
        write_lockfile(base_dir, lock)
    else:
        logger.debug("Lockfile unchanged, skipping write.")

    return SyncResult(fetched_skill_count=total, sources_processed=len(sources))


def plan_sources(sources: Sequence[SourceEntry]) -> list[PlannedSource]:
    """Parse every source up front so configuration errors abort before any I/O."""
    planned: list[PlannedSource] = []
    seen: dict[str, str] = {}

    for entry in sources:
        reference = parse_source(entry.source)
        if reference.provider not in SUPPORTED_PROVIDERS:
            raise UnsupportedProviderError(
                f'{reference.provider.value} sources are not yet supported: "{entry.source}"'
            )

        item = PlannedSource(entry=entry, reference=reference)
        normalized = normalize_source_key(item.key)
        if normalized in seen:
            raise SyncError(
                f'Source "{entry.source}" is declared more than once '
                f'(already declared as "{seen[normalized]}").'
            )
        seen[normalized] = entry.source
        planned.append(item)

    return planned


def check_frozen(planned: Sequence[PlannedSource], lock: SourcesLock, curated_root: Path) -> None:
    """Verify the lockfile and curated cache already satisfy configuration.

    Raises:
        FrozenInstallError: Listing every missing source, ref mismatch or skill
    """
    problems: list[str] = []

    for item in planned:
        source = item.entry.source
        locked = get_locked_source(lock, item.key)
        if locked is None:
            problems.append(f'source "{source}" has no lockfile entry')
            continue

        if locked.requested_ref != item.reference.ref:
            problems.append(
                f'source "{source}" is locked for ref '
                f"{locked.requested_ref or '(default branch)'} but configuration requests "
                f"{item.reference.ref or '(default branch)'}"
            )

        for name in locked.skills:
            if not (curated_root / name).is_dir():
                problems.append(f'skill "{name}" from source "{source}" is missing on disk')

    if problems:
        details = "\n".join(f"  - {p}" for p in problems)
        raise FrozenInstallError(
            "Frozen install failed: lockfile and curated skills are out of sync with "
            f"configuration:\n{details}\nRun 'rulesync install' without --frozen to update them."
        )


async def _sync_all(planned: Sequence[PlannedSource], context: SyncContext) -> int:
    total = 0
    for item in planned:
        try:
            total += await sync_source(item, context)
        except RemoteClientError as e:
            logger.error(f'Failed to fetch source "{item.entry.source}": {e}')
            for hint in e.hints:
                logger.info(hint)
        except Exception as e:
            logger.error(f'Failed to fetch source "{item.entry.source}": {e}')
    return total


def is_valid_skill_name(name: str) -> bool:
    return bool(name) and name != "." and not any(c in name for c in ("..", "/", "\\"))


async def sync_source(item: PlannedSource, context: SyncContext) -> int:
    """Synchronize one source into the curated cache and the in-memory lock.

    Returns:
        Number of skills downloaded for this source
    """
    reference = item.reference
    key = item.key
    options = context.options
    client = context.client
    semaphore = context.semaphore
    locked = get_locked_source(context.lock, key)

    if options.frozen and locked is not None:
        _claim(context, locked.skills, key)
        logger.debug(f"Frozen mode: using locked skills for {key}")
        return 0

    if locked is not None and not options.update_sources and (
        locked.requested_ref == reference.ref
    ):
        resolved_sha = locked.resolved_ref
        logger.debug(f"Using locked ref for {key}: {resolved_sha}")
    else:
        requested_ref = reference.ref
        if requested_ref is None:
            requested_ref = await with_semaphore(
                semaphore,
                lambda: client.resolve_default_branch(reference.owner, reference.repo),
            )
        resolved_sha = await with_semaphore(
            semaphore,
            lambda: client.resolve_ref_to_commit(reference.owner, reference.repo, requested_ref),
        )
        logger.debug(f'Resolved {key} ref "{requested_ref}" to SHA: {resolved_sha}')

    skill_filter = item.entry.effective_skills
    is_wildcard = WILDCARD in skill_filter

    if (
        locked is not None
        and not options.update_sources
        and locked.resolved_ref == resolved_sha
        and _locked_skills_current(context, locked, key)
    ):
        _claim(context, locked.skills, key)
        logger.debug(f"{key} is up to date at {resolved_sha}, skipping fetch.")
        return 0

    remote_dirs = await _list_remote_skills(context, reference, key, resolved_sha)

    if is_wildcard:
        candidates = remote_dirs
    else:
        candidates = [d for d in remote_dirs if d.name in skill_filter]
        missing = sorted(set(skill_filter) - {d.name for d in remote_dirs})
        if missing:
            logger.warn(f"Skill(s) not found in {key}: {', '.join(missing)}")

    selected: list[RemoteSkillDirectory] = []
    for skill_dir in candidates:
        name = skill_dir.name
        if not is_valid_skill_name(name):
            logger.warn(
                f'Skipping skill with invalid name "{name}" from {key}: '
                "contains path traversal characters."
            )
            continue
        if name in context.local_skill_names:
            logger.debug(f'Skipping remote skill "{name}" from {key}: local skill takes precedence.')
            continue
        owner_key = context.claimed.get(name)
        if owner_key is not None and owner_key != key:
            logger.warn(
                f'Skipping duplicate skill "{name}" from {key}: already fetched from {owner_key}.'
            )
            continue
        selected.append(skill_dir)

    previous = locked.skills if locked is not None else {}
    sha_changed = locked is not None and locked.resolved_ref != resolved_sha
    selected_names = {d.name for d in selected}

    to_remove = set(selected_names)
    for name in previous:
        if _claimed_elsewhere(context, name, key):
            continue
        if sha_changed or name in context.local_skill_names:
            to_remove.add(name)
    for name in sorted(to_remove):
        remove_curated_skill(context, name, key)

    hashes = await asyncio.gather(
        *(fetch_skill(context, reference, skill_dir, resolved_sha) for skill_dir in selected)
    )
    fetched = {d.name: skill for d, skill in zip(selected, hashes)}

    for name, skill in fetched.items():
        prev = previous.get(name)
        if prev is not None and prev.integrity and not sha_changed and prev.integrity != skill.integrity:
            logger.warn(
                f'Integrity mismatch for skill "{name}" from {key}: locked {prev.integrity}, '
                f"fetched {skill.integrity}. Content changed without the commit changing."
            )

    merged = dict(fetched)
    if not sha_changed:
        for name, entry in previous.items():
            if name in merged or name in context.local_skill_names:
                continue
            if _claimed_elsewhere(context, name, key):
                continue
            if (context.curated_root / name).is_dir():
                merged[name] = entry

    resolved_at = datetime.now(timezone.utc).isoformat()
    if (
        locked is not None
        and not sha_changed
        and locked.requested_ref == reference.ref
        and merged == locked.skills
    ):
        resolved_at = locked.resolved_at

    set_locked_source(
        context.lock,
        key,
        LockedSource(
            requested_ref=reference.ref,
            resolved_ref=resolved_sha,
            resolved_at=resolved_at,
            skills=merged,
        ),
    )
    _claim(context, merged, key)

    logger.info(
        f"Fetched {len(fetched)} skill(s) from {key}: {', '.join(fetched) or '(none)'}"
    )
    return len(fetched)


async def _list_remote_skills(
    context: SyncContext, reference: SourceReference, key: str, ref: str
) -> list[RemoteSkillDirectory]:
    try:
        entries = await with_semaphore(
            context.semaphore,
            lambda: context.client.list_directory(
                reference.owner, reference.repo, reference.skills_path, ref
            ),
        )
    except RemoteClientError as e:
        if not e.is_not_found:
            raise
        logger.warn(f"No {reference.skills_path}/ directory found in {key}. Skipping.")
        return []

    return [RemoteSkillDirectory(e.name, e.path) for e in entries if e.type == "dir"]


async def fetch_skill(
    context: SyncContext,
    reference: SourceReference,
    skill_dir: RemoteSkillDirectory,
    ref: str,
) -> LockedSkill:
    """Download one skill directory into the curated cache and hash it."""
    client = context.client
    semaphore = context.semaphore
    skill_root = context.curated_root / skill_dir.name
    prefix = skill_dir.path.rstrip("/") + "/"

    files = await list_directory_recursive(
        client, reference.owner, reference.repo, skill_dir.path, ref, semaphore
    )

    planned: list[tuple[RemoteEntry, str, Path]] = []
    for file in files:
        if file.size > MAX_FILE_SIZE:
            logger.warn(
                f'Skipping file "{file.path}" ({file.size / 1024 / 1024:.2f}MB exceeds '
                f"{MAX_FILE_SIZE // (1024 * 1024)}MB limit)."
            )
            continue
        if not file.path.startswith(prefix):
            raise ValueError(f'File "{file.path}" is outside skill directory "{skill_dir.path}"')
        relative = file.path[len(prefix) :]
        planned.append((file, relative, check_path_traversal(relative, skill_root)))

    async def download(file: RemoteEntry, relative: str, target: Path) -> Optional[FetchedFile]:
        try:
            content = await with_semaphore(
                semaphore,
                lambda: client.get_file_content(reference.owner, reference.repo, file.path, ref),
            )
        except RemoteClientError as e:
            if e.kind is not RemoteErrorKind.FILE_TOO_LARGE:
                raise
            logger.warn(f'Skipping file "{file.path}": {e}')
            return None

        ensure_dir(target.parent)
        target.write_bytes(content.encode("utf-8"))
        return FetchedFile(path=relative, content=content)

    results = await asyncio.gather(*(download(*p) for p in planned))
    fetched_files = [f for f in results if f is not None]

    logger.debug(f'Fetched skill "{skill_dir.name}" ({len(fetched_files)} file(s))')
    return LockedSkill(integrity=compute_skill_integrity(fetched_files))


def remove_curated_skill(context: SyncContext, name: str, key: str) -> None:
    """Delete a curated skill directory if it is strictly inside the curated root."""
    target = context.curated_root / name
    if not is_strictly_within(target, context.curated_root):
        logger.warn(
            f'Refusing to remove "{target}" for {key}: path is outside {context.curated_root}.'
        )
        return
    if target.is_dir():
        shutil.rmtree(target)


def _locked_skills_current(context: SyncContext, locked: LockedSource, key: str) -> bool:
    for name in locked.skills:
        if name in context.local_skill_names or _claimed_elsewhere(context, name, key):
            return False
        if not (context.curated_root / name).is_dir():
            return False
    return True


def _claimed_elsewhere(context: SyncContext, name: str, key: str) -> bool:
    owner_key = context.claimed.get(name)
    return owner_key is not None and owner_key != key


def _claim(context: SyncContext, names: Iterable[str], key: str) -> None:
    for name in names:
        context.claimed.setdefault(name, key)
