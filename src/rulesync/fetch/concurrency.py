"""Bounded concurrent listing and download helpers.

A single ``asyncio.Semaphore`` is created per sync run and passed to every
helper here, so recursive fan-out inside one skill shares the same request
slots as every other skill and source in the run.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from rulesync.fetch.protocols import RemoteEntry, RemoteRepositoryClient

FETCH_CONCURRENCY_LIMIT = 10
MAX_RECURSION_DEPTH = 15

T = TypeVar("T")


class RecursionDepthExceededError(RuntimeError):
    """Raised when a remote directory tree is nested deeper than allowed."""


async def with_semaphore(
    semaphore: asyncio.Semaphore, operation: Callable[[], Awaitable[T]]
) -> T:
    """Run ``operation`` while holding one slot of ``semaphore``.

    The slot is released when the operation finishes, including on error.
    """
    async with semaphore:
        return await operation()


async def list_directory_recursive(
    client: RemoteRepositoryClient,
    owner: str,
    repo: str,
    path: str,
    ref: str,
    semaphore: asyncio.Semaphore,
    depth: int = 0,
) -> list[RemoteEntry]:
    """List every file below ``path``, descending into subdirectories in parallel.

    Only the listing request itself holds a semaphore slot; the recursion
    does not, so nested listings can never deadlock on their parent.

    Args:
        client: Remote repository client
        owner: Repository owner
        repo: Repository name
        path: Directory to list
        ref: Commit SHA (or other ref) to list at
        semaphore: Run-wide request limiter
        depth: Current nesting depth (0 for the starting directory)

    Returns:
        File entries in no particular order; symlinks and submodules are skipped

    Raises:
        RecursionDepthExceededError: If nesting exceeds MAX_RECURSION_DEPTH
    """
    if depth > MAX_RECURSION_DEPTH:
        raise RecursionDepthExceededError(
            f"Directory recursion exceeded max depth of {MAX_RECURSION_DEPTH}: {path}"
        )

    entries = await with_semaphore(
        semaphore, lambda: client.list_directory(owner, repo, path, ref)
    )

    files = [e for e in entries if e.type == "file"]
    subdirs = [e for e in entries if e.type == "dir"]

    nested = await asyncio.gather(
        *(
            list_directory_recursive(
                client, owner, repo, subdir.path, ref, semaphore, depth + 1
            )
            for subdir in subdirs
        )
    )
    for group in nested:
        files.extend(group)
    return files
