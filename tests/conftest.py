"""Shared pytest fixtures for rulesync tests."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pytest

from rulesync.fetch.github import MAX_FILE_SIZE
from rulesync.fetch.protocols import RemoteClientError, RemoteEntry, RemoteErrorKind
from rulesync.utils.output import logger

SHA_A = "a" * 40
SHA_B = "b" * 40

WRITER_SKILL_MD = """---
name: writer
description: Drafts prose in the house style
---

# Writer
"""


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep tests independent of the caller's tokens, overrides and verbosity."""
    for name in ("GITHUB_TOKEN", "GH_TOKEN", "RULESYNC_FETCH_CONCURRENCY"):
        monkeypatch.delenv(name, raising=False)
    logger.configure()
    yield
    logger.configure()


@dataclass
class FakeRepo:
    default_branch: str = "main"
    refs: dict[str, str] = field(default_factory=dict)
    trees: dict[str, dict[str, str]] = field(default_factory=dict)


def _not_found(what: str) -> RemoteClientError:
    return RemoteClientError(
        f"Not found: {what}", status_code=404, kind=RemoteErrorKind.NOT_FOUND
    )


class FakeRepositoryClient:
    """In-memory RemoteRepositoryClient.

    Repositories are flat ``{path: content}`` trees keyed by commit SHA. Every
    call is recorded in ``calls`` and the highest number of simultaneous calls
    is tracked in ``max_in_flight``.
    """

    def __init__(self, delay: float = 0.0):
        self.repos: dict[tuple[str, str], FakeRepo] = {}
        self.calls: list[tuple[str, ...]] = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.extra_entries: dict[str, list[RemoteEntry]] = {}
        self.oversized: set[str] = set()

    def add_repo(
        self,
        owner: str,
        repo: str,
        files: dict[str, str],
        ref: str = "main",
        sha: str = SHA_A,
        default_branch: str = "main",
    ) -> FakeRepo:
        fake = self.repos.setdefault(
            (owner.lower(), repo.lower()), FakeRepo(default_branch=default_branch)
        )
        fake.default_branch = default_branch
        fake.refs[ref] = sha
        fake.refs[sha] = sha
        fake.trees[sha] = dict(files)
        return fake

    @property
    def network_calls(self) -> int:
        return len(self.calls)

    def calls_named(self, name: str) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[0] == name]

    @asynccontextmanager
    async def _request(self, *call: str):
        self.calls.append(call)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            yield
        finally:
            self.in_flight -= 1

    def _repo(self, owner: str, repo: str) -> FakeRepo:
        try:
            return self.repos[(owner.lower(), repo.lower())]
        except KeyError:
            raise _not_found(f"{owner}/{repo}") from None

    def _tree(self, owner: str, repo: str, ref: Optional[str]) -> dict[str, str]:
        fake = self._repo(owner, repo)
        sha = fake.refs.get(ref or fake.default_branch, ref)
        if sha not in fake.trees:
            raise _not_found(f"{owner}/{repo}@{ref}")
        return fake.trees[sha]

    async def resolve_default_branch(self, owner: str, repo: str) -> str:
        async with self._request("resolve_default_branch", owner, repo):
            return self._repo(owner, repo).default_branch

    async def resolve_ref_to_commit(self, owner: str, repo: str, ref: str) -> str:
        async with self._request("resolve_ref_to_commit", owner, repo, ref):
            fake = self._repo(owner, repo)
            if ref not in fake.refs:
                raise _not_found(f"commit {ref}")
            return fake.refs[ref]

    async def list_directory(
        self, owner: str, repo: str, path: str, ref: Optional[str] = None
    ) -> list[RemoteEntry]:
        async with self._request("list_directory", owner, repo, path):
            tree = self._tree(owner, repo, ref)
            prefix = path.strip("/") + "/"
            children: dict[str, RemoteEntry] = {}
            for file_path, content in tree.items():
                if not file_path.startswith(prefix):
                    continue
                rest = file_path[len(prefix) :]
                head = rest.split("/", 1)[0]
                is_dir = "/" in rest
                size = MAX_FILE_SIZE + 1 if file_path in self.oversized else len(content.encode())
                children.setdefault(
                    head,
                    RemoteEntry(
                        name=head,
                        path=prefix + head,
                        sha="0" * 40,
                        size=0 if is_dir else size,
                        type="dir" if is_dir else "file",
                    ),
                )
            entries = list(children.values()) + self.extra_entries.get(path, [])
            if not entries:
                raise _not_found(path)
            return entries

    async def get_file_content(
        self, owner: str, repo: str, path: str, ref: Optional[str] = None
    ) -> str:
        async with self._request("get_file_content", owner, repo, path):
            tree = self._tree(owner, repo, ref)
            if path not in tree:
                raise _not_found(path)
            return tree[path]

    async def repository_exists(self, owner: str, repo: str) -> bool:
        async with self._request("repository_exists", owner, repo):
            return (owner.lower(), repo.lower()) in self.repos


@pytest.fixture
def fake_client():
    return FakeRepositoryClient()


@pytest.fixture
def project_dir(tmp_path) -> Path:
    """An empty project root."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def acme_files():
    """Files of a remote repository offering two skills."""
    return {
        "README.md": "# acme skills\n",
        "skills/writer/SKILL.md": WRITER_SKILL_MD,
        "skills/writer/prompts/intro.md": "Start with a hook.\n",
        "skills/reviewer/SKILL.md": "---\nname: reviewer\n---\n",
    }


def make_local_skill(base_dir: Path, name: str) -> Path:
    skill = base_dir / ".rulesync" / "skills" / name
    skill.mkdir(parents=True)
    (skill / "SKILL.md").write_text(f"---\nname: {name}\n---\n")
    return skill


@pytest.fixture
def sample_skill_md(tmp_path) -> Path:
    """Create a SKILL.md with YAML frontmatter."""
    skill_dir = tmp_path / "writer"
    skill_dir.mkdir()
    skill_md = skill_dir / "SKILL.md"
    skill_md.write_text(
        """---
name: writer
description: Drafts prose
version: 1.0
tags:
  - prose
  - style
---

# Writer

Write things.
"""
    )
    return skill_md
