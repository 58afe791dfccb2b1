"""Parsing of source strings into structured repository references."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

DEFAULT_SKILLS_PATH = "skills"


class GitProvider(str, Enum):
    """Known repository hosts."""

    GITHUB = "github"
    GITLAB = "gitlab"


PROVIDER_HOSTS = {
    "github.com": GitProvider.GITHUB,
    "gitlab.com": GitProvider.GITLAB,
}


class SourceParseError(ValueError):
    """Raised when a source string cannot be parsed."""


@dataclass(frozen=True)
class SourceReference:
    """A parsed source: which repository, at which ref, under which path."""

    provider: GitProvider
    owner: str
    repo: str
    ref: Optional[str] = None
    path: Optional[str] = None

    @property
    def skills_path(self) -> str:
        """Directory in the repository whose subdirectories are skills."""
        return self.path or DEFAULT_SKILLS_PATH

    @property
    def lock_key(self) -> str:
        """Key identifying this source in the lockfile.

        The ref is deliberately excluded; it is tracked as ``requestedRef``.
        """
        key = f"{self.owner}/{self.repo}"
        if self.path:
            key = f"{key}:{self.path}"
        if self.provider is not GitProvider.GITHUB:
            key = f"{self.provider.value}:{key}"
        return key


def parse_source(source: str) -> SourceReference:
    """Parse a source string into a SourceReference.

    Supported forms:
        https://github.com/owner/repo[/tree/<ref>[/<path>]]
        github:owner/repo, gitlab:owner/repo
        owner/repo[:path][@ref]   (``:`` is split off before ``@``)

    Args:
        source: The source string as written in configuration

    Returns:
        Parsed SourceReference

    Raises:
        SourceParseError: If the source is malformed or the host is unknown
    """
    source = source.strip()
    if not source:
        raise SourceParseError("Invalid source: source cannot be empty.")

    if source.startswith(("http://", "https://")):
        return _parse_url(source)

    colon = source.find(":")
    slash = source.find("/")
    if colon != -1 and (slash == -1 or colon < slash):
        prefix = source[:colon]
        try:
            provider = GitProvider(prefix.lower())
        except ValueError:
            provider = None
        if provider is not None:
            return _parse_shorthand(source[colon + 1 :], provider, source)

    return _parse_shorthand(source, GitProvider.GITHUB, source)


def _parse_url(url: str) -> SourceReference:
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    if host.startswith("www."):
        host = host[len("www.") :]

    provider = PROVIDER_HOSTS.get(host)
    if provider is None:
        supported = ", ".join(p.value for p in GitProvider)
        raise SourceParseError(
            f"Unknown Git provider for host: {host or url}. Supported providers: {supported}"
        )

    segments = [s for s in parts.path.split("/") if s]
    if len(segments) < 2:
        raise SourceParseError(
            f"Invalid {provider.value} URL: {url}. Expected format: https://{host}/owner/repo"
        )

    owner = segments[0]
    repo = _strip_git_suffix(segments[1])
    if not repo:
        raise SourceParseError(f"Invalid {provider.value} URL: {url}. Repository name is empty.")

    ref = None
    path = None
    if len(segments) > 2 and segments[2] in ("tree", "blob"):
        if len(segments) < 4:
            raise SourceParseError(
                f"Invalid {provider.value} URL: {url}. Missing ref after '/{segments[2]}/'."
            )
        ref = segments[3]
        if len(segments) > 4:
            path = "/".join(segments[4:])

    return SourceReference(provider=provider, owner=owner, repo=repo, ref=ref, path=path)


def _parse_shorthand(text: str, provider: GitProvider, original: str) -> SourceReference:
    remaining = text
    path = None
    ref = None

    colon = remaining.find(":")
    if colon != -1:
        path = remaining[colon + 1 :]
        if not path:
            raise SourceParseError(f'Invalid source: {original}. Path cannot be empty after ":".')
        remaining = remaining[:colon]

    at = remaining.find("@")
    if at != -1:
        ref = remaining[at + 1 :]
        if not ref:
            raise SourceParseError(f'Invalid source: {original}. Ref cannot be empty after "@".')
        remaining = remaining[:at]

    slash = remaining.find("/")
    if slash == -1:
        raise SourceParseError(
            f"Invalid source: {original}. Expected format: owner/repo, owner/repo@ref, "
            f"or owner/repo:path (got {remaining!r})"
        )

    owner = remaining[:slash]
    repo = _strip_git_suffix(remaining[slash + 1 :])
    if not owner or not repo:
        raise SourceParseError(
            f"Invalid source: {original}. Both owner and repo are required (got {remaining!r})."
        )
    if "/" in repo:
        raise SourceParseError(
            f"Invalid source: {original}. Unexpected '/' in repository name {repo!r}."
        )

    return SourceReference(provider=provider, owner=owner, repo=repo, ref=ref, path=path)


def _strip_git_suffix(repo: str) -> str:
    return repo[: -len(".git")] if repo.endswith(".git") else repo
