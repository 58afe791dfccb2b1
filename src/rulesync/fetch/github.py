"""GitHub repository client using the GitHub REST API."""

import asyncio
import os
import re
from typing import Any, Awaitable, Callable, Optional, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from rulesync.fetch.protocols import RemoteClientError, RemoteEntry, RemoteErrorKind
from rulesync.utils.output import logger

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MiB
TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")

T = TypeVar("T")
_SHA_RE = re.compile(r"^[0-9a-f]{40}(?:[0-9a-f]{24})?$")


class GitHubClientError(RemoteClientError):
    """Error returned by the GitHub client."""


class GitHubRepoInfo(BaseModel):
    """Subset of the repository resource."""

    model_config = ConfigDict(extra="allow")

    default_branch: str
    private: bool = False


class GitHubReleaseAsset(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    browser_download_url: str
    size: int


class GitHubRelease(BaseModel):
    """Subset of the release resource."""

    model_config = ConfigDict(extra="allow")

    tag_name: str
    name: Optional[str] = None
    prerelease: bool = False
    draft: bool = False
    assets: list[GitHubReleaseAsset] = []


def resolve_token(explicit_token: Optional[str] = None) -> Optional[str]:
    """Pick the token to use: explicit value, then GITHUB_TOKEN, then GH_TOKEN."""
    if explicit_token:
        return explicit_token
    for name in TOKEN_ENV_VARS:
        if value := os.getenv(name):
            return value
    return None


def auth_hints() -> list[str]:
    return [
        "Tip: Set GITHUB_TOKEN or GH_TOKEN environment variable for private repositories "
        "or better rate limits.",
        "Tip: If you use GitHub CLI, you can use `GITHUB_TOKEN=$(gh auth token) rulesync install`",
    ]


class GitHubClient:
    """Client for reading repository contents from GitHub.

    Use as an async context manager so the underlying HTTP connection pool is
    closed; outside a context the pool is created lazily and must be closed
    with ``aclose()``.
    """

    BASE_URL = "https://api.github.com"
    MAX_RETRIES = 3
    RETRY_DELAY = 1.0  # seconds

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
        retry_delay: float | None = None,
    ):
        """Initialize GitHub client.

        Args:
            token: Optional GitHub personal access token for authenticated requests
            base_url: API endpoint, must be HTTPS (default: api.github.com)
            timeout: Request timeout in seconds
            retry_delay: Base delay between transport retries

        Raises:
            GitHubClientError: If ``base_url`` does not use HTTPS
        """
        base_url = (base_url or self.BASE_URL).rstrip("/")
        if not base_url.startswith("https://"):
            raise GitHubClientError(
                "GitHub API base URL must use HTTPS", kind=RemoteErrorKind.CONFIGURATION
            )

        self.token = token
        self.base_url = base_url
        self.timeout = timeout
        self.retry_delay = self.RETRY_DELAY if retry_delay is None else retry_delay
        self._headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._client: httpx.AsyncClient | None = None

    @property
    def has_token(self) -> bool:
        return bool(self.token)

    async def __aenter__(self) -> "GitHubClient":
        self._get_client()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=self.timeout,
                follow_redirects=True,
            )
        return self._client

    async def resolve_default_branch(self, owner: str, repo: str) -> str:
        """Get the default branch of a repository."""
        info = await self.get_repo_info(owner, repo)
        return info.default_branch

    async def get_repo_info(self, owner: str, repo: str) -> GitHubRepoInfo:
        data = await self._get_json(f"/repos/{owner}/{repo}")
        try:
            return GitHubRepoInfo.model_validate(data)
        except ValidationError as e:
            raise GitHubClientError(f"Invalid repository info response: {e}") from e

    async def repository_exists(self, owner: str, repo: str) -> bool:
        """Check that a repository exists and is accessible."""
        try:
            await self.get_repo_info(owner, repo)
        except GitHubClientError as e:
            if e.is_not_found:
                return False
            raise
        return True

    async def resolve_ref_to_commit(self, owner: str, repo: str, ref: str) -> str:
        """Resolve a branch, tag or SHA to a full commit SHA."""
        data = await self._get_json(f"/repos/{owner}/{repo}/commits/{quote(ref, safe='')}")
        sha = data.get("sha") if isinstance(data, dict) else None
        if not isinstance(sha, str) or not _SHA_RE.match(sha):
            raise GitHubClientError(f"Could not resolve ref {ref!r} of {owner}/{repo} to a commit")
        return sha

    async def list_directory(
        self, owner: str, repo: str, path: str, ref: Optional[str] = None
    ) -> list[RemoteEntry]:
        """List the contents of a directory.

        Entries that do not match the expected shape are skipped.

        Raises:
            GitHubClientError: With kind ``not-found`` if ``path`` is missing or
                is not a directory
        """
        data = await self._get_json(self._contents_path(owner, repo, path), ref=ref)
        if not isinstance(data, list):
            raise GitHubClientError(
                f'Not found: path "{path}" is not a directory',
                status_code=404,
                kind=RemoteErrorKind.NOT_FOUND,
            )

        entries = []
        for item in data:
            try:
                entries.append(RemoteEntry.model_validate(item))
            except ValidationError:
                continue
        return entries

    async def get_file_content(
        self, owner: str, repo: str, path: str, ref: Optional[str] = None
    ) -> str:
        """Download a file's raw content, refusing anything over MAX_FILE_SIZE.

        The size is checked against Content-Length first and then enforced
        while streaming, so an oversized body is never fully buffered.
        """
        url = self._contents_path(owner, repo, path)
        params = {"ref": ref} if ref else None
        headers = {"Accept": "application/vnd.github.raw"}

        async def download() -> bytes:
            client = self._get_client()
            async with client.stream("GET", url, params=params, headers=headers) as response:
                if not response.is_success:
                    await response.aread()
                    self._raise_for_status(response)

                declared = response.headers.get("Content-Length")
                if declared is not None and declared.isdigit() and int(declared) > MAX_FILE_SIZE:
                    raise self._too_large(path)

                chunks = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > MAX_FILE_SIZE:
                        raise self._too_large(path)
                    chunks.append(chunk)
                return b"".join(chunks)

        body = await self._with_retries(download)
        try:
            return body.decode("utf-8")
        except UnicodeDecodeError:
            logger.warn(
                f'File "{path}" is not valid UTF-8; undecodable bytes were replaced '
                "and the installed copy will differ from the remote file."
            )
            return body.decode("utf-8", errors="replace")

    async def get_latest_release(self, owner: str, repo: str) -> GitHubRelease:
        """Get the latest published release of a repository."""
        data = await self._get_json(f"/repos/{owner}/{repo}/releases/latest")
        try:
            return GitHubRelease.model_validate(data)
        except ValidationError as e:
            raise GitHubClientError(f"Invalid release info response: {e}") from e

    @staticmethod
    def _contents_path(owner: str, repo: str, path: str) -> str:
        return f"/repos/{owner}/{repo}/contents/{quote(path.strip('/'), safe='/')}"

    def _too_large(self, path: str) -> GitHubClientError:
        return GitHubClientError(
            f'File "{path}" exceeds maximum size limit of {MAX_FILE_SIZE // (1024 * 1024)}MB',
            kind=RemoteErrorKind.FILE_TOO_LARGE,
        )

    async def _get_json(self, url: str, ref: Optional[str] = None) -> Any:
        params = {"ref": ref} if ref else None

        async def request() -> Any:
            response = await self._get_client().get(url, params=params)
            self._raise_for_status(response)
            try:
                return response.json()
            except ValueError as e:
                raise GitHubClientError(
                    f"Invalid JSON response from {url}", kind=RemoteErrorKind.TRANSPORT
                ) from e

        return await self._with_retries(request)

    async def _with_retries(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run a request, retrying transport failures only."""
        for attempt in range(self.MAX_RETRIES):
            try:
                return await operation()
            except httpx.TransportError as e:
                if attempt < self.MAX_RETRIES - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                    continue
                raise GitHubClientError(
                    f"Network error talking to GitHub: {e}", kind=RemoteErrorKind.TRANSPORT
                ) from e

        raise GitHubClientError(
            f"Request failed after {self.MAX_RETRIES} attempts", kind=RemoteErrorKind.TRANSPORT
        )

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return

        status = response.status_code
        api_message = None
        try:
            body = response.json()
            if isinstance(body, dict) and isinstance(body.get("message"), str):
                api_message = body["message"]
        except ValueError:
            pass
        base = api_message or f"HTTP {status}"

        if status == 401:
            raise GitHubClientError(
                f"Authentication failed: {base}. Check your GitHub token.",
                status_code=status,
                kind=RemoteErrorKind.AUTH_FAILED,
                hints=auth_hints(),
            )
        if status == 403:
            if "rate limit" in base.lower():
                advice = "Try again later." if self.has_token else "Consider using a GitHub token."
                raise GitHubClientError(
                    f"GitHub API rate limit exceeded. {advice}",
                    status_code=status,
                    kind=RemoteErrorKind.RATE_LIMITED,
                    hints=auth_hints(),
                )
            raise GitHubClientError(
                f"Access forbidden: {base}. Check repository permissions.",
                status_code=status,
                kind=RemoteErrorKind.FORBIDDEN,
                hints=auth_hints(),
            )
        if status == 404:
            raise GitHubClientError(
                f"Not found: {base}", status_code=status, kind=RemoteErrorKind.NOT_FOUND
            )
        if status == 422:
            raise GitHubClientError(
                f"Invalid request: {base}",
                status_code=status,
                kind=RemoteErrorKind.INVALID_REQUEST,
            )
        raise GitHubClientError(f"GitHub API error: {base}", status_code=status)
