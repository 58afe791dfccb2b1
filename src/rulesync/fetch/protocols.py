"""Provider-agnostic interface for reading remote repositories."""

from enum import Enum
from typing import Literal, Optional, Protocol

from pydantic import BaseModel, ConfigDict


class RemoteErrorKind(str, Enum):
    """Categories of remote client failures."""

    NOT_FOUND = "not-found"
    AUTH_FAILED = "auth-failed"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate-limited"
    INVALID_REQUEST = "invalid-request"
    API_ERROR = "api-error"
    TRANSPORT = "transport-error"
    FILE_TOO_LARGE = "file-too-large"
    CONFIGURATION = "configuration"


class RemoteClientError(Exception):
    """Error raised by a remote repository client.

    Attributes:
        status_code: HTTP status (or equivalent) when the remote answered
        kind: Normalized error category
        hints: Provider-specific suggestions shown to the user
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        kind: RemoteErrorKind = RemoteErrorKind.API_ERROR,
        hints: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.kind = kind
        self.hints = hints or []

    @property
    def is_not_found(self) -> bool:
        return self.kind is RemoteErrorKind.NOT_FOUND


class RemoteEntry(BaseModel):
    """One item from a directory listing."""

    model_config = ConfigDict(extra="allow")

    name: str
    path: str
    sha: str
    size: int
    type: Literal["file", "dir", "symlink", "submodule"]
    download_url: Optional[str] = None


class RemoteRepositoryClient(Protocol):
    """Operations the sync engine needs from a repository host."""

    async def resolve_default_branch(self, owner: str, repo: str) -> str:
        """Return the name of the repository's default branch."""
        ...

    async def resolve_ref_to_commit(self, owner: str, repo: str, ref: str) -> str:
        """Resolve a branch, tag or SHA to the full commit SHA."""
        ...

    async def list_directory(
        self, owner: str, repo: str, path: str, ref: Optional[str] = None
    ) -> list[RemoteEntry]:
        """List a directory. Raises a not-found error if ``path`` is not a directory."""
        ...

    async def get_file_content(
        self, owner: str, repo: str, path: str, ref: Optional[str] = None
    ) -> str:
        """Return a file's content decoded as UTF-8."""
        ...

    async def repository_exists(self, owner: str, repo: str) -> bool:
        """Return True if the repository exists and is accessible."""
        ...
