"""Pydantic models for rulesync configuration."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rulesync.fetch.concurrency import FETCH_CONCURRENCY_LIMIT


class SourceEntry(BaseModel):
    """A remote repository to fetch skills from."""

    source: str = Field(
        description="Repository reference: URL, owner/repo, owner/repo@ref or owner/repo:path"
    )
    skills: Optional[list[str]] = Field(
        default=None, description="Skill names to fetch (default: all, i.e. ['*'])"
    )

    @field_validator("source")
    @classmethod
    def validate_source_not_empty(cls, v: str) -> str:
        """Validate source is not blank."""
        if not v.strip():
            raise ValueError("source cannot be empty")
        return v.strip()

    @property
    def effective_skills(self) -> list[str]:
        """The skill filter, with an unset or empty list meaning everything."""
        return list(self.skills) if self.skills else ["*"]


class RulesyncConfig(BaseModel):
    """Root configuration (``rulesync.jsonc``).

    Only the keys used by source installation are modelled; other rulesync
    settings in the same file are ignored.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    schema_url: Optional[str] = Field(default=None, alias="$schema")
    sources: list[SourceEntry] = Field(
        default_factory=list, description="Remote skill sources, processed in order"
    )
    concurrency: int = Field(
        default=FETCH_CONCURRENCY_LIMIT,
        ge=1,
        description="Maximum simultaneous requests to the remote host",
    )
