"""Skill directory layout, discovery and SKILL.md parsing."""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

RULESYNC_DIR = ".rulesync"
CURATED_DIR_NAME = ".curated"
SKILL_FILE = "SKILL.md"


def skills_dir(base_dir: Path) -> Path:
    """Directory of locally authored skills: ``<base>/.rulesync/skills``."""
    return Path(base_dir) / RULESYNC_DIR / "skills"


def curated_dir(base_dir: Path) -> Path:
    """Directory of fetched skills: ``<base>/.rulesync/skills/.curated``."""
    return skills_dir(base_dir) / CURATED_DIR_NAME


def list_local_skill_names(base_dir: Path) -> set[str]:
    """Names of locally authored skills (every directory except ``.curated``)."""
    root = skills_dir(base_dir)
    if not root.is_dir():
        return set()
    return {p.name for p in root.iterdir() if p.is_dir() and p.name != CURATED_DIR_NAME}


@dataclass
class SkillMetadata:
    """Metadata parsed from a skill's SKILL.md frontmatter."""

    name: str
    description: Optional[str] = None
    version: Optional[str] = None
    author: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_yaml(cls, data: dict[str, Any]) -> "SkillMetadata":
        """Create metadata from parsed YAML."""
        data = dict(data)
        name = str(data.pop("name"))
        description = data.pop("description", None)
        version = data.pop("version", None)
        author = data.pop("author", None)
        return cls(
            name=name,
            description=description,
            version=None if version is None else str(version),
            author=author,
            extra=data,
        )


def parse_skill_md(skill_md_path: Path) -> Optional[SkillMetadata]:
    """Parse YAML frontmatter from SKILL.md; None if absent or malformed."""
    try:
        content = skill_md_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None

    # Match YAML frontmatter: --- at start, content, --- to close
    match = re.match(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", content, re.DOTALL)
    if not match:
        return None

    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError:
        return None
    if not isinstance(data, dict) or "name" not in data:
        return None
    return SkillMetadata.from_yaml(data)


@dataclass
class CuratedSkill:
    """A fetched skill as it exists in the curated cache."""

    name: str
    path: Path
    metadata: Optional[SkillMetadata] = None

    @classmethod
    def load(cls, base_dir: Path, name: str) -> "CuratedSkill":
        path = curated_dir(base_dir) / name
        skill_md = path / SKILL_FILE
        metadata = parse_skill_md(skill_md) if skill_md.is_file() else None
        return cls(name=name, path=path, metadata=metadata)

    @property
    def exists(self) -> bool:
        return self.path.is_dir()

    @property
    def description(self) -> Optional[str]:
        return self.metadata.description if self.metadata else None
