"""Path utilities for creating directories and sandboxing filesystem paths."""

import re
from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists

    Returns:
        The path that was ensured
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def check_path_traversal(relative_path: str, intended_root: Path) -> Path:
    """Resolve a relative path under a root, rejecting anything that escapes it.

    Any ``..`` segment is rejected even when the result would stay inside the
    root.

    Args:
        relative_path: Path relative to ``intended_root``
        intended_root: Directory the path must stay within

    Returns:
        The resolved absolute path

    Raises:
        ValueError: If the path contains ``..`` or resolves outside the root
    """
    if ".." in re.split(r"[/\\]", relative_path):
        raise ValueError(f"Path traversal detected: {relative_path}")

    root = intended_root.resolve()
    resolved = (root / relative_path).resolve()
    if resolved != root and root not in resolved.parents:
        raise ValueError(f"Path traversal detected: {relative_path}")
    return resolved


def is_strictly_within(path: Path, root: Path) -> bool:
    """Return True if ``path`` resolves to a location strictly below ``root``."""
    resolved_root = root.resolve()
    return resolved_root in path.resolve().parents
