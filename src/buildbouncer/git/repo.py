"""Repository discovery without shelling out to git.

A repository is marked by ``.git`` being either a directory (normal
clone) or a small file whose first line is ``gitdir: <path>``
(worktrees and submodules).
"""

from __future__ import annotations

import os
from pathlib import Path

# Pointer files are tiny; never read more than this
_MAX_POINTER_BYTES = 4096
_GITDIR_PREFIX = "gitdir:"


def _read_gitdir_pointer(dot_git: Path) -> str | None:
    """Return the path text of a ``gitdir:`` pointer file, if valid.

    Only the first non-empty line counts. The prefix is matched
    case-insensitively; the path keeps its original casing.
    """
    try:
        with open(dot_git, "rb") as f:
            raw = f.read(_MAX_POINTER_BYTES)
    except OSError:
        return None

    text = raw.decode("utf-8", errors="replace")
    first = next(
        (line.strip() for line in text.splitlines() if line.strip()), ""
    )
    if not first.lower().startswith(_GITDIR_PREFIX):
        return None

    path_text = first[len(_GITDIR_PREFIX):].strip()
    return path_text or None


def is_git_marker(path: Path) -> bool:
    """Check whether ``path`` is a ``.git`` directory or pointer file."""
    if path.is_dir():
        return True
    if not path.is_file():
        return False
    return _read_gitdir_pointer(path) is not None


def find_repo_root(start: Path | None = None) -> Path | None:
    """Walk up from ``start`` (default: cwd) to the repository root.

    Returns:
        The first directory containing a git marker, or None
    """
    directory = (start or Path.cwd()).resolve()
    for candidate in (directory, *directory.parents):
        if is_git_marker(candidate / ".git"):
            return candidate
    return None


def resolve_git_dir(repo_root: Path) -> Path | None:
    """Return the real git directory for a repository root.

    Follows ``gitdir:`` pointer files. Relative pointers are resolved
    against ``repo_root``. The target must exist as a directory.

    Args:
        repo_root: Directory that holds ``.git``

    Returns:
        Path to the git directory, or None if there is none
    """
    dot_git = Path(repo_root) / ".git"

    if dot_git.is_dir():
        return dot_git
    if not dot_git.is_file():
        return None

    path_text = _read_gitdir_pointer(dot_git)
    if path_text is None:
        return None

    git_dir = Path(path_text)
    if not git_dir.is_absolute():
        git_dir = Path(repo_root) / git_dir
    git_dir = Path(os.path.normpath(git_dir))

    if not git_dir.is_dir():
        return None
    return git_dir
