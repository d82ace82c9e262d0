"""Decide whether a check applies to this machine."""

from __future__ import annotations

import os
import platform
import shutil
from dataclasses import dataclass
from typing import TYPE_CHECKING

from buildbouncer.core.log import logger

if TYPE_CHECKING:
    from buildbouncer.core.config import CheckSpec


@dataclass(frozen=True)
class SkipDecision:
    """Outcome of skip evaluation. An empty reason means run the check."""

    reason: str = ""

    @property
    def skip(self) -> bool:
        return bool(self.reason)

    @property
    def run(self) -> bool:
        return not self.reason


def current_os() -> str:
    """Host OS as one of windows, macos, linux."""
    system = platform.system()
    if system == "Windows":
        return "windows"
    if system == "Darwin":
        return "macos"
    return "linux"


def normalize_os_value(value: str) -> str | None:
    """Map a free-form OS tag to windows, macos or linux.

    Matching is by case-insensitive substring, so ``windows-latest`` and
    ``ubuntu-22.04`` work. Unrecognized values map to None.
    """
    lower = value.strip().lower()
    if not lower:
        return None
    if "windows" in lower:
        return "windows"
    if "macos" in lower or "osx" in lower or "darwin" in lower:
        return "macos"
    if "linux" in lower or "ubuntu" in lower:
        return "linux"
    return None


def normalize_os_values(values) -> list[str]:
    """Normalize, drop unrecognized values, dedupe keeping first-seen order."""
    allowed: list[str] = []
    for value in values:
        normalized = normalize_os_value(value)
        if normalized and normalized not in allowed:
            allowed.append(normalized)
    return allowed


def applies_to_os(check: CheckSpec) -> tuple[bool, list[str]]:
    """Check the OS constraint.

    Returns:
        (applies, allowed) where allowed is the normalized OS list; an
        empty list means the check has no usable constraint
    """
    allowed = normalize_os_values(check.os)
    if not allowed:
        return True, []
    return current_os() in allowed, allowed


def first_token(value: str) -> str:
    fields = value.split()
    return fields[0] if fields else ""


def tool_exists(tool: str) -> bool:
    """Paths are checked on disk, bare names searched on PATH."""
    if "/" in tool or "\\" in tool:
        return os.path.exists(tool)
    return shutil.which(tool) is not None


def missing_tools(check: CheckSpec) -> list[str]:
    """Required tools, plus the configured shell, that cannot be found.

    Only the first whitespace token of each entry is considered. ``cmd``
    is never reported since it ships with Windows.
    """
    candidates = [first_token(spec) for spec in check.requires]

    shell = (check.shell or "").strip()
    if shell:
        base = os.path.basename(shell.replace("\\", "/")).lower()
        if base not in ("cmd", "cmd.exe"):
            candidates.append(first_token(shell))

    seen: set[str] = set()
    missing: list[str] = []
    for tool in candidates:
        if not tool or tool in seen:
            continue
        seen.add(tool)
        if not tool_exists(tool):
            missing.append(tool)
    return missing


def evaluate_skip(check: CheckSpec) -> SkipDecision:
    """Decide whether check should run here.

    The OS constraint is evaluated first; tools are only looked up when
    the OS matches.

    Args:
        check: The check to evaluate

    Returns:
        SkipDecision with an empty reason, or one of
        ``os mismatch (want a,b)`` and ``missing tools: x, y``
    """
    applies, allowed = applies_to_os(check)
    if not applies:
        reason = f"os mismatch (want {','.join(allowed)})"
        logger.debug("Skipping check", check=check.name, reason=reason)
        return SkipDecision(reason)

    missing = missing_tools(check)
    if missing:
        reason = f"missing tools: {', '.join(missing)}"
        logger.debug("Skipping check", check=check.name, reason=reason)
        return SkipDecision(reason)

    return SkipDecision()
