"""Environment preparation for check processes.

On Windows, PATH has to be spelled differently depending on who reads
it. bash and sh from Git for Windows (MSYS) or WSL want a colon list of
``/c/...`` or ``/mnt/c/...`` entries; everything else wants the native
``C:\\...;D:\\...`` form. Elsewhere the environment passes through as-is.
"""

from __future__ import annotations

from collections.abc import Mapping

from buildbouncer.core.log import logger
from buildbouncer.runner.shell import (
    ShellFlavor,
    ShellKind,
    detect_shell_flavor,
    is_windows,
)

WINDOWS_LIST_SEPARATOR = ";"
POSIX_LIST_SEPARATOR = ":"


def find_env_var(env: Mapping[str, str], name: str) -> str | None:
    """Return the key in env matching name case-insensitively, if any."""
    wanted = name.lower()
    for key in env:
        if key.lower() == wanted:
            return key
    return None


def apply_env_overrides(
    base: Mapping[str, str],
    overrides: Mapping[str, str] | None,
    fold_case: bool | None = None,
) -> dict[str, str]:
    """Merge a check's env on top of the inherited environment.

    Override keys are stripped; blank keys are ignored.

    Args:
        base: Inherited environment
        overrides: Variables from the check; these win
        fold_case: Replace existing variables regardless of case.
            Defaults to True on Windows, where variable names are
            case-insensitive.

    Returns:
        A new dict; base is not modified
    """
    merged = dict(base)
    if not overrides:
        return merged
    if fold_case is None:
        fold_case = is_windows()

    for raw_key, value in overrides.items():
        key = raw_key.strip()
        if not key:
            continue
        if fold_case:
            existing = find_env_var(merged, key)
            if existing is not None and existing != key:
                del merged[existing]
        merged[key] = value
    return merged


def clean_path_entry(entry: str) -> str:
    """Drop surrounding double quotes from a PATH entry."""
    return entry.strip('"')


def _is_ascii_letter(ch: str) -> bool:
    return ch.isascii() and ch.isalpha()


def looks_like_posix_path_list(value: str) -> bool:
    """Guess whether value uses ``:`` as a list separator.

    ``C:/Windows/System32`` has a colon but is a single Windows path, so
    a lone colon right after a drive letter does not count.
    """
    colons = value.count(":")
    if colons == 0:
        return False

    first = value.index(":")
    if colons == 1 and first == 1 and _is_ascii_letter(value[0]):
        return False
    if value.startswith("/"):
        return True
    if colons >= 2:
        return True
    return first > 1


def posix_to_windows_path(path: str) -> str | None:
    """Convert ``/c/x/y`` or ``/mnt/c/x/y`` into ``C:\\x\\y``.

    Returns:
        The Windows path, or None when path has neither shape
    """
    if path.startswith("/mnt/"):
        if len(path) < 7 or not _is_ascii_letter(path[5]) or path[6] != "/":
            return None
        drive, rest = path[5], path[7:]
    else:
        if (
            len(path) < 3
            or path[0] != "/"
            or not _is_ascii_letter(path[1])
            or path[2] != "/"
        ):
            return None
        drive, rest = path[1], path[3:]

    rest = rest.replace("/", "\\")
    return f"{drive.upper()}:\\{rest}"


def to_shell_path(path: str, flavor: ShellFlavor) -> str:
    """Convert a Windows path for bash/sh.

    Paths already starting with ``/`` are left alone. ``C:\\x`` becomes
    ``/c/x`` for MSYS and ``/mnt/c/x`` for WSL.
    """
    converted = path.replace("\\", "/")
    if converted.startswith("/"):
        return converted

    if len(converted) >= 2 and converted[1] == ":":
        drive = converted[0].lower()
        rest = converted[2:]
        if not rest.startswith("/"):
            rest = "/" + rest
        if flavor is ShellFlavor.WSL:
            return f"/mnt/{drive}{rest}"
        return f"/{drive}{rest}"

    return converted


def fix_bash_path(
    env: Mapping[str, str], flavor: ShellFlavor
) -> dict[str, str]:
    """Rewrite PATH as a colon list for bash/sh.

    A PATH that already looks like a POSIX list (and has no semicolons)
    is left alone. Empty entries are dropped.
    """
    fixed = dict(env)
    key = find_env_var(fixed, "PATH")
    if key is None or not fixed[key]:
        return fixed

    value = fixed[key]
    if WINDOWS_LIST_SEPARATOR not in value and looks_like_posix_path_list(value):
        return fixed

    entries = [
        to_shell_path(cleaned, flavor)
        for cleaned in map(clean_path_entry, value.split(WINDOWS_LIST_SEPARATOR))
        if cleaned
    ]
    fixed[key] = POSIX_LIST_SEPARATOR.join(entries)
    return fixed


def fix_windows_path_from_posix(env: Mapping[str, str]) -> dict[str, str]:
    """Rewrite a colon-separated PATH into a native Windows list.

    Only touches PATH when it has no semicolons and looks like a POSIX
    list. Entries that are not drive paths are kept verbatim.
    """
    fixed = dict(env)
    key = find_env_var(fixed, "PATH")
    if key is None or not fixed[key]:
        return fixed

    value = fixed[key]
    if WINDOWS_LIST_SEPARATOR in value or not looks_like_posix_path_list(value):
        return fixed

    entries = []
    for entry in value.split(POSIX_LIST_SEPARATOR):
        cleaned = clean_path_entry(entry)
        if not cleaned:
            continue
        entries.append(posix_to_windows_path(cleaned) or cleaned)

    if entries:
        fixed[key] = WINDOWS_LIST_SEPARATOR.join(entries)
    return fixed


def adapt_env(executable: str, env: Mapping[str, str]) -> dict[str, str]:
    """Adjust PATH for the shell that is about to run.

    Args:
        executable: Resolved executable (name or path)
        env: Environment after overrides

    Returns:
        A new environment dict
    """
    if not is_windows():
        return dict(env)

    if ShellKind.from_executable(executable) in (ShellKind.BASH, ShellKind.SH):
        flavor = detect_shell_flavor(executable)
        logger.trace(
            "Rewriting PATH for POSIX shell",
            executable=executable, flavor=flavor.value,
        )
        return fix_bash_path(env, flavor)

    return fix_windows_path_from_posix(env)
