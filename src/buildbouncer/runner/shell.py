"""Turn a check's command text into an executable and argument list.

Resolution order is fixed:

1. the check's explicit ``shell``
2. a shell invocation already spelled out in the command
   (``bash -lc "make test"``, ``pwsh -NoProfile -Command ...``)
3. a fallback shell supplied by the caller
4. the OS default: ``cmd.exe /C`` on Windows, ``sh -c`` elsewhere
"""

from __future__ import annotations

import os
import platform
import shutil
from dataclasses import dataclass
from enum import Enum

from buildbouncer.core.log import logger


class ShellKind(Enum):
    BASH = "bash"
    SH = "sh"
    PWSH = "pwsh"
    POWERSHELL = "powershell"
    CMD = "cmd"
    OTHER = "other"

    @classmethod
    def from_executable(cls, executable: str) -> ShellKind:
        """Classify by base name; ``.exe`` suffixes are accepted."""
        base = base_name(executable).lower()
        if base.endswith(".exe"):
            base = base[:-4]
        if base == cls.OTHER.value:
            return cls.OTHER
        try:
            return cls(base)
        except ValueError:
            return cls.OTHER


class ShellFlavor(Enum):
    """How a bash/sh on Windows spells drive paths."""

    MSYS = "msys"  # /c/Users/...
    WSL = "wsl"  # /mnt/c/Users/...


@dataclass(frozen=True)
class ResolvedInvocation:
    executable: str
    args: tuple[str, ...] = ()

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    @property
    def kind(self) -> ShellKind:
        return ShellKind.from_executable(self.executable)


POWERSHELL_ARGS = ("-NoProfile", "-NonInteractive", "-Command")

_WSL_MARKERS = (
    "\\system32\\bash.exe",
    "\\system32\\wsl.exe",
    "\\windowsapps\\bash.exe",
    "\\windowsapps\\wsl.exe",
)


def is_windows() -> bool:
    return platform.system() == "Windows"


def base_name(path: str) -> str:
    """Last path component, splitting on both slash styles."""
    return os.path.basename(path.replace("\\", "/"))


# ------------------------------------------------------------
# Token helpers
# ------------------------------------------------------------

def split_executable_and_args(spec: str) -> tuple[str, list[str]]:
    """Split a shell spec into executable and prefix arguments.

    A spec may quote its executable so that paths with spaces work::

        "C:\\Program Files\\PowerShell\\7\\pwsh.exe" -NoProfile

    Everything after the executable is split on whitespace. With an
    unterminated leading quote the whole spec is the executable.
    """
    trimmed = spec.strip()
    if not trimmed:
        return "", []

    quote = trimmed[0]
    if quote in ('"', "'"):
        closing = trimmed.find(quote, 1)
        if closing == -1:
            return trimmed, []
        return trimmed[1:closing], trimmed[closing + 1:].split()

    fields = trimmed.split()
    return fields[0], fields[1:]


def cut_first_token(text: str) -> tuple[str, str]:
    """Split off the first token, honoring a quoted first token.

    Returns:
        (token, rest) with rest stripped; ("", "") for blank input or an
        unterminated leading quote
    """
    trimmed = text.strip()
    if not trimmed:
        return "", ""

    quote = trimmed[0]
    if quote in ('"', "'"):
        closing = trimmed.find(quote, 1)
        if closing == -1:
            return "", ""
        return trimmed[1:closing], trimmed[closing + 1:].strip()

    token = trimmed.split()[0]
    return token, trimmed[len(token):].strip()


_SIMPLE_ESCAPES = {
    "a": "\a", "b": "\b", "f": "\f", "n": "\n", "r": "\r",
    "t": "\t", "v": "\v", "\\": "\\", '"': '"',
}


def _unescape_double_quoted(body: str) -> str | None:
    """Decode backslash escapes in a double-quoted string body.

    Accepts the usual C-style escapes plus ``\\xHH``, octal ``\\ooo``,
    ``\\uXXXX`` and ``\\UXXXXXXXX``. Returns None when body contains an
    unknown escape, a bare double quote or a newline.
    """
    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == '"' or ch == "\n":
            return None
        if ch != "\\":
            out.append(ch)
            i += 1
            continue

        if i + 1 >= len(body):
            return None
        esc = body[i + 1]
        if esc in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[esc])
            i += 2
            continue

        width = {"x": 2, "u": 4, "U": 8}.get(esc)
        if width is not None:
            digits = body[i + 2:i + 2 + width]
            if len(digits) != width:
                return None
            try:
                code = int(digits, 16)
            except ValueError:
                return None
            if code > 0x10FFFF or 0xD800 <= code <= 0xDFFF:
                return None
            out.append(chr(code))
            i += 2 + width
            continue

        digits = body[i + 1:i + 4]
        if len(digits) == 3 and all(d in "01234567" for d in digits):
            code = int(digits, 8)
            if code > 0xFF:
                return None
            out.append(chr(code))
            i += 4
            continue

        return None
    return "".join(out)


def unquote_shell_arg(arg: str) -> str | None:
    """Strip one level of quoting from a shell argument.

    Single-quoted text is taken literally. Double-quoted text has its
    backslash escapes decoded; if they do not decode cleanly the raw text
    between the quotes is returned instead.

    Returns:
        The unquoted text, or None when arg is not wrapped in matching
        quotes
    """
    trimmed = arg.strip()
    if len(trimmed) < 2:
        return None

    quote = trimmed[0]
    if quote not in ('"', "'") or trimmed[-1] != quote:
        return None

    body = trimmed[1:-1]
    if quote == "'":
        return body

    decoded = _unescape_double_quoted(body)
    return body if decoded is None else decoded


# ------------------------------------------------------------
# Windows shell lookup
# ------------------------------------------------------------

def detect_shell_flavor_path(path: str) -> ShellFlavor:
    """WSL launcher stubs live in System32 or WindowsApps."""
    lower = path.lower()
    if any(marker in lower for marker in _WSL_MARKERS):
        return ShellFlavor.WSL
    return ShellFlavor.MSYS


def detect_shell_flavor(shell: str) -> ShellFlavor:
    """Flavor of the shell found on PATH; MSYS when it is not found."""
    found = shutil.which(shell)
    if found is None:
        return ShellFlavor.MSYS
    return detect_shell_flavor_path(found)


def find_git_shell(shell: str) -> str:
    """Locate bash.exe/sh.exe from a Git for Windows install.

    Returns:
        The first existing candidate, or "" when none exists
    """
    name = f"{shell}.exe"
    roots = [os.environ.get("ProgramFiles"), os.environ.get("ProgramFiles(x86)")]

    for root in roots:
        if not root:
            continue
        for parts in (("usr", "bin"), ("bin",)):
            candidate = os.path.join(root, "Git", *parts, name)
            if os.path.isfile(candidate):
                return candidate
    return ""


def prefer_windows_shell(shell: str) -> str:
    """Absolute path for bash/sh on Windows, avoiding WSL stubs.

    Off Windows, or when the shell is not on PATH, the name is returned
    unchanged. A WSL stub is swapped for Git for Windows' shell when one
    is installed.
    """
    if not is_windows():
        return shell

    found = shutil.which(shell)
    if found is None:
        return shell

    if detect_shell_flavor_path(found) is ShellFlavor.WSL:
        alternative = find_git_shell(shell)
        if alternative:
            logger.debug(
                "Using Git shell instead of WSL stub",
                shell=shell, stub=found, replacement=alternative,
            )
            return alternative
    return found


# ------------------------------------------------------------
# Resolution
# ------------------------------------------------------------

def shell_command(command: str) -> ResolvedInvocation:
    """OS default shell."""
    if is_windows():
        return ResolvedInvocation("cmd.exe", ("/C", command))
    return ResolvedInvocation("sh", ("-c", command))


def command_for_shell(
    shell_spec: str, command: str
) -> ResolvedInvocation | None:
    """Build the invocation for a configured shell.

    Args:
        shell_spec: Shell name, path, or quoted path, optionally followed
            by arguments that go before the shell's own flags
        command: Command text handed to the shell

    Returns:
        The invocation, or None when shell_spec is blank
    """
    executable, prefix = split_executable_and_args(shell_spec)
    if not executable.strip():
        return None

    kind = ShellKind.from_executable(executable)
    is_bare_name = executable == base_name(executable).lower()

    if kind is ShellKind.BASH:
        name = prefer_windows_shell("bash") if is_bare_name else executable
        return ResolvedInvocation(name, (*prefix, "-lc", command))
    if kind is ShellKind.SH:
        name = prefer_windows_shell("sh") if is_bare_name else executable
        return ResolvedInvocation(name, (*prefix, "-c", command))
    if kind in (ShellKind.PWSH, ShellKind.POWERSHELL):
        return ResolvedInvocation(
            executable, (*prefix, *POWERSHELL_ARGS, command)
        )
    if kind is ShellKind.CMD:
        return ResolvedInvocation("cmd.exe", (*prefix, "/C", command))

    # Unknown runner: <shell> <prefix...> <command>
    return ResolvedInvocation(executable, (*prefix, command))


def _matches_executable(token: str, expected: str) -> bool:
    base = base_name(token).lower()
    return base in (expected, f"{expected}.exe")


def parse_direct_shell_invocation(
    command: str, expected_shell: str
) -> ResolvedInvocation | None:
    """Recognize ``bash -lc "<script>"`` style commands.

    The executable may be a path ending in the shell's name. The flag must
    be ``-lc`` or ``-c`` and the script must be quoted. The result names
    the shell canonically, not by the path that was written.
    """
    executable, rest = cut_first_token(command)
    if not executable or not _matches_executable(executable, expected_shell):
        return None

    flag, script_text = cut_first_token(rest)
    if flag not in ("-lc", "-c") or not script_text.strip():
        return None

    script = unquote_shell_arg(script_text)
    if script is None:
        return None
    return ResolvedInvocation(expected_shell, (flag, script))


def parse_direct_powershell_invocation(
    command: str, expected_shell: str
) -> ResolvedInvocation | None:
    """Recognize ``pwsh [args...] -Command <script>`` style commands.

    Arguments before ``-Command`` (or ``-c``, any case) are kept in
    order. The script may be quoted or bare.
    """
    executable, remaining = cut_first_token(command)
    if not executable or not _matches_executable(executable, expected_shell):
        return None

    prefix: list[str] = []
    while remaining:
        token, rest = cut_first_token(remaining)
        if not token:
            return None

        if token.strip().lower() in ("-command", "-c"):
            script = rest.strip()
            if not script:
                return None
            unquoted = unquote_shell_arg(script)
            if unquoted is not None:
                script = unquoted
            return ResolvedInvocation(expected_shell, (*prefix, token, script))

        prefix.append(token)
        remaining = rest.strip()
    return None


def direct_shell_command(command: str) -> ResolvedInvocation | None:
    """Detect a command that already calls bash, sh, pwsh or powershell."""
    trimmed = command.strip()
    if not trimmed:
        return None

    for shell in ("bash", "sh"):
        found = parse_direct_shell_invocation(trimmed, shell)
        if found:
            return found
    for shell in ("pwsh", "powershell"):
        found = parse_direct_powershell_invocation(trimmed, shell)
        if found:
            return found
    return None


def resolve_command(
    shell: str | None, command: str, fallback_shell: str | None = ""
) -> ResolvedInvocation:
    """Decide how to run command.

    Args:
        shell: Explicit shell from the check, or None
        command: Raw command text
        fallback_shell: Shell to use when neither the check nor the
            command names one

    Returns:
        ResolvedInvocation ready for subprocess
    """
    resolved = command_for_shell(shell or "", command)
    if resolved is not None:
        return resolved

    direct = direct_shell_command(command)
    if direct is not None:
        return ResolvedInvocation(
            prefer_windows_shell(direct.executable), direct.args
        )

    resolved = command_for_shell(fallback_shell or "", command)
    if resolved is not None:
        return resolved

    return shell_command(command)
