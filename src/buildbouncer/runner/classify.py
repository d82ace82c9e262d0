"""Turn raw check output into a one-line failure summary.

Two views are offered. ``headline`` is the terse form shown next to each
failed check in the run report. ``why`` is a slightly more descriptive
form, prefixed with the tool that produced the error, used by the ``why``
command when re-reading a saved log.

Both are pure functions over text. Rules are tried in order and the first
match wins; an empty string means nothing was recognized.
"""

from collections.abc import Callable

from buildbouncer.runner import patterns

HEADLINE_MAX_LEN = 140

# eslint prints the file on its own line, then a few issue lines
ESLINT_LOOKAHEAD_LINES = 6


def normalize_newlines(text: str) -> str:
    """Convert CRLF and bare CR line endings to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def trim_headline(text: str) -> str:
    """Strip and cap a headline at HEADLINE_MAX_LEN characters."""
    trimmed = text.strip()
    if len(trimmed) <= HEADLINE_MAX_LEN:
        return trimmed
    return trimmed[:HEADLINE_MAX_LEN - 3] + "..."


def eslint_headline(output: str) -> str:
    """Find ``file:line:col: message`` in eslint's stylish format."""
    lines = output.split("\n")
    for file_index, raw_line in enumerate(lines):
        file_line = raw_line.strip()
        if not file_line or not patterns.ESLINT_FILE.search(file_line):
            continue

        limit = min(file_index + ESLINT_LOOKAHEAD_LINES, len(lines) - 1)
        for issue_line in lines[file_index + 1:limit + 1]:
            issue_line = issue_line.strip()
            if not issue_line:
                continue
            match = patterns.ESLINT_ISSUE.search(issue_line)
            if match:
                return f"{file_line}:{match[1]}: {match[2].strip()}"
    return ""


def _location(match, message_group: int) -> str:
    return (
        f"{match[1].strip()}:{match[2]}: "
        f"{match[message_group].strip()}"
    )


def _format_location(path: str, line: str, column: str) -> str:
    return f"{path.strip()}:{line.strip()}:{column.strip()}"


def _search(pattern, render: Callable) -> Callable[[str], str | None]:
    """Build a rule that renders the first match of pattern, if any."""
    def rule(output: str) -> str | None:
        match = pattern.search(output)
        return render(match) if match else None
    return rule


def _eslint_rule(output: str) -> str | None:
    return eslint_headline(output) or None


_HEADLINE_RULES: list[tuple[str, Callable[[str], str | None]]] = [
    ("go test fail", _search(
        patterns.GO_TEST_FAIL, lambda m: f"Test failed: {m[1]}")),
    ("go test timeout", _search(
        patterns.GO_TEST_TIMEOUT,
        lambda m: f"Go test timeout after {m[1].strip()}")),
    ("pytest fail", _search(
        patterns.PYTEST_FAIL, lambda m: f"Pytest failed: {m[1].strip()}")),
    ("jest fail", _search(
        patterns.JEST_FAIL, lambda m: f"Jest failed: {m[1].strip()}")),
    ("go package fail", _search(
        patterns.GO_TEST_PKG, lambda m: f"Package failed: {m[1]}")),
    ("dotnet test fail", _search(
        patterns.DOTNET_FAIL, lambda m: f".NET failed: {m[1].strip()}")),
    ("tsc error", _search(patterns.TSC_ERROR, lambda m: _location(m, 4))),
    ("dotnet build error", _search(
        patterns.DOTNET_BUILD_ERROR, lambda m: _location(m, 4))),
    ("maven error", _search(patterns.MAVEN_ERROR, lambda m: _location(m, 4))),
    ("gcc error", _search(patterns.GCC_ERROR, lambda m: _location(m, 4))),
    ("rust error", _search(
        patterns.RUST_ERROR, lambda m: f"Rust error: {m[1].strip()}")),
    ("black", _search(
        patterns.BLACK_FORMAT,
        lambda m: f"Black would reformat: {m[1].strip()}")),
    ("terraform", _search(
        patterns.TERRAFORM_ERROR,
        lambda m: f"Terraform error: {m[1].strip()}")),
    ("eslint", _eslint_rule),
    ("ruff", _search(
        patterns.RUFF_ISSUE,
        lambda m: (
            f"{m[1].strip()}:{m[2]}:{m[3]}: "
            f"{m[4].strip()} {m[5].strip()}"
        ))),
    ("npm missing script", _search(
        patterns.NPM_MISSING_SCRIPT,
        lambda m: f"npm missing script: {m[1].strip()}")),
    ("file:line:col", _search(
        patterns.FILE_LINE_COL, lambda m: _location(m, 4))),
    ("file:line", _search(patterns.FILE_LINE, lambda m: _location(m, 3))),
    ("error line", _search(patterns.FIRST_ERROR, lambda m: m[1].strip())),
    ("indented bullet", _search(
        patterns.JEST_BULLET, lambda m: m[1].strip())),
]


def _rust_why(output: str) -> str | None:
    error = patterns.RUST_ERROR.search(output)
    where = patterns.RUST_LOCATION.search(output)
    location = _format_location(*where.groups()) if where else ""

    if error:
        text = f"Rust error: {error[1].strip()}"
        if location:
            text += f" ({location})"
        return text
    if location:
        return f"Rust error at {location}"
    return None


def _tool_location(prefix: str) -> Callable:
    """Render ``<prefix> file:line:col: message`` from a 4-group match."""
    return lambda m: (
        f"{prefix} {_format_location(m[1], m[2], m[3])}: {m[4].strip()}"
    )


_WHY_RULES: list[tuple[str, Callable[[str], str | None]]] = [
    ("go test timeout", _search(
        patterns.GO_TEST_TIMEOUT,
        lambda m: f"Go test timeout after {m[1].strip()}")),
    ("go test fail", _search(
        patterns.GO_TEST_FAIL, lambda m: f"Test failed: {m[1].strip()}")),
    ("pytest fail", _search(
        patterns.PYTEST_FAIL, lambda m: f"Pytest failed: {m[1].strip()}")),
    ("jest fail", _search(
        patterns.JEST_FAIL, lambda m: f"Jest failed: {m[1].strip()}")),
    ("ruff", _search(
        patterns.RUFF_ISSUE,
        lambda m: (
            f"Ruff {m[4].strip()}: "
            f"{_format_location(m[1], m[2], m[3])}: {m[5].strip()}"
        ))),
    ("tsc error", _search(patterns.TSC_ERROR, _tool_location("TypeScript:"))),
    ("dotnet build error", _search(
        patterns.DOTNET_BUILD_ERROR, _tool_location(".NET error:"))),
    ("maven error", _search(
        patterns.MAVEN_ERROR, _tool_location("Maven error:"))),
    ("gcc error", _search(
        patterns.GCC_ERROR, _tool_location("Compiler error:"))),
    ("eslint", lambda out: (
        f"ESLint: {found}" if (found := eslint_headline(out)) else None)),
    ("rust", _rust_why),
    ("black", _search(
        patterns.BLACK_FORMAT,
        lambda m: f"Black would reformat: {m[1].strip()}")),
    ("terraform", _search(
        patterns.TERRAFORM_ERROR,
        lambda m: f"Terraform error: {m[1].strip()}")),
    ("npm missing script", _search(
        patterns.NPM_MISSING_SCRIPT,
        lambda m: f"npm missing script: {m[1].strip()}")),
    ("file:line:col", _search(
        patterns.FILE_LINE_COL, _tool_location("Error at"))),
    ("file:line", _search(
        patterns.FILE_LINE,
        lambda m: (
            f"Error at {m[1].strip()}:{m[2].strip()}: {m[3].strip()}"
        ))),
    ("error line", _search(
        patterns.FIRST_ERROR, lambda m: f"Error: {m[1].strip()}")),
]


def _first_match(rules, output: str) -> str:
    for _name, rule in rules:
        found = rule(output)
        if found is not None:
            return trim_headline(found)
    return ""


def headline(output: str) -> str:
    """Short failure headline for a check's output.

    Args:
        output: Captured output (any newline style)

    Returns:
        The first recognized summary, capped at 140 characters, or an
        empty string when nothing matched.
    """
    normalized = normalize_newlines(output).strip()
    if not normalized:
        return ""
    return _first_match(_HEADLINE_RULES, normalized)


def why(output: str) -> str:
    """Descriptive one-line reason, prefixed with the tool's name.

    Args:
        output: Captured output (any newline style)

    Returns:
        The first recognized reason, capped at 140 characters, or an
        empty string when nothing matched.
    """
    normalized = normalize_newlines(output)
    if not normalized.strip():
        return ""
    return _first_match(_WHY_RULES, normalized)
