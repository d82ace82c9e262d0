"""Regular expressions for well-known tool output formats.

Patterns are line anchored where possible so that a stray match deep in
unrelated output does not win over a precise one.
"""

import re

# go test
GO_TEST_FAIL = re.compile(r"^--- FAIL: (\S+)", re.MULTILINE)
GO_TEST_PKG = re.compile(r"^FAIL\s+(\S+)", re.MULTILINE)
GO_TEST_TIMEOUT = re.compile(
    r"^panic: test timed out after ([^\n]+)", re.MULTILINE
)

# .NET / xUnit
DOTNET_FAIL = re.compile(r"^\s*Failed\s+(\S+)", re.MULTILINE)
DOTNET_BUILD_ERROR = re.compile(
    r"^(.+\.cs)\((\d+),(\d+)\):\s*error\s*CS\d+:\s*(.+)$", re.MULTILINE
)

# pytest
PYTEST_FAIL = re.compile(r"^FAILED\s+(.+)$", re.MULTILINE)

# jest
JEST_FAIL = re.compile(r"^FAIL\s+(.+)$", re.MULTILINE)
JEST_BULLET = re.compile(r"^\s+(.+)$", re.MULTILINE)

# Generic "error:" / "fatal:" / "panic:" line
FIRST_ERROR = re.compile(
    r"^\s*(?:error|fatal|panic):\s*(.+)$", re.MULTILINE | re.IGNORECASE
)

# tsc: file(line,col): error TS####: message
TSC_ERROR = re.compile(
    r"^(.+\.tsx?)\((\d+),(\d+)\):\s*error\s*TS\d+:\s*(.+)$", re.MULTILINE
)

# rustc
RUST_ERROR = re.compile(r"^error(?:\[[^\]]+\])?:\s*(.+)$", re.MULTILINE)
RUST_LOCATION = re.compile(r"^\s*-->\s+(.+):(\d+):(\d+)", re.MULTILINE)

# gcc / clang
GCC_ERROR = re.compile(
    r"^(.+):(\d+):(\d+):\s*error:\s*(.+)$", re.MULTILINE
)

# Fallbacks
FILE_LINE_COL = re.compile(r"^(.+):(\d+):(\d+):\s*(.+)$", re.MULTILINE)
FILE_LINE = re.compile(r"^(.+):(\d+):\s*(.+)$", re.MULTILINE)

# black
BLACK_FORMAT = re.compile(r"^would reformat (.+)$", re.MULTILINE)

# terraform
TERRAFORM_ERROR = re.compile(r"^Error:\s+(.+)$", re.MULTILINE)

# ruff
RUFF_ISSUE = re.compile(
    r"^(.+):(\d+):(\d+):\s*([A-Z]\d+)\s+(.+)$", re.MULTILINE
)

# maven
MAVEN_ERROR = re.compile(
    r"^\[ERROR\]\s+(.+):\[(\d+),(\d+)\]\s+(.+)$", re.MULTILINE
)

# npm
NPM_MISSING_SCRIPT = re.compile(r'Missing script:\s+"([^"]+)"')

# eslint: a file line followed by indented "line:col  error  message"
ESLINT_ISSUE = re.compile(r"^\s*(\d+:\d+)\s+error\s+(.+)$")
ESLINT_FILE = re.compile(r"\.(?:js|jsx|ts|tsx|mjs|cjs)$")
