"""Tests for per-check log files."""

from datetime import datetime

import pytest

from buildbouncer.core.errors import LogDirectoryError
from buildbouncer.runner.logfile import (
    CheckLog,
    log_file_name,
    remove_with_retries,
    resolve_default_log_dir,
    sanitize,
)


@pytest.mark.parametrize("name, expected", [
    ("unit tests", "unit_tests"),
    ("lint/go vet", "lint_go_vet"),
    ("a.b-c_d", "a.b-c_d"),
    ("café", "caf_"),
    ("  padded  ", "padded"),
    ("   ", "check"),
])
def test_sanitize(name, expected):
    assert sanitize(name) == expected


def test_log_file_name():
    when = datetime(2024, 1, 2, 3, 4, 5)
    assert log_file_name(3, "unit tests", when) == (
        "20240102_030405_03_unit_tests.log"
    )
    assert log_file_name(12, "x", when) == "20240102_030405_12_x.log"


def test_default_log_dir_in_git_dir(tmp_path):
    (tmp_path / ".git").mkdir()
    assert resolve_default_log_dir(tmp_path) == (
        tmp_path / ".git" / "build-bouncer" / "logs"
    )


def test_default_log_dir_follows_gitdir_pointer(tmp_path):
    """Worktrees keep logs in the real git directory."""
    repo = tmp_path / "repo"
    repo.mkdir()
    real = tmp_path / "store" / "worktree"
    real.mkdir(parents=True)
    (repo / ".git").write_text("gitdir: ../store/worktree\n")

    assert resolve_default_log_dir(repo) == real / "build-bouncer" / "logs"


def test_default_log_dir_for_project_in_subdirectory(tmp_path):
    """A project nested inside a repository logs into that repository."""
    (tmp_path / ".git").mkdir()
    project = tmp_path / "services" / "api"
    project.mkdir(parents=True)
    assert resolve_default_log_dir(project) == (
        tmp_path / ".git" / "build-bouncer" / "logs"
    )


def test_default_log_dir_without_git(tmp_path):
    assert resolve_default_log_dir(tmp_path) == (
        tmp_path / ".buildbouncer" / "logs"
    )


def test_check_log_discard(tmp_path):
    log_dir = tmp_path / "logs"
    with CheckLog(log_dir, 0, "build") as log:
        log.write(b"compiling\n")
    assert log.path.parent == log_dir
    assert log.path.read_bytes() == b"compiling\n"

    log.discard()
    assert not log.path.exists()


def test_check_log_directory_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    with pytest.raises(LogDirectoryError):
        CheckLog(blocker, 0, "build")


def test_remove_missing_file(tmp_path):
    remove_with_retries(tmp_path / "gone.log")


def test_remove_gives_up(tmp_path):
    """A path that can never be unlinked raises after the retries."""
    directory = tmp_path / "dir.log"
    directory.mkdir()
    with pytest.raises(OSError):
        remove_with_retries(directory, attempts=2, delay=0)
