"""Tests for the CLI commands."""

import io
import sys

import pytest
from pydantic_settings import CliApp

from buildbouncer.cli import CliState
from buildbouncer.command.check import CheckCommand, find_project_root
from buildbouncer.command.doctor import DoctorCommand
from buildbouncer.command.exit_codes import EXIT_FAILED, EXIT_OK, EXIT_USAGE
from buildbouncer.command.validate import ValidateCommand
from buildbouncer.command.why import WhyCommand, read_log_tail
from buildbouncer.core.config import State
from buildbouncer.core.errors import ConfigError
from buildbouncer.runner.capture import TAIL_BUFFER_BYTES

posix_only = pytest.mark.skipif(
    sys.platform == "win32", reason="uses POSIX shell commands"
)


def run_check(root, command=None):
    """Run the check command from root and capture both streams."""
    out, err = io.StringIO(), io.StringIO()
    code = (command or CheckCommand()).run(
        State(), cwd=root, stdout=out, stderr=err
    )
    return code, out.getvalue(), err.getvalue()


# ------------------------------------------------------------
# check
# ------------------------------------------------------------

@posix_only
def test_all_checks_pass(make_project):
    root = make_project(
        "checks:\n"
        "  - name: hello\n    run: echo hello\n"
        "  - name: windows\n    run: dir\n    os: windows\n"
    )
    code, out, err = run_check(root)

    assert code == EXIT_OK
    assert "All checks passed." in out
    assert "Skipped checks:" in out
    assert "  - windows (os mismatch (want windows))" in out
    assert err == ""


@posix_only
def test_failure_report(make_project):
    root = make_project(
        "checks:\n"
        "  - name: compile\n"
        "    run: \"echo building; echo 'main.c:3:5: error: boom'; exit 2\"\n"
        "  - name: ok\n    run: \"true\"\n"
    )
    code, out, err = run_check(root)

    assert code == EXIT_FAILED
    assert "All checks passed." not in out
    assert "Blocked. Failed checks:" in err
    assert "  - compile: main.c:3: boom" in err
    assert "-- compile (why)\nCompiler error: main.c:3:5: boom" in err
    assert "-- compile (tail)\nbuilding\nmain.c:3:5: error: boom" in err
    assert "Log: " in err
    assert str(root.resolve() / ".git" / "build-bouncer" / "logs") in err


@posix_only
def test_tail_option_and_log_dir(make_project, tmp_path):
    root = make_project(
        "checks:\n"
        "  - name: noisy\n"
        "    run: \"echo one; echo two; echo three; exit 1\"\n"
    )
    custom = tmp_path / "custom-logs"
    code, _, err = run_check(root, CheckCommand(tail=1, log_dir=custom))

    assert code == EXIT_FAILED
    assert "-- noisy (tail)\nthree\n" in err
    assert "\ntwo\n" not in err
    assert len(list(custom.iterdir())) == 1


@posix_only
def test_fail_fast_flag(make_project):
    root = make_project(
        "checks:\n"
        "  - name: first\n    run: exit 1\n"
        "  - name: second\n    run: \"true\"\n"
    )
    code, _, err = run_check(root, CheckCommand(fail_fast=True))

    assert code == EXIT_FAILED
    assert "Canceled checks:\n  - second" in err


def test_missing_config(tmp_path):
    code, _, err = run_check(tmp_path)
    assert code == EXIT_USAGE
    assert "build-bouncer config not found" in err


def test_no_checks(make_project):
    root = make_project("checks: []\n")
    code, _, err = run_check(root)
    assert code == EXIT_USAGE
    assert "no checks configured" in err


def test_find_project_root(make_project, tmp_path_factory):
    root = make_project("checks: []\n")
    nested = root / "a" / "b"
    nested.mkdir(parents=True)
    assert find_project_root(nested) == root.resolve()

    with pytest.raises(ConfigError):
        find_project_root(tmp_path_factory.mktemp("elsewhere"))


# ------------------------------------------------------------
# why
# ------------------------------------------------------------

def run_why(path):
    out, err = io.StringIO(), io.StringIO()
    code = WhyCommand(log_file=path).run(stdout=out, stderr=err)
    return code, out.getvalue(), err.getvalue()


def test_why_explains_log(tmp_path):
    log = tmp_path / "20240101_000000_00_test.log"
    log.write_text(
        "collected 3 items\n"
        "FAILED tests/test_api.py::test_get - assert 1 == 2\n"
    )
    code, out, _ = run_why(log)

    assert code == EXIT_OK
    assert "Headline: Pytest failed: tests/test_api.py::test_get" in out
    assert "Why: Pytest failed: tests/test_api.py::test_get" in out


def test_why_nothing_recognized(tmp_path):
    log = tmp_path / "plain.log"
    log.write_text("all fine here\n")
    code, out, _ = run_why(log)

    assert code == EXIT_OK
    assert "No recognizable error" in out


def test_why_missing_file(tmp_path):
    code, _, err = run_why(tmp_path / "absent.log")
    assert code == EXIT_USAGE
    assert "cannot read" in err


def test_read_log_tail_is_bounded(tmp_path):
    log = tmp_path / "big.log"
    log.write_bytes(b"x" * (TAIL_BUFFER_BYTES * 2) + b"\nerror: at the end\n")

    text = read_log_tail(log)
    assert len(text) == TAIL_BUFFER_BYTES
    assert text.endswith("error: at the end\n")


# ------------------------------------------------------------
# CLI entry
# ------------------------------------------------------------

def test_cli_why_subcommand(tmp_path, capsys):
    log = tmp_path / "go.log"
    log.write_text("--- FAIL: TestParse (0.00s)\n")

    with pytest.raises(SystemExit) as exc_info:
        CliApp.run(CliState, cli_args=["why", str(log)])

    assert exc_info.value.code == EXIT_OK
    assert "Headline: Test failed: TestParse" in capsys.readouterr().out


@posix_only
def test_check_from_project_in_repo_subdirectory(
    make_project, tmp_path, monkeypatch
):
    (tmp_path / ".git").mkdir()
    project = make_project(
        "checks:\n  - name: nested\n    run: exit 1\n",
        root=tmp_path / "web",
    )
    # make_project marks its root as a repository too
    (project / ".git").rmdir()
    monkeypatch.chdir(project)

    code, _, err = run_check(project)
    assert code == EXIT_FAILED
    assert str(tmp_path / ".git" / "build-bouncer" / "logs") in err


# ------------------------------------------------------------
# validate
# ------------------------------------------------------------

def test_validate_ok(make_project):
    root = make_project(
        "version: 1\n"
        "checks:\n  - name: lint\n    run: go vet ./...\n"
    )
    out, err = io.StringIO(), io.StringIO()
    code = ValidateCommand().run(cwd=root, stdout=out, stderr=err)

    config_path = root.resolve() / ".buildbouncer" / "config.yaml"
    assert code == EXIT_OK
    assert out.getvalue() == f"Config OK: {config_path}\nChecks: 1\n"
    assert err.getvalue() == ""


def test_validate_explicit_file_with_errors(tmp_path):
    broken = tmp_path / "broken.yaml"
    broken.write_text(
        "checks:\n"
        "  - name: test\n    run: make test\n"
        "  - name: test\n    run: make check\n"
    )
    out, err = io.StringIO(), io.StringIO()
    code = ValidateCommand(config_file=broken).run(stdout=out, stderr=err)

    assert code == EXIT_USAGE
    assert out.getvalue() == ""
    assert err.getvalue().startswith(f"validate: {broken}: ")
    assert "duplicates" in err.getvalue()


def test_validate_not_yaml(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("checks: [unclosed\n")
    err = io.StringIO()
    code = ValidateCommand(config_file=bad).run(
        stdout=io.StringIO(), stderr=err
    )
    assert code == EXIT_USAGE
    assert err.getvalue().startswith("validate: ")


def test_validate_without_config(tmp_path):
    err = io.StringIO()
    code = ValidateCommand().run(cwd=tmp_path, stdout=io.StringIO(), stderr=err)
    assert code == EXIT_USAGE
    assert "build-bouncer config not found" in err.getvalue()


def test_cli_validate_subcommand(make_project, capsys):
    make_project("checks:\n  - name: a\n    run: \"true\"\n")

    with pytest.raises(SystemExit) as exc_info:
        CliApp.run(CliState, cli_args=["validate"])

    assert exc_info.value.code == EXIT_OK
    assert "Checks: 1" in capsys.readouterr().out


# ------------------------------------------------------------
# doctor
# ------------------------------------------------------------

def run_doctor(root, command=None):
    out, err = io.StringIO(), io.StringIO()
    code = (command or DoctorCommand()).run(cwd=root, stdout=out, stderr=err)
    return code, out.getvalue(), err.getvalue()


@posix_only
def test_doctor_describes_checks(make_project):
    root = make_project(
        "checks:\n"
        "  - name: unit\n    run: make test\n    cwd: backend\n"
        "  - name: tool\n    run: \"true\"\n"
        "    requires: [definitely-not-a-tool-bb]\n"
        "  - name: win\n    run: dir\n    os: [windows]\n"
    )
    code, out, err = run_doctor(root)
    resolved = root.resolve()

    assert code == EXIT_OK
    assert err == ""
    assert f"Config: {resolved / '.buildbouncer' / 'config.yaml'}\n" in out
    assert f"Project: {resolved}\n" in out
    assert f"Repo: {resolved}\n" in out
    assert f"Logs: {resolved / '.git' / 'build-bouncer' / 'logs'}\n" in out
    assert "PATH: " in out

    assert (
        "\n[1] unit\n"
        "  run: make test\n"
        "  shell: sh (sh)\n"
        f"  cwd: {resolved / 'backend'}\n"
        "\n[2] tool\n"
    ) in out
    assert (
        "  requires: definitely-not-a-tool-bb\n"
        "  missing: definitely-not-a-tool-bb\n"
        "  skip: missing tools: definitely-not-a-tool-bb\n"
    ) in out
    assert (
        "  os: windows\n"
        "  skip: os mismatch (want windows)\n"
    ) in out


def test_doctor_outside_repository(tmp_path_factory):
    project = tmp_path_factory.mktemp("plain")
    (project / ".buildbouncer.yaml").write_text("checks: []\n")

    code, out, _ = run_doctor(project)
    assert code == EXIT_OK
    assert "Repo: (not a git repository)\n" in out
    assert f"Logs: {project.resolve() / '.buildbouncer' / 'logs'}\n" in out


def test_doctor_bad_config(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("- just a list\n")
    code, out, err = run_doctor(tmp_path, DoctorCommand(config_file=bad))

    assert code == EXIT_USAGE
    assert out == ""
    assert err.startswith("doctor: ")
    assert "top level must be a mapping" in err
