"""Tests for configuration models and YAML loading."""

import sys

import pytest
from pydantic import ValidationError

from buildbouncer.core.config import (
    CheckSpec,
    Config,
    State,
    validate_shell_spec,
)
from buildbouncer.core.yaml_settings import (
    YamlWithIncludesSettingsSource,
    find_config_from_cwd,
    project_root_for,
)


def make_check(**kwargs) -> CheckSpec:
    kwargs.setdefault("name", "check")
    kwargs.setdefault("run", "true")
    return CheckSpec.model_validate(kwargs)


# ------------------------------------------------------------
# CheckSpec
# ------------------------------------------------------------

@pytest.mark.parametrize("kwargs", [
    {"name": "   "},
    {"run": "  "},
    {"shell": '"C:\\Program Files\\pwsh.exe'},
    {"shell": "-x"},
    {"shell": "bash\n-x"},
    {"env": {"A=B": "1"}},
    {"env": {" ": "1"}},
])
def test_invalid_check(kwargs):
    with pytest.raises(ValidationError):
        make_check(**kwargs)


def test_check_is_frozen():
    check = make_check()
    with pytest.raises(ValidationError):
        check.name = "other"


def test_check_normalizes_fields():
    check = make_check(
        name="  lint ",
        shell="  bash  ",
        env={"COUNT": 3, "EMPTY": None},
        requires="npm",
        os=["linux", "linux", " macos "],
    )
    assert check.name == "lint"
    assert check.shell == "bash"
    assert check.env == {"COUNT": "3", "EMPTY": ""}
    assert check.requires == ("npm",)
    assert check.os == ("linux", "macos")


def test_blank_shell_means_none():
    assert make_check(shell="   ").shell is None


def test_platforms_alias_merges_into_os():
    check = make_check(os="linux", platforms=["macos", "linux"])
    assert check.os == ("linux", "macos")


@pytest.mark.parametrize("spec", [
    "",
    "bash",
    "cmd /D",
    '"C:\\Program Files\\PowerShell\\7\\pwsh.exe" -NoProfile',
    "'/opt/my shell/sh'",
])
def test_valid_shell_specs(spec):
    validate_shell_spec(spec)


# ------------------------------------------------------------
# Config
# ------------------------------------------------------------

def test_duplicate_names_rejected():
    with pytest.raises(ValidationError, match="duplicates"):
        Config(checks=[
            {"name": "test", "run": "make test"},
            {"name": "test", "run": "make check"},
        ])


def test_unknown_os_rejected():
    with pytest.raises(ValidationError, match="unknown value 'plan9'"):
        Config(checks=[{"name": "a", "run": "x", "os": ["plan9"]}])


def test_version():
    assert Config(version=0).version == 1
    assert Config(version=1).version == 1
    with pytest.raises(ValidationError, match="unsupported version"):
        Config(version=2)


def test_runner_aliases():
    config = Config(runner={"maxParallel": 4, "failFast": True})
    assert config.runner.max_parallel == 4
    assert config.runner.fail_fast is True


def test_runner_rejects_negative_parallelism():
    with pytest.raises(ValidationError):
        Config(runner={"max_parallel": -1})


# ------------------------------------------------------------
# YAML loading
# ------------------------------------------------------------

PROJECT_YAML = """
version: 1
checks:
  - name: lint
    run: make lint
  - name: test
    run: make test
    platforms: [ubuntu-latest]
"""


def test_state_loads_project_config(make_project, tmp_path, monkeypatch):
    make_project(PROJECT_YAML)
    nested = tmp_path / "src" / "deep"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    config = State().config
    assert [c.name for c in config.checks] == ["lint", "test"]
    assert config.checks[1].os == ("ubuntu-latest",)
    # Package defaults still apply underneath
    assert config.runner.max_parallel == 1
    assert config.logger.console.level == "warn"


def test_state_without_project_config():
    config = State().config
    assert config.checks == []
    assert config.version == 1


def test_user_config_is_layered_under_project(make_project, tmp_path):
    user_dir = tmp_path / "user-config"
    user_dir.mkdir()
    (user_dir / "config.yaml").write_text(
        "runner:\n  max_parallel: 3\n  fail_fast: true\n"
    )
    make_project(PROJECT_YAML + "runner:\n  fail_fast: false\n")

    config = State().config
    assert config.runner.max_parallel == 3
    assert config.runner.fail_fast is False


def test_include_directive(make_project, tmp_path):
    (tmp_path / ".buildbouncer").mkdir()
    (tmp_path / ".buildbouncer" / "shared.yaml").write_text(
        "runner:\n  max_parallel: 2\n"
        "checks:\n  - name: shared\n    run: echo shared\n"
    )
    make_project("include: shared.yaml\nrunner:\n  fail_fast: true\n")

    config = State().config
    assert config.runner.max_parallel == 2
    assert config.runner.fail_fast is True
    assert [c.name for c in config.checks] == ["shared"]


def test_cli_include_replaces_lists(make_project, tmp_path, monkeypatch):
    """--include files win, and lists are replaced rather than merged."""
    make_project(PROJECT_YAML)
    extra = tmp_path / "ci.yaml"
    extra.write_text("checks:\n  - name: ci-only\n    run: make ci\n")
    monkeypatch.setattr(sys, "argv", ["build-bouncer", "--include", str(extra)])

    source = YamlWithIncludesSettingsSource(State)
    data = source()
    assert [c["name"] for c in data["config"]["checks"]] == ["ci-only"]


def test_circular_include(make_project, tmp_path):
    config_dir = tmp_path / ".buildbouncer"
    config_dir.mkdir()
    (config_dir / "other.yaml").write_text("include: config.yaml\n")
    make_project("include: other.yaml\n")

    with pytest.raises(ValueError, match="Circular include"):
        State()


def test_top_level_must_be_mapping(make_project):
    make_project("- name: lint\n  run: make lint\n")
    with pytest.raises(ValueError, match="top level must be a mapping"):
        State()


def test_invalid_project_config(make_project):
    make_project("checks:\n  - name: broken\n")
    with pytest.raises(ValidationError):
        State()


def test_find_config_prefers_config_dir(tmp_path):
    (tmp_path / ".buildbouncer.yaml").write_text("checks: []\n")
    assert find_config_from_cwd(tmp_path) == (
        tmp_path / ".buildbouncer.yaml"
    ).resolve()

    (tmp_path / ".buildbouncer").mkdir()
    (tmp_path / ".buildbouncer" / "config.yaml").write_text("checks: []\n")
    assert find_config_from_cwd(tmp_path) == (
        tmp_path / ".buildbouncer" / "config.yaml"
    ).resolve()


def test_project_root_for(tmp_path):
    assert project_root_for(
        tmp_path / ".buildbouncer" / "config.yaml"
    ) == tmp_path.resolve()
    assert project_root_for(
        tmp_path / ".buildbouncer.yaml"
    ) == tmp_path.resolve()
