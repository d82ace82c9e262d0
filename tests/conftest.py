"""Pytest configuration and fixtures for build-bouncer tests."""

import sys
import tempfile
from pathlib import Path

import pytest

from buildbouncer.core.log import ConsoleSink, close_logger, setup_logger


@pytest.fixture(autouse=True, scope="session")
def configure_logging():
    """Configure logging for console-only mode during tests.

    This enables debug output during test runs without requiring
    authentication or sending logs to logfire.dev.
    """
    test_log_root = Path(tempfile.gettempdir()) / "build-bouncer-tests"
    setup_logger(
        log_root=test_log_root,
        run_name="test",
        console=ConsoleSink(level="debug"),
    )
    yield
    close_logger()


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Run each test from tmp_path with no user config and a bare argv.

    The YAML source reads --include from sys.argv and looks for a user
    config under the platform config directory; neither may leak in
    from the machine running the tests.
    """
    user_dir = tmp_path / "user-config"
    monkeypatch.setattr(
        "buildbouncer.core.yaml_settings.user_config_dir",
        lambda *args, **kwargs: str(user_dir),
    )
    monkeypatch.setattr(sys, "argv", ["build-bouncer"])
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def make_project(tmp_path):
    """Create a git project with a .buildbouncer/config.yaml.

    Returns:
        Function taking the YAML text and returning the project root
    """
    def _make(yaml_text: str, root: Path | None = None) -> Path:
        root = root or tmp_path
        (root / ".git").mkdir(parents=True, exist_ok=True)
        config_dir = root / ".buildbouncer"
        config_dir.mkdir(parents=True, exist_ok=True)
        (config_dir / "config.yaml").write_text(yaml_text)
        return root

    return _make
