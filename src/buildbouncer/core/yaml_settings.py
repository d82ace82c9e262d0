"""YAML configuration loading with include directive support."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import yaml
from platformdirs import user_config_dir
from pydantic_settings import BaseSettings, YamlConfigSettingsSource

CONFIG_DIR_NAME = ".buildbouncer"
CONFIG_FILE_NAME = "config.yaml"
LEGACY_CONFIG_NAME = ".buildbouncer.yaml"

# Bootstrap logger - created lazily to avoid circular import
_bootstrap_logger = None


def _get_bootstrap_logger():
    """Get or create the logger used while config is loading.

    Only warnings get through; the real logger replaces it once Config
    has validated.
    """
    global _bootstrap_logger
    if _bootstrap_logger is None:
        from buildbouncer.core.log import Logger
        _bootstrap_logger = Logger(level="warn")
        _bootstrap_logger.setup(log_root=Path.home(), run_name="bootstrap")
    return _bootstrap_logger


def _cleanup_bootstrap_logger():
    """Close the bootstrap logger once the real one is set up."""
    global _bootstrap_logger
    if _bootstrap_logger:
        _bootstrap_logger.close()
        _bootstrap_logger = None


def find_config_from_cwd(start: Path | None = None) -> Path | None:
    """Find the project config by walking up from start (default: cwd).

    In each directory ``.buildbouncer/config.yaml`` is preferred over
    the legacy ``.buildbouncer.yaml``.

    Returns:
        Path of the config file, or None if no directory has one
    """
    directory = (start or Path.cwd()).resolve()
    for candidate_dir in (directory, *directory.parents):
        for candidate in (
            candidate_dir / CONFIG_DIR_NAME / CONFIG_FILE_NAME,
            candidate_dir / LEGACY_CONFIG_NAME,
        ):
            if candidate.is_file():
                return candidate
    return None


def project_root_for(config_path: Path) -> Path:
    """Directory the project config belongs to; checks run from here."""
    config_path = Path(config_path).resolve()
    if config_path.parent.name == CONFIG_DIR_NAME:
        return config_path.parent.parent
    return config_path.parent


class YamlWithIncludesSettingsSource(YamlConfigSettingsSource):
    """YAML settings source with include: directive and --include
    CLI support.

    YAML files hold Config fields at top level (``version``,
    ``checks``, ``runner``...). Deep merges all sources:
        defaults < user config < project config < CLI includes.
    The merged result is returned under the ``config`` key.
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file=None,
        project_config: Path | None = None,
    ):
        """Initialize with CLI include processing.

        Args:
            settings_cls: The Settings class being initialized
            yaml_file: Extra files to load after the project config
            project_config: Project config to use instead of searching
                upward from the current directory
        """
        # Parse --include from CLI before pydantic processes it
        includes = []
        i = 1
        while i < len(sys.argv):
            if sys.argv[i] == "--include" and i + 1 < len(sys.argv):
                includes.append(sys.argv[i + 1])
                i += 1  # Skip the value
            i += 1

        base = yaml_file or settings_cls.model_config.get("yaml_file")
        if base and includes:
            yaml_file = (
                [base] if isinstance(base, (str, os.PathLike)) else list(base)
            ) + includes
        elif includes:
            yaml_file = includes
        else:
            yaml_file = base

        self.project_config = project_config
        super().__init__(settings_cls, yaml_file)

    def _read_files(self, files, deep_merge: bool = True):
        """Load defaults, user config, project config, and CLI includes.

        Args:
            files: Extra file path(s), highest priority
            deep_merge: Accepted for signature compatibility; files are
                always deep-merged

        Returns:
            ``{"config": merged}``, or ``{}`` when nothing was found
        """
        result = {}

        files_to_load = []

        # 1. Package defaults (always first)
        default_file = (
            Path(__file__).parent.parent / "defaults" / "default.yaml"
        )
        files_to_load.append(default_file)

        # 2. User config (platform-specific location)
        user_config = (
            Path(user_config_dir("build-bouncer", appauthor=False))
            / CONFIG_FILE_NAME
        )
        files_to_load.append(user_config)

        # 3. Project config, nearest to the current directory
        project_config = self.project_config or find_config_from_cwd()
        if project_config is not None:
            files_to_load.append(Path(project_config))

        # 4. CLI includes (highest priority)
        if files:
            if isinstance(files, (str, os.PathLike)):
                files = [files]
            files_to_load.extend(Path(f).expanduser() for f in files)

        for file_path in files_to_load:
            if file_path.is_file():
                with _get_bootstrap_logger().span(
                    "Configuration loading",
                    file=str(file_path),
                ):
                    data = self._load_file_recursive(file_path, set())
                    result = self._deep_merge(result, data)
            else:
                _get_bootstrap_logger().debug(
                    "Configuration file not found (skipping)",
                    file=str(file_path),
                )

        return {"config": result} if result else {}

    def _load_file_recursive(
        self, filepath: Path, visited: set[Path]
    ) -> dict:
        """Load file and process include: directives recursively.

        Args:
            filepath: Path to YAML file to load
            visited: Files on the current include chain

        Returns:
            Dictionary with all includes resolved and merged

        Raises:
            ValueError: Circular include, or a file that is not a
                YAML mapping
        """
        filepath = filepath.resolve()
        if filepath in visited:
            raise ValueError(f"Circular include: {filepath}")
        visited.add(filepath)

        with open(filepath, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{filepath}: top level must be a mapping")

        # Included files are the base; the including file wins
        if "include" in data:
            includes = data.pop("include")
            if isinstance(includes, str):
                includes = [includes]

            for inc in includes:
                inc_path = self._resolve_path(inc, filepath)
                with _get_bootstrap_logger().span(
                    "Including {include_name}",
                    include_name=inc_path.name,
                    included_from=str(filepath),
                    include_file=str(inc_path),
                ):
                    inc_data = self._load_file_recursive(
                        inc_path, visited.copy()
                    )
                    data = self._deep_merge(inc_data, data)

        return data

    def _resolve_path(
        self, include_path: str, relative_to: Path
    ) -> Path:
        """Resolve include path relative to the including file."""
        path = Path(include_path).expanduser()
        if path.is_absolute():
            return path
        return (relative_to.parent / path).resolve()

    def _deep_merge(self, base: dict, override: dict) -> dict:
        """Deep merge override into base (override wins).

        Lists are replaced, not concatenated.
        """
        result = base.copy()
        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result
