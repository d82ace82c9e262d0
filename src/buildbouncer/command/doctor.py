"""Doctor command - shows how each check would run on this machine."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from pydantic import BaseModel, ConfigDict, Field

from buildbouncer.command.check import find_config
from buildbouncer.command.exit_codes import EXIT_OK, EXIT_USAGE
from buildbouncer.core.config import CheckSpec, load_config
from buildbouncer.core.errors import ConfigError
from buildbouncer.core.yaml_settings import project_root_for
from buildbouncer.git.repo import find_repo_root
from buildbouncer.runner.dispatch import working_directory
from buildbouncer.runner.logfile import resolve_default_log_dir
from buildbouncer.runner.shell import resolve_command
from buildbouncer.runner.skip import current_os, evaluate_skip, missing_tools

if TYPE_CHECKING:
    from buildbouncer.core.config import State


def describe_check(
    number: int, check: CheckSpec, project_root: Path, out: TextIO
) -> None:
    """Print one check's resolved shell, cwd and skip status.

    The os, requires, missing and skip lines appear only when they
    have something to say.
    """
    invocation = resolve_command(check.shell, check.run)

    print("", file=out)
    print(f"[{number}] {check.name}", file=out)
    print(f"  run: {check.run}", file=out)
    print(
        f"  shell: {invocation.executable} ({invocation.kind.value})",
        file=out,
    )
    print(f"  cwd: {working_directory(project_root, check)}", file=out)
    if check.os:
        print(f"  os: {','.join(check.os)}", file=out)
    if check.requires:
        print(f"  requires: {','.join(check.requires)}", file=out)

    missing = missing_tools(check)
    if missing:
        print(f"  missing: {', '.join(missing)}", file=out)

    decision = evaluate_skip(check)
    if decision.skip:
        print(f"  skip: {decision.reason}", file=out)


class DoctorCommand(BaseModel):
    """Diagnose shells, paths and missing tools for the configured checks.

    Nothing is run. Exits 2 when the config cannot be loaded.
    """

    model_config = ConfigDict(populate_by_name=True)

    config_file: Path | None = Field(
        default=None,
        alias="config-file",
        description=(
            "Config to inspect (default: nearest "
            ".buildbouncer/config.yaml or .buildbouncer.yaml)"
        ),
    )

    def run(
        self,
        state: State | None = None,
        cwd: Path | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> int:
        """Print the environment, then one block per check.

        Args:
            state: Loaded application state (unused; the config is
                reloaded from the file being diagnosed)
            cwd: Directory to search for the config from
            stdout: Stream for the report
            stderr: Stream for errors

        Returns:
            Exit code
        """
        stdout = stdout or sys.stdout
        stderr = stderr or sys.stderr

        try:
            config_path = self.config_file or find_config(cwd)
            config = load_config(config_path)
        except ConfigError as e:
            print(f"doctor: {e}", file=stderr)
            return EXIT_USAGE

        project_root = project_root_for(config_path)
        repo_root = find_repo_root(project_root)

        print(f"Config: {config_path}", file=stdout)
        print(f"Project: {project_root}", file=stdout)
        print(f"Repo: {repo_root or '(not a git repository)'}", file=stdout)
        print(f"Logs: {resolve_default_log_dir(project_root)}", file=stdout)
        print(f"OS: {current_os()}", file=stdout)
        print(f"PATH: {os.environ.get('PATH', '')}", file=stdout)

        for number, check in enumerate(config.checks, start=1):
            describe_check(number, check, project_root, stdout)
        return EXIT_OK
