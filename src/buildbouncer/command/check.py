"""Check command - runs configured checks and blocks on failure."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from pydantic import BaseModel, ConfigDict, Field

from buildbouncer.command.exit_codes import EXIT_FAILED, EXIT_OK, EXIT_USAGE
from buildbouncer.core.errors import ConfigError, DispatchError
from buildbouncer.core.log import logger
from buildbouncer.core.yaml_settings import (
    CONFIG_DIR_NAME,
    CONFIG_FILE_NAME,
    LEGACY_CONFIG_NAME,
    find_config_from_cwd,
    project_root_for,
)
from buildbouncer.runner.capture import tail_lines
from buildbouncer.runner.classify import why
from buildbouncer.runner.dispatch import (
    ProgressEvent,
    RunOptions,
    RunReport,
    run_all,
)

if TYPE_CHECKING:
    from buildbouncer.core.config import State


def find_config(start: Path | None = None) -> Path:
    """Project config file nearest to start, searching upward.

    Raises:
        ConfigError: No config file between start and the filesystem root
    """
    start = (start or Path.cwd()).resolve()
    config_path = find_config_from_cwd(start)
    if config_path is None:
        wanted = f"{CONFIG_DIR_NAME}/{CONFIG_FILE_NAME}"
        raise ConfigError(
            f"build-bouncer config not found: looked from {str(start)!r} "
            f"up to filesystem root for {wanted!r} or {LEGACY_CONFIG_NAME!r}"
        )
    return config_path


def find_project_root(start: Path | None = None) -> Path:
    """Directory holding the project config, searching upward.

    Raises:
        ConfigError: No config file between start and the filesystem root
    """
    return project_root_for(find_config(start))


def _log_progress(event: ProgressEvent) -> None:
    if event.stage == "start":
        logger.info(
            "Check {index}/{total}: {check}",
            index=event.index, total=event.total, check=event.check,
        )
    else:
        logger.debug(
            "Check {check} done",
            check=event.check, exit_code=event.exit_code,
        )


def render_report(report: RunReport, tail: int, out: TextIO) -> None:
    """Write the failure summary for a blocked run.

    Per failure: the why line (or headline), the last ``tail`` lines of
    output and the path of the kept log.
    """
    print("", file=out)
    print("Blocked. Failed checks:", file=out)
    for name in report.failures:
        print(f"  - {name}: {report.headlines.get(name, '')}", file=out)

    if report.canceled:
        print("", file=out)
        print("Canceled checks:", file=out)
        for name in report.canceled:
            print(f"  - {name}", file=out)

    for name in report.failures:
        output = report.tails.get(name, "")
        reason = why(output) or report.headlines.get(name, "")
        if reason:
            print("", file=out)
            print(f"-- {name} (why)", file=out)
            print(reason, file=out)

        excerpt = tail_lines(output, tail)
        if excerpt.strip():
            print("", file=out)
            print(f"-- {name} (tail)", file=out)
            print(excerpt, file=out)

        log_path = report.log_files.get(name)
        if log_path:
            print("", file=out)
            print(f"Log: {log_path}", file=out)


def render_skips(report: RunReport, out: TextIO) -> None:
    if not report.skipped:
        return
    print("Skipped checks:", file=out)
    for name in report.skipped:
        print(f"  - {name} ({report.skip_reasons.get(name, '')})", file=out)


class CheckCommand(BaseModel):
    """Run the configured checks.

    Exits 0 when every check passes or is skipped, 10 when any check
    fails, and 2 when the configuration is missing or invalid.
    """

    model_config = ConfigDict(populate_by_name=True)

    verbose: bool = Field(
        default=False,
        description="Stream full tool output to the terminal",
    )
    ci: bool = Field(
        default=False,
        description="CI mode: stream output like --verbose",
    )
    log_dir: Path | None = Field(
        default=None,
        alias="log-dir",
        description=(
            "Directory for failure logs "
            "(default: .git/build-bouncer/logs)"
        ),
    )
    tail: int = Field(
        default=30,
        description="Output lines shown per failed check",
    )
    max_parallel: int | None = Field(
        default=None,
        alias="max-parallel",
        description="Max concurrent checks (default: runner.max_parallel)",
    )
    fail_fast: bool = Field(
        default=False,
        alias="fail-fast",
        description="Start no new checks after the first failure",
    )

    def run(
        self,
        state: State,
        cwd: Path | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> int:
        """Run all checks and report.

        Args:
            state: Loaded application state
            cwd: Directory to search for the project from
            stdout: Stream for progress and success output
            stderr: Stream for the failure report

        Returns:
            Exit code
        """
        stdout = stdout or sys.stdout
        stderr = stderr or sys.stderr
        config = state.config

        try:
            repo_root = find_project_root(cwd)
            if not config.checks:
                raise ConfigError("config: no checks configured")
        except ConfigError as e:
            print(f"check: {e}", file=stderr)
            return EXIT_USAGE

        max_parallel = config.runner.max_parallel
        if self.max_parallel is not None and self.max_parallel > 0:
            max_parallel = self.max_parallel

        options = RunOptions(
            verbose=self.verbose or self.ci,
            log_dir=self.log_dir,
            max_parallel=max(1, max_parallel),
            fail_fast=config.runner.fail_fast or self.fail_fast,
            progress=_log_progress,
            stream=stdout,
        )

        logger.info(
            "Running {count} checks",
            count=len(config.checks), root=str(repo_root),
        )
        try:
            report = run_all(repo_root, config.checks, options)
        except DispatchError as e:
            print(f"check: {e}", file=stderr)
            return EXIT_USAGE

        render_skips(report, stdout)

        if report.failures:
            render_report(report, self.tail, stderr)
            logger.info("Blocked", failures=report.failures)
            return EXIT_FAILED

        print("All checks passed.", file=stdout)
        return EXIT_OK
