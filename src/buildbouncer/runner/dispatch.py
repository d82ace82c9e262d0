"""Run configured checks and collect a report.

Each check runs as a child process with stdout and stderr merged. The
output is teed three ways: into a bounded tail buffer (for the report),
into a per-check log file (kept only on failure) and, in verbose mode,
onto the terminal.
"""

from __future__ import annotations

import codecs
import os
import subprocess
import sys
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

from buildbouncer.core.config import CheckSpec
from buildbouncer.core.log import logger
from buildbouncer.runner.capture import TailBuffer
from buildbouncer.runner.classify import headline, trim_headline
from buildbouncer.runner.logfile import CheckLog, resolve_default_log_dir
from buildbouncer.runner.pathenv import adapt_env, apply_env_overrides
from buildbouncer.runner.shell import resolve_command
from buildbouncer.runner.skip import evaluate_skip

READ_CHUNK_BYTES = 64 * 1024


@dataclass(frozen=True)
class ProgressEvent:
    stage: str  # "start" or "end"
    index: int  # 1-based
    total: int
    check: str
    exit_code: int = 0


@dataclass
class RunOptions:
    """Knobs for a single run_all() call.

    Attributes:
        verbose: Stream check output and status lines to ``stream``
        log_dir: Where per-check logs go; None for the default location
        max_parallel: Checks run at once; zero or less means one
        fail_fast: Start no new checks after the first failure
        progress: Called with "start" and "end" events, from the
            thread running the check
        stream: Terminal for verbose output (default: sys.stdout)
        fallback_shell: Shell used when neither the check nor its
            command names one
    """

    verbose: bool = False
    log_dir: Path | None = None
    max_parallel: int = 1
    fail_fast: bool = False
    progress: Callable[[ProgressEvent], None] | None = None
    stream: TextIO | None = None
    fallback_shell: str = ""


@dataclass
class ExecutionOutcome:
    exit_code: int
    tail: str = ""
    log_path: Path | None = None
    duration: float = 0.0
    error: str = ""

    @property
    def failed(self) -> bool:
        return self.exit_code != 0


@dataclass
class RunReport:
    """Result of a run. Lists are in declaration order."""

    failures: list[str] = field(default_factory=list)
    tails: dict[str, str] = field(default_factory=dict)
    headlines: dict[str, str] = field(default_factory=dict)
    log_files: dict[str, Path] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    skip_reasons: dict[str, str] = field(default_factory=dict)
    canceled: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.failures


class _Console:
    """Serializes verbose writes from concurrent checks."""

    def __init__(self, stream: TextIO | None, enabled: bool):
        self.stream = stream
        self.enabled = enabled
        self._lock = threading.Lock()

    def line(self, text: str) -> None:
        if not self.enabled:
            return
        with self._lock:
            out = self.stream or sys.stdout
            out.write(text + "\n")
            out.flush()

    def raw(self, text: str) -> None:
        if not self.enabled or not text:
            return
        with self._lock:
            out = self.stream or sys.stdout
            out.write(text)
            out.flush()


class _Tee:
    """Fans one check's output out to its tail, log file and console.

    A multi-byte character split across two reads is decoded once both
    halves have arrived. After the first failed log write the log is
    left alone; the error is kept in ``log_error`` and output keeps
    flowing to the tail and the console.
    """

    def __init__(self, log: CheckLog, console: _Console):
        self.tail = TailBuffer()
        self.log = log
        self.console = console
        self.log_error: OSError | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def write(self, chunk: bytes) -> None:
        self.tail.write(chunk)
        if self.log_error is None:
            try:
                self.log.write(chunk)
            except OSError as e:
                self._log_failed(e)
        if self.console.enabled:
            self.console.raw(self._decoder.decode(chunk))

    def close(self) -> None:
        """Flush the decoder and close the log file."""
        if self.console.enabled:
            self.console.raw(self._decoder.decode(b"", final=True))
        try:
            self.log.close()
        except OSError as e:
            if self.log_error is None:
                self._log_failed(e)

    def _log_failed(self, error: OSError) -> None:
        self.log_error = error
        logger.error(
            "Cannot write check log", path=str(self.log.path), error=str(error)
        )


def working_directory(repo_root: Path, check: CheckSpec) -> Path:
    """Check's cwd, relative to the repository root."""
    if check.cwd and check.cwd.strip():
        return Path(repo_root) / Path(*check.cwd.strip().split("/"))
    return Path(repo_root)


def _exit_code(returncode: int) -> tuple[int, str]:
    """Map Popen's returncode; killed processes count as exit 1."""
    if returncode < 0:
        return 1, f"terminated by signal {-returncode}"
    return returncode, ""


def run_one(
    repo_root: Path,
    index: int,
    check: CheckSpec,
    log_dir: Path,
    console: _Console | None = None,
    fallback_shell: str = "",
) -> ExecutionOutcome:
    """Run a single check to completion.

    A check that cannot start, or whose log cannot be written, fails
    with exit code 1 and the error text in its tail.

    Args:
        repo_root: Repository root; relative cwd values hang off it
        index: Zero-based position of the check, used in the log name
        check: The check to run
        log_dir: Directory for the check's log file
        console: Verbose terminal, if any
        fallback_shell: Shell for commands that do not name one

    Returns:
        ExecutionOutcome; log_path is set only when the check failed

    Raises:
        LogDirectoryError: log_dir cannot be created
        LogFileError: The log cannot be opened, or removed after success
    """
    console = console or _Console(None, enabled=False)
    invocation = resolve_command(check.shell, check.run, fallback_shell)
    env = apply_env_overrides(os.environ, check.env)
    env = adapt_env(invocation.executable, env)
    cwd = working_directory(repo_root, check)

    logger.debug(
        "Running check",
        check=check.name, argv=invocation.argv, cwd=str(cwd),
    )

    started = time.monotonic()
    log = CheckLog(log_dir, index, check.name)
    tee = _Tee(log, console)
    try:
        try:
            process = subprocess.Popen(
                invocation.argv,
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except (OSError, ValueError) as e:
            # ValueError: NUL byte in the command or environment
            tee.write(
                f"build-bouncer: failed to start "
                f"{invocation.executable}: {e}\n".encode()
            )
            logger.warn("Check could not start", check=check.name, error=str(e))
            exit_code, error = 1, str(e)
        else:
            try:
                with process.stdout:
                    for chunk in iter(
                        lambda: process.stdout.read1(READ_CHUNK_BYTES), b""
                    ):
                        tee.write(chunk)
                returncode = process.wait()
            except BaseException:
                process.kill()
                process.wait()
                raise

            exit_code, error = _exit_code(returncode)
            if error:
                tee.write(f"\nbuild-bouncer: {error}\n".encode())
    finally:
        tee.close()

    if tee.log_error is not None:
        error = f"cannot write log {log.path}: {tee.log_error}"
        tee.tail.write(f"\nbuild-bouncer: {error}\n".encode())
        exit_code = exit_code or 1

    duration = time.monotonic() - started
    logger.debug(
        "Check finished",
        check=check.name, exit_code=exit_code, duration=round(duration, 3),
    )

    if exit_code == 0:
        log.discard()
        return ExecutionOutcome(0, tail=tee.tail.text(), duration=duration)

    return ExecutionOutcome(
        exit_code,
        tail=tee.tail.text(),
        log_path=log.path,
        duration=duration,
        error=error,
    )


@dataclass
class _Result:
    index: int
    name: str
    outcome: ExecutionOutcome | None = None
    skip_reason: str = ""
    canceled: bool = False


def run_all(
    repo_root: Path,
    checks: Sequence[CheckSpec],
    options: RunOptions | None = None,
) -> RunReport:
    """Run every check and build the report.

    Checks start in declaration order. With max_parallel above one they
    run on a bounded thread pool. With fail_fast, checks that have not
    started when the first failure lands are reported as canceled;
    running ones are allowed to finish.

    Args:
        repo_root: Repository root
        checks: Checks in declaration order
        options: Run options, defaults if None

    Returns:
        RunReport

    Raises:
        DispatchError: A log directory or file problem made the run
            unusable; raised after in-flight checks finish
    """
    options = options or RunOptions()
    report = RunReport()
    total = len(checks)
    if total == 0:
        return report

    log_dir = Path(options.log_dir) if options.log_dir else (
        resolve_default_log_dir(repo_root)
    )
    workers = max(1, options.max_parallel)
    console = _Console(options.stream, options.verbose)
    stop = threading.Event()

    def notify(stage: str, index: int, name: str, exit_code: int = 0):
        if options.progress is not None:
            options.progress(
                ProgressEvent(stage, index + 1, total, name, exit_code)
            )

    def work(index: int, check: CheckSpec) -> _Result:
        if stop.is_set():
            return _Result(index, check.name, canceled=True)

        notify("start", index, check.name)

        decision = evaluate_skip(check)
        if decision.skip:
            notify("end", index, check.name)
            console.line(f"~~ {check.name} skipped ({decision.reason})\n")
            return _Result(index, check.name, skip_reason=decision.reason)

        console.line(f"==> {check.name}")
        try:
            with logger.check_span(check.name, index + 1, total):
                outcome = run_one(
                    repo_root, index, check, log_dir, console,
                    options.fallback_shell,
                )
        except Exception:
            stop.set()
            raise

        notify("end", index, check.name, outcome.exit_code)
        if outcome.failed:
            if options.fail_fast:
                stop.set()
            console.line(
                f"!! {check.name} failed (exit {outcome.exit_code})\n"
            )
        else:
            console.line(f"OK {check.name}\n")
        return _Result(index, check.name, outcome=outcome)

    results: list[_Result] = []
    first_error: BaseException | None = None

    with logger.span("run checks", total=total, workers=workers):
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="check"
        ) as pool:
            futures = [
                pool.submit(work, index, check)
                for index, check in enumerate(checks)
            ]
            for future in as_completed(futures):
                try:
                    results.append(future.result())
                except Exception as e:
                    if first_error is None:
                        first_error = e

    if first_error is not None:
        logger.error("Run aborted", error=str(first_error))
        raise first_error

    for result in sorted(results, key=lambda r: r.index):
        _record(report, result)
    return report


def _record(report: RunReport, result: _Result) -> None:
    name = result.name
    if result.canceled:
        report.canceled.append(name)
        return
    if result.skip_reason:
        report.skipped.append(name)
        report.skip_reasons[name] = result.skip_reason
        return

    outcome = result.outcome
    if outcome is None or not outcome.failed:
        return

    report.failures.append(name)
    report.tails[name] = outcome.tail
    if outcome.log_path is not None:
        report.log_files[name] = outcome.log_path
    report.headlines[name] = (
        headline(outcome.tail) or trim_headline(f"Failed: {name}")
    )
