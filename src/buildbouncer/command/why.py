"""Why command - explains a saved check log."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from pydantic import BaseModel
from pydantic_settings import CliPositionalArg

from buildbouncer.command.exit_codes import EXIT_OK, EXIT_USAGE
from buildbouncer.core.log import logger
from buildbouncer.runner.capture import TAIL_BUFFER_BYTES, TailBuffer
from buildbouncer.runner.classify import headline, why

if TYPE_CHECKING:
    from buildbouncer.core.config import State


def read_log_tail(path: Path) -> str:
    """Last TAIL_BUFFER_BYTES of a log, the same window a run reports on."""
    buffer = TailBuffer()
    with open(path, "rb") as f:
        size = f.seek(0, 2)
        f.seek(max(0, size - TAIL_BUFFER_BYTES))
        buffer.write(f.read())
    return buffer.text()


class WhyCommand(BaseModel):
    """Print the headline and reason for a saved check log.

    Point it at a file from .git/build-bouncer/logs to see what the
    report would have said about it.
    """

    log_file: CliPositionalArg[Path]

    def run(
        self,
        state: State | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> int:
        """Classify the log file.

        Args:
            state: Loaded application state (unused)
            stdout: Stream for the result
            stderr: Stream for errors

        Returns:
            Exit code
        """
        stdout = stdout or sys.stdout
        stderr = stderr or sys.stderr

        try:
            output = read_log_tail(self.log_file)
        except OSError as e:
            print(f"why: cannot read {self.log_file}: {e}", file=stderr)
            return EXIT_USAGE

        found_headline = headline(output)
        found_why = why(output)
        logger.debug(
            "Classified log",
            file=str(self.log_file), headline=found_headline, why=found_why,
        )

        if not found_headline and not found_why:
            print(f"No recognizable error in {self.log_file}", file=stdout)
            return EXIT_OK

        if found_headline:
            print(f"Headline: {found_headline}", file=stdout)
        if found_why:
            print(f"Why: {found_why}", file=stdout)
        return EXIT_OK
