"""Validate command - loads the config and reports whether it is usable."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from pydantic import BaseModel, ConfigDict, Field

from buildbouncer.command.check import find_config
from buildbouncer.command.exit_codes import EXIT_OK, EXIT_USAGE
from buildbouncer.core.config import load_config
from buildbouncer.core.errors import ConfigError
from buildbouncer.core.log import logger

if TYPE_CHECKING:
    from buildbouncer.core.config import State


class ValidateCommand(BaseModel):
    """Check that the project config loads and validates.

    Exits 0 when it does and 2 otherwise.
    """

    model_config = ConfigDict(populate_by_name=True)

    config_file: Path | None = Field(
        default=None,
        alias="config-file",
        description=(
            "Config to validate (default: nearest "
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
        stdout = stdout or sys.stdout
        stderr = stderr or sys.stderr

        try:
            config_path = self.config_file or find_config(cwd)
            config = load_config(config_path)
        except ConfigError as e:
            print(f"validate: {e}", file=stderr)
            return EXIT_USAGE

        logger.debug(
            "Config validated",
            file=str(config_path), checks=len(config.checks),
        )
        print(f"Config OK: {config_path}", file=stdout)
        print(f"Checks: {len(config.checks)}", file=stdout)
        return EXIT_OK
