#!/usr/bin/env python3
"""build-bouncer CLI - blocks a push until the checks pass."""

import sys

from pydantic import Field, ValidationError
from pydantic_settings import CliApp, CliSubCommand, get_subcommand

from buildbouncer.command.check import CheckCommand
from buildbouncer.command.doctor import DoctorCommand
from buildbouncer.command.exit_codes import EXIT_USAGE
from buildbouncer.command.validate import ValidateCommand
from buildbouncer.command.why import WhyCommand
from buildbouncer.core.config import State
from buildbouncer.core.log import logger


class CliState(State):
    """Run a repository's build, test and lint checks before a push.

    Checks are read from .buildbouncer/config.yaml (or the legacy
    .buildbouncer.yaml) in the current directory or any parent.

    Configuration sources (in priority order):
    1. Command-line arguments (--config.runner.fail_fast true)
    2. YAML: package defaults < user config < project config
       < --include files
    3. .env file
    4. Environment variables
       (BUILDBOUNCER_CONFIG__RUNNER__MAX_PARALLEL=4)
    """

    check: CliSubCommand[CheckCommand]
    doctor: CliSubCommand[DoctorCommand]
    # "validate" would shadow BaseModel.validate
    validate_config: CliSubCommand[ValidateCommand] = Field(alias="validate")
    why: CliSubCommand[WhyCommand]

    def cli_cmd(self):
        """Dispatch to active subcommand, or show help if none
        provided."""
        subcommand = get_subcommand(self, is_required=False)

        if subcommand is None:
            CliApp.run(CliState, cli_args=['--help'])
            sys.exit(EXIT_USAGE)

        # Use logger as context manager to ensure files are closed on exit
        with logger:
            exit_code = subcommand.run(self)
        raise SystemExit(exit_code)


def main():
    """Main entry point for CLI."""
    try:
        CliApp.run(CliState)
    except ValidationError as e:
        print(f"config: {e}", file=sys.stderr)
        sys.exit(EXIT_USAGE)
    except ValueError as e:
        # Raised while reading YAML (circular include, bad top level)
        print(f"config: {e}", file=sys.stderr)
        sys.exit(EXIT_USAGE)


if __name__ == "__main__":
    main()
