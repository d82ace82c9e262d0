"""Exception hierarchy for build-bouncer.

Check failures and skips are not exceptions; they are recorded in the
RunReport. Exceptions are reserved for problems that make a run
impossible or meaningless.
"""


class BouncerError(Exception):
    """Base class for all build-bouncer errors."""


class ConfigError(BouncerError):
    """Configuration is missing or invalid."""


class DispatchError(BouncerError):
    """The dispatcher cannot continue the run.

    Distinct from a failing check: the report would be incomplete, so
    the whole run is aborted.
    """


class LogDirectoryError(DispatchError):
    """The log directory could not be created."""


class LogFileError(DispatchError):
    """A per-check log file could not be opened or removed."""


__all__ = [
    "BouncerError",
    "ConfigError",
    "DispatchError",
    "LogDirectoryError",
    "LogFileError",
]
