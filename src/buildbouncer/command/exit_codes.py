"""Process exit codes shared by all commands."""

EXIT_OK = 0
EXIT_USAGE = 2  # bad arguments, missing or invalid config, aborted run
EXIT_FAILED = 10  # at least one check failed
