"""Process exit codes of the Dropwatch CLI."""

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit status returned by every ``dropwatch`` command.

    0, 1 and 130 keep their usual Unix meaning. The rest let scripts tell
    a broken settings file from a remote that refused the check.
    """

    SUCCESS = 0
    GENERAL_ERROR = 1

    CONFIGURATION_ERROR = 2  # settings or a check definition
    CHECK_FAILED = 3  # the remote reported a categorized error
    DATABASE_ERROR = 4
    INVALID_ARGUMENT = 5
    NOT_FOUND = 6
    DAEMON_STATE = 7  # already running, or not running

    CANCELLED = 130  # 128 + SIGINT
