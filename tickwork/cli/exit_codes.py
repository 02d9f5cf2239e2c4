"""Standard exit codes for the tickwork CLI.

This module defines the exit codes used across tickwork commands
for consistent error reporting and scripting support.
"""


class ExitCode:
    """Standard exit codes for the tickwork CLI.

    These codes follow common Unix conventions where possible:
    - 0: Success
    - 1: General error
    - 130: Script terminated by Ctrl+C (SIGINT)

    Tickwork-specific codes:
    - 2: Configuration error (bad config file, invalid task interval)
    - 3: Discovery error
    - 4: Task work error
    - 5: Log sink error
    - 7: Invalid argument
    - 8: Task not found
    """

    SUCCESS = 0
    GENERAL_ERROR = 1

    CONFIGURATION_ERROR = 2
    DISCOVERY_ERROR = 3
    WORK_ERROR = 4
    LOG_SINK_ERROR = 5
    INVALID_ARGUMENT = 7
    NOT_FOUND = 8

    # 128 + SIGINT
    CANCELLED = 130
