"""CLI command modules for tickwork.

Command modules are imported by ``tickwork.main``; this package only
exposes the exit codes shared with ``tickwork.exceptions``.
"""

from tickwork.cli.exit_codes import ExitCode

__all__ = ["ExitCode"]
