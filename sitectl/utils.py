"""
Utility functions for sitectl.

Contains reusable helper functions used across the application.
"""

import subprocess
import sys
from typing import NoReturn

from .console import console_manager


def handle_exception(e: Exception, exit_on_error: bool = True) -> NoReturn | None:
    """Handle common exceptions consistently.

    Args:
        e: The exception to handle
        exit_on_error: Whether to exit the program on error

    Returns:
        None if exit_on_error is False, otherwise does not return
    """
    if isinstance(e, subprocess.CalledProcessError):
        if e.stderr:
            console_manager.error_console.print(e.stderr, end="")
        else:
            console_manager.print_error(
                f"Command failed with exit code {getattr(e, 'returncode', 'unknown')}"
            )

    elif isinstance(e, FileNotFoundError):
        console_manager.print_error(f"File not found: {getattr(e, 'filename', None)}")

    elif isinstance(e, PermissionError):
        console_manager.print_error(
            f"Permission denied: {getattr(e, 'filename', None) or e}"
        )
        console_manager.print_note("Re-run with sufficient privileges (e.g. sudo)")

    else:
        console_manager.print_error(str(e))

    if exit_on_error:
        sys.exit(1)

    return None
