import logging
import subprocess
from collections.abc import Callable, Mapping, Sequence

from .types import Error, ErrorKind, Result, Success

logger = logging.getLogger(__name__)

# Flags whose following argument must never reach the logs
SECRET_FLAGS = frozenset({"--eab-kid", "--eab-hmac-key"})

CommandRunner = Callable[..., Result]


def redact_command(cmd: Sequence[str]) -> str:
    """Render a command for logging with secret arguments masked."""
    parts: list[str] = []
    hide_next = False
    for arg in cmd:
        parts.append("***" if hide_next else str(arg))
        hide_next = str(arg) in SECRET_FLAGS
    return " ".join(parts)


def run_command(
    cmd: Sequence[str],
    capture: bool = True,
    env: Mapping[str, str] | None = None,
) -> Result:
    """Run an external command and wait for it to finish.

    Args:
        cmd: Command and arguments
        capture: Whether to capture output (False streams it to the terminal)
        env: Optional environment for the child process

    Returns:
        Success with stripped stdout as data (None when not capturing)
        Error with stderr (or the exit code) on failure
    """
    printable = redact_command(cmd)
    logger.info("Running command: %s", printable)

    try:
        result = subprocess.run(
            [str(arg) for arg in cmd],
            capture_output=capture,
            check=False,
            text=True,
            encoding="utf-8",
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as e:
        error_msg = f"{cmd[0]} not found. Please install it and try again."
        logger.debug(error_msg)
        return Error(error=error_msg, exception=e, kind=ErrorKind.PRECONDITION)
    except OSError as e:
        logger.debug("Exception running %s: %s", printable, e, exc_info=True)
        return Error(error=str(e), exception=e)

    if result.returncode != 0:
        details = (result.stderr or result.stdout or "").strip() if capture else ""
        error_message = f"Command failed with exit code {result.returncode}"
        if details:
            error_message = f"{error_message}: {details}"
        logger.debug("Command failed: %s", error_message)
        return Error(error=error_message, kind=ErrorKind.EXTERNAL)

    if capture:
        output = (result.stdout or "").strip()
        logger.debug("Command output: %s", output)
        # nginx -t and friends report on stderr even when they succeed
        return Success(data=output or (result.stderr or "").strip())
    return Success()
