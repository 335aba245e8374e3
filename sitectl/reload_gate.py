"""
Test-then-reload gate in front of every configuration change.

nginx is reloaded only after ``nginx -t`` passes. When a snapshot of the
file that was just rewritten is supplied, a failed test puts the previous
content back so the next reload does not pick up a broken file.
"""

from dataclasses import dataclass
from pathlib import Path

from .backends import WebServerBackend
from .console import console_manager
from .logutil import logger
from .types import Error, Result, Success


@dataclass
class ConfigSnapshot:
    """Content of a config file before it was rewritten (None if it did not exist)."""

    path: Path
    content: bytes | None

    @classmethod
    def take(cls, path: Path) -> "ConfigSnapshot":
        content = path.read_bytes() if path.is_file() else None
        return cls(path=path, content=content)

    def restore(self) -> None:
        if self.content is None:
            self.path.unlink(missing_ok=True)
            logger.info("Removed %s (did not exist before)", self.path)
        else:
            self.path.write_bytes(self.content)
            logger.info("Restored previous content of %s", self.path)


class ReloadGate:
    def __init__(self, web: WebServerBackend, restore_on_failure: bool = True) -> None:
        self.web = web
        self.restore_on_failure = restore_on_failure

    def test(self) -> Result:
        console_manager.print_processing("Testing Nginx configuration...")
        result = self.web.test()
        if isinstance(result, Error):
            logger.info("Configuration test failed: %s", result.error)
            return Error(
                error="Configuration syntax error!",
                exception=result.exception,
                recovery_suggestions=result.error,
                kind=result.kind,
            )
        if result.data:
            console_manager.print_raw(str(result.data))
        console_manager.print_success("Configuration syntax is correct")
        return Success(message="Configuration syntax is correct")

    def apply(self, snapshot: ConfigSnapshot | None = None) -> Result:
        """Test the configuration and reload nginx only if the test passes.

        Args:
            snapshot: Pre-write state of the file the caller just changed

        Returns:
            Success once nginx has reloaded; Error (and no reload) otherwise
        """
        tested = self.test()
        if isinstance(tested, Error):
            if snapshot is not None and self.restore_on_failure:
                snapshot.restore()
                console_manager.print_note(
                    f"Restored the previous version of {snapshot.path}"
                )
            return Error(
                error="Configuration test failed, not reloaded",
                recovery_suggestions=tested.recovery_suggestions,
                kind=tested.kind,
            )

        console_manager.print_processing("Reloading Nginx...")
        reloaded = self.web.reload()
        if isinstance(reloaded, Error):
            return reloaded
        logger.info("nginx reloaded")
        console_manager.print_success("Nginx reloaded")
        return Success(message="Nginx reloaded")
