"""
Per-invocation wiring of configuration, backends and services.

One AppContext is created for each CLI invocation and handed to commands
through ``click.Context.obj``; tests pass their own with fakes injected.
"""

import shutil
import sys
from collections.abc import Callable

from .backends import AcmeBackend, BackendResolver, WebServerBackend
from .certificates import CertificateEngine, IssuanceJournal
from .command_utils import CommandRunner, run_command
from .config import Config
from .credentials import (
    CredentialCollector,
    CredentialSource,
    EnvironmentCredentialSource,
    PromptCredentialSource,
)
from .registry import SiteRegistry
from .reload_gate import ReloadGate
from .types import BackendMode, Error, ErrorKind, Result, Success


class AppContext:
    def __init__(
        self,
        config: Config | None = None,
        runner: CommandRunner = run_command,
        interactive: bool | None = None,
        credential_source: CredentialSource | None = None,
        resolver: BackendResolver | None = None,
        journal: IssuanceJournal | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self._config = config
        self.runner = runner
        self.interactive = sys.stdin.isatty() if interactive is None else interactive
        self._credential_source = credential_source
        self._resolver = resolver
        self._journal = journal
        self.which = which

    @property
    def config(self) -> Config:
        if self._config is None:
            self._config = Config()
        return self._config

    @property
    def resolver(self) -> BackendResolver:
        if self._resolver is None:
            self._resolver = BackendResolver(
                self.config,
                runner=self.runner,
                interactive=self.interactive,
                which=self.which,
            )
        return self._resolver

    @property
    def credential_source(self) -> CredentialSource:
        if self._credential_source is None:
            self._credential_source = (
                PromptCredentialSource()
                if self.interactive
                else EnvironmentCredentialSource()
            )
        return self._credential_source

    @property
    def journal(self) -> IssuanceJournal:
        if self._journal is None:
            self._journal = IssuanceJournal(self.config.config_dir / "issuance")
        return self._journal

    def web_backend(self, require_running: bool = True) -> Result:
        """Resolve nginx and, unless told otherwise, insist that it is running."""
        resolved = self.resolver.resolve_web_server()
        if isinstance(resolved, Error):
            return resolved
        web: WebServerBackend = resolved.data
        if require_running and not web.is_running():
            what = "container" if web.mode == BackendMode.CONTAINERIZED else "service"
            return Error(
                error=f"Nginx {what} is not running!",
                recovery_suggestions=web.not_running_hint(),
                kind=ErrorKind.PRECONDITION,
            )
        return Success(data=web)

    def available_acme(self) -> AcmeBackend | None:
        """The ACME backend if one is already present; never offers installation."""
        if self.resolver.detect_acme() is None:
            return None
        resolved = self.resolver.resolve_acme()
        return resolved.data if isinstance(resolved, Success) else None

    def gate(self, web: WebServerBackend) -> ReloadGate:
        restore = bool(self.config.get("safety.restore_on_failed_test", True))
        return ReloadGate(web, restore_on_failure=restore)

    def registry(
        self, web: WebServerBackend | None = None, acme: AcmeBackend | None = None
    ) -> SiteRegistry:
        paths = web.root_paths() if web is not None else self.resolver.root_paths()
        gate = self.gate(web) if web is not None else None
        return SiteRegistry(paths, gate=gate, acme=acme)

    def engine(self, web: WebServerBackend) -> CertificateEngine:
        gate = self.gate(web)
        return CertificateEngine(
            registry=SiteRegistry(web.root_paths(), gate=gate),
            resolver=self.resolver,
            credentials=CredentialCollector(self.credential_source),
            journal=self.journal,
            gate=gate,
            config=self.config,
        )
