"""
Web server and ACME client backends.

Each collaborator is reachable either as a Docker container or as a host
installation. BackendResolver picks one per collaborator, once per process,
and everything else talks to the chosen backend through the interfaces
below.
"""

import os
import re
import shutil
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from .command_utils import CommandRunner, run_command
from .config import Config
from .console import console_manager
from .credentials import FORWARDED_ENV_VARS
from .logutil import logger
from .render import FULLCHAIN_FILE, ServerPaths, key_file_name
from .types import BackendMode, Error, ErrorKind, Result, Success

if TYPE_CHECKING:
    from .installer import Installer


@dataclass(frozen=True)
class RootPaths:
    """Where site files live on this host, and how nginx sees them."""

    conf_dir: Path
    html_dir: Path
    log_dir: Path
    cert_dir: Path
    backup_dir: Path
    # Only set for native installs using sites-available/sites-enabled
    enabled_dir: Path | None = None
    server: ServerPaths = field(default_factory=ServerPaths)


def container_root_paths(config: Config) -> RootPaths:
    root = config.expand_path("web_server.container_root")
    return RootPaths(
        conf_dir=root / "conf.d",
        html_dir=root / "html",
        log_dir=root / "logs",
        cert_dir=root / "certs",
        backup_dir=root / "backups",
        server=ServerPaths(
            html_dir=str(config.get("paths.server_html_dir")),
            log_dir=str(config.get("paths.server_log_dir")),
            cert_dir=str(config.get("paths.server_cert_dir")),
        ),
    )


def native_root_paths(config: Config) -> RootPaths:
    root = config.expand_path("web_server.native_root")
    html_dir = config.expand_path("paths.native_html_dir")
    log_dir = config.expand_path("paths.native_log_dir")
    cert_dir = config.expand_path("paths.native_cert_dir")
    return RootPaths(
        conf_dir=root / "sites-available",
        enabled_dir=root / "sites-enabled",
        html_dir=html_dir,
        log_dir=log_dir,
        cert_dir=cert_dir,
        backup_dir=root / "backups",
        # nginx runs on this host, so it sees the same paths
        server=ServerPaths(
            html_dir=str(html_dir), log_dir=str(log_dir), cert_dir=str(cert_dir)
        ),
    )


def running_containers(runner: CommandRunner) -> set[str]:
    """Names of running Docker containers; empty when Docker is unavailable."""
    result = runner(["docker", "ps", "--format", "{{.Names}}"])
    if isinstance(result, Error):
        logger.debug("docker ps unavailable: %s", result.error)
        return set()
    return {line.strip() for line in str(result.data or "").splitlines() if line.strip()}


class WebServerBackend(ABC):
    """Operations sitectl needs from nginx."""

    mode: BackendMode

    def __init__(self, config: Config, runner: CommandRunner = run_command) -> None:
        self.config = config
        self.runner = runner

    @abstractmethod
    def is_running(self) -> bool: ...

    @abstractmethod
    def exec(self, args: Sequence[str], capture: bool = True) -> Result: ...

    @abstractmethod
    def reload(self) -> Result: ...

    @abstractmethod
    def root_paths(self) -> RootPaths: ...

    @abstractmethod
    def status_text(self) -> str: ...

    @abstractmethod
    def not_running_hint(self) -> str: ...

    def test(self) -> Result:
        """Check configuration syntax (``nginx -t``)."""
        return self.exec(["nginx", "-t"])


class ContainerWebServer(WebServerBackend):
    mode = BackendMode.CONTAINERIZED

    @property
    def name(self) -> str:
        return str(self.config.get("web_server.container_name"))

    def is_running(self) -> bool:
        return self.name in running_containers(self.runner)

    def exec(self, args: Sequence[str], capture: bool = True) -> Result:
        return self.runner(["docker", "exec", self.name, *args], capture=capture)

    def reload(self) -> Result:
        return self.exec(["nginx", "-s", "reload"])

    def root_paths(self) -> RootPaths:
        return container_root_paths(self.config)

    def status_text(self) -> str:
        result = self.runner(
            [
                "docker",
                "ps",
                "--filter",
                f"name=^{self.name}$",
                "--format",
                "{{.Names}}\t{{.Status}}\t{{.Image}}",
            ]
        )
        if isinstance(result, Success) and result.data:
            return str(result.data)
        return f"Container {self.name} is not running"

    def not_running_hint(self) -> str:
        return f"Start it with: docker start {self.name}"


class NativeWebServer(WebServerBackend):
    mode = BackendMode.NATIVE

    def _privileged(self, args: Sequence[str]) -> list[str]:
        use_sudo = bool(self.config.get("web_server.use_sudo", True))
        if use_sudo and os.geteuid() != 0:
            return ["sudo", *args]
        return list(args)

    def is_running(self) -> bool:
        result = self.runner(["systemctl", "is-active", "--quiet", "nginx"])
        return isinstance(result, Success)

    def exec(self, args: Sequence[str], capture: bool = True) -> Result:
        return self.runner(self._privileged(args), capture=capture)

    def reload(self) -> Result:
        return self.exec(["systemctl", "reload", "nginx"])

    def root_paths(self) -> RootPaths:
        return native_root_paths(self.config)

    def status_text(self) -> str:
        state = "active" if self.is_running() else "not active"
        return f"nginx.service is {state}"

    def not_running_hint(self) -> str:
        return "Start it with: sudo systemctl start nginx"


class AcmeBackend(ABC):
    """Operations sitectl needs from acme.sh."""

    mode: BackendMode

    def __init__(
        self,
        config: Config,
        paths: RootPaths,
        runner: CommandRunner = run_command,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.paths = paths
        self.runner = runner
        self.env = env if env is not None else os.environ

    @abstractmethod
    def command(self) -> list[str]:
        """argv prefix that invokes acme.sh."""

    @abstractmethod
    def webroot_for(self, domain: str) -> str:
        """Document root of domain as acme.sh sees it."""

    @abstractmethod
    def cert_dir_for(self, domain: str) -> str:
        """Certificate directory of domain as acme.sh sees it."""

    @abstractmethod
    def status_text(self) -> str: ...

    def cert_paths_for(self, domain: str) -> tuple[str, str]:
        """Key and full-chain paths for domain as acme.sh sees them."""
        cert_dir = self.cert_dir_for(domain)
        return f"{cert_dir}/{key_file_name(domain)}", f"{cert_dir}/{FULLCHAIN_FILE}"

    def exec(self, args: Sequence[str], capture: bool = True) -> Result:
        return self.runner([*self.command(), *args], capture=capture)

    def list_certificates(self) -> Result:
        return self.exec(["--list"])

    def certificate_info(self, domain: str) -> Result:
        return self.exec(["--info", "-d", domain])

    def version(self) -> Result:
        return self.exec(["--version"])

    def has_wildcard_for(self, apex: str) -> bool:
        """Whether acme.sh already manages a certificate covering ``*.apex``."""
        result = self.list_certificates()
        if isinstance(result, Error):
            logger.debug("Certificate listing failed: %s", result.error)
            return False
        return listing_has_wildcard(str(result.data or ""), apex)


def listing_has_wildcard(listing: str, apex: str) -> bool:
    """Check ``acme.sh --list`` output for a ``*.apex`` name."""
    return f"*.{apex}" in re.split(r"[\s,]+", listing)


class ContainerAcme(AcmeBackend):
    mode = BackendMode.CONTAINERIZED

    @property
    def name(self) -> str:
        return str(self.config.get("acme.container_name"))

    def command(self) -> list[str]:
        cmd = ["docker", "exec"]
        # docker reads the value of a bare ``-e VAR`` from its own environment
        for var in FORWARDED_ENV_VARS:
            if self.env.get(var):
                cmd.extend(["-e", var])
        return [*cmd, self.name, "acme.sh"]

    def webroot_for(self, domain: str) -> str:
        return f"{self.config.get('acme.container_webroot')}/{domain}"

    def cert_dir_for(self, domain: str) -> str:
        return f"{self.config.get('acme.container_certs')}/{domain}"

    def status_text(self) -> str:
        result = self.runner(
            [
                "docker",
                "ps",
                "--filter",
                f"name=^{self.name}$",
                "--format",
                "{{.Names}}\t{{.Status}}\t{{.Image}}",
            ]
        )
        if isinstance(result, Success) and result.data:
            return str(result.data)
        return f"ACME container {self.name} not found"


class NativeAcme(AcmeBackend):
    mode = BackendMode.NATIVE

    @property
    def script(self) -> Path:
        return self.config.expand_path("acme.native_path")

    def command(self) -> list[str]:
        return [str(self.script)]

    def webroot_for(self, domain: str) -> str:
        return str(self.paths.html_dir / domain)

    def cert_dir_for(self, domain: str) -> str:
        return str(self.paths.cert_dir / domain)

    def status_text(self) -> str:
        return f"Native installation path: {self.script}"


WEB_SERVER_INSTALL_HINT = (
    "Run nginx in a container named 'nginx' or install nginx on this host, "
    "then re-run"
)
ACME_INSTALL_HINT = """Install acme.sh using one of these methods:

1. Docker version (recommended):
   docker run -d --name acme --restart=unless-stopped \\
     -v ~/.acme.sh:/acme.sh \\
     -v /opt/nginx/certs:/certs \\
     -v /opt/nginx/html:/webroot \\
     neilpang/acme.sh:latest daemon

2. Native installation:
   curl https://get.acme.sh | sh"""


class BackendResolver:
    """Choose and remember the web server and ACME client backends.

    Policy, first match wins: a running container with the configured name,
    then a host installation, then (interactive runs only) an installation
    offer. Choices are fixed for the lifetime of the resolver.
    """

    def __init__(
        self,
        config: Config | None = None,
        runner: CommandRunner = run_command,
        installer: "Installer | None" = None,
        interactive: bool = True,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.config = config or Config()
        self.runner = runner
        self.interactive = interactive
        self.which = which
        self._installer = installer
        self._web: WebServerBackend | None = None
        self._acme: AcmeBackend | None = None

    @property
    def installer(self) -> "Installer":
        if self._installer is None:
            from .installer import Installer

            self._installer = Installer(self.config, runner=self.runner, which=self.which)
        return self._installer

    def detect_web_server(self) -> BackendMode | None:
        name = str(self.config.get("web_server.container_name"))
        if name in running_containers(self.runner):
            return BackendMode.CONTAINERIZED
        if self.which("nginx"):
            return BackendMode.NATIVE
        return None

    def detect_acme(self) -> BackendMode | None:
        name = str(self.config.get("acme.container_name"))
        if name in running_containers(self.runner):
            return BackendMode.CONTAINERIZED
        if self.config.expand_path("acme.native_path").is_file():
            return BackendMode.NATIVE
        return None

    def resolve_web_server(self) -> Result:
        if self._web is not None:
            return Success(data=self._web)

        mode = self.detect_web_server()
        if mode is None:
            if not self.interactive:
                return Error(
                    error="Nginx not found!",
                    recovery_suggestions=WEB_SERVER_INSTALL_HINT,
                    kind=ErrorKind.PRECONDITION,
                )
            offer = self.installer.offer_web_server()
            if isinstance(offer, Error):
                return offer
            mode = offer.data

        backend_cls = (
            ContainerWebServer if mode == BackendMode.CONTAINERIZED else NativeWebServer
        )
        self._web = backend_cls(self.config, runner=self.runner)
        logger.info("Web server backend resolved: %s", mode.value)
        console_manager.print_processing(f"Using Nginx ({mode.value} mode)")
        return Success(data=self._web)

    def resolve_acme(self) -> Result:
        if self._acme is not None:
            return Success(data=self._acme)

        mode = self.detect_acme()
        if mode is None:
            if not self.interactive:
                return Error(
                    error="ACME.sh not found!",
                    recovery_suggestions=ACME_INSTALL_HINT,
                    kind=ErrorKind.PRECONDITION,
                )
            offer = self.installer.offer_acme()
            if isinstance(offer, Error):
                return offer
            mode = offer.data

        backend_cls = ContainerAcme if mode == BackendMode.CONTAINERIZED else NativeAcme
        self._acme = backend_cls(self.config, self.root_paths(), runner=self.runner)
        logger.info("ACME client backend resolved: %s", mode.value)
        console_manager.print_processing(f"Using ACME ({mode.value} mode)")
        return Success(data=self._acme)

    def root_paths(self) -> RootPaths:
        """Paths of the resolved web server; container layout until one is chosen."""
        if self._web is not None:
            return self._web.root_paths()
        return container_root_paths(self.config)
