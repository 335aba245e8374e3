"""
Interactive installation offers for a missing web server or ACME client.

Only reached when BackendResolver finds neither a container nor a host
installation and the run is interactive.
"""

import shutil
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import click

from .command_utils import CommandRunner, run_command
from .config import Config
from .console import console_manager
from .logutil import logger
from .types import BackendMode, Error, ErrorKind, Result, Success

NGINX_COMPOSE_EXAMPLE = """services:
  nginx:
    image: nginx:stable-alpine
    container_name: nginx
    ports:
      - 80:80
      - 443:443
    volumes:
      - {root}/conf.d:/etc/nginx/conf.d
      - {root}/html:/var/www
      - {root}/logs:/var/log/nginx
      - {root}/certs:/etc/nginx/certs"""

NGINX_SIGNING_KEY_URL = "https://nginx.org/keys/nginx_signing.key"
NGINX_KEYRING = "/usr/share/keyrings/nginx-archive-keyring.gpg"
NGINX_YUM_REPO = """[nginx-stable]
name=nginx stable repo
baseurl=http://nginx.org/packages/centos/$releasever/$basearch/
gpgcheck=1
enabled=1
gpgkey=https://nginx.org/keys/nginx_signing.key
module_hotfixes=true
"""
SITES_ENABLED_INCLUDE = "include /etc/nginx/sites-enabled/*.conf;"

ACME_IMAGE = "neilpang/acme.sh:latest"
ACME_INSTALL_URL = "https://get.acme.sh"
DOCKER_INSTALL_URL = "https://docs.docker.com/get-docker/"

APT_DISTROS = ("ubuntu", "debian")
YUM_DISTROS = ("centos", "rhel", "fedora")


def parse_os_release(text: str) -> dict[str, str]:
    """Parse /etc/os-release style KEY=value lines."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key] = value.strip().strip('"').strip("'")
    return values


def _cancelled() -> Error:
    console_manager.print_processing("Cancelled")
    return Error(error="Cancelled", kind=ErrorKind.CANCELLED)


class Installer:
    """Offer and perform installation of nginx or acme.sh."""

    def __init__(
        self,
        config: Config,
        runner: CommandRunner = run_command,
        prompt: Callable[..., Any] = click.prompt,
        which: Callable[[str], str | None] = shutil.which,
        os_release: Path = Path("/etc/os-release"),
    ) -> None:
        self.config = config
        self.runner = runner
        self.prompt = prompt
        self.which = which
        self.os_release = os_release

    def _choose(self, options: Sequence[str]) -> str:
        console_manager.print_bullets(
            f"{i}) {option}" for i, option in enumerate(options, start=1)
        )
        choices = [str(i) for i in range(1, len(options) + 1)]
        return str(self.prompt("Select", type=click.Choice(choices)))

    def _run_steps(self, steps: Sequence[Sequence[str]]) -> Result:
        for step in steps:
            result = self.runner(step, capture=False)
            if isinstance(result, Error):
                return result
        return Success()

    def offer_web_server(self) -> Result:
        """Returns Success with the installed BackendMode, or an Error."""
        console_manager.print_error("Nginx not found!")
        console_manager.print("Would you like to install Nginx now?")
        choice = self._choose(
            [
                "Docker Nginx (recommended, isolated)",
                "Native Nginx Stable (system-wide installation)",
                "Cancel",
            ]
        )

        if choice == "1":
            root = self.config.get("web_server.container_root")
            console_manager.print_processing(
                "Please install Docker Nginx manually using docker-compose"
            )
            console_manager.print("Example docker-compose.yml:")
            console_manager.print_raw(NGINX_COMPOSE_EXAMPLE.format(root=root))
            return Error(
                error="Nginx container is not set up yet",
                recovery_suggestions="Start the compose service, then re-run",
                kind=ErrorKind.PRECONDITION,
            )
        if choice == "2":
            return self.install_native_nginx()
        return _cancelled()

    def _package_steps(self, release: dict[str, str]) -> list[list[str]] | None:
        distro = release.get("ID", "")
        if distro in APT_DISTROS:
            codename = release.get("VERSION_CODENAME", "")
            source = (
                f"deb [signed-by={NGINX_KEYRING}] "
                f"http://nginx.org/packages/{distro} {codename} nginx"
            )
            return [
                ["sudo", "apt", "update"],
                [
                    "sudo", "apt", "install", "-y",
                    "curl", "gnupg2", "ca-certificates", "lsb-release",
                ],
                [
                    "sudo", "sh", "-c",
                    f"curl -fsSL {NGINX_SIGNING_KEY_URL} | gpg --dearmor --yes -o {NGINX_KEYRING}",
                ],
                [
                    "sudo", "sh", "-c",
                    f"echo '{source}' > /etc/apt/sources.list.d/nginx.list",
                ],
                ["sudo", "apt", "update"],
                ["sudo", "apt", "install", "-y", "nginx"],
            ]
        if distro in YUM_DISTROS:
            return [
                ["sudo", "yum", "install", "-y", "yum-utils"],
                [
                    "sudo", "sh", "-c",
                    f"cat > /etc/yum.repos.d/nginx.repo <<'EOF'\n{NGINX_YUM_REPO}EOF",
                ],
                ["sudo", "yum", "install", "-y", "nginx"],
            ]
        return None

    def install_native_nginx(self) -> Result:
        console_manager.print_processing("Installing Nginx Stable...")
        try:
            release = parse_os_release(self.os_release.read_text(encoding="utf-8"))
        except OSError as e:
            return Error(
                error="Cannot detect OS", exception=e, kind=ErrorKind.PRECONDITION
            )

        distro = release.get("ID", "unknown")
        steps = self._package_steps(release)
        if steps is None:
            return Error(
                error=f"Unsupported OS: {distro}",
                recovery_suggestions="Please install Nginx manually",
                kind=ErrorKind.PRECONDITION,
            )
        console_manager.print_processing(f"Detected: {distro}")
        logger.info("Installing nginx for %s", distro)

        native_root = str(self.config.get("web_server.native_root"))
        nginx_conf = f"{native_root}/nginx.conf"
        steps += [
            ["sudo", "systemctl", "start", "nginx"],
            ["sudo", "systemctl", "enable", "nginx"],
            [
                "sudo", "mkdir", "-p",
                f"{native_root}/sites-available",
                f"{native_root}/sites-enabled",
                str(self.config.get("paths.native_html_dir")),
                str(self.config.get("paths.native_cert_dir")),
            ],
            ["sudo", "cp", nginx_conf, f"{nginx_conf}.bak"],
        ]
        result = self._run_steps(steps)
        if isinstance(result, Error):
            return result

        if isinstance(self.runner(["grep", "-q", "sites-enabled", nginx_conf]), Error):
            include = SITES_ENABLED_INCLUDE.replace("/etc/nginx", native_root)
            result = self._run_steps(
                [["sudo", "sed", "-i", f"/http {{/a \\    {include}", nginx_conf]]
            )
            if isinstance(result, Error):
                return result

        result = self._run_steps([["sudo", "systemctl", "restart", "nginx"]])
        if isinstance(result, Error):
            return result

        console_manager.print_success("Nginx Stable installed successfully!")
        return Success(data=BackendMode.NATIVE)

    def offer_acme(self) -> Result:
        """Returns Success with the installed BackendMode, or an Error."""
        console_manager.print_processing("ACME.sh is not installed")
        console_manager.print("Choose installation method:")
        choice = self._choose(
            [
                "Docker (recommended, isolated)",
                "Native (install to ~/.acme.sh/)",
                "Cancel",
            ]
        )
        if choice == "1":
            return self.install_container_acme()
        if choice == "2":
            return self.install_native_acme()
        return _cancelled()

    def install_container_acme(self) -> Result:
        console_manager.print_processing("Installing ACME.sh via Docker...")
        if not self.which("docker"):
            return Error(
                error="Docker is not installed!",
                recovery_suggestions=f"Please install Docker first: {DOCKER_INSTALL_URL}",
                kind=ErrorKind.PRECONDITION,
            )

        state_dir = Path("~/.acme.sh").expanduser()
        root = self.config.expand_path("web_server.container_root")
        for directory in (state_dir, root / "certs", root / "html"):
            directory.mkdir(parents=True, exist_ok=True)

        name = str(self.config.get("acme.container_name"))
        result = self.runner(
            [
                "docker", "run", "-d",
                "--name", name,
                "--restart=unless-stopped",
                "-v", f"{state_dir}:/acme.sh",
                "-v", f"{root / 'certs'}:{self.config.get('acme.container_certs')}",
                "-v", f"{root / 'html'}:{self.config.get('acme.container_webroot')}",
                ACME_IMAGE, "daemon",
            ]
        )
        if isinstance(result, Error):
            return result

        console_manager.print_success("ACME.sh Docker container installed successfully!")
        return Success(data=BackendMode.CONTAINERIZED)

    def install_native_acme(self) -> Result:
        console_manager.print_processing("Installing ACME.sh natively...")
        email = self.config.get("acme.account_email") or "my@example.com"
        result = self.runner(
            ["sh", "-c", f"curl -fsSL {ACME_INSTALL_URL} | sh -s email={email}"],
            capture=False,
        )
        if isinstance(result, Error):
            return result

        console_manager.print_success("ACME.sh installed successfully!")
        console_manager.print_processing(
            f"Installation path: {self.config.expand_path('acme.native_path')}"
        )
        return Success(data=BackendMode.NATIVE)
