"""Tests for web server and ACME client backends and their resolution."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from fakes import FakeRunner, acme_listing

from sitectl.backends import (
    BackendResolver,
    ContainerAcme,
    ContainerWebServer,
    NativeAcme,
    NativeWebServer,
    RootPaths,
    container_root_paths,
    listing_has_wildcard,
    native_root_paths,
    running_containers,
)
from sitectl.config import Config
from sitectl.types import BackendMode, Error, ErrorKind, Success


@pytest.fixture
def runner() -> FakeRunner:
    fake = FakeRunner()
    fake.on("docker", "ps", result=Success(data="nginx\nacme\nredis"))
    return fake


def test_running_containers(runner: FakeRunner) -> None:
    assert running_containers(runner) == {"nginx", "acme", "redis"}


def test_running_containers_without_docker() -> None:
    fake = FakeRunner()
    fake.on("docker", result=Error(error="docker not found", kind=ErrorKind.PRECONDITION))
    assert running_containers(fake) == set()


def test_container_root_paths(test_config: Config) -> None:
    test_config.set("web_server.container_root", "/srv/nginx")
    paths = container_root_paths(test_config)

    assert paths.conf_dir == Path("/srv/nginx/conf.d")
    assert paths.html_dir == Path("/srv/nginx/html")
    assert paths.cert_dir == Path("/srv/nginx/certs")
    assert paths.backup_dir == Path("/srv/nginx/backups")
    assert paths.enabled_dir is None
    assert paths.server.cert_dir == "/etc/nginx/certs"


def test_native_root_paths(test_config: Config) -> None:
    paths = native_root_paths(test_config)

    assert paths.conf_dir == Path("/etc/nginx/sites-available")
    assert paths.enabled_dir == Path("/etc/nginx/sites-enabled")
    assert paths.html_dir == Path("/var/www")
    assert paths.server.html_dir == "/var/www"


def test_container_web_server(test_config: Config, runner: FakeRunner) -> None:
    web = ContainerWebServer(test_config, runner=runner)

    assert web.is_running()
    web.test()
    web.reload()
    assert runner.calls[-2] == ["docker", "exec", "nginx", "nginx", "-t"]
    assert runner.calls[-1] == ["docker", "exec", "nginx", "nginx", "-s", "reload"]
    assert web.not_running_hint() == "Start it with: docker start nginx"


def test_container_web_server_not_running(test_config: Config) -> None:
    fake = FakeRunner()
    fake.on("docker", "ps", result=Success(data="acme"))
    web = ContainerWebServer(test_config, runner=fake)

    assert not web.is_running()
    assert web.status_text() == "Container nginx is not running"


def test_native_web_server_uses_sudo(test_config: Config, runner: FakeRunner) -> None:
    web = NativeWebServer(test_config, runner=runner)

    with patch("sitectl.backends.os.geteuid", return_value=1000):
        web.reload()
    assert runner.calls[-1] == ["sudo", "systemctl", "reload", "nginx"]

    with patch("sitectl.backends.os.geteuid", return_value=0):
        web.test()
    assert runner.calls[-1] == ["nginx", "-t"]

    test_config.set("web_server.use_sudo", "false")
    with patch("sitectl.backends.os.geteuid", return_value=1000):
        web.test()
    assert runner.calls[-1] == ["nginx", "-t"]


def test_native_web_server_running_state(test_config: Config) -> None:
    fake = FakeRunner()
    fake.on("is-active", result=Error(error="inactive"))
    web = NativeWebServer(test_config, runner=fake)

    assert not web.is_running()
    assert web.status_text() == "nginx.service is not active"


def test_container_acme_command_forwards_credentials(
    test_config: Config, root_paths: RootPaths, runner: FakeRunner
) -> None:
    acme = ContainerAcme(
        test_config, root_paths, runner=runner, env={"CF_Token": "t", "CF_Key": ""}
    )

    assert acme.command() == ["docker", "exec", "-e", "CF_Token", "acme", "acme.sh"]
    assert acme.webroot_for("example.com") == "/webroot/example.com"
    assert acme.cert_paths_for("example.com") == (
        "/certs/example.com/example.com.key",
        "/certs/example.com/fullchain.cer",
    )

    acme.version()
    assert runner.calls[-1] == [
        "docker", "exec", "-e", "CF_Token", "acme", "acme.sh", "--version",
    ]


def test_native_acme_uses_host_paths(
    test_config: Config, root_paths: RootPaths, runner: FakeRunner
) -> None:
    test_config.set("acme.native_path", "/opt/acme/acme.sh")
    acme = NativeAcme(test_config, root_paths, runner=runner, env={})

    assert acme.command() == ["/opt/acme/acme.sh"]
    assert acme.webroot_for("example.com") == str(root_paths.html_dir / "example.com")
    assert acme.cert_dir_for("example.com") == str(root_paths.cert_dir / "example.com")

    acme.certificate_info("example.com")
    assert runner.calls[-1] == ["/opt/acme/acme.sh", "--info", "-d", "example.com"]


def test_listing_has_wildcard() -> None:
    listing = acme_listing(
        ("example.com", "*.example.com"),
        ("shop.example.org", "www.shop.example.org,*.example.net"),
    )
    assert listing_has_wildcard(listing, "example.com")
    assert listing_has_wildcard(listing, "example.net")
    assert not listing_has_wildcard(listing, "example.org")
    assert not listing_has_wildcard(acme_listing(), "example.com")


def test_has_wildcard_for_handles_failure(
    test_config: Config, root_paths: RootPaths
) -> None:
    fake = FakeRunner()
    fake.on("--list", result=Error(error="acme.sh exploded"))
    acme = ContainerAcme(test_config, root_paths, runner=fake, env={})
    assert not acme.has_wildcard_for("example.com")


def test_resolver_prefers_container(test_config: Config, runner: FakeRunner) -> None:
    resolver = BackendResolver(
        test_config, runner=runner, interactive=False, which=lambda _: "/usr/sbin/nginx"
    )

    result = resolver.resolve_web_server()
    assert isinstance(result, Success)
    assert isinstance(result.data, ContainerWebServer)


def test_resolver_falls_back_to_native(test_config: Config) -> None:
    fake = FakeRunner()
    fake.on("docker", "ps", result=Error(error="docker not found"))
    resolver = BackendResolver(
        test_config, runner=fake, interactive=False, which=lambda _: "/usr/sbin/nginx"
    )

    assert resolver.detect_web_server() == BackendMode.NATIVE
    result = resolver.resolve_web_server()
    assert isinstance(result, Success)
    assert isinstance(result.data, NativeWebServer)
    assert resolver.root_paths() == native_root_paths(test_config)


def test_resolver_native_acme(test_config: Config, tmp_path: Path) -> None:
    script = tmp_path / "acme.sh"
    script.write_text("#!/bin/sh\n")
    test_config.set("acme.native_path", str(script))
    fake = FakeRunner()
    fake.on("docker", "ps", result=Success(data="nginx"))
    resolver = BackendResolver(test_config, runner=fake, interactive=False)

    assert resolver.detect_acme() == BackendMode.NATIVE
    result = resolver.resolve_acme()
    assert isinstance(result, Success)
    assert isinstance(result.data, NativeAcme)


def test_resolver_memoizes_choice(test_config: Config, runner: FakeRunner) -> None:
    resolver = BackendResolver(test_config, runner=runner, interactive=False)

    first = resolver.resolve_acme()
    calls = len(runner.calls)
    second = resolver.resolve_acme()

    assert isinstance(first, Success) and isinstance(second, Success)
    assert first.data is second.data
    assert len(runner.calls) == calls


def test_resolver_non_interactive_missing(test_config: Config, tmp_path: Path) -> None:
    test_config.set("acme.native_path", str(tmp_path / "missing" / "acme.sh"))
    fake = FakeRunner()
    installer = MagicMock()
    resolver = BackendResolver(
        test_config,
        runner=fake,
        installer=installer,
        interactive=False,
        which=lambda _: None,
    )

    web = resolver.resolve_web_server()
    acme = resolver.resolve_acme()

    assert isinstance(web, Error)
    assert web.error == "Nginx not found!"
    assert web.kind == ErrorKind.PRECONDITION
    assert isinstance(acme, Error)
    assert acme.error == "ACME.sh not found!"
    assert "neilpang/acme.sh" in (acme.recovery_suggestions or "")
    installer.offer_web_server.assert_not_called()
    installer.offer_acme.assert_not_called()


def test_resolver_interactive_offers_install(
    test_config: Config, tmp_path: Path
) -> None:
    test_config.set("acme.native_path", str(tmp_path / "missing" / "acme.sh"))
    installer = MagicMock()
    installer.offer_acme.return_value = Success(data=BackendMode.CONTAINERIZED)
    installer.offer_web_server.return_value = Error(
        error="Cancelled", kind=ErrorKind.CANCELLED
    )
    resolver = BackendResolver(
        test_config,
        runner=FakeRunner(),
        installer=installer,
        interactive=True,
        which=lambda _: None,
    )

    acme = resolver.resolve_acme()
    assert isinstance(acme, Success)
    assert isinstance(acme.data, ContainerAcme)

    web = resolver.resolve_web_server()
    assert isinstance(web, Error)
    assert web.kind == ErrorKind.CANCELLED
