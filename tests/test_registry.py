"""Tests for the filesystem-backed site registry."""

import os
from pathlib import Path

import pytest
from fakes import FakeGate, FakeRunner, acme_listing

from sitectl.backends import ContainerAcme, RootPaths
from sitectl.config import Config
from sitectl.registry import SiteListing, SiteRegistry, derive_state
from sitectl.types import Error, ErrorKind, SiteState, SitectlError, Success


@pytest.fixture
def registry(root_paths: RootPaths, fake_gate: FakeGate) -> SiteRegistry:
    return SiteRegistry(root_paths, gate=fake_gate)


def _secure(registry: SiteRegistry, domain: str) -> None:
    site = registry.site(domain)
    site.cert_dir.mkdir(parents=True, exist_ok=True)
    site.key_path.write_text("KEY\n")
    site.fullchain_path.write_text("CHAIN\n")


def test_create_site(registry: SiteRegistry, fake_gate: FakeGate) -> None:
    result = registry.create("Example.com")

    assert isinstance(result, Success)
    assert result.message == "Website example.com created successfully!"
    site = registry.site("example.com")
    assert site.config_path.is_file()
    assert "server_name example.com;" in site.config_path.read_text()
    assert "Welcome to example.com" in (site.html_dir / "index.html").read_text()
    assert site.log_dir.is_dir()
    assert site.cert_dir.is_dir()
    assert site.state == SiteState.CREATED
    assert len(fake_gate.applied) == 1
    assert fake_gate.applied[0] is not None
    assert fake_gate.applied[0].content is None


def test_create_existing_requires_overwrite(registry: SiteRegistry) -> None:
    registry.create("example.com")

    result = registry.create("example.com")
    assert isinstance(result, Error)
    assert result.kind == ErrorKind.PRECONDITION

    assert isinstance(registry.create("example.com", overwrite=True), Success)


def test_create_rejects_invalid_domain(registry: SiteRegistry, root_paths: RootPaths) -> None:
    result = registry.create("../../etc")

    assert isinstance(result, Error)
    assert result.kind == ErrorKind.USAGE
    assert not root_paths.conf_dir.exists()


def test_create_propagates_gate_failure(root_paths: RootPaths) -> None:
    registry = SiteRegistry(
        root_paths, gate=FakeGate(Error(error="Configuration test failed, not reloaded"))
    )
    result = registry.create("example.com")
    assert isinstance(result, Error)


def test_mutation_without_gate_raises(root_paths: RootPaths) -> None:
    with pytest.raises(SitectlError):
        SiteRegistry(root_paths).create("example.com")


def test_state_is_derived_from_files(registry: SiteRegistry) -> None:
    site = registry.site("example.com")
    assert derive_state(site) == SiteState.ABSENT
    assert registry.get("example.com") is None

    registry.create("example.com")
    assert site.state == SiteState.CREATED

    _secure(registry, "example.com")
    assert site.state == SiteState.SECURED

    registry.disable("example.com")
    assert site.state == SiteState.DISABLED
    assert registry.get("example.com") == site


def test_disable_enable_round_trip(registry: SiteRegistry, fake_gate: FakeGate) -> None:
    registry.create("example.com")
    site = registry.site("example.com")
    original = site.config_path.read_text()

    disabled = registry.disable("example.com")
    assert isinstance(disabled, Success)
    assert not site.config_path.exists()
    assert site.disabled_path.read_text() == original

    enabled = registry.enable("example.com")
    assert isinstance(enabled, Success)
    assert site.config_path.read_text() == original
    assert not site.disabled_path.exists()
    assert len(fake_gate.applied) == 3


def test_enable_without_disabled_config(registry: SiteRegistry) -> None:
    registry.create("example.com")
    result = registry.enable("example.com")

    assert isinstance(result, Error)
    assert result.error == "Disabled configuration file not found"


def test_disable_missing_site(registry: SiteRegistry) -> None:
    result = registry.disable("example.com")

    assert isinstance(result, Error)
    assert result.error == "Website example.com does not exist"


def test_scan_counts_and_order(registry: SiteRegistry) -> None:
    for domain in ("zeta.example.com", "alpha.example.com", "example.com"):
        registry.create(domain)
    registry.disable("zeta.example.com")

    assert [site.domain for site in registry.scan()] == [
        "alpha.example.com",
        "example.com",
        "zeta.example.com",
    ]
    assert registry.counts() == (2, 1)


def test_scan_ignores_unrelated_files(registry: SiteRegistry, root_paths: RootPaths) -> None:
    root_paths.conf_dir.mkdir(parents=True)
    (root_paths.conf_dir / "README").write_text("hi")
    (root_paths.conf_dir / "example.com.conf.tmp").write_text("")

    assert registry.scan() == []


def test_delete_requires_exact_confirmation(
    registry: SiteRegistry, fake_gate: FakeGate
) -> None:
    registry.create("example.com")
    site = registry.site("example.com")
    applied = len(fake_gate.applied)

    for answer in ("no", "YES", "y", ""):
        result = registry.delete("example.com", answer)
        assert isinstance(result, Error)
        assert result.kind == ErrorKind.CANCELLED

    assert site.config_path.is_file()
    assert site.html_dir.is_dir()
    assert len(fake_gate.applied) == applied


def test_delete_backs_up_then_removes(
    registry: SiteRegistry, root_paths: RootPaths
) -> None:
    registry.create("example.com")
    _secure(registry, "example.com")
    site = registry.site("example.com")

    result = registry.delete("example.com", "yes")

    assert isinstance(result, Success)
    backup_dir: Path = result.data
    assert backup_dir.parent == root_paths.backup_dir
    assert backup_dir.name.startswith("example.com-")
    assert (backup_dir / "example.com.conf").is_file()
    assert (backup_dir / "example.com" / "index.html").is_file()

    assert site.state == SiteState.ABSENT
    for path in (site.html_dir, site.log_dir, site.cert_dir):
        assert not path.exists()


def test_delete_disabled_site(registry: SiteRegistry) -> None:
    registry.create("example.com")
    registry.disable("example.com")

    result = registry.delete("example.com", "yes")

    assert isinstance(result, Success)
    assert (result.data / "example.com.conf.disabled").is_file()
    assert not registry.site("example.com").disabled_path.exists()


def test_delete_custom_confirmation_word(registry: SiteRegistry) -> None:
    registry.create("example.com")

    assert isinstance(registry.delete("example.com", "yes", expected="delete"), Error)
    assert isinstance(registry.delete("example.com", "delete", expected="delete"), Success)


def test_delete_missing_site(registry: SiteRegistry) -> None:
    result = registry.delete("example.com", "yes")
    assert isinstance(result, Error)
    assert result.kind == ErrorKind.PRECONDITION


def _link_to_apex(registry: SiteRegistry, domain: str, apex: str) -> None:
    _secure(registry, apex)
    site = registry.site(domain)
    site.cert_dir.mkdir(parents=True, exist_ok=True)
    site.key_path.symlink_to(Path("..") / apex / f"{apex}.key")
    site.fullchain_path.symlink_to(Path("..") / apex / "fullchain.cer")


def test_wildcard_link_detection(registry: SiteRegistry) -> None:
    registry.create("example.com")
    registry.create("api.example.com")
    _link_to_apex(registry, "api.example.com", "example.com")

    site = registry.site("api.example.com")
    assert site.wildcard_linked
    assert site.wildcard_parent == "example.com"
    assert site.state == SiteState.SECURED
    assert [s.domain for s in registry.subordinates_of("example.com")] == [
        "api.example.com"
    ]


def test_deleting_apex_keeps_subordinate_links(
    registry: SiteRegistry, capsys: pytest.CaptureFixture[str]
) -> None:
    registry.create("example.com")
    registry.create("api.example.com")
    _link_to_apex(registry, "api.example.com", "example.com")

    registry.delete("example.com", "yes")

    site = registry.site("api.example.com")
    assert site.config_path.is_file()
    assert os.path.islink(site.fullchain_path)
    assert "api.example.com uses the wildcard certificate" in capsys.readouterr().err


def test_native_layout_links_sites_enabled(tmp_path: Path, fake_gate: FakeGate) -> None:
    paths = RootPaths(
        conf_dir=tmp_path / "sites-available",
        enabled_dir=tmp_path / "sites-enabled",
        html_dir=tmp_path / "www",
        log_dir=tmp_path / "log",
        cert_dir=tmp_path / "certs",
        backup_dir=tmp_path / "backups",
    )
    registry = SiteRegistry(paths, gate=fake_gate)
    link = tmp_path / "sites-enabled" / "example.com.conf"

    registry.create("example.com")
    assert link.is_symlink()
    assert link.resolve() == (tmp_path / "sites-available" / "example.com.conf").resolve()

    registry.disable("example.com")
    assert not link.is_symlink()

    registry.enable("example.com")
    assert link.is_symlink()

    registry.delete("example.com", "yes")
    assert not link.is_symlink()


def test_log_paths(registry: SiteRegistry, root_paths: RootPaths) -> None:
    access_log, error_log = registry.log_paths("example.com")
    assert access_log == root_paths.log_dir / "example.com" / "access.log"
    assert error_log == root_paths.log_dir / "example.com" / "error.log"


def test_listing_rows(
    root_paths: RootPaths, fake_gate: FakeGate, test_config: Config
) -> None:
    runner = FakeRunner()
    runner.on(
        "--list", result=Success(data=acme_listing(("example.com", "*.example.com")))
    )
    runner.on(
        "--info",
        "-d",
        "example.com",
        result=Success(data="Le_API='https://api.buypass.com/acme/directory'"),
    )
    acme = ContainerAcme(test_config, root_paths, runner=runner, env={})
    registry = SiteRegistry(root_paths, gate=fake_gate, acme=acme)
    registry.create("example.com")
    registry.create("api.example.com")
    registry.create("plain.example.org")
    registry.create("old.example.org")
    registry.disable("old.example.org")
    _link_to_apex(registry, "api.example.com", "example.com")

    rows = {row.domain: row for row in registry.list()}

    assert rows["example.com"].ssl_text == "✓ SSL (Wildcard) [BuyPass]"
    assert rows["api.example.com"].ssl_text == (
        "✓ SSL (Using wildcard from example.com) [BuyPass]"
    )
    assert rows["plain.example.org"].ssl_text == "❌ No SSL"
    assert rows["old.example.org"].status_text == "⚠ Disabled"
    assert rows["old.example.org"].ssl_text == ""
    assert len(runner.calls_with("--list")) == 1


def test_listing_without_acme(registry: SiteRegistry) -> None:
    registry.create("example.com")
    _secure(registry, "example.com")

    (row,) = registry.list()
    assert row == SiteListing(
        domain="example.com",
        state=SiteState.SECURED,
        ssl=True,
        config_path=registry.site("example.com").config_path,
        html_dir=registry.site("example.com").html_dir,
    )
    assert row.ssl_text == "✓ SSL"
