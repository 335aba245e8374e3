"""
Fixtures for pytest.

This file contains fixtures that can be used across all tests.
"""

import os
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner
from fakes import FakeGate, FakeRunner, SiteEnv
from rich.console import Console

from sitectl.backends import RootPaths
from sitectl.config import Config
from sitectl.console import ConsoleManager, console_manager
from sitectl.render import ServerPaths

OVERRIDE_ENV_VARS = (
    "CF_Token",
    "CF_Email",
    "CF_Key",
    "GOOGLE_EAB_KID",
    "GOOGLE_EAB_HMAC_KEY",
    "ACME_SERVER",
    "SITECTL_NGINX_ROOT",
    "SITECTL_ACME_SH",
    "SITECTL_LOG_LEVEL",
)


@pytest.fixture(autouse=True, scope="session")
def ensure_test_config_env(
    tmp_path_factory: pytest.TempPathFactory,
) -> Generator[None, None, None]:
    """Ensure all tests use a separate config directory.

    This prevents tests from interfering with the user's actual configuration.
    """
    config_dir = tmp_path_factory.mktemp("sitectl-test-config")
    old_config_dir = os.environ.get("SITECTL_CONFIG_DIR")
    os.environ["SITECTL_CONFIG_DIR"] = str(config_dir)

    try:
        yield
    finally:
        if old_config_dir:
            os.environ["SITECTL_CONFIG_DIR"] = old_config_dir
        else:
            os.environ.pop("SITECTL_CONFIG_DIR", None)


@pytest.fixture(autouse=True)
def clean_override_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Credentials and overrides from the developer's shell must not leak in."""
    for name in OVERRIDE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def plain_console(monkeypatch: pytest.MonkeyPatch) -> None:
    """Colorless, fixed-width consoles so CLI output is stable under any terminal."""
    monkeypatch.setattr(
        console_manager,
        "console",
        Console(soft_wrap=True, color_system=None, width=200),
    )
    monkeypatch.setattr(
        console_manager,
        "error_console",
        Console(stderr=True, soft_wrap=True, color_system=None, width=200),
    )


@pytest.fixture
def test_console() -> ConsoleManager:
    """ConsoleManager whose consoles record output for verification."""
    console_manager = ConsoleManager()
    console_manager.console = Console(record=True, width=200)
    console_manager.error_console = Console(stderr=True, record=True, width=200)
    return console_manager


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """Config instance using a temporary directory."""
    return Config(base_dir=tmp_path / "sitectl-test-config")


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_gate() -> FakeGate:
    return FakeGate()


@pytest.fixture
def root_paths(tmp_path: Path) -> RootPaths:
    """Containerized layout rooted in a temporary directory."""
    root = tmp_path / "nginx"
    return RootPaths(
        conf_dir=root / "conf.d",
        html_dir=root / "html",
        log_dir=root / "logs",
        cert_dir=root / "certs",
        backup_dir=root / "backups",
        server=ServerPaths(),
    )


@pytest.fixture
def site_env(tmp_path: Path) -> SiteEnv:
    """Simulated host with nginx and acme.sh containers running."""
    return SiteEnv(tmp_path)
