"""
Site registry backed by the web server's configuration directory.

Nothing is stored besides the files nginx itself uses: a site's state is
derived from whether ``<domain>.conf`` or ``<domain>.conf.disabled``
exists and whether a full certificate chain sits in its certificate
directory.
"""

import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .backends import AcmeBackend, RootPaths, listing_has_wildcard
from .console import console_manager
from .domains import is_valid_domain, normalize_domain
from .logutil import logger
from .providers import label_from_info
from .reload_gate import ConfigSnapshot, ReloadGate
from .render import FULLCHAIN_FILE, key_file_name, render_landing_page, render_site_config
from .types import Error, ErrorKind, Result, SiteState, SitectlError, Success

CONFIG_SUFFIX = ".conf"
DISABLED_SUFFIX = ".conf.disabled"
BACKUP_TIMESTAMP = "%Y%m%d-%H%M%S"


@dataclass(frozen=True)
class Site:
    domain: str
    paths: RootPaths

    @property
    def config_path(self) -> Path:
        return self.paths.conf_dir / f"{self.domain}{CONFIG_SUFFIX}"

    @property
    def disabled_path(self) -> Path:
        return self.paths.conf_dir / f"{self.domain}{DISABLED_SUFFIX}"

    @property
    def enabled_link(self) -> Path | None:
        if self.paths.enabled_dir is None:
            return None
        return self.paths.enabled_dir / f"{self.domain}{CONFIG_SUFFIX}"

    @property
    def html_dir(self) -> Path:
        return self.paths.html_dir / self.domain

    @property
    def log_dir(self) -> Path:
        return self.paths.log_dir / self.domain

    @property
    def cert_dir(self) -> Path:
        return self.paths.cert_dir / self.domain

    @property
    def key_path(self) -> Path:
        return self.cert_dir / key_file_name(self.domain)

    @property
    def fullchain_path(self) -> Path:
        return self.cert_dir / FULLCHAIN_FILE

    @property
    def ssl_enabled(self) -> bool:
        return self.fullchain_path.exists()

    @property
    def wildcard_linked(self) -> bool:
        return self.fullchain_path.is_symlink()

    @property
    def wildcard_parent(self) -> str | None:
        """Domain whose certificate directory the links point into."""
        if not self.wildcard_linked:
            return None
        return Path(os.readlink(self.fullchain_path)).parent.name

    @property
    def state(self) -> SiteState:
        return derive_state(self)


def _check_domain(domain: str) -> Error | None:
    if is_valid_domain(domain):
        return None
    return Error(error=f"Invalid domain: {domain}", kind=ErrorKind.USAGE)


def derive_state(site: Site) -> SiteState:
    if site.config_path.is_file():
        return SiteState.SECURED if site.ssl_enabled else SiteState.CREATED
    if site.disabled_path.is_file():
        return SiteState.DISABLED
    return SiteState.ABSENT


@dataclass(frozen=True)
class SiteListing:
    """One row of ``sitectl list``."""

    domain: str
    state: SiteState
    ssl: bool = False
    wildcard_parent: str | None = None
    own_wildcard: bool = False
    provider: str | None = None
    config_path: Path | None = None
    html_dir: Path | None = None

    @property
    def status_text(self) -> str:
        return "⚠ Disabled" if self.state == SiteState.DISABLED else "✓ Enabled"

    @property
    def ssl_text(self) -> str:
        if self.state == SiteState.DISABLED:
            return ""
        if not self.ssl:
            return "❌ No SSL"
        text = "✓ SSL"
        if self.wildcard_parent:
            text += f" (Using wildcard from {self.wildcard_parent})"
        elif self.own_wildcard:
            text += " (Wildcard)"
        if self.provider:
            text += f" [{self.provider}]"
        return text


class SiteRegistry:
    """Query and mutate the sites under one set of root paths."""

    def __init__(
        self,
        paths: RootPaths,
        gate: ReloadGate | None = None,
        acme: AcmeBackend | None = None,
    ) -> None:
        self.paths = paths
        self.gate = gate
        self.acme = acme

    def site(self, domain: str) -> Site:
        return Site(domain=normalize_domain(domain), paths=self.paths)

    def get(self, domain: str) -> Site | None:
        site = self.site(domain)
        return site if site.state != SiteState.ABSENT else None

    def scan(self) -> list[Site]:
        """All sites with an active or disabled config, sorted by domain."""
        if not self.paths.conf_dir.is_dir():
            return []
        domains: set[str] = set()
        for entry in self.paths.conf_dir.iterdir():
            if not entry.is_file():
                continue
            for suffix in (DISABLED_SUFFIX, CONFIG_SUFFIX):
                if entry.name.endswith(suffix):
                    domains.add(entry.name[: -len(suffix)])
                    break
        return [self.site(domain) for domain in sorted(domains)]

    def counts(self) -> tuple[int, int]:
        """Number of (enabled, disabled) sites."""
        states = [site.state for site in self.scan()]
        disabled = states.count(SiteState.DISABLED)
        return len(states) - disabled, disabled

    def subordinates_of(self, domain: str) -> list[Site]:
        """Sites whose certificate files link into domain's certificate directory."""
        return [
            site
            for site in self.scan()
            if site.domain != domain and site.wildcard_parent == domain
        ]

    def log_paths(self, domain: str) -> tuple[Path, Path]:
        site = self.site(domain)
        return site.log_dir / "access.log", site.log_dir / "error.log"

    def _apply(self, snapshot: ConfigSnapshot | None = None) -> Result:
        if self.gate is None:
            raise SitectlError("Site registry has no reload gate")
        return self.gate.apply(snapshot)

    def write_config(self, site: Site, text: str) -> ConfigSnapshot:
        """Replace a site's active config with text; returns the prior state."""
        snapshot = ConfigSnapshot.take(site.config_path)
        site.config_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = site.config_path.with_name(site.config_path.name + ".tmp")
        tmp_path.write_text(text, encoding="utf-8")
        os.replace(tmp_path, site.config_path)
        logger.info("Wrote %s", site.config_path)
        return snapshot

    def _link_enabled(self, site: Site) -> None:
        link = site.enabled_link
        if link is None:
            return
        link.parent.mkdir(parents=True, exist_ok=True)
        if link.is_symlink() or link.exists():
            link.unlink()
        link.symlink_to(site.config_path)
        logger.info("Linked %s -> %s", link, site.config_path)

    def _unlink_enabled(self, site: Site) -> None:
        link = site.enabled_link
        if link is not None and (link.is_symlink() or link.exists()):
            link.unlink()
            logger.info("Removed %s", link)

    def create(self, domain: str, overwrite: bool = False) -> Result:
        """Create an HTTP-only site with a sample page.

        Args:
            domain: Primary domain of the site
            overwrite: Replace an existing site's config and sample page
        """
        invalid = _check_domain(domain)
        if invalid is not None:
            return invalid

        site = self.site(domain)
        if site.state != SiteState.ABSENT and not overwrite:
            return Error(
                error=f"Website {site.domain} already exists!",
                kind=ErrorKind.PRECONDITION,
            )

        console_manager.print_processing(f"Creating website {site.domain}...")
        for directory in (site.html_dir, site.log_dir, site.cert_dir):
            directory.mkdir(parents=True, exist_ok=True)
            logger.info("Ensured directory %s", directory)

        index_file = site.html_dir / "index.html"
        index_file.write_text(render_landing_page(site.domain), encoding="utf-8")
        logger.info("Wrote %s", index_file)

        text = render_site_config(site.domain, paths=self.paths.server)
        snapshot = self.write_config(site, text)
        if site.disabled_path.exists():
            site.disabled_path.unlink()
            logger.info("Removed %s", site.disabled_path)
        self._link_enabled(site)

        result = self._apply(snapshot)
        if isinstance(result, Error):
            return result
        return Success(message=f"Website {site.domain} created successfully!", data=site)

    def enable(self, domain: str) -> Result:
        invalid = _check_domain(domain)
        if invalid is not None:
            return invalid
        site = self.site(domain)
        if not site.disabled_path.is_file():
            return Error(
                error="Disabled configuration file not found",
                kind=ErrorKind.PRECONDITION,
            )

        os.replace(site.disabled_path, site.config_path)
        logger.info("Renamed %s -> %s", site.disabled_path, site.config_path)
        self._link_enabled(site)

        result = self._apply()
        if isinstance(result, Error):
            return result
        return Success(message=f"Website {site.domain} enabled", data=site)

    def disable(self, domain: str) -> Result:
        invalid = _check_domain(domain)
        if invalid is not None:
            return invalid
        site = self.site(domain)
        if not site.config_path.is_file():
            return Error(
                error=f"Website {site.domain} does not exist",
                kind=ErrorKind.PRECONDITION,
            )

        os.replace(site.config_path, site.disabled_path)
        logger.info("Renamed %s -> %s", site.config_path, site.disabled_path)
        self._unlink_enabled(site)

        result = self._apply()
        if isinstance(result, Error):
            return result
        return Success(message=f"Website {site.domain} disabled", data=site)

    def deletion_targets(self, domain: str) -> list[Path]:
        site = self.site(domain)
        config = site.config_path if site.config_path.exists() else site.disabled_path
        return [config, site.html_dir, site.log_dir, site.cert_dir]

    def _backup(self, site: Site) -> Path:
        stamp = datetime.now().strftime(BACKUP_TIMESTAMP)
        backup_dir = self.paths.backup_dir / f"{site.domain}-{stamp}"
        backup_dir.mkdir(parents=True, exist_ok=True)
        for config in (site.config_path, site.disabled_path):
            if config.is_file():
                shutil.copy2(config, backup_dir / config.name)
        if site.html_dir.is_dir():
            shutil.copytree(site.html_dir, backup_dir / site.domain, symlinks=True)
        logger.info("Backed up %s to %s", site.domain, backup_dir)
        return backup_dir

    def delete(self, domain: str, confirmation: str, expected: str = "yes") -> Result:
        """Back up and remove every file belonging to a site.

        Nothing is touched unless confirmation equals expected exactly.
        """
        invalid = _check_domain(domain)
        if invalid is not None:
            return invalid
        site = self.site(domain)
        if site.state == SiteState.ABSENT:
            return Error(
                error=f"Website {site.domain} does not exist",
                kind=ErrorKind.PRECONDITION,
            )
        if confirmation != expected:
            return Error(
                error="Deletion not confirmed; nothing was changed",
                kind=ErrorKind.CANCELLED,
            )

        for dependent in self.subordinates_of(site.domain):
            console_manager.print_warning(
                f"{dependent.domain} uses the wildcard certificate of "
                f"{site.domain}; its HTTPS configuration will break"
            )

        console_manager.print_processing(f"Creating backup of {site.domain}...")
        backup_dir = self._backup(site)

        for config in (site.config_path, site.disabled_path):
            if config.exists():
                config.unlink()
                logger.info("Removed %s", config)
        self._unlink_enabled(site)
        for directory in (site.html_dir, site.log_dir, site.cert_dir):
            if directory.is_dir():
                shutil.rmtree(directory)
                logger.info("Removed %s", directory)

        result = self._apply()
        if isinstance(result, Error):
            return result
        return Success(message=f"Website {site.domain} deleted", data=backup_dir)

    def list(self) -> list[SiteListing]:
        """Describe every site; CA details are best effort."""
        listing_text: str | None = None
        if self.acme is not None and any(s.ssl_enabled for s in self.scan()):
            listed = self.acme.list_certificates()
            if isinstance(listed, Success):
                listing_text = str(listed.data or "")

        rows: list[SiteListing] = []
        for site in self.scan():
            state = site.state
            if state == SiteState.DISABLED:
                rows.append(SiteListing(domain=site.domain, state=state))
                continue

            ssl = site.ssl_enabled
            parent = site.wildcard_parent
            own_wildcard = bool(
                ssl
                and parent is None
                and listing_text is not None
                and listing_has_wildcard(listing_text, site.domain)
            )
            rows.append(
                SiteListing(
                    domain=site.domain,
                    state=state,
                    ssl=ssl,
                    wildcard_parent=parent,
                    own_wildcard=own_wildcard,
                    provider=self._provider_label(parent or site.domain) if ssl else None,
                    config_path=site.config_path,
                    html_dir=site.html_dir,
                )
            )
        return rows

    def _provider_label(self, domain: str) -> str | None:
        if self.acme is None:
            return None
        info = self.acme.certificate_info(domain)
        if isinstance(info, Error):
            logger.debug("No certificate info for %s: %s", domain, info.error)
            return None
        return label_from_info(str(info.data or ""))
