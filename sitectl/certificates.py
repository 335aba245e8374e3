"""
Certificate lifecycle: issue, reuse, install and activate.

An issuance moves through the stages of IssuanceStage and every transition
is written to a small YAML journal per domain. A later run for the same
names and CA that finds the certificate already issued picks up at
installation instead of asking the CA again.
"""

import os
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .backends import AcmeBackend, BackendResolver
from .config import Config, get_config_dir
from .console import console_manager
from .credentials import CredentialCollector
from .domains import (
    apex_domain,
    covered_by_wildcard,
    is_subordinate,
    is_valid_domain,
    normalize_domain,
)
from .logutil import logger
from .providers import CertificateAuthority, normalize_provider
from .registry import Site, SiteRegistry
from .reload_gate import ReloadGate
from .render import FULLCHAIN_FILE, key_file_name, render_site_config
from .types import Error, ErrorKind, IssuanceStage, Result, SiteState, Success

RESUMABLE_STAGES = (IssuanceStage.ISSUED, IssuanceStage.INSTALLED)

StageRecorder = Callable[..., None]


class CertificateRequest(BaseModel):
    """Options of one ``sitectl ssl`` invocation."""

    model_config = ConfigDict(frozen=True)

    domain: str
    wildcard: bool = False
    with_www: bool = False
    extra_names: list[str] = Field(default_factory=list)
    provider: str | None = None
    reissue: bool = False

    @field_validator("domain")
    @classmethod
    def _check_domain(cls, value: str) -> str:
        domain = normalize_domain(value)
        if not is_valid_domain(domain):
            raise ValueError(f"Invalid domain: {value}")
        return domain

    @field_validator("extra_names", mode="before")
    @classmethod
    def _split_extra_names(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [normalize_domain(str(v)) for v in value if str(v).strip()]

    @model_validator(mode="after")
    def _check_combination(self) -> "CertificateRequest":
        if self.wildcard and (self.with_www or self.extra_names):
            raise ValueError(
                "--wildcard cannot be combined with --with-www or --extra; "
                "a wildcard certificate already covers those names"
            )
        for name in build_name_set(self):
            if not is_valid_domain(name, allow_wildcard=True):
                raise ValueError(f"Invalid certificate name: {name}")
        return self


def build_name_set(request: CertificateRequest) -> list[str]:
    """Names the certificate must cover, primary domain first.

    Bare labels in ``extra_names`` become subdomains of the primary domain.
    """
    domain = request.domain
    if request.wildcard:
        return [domain, f"*.{domain}"]

    names = [domain]
    if request.with_www:
        names.append(f"www.{domain}")
    for extra in request.extra_names:
        name = extra if "." in extra else f"{extra}.{domain}"
        if name not in names:
            names.append(name)
    return names


class JournalEntry(BaseModel):
    domain: str
    names: list[str]
    provider: str
    wildcard: bool = False
    stage: IssuanceStage
    # Last stage reached successfully; differs from stage only after a failure
    completed: IssuanceStage | None = None
    error: str | None = None
    updated: str = ""


class IssuanceJournal:
    """Per-domain record of how far the last issuance got."""

    def __init__(self, directory: Path | None = None) -> None:
        self.directory = directory or get_config_dir() / "issuance"

    def path_for(self, domain: str) -> Path:
        return self.directory / f"{domain}.yaml"

    def load(self, domain: str) -> JournalEntry | None:
        path = self.path_for(domain)
        if not path.is_file():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return JournalEntry.model_validate(data)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            logger.warning("Ignoring unreadable issuance journal %s: %s", path, e)
            return None

    def record(
        self,
        domain: str,
        stage: IssuanceStage,
        names: list[str],
        provider: str,
        wildcard: bool,
        error: str | None = None,
    ) -> JournalEntry:
        previous = self.load(domain)
        if stage == IssuanceStage.FAILED:
            completed = previous.completed if previous else None
        else:
            completed = stage

        entry = JournalEntry(
            domain=domain,
            names=names,
            provider=provider,
            wildcard=wildcard,
            stage=stage,
            completed=completed,
            error=error,
            updated=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
        self.directory.mkdir(parents=True, exist_ok=True)
        with open(self.path_for(domain), "w", encoding="utf-8") as f:
            yaml.safe_dump(entry.model_dump(mode="json"), f, default_flow_style=False)

        if error:
            logger.info("Issuance %s: %s (%s)", domain, stage.value, error)
        else:
            logger.info("Issuance %s: %s", domain, stage.value)
        return entry

    def resumable(
        self, domain: str, names: list[str], provider: str, wildcard: bool
    ) -> IssuanceStage | None:
        """Stage to resume after, when the journal matches this request."""
        entry = self.load(domain)
        if entry is None or entry.completed not in RESUMABLE_STAGES:
            return None
        if entry.names != names or entry.provider != provider:
            return None
        if entry.wildcard != wildcard:
            return None
        return entry.completed


def issuance_failure_causes(wildcard: bool, authority: CertificateAuthority) -> str:
    causes = [
        "DNS not pointing to this server",
        "Domain is not accessible",
        "Firewall blocking port 80",
    ]
    if wildcard:
        causes.append("DNS API credentials not configured")
    if authority.requires_eab:
        causes.append("EAB credentials missing or invalid")
    return "Possible reasons:\n" + "\n".join(f"  - {cause}" for cause in causes)


def _link_state(path: Path) -> str | bytes | None:
    """Symlink target, file content, or None when path is absent."""
    if path.is_symlink():
        return os.readlink(path)
    if path.is_file():
        return path.read_bytes()
    return None


def _put_back(path: Path, state: str | bytes | None) -> None:
    path.unlink(missing_ok=True)
    if isinstance(state, str):
        path.symlink_to(state)
    elif state is not None:
        path.write_bytes(state)


class CertificateEngine:
    """Drive one certificate request from validation to an active HTTPS config."""

    def __init__(
        self,
        registry: SiteRegistry,
        resolver: BackendResolver,
        credentials: CredentialCollector,
        journal: IssuanceJournal,
        gate: ReloadGate,
        config: Config,
    ) -> None:
        self.registry = registry
        self.resolver = resolver
        self.credentials = credentials
        self.journal = journal
        self.gate = gate
        self.config = config

    def issue(self, request: CertificateRequest) -> Result:
        authority, fell_back = normalize_provider(
            request.provider, self.config.get("acme.default_server")
        )
        if fell_back:
            console_manager.print_warning(
                f"Unknown ACME server: {request.provider}, using {authority.name}"
            )
        console_manager.print_processing(f"Using ACME server: {authority.name}")
        if authority.validity_days > 90:
            console_manager.print_note(
                f"{authority.label} certificates are valid for "
                f"{authority.validity_days} days"
            )

        site = self.registry.site(request.domain)
        if site.state == SiteState.DISABLED:
            return Error(
                error=f"Website {site.domain} is disabled",
                recovery_suggestions=f"Enable it first: sitectl enable {site.domain}",
                kind=ErrorKind.PRECONDITION,
            )
        if site.state not in (SiteState.CREATED, SiteState.SECURED):
            return Error(
                error=f"Website {site.domain} does not exist!",
                recovery_suggestions=f"Please run first: sitectl add {site.domain}",
                kind=ErrorKind.PRECONDITION,
            )

        resolved = self.resolver.resolve_acme()
        if isinstance(resolved, Error):
            return resolved
        acme: AcmeBackend = resolved.data

        satisfied = self.credentials.ensure(authority, request.wildcard)
        if isinstance(satisfied, Error):
            return satisfied

        names = build_name_set(request)

        if not request.wildcard:
            reused = self._reuse_wildcard(site, names, acme)
            if reused is not None:
                return reused

        resume = None
        if not request.reissue:
            resume = self.journal.resumable(
                site.domain, names, authority.name, request.wildcard
            )

        def record(stage: IssuanceStage, error: str | None = None) -> None:
            self.journal.record(
                site.domain, stage, names, authority.name, request.wildcard, error
            )

        if resume is None:
            record(IssuanceStage.VALIDATED)
            issued = self._issue(site, names, request.wildcard, authority, acme, record)
            if isinstance(issued, Error):
                return issued
        else:
            console_manager.print_processing(
                f"Certificate for {' '.join(names)} was already issued; "
                f"resuming at installation (use --reissue to request a new one)"
            )

        already_installed = (
            resume == IssuanceStage.INSTALLED
            and site.fullchain_path.is_file()
            and not site.wildcard_linked
        )
        if not already_installed:
            installed = self._install(site, acme, record)
            if isinstance(installed, Error):
                return installed

        return self._activate(site, names, request.wildcard, record)

    def _reuse_wildcard(
        self, site: Site, names: list[str], acme: AcmeBackend
    ) -> Result | None:
        """Link an apex wildcard certificate into site; None when not applicable."""
        if not is_subordinate(site.domain):
            return None
        apex = apex_domain(site.domain)
        if not all(covered_by_wildcard(name, apex) for name in names):
            logger.debug("Names %s are not all covered by *.%s", names, apex)
            return None
        if not acme.has_wildcard_for(apex):
            return None

        apex_site = self.registry.site(apex)
        console_manager.print_processing(
            f"Found existing wildcard certificate for *.{apex}"
        )
        if not apex_site.cert_dir.is_dir() or not apex_site.fullchain_path.exists():
            console_manager.print_warning(
                f"{apex_site.cert_dir} has no installed certificate; "
                f"issuing a new certificate instead"
            )
            return None

        console_manager.print_processing(
            "Reusing wildcard certificate instead of issuing new one..."
        )
        site.cert_dir.mkdir(parents=True, exist_ok=True)
        links = (
            (site.key_path, Path("..") / apex / key_file_name(apex)),
            (site.fullchain_path, Path("..") / apex / FULLCHAIN_FILE),
        )
        previous = {link: _link_state(link) for link, _ in links}
        for link, target in links:
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(target)
            logger.info("Linked %s -> %s", link, target)
        console_manager.print_success("Wildcard certificate linked successfully!")

        text = render_site_config(
            site.domain,
            names[1:],
            secured=True,
            wildcard_linked=True,
            paths=self.registry.paths.server,
        )
        snapshot = self.registry.write_config(site, text)
        applied = self.gate.apply(snapshot)
        if isinstance(applied, Error):
            if self.gate.restore_on_failure:
                for link, state in previous.items():
                    _put_back(link, state)
                logger.info("Restored certificate files of %s", site.domain)
            return applied

        console_manager.print_processing(f"Using wildcard certificate from: {apex}")
        return Success(
            message="SSL configured successfully using wildcard certificate!",
            data=names,
        )

    def _issue(
        self,
        site: Site,
        names: list[str],
        wildcard: bool,
        authority: CertificateAuthority,
        acme: AcmeBackend,
        record: StageRecorder,
    ) -> Result:
        args = ["--issue"]
        if wildcard:
            args += ["--dns", str(self.config.get("acme.dns_plugin"))]
        for name in names:
            args += ["-d", name]
        if wildcard:
            console_manager.print_warning("Wildcard SSL requires DNS API validation")
            console_manager.print_processing(
                "Step 1/3: Issuing certificate via DNS validation..."
            )
        else:
            args += ["-w", acme.webroot_for(site.domain)]
            console_manager.print_processing(
                f"Applying SSL certificate for: {' '.join(names)}"
            )
            console_manager.print_processing(
                "Step 1/3: Issuing certificate via HTTP validation..."
            )
        args += ["--server", authority.name, "--force"]
        args += self.credentials.eab_arguments(authority)

        record(IssuanceStage.CHALLENGED)
        result = acme.exec(args, capture=False)
        if isinstance(result, Error):
            record(IssuanceStage.FAILED, result.error)
            return Error(
                error="Certificate issuance failed!",
                exception=result.exception,
                recovery_suggestions=issuance_failure_causes(wildcard, authority),
                kind=ErrorKind.EXTERNAL,
            )
        record(IssuanceStage.ISSUED)
        return Success()

    def _install(self, site: Site, acme: AcmeBackend, record: StageRecorder) -> Result:
        console_manager.print_processing("Step 2/3: Installing certificate...")
        # Links left by an earlier wildcard reuse point into the apex's files
        for path in (site.key_path, site.fullchain_path):
            if path.is_symlink():
                path.unlink()
                logger.info("Removed link %s", path)
        site.cert_dir.mkdir(parents=True, exist_ok=True)

        key_file, fullchain_file = acme.cert_paths_for(site.domain)
        result = acme.exec(
            [
                "--install-cert",
                "-d",
                site.domain,
                "--key-file",
                key_file,
                "--fullchain-file",
                fullchain_file,
            ]
        )
        if isinstance(result, Error):
            record(IssuanceStage.FAILED, result.error)
            return Error(
                error="Certificate installation failed",
                exception=result.exception,
                recovery_suggestions=result.error,
                kind=ErrorKind.EXTERNAL,
            )
        record(IssuanceStage.INSTALLED)
        return Success()

    def _activate(
        self, site: Site, names: list[str], wildcard: bool, record: StageRecorder
    ) -> Result:
        console_manager.print_processing("Step 3/3: Enabling HTTPS configuration...")
        text = render_site_config(
            site.domain,
            names[1:],
            secured=True,
            wildcard=wildcard,
            paths=self.registry.paths.server,
        )
        snapshot = self.registry.write_config(site, text)
        applied = self.gate.apply(snapshot)
        if isinstance(applied, Error):
            record(IssuanceStage.FAILED, applied.error)
            return applied

        record(IssuanceStage.ACTIVATED)
        console_manager.print_processing(f"SSL is now active for: {' '.join(names)}")
        console_manager.print_processing("Certificate will auto-renew")
        return Success(message="SSL certificate configured successfully!", data=names)
