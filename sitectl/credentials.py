"""
Credential collection for DNS-validated and EAB-bound certificate requests.

Secrets live only in the process environment for the duration of the run.
Sources decide where missing values come from: the environment alone, or
the operator at a terminal.
"""

import os
from abc import ABC, abstractmethod
from collections.abc import MutableMapping
from dataclasses import dataclass

import click

from .console import console_manager
from .logutil import logger
from .providers import CertificateAuthority
from .types import Error, ErrorKind, Result, Success

CF_TOKEN = "CF_Token"
CF_EMAIL = "CF_Email"
CF_KEY = "CF_Key"
EAB_KID = "GOOGLE_EAB_KID"
EAB_HMAC_KEY = "GOOGLE_EAB_HMAC_KEY"

# Variables a containerized ACME client needs to see
FORWARDED_ENV_VARS: tuple[str, ...] = (CF_TOKEN, CF_EMAIL, CF_KEY)

CF_TOKEN_URL = "https://dash.cloudflare.com/profile/api-tokens"
EAB_DOCS_URL = "https://cloud.google.com/certificate-manager/docs/public-ca"


class CredentialError(Exception):
    """Raised when a credential source cannot supply usable values."""


@dataclass(frozen=True)
class DnsCredentials:
    token: str | None = None
    email: str | None = None
    key: str | None = None

    @property
    def method(self) -> str:
        return "API Token" if self.token else "Global API Key"

    def as_env(self) -> dict[str, str]:
        if self.token:
            return {CF_TOKEN: self.token}
        return {CF_EMAIL: self.email or "", CF_KEY: self.key or ""}


@dataclass(frozen=True)
class EabCredentials:
    kid: str
    hmac_key: str

    def as_env(self) -> dict[str, str]:
        return {EAB_KID: self.kid, EAB_HMAC_KEY: self.hmac_key}


def dns_from_env(env: MutableMapping[str, str]) -> DnsCredentials | None:
    if env.get(CF_TOKEN):
        return DnsCredentials(token=env[CF_TOKEN])
    if env.get(CF_EMAIL) and env.get(CF_KEY):
        return DnsCredentials(email=env[CF_EMAIL], key=env[CF_KEY])
    return None


def eab_from_env(env: MutableMapping[str, str]) -> EabCredentials | None:
    if env.get(EAB_KID) and env.get(EAB_HMAC_KEY):
        return EabCredentials(kid=env[EAB_KID], hmac_key=env[EAB_HMAC_KEY])
    return None


class CredentialSource(ABC):
    """Supplies credentials that are not yet in the environment."""

    @abstractmethod
    def dns_credentials(self) -> DnsCredentials:
        """Return DNS API credentials or raise CredentialError."""

    @abstractmethod
    def eab_credentials(self, authority: CertificateAuthority) -> EabCredentials:
        """Return EAB credentials for authority or raise CredentialError."""


class EnvironmentCredentialSource(CredentialSource):
    """Never prompts; missing values are an error."""

    def dns_credentials(self) -> DnsCredentials:
        raise CredentialError(
            f"Wildcard certificates need Cloudflare DNS API credentials: "
            f"set {CF_TOKEN}, or {CF_EMAIL} and {CF_KEY}"
        )

    def eab_credentials(self, authority: CertificateAuthority) -> EabCredentials:
        raise CredentialError(
            f"{authority.label} requires EAB credentials: "
            f"set {EAB_KID} and {EAB_HMAC_KEY}"
        )


class PromptCredentialSource(CredentialSource):
    """Ask the operator at the terminal."""

    def dns_credentials(self) -> DnsCredentials:
        console_manager.print_warning(
            "Wildcard certificate requires Cloudflare DNS API credentials"
        )
        console_manager.print("Choose authentication method:")
        console_manager.print_bullets(["1) API Token (recommended)", "2) Global API Key"])
        choice = click.prompt("Select", type=click.Choice(["1", "2"]))

        console_manager.print_processing(f"Get credentials at: {CF_TOKEN_URL}")
        if choice == "1":
            console_manager.print("Required permissions: Zone:DNS:Edit")
            token = click.prompt(
                "Enter Cloudflare API Token",
                default="",
                show_default=False,
                hide_input=True,
            ).strip()
            if not token:
                raise CredentialError("API Token cannot be empty")
            return DnsCredentials(token=token)

        email = click.prompt(
            "Enter Cloudflare Email", default="", show_default=False
        ).strip()
        key = click.prompt(
            "Enter Cloudflare Global API Key",
            default="",
            show_default=False,
            hide_input=True,
        ).strip()
        if not email or not key:
            raise CredentialError("Email and API Key cannot be empty")
        return DnsCredentials(email=email, key=key)

    def eab_credentials(self, authority: CertificateAuthority) -> EabCredentials:
        console_manager.print_warning(
            f"{authority.label} requires EAB (External Account Binding) credentials"
        )
        console_manager.print_processing(f"Get EAB credentials at: {EAB_DOCS_URL}")
        kid = click.prompt(f"Enter {EAB_KID}", default="", show_default=False).strip()
        hmac_key = click.prompt(
            f"Enter {EAB_HMAC_KEY}", default="", show_default=False, hide_input=True
        ).strip()
        if not kid or not hmac_key:
            raise CredentialError("EAB credentials cannot be empty")
        return EabCredentials(kid=kid, hmac_key=hmac_key)


class CredentialCollector:
    """Make sure the secrets an issuance needs are in the environment.

    Values obtained from the source are exported into ``env`` (the process
    environment by default) so later calls, and the ACME client, see them.
    """

    def __init__(
        self,
        source: CredentialSource,
        env: MutableMapping[str, str] | None = None,
    ) -> None:
        self.source = source
        self.env = env if env is not None else os.environ

    def ensure(self, authority: CertificateAuthority, wildcard: bool) -> Result:
        if wildcard:
            dns = dns_from_env(self.env)
            if dns is None:
                try:
                    dns = self.source.dns_credentials()
                except CredentialError as e:
                    return _credential_error(e)
                self.env.update(dns.as_env())
                logger.info("Exported Cloudflare credentials (%s)", dns.method)
            console_manager.print_processing(
                f"Using Cloudflare {dns.method} for DNS validation"
            )

        if authority.requires_eab:
            if eab_from_env(self.env) is None:
                try:
                    eab = self.source.eab_credentials(authority)
                except CredentialError as e:
                    return _credential_error(e)
                self.env.update(eab.as_env())
                logger.info("Exported EAB credentials for %s", authority.name)
            console_manager.print_processing(
                f"Using {authority.label} with EAB credentials"
            )

        return Success()

    def eab_arguments(self, authority: CertificateAuthority) -> list[str]:
        """acme.sh flags binding the request to the EAB account, if required."""
        if not authority.requires_eab:
            return []
        eab = eab_from_env(self.env)
        if eab is None:
            return []
        return ["--eab-kid", eab.kid, "--eab-hmac-key", eab.hmac_key]


def _credential_error(e: CredentialError) -> Error:
    return Error(
        error=str(e),
        exception=e,
        kind=ErrorKind.PRECONDITION,
    )
